"""Election ledger — authoritative state, swappable logic, admission rules."""
