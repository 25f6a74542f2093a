"""HTTP surface for the relayer."""
