"""relayvote — gasless signed-vote election ledger and relayer."""

__version__ = "0.1.0"
