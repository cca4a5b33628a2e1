"""fundtrace: follow ICP ledger funds from seed accounts and flag exchange cycles"""

__version__ = "0.1.0"
