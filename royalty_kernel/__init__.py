"""
Royalty Kernel

The persistence and integrity core of the royalty engine:
- Append-only royalty ledger (runs, statements, lines)
- Atomic unit-of-work transactions
- Typed exceptions with machine-readable codes
- Structured JSON logging
- ORM-level immutability enforcement
"""

__version__ = "0.1.0"
