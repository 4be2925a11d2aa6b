"""Kernel write services (flush-only)."""

from royalty_kernel.services.base import BaseService
from royalty_kernel.services.ledger_writer import LedgerWriter

__all__ = ["BaseService", "LedgerWriter"]
