"""Read-only query selectors returning typed DTOs."""

from royalty_kernel.selectors.base import BaseSelector
from royalty_kernel.selectors.licensing_selector import LicensingSelector
from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.selectors.statement_selector import StatementSelector

__all__ = [
    "BaseSelector",
    "LicensingSelector",
    "RunSelector",
    "StatementSelector",
]
