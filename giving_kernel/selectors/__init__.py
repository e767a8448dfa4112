"""Read-only projections over transactions and gateway sessions."""

from giving_kernel.selectors.base import BaseSelector
from giving_kernel.selectors.session_selector import SessionSelector
from giving_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "BaseSelector",
    "SessionSelector",
    "TransactionSelector",
]
