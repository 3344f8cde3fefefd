"""Selectors for the AFT kernel (read side)."""

from aft_kernel.selectors.request_selector import PendingAction, RequestSelector

__all__ = [
    "PendingAction",
    "RequestSelector",
]
