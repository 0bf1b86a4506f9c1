"""External integration adapters."""

from .pushinpay import PushinPayClient

__all__ = [
    "PushinPayClient",
]
