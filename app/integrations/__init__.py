"""External integration adapters."""

from .razorpay import RazorpayClient, get_payment_gateway

__all__ = [
    "RazorpayClient",
    "get_payment_gateway",
]
