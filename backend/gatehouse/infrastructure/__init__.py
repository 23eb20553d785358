"""
Adapters that talk to real third-party services.
"""

from .razorpay_gateway import RazorpayGateway

__all__ = ['RazorpayGateway']
