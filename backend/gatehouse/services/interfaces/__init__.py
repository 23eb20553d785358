"""
Payment gateway contract and the in-process gateway used by tests and load runs.
"""

from .payment_gateway import GatewayIntent, PaymentGateway
from .mock_gateway import MockGateway

__all__ = ['GatewayIntent', 'PaymentGateway', 'MockGateway']
