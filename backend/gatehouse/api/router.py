"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from gatehouse.api.routes import auth, checkout, events, orders, payments, pricing, queue, reservations, scans

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(events.router)
api_router.include_router(queue.router)
api_router.include_router(reservations.router)
api_router.include_router(pricing.router)
api_router.include_router(checkout.router)
api_router.include_router(payments.router)
api_router.include_router(orders.router)
api_router.include_router(scans.router)
