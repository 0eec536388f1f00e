"""API routers for the settlement service."""
from fastapi import APIRouter

from . import disputes, escrow, events, health, transactions, transfers, users, wallets


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(wallets.router)
    api_router.include_router(transactions.router)
    api_router.include_router(transfers.router)
    api_router.include_router(escrow.router)
    api_router.include_router(disputes.router)
    api_router.include_router(events.router)
    return api_router
