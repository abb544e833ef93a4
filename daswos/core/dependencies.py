# daswos/core/dependencies.py
from __future__ import annotations

"""
FastAPI dependencies:
- Settings / ledger / coin service / providers pulled from app.state (set up in lifespan)
- Auth (required/optional) from a Bearer JWT, admin check
- Pagination for transaction history
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from daswos.core.config import Settings
from daswos.core.exceptions import AuthenticationError, AuthorizationError
from daswos.core.logging import bind_user
from daswos.core.security import Principal, principal_from_token
from daswos.integrations.payments import PaymentProvider
from daswos.integrations.recommendations import RecommendationProvider
from daswos.services.coin_service import MAX_PAGE_SIZE, CoinService
from daswos.services.wallet_ledger import WalletLedger

_bearer = HTTPBearer(auto_error=False)


# ------------------------------------------------------------------------------
# app.state accessors
# ------------------------------------------------------------------------------
def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> WalletLedger:
    return request.app.state.ledger


def get_coin_service(request: Request) -> CoinService:
    return request.app.state.coin_service


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_recommendation_provider(request: Request) -> RecommendationProvider:
    return request.app.state.recommendation_provider


# ------------------------------------------------------------------------------
# Auth
# ------------------------------------------------------------------------------
async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    settings: Settings = Depends(get_app_settings),
) -> Optional[Principal]:
    if credentials is None or not credentials.credentials:
        return None
    principal = principal_from_token(settings, credentials.credentials)
    bind_user(principal.user_id)
    return principal


async def get_current_user(principal: Optional[Principal] = Depends(get_current_user_optional)) -> Principal:
    if principal is None:
        raise AuthenticationError("Not authenticated")
    return principal


async def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    if not principal.is_admin:
        raise AuthorizationError("Admin privileges required", extra={"user_id": principal.user_id})
    return principal


# ------------------------------------------------------------------------------
# Pagination
# ------------------------------------------------------------------------------
@dataclass
class Pagination:
    limit: int
    offset: int


def get_pagination(
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
) -> Pagination:
    return Pagination(limit=limit, offset=offset)


__all__ = [
    "get_app_settings",
    "get_ledger",
    "get_coin_service",
    "get_payment_provider",
    "get_recommendation_provider",
    "get_current_user_optional",
    "get_current_user",
    "require_admin",
    "Pagination",
    "get_pagination",
]
