# daswos/api/v1/coins.py
from __future__ import annotations

from decimal import ROUND_CEILING, Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Request

from daswos.core.config import Settings
from daswos.core.dependencies import (
    Pagination,
    get_app_settings,
    get_coin_service,
    get_current_user,
    get_current_user_optional,
    get_ledger,
    get_pagination,
    get_payment_provider,
    require_admin,
)
from daswos.core.exceptions import DasWosException, InsufficientFundsError, InvalidArgumentError, StoreUnavailableError
from daswos.core.logging import get_logger
from daswos.core.security import Principal
from daswos.integrations.payments import PaymentProvider
from daswos.schemas.coins import (
    AmountIn,
    BalanceOut,
    BalanceUpdateIn,
    CheckoutOut,
    GiveIn,
    GiveOut,
    PurchaseIn,
    SupplyOut,
    TransactionOut,
    TransactionPageOut,
    TransferIn,
    TransferOut,
    WalletOut,
    WebhookAck,
)
from daswos.services.coin_service import CoinService
from daswos.services.wallet_ledger import WalletLedger
from daswos.utils.money import MAX_USER_ID, parse_amount, to_decimal

# =============================================================================
# ЛОГИРОВАНИЕ
# =============================================================================
logger = get_logger(__name__)

router = APIRouter(prefix="/coins", tags=["coins"])


# =============================================================================
# ХЕЛПЕРЫ
# =============================================================================
def _price_cents(coin_amount: Decimal, settings: Settings) -> int:
    cents = (coin_amount * settings.COIN_PRICE_CENTS).quantize(Decimal(1), rounding=ROUND_CEILING)
    return max(int(cents), 1)


def _check_client_price(expected_cents: int, amount: Optional[Decimal]) -> None:
    """Клиент присылает цену в валюте; она должна совпасть с серверной."""
    if amount is None:
        return
    client_cents = to_decimal(amount, field="amount") * 100
    if client_cents != expected_cents:
        raise InvalidArgumentError(
            "Price does not match the current coin price",
            code="PRICE_MISMATCH",
            extra={"expected": str(Decimal(expected_cents) / 100), "received": str(amount)},
        )


# =============================================================================
# КОШЕЛЁК ТЕКУЩЕГО ПОЛЬЗОВАТЕЛЯ
# =============================================================================
@router.get("/wallet", response_model=WalletOut)
async def get_my_wallet(
    user: Principal = Depends(get_current_user),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.get_or_create_wallet(user.user_id)


@router.get("/balance", response_model=BalanceOut)
async def get_my_balance(
    user: Principal = Depends(get_current_user),
    service: CoinService = Depends(get_coin_service),
):
    return BalanceOut(balance=await service.get_user_balance(user.user_id))


@router.get("/transactions", response_model=TransactionPageOut)
async def get_my_transactions(
    user: Principal = Depends(get_current_user),
    page: Pagination = Depends(get_pagination),
    service: CoinService = Depends(get_coin_service),
):
    result = await service.get_transaction_history(user.user_id, limit=page.limit, offset=page.offset)
    return TransactionPageOut(
        transactions=[TransactionOut.model_validate(tx) for tx in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


@router.post("/transfer", response_model=TransferOut)
async def transfer(
    payload: TransferIn,
    user: Principal = Depends(get_current_user),
    service: CoinService = Depends(get_coin_service),
):
    result = await service.transfer_coins(
        user.user_id,
        payload.to_user_id,
        payload.amount,
        payload.description or "User transfer",
    )
    return TransferOut(
        transaction=TransactionOut.model_validate(result.transaction),
        balance=result.sender.balance,
    )


# =============================================================================
# ЭМИССИЯ / ПОКУПКА
# =============================================================================
@router.get("/supply", response_model=SupplyOut)
async def get_supply(service: CoinService = Depends(get_coin_service)):
    snap = await service.get_total_supply()
    return SupplyOut(total=snap.total, minted=snap.minted, available=snap.available)


@router.post("/purchase", response_model=CheckoutOut)
async def create_purchase(
    payload: PurchaseIn,
    user: Optional[Principal] = Depends(get_current_user_optional),
    service: CoinService = Depends(get_coin_service),
    provider: PaymentProvider = Depends(get_payment_provider),
    settings: Settings = Depends(get_app_settings),
):
    coin_amount = parse_amount(payload.coin_amount, field="coinAmount")
    price_cents = _price_cents(coin_amount, settings)
    _check_client_price(price_cents, payload.amount)

    supply = await service.get_total_supply()
    if supply.available < coin_amount:
        raise InsufficientFundsError(
            "Not enough coins available",
            code="SUPPLY_EXHAUSTED",
            extra={"requested": str(coin_amount), "available": str(supply.available)},
        )

    user_id = user.user_id if user else None
    session = await provider.create_checkout_session(user_id=user_id, coin_amount=coin_amount, price_cents=price_cents)
    logger.info("checkout_created", user_id=user_id, coin_amount=str(coin_amount), session_id=session.id)
    return CheckoutOut(session_id=session.id, url=session.url)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    service: CoinService = Depends(get_coin_service),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    payload = await request.body()
    event = provider.parse_webhook(payload, stripe_signature)
    if not event.is_checkout_completed:
        logger.debug("webhook_ignored", event_type=event.type)
        return WebhookAck()

    try:
        result = await service.purchase_coins(event.user_id, event.coin_amount, event.payment_reference)
    except StoreUnavailableError:
        # 503 → провайдер повторит доставку; покупка идемпотентна
        raise
    except DasWosException as e:
        logger.error(
            "webhook_purchase_failed",
            user_id=event.user_id,
            payment_reference=event.payment_reference,
            code=e.code,
            error=e.message,
        )
        return WebhookAck()

    logger.info(
        "webhook_purchase_applied",
        user_id=event.user_id,
        payment_reference=event.payment_reference,
        replayed=result.replayed,
    )
    return WebhookAck()


# =============================================================================
# АДМИНИСТРИРОВАНИЕ
# =============================================================================
@router.post("/give", response_model=GiveOut)
async def give_coins(
    payload: GiveIn,
    admin: Principal = Depends(require_admin),
    service: CoinService = Depends(get_coin_service),
):
    result = await service.give_coins(payload.user_id, payload.amount, payload.reason or "Giveaway")
    logger.info("admin_giveaway", admin_id=admin.user_id, user_id=payload.user_id)
    return GiveOut(
        transaction=TransactionOut.model_validate(result.transaction),
        wallet=WalletOut.model_validate(result.wallet),
    )


@router.get("/system-wallet", response_model=WalletOut)
async def get_system_wallet(
    _: Principal = Depends(require_admin),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.get_system_wallet()


@router.get("/wallets/{user_id}", response_model=WalletOut)
async def get_wallet(
    user_id: int = Path(..., ge=0, le=MAX_USER_ID),
    _: Principal = Depends(require_admin),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.get_wallet(user_id)


@router.put("/wallets/{user_id}/balance", response_model=WalletOut)
async def set_wallet_balance(
    payload: BalanceUpdateIn,
    user_id: int = Path(..., ge=0, le=MAX_USER_ID),
    admin: Principal = Depends(require_admin),
    service: CoinService = Depends(get_coin_service),
):
    wallet = await service.adjust_balance(user_id, payload.balance, payload.reason)
    logger.info("admin_balance_set", admin_id=admin.user_id, user_id=user_id)
    return wallet


@router.post("/wallets/{user_id}/credit", response_model=WalletOut)
async def credit_wallet(
    payload: AmountIn,
    user_id: int = Path(..., ge=0, le=MAX_USER_ID),
    _: Principal = Depends(require_admin),
    service: CoinService = Depends(get_coin_service),
):
    return await service.credit_wallet(user_id, payload.amount, payload.reason)


@router.post("/wallets/{user_id}/debit", response_model=WalletOut)
async def debit_wallet(
    payload: AmountIn,
    user_id: int = Path(..., ge=0, le=MAX_USER_ID),
    _: Principal = Depends(require_admin),
    service: CoinService = Depends(get_coin_service),
):
    return await service.debit_wallet(user_id, payload.amount, payload.reason)


__all__ = ["router"]
