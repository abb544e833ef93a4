# tests/test_coin_service.py
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from daswos.core.db import Database
from daswos.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
    WalletNotFoundError,
)
from daswos.models import CoinTransaction, TransactionType
from daswos.services.coin_service import CoinService
from daswos.services.wallet_ledger import WalletLedger

# совпадает с COIN_TOTAL_SUPPLY в conftest.settings
TOTAL = Decimal(1_000_000)


async def _tx_count(database: Database) -> int:
    async with database.session() as s:
        return await s.scalar(select(func.count()).select_from(CoinTransaction))


# ======================================================================================
# provisioning / supply
# ======================================================================================
@pytest.mark.asyncio
async def test_supply_is_zero_before_provisioning(service: CoinService):
    snap = await service.get_total_supply()
    assert snap.total == snap.minted == snap.available == Decimal("0")


@pytest.mark.asyncio
async def test_provision_is_idempotent(service: CoinService, ledger: WalletLedger):
    first = await service.provision()
    assert first.supply_created and first.wallet_created
    assert first.supply.total == TOTAL
    assert first.system_wallet.balance == TOTAL

    second = await service.provision(total_supply=5)
    assert not second.supply_created and not second.wallet_created
    assert second.supply.total == TOTAL
    assert (await ledger.get_system_wallet()).balance == TOTAL


# ======================================================================================
# balance / history
# ======================================================================================
@pytest.mark.asyncio
async def test_get_user_balance_creates_wallet(service: CoinService, ledger: WalletLedger):
    assert await service.get_user_balance(12) == Decimal("0")
    assert await ledger.wallet_exists(12)


@pytest.mark.asyncio
async def test_history_is_newest_first_and_paginated(service: CoinService, provisioned):
    for amount in (1, 2, 3):
        await service.give_coins(15, amount)
    await service.transfer_coins(15, 16, "0.50")

    page = await service.get_transaction_history(15, limit=2)
    assert page.total == 4
    assert [tx.transaction_type for tx in page.items] == ["transfer", "giveaway"]
    assert page.items[1].amount == Decimal("3.00")

    rest = await service.get_transaction_history(15, limit=10, offset=2)
    assert [tx.amount for tx in rest.items] == [Decimal("2.00"), Decimal("1.00")]

    other = await service.get_transaction_history(16)
    assert other.total == 1 and other.items[0].to_user_id == 16


@pytest.mark.parametrize("limit,offset", [(0, 0), (101, 0), (10, -1), ("10", 0)])
@pytest.mark.asyncio
async def test_history_rejects_bad_pagination(service: CoinService, limit, offset):
    with pytest.raises(InvalidArgumentError):
        await service.get_transaction_history(1, limit=limit, offset=offset)


# ======================================================================================
# purchase
# ======================================================================================
@pytest.mark.asyncio
async def test_purchase_moves_coins_and_mints(service: CoinService, ledger: WalletLedger, provisioned):
    result = await service.purchase_coins(1, 100, "pi_001")
    assert not result.replayed
    assert result.wallet.balance == Decimal("100.00")
    assert result.transaction.transaction_type == TransactionType.PURCHASE.value
    assert result.transaction.from_user_id == 0
    assert result.transaction.reference_id == "pi_001"

    snap = await service.get_total_supply()
    assert snap.minted == Decimal("100.00")
    assert snap.available == TOTAL - 100
    assert (await ledger.get_system_wallet()).balance == TOTAL - 100


@pytest.mark.asyncio
async def test_purchase_replay_is_idempotent(service: CoinService, database: Database, provisioned):
    first = await service.purchase_coins(2, 10, "pi_replay")
    again = await service.purchase_coins(2, 10, "pi_replay")
    assert again.replayed
    assert again.transaction.transaction_id == first.transaction.transaction_id
    assert await service.get_user_balance(2) == Decimal("10.00")
    assert (await service.get_total_supply()).minted == Decimal("10.00")
    assert await _tx_count(database) == 1


@pytest.mark.asyncio
async def test_concurrent_purchase_deliveries_apply_once(service: CoinService, database: Database, provisioned):
    results = await asyncio.gather(*(service.purchase_coins(3, 25, "pi_race") for _ in range(3)))
    assert sum(1 for r in results if not r.replayed) == 1
    assert await service.get_user_balance(3) == Decimal("25.00")
    assert await _tx_count(database) == 1


@pytest.mark.asyncio
async def test_purchase_reference_reused_for_other_user_conflicts(service: CoinService, provisioned):
    await service.purchase_coins(4, 10, "pi_shared")
    with pytest.raises(ConflictError) as ei:
        await service.purchase_coins(5, 10, "pi_shared")
    assert ei.value.code == "REFERENCE_CONFLICT"


@pytest.mark.asyncio
async def test_purchase_beyond_supply_fails(service: CoinService, database: Database, provisioned):
    with pytest.raises(InsufficientFundsError) as ei:
        await service.purchase_coins(6, TOTAL + 1, "pi_big")
    assert ei.value.code == "SUPPLY_EXHAUSTED"
    assert await _tx_count(database) == 0


@pytest.mark.asyncio
async def test_purchase_without_provisioning_fails(service: CoinService):
    with pytest.raises(NotFoundError):
        await service.purchase_coins(6, 1, "pi_unprovisioned")


@pytest.mark.asyncio
async def test_purchase_requires_reference(service: CoinService, provisioned):
    with pytest.raises(InvalidArgumentError):
        await service.purchase_coins(6, 1, "   ")


@pytest.mark.asyncio
async def test_coins_cannot_be_issued_to_system_wallet(service: CoinService, provisioned):
    with pytest.raises(InvalidArgumentError):
        await service.purchase_coins(0, 1, "pi_sys")
    with pytest.raises(InvalidArgumentError):
        await service.give_coins(0, 1)


# ======================================================================================
# giveaway / transfer
# ======================================================================================
@pytest.mark.asyncio
async def test_give_coins_does_not_mint(service: CoinService, ledger: WalletLedger, provisioned):
    result = await service.give_coins(7, "2.50", reason="Welcome bonus")
    assert result.wallet.balance == Decimal("2.50")
    assert result.transaction.description == "Welcome bonus"
    assert (await service.get_total_supply()).minted == Decimal("0")
    assert (await ledger.get_system_wallet()).balance == TOTAL - Decimal("2.50")


@pytest.mark.asyncio
async def test_give_coins_fails_when_system_wallet_is_short(service: CoinService, ledger: WalletLedger, provisioned):
    await ledger.update_balance(0, 1)
    with pytest.raises(InsufficientFundsError) as ei:
        await service.give_coins(8, 2)
    assert ei.value.message == "Not enough coins available"
    assert await service.get_user_balance(8) == Decimal("0")


@pytest.mark.asyncio
async def test_transfer_moves_balance(service: CoinService, provisioned):
    await service.give_coins(10, 20)
    result = await service.transfer_coins(10, 11, "7.5", description="Thanks")
    assert result.sender.balance == Decimal("12.50")
    assert result.recipient.balance == Decimal("7.50")
    assert result.transaction.transaction_type == "transfer"
    assert result.transaction.description == "Thanks"


@pytest.mark.asyncio
async def test_transfer_insufficient_funds_changes_nothing(service: CoinService, database: Database, provisioned):
    await service.give_coins(12, 1)
    before = await _tx_count(database)
    with pytest.raises(InsufficientFundsError):
        await service.transfer_coins(12, 13, 2)
    assert await service.get_user_balance(12) == Decimal("1.00")
    assert await _tx_count(database) == before


@pytest.mark.asyncio
async def test_transfer_from_unknown_sender(service: CoinService):
    with pytest.raises(WalletNotFoundError) as ei:
        await service.transfer_coins(14, 15, 1)
    assert ei.value.message == "Sender wallet not found"


@pytest.mark.asyncio
async def test_transfer_to_self_is_rejected(service: CoinService):
    with pytest.raises(InvalidArgumentError):
        await service.transfer_coins(14, 14, 1)


# ======================================================================================
# admin adjustments
# ======================================================================================
@pytest.mark.asyncio
async def test_adjust_balance_records_difference(service: CoinService, provisioned):
    await service.give_coins(17, 10)
    wallet = await service.adjust_balance(17, 4, reason="chargeback")
    assert wallet.balance == Decimal("4.00")

    page = await service.get_transaction_history(17, limit=1)
    tx = page.items[0]
    assert tx.transaction_type == TransactionType.ADJUSTMENT.value
    assert tx.amount == Decimal("6.00")
    assert tx.from_user_id == 17 and tx.to_user_id == 0
    assert tx.description == "chargeback"


@pytest.mark.asyncio
async def test_adjust_balance_unchanged_records_nothing(service: CoinService, ledger: WalletLedger, database: Database):
    await ledger.get_or_create_wallet(18)
    await service.adjust_balance(18, 0)
    assert await _tx_count(database) == 0


@pytest.mark.asyncio
async def test_adjust_balance_missing_wallet(service: CoinService):
    with pytest.raises(WalletNotFoundError):
        await service.adjust_balance(19, 5)


@pytest.mark.asyncio
async def test_admin_credit_and_debit(service: CoinService, ledger: WalletLedger):
    await ledger.get_or_create_wallet(21)
    assert (await service.credit_wallet(21, 5)).balance == Decimal("5.00")
    assert (await service.debit_wallet(21, 2, reason="fee")).balance == Decimal("3.00")
    page = await service.get_transaction_history(21)
    assert [tx.description for tx in page.items] == ["fee", "Admin credit"]


@pytest.mark.asyncio
async def test_admin_paths_leave_system_wallet_alone(service: CoinService, ledger: WalletLedger, database: Database, provisioned):
    for call in (
        service.credit_wallet(0, 500),
        service.debit_wallet(0, 500),
        service.adjust_balance(0, 5),
    ):
        with pytest.raises(InvalidArgumentError) as ei:
            await call
        assert ei.value.code == "SYSTEM_WALLET_RESERVED"

    assert (await ledger.get_system_wallet()).balance == TOTAL
    assert (await service.get_total_supply()).available == TOTAL
    assert await _tx_count(database) == 0
