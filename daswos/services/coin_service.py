# daswos/services/coin_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from daswos.core import metrics
from daswos.core.db import Database, store_errors
from daswos.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
    WalletNotFoundError,
)
from daswos.core.logging import get_logger
from daswos.models.supply import CoinSupply
from daswos.models.transaction import CoinTransaction, TransactionType
from daswos.models.wallet import Wallet
from daswos.services.wallet_ledger import WalletLedger
from daswos.utils.money import parse_amount, parse_balance, parse_user_id

log = get_logger(__name__)

# Единственная строка эмиссии
SUPPLY_ROW_ID = 1
MAX_PAGE_SIZE = 100


# =========================
# Результаты операций
# =========================
@dataclass
class SupplySnapshot:
    total: Decimal = Decimal("0")
    minted: Decimal = Decimal("0")

    @property
    def available(self) -> Decimal:
        return self.total - self.minted


@dataclass
class TransferResult:
    transaction: CoinTransaction
    sender: Wallet
    recipient: Wallet


@dataclass
class PurchaseResult:
    transaction: CoinTransaction
    wallet: Optional[Wallet]
    replayed: bool = False


@dataclass
class TransactionPage:
    items: list[CoinTransaction] = field(default_factory=list)
    total: int = 0
    limit: int = 10
    offset: int = 0


@dataclass
class ProvisionResult:
    supply: SupplySnapshot
    system_wallet: Wallet
    supply_created: bool
    wallet_created: bool


def _clean_text(value: Optional[str], *, field_name: str, max_len: int, required: bool = False) -> Optional[str]:
    if value is None:
        if required:
            raise InvalidArgumentError(f"{field_name} is required", extra={"field": field_name})
        return None
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{field_name} must be a string", extra={"field": field_name})
    v = value.strip()
    if not v:
        if required:
            raise InvalidArgumentError(f"{field_name} is required", extra={"field": field_name})
        return None
    if len(v) > max_len:
        raise InvalidArgumentError(f"{field_name} is too long (max {max_len})", extra={"field": field_name})
    return v


# =========================
# Сервис монет
# =========================
class CoinService:
    """
    Экономика DasWos Coins поверх WalletLedger:
      - покупка (системный кошелёк → пользователь, учёт minted, идемпотентно по платежу)
      - раздача (giveaway) и переводы между пользователями
      - админская корректировка баланса
      - эмиссия и история транзакций

    Каждая операция: одна транзакция БД; вызовы ledger получают ту же сессию.
    """

    def __init__(self, database: Database, ledger: WalletLedger, *, total_supply: Any = 1_000_000_000) -> None:
        self._db = database
        self._ledger = ledger
        self._default_total_supply = parse_balance(total_supply, field="total_supply")

    @property
    def system_user_id(self) -> int:
        return self._ledger.system_user_id

    # ---------- helpers ----------
    @staticmethod
    async def _lock_wallets(s: AsyncSession, *user_ids: int) -> None:
        # единый порядок блокировок → без дедлоков между встречными переводами (SQLite игнорирует FOR UPDATE)
        ids = sorted(set(user_ids))
        await s.execute(
            select(Wallet.user_id).where(Wallet.user_id.in_(ids)).order_by(Wallet.user_id).with_for_update()
        )

    @staticmethod
    def _record(
        s: AsyncSession,
        *,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        tx_type: TransactionType,
        description: Optional[str],
        reference_id: Optional[str] = None,
    ) -> CoinTransaction:
        tx = CoinTransaction(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            transaction_type=tx_type.value,
            description=description,
            reference_id=reference_id,
        )
        s.add(tx)
        metrics.coin_movements_total.labels(transaction_type=tx_type.value).inc()
        return tx

    def _reject_system_wallet(self, user_id: int, message: str) -> None:
        # баланс системного кошелька = невыпущенная часть эмиссии
        if user_id == self.system_user_id:
            raise InvalidArgumentError(message, code="SYSTEM_WALLET_RESERVED", extra={"field": "user_id"})

    async def _debit_system(self, s: AsyncSession, amount: Decimal) -> Wallet:
        try:
            return await self._ledger.debit(self.system_user_id, amount, session=s)
        except InsufficientFundsError as e:
            raise InsufficientFundsError("Not enough coins available", extra=e.extra) from e

    async def _reserve_supply(self, s: AsyncSession, amount: Decimal) -> None:
        stmt = (
            update(CoinSupply)
            .where(CoinSupply.id == SUPPLY_ROW_ID, CoinSupply.minted_amount + amount <= CoinSupply.total_amount)
            .values(minted_amount=CoinSupply.minted_amount + amount)
            .execution_options(synchronize_session=False)
        )
        result = await s.execute(stmt)
        if result.rowcount == 0:
            row = await s.get(CoinSupply, SUPPLY_ROW_ID)
            if row is None:
                raise NotFoundError("Coin supply is not provisioned", code="SUPPLY_NOT_PROVISIONED")
            raise InsufficientFundsError(
                "Not enough coins available",
                code="SUPPLY_EXHAUSTED",
                extra={"requested": str(amount), "available": str(row.available)},
            )

    # ---------- чтение ----------
    async def get_user_balance(self, user_id: int) -> Decimal:
        wallet = await self._ledger.get_or_create_wallet(user_id)
        return wallet.balance

    async def get_total_supply(self) -> SupplySnapshot:
        with store_errors("get_total_supply"):
            async with self._db.session() as s:
                row = await s.get(CoinSupply, SUPPLY_ROW_ID)
        if row is None:
            return SupplySnapshot()
        return SupplySnapshot(total=row.total_amount, minted=row.minted_amount)

    async def get_transaction_history(self, user_id: int, limit: int = 10, offset: int = 0) -> TransactionPage:
        uid = parse_user_id(user_id)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidArgumentError(f"limit must be between 1 and {MAX_PAGE_SIZE}", extra={"field": "limit"})
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidArgumentError("offset must not be negative", extra={"field": "offset"})

        involves_user = or_(CoinTransaction.from_user_id == uid, CoinTransaction.to_user_id == uid)
        with store_errors("get_transaction_history", user_id=uid):
            async with self._db.session() as s:
                total = await s.scalar(select(func.count()).select_from(CoinTransaction).where(involves_user))
                rows = await s.scalars(
                    select(CoinTransaction)
                    .where(involves_user)
                    .order_by(CoinTransaction.timestamp.desc(), CoinTransaction.transaction_id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                items = list(rows)
        return TransactionPage(items=items, total=int(total or 0), limit=limit, offset=offset)

    # ---------- движения монет ----------
    async def purchase_coins(self, user_id: int, amount: Any, payment_reference: str) -> PurchaseResult:
        """
        Credit purchased coins from the system wallet.

        Idempotent on ``payment_reference``: a replayed payment returns the
        original transaction and moves nothing.
        """
        uid = parse_user_id(user_id)
        amt = parse_amount(amount)
        ref = _clean_text(payment_reference, field_name="payment_reference", max_len=255, required=True)
        self._reject_system_wallet(uid, "Coins cannot be issued to the system wallet")

        try:
            with store_errors("purchase_coins", user_id=uid):
                async with self._db.transaction() as s:
                    existing = await self._find_by_reference(s, ref)
                    if existing is not None:
                        return self._replayed(existing, uid, amt)

                    await self._ledger.get_or_create_wallet(uid, session=s)
                    await self._ledger.get_system_wallet(session=s)
                    await self._lock_wallets(s, self.system_user_id, uid)
                    await self._reserve_supply(s, amt)
                    await self._debit_system(s, amt)
                    wallet = await self._ledger.credit(uid, amt, session=s)
                    tx = self._record(
                        s,
                        from_user_id=self.system_user_id,
                        to_user_id=uid,
                        amount=amt,
                        tx_type=TransactionType.PURCHASE,
                        description=f"Purchased {amt} DasWos Coins",
                        reference_id=ref,
                    )
                    await s.flush()
        except IntegrityError:
            # параллельная доставка того же платежа успела записать транзакцию
            async with self._db.session() as s:
                existing = await self._find_by_reference(s, ref)
            if existing is None:
                raise
            return self._replayed(existing, uid, amt)

        log.info("coins_purchased", user_id=uid, amount=str(amt), payment_reference=ref)
        return PurchaseResult(transaction=tx, wallet=wallet)

    @staticmethod
    async def _find_by_reference(s: AsyncSession, ref: str) -> Optional[CoinTransaction]:
        return await s.scalar(select(CoinTransaction).where(CoinTransaction.reference_id == ref))

    @staticmethod
    def _replayed(existing: CoinTransaction, user_id: int, amount: Decimal) -> PurchaseResult:
        if (
            existing.transaction_type != TransactionType.PURCHASE.value
            or existing.to_user_id != user_id
            or existing.amount != amount
        ):
            raise ConflictError(
                "Payment reference was already used for a different purchase",
                code="REFERENCE_CONFLICT",
                extra={"reference_id": existing.reference_id},
            )
        log.info("purchase_replayed", user_id=user_id, payment_reference=existing.reference_id)
        return PurchaseResult(transaction=existing, wallet=None, replayed=True)

    async def give_coins(self, user_id: int, amount: Any, reason: str = "Giveaway") -> PurchaseResult:
        uid = parse_user_id(user_id)
        amt = parse_amount(amount)
        description = _clean_text(reason, field_name="reason", max_len=1000) or "Giveaway"
        self._reject_system_wallet(uid, "Coins cannot be issued to the system wallet")

        with store_errors("give_coins", user_id=uid):
            async with self._db.transaction() as s:
                await self._ledger.get_or_create_wallet(uid, session=s)
                await self._ledger.get_system_wallet(session=s)
                await self._lock_wallets(s, self.system_user_id, uid)
                await self._debit_system(s, amt)
                wallet = await self._ledger.credit(uid, amt, session=s)
                tx = self._record(
                    s,
                    from_user_id=self.system_user_id,
                    to_user_id=uid,
                    amount=amt,
                    tx_type=TransactionType.GIVEAWAY,
                    description=description,
                )
                await s.flush()

        log.info("coins_given", user_id=uid, amount=str(amt), reason=description)
        return PurchaseResult(transaction=tx, wallet=wallet)

    async def transfer_coins(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Any,
        description: str = "User transfer",
    ) -> TransferResult:
        sender_id = parse_user_id(from_user_id, field="from_user_id")
        recipient_id = parse_user_id(to_user_id, field="to_user_id")
        amt = parse_amount(amount)
        text = _clean_text(description, field_name="description", max_len=1000) or "User transfer"
        if sender_id == recipient_id:
            raise InvalidArgumentError("Cannot transfer coins to yourself", extra={"field": "to_user_id"})

        with store_errors("transfer_coins", user_id=sender_id):
            async with self._db.transaction() as s:
                try:
                    await self._ledger.get_wallet(sender_id, session=s)
                except WalletNotFoundError as e:
                    raise WalletNotFoundError(sender_id, "Sender wallet not found") from e
                await self._ledger.get_or_create_wallet(recipient_id, session=s)
                await self._lock_wallets(s, sender_id, recipient_id)
                sender = await self._ledger.debit(sender_id, amt, session=s)
                recipient = await self._ledger.credit(recipient_id, amt, session=s)
                tx = self._record(
                    s,
                    from_user_id=sender_id,
                    to_user_id=recipient_id,
                    amount=amt,
                    tx_type=TransactionType.TRANSFER,
                    description=text,
                )
                await s.flush()

        log.info("coins_transferred", from_user_id=sender_id, to_user_id=recipient_id, amount=str(amt))
        return TransferResult(transaction=tx, sender=sender, recipient=recipient)

    # ---------- админские корректировки ----------
    async def adjust_balance(self, user_id: int, new_balance: Any, reason: Optional[str] = None) -> Wallet:
        """
        Absolute set through WalletLedger.update_balance, journaled as an
        ``adjustment`` for the difference. The system id is recorded as the
        counterparty; its own balance is not touched.
        """
        uid = parse_user_id(user_id)
        self._reject_system_wallet(uid, "The system wallet cannot be adjusted directly")
        balance = parse_balance(new_balance)
        note = _clean_text(reason, field_name="reason", max_len=1000)

        with store_errors("adjust_balance", user_id=uid):
            async with self._db.transaction() as s:
                before = (await self._ledger.get_wallet(uid, session=s)).balance
                wallet = await self._ledger.update_balance(uid, balance, session=s)
                diff = balance - before
                if diff:
                    self._record(
                        s,
                        from_user_id=self.system_user_id if diff > 0 else uid,
                        to_user_id=uid if diff > 0 else self.system_user_id,
                        amount=abs(diff),
                        tx_type=TransactionType.ADJUSTMENT,
                        description=note or f"Balance set from {before} to {balance}",
                    )
        log.info("wallet_adjusted", user_id=uid, before=str(before), after=str(balance))
        return wallet

    async def credit_wallet(self, user_id: int, amount: Any, reason: Optional[str] = None) -> Wallet:
        uid = parse_user_id(user_id)
        self._reject_system_wallet(uid, "The system wallet cannot be credited directly")
        amt = parse_amount(amount)
        note = _clean_text(reason, field_name="reason", max_len=1000) or "Admin credit"
        with store_errors("credit_wallet", user_id=uid):
            async with self._db.transaction() as s:
                wallet = await self._ledger.credit(uid, amt, session=s)
                self._record(
                    s,
                    from_user_id=self.system_user_id,
                    to_user_id=uid,
                    amount=amt,
                    tx_type=TransactionType.ADJUSTMENT,
                    description=note,
                )
        return wallet

    async def debit_wallet(self, user_id: int, amount: Any, reason: Optional[str] = None) -> Wallet:
        uid = parse_user_id(user_id)
        self._reject_system_wallet(uid, "The system wallet cannot be debited directly")
        amt = parse_amount(amount)
        note = _clean_text(reason, field_name="reason", max_len=1000) or "Admin debit"
        with store_errors("debit_wallet", user_id=uid):
            async with self._db.transaction() as s:
                wallet = await self._ledger.debit(uid, amt, session=s)
                self._record(
                    s,
                    from_user_id=uid,
                    to_user_id=self.system_user_id,
                    amount=amt,
                    tx_type=TransactionType.ADJUSTMENT,
                    description=note,
                )
        return wallet

    # ---------- provisioning ----------
    async def provision(self, total_supply: Any = None) -> ProvisionResult:
        """
        Idempotent setup: the supply row and the system wallet holding the
        unminted part of the supply. Existing rows are left untouched.
        """
        total = parse_balance(total_supply, field="total_supply") if total_supply is not None else self._default_total_supply

        with store_errors("provision"):
            async with self._db.transaction() as s:
                values = {"id": SUPPLY_ROW_ID, "total_amount": total, "minted_amount": Decimal("0")}
                dialect = s.get_bind().dialect.name
                if dialect == "postgresql":
                    res = await s.execute(pg_insert(CoinSupply).values(**values).on_conflict_do_nothing(index_elements=[CoinSupply.id]))
                    supply_created = res.rowcount == 1
                elif dialect == "sqlite":
                    res = await s.execute(sqlite_insert(CoinSupply).values(**values).on_conflict_do_nothing(index_elements=[CoinSupply.id]))
                    supply_created = res.rowcount == 1
                else:
                    supply_created = await s.get(CoinSupply, SUPPLY_ROW_ID) is None
                    if supply_created:
                        s.add(CoinSupply(**values))
                        await s.flush()
                row = await s.get(CoinSupply, SUPPLY_ROW_ID, populate_existing=True)
                system_wallet, wallet_created = await self._ledger.provision_system_wallet(row.available, session=s)
                snapshot = SupplySnapshot(total=row.total_amount, minted=row.minted_amount)

        log.info(
            "coins_provisioned",
            total=str(snapshot.total),
            minted=str(snapshot.minted),
            supply_created=supply_created,
            wallet_created=wallet_created,
        )
        return ProvisionResult(
            supply=snapshot,
            system_wallet=system_wallet,
            supply_created=supply_created,
            wallet_created=wallet_created,
        )


__all__ = [
    "CoinService",
    "SupplySnapshot",
    "TransferResult",
    "PurchaseResult",
    "TransactionPage",
    "ProvisionResult",
    "SUPPLY_ROW_ID",
]
