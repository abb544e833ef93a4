# daswos/services/wallet_ledger.py
"""
WalletLedger: single source of truth for per-user coin balances.

- One row per user_id (primary key); wallets are created lazily by
  get_or_create_wallet() with an atomic insert-if-absent.
- update_balance() is an absolute set (last writer wins) and never creates.
- credit()/debit() are single-statement atomic increments, safe for concurrent use.
- The system wallet (user_id 0) is never auto-provisioned by reads.

Every operation accepts an optional caller-owned AsyncSession so the coin service
can compose several calls into one transaction. Without it each call runs in its
own short transaction on the injected Database.

No retries happen here; StoreUnavailableError is raised for the caller to decide.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Iterator, Optional, Tuple

from sqlalchemy import exists, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from daswos.core import metrics
from daswos.core.db import Database, store_errors
from daswos.core.exceptions import DasWosException, InsufficientFundsError, WalletNotFoundError
from daswos.core.logging import get_logger
from daswos.models.base import utcnow_tz
from daswos.models.wallet import SYSTEM_WALLET_USER_ID, Wallet
from daswos.utils.money import parse_amount, parse_balance, parse_user_id

logger = get_logger(__name__)

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class WalletLedger:
    def __init__(self, database: Database, *, system_user_id: int = SYSTEM_WALLET_USER_ID) -> None:
        self._db = database
        self.system_user_id = parse_user_id(system_user_id, field="system_user_id")

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _scope(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.transaction() as s:
            yield s

    @contextmanager
    def _operation(self, name: str, **context: Any) -> Iterator[None]:
        try:
            with store_errors(name, **context):
                yield
        except DasWosException as e:
            metrics.ledger_operations_total.labels(operation=name, outcome=e.code.lower()).inc()
            raise
        metrics.ledger_operations_total.labels(operation=name, outcome="ok").inc()

    @staticmethod
    async def _load(session: AsyncSession, user_id: int) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
        return await session.scalar(stmt)

    async def _insert_if_absent(self, session: AsyncSession, user_id: int, balance: Decimal) -> bool:
        """INSERT … ON CONFLICT DO NOTHING; returns True when this call created the row."""
        values = {"user_id": user_id, "balance": balance, "last_updated": utcnow_tz()}
        insert_fn = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if insert_fn is not None:
            stmt = insert_fn(Wallet).values(**values).on_conflict_do_nothing(index_elements=[Wallet.user_id])
            result = await session.execute(stmt)
            return result.rowcount == 1

        # Other dialects: unique PK + savepoint, re-read on conflict
        try:
            async with session.begin_nested():
                session.add(Wallet(**values))
            return True
        except IntegrityError:
            return False

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def get_or_create_wallet(self, user_id: int, *, session: Optional[AsyncSession] = None) -> Wallet:
        """
        Return the wallet for ``user_id``, creating it with balance 0 if absent.

        Safe under concurrent first access: exactly one row survives, and every
        caller gets that row. The system wallet is never created here.
        """
        uid = parse_user_id(user_id)
        with self._operation("get_or_create_wallet", user_id=uid):
            async with self._scope(session) as s:
                wallet = await self._load(s, uid)
                if wallet is not None:
                    return wallet
                if uid == self.system_user_id:
                    raise WalletNotFoundError(uid, "System wallet is not provisioned")
                created = await self._insert_if_absent(s, uid, Decimal("0"))
                wallet = await self._load(s, uid)
        if wallet is None:  # pragma: no cover
            raise WalletNotFoundError(uid)
        if created:
            logger.info("wallet_created", user_id=uid)
        return wallet

    async def get_wallet(self, user_id: int, *, session: Optional[AsyncSession] = None) -> Wallet:
        uid = parse_user_id(user_id)
        with self._operation("get_wallet", user_id=uid):
            async with self._scope(session) as s:
                wallet = await self._load(s, uid)
            if wallet is None:
                raise WalletNotFoundError(uid)
        return wallet

    async def get_system_wallet(self, *, session: Optional[AsyncSession] = None) -> Wallet:
        """The platform/AI counterparty wallet. NotFound when it was never provisioned."""
        uid = self.system_user_id
        with self._operation("get_system_wallet", user_id=uid):
            async with self._scope(session) as s:
                wallet = await self._load(s, uid)
            if wallet is None:
                raise WalletNotFoundError(uid, "System wallet is not provisioned")
        return wallet

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    async def update_balance(
        self,
        user_id: int,
        new_balance: Any,
        *,
        session: Optional[AsyncSession] = None,
    ) -> Wallet:
        """
        Set the balance to ``new_balance`` and refresh last_updated.

        Absolute set: concurrent calls resolve last-writer-wins. Does not create;
        a missing wallet raises WalletNotFoundError without writing anything.
        """
        uid = parse_user_id(user_id)
        balance = parse_balance(new_balance)
        with self._operation("update_balance", user_id=uid):
            async with self._scope(session) as s:
                stmt = (
                    update(Wallet)
                    .where(Wallet.user_id == uid)
                    .values(balance=balance, last_updated=utcnow_tz())
                    .execution_options(synchronize_session=False)
                )
                result = await s.execute(stmt)
                if result.rowcount == 0:
                    raise WalletNotFoundError(uid)
                wallet = await self._load(s, uid)
        logger.info("wallet_balance_set", user_id=uid, balance=str(balance))
        return wallet

    async def credit(self, user_id: int, amount: Any, *, session: Optional[AsyncSession] = None) -> Wallet:
        """Atomically add ``amount`` (balance = balance + amount)."""
        uid = parse_user_id(user_id)
        amt = parse_amount(amount)
        with self._operation("credit", user_id=uid):
            async with self._scope(session) as s:
                stmt = (
                    update(Wallet)
                    .where(Wallet.user_id == uid)
                    .values(balance=Wallet.balance + amt, last_updated=utcnow_tz())
                    .execution_options(synchronize_session=False)
                )
                result = await s.execute(stmt)
                if result.rowcount == 0:
                    raise WalletNotFoundError(uid)
                wallet = await self._load(s, uid)
        logger.info("wallet_credited", user_id=uid, amount=str(amt), balance=str(wallet.balance))
        return wallet

    async def debit(self, user_id: int, amount: Any, *, session: Optional[AsyncSession] = None) -> Wallet:
        """
        Atomically subtract ``amount``; the balance guard lives in the UPDATE's
        WHERE clause so two concurrent debits can never overdraw the wallet.
        """
        uid = parse_user_id(user_id)
        amt = parse_amount(amount)
        with self._operation("debit", user_id=uid):
            async with self._scope(session) as s:
                stmt = (
                    update(Wallet)
                    .where(Wallet.user_id == uid, Wallet.balance >= amt)
                    .values(balance=Wallet.balance - amt, last_updated=utcnow_tz())
                    .execution_options(synchronize_session=False)
                )
                result = await s.execute(stmt)
                if result.rowcount == 0:
                    current = await s.scalar(select(Wallet.balance).where(Wallet.user_id == uid))
                    if current is None:
                        raise WalletNotFoundError(uid)
                    raise InsufficientFundsError(
                        "Insufficient balance",
                        extra={"user_id": uid, "requested": str(amt), "balance": str(current)},
                    )
                wallet = await self._load(s, uid)
        logger.info("wallet_debited", user_id=uid, amount=str(amt), balance=str(wallet.balance))
        return wallet

    async def wallet_exists(self, user_id: int, *, session: Optional[AsyncSession] = None) -> bool:
        uid = parse_user_id(user_id)
        with self._operation("wallet_exists", user_id=uid):
            async with self._scope(session) as s:
                return bool(await s.scalar(select(exists().where(Wallet.user_id == uid))))

    async def provision_system_wallet(
        self,
        initial_balance: Any,
        *,
        session: Optional[AsyncSession] = None,
    ) -> Tuple[Wallet, bool]:
        """
        Create the system wallet holding ``initial_balance`` if it does not exist.

        Idempotent: an existing system wallet is returned untouched.
        """
        uid = self.system_user_id
        balance = parse_balance(initial_balance, field="initial_balance")
        with self._operation("provision_system_wallet", user_id=uid):
            async with self._scope(session) as s:
                created = await self._insert_if_absent(s, uid, balance)
                wallet = await self._load(s, uid)
        if created:
            logger.info("system_wallet_provisioned", user_id=uid, balance=str(balance))
        return wallet, created


__all__ = ["WalletLedger"]
