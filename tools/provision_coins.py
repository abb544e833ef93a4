"""
Создаёт строку эмиссии и системный кошелёк (идемпотентно).

    python tools/provision_coins.py            # COIN_TOTAL_SUPPLY из настроек
    python tools/provision_coins.py 5000000    # явный объём эмиссии
"""

import argparse
import asyncio

from daswos.core.config import get_settings
from daswos.core.db import Database
from daswos.core.logging import setup_logging
from daswos.services.coin_service import CoinService
from daswos.services.wallet_ledger import WalletLedger


def print_header(title: str):
    print("\n" + "=" * 20 + f" {title} " + "=" * 20)


async def provision(total_supply=None) -> None:
    settings = get_settings()
    setup_logging(settings)
    db = Database.from_settings(settings)
    try:
        await db.create_all()
        ledger = WalletLedger(db, system_user_id=settings.SYSTEM_WALLET_USER_ID)
        service = CoinService(db, ledger, total_supply=settings.COIN_TOTAL_SUPPLY)
        result = await service.provision(total_supply)
    finally:
        await db.dispose()

    print_header("COIN SUPPLY")
    print("total:    ", result.supply.total, "(created)" if result.supply_created else "(existing)")
    print("minted:   ", result.supply.minted)
    print("available:", result.supply.available)

    print_header("SYSTEM WALLET")
    print("user_id:", result.system_wallet.user_id, "(created)" if result.wallet_created else "(existing)")
    print("balance:", result.system_wallet.balance)


def main():
    parser = argparse.ArgumentParser(description="Provision DasWos coin supply and the system wallet")
    parser.add_argument("total_supply", nargs="?", default=None, help="total coin supply (default: COIN_TOTAL_SUPPLY)")
    args = parser.parse_args()
    asyncio.run(provision(args.total_supply))


if __name__ == "__main__":
    main()
