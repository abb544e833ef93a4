# daswos/models/__init__.py
from daswos.models.base import Base
from daswos.models.supply import CoinSupply
from daswos.models.transaction import CoinTransaction, TransactionType
from daswos.models.wallet import SYSTEM_WALLET_USER_ID, Wallet

__all__ = [
    "Base",
    "Wallet",
    "SYSTEM_WALLET_USER_ID",
    "CoinTransaction",
    "TransactionType",
    "CoinSupply",
]
