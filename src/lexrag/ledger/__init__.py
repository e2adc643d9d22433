"""Token ledger: balances, atomic consumption, purchase credits."""

from lexrag.ledger.token_ledger import (
    INSUFFICIENT_TOKENS,
    ConsumeResult,
    PurchaseResult,
    TokenLedger,
    TokenStats,
)

__all__ = [
    "INSUFFICIENT_TOKENS",
    "ConsumeResult",
    "PurchaseResult",
    "TokenLedger",
    "TokenStats",
]
