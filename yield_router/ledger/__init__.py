from .receipts import Receipt, ReceiptRegistry
from .shares import SharesToken
from .tokens import TokenLedger

__all__ = ["TokenLedger", "SharesToken", "Receipt", "ReceiptRegistry"]
