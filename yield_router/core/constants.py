"""Protocol-wide constants."""

from decimal import Decimal

# Well-known ledger accounts owned by the engine itself
ROUTER_ACCOUNT = "strategy_router"
BATCH_ACCOUNT = "batch"
BATCH_OUT_ACCOUNT = "batch_out"

MAX_BPS = 10_000

# Precision of USD values and of the shares ledger
USD_DECIMALS = 18
SHARE_DECIMALS = 18
PRICE_DECIMALS = 8

# Deposit/withdrawal fee ceilings
MAX_FEE_IN_USD_THRESHOLD = Decimal("50")
MAX_FEE_BPS_THRESHOLD = 300

# Initial price of one share in USD
INITIAL_PRICE_PER_SHARE = Decimal("1")
