"""
System assembly.

Builds and wires every engine component from an ``AppConfig``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from .access import AccessControl, Role
from .config.models import AppConfig
from .core import TransactionManager, configure_logging, get_logger
from .core.constants import BATCH_ACCOUNT, BATCH_OUT_ACCOUNT, ROUTER_ACCOUNT
from .core.exceptions import ConfigurationError
from .core.utils import now_timestamp
from .engine import Batch, BatchOut, StrategyRegistry, StrategyRouter
from .exchange import Exchange, ExchangePlugin
from .keeper import UpkeepKeeper
from .ledger import ReceiptRegistry, SharesToken, TokenLedger
from .oracle import ManualPriceOracle
from .storage import CycleRepository
from .strategies import IdleStrategy

logger = get_logger(__name__)

ENGINE_ACCOUNTS = (ROUTER_ACCOUNT, BATCH_ACCOUNT, BATCH_OUT_ACCOUNT)


@dataclass
class RouterSystem:
    """Wired engine components."""

    config: AppConfig
    transactions: TransactionManager
    ledger: TokenLedger
    access: AccessControl
    oracle: ManualPriceOracle
    exchange: Exchange
    registry: StrategyRegistry
    receipts: ReceiptRegistry
    shares: SharesToken
    batch: Batch
    router: StrategyRouter
    batch_out: BatchOut
    repository: Optional[CycleRepository] = None

    def keeper(self) -> UpkeepKeeper:
        return UpkeepKeeper(self.router, self.batch_out, self.config.keeper)


def build_system(
    config: AppConfig,
    plugins: Optional[Dict[str, ExchangePlugin]] = None,
    clock: Callable[[], float] = now_timestamp,
    repository: Optional[CycleRepository] = None,
) -> RouterSystem:
    """
    Create a ready-to-use system.

    Args:
        config: Application configuration
        plugins: Swap plugins by the names used in ``config.exchange.routes``
        clock: Time source shared by every component
        repository: Cycle history; defaults to ``config.storage.database_path``

    Raises:
        ConfigurationError: a route names an unknown plugin
    """
    configure_logging(config.log_level)
    plugins = plugins or {}
    owner = config.access.owner

    transactions = TransactionManager()
    ledger = TokenLedger()
    ledger.register_token(config.native_token.symbol, config.native_token.decimals)
    for token in config.tokens:
        ledger.register_token(token.symbol, token.decimals)

    access = AccessControl(owner)
    for account in config.access.admins:
        access.grant_role(owner, Role.ADMIN, account)
    for account in config.access.moderators:
        access.grant_role(owner, Role.MODERATOR, account)
    for account in (*ENGINE_ACCOUNTS, *config.access.operators):
        access.grant_role(owner, Role.OPERATOR, account)

    oracle = ManualPriceOracle(
        freshness_window_seconds=config.oracle.freshness_window_seconds,
        price_decimals=config.oracle.price_decimals,
        clock=clock,
    )
    oracle.set_prices(config.oracle.prices)

    exchange = Exchange(
        ledger, oracle, access, transactions,
        max_stablecoin_slippage_in_bps=config.exchange.max_stablecoin_slippage_in_bps,
    )
    for route in config.exchange.routes:
        exchange.set_route(
            owner,
            route.token_a,
            route.token_b,
            _plugin(plugins, route.default_plugin),
            limit_usd=route.limit_usd,
            second_plugin=_plugin(plugins, route.second_plugin) if route.second_plugin else None,
            custom_slippage_in_bps=route.custom_slippage_in_bps,
        )

    if repository is None and config.storage.database_path:
        repository = CycleRepository(Path(config.storage.database_path))

    registry = StrategyRegistry(ledger, access, transactions)
    receipts = ReceiptRegistry(access)
    shares = SharesToken(access)
    batch = Batch(
        ledger, oracle, access, registry, receipts, transactions,
        config.router, config.native_token.symbol, clock=clock,
    )
    router = StrategyRouter(
        ledger, oracle, access, registry, batch, receipts, shares, exchange, transactions,
        config.router, repository=repository, clock=clock,
    )
    batch_out = BatchOut(
        ledger, oracle, access, registry, router, shares, transactions,
        config.batch_out, config.native_token.symbol, repository=repository, clock=clock,
    )

    for token in config.supported_tokens:
        registry.add_supported_token(owner, token.symbol, IdleStrategy(ledger, token.symbol))

    for name, participant in (
        ("ledger", ledger),
        ("shares", shares),
        ("receipts", receipts),
        ("registry", registry),
        ("batch", batch),
        ("router", router),
        ("batch_out", batch_out),
    ):
        transactions.register(name, participant)

    logger.info(
        f"{config.app_name} assembled: {len(config.supported_tokens)} supported tokens, "
        f"{len(config.exchange.routes)} routes"
    )
    return RouterSystem(
        config=config,
        transactions=transactions,
        ledger=ledger,
        access=access,
        oracle=oracle,
        exchange=exchange,
        registry=registry,
        receipts=receipts,
        shares=shares,
        batch=batch,
        router=router,
        batch_out=batch_out,
        repository=repository,
    )


def _plugin(plugins: Dict[str, ExchangePlugin], name: str) -> ExchangePlugin:
    try:
        return plugins[name]
    except KeyError:
        raise ConfigurationError(f"Unknown swap plugin: {name}", code="UnknownPlugin", details={"plugin": name})
