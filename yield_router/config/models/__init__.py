# Configuration models
from .app import AccessConfig, AppConfig, KeeperConfig, StorageConfig, TokenConfig
from .base import BaseConfig
from .exchange import ExchangeConfig, OracleConfig, RouteConfig
from .fees import FeeSettings
from .router import BatchOutConfig, RouterConfig

__all__ = [
    "BaseConfig",
    "FeeSettings",
    "RouterConfig",
    "BatchOutConfig",
    "RouteConfig",
    "ExchangeConfig",
    "OracleConfig",
    "TokenConfig",
    "AccessConfig",
    "KeeperConfig",
    "StorageConfig",
    "AppConfig",
]
