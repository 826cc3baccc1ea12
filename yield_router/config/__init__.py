# Config module - application configuration system
from .exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .loader import ConfigLoader, load_config
from .models import (
    AccessConfig,
    AppConfig,
    BaseConfig,
    BatchOutConfig,
    ExchangeConfig,
    FeeSettings,
    KeeperConfig,
    OracleConfig,
    RouteConfig,
    RouterConfig,
    StorageConfig,
    TokenConfig,
)

__all__ = [
    # Exceptions
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
    # Loader
    "ConfigLoader",
    "load_config",
    # Models
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
