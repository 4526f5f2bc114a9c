from .loader import AppConfig, BatchingConfig, ConfigError, DatabaseConfig, ProviderSettings, load_config

__all__ = [
    "AppConfig",
    "BatchingConfig",
    "ConfigError",
    "DatabaseConfig",
    "ProviderSettings",
    "load_config",
]
