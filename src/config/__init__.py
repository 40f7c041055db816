"""Configuration loading for the binlog relay.

Configuration is loaded from config/config.yaml. Every value may reference
environment variables with ${VAR} or ${VAR:-default}; the shipped file maps
RABBITMQ_* and MONGODB_* onto the broker and store sections.

Usage:
    >>> from config import get_config
    >>> config = get_config()
    >>> config.broker.queue
    'maxwell_consumer'

Settings are merged in the following priority (highest to lowest):

1. Explicit overrides passed to load_config()
2. Environment variables referenced from the YAML file
3. YAML values
4. Dataclass defaults
"""

from config.config import (
    BrokerSettings,
    HealthSettings,
    ProcessingSettings,
    RelayConfig,
    StoreSettings,
    TailerSettings,
    TrafficSettings,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "RelayConfig",
    "BrokerSettings",
    "StoreSettings",
    "ProcessingSettings",
    "HealthSettings",
    "TrafficSettings",
    "TailerSettings",
]
