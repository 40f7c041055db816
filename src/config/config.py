"""Relay configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Broker connection and topology (exchange, queue, prefetch)
- Document store connection and collection
- Processing policy (deadline, bounded redelivery)
- Health endpoint, traffic generator and tailer settings

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _as_bool(value: Any) -> bool:
    # bool('false') would be True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"


# =========================================================================
# SECTION SETTINGS
# =========================================================================


@dataclass
class BrokerSettings:
    """Message broker connection and topology."""

    host: str = "rabbitmq"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    exchange: str = "maxwell"
    queue: str = "maxwell_consumer"
    routing_key: str = ""
    prefetch_count: int = 1
    connect_timeout_seconds: float = 10.0
    reconnect_delay_seconds: float = 5.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.port = int(self.port)
        self.prefetch_count = int(self.prefetch_count)
        self.connect_timeout_seconds = float(self.connect_timeout_seconds)
        self.reconnect_delay_seconds = float(self.reconnect_delay_seconds)
        self.routing_key = "" if self.routing_key is None else str(self.routing_key)

    @property
    def url(self) -> str:
        vhost = "" if self.virtual_host == "/" else quote(self.virtual_host, safe="")
        return (
            f"amqp://{quote(self.username, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{vhost}"
        )


@dataclass
class StoreSettings:
    """Document store connection and target collection."""

    uri: str = "mongodb://mongodb:27017/"
    database: str = "binlog_replica"
    collection: str = "changes"
    row_id_field: str = "id"
    server_selection_timeout_ms: int = 5000
    reconnect_delay_seconds: float = 5.0

    def __post_init__(self):
        self.server_selection_timeout_ms = int(self.server_selection_timeout_ms)
        self.reconnect_delay_seconds = float(self.reconnect_delay_seconds)


@dataclass
class ProcessingSettings:
    """Per-message processing policy."""

    processing_timeout_seconds: float = 30.0
    # 0 = unbounded redelivery
    max_deliveries: int = 0
    dead_letter_suffix: str = ".dlq"
    stats_interval_seconds: int = 60

    def __post_init__(self):
        self.processing_timeout_seconds = float(self.processing_timeout_seconds)
        self.max_deliveries = int(self.max_deliveries)
        self.stats_interval_seconds = int(self.stats_interval_seconds)

    @property
    def dead_letter_enabled(self) -> bool:
        return self.max_deliveries > 0


@dataclass
class HealthSettings:
    enabled: bool = True
    port: int = 8080

    def __post_init__(self):
        self.enabled = _as_bool(self.enabled)
        self.port = int(self.port)


@dataclass
class TrafficSettings:
    """Synthetic change-event generator."""

    operations: int = 10
    interval_seconds: float = 2.0
    concurrency: int = 5
    database: str = "sample_db"
    table: str = "users"

    def __post_init__(self):
        self.operations = int(self.operations)
        self.interval_seconds = float(self.interval_seconds)
        self.concurrency = int(self.concurrency)


@dataclass
class TailerSettings:
    poll_interval_seconds: float = 5.0
    # Inserts land at most processing_timeout_seconds after received_at
    settle_seconds: float = 30.0

    def __post_init__(self):
        self.poll_interval_seconds = float(self.poll_interval_seconds)
        self.settle_seconds = float(self.settle_seconds)


@dataclass
class RelayConfig:
    """Binlog relay configuration.

    Configuration structure:
        relay:
          broker: {...}       # RabbitMQ connection and topology
          store: {...}        # MongoDB connection and collection
          processing: {...}   # Deadline and redelivery policy
          health: {...}       # Health endpoint
          traffic: {...}      # Synthetic traffic generator
          tailer: {...}       # Change viewer
    """

    broker: BrokerSettings = field(default_factory=BrokerSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    traffic: TrafficSettings = field(default_factory=TrafficSettings)
    tailer: TailerSettings = field(default_factory=TailerSettings)

    @property
    def dead_letter_queue(self) -> Optional[str]:
        """Dead-letter queue name, or None when bounded redelivery is off."""
        if not self.processing.dead_letter_enabled:
            return None
        return f"{self.broker.queue}{self.processing.dead_letter_suffix}"

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact:
            data["broker"]["password"] = "***"
            data["store"]["uri"] = re.sub(r"(://[^:/@]+):[^@/]*@", r"\1:***@", self.store.uri)
        return data

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any setting is out of range or empty
        """
        broker = asdict(self.broker)
        store = asdict(self.store)
        processing = asdict(self.processing)

        self._validate_non_empty(broker, ["host", "exchange", "queue"], "broker")
        self._validate_range(broker, "port", 1, 65535, "broker")
        self._validate_min(broker, "prefetch_count", 1, inclusive=True, context="broker")
        self._validate_min(broker, "connect_timeout_seconds", 0, inclusive=False, context="broker")
        self._validate_min(broker, "reconnect_delay_seconds", 0, inclusive=False, context="broker")

        self._validate_non_empty(store, ["uri", "database", "collection", "row_id_field"], "store")
        self._validate_min(store, "server_selection_timeout_ms", 0, inclusive=False, context="store")
        self._validate_min(store, "reconnect_delay_seconds", 0, inclusive=False, context="store")

        self._validate_min(processing, "processing_timeout_seconds", 0, inclusive=False, context="processing")
        self._validate_min(processing, "max_deliveries", 0, inclusive=True, context="processing")
        self._validate_min(processing, "stats_interval_seconds", 1, inclusive=True, context="processing")
        if self.processing.dead_letter_enabled and not self.processing.dead_letter_suffix:
            raise ValueError("processing: dead_letter_suffix must be set when max_deliveries > 0")

        self._validate_range(asdict(self.health), "port", 0, 65535, "health")

        traffic = asdict(self.traffic)
        self._validate_min(traffic, "operations", 0, inclusive=True, context="traffic")
        self._validate_min(traffic, "interval_seconds", 0, inclusive=True, context="traffic")
        self._validate_range(traffic, "concurrency", 1, 100, "traffic")

        self._validate_min(asdict(self.tailer), "poll_interval_seconds", 0, inclusive=False, context="tailer")
        self._validate_min(asdict(self.tailer), "settle_seconds", 0, inclusive=True, context="tailer")

    @staticmethod
    def _validate_non_empty(settings: Dict[str, Any], keys: List[str], context: str) -> None:
        for key in keys:
            if not settings.get(key):
                raise ValueError(f"{context}: {key} must not be empty")

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _section(cls, data: Dict[str, Any]):
    known = set(cls.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{key: value for key, value in data.items() if key in known})


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> RelayConfig:
    """Load relay configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.

    Args:
        config_path: YAML file (default: src/config/config.yaml)
        overrides: Nested dict deep-merged over the `relay:` section

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the file is malformed or validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "relay" not in yaml_data:
        raise ValueError("Invalid config file: missing 'relay:' section")

    relay_config = yaml_data["relay"] or {}
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        relay_config = _deep_merge(relay_config, overrides)

    config = RelayConfig(
        broker=_section(BrokerSettings, relay_config.get("broker") or {}),
        store=_section(StoreSettings, relay_config.get("store") or {}),
        processing=_section(ProcessingSettings, relay_config.get("processing") or {}),
        health=_section(HealthSettings, relay_config.get("health") or {}),
        traffic=_section(TrafficSettings, relay_config.get("traffic") or {}),
        tailer=_section(TailerSettings, relay_config.get("tailer") or {}),
    )

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Broker: {config.broker.host}:{config.broker.port} exchange={config.broker.exchange}")
    logger.debug(f"  - Store: {config.store.database}.{config.store.collection}")

    config.validate()
    logger.debug("Configuration validation passed")

    return config


_relay_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    """Get or load the singleton relay config instance."""
    global _relay_config
    if _relay_config is None:
        _relay_config = load_config()
    return _relay_config


def set_config(config: RelayConfig) -> None:
    """Set the singleton relay config instance (useful for testing)."""
    global _relay_config
    _relay_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _relay_config
    _relay_config = None


def _cli_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Binlog Relay Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration (environment expanded, secrets redacted)
  python -m config.config --show-merged

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and values",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display effective configuration as YAML",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
        output: Dict[str, Any] = {}

        if args.validate:
            # Validation happens during load_config(), if we got here it passed
            if args.json:
                output["validation"] = {"passed": True, "errors": []}
            else:
                print("✓ Configuration validation passed")
                print(f"  - Broker: {config.broker.host}:{config.broker.port}")
                print(f"  - Queue: {config.broker.queue} <- {config.broker.exchange}")
                print(f"  - Store: {config.store.database}.{config.store.collection}")
                if config.dead_letter_queue:
                    print(f"  - Dead-letter queue: {config.dead_letter_queue}")

        if args.show_merged:
            if args.json:
                output["merged_config"] = config.to_dict()
            else:
                print("\nConfiguration:")
                print("=" * 80)
                print(yaml.dump({"relay": config.to_dict()}, default_flow_style=False, sort_keys=False))
                print("=" * 80)

        if args.json:
            print(json.dumps(output, indent=2))

        return 0

    except FileNotFoundError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    except (ValueError, TypeError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(_cli_main())
