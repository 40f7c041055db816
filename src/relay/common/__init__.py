"""Shared broker, store, health and metrics components."""

from relay.common.broker import BrokerClient, MessageHandler
from relay.common.health import HealthCheckServer
from relay.common.store import StoreClient
from relay.common.types import DeliveredMessage

__all__ = [
    "BrokerClient",
    "DeliveredMessage",
    "HealthCheckServer",
    "MessageHandler",
    "StoreClient",
]
