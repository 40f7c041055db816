"""Binlog change-event relay: RabbitMQ (Maxwell) -> MongoDB."""

__version__ = "1.0.0"
