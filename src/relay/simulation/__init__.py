"""Synthetic change-event traffic for exercising the relay."""

from relay.simulation.generators import apply_change_event, generate_change_event
from relay.simulation.traffic import TrafficGenerator

__all__ = ["TrafficGenerator", "apply_change_event", "generate_change_event"]
