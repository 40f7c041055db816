"""Worker runners with shared shutdown handling."""

from relay.runners.common import execute_worker_with_shutdown
from relay.runners.relay_runners import (
    run_change_tailer,
    run_ingestion_pipeline,
    run_traffic_generator,
)

__all__ = [
    "execute_worker_with_shutdown",
    "run_change_tailer",
    "run_ingestion_pipeline",
    "run_traffic_generator",
]
