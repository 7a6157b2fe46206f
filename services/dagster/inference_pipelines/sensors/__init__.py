"""Dagster Sensors - Run lifecycle tracking."""

from .run_status_sensor import inference_run_failure_sensor

__all__ = [
    "inference_run_failure_sensor",
]
