"""Dagster Jobs - Executable Workflows."""

from .inference_job import inference_job

__all__ = ["inference_job"]
