"""Dagster Ops - Reusable Computation Units."""

from .inference_ops import INFERENCE_RUN_TAGS, run_inference_op

__all__ = [
    "INFERENCE_RUN_TAGS",
    "run_inference_op",
]
