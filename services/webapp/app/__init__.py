"""Inference webapp - run admission and status over HTTP."""

__version__ = "0.1.0"
