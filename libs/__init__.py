# =============================================================================
# Inference Pipeline Shared Libraries
# =============================================================================
# This package contains shared libraries for the floor-plan inference
# pipeline. See individual modules for detailed documentation.
# =============================================================================

"""
Inference pipeline shared libraries.

Modules:
- models: Pydantic data models and settings
- retry_policy: failure classification and backoff
- run_guard: run-once admission per target
- merge_engine: optimistic-concurrency merge into editor documents
- orchestration: resumable per-floor pipeline driver
"""

__version__ = "0.1.0"
