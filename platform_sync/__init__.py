"""Resilient orchestration of rate-limited music platform API calls."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
