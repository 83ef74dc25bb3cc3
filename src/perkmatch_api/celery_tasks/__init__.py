"""Celery task modules for perkmatch."""

# Import submodules so Celery autodiscovery registers tasks.
from . import matching as _matching  # noqa: F401

__all__ = ["_matching"]
