"""Batch transfer of collected images."""

from .worker import BatchWorker

__all__ = ["BatchWorker"]
