"""Expose Celery configuration objects for convenient imports."""
from .celery import celery_app

__all__ = ["celery_app"]
