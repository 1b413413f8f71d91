"""
Django project package for the hospital authorization engine.

The Celery app is imported here so shared_task decorators bind to it.
"""
from config.celery import app as celery_app

__all__ = ('celery_app',)
