"""
Shared infrastructure for the authorization engine: base models, exceptions,
logging, caching, Celery task base class and DRF integration.
"""
