"""
Celery tasks package.

Background work that must not run inside a request: currently the
onboarding hand-off to the workflow engine.
"""

from floworx.core.celery_app import celery_app

__all__ = ["celery_app"]
