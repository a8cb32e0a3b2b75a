"""
Celery Background Workers.

Processes task lifecycle events and runs the scheduled sweeps.

Usage:
    celery -A workers worker --loglevel=info
    celery -A workers worker -Q task-processing --loglevel=info
    celery -A workers beat --loglevel=info
"""

from workers.celery_app import celery_app

__all__ = ["celery_app"]
