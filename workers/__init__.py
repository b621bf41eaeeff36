"""
FirePing Workers Package
Celery tasks para ingesta, clustering y ciclo de vida de incidentes
"""

from .celery_app import celery_app

__all__ = ['celery_app']
