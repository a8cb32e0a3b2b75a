"""
TaskFlow core: everything the API and the Celery workers share.

Nothing here imports FastAPI or Celery at module level; import from the
submodules directly:

    from core.db import db
    from core.cache import RedisCache, CacheKeys
    from core.services import TaskService
"""

__version__ = "1.0.0"
