"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from site_archiver.api import app

    uvicorn site_archiver.api:app --reload
"""

from site_archiver.api.app import app, create_app

__all__ = ["app", "create_app"]
