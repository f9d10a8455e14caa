"""
models/__init__.py
------------------
Re-export all models so the tenant router can create every collection
of a class database via a single import:

    from gradesync.models import Base
"""

from gradesync.db.base import Base
from gradesync.models.resource import Resource, Unit
from gradesync.models.saved_copy import SavedCopy
from gradesync.models.selection import Selection
from gradesync.models.table import GradeTable

__all__ = ["Base", "GradeTable", "Selection", "SavedCopy", "Resource", "Unit"]
