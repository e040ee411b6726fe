"""
Change-audit rows written alongside a unit of work's save.
"""

from .models import AutoHistory, EntityState
from .recorder import ensure_auto_history

__all__ = ["AutoHistory", "EntityState", "ensure_auto_history"]
