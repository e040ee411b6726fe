from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, Dict
from datetime import datetime, timezone
from enum import Enum
from repokit.config import settings


class EntityState(str, Enum):
    """Change kinds recorded in the history table."""
    MODIFIED = "Modified"
    DELETED = "Deleted"


class AutoHistory(SQLModel, table=True):
    """One audit row per modified or deleted entity, written in the same save."""
    __tablename__ = settings.AUTO_HISTORY_TABLE

    id: Optional[int] = Field(default=None, primary_key=True)
    row_id: str = Field(max_length=50, description="Primary key of the changed row")
    table_name: str = Field(max_length=128, description="Table of the changed row")
    changed: Dict = Field(default_factory=dict, sa_column=Column(JSON), description="Changed values")
    kind: EntityState = Field(description="Modified or Deleted")
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Recorded at")
