"""
Auto history: audit rows for modified and deleted entities.
"""

from typing import Any, Dict, List
from pydantic_core import to_jsonable_python
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session
from .models import AutoHistory, EntityState


def _row_id(state) -> str:
    if state.identity is None:
        return ""
    return ",".join(str(value) for value in state.identity)


def _modified_values(state) -> Dict[str, Any]:
    before, after = {}, {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        before[attr.key] = history.deleted[0] if history.deleted else None
        after[attr.key] = history.added[0] if history.added else None
    return {"before": before, "after": after}


def _deleted_values(state) -> Dict[str, Any]:
    # Stubs deleted by key only carry their key columns
    return {attr.key: state.dict[attr.key] for attr in state.mapper.column_attrs if attr.key in state.dict}


def _history(entity: Any, kind: EntityState) -> AutoHistory:
    state = sa_inspect(entity)
    values = _modified_values(state) if kind is EntityState.MODIFIED else _deleted_values(state)
    return AutoHistory(
        row_id=_row_id(state),
        table_name=state.mapper.local_table.name,
        changed=to_jsonable_python(values),
        kind=kind,
    )


def ensure_auto_history(session: Session) -> List[AutoHistory]:
    """
    Stage an AutoHistory row for every modified or deleted entity in `session`.

    Pass `AsyncSession.sync_session` for async sessions. Returns the staged rows.
    """
    histories = []
    for entity in list(session.dirty):
        if isinstance(entity, AutoHistory) or not session.is_modified(entity):
            continue
        histories.append(_history(entity, EntityState.MODIFIED))
    for entity in list(session.deleted):
        if isinstance(entity, AutoHistory):
            continue
        histories.append(_history(entity, EntityState.DELETED))
    session.add_all(histories)
    return histories
