"""
Record metadata interception.

Every entity embeds a ``RecordMetadata`` composite. Rather than each
repository stamping timestamps by hand, two session hooks keep the
metadata current:

- ``before_flush`` stamps created/modified fields on ORM inserts and updates
- ``do_orm_execute`` stamps ``modified_at``/``modified_by`` on UPDATE
  statements issued directly (the compare-and-set updates of the ledgers)

The acting context (client address or principal id) is read from
``session.info["actor"]``.
"""

from dataclasses import replace
from typing import Any, Optional

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session

from src.kernel.models.base import RecordMetadata, utcnow

ACTOR_KEY = "actor"


def _actor(session: Session) -> Optional[str]:
    actor = session.info.get(ACTOR_KEY)
    return str(actor) if actor is not None else None


def _has_record(obj: Any) -> bool:
    return hasattr(type(obj), "record")


@event.listens_for(Session, "before_flush")
def stamp_record_metadata(session: Session, flush_context, instances) -> None:
    now = utcnow()
    actor = _actor(session)

    for obj in session.new:
        if not _has_record(obj):
            continue
        current = obj.record or RecordMetadata()
        obj.record = replace(
            current,
            created_at=current.created_at or now,
            created_by=current.created_by or actor,
        )

    for obj in session.dirty:
        if not _has_record(obj) or not session.is_modified(obj, include_collections=False):
            continue
        current = obj.record or RecordMetadata(created_at=now)
        obj.record = replace(current, modified_at=now, modified_by=actor)


@event.listens_for(Session, "do_orm_execute")
def stamp_update_statements(orm_execute_state: ORMExecuteState) -> None:
    if not orm_execute_state.is_update:
        return

    statement = orm_execute_state.statement
    columns = getattr(getattr(statement, "table", None), "c", None)
    if columns is None or "modified_at" not in columns:
        return

    orm_execute_state.statement = statement.values(
        {
            columns.modified_at: utcnow(),
            columns.modified_by: _actor(orm_execute_state.session),
        }
    )
