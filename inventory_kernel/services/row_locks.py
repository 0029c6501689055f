"""
Row locking for workflow documents.

Orders and purchase orders are transitioned by one actor at a time.  A
second, concurrent transition on the same document must lose cleanly with
ConflictError instead of queueing behind the first or overwriting it:

- PostgreSQL: the row is read ``FOR UPDATE NOWAIT``; a held lock surfaces
  as OperationalError and becomes ConflictError.
- Any backend: the version counter fails the losing UPDATE with
  StaleDataError, which becomes ConflictError.
"""

from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.exceptions import ConflictError, NotFoundError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.row_locks")

M = TypeVar("M")


def is_postgres_session(session: Session) -> bool:
    return session.get_bind().dialect.name == "postgresql"


def lock_document(
    session: Session,
    model: type[M],
    entity_id: UUID,
    not_found: type[NotFoundError],
    *,
    active_only: bool = True,
) -> M:
    """Load ``model`` row ``entity_id`` for a state transition."""
    stmt = (
        select(model)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    if is_postgres_session(session):
        stmt = stmt.with_for_update(nowait=True)
    else:
        stmt = stmt.with_for_update()

    try:
        row = session.execute(stmt).scalar_one_or_none()
    except OperationalError as exc:
        logger.warning(
            "document_lock_conflict",
            extra={"entity_type": model.__name__, "entity_id": str(entity_id)},
        )
        raise ConflictError(model.__name__, str(entity_id)) from exc

    if row is None or (active_only and getattr(row, "is_deleted", False)):
        raise not_found(str(entity_id))
    return row


def flush_document(session: Session, document) -> None:
    """Flush a transitioned document, mapping a lost version race to ConflictError."""
    try:
        session.flush()
    except StaleDataError as exc:
        logger.warning(
            "document_version_conflict",
            extra={"entity_type": type(document).__name__, "entity_id": str(document.id)},
        )
        raise ConflictError(type(document).__name__, str(document.id)) from exc
