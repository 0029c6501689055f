"""
SequenceService -- gap-free counters for ledger order and document numbers.

Responsibility:
    Hands out the next value of a named counter.  Two kinds of counter exist:
    ``ledger_entry`` orders every LedgerEntry (``seq``), and one
    ``document:<kind>`` counter per document type backs the human-facing
    numbers ORD-000001, PO-000001, GRN-000001, TRF-000001, ADJ-000001.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by LedgerService and by the order, procurement and movement
    services.

Invariants enforced:
    - The counter row is locked (``SELECT ... FOR UPDATE``) for the rest of
      the caller's transaction, so two writers never draw the same value and
      ledger ``seq`` order matches commit order on each counter.
    - Values are never derived from ``MAX(...) + 1``.
    - A rolled-back transaction gives its value back; numbering has no gaps.

Failure modes:
    - IntegrityError only if the counter row vanishes between a lost
      creation race and the re-read, which cannot happen in normal operation.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True)
    last_value: Mapped[int] = mapped_column(BigInteger, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.last_value}>"


class SequenceService:
    """Draws counter values inside the caller's transaction; never commits."""

    LEDGER_ENTRY = "ledger_entry"

    def __init__(self, session: Session):
        self._session = session

    def _select_locked(self, name: str) -> SequenceCounter | None:
        return self._session.scalars(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one_or_none()

    def _counter(self, name: str) -> SequenceCounter:
        """The locked counter row, created at zero on first use."""
        counter = self._select_locked(name)
        if counter is not None:
            return counter

        # A concurrent first use may insert the same name; losing that race
        # must not undo the caller's earlier work, hence the savepoint.
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, last_value=0)
                self._session.add(counter)
            logger.info("sequence_counter_created", extra={"sequence_name": name})
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_creation_lost_race", extra={"sequence_name": name})
            counter = self._select_locked(name)
            if counter is None:
                raise
            return counter

    def next_value(self, name: str) -> int:
        counter = self._counter(name)
        counter.last_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.last_value},
        )
        return counter.last_value

    def next_document_number(self, document: str, prefix: str, width: int = 6) -> str:
        """Next number for a document kind, e.g. ``("order", "ORD")`` -> ``ORD-000007``."""
        return f"{prefix}-{self.next_value(f'document:{document}'):0{width}d}"
