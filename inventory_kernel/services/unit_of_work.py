"""
UnitOfWork -- transaction boundary, bounded retry and event delivery.

Responsibility:
    Runs one kernel operation in its own session and transaction.  The
    operation receives a ``WorkContext`` (session, clock, event buffer,
    actor, cancellation token) with the services pre-wired to it.  On
    success the transaction commits and the buffered events are handed
    back; on any failure the transaction rolls back and the events are
    discarded.

Architecture position:
    Kernel > Services -- the only place in the kernel that commits.
    Called by the orchestrator (InventoryEngine); services never commit.

Invariants enforced:
    - Events are returned only after a successful commit.
    - A cancelled or expired token aborts before the next attempt and
      again before commit, so a cancelled operation never persists.
    - Contention is retried a bounded number of times with linear backoff,
      each attempt in a fresh transaction.  Exhaustion raises
      ContentionError; it never spins forever.
    - On PostgreSQL every transaction carries ``SET LOCAL lock_timeout`` so
      a blocked row lock surfaces as an error instead of hanging.

Failure modes:
    - ContentionError: retries exhausted on snapshot version conflicts or
      lock timeouts.
    - OperationCancelledError: token cancelled or deadline passed.
    - Every other kernel error propagates unchanged after rollback.
"""

import time
from collections.abc import Callable
from functools import cached_property
from typing import TypeVar
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.config import EngineConfig
from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.events import DomainEvent, EventBuffer
from inventory_kernel.exceptions import ContentionError, OptimisticLockError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.allocation_service import AllocationService
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.movement_service import MovementService
from inventory_kernel.services.order_service import OrderService
from inventory_kernel.services.procurement_service import ProcurementService
from inventory_kernel.services.row_locks import is_postgres_session
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

# lock_not_available, deadlock_detected, serialization_failure
_PG_CONTENTION_CODES = frozenset({"55P03", "40P01", "40001"})
_SQLITE_CONTENTION_MARKERS = ("database is locked", "database table is locked", "busy")


def is_contention_error(exc: OperationalError) -> bool:
    """True when ``exc`` is a lock wait or deadlock rather than a real fault."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _PG_CONTENTION_CODES:
        return True
    message = str(orig).lower()
    return any(marker in message for marker in _SQLITE_CONTENTION_MARKERS)


class WorkContext:
    """Per-attempt wiring handed to an operation."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: EngineConfig,
        events: EventBuffer,
        actor_id: UUID,
        cancellation: CancellationToken,
    ):
        self.session = session
        self.clock = clock
        self.config = config
        self.events = events
        self.actor_id = actor_id
        self.cancellation = cancellation

    @cached_property
    def sequences(self) -> SequenceService:
        return SequenceService(self.session)

    @cached_property
    def ledger(self) -> LedgerService:
        return LedgerService(self.session, self.clock, self.sequences)

    @cached_property
    def allocation(self) -> AllocationService:
        return AllocationService(
            self.session, self.clock, self.ledger, cancellation=self.cancellation,
        )

    @cached_property
    def orders(self) -> OrderService:
        return OrderService(
            self.session,
            self.clock,
            events=self.events,
            config=self.config,
            allocation=self.allocation,
            sequence_service=self.sequences,
            cancellation=self.cancellation,
        )

    @cached_property
    def procurement(self) -> ProcurementService:
        return ProcurementService(
            self.session,
            self.clock,
            events=self.events,
            config=self.config,
            ledger=self.ledger,
            sequence_service=self.sequences,
            cancellation=self.cancellation,
        )

    @cached_property
    def movements(self) -> MovementService:
        return MovementService(
            self.session,
            self.clock,
            events=self.events,
            config=self.config,
            ledger=self.ledger,
            sequence_service=self.sequences,
            cancellation=self.cancellation,
        )


class UnitOfWork:
    """
    Commit-or-rollback runner with bounded retry.

    Usage:
        uow = UnitOfWork(session_factory, clock, config)
        value, events = uow.run(
            "allocate_order",
            lambda ctx: ctx.orders.allocate(order_id, actor_id=ctx.actor_id).to_dto(),
            actor_id=actor_id,
        )

    The callable must return plain values (DTOs), not ORM instances; the
    session is closed before ``run`` returns.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.with_defaults()
        self._sleep = sleep

    def _apply_lock_timeout(self, session: Session, token: CancellationToken) -> None:
        if not is_postgres_session(session):
            return
        seconds = self._config.lock_timeout_seconds
        remaining = token.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        millis = max(1, int(seconds * 1000))
        session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))

    def _attempt(
        self,
        operation: str,
        fn: Callable[[WorkContext], T],
        actor_id: UUID,
        token: CancellationToken,
    ) -> tuple[T, tuple[DomainEvent, ...]]:
        events = EventBuffer()
        session = self._session_factory()
        try:
            self._apply_lock_timeout(session, token)
            ctx = WorkContext(session, self._clock, self._config, events, actor_id, token)
            value = fn(ctx)
            token.raise_if_cancelled(operation)
            session.commit()
        except BaseException:
            session.rollback()
            events.discard()
            raise
        finally:
            session.close()
        return value, events.drain()

    def run(
        self,
        operation: str,
        fn: Callable[[WorkContext], T],
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> tuple[T, tuple[DomainEvent, ...]]:
        """Run ``fn`` in a transaction; return its value and the committed events."""
        token = cancellation or NEVER_CANCELLED
        max_attempts = self._config.max_retries + 1

        with LogContext.bind(operation=operation, actor_id=str(actor_id)):
            attempt = 0
            while True:
                attempt += 1
                token.raise_if_cancelled(operation)
                try:
                    value, events = self._attempt(operation, fn, actor_id, token)
                except (OptimisticLockError, StaleDataError) as exc:
                    cause: Exception = exc
                except OperationalError as exc:
                    if not is_contention_error(exc):
                        raise
                    cause = exc
                else:
                    logger.info(
                        "unit_of_work_committed",
                        extra={
                            "attempt": attempt,
                            "event_count": len(events),
                        },
                    )
                    return value, events

                if attempt >= max_attempts:
                    logger.error(
                        "unit_of_work_contention_exhausted",
                        extra={
                            "attempts": attempt,
                            "error_type": type(cause).__name__,
                        },
                    )
                    raise ContentionError(operation, attempt) from cause

                delay = self._config.retry_backoff_seconds * attempt
                logger.warning(
                    "unit_of_work_retry",
                    extra={
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": delay,
                        "error_type": type(cause).__name__,
                    },
                )
                if delay > 0:
                    self._sleep(delay)
