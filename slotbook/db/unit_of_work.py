"""
Unit of Work

Explicit transaction scope for the reservation engine. Ledger, orchestrator and
reconciliation operations receive the unit of work as an argument and do all
their reads and writes through ``uow.session``; the scope commits when the
``with`` block exits cleanly and rolls back on any exception.

Transition events are collected while the transaction is open and handed to
the publisher only after a successful commit. Compensating actions registered
for cross-system side effects (e.g. a payment intent created at the gateway)
run only when the transaction rolls back; after-commit actions (e.g. closing
the intent of a cancelled booking) run only once it has committed.
"""

from typing import Any, Callable, List, Optional, Tuple, Type
import logging

from sqlalchemy.orm import Session

from slotbook.core.exceptions import CompensationFailed

logger = logging.getLogger(__name__)

Publisher = Callable[[List[Any]], None]


class UnitOfWork:
    """
    Usage:
        with UnitOfWork(db, publisher=notifier.publish) as uow:
            booking = orchestrator.create_reservation(uow, principal, schedule_id, 2)
        # committed here; events published after commit
    """

    def __init__(self, session: Session, publisher: Optional[Publisher] = None):
        self.session = session
        self._publisher = publisher
        self._events: List[Any] = []
        self._compensations: List[Tuple[str, Callable[[], None]]] = []
        self._after_commit: List[Tuple[str, Callable[[], None]]] = []
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        self._events = []
        self._compensations = []
        self._after_commit = []
        self.committed = False
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback(exc_val)
            return False

        try:
            self.commit()
        except Exception as exc:
            self.rollback(exc)
            raise

        self._run_after_commit()
        self._publish_events()
        return False

    def get_for_update(self, model: Type, ident: Any):
        """Load a row by primary key holding a write lock until the scope ends."""
        return (
            self.session.query(model)
            .filter(model.id == ident)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def add_event(self, event: Any) -> None:
        self._events.append(event)

    def add_compensation(self, description: str, action: Callable[[], None]) -> None:
        """Register an action that undoes an external side effect on rollback."""
        self._compensations.append((description, action))

    def add_after_commit(self, description: str, action: Callable[[], None]) -> None:
        """Register an external side effect that only happens once the transaction is committed."""
        self._after_commit.append((description, action))

    def commit(self) -> None:
        logger.debug("Committing unit of work with %d event(s)", len(self._events))
        self.session.commit()
        self.committed = True
        self._compensations.clear()

    def rollback(self, cause: Optional[BaseException] = None) -> None:
        if self._events:
            logger.warning("Rolling back unit of work, discarding %d event(s)", len(self._events))
        self._events.clear()
        self._after_commit.clear()
        self.session.rollback()

        compensations, self._compensations = self._compensations, []
        for description, action in reversed(compensations):
            try:
                action()
                logger.info("Compensation applied: %s", description)
            except Exception as exc:
                logger.critical(
                    "Compensation failed (%s) after rollback caused by %r: %s",
                    description,
                    cause,
                    exc,
                    exc_info=True,
                )
                raise CompensationFailed(
                    f"Could not undo external side effect: {description}",
                    cause=repr(cause),
                ) from exc

    def _run_after_commit(self) -> None:
        actions, self._after_commit = self._after_commit, []
        for description, action in actions:
            try:
                action()
                logger.info("After-commit action applied: %s", description)
            except Exception as exc:
                # Committed already; someone has to finish this by hand
                logger.error("After-commit action failed (%s): %s", description, exc, exc_info=True)

    def _publish_events(self) -> None:
        events, self._events = self._events, []
        if not events or self._publisher is None:
            return

        logger.info("Publishing %d event(s) after commit", len(events))
        try:
            self._publisher(events)
        except Exception as e:
            # The transaction is already committed; delivery is best-effort
            logger.error("Error publishing events: %s", e, exc_info=True)
