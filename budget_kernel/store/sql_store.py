"""
Module: budget_kernel.store.sql_store
Responsibility: SQLAlchemy implementation of EntityStore.  Each call opens
    its own short session and commits before returning, so a successful
    call is durable and visible to every later call.
Architecture position: Kernel > Store.  Depends on db/engine.py for the
    transactional scope; knows nothing about projects or change orders.
    Model classes passed in must be TenantScopedBase subclasses exposing
    ``to_dto()`` and, optionally, ``__entity_name__`` for error messages.

Conditional update:
    UPDATE <table>
       SET <fields>, version = version + 1, updated_at = :now, updated_by_id = :actor
     WHERE id = :id AND tenant_id = :tenant AND <expected columns match>

    A zero rowcount is disambiguated by re-reading the row inside the same
    transaction: absent -> NotFoundError, present -> ConcurrentModificationError.

Timeouts:
    PostgreSQL: SET LOCAL statement_timeout / lock_timeout for the call.
    SQLite: PRAGMA busy_timeout for the connection.
    A driver error that reports a timeout becomes StoreTimeoutError.
"""

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from budget_kernel.db.engine import session_scope
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    ReferentialIntegrityError,
    StoreError,
    StoreTimeoutError,
    ValidationError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.store.base import DEFAULT_ORDER

logger = get_logger("store.sql")

_TIMEOUT_MARKERS = (
    "statement timeout",
    "lock timeout",
    "canceling statement",
    "database is locked",
)

# Columns owned by the store; callers may not write them directly.
_MANAGED_COLUMNS = frozenset(
    {"id", "tenant_id", "version", "created_at", "created_by_id", "updated_at", "updated_by_id"}
)


def _entity_name(model: type) -> str:
    return getattr(model, "__entity_name__", model.__name__)


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


class SqlEntityStore:
    """
    EntityStore over a SQLAlchemy session factory.

    Args:
        session_factory: Factory producing sessions bound to the target engine.
        clock: Source of created_at/updated_at values.
        default_timeout: Seconds applied when a call passes no timeout.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        default_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._default_timeout = default_timeout

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(
        self,
        model: type,
        entity_id: UUID,
        tenant_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Any:
        with self._session("get", model, timeout) as session:
            row = self._load(session, model, entity_id, tenant_id)
            if row is None:
                raise NotFoundError(_entity_name(model), entity_id, tenant_id)
            return row.to_dto()

    def find(
        self,
        model: type,
        tenant_id: UUID,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = DEFAULT_ORDER,
        timeout: float | None = None,
    ) -> list[Any]:
        stmt = select(model).where(model.tenant_id == tenant_id)
        for name, value in (filters or {}).items():
            column = self._column(model, name)
            if value is None:
                stmt = stmt.where(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        stmt = stmt.order_by(*(self._column(model, name) for name in order_by))

        with self._session("find", model, timeout) as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(
        self,
        model: type,
        fields: Mapping[str, Any],
        tenant_id: UUID,
        actor_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Any:
        values = dict(fields)
        self._reject_managed(model, values, allow={"id"})
        now = self._clock.now()
        entity_id = values.pop("id", None) or uuid4()
        row = model(id=entity_id, **values)
        row.tenant_id = tenant_id
        row.version = 1
        row.created_at = now
        row.updated_at = now
        row.created_by_id = actor_id

        with self._session("insert", model, timeout) as session:
            session.add(row)
            session.flush()
            return row.to_dto()

    def update(
        self,
        model: type,
        entity_id: UUID,
        fields: Mapping[str, Any],
        tenant_id: UUID,
        actor_id: UUID,
        *,
        expected: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        values = dict(fields)
        self._reject_managed(model, values)
        expected = dict(expected or {})

        conditions = [model.id == entity_id, model.tenant_id == tenant_id]
        for name, value in expected.items():
            column = self._column(model, name)
            conditions.append(column.is_(None) if value is None else column == value)

        stmt = (
            update(model)
            .where(*conditions)
            .values(
                **values,
                version=model.version + 1,
                updated_at=self._clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )

        with self._session("update", model, timeout) as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                if self._load(session, model, entity_id, tenant_id) is None:
                    raise NotFoundError(_entity_name(model), entity_id, tenant_id)
                logger.debug(
                    "conditional_update_conflict",
                    extra={
                        "entity_type": _entity_name(model),
                        "entity_id": str(entity_id),
                        "expected": expected,
                    },
                )
                raise ConcurrentModificationError(
                    _entity_name(model), entity_id, expected
                )
            row = self._load(session, model, entity_id, tenant_id)
            return row.to_dto()

    def delete(
        self,
        model: type,
        entity_id: UUID,
        tenant_id: UUID,
        *,
        timeout: float | None = None,
    ) -> None:
        with self._session("delete", model, timeout, entity_id) as session:
            row = self._load(session, model, entity_id, tenant_id)
            if row is None:
                raise NotFoundError(_entity_name(model), entity_id, tenant_id)
            session.delete(row)
            session.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _session(
        self,
        operation: str,
        model: type,
        timeout: float | None,
        entity_id: UUID | None = None,
    ) -> Iterator[Session]:
        """Transactional scope with timeout applied and driver errors translated."""
        timeout = timeout if timeout is not None else self._default_timeout
        entity = _entity_name(model)
        try:
            with session_scope(self._session_factory) as session:
                if timeout is not None:
                    self._apply_timeout(session, timeout)
                yield session
        except IntegrityError as exc:
            if operation == "delete":
                raise ReferentialIntegrityError(
                    entity, entity_id, "record is still referenced"
                ) from exc
            raise ValidationError(
                f"{entity} {operation} violates a database constraint: {exc.orig}"
            ) from exc
        except OperationalError as exc:
            if _is_timeout(exc):
                logger.warning(
                    "store_timeout",
                    extra={"operation": operation, "entity_type": entity, "timeout": timeout},
                )
                raise StoreTimeoutError(operation, entity, timeout) from exc
            raise StoreError(f"{entity} {operation} failed: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{entity} {operation} failed: {exc}") from exc

    @staticmethod
    def _apply_timeout(session: Session, timeout: float) -> None:
        millis = max(1, int(timeout * 1000))
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {millis}"))
            session.execute(text(f"SET LOCAL lock_timeout = {millis}"))
        elif dialect == "sqlite":
            session.execute(text(f"PRAGMA busy_timeout = {millis}"))

    @staticmethod
    def _load(session: Session, model: type, entity_id: UUID, tenant_id: UUID):
        stmt = select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
        return session.scalars(stmt).one_or_none()

    @staticmethod
    def _column(model: type, name: str):
        if name not in model.__table__.columns:
            raise ValidationError(
                f"{_entity_name(model)} has no column {name!r}", field=name
            )
        return getattr(model, name)

    @staticmethod
    def _reject_managed(model: type, values: dict, allow: frozenset | set = frozenset()) -> None:
        for name in values:
            if name in _MANAGED_COLUMNS and name not in allow:
                raise ValidationError(
                    f"{name!r} is maintained by the store", field=name
                )
            if name not in model.__table__.columns:
                raise ValidationError(
                    f"{_entity_name(model)} has no column {name!r}", field=name
                )
