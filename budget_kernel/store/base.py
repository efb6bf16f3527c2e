"""
Module: budget_kernel.store.base
Responsibility: The EntityStore contract every persistence backend
    implements, and the default ordering used by ``find``.
Architecture position: Kernel > Store.  Services depend on this protocol,
    never on a concrete backend, so tests can wrap a real store to inject
    faults or interleavings.

Invariants enforced:
    - Every call is scoped to one tenant; a record owned by another tenant
      is indistinguishable from a missing one (NotFoundError).
    - ``update`` is a compare-and-swap: it applies only while every column
      in ``expected`` still holds the given value, and bumps ``version``.
    - Each call is atomic for the single record it touches.  Nothing is
      atomic across calls.

Failure modes:
    - NotFoundError: id unknown within the tenant.
    - ConcurrentModificationError: ``expected`` no longer matches.
    - ReferentialIntegrityError: delete blocked by dependent records.
    - ValidationError: insert/update rejected by a database constraint.
    - StoreTimeoutError: the call exceeded ``timeout`` seconds.
    - StoreError: any other backend failure.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

DEFAULT_ORDER: tuple[str, ...] = ("created_at", "id")


@runtime_checkable
class EntityStore(Protocol):
    """Tenant-scoped CRUD over ORM model classes, returning frozen DTOs."""

    def get(
        self,
        model: type,
        entity_id: UUID,
        tenant_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Any:
        ...

    def find(
        self,
        model: type,
        tenant_id: UUID,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = DEFAULT_ORDER,
        timeout: float | None = None,
    ) -> list[Any]:
        ...

    def insert(
        self,
        model: type,
        fields: Mapping[str, Any],
        tenant_id: UUID,
        actor_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Any:
        ...

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
        ...

    def delete(
        self,
        model: type,
        entity_id: UUID,
        tenant_id: UUID,
        *,
        timeout: float | None = None,
    ) -> None:
        ...
