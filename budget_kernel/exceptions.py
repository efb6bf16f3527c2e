"""
Typed exception hierarchy for the project budget core.

Every error the core raises is an instance of ``BudgetKernelError``. Callers
catch by type, never by message text, and read context from attributes:

    try:
        service.approve_change_order(ctx, change_order_id)
    except PartialApplyError as e:
        # Status is approved, budget is not; run reconciliation.
        service.reconcile_project_budget(ctx, e.project_id)
    except ConcurrentModificationError as e:
        retry_later(e.entity_type, e.entity_id)

Hierarchy::

    BudgetKernelError
    +-- NotFoundError
    +-- ValidationError
    |   +-- ReferentialIntegrityError
    +-- InvalidTransitionError
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    +-- CoordinationError
    |   +-- PartialApplyError
    +-- StoreError
    |   +-- StoreTimeoutError
    +-- OperationCancelledError

Codes:

    Code                     | When raised
    -------------------------|-------------------------------------------------
    NOT_FOUND                | Id does not resolve within the caller's tenant
    VALIDATION_ERROR         | Bad input (zero delta, blank reason, ...)
    REFERENTIAL_INTEGRITY    | Delete blocked by dependent records
    INVALID_TRANSITION       | Action not allowed from the current state
    CONCURRENT_MODIFICATION  | Conditional write lost to a concurrent writer
    PARTIAL_APPLY            | Change order approved, budget write failed
    STORE_TIMEOUT            | Store call exceeded its deadline
    OPERATION_CANCELLED      | Caller cancelled before any write

``retryable`` is a class attribute: True where the same call may succeed if
repeated (or, for PARTIAL_APPLY, where reconciliation repairs the state).
"""

from decimal import Decimal
from typing import Any


class BudgetKernelError(Exception):
    """Base exception for all budget core errors."""

    code: str = "BUDGET_KERNEL_ERROR"
    retryable: bool = False


class NotFoundError(BudgetKernelError):
    """Entity id does not exist for the caller's tenant."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any, tenant_id: Any = None):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.tenant_id = str(tenant_id) if tenant_id is not None else None
        super().__init__(f"{entity_type} not found: {entity_id}")


class ValidationError(BudgetKernelError):
    """Input rejected before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ReferentialIntegrityError(ValidationError):
    """Delete refused because other records still reference the entity."""

    code: str = "REFERENTIAL_INTEGRITY"

    def __init__(self, entity_type: str, entity_id: Any, detail: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Cannot delete {entity_type} {entity_id}: {detail}"
        )


class InvalidTransitionError(BudgetKernelError):
    """Workflow action not permitted from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str,
        action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state '{current_state}'"
        )


# Concurrency


class ConcurrencyError(BudgetKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConcurrentModificationError(ConcurrencyError):
    """A conditional write found the record changed since it was read."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        expected: dict[str, Any] | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected = dict(expected or {})
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "record was modified by another writer"
        )


# Coordination


class CoordinationError(BudgetKernelError):
    """Base exception for multi-write coordination failures."""

    code: str = "COORDINATION_ERROR"


class PartialApplyError(CoordinationError):
    """
    Change order status was committed but the project budget was not.

    The change order stays approved (its status write is never rolled back);
    ``reconcile_project_budget`` brings ``current_budget`` back in line.
    """

    code: str = "PARTIAL_APPLY"
    retryable: bool = True

    def __init__(
        self,
        change_order_id: Any,
        project_id: Any,
        target_budget: Decimal,
        attempts: int,
        cause: BaseException | None = None,
    ):
        self.change_order_id = str(change_order_id)
        self.project_id = str(project_id)
        self.target_budget = target_budget
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Change order {change_order_id} approved but budget of project "
            f"{project_id} not updated after {attempts} attempt(s): {cause}"
        )


# Store


class StoreError(BudgetKernelError):
    """Base exception for persistence failures."""

    code: str = "STORE_ERROR"


class StoreTimeoutError(StoreError):
    """Store call exceeded its deadline."""

    code: str = "STORE_TIMEOUT"
    retryable: bool = True

    def __init__(self, operation: str, entity_type: str, timeout: float | None):
        self.operation = operation
        self.entity_type = entity_type
        self.timeout = timeout
        super().__init__(
            f"Store {operation} on {entity_type} timed out after {timeout}s"
        )


class OperationCancelledError(BudgetKernelError):
    """Caller cancelled the operation before any write was issued."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str, entity_id: Any):
        self.operation = operation
        self.entity_id = str(entity_id)
        super().__init__(f"{operation} of {entity_id} cancelled before first write")
