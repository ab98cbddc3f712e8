"""
Exceptions raised by the automation engine.

Lock contention and duplicate idempotency keys are normal outcomes and are
reported as skips by the callers; these classes exist so the layers that
make those decisions can tell them apart from real failures.
"""


class AutomationError(Exception):
    """Base exception for automation job and outbox operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class AutomationConfigError(AutomationError):
    """Service credentials or required settings are missing."""

    def __init__(self, message: str):
        super().__init__(message, operation="configuration", recoverable=False)


class JobLockError(AutomationError):
    """The ledger could not be read or updated while claiming a run."""


class DuplicateOutboxMessageError(AutomationError):
    """An outbox row with the same (tenant_id, idempotency_key) already exists."""

    def __init__(self, tenant_id: str, idempotency_key: str):
        super().__init__(
            f"Outbox message already exists for key {idempotency_key}",
            operation="outbox_insert",
        )
        self.tenant_id = tenant_id
        self.idempotency_key = idempotency_key


class OutboxMessageNotFoundError(AutomationError):
    """Message does not exist, belongs to another tenant, or is soft-deleted."""

    def __init__(self, tenant_id: str, message_id: str):
        super().__init__(f"Outbox message {message_id} not found", operation="outbox_lookup")
        self.tenant_id = tenant_id
        self.message_id = message_id


class OutboxTransitionError(AutomationError):
    """Requested status change is not allowed from the message's current status."""

    def __init__(self, message_id: str, current_status: str, target_status: str):
        super().__init__(
            f"Cannot move outbox message {message_id} from {current_status} to {target_status}",
            operation="outbox_transition",
        )
        self.message_id = message_id
        self.current_status = current_status
        self.target_status = target_status


class LeadNotFoundError(AutomationError):
    """Lead id passed to the dispatcher does not exist."""

    def __init__(self, lead_id: str):
        super().__init__("Lead not found", operation="lead_lookup")
        self.lead_id = lead_id
