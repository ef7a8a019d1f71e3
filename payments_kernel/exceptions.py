"""
Typed Exception Hierarchy for the Payments Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (API handlers, batch scripts, the payment desk) must
react to failures precisely: a unit mismatch is resolved by the person
filling the boletín, a schedule conflict by whoever owns the other schedule,
a locked request by restarting its flow.  Parsing message strings for that
is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (offending doc numbers, units, ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PaymentsEngineError (base)
    |
    +-- ValidationError
    |   +-- MissingUnitError
    |   +-- UnitNotFoundError
    |   +-- InvalidLineError
    |   +-- EmptyBoletinError
    |   +-- OrderMismatchError
    |   +-- InvalidStatusError
    |   +-- MissingRejectionReasonError
    |   +-- MissingOverrideReasonError
    |   +-- InvalidDateError
    |   +-- EmptySelectionError
    |   +-- PaymentDateInPastError
    |   +-- PaymentDateBeforeCreationError
    |
    +-- ConflictError
    |   +-- UnitMismatchError
    |   +-- QuantityExceededError
    |   +-- ScheduleConflictError
    |   +-- RequestNotEligibleError
    |   +-- RequestAfterCommitmentError
    |   +-- AlreadySentError
    |   +-- AlreadyCancelledError
    |   +-- NotAllApprovedError
    |
    +-- NotFoundError
    |   +-- PaymentRequestNotFoundError
    |   +-- PaymentScheduleNotFoundError
    |   +-- OrderItemNotFoundError
    |
    +-- StateError
    |   +-- RequestLockedError
    |   +-- InvalidRequestTransitionError
    |   +-- NotApprovedError
    |   +-- AlreadyAtFirstLevelError
    |   +-- InvalidScheduleTransitionError
    |
    +-- AuthorizationError
    |   +-- PermissionDeniedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        schedule = service.create(request_ids, ...)
    except ScheduleConflictError as e:
        api_response(code=e.code, schedules=e.schedule_numbers)
    except ValidationError as e:
        api_response(code=e.code, message=str(e))

Every failure aborts the whole transaction; no partial state is written.
"""


class PaymentsEngineError(Exception):
    """
    Base exception for all payments engine errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYMENTS_ENGINE_ERROR"


# =============================================================================
# Categories
# =============================================================================


class ValidationError(PaymentsEngineError):
    """Input is malformed or incomplete; nothing was applied."""

    code: str = "VALIDATION_ERROR"


class ConflictError(PaymentsEngineError):
    """Input is well-formed but conflicts with persisted state."""

    code: str = "CONFLICT"


class NotFoundError(PaymentsEngineError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"


class StateError(PaymentsEngineError):
    """The entity's current lifecycle state forbids the operation."""

    code: str = "INVALID_STATE"


class AuthorizationError(PaymentsEngineError):
    """The caller lacks the capability required for the operation."""

    code: str = "AUTHORIZATION_ERROR"


class ImmutabilityError(PaymentsEngineError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


# =============================================================================
# Validation errors
# =============================================================================


class MissingUnitError(ValidationError):
    """A boletín line has no unit of measure."""

    code: str = "MISSING_UNIT"

    def __init__(self, item_id: str, line_index: int):
        self.item_id = item_id
        self.line_index = line_index
        super().__init__(
            f"Line {line_index + 1} (item {item_id}) has no unit of measure"
        )


class UnitNotFoundError(ValidationError):
    """Unit of measure code is not in the catalog."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, item_id: str, unit_code: str):
        self.item_id = item_id
        self.unit_code = unit_code
        super().__init__(
            f"Unit of measure '{unit_code}' for item {item_id} does not exist in the catalog"
        )


class InvalidLineError(ValidationError):
    """A boletín line carries an out-of-range numeric field."""

    code: str = "INVALID_LINE"

    def __init__(self, item_id: str, field: str, value: str, reason: str):
        self.item_id = item_id
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value} on item {item_id}: {reason}")


class EmptyBoletinError(ValidationError):
    """A boletín must carry at least one line."""

    code: str = "EMPTY_BOLETIN"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Boletín for order {order_id} has no lines")


class OrderMismatchError(ValidationError):
    """An edit referenced a different purchase order than the stored boletín."""

    code: str = "ORDER_MISMATCH"

    def __init__(self, doc_number: str, stored_order_id: str, requested_order_id: str):
        self.doc_number = doc_number
        self.stored_order_id = stored_order_id
        self.requested_order_id = requested_order_id
        super().__init__(
            f"Boletín {doc_number} belongs to order {stored_order_id}, "
            f"not {requested_order_id}"
        )


class InvalidStatusError(ValidationError):
    """Requested status is not a member of the status set."""

    code: str = "INVALID_STATUS"

    def __init__(self, status: str, allowed: tuple[str, ...]):
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Invalid status '{status}'; expected one of {', '.join(allowed)}"
        )


class MissingRejectionReasonError(ValidationError):
    """A rejection requires a non-empty reason."""

    code: str = "MISSING_REJECTION_REASON"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Rejecting payment request {request_id} requires a reason")


class MissingOverrideReasonError(ValidationError):
    """A privileged status override requires a justification."""

    code: str = "MISSING_OVERRIDE_REASON"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Overriding the status of payment request {request_id} requires a reason"
        )


class InvalidDateError(ValidationError):
    """A date field could not be parsed as a calendar date."""

    code: str = "INVALID_DATE"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: '{value}' is not a calendar date")


class EmptySelectionError(ValidationError):
    """A schedule must include at least one payment request."""

    code: str = "EMPTY_SELECTION"

    def __init__(self):
        super().__init__("Select at least one payment request")


class PaymentDateInPastError(ValidationError):
    """Payment date is earlier than the processing date."""

    code: str = "PAYMENT_DATE_IN_PAST"

    def __init__(self, payment_date: str, today: str):
        self.payment_date = payment_date
        self.today = today
        super().__init__(
            f"Payment date {payment_date} is earlier than today ({today})"
        )


class PaymentDateBeforeCreationError(ValidationError):
    """Payment date precedes the schedule's own creation date."""

    code: str = "PAYMENT_DATE_BEFORE_CREATION"

    def __init__(self, schedule_number: str, payment_date: str, created_on: str):
        self.schedule_number = schedule_number
        self.payment_date = payment_date
        self.created_on = created_on
        super().__init__(
            f"Payment date {payment_date} precedes the creation date "
            f"of schedule {schedule_number} ({created_on})"
        )


# =============================================================================
# Conflict errors
# =============================================================================


class UnitMismatchError(ConflictError):
    """Line unit differs from the unit committed by a prior boletín."""

    code: str = "UNIT_MISMATCH"

    def __init__(self, item_id: str, requested_unit: str, required_unit: str):
        self.item_id = item_id
        self.requested_unit = requested_unit
        self.required_unit = required_unit
        super().__init__(
            f"Item {item_id} must use unit '{required_unit}' "
            f"(previous boletines), got '{requested_unit}'"
        )


class QuantityExceededError(ConflictError):
    """Requested quantity exceeds the received quantity still available."""

    code: str = "QUANTITY_EXCEEDED"

    def __init__(self, item_id: str, requested: str, available: str):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Item {item_id}: requested {requested} exceeds available {available}"
        )


class ScheduleConflictError(ConflictError):
    """Payment requests already belong to an active schedule."""

    code: str = "SCHEDULE_CONFLICT"

    def __init__(self, request_ids: list[str], schedule_numbers: list[str]):
        self.request_ids = request_ids
        self.schedule_numbers = schedule_numbers
        super().__init__(
            "Payment requests already scheduled in: " + ", ".join(schedule_numbers)
        )


class RequestNotEligibleError(ConflictError):
    """Rejected payment requests cannot be scheduled."""

    code: str = "REQUEST_NOT_ELIGIBLE"

    def __init__(self, doc_numbers: list[str]):
        self.doc_numbers = doc_numbers
        super().__init__(
            "Rejected payment requests cannot be scheduled: " + ", ".join(doc_numbers)
        )


class RequestAfterCommitmentError(ConflictError):
    """A selected boletín is dated after the commitment date."""

    code: str = "REQUEST_AFTER_COMMITMENT"

    def __init__(self, doc_number: str, request_date: str, commitment_date: str):
        self.doc_number = doc_number
        self.request_date = request_date
        self.commitment_date = commitment_date
        super().__init__(
            f"Boletín {doc_number} is dated {request_date}, "
            f"after the commitment date {commitment_date}"
        )


class AlreadySentError(ConflictError):
    """Schedule was already sent to finance and is immutable."""

    code: str = "ALREADY_SENT"

    def __init__(self, schedule_number: str):
        self.schedule_number = schedule_number
        super().__init__(f"Schedule {schedule_number} was already sent to finance")


class AlreadyCancelledError(ConflictError):
    """Schedule is cancelled."""

    code: str = "ALREADY_CANCELLED"

    def __init__(self, schedule_number: str):
        self.schedule_number = schedule_number
        super().__init__(f"Schedule {schedule_number} is cancelled")


class NotAllApprovedError(ConflictError):
    """Some non-rejected member requests are not approved."""

    code: str = "NOT_ALL_APPROVED"

    def __init__(self, schedule_number: str, doc_numbers: list[str]):
        self.schedule_number = schedule_number
        self.doc_numbers = doc_numbers
        super().__init__(
            f"Schedule {schedule_number} has unapproved payment requests: "
            + ", ".join(doc_numbers)
        )


# =============================================================================
# Not-found errors
# =============================================================================


class PaymentRequestNotFoundError(NotFoundError):
    """One or more payment request ids do not exist."""

    code: str = "PAYMENT_REQUEST_NOT_FOUND"

    def __init__(self, request_ids: list[str]):
        self.request_ids = request_ids
        super().__init__("Payment request(s) not found: " + ", ".join(request_ids))


class PaymentScheduleNotFoundError(NotFoundError):
    """Schedule id does not exist."""

    code: str = "PAYMENT_SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Payment schedule not found: {schedule_id}")


class OrderItemNotFoundError(NotFoundError):
    """A boletín line references an item absent from the purchase order."""

    code: str = "ORDER_ITEM_NOT_FOUND"

    def __init__(self, order_id: str, item_id: str):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} is not part of order {order_id}")


# =============================================================================
# State errors
# =============================================================================


class RequestLockedError(StateError):
    """Payment request can no longer be edited."""

    code: str = "REQUEST_LOCKED"

    def __init__(
        self,
        doc_number: str,
        status: str,
        schedule_numbers: list[str] | None = None,
    ):
        self.doc_number = doc_number
        self.status = status
        self.schedule_numbers = schedule_numbers or []
        if self.schedule_numbers:
            reason = "it is scheduled in " + ", ".join(self.schedule_numbers)
        else:
            reason = f"its status is {status}"
        super().__init__(f"Boletín {doc_number} cannot be edited: {reason}")


class InvalidRequestTransitionError(StateError):
    """Payment request status transition is not part of the normal flow."""

    code: str = "INVALID_REQUEST_TRANSITION"

    def __init__(self, doc_number: str, from_status: str, to_status: str):
        self.doc_number = doc_number
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Boletín {doc_number} cannot move from {from_status} to {to_status}"
        )


class NotApprovedError(StateError):
    """Schedule must be approved before it is sent to finance."""

    code: str = "NOT_APPROVED"

    def __init__(self, schedule_number: str, status: str):
        self.schedule_number = schedule_number
        self.status = status
        super().__init__(
            f"Schedule {schedule_number} must be approved first (status {status})"
        )


class AlreadyAtFirstLevelError(StateError):
    """Schedule is already pending approval."""

    code: str = "ALREADY_AT_FIRST_LEVEL"

    def __init__(self, schedule_number: str):
        self.schedule_number = schedule_number
        super().__init__(f"Schedule {schedule_number} is already pending approval")


class InvalidScheduleTransitionError(StateError):
    """Schedule workflow has no such transition from the current state."""

    code: str = "INVALID_SCHEDULE_TRANSITION"

    def __init__(self, schedule_number: str, status: str, action: str):
        self.schedule_number = schedule_number
        self.status = status
        self.action = action
        super().__init__(
            f"Schedule {schedule_number} cannot '{action}' from status {status}"
        )


# =============================================================================
# Authorization / immutability
# =============================================================================


class PermissionDeniedError(AuthorizationError):
    """Actor does not hold the capability for the requested action."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor: str, action: str, reason: str):
        self.actor = actor
        self.action = action
        self.reason = reason
        super().__init__(f"{actor} may not perform '{action}': {reason}")


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
