"""
Typed Exception Hierarchy for the Giving Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money movement needs precise error handling. Callers (API handlers, the
gateway callback endpoint, the background worker) must decide whether an
error is the payer's fault, a transient rail problem, or a data-integrity
alarm -- and they must decide it by TYPE, never by parsing messages.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (amounts, ids, statuses)

Example:
    try:
        ledger.create(payer_id, method_id, category_id, 50)
    except InvalidAmountError as e:
        api_response(code=e.code, minimum=e.minimum, maximum=e.maximum)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from GivingKernelError:

    GivingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidGivingRequestError
    |   +-- InvalidCurrencyError
    |
    +-- TransactionError
    |   +-- TransactionNotFoundError
    |   +-- InvalidTransitionError
    |   +-- DuplicateSettlementError
    |   +-- IdempotencyConflictError
    |   +-- RefundExceedsOriginalError
    |   +-- TransactionNotRefundableError
    |   +-- RetryNotAllowedError
    |
    +-- SessionError
    |   +-- SessionNotFoundError
    |   +-- SessionExpiredError
    |   +-- SessionAlreadyActiveError
    |   +-- SessionNotApplicableError
    |
    +-- GatewayError
    |   +-- GatewayTransientError
    |   +-- GatewayPermanentError
    |
    +-- PaymentMethodError
    |   +-- PaymentMethodNotFoundError
    |   +-- PaymentMethodInactiveError
    |
    +-- PlanError
    |   +-- PlanNotFoundError
    |   +-- InvalidPlanError
    |   +-- InvalidPlanTransitionError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_AMOUNT              | Gross outside method min/max, fee >= gross
                | INVALID_GIVING_REQUEST      | Missing phone/network/account number
                | INVALID_CURRENCY            | Not a valid ISO 4217 code
----------------|-----------------------------|-----------------------------------------
Transaction     | TRANSACTION_NOT_FOUND       | Transaction id doesn't exist
                | INVALID_TRANSITION          | Illegal status edge attempted
                | DUPLICATE_SETTLEMENT        | Completed with a different gateway id
                | IDEMPOTENCY_CONFLICT        | Same reference, different parameters
                | REFUND_EXCEEDS_ORIGINAL     | Cumulative refunds > original net
                | TRANSACTION_NOT_REFUNDABLE  | Original is not a completed payment
                | RETRY_NOT_ALLOWED           | No retry due, or retries exhausted
----------------|-----------------------------|-----------------------------------------
Session         | SESSION_NOT_FOUND           | Callback for an unknown session
                | SESSION_EXPIRED             | Acting on a session past its expiry
                | SESSION_ALREADY_ACTIVE      | Transaction already has a live session
                | SESSION_NOT_APPLICABLE      | Method has no gateway capability
----------------|-----------------------------|-----------------------------------------
Gateway         | GATEWAY_TRANSIENT           | Timeout, network, busy (retryable)
                | GATEWAY_PERMANENT           | Insufficient funds, bad phone number
----------------|-----------------------------|-----------------------------------------
Payment method  | PAYMENT_METHOD_NOT_FOUND    | Method id/code doesn't exist
                | PAYMENT_METHOD_INACTIVE     | Method is deactivated
----------------|-----------------------------|-----------------------------------------
Plan            | PLAN_NOT_FOUND              | Plan id doesn't exist
                | INVALID_PLAN                | Bad amount/dates/max payments/method
                | INVALID_PLAN_TRANSITION     | e.g. resuming a cancelled plan
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Row changed by another transaction
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Editing amounts, deleting records

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION ERRORS are returned synchronously and never retried:

    except ValidationError as e:
        return {"error": e.code, "message": str(e)}

2. GATEWAY ERRORS are classified at the boundary:

    except GatewayTransientError:
        ...  # leave the session open; callback or expiry sweep resolves it
    except GatewayPermanentError as e:
        ledger.mark_failed(tx.id, e.reason)

3. DUPLICATE SETTLEMENT is an alert, not a crash, at the callback boundary.
   The session manager logs it and keeps the existing state.
"""


class GivingKernelError(Exception):
    """
    Base exception for all giving kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "GIVING_KERNEL_ERROR"


# Validation exceptions


class ValidationError(GivingKernelError):
    """Base exception for synchronous input validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Gross amount violates the payment method's limits."""

    code: str = "INVALID_AMOUNT"

    def __init__(
        self,
        amount: int,
        minimum: int | None = None,
        maximum: int | None = None,
        reason: str | None = None,
    ):
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        self.reason = reason
        if reason is None:
            bounds = f"minimum {minimum}" if minimum is not None else ""
            if maximum is not None:
                bounds = f"{bounds}, maximum {maximum}" if bounds else f"maximum {maximum}"
            reason = f"outside allowed range ({bounds})"
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidGivingRequestError(ValidationError):
    """A giving request is missing data the payment method requires."""

    code: str = "INVALID_GIVING_REQUEST"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid giving request ({field}): {message}")


class InvalidCurrencyError(ValidationError):
    """Not a recognized ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Transaction exceptions


class TransactionError(GivingKernelError):
    """Base exception for transaction ledger errors."""

    code: str = "TRANSACTION_ERROR"


class TransactionNotFoundError(TransactionError):
    """Transaction with given id was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidTransitionError(TransactionError):
    """An illegal status change was attempted. State is left unchanged."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, transaction_id: str, from_status: str, to_status: str):
        self.transaction_id = transaction_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for transaction {transaction_id}: "
            f"{from_status} -> {to_status}"
        )


class DuplicateSettlementError(TransactionError):
    """
    A completed transaction received a confirmation with a different
    gateway transaction id.

    Data-integrity alert: the payer may have been charged twice.
    """

    code: str = "DUPLICATE_SETTLEMENT"

    def __init__(
        self,
        transaction_id: str,
        existing_gateway_tx_id: str | None,
        received_gateway_tx_id: str,
    ):
        self.transaction_id = transaction_id
        self.existing_gateway_tx_id = existing_gateway_tx_id
        self.received_gateway_tx_id = received_gateway_tx_id
        super().__init__(
            f"Transaction {transaction_id} already settled as "
            f"{existing_gateway_tx_id}, received {received_gateway_tx_id}"
        )


class IdempotencyConflictError(TransactionError):
    """Reference already used for a transaction with different parameters."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, reference: str, existing_transaction_id: str):
        self.reference = reference
        self.existing_transaction_id = existing_transaction_id
        super().__init__(
            f"Reference {reference} already belongs to transaction "
            f"{existing_transaction_id} with different parameters"
        )


class RefundExceedsOriginalError(TransactionError):
    """Cumulative refunds would exceed the original net amount."""

    code: str = "REFUND_EXCEEDS_ORIGINAL"

    def __init__(
        self,
        transaction_id: str,
        requested: int,
        already_refunded: int,
        original_net: int,
    ):
        self.transaction_id = transaction_id
        self.requested = requested
        self.already_refunded = already_refunded
        self.original_net = original_net
        super().__init__(
            f"Refund of {requested} on transaction {transaction_id} exceeds "
            f"refundable amount {original_net - already_refunded} "
            f"(net {original_net}, already refunded {already_refunded})"
        )


class TransactionNotRefundableError(TransactionError):
    """Only completed payment transactions can be refunded or adjusted."""

    code: str = "TRANSACTION_NOT_REFUNDABLE"

    def __init__(self, transaction_id: str, status: str, transaction_type: str):
        self.transaction_id = transaction_id
        self.status = status
        self.transaction_type = transaction_type
        super().__init__(
            f"Transaction {transaction_id} ({transaction_type}, {status}) "
            "is not a completed payment"
        )


class RetryNotAllowedError(TransactionError):
    """Retry is not allowed for this transaction."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            f"Retry not allowed for transaction {transaction_id}: {reason}"
        )


# Gateway session exceptions


class SessionError(GivingKernelError):
    """Base exception for gateway session errors."""

    code: str = "SESSION_ERROR"


class SessionNotFoundError(SessionError):
    """Gateway session with given id was not found."""

    code: str = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Gateway session not found: {session_id}")


class SessionExpiredError(SessionError):
    """The gateway session is past its expiry."""

    code: str = "SESSION_EXPIRED"

    def __init__(self, session_id: str, expires_at: str):
        self.session_id = session_id
        self.expires_at = expires_at
        super().__init__(f"Gateway session {session_id} expired at {expires_at}")


class SessionAlreadyActiveError(SessionError):
    """A transaction may have at most one live gateway session."""

    code: str = "SESSION_ALREADY_ACTIVE"

    def __init__(self, transaction_id: str, session_id: str):
        self.transaction_id = transaction_id
        self.session_id = session_id
        super().__init__(
            f"Transaction {transaction_id} already has active session {session_id}"
        )


class SessionNotApplicableError(SessionError):
    """Session requested for a transaction that cannot have one."""

    code: str = "SESSION_NOT_APPLICABLE"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            f"Cannot open gateway session for transaction {transaction_id}: {reason}"
        )


# Gateway exceptions


class GatewayError(GivingKernelError):
    """Base exception for errors reported by the payment gateway."""

    code: str = "GATEWAY_ERROR"

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Gateway error: {reason}")


class GatewayTransientError(GatewayError):
    """Retryable gateway failure (timeout, network error, gateway busy)."""

    code: str = "GATEWAY_TRANSIENT"


class GatewayPermanentError(GatewayError):
    """Non-retryable gateway failure (insufficient funds, invalid phone)."""

    code: str = "GATEWAY_PERMANENT"


# Payment method exceptions


class PaymentMethodError(GivingKernelError):
    """Base exception for payment method errors."""

    code: str = "PAYMENT_METHOD_ERROR"


class PaymentMethodNotFoundError(PaymentMethodError):
    """Payment method with given id or code was not found."""

    code: str = "PAYMENT_METHOD_NOT_FOUND"

    def __init__(self, method_ref: str):
        self.method_ref = method_ref
        super().__init__(f"Payment method not found: {method_ref}")


class PaymentMethodInactiveError(PaymentMethodError):
    """Payment method is deactivated."""

    code: str = "PAYMENT_METHOD_INACTIVE"

    def __init__(self, method_code: str):
        self.method_code = method_code
        super().__init__(f"Payment method is inactive: {method_code}")


# Recurring plan exceptions


class PlanError(GivingKernelError):
    """Base exception for recurring giving plan errors."""

    code: str = "PLAN_ERROR"


class PlanNotFoundError(PlanError):
    """Recurring plan with given id was not found."""

    code: str = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Recurring plan not found: {plan_id}")


class InvalidPlanError(PlanError):
    """Plan definition is invalid."""

    code: str = "INVALID_PLAN"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid recurring plan ({field}): {message}")


class InvalidPlanTransitionError(PlanError):
    """Illegal plan lifecycle change."""

    code: str = "INVALID_PLAN_TRANSITION"

    def __init__(self, plan_id: str, from_status: str, to_status: str):
        self.plan_id = plan_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for plan {plan_id}: {from_status} -> {to_status}"
        )


# Concurrency exceptions


class ConcurrencyError(GivingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(GivingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete an immutable financial record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
