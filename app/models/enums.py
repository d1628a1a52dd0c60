import enum

from sqlalchemy import Enum


class ExecutionStatus(str, enum.Enum):
    PENDING_SELECTION = "pending_selection"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    AUTHORIZING = "authorizing"
    AWAITING_FUNDS = "awaiting_funds"
    PAYMENT_CONFIRMED = "payment_confirmed"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    NEEDS_ATTENTION = "needs_attention"

    COMPLETED = "completed"
    SELECTION_FAILED = "selection_failed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    PAYMENT_FAILED = "payment_failed"
    SUBMISSION_FAILED = "submission_failed"
    FULFILLMENT_FAILED = "fulfillment_failed"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.SELECTION_FAILED,
        ExecutionStatus.REJECTED,
        ExecutionStatus.EXPIRED,
        ExecutionStatus.PAYMENT_FAILED,
        ExecutionStatus.SUBMISSION_FAILED,
        ExecutionStatus.FULFILLMENT_FAILED,
        ExecutionStatus.CANCELLED,
    }
)

# Terminal states after which a new execution may be started for the same occasion.
# Once funds were captured (or the gift arrived) the occasion is settled.
RETRYABLE_EXECUTION_STATUSES = TERMINAL_EXECUTION_STATUSES - {
    ExecutionStatus.COMPLETED,
    ExecutionStatus.SUBMISSION_FAILED,
    ExecutionStatus.FULFILLMENT_FAILED,
}

CANCELLABLE_EXECUTION_STATUSES = frozenset(
    {
        ExecutionStatus.PENDING_SELECTION,
        ExecutionStatus.PENDING_APPROVAL,
        ExecutionStatus.APPROVED,
        ExecutionStatus.AWAITING_FUNDS,
    }
)


class OrderStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CAPTURING = "capturing"
    PAYMENT_CONFIRMED = "payment_confirmed"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CAPTURE_FAILED = "capture_failed"
    SUBMISSION_FAILED = "submission_failed"
    FULFILLMENT_FAILED = "fulfillment_failed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELED = "canceled"


class FundingStatus(str, enum.Enum):
    FUNDED = "funded"
    AWAITING_FUNDS = "awaiting_funds"
    FUNDS_ALLOCATED = "funds_allocated"


class FundingHoldReason(str, enum.Enum):
    PAYMENT_NOT_CAPTURED = "payment_not_captured"
    # captured, waiting for funding reconciliation to check the vendor balance
    PENDING_ALLOCATION = "pending_allocation"
    INSUFFICIENT_OPERATING_BALANCE = "insufficient_operating_balance"


class FundingAlertType(str, enum.Enum):
    LOW_BALANCE = "low_balance"
    CRITICAL_BALANCE = "critical_balance"
    PENDING_ORDERS_WAITING = "pending_orders_waiting"


class FundingScheduleStatus(str, enum.Enum):
    EXPECTED = "expected"
    RECEIVED = "received"
    TRANSFERRED = "transferred"


class OnboardingState(str, enum.Enum):
    SIGNUP_STARTED = "signup_started"
    PROFILE_COMPLETED = "profile_completed"
    PREFERENCES_SET = "preferences_set"
    COMPLETED = "completed"


ONBOARDING_ORDER = [
    OnboardingState.SIGNUP_STARTED,
    OnboardingState.PROFILE_COMPLETED,
    OnboardingState.PREFERENCES_SET,
    OnboardingState.COMPLETED,
]


def status_enum(enum_cls, name: str):
    """String column restricted to the enum's values by a CHECK constraint."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=30,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
