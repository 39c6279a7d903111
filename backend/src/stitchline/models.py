"""
Status constants for the piecework backend.
Damage report lifecycle: Reported → Rework → Returned → Final completion → Closed
"""


class WorkStatus:
    """Work unit (bundle) statuses."""
    AVAILABLE = 'available'
    ASSIGNED = 'assigned'
    SELF_ASSIGNED = 'self_assigned'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    OPERATOR_COMPLETED = 'operator_completed'
    ON_HOLD = 'on_hold'
    CANCELLED = 'cancelled'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    REWORK = 'rework'

    # Statuses from which the assigned operator may complete the unit
    COMPLETABLE = (ASSIGNED, SELF_ASSIGNED, IN_PROGRESS)


class PaymentStatus:
    """Payment state of a work unit."""
    NORMAL = 'normal'
    HELD_FOR_DAMAGE = 'held_for_damage'
    RELEASED = 'released'


class OperatorState:
    """Live operator status values."""
    ACTIVE = 'active'
    ASSIGNED = 'assigned'


class DamageStatus:
    """Damage report statuses."""
    REPORTED = 'reported_to_supervisor'
    ACKNOWLEDGED = 'acknowledged'
    IN_QUEUE = 'in_supervisor_queue'
    REWORK_STARTED = 'rework_in_progress'
    REWORK_COMPLETED = 'rework_completed'
    RETURNED = 'returned_to_operator'
    FINAL_COMPLETION = 'final_completed'
    CLOSED = 'closed'
    ESCALATED = 'escalated_to_admin'
    CANCELLED = 'cancelled'
    REJECTED = 'rejected'

    # Reports still waiting on the supervisor (subject to SLA escalation)
    AWAITING_SUPERVISOR = (REPORTED, ACKNOWLEDGED, IN_QUEUE)
    # Reports the supervisor may start rework on
    REWORK_STARTABLE = (REPORTED, ACKNOWLEDGED, IN_QUEUE, ESCALATED)
    # Reports that may still be cancelled or rejected
    VOIDABLE = (REPORTED, ACKNOWLEDGED, IN_QUEUE, ESCALATED)
    # Reports that need operator attention or are still with the supervisor
    PENDING_REWORK = (ACKNOWLEDGED, IN_QUEUE, REWORK_STARTED, RETURNED)
    TERMINAL = (CLOSED, CANCELLED, REJECTED)


class Severity:
    MINOR = 'minor'
    MAJOR = 'major'
    SEVERE = 'severe'

    ALL = (MINOR, MAJOR, SEVERE)


class Urgency:
    LOW = 'low'
    NORMAL = 'normal'
    HIGH = 'high'
    URGENT = 'urgent'

    ALL = (LOW, NORMAL, HIGH, URGENT)


class QueueEntryStatus:
    PENDING = 'pending'
    RESOLVED = 'resolved'


class WageRecordType:
    """Wage ledger entry types."""
    BUNDLE_COMPLETION = 'bundle_completion'
    REWORK_COMPLETION = 'rework_completion'


class NotificationType:
    WORK_ASSIGNMENT = 'work_assignment'
    DAMAGE_REPORTED = 'damage_reported'
    REWORK_STARTED = 'rework_started'
    REWORK_COMPLETED = 'rework_completed'
    PIECES_RETURNED = 'pieces_returned'
    PAYMENT_RELEASED = 'payment_released'
    REPORT_ESCALATED = 'damage_escalated'
    REPORT_CANCELLED = 'damage_cancelled'


class RecipientRole:
    OPERATOR = 'operator'
    SUPERVISOR = 'supervisor'
    ADMIN = 'admin'
