"""
Damage report workflow.

Reported -> rework in progress -> rework completed -> returned to operator
-> closed, with escalation to admin on SLA breach and cancel/reject before
rework starts.

Every transition that touches money commits the report change together
with the ledger writes, so a report is never closed without its payment
released (and vice versa). Notifications go out after the commit and never
change the result.
"""
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .assignment import AssignmentService
from .config import config
from .damage_types import get_damage_penalty, get_damage_type
from .errors import (
    ConflictError,
    ConsistencyError,
    InfrastructureError,
    NotFoundError,
    StitchlineError,
    ValidationError,
)
from .logging import logger
from .models import DamageStatus, NotificationType, RecipientRole, Severity, Urgency
from .notifications import NotificationDispatcher, build_notification
from .store import BaseStore, Put, StoreUnavailable, TransactionConflict, Update
from .utils import parse_timestamp, to_decimal, utc_now
from .wallet import WalletLedger, bundle_hold_amount

# GSIs on the DamageReports table
REPORTS_SUPERVISOR_INDEX = 'bySupervisor'
REPORTS_OPERATOR_INDEX = 'byOperator'

# Admin notifications go to the shared admin inbox
ADMIN_RECIPIENT = 'admin'

REQUIRED_FIELDS = ('bundleId', 'operatorId', 'damageType', 'supervisorId', 'urgency')

URGENCY_RANK = {Urgency.URGENT: 0, Urgency.HIGH: 1, Urgency.NORMAL: 2, Urgency.LOW: 3}


def generate_report_id(bundle_id: str, now) -> str:
    """Display id: DR_YYYYMMDD_HHMMSS_<last 8 chars of the bundle id>"""
    return f"DR_{now.strftime('%Y%m%d_%H%M%S')}_{str(bundle_id)[-8:]}"


def is_piece_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_report(report_data: Dict[str, Any], max_pieces: int, warning_threshold: int):
    """
    Check a submission before anything is written.

    Returns:
        (errors, warnings) lists
    """
    errors = []
    warnings = []
    for field in REQUIRED_FIELDS:
        if not report_data.get(field):
            errors.append(f"{field} is required")

    pieces = report_data.get('pieceNumbers')
    if not isinstance(pieces, list) or not pieces:
        errors.append('At least one piece number is required')
    else:
        if len(pieces) > max_pieces:
            errors.append(f"Maximum {max_pieces} pieces per report")
        if len(pieces) > warning_threshold:
            warnings.append('Large number of damaged pieces - please double-check')
        invalid = [p for p in pieces if not is_piece_number(p)]
        if invalid:
            errors.append(f"Piece numbers must be positive integers: {invalid}")
        elif len(set(pieces)) != len(pieces):
            errors.append('Piece numbers must be unique')

    urgency = report_data.get('urgency')
    if urgency and urgency not in Urgency.ALL:
        errors.append(f"Invalid urgency: {urgency}")

    severity = report_data.get('severity')
    if severity and severity not in Severity.ALL:
        errors.append(f"Invalid severity: {severity}")

    damage_type = report_data.get('damageType')
    if damage_type and not get_damage_type(damage_type):
        errors.append(f"Unknown damage type: {damage_type}")

    return errors, warnings


class DamageReportService:
    """Damage report state machine with payment hold bookkeeping."""

    def __init__(self, store: BaseStore, wallet: WalletLedger, assignments: AssignmentService,
                 dispatcher: NotificationDispatcher, clock: Callable = utc_now,
                 max_pieces: Optional[int] = None):
        self.store = store
        self.wallet = wallet
        self.assignments = assignments
        self.dispatcher = dispatcher
        self.clock = clock
        self.max_pieces = config.MAX_PIECES_PER_REPORT if max_pieces is None else max_pieces

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, report_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        File a damage report and hold the bundle's payment.

        Report creation, bundle hold and wallet hold commit as one batch.

        Returns:
            {'success': True, 'reportId', 'heldAmount', 'warnings'} or a structured failure
        """
        try:
            errors, warnings = validate_report(report_data, self.max_pieces, config.PIECE_WARNING_THRESHOLD)
            if errors:
                raise ValidationError(errors, warnings)

            bundle_id = report_data['bundleId']
            operator_id = report_data['operatorId']
            bundle = self.store.get(config.WORK_UNITS_TABLE, {'workId': bundle_id})
            if not bundle:
                raise NotFoundError(f"Bundle {bundle_id} not found")

            now = self.clock()
            display_id = generate_report_id(bundle_id, now)
            report_id = f"{display_id}_{uuid.uuid4().hex[:8]}"
            damage_type = get_damage_type(report_data['damageType'])
            amount = bundle_hold_amount(bundle)
            pieces = list(report_data['pieceNumbers'])

            report = {
                'reportId': report_id,
                'displayId': display_id,
                'bundleId': bundle_id,
                'bundleNumber': bundle.get('bundleNumber', bundle_id),
                'article': bundle.get('article'),
                'operation': bundle.get('operation'),
                'machineType': bundle.get('machineType'),
                'operatorId': operator_id,
                'operatorName': report_data.get('operatorName') or bundle.get('operatorName', ''),
                'supervisorId': report_data['supervisorId'],
                'damageType': damage_type['id'],
                'damageCategory': damage_type['category'],
                'severity': report_data.get('severity') or damage_type['severity'],
                'operatorAtFault': damage_type['operator_fault'],
                'pieceNumbers': pieces,
                'pieceCount': len(pieces),
                'description': report_data.get('description', ''),
                'urgency': report_data['urgency'],
                'status': DamageStatus.REPORTED,
                'reportedAt': now.isoformat(),
                'rate': to_decimal(bundle.get('rate')),
                'pieces': to_decimal(bundle.get('pieces')),
                'heldAmount': amount,
                'paymentReleased': False,
            }

            writes = [Put(config.DAMAGE_REPORTS_TABLE, report, if_not_exists=True)]
            writes += self.wallet.hold(bundle, operator_id, amount, report_id)
            self.store.commit(writes)
        except StitchlineError as e:
            return e.to_result()
        except TransactionConflict as e:
            logger.warning(f"Damage report for {report_data.get('bundleId')} rejected: {e.reasons}")
            return ConflictError(
                f"Bundle {report_data.get('bundleId')} changed while reporting damage",
                'This bundle was updated by someone else, please try again'
            ).to_result()
        except StoreUnavailable as e:
            logger.error(f"Error submitting damage report: {e}")
            return InfrastructureError(str(e)).to_result()

        logger.info(f"Damage report {report_id} submitted for bundle {bundle_id}, held {amount}")
        self._notify(
            NotificationType.DAMAGE_REPORTED, report['supervisorId'], RecipientRole.SUPERVISOR,
            'Damage reported',
            f"{report['operatorName'] or operator_id} reported {len(pieces)} damaged piece(s) "
            f"in bundle {report['bundleNumber']}",
            report,
            priority='high' if report['urgency'] in (Urgency.HIGH, Urgency.URGENT) else 'normal',
        )
        return {
            'success': True,
            'reportId': report_id,
            'displayId': display_id,
            'heldAmount': amount,
            'warnings': warnings,
        }

    def start_rework(self, report_id: str, supervisor_id: str, notes: str = '') -> Dict[str, Any]:
        """Supervisor picks up a report and starts reworking the pieces."""
        def changes(report, now):
            values = {
                'status': DamageStatus.REWORK_STARTED,
                'reworkStartedAt': now,
                'reworkStartedBy': supervisor_id,
                'supervisorNotes': notes,
            }
            if not report.get('acknowledgedAt'):
                values['acknowledgedAt'] = now
            return values, []

        result, report = self._transition(report_id, DamageStatus.REWORK_STARTABLE, changes)
        if result['success']:
            self._notify(
                NotificationType.REWORK_STARTED, report['operatorId'], RecipientRole.OPERATOR,
                'Rework started',
                f"Supervisor started rework on bundle {report.get('bundleNumber')}",
                report,
            )
        return result

    def complete_rework(self, report_id: str, supervisor_id: str,
                        rework_details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Record the supervisor's rework and its payment impact.

        Fault and penalty are recorded for reporting only; the held amount
        is released in full on final completion.
        """
        rework_details = rework_details or {}
        time_spent = to_decimal(rework_details.get('timeSpentMinutes'))
        if time_spent < 0:
            return ValidationError(['timeSpentMinutes cannot be negative']).to_result()

        def changes(report, now):
            at_fault = bool(report.get('operatorAtFault'))
            penalty = get_damage_penalty(report['damageType'], report.get('severity', Severity.MINOR))
            values = {
                'status': DamageStatus.REWORK_COMPLETED,
                'reworkCompletedAt': now,
                'reworkCompletedBy': supervisor_id,
                'reworkDetails': {
                    'partsReplaced': list(rework_details.get('partsReplaced') or []),
                    'timeSpentMinutes': time_spent,
                    'qualityCheckPassed': bool(rework_details.get('qualityCheckPassed', False)),
                    'costEstimate': to_decimal(rework_details.get('costEstimate')),
                    'supervisorNotes': rework_details.get('supervisorNotes', ''),
                },
                'paymentImpact': {
                    'operatorAtFault': at_fault,
                    'penalty': penalty,
                    'paymentAdjustment': Decimal('0'),
                    'adjustmentReason': (
                        'Operator fault recorded, full payment released on completion'
                        if at_fault else 'Not operator fault - full payment'
                    ),
                    'supervisorCompensation': time_spent * config.SUPERVISOR_RATE_PER_MINUTE,
                },
            }
            return values, []

        result, report = self._transition(report_id, (DamageStatus.REWORK_STARTED,), changes)
        if result['success']:
            self._notify(
                NotificationType.REWORK_COMPLETED, report['operatorId'], RecipientRole.OPERATOR,
                'Rework completed',
                f"Rework on bundle {report.get('bundleNumber')} is done",
                report,
            )
        return result

    def return_to_operator(self, report_id: str, supervisor_id: str, notes: str = '') -> Dict[str, Any]:
        """Hand the reworked pieces back as a new assigned rework unit."""
        created = {}

        def changes(report, now):
            rework = self.assignments.rework_unit(report, notes)
            created['workId'] = rework.item['workId']
            values = {
                'status': DamageStatus.RETURNED,
                'returnedAt': now,
                'returnedBy': supervisor_id,
                'workAssignmentId': rework.item['workId'],
            }
            return values, [rework]

        result, report = self._transition(report_id, (DamageStatus.REWORK_COMPLETED,), changes)
        if result['success']:
            result['workAssignmentId'] = created['workId']
            self._notify(
                NotificationType.PIECES_RETURNED, report['operatorId'], RecipientRole.OPERATOR,
                'Pieces returned',
                f"{len(report.get('pieceNumbers') or [])} reworked piece(s) from bundle "
                f"{report.get('bundleNumber')} are back with you",
                report,
                priority='high',
                extra={'workId': created['workId']},
            )
        return result

    def mark_final_completion(self, report_id: str, operator_id: str,
                              completion_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Operator confirms the returned pieces are finished.

        The only path that releases a payment hold. The report is closed and
        the held amount moved to available in one batch.
        """
        completion_data = completion_data or {}

        def changes(report, now):
            if report.get('operatorId') != operator_id:
                raise ConsistencyError(f"Report {report_id} belongs to another operator")
            bundle = self.store.get(config.WORK_UNITS_TABLE, {'workId': report['bundleId']})
            if not bundle:
                raise ConsistencyError(f"Bundle {report['bundleId']} not found, cannot release payment")
            ledger_writes = self.wallet.release(bundle, operator_id, report)
            values = {
                'status': DamageStatus.CLOSED,
                'finalCompletionAt': now,
                'closedAt': now,
                'finalCompletionNotes': completion_data.get('notes', ''),
                'paymentReleased': True,
                'releasedAmount': to_decimal(bundle.get('heldAmount')),
            }
            return values, ledger_writes

        result, report = self._transition(report_id, (DamageStatus.RETURNED,), changes)
        if result['success']:
            amount = to_decimal(report.get('heldAmount'))
            result['releasedAmount'] = amount
            self._notify(
                NotificationType.PAYMENT_RELEASED, operator_id, RecipientRole.OPERATOR,
                'Payment released',
                f"Payment of {amount} for bundle {report.get('bundleNumber')} is now available",
                report,
                extra={'amount': amount},
            )
        return result

    def cancel_report(self, report_id: str, operator_id: str, reason: str = '') -> Dict[str, Any]:
        """Operator withdraws a report before rework starts; the hold is reversed."""
        return self._void(report_id, DamageStatus.CANCELLED, operator_id, reason, by_operator=True)

    def reject_report(self, report_id: str, supervisor_id: str, reason: str = '') -> Dict[str, Any]:
        """Supervisor rejects a report as invalid; the hold is reversed."""
        return self._void(report_id, DamageStatus.REJECTED, supervisor_id, reason, by_operator=False)

    def _void(self, report_id, new_status, actor_id, reason, by_operator):
        def changes(report, now):
            if by_operator and report.get('operatorId') != actor_id:
                raise ConsistencyError(f"Report {report_id} belongs to another operator")
            bundle = self.store.get(config.WORK_UNITS_TABLE, {'workId': report['bundleId']})
            if not bundle:
                raise ConsistencyError(f"Bundle {report['bundleId']} not found, cannot reverse hold")
            values = {
                'status': new_status,
                'closedAt': now,
                'closedBy': actor_id,
                'closeReason': reason,
            }
            return values, self.wallet.reverse_hold(bundle, report['operatorId'], report)

        result, report = self._transition(report_id, DamageStatus.VOIDABLE, changes)
        if result['success']:
            if by_operator:
                recipient, role = report['supervisorId'], RecipientRole.SUPERVISOR
            else:
                recipient, role = report['operatorId'], RecipientRole.OPERATOR
            self._notify(
                NotificationType.REPORT_CANCELLED, recipient, role,
                f"Damage report {new_status}",
                f"Report for bundle {report.get('bundleNumber')} was {new_status}"
                + (f": {reason}" if reason else ''),
                report,
            )
        return result

    def escalate_overdue(self, now=None) -> Dict[str, Any]:
        """
        Escalate reports still waiting on their supervisor past the urgency SLA.
        Run periodically by the escalate_overdue handler.
        """
        now = now or self.clock()
        try:
            waiting = self.store.scan(
                config.DAMAGE_REPORTS_TABLE, {'status': list(DamageStatus.AWAITING_SUPERVISOR)}
            )
        except StoreUnavailable as e:
            logger.error(f"Error scanning damage reports for escalation: {e}")
            return InfrastructureError(str(e)).to_result()

        escalated = []
        sla_hours = config.sla_hours
        for report in waiting:
            reported_at = parse_timestamp(report.get('reportedAt'))
            if not reported_at:
                logger.warning(f"Report {report['reportId']} has no reportedAt, skipping")
                continue
            hours = sla_hours.get(report.get('urgency'), sla_hours[Urgency.NORMAL])
            if now - reported_at <= timedelta(hours=hours):
                continue

            reason = f"SLA of {hours:g}h exceeded for {report.get('urgency', Urgency.NORMAL)} report"
            try:
                self.store.commit([Update(
                    config.DAMAGE_REPORTS_TABLE,
                    {'reportId': report['reportId']},
                    set_values={
                        'status': DamageStatus.ESCALATED,
                        'escalatedAt': now.isoformat(),
                        'originalSupervisorId': report.get('supervisorId'),
                        'escalationReason': reason,
                    },
                    expect={'status': report['status']},
                )])
            except TransactionConflict:
                logger.info(f"Report {report['reportId']} moved on before escalation")
                continue
            except StoreUnavailable as e:
                logger.error(f"Error escalating report {report['reportId']}: {e}")
                continue

            escalated.append(report['reportId'])
            logger.info(f"Escalated report {report['reportId']}: {reason}")
            message = f"Damage report for bundle {report.get('bundleNumber')} escalated: {reason}"
            self.dispatcher.send_batch([
                self._build(NotificationType.REPORT_ESCALATED, ADMIN_RECIPIENT, RecipientRole.ADMIN,
                            'Damage report escalated', message, report, priority='urgent'),
                self._build(NotificationType.REPORT_ESCALATED, report['supervisorId'],
                            RecipientRole.SUPERVISOR, 'Damage report escalated', message, report,
                            priority='high'),
                self._build(NotificationType.REPORT_ESCALATED, report['operatorId'],
                            RecipientRole.OPERATOR, 'Damage report escalated', message, report),
            ])

        return {'success': True, 'checked': len(waiting), 'escalated': escalated}

    def _transition(self, report_id: str, allowed_from, changes):
        """
        Apply a guarded status change.

        `changes(report, now)` returns (report field updates, extra writes).
        The report update is conditioned on the status that was read, so a
        concurrent transition or a repeated call fails instead of applying twice.

        Returns:
            (result dict, report as it was read)
        """
        report = None
        try:
            report = self.store.get(config.DAMAGE_REPORTS_TABLE, {'reportId': report_id})
            if not report:
                raise NotFoundError(f"Damage report {report_id} not found")
            status = report.get('status')
            if status not in allowed_from:
                raise ConsistencyError(
                    f"Report {report_id} is {status}, expected one of: {', '.join(allowed_from)}"
                )

            values, extra_writes = changes(report, self.clock().isoformat())
            writes = [Update(
                config.DAMAGE_REPORTS_TABLE,
                {'reportId': report_id},
                set_values=values,
                expect={'status': status},
            )] + extra_writes
            self.store.commit(writes)
        except StitchlineError as e:
            return e.to_result(), report
        except TransactionConflict as e:
            logger.warning(f"Transition of {report_id} cancelled: {e.reasons}")
            return ConflictError(
                f"Report {report_id} changed during the update",
                'This report was updated by someone else, please refresh'
            ).to_result(), report
        except StoreUnavailable as e:
            logger.error(f"Error updating damage report {report_id}: {e}")
            return InfrastructureError(str(e)).to_result(), report

        logger.info(f"Report {report_id}: {status} -> {values['status']}")
        return {'success': True, 'reportId': report_id, 'status': values['status']}, report

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_report(self, report_id: str) -> Dict[str, Any]:
        try:
            report = self.store.get(config.DAMAGE_REPORTS_TABLE, {'reportId': report_id})
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()
        if not report:
            return NotFoundError(f"Damage report {report_id} not found").to_result()
        return {'success': True, 'report': report}

    def get_supervisor_queue(self, supervisor_id: str, status: Optional[str] = None) -> Dict[str, Any]:
        """Open reports for a supervisor, most urgent and oldest first."""
        try:
            reports = self.store.query(
                config.DAMAGE_REPORTS_TABLE, 'supervisorId', supervisor_id,
                index_name=REPORTS_SUPERVISOR_INDEX
            )
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()

        if status:
            reports = [r for r in reports if r.get('status') == status]
        else:
            reports = [r for r in reports if r.get('status') not in DamageStatus.TERMINAL]
        reports.sort(key=lambda r: (URGENCY_RANK.get(r.get('urgency'), 2), r.get('reportedAt', '')))
        return {'success': True, 'reports': reports, 'count': len(reports)}

    def get_operator_reports(self, operator_id: str, limit: int = 50) -> Dict[str, Any]:
        try:
            reports = self.store.query(
                config.DAMAGE_REPORTS_TABLE, 'operatorId', operator_id,
                index_name=REPORTS_OPERATOR_INDEX
            )
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()
        reports.sort(key=lambda r: r.get('reportedAt', ''), reverse=True)
        return {'success': True, 'reports': reports[:limit]}

    def get_pending_rework_pieces(self, operator_id: str) -> Dict[str, Any]:
        """Pieces still out for rework or waiting for the operator to finish."""
        result = self.get_operator_reports(operator_id, limit=1000)
        if not result['success']:
            return result

        pending = [
            {
                'reportId': r['reportId'],
                'bundleId': r['bundleId'],
                'bundleNumber': r.get('bundleNumber'),
                'pieceNumbers': r.get('pieceNumbers', []),
                'pieceCount': r.get('pieceCount', len(r.get('pieceNumbers', []))),
                'status': r['status'],
                'damageType': r.get('damageType'),
                'reportedAt': r.get('reportedAt'),
                'workAssignmentId': r.get('workAssignmentId'),
            }
            for r in result['reports'] if r.get('status') in DamageStatus.PENDING_REWORK
        ]
        return {
            'success': True,
            'pendingReports': pending,
            'totalPieces': sum(int(p['pieceCount']) for p in pending),
        }

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _build(self, notification_type, recipient_id, role, title, message, report,
               priority='normal', extra=None):
        data = {
            'reportId': report['reportId'],
            'bundleId': report['bundleId'],
            'bundleNumber': report.get('bundleNumber'),
            'status': report.get('status'),
        }
        data.update(extra or {})
        return build_notification(notification_type, recipient_id, role, title, message,
                                  priority=priority, data=data)

    def _notify(self, notification_type, recipient_id, role, title, message, report,
                priority='normal', extra=None) -> bool:
        return self.dispatcher.send(
            self._build(notification_type, recipient_id, role, title, message, report, priority, extra)
        )
