"""
Atomic work assignment.

A work unit is claimed with a compare-and-swap on its record, so under any
number of concurrent claims exactly one operator wins. The store's CAS loop
re-reads and re-applies the claim until it commits or the record shows the
unit is taken.
"""
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .config import config
from .errors import (
    ConflictError,
    ConsistencyError,
    InfrastructureError,
    NotFoundError,
    StitchlineError,
)
from .logging import logger
from .models import OperatorState, PaymentStatus, WorkStatus
from .store import BaseStore, Put, StoreUnavailable, TransactionConflict, Update
from .utils import to_decimal, utc_now
from .wallet import WalletLedger

CONFLICT_ERROR = 'Work already assigned to another operator'
CONFLICT_MESSAGE = 'Someone else got this work first!'


class AssignmentService:
    """Claims, releases and completes work units."""

    def __init__(self, store: BaseStore, wallet: WalletLedger, clock: Callable = utc_now):
        self.store = store
        self.wallet = wallet
        self.clock = clock

    def claim(self, work_id: str, operator_id: str, operator_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Self-assign a work unit.

        Args:
            work_id: Work unit id
            operator_id: Claiming operator
            operator_info: Display fields ('name', 'machineType')

        Returns:
            {'success': True, 'workData': ...} or a structured failure
        """
        operator_info = operator_info or {}
        assigned_at = self.clock().isoformat()

        def assign(current):
            if not current:
                return None  # Abort - work doesn't exist
            if current.get('assigned') and current.get('assignedTo'):
                return None  # Abort - already assigned
            if current.get('status') != WorkStatus.AVAILABLE:
                return None  # Abort - not available
            current.update({
                'assigned': True,
                'assignedTo': operator_id,
                'assignedAt': assigned_at,
                'operatorName': operator_info.get('name'),
                'operatorMachine': operator_info.get('machineType'),
                'status': WorkStatus.ASSIGNED,
                'assignmentMethod': 'self-assign',
            })
            return current

        try:
            result = self.store.transaction(config.WORK_UNITS_TABLE, {'workId': work_id}, assign)
        except TransactionConflict as e:
            logger.warning(f"Claim of {work_id} by {operator_id} gave up under contention: {e}")
            return ConflictError(CONFLICT_ERROR, CONFLICT_MESSAGE).to_result()
        except StoreUnavailable as e:
            logger.error(f"Transaction error for work {work_id}: {e}")
            return InfrastructureError(str(e)).to_result()

        if not result.committed:
            if result.snapshot is None:
                return NotFoundError(f"Work {work_id} not found").to_result()
            logger.info(f"Could not assign work {work_id} to {operator_id} "
                        f"(status={result.snapshot.get('status')}, assignedTo={result.snapshot.get('assignedTo')})")
            return ConflictError(CONFLICT_ERROR, CONFLICT_MESSAGE).to_result()

        logger.info(f"Work {work_id} assigned to {operator_id}")
        self.update_operator_assignment(operator_id, work_id, result.snapshot)
        return {
            'success': True,
            'workData': result.snapshot,
            'message': 'Work assigned successfully'
        }

    def release(self, work_id: str, operator_id: str) -> Dict[str, Any]:
        """Give a claimed unit back to the pool. Only the assignee may release it."""
        released_at = self.clock().isoformat()

        def unassign(current):
            if not current or current.get('assignedTo') != operator_id:
                return None  # Can only release own work
            current.update({
                'assigned': False,
                'assignedTo': None,
                'assignedAt': None,
                'operatorName': None,
                'operatorMachine': None,
                'status': WorkStatus.AVAILABLE,
                'releasedAt': released_at,
                'releasedBy': operator_id,
            })
            return current

        try:
            result = self.store.transaction(config.WORK_UNITS_TABLE, {'workId': work_id}, unassign)
        except TransactionConflict as e:
            return ConflictError(str(e)).to_result()
        except StoreUnavailable as e:
            logger.error(f"Error releasing work {work_id}: {e}")
            return InfrastructureError(str(e)).to_result()

        if not result.committed:
            return ConsistencyError('Could not release work').to_result()

        self.clear_operator_assignment(operator_id)
        return {'success': True}

    def complete_work(self, work_id: str, operator_id: str) -> Dict[str, Any]:
        """
        Mark an assigned unit completed and credit its earnings.

        Unit status, wallet credit and wage record are committed together.
        """
        try:
            unit = self.store.get(config.WORK_UNITS_TABLE, {'workId': work_id})
            if not unit:
                raise NotFoundError(f"Work {work_id} not found")
            if unit.get('assignedTo') != operator_id:
                raise ConsistencyError(f"Work {work_id} is not assigned to {operator_id}")
            if unit.get('status') not in WorkStatus.COMPLETABLE:
                raise ConsistencyError(f"Work {work_id} cannot be completed from status {unit.get('status')}")

            # Rework units are paid through the damage hold release
            if unit.get('isRework'):
                earnings = Decimal('0')
            else:
                earnings = to_decimal(unit.get('pieces')) * to_decimal(unit.get('rate'))
            completed_at = self.clock().isoformat()
            writes = [Update(
                config.WORK_UNITS_TABLE,
                {'workId': work_id},
                set_values={
                    'status': WorkStatus.COMPLETED,
                    'completedAt': completed_at,
                    'earnings': earnings,
                    'paymentStatus': unit.get('paymentStatus') or PaymentStatus.NORMAL,
                },
                expect={'status': unit['status'], 'assignedTo': operator_id},
            )]
            if earnings:
                writes += self.wallet.credit(unit, operator_id, earnings)
            self.store.commit(writes)
        except StitchlineError as e:
            return e.to_result()
        except TransactionConflict:
            return ConflictError(f"Work {work_id} changed while completing, please retry").to_result()
        except StoreUnavailable as e:
            logger.error(f"Error completing work {work_id}: {e}")
            return InfrastructureError(str(e)).to_result()

        logger.info(f"Work {work_id} completed by {operator_id}, earned {earnings}")
        self.clear_operator_assignment(operator_id)
        return {'success': True, 'workId': work_id, 'earnings': earnings}

    def rework_unit(self, report: Dict[str, Any], supervisor_notes: str = '') -> Put:
        """
        New high-priority unit handing reworked pieces back to the operator.
        Returned as a write so it commits with the report transition.
        """
        now = self.clock()
        pieces = Decimal(len(report.get('pieceNumbers') or []))
        rate = to_decimal(report.get('rate'))
        piece_list = ', '.join(str(p) for p in report.get('pieceNumbers') or [])
        return Put(config.WORK_UNITS_TABLE, {
            'workId': str(uuid.uuid4()),
            'bundleId': report['bundleId'],
            'bundleNumber': f"{report.get('bundleNumber', report['bundleId'])}-REWORK",
            'article': report.get('article'),
            'operation': report.get('operation'),
            'machineType': report.get('machineType'),
            'pieces': pieces,
            'rate': rate,
            'totalValue': pieces * rate,
            'assigned': True,
            'assignedTo': report['operatorId'],
            'operatorName': report.get('operatorName'),
            'assignedAt': now.isoformat(),
            'assignmentMethod': 'rework-return',
            'status': WorkStatus.ASSIGNED,
            'paymentStatus': PaymentStatus.NORMAL,
            'priority': 'high',
            'dueDate': (now + timedelta(days=config.REWORK_DUE_DAYS)).isoformat(),
            'specialInstructions': f"Rework pieces: {piece_list}. Original damage: {report.get('damageType')}",
            'isRework': True,
            'originalDamageReportId': report['reportId'],
            'pieceNumbers': list(report.get('pieceNumbers') or []),
            'supervisorNotes': supervisor_notes or 'Rework completed by supervisor',
        }, if_not_exists=True)

    # ------------------------------------------------------------------
    # Operator status (best-effort)
    # ------------------------------------------------------------------

    def update_operator_assignment(self, operator_id: str, work_id: str, work_data: Dict[str, Any]) -> bool:
        """Point the operator's live status at the claimed unit. Failures are logged only."""
        now = self.clock().isoformat()

        def point_at_work(current):
            status = current or {}
            status.update({
                'status': OperatorState.ASSIGNED,
                'currentWork': {
                    'workId': work_id,
                    'bundleId': work_data.get('bundleId'),
                    'article': work_data.get('article'),
                    'pieces': work_data.get('pieces'),
                    'assignedAt': now,
                },
                'lastActivity': now,
            })
            return status

        return self._update_operator_status(operator_id, point_at_work)

    def clear_operator_assignment(self, operator_id: str) -> bool:
        now = self.clock().isoformat()

        def clear(current):
            status = current or {}
            status.update({'status': OperatorState.ACTIVE, 'currentWork': None, 'lastActivity': now})
            return status

        return self._update_operator_status(operator_id, clear)

    def _update_operator_status(self, operator_id: str, mutator) -> bool:
        try:
            self.store.transaction(config.OPERATOR_STATUS_TABLE, {'operatorId': operator_id}, mutator)
            return True
        except Exception as e:
            # Best-effort: the claim or completion has already committed
            logger.error(f"Failed to update operator {operator_id} status: {str(e)}")
            return False
