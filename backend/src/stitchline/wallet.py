"""
Operator wallet ledger - available vs. held funds.

The ledger never commits on its own. hold(), release(), reverse_hold() and
credit() return write operations that the caller commits in the same batch
as the state transition that triggered them.

Bookkeeping rules:
- credit (work completion): availableAmount and totalEarned grow
- hold (damage reported): amount moves available -> held, totalEarned shrinks
- release (final completion): amount moves held -> available, totalEarned grows
"""
import uuid
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List

from .config import config
from .errors import ConsistencyError, InfrastructureError
from .logging import logger
from .models import PaymentStatus, WageRecordType
from .store import MISSING, BaseStore, Put, StoreUnavailable, Update
from .utils import to_decimal, utc_now

# GSI on WageRecords keyed by operatorId
WAGE_RECORDS_OPERATOR_INDEX = 'byOperator'


def bundle_hold_amount(bundle: Dict[str, Any]) -> Decimal:
    """Value of a bundle's pieces at its piece rate."""
    return to_decimal(bundle.get('pieces')) * to_decimal(bundle.get('rate'))


class WalletLedger:
    """Payment hold ledger for operator wallets."""

    def __init__(self, store: BaseStore, clock: Callable = utc_now):
        self.store = store
        self.clock = clock

    def _wallet_key(self, operator_id: str) -> Dict[str, Any]:
        return {'operatorId': operator_id}

    # ------------------------------------------------------------------
    # Batch contributions
    # ------------------------------------------------------------------

    def hold(self, bundle: Dict[str, Any], operator_id: str, amount: Decimal,
             report_id: str) -> List[Any]:
        """
        Writes that place a damage hold on a bundle.

        The bundle update is conditioned on the payment status that was read,
        so two reports racing for the same bundle cannot both hold it.
        """
        if bundle.get('paymentStatus') == PaymentStatus.HELD_FOR_DAMAGE:
            raise ConsistencyError(
                f"Bundle {bundle['workId']} already has a payment hold "
                f"(report {bundle.get('damageReportId')})"
            )
        if amount < 0:
            raise ConsistencyError(f"Cannot hold a negative amount ({amount})")

        now = self.clock().isoformat()
        bundle_update = Update(
            config.WORK_UNITS_TABLE,
            {'workId': bundle['workId']},
            set_values={
                'paymentStatus': PaymentStatus.HELD_FOR_DAMAGE,
                'heldAmount': amount,
                'heldPieces': to_decimal(bundle.get('pieces')),
                'damageReportId': report_id,
                'paymentHoldReason': f'Damage report {report_id}',
                'paymentHeldAt': now,
                'canWithdraw': False,
            },
            expect={'paymentStatus': bundle.get('paymentStatus', MISSING)},
        )
        wallet_update = Update(
            config.WALLETS_TABLE,
            self._wallet_key(operator_id),
            set_values={'lastUpdated': now},
            add_values={
                'heldAmount': amount,
                'availableAmount': -amount,
                'totalEarned': -amount,
            },
            add_members={'heldBundles': [bundle['workId']]},
            must_exist=False,
        )
        return [bundle_update, wallet_update]

    def release(self, bundle: Dict[str, Any], operator_id: str, report: Dict[str, Any]) -> List[Any]:
        """
        Writes that release a bundle's held payment to the operator.

        Raises ConsistencyError when the wallet or bundle is not in the held
        state, so a repeated release can never credit twice.
        """
        writes, amount = self._unhold(bundle, operator_id, report, PaymentStatus.RELEASED)
        now = self.clock()
        writes.append(Put(config.WAGE_RECORDS_TABLE, {
            'recordId': str(uuid.uuid4()),
            'operatorId': operator_id,
            'operatorName': report.get('operatorName', ''),
            'bundleId': bundle['workId'],
            'bundleNumber': f"{bundle.get('bundleNumber', bundle['workId'])}-REWORK",
            'operation': report.get('operation', ''),
            'pieces': to_decimal(bundle.get('pieces')),
            'rate': to_decimal(bundle.get('rate')),
            'amount': amount,
            'workType': WageRecordType.REWORK_COMPLETION,
            'isReworkPayment': True,
            'originalDamageReportId': report['reportId'],
            'paymentNotes': f"Rework completion payment - Original damage: {report.get('damageType')}",
            'date': now.date().isoformat(),
            'createdAt': now.isoformat(),
        }, if_not_exists=True))
        return writes

    def reverse_hold(self, bundle: Dict[str, Any], operator_id: str, report: Dict[str, Any]) -> List[Any]:
        """Writes that undo a hold for a report that was cancelled or rejected."""
        writes, _ = self._unhold(bundle, operator_id, report, PaymentStatus.NORMAL)
        return writes

    def _unhold(self, bundle, operator_id, report, new_status):
        bundle_id = bundle['workId']
        if bundle.get('paymentStatus') != PaymentStatus.HELD_FOR_DAMAGE:
            raise ConsistencyError(f"Bundle {bundle_id} has no payment hold to release")
        if bundle.get('damageReportId') != report['reportId']:
            raise ConsistencyError(
                f"Bundle {bundle_id} is held for report {bundle.get('damageReportId')}, "
                f"not {report['reportId']}"
            )

        wallet = self.store.get(config.WALLETS_TABLE, self._wallet_key(operator_id))
        if not wallet:
            raise ConsistencyError(f"Wallet for operator {operator_id} not found")
        if bundle_id not in set(wallet.get('heldBundles') or []):
            raise ConsistencyError(f"Bundle {bundle_id} is not held in operator {operator_id}'s wallet")

        amount = to_decimal(bundle.get('heldAmount'))
        if to_decimal(wallet.get('heldAmount')) < amount:
            raise ConsistencyError(
                f"Wallet held amount {wallet.get('heldAmount')} is below bundle hold {amount}"
            )

        now = self.clock().isoformat()
        set_values = {
            'paymentStatus': new_status,
            'heldAmount': Decimal('0'),
            'heldPieces': Decimal('0'),
            'canWithdraw': new_status == PaymentStatus.RELEASED,
        }
        if new_status == PaymentStatus.RELEASED:
            set_values['releasedAmount'] = amount
            set_values['paymentReleasedAt'] = now
        remove_fields = [] if new_status == PaymentStatus.RELEASED else ['damageReportId', 'paymentHoldReason']

        bundle_update = Update(
            config.WORK_UNITS_TABLE,
            {'workId': bundle_id},
            set_values=set_values,
            remove_fields=remove_fields,
            expect={
                'paymentStatus': PaymentStatus.HELD_FOR_DAMAGE,
                'damageReportId': report['reportId'],
            },
        )
        wallet_update = Update(
            config.WALLETS_TABLE,
            self._wallet_key(operator_id),
            set_values={'lastUpdated': now},
            add_values={
                'heldAmount': -amount,
                'availableAmount': amount,
                'totalEarned': amount,
            },
            remove_members={'heldBundles': [bundle_id]},
            expect={'version': wallet.get('version', MISSING)},
        )
        return [bundle_update, wallet_update], amount

    def credit(self, work_unit: Dict[str, Any], operator_id: str, amount: Decimal) -> List[Any]:
        """Writes crediting a completed bundle's earnings to the operator."""
        now = self.clock()
        wallet_update = Update(
            config.WALLETS_TABLE,
            self._wallet_key(operator_id),
            set_values={'lastUpdated': now.isoformat()},
            add_values={'availableAmount': amount, 'totalEarned': amount},
            must_exist=False,
        )
        wage_record = Put(config.WAGE_RECORDS_TABLE, {
            'recordId': str(uuid.uuid4()),
            'operatorId': operator_id,
            'operatorName': work_unit.get('operatorName', ''),
            'bundleId': work_unit['workId'],
            'bundleNumber': work_unit.get('bundleNumber', work_unit['workId']),
            'operation': work_unit.get('operation', ''),
            'pieces': to_decimal(work_unit.get('pieces')),
            'rate': to_decimal(work_unit.get('rate')),
            'amount': amount,
            'workType': WageRecordType.BUNDLE_COMPLETION,
            'isReworkPayment': bool(work_unit.get('isRework')),
            'date': now.date().isoformat(),
            'createdAt': now.isoformat(),
        }, if_not_exists=True)
        return [wallet_update, wage_record]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, operator_id: str) -> Dict[str, Any]:
        """Current wallet balance; a missing wallet reads as zero."""
        try:
            wallet = self.store.get(config.WALLETS_TABLE, self._wallet_key(operator_id)) or {}
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()

        available = to_decimal(wallet.get('availableAmount'))
        return {
            'success': True,
            'operatorId': operator_id,
            'availableAmount': available,
            'heldAmount': to_decimal(wallet.get('heldAmount')),
            'totalEarned': to_decimal(wallet.get('totalEarned')),
            'heldBundles': sorted(wallet.get('heldBundles') or []),
            'canWithdraw': available > 0,
            'lastUpdated': wallet.get('lastUpdated'),
        }

    def get_held_bundle_details(self, operator_id: str) -> Dict[str, Any]:
        """Held bundles with their hold details, for the operator's wallet view."""
        balance = self.get_balance(operator_id)
        if not balance['success']:
            return balance

        details = []
        for bundle_id in balance['heldBundles']:
            try:
                bundle = self.store.get(config.WORK_UNITS_TABLE, {'workId': bundle_id})
            except StoreUnavailable as e:
                logger.warning(f"Could not load bundle details for {bundle_id}: {e}")
                continue
            if not bundle:
                continue
            details.append({
                'bundleId': bundle_id,
                'bundleNumber': bundle.get('bundleNumber', bundle_id),
                'heldAmount': to_decimal(bundle.get('heldAmount')),
                'heldPieces': to_decimal(bundle.get('heldPieces')),
                'damageReportId': bundle.get('damageReportId'),
                'paymentHoldReason': bundle.get('paymentHoldReason'),
                'paymentHeldAt': bundle.get('paymentHeldAt'),
                'operation': bundle.get('operation', 'N/A'),
                'article': bundle.get('article', 'N/A'),
            })
        return {'success': True, 'operatorId': operator_id, 'heldBundles': details}

    def _wage_records(self, operator_id: str) -> List[Dict[str, Any]]:
        records = self.store.query(
            config.WAGE_RECORDS_TABLE, 'operatorId', operator_id,
            index_name=WAGE_RECORDS_OPERATOR_INDEX
        )
        records.sort(key=lambda r: r.get('createdAt', ''), reverse=True)
        return records

    def get_wage_history(self, operator_id: str, limit: int = 20) -> Dict[str, Any]:
        """Recent wage records, newest first, grouped by payment date."""
        try:
            records = self._wage_records(operator_id)[:limit]
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()

        grouped = OrderedDict()
        for record in records:
            date = record.get('date') or 'Unknown'
            group = grouped.setdefault(date, {'date': date, 'records': [], 'totalAmount': Decimal('0')})
            group['records'].append(record)
            group['totalAmount'] += to_decimal(record.get('amount'))

        return {
            'success': True,
            'wageRecords': records,
            'groupedWages': list(grouped.values()),
        }

    def get_earning_summary(self, operator_id: str, days: int = 30) -> Dict[str, Any]:
        """Earnings over the last `days` days plus the current wallet position."""
        try:
            today = self.clock().date()
            start = (today - timedelta(days=days)).isoformat()
            end = today.isoformat()
            records = [r for r in self._wage_records(operator_id)
                       if start <= (r.get('date') or '') <= end]
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()

        total_earnings = Decimal('0')
        total_pieces = Decimal('0')
        daily: Dict[str, Dict[str, Decimal]] = {}
        for record in records:
            amount = to_decimal(record.get('amount'))
            pieces = to_decimal(record.get('pieces'))
            total_earnings += amount
            total_pieces += pieces
            day = daily.setdefault(record['date'], {'amount': Decimal('0'), 'pieces': Decimal('0')})
            day['amount'] += amount
            day['pieces'] += pieces

        work_days = len(daily)
        balance = self.get_balance(operator_id)
        if not balance['success']:
            return balance

        return {
            'success': True,
            'summary': {
                'periodDays': days,
                'totalEarnings': total_earnings,
                'totalPieces': total_pieces,
                'workDays': work_days,
                'averageDailyEarning': total_earnings / work_days if work_days else Decimal('0'),
                'averagePieceRate': total_earnings / total_pieces if total_pieces else Decimal('0'),
                'currentAvailable': balance['availableAmount'],
                'currentHeld': balance['heldAmount'],
                'heldBundleCount': len(balance['heldBundles']),
                'dailyBreakdown': daily,
            }
        }
