"""
Tests for atomic work assignment and completion.
"""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import patch

from conftest import make_bundle, make_wallet

from stitchline.assignment import CONFLICT_ERROR, CONFLICT_MESSAGE
from stitchline.config import config
from stitchline.services import build_services
from stitchline.store import MemoryStore

WORK = config.WORK_UNITS_TABLE


class TestClaim:
    """Tests for AssignmentService.claim."""

    def test_claim_available_unit(self, services, store):
        """The winner's record carries the assignment fields."""
        store.seed(WORK, [make_bundle('WU-1')])

        result = services.assignments.claim('WU-1', 'A', {'name': 'Asha', 'machineType': 'overlock'})

        assert result['success'] is True
        unit = store.get(WORK, {'workId': 'WU-1'})
        assert unit['assignedTo'] == 'A'
        assert unit['status'] == 'assigned'
        assert unit['assigned'] is True
        assert unit['assignmentMethod'] == 'self-assign'
        assert unit['operatorName'] == 'Asha'
        assert unit['assignedAt'] == '2024-03-15T09:30:00+00:00'
        assert result['workData']['assignedTo'] == 'A'

    def test_second_claim_conflicts(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')

        result = services.assignments.claim('WU-1', 'B')

        assert result == {
            'success': False,
            'error': CONFLICT_ERROR,
            'errorType': 'conflict',
            'message': CONFLICT_MESSAGE,
        }
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'A'

    def test_claim_unavailable_status_conflicts(self, services, store):
        store.seed(WORK, [make_bundle('WU-1', status='completed')])
        assert services.assignments.claim('WU-1', 'A')['errorType'] == 'conflict'

    def test_claim_missing_unit(self, services):
        result = services.assignments.claim('nope', 'A')
        assert result['success'] is False
        assert result['errorType'] == 'not_found'

    def test_concurrent_claims_have_exactly_one_winner(self, services, store):
        """N concurrent claims on one unit: one success, N-1 conflicts."""
        store.seed(WORK, [make_bundle('WU-1')])
        operators = [f'op-{i}' for i in range(20)]

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda op: services.assignments.claim('WU-1', op), operators))

        winners = [op for op, r in zip(operators, results) if r['success']]
        assert len(winners) == 1
        assert all(r['errorType'] == 'conflict' for r in results if not r['success'])
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == winners[0]

    def test_claim_updates_operator_status(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')

        status = store.get(config.OPERATOR_STATUS_TABLE, {'operatorId': 'A'})
        assert status['status'] == 'assigned'
        assert status['currentWork']['workId'] == 'WU-1'
        assert status['currentWork']['pieces'] == Decimal(10)

    def test_operator_status_failure_does_not_undo_claim(self, dispatcher, clock):
        """A store without the operator status table still commits the claim."""
        schema = dict(config.key_schema)
        del schema[config.OPERATOR_STATUS_TABLE]
        store = MemoryStore(schema)
        store.seed(WORK, [make_bundle('WU-1')])
        services = build_services(store=store, dispatcher=dispatcher, clock=clock)

        result = services.assignments.claim('WU-1', 'A')

        assert result['success'] is True
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'A'

    def test_unexpected_operator_status_error_is_logged_only(self, services, store):
        """Any error from the status update leaves the committed claim successful."""
        store.seed(WORK, [make_bundle('WU-1')])
        real_transaction = store.transaction

        def flaky_transaction(table, key, mutator, max_attempts=None):
            if table == config.OPERATOR_STATUS_TABLE:
                raise RuntimeError('status table misconfigured')
            return real_transaction(table, key, mutator, max_attempts)

        with patch.object(store, 'transaction', side_effect=flaky_transaction):
            result = services.assignments.claim('WU-1', 'A')

        assert result['success'] is True
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'A'
        assert store.get(config.OPERATOR_STATUS_TABLE, {'operatorId': 'A'}) is None


class TestRelease:
    """Tests for AssignmentService.release."""

    def test_release_own_work(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')

        assert services.assignments.release('WU-1', 'A') == {'success': True}

        unit = store.get(WORK, {'workId': 'WU-1'})
        assert unit['status'] == 'available'
        assert unit['assigned'] is False
        assert unit['assignedTo'] is None
        assert unit['releasedBy'] == 'A'
        status = store.get(config.OPERATOR_STATUS_TABLE, {'operatorId': 'A'})
        assert status['status'] == 'active'
        assert status['currentWork'] is None

    def test_cannot_release_someone_elses_work(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')

        result = services.assignments.release('WU-1', 'B')

        assert result['errorType'] == 'consistency'
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'A'

    def test_released_unit_can_be_claimed_again(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')
        services.assignments.release('WU-1', 'A')

        assert services.assignments.claim('WU-1', 'B')['success'] is True


class TestCompleteWork:
    """Tests for AssignmentService.complete_work."""

    def test_completion_credits_wallet(self, services, store):
        store.seed(WORK, [make_bundle('WU-1', pieces=10, rate='5')])
        services.assignments.claim('WU-1', 'A')

        result = services.assignments.complete_work('WU-1', 'A')

        assert result['success'] is True
        assert result['earnings'] == Decimal('50')
        unit = store.get(WORK, {'workId': 'WU-1'})
        assert unit['status'] == 'completed'
        wallet = store.get(config.WALLETS_TABLE, {'operatorId': 'A'})
        assert wallet['availableAmount'] == Decimal('50')
        assert wallet['totalEarned'] == Decimal('50')
        records = store.scan(config.WAGE_RECORDS_TABLE)
        assert len(records) == 1
        assert records[0]['workType'] == 'bundle_completion'
        assert records[0]['amount'] == Decimal('50')

    def test_completion_adds_to_existing_wallet(self, services, store):
        store.seed(WORK, [make_bundle('WU-1', pieces=4, rate='2.5')])
        store.seed(config.WALLETS_TABLE, [make_wallet('A', available='7', earned='7')])
        services.assignments.claim('WU-1', 'A')

        services.assignments.complete_work('WU-1', 'A')

        wallet = store.get(config.WALLETS_TABLE, {'operatorId': 'A'})
        assert wallet['availableAmount'] == Decimal('17')

    def test_only_assignee_can_complete(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')

        result = services.assignments.complete_work('WU-1', 'B')

        assert result['errorType'] == 'consistency'
        assert store.get(config.WALLETS_TABLE, {'operatorId': 'B'}) is None

    def test_cannot_complete_twice(self, services, store):
        store.seed(WORK, [make_bundle('WU-1')])
        services.assignments.claim('WU-1', 'A')
        services.assignments.complete_work('WU-1', 'A')

        result = services.assignments.complete_work('WU-1', 'A')

        assert result['errorType'] == 'consistency'
        wallet = store.get(config.WALLETS_TABLE, {'operatorId': 'A'})
        assert wallet['availableAmount'] == Decimal('50')

    def test_rework_unit_earns_nothing(self, services, store):
        """Rework pay arrives through the hold release instead."""
        store.seed(WORK, [make_bundle('WU-R', status='assigned', assigned=True, assignedTo='A', isRework=True)])

        result = services.assignments.complete_work('WU-R', 'A')

        assert result['success'] is True
        assert result['earnings'] == Decimal('0')
        assert store.get(config.WALLETS_TABLE, {'operatorId': 'A'}) is None
        assert store.scan(config.WAGE_RECORDS_TABLE) == []
