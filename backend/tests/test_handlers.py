"""
Tests for the Lambda handlers, wired to in-memory services.
"""
import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from conftest import make_bundle, make_wallet

from stitchline.config import config

WORK = config.WORK_UNITS_TABLE


def api_event(sub='op-1', groups='operator', path=None, body=None, resource='', query=None):
    return {
        'resource': resource,
        'pathParameters': path,
        'queryStringParameters': query,
        'body': json.dumps(body) if body is not None else None,
        'requestContext': {'authorizer': {'claims': {'sub': sub, 'cognito:groups': groups, 'name': sub}}},
    }


def body_of(response):
    return json.loads(response['body'])


@pytest.fixture
def wired(services):
    """Patch get_services in every handler module that uses it."""
    modules = [
        'handlers.assignments.claim_work',
        'handlers.assignments.release_work',
        'handlers.assignments.complete_work',
        'handlers.assignments.enqueue_claim',
        'handlers.assignments.process_claim_queue',
        'handlers.damage.submit_report',
        'handlers.damage.start_rework',
        'handlers.damage.cancel_report',
        'handlers.damage.escalate_overdue',
        'handlers.damage.list_reports',
        'handlers.wallet.get_wallet',
        'handlers.notifications.deliver_notifications',
    ]
    patches = [patch(f'{m}.get_services', return_value=services) for m in modules]
    for p in patches:
        p.start()
    yield services
    for p in patches:
        p.stop()


class TestAssignmentHandlers:
    """Tests for the work assignment endpoints."""

    def test_claim_then_conflict(self, wired, store):
        from handlers.assignments.claim_work import handler
        store.seed(WORK, [make_bundle('WU-1')])

        first = handler(api_event('A', path={'workId': 'WU-1'}), None)
        second = handler(api_event('B', path={'workId': 'WU-1'}), None)

        assert first['statusCode'] == 200
        assert body_of(first)['workData']['assignedTo'] == 'A'
        assert second['statusCode'] == 409
        assert body_of(second)['error'] == 'Work already assigned to another operator'
        assert first['headers']['Access-Control-Allow-Origin'] == '*'

    def test_claim_requires_identity(self, wired):
        from handlers.assignments.claim_work import handler
        event = api_event(path={'workId': 'WU-1'})
        event['requestContext'] = {}
        assert handler(event, None)['statusCode'] == 401

    def test_claim_unknown_unit(self, wired):
        from handlers.assignments.claim_work import handler
        assert handler(api_event(path={'workId': 'nope'}), None)['statusCode'] == 404

    def test_release_and_complete(self, wired, store):
        from handlers.assignments.claim_work import handler as claim
        from handlers.assignments.complete_work import handler as complete
        from handlers.assignments.release_work import handler as release
        store.seed(WORK, [make_bundle('WU-1')])

        claim(api_event('A', path={'workId': 'WU-1'}), None)
        assert release(api_event('B', path={'workId': 'WU-1'}), None)['statusCode'] == 409
        response = complete(api_event('A', path={'workId': 'WU-1'}), None)

        assert response['statusCode'] == 200
        assert body_of(response)['earnings'] == 50

    def test_enqueue_validates_priority(self, wired):
        from handlers.assignments.enqueue_claim import handler
        response = handler(api_event(path={'workId': 'WU-1'}, body={'priority': 9}), None)
        assert response['statusCode'] == 400

    def test_stream_processes_new_queue_entries(self, wired, store, dispatcher):
        from handlers.assignments.enqueue_claim import handler as enqueue
        from handlers.assignments.process_claim_queue import handler as process
        store.seed(WORK, [make_bundle('WU-1')])
        assert enqueue(api_event('A', path={'workId': 'WU-1'}, body={'priority': 2}), None)['statusCode'] == 202
        assert enqueue(api_event('B', path={'workId': 'WU-1'}, body={'priority': 1}), None)['statusCode'] == 202

        event = {'Records': [
            {'eventName': 'INSERT', 'dynamodb': {'NewImage': {'workId': {'S': 'WU-1'}, 'queueId': {'S': 'q1'}}}},
            {'eventName': 'INSERT', 'dynamodb': {'NewImage': {'workId': {'S': 'WU-1'}, 'queueId': {'S': 'q2'}}}},
            {'eventName': 'REMOVE', 'dynamodb': {'OldImage': {'workId': {'S': 'WU-2'}, 'queueId': {'S': 'q3'}}}},
        ]}
        result = process(event, None)

        assert result['processed'] == 1
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'B'
        dispatcher.send_batch.assert_called_once()


class TestDamageHandlers:
    """Tests for the damage report endpoints."""

    def _seed(self, store):
        store.seed(WORK, [make_bundle('B-42', status='completed', assignedTo='op-1')])
        store.seed(config.WALLETS_TABLE, [make_wallet('op-1', available='50', earned='50')])

    def _submit(self, **overrides):
        from handlers.damage.submit_report import handler
        body = {
            'bundleId': 'B-42',
            'supervisorId': 'sup-1',
            'damageType': 'fabric_hole',
            'pieceNumbers': [1],
            'urgency': 'high',
        }
        body.update(overrides)
        return handler(api_event('op-1', body=body), None)

    def test_submit_returns_created(self, wired, store):
        self._seed(store)
        response = self._submit()
        assert response['statusCode'] == 201
        assert body_of(response)['heldAmount'] == 50

    def test_submit_validation_is_400(self, wired, store):
        self._seed(store)
        response = self._submit(pieceNumbers=[1, 2, 3, 4])
        assert response['statusCode'] == 400
        assert 'Maximum 3 pieces per report' in body_of(response)['errors']

    def test_operators_cannot_start_rework(self, wired):
        from handlers.damage.start_rework import handler
        response = handler(api_event('op-1', groups='operator', path={'reportId': 'DR_1'}), None)
        assert response['statusCode'] == 403

    def test_supervisor_starts_rework(self, wired, store):
        from handlers.damage.start_rework import handler
        self._seed(store)
        report_id = body_of(self._submit())['reportId']

        response = handler(api_event('sup-1', groups='supervisor', path={'reportId': report_id},
                                     body={'notes': 'checking'}), None)

        assert response['statusCode'] == 200
        assert body_of(response)['status'] == 'rework_in_progress'

    def test_reject_needs_supervisor(self, wired, store):
        from handlers.damage.cancel_report import handler
        self._seed(store)
        report_id = body_of(self._submit())['reportId']
        resource = '/supervisor/damage-reports/{reportId}/reject'

        denied = handler(api_event('op-1', path={'reportId': report_id}, resource=resource), None)
        allowed = handler(api_event('sup-1', groups='supervisor', path={'reportId': report_id},
                                    resource=resource, body={'reason': 'not a defect'}), None)

        assert denied['statusCode'] == 403
        assert body_of(allowed)['status'] == 'rejected'

    def test_operator_only_sees_own_report(self, wired, store):
        from handlers.damage.list_reports import handler
        self._seed(store)
        report_id = body_of(self._submit())['reportId']

        own = handler(api_event('op-1', path={'reportId': report_id}), None)
        other = handler(api_event('op-2', path={'reportId': report_id}), None)

        assert own['statusCode'] == 200
        assert other['statusCode'] == 403

    def test_escalation_sweep(self, wired, store, clock):
        from handlers.damage.escalate_overdue import handler
        self._seed(store)
        report_id = body_of(self._submit())['reportId']
        clock.advance(hours=5)

        result = handler({}, None)

        assert result['escalated'] == [report_id]


class TestWalletAndNotifications:
    """Tests for wallet reads and notification delivery."""

    def test_wallet_for_new_operator(self, wired):
        from handlers.wallet.get_wallet import handler
        response = handler(api_event('new-op'), None)
        assert response['statusCode'] == 200
        assert body_of(response)['availableAmount'] == 0
        assert body_of(response)['canWithdraw'] is False

    def test_other_wallets_need_supervisor(self, wired):
        from handlers.wallet.get_wallet import handler
        assert handler(api_event('op-1', path={'operatorId': 'op-2'}), None)['statusCode'] == 403
        assert handler(api_event('sup-1', groups='supervisor', path={'operatorId': 'op-2'}),
                       None)['statusCode'] == 200

    def test_deliver_stores_notifications_once(self, wired, store):
        from handlers.notifications.deliver_notifications import handler
        message = {
            'notificationId': 'n-1',
            'type': 'payment_released',
            'recipientId': 'op-1',
            'recipientRole': 'operator',
            'title': 'Payment released',
            'message': 'Paid',
            'data': {'amount': 12.5},
            'createdAt': '2024-03-15T09:30:00+00:00',
        }
        record = {'messageId': 'm-1', 'body': json.dumps(message)}

        first = handler({'Records': [record]}, None)
        second = handler({'Records': [record, {'messageId': 'm-2', 'body': 'not json'}]}, None)

        assert first == {'batchItemFailures': []}
        assert second == {'batchItemFailures': [{'itemIdentifier': 'm-2'}]}
        stored = store.get(config.NOTIFICATIONS_TABLE, {'notificationId': 'n-1'})
        assert stored['read'] is False
        assert stored['data']['amount'] == Decimal('12.5')
        assert stored['expiresAt'] > 0
