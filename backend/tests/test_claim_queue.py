"""
Tests for the claim queue used under high contention.
"""
from itertools import permutations

from conftest import make_bundle

from stitchline.claim_queue import PROCESSOR_KEY, select_winner
from stitchline.config import config

WORK = config.WORK_UNITS_TABLE
QUEUE = config.CLAIM_QUEUE_TABLE


def sent_notifications(dispatcher):
    return [n for call in dispatcher.send_batch.call_args_list for n in call.args[0]]


class TestSelectWinner:
    """Tests for the winner ordering."""

    def test_lowest_priority_number_wins_in_any_arrival_order(self):
        """Priorities [2, 1, 3] resolve to the priority-1 entry whatever the arrival order."""
        base = [
            {'queueId': 'a', 'priority': 2},
            {'queueId': 'b', 'priority': 1},
            {'queueId': 'c', 'priority': 3},
        ]
        for order in permutations(base):
            entries = [dict(e, requestTime=1000 + i) for i, e in enumerate(order)]
            assert select_winner(entries)['queueId'] == 'b'

    def test_earliest_request_breaks_ties(self):
        entries = [
            {'queueId': 'late', 'priority': 1, 'requestTime': 2000},
            {'queueId': 'early', 'priority': 1, 'requestTime': 1000},
        ]
        assert select_winner(entries)['queueId'] == 'early'

    def test_empty_queue(self):
        assert select_winner([]) is None


class TestProcess:
    """Tests for ClaimQueue.process."""

    def test_winner_gets_the_work_and_everyone_is_told(self, services, store, dispatcher, clock):
        store.seed(WORK, [make_bundle('WU-1')])
        queue = services.claim_queue
        queue.enqueue('WU-1', 'op-a', {'name': 'A'}, priority=2)
        clock.advance(milliseconds=5)
        queue.enqueue('WU-1', 'op-b', {'name': 'B'}, priority=1)
        clock.advance(milliseconds=5)
        queue.enqueue('WU-1', 'op-c', {'name': 'C'}, priority=3)

        summary = queue.process('WU-1')

        assert summary['rounds'] == 1
        assert summary['results'][0]['winner'] == 'op-b'
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'op-b'

        outcomes = {n['recipientId']: n['data']['result'] for n in sent_notifications(dispatcher)}
        assert outcomes == {'op-a': 'failed', 'op-b': 'success', 'op-c': 'failed'}
        loser_messages = {n['message'] for n in sent_notifications(dispatcher) if n['recipientId'] != 'op-b'}
        assert loser_messages == {'Someone else got the work'}

        # Queue and lease are gone
        assert store.scan(QUEUE) == []

    def test_failed_claim_notifies_everyone(self, services, store, dispatcher):
        """When the unit was taken outside the queue nobody wins."""
        store.seed(WORK, [make_bundle('WU-1', status='assigned', assigned=True, assignedTo='someone')])
        queue = services.claim_queue
        queue.enqueue('WU-1', 'op-a')
        queue.enqueue('WU-1', 'op-b')

        summary = queue.process('WU-1')

        assert summary['results'][0]['claimed'] is False
        notifications = sent_notifications(dispatcher)
        assert len(notifications) == 2
        assert all(n['data']['result'] == 'failed' for n in notifications)
        assert all(n['message'] == 'Someone else got this work first!' for n in notifications)
        assert store.scan(QUEUE) == []

    def test_skips_when_another_processor_holds_the_lease(self, services, store, clock):
        store.seed(WORK, [make_bundle('WU-1')])
        queue = services.claim_queue
        queue.enqueue('WU-1', 'op-a')
        now_ms = int(clock().timestamp() * 1000)
        store.seed(QUEUE, [{'workId': 'WU-1', 'queueId': PROCESSOR_KEY, 'owner': 'other',
                            'leaseExpiresAt': now_ms + 30000, 'version': 1}])

        summary = queue.process('WU-1')

        assert summary['skipped'] is True
        assert store.get(WORK, {'workId': 'WU-1'})['status'] == 'available'
        assert len(queue.pending_entries('WU-1')) == 1

    def test_expired_lease_is_taken_over(self, services, store, clock):
        store.seed(WORK, [make_bundle('WU-1')])
        queue = services.claim_queue
        queue.enqueue('WU-1', 'op-a')
        now_ms = int(clock().timestamp() * 1000)
        store.seed(QUEUE, [{'workId': 'WU-1', 'queueId': PROCESSOR_KEY, 'owner': 'crashed',
                            'leaseExpiresAt': now_ms - 1, 'version': 1}])

        summary = queue.process('WU-1')

        assert summary['skipped'] is False
        assert store.get(WORK, {'workId': 'WU-1'})['assignedTo'] == 'op-a'

    def test_empty_queue_stops_immediately(self, services, dispatcher, store):
        summary = services.claim_queue.process('WU-1')
        assert summary['rounds'] == 0
        dispatcher.send_batch.assert_not_called()
        assert store.scan(QUEUE) == []


class TestPurgeAndStats:
    """Tests for stale queue cleanup and queue statistics."""

    def test_purge_removes_only_fully_stale_queues(self, services, store, clock):
        queue = services.claim_queue
        queue.enqueue('OLD', 'op-a')
        queue.enqueue('MIXED', 'op-a')
        clock.advance(minutes=10)
        queue.enqueue('MIXED', 'op-b')
        queue.enqueue('FRESH', 'op-c')

        result = queue.purge_stale()

        assert result == {'checked': 3, 'purged': 1}
        remaining = {e['workId'] for e in store.scan(QUEUE)}
        assert remaining == {'MIXED', 'FRESH'}

    def test_purge_honours_custom_max_age(self, services, store, clock):
        services.claim_queue.enqueue('W', 'op-a')
        clock.advance(seconds=30)
        assert services.claim_queue.purge_stale(max_age_seconds=10)['purged'] == 1
        assert store.scan(QUEUE) == []

    def test_queue_stats(self, services, clock):
        queue = services.claim_queue
        queue.enqueue('WU-1', 'op-a')
        first = int(clock().timestamp() * 1000)
        clock.advance(seconds=2)
        queue.enqueue('WU-1', 'op-b')
        clock.advance(seconds=2)

        stats = queue.get_queue_stats('WU-1')

        assert stats['totalRequests'] == 2
        assert stats['pendingRequests'] == 2
        assert stats['oldestRequest'] == first
        assert stats['averageWaitTime'] == 3000

    def test_stats_for_empty_queue(self, services):
        assert services.claim_queue.get_queue_stats('WU-1') == {
            'success': True, 'totalRequests': 0, 'pendingRequests': 0,
        }
