"""
Claim queue for contended work units.

When many operators reach for the same unit, their requests are queued
instead of racing. A processor resolves each round with a single claim for
the best request (lowest priority number, then earliest request) and tells
everyone how it went.

Only one processor runs per work unit at a time: it holds a lease record in
the queue table while it drains the queue and deletes the lease when the
queue is empty.
"""
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .assignment import AssignmentService
from .config import config
from .errors import InfrastructureError
from .logging import logger
from .models import NotificationType, QueueEntryStatus, RecipientRole
from .notifications import NotificationDispatcher, build_notification
from .store import BaseStore, Delete, Put, StoreUnavailable, TransactionConflict
from .utils import utc_now

# Sort key of the per-work-unit processor lease record
PROCESSOR_KEY = '#processor'
# A lease older than this belongs to a crashed processor and may be taken over
PROCESSOR_LEASE_SECONDS = 60
# Safety bound on resolution rounds per process() call
MAX_ROUNDS = 10
# Deletes per commit when clearing a queue
DELETE_CHUNK = 25


def now_ms(clock: Callable = utc_now) -> int:
    return int(clock().timestamp() * 1000)


def select_winner(entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Lowest priority number wins; ties go to the earliest request."""
    if not entries:
        return None
    return sorted(entries, key=lambda e: (int(e.get('priority', 1)), int(e['requestTime'])))[0]


class ClaimQueue:
    """Queue-based work assignment for high contention periods."""

    def __init__(self, store: BaseStore, assignments: AssignmentService,
                 dispatcher: NotificationDispatcher, clock: Callable = utc_now):
        self.store = store
        self.assignments = assignments
        self.dispatcher = dispatcher
        self.clock = clock

    def enqueue(self, work_id: str, operator_id: str, operator_info: Optional[Dict[str, Any]] = None,
                priority: int = 1) -> Dict[str, Any]:
        """
        Queue a claim request. Resolution happens in process(), triggered
        by the queue table's stream.

        Args:
            priority: 1 = highest, 5 = lowest
        """
        operator_info = operator_info or {}
        request_time = now_ms(self.clock)
        queue_id = f"{request_time:013d}-{uuid.uuid4().hex[:12]}"
        entry = {
            'workId': work_id,
            'queueId': queue_id,
            'operatorId': operator_id,
            'operatorName': operator_info.get('name'),
            'operatorMachine': operator_info.get('machineType'),
            'requestTime': request_time,
            'priority': int(priority),
            'status': QueueEntryStatus.PENDING,
        }
        try:
            self.store.put(Put(config.CLAIM_QUEUE_TABLE, entry, if_not_exists=True))
        except (StoreUnavailable, TransactionConflict) as e:
            logger.error(f"Failed to add to assignment queue: {e}")
            return InfrastructureError(str(e)).to_result()

        logger.info(f"Added to assignment queue: {work_id} -> {operator_id} ({queue_id})")
        return {'success': True, 'queueId': queue_id}

    def pending_entries(self, work_id: str) -> List[Dict[str, Any]]:
        entries = self.store.query(config.CLAIM_QUEUE_TABLE, 'workId', work_id)
        return [e for e in entries
                if e['queueId'] != PROCESSOR_KEY and e.get('status') == QueueEntryStatus.PENDING]

    def process(self, work_id: str) -> Dict[str, Any]:
        """
        Drain the queue for one work unit.

        Returns a summary; 'skipped' means another processor holds the lease.
        """
        rounds = []
        try:
            while len(rounds) < MAX_ROUNDS:
                token = uuid.uuid4().hex
                if not self._acquire_lease(work_id, token):
                    logger.info(f"Queue processor for {work_id} already running")
                    return {'workId': work_id, 'skipped': not rounds, 'rounds': len(rounds), 'results': rounds}
                try:
                    while len(rounds) < MAX_ROUNDS:
                        entries = self.pending_entries(work_id)
                        if not entries:
                            break
                        rounds.append(self._resolve_round(work_id, entries))
                finally:
                    self._release_lease(work_id, token)

                # Requests that arrived while the lease was held saw a busy
                # processor and were skipped by their own trigger
                if not self.pending_entries(work_id):
                    break
        except TransactionConflict as e:
            logger.warning(f"Queue processor for {work_id} lost a race: {e}")
        except StoreUnavailable as e:
            logger.error(f"Queue processor for {work_id} failed: {e}")
            raise

        logger.info(f"Stopped queue processor for {work_id} after {len(rounds)} round(s)")
        return {'workId': work_id, 'skipped': False, 'rounds': len(rounds), 'results': rounds}

    def _resolve_round(self, work_id: str, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
        winner = select_winner(entries)
        losers = [e for e in entries if e['queueId'] != winner['queueId']]
        logger.info(f"Processing winner: {winner['operatorId']} for work: {work_id} "
                    f"({len(losers)} other request(s))")

        result = self.assignments.claim(work_id, winner['operatorId'], {
            'name': winner.get('operatorName'),
            'machineType': winner.get('operatorMachine'),
        })

        if result['success']:
            notifications = [self._result_notification(winner, 'success', 'Work assigned successfully!')]
            notifications += [self._result_notification(e, 'failed', 'Someone else got the work')
                              for e in losers]
        else:
            # Work might already be assigned outside the queue
            message = result.get('message') or result.get('error')
            notifications = [self._result_notification(e, 'failed', message) for e in entries]

        self.dispatcher.send_batch(notifications)
        self._delete_entries(entries)
        return {
            'winner': winner['operatorId'] if result['success'] else None,
            'requests': len(entries),
            'claimed': result['success'],
        }

    def _result_notification(self, entry: Dict[str, Any], outcome: str, message: str) -> Dict[str, Any]:
        return build_notification(
            NotificationType.WORK_ASSIGNMENT,
            entry['operatorId'],
            RecipientRole.OPERATOR,
            'Work assigned' if outcome == 'success' else 'Work not assigned',
            message,
            priority='high' if outcome == 'success' else 'normal',
            data={'workId': entry['workId'], 'queueId': entry['queueId'], 'result': outcome},
        )

    def _delete_entries(self, entries: List[Dict[str, Any]]) -> None:
        for i in range(0, len(entries), DELETE_CHUNK):
            chunk = entries[i:i + DELETE_CHUNK]
            self.store.commit([
                Delete(config.CLAIM_QUEUE_TABLE, {'workId': e['workId'], 'queueId': e['queueId']})
                for e in chunk
            ])

    def _acquire_lease(self, work_id: str, token: str) -> bool:
        now = now_ms(self.clock)

        def take(current):
            if current and int(current.get('leaseExpiresAt', 0)) > now:
                return None
            return {'owner': token, 'leaseExpiresAt': now + PROCESSOR_LEASE_SECONDS * 1000}

        result = self.store.transaction(
            config.CLAIM_QUEUE_TABLE, {'workId': work_id, 'queueId': PROCESSOR_KEY}, take
        )
        return result.committed

    def _release_lease(self, work_id: str, token: str) -> None:
        try:
            self.store.commit([Delete(
                config.CLAIM_QUEUE_TABLE,
                {'workId': work_id, 'queueId': PROCESSOR_KEY},
                expect={'owner': token},
            )])
        except TransactionConflict:
            logger.warning(f"Lease for {work_id} was taken over before release")
        except StoreUnavailable as e:
            logger.error(f"Could not release queue lease for {work_id}: {e}")

    def purge_stale(self, max_age_seconds: Optional[int] = None) -> Dict[str, Any]:
        """
        Delete queues whose requests are all older than max_age_seconds.
        Run periodically by the purge_stale_queues handler.
        """
        max_age = config.CLAIM_QUEUE_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
        now = now_ms(self.clock)
        cutoff = now - max_age * 1000

        by_work = defaultdict(list)
        leases = {}
        for item in self.store.scan(config.CLAIM_QUEUE_TABLE):
            if item['queueId'] == PROCESSOR_KEY:
                leases[item['workId']] = item
            else:
                by_work[item['workId']].append(item)

        purged = 0
        for work_id, entries in by_work.items():
            if all(int(e['requestTime']) < cutoff for e in entries):
                logger.info(f"Cleaning up old queue for work: {work_id} ({len(entries)} request(s))")
                self._delete_entries(entries)
                purged += 1

        for work_id, lease in leases.items():
            if int(lease.get('leaseExpiresAt', 0)) < now:
                self._release_lease(work_id, lease.get('owner'))

        return {'checked': len(by_work), 'purged': purged}

    def get_queue_stats(self, work_id: str) -> Dict[str, Any]:
        try:
            entries = [e for e in self.store.query(config.CLAIM_QUEUE_TABLE, 'workId', work_id)
                       if e['queueId'] != PROCESSOR_KEY]
        except StoreUnavailable as e:
            return InfrastructureError(str(e)).to_result()

        if not entries:
            return {'success': True, 'totalRequests': 0, 'pendingRequests': 0}

        now = now_ms(self.clock)
        pending = [e for e in entries if e.get('status') == QueueEntryStatus.PENDING]
        waits = [now - int(e['requestTime']) for e in pending]
        return {
            'success': True,
            'totalRequests': len(entries),
            'pendingRequests': len(pending),
            'oldestRequest': min(int(e['requestTime']) for e in entries),
            'averageWaitTime': sum(waits) / len(waits) if waits else 0,
        }
