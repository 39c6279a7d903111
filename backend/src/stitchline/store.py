"""
Transactional store adapter.

Services talk to the store through a small vocabulary of write operations
(``Put``, ``Update``, ``Delete``) that are committed all-or-nothing, plus a
compare-and-swap ``transaction`` loop on a single record. Every write bumps
the record's ``version`` attribute so a CAS against a stale read always
fails and is retried.

``DynamoStore`` (see ``dynamo.py``) maps this onto DynamoDB; ``MemoryStore``
below gives the same semantics in-process for local runs and tests.
"""
import copy
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .logging import logger


class _Missing:
    """Sentinel: the attribute must be absent."""

    def __repr__(self):
        return 'MISSING'


MISSING = _Missing()


class TransactionConflict(Exception):
    """A write condition failed (someone else changed the record first)."""

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []


class StoreUnavailable(Exception):
    """The store could not be reached or rejected the request."""


class Put:
    """Write a whole item."""

    def __init__(self, table: str, item: Dict[str, Any], if_not_exists: bool = False,
                 expect: Optional[Dict[str, Any]] = None, must_exist: bool = False):
        self.table = table
        self.item = item
        self.if_not_exists = if_not_exists
        self.expect = expect or {}
        self.must_exist = must_exist


class Update:
    """
    Modify fields of one item.

    set_values replaces attributes, add_values increments numbers,
    add_members / remove_members edit string sets, remove_fields drops
    attributes. With must_exist=False a missing item is created (upsert).
    """

    def __init__(self, table: str, key: Dict[str, Any],
                 set_values: Optional[Dict[str, Any]] = None,
                 add_values: Optional[Dict[str, Any]] = None,
                 remove_fields: Optional[Sequence[str]] = None,
                 add_members: Optional[Dict[str, Iterable[str]]] = None,
                 remove_members: Optional[Dict[str, Iterable[str]]] = None,
                 expect: Optional[Dict[str, Any]] = None,
                 must_exist: bool = True):
        self.table = table
        self.key = key
        self.set_values = set_values or {}
        self.add_values = add_values or {}
        self.remove_fields = list(remove_fields or [])
        self.add_members = {k: set(v) for k, v in (add_members or {}).items()}
        self.remove_members = {k: set(v) for k, v in (remove_members or {}).items()}
        self.expect = expect or {}
        self.must_exist = must_exist


class Delete:
    def __init__(self, table: str, key: Dict[str, Any],
                 expect: Optional[Dict[str, Any]] = None, must_exist: bool = False):
        self.table = table
        self.key = key
        self.expect = expect or {}
        self.must_exist = must_exist


class TransactionResult:
    """Outcome of a CAS transaction: committed flag plus the record as it now stands."""

    def __init__(self, committed: bool, snapshot: Optional[Dict[str, Any]]):
        self.committed = committed
        self.snapshot = snapshot


class BaseStore:
    """Behaviour shared by every store backend."""

    def __init__(self, key_schema: Dict[str, Sequence[str]], max_attempts: int = 25):
        self.key_schema = key_schema
        self.max_attempts = max_attempts

    def key_for(self, table: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return {name: item[name] for name in self.key_schema[table]}

    # Backend primitives -------------------------------------------------

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(self, table: str, field: str, value: Any,
              index_name: Optional[str] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def scan(self, table: str, conditions: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def put(self, op: Put) -> None:
        raise NotImplementedError

    def commit(self, writes: Sequence[Any]) -> None:
        raise NotImplementedError

    # Compare-and-swap ---------------------------------------------------

    def transaction(self, table: str, key: Dict[str, Any],
                    mutator: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
                    max_attempts: Optional[int] = None) -> TransactionResult:
        """
        Optimistic read-modify-write of a single record.

        The mutator receives a private copy of the current record (or None)
        and returns the new record, or None to abort. The write only lands
        if the record's version is unchanged since the read; otherwise the
        mutator is re-run against a fresh read.
        """
        attempts = max_attempts or self.max_attempts
        label = '/'.join(str(v) for v in key.values())

        for attempt in range(1, attempts + 1):
            current = self.get(table, key)
            proposed = mutator(copy.deepcopy(current))
            if proposed is None:
                return TransactionResult(False, current)

            new_item = dict(proposed)
            new_item.update(key)
            if current is None:
                new_item['version'] = 1
                op = Put(table, new_item, if_not_exists=True)
            else:
                version = current.get('version', MISSING)
                new_item['version'] = (0 if version is MISSING else version) + 1
                op = Put(table, new_item, expect={'version': version}, must_exist=True)

            try:
                self.put(op)
                return TransactionResult(True, new_item)
            except TransactionConflict:
                logger.debug(f"CAS conflict on {table}/{label} (attempt {attempt}/{attempts})")

        raise TransactionConflict(
            f"Gave up on {table}/{label} after {attempts} conflicting attempts"
        )


class MemoryStore(BaseStore):
    """
    In-process store. A single lock makes every commit atomic and
    serializes condition checks, mirroring DynamoDB transactions.
    """

    def __init__(self, key_schema: Dict[str, Sequence[str]], max_attempts: int = 25):
        super().__init__(key_schema, max_attempts)
        self._tables: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _rows(self, table: str) -> Dict[tuple, Dict[str, Any]]:
        if table not in self.key_schema:
            raise StoreUnavailable(f"Unknown table {table}")
        return self._tables.setdefault(table, {})

    def _row_key(self, table: str, key: Dict[str, Any]) -> tuple:
        return tuple(key[name] for name in self.key_schema[table])

    def get(self, table, key):
        with self._lock:
            item = self._rows(table).get(self._row_key(table, key))
            return copy.deepcopy(item)

    def query(self, table, field, value, index_name=None):
        with self._lock:
            return [copy.deepcopy(item) for item in self._rows(table).values()
                    if item.get(field) == value]

    def scan(self, table, conditions=None):
        conditions = conditions or {}
        with self._lock:
            return [copy.deepcopy(item) for item in self._rows(table).values()
                    if _matches(item, conditions)]

    def seed(self, table: str, items: Iterable[Dict[str, Any]]) -> None:
        """Load fixture records without version checks."""
        with self._lock:
            rows = self._rows(table)
            for item in items:
                rows[self._row_key(table, item)] = copy.deepcopy(item)

    def put(self, op):
        self.commit([op])

    def commit(self, writes):
        with self._lock:
            staged: Dict[tuple, Optional[Dict[str, Any]]] = {}

            def current(table, key):
                ref = (table, self._row_key(table, key))
                if ref in staged:
                    return staged[ref]
                return self._rows(table).get(ref[1])

            reasons = []
            for op in writes:
                key = op.key if not isinstance(op, Put) else self.key_for(op.table, op.item)
                existing = current(op.table, key)
                reason = _check(op, existing)
                reasons.append(reason)
                if reason:
                    continue
                staged[(op.table, self._row_key(op.table, key))] = _apply(op, existing, key)

            if any(reasons):
                raise TransactionConflict(
                    'Transaction cancelled, conditional check failed',
                    reasons=[r or 'None' for r in reasons],
                )

            for (table, row_key), item in staged.items():
                rows = self._rows(table)
                if item is None:
                    rows.pop(row_key, None)
                else:
                    rows[row_key] = copy.deepcopy(item)


def _matches(item: Dict[str, Any], conditions: Dict[str, Any]) -> bool:
    for field, expected in conditions.items():
        if isinstance(expected, (list, tuple, set)):
            if item.get(field) not in expected:
                return False
        elif item.get(field) != expected:
            return False
    return True


def _check(op, existing: Optional[Dict[str, Any]]) -> Optional[str]:
    """Return a cancellation reason, or None when the op's conditions hold."""
    if isinstance(op, Put) and op.if_not_exists and existing is not None:
        return 'ConditionalCheckFailed'
    if op.must_exist and existing is None:
        return 'ConditionalCheckFailed'
    for field, expected in op.expect.items():
        actual = MISSING if existing is None else existing.get(field, MISSING)
        if expected is MISSING:
            if actual is not MISSING:
                return 'ConditionalCheckFailed'
        elif actual is MISSING or actual != expected:
            return 'ConditionalCheckFailed'
    return None


def _apply(op, existing: Optional[Dict[str, Any]], key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if isinstance(op, Delete):
        return None
    if isinstance(op, Put):
        item = copy.deepcopy(op.item)
        item.setdefault('version', 1)
        return item

    item = copy.deepcopy(existing) if existing is not None else dict(key)
    for field, value in op.set_values.items():
        item[field] = copy.deepcopy(value)
    for field, value in op.add_values.items():
        item[field] = item.get(field, 0) + value
    for field, members in op.add_members.items():
        item[field] = set(item.get(field, set())) | members
    for field, members in op.remove_members.items():
        remaining = set(item.get(field, set())) - members
        if remaining:
            item[field] = remaining
        else:
            item.pop(field, None)
    for field in op.remove_fields:
        item.pop(field, None)
    item['version'] = item.get('version', 0) + 1
    return item
