"""
Shared fixtures: an in-memory store wired into the real services, a
mocked notification dispatcher and a controllable clock.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

# Add src to path so `stitchline` and `handlers` import as in the Lambda runtime
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stitchline.config import config  # noqa: E402
from stitchline.notifications import NotificationDispatcher  # noqa: E402
from stitchline.services import build_services  # noqa: E402
from stitchline.store import MemoryStore  # noqa: E402


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 3, 15, 9, 30, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return MemoryStore(config.key_schema, max_attempts=config.CAS_MAX_ATTEMPTS)


@pytest.fixture
def dispatcher():
    mock = MagicMock(spec=NotificationDispatcher)
    mock.send.return_value = True
    mock.send_batch.return_value = True
    return mock


@pytest.fixture
def services(store, dispatcher, clock):
    return build_services(store=store, dispatcher=dispatcher, clock=clock)


def make_bundle(work_id='B-42', pieces=10, rate='5', **overrides):
    bundle = {
        'workId': work_id,
        'bundleNumber': f'BN-{work_id}',
        'article': 'Polo Shirt',
        'operation': 'Side Seam',
        'machineType': 'overlock',
        'pieces': Decimal(pieces),
        'rate': Decimal(rate),
        'status': 'available',
        'assigned': False,
        'paymentStatus': 'normal',
        'version': 1,
    }
    bundle.update(overrides)
    return bundle


def make_wallet(operator_id='op-1', available='0', held='0', earned='0', held_bundles=None):
    wallet = {
        'operatorId': operator_id,
        'availableAmount': Decimal(available),
        'heldAmount': Decimal(held),
        'totalEarned': Decimal(earned),
        'version': 1,
    }
    if held_bundles:
        wallet['heldBundles'] = set(held_bundles)
    return wallet
