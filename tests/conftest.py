"""
Shared fixtures for otp-core tests.
"""

import pytest

from otp_core.config import OTPConfig
from otp_core.engine import VerificationEngine
from otp_core.notifier import RecordingNotifier
from otp_core.stores.memory import InMemoryCounterStore, InMemoryRecordStore

from tests.support import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return OTPConfig()


@pytest.fixture
def records():
    return InMemoryRecordStore()


@pytest.fixture
def counters(clock):
    return InMemoryCounterStore(clock=clock.time)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(records, counters, notifier, config, clock):
    return VerificationEngine(records, counters, notifier, config, clock=clock.now)
