"""Shared test fixtures for lifecycle-machines."""

from __future__ import annotations

import pytest

from lifecycle.audit import InMemoryAuditSink
from tests.factories import StepClock


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
