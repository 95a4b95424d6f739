"""
Test fixtures and configuration.
"""

from __future__ import annotations

import random
from typing import Any

import pytest

from adamint.operations import WalletOperations
from tests.fakes import FakeLedgerBackend


@pytest.fixture
def backend() -> FakeLedgerBackend:
    fake = FakeLedgerBackend()
    fake.add_wallet("sender")
    fake.add_wallet("policy")
    return fake


@pytest.fixture
def operations(backend: FakeLedgerBackend) -> WalletOperations:
    return WalletOperations(backend, rng=random.Random(42))


@pytest.fixture
def time_locked_script() -> dict[str, Any]:
    return {
        "type": "all",
        "scripts": [
            {"type": "sig", "keyHash": "policykeyhash"},
            {"type": "before", "slot": 12345678},
        ],
    }
