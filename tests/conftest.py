"""Shared pytest fixtures for the Moove Money test-suite."""
from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from moove_money import logs
from moove_money.config import DisbursementSettings, LoggingSettings
from moove_money.crypto import LocalAccount
from moove_money.ledger import Ledger
from moove_money.orchestrator import DisbursementOrchestrator

MODULE_ADDRESS = "0x" + "ab" * 32


@pytest.fixture(scope="session", autouse=True)
def test_logging() -> Iterator[None]:
    logs.configure(LoggingSettings(level="DEBUG"))
    yield


@pytest.fixture()
def ledger() -> Ledger:
    return Ledger(MODULE_ADDRESS)


@pytest.fixture()
def sender(ledger) -> LocalAccount:
    account = LocalAccount.generate()
    ledger.fund(account.address, 1000)
    return account


@pytest.fixture()
def make_recipient(ledger):
    """Create a fresh recipient address, registered unless told otherwise."""

    def _make(registered: bool = True) -> str:
        address = LocalAccount.generate().address
        if registered:
            ledger.register(address)
        return address

    return _make


@pytest.fixture()
def settings() -> DisbursementSettings:
    return DisbursementSettings(module_address=MODULE_ADDRESS, poll_interval=0.01, max_wait=5.0)


@pytest.fixture()
def orchestrator(ledger, sender, settings) -> DisbursementOrchestrator:
    return DisbursementOrchestrator(ledger, sender, settings, sleep=lambda _: None)
