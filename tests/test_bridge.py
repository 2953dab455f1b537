"""OperationBridge signals (pytest-qt)."""
from __future__ import annotations

import pytest

from pharmacy_pos.bridge import OperationBridge
from pharmacy_pos.operations import Operations


@pytest.fixture
def bridge(conn, qtbot) -> OperationBridge:
    return OperationBridge(Operations(conn))


def test_success_emits_result(bridge, qtbot) -> None:
    with qtbot.waitSignal(bridge.succeeded, timeout=1000) as blocker:
        ok = bridge.call("reports.balances", {})

    assert ok is True
    name, result = blocker.args
    assert name == "reports.balances"
    assert set(result) == {"cash_and_bank", "payables", "receivables"}


def test_domain_failure_emits_error_dict(bridge, qtbot) -> None:
    with qtbot.assertNotEmitted(bridge.succeeded):
        with qtbot.waitSignal(bridge.failed, timeout=1000) as blocker:
            ok = bridge.call("sales.get", {"id": 999})

    assert ok is False
    name, error = blocker.args
    assert name == "sales.get"
    assert error["code"] == "not_found"


def test_unexpected_crash_is_reported_not_raised(bridge, qtbot, monkeypatch) -> None:
    def boom(name, payload=None):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(bridge.operations, "invoke", boom)
    with qtbot.waitSignal(bridge.failed, timeout=1000) as blocker:
        assert bridge.call("reports.balances", {}) is False

    assert blocker.args[1]["code"] == "storage_error"
    assert "disk on fire" in blocker.args[1]["message"]
