"""Tests for the connection state machine (whatsapp_monitor.monitor.state)."""

from __future__ import annotations

import pytest

from conftest import QR_PAYLOAD
from whatsapp_monitor.monitor.errors import AlreadyConnectedError
from whatsapp_monitor.monitor.models import WhatsAppMessage
from whatsapp_monitor.monitor.state import (
    SCAN_FAILURE_MESSAGE,
    ConnectionStateMachine,
    ConnectionStatus,
    StatusKind,
)


class FakeClock:
    def __init__(self, now: int = 1000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def machine(clock: FakeClock) -> ConnectionStateMachine:
    return ConnectionStateMachine(clock=clock)


def _message(text: str = "hello", chat_id: str = "Alice") -> WhatsAppMessage:
    return WhatsAppMessage.create(text=text, timestamp=990, sender="contact", created_at=1000, chat_id=chat_id)


# ── ConnectionStatus ────────────────────────────────────────────────


class TestConnectionStatus:
    def test_qr_status_requires_data_url(self) -> None:
        with pytest.raises(ValueError):
            ConnectionStatus.qr_code_ready("")
        with pytest.raises(ValueError):
            ConnectionStatus.qr_code_ready("data:image/png;base64,short")

    def test_error_status_requires_message(self) -> None:
        with pytest.raises(ValueError):
            ConnectionStatus.error("")

    def test_plain_status_rejects_detail(self) -> None:
        with pytest.raises(ValueError):
            ConnectionStatus(StatusKind.CONNECTED, "extra")

    def test_is_connected(self) -> None:
        assert ConnectionStatus.connected().is_connected
        assert ConnectionStatus.monitoring().is_connected
        assert not ConnectionStatus.reconnecting().is_connected
        assert not ConnectionStatus.qr_code_ready(QR_PAYLOAD).is_connected

    def test_to_dict_includes_error_message(self) -> None:
        assert ConnectionStatus.error("boom").to_dict() == {"kind": "error", "message": "boom"}
        assert ConnectionStatus.monitoring().to_dict() == {"kind": "monitoring"}


# ── Transitions ─────────────────────────────────────────────────────


class TestTransitions:
    async def test_initial_state_is_disconnected(self, machine) -> None:
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.DISCONNECTED
        assert state.qr_code is None
        assert state.connected_since is None
        assert state.health.monitoring_active is False

    async def test_begin_connect_moves_to_connecting(self, machine) -> None:
        await machine.begin_connect()
        assert (await machine.status()).kind is StatusKind.CONNECTING

    @pytest.mark.parametrize("status", [ConnectionStatus.connected(), ConnectionStatus.monitoring()])
    async def test_begin_connect_rejects_connected_session(self, machine, status) -> None:
        await machine.set_status(status)
        with pytest.raises(AlreadyConnectedError):
            await machine.begin_connect()
        assert (await machine.status()).kind is status.kind

    async def test_qr_code_is_mirrored_into_state(self, machine) -> None:
        await machine.begin_connect()
        assert await machine.set_qr_code(QR_PAYLOAD) is True
        assert await machine.set_qr_code(QR_PAYLOAD) is False
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.QR_CODE_READY
        assert state.qr_code == QR_PAYLOAD

    async def test_connected_since_set_on_connect_and_kept_into_monitoring(self, machine, clock) -> None:
        await machine.set_status(ConnectionStatus.connected())
        clock.now = 1050
        await machine.enter_monitoring()
        state = await machine.snapshot()
        assert state.connected_since == 1000
        assert state.status.kind is StatusKind.MONITORING

    async def test_entering_connected_clears_qr(self, machine) -> None:
        await machine.set_qr_code(QR_PAYLOAD)
        await machine.set_status(ConnectionStatus.connected())
        assert (await machine.snapshot()).qr_code is None

    async def test_non_connected_status_clears_connected_since(self, machine) -> None:
        await machine.enter_monitoring()
        await machine.set_status(ConnectionStatus.reconnecting())
        assert (await machine.snapshot()).connected_since is None

    async def test_mark_disconnected_clears_everything_session_bound(self, machine) -> None:
        await machine.set_qr_code(QR_PAYLOAD)
        await machine.enter_monitoring()
        await machine.mark_disconnected()
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.DISCONNECTED
        assert state.qr_code is None
        assert state.connected_since is None
        assert state.health.monitoring_active is False

    async def test_reconnect_from_disconnected_resets_counters(self, machine) -> None:
        await machine.enter_monitoring()
        await machine.record_message(_message())
        await machine.mark_disconnected()
        await machine.begin_connect()
        state = await machine.snapshot()
        assert state.message_count == 0
        assert state.active_chats == []
        assert state.last_message_timestamp is None

    async def test_snapshot_is_a_copy(self, machine) -> None:
        state = await machine.snapshot()
        state.active_chats.append("tampered")
        state.health.consecutive_failures = 99
        fresh = await machine.snapshot()
        assert fresh.active_chats == []
        assert fresh.health.consecutive_failures == 0


# ── Scan updates ────────────────────────────────────────────────────


class TestScanUpdates:
    async def test_record_message_updates_counters(self, machine, clock) -> None:
        await machine.enter_monitoring()
        clock.now = 1010
        await machine.record_message(_message("a", "Alice"))
        await machine.record_message(_message("b", "Alice"))
        await machine.record_message(_message("c", "Bob"))
        state = await machine.snapshot()
        assert state.message_count == 3
        assert state.last_message_timestamp == 990
        assert state.active_chats == ["Alice", "Bob"]
        assert state.health.last_heartbeat == 1010

    async def test_five_failures_are_tolerated(self, machine) -> None:
        await machine.enter_monitoring()
        for _ in range(5):
            assert await machine.record_scan_failure(5) is False
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.MONITORING
        assert state.health.consecutive_failures == 5

    async def test_sixth_failure_marks_connection_lost(self, machine) -> None:
        await machine.enter_monitoring()
        results = [await machine.record_scan_failure(5) for _ in range(6)]
        assert results[-1] is True
        state = await machine.snapshot()
        assert state.status == ConnectionStatus.error(SCAN_FAILURE_MESSAGE)
        assert state.health.monitoring_active is False

    async def test_success_resets_failure_streak(self, machine, clock) -> None:
        await machine.enter_monitoring()
        await machine.record_scan_failure(5)
        await machine.record_scan_failure(5)
        clock.now = 1100
        await machine.record_scan_success()
        state = await machine.snapshot()
        assert state.health.consecutive_failures == 0
        assert state.health.last_heartbeat == 1100

    async def test_failure_ignored_when_not_monitoring(self, machine) -> None:
        assert await machine.record_scan_failure(5) is False
        assert (await machine.snapshot()).health.consecutive_failures == 0


# ── Supervisor updates ──────────────────────────────────────────────


class TestSupervisorUpdates:
    async def test_stall_moves_to_reconnecting(self, machine, clock) -> None:
        await machine.enter_monitoring()
        clock.now = 1121
        assert await machine.check_stall(120) is True
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.RECONNECTING
        assert state.health.last_recovery_attempt == 1121
        assert state.health.monitoring_active is True

    async def test_no_stall_within_threshold(self, machine, clock) -> None:
        await machine.enter_monitoring()
        clock.now = 1120
        assert await machine.check_stall(120) is False
        assert (await machine.status()).kind is StatusKind.MONITORING

    async def test_mark_recovered_returns_to_monitoring(self, machine, clock) -> None:
        await machine.enter_monitoring()
        clock.now = 1200
        await machine.check_stall(120)
        await machine.mark_recovered()
        state = await machine.snapshot()
        assert state.status.kind is StatusKind.MONITORING
        assert state.health.last_heartbeat == 1200

    async def test_mark_recovered_ignored_outside_reconnecting(self, machine) -> None:
        await machine.set_status(ConnectionStatus.error("boom"))
        await machine.mark_recovered()
        assert (await machine.status()).kind is StatusKind.ERROR

    async def test_gap_count(self, machine) -> None:
        await machine.set_gap_count(3)
        assert (await machine.snapshot()).health.gap_count == 3

    async def test_to_dict_shape(self, machine) -> None:
        await machine.set_qr_code(QR_PAYLOAD)
        data = (await machine.snapshot()).to_dict()
        assert data["status"] == {"kind": "qr_code_ready"}
        assert data["qr_code"] == QR_PAYLOAD
        assert data["health"]["monitoring_active"] is False
