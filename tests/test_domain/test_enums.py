"""Tests for domain enumerations."""

from __future__ import annotations

from geo_escrow.domain.enums import (
    TERMINAL_STATUSES,
    AuditEventType,
    ExpiryPolicy,
    GatewayEventKind,
    TransferStatus,
)


class TestTransferStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"created", "funding", "held", "released", "expired", "failed", "canceled"}
        actual = {s.value for s in TransferStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(TransferStatus.HELD, str)
        assert TransferStatus.HELD == "held"

    def test_terminal_statuses(self) -> None:
        assert TERMINAL_STATUSES == {
            TransferStatus.RELEASED,
            TransferStatus.EXPIRED,
            TransferStatus.FAILED,
            TransferStatus.CANCELED,
        }
        assert TransferStatus.RELEASED.is_terminal
        assert not TransferStatus.HELD.is_terminal


class TestAuditEventType:
    def test_all_event_types_exist(self) -> None:
        # 7 lifecycle + 4 gate decisions + 3 settlement + 4 return-to-payer
        assert len(AuditEventType) == 18

    def test_denials_are_recorded_types(self) -> None:
        assert AuditEventType.TIME_LOCK_DENIED == "TIME_LOCK_DENIED"
        assert AuditEventType.VERIFICATION_FAILED == "VERIFICATION_FAILED"


class TestGatewayEventKind:
    def test_kinds(self) -> None:
        assert {k.value for k in GatewayEventKind} == {"captured", "capture_failed", "payee_activated"}


class TestExpiryPolicy:
    def test_policies(self) -> None:
        assert ExpiryPolicy("freeze") is ExpiryPolicy.FREEZE
        assert ExpiryPolicy("auto_return") is ExpiryPolicy.AUTO_RETURN
