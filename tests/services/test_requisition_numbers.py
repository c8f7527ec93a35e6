"""Tests for RequisitionNumberService."""

from datetime import datetime, timezone

from pharmacy_kernel.services.requisition_number_service import RequisitionNumberService


class TestNextNumber:
    def test_sequence_within_month(self, numbers):
        assert numbers.next_number() == "REQ202506001"
        assert numbers.next_number() == "REQ202506002"
        assert numbers.current_value("202506") == 2

    def test_new_month_restarts(self, numbers, clock):
        numbers.next_number()
        numbers.next_number()
        clock.set_time(datetime(2025, 7, 1, 0, 0, tzinfo=timezone.utc))
        assert numbers.next_number() == "REQ202507001"
        assert numbers.current_value("202506") == 2

    def test_prefix_and_width(self, session, clock):
        service = RequisitionNumberService(session, clock, prefix="TRF", digits=5)
        assert service.next_number() == "TRF20250600001"

    def test_prefixes_are_independent(self, session, clock, numbers):
        numbers.next_number()
        other = RequisitionNumberService(session, clock, prefix="RET")
        assert other.next_number() == "RET202506001"
        assert numbers.next_number() == "REQ202506002"

    def test_unknown_period(self, numbers):
        assert numbers.current_value("199901") is None
