# Overview: Pytest coverage for tenant/type/period document counters.

import pytest

from salon_ledger.models import SequenceCounter
from salon_ledger.services import sequence_service
from salon_ledger.validation import ValidationError


class TestFormatting:
    def test_format_number(self):
        assert sequence_service.format_number("FAC", "2026", 1) == "FAC-2026-000001"
        assert sequence_service.format_number("REC", "2026", 1234567) == "REC-2026-1234567"

    def test_series_for_known_types(self):
        assert sequence_service.series_for("ordinary") == "FAC"
        assert sequence_service.series_for("corrective") == "REC"

    def test_series_for_unknown_type(self):
        with pytest.raises(ValidationError):
            sequence_service.series_for("receipt")


class TestAllocation:
    def test_first_use_starts_at_one(self, db_session, tenant_a):
        assert sequence_service.next_value(tenant_a.id, "ordinary", "2026") == 1
        db_session.commit()

        counter = db_session.query(SequenceCounter).filter_by(tenant_id=tenant_a.id).one()
        assert counter.next_value == 2

    def test_monotonic_without_reuse(self, db_session, tenant_a):
        values = []
        for _ in range(5):
            values.append(sequence_service.next_value(tenant_a.id, "ordinary", "2026"))
            db_session.commit()
        assert values == [1, 2, 3, 4, 5]
        assert sequence_service.peek(tenant_a.id, "ordinary", "2026") == 6

    def test_rolled_back_allocation_is_not_persisted(self, db_session, tenant_a):
        sequence_service.next_value(tenant_a.id, "ordinary", "2026")
        db_session.commit()

        sequence_service.next_value(tenant_a.id, "ordinary", "2026")
        db_session.rollback()

        assert sequence_service.next_value(tenant_a.id, "ordinary", "2026") == 2
        db_session.commit()

    def test_counters_scoped_by_tenant_type_and_period(self, db_session, tenant_a, tenant_b):
        assert sequence_service.next_value(tenant_a.id, "ordinary", "2026") == 1
        assert sequence_service.next_value(tenant_a.id, "ordinary", "2026") == 2
        assert sequence_service.next_value(tenant_a.id, "ordinary", "2027") == 1
        assert sequence_service.next_value(tenant_a.id, "corrective", "2026") == 1
        assert sequence_service.next_value(tenant_b.id, "ordinary", "2026") == 1
        db_session.commit()

        assert len(sequence_service.list_counters(tenant_a.id)) == 3
        assert len(sequence_service.list_counters(tenant_b.id)) == 1

    def test_peek_on_unused_counter(self, db_session, tenant_a):
        assert sequence_service.peek(tenant_a.id, "ordinary", "2026") == 1

    @pytest.mark.parametrize("args", [(None, "ordinary", "2026"), (1, "", "2026"), (1, "ordinary", "")])
    def test_missing_key_parts(self, db_session, args):
        with pytest.raises(ValidationError):
            sequence_service.next_value(*args)
