"""
Tests for outbound number selection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pharmacy_sms.errors import NoActiveNumbersError, NotFoundError, NumberNotFoundError
from pharmacy_sms.numbers import find_number_by_phone, select_outbound_number

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestSelectOutboundNumber:

    def test_active_primary_wins_over_recency(self, db, add_number):
        """Inactive primary is skipped; active primary beats older active number."""
        add_number(is_active=False, is_primary=True, created_at=BASE_TIME)
        add_number(is_active=True, is_primary=False, created_at=BASE_TIME + timedelta(hours=1))
        expected = add_number(is_active=True, is_primary=True, created_at=BASE_TIME + timedelta(hours=2))

        assert select_outbound_number(db).id == expected.id

    def test_oldest_active_without_primary(self, db, add_number):
        newer = add_number(created_at=BASE_TIME + timedelta(days=2))
        older = add_number(created_at=BASE_TIME + timedelta(days=1))

        selected = select_outbound_number(db)

        assert selected.id == older.id
        assert selected.id != newer.id

    def test_no_active_numbers(self, db, add_number):
        add_number(is_active=False, is_primary=True)

        with pytest.raises(NoActiveNumbersError) as exc_info:
            select_outbound_number(db)
        assert exc_info.value.status_code == 400
        assert isinstance(exc_info.value, NotFoundError)

    def test_explicit_id(self, db, add_number):
        add_number(is_primary=True)
        secondary = add_number()

        assert select_outbound_number(db, secondary.id).id == secondary.id

    def test_explicit_inactive_id_not_found(self, db, add_number):
        add_number(is_primary=True)
        inactive = add_number(is_active=False)

        with pytest.raises(NumberNotFoundError):
            select_outbound_number(db, inactive.id)

    def test_explicit_unknown_id_not_found(self, db, add_number):
        add_number()

        with pytest.raises(NumberNotFoundError):
            select_outbound_number(db, "does-not-exist")

    def test_configuration_changes_visible_immediately(self, db, add_number):
        first = add_number(is_primary=True)
        assert select_outbound_number(db).id == first.id

        first.is_active = False
        db.commit()
        second = add_number()

        assert select_outbound_number(db).id == second.id


class TestFindNumberByPhone:

    def test_matches_on_identity(self, db, add_number):
        number = add_number(phone_number="+19142221900")

        assert find_number_by_phone(db, "(914) 222-1900").id == number.id

    def test_inactive_or_unknown(self, db, add_number):
        add_number(phone_number="+19142221900", is_active=False)

        assert find_number_by_phone(db, "+19142221900") is None
        assert find_number_by_phone(db, None) is None

    def test_country_code_variants_match(self, db, add_number):
        add_number(phone_number="+19142221900", is_primary=True)
        number = add_number(phone_number="9142221901")

        assert find_number_by_phone(db, "19142221901").id == number.id
        assert find_number_by_phone(db, "+1 (914) 222-1901").id == number.id
