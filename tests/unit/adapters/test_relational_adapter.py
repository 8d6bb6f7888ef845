"""
Unit tests for RelationalAdapter with a mocked SQLAlchemy engine.

Tests cover:
- Shaping joined user rows into fan/organizer/admin users
- Decoding aggregated JSON and driver types
- Transactional writes (create_concert, create_user) and rollback errors
- Referral point increments, the non-negative balance guard and the
  compare-and-swap claim
- Organizer and upcoming-concert analytics
- The raw query escape hatch
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from concertdb.adapters import RelationalAdapter
from concertdb.connections import RelationalConnection
from concertdb.exceptions import TransactionFailureError
from concertdb.models import OrganizerStats, Ticket
from concertdb.observability import MockTracer
from concertdb.types import DatabaseType
from tests.fixtures import (
    REGISTERED,
    executed_sql,
    make_arena,
    make_concert,
    make_fan,
    make_result,
)


def user_row(**overrides):
    row = {
        "user_id": "u-1",
        "email": "ana@example.com",
        "user_password": "hash",
        "first_name": "Ana",
        "last_name": "Silva",
        "registration_date": REGISTERED,
        "last_login": None,
        "fan_user_id": None,
        "username": None,
        "preferred_genre": None,
        "phone_number": None,
        "referral_code": None,
        "referral_points": None,
        "referral_code_used": None,
        "referred_by": None,
        "organizer_user_id": None,
        "organization_name": None,
        "contact_info": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def adapter(relational_connection: RelationalConnection, tracer: MockTracer) -> RelationalAdapter:
    return RelationalAdapter(relational_connection, tracer=tracer)


class TestUsers:
    @pytest.mark.asyncio
    async def test_fan_row_shaped_into_fan_details(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                user_row(
                    fan_user_id="u-1",
                    username="ana",
                    referral_code="ABC123",
                    referral_points=15,
                    referral_code_used=False,
                )
            ]
        )

        user = (await adapter.get_user_by_id("u-1")).first

        assert user["user_type"] == "fan"
        assert user["fan_details"]["username"] == "ana"
        assert user["fan_details"]["referral_points"] == 15
        assert user["organizer_details"] is None
        assert "fan_user_id" not in user

    @pytest.mark.asyncio
    async def test_organizer_row_has_no_fan_details(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                user_row(
                    organizer_user_id="u-1",
                    organization_name="Music Festival Inc",
                    contact_info="+1-800",
                )
            ]
        )

        user = (await adapter.get_user_by_id("u-1")).first

        assert user["user_type"] == "organizer"
        assert user["fan_details"] is None
        assert user["organizer_details"] == {
            "organization_name": "Music Festival Inc",
            "contact_info": "+1-800",
        }

    @pytest.mark.asyncio
    async def test_admin_email_reads_as_admin(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [user_row(email="admin@concert.com", fan_user_id="u-1", username="admin")]
        )

        user = (await adapter.get_user_by_email("admin@concert.com")).first

        assert user["user_type"] == "admin"
        assert user["fan_details"] is None
        assert user["organizer_details"] is None

    @pytest.mark.asyncio
    async def test_missing_user_is_empty_result(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result([])

        result = await adapter.get_user_by_id("nobody")

        assert result.is_empty
        assert result.first is None
        assert len(result) == 0

    @pytest.mark.asyncio
    async def test_create_fan_writes_user_and_fan_rows_in_one_transaction(
        self, adapter, sql_connection, sql_engine
    ):
        fan = make_fan("u-1")
        sql_connection.execute.side_effect = [
            make_result(),
            make_result(),
            make_result([user_row(fan_user_id="u-1", username="ana")]),
        ]

        result = await adapter.create_user(fan)

        statements = executed_sql(sql_connection)
        assert statements[0].startswith("INSERT INTO users")
        assert statements[1].startswith("INSERT INTO fans")
        assert sql_connection.execute.call_args_list[1].args[1]["referral_code"] == "ABC123"
        assert sql_engine.begin.call_count == 1
        assert result.first["user_id"] == "u-1"

    @pytest.mark.asyncio
    async def test_update_user_rejects_role_fields(self, adapter, sql_connection):
        with pytest.raises(ValueError, match="user_type"):
            await adapter.update_user("u-1", {"user_type": "admin"})

        sql_connection.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_missing_user_returns_empty(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result([])

        result = await adapter.update_user("nobody", {"first_name": "New"})

        assert result.is_empty
        assert "SET first_name = :first_name" in executed_sql(sql_connection)[0]


class TestConcerts:
    @pytest.mark.asyncio
    async def test_aggregated_json_is_decoded(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                {
                    "concert_id": "c-1",
                    "arena_id": "arena-1",
                    "arena": json.dumps(
                        {
                            "arena_id": "arena-1",
                            "arena_name": "Main",
                            "arena_location": "Lisbon",
                            "capacity": 300,
                        }
                    ),
                    "artists": json.dumps(
                        [{"artist_id": "a-1", "artist_name": "X", "genre": None}]
                    ),
                    "zone_pricing": [{"zone_name": "Floor", "price": 120.0}],
                }
            ]
        )

        concert = (await adapter.get_concert_by_id("c-1")).first

        assert concert["arena"]["capacity"] == 300
        assert concert["artists"][0]["artist_id"] == "a-1"
        assert concert["zone_pricing"] == [{"zone_name": "Floor", "price": 120.0}]

    @pytest.mark.asyncio
    async def test_concert_list_ordered_by_date_desc(self, adapter, sql_connection):
        await adapter.get_concerts()

        assert executed_sql(sql_connection)[0].endswith("ORDER BY c.concert_date DESC")

    @pytest.mark.asyncio
    async def test_create_concert_writes_pricing_and_artists(
        self, adapter, sql_connection, sql_engine, tracer
    ):
        concert = make_concert(artists=["artist-1", "artist-2"])

        await adapter.create_concert(concert)

        calls = sql_connection.execute.call_args_list
        statements = executed_sql(sql_connection)
        assert statements[0].startswith("INSERT INTO concerts")
        assert statements[1].startswith("INSERT INTO concert_zone_pricing")
        assert [(p["zone_name"], p["price"]) for p in calls[1].args[1]] == [
            ("Floor", Decimal("120.0")),
            ("Balcony", Decimal("60.5")),
        ]
        assert all(p["arena_id"] == "arena-1" for p in calls[1].args[1])
        assert statements[2].startswith("INSERT INTO concert_features_artists")
        assert [p["artist_id"] for p in calls[2].args[1]] == ["artist-1", "artist-2"]
        sql_engine.begin.assert_called_once()
        assert "concertdb.relational.create_concert" in tracer.span_names

    @pytest.mark.asyncio
    async def test_create_concert_without_artists_skips_link_rows(self, adapter, sql_connection):
        await adapter.create_concert(make_concert(artists=[]))

        statements = executed_sql(sql_connection)
        assert not any(s.startswith("INSERT INTO concert_features_artists") for s in statements)

    @pytest.mark.asyncio
    async def test_create_concert_failure_raises_transaction_error(self, adapter, sql_connection):
        cause = IntegrityError("INSERT INTO concert_zone_pricing", {}, Exception("fk violation"))
        sql_connection.execute.side_effect = [make_result(), cause]

        with pytest.raises(TransactionFailureError) as exc_info:
            await adapter.create_concert(make_concert())

        assert exc_info.value.operation == "create_concert"
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    async def test_create_arena_writes_zones(self, adapter, sql_connection):
        await adapter.create_arena(make_arena())

        calls = sql_connection.execute.call_args_list
        assert executed_sql(sql_connection)[1].startswith("INSERT INTO zones")
        assert [z["zone_name"] for z in calls[1].args[1]] == ["Floor", "Balcony"]


class TestTickets:
    @pytest.mark.asyncio
    async def test_decimal_columns_become_floats(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [{"ticket_id": "t-1", "purchase_price": Decimal("108.00"), "price": Decimal("120.00")}]
        )

        ticket = (await adapter.get_ticket_by_id("t-1")).first

        assert ticket["purchase_price"] == 108.0
        assert isinstance(ticket["price"], float)

    @pytest.mark.asyncio
    async def test_create_ticket_sends_money_as_decimal(self, adapter, sql_connection):
        ticket = Ticket(
            ticket_id="t-1",
            fan_id="fan-1",
            concert_id="c-1",
            arena_id="arena-1",
            zone_name="Floor",
            purchase_price=108.0,
        )

        await adapter.create_ticket(ticket)

        params = sql_connection.execute.call_args_list[0].args[1]
        assert params["purchase_price"] == Decimal("108.0")


class TestAggregates:
    @pytest.mark.asyncio
    async def test_get_stats(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [{"users": 4, "artists": 2, "arenas": 1, "concerts": 3, "tickets": 9}]
        )

        stats = await adapter.get_stats()

        assert stats.users == 4
        assert stats.tickets == 9

    @pytest.mark.asyncio
    async def test_ticket_summary_casts_counts(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                {
                    "zone_name": "Floor",
                    "tickets_sold": 3,
                    "revenue": Decimal("360.00"),
                    "referral_tickets": Decimal("1"),
                }
            ]
        )

        row = (await adapter.get_concert_ticket_summary("c-1")).first

        assert row == {
            "zone_name": "Floor",
            "tickets_sold": 3,
            "revenue": 360.0,
            "referral_tickets": 1,
        }


class TestReferrals:
    @pytest.mark.asyncio
    async def test_points_update_is_a_single_increment(self, adapter, sql_connection, tracer):
        sql_connection.execute.return_value = make_result([])

        result = await adapter.update_user_referral_points("fan-1", -20)

        assert result.is_empty
        assert "referral_points = referral_points + :delta" in executed_sql(sql_connection)[0]
        assert sql_connection.execute.call_args.args[1] == {"user_id": "fan-1", "delta": -20}
        assert tracer.spans[-1][1]["concertdb.referral.points_delta"] == -20

    @pytest.mark.asyncio
    async def test_points_never_go_negative(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result([])

        result = await adapter.update_user_referral_points("fan-1", -40)

        assert result.is_empty
        statements = executed_sql(sql_connection)
        assert "WHERE user_id = :user_id AND referral_points + :delta >= 0" in statements[0]
        assert len(statements) == 1

    @pytest.mark.asyncio
    async def test_claim_referral_code(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result([{"user_id": "fan-1"}])
        assert await adapter.claim_referral_code("fan-1") is True
        assert "referral_code_used = FALSE" in executed_sql(sql_connection)[0]

        sql_connection.execute.return_value = make_result([])
        assert await adapter.claim_referral_code("fan-1") is False

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, adapter, sql_connection):
        with pytest.raises(ValueError, match="refer themselves"):
            await adapter.update_fan_referrer("fan-1", "fan-1")

        sql_connection.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_tickets_from_referrals_joins_referred_fans(self, adapter, sql_connection):
        await adapter.get_tickets_from_referrals("fan-1")

        statement = executed_sql(sql_connection)[0]
        assert "JOIN fans referred ON t.fan_id = referred.user_id" in statement
        assert "t.referral_code_used = TRUE" in statement


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_organizer_stats(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                {
                    "total_concerts": 2,
                    "upcoming_concerts": 1,
                    "tickets_sold": 3,
                    "revenue": Decimal("300.50"),
                }
            ]
        )

        stats = await adapter.get_organizer_stats("org-1", as_of=date(2025, 1, 1))

        assert stats == OrganizerStats(
            total_concerts=2,
            upcoming_concerts=1,
            total_tickets_sold=3,
            total_revenue=300.5,
            average_attendance=1.5,
        )
        assert "FILTER (WHERE c.concert_date > :as_of)" in executed_sql(sql_connection)[0]
        assert sql_connection.execute.call_args.args[1] == {
            "organizer_id": "org-1",
            "as_of": date(2025, 1, 1),
        }

    @pytest.mark.asyncio
    async def test_organizer_without_concerts(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [{"total_concerts": 0, "upcoming_concerts": 0, "tickets_sold": 0, "revenue": 0}]
        )

        stats = await adapter.get_organizer_stats("nobody")

        assert stats.average_attendance == 0.0
        assert isinstance(sql_connection.execute.call_args.args[1]["as_of"], date)

    @pytest.mark.asyncio
    async def test_arena_analytics_groups_zones_per_arena(self, adapter, sql_connection):
        arena = {"arena_name": "Main", "arena_location": "Lisbon", "total_capacity": 300}
        sql_connection.execute.return_value = make_result(
            [
                {
                    "arena_id": "arena-1",
                    **arena,
                    "zone_name": "Balcony",
                    "capacity_per_zone": 200,
                    "tickets_sold": 0,
                    "revenue": Decimal("0"),
                },
                {
                    "arena_id": "arena-1",
                    **arena,
                    "zone_name": "Floor",
                    "capacity_per_zone": 100,
                    "tickets_sold": 2,
                    "revenue": Decimal("240.00"),
                },
                {
                    "arena_id": "arena-2",
                    **arena,
                    "zone_name": None,
                    "capacity_per_zone": None,
                    "tickets_sold": 0,
                    "revenue": Decimal("0"),
                },
            ]
        )

        rows = (await adapter.get_arena_analytics("org-1")).rows

        assert [row["arena_id"] for row in rows] == ["arena-1", "arena-2"]
        assert rows[0]["zones"] == [
            {"zone_name": "Balcony", "capacity_per_zone": 200, "tickets_sold": 0, "revenue": 0.0},
            {"zone_name": "Floor", "capacity_per_zone": 100, "tickets_sold": 2, "revenue": 240.0},
        ]
        assert rows[1]["zones"] == []
        statement = executed_sql(sql_connection)[0]
        assert "c.arena_id = a.arena_id AND c.organizer_id = :organizer_id" in statement

    @pytest.mark.asyncio
    async def test_upcoming_performance(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(
            [
                {
                    "concert_id": "c-1",
                    "concert_date": date(2025, 7, 14),
                    "description": "Summer night",
                    "arena_name": "Main",
                    "artist_names": None,
                    "tickets_sold": 4,
                    "total_revenue": Decimal("480.00"),
                }
            ]
        )

        row = (await adapter.get_upcoming_concerts_performance(as_of=date(2025, 7, 1))).first

        assert row["artist_names"] == []
        assert row["tickets_sold"] == 4
        assert row["total_revenue"] == 480.0
        statement = executed_sql(sql_connection)[0]
        assert "WHERE c.concert_date >= :as_of" in statement
        assert "ORDER BY tickets_sold DESC" in statement


class TestQueryAndHealth:
    def test_database_type(self, adapter):
        assert adapter.database_type == DatabaseType.RELATIONAL

    @pytest.mark.asyncio
    async def test_query_returns_rows(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result([{"total": Decimal("3")}])

        result = await adapter.query(
            "SELECT COUNT(*) AS total FROM fans WHERE referred_by = :id", {"id": "f"}
        )

        assert result.rows == [{"total": 3.0}]

    @pytest.mark.asyncio
    async def test_query_without_rows_is_empty(self, adapter, sql_connection):
        sql_connection.execute.return_value = make_result(returns_rows=False)

        result = await adapter.query("UPDATE fans SET referral_points = 0")

        assert result.is_empty

    @pytest.mark.asyncio
    async def test_health_check_delegates_to_connection(self):
        connection = MagicMock(spec=RelationalConnection)
        connection.health_check = AsyncMock(return_value=False)

        assert await RelationalAdapter(connection, enable_tracing=False).health_check() is False
