"""
Relational (PostgreSQL) implementation of the database adapter.

Queries are plain parameterized SQL executed through SQLAlchemy's async
engine. Nested data (concert artists and zone pricing, arena zones) is built
server-side with ``json_agg`` so each entity comes back as one shaped row.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from concertdb.adapters.interface import (
    UPDATABLE_USER_FIELDS,
    DatabaseAdapter,
    QueryResult,
    today,
)
from concertdb.config import DEFAULT_ADMIN_EMAIL
from concertdb.connections import RelationalConnection
from concertdb.exceptions import TransactionFailureError
from concertdb.models import (
    Arena,
    Artist,
    Concert,
    DatabaseStats,
    OrganizerStats,
    Ticket,
    User,
)
from concertdb.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_ID,
    ATTR_POINTS_DELTA,
    ATTR_ROW_COUNT,
    Tracer,
    create_tracer,
)
from concertdb.types import DatabaseType, Row, UserRole

logger = logging.getLogger(__name__)

_USER_SELECT = """
    SELECT u.user_id, u.email, u.user_password, u.first_name, u.last_name,
           u.registration_date, u.last_login,
           f.user_id AS fan_user_id, f.username, f.preferred_genre, f.phone_number,
           f.referral_code, f.referral_points, f.referral_code_used, f.referred_by,
           o.user_id AS organizer_user_id, o.organization_name, o.contact_info
    FROM users u
    LEFT JOIN fans f ON u.user_id = f.user_id
    LEFT JOIN organizers o ON u.user_id = o.user_id
"""

_ARENA_SELECT = """
    SELECT a.*,
           COALESCE(
             (SELECT json_agg(json_build_object(
                        'zone_name', z.zone_name,
                        'capacity_per_zone', z.capacity_per_zone)
                      ORDER BY z.zone_name)
              FROM zones z
              WHERE z.arena_id = a.arena_id),
             '[]'::json
           ) AS zones
    FROM arenas a
"""

_CONCERT_SELECT = """
    SELECT c.*,
           CASE WHEN a.arena_id IS NULL THEN NULL ELSE json_build_object(
             'arena_id', a.arena_id,
             'arena_name', a.arena_name,
             'arena_location', a.arena_location,
             'capacity', a.total_capacity
           ) END AS arena,
           COALESCE(
             (SELECT json_agg(json_build_object(
                        'artist_id', ar.artist_id,
                        'artist_name', ar.artist_name,
                        'genre', ar.genre)
                      ORDER BY ar.artist_name)
              FROM concert_features_artists cfa
              JOIN artists ar ON cfa.artist_id = ar.artist_id
              WHERE cfa.concert_id = c.concert_id),
             '[]'::json
           ) AS artists,
           COALESCE(
             (SELECT json_agg(json_build_object(
                        'zone_name', czp.zone_name,
                        'price', czp.price)
                      ORDER BY czp.zone_name)
              FROM concert_zone_pricing czp
              WHERE czp.concert_id = c.concert_id),
             '[]'::json
           ) AS zone_pricing
    FROM concerts c
    LEFT JOIN arenas a ON c.arena_id = a.arena_id
"""

_TICKET_SELECT = """
    SELECT t.*, f.username AS fan_username, c.concert_date, czp.price
    FROM tickets t
    LEFT JOIN fans f ON t.fan_id = f.user_id
    LEFT JOIN concerts c ON t.concert_id = c.concert_id
    LEFT JOIN concert_zone_pricing czp
      ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name
"""

_JSON_COLUMNS = ("arena", "artists", "zone_pricing", "zones")


def _to_money(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _shape_row(row: Row) -> Row:
    """Convert driver types to plain Python and decode aggregated JSON."""
    shaped = {key: _plain(value) for key, value in row.items()}
    for column in _JSON_COLUMNS:
        value = shaped.get(column)
        if isinstance(value, str | bytes):
            shaped[column] = json.loads(value)
    return shaped


class RelationalAdapter(DatabaseAdapter):
    """
    PostgreSQL implementation of DatabaseAdapter.

    Users are read with their fan and organizer rows joined and reshaped into
    ``fan_details`` / ``organizer_details``. The role is derived from which
    detail row exists; the admin email always reads as an admin.

    Args:
        connection: Relational connection holder
        admin_email: Email of the built-in admin account
        tracer: Optional custom Tracer
        enable_tracing: If True and OpenTelemetry is available, emit traces

    Example:
        >>> adapter = RelationalAdapter(RelationalConnection(settings.postgres))
        >>> result = await adapter.get_concert_by_id("c-1")
        >>> result.first["zone_pricing"]
        [{'zone_name': 'Floor', 'price': 120.0}]
    """

    def __init__(
        self,
        connection: RelationalConnection,
        *,
        admin_email: str = DEFAULT_ADMIN_EMAIL,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._connection = connection
        self._admin_email = admin_email
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.RELATIONAL

    @property
    def connection(self) -> RelationalConnection:
        return self._connection

    def _span(self, operation: str, attributes: dict[str, Any] | None = None) -> Any:
        return self._tracer.span(
            f"concertdb.relational.{operation}",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: operation, **(attributes or {})},
        )

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    async def _fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[Row]:
        async with self._connection.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [_shape_row(dict(row)) for row in result.mappings().all()]

    async def _write(self, sql: str, params: dict[str, Any]) -> list[Row]:
        """Run a single write statement that uses RETURNING."""
        async with self._connection.connect(transactional=True) as conn:
            result = await conn.execute(text(sql), params)
            return [_shape_row(dict(row)) for row in result.mappings().all()]

    async def _run_transaction(
        self,
        operation: str,
        statements: Sequence[tuple[str, dict[str, Any] | list[dict[str, Any]]]],
    ) -> None:
        """
        Execute statements in one transaction.

        A list of parameter dicts runs the statement once per dict. Empty
        lists are skipped.

        Raises:
            TransactionFailureError: After rollback, if any statement fails
        """
        try:
            async with self._connection.connect(transactional=True) as conn:
                for sql, params in statements:
                    if isinstance(params, list) and not params:
                        continue
                    await conn.execute(text(sql), params)
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed, transaction rolled back: {e}", exc_info=True)
            raise TransactionFailureError(operation, e) from e

    async def table_exists(self, table_name: str) -> bool:
        rows = await self._fetch(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_name = :table_name
            ) AS present
            """,
            {"table_name": table_name},
        )
        return bool(rows and rows[0]["present"])

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _shape_user(self, row: Row) -> Row:
        user: Row = {
            "user_id": row["user_id"],
            "email": row["email"],
            "user_password": row["user_password"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
            "registration_date": row["registration_date"],
            "last_login": row["last_login"],
            "user_type": UserRole.FAN.value,
            "fan_details": None,
            "organizer_details": None,
        }
        if row["email"] == self._admin_email:
            user["user_type"] = UserRole.ADMIN.value
            return user
        if row.get("fan_user_id") is not None:
            user["fan_details"] = {
                "username": row["username"],
                "preferred_genre": row["preferred_genre"],
                "phone_number": row["phone_number"],
                "referral_code": row["referral_code"],
                "referral_points": row["referral_points"],
                "referral_code_used": row["referral_code_used"],
                "referred_by": row["referred_by"],
            }
        if row.get("organizer_user_id") is not None:
            user["user_type"] = UserRole.ORGANIZER.value
            user["fan_details"] = None
            user["organizer_details"] = {
                "organization_name": row["organization_name"],
                "contact_info": row["contact_info"],
            }
        return user

    async def _fetch_users(self, where: str, params: dict[str, Any] | None = None) -> QueryResult:
        rows = await self._fetch(f"{_USER_SELECT} {where}", params)
        return QueryResult.of([self._shape_user(row) for row in rows])

    async def get_users(self) -> QueryResult:
        return await self._fetch_users("ORDER BY u.registration_date DESC")

    async def get_user_by_id(self, user_id: str) -> QueryResult:
        return await self._fetch_users("WHERE u.user_id = :user_id", {"user_id": user_id})

    async def get_user_by_email(self, email: str) -> QueryResult:
        return await self._fetch_users("WHERE u.email = :email", {"email": email})

    async def create_user(self, user: User) -> QueryResult:
        statements: list[tuple[str, dict[str, Any] | list[dict[str, Any]]]] = [
            (
                """
                INSERT INTO users (user_id, email, user_password, first_name, last_name,
                                   registration_date, last_login)
                VALUES (:user_id, :email, :user_password, :first_name, :last_name,
                        :registration_date, :last_login)
                """,
                user.model_dump(exclude={"user_type", "fan_details", "organizer_details"}),
            )
        ]
        if user.fan_details is not None:
            statements.append(
                (
                    """
                    INSERT INTO fans (user_id, username, preferred_genre, phone_number,
                                      referral_code, referral_points, referral_code_used,
                                      referred_by)
                    VALUES (:user_id, :username, :preferred_genre, :phone_number,
                            :referral_code, :referral_points, :referral_code_used,
                            :referred_by)
                    """,
                    {"user_id": user.user_id, **user.fan_details.model_dump()},
                )
            )
        if user.organizer_details is not None:
            statements.append(
                (
                    """
                    INSERT INTO organizers (user_id, organization_name, contact_info)
                    VALUES (:user_id, :organization_name, :contact_info)
                    """,
                    {"user_id": user.user_id, **user.organizer_details.model_dump()},
                )
            )

        with self._span("create_user", {ATTR_ENTITY_ID: user.user_id}):
            await self._run_transaction("create_user", statements)
        logger.debug(f"Created user {user.user_id} ({user.user_type.value})")
        return await self.get_user_by_id(user.user_id)

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> QueryResult:
        unknown = set(updates) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
        if not updates:
            return await self.get_user_by_id(user_id)

        set_clause = ", ".join(f"{name} = :{name}" for name in updates)
        with self._span("update_user", {ATTR_ENTITY_ID: user_id}):
            rows = await self._write(
                f"UPDATE users SET {set_clause} WHERE user_id = :user_id RETURNING user_id",
                {**updates, "user_id": user_id},
            )
        if not rows:
            return QueryResult.empty()
        return await self.get_user_by_id(user_id)

    async def delete_user(self, user_id: str) -> QueryResult:
        existing = await self.get_user_by_id(user_id)
        if existing.is_empty:
            return existing
        with self._span("delete_user", {ATTR_ENTITY_ID: user_id}):
            await self._write(
                "DELETE FROM users WHERE user_id = :user_id RETURNING user_id",
                {"user_id": user_id},
            )
        return existing

    # ------------------------------------------------------------------
    # Artists and arenas
    # ------------------------------------------------------------------

    async def get_artists(self) -> QueryResult:
        return QueryResult.of(await self._fetch("SELECT * FROM artists ORDER BY artist_name"))

    async def get_artist_by_id(self, artist_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                "SELECT * FROM artists WHERE artist_id = :artist_id", {"artist_id": artist_id}
            )
        )

    async def create_artist(self, artist: Artist) -> QueryResult:
        with self._span("create_artist", {ATTR_ENTITY_ID: artist.artist_id}):
            rows = await self._write(
                """
                INSERT INTO artists (artist_id, artist_name, genre)
                VALUES (:artist_id, :artist_name, :genre)
                RETURNING *
                """,
                artist.model_dump(),
            )
        return QueryResult.of(rows)

    async def get_arenas(self) -> QueryResult:
        return QueryResult.of(await self._fetch(f"{_ARENA_SELECT} ORDER BY a.arena_name"))

    async def get_arena_by_id(self, arena_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_ARENA_SELECT} WHERE a.arena_id = :arena_id", {"arena_id": arena_id}
            )
        )

    async def create_arena(self, arena: Arena) -> QueryResult:
        with self._span("create_arena", {ATTR_ENTITY_ID: arena.arena_id}):
            await self._run_transaction(
                "create_arena",
                [
                    (
                        """
                        INSERT INTO arenas (arena_id, arena_name, arena_location, total_capacity)
                        VALUES (:arena_id, :arena_name, :arena_location, :total_capacity)
                        """,
                        arena.model_dump(exclude={"zones"}),
                    ),
                    (
                        """
                        INSERT INTO zones (arena_id, zone_name, capacity_per_zone)
                        VALUES (:arena_id, :zone_name, :capacity_per_zone)
                        """,
                        [{"arena_id": arena.arena_id, **zone.model_dump()} for zone in arena.zones],
                    ),
                ],
            )
        return await self.get_arena_by_id(arena.arena_id)

    # ------------------------------------------------------------------
    # Concerts
    # ------------------------------------------------------------------

    async def get_concerts(self) -> QueryResult:
        return QueryResult.of(await self._fetch(f"{_CONCERT_SELECT} ORDER BY c.concert_date DESC"))

    async def get_concert_by_id(self, concert_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_CONCERT_SELECT} WHERE c.concert_id = :concert_id", {"concert_id": concert_id}
            )
        )

    async def get_concerts_by_organizer(self, organizer_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_CONCERT_SELECT} WHERE c.organizer_id = :organizer_id "
                "ORDER BY c.concert_date DESC",
                {"organizer_id": organizer_id},
            )
        )

    async def create_concert(self, concert: Concert) -> QueryResult:
        statements: list[tuple[str, dict[str, Any] | list[dict[str, Any]]]] = [
            (
                """
                INSERT INTO concerts (concert_id, concert_date, time, description,
                                      organizer_id, arena_id)
                VALUES (:concert_id, :concert_date, :time, :description,
                        :organizer_id, :arena_id)
                """,
                concert.model_dump(exclude={"artists", "zone_pricing"}),
            ),
            (
                """
                INSERT INTO concert_zone_pricing (concert_id, arena_id, zone_name, price)
                VALUES (:concert_id, :arena_id, :zone_name, :price)
                """,
                [
                    {
                        "concert_id": concert.concert_id,
                        "arena_id": concert.arena_id,
                        "zone_name": zone.zone_name,
                        "price": _to_money(zone.price),
                    }
                    for zone in concert.zone_pricing
                ],
            ),
            (
                """
                INSERT INTO concert_features_artists (concert_id, artist_id)
                VALUES (:concert_id, :artist_id)
                """,
                [
                    {"concert_id": concert.concert_id, "artist_id": artist_id}
                    for artist_id in concert.artist_ids
                ],
            ),
        ]
        with self._span(
            "create_concert",
            {ATTR_ENTITY_ID: concert.concert_id, ATTR_ROW_COUNT: len(concert.zone_pricing)},
        ):
            await self._run_transaction("create_concert", statements)
        logger.info(
            f"Created concert {concert.concert_id} with {len(concert.zone_pricing)} zone prices "
            f"and {len(concert.artists)} artists"
        )
        return await self.get_concert_by_id(concert.concert_id)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_tickets(self) -> QueryResult:
        return QueryResult.of(await self._fetch(f"{_TICKET_SELECT} ORDER BY t.purchase_date DESC"))

    async def get_ticket_by_id(self, ticket_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_TICKET_SELECT} WHERE t.ticket_id = :ticket_id", {"ticket_id": ticket_id}
            )
        )

    async def create_ticket(self, ticket: Ticket) -> QueryResult:
        params = ticket.model_dump()
        params["purchase_price"] = _to_money(ticket.purchase_price)
        with self._span("create_ticket", {ATTR_ENTITY_ID: ticket.ticket_id}):
            await self._write(
                """
                INSERT INTO tickets (ticket_id, fan_id, concert_id, arena_id, zone_name,
                                     purchase_date, purchase_price, referral_code_used)
                VALUES (:ticket_id, :fan_id, :concert_id, :arena_id, :zone_name,
                        :purchase_date, :purchase_price, :referral_code_used)
                RETURNING ticket_id
                """,
                params,
            )
        return await self.get_ticket_by_id(ticket.ticket_id)

    async def get_tickets_by_user_id(self, user_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_TICKET_SELECT} WHERE t.fan_id = :fan_id ORDER BY t.purchase_date DESC",
                {"fan_id": user_id},
            )
        )

    async def get_tickets_by_concert_and_zone(self, concert_id: str, zone_name: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"{_TICKET_SELECT} WHERE t.concert_id = :concert_id AND t.zone_name = :zone_name",
                {"concert_id": concert_id, "zone_name": zone_name},
            )
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def get_stats(self) -> DatabaseStats:
        rows = await self._fetch(
            """
            SELECT (SELECT COUNT(*) FROM users) AS users,
                   (SELECT COUNT(*) FROM artists) AS artists,
                   (SELECT COUNT(*) FROM arenas) AS arenas,
                   (SELECT COUNT(*) FROM concerts) AS concerts,
                   (SELECT COUNT(*) FROM tickets) AS tickets
            """
        )
        return DatabaseStats(**{key: int(value) for key, value in rows[0].items()})

    async def get_concert_ticket_summary(self, concert_id: str) -> QueryResult:
        rows = await self._fetch(
            """
            SELECT t.zone_name,
                   COUNT(*) AS tickets_sold,
                   COALESCE(SUM(czp.price), 0) AS revenue,
                   SUM(CASE WHEN t.referral_code_used THEN 1 ELSE 0 END) AS referral_tickets
            FROM tickets t
            LEFT JOIN concert_zone_pricing czp
              ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name
            WHERE t.concert_id = :concert_id
            GROUP BY t.zone_name
            ORDER BY t.zone_name
            """,
            {"concert_id": concert_id},
        )
        for row in rows:
            row["tickets_sold"] = int(row["tickets_sold"])
            row["referral_tickets"] = int(row["referral_tickets"])
        return QueryResult.of(rows)

    async def get_organizer_stats(
        self, organizer_id: str, *, as_of: date | None = None
    ) -> OrganizerStats:
        rows = await self._fetch(
            """
            SELECT COUNT(DISTINCT c.concert_id) AS total_concerts,
                   COUNT(DISTINCT c.concert_id)
                     FILTER (WHERE c.concert_date > :as_of) AS upcoming_concerts,
                   COUNT(t.ticket_id) AS tickets_sold,
                   COALESCE(SUM(czp.price), 0) AS revenue
            FROM concerts c
            LEFT JOIN tickets t ON c.concert_id = t.concert_id
            LEFT JOIN concert_zone_pricing czp
              ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name
            WHERE c.organizer_id = :organizer_id
            """,
            {"organizer_id": organizer_id, "as_of": as_of or today()},
        )
        totals = rows[0]
        return OrganizerStats.from_totals(
            int(totals["total_concerts"]),
            int(totals["upcoming_concerts"]),
            int(totals["tickets_sold"]),
            totals["revenue"],
        )

    async def get_arena_analytics(self, organizer_id: str) -> QueryResult:
        rows = await self._fetch(
            """
            SELECT a.arena_id, a.arena_name, a.arena_location, a.total_capacity,
                   z.zone_name, z.capacity_per_zone,
                   COUNT(t.ticket_id) AS tickets_sold,
                   COALESCE(SUM(czp.price), 0) AS revenue
            FROM arenas a
            LEFT JOIN zones z ON z.arena_id = a.arena_id
            LEFT JOIN concerts c
              ON c.arena_id = a.arena_id AND c.organizer_id = :organizer_id
            LEFT JOIN tickets t
              ON t.concert_id = c.concert_id AND t.zone_name = z.zone_name
            LEFT JOIN concert_zone_pricing czp
              ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name
            WHERE a.arena_id IN (
                SELECT arena_id FROM concerts WHERE organizer_id = :organizer_id
            )
            GROUP BY a.arena_id, z.zone_name, z.capacity_per_zone
            ORDER BY a.arena_name, a.arena_id, z.zone_name
            """,
            {"organizer_id": organizer_id},
        )
        arenas: dict[str, Row] = {}
        for row in rows:
            arena = arenas.setdefault(
                row["arena_id"],
                {
                    "arena_id": row["arena_id"],
                    "arena_name": row["arena_name"],
                    "arena_location": row["arena_location"],
                    "total_capacity": row["total_capacity"],
                    "zones": [],
                },
            )
            if row["zone_name"] is None:
                continue
            arena["zones"].append(
                {
                    "zone_name": row["zone_name"],
                    "capacity_per_zone": row["capacity_per_zone"],
                    "tickets_sold": int(row["tickets_sold"]),
                    "revenue": float(row["revenue"]),
                }
            )
        return QueryResult.of(list(arenas.values()))

    async def get_upcoming_concerts_performance(
        self, *, as_of: date | None = None
    ) -> QueryResult:
        rows = await self._fetch(
            """
            SELECT c.concert_id, c.concert_date, c.description, a.arena_name,
                   COALESCE(
                     (SELECT array_agg(ar.artist_name ORDER BY ar.artist_name)
                      FROM concert_features_artists cfa
                      JOIN artists ar ON cfa.artist_id = ar.artist_id
                      WHERE cfa.concert_id = c.concert_id),
                     ARRAY[]::varchar[]
                   ) AS artist_names,
                   COUNT(t.ticket_id) AS tickets_sold,
                   COALESCE(SUM(czp.price), 0) AS total_revenue
            FROM concerts c
            LEFT JOIN arenas a ON c.arena_id = a.arena_id
            LEFT JOIN tickets t ON c.concert_id = t.concert_id
            LEFT JOIN concert_zone_pricing czp
              ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name
            WHERE c.concert_date >= :as_of
            GROUP BY c.concert_id, a.arena_name
            ORDER BY tickets_sold DESC, c.concert_date, c.concert_id
            """,
            {"as_of": as_of or today()},
        )
        for row in rows:
            row["artist_names"] = list(row["artist_names"] or [])
            row["tickets_sold"] = int(row["tickets_sold"])
            row["total_revenue"] = float(row["total_revenue"])
        return QueryResult.of(rows)

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    async def get_user_by_referral_code(self, referral_code: str) -> QueryResult:
        return await self._fetch_users(
            "WHERE f.referral_code = :referral_code", {"referral_code": referral_code}
        )

    async def update_user_referral_points(self, user_id: str, delta: int) -> QueryResult:
        with self._span(
            "update_user_referral_points", {ATTR_ENTITY_ID: user_id, ATTR_POINTS_DELTA: delta}
        ):
            rows = await self._write(
                """
                UPDATE fans
                SET referral_points = referral_points + :delta
                WHERE user_id = :user_id AND referral_points + :delta >= 0
                RETURNING user_id
                """,
                {"user_id": user_id, "delta": delta},
            )
        if not rows:
            return QueryResult.empty()
        return await self.get_user_by_id(user_id)

    async def mark_referral_code_used(self, fan_id: str) -> QueryResult:
        rows = await self._write(
            "UPDATE fans SET referral_code_used = TRUE WHERE user_id = :fan_id RETURNING user_id",
            {"fan_id": fan_id},
        )
        if not rows:
            return QueryResult.empty()
        return await self.get_user_by_id(fan_id)

    async def claim_referral_code(self, fan_id: str) -> bool:
        rows = await self._write(
            """
            UPDATE fans
            SET referral_code_used = TRUE
            WHERE user_id = :fan_id AND referral_code_used = FALSE
            RETURNING user_id
            """,
            {"fan_id": fan_id},
        )
        return bool(rows)

    async def update_fan_referrer(self, fan_id: str, referrer_id: str) -> QueryResult:
        if fan_id == referrer_id:
            raise ValueError("A fan cannot refer themselves")
        rows = await self._write(
            "UPDATE fans SET referred_by = :referrer_id WHERE user_id = :fan_id RETURNING user_id",
            {"fan_id": fan_id, "referrer_id": referrer_id},
        )
        if not rows:
            return QueryResult.empty()
        return await self.get_user_by_id(fan_id)

    async def get_users_referred_by(self, fan_id: str) -> QueryResult:
        return await self._fetch_users(
            "WHERE f.referred_by = :fan_id ORDER BY u.registration_date DESC", {"fan_id": fan_id}
        )

    async def get_tickets_from_referrals(self, fan_id: str) -> QueryResult:
        return QueryResult.of(
            await self._fetch(
                f"""
                {_TICKET_SELECT}
                JOIN fans referred ON t.fan_id = referred.user_id
                WHERE referred.referred_by = :fan_id AND t.referral_code_used = TRUE
                ORDER BY t.purchase_date DESC
                """,
                {"fan_id": fan_id},
            )
        )

    # ------------------------------------------------------------------
    # Escape hatch and health
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        with self._span("query"):
            async with self._connection.connect(transactional=True) as conn:
                result = await conn.execute(text(sql), params or {})
                if not result.returns_rows:
                    return QueryResult.empty()
                return QueryResult.of([_shape_row(dict(row)) for row in result.mappings().all()])

    async def health_check(self) -> bool:
        return await self._connection.health_check()


__all__ = ["RelationalAdapter"]
