"""
MigrationProcedure - one-way copy from the relational store to the document store.

Reads every entity from PostgreSQL, reshapes relational joins into embedded
arrays and sub-documents, writes the result to MongoDB and finally switches
the migration status to the document backend.

Stages (in dependency order):
    1. users     - fan/organizer rows embedded as fan_details/organizer_details
    2. artists   - straight copy
    3. arenas    - zones embedded
    4. concerts  - artist snapshots and zone pricing embedded
    5. tickets   - fan username, concert date and zone price denormalized

Each stage skips (returns 0) when its source table is missing. Target
collections are cleared before anything is written, so a re-run always
starts from scratch. The first failing stage aborts the run and the status is
left untouched.

The procedure assumes exclusive access to both backends while it runs.

Usage:
    >>> procedure = MigrationProcedure.from_factory(factory, settings.migration)
    >>> result = await procedure.run()
    >>> result.counts
    {'users': 120, 'artists': 14, 'arenas': 3, 'concerts': 22, 'tickets': 940}
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from passlib.context import CryptContext
from sqlalchemy import text

from concertdb.adapters.document import UNKNOWN_FAN_USERNAME, to_document
from concertdb.config import DEFAULT_ADMIN_EMAIL, MigrationConfig
from concertdb.connections import DocumentConnection, RelationalConnection
from concertdb.observability import (
    ATTR_MIGRATION_SOURCE,
    ATTR_MIGRATION_STAGE,
    ATTR_MIGRATION_TARGET,
    ATTR_ROW_COUNT,
    Tracer,
    create_tracer,
)
from concertdb.schema import (
    ARENAS,
    ARTISTS,
    CONCERTS,
    DOCUMENT_COLLECTIONS,
    TICKETS,
    USERS,
    ensure_document_indexes,
)
from concertdb.status import MigrationStatusStore
from concertdb.types import Row, UserRole

if TYPE_CHECKING:
    from concertdb.factory import AdapterFactory

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class MigrationResult:
    """
    Outcome of a completed migration.

    Attributes:
        users: User documents written
        artists: Artist documents written
        arenas: Arena documents written
        concerts: Concert documents written
        tickets: Ticket documents written
        duration_seconds: Wall-clock time of the run
    """

    users: int
    artists: int
    arenas: int
    concerts: int
    tickets: int
    duration_seconds: float = 0.0

    @property
    def counts(self) -> dict[str, int]:
        return {
            "users": self.users,
            "artists": self.artists,
            "arenas": self.arenas,
            "concerts": self.concerts,
            "tickets": self.tickets,
        }

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class MigrationProcedure:
    """
    Copies the relational dataset into the document store.

    Args:
        relational: Source connection
        document: Target connection
        status: Migration status flipped after a successful run
        admin_email: Email of the built-in admin account
        admin_password: Password given to the admin account when the
            document store has none
        password_hasher: Hash function for the admin password (defaults to
            bcrypt through passlib)
        tracer: Optional custom Tracer
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    def __init__(
        self,
        relational: RelationalConnection,
        document: DocumentConnection,
        status: MigrationStatusStore,
        *,
        admin_email: str = DEFAULT_ADMIN_EMAIL,
        admin_password: str = "admin123",
        password_hasher: Callable[[str], str] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._relational = relational
        self._document = document
        self._status = status
        self._admin_email = admin_email
        self._admin_password = admin_password
        self._hash_password = password_hasher or pwd_context.hash
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @classmethod
    def from_factory(
        cls,
        factory: AdapterFactory,
        config: MigrationConfig,
        **kwargs: Any,
    ) -> MigrationProcedure:
        return cls(
            factory.relational_connection,
            factory.document_connection,
            factory.status,
            admin_email=config.admin_email,
            admin_password=config.admin_password,
            **kwargs,
        )

    async def run(self) -> MigrationResult:
        """
        Run every stage, recreate the admin account and flip the status.

        Returns:
            MigrationResult with per-entity document counts

        Raises:
            Exception: Whatever the failing stage raised; the migration
                status is not changed in that case
        """
        started = time.monotonic()
        logger.info("Starting migration from postgresql to mongodb")

        try:
            with self._tracer.span(
                "concertdb.migration.run",
                {ATTR_MIGRATION_SOURCE: "postgresql", ATTR_MIGRATION_TARGET: "mongodb"},
            ):
                await self.prepare_target()
                users = await self._run_stage(USERS, self.migrate_users)
                artists = await self._run_stage(ARTISTS, self.migrate_artists)
                arenas = await self._run_stage(ARENAS, self.migrate_arenas)
                concerts = await self._run_stage(CONCERTS, self.migrate_concerts)
                tickets = await self._run_stage(TICKETS, self.migrate_tickets)
                await self.ensure_admin()
        except Exception as e:
            logger.error(f"Migration aborted, status left unchanged: {e}", exc_info=True)
            raise

        self._status.mark_migrated()
        result = MigrationResult(
            users=users,
            artists=artists,
            arenas=arenas,
            concerts=concerts,
            tickets=tickets,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Migration completed in {result.duration_seconds:.2f}s: {result.counts}; "
            f"active database is now {self._status.get_database_type().value}"
        )
        return result

    async def _run_stage(self, stage: str, migrate: Callable[[], Awaitable[int]]) -> int:
        with self._tracer.span(f"concertdb.migration.{stage}", {ATTR_MIGRATION_STAGE: stage}):
            count = await migrate()
        logger.info(f"Migrated {count} {stage}")
        return count

    # ------------------------------------------------------------------
    # Source and target helpers
    # ------------------------------------------------------------------

    async def _fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[Row]:
        async with self._relational.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    async def existing_tables(self, names: Iterable[str]) -> set[str]:
        """Return which of the given tables exist in the source schema."""
        rows = await self._fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_name = ANY(:names)
            """,
            {"names": list(names)},
        )
        return {row["table_name"] for row in rows}

    async def prepare_target(self) -> None:
        """Empty every target collection and make sure indexes exist."""
        for name in DOCUMENT_COLLECTIONS:
            result = await self._document.collection(name).delete_many({})
            logger.debug(f"Cleared {result.deleted_count} documents from {name}")
        await ensure_document_indexes(self._document)

    async def _insert(self, collection: str, documents: list[dict[str, Any]]) -> int:
        if not documents:
            return 0
        with self._tracer.span(
            "concertdb.migration.insert_many",
            {ATTR_MIGRATION_STAGE: collection, ATTR_ROW_COUNT: len(documents)},
        ):
            await self._document.collection(collection).insert_many(documents)
        return len(documents)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def migrate_users(self) -> int:
        tables = await self.existing_tables((USERS, "fans", "organizers"))
        if USERS not in tables:
            logger.info("Users table does not exist, skipping user migration")
            return 0

        users = await self._fetch("SELECT * FROM users ORDER BY user_id")
        fans: dict[str, Row] = {}
        organizers: dict[str, Row] = {}
        if "fans" in tables:
            fans = {row["user_id"]: row for row in await self._fetch("SELECT * FROM fans")}
        if "organizers" in tables:
            organizers = {
                row["user_id"]: row for row in await self._fetch("SELECT * FROM organizers")
            }

        documents = []
        for user in users:
            data: dict[str, Any] = {
                "user_id": user["user_id"],
                "email": user["email"],
                "user_password": user["user_password"],
                "first_name": user["first_name"],
                "last_name": user["last_name"],
                "registration_date": user["registration_date"],
                "last_login": user.get("last_login"),
            }
            if user["email"] == self._admin_email:
                data["user_type"] = UserRole.ADMIN.value
                documents.append(to_document(USERS, data))
                continue

            data["user_type"] = UserRole.FAN.value
            fan = fans.get(user["user_id"])
            if fan is not None:
                data["fan_details"] = {
                    "username": fan["username"],
                    "preferred_genre": fan.get("preferred_genre"),
                    "phone_number": fan.get("phone_number"),
                    "referral_code": fan.get("referral_code"),
                    "referred_by": fan.get("referred_by"),
                    "referral_points": fan.get("referral_points") or 0,
                    "referral_code_used": bool(fan.get("referral_code_used")),
                }
            organizer = organizers.get(user["user_id"])
            if organizer is not None:
                data["user_type"] = UserRole.ORGANIZER.value
                data["organizer_details"] = {
                    "organization_name": organizer["organization_name"],
                    "contact_info": organizer.get("contact_info"),
                }
                data.pop("fan_details", None)
            documents.append(to_document(USERS, data))

        return await self._insert(USERS, documents)

    async def migrate_artists(self) -> int:
        if ARTISTS not in await self.existing_tables((ARTISTS,)):
            logger.info("Artists table does not exist, skipping artist migration")
            return 0

        rows = await self._fetch(
            "SELECT artist_id, artist_name, genre FROM artists ORDER BY artist_id"
        )
        return await self._insert(ARTISTS, [to_document(ARTISTS, row) for row in rows])

    async def migrate_arenas(self) -> int:
        tables = await self.existing_tables((ARENAS, "zones"))
        if ARENAS not in tables:
            logger.info("Arenas table does not exist, skipping arena migration")
            return 0

        arenas = await self._fetch(
            "SELECT arena_id, arena_name, arena_location, total_capacity "
            "FROM arenas ORDER BY arena_id"
        )
        zones: dict[str, list[dict[str, Any]]] = defaultdict(list)
        if "zones" in tables:
            for zone in await self._fetch(
                "SELECT arena_id, zone_name, capacity_per_zone FROM zones ORDER BY zone_name"
            ):
                zones[zone["arena_id"]].append(
                    {"zone_name": zone["zone_name"], "capacity_per_zone": zone["capacity_per_zone"]}
                )

        documents = [
            to_document(ARENAS, {**arena, "zones": zones.get(arena["arena_id"], [])})
            for arena in arenas
        ]
        return await self._insert(ARENAS, documents)

    async def migrate_concerts(self) -> int:
        tables = await self.existing_tables(
            (CONCERTS, ARTISTS, "concert_features_artists", "concert_zone_pricing")
        )
        if CONCERTS not in tables:
            logger.info("Concerts table does not exist, skipping concert migration")
            return 0

        concerts = await self._fetch(
            "SELECT concert_id, concert_date, time, description, organizer_id, arena_id "
            "FROM concerts ORDER BY concert_id"
        )

        artists: dict[str, list[dict[str, Any]]] = defaultdict(list)
        if {ARTISTS, "concert_features_artists"} <= tables:
            for row in await self._fetch(
                """
                SELECT cfa.concert_id, a.artist_id, a.artist_name, a.genre
                FROM concert_features_artists cfa
                JOIN artists a ON cfa.artist_id = a.artist_id
                ORDER BY a.artist_name
                """
            ):
                artists[row["concert_id"]].append(
                    {
                        "artist_id": row["artist_id"],
                        "artist_name": row["artist_name"],
                        "genre": row["genre"],
                    }
                )

        pricing: dict[str, list[dict[str, Any]]] = defaultdict(list)
        if "concert_zone_pricing" in tables:
            for row in await self._fetch(
                "SELECT concert_id, zone_name, price FROM concert_zone_pricing ORDER BY zone_name"
            ):
                pricing[row["concert_id"]].append(
                    {"zone_name": row["zone_name"], "price": float(row["price"])}
                )

        documents = [
            to_document(
                CONCERTS,
                {
                    **concert,
                    "artists": artists.get(concert["concert_id"], []),
                    "zone_pricing": pricing.get(concert["concert_id"], []),
                },
            )
            for concert in concerts
        ]
        return await self._insert(CONCERTS, documents)

    async def migrate_tickets(self) -> int:
        tables = await self.existing_tables((TICKETS, "fans", CONCERTS, "concert_zone_pricing"))
        if TICKETS not in tables:
            logger.info("Tickets table does not exist, skipping ticket migration")
            return 0

        columns = ["t.*"]
        joins = []
        if "fans" in tables:
            columns.append("f.username AS fan_username")
            joins.append("LEFT JOIN fans f ON t.fan_id = f.user_id")
        if CONCERTS in tables:
            columns.append("c.concert_date")
            joins.append("LEFT JOIN concerts c ON t.concert_id = c.concert_id")
        if "concert_zone_pricing" in tables:
            columns.append("czp.price")
            joins.append(
                "LEFT JOIN concert_zone_pricing czp "
                "ON t.concert_id = czp.concert_id AND t.zone_name = czp.zone_name"
            )
        rows = await self._fetch(
            f"SELECT {', '.join(columns)} FROM tickets t {' '.join(joins)} ORDER BY t.ticket_id"
        )

        migrated_at = datetime.now(UTC)
        documents = []
        for row in rows:
            price = float(row["price"]) if row.get("price") is not None else 0.0
            purchase_price = row.get("purchase_price")
            documents.append(
                to_document(
                    TICKETS,
                    {
                        "ticket_id": row["ticket_id"],
                        "fan_id": row["fan_id"],
                        "concert_id": row["concert_id"],
                        "arena_id": row["arena_id"],
                        "zone_name": row["zone_name"],
                        "purchase_date": row["purchase_date"],
                        "purchase_price": (
                            float(purchase_price) if purchase_price is not None else price
                        ),
                        "referral_code_used": bool(row.get("referral_code_used")),
                        "concert_date": row.get("concert_date") or migrated_at,
                        "fan_username": row.get("fan_username") or UNKNOWN_FAN_USERNAME,
                        "price": price,
                    },
                )
            )
        return await self._insert(TICKETS, documents)

    async def ensure_admin(self) -> None:
        """Create the admin account in the document store, or force its role."""
        users = self._document.collection(USERS)
        existing = await users.find_one({"email": self._admin_email})
        if existing is None:
            await users.insert_one(
                {
                    "_id": f"admin-{int(time.time() * 1000)}",
                    "email": self._admin_email,
                    "user_password": self._hash_password(self._admin_password),
                    "first_name": "Admin",
                    "last_name": "User",
                    "registration_date": datetime.now(UTC),
                    "last_login": None,
                    "user_type": UserRole.ADMIN.value,
                    "fan_details": None,
                    "organizer_details": None,
                }
            )
            logger.info(f"Created admin account {self._admin_email} in the document store")
        else:
            await users.update_one(
                {"email": self._admin_email}, {"$set": {"user_type": UserRole.ADMIN.value}}
            )
            logger.info(f"Admin account {self._admin_email} already present, role ensured")


__all__ = ["MigrationProcedure", "MigrationResult", "pwd_context"]
