"""
Document (MongoDB) implementation of the database adapter.

Documents are denormalized: users embed their role details, arenas embed
their zones, concerts embed artist snapshots and zone pricing, and tickets
carry the fan username, concert date and zone price captured at write time.
Only the concert-to-arena relation is resolved at read time, with a
``$lookup`` stage.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pymongo import ASCENDING, DESCENDING

from concertdb.adapters.interface import (
    UPDATABLE_USER_FIELDS,
    DatabaseAdapter,
    QueryResult,
    today,
)
from concertdb.connections import DocumentConnection
from concertdb.exceptions import UnsupportedOperationError
from concertdb.models import (
    Arena,
    Artist,
    ArtistSnapshot,
    Concert,
    DatabaseStats,
    OrganizerStats,
    Ticket,
    User,
)
from concertdb.observability import (
    ATTR_DB_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_ID,
    ATTR_POINTS_DELTA,
    Tracer,
    create_tracer,
)
from concertdb.schema import ARENAS, ARTISTS, CONCERTS, TICKETS, USERS
from concertdb.types import DatabaseType, Row

logger = logging.getLogger(__name__)

ID_FIELDS: dict[str, str] = {
    USERS: "user_id",
    ARTISTS: "artist_id",
    ARENAS: "arena_id",
    CONCERTS: "concert_id",
    TICKETS: "ticket_id",
}

_ROW_DEFAULTS: dict[str, dict[str, Any]] = {
    USERS: {"last_login": None, "fan_details": None, "organizer_details": None},
    ARENAS: {"zones": []},
    CONCERTS: {"artists": [], "zone_pricing": []},
    TICKETS: {"fan_username": None, "concert_date": None, "price": None},
}

UNKNOWN_FAN_USERNAME = "Unknown"


def encode_value(value: Any) -> Any:
    """
    Convert a Python value into something BSON can store.

    BSON has no date-only or time-only type: dates become UTC midnight
    datetimes and times become ``HH:MM:SS`` strings.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=UTC)
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: encode_value(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [encode_value(item) for item in value]
    return value


def to_document(collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Encode a row for storage, moving its entity id into ``_id``."""
    document = {key: encode_value(value) for key, value in data.items()}
    entity_id = document.pop(ID_FIELDS[collection])
    return {"_id": entity_id, **document}


def from_document(collection: str, document: dict[str, Any]) -> Row:
    """Shape a stored document into the backend-independent row form."""
    fields = dict(document)
    entity_id = fields.pop("_id")
    row: Row = {ID_FIELDS[collection]: entity_id, **fields}
    for key, default in _ROW_DEFAULTS.get(collection, {}).items():
        row.setdefault(key, list(default) if isinstance(default, list) else default)
    if isinstance(row.get("concert_date"), datetime):
        row["concert_date"] = row["concert_date"].date()
    if isinstance(row.get("time"), str):
        row["time"] = time.fromisoformat(row["time"])
    return row


def _arena_lookup_pipeline(match: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    pipeline: list[dict[str, Any]] = []
    if match:
        pipeline.append({"$match": match})
    pipeline.extend(
        [
            {
                "$lookup": {
                    "from": ARENAS,
                    "localField": "arena_id",
                    "foreignField": "_id",
                    "as": "arena_info",
                }
            },
            {
                "$addFields": {
                    "arena": {
                        "$cond": {
                            "if": {"$eq": [{"$size": "$arena_info"}, 0]},
                            "then": None,
                            "else": {
                                "arena_id": {"$arrayElemAt": ["$arena_info._id", 0]},
                                "arena_name": {"$arrayElemAt": ["$arena_info.arena_name", 0]},
                                "arena_location": {
                                    "$arrayElemAt": ["$arena_info.arena_location", 0]
                                },
                                "capacity": {"$arrayElemAt": ["$arena_info.total_capacity", 0]},
                            },
                        }
                    }
                }
            },
            {"$project": {"arena_info": 0}},
            {"$sort": {"concert_date": -1}},
        ]
    )
    return pipeline


class DocumentAdapter(DatabaseAdapter):
    """
    MongoDB implementation of DatabaseAdapter.

    Args:
        connection: Document connection holder
        tracer: Optional custom Tracer
        enable_tracing: If True and OpenTelemetry is available, emit traces

    Example:
        >>> adapter = DocumentAdapter(DocumentConnection(settings.mongodb))
        >>> await adapter.update_user_referral_points("fan-1", 5)
        >>> await adapter.query("SELECT 1")
        Traceback (most recent call last):
        ...
        concertdb.exceptions.UnsupportedOperationError: ...
    """

    def __init__(
        self,
        connection: DocumentConnection,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._connection = connection
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.DOCUMENT

    @property
    def connection(self) -> DocumentConnection:
        return self._connection

    def _span(
        self, operation: str, collection: str, attributes: dict[str, Any] | None = None
    ) -> Any:
        return self._tracer.span(
            f"concertdb.document.{operation}",
            {
                ATTR_DB_SYSTEM: "mongodb",
                ATTR_DB_OPERATION: operation,
                ATTR_DB_COLLECTION: collection,
                **(attributes or {}),
            },
        )

    def _collection(self, name: str) -> Any:
        return self._connection.collection(name)

    async def _find(
        self,
        collection: str,
        query: dict[str, Any],
        sort: list[tuple[str, int]] | None = None,
    ) -> QueryResult:
        cursor = self._collection(collection).find(query)
        if sort:
            cursor = cursor.sort(sort)
        documents = await cursor.to_list(length=None)
        return QueryResult.of([from_document(collection, doc) for doc in documents])

    async def _find_by_id(self, collection: str, entity_id: str) -> QueryResult:
        return await self._find(collection, {"_id": entity_id})

    async def _aggregate(
        self, collection: str, pipeline: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        cursor = self._collection(collection).aggregate(pipeline)
        return await cursor.to_list(length=None)

    async def _insert(self, collection: str, data: dict[str, Any]) -> QueryResult:
        document = to_document(collection, data)
        with self._span("insert_one", collection, {ATTR_ENTITY_ID: document["_id"]}):
            result = await self._collection(collection).insert_one(document)
        return await self._find_by_id(collection, result.inserted_id)

    async def _update_one(
        self,
        collection: str,
        entity_id: str,
        update: dict[str, Any],
    ) -> QueryResult:
        result = await self._collection(collection).update_one({"_id": entity_id}, update)
        if result.matched_count == 0:
            return QueryResult.empty()
        return await self._find_by_id(collection, entity_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_users(self) -> QueryResult:
        return await self._find(USERS, {}, [("registration_date", DESCENDING)])

    async def get_user_by_id(self, user_id: str) -> QueryResult:
        return await self._find_by_id(USERS, user_id)

    async def get_user_by_email(self, email: str) -> QueryResult:
        return await self._find(USERS, {"email": email})

    async def create_user(self, user: User) -> QueryResult:
        return await self._insert(USERS, user.model_dump())

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> QueryResult:
        unknown = set(updates) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
        if not updates:
            return await self.get_user_by_id(user_id)
        with self._span("update_user", USERS, {ATTR_ENTITY_ID: user_id}):
            return await self._update_one(USERS, user_id, {"$set": encode_value(updates)})

    async def delete_user(self, user_id: str) -> QueryResult:
        existing = await self.get_user_by_id(user_id)
        if not existing.is_empty:
            with self._span("delete_user", USERS, {ATTR_ENTITY_ID: user_id}):
                await self._collection(USERS).delete_one({"_id": user_id})
        return existing

    # ------------------------------------------------------------------
    # Artists and arenas
    # ------------------------------------------------------------------

    async def get_artists(self) -> QueryResult:
        return await self._find(ARTISTS, {}, [("artist_name", ASCENDING)])

    async def get_artist_by_id(self, artist_id: str) -> QueryResult:
        return await self._find_by_id(ARTISTS, artist_id)

    async def create_artist(self, artist: Artist) -> QueryResult:
        return await self._insert(ARTISTS, artist.model_dump())

    async def get_arenas(self) -> QueryResult:
        return await self._find(ARENAS, {}, [("arena_name", ASCENDING)])

    async def get_arena_by_id(self, arena_id: str) -> QueryResult:
        return await self._find_by_id(ARENAS, arena_id)

    async def create_arena(self, arena: Arena) -> QueryResult:
        return await self._insert(ARENAS, arena.model_dump())

    # ------------------------------------------------------------------
    # Concerts
    # ------------------------------------------------------------------

    async def _fetch_concerts(self, match: dict[str, Any] | None = None) -> QueryResult:
        documents = await self._aggregate(CONCERTS, _arena_lookup_pipeline(match))
        return QueryResult.of([from_document(CONCERTS, doc) for doc in documents])

    async def get_concerts(self) -> QueryResult:
        return await self._fetch_concerts()

    async def get_concert_by_id(self, concert_id: str) -> QueryResult:
        return await self._fetch_concerts({"_id": concert_id})

    async def get_concerts_by_organizer(self, organizer_id: str) -> QueryResult:
        return await self._fetch_concerts({"organizer_id": organizer_id})

    async def _resolve_artists(self, artists: list[str | ArtistSnapshot]) -> list[dict[str, Any]]:
        """Turn artist ids and snapshots into embedded artist snapshots."""
        ids = [artist for artist in artists if isinstance(artist, str)]
        found: dict[str, dict[str, Any]] = {}
        if ids:
            cursor = self._collection(ARTISTS).find({"_id": {"$in": ids}})
            for doc in await cursor.to_list(length=None):
                found[doc["_id"]] = doc

        resolved = []
        for artist in artists:
            if isinstance(artist, str):
                doc = found.get(artist)
                if doc is None:
                    logger.warning(f"Artist {artist} not found, leaving it out of the concert")
                    continue
                resolved.append(
                    {
                        "artist_id": doc["_id"],
                        "artist_name": doc.get("artist_name"),
                        "genre": doc.get("genre"),
                    }
                )
            else:
                resolved.append(artist.model_dump())
        return resolved

    async def create_concert(self, concert: Concert) -> QueryResult:
        artists = await self._resolve_artists(concert.artists)
        data = concert.model_dump(exclude={"artists", "zone_pricing"})
        data["artists"] = artists
        data["zone_pricing"] = [
            {"zone_name": zone.zone_name, "price": float(zone.price)}
            for zone in concert.zone_pricing
        ]
        document = to_document(CONCERTS, data)
        with self._span("create_concert", CONCERTS, {ATTR_ENTITY_ID: concert.concert_id}):
            await self._collection(CONCERTS).insert_one(document)
        logger.info(
            f"Created concert {concert.concert_id} with {len(data['zone_pricing'])} zone prices "
            f"and {len(artists)} artists"
        )
        return await self.get_concert_by_id(concert.concert_id)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_tickets(self) -> QueryResult:
        return await self._find(TICKETS, {}, [("purchase_date", DESCENDING)])

    async def get_ticket_by_id(self, ticket_id: str) -> QueryResult:
        return await self._find_by_id(TICKETS, ticket_id)

    async def create_ticket(self, ticket: Ticket) -> QueryResult:
        fan = await self._collection(USERS).find_one({"_id": ticket.fan_id})
        concert = await self._collection(CONCERTS).find_one({"_id": ticket.concert_id})

        fan_details = (fan or {}).get("fan_details") or {}
        price = 0.0
        for zone in (concert or {}).get("zone_pricing", []):
            if zone.get("zone_name") == ticket.zone_name:
                price = zone.get("price", 0.0)
                break

        data = ticket.model_dump()
        data["fan_username"] = fan_details.get("username") or UNKNOWN_FAN_USERNAME
        data["concert_date"] = (concert or {}).get("concert_date")
        data["price"] = price
        return await self._insert(TICKETS, data)

    async def get_tickets_by_user_id(self, user_id: str) -> QueryResult:
        return await self._find(TICKETS, {"fan_id": user_id}, [("purchase_date", DESCENDING)])

    async def get_tickets_by_concert_and_zone(self, concert_id: str, zone_name: str) -> QueryResult:
        return await self._find(TICKETS, {"concert_id": concert_id, "zone_name": zone_name})

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def get_stats(self) -> DatabaseStats:
        users, artists, arenas, concerts, tickets = await asyncio.gather(
            *(self._collection(name).count_documents({}) for name in ID_FIELDS)
        )
        return DatabaseStats(
            users=users, artists=artists, arenas=arenas, concerts=concerts, tickets=tickets
        )

    async def get_concert_ticket_summary(self, concert_id: str) -> QueryResult:
        pipeline = [
            {"$match": {"concert_id": concert_id}},
            {
                "$group": {
                    "_id": "$zone_name",
                    "tickets_sold": {"$sum": 1},
                    "revenue": {"$sum": "$price"},
                    "referral_tickets": {"$sum": {"$cond": ["$referral_code_used", 1, 0]}},
                }
            },
            {"$sort": {"_id": 1}},
        ]
        groups = await self._aggregate(TICKETS, pipeline)
        return QueryResult.of(
            [
                {
                    "zone_name": group["_id"],
                    "tickets_sold": group["tickets_sold"],
                    "revenue": float(group["revenue"]),
                    "referral_tickets": group["referral_tickets"],
                }
                for group in groups
            ]
        )

    async def get_organizer_stats(
        self, organizer_id: str, *, as_of: date | None = None
    ) -> OrganizerStats:
        concerts = self._collection(CONCERTS)
        concert_ids = await concerts.distinct("_id", {"organizer_id": organizer_id})
        upcoming = await concerts.count_documents(
            {"organizer_id": organizer_id, "concert_date": {"$gt": encode_value(as_of or today())}}
        )
        groups = await self._aggregate(
            TICKETS,
            [
                {"$match": {"concert_id": {"$in": concert_ids}}},
                {
                    "$group": {
                        "_id": None,
                        "tickets_sold": {"$sum": 1},
                        "revenue": {"$sum": "$price"},
                    }
                },
            ],
        )
        totals = groups[0] if groups else {"tickets_sold": 0, "revenue": 0}
        return OrganizerStats.from_totals(
            len(concert_ids), upcoming, totals["tickets_sold"], totals["revenue"]
        )

    async def get_arena_analytics(self, organizer_id: str) -> QueryResult:
        cursor = self._collection(CONCERTS).find(
            {"organizer_id": organizer_id}, {"_id": 1, "arena_id": 1}
        )
        concert_arenas = {doc["_id"]: doc["arena_id"] for doc in await cursor.to_list(length=None)}
        if not concert_arenas:
            return QueryResult.empty()

        groups = await self._aggregate(
            TICKETS,
            [
                {"$match": {"concert_id": {"$in": list(concert_arenas)}}},
                {
                    "$group": {
                        "_id": {"concert_id": "$concert_id", "zone_name": "$zone_name"},
                        "tickets_sold": {"$sum": 1},
                        "revenue": {"$sum": "$price"},
                    }
                },
            ],
        )
        sales: dict[tuple[str, str], list[float]] = {}
        for group in groups:
            key = (concert_arenas[group["_id"]["concert_id"]], group["_id"]["zone_name"])
            totals = sales.setdefault(key, [0, 0.0])
            totals[0] += group["tickets_sold"]
            totals[1] += group["revenue"]

        arenas = await self._find(
            ARENAS,
            {"_id": {"$in": sorted(set(concert_arenas.values()))}},
            [("arena_name", ASCENDING), ("_id", ASCENDING)],
        )
        rows = []
        for arena in arenas:
            zones = []
            for zone in sorted(arena["zones"], key=lambda zone: zone["zone_name"]):
                sold, revenue = sales.get((arena["arena_id"], zone["zone_name"]), (0, 0.0))
                zones.append(
                    {
                        "zone_name": zone["zone_name"],
                        "capacity_per_zone": zone.get("capacity_per_zone"),
                        "tickets_sold": int(sold),
                        "revenue": float(revenue),
                    }
                )
            rows.append(
                {
                    "arena_id": arena["arena_id"],
                    "arena_name": arena.get("arena_name"),
                    "arena_location": arena.get("arena_location"),
                    "total_capacity": arena.get("total_capacity"),
                    "zones": zones,
                }
            )
        return QueryResult.of(rows)

    async def get_upcoming_concerts_performance(
        self, *, as_of: date | None = None
    ) -> QueryResult:
        pipeline = [
            {"$match": {"concert_date": {"$gte": encode_value(as_of or today())}}},
            {
                "$lookup": {
                    "from": TICKETS,
                    "localField": "_id",
                    "foreignField": "concert_id",
                    "as": "sold",
                }
            },
            {
                "$lookup": {
                    "from": ARENAS,
                    "localField": "arena_id",
                    "foreignField": "_id",
                    "as": "arena_info",
                }
            },
            {
                "$project": {
                    "concert_date": 1,
                    "description": 1,
                    "arena_name": {"$arrayElemAt": ["$arena_info.arena_name", 0]},
                    "artist_names": {"$ifNull": ["$artists.artist_name", []]},
                    "tickets_sold": {"$size": "$sold"},
                    "total_revenue": {"$sum": "$sold.price"},
                }
            },
            {"$sort": {"tickets_sold": -1, "concert_date": 1, "_id": 1}},
        ]
        documents = await self._aggregate(CONCERTS, pipeline)
        return QueryResult.of(
            [
                {
                    "concert_id": doc["_id"],
                    "concert_date": doc["concert_date"].date(),
                    "description": doc.get("description"),
                    "arena_name": doc.get("arena_name"),
                    "artist_names": sorted(doc.get("artist_names") or []),
                    "tickets_sold": doc["tickets_sold"],
                    "total_revenue": float(doc["total_revenue"]),
                }
                for doc in documents
            ]
        )

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    async def get_user_by_referral_code(self, referral_code: str) -> QueryResult:
        return await self._find(USERS, {"fan_details.referral_code": referral_code})

    async def _update_fan(
        self,
        fan_id: str,
        update: dict[str, Any],
        conditions: dict[str, Any] | None = None,
    ) -> QueryResult:
        """Update embedded fan details; users without them never match."""
        query = {"_id": fan_id, "fan_details": {"$type": "object"}, **(conditions or {})}
        result = await self._collection(USERS).update_one(query, update)
        if result.matched_count == 0:
            return QueryResult.empty()
        return await self._find_by_id(USERS, fan_id)

    async def update_user_referral_points(self, user_id: str, delta: int) -> QueryResult:
        conditions = {"fan_details.referral_points": {"$gte": -delta}} if delta < 0 else None
        with self._span(
            "update_user_referral_points",
            USERS,
            {ATTR_ENTITY_ID: user_id, ATTR_POINTS_DELTA: delta},
        ):
            return await self._update_fan(
                user_id, {"$inc": {"fan_details.referral_points": delta}}, conditions
            )

    async def mark_referral_code_used(self, fan_id: str) -> QueryResult:
        return await self._update_fan(fan_id, {"$set": {"fan_details.referral_code_used": True}})

    async def claim_referral_code(self, fan_id: str) -> bool:
        previous = await self._collection(USERS).find_one_and_update(
            {
                "_id": fan_id,
                "fan_details": {"$type": "object"},
                "fan_details.referral_code_used": {"$ne": True},
            },
            {"$set": {"fan_details.referral_code_used": True}},
        )
        return previous is not None

    async def update_fan_referrer(self, fan_id: str, referrer_id: str) -> QueryResult:
        if fan_id == referrer_id:
            raise ValueError("A fan cannot refer themselves")
        return await self._update_fan(fan_id, {"$set": {"fan_details.referred_by": referrer_id}})

    async def get_users_referred_by(self, fan_id: str) -> QueryResult:
        return await self._find(
            USERS, {"fan_details.referred_by": fan_id}, [("registration_date", DESCENDING)]
        )

    async def get_tickets_from_referrals(self, fan_id: str) -> QueryResult:
        referred = await self.get_users_referred_by(fan_id)
        referred_ids = [user["user_id"] for user in referred]
        if not referred_ids:
            return QueryResult.empty()
        return await self._find(
            TICKETS,
            {"fan_id": {"$in": referred_ids}, "referral_code_used": True},
            [("purchase_date", DESCENDING)],
        )

    # ------------------------------------------------------------------
    # Escape hatch and health
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        raise UnsupportedOperationError("query", "mongodb")

    async def health_check(self) -> bool:
        return await self._connection.health_check()


__all__ = [
    "DocumentAdapter",
    "ID_FIELDS",
    "UNKNOWN_FAN_USERNAME",
    "encode_value",
    "to_document",
    "from_document",
]
