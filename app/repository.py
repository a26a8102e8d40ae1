"""
repository.py — Persistence Adapter (SQL database / in-memory)
Water Quality Tracker

Route handlers only talk to the abstract ``Repository``. The concrete backend
is chosen once at startup by ``select_repository`` and never renegotiated.
Rows cross the boundary as plain dicts with snake_case keys.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from fastapi import Request
from loguru import logger

from app.config import Settings, settings
from app.database import build_engine, build_sessionmaker, init_db, close_db
from app.errors import DuplicateEmail
from app.models.user_model import User, AdminBootstrap
from app.models.db_models import WaterQualityRecord, TrackingEvent, TrackingAction
from app.utils import new_id, utcnow


class Repository(ABC):
    """Uniform storage operations shared by both backends."""

    mode: str = ""

    # ── Users ─────────────────────────────────────────────
    @abstractmethod
    async def create_user(self, fields: Dict, claim_admin: bool = False) -> Dict:
        """
        Insert a user. With ``claim_admin`` the user atomically claims the
        first-admin slot when no other user exists and the slot is unclaimed.
        Raises DuplicateEmail if the email is taken.
        """

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[Dict]: ...

    @abstractmethod
    async def find_user_by_id(self, user_id: str) -> Optional[Dict]: ...

    @abstractmethod
    async def list_users(self) -> List[Dict]:
        """All users, newest registration first."""

    @abstractmethod
    async def update_user(self, user_id: str, changes: Dict) -> Optional[Dict]: ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool: ...

    @abstractmethod
    async def count_users(self) -> int: ...

    # ── Water quality records ─────────────────────────────
    @abstractmethod
    async def create_record(self, fields: Dict) -> Dict: ...

    @abstractmethod
    async def find_record_by_id(self, record_id: str) -> Optional[Dict]: ...

    @abstractmethod
    async def list_records(self) -> List[Dict]:
        """All records, most recent test date first."""

    @abstractmethod
    async def update_record(self, record_id: str, fields: Dict) -> Optional[Dict]:
        """Overwrite every key in ``fields`` and refresh ``updated_at``."""

    @abstractmethod
    async def delete_record(self, record_id: str) -> bool: ...

    # ── Tracking ──────────────────────────────────────────
    @abstractmethod
    async def append_tracking_event(self, event: Dict) -> None: ...

    @abstractmethod
    async def purge_tracking_events(self, before: datetime) -> int: ...

    @abstractmethod
    async def stats(self) -> Dict[str, int]: ...

    async def close(self) -> None:
        pass


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════
class MemoryRepository(Repository):
    """Transient per-instance store; operations never await mid-mutation."""

    mode = "memory"

    def __init__(self):
        self._users: Dict[str, Dict] = {}
        self._records: Dict[str, Dict] = {}
        self._events: List[Dict] = []
        self._admin_claimed = False

    def _user_with_email(self, email: str) -> Optional[Dict]:
        email = email.lower()
        return next((u for u in self._users.values() if u["email"] == email), None)

    async def create_user(self, fields: Dict, claim_admin: bool = False) -> Dict:
        if self._user_with_email(fields["email"]):
            raise DuplicateEmail()
        now = utcnow()
        user = {
            "id": new_id(),
            "registration_date": now,
            "last_login": now,
            "is_active": True,
            "is_admin": False,
            "registration_source": "web",
            "ip_address": None,
            "user_agent": None,
        }
        user.update(fields)
        if claim_admin and not self._users and not self._admin_claimed:
            user["is_admin"] = True
            self._admin_claimed = True
        self._users[user["id"]] = user
        return dict(user)

    async def find_user_by_email(self, email: str) -> Optional[Dict]:
        user = self._user_with_email(email)
        return dict(user) if user else None

    async def find_user_by_id(self, user_id: str) -> Optional[Dict]:
        user = self._users.get(user_id)
        return dict(user) if user else None

    async def list_users(self) -> List[Dict]:
        users = sorted(self._users.values(), key=lambda u: u["registration_date"], reverse=True)
        return [dict(u) for u in users]

    async def update_user(self, user_id: str, changes: Dict) -> Optional[Dict]:
        user = self._users.get(user_id)
        if user is None:
            return None
        if "email" in changes:
            other = self._user_with_email(changes["email"])
            if other and other["id"] != user_id:
                raise DuplicateEmail()
        user.update(changes)
        return dict(user)

    async def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    async def count_users(self) -> int:
        return len(self._users)

    async def create_record(self, fields: Dict) -> Dict:
        now = utcnow()
        record = {
            "id": new_id(),
            "date": now,
            "site_notes": None,
            "weather": None,
            "additional_notes": None,
            "created_by": None,
            "created_at": now,
            "updated_at": now,
        }
        record.update(fields)
        self._records[record["id"]] = record
        return dict(record)

    async def find_record_by_id(self, record_id: str) -> Optional[Dict]:
        record = self._records.get(record_id)
        return dict(record) if record else None

    async def list_records(self) -> List[Dict]:
        records = sorted(self._records.values(), key=lambda r: r["date"], reverse=True)
        return [dict(r) for r in records]

    async def update_record(self, record_id: str, fields: Dict) -> Optional[Dict]:
        record = self._records.get(record_id)
        if record is None:
            return None
        record.update(fields)
        record["updated_at"] = utcnow()
        return dict(record)

    async def delete_record(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    async def append_tracking_event(self, event: Dict) -> None:
        self._events.append({"id": new_id(), "timestamp": utcnow(), **event})

    async def purge_tracking_events(self, before: datetime) -> int:
        kept = [e for e in self._events if e["timestamp"] >= before]
        removed = len(self._events) - len(kept)
        self._events = kept
        return removed

    async def stats(self) -> Dict[str, int]:
        return {
            "users": len(self._users),
            "records": len(self._records),
            "trackingEvents": len(self._events),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SQL
# ═══════════════════════════════════════════════════════════════════════════════
def _to_dict(obj) -> Dict:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


class SQLRepository(Repository):
    """Durable store on any SQLAlchemy async URL (PostgreSQL in production)."""

    mode = "database"

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = build_sessionmaker(engine)

    # ── Users ─────────────────────────────────────────────
    async def create_user(self, fields: Dict, claim_admin: bool = False) -> Dict:
        try:
            async with self._sessions() as session, session.begin():
                user = User(**fields)
                session.add(user)
                await session.flush()
                if claim_admin:
                    count = await session.scalar(select(func.count()).select_from(User))
                    if count == 1:
                        await self._claim_first_admin(session, user)
        except IntegrityError:
            raise DuplicateEmail()
        return _to_dict(user)

    async def _claim_first_admin(self, session, user: User) -> None:
        # the primary key on admin_bootstrap lets exactly one registration win
        try:
            async with session.begin_nested():
                session.add(AdminBootstrap(id=1, user_id=user.id))
                await session.flush()
        except IntegrityError:
            logger.info(f"First-admin slot already claimed; {user.id} registered as regular user.")
            await session.refresh(user)
            return
        user.is_admin = True

    async def find_user_by_email(self, email: str) -> Optional[Dict]:
        async with self._sessions() as session:
            user = await session.scalar(select(User).where(User.email == email.lower()))
            return _to_dict(user) if user else None

    async def find_user_by_id(self, user_id: str) -> Optional[Dict]:
        async with self._sessions() as session:
            user = await session.get(User, user_id)
            return _to_dict(user) if user else None

    async def list_users(self) -> List[Dict]:
        async with self._sessions() as session:
            result = await session.execute(select(User).order_by(User.registration_date.desc()))
            return [_to_dict(u) for u in result.scalars().all()]

    async def update_user(self, user_id: str, changes: Dict) -> Optional[Dict]:
        try:
            async with self._sessions() as session, session.begin():
                user = await session.get(User, user_id)
                if user is None:
                    return None
                for key, value in changes.items():
                    setattr(user, key, value)
        except IntegrityError:
            raise DuplicateEmail()
        return _to_dict(user)

    async def delete_user(self, user_id: str) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(delete(User).where(User.id == user_id))
            return result.rowcount > 0

    async def count_users(self) -> int:
        async with self._sessions() as session:
            return await session.scalar(select(func.count()).select_from(User))

    # ── Water quality records ─────────────────────────────
    async def create_record(self, fields: Dict) -> Dict:
        async with self._sessions() as session, session.begin():
            record = WaterQualityRecord(**fields)
            session.add(record)
        return _to_dict(record)

    async def find_record_by_id(self, record_id: str) -> Optional[Dict]:
        async with self._sessions() as session:
            record = await session.get(WaterQualityRecord, record_id)
            return _to_dict(record) if record else None

    async def list_records(self) -> List[Dict]:
        async with self._sessions() as session:
            result = await session.execute(
                select(WaterQualityRecord).order_by(WaterQualityRecord.date.desc())
            )
            return [_to_dict(r) for r in result.scalars().all()]

    async def update_record(self, record_id: str, fields: Dict) -> Optional[Dict]:
        async with self._sessions() as session, session.begin():
            record = await session.get(WaterQualityRecord, record_id)
            if record is None:
                return None
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_at = utcnow()
        return _to_dict(record)

    async def delete_record(self, record_id: str) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(WaterQualityRecord).where(WaterQualityRecord.id == record_id)
            )
            return result.rowcount > 0

    # ── Tracking ──────────────────────────────────────────
    async def append_tracking_event(self, event: Dict) -> None:
        row = TrackingEvent(
            user_id=event["user_id"],
            action=TrackingAction(event["action"]),
            ip_address=event.get("ip_address"),
            user_agent=event.get("user_agent"),
            details=event.get("metadata"),
        )
        if event.get("timestamp") is not None:
            row.timestamp = event["timestamp"]
        async with self._sessions() as session, session.begin():
            session.add(row)

    async def purge_tracking_events(self, before: datetime) -> int:
        async with self._sessions() as session, session.begin():
            result = await session.execute(delete(TrackingEvent).where(TrackingEvent.timestamp < before))
            return result.rowcount

    async def stats(self) -> Dict[str, int]:
        async with self._sessions() as session:
            counts = {}
            for key, model in (("users", User), ("records", WaterQualityRecord),
                               ("trackingEvents", TrackingEvent)):
                counts[key] = await session.scalar(select(func.count()).select_from(model))
            return counts

    async def close(self) -> None:
        await close_db(self.engine)


# ═══════════════════════════════════════════════════════════════════════════════
# BACKEND SELECTION
# ═══════════════════════════════════════════════════════════════════════════════
async def select_repository(config: Settings = settings) -> Repository:
    """
    Pick the persistence backend once at startup.

    auto     → database if reachable, otherwise in-memory (logged)
    database → database or raise
    memory   → in-memory, no connection attempt
    """
    if config.PERSISTENCE_MODE == "memory":
        logger.info("Persistence mode: in-memory (forced by configuration).")
        return MemoryRepository()

    engine = None
    try:
        engine = build_engine(config.DATABASE_URL)
        await init_db(engine, timeout=config.DB_CONNECT_TIMEOUT_SECONDS)
    except Exception as e:
        if engine is not None:
            await engine.dispose()
        if config.PERSISTENCE_MODE == "database":
            raise
        logger.warning(f"Database connection failed ({e!r}); using in-memory storage.")
        return MemoryRepository()

    logger.info("Persistence mode: database.")
    return SQLRepository(engine)


# ── Dependency ────────────────────────────────────────────────────────────────
def get_repository(request: Request) -> Repository:
    """FastAPI dependency: the backend chosen at startup."""
    return request.app.state.repository
