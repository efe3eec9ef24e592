"""Session store: durable sessions and their append-only message log."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta

import aiosqlite

from chat_orchestrator.core.types import Role
from chat_orchestrator.errors import NotFoundError, VersionConflictError
from chat_orchestrator.log import get_logger
from chat_orchestrator.storage.database import Database
from chat_orchestrator.storage.models import Message, Session, part_from_dict, utcnow

logger = get_logger(__name__)


class SessionStore(ABC):
    """Narrow interface over the durable session store."""

    @abstractmethod
    async def create_session(
        self, session_id: str, owner_id: str, initial_messages: Sequence[Message]
    ) -> Session:
        """Create a session. Raises VersionConflictError if the id is taken."""
        ...

    @abstractmethod
    async def append_messages(
        self, session_id: str, expected_version: int, messages: Sequence[Message]
    ) -> Session:
        """Append messages if the session is still at *expected_version*.

        Raises NotFoundError or VersionConflictError.
        """
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Session:
        """Return the session with all messages. Raises NotFoundError."""
        ...

    @abstractmethod
    async def list_session_ids_by_owner(self, owner_id: str) -> list[str]:
        """Session ids owned by *owner_id*, most recently active first."""
        ...


class SqliteSessionStore(SessionStore):
    """SessionStore on SQLite with compare-and-swap on the session version."""

    def __init__(self, db: Database):
        self._db = db
        # One connection is shared by all tasks; reads must not observe a
        # half-written transaction
        self._lock = asyncio.Lock()

    async def create_session(
        self, session_id: str, owner_id: str, initial_messages: Sequence[Message]
    ) -> Session:
        now = utcnow()
        async with self._lock:
            try:
                await self._db.conn.execute(
                    """INSERT INTO sessions (id, owner_id, version, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (session_id, owner_id, len(initial_messages), now.isoformat(), now.isoformat()),
                )
                await self._insert_messages(session_id, 0, initial_messages, now)
                await self._db.conn.commit()
            except aiosqlite.IntegrityError as exc:
                await self._db.conn.rollback()
                raise VersionConflictError(f"Session {session_id} already exists") from exc
            except BaseException:
                await self._db.conn.rollback()
                raise

        logger.info(
            "session_created",
            session_id=session_id,
            owner_id=owner_id,
            message_count=len(initial_messages),
        )
        return await self.get_session(session_id)

    async def append_messages(
        self, session_id: str, expected_version: int, messages: Sequence[Message]
    ) -> Session:
        if not messages:
            return await self.get_session(session_id)

        async with self._lock:
            try:
                floor = await self._last_created_at(session_id)
                now = utcnow()
                if floor is not None and now <= floor:
                    now = floor + timedelta(microseconds=1)

                cursor = await self._db.conn.execute(
                    """UPDATE sessions SET version = version + ?, updated_at = ?
                       WHERE id = ? AND version = ?""",
                    (len(messages), now.isoformat(), session_id, expected_version),
                )
                if cursor.rowcount == 0:
                    if not await self._exists(session_id):
                        raise NotFoundError(f"No chat data for {session_id}")
                    raise VersionConflictError(
                        f"Session {session_id} changed concurrently; retry the request"
                    )

                await self._insert_messages(session_id, expected_version, messages, now)
                await self._db.conn.commit()
            except aiosqlite.IntegrityError as exc:
                await self._db.conn.rollback()
                raise VersionConflictError(
                    f"Session {session_id} changed concurrently; retry the request"
                ) from exc
            except BaseException:
                await self._db.conn.rollback()
                raise

        logger.debug(
            "messages_appended",
            session_id=session_id,
            count=len(messages),
            version=expected_version + len(messages),
        )
        return await self.get_session(session_id)

    async def get_session(self, session_id: str) -> Session:
        async with self._lock:
            return await self._load_session(session_id)

    async def _load_session(self, session_id: str) -> Session:
        cursor = await self._db.conn.execute(
            "SELECT * FROM sessions WHERE id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"No chat data for {session_id}")

        cursor = await self._db.conn.execute(
            """SELECT * FROM messages
               WHERE session_id = ?
               ORDER BY seq ASC""",
            (session_id,),
        )
        message_rows = await cursor.fetchall()

        return Session(
            id=row["id"],
            owner_id=row["owner_id"],
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            messages=tuple(self._row_to_message(r) for r in message_rows),
        )

    async def list_session_ids_by_owner(self, owner_id: str) -> list[str]:
        async with self._lock:
            cursor = await self._db.conn.execute(
                """SELECT id FROM sessions
                   WHERE owner_id = ?
                   ORDER BY updated_at DESC, id DESC""",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [row["id"] for row in rows]

    async def _insert_messages(
        self,
        session_id: str,
        start_seq: int,
        messages: Sequence[Message],
        base_time: datetime,
    ) -> None:
        rows = []
        for offset, message in enumerate(messages):
            created_at = base_time + timedelta(microseconds=offset)
            rows.append(
                (
                    session_id,
                    start_seq + offset,
                    message.id,
                    message.role.value,
                    json.dumps([p.to_dict() for p in message.parts]),
                    created_at.isoformat(),
                )
            )
        await self._db.conn.executemany(
            """INSERT INTO messages (session_id, seq, id, role, parts_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            rows,
        )

    async def _last_created_at(self, session_id: str) -> datetime | None:
        cursor = await self._db.conn.execute(
            """SELECT created_at FROM messages
               WHERE session_id = ?
               ORDER BY seq DESC
               LIMIT 1""",
            (session_id,),
        )
        row = await cursor.fetchone()
        return datetime.fromisoformat(row["created_at"]) if row else None

    async def _exists(self, session_id: str) -> bool:
        cursor = await self._db.conn.execute(
            "SELECT 1 FROM sessions WHERE id = ?",
            (session_id,),
        )
        return await cursor.fetchone() is not None

    @staticmethod
    def _row_to_message(row) -> Message:
        try:
            raw_parts = json.loads(row["parts_json"])
        except json.JSONDecodeError:
            logger.warning("unparsed_message_parts", message_id=row["id"])
            raw_parts = []
        parts = tuple(
            p for p in (part_from_dict(d) for d in raw_parts if isinstance(d, dict)) if p is not None
        )
        return Message(
            id=row["id"],
            role=Role(row["role"]),
            parts=parts,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
