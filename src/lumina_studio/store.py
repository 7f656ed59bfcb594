from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from lumina_studio.errors import StoreUnavailableError
from lumina_studio.models import Artifact, ImagePayload, NewArtifact, TextPayload

logger = logging.getLogger(__name__)

Subscriber = Callable[[], None]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS artifacts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    artifact_id TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    kind TEXT NOT NULL,
    prompt TEXT NOT NULL,
    model_name TEXT NOT NULL,
    aspect_ratio TEXT,
    payload_type TEXT NOT NULL,
    mime_type TEXT,
    data BLOB,
    text TEXT
);

CREATE INDEX IF NOT EXISTS idx_artifacts_created_at ON artifacts(created_at);
"""

SELECT_COLUMNS = """
    SELECT artifact_id, created_at, kind, prompt, model_name, aspect_ratio,
           payload_type, mime_type, data, text
    FROM artifacts
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_artifact(row: sqlite3.Row) -> Artifact:
    if row["payload_type"] == "text":
        payload: ImagePayload | TextPayload = TextPayload(text=row["text"] or "")
    else:
        payload = ImagePayload(data=bytes(row["data"]), mime_type=row["mime_type"])
    return Artifact(
        artifact_id=row["artifact_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        payload=payload,
        prompt=row["prompt"],
        model_name=row["model_name"],
        kind=row["kind"],
        aspect_ratio=row["aspect_ratio"],
    )


class ArtifactStore:
    """Durable SQLite-backed history of generated and edited artifacts.

    Blocking SQLite work runs in worker threads via ``asyncio.to_thread``.
    Mutations are serialized so id/timestamp assignment and the change
    notification that follows are atomic with respect to each other.
    Subscribers are called with no arguments after every successful mutation
    and are expected to re-query ``list_all()``.
    """

    def __init__(self, db_path: Path, clock: Callable[[], datetime] = _utcnow):
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None
        self._subscribers: list[Subscriber] = []
        self._initialized = False

    def _mutation_lock(self) -> asyncio.Lock:
        """Return the write lock for the running event loop."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open artifact database at {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Artifact database operation failed: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the database file and schema if they do not exist yet."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot create directory for {self.db_path}: {exc}") from exc
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
        self._initialized = True

    def _ensure_db(self) -> None:
        if not self._initialized:
            self.init_db()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change listener and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Artifact store subscriber %r failed", callback)

    def _next_created_at(self, latest: datetime | None) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if latest is not None and now <= latest:
            now = latest + timedelta(microseconds=1)
        return now

    def _write_row(self, conn: sqlite3.Connection, artifact: Artifact) -> None:
        payload = artifact.payload
        conn.execute(
            """
            INSERT INTO artifacts(
                artifact_id, created_at, kind, prompt, model_name, aspect_ratio,
                payload_type, mime_type, data, text
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.artifact_id,
                _format_ts(artifact.created_at),
                artifact.kind,
                artifact.prompt,
                artifact.model_name,
                artifact.aspect_ratio,
                payload.type,
                payload.mime_type if isinstance(payload, ImagePayload) else None,
                payload.data if isinstance(payload, ImagePayload) else None,
                payload.text if isinstance(payload, TextPayload) else None,
            ),
        )

    def _insert_many_sync(self, news: Sequence[NewArtifact]) -> list[Artifact]:
        """Write every artifact in one transaction; any failure rolls all of them back."""
        self._ensure_db()
        stored: list[Artifact] = []
        with self._connect() as conn:
            # Take the write lock before reading the newest timestamp so other
            # connections on the same file cannot interleave.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT MAX(created_at) AS latest FROM artifacts").fetchone()
            latest = datetime.fromisoformat(row["latest"]) if row["latest"] else None
            for new in news:
                artifact = Artifact(
                    artifact_id=uuid.uuid4().hex,
                    created_at=self._next_created_at(latest),
                    **new.model_dump(),
                )
                self._write_row(conn, artifact)
                latest = artifact.created_at
                stored.append(artifact)
        return stored

    def _list_sync(self) -> list[Artifact]:
        self._ensure_db()
        with self._connect() as conn:
            rows = conn.execute(SELECT_COLUMNS + " ORDER BY created_at DESC, seq ASC").fetchall()
        return [_row_to_artifact(row) for row in rows]

    def _get_sync(self, artifact_id: str) -> Artifact | None:
        self._ensure_db()
        with self._connect() as conn:
            row = conn.execute(SELECT_COLUMNS + " WHERE artifact_id = ?", (artifact_id,)).fetchone()
        return _row_to_artifact(row) if row else None

    def _count_sync(self) -> int:
        self._ensure_db()
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0])

    def _delete_sync(self, artifact_id: str) -> bool:
        self._ensure_db()
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM artifacts WHERE artifact_id = ?", (artifact_id,))
            return cursor.rowcount > 0

    def _clear_sync(self) -> int:
        self._ensure_db()
        with self._connect() as conn:
            return conn.execute("DELETE FROM artifacts").rowcount

    async def insert(self, new: NewArtifact) -> Artifact:
        """Persist a new artifact, assigning its id and creation time."""
        stored = await self.insert_many([new])
        return stored[0]

    async def insert_many(self, news: Sequence[NewArtifact]) -> list[Artifact]:
        """Persist several artifacts atomically and notify subscribers once.

        Either every row is written or none is; ids and timestamps are assigned
        in input order.
        """
        if not news:
            return []
        async with self._mutation_lock():
            stored = await asyncio.to_thread(self._insert_many_sync, list(news))
            for artifact in stored:
                logger.info("Stored %s artifact %s (%s)", artifact.kind, artifact.artifact_id, artifact.model_name)
            self._notify()
        return stored

    async def list_all(self) -> list[Artifact]:
        """Return every artifact, newest first."""
        return await asyncio.to_thread(self._list_sync)

    async def get(self, artifact_id: str) -> Artifact | None:
        return await asyncio.to_thread(self._get_sync, artifact_id)

    async def count(self) -> int:
        return await asyncio.to_thread(self._count_sync)

    async def delete(self, artifact_id: str) -> None:
        """Remove one artifact; unknown ids are ignored."""
        async with self._mutation_lock():
            removed = await asyncio.to_thread(self._delete_sync, artifact_id)
            if removed:
                logger.info("Deleted artifact %s", artifact_id)
                self._notify()

    async def clear(self) -> None:
        async with self._mutation_lock():
            removed = await asyncio.to_thread(self._clear_sync)
            logger.info("Cleared %d artifacts", removed)
            self._notify()
