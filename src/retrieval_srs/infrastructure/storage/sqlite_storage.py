"""
SQLite Storage: infrastructure adapter for a single-file database.

Implements StorageRepository with the standard library sqlite3 module.
Entities are stored as JSON documents next to the columns used for lookups.
"""

import dataclasses
import logging
import sqlite3
from pathlib import Path
from typing import Any

from retrieval_srs.domain.errors import NotFoundError, StorageError
from retrieval_srs.domain.models import AudioFile, ExportBundle, ReviewEvent, Sentence, Session
from retrieval_srs.domain.ports import StorageRepository
from retrieval_srs.domain.settings import DEFAULT_SETTINGS, Settings
from retrieval_srs.infrastructure.serialization import (
    dumps_review_event,
    dumps_sentence,
    dumps_session,
    dumps_settings,
    loads_review_event,
    loads_sentence,
    loads_session,
    loads_settings,
)

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = "default"
AUDIO_URI_SCHEME = "sqlite-audio://"

SCHEMA = """
CREATE TABLE IF NOT EXISTS sentences (
    id TEXT PRIMARY KEY,
    language_code TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sentences_language ON sentences(language_code);

CREATE TABLE IF NOT EXISTS review_events (
    id TEXT PRIMARY KEY,
    sentence_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_sentence ON review_events(sentence_id);
CREATE INDEX IF NOT EXISTS idx_events_session ON review_events(session_id);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audio (
    sentence_id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    data BLOB NOT NULL
);
"""


class SqliteStorage(StorageRepository):
    """
    Persists everything in one SQLite file.

    Pass ":memory:" for a throwaway database (tests).
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self.db_path}: {e}") from e

        logger.debug(f"SqliteStorage opened at {self.db_path}")

    def close(self) -> None:
        self._conn.close()

    def _execute(self, query: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        try:
            with self._conn:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"SQLite query failed: {e}")
            raise StorageError(str(e)) from e

    # ---------- Sentences ----------

    async def get_sentences(self, language_code: str | None = None) -> list[Sentence]:
        if language_code is None:
            rows = self._execute("SELECT data FROM sentences ORDER BY id")
        else:
            rows = self._execute(
                "SELECT data FROM sentences WHERE language_code = ? ORDER BY id",
                (language_code,),
            )
        return [loads_sentence(r[0]) for r in rows]

    async def get_sentence(self, sentence_id: str) -> Sentence | None:
        rows = self._execute("SELECT data FROM sentences WHERE id = ?", (sentence_id,))
        return loads_sentence(rows[0][0]) if rows else None

    async def save_sentence(self, sentence: Sentence) -> None:
        self._execute(
            "INSERT OR REPLACE INTO sentences (id, language_code, data) VALUES (?, ?, ?)",
            (sentence.id, sentence.language_code, dumps_sentence(sentence)),
        )

    async def delete_sentence(self, sentence_id: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM sentences WHERE id = ?", (sentence_id,))
                self._conn.execute("DELETE FROM audio WHERE sentence_id = ?", (sentence_id,))
                self._conn.execute(
                    "DELETE FROM review_events WHERE sentence_id = ?", (sentence_id,)
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    # ---------- Review events ----------

    async def get_review_events(self, sentence_id: str | None = None) -> list[ReviewEvent]:
        if sentence_id is None:
            rows = self._execute("SELECT data FROM review_events ORDER BY timestamp, id")
        else:
            rows = self._execute(
                "SELECT data FROM review_events WHERE sentence_id = ? ORDER BY timestamp, id",
                (sentence_id,),
            )
        events = [loads_review_event(r[0]) for r in rows]
        # ISO strings with mixed offsets do not sort lexically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def save_review_event(self, event: ReviewEvent) -> None:
        self._execute(
            "INSERT OR REPLACE INTO review_events "
            "(id, sentence_id, session_id, timestamp, data) VALUES (?, ?, ?, ?, ?)",
            (
                event.id,
                event.sentence_id,
                event.session_id,
                event.timestamp.isoformat(),
                dumps_review_event(event),
            ),
        )

    # ---------- Sessions ----------

    async def get_sessions(self) -> list[Session]:
        rows = self._execute("SELECT data FROM sessions ORDER BY started_at, id")
        return [loads_session(r[0]) for r in rows]

    async def get_session(self, session_id: str) -> Session | None:
        rows = self._execute("SELECT data FROM sessions WHERE id = ?", (session_id,))
        return loads_session(rows[0][0]) if rows else None

    async def save_session(self, session: Session) -> None:
        self._execute(
            "INSERT OR REPLACE INTO sessions (id, started_at, data) VALUES (?, ?, ?)",
            (session.id, session.started_at.isoformat(), dumps_session(session)),
        )

    async def get_incomplete_session(self) -> Session | None:
        sessions = await self.get_sessions()
        incomplete = [s for s in sessions if not s.state.is_complete and s.ended_at is None]
        if len(incomplete) > 1:
            logger.warning(f"{len(incomplete)} incomplete sessions found; resuming the latest")
        return incomplete[-1] if incomplete else None

    async def update_session_state(self, session_id: str, **state: Any) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        updated = dataclasses.replace(session, state=dataclasses.replace(session.state, **state))
        await self.save_session(updated)
        return updated

    async def delete_session(self, session_id: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
                self._conn.execute(
                    "DELETE FROM review_events WHERE session_id = ?", (session_id,)
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    # ---------- Settings ----------

    async def get_settings(self) -> Settings:
        rows = self._execute("SELECT data FROM settings WHERE id = ?", (SETTINGS_ROW_ID,))
        if not rows:
            return DEFAULT_SETTINGS
        return loads_settings(rows[0][0])

    async def save_settings(self, settings: Settings) -> None:
        self._execute(
            "INSERT OR REPLACE INTO settings (id, data) VALUES (?, ?)",
            (SETTINGS_ROW_ID, dumps_settings(settings)),
        )

    # ---------- Audio ----------

    async def save_audio(self, sentence_id: str, data: bytes, filename: str) -> str:
        self._execute(
            "INSERT OR REPLACE INTO audio (sentence_id, filename, data) VALUES (?, ?, ?)",
            (sentence_id, filename, sqlite3.Binary(data)),
        )
        return f"{AUDIO_URI_SCHEME}{sentence_id}"

    async def get_audio(self, sentence_id: str) -> bytes | None:
        rows = self._execute("SELECT data FROM audio WHERE sentence_id = ?", (sentence_id,))
        return bytes(rows[0][0]) if rows else None

    async def delete_audio(self, sentence_id: str) -> None:
        self._execute("DELETE FROM audio WHERE sentence_id = ?", (sentence_id,))

    async def audio_exists(self, sentence_id: str) -> bool:
        rows = self._execute("SELECT 1 FROM audio WHERE sentence_id = ?", (sentence_id,))
        return bool(rows)

    # ---------- Bulk ----------

    async def export_all(self) -> ExportBundle:
        audio_rows = self._execute("SELECT sentence_id, filename, data FROM audio ORDER BY sentence_id")
        return ExportBundle(
            sentences=await self.get_sentences(),
            review_events=await self.get_review_events(),
            sessions=await self.get_sessions(),
            settings=await self.get_settings(),
            audio_files=[AudioFile(r[0], r[1], bytes(r[2])) for r in audio_rows],
        )

    async def import_all(self, bundle: ExportBundle) -> None:
        """Replace every table with the bundle's contents in one transaction."""
        try:
            with self._conn:
                for table in ("sentences", "review_events", "sessions", "settings", "audio"):
                    self._conn.execute(f"DELETE FROM {table}")
                self._conn.executemany(
                    "INSERT OR REPLACE INTO sentences (id, language_code, data) VALUES (?, ?, ?)",
                    [(s.id, s.language_code, dumps_sentence(s)) for s in bundle.sentences],
                )
                self._conn.executemany(
                    "INSERT OR REPLACE INTO review_events "
                    "(id, sentence_id, session_id, timestamp, data) VALUES (?, ?, ?, ?, ?)",
                    [
                        (
                            e.id,
                            e.sentence_id,
                            e.session_id,
                            e.timestamp.isoformat(),
                            dumps_review_event(e),
                        )
                        for e in bundle.review_events
                    ],
                )
                self._conn.executemany(
                    "INSERT OR REPLACE INTO sessions (id, started_at, data) VALUES (?, ?, ?)",
                    [(s.id, s.started_at.isoformat(), dumps_session(s)) for s in bundle.sessions],
                )
                self._conn.executemany(
                    "INSERT OR REPLACE INTO audio (sentence_id, filename, data) VALUES (?, ?, ?)",
                    [(a.sentence_id, a.filename, sqlite3.Binary(a.data)) for a in bundle.audio_files],
                )
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (id, data) VALUES (?, ?)",
                    (SETTINGS_ROW_ID, dumps_settings(bundle.settings)),
                )
        except sqlite3.Error as e:
            logger.error(f"Restore failed, database left unchanged: {e}")
            raise StorageError(f"Restore failed: {e}") from e
        logger.info(
            f"Imported {len(bundle.sentences)} sentences, {len(bundle.review_events)} events, "
            f"{len(bundle.sessions)} sessions"
        )

    async def clear_all(self) -> None:
        try:
            with self._conn:
                for table in ("sentences", "review_events", "sessions", "settings", "audio"):
                    self._conn.execute(f"DELETE FROM {table}")
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
