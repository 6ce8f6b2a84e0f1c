"""
JSON-ready encoding of domain models.

Datetimes are ISO-8601 strings; enums are their string values; the session
frozen set is a sorted list. Decoding accepts payloads written by older
versions that lack newer fields (frozen_sentence_ids, stats, timezone).
"""

import base64
import json
from datetime import datetime
from typing import Any

from retrieval_srs.domain.models import (
    AudioFile,
    ExportBundle,
    Rating,
    ReviewEvent,
    SchedulingState,
    Sentence,
    SentenceStats,
    Session,
    SessionMode,
    SessionState,
)
from retrieval_srs.domain.settings import Settings, validate_settings


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _rating(value: str | None) -> Rating | None:
    return Rating(value) if value else None


# ---------- Settings ----------


def encode_settings(settings: Settings) -> dict[str, Any]:
    return settings.model_dump(mode="json")


def decode_settings(data: dict[str, Any]) -> Settings:
    return validate_settings(data)


# ---------- Sentence ----------


def encode_sentence(sentence: Sentence) -> dict[str, Any]:
    state = sentence.scheduling_state
    return {
        "id": sentence.id,
        "language_code": sentence.language_code,
        "target_text": sentence.target_text,
        "english_translation_text": sentence.english_translation_text,
        "target_audio_uri": sentence.target_audio_uri,
        "target_audio_duration_seconds": sentence.target_audio_duration_seconds,
        "tags": list(sentence.tags) if sentence.tags is not None else None,
        "created_at": _dt(sentence.created_at),
        "is_eligible": sentence.is_eligible,
        "scheduling_state": {
            "box_level": state.box_level,
            "due_at": _dt(state.due_at),
            "last_rating": state.last_rating.value if state.last_rating else None,
            "last_reviewed_at": _dt(state.last_reviewed_at),
            "relearn_lock_until_next_session": state.relearn_lock_until_next_session,
            "lapse_count": state.lapse_count,
            "success_streak": state.success_streak,
        },
        "stats": {
            "total_reviews": sentence.stats.total_reviews,
            "total_misses": sentence.stats.total_misses,
        },
    }


def decode_sentence(data: dict[str, Any]) -> Sentence:
    state = data["scheduling_state"]
    stats = data.get("stats") or {}
    return Sentence(
        id=data["id"],
        language_code=data["language_code"],
        target_text=data.get("target_text"),
        english_translation_text=data["english_translation_text"],
        target_audio_uri=data.get("target_audio_uri", ""),
        target_audio_duration_seconds=data.get("target_audio_duration_seconds"),
        tags=data.get("tags"),
        created_at=_parse_dt(data["created_at"]),
        is_eligible=bool(data.get("is_eligible", False)),
        scheduling_state=SchedulingState(
            box_level=int(state["box_level"]),
            due_at=_parse_dt(state["due_at"]),
            last_rating=_rating(state.get("last_rating")),
            last_reviewed_at=_parse_dt(state.get("last_reviewed_at")),
            relearn_lock_until_next_session=bool(
                state.get("relearn_lock_until_next_session", False)
            ),
            lapse_count=int(state.get("lapse_count", 0)),
            success_streak=int(state.get("success_streak", 0)),
        ),
        stats=SentenceStats(
            total_reviews=int(stats.get("total_reviews", 0)),
            total_misses=int(stats.get("total_misses", 0)),
        ),
    )


# ---------- ReviewEvent ----------


def encode_review_event(event: ReviewEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "sentence_id": event.sentence_id,
        "session_id": event.session_id,
        "timestamp": _dt(event.timestamp),
        "rating": event.rating.value,
        "computed_next_due_at": _dt(event.computed_next_due_at),
        "computed_interval_days": event.computed_interval_days,
        "box_level_after": event.box_level_after,
    }


def decode_review_event(data: dict[str, Any]) -> ReviewEvent:
    rating = data["rating"]
    if rating == "Again":
        # Legacy name for Miss
        rating = Rating.MISS.value
    return ReviewEvent(
        id=data["id"],
        sentence_id=data["sentence_id"],
        session_id=data["session_id"],
        timestamp=_parse_dt(data["timestamp"]),
        rating=Rating(rating),
        computed_next_due_at=_parse_dt(data["computed_next_due_at"]),
        computed_interval_days=int(data["computed_interval_days"]),
        box_level_after=int(data["box_level_after"]),
    )


# ---------- Session ----------


def encode_session(session: Session) -> dict[str, Any]:
    state = session.state
    return {
        "id": session.id,
        "started_at": _dt(session.started_at),
        "ended_at": _dt(session.ended_at),
        "mode": session.mode.value,
        "target_minutes": session.target_minutes,
        "settings_snapshot": encode_settings(session.settings_snapshot),
        "state": {
            "current_item_id": state.current_item_id,
            "queue_position": state.queue_position,
            "elapsed_time_seconds": state.elapsed_time_seconds,
            "is_complete": state.is_complete,
            "frozen_sentence_ids": sorted(state.frozen_sentence_ids),
        },
    }


def decode_session(data: dict[str, Any]) -> Session:
    state = data.get("state") or {}
    return Session(
        id=data["id"],
        started_at=_parse_dt(data["started_at"]),
        ended_at=_parse_dt(data.get("ended_at")),
        mode=SessionMode(data.get("mode", SessionMode.DUE_THEN_EXTRA.value)),
        target_minutes=int(data["target_minutes"]),
        settings_snapshot=decode_settings(data.get("settings_snapshot") or {}),
        state=SessionState(
            current_item_id=state.get("current_item_id"),
            queue_position=int(state.get("queue_position", 0)),
            elapsed_time_seconds=state.get("elapsed_time_seconds", 0),
            is_complete=bool(state.get("is_complete", False)),
            frozen_sentence_ids=frozenset(state.get("frozen_sentence_ids") or ()),
        ),
    )


# ---------- JSON string helpers ----------


def dumps_sentence(sentence: Sentence) -> str:
    return json.dumps(encode_sentence(sentence), ensure_ascii=False)


def loads_sentence(text: str) -> Sentence:
    return decode_sentence(json.loads(text))


def dumps_review_event(event: ReviewEvent) -> str:
    return json.dumps(encode_review_event(event), ensure_ascii=False)


def loads_review_event(text: str) -> ReviewEvent:
    return decode_review_event(json.loads(text))


def dumps_session(session: Session) -> str:
    return json.dumps(encode_session(session), ensure_ascii=False)


def loads_session(text: str) -> Session:
    return decode_session(json.loads(text))


def dumps_settings(settings: Settings) -> str:
    return json.dumps(encode_settings(settings), ensure_ascii=False)


def loads_settings(text: str) -> Settings:
    return decode_settings(json.loads(text))


# ---------- Backup bundle ----------

BUNDLE_VERSION = 1


def encode_bundle(bundle: ExportBundle, include_audio: bool = True) -> dict[str, Any]:
    """Full backup document; audio blobs are base64-encoded."""
    return {
        "version": BUNDLE_VERSION,
        "settings": encode_settings(bundle.settings),
        "sentences": [encode_sentence(s) for s in bundle.sentences],
        "review_events": [encode_review_event(e) for e in bundle.review_events],
        "sessions": [encode_session(s) for s in bundle.sessions],
        "audio_files": (
            [
                {
                    "sentence_id": a.sentence_id,
                    "filename": a.filename,
                    "data": base64.b64encode(a.data).decode("ascii"),
                }
                for a in bundle.audio_files
            ]
            if include_audio
            else []
        ),
    }


def decode_bundle(data: dict[str, Any]) -> ExportBundle:
    return ExportBundle(
        sentences=[decode_sentence(s) for s in data.get("sentences", [])],
        review_events=[decode_review_event(e) for e in data.get("review_events", [])],
        sessions=[decode_session(s) for s in data.get("sessions", [])],
        settings=decode_settings(data.get("settings") or {}),
        audio_files=[
            AudioFile(
                sentence_id=a["sentence_id"],
                filename=a["filename"],
                data=base64.b64decode(a["data"]),
            )
            for a in data.get("audio_files", [])
        ],
    )
