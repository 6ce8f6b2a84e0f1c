import base64
import binascii
import dataclasses
import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from retrieval_srs.application.config import resolve_config
from retrieval_srs.application.factory import get_storage, get_transcription_service
from retrieval_srs.application.study_service import StudyService
from retrieval_srs.consts import VERSION
from retrieval_srs.domain.errors import (
    InvalidSettingsError,
    NotFoundError,
    RatingNotAcceptedError,
    TranscriptionError,
)
from retrieval_srs.domain.models import Rating, SessionMode
from retrieval_srs.domain.ports import StorageRepository, TranscriptionService
from retrieval_srs.infrastructure.serialization import (
    encode_review_event,
    encode_sentence,
    encode_session,
    encode_settings,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("retrieval_srs.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"retrieval-srs server v{VERSION} starting up...")
    yield
    # Shutdown
    storage = getattr(app.state, "storage", None)
    if storage is not None and hasattr(storage, "close"):
        storage.close()
    logger.info("retrieval-srs server shutting down...")


app = FastAPI(
    title="retrieval-srs server",
    description="Local API for audio retrieval practice sessions.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


# ---------- Dependencies ----------


def get_storage_dep(request: Request) -> StorageRepository:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = get_storage(resolve_config())
        request.app.state.storage = storage
    return storage


def get_service(storage: StorageRepository = Depends(get_storage_dep)) -> StudyService:
    return StudyService(storage)


def get_transcriber() -> TranscriptionService:
    try:
        return get_transcription_service(resolve_config())
    except TranscriptionError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def _decode_audio(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail="audio_base64 is not valid base64") from e


# ---------- Models ----------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class SentenceCreateRequest(BaseModel):
    english_translation_text: str = Field(min_length=1)
    audio_base64: str
    filename: str = "audio.mp3"
    target_text: str | None = None
    language_code: str | None = None
    tags: list[str] | None = None
    target_audio_duration_seconds: float | None = None
    eligible: bool = False


class SessionStartRequest(BaseModel):
    target_minutes: int | None = Field(default=None, gt=0)
    mode: SessionMode | None = None


class PresentRequest(BaseModel):
    sentence_id: str
    queue_position: int = Field(default=0, ge=0)


class RatingRequest(BaseModel):
    sentence_id: str
    rating: Rating


class EndSessionRequest(BaseModel):
    elapsed_time_seconds: float | None = Field(default=None, ge=0)


class TranscribeRequest(BaseModel):
    audio_base64: str
    filename: str = "audio.mp3"
    expected_language: str | None = None


# ---------- Meta ----------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------- Sentences ----------


@app.get("/sentences")
async def list_sentences(
    language: str | None = None,
    eligible: bool | None = None,
    service: StudyService = Depends(get_service),
):
    sentences = await service.get_sentences(language)
    if eligible is not None:
        sentences = [s for s in sentences if s.is_eligible == eligible]
    return [encode_sentence(s) for s in sentences]


@app.post("/sentences", status_code=201)
async def create_sentence(req: SentenceCreateRequest, service: StudyService = Depends(get_service)):
    audio = _decode_audio(req.audio_base64)
    if not audio:
        raise HTTPException(status_code=400, detail="audio is empty")

    sentence = await service.add_sentence(
        english_translation_text=req.english_translation_text,
        audio=audio,
        filename=req.filename,
        language_code=req.language_code,
        target_text=req.target_text,
        tags=req.tags,
        target_audio_duration_seconds=req.target_audio_duration_seconds,
        eligible=req.eligible,
    )
    return encode_sentence(sentence)


@app.get("/due")
async def get_due(service: StudyService = Depends(get_service)):
    """Eligible sentences due now (including relearn-locked ones)."""
    return [encode_sentence(s) for s in await service.due_now()]


@app.get("/stats")
async def get_stats(service: StudyService = Depends(get_service)):
    overview = await service.library_overview()
    return dataclasses.asdict(overview)


# ---------- Sessions ----------


@app.post("/sessions", status_code=201)
async def start_session(req: SessionStartRequest, service: StudyService = Depends(get_service)):
    """Start a session, or return the incomplete one to resume."""
    config = resolve_config()
    session, resumed = await service.start_or_resume_session(
        req.target_minutes or config.default_session_minutes,
        req.mode or config.session_mode,
    )
    return {"session": encode_session(session), "resumed": resumed}


@app.get("/sessions/{session_id}/queue")
async def get_session_queue(session_id: str, service: StudyService = Depends(get_service)):
    try:
        session = await service.get_session(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    due, extra = await service.build_queues(session)

    def _items(queue) -> list[dict[str, Any]]:
        return [
            {
                "position": q.position,
                "sentence_id": q.sentence.id,
                "english_translation_text": q.sentence.english_translation_text,
                "relearn_lock": q.sentence.scheduling_state.relearn_lock_until_next_session,
            }
            for q in queue
        ]

    return {"due": _items(due), "extra": _items(extra)}


@app.post("/sessions/{session_id}/present")
async def present_item(
    session_id: str,
    req: PresentRequest,
    service: StudyService = Depends(get_service),
):
    """Open the rating slot for the sentence the client is about to play."""
    try:
        session = await service.present_item(session_id, req.sentence_id, req.queue_position)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except RatingNotAcceptedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return encode_session(session)


@app.post("/sessions/{session_id}/ratings")
async def rate_sentence(
    session_id: str,
    req: RatingRequest,
    service: StudyService = Depends(get_service),
):
    """Rate the presented sentence. Each presentation accepts one rating."""
    try:
        result = await service.rate_presented(session_id, req.sentence_id, req.rating)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except RatingNotAcceptedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return {
        "sentence": encode_sentence(result.outcome.updated_sentence),
        "review_event": encode_review_event(result.outcome.review_event),
        "should_reinsert": result.outcome.should_reinsert,
        "should_freeze": result.outcome.should_freeze,
        "newly_frozen": result.newly_frozen,
        "session": encode_session(result.session),
    }


@app.post("/sessions/{session_id}/end")
async def end_session(
    session_id: str,
    req: EndSessionRequest | None = None,
    service: StudyService = Depends(get_service),
):
    try:
        session = await service.get_session(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    elapsed = req.elapsed_time_seconds if req else None
    ended = await service.end_session(session, elapsed)
    return encode_session(ended)


@app.get("/sessions/{session_id}/summary")
async def session_summary(session_id: str, service: StudyService = Depends(get_service)):
    try:
        summary = await service.session_summary(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return dataclasses.asdict(summary)


# ---------- Settings ----------


@app.get("/settings")
async def get_settings(service: StudyService = Depends(get_service)):
    return encode_settings(await service.get_settings())


@app.put("/settings")
async def update_settings(changes: dict[str, Any], service: StudyService = Depends(get_service)):
    try:
        settings = await service.save_settings(changes)
    except InvalidSettingsError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return encode_settings(settings)


# ---------- Transcription ----------


@app.post("/transcribe")
async def transcribe(
    req: TranscribeRequest,
    transcriber: TranscriptionService = Depends(get_transcriber),
):
    """
    Transcribe a recording into timed sentences with English translations.
    """
    audio = _decode_audio(req.audio_base64)
    try:
        result = await transcriber.transcribe(audio, req.filename, req.expected_language)
    except TranscriptionError as e:
        logger.error(f"Transcription failed: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e

    return {
        "segments": [
            {
                "id": f"segment-{i}",
                "start": seg.start,
                "end": seg.end,
                "original_text": seg.original_text,
                "english_text": seg.english_text,
            }
            for i, seg in enumerate(result.segments)
        ],
        "detected_language": result.detected_language,
        "language_match": result.language_match,
        "duration": result.duration,
    }
