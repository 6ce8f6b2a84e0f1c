import json

import httpx
import pytest

from retrieval_srs.domain.errors import TranscriptionError
from retrieval_srs.infrastructure.transcription.whisper_client import (
    WhisperTranscriptionClient,
    language_matches,
    normalize_language,
)

TRANSCRIPT = {
    "language": "hungarian",
    "duration": 6.0,
    "segments": [
        {"start": 0.0, "end": 4.0, "text": " Szia. Hogy vagy?"},
        {"start": 4.0, "end": 6.0, "text": "   "},
    ],
}

TRANSLATIONS = {"Szia.": "Hi.", "Hogy vagy?": "How are you?"}


def _translate(sentence):
    return httpx.Response(
        200, json={"choices": [{"message": {"content": TRANSLATIONS[sentence]}}]}
    )


def _client(translate=None, transcribe_status=200):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        assert request.headers["Authorization"] == "Bearer test-key"
        if request.url.path.endswith("/audio/transcriptions"):
            if transcribe_status != 200:
                return httpx.Response(transcribe_status, text="bad key")
            return httpx.Response(200, json=TRANSCRIPT)

        body = json.loads(request.content)
        return (translate or _translate)(body["messages"][-1]["content"])

    client = WhisperTranscriptionClient(
        api_key="test-key",
        base_url="https://api.test/v1/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return client, calls


@pytest.mark.asyncio
async def test_transcribe_splits_and_translates():
    client, calls = _client()

    result = await client.transcribe(b"mp3", "clip.mp3", "hu")
    await client.close()

    assert result.detected_language == "hu"
    assert result.language_match is True
    assert result.duration == 6.0
    assert [(s.start, s.end, s.original_text, s.english_text) for s in result.segments] == [
        (0.0, 2.0, "Szia.", "Hi."),
        (2.0, 4.0, "Hogy vagy?", "How are you?"),
    ]
    assert str(calls[0].url) == "https://api.test/v1/audio/transcriptions"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_translation_failure_keeps_sentence():
    client, _ = _client(translate=lambda s: httpx.Response(500, text="oops"))

    result = await client.transcribe(b"mp3", "clip.mp3")

    assert [s.english_text for s in result.segments] == ["", ""]


@pytest.mark.asyncio
async def test_empty_translation_drops_sentence():
    def translate(sentence):
        content = "" if sentence == "Szia." else "How are you?"
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    client, _ = _client(translate=translate)

    result = await client.transcribe(b"mp3", "clip.mp3")

    assert [s.original_text for s in result.segments] == ["Hogy vagy?"]


@pytest.mark.asyncio
async def test_rejected_transcription_raises():
    client, _ = _client(transcribe_status=401)

    with pytest.raises(TranscriptionError, match="401"):
        await client.transcribe(b"mp3", "clip.mp3")


@pytest.mark.asyncio
async def test_oversized_audio_is_rejected_before_upload():
    client, calls = _client()

    with pytest.raises(TranscriptionError, match="too large"):
        await client.transcribe(b"\x00" * (25 * 1024 * 1024 + 1), "big.mp3")

    assert calls == []


def test_language_helpers():
    assert normalize_language("Hungarian") == "hu"
    assert normalize_language("klingon") == "klingon"
    assert language_matches("hungarian", "hu")
    assert language_matches("hungarian", None)
    assert not language_matches("german", "hu")
