import logging
from typing import Any

import httpx

from retrieval_srs.application.utils.text import split_into_sentences
from retrieval_srs.domain.constants import (
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_TRANSCRIPTION_MODEL,
    DEFAULT_TRANSLATION_MODEL,
    MAX_TRANSCRIPTION_FILE_SIZE,
    REQUEST_TIMEOUT,
    TRANSLATION_MAX_TOKENS,
    TRANSLATION_TEMPERATURE,
)
from retrieval_srs.domain.errors import TranscriptionError
from retrieval_srs.domain.models import TranscriptionResult, TranscriptionSegment
from retrieval_srs.domain.ports import TranscriptionService

# Whisper reports full language names; sentences use ISO 639-1 codes.
LANGUAGE_NAME_TO_CODE = {
    "hungarian": "hu",
    "spanish": "es",
    "french": "fr",
    "german": "de",
    "italian": "it",
    "portuguese": "pt",
    "russian": "ru",
    "japanese": "ja",
    "korean": "ko",
    "chinese": "zh",
    "arabic": "ar",
    "hindi": "hi",
    "polish": "pl",
    "turkish": "tr",
    "dutch": "nl",
    "swedish": "sv",
    "danish": "da",
    "norwegian": "no",
    "finnish": "fi",
    "czech": "cs",
}

TRANSLATION_PROMPT = """You are a professional translator. Translate the following SINGLE SENTENCE from {source} to English.

Rules:
1. Translate only one sentence; never add sentences.
2. Keep proper nouns as they appear, or use their standard English equivalents.
3. Keep the tone and style of the original.
4. Translate naturally rather than word for word.
5. Reply with the translation only, without notes or explanations."""


def normalize_language(detected: str) -> str:
    lowered = detected.lower()
    return LANGUAGE_NAME_TO_CODE.get(lowered, lowered)


def language_matches(detected: str, expected: str | None) -> bool:
    if not expected:
        return True
    code = normalize_language(detected)
    name = detected.lower()
    expected = expected.lower()
    return code == expected or name == expected or name.startswith(expected) or expected.startswith(code)


class WhisperTranscriptionClient(TranscriptionService):
    """Transcribes and translates recordings via an OpenAI-compatible HTTP API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL,
        translation_model: str = DEFAULT_TRANSLATION_MODEL,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip("/")
        self.transcription_model = transcription_model
        self.translation_model = translation_model
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        expected_language: str | None = None,
    ) -> TranscriptionResult:
        if len(audio) > MAX_TRANSCRIPTION_FILE_SIZE:
            raise TranscriptionError("Audio file too large. Maximum size is 25MB")

        payload = await self._transcribe_raw(audio, filename, expected_language)

        segments: list[TranscriptionSegment] = []
        for raw in payload.get("segments") or []:
            segments.extend(await self._split_and_translate(raw, expected_language))

        detected = payload.get("language") or "unknown"
        self.logger.info(
            f"Transcribed {filename}: {len(segments)} sentences, language={detected}"
        )
        return TranscriptionResult(
            segments=segments,
            detected_language=normalize_language(detected),
            language_match=language_matches(detected, expected_language),
            duration=float(payload.get("duration") or 0),
        )

    async def _transcribe_raw(
        self, audio: bytes, filename: str, expected_language: str | None
    ) -> dict[str, Any]:
        data = {
            "model": self.transcription_model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": "segment",
        }
        if expected_language:
            data["language"] = expected_language

        try:
            resp = await self._get_client().post(
                f"{self.base_url}/audio/transcriptions",
                headers=self._headers,
                data=data,
                files={"file": (filename, audio, "audio/mpeg")},
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            self.logger.error(f"Transcription request rejected: {e.response.status_code}")
            raise TranscriptionError(
                f"Transcription API error {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"Transcription request failed: {e}")
            raise TranscriptionError(f"Failed to transcribe audio: {e}") from e

    async def _split_and_translate(
        self, raw: dict[str, Any], expected_language: str | None
    ) -> list[TranscriptionSegment]:
        text = (raw.get("text") or "").strip()
        if not text:
            return []

        start = float(raw.get("start", 0))
        end = float(raw.get("end", start))
        sentences = split_into_sentences(text)
        step = (end - start) / len(sentences)

        out = []
        for i, sentence in enumerate(sentences):
            seg_start = start + i * step
            # Last sentence absorbs rounding
            seg_end = end if i == len(sentences) - 1 else start + (i + 1) * step

            try:
                english = await self.translate(sentence, expected_language)
            except TranscriptionError as e:
                self.logger.warning(f"Translation failed, keeping untranslated sentence: {e}")
                english = ""
            else:
                if not english:
                    self.logger.warning(f"Empty translation for {sentence!r}, skipping")
                    continue

            out.append(
                TranscriptionSegment(
                    start=seg_start,
                    end=seg_end,
                    original_text=sentence,
                    english_text=english,
                )
            )
        return out

    async def translate(self, sentence: str, source_language: str | None = None) -> str:
        """Translate one sentence to English."""
        body = {
            "model": self.translation_model,
            "messages": [
                {
                    "role": "system",
                    "content": TRANSLATION_PROMPT.format(
                        source=source_language or "the source language"
                    ),
                },
                {"role": "user", "content": sentence},
            ],
            "temperature": TRANSLATION_TEMPERATURE,
            "max_tokens": TRANSLATION_MAX_TOKENS,
        }
        try:
            resp = await self._get_client().post(
                f"{self.base_url}/chat/completions",
                headers=self._headers,
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionError(f"Translation request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return (content or "").strip()
