"""
Bulk sentence import: CSV, JSON and YAML payloads plus loose audio files.

Parsing is pure. Persisting the parsed rows is StudyService.import_sentences.
"""

import csv
import io
import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml  # type: ignore
import yaml.constructor

from retrieval_srs.domain.constants import (
    AUDIO_BYTES_PER_SECOND_ESTIMATE,
    AUDIO_EXTENSIONS,
    DEFAULT_AUDIO_DURATION_SECONDS,
    DEFAULT_LANGUAGE,
    MAX_AUDIO_FILE_SIZE,
)
from retrieval_srs.domain.errors import ImportFormatError

logger = logging.getLogger(__name__)

# Accepted column / key names, first match wins.
ENGLISH_KEYS = ("english_translation_text", "english", "translation")
TARGET_KEYS = ("target_text", "target", "text")
LANGUAGE_KEYS = ("language_code", "language")


@dataclass
class ImportSentenceData:
    english_translation_text: str
    target_text: str | None = None
    language_code: str = DEFAULT_LANGUAGE
    tags: list[str] | None = None
    id: str | None = None


@dataclass(frozen=True)
class AudioFileInfo:
    filename: str
    size: int
    sentence_id: str | None = None
    content_type: str | None = None


@dataclass
class AudioValidation:
    valid: bool
    error: str | None = None


def _first(row: dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def _split_tags(value: Any) -> list[str] | None:
    if value is None or value == "":
        return None
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(";") if t.strip()]


def _row_to_data(row: dict[str, Any]) -> ImportSentenceData | None:
    english = _first(row, ENGLISH_KEYS)
    if not english:
        return None

    target = _first(row, TARGET_KEYS)
    sentence_id = row.get("id")
    return ImportSentenceData(
        english_translation_text=str(english).strip(),
        target_text=str(target).strip() if target else None,
        language_code=str(_first(row, LANGUAGE_KEYS) or DEFAULT_LANGUAGE).strip(),
        tags=_split_tags(row.get("tags")),
        id=str(sentence_id).strip() if sentence_id else None,
    )


def parse_csv(csv_text: str) -> list[ImportSentenceData]:
    """
    Parse CSV with a header row.

    Headers are case-insensitive; tags are ';'-separated. Rows without an
    English translation are dropped.
    """
    reader = csv.reader(io.StringIO(csv_text.lstrip("\ufeff")))
    rows = [r for r in reader if any(cell.strip() for cell in r)]
    if not rows:
        return []

    headers = [h.strip().lower() for h in rows[0]]
    data: list[ImportSentenceData] = []
    for values in rows[1:]:
        row = {h: (values[i].strip() if i < len(values) else "") for i, h in enumerate(headers)}
        item = _row_to_data(row)
        if item is not None:
            data.append(item)
    return data


def _parse_records(records: Any) -> list[ImportSentenceData]:
    if isinstance(records, dict):
        records = records.get("sentences", [])
    if not isinstance(records, list):
        return []

    data = []
    for record in records:
        if not isinstance(record, dict):
            continue
        item = _row_to_data({str(k).lower(): v for k, v in record.items()})
        if item is not None:
            data.append(item)
    return data


def parse_json(json_text: str) -> list[ImportSentenceData]:
    """
    Parse a JSON array of sentence objects (or {"sentences": [...]}).

    Raises:
        ImportFormatError: If the text is not valid JSON.
    """
    try:
        records = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Invalid JSON format: {e}") from e
    return _parse_records(records)


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe YAML loader that rejects duplicate keys."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    None, None, f"found duplicate key '{key}'", key_node.start_mark
                )
            seen.add(key)
        return super().construct_mapping(node, deep)


def parse_yaml(yaml_text: str) -> list[ImportSentenceData]:
    """
    Parse a YAML list of sentence mappings (or a mapping with a sentences key).

    Raises:
        ImportFormatError: On YAML syntax errors or duplicate keys.
    """
    text = yaml_text.lstrip("\ufeff")
    if "\t" in text:
        text = text.replace("\t", "  ")
    try:
        records = yaml.load(text, Loader=UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ImportFormatError(f"Invalid YAML format: {e}") from e
    return _parse_records(records)


PARSERS = {
    ".csv": parse_csv,
    ".json": parse_json,
    ".yaml": parse_yaml,
    ".yml": parse_yaml,
}


def parse_import_file(path: Path) -> list[ImportSentenceData]:
    """Dispatch on file extension."""
    parser = PARSERS.get(path.suffix.lower())
    if parser is None:
        raise ImportFormatError(
            f"Unsupported import format: {path.suffix}. Expected one of {', '.join(PARSERS)}."
        )
    return parser(path.read_text(encoding="utf-8"))


def validate_audio_file(info: AudioFileInfo) -> AudioValidation:
    """Accept MP3 files up to 5 MB."""
    is_mpeg = bool(info.content_type and "audio/mpeg" in info.content_type)
    if not is_mpeg and not info.filename.lower().endswith(".mp3"):
        return AudioValidation(
            valid=False,
            error=f"Invalid audio format: {info.content_type or info.filename}. Expected MP3.",
        )

    if info.size > MAX_AUDIO_FILE_SIZE:
        return AudioValidation(
            valid=False,
            error=(
                f"Audio file too large: {info.size / 1024 / 1024:.2f}MB. "
                "Maximum size is 5MB."
            ),
        )

    return AudioValidation(valid=True)


_EXTENSION_RE = re.compile(
    "(" + "|".join(re.escape(ext) for ext in AUDIO_EXTENSIONS) + ")$", re.IGNORECASE
)


def match_audio_to_sentences(
    audio_files: Iterable[AudioFileInfo],
    sentences: Sequence[ImportSentenceData],
) -> dict[str, str]:
    """
    Pair audio files with imported sentences.

    An explicit sentence_id on the file wins. Otherwise the filename stem must
    equal a sentence id or appear in its English text (case-insensitive).

    Returns:
        Mapping of sentence id to audio filename. Sentences without an id
        cannot be matched.
    """
    mapping: dict[str, str] = {}

    for audio in audio_files:
        if audio.sentence_id:
            match = next((s for s in sentences if s.id == audio.sentence_id), None)
            if match is not None and match.id:
                mapping[match.id] = audio.filename
                continue

        stem = _EXTENSION_RE.sub("", audio.filename)
        for sentence in sentences:
            if not sentence.id:
                continue
            if sentence.id == stem or stem.lower() in sentence.english_translation_text.lower():
                mapping[sentence.id] = audio.filename
                break
        else:
            logger.debug(f"No sentence matched audio file {audio.filename}")

    return mapping


def estimate_audio_duration(size_bytes: int) -> float:
    """Rough duration from blob size, never below the 3 s default."""
    return max(DEFAULT_AUDIO_DURATION_SECONDS, size_bytes / AUDIO_BYTES_PER_SECOND_ESTIMATE)
