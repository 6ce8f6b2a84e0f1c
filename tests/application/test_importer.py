import pytest

from retrieval_srs.application.importer import (
    AudioFileInfo,
    ImportSentenceData,
    estimate_audio_duration,
    match_audio_to_sentences,
    parse_csv,
    parse_import_file,
    parse_json,
    parse_yaml,
    validate_audio_file,
)
from retrieval_srs.domain.errors import ImportFormatError


def test_parse_csv_with_aliases_and_tags():
    text = (
        "\ufeffID,English,Target,Language,Tags\n"
        "s1,I would like a coffee.,Kérek egy kávét.,hu,cafe; food\n"
        ",Good morning,,,\n"
        "s3,,Szia,hu,\n"
    )

    rows = parse_csv(text)

    assert len(rows) == 2
    assert rows[0] == ImportSentenceData(
        english_translation_text="I would like a coffee.",
        target_text="Kérek egy kávét.",
        language_code="hu",
        tags=["cafe", "food"],
        id="s1",
    )
    assert rows[1].id is None
    assert rows[1].target_text is None
    assert rows[1].tags is None


def test_parse_csv_empty():
    assert parse_csv("") == []


def test_parse_json_accepts_wrapped_list():
    rows = parse_json('{"sentences": [{"english": "Thank you", "tags": ["polite"]}, "junk"]}')

    assert [r.english_translation_text for r in rows] == ["Thank you"]
    assert rows[0].tags == ["polite"]


def test_parse_json_rejects_bad_syntax():
    with pytest.raises(ImportFormatError, match="Invalid JSON"):
        parse_json("[{")


def test_parse_yaml_list():
    text = """
- id: s1
  english: Where is the station?
  target: Hol van az állomás?
- english: Cheers
  language: de
"""
    rows = parse_yaml(text)

    assert [r.id for r in rows] == ["s1", None]
    assert rows[1].language_code == "de"


def test_parse_yaml_rejects_duplicate_keys():
    with pytest.raises(ImportFormatError):
        parse_yaml("- english: one\n  english: two\n")


def test_parse_import_file_dispatches_on_suffix(tmp_path):
    path = tmp_path / "deck.yml"
    path.write_text("- english: Hello\n", encoding="utf-8")

    assert [r.english_translation_text for r in parse_import_file(path)] == ["Hello"]


def test_parse_import_file_unknown_suffix(tmp_path):
    path = tmp_path / "deck.txt"
    path.write_text("Hello", encoding="utf-8")

    with pytest.raises(ImportFormatError, match="Unsupported"):
        parse_import_file(path)


def test_validate_audio_file():
    assert validate_audio_file(AudioFileInfo("clip.MP3", 1000)).valid
    assert validate_audio_file(AudioFileInfo("blob", 1000, content_type="audio/mpeg")).valid

    wrong = validate_audio_file(AudioFileInfo("clip.wav", 1000))
    assert not wrong.valid
    assert "Expected MP3" in wrong.error

    big = validate_audio_file(AudioFileInfo("clip.mp3", 6 * 1024 * 1024))
    assert not big.valid
    assert "too large" in big.error


def test_match_audio_by_id_and_stem():
    sentences = [
        ImportSentenceData("Good morning", id="s1"),
        ImportSentenceData("See you tomorrow", id="s2"),
        ImportSentenceData("No id here"),
    ]
    files = [
        AudioFileInfo("s1.mp3", 100),
        AudioFileInfo("whatever.mp3", 100, sentence_id="s2"),
        AudioFileInfo("no id here.mp3", 100),
    ]

    assert match_audio_to_sentences(files, sentences) == {"s1": "s1.mp3", "s2": "whatever.mp3"}


def test_estimate_audio_duration_has_floor():
    assert estimate_audio_duration(0) == 3.0
    assert estimate_audio_duration(16384 * 10) == 10.0
