"""retrieval-srs CLI: library management, study sessions and the local server."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer

from retrieval_srs.application.config import AppConfig, resolve_config
from retrieval_srs.application.factory import get_storage, get_transcription_service
from retrieval_srs.application.study_service import StudyService
from retrieval_srs.consts import VERSION
from retrieval_srs.domain.errors import (
    ImportFormatError,
    InvalidSettingsError,
    NotFoundError,
    StorageError,
    TranscriptionError,
)
from retrieval_srs.domain.models import Sentence, SessionMode

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="retrieval-srs: audio retrieval practice with Leitner scheduling.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

settings_app = typer.Typer(help="Show or change learning settings.", no_args_is_help=True)
app.add_typer(settings_app, name="settings")

config_app = typer.Typer(help="Inspect runtime configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
    data_dir: Annotated[
        Path | None, typer.Option(help="Data directory (database lives here).")
    ] = None,
):
    """Global settings for retrieval-srs."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["data_dir"] = data_dir

    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.getLogger().setLevel(level)


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.obj or {}
    return resolve_config({"data_dir": obj.get("data_dir"), "verbose": obj.get("verbose") or None})


def _service(config: AppConfig) -> StudyService:
    return StudyService(get_storage(config))


def _sentence_line(s: Sentence) -> str:
    state = s.scheduling_state
    lock = " [locked]" if state.relearn_lock_until_next_session else ""
    return (
        f"{s.id}  box {state.box_level}  due {state.due_at:%Y-%m-%d %H:%M}{lock}  "
        f"{s.english_translation_text}"
    )


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


@app.command()
def init(
    ctx: typer.Context,
    language: Annotated[str | None, typer.Option(help="ISO 639-1 code of the language you study.")] = None,
    reset_time: Annotated[str | None, typer.Option(help="Daily reset time, HH:MM.")] = None,
    timezone: Annotated[str | None, typer.Option(help="IANA timezone for day boundaries.")] = None,
):
    """Create the data directory and save initial settings."""
    config = _config(ctx)
    config.data_dir.mkdir(parents=True, exist_ok=True)

    changes = {
        "current_language": language,
        "daily_reset_time": reset_time,
        "timezone": timezone,
        "onboarding_completed": True,
    }

    async def run():
        service = _service(config)
        return await service.save_settings({k: v for k, v in changes.items() if v is not None})

    try:
        settings = asyncio.run(run())
    except InvalidSettingsError as e:
        typer.secho(f"Invalid settings: {e}", fg="red")
        raise typer.Exit(1) from e

    typer.secho(f"Initialized {config.database_path}", fg="green")
    typer.echo(f"Language: {settings.current_language}  Reset: {settings.daily_reset_time}")


@app.command()
def version():
    """Print the version."""
    typer.echo(VERSION)


# ---------------------------------------------------------------------------
# Config / settings subgroups
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {
        k: str(v) if isinstance(v, Path) else v
        for k, v in config.model_dump(mode="json").items()
        if k != "openai_api_key"
    }
    d["openai_api_key"] = "***" if config.openai_api_key else None
    typer.echo(json.dumps(d, indent=2))


@settings_app.command("show")
def settings_show(ctx: typer.Context):
    """Display the stored learning settings."""
    from retrieval_srs.infrastructure.serialization import encode_settings

    config = _config(ctx)
    settings = asyncio.run(_service(config).get_settings())
    typer.echo(json.dumps(encode_settings(settings), indent=2))


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    reset_time: Annotated[str | None, typer.Option(help="Daily reset time, HH:MM.")] = None,
    timezone: Annotated[str | None, typer.Option(help="IANA timezone for day boundaries.")] = None,
    intervals: Annotated[
        str | None, typer.Option(help="Comma-separated box intervals in days, e.g. 1,2,4,8,16,30.")
    ] = None,
    extra_seconds: Annotated[
        float | None, typer.Option(help="Seconds added to every response window.")
    ] = None,
    language: Annotated[str | None, typer.Option(help="Language being practiced.")] = None,
):
    """Change learning settings. Sessions already running keep their snapshot."""
    changes: dict = {}
    if reset_time is not None:
        changes["daily_reset_time"] = reset_time
    if timezone is not None:
        changes["timezone"] = timezone
    if intervals is not None:
        try:
            changes["box_intervals"] = [int(x) for x in intervals.split(",") if x.strip()]
        except ValueError as e:
            typer.secho(f"Invalid intervals: {intervals}", fg="red")
            raise typer.Exit(1) from e
    if extra_seconds is not None:
        changes["extra_seconds"] = extra_seconds
    if language is not None:
        changes["current_language"] = language

    if not changes:
        typer.secho("Nothing to change.", fg="yellow")
        raise typer.Exit()

    config = _config(ctx)
    try:
        asyncio.run(_service(config).save_settings(changes))
    except InvalidSettingsError as e:
        typer.secho(f"Invalid settings: {e}", fg="red")
        raise typer.Exit(1) from e

    typer.secho(f"Updated: {', '.join(sorted(changes))}", fg="green")


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------


@app.command()
def add(
    ctx: typer.Context,
    english: Annotated[str, typer.Argument(help="English translation (the prompt).")],
    audio: Annotated[Path, typer.Argument(help="MP3 recording of the target sentence.", exists=True)],
    target: Annotated[str | None, typer.Option(help="Target-language text.")] = None,
    language: Annotated[str | None, typer.Option(help="Language code. Defaults to settings.")] = None,
    tags: Annotated[str | None, typer.Option(help="';'-separated tags.")] = None,
    eligible: Annotated[
        bool, typer.Option("--eligible", help="Add straight to the library instead of the inbox.")
    ] = False,
):
    """Add a sentence with its answer audio."""
    from retrieval_srs.application.importer import AudioFileInfo, validate_audio_file
    from retrieval_srs.application.utils.text import find_duplicate_matches, has_multiple_sentences

    data = audio.read_bytes()
    check = validate_audio_file(AudioFileInfo(filename=audio.name, size=len(data)))
    if not check.valid:
        typer.secho(check.error, fg="red")
        raise typer.Exit(1)

    for label, text in (("English", english), ("Target", target)):
        if has_multiple_sentences(text):
            typer.secho(
                f"{label} text looks like more than one sentence; consider adding them separately.",
                fg="yellow",
            )

    config = _config(ctx)

    async def run():
        service = _service(config)
        existing = await service.get_sentences(language)
        for match in find_duplicate_matches(english, existing):
            typer.secho(
                f"Possible duplicate ({match.similarity:.0%}, {match.match_type}): "
                f"{match.sentence.english_translation_text}",
                fg="yellow",
            )
        return await service.add_sentence(
            english_translation_text=english,
            audio=data,
            filename=audio.name,
            language_code=language,
            target_text=target,
            tags=[t.strip() for t in tags.split(";") if t.strip()] if tags else None,
            eligible=eligible,
        )

    sentence = asyncio.run(run())
    where = "library" if sentence.is_eligible else "inbox"
    typer.secho(f"Added {sentence.id} to the {where}.", fg="green")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    inbox: Annotated[bool, typer.Option("--inbox", help="Only sentences not yet in the library.")] = False,
    library: Annotated[bool, typer.Option("--library", help="Only eligible sentences.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List sentences of the current language."""
    from retrieval_srs.infrastructure.serialization import encode_sentence

    config = _config(ctx)
    sentences = asyncio.run(_service(config).get_sentences())
    if inbox:
        sentences = [s for s in sentences if not s.is_eligible]
    if library:
        sentences = [s for s in sentences if s.is_eligible]

    if json_output:
        typer.echo(json.dumps([encode_sentence(s) for s in sentences], indent=2, ensure_ascii=False))
        return

    if not sentences:
        typer.secho("No sentences.", fg="yellow")
        return
    for s in sentences:
        marker = " " if s.is_eligible else "*"
        typer.echo(f"{marker} {_sentence_line(s)}")


@app.command()
def eligible(
    ctx: typer.Context,
    sentence_ids: Annotated[list[str], typer.Argument(help="Sentence IDs.")],
    remove: Annotated[bool, typer.Option("--remove", help="Move back to the inbox.")] = False,
):
    """Move sentences from the inbox into the library (or back)."""
    config = _config(ctx)

    async def run():
        service = _service(config)
        for sid in sentence_ids:
            await service.set_eligibility(sid, not remove)

    try:
        asyncio.run(run())
    except NotFoundError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(1) from e

    typer.secho(f"Updated {len(sentence_ids)} sentence(s).", fg="green")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="CSV, JSON or YAML file.", exists=True)],
    audio_dir: Annotated[
        Path | None, typer.Option(help="Directory with MP3 files named by sentence id.")
    ] = None,
    eligible: Annotated[
        bool, typer.Option("--eligible", help="Import straight into the library.")
    ] = False,
):
    """Import sentences and match them with audio files."""
    from retrieval_srs.application.importer import (
        AudioFileInfo,
        match_audio_to_sentences,
        parse_import_file,
        validate_audio_file,
    )
    from retrieval_srs.domain.constants import AUDIO_EXTENSIONS
    from retrieval_srs.domain.models import generate_id

    try:
        items = parse_import_file(path)
    except ImportFormatError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(1) from e

    for item in items:
        if not item.id:
            item.id = generate_id()

    audio_dir = audio_dir or path.parent
    files = {
        f.name: f
        for f in sorted(audio_dir.iterdir())
        if f.is_file() and f.suffix.lower() in AUDIO_EXTENSIONS
    }
    infos = []
    for f in files.values():
        info = AudioFileInfo(filename=f.name, size=f.stat().st_size)
        check = validate_audio_file(info)
        if check.valid:
            infos.append(info)
        else:
            typer.secho(f"{f.name}: {check.error}", fg="yellow")

    mapping = match_audio_to_sentences(infos, items)
    audio_by_id = {sid: (name, files[name].read_bytes()) for sid, name in mapping.items()}

    config = _config(ctx)
    created = asyncio.run(_service(config).import_sentences(items, audio_by_id, eligible=eligible))

    typer.echo(f"Parsed: {len(items)}  Imported: {len(created)}")
    missing = len(items) - len(created)
    if missing:
        typer.secho(f"Without audio (skipped): {missing}", fg="yellow")


@app.command()
def due(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show sentences due now."""
    config = _config(ctx)
    sentences = asyncio.run(_service(config).due_now())

    if json_output:
        typer.echo(json.dumps([s.id for s in sentences], indent=2))
        return

    typer.echo(f"Due now: {len(sentences)}")
    for s in sentences:
        typer.echo(f"  {_sentence_line(s)}")


@app.command()
def stats(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Library overview: counts, due, stabilized and streak."""
    import dataclasses

    config = _config(ctx)
    overview = asyncio.run(_service(config).library_overview())

    if json_output:
        typer.echo(json.dumps(dataclasses.asdict(overview), indent=2))
        return

    typer.echo(f"Language: {overview.language_code}")
    typer.echo(f"Sentences: {overview.total}  Library: {overview.eligible}  Inbox: {overview.inbox}")
    typer.echo(f"Due now: {overview.due_now}  Due later today: {overview.due_today}")
    typer.echo(f"Stabilized: {overview.stabilized}")
    typer.secho(f"Streak: {overview.streak} day(s)", fg="green" if overview.streak else None)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def _print_summary(summary) -> None:
    from retrieval_srs.application.session.summary import format_duration

    if summary.is_partial:
        typer.secho("Session was stopped early (partial completion)", fg="yellow")
    typer.echo(f"Items reviewed: {summary.items_reviewed}")
    typer.echo(
        f"Miss: {summary.miss_count}  Repeat: {summary.repeat_count}  "
        f"Next: {summary.next_count}  Easy: {summary.easy_count}"
    )
    typer.echo(f"Time: {format_duration(summary.elapsed_seconds)}")
    typer.echo(f"Average per item: {format_duration(summary.avg_seconds_per_item)}")
    typer.echo(f"Projected per 10 items: {format_duration(summary.projected_seconds_per_10)}")


@app.command()
def study(
    ctx: typer.Context,
    minutes: Annotated[int | None, typer.Option(help="Session length in minutes.")] = None,
    mode: Annotated[SessionMode | None, typer.Option(help="DueOnly or DueThenExtra.")] = None,
    player: Annotated[
        str | None, typer.Option(help="Audio player command, e.g. 'mpg123 -q'. Auto-detected.")
    ] = None,
):
    """[bold green]Study[/bold green]: run a timed session in the terminal.

    Each item shows the English prompt, waits for you to say the sentence
    aloud, plays the answer and asks for a rating. Interrupting (Ctrl-C)
    leaves the session resumable.
    """
    from retrieval_srs.application.session.driver import SessionDriver
    from retrieval_srs.application.session.rating_input import parse_typed_rating
    from retrieval_srs.interface.console import (
        ConsoleAnswerPlayer,
        ConsoleCuePlayer,
        ConsolePromptSpeaker,
        detect_player_command,
        prompt_line,
    )

    config = _config(ctx)
    command = player.split() if player else detect_player_command()

    async def run():
        service = _service(config)
        session, resumed = await service.start_or_resume_session(
            minutes or config.default_session_minutes,
            mode or config.session_mode,
        )
        if resumed:
            typer.secho(
                f"Resuming session started {session.started_at:%Y-%m-%d %H:%M} "
                f"({session.state.elapsed_time_seconds:.0f}s done)",
                fg="yellow",
            )

        due_queue, extra_queue = await service.build_queues(session)
        typer.echo(f"Due: {len(due_queue)}  Extra: {len(extra_queue)}  Target: {session.target_minutes} min")

        driver: SessionDriver

        async def ask_rating(item):
            if item.sentence.target_text:
                typer.secho(f"  {item.sentence.target_text}", fg="magenta")
            while driver.is_capturing_rating and not driver.is_finished:
                try:
                    key = await prompt_line("  Rate [m]iss [r]epeat [n]ext [e]asy, [q]uit")
                except asyncio.CancelledError:
                    typer.secho("\n  Session ended, no rating needed.", fg="yellow")
                    raise
                if key.strip().lower() in ("q", "quit"):
                    driver.request_end("quit")
                    return
                rating = parse_typed_rating(key)
                if rating is None:
                    typer.secho("  Not a rating.", fg="red")
                    continue
                driver.submit_rating(rating)
                return

        driver = SessionDriver(
            service=service,
            session=session,
            due_queue=due_queue,
            extra_queue=extra_queue,
            speaker=ConsolePromptSpeaker(),
            player=ConsoleAnswerPlayer(command),
            cues=ConsoleCuePlayer(),
            on_rating_request=ask_rating,
            poll_interval=config.poll_interval_seconds,
        )
        ended = await driver.run()
        if driver.skipped:
            typer.secho(f"Skipped {len(driver.skipped)} item(s) without playable audio.", fg="yellow")
        return await service.session_summary(ended.id)

    summary = asyncio.run(run())
    typer.secho("\nSession complete.", fg="green")
    _print_summary(summary)


@app.command()
def summary(
    ctx: typer.Context,
    session_id: Annotated[str | None, typer.Argument(help="Session ID. Defaults to the latest.")] = None,
):
    """Show the summary of a session."""
    config = _config(ctx)

    async def run():
        service = _service(config)
        sid = session_id
        if sid is None:
            sessions = await service.storage.get_sessions()
            if not sessions:
                return None
            sid = sessions[-1].id
        return await service.session_summary(sid)

    try:
        result = asyncio.run(run())
    except NotFoundError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(1) from e

    if result is None:
        typer.secho("No sessions yet.", fg="yellow")
        return
    _print_summary(result)


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


@app.command()
def export(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Destination JSON file.")],
    no_audio: Annotated[bool, typer.Option("--no-audio", help="Leave out audio blobs.")] = False,
):
    """Export everything to a JSON backup."""
    from retrieval_srs.infrastructure.serialization import encode_bundle

    config = _config(ctx)
    bundle = asyncio.run(get_storage(config).export_all())
    path.write_text(
        json.dumps(encode_bundle(bundle, include_audio=not no_audio), ensure_ascii=False),
        encoding="utf-8",
    )
    typer.secho(
        f"Exported {len(bundle.sentences)} sentences, {len(bundle.sessions)} sessions to {path}",
        fg="green",
    )


@app.command()
def restore(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Backup JSON file.", exists=True)],
    force: Annotated[bool, typer.Option("--force", "-f", help="Do not ask for confirmation.")] = False,
):
    """Replace all data with a JSON backup."""
    from retrieval_srs.infrastructure.serialization import decode_bundle

    if not force and not typer.confirm("This deletes all current data. Continue?"):
        raise typer.Exit(1)

    try:
        bundle = decode_bundle(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, KeyError) as e:
        typer.secho(f"Invalid backup file: {e}", fg="red")
        raise typer.Exit(1) from e

    config = _config(ctx)
    try:
        asyncio.run(get_storage(config).import_all(bundle))
    except StorageError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(1) from e
    typer.secho(f"Restored {len(bundle.sentences)} sentences.", fg="green")


# ---------------------------------------------------------------------------
# Transcription / server
# ---------------------------------------------------------------------------


@app.command()
def transcribe(
    ctx: typer.Context,
    audio: Annotated[Path, typer.Argument(help="Recording to transcribe.", exists=True)],
    language: Annotated[str | None, typer.Option(help="Expected language code.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Transcribe a recording into sentences with English translations."""
    from retrieval_srs.application.utils.text import filter_valid_segments

    config = _config(ctx)

    async def run():
        service = get_transcription_service(config)
        try:
            return await service.transcribe(audio.read_bytes(), audio.name, language)
        finally:
            await service.close()

    try:
        result = asyncio.run(run())
    except TranscriptionError as e:
        typer.secho(f"Transcription failed: {e}", fg="red")
        typer.echo("Add sentences manually with 'retrieval-srs add'.")
        raise typer.Exit(1) from e

    segments = filter_valid_segments(result.segments)
    if json_output:
        typer.echo(
            json.dumps(
                {
                    "detected_language": result.detected_language,
                    "language_match": result.language_match,
                    "duration": result.duration,
                    "segments": [
                        {
                            "start": s.start,
                            "end": s.end,
                            "original_text": s.original_text,
                            "english_text": s.english_text,
                        }
                        for s in segments
                    ],
                },
                indent=2,
                ensure_ascii=False,
            )
        )
        return

    if not result.language_match:
        typer.secho(
            f"Detected language '{result.detected_language}' differs from '{language}'.",
            fg="yellow",
        )
    for s in segments:
        typer.echo(f"[{s.start:6.1f}-{s.end:6.1f}] {s.original_text}")
        typer.secho(f"                {s.english_text or '(no translation)'}", fg="cyan")


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8778,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the local HTTP API."""
    import uvicorn

    uvicorn.run("retrieval_srs.server:app", host=host, port=port, reload=reload)
