"""Terminal collaborators for `retrieval-srs study`."""

import asyncio
import logging
import shutil
import tempfile
import threading
from pathlib import Path

import typer

from retrieval_srs.domain.errors import AudioPlaybackError
from retrieval_srs.domain.ports import AnswerPlayer, CuePlayer, PromptSpeaker

logger = logging.getLogger(__name__)

# Players tried in order when no command is configured.
PLAYER_CANDIDATES = [
    ["afplay"],
    ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"],
    ["mpg123", "-q"],
    ["paplay"],
]


def detect_player_command() -> list[str] | None:
    for candidate in PLAYER_CANDIDATES:
        if shutil.which(candidate[0]):
            return candidate
    return None


async def prompt_line(text: str) -> str:
    """
    Read one line from the terminal without tying up the event loop.

    The read runs on a daemon thread, so cancelling the await (the session
    ended while the prompt was open) does not keep the process waiting for
    Enter on shutdown.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def _deliver(setter, value) -> None:
        if not future.done():
            setter(value)

    def _read() -> None:
        try:
            line = typer.prompt(text, default="", show_default=False)
        except Exception as e:
            setter, value = future.set_exception, e
        else:
            setter, value = future.set_result, line
        try:
            loop.call_soon_threadsafe(_deliver, setter, value)
        except RuntimeError:
            logger.debug("Prompt answered after the session loop closed")

    threading.Thread(target=_read, name="rating-prompt", daemon=True).start()
    return await future


class ConsolePromptSpeaker(PromptSpeaker):
    """Shows the English prompt instead of speaking it."""

    async def speak(self, text: str) -> None:
        typer.secho(f"\n  {text}", fg="cyan", bold=True)


class ConsoleAnswerPlayer(AnswerPlayer):
    """
    Plays answer audio through an external command-line player.

    Without a player the answer cannot be heard; the target text (if any) is
    shown by the caller and playback returns at once.
    """

    def __init__(self, command: list[str] | None = None):
        self.command = command

    async def play(self, audio: bytes) -> None:
        if not self.command:
            typer.echo("  (no audio player found; answer not played)")
            return

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "answer.mp3"
            path.write_bytes(audio)
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self.command,
                    str(path),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
                _, stderr = await proc.communicate()
            except OSError as e:
                raise AudioPlaybackError(f"{self.command[0]} failed to start: {e}") from e

            if proc.returncode != 0:
                raise AudioPlaybackError(
                    f"{self.command[0]} exited with {proc.returncode}: "
                    f"{stderr.decode('utf-8', errors='replace').strip()}"
                )


class ConsoleCuePlayer(CuePlayer):
    async def cue(self, text: str | None = None) -> None:
        if text is None:
            typer.echo("\a", nl=False)
        else:
            typer.secho(f"  [{text}]", fg="yellow")
