#!/usr/bin/env python3
"""
Voice Chat Client.

Single-shot CLI: sends one recorded audio file through the relay and
prints the assistant's reply. Designed for scripts and smoke tests.

Usage:
    python chat.py --help
    python chat.py --file question.wav
    python chat.py --file question.wav --save-audio replies/
    python chat.py --file question.wav --raw
    python chat.py --ping
"""

import asyncio
import json
import sys
from pathlib import Path

import click

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from voicerelay.backend.core.config import get_app_config, get_server_base_url
from voicerelay.backend.core.logging import get_logger, setup_logging


def validate_project_root() -> Path:
    """Validate that we're running from the project root."""
    if not (PROJECT_ROOT / ".project_root").exists():
        click.echo(
            click.style("Error: .project_root not found. Run from project root.", fg="red"),
            err=True,
        )
        sys.exit(1)
    return PROJECT_ROOT


def _reply_finished(conversation) -> bool:
    from voicerelay.client import conversation as msgs

    if not conversation.messages:
        return False
    last = conversation.messages[-1]
    if last.role == msgs.ASSISTANT and last.text:
        return True
    return last.role == msgs.SYSTEM and (
        last.text == msgs.DISCONNECTED or (last.text or "").startswith("Error:")
    )


async def send_recording(url: str, path: Path, timeout: float, save_audio: Path | None, raw: bool) -> int:
    """Send one recording and print the assistant's reply."""
    from voicerelay.client.audio import decode_pcm16_base64, encode_for_upstream, pcm16_to_wav
    from voicerelay.client.connection import RealtimeClient
    from voicerelay.client.conversation import Conversation

    audio_b64 = encode_for_upstream(path.read_bytes())
    if not audio_b64:
        click.echo(click.style(f"Error: could not decode {path}", fg="red"), err=True)
        return 1

    conversation = Conversation()
    finished = asyncio.Event()
    conversation.subscribe(lambda conv: finished.set() if _reply_finished(conv) else None)

    client = RealtimeClient(conversation, url=url, greet=False, source="cli")
    if not await client.connect():
        click.echo(click.style("Error: relay is not reachable.", fg="red"), err=True)
        click.echo("Start it with: python run.py --action server", err=True)
        return 1

    listener = asyncio.create_task(client.listen())
    await client.send_audio(audio_b64)

    try:
        await asyncio.wait_for(finished.wait(), timeout=timeout)
    except TimeoutError:
        click.echo(click.style(f"No reply within {timeout:.0f}s", fg="yellow"), err=True)
    finally:
        await client.close()
        await listener

    if raw:
        click.echo(json.dumps([vars(m) for m in conversation.messages], indent=2))

    exit_code = 0
    reply_count = 0
    for message in conversation.messages:
        if message.role == "assistant" and message.text:
            click.echo(message.text)
        elif message.role == "assistant" and message.audio and save_audio is not None:
            save_audio.mkdir(parents=True, exist_ok=True)
            target = save_audio / f"reply_{reply_count:02d}.wav"
            target.write_bytes(pcm16_to_wav(decode_pcm16_base64(message.audio)))
            reply_count += 1
            click.echo(click.style(f"Saved {target}", dim=True))
        elif message.role == "system" and (message.text or "").startswith("Error:"):
            click.echo(click.style(message.text, fg="red"), err=True)
            exit_code = 1

    return exit_code


async def ping_backend(base_url: str, timeout: float, raw: bool) -> int:
    """Readiness probe against the relay's HTTP side."""
    import httpx

    async with httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers={"X-Frontend-ID": "cli"},
    ) as client:
        try:
            response = await client.get("/health/ready")
        except httpx.ConnectError:
            click.echo(click.style("Error: Backend is not reachable.", fg="red"), err=True)
            return 1

    if raw:
        click.echo(json.dumps(response.json(), indent=2))
        return 0 if response.status_code == 200 else 1

    if response.status_code == 200:
        checks = response.json().get("checks", {})
        click.echo(click.style("healthy", fg="green"))
    elif response.status_code == 503:
        details = response.json().get("error", {}).get("details") or {}
        checks = details.get("checks", {})
        click.echo(click.style("not ready", fg="yellow"))
    else:
        click.echo(click.style(f"Backend returned {response.status_code}", fg="yellow"), err=True)
        return 1

    for comp, check in checks.items():
        status = check.get("status", "unknown")
        color = "green" if status == "healthy" else "red"
        error = f" ({check['error']})" if check.get("error") else ""
        click.echo(f"  {click.style('●', fg=color)} {comp}: {status}{error}")
    return 0 if response.status_code == 200 else 1


@click.command()
@click.option("--file", "-f", "audio_file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None, help="Recording to send (WAV, FLAC, OGG).")
@click.option("--ping", is_flag=True, help="Check relay readiness instead of sending audio.")
@click.option("--save-audio", type=click.Path(file_okay=False, path_type=Path), default=None, help="Directory for the assistant's audio replies.")
@click.option("--timeout", default=60.0, type=float, help="Seconds to wait for the reply.")
@click.option("--url", default=None, help="Relay socket URL (overrides config).")
@click.option("--raw", is_flag=True, help="Output raw JSON.")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging.")
def main(audio_file: Path | None, ping: bool, save_audio: Path | None, timeout: float, url: str | None, raw: bool, debug: bool) -> None:
    """
    Send a recording to the voice assistant through the relay.

    Examples:

        python chat.py --file question.wav

        python chat.py -f question.wav --save-audio replies/

        python chat.py --ping
    """
    validate_project_root()

    if debug:
        setup_logging(level="DEBUG", format_type="console")
    else:
        setup_logging(level="WARNING", format_type="console")
    logger = get_logger(__name__)

    if not audio_file and not ping:
        click.echo("Error: provide --file or --ping.", err=True)
        click.echo("Run 'python chat.py --help' for usage.", err=True)
        sys.exit(1)

    try:
        base_url, http_timeout = get_server_base_url()
        socket_url = url or get_app_config().realtime.client.url
    except (FileNotFoundError, ValueError, RuntimeError) as e:
        click.echo(click.style(f"Error loading config: {e}", fg="red"), err=True)
        sys.exit(1)

    logger.debug("Chat client starting", extra={"url": socket_url, "ping": ping})

    if ping:
        exit_code = asyncio.run(ping_backend(base_url, http_timeout, raw))
    else:
        exit_code = asyncio.run(send_recording(socket_url, audio_file, timeout, save_audio, raw))

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
