"""
Voice Assistant TUI: Terminal Interface for the Relay.

Records from the microphone, sends the clip through the backend relay and
plays the assistant's spoken reply as it streams in.

Usage:
    python tui.py
    python tui.py --debug
    python tui.py --url ws://localhost:4000/ws-client
"""

from __future__ import annotations

import sys

from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.widgets import Button, Footer, Header, RichLog, Static

from voicerelay.backend.core.logging import setup_logging
from voicerelay.client import conversation as msgs
from voicerelay.client.audio import decode_pcm16_base64, pcm16_duration_seconds
from voicerelay.client.connection import RealtimeClient
from voicerelay.client.conversation import Conversation, Message
from voicerelay.client.recorder import AudioPlayer, MicrophoneUnavailableError, Recorder

ROLE_STYLES = {
    msgs.USER: ("You", "bold cyan"),
    msgs.ASSISTANT: ("Assistant", "bold green"),
    msgs.SYSTEM: ("System", "dim"),
}


class StatusLine(Static):
    """Recording indicator."""

    recording: reactive[bool] = reactive(False)

    def render(self) -> Text:
        if self.recording:
            return Text.from_markup("[bold red]● Recording...[/]")
        return Text.from_markup("[dim]Idle[/]")


class ChatLog(RichLog):
    """Message list, redrawn from the conversation on every change."""


def format_message(message: Message) -> Text:
    label, style = ROLE_STYLES.get(message.role, (message.role, ""))
    line = Text.from_markup(f"[dim]{message.timestamp}[/] ")
    line.append(f"{label}: ", style=style)
    if message.text:
        line.append(message.text)
    if message.audio:
        try:
            seconds = pcm16_duration_seconds(len(decode_pcm16_base64(message.audio)))
        except ValueError:
            seconds = 0.0
        line.append(f"[audio {seconds:.1f}s]", style="magenta")
    return line


class VoiceTUI(App):
    """Voice assistant client for the realtime relay."""

    TITLE = "Voice Assistant"
    SUB_TITLE = "Realtime Relay Client"

    CSS = """
    Screen {
        layout: vertical;
    }

    #chat-container {
        height: 1fr;
    }

    ChatLog {
        height: 1fr;
        border: solid $primary;
        padding: 0 1;
        scrollbar-gutter: stable;
    }

    #controls {
        dock: bottom;
        height: 3;
        padding: 0 1;
    }

    #record-button {
        width: 24;
    }

    StatusLine {
        width: 1fr;
        content-align: left middle;
        padding: 1 2;
    }
    """

    BINDINGS = [
        Binding("space", "toggle_recording", "Record"),
        Binding("r", "replay", "Replay"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, debug: bool = False, url: str | None = None) -> None:
        super().__init__()
        self.debug_logging = debug
        self.player = AudioPlayer()
        self.recorder = Recorder()
        self.conversation = Conversation(autoplay=self.player.play_base64)
        self.conversation.subscribe(self._on_conversation_changed)
        self.client = RealtimeClient(self.conversation, url=url, source="tui")

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="chat-container"):
            yield ChatLog(id="chat-log", markup=True, wrap=True)
        with Horizontal(id="controls"):
            yield Button("Start Recording", id="record-button", variant="primary")
            yield StatusLine()
        yield Footer()

    def on_mount(self) -> None:
        self._run_connection()

    @work(exclusive=True, group="connection")
    async def _run_connection(self) -> None:
        if await self.client.connect():
            await self.client.listen()

    def _on_conversation_changed(self, conversation: Conversation) -> None:
        chat_log = self.query_one("#chat-log", ChatLog)
        chat_log.clear()
        for message in conversation.messages:
            chat_log.write(format_message(message))

    @on(Button.Pressed, "#record-button")
    def on_record_pressed(self, event: Button.Pressed) -> None:
        self.action_toggle_recording()

    def action_toggle_recording(self) -> None:
        if self.recorder.recording:
            self._stop_recording()
        else:
            self._start_recording()

    def _start_recording(self) -> None:
        try:
            self.recorder.start()
        except MicrophoneUnavailableError:
            self.conversation.add_system(msgs.MICROPHONE_UNAVAILABLE)
            return
        self.player.stop()
        self._set_recording(True)
        self.conversation.add_system(msgs.RECORDING_STARTED)

    def _stop_recording(self) -> None:
        samples, sample_rate = self.recorder.stop()
        self._set_recording(False)
        self._send_recording(samples, sample_rate)

    @work(exclusive=False, group="send")
    async def _send_recording(self, samples, sample_rate: int) -> None:
        await self.client.process_recording(samples, sample_rate)

    def _set_recording(self, recording: bool) -> None:
        self.query_one(StatusLine).recording = recording
        self.query_one("#record-button", Button).label = (
            "Stop Recording" if recording else "Start Recording"
        )

    def action_replay(self) -> None:
        audio = self.conversation.last_audio
        if audio:
            self.player.stop()
            self.player.play_base64(audio)

    async def action_quit(self) -> None:
        if self.recorder.recording:
            self.recorder.stop()
        await self.client.close()
        self.player.close()
        self.exit()


def main() -> None:
    debug = "--debug" in sys.argv
    url = None
    if "--url" in sys.argv:
        index = sys.argv.index("--url")
        if index + 1 < len(sys.argv):
            url = sys.argv[index + 1]

    # Console output would corrupt the Textual screen; log to the JSONL file only.
    setup_logging(level="DEBUG" if debug else None, enable_console=False, enable_file_logging=True)
    app = VoiceTUI(debug=debug, url=url)
    app.run()


if __name__ == "__main__":
    main()
