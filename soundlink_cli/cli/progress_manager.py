"""
Manages a Rich Live display for batch runs: overall two-phase progress with
ETA, session counters, and the interactive manual-link prompt.
"""

import asyncio
import logging
import threading
from datetime import datetime

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from soundlink_cli.core.link_resolver import ManualLinkBroker
from soundlink_cli.models.track import (
    ManualLinkRequest,
    Phase,
    ProgressUpdate,
    TrimProgress,
)

log = logging.getLogger("soundlink_cli")

PHASE_LABELS = {
    Phase.RESOLVE: "🔗 Finding links",
    Phase.DOWNLOAD: "📥 Downloading",
}


class ProgressManager:
    """
    Receives progress events from the orchestrator and the silence-trim job
    and renders them. Status lines go through the log so they scroll above
    the live panel.
    """

    def __init__(self, console: Console, interactive: bool = True):
        self.console = console
        self.interactive = interactive
        self.broker: ManualLinkBroker | None = None

        self.overall_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TextColumn("[cyan]{task.fields[eta]}"),
            console=console,
        )
        self._overall_task_id: TaskID | None = None
        self._trim_task_id: TaskID | None = None
        self._live: Live | None = None
        self._prompt_lock = asyncio.Lock()
        self._prompt_tasks: set[asyncio.Task] = set()
        self._answer: asyncio.Future | None = None

        self._stats = {
            "start_time": None,
            "phase": None,
            "total_tracks": 0,
            "status": "",
            "manual_requests": 0,
        }

    def attach_broker(self, broker: ManualLinkBroker) -> None:
        self.broker = broker

    def _generate_header(self) -> Text:
        header_text = Text()
        header_text.append("🎵 SoundLink ", style="bold cyan")
        if self._stats["start_time"]:
            elapsed = (datetime.now() - self._stats["start_time"]).total_seconds()
            header_text.append("│ ", style="dim")
            header_text.append(
                f"Session: {int(elapsed // 60):02d}:{int(elapsed % 60):02d}",
                style="yellow",
            )
        if self._stats["total_tracks"]:
            header_text.append(" │ ", style="dim")
            header_text.append(f"{self._stats['total_tracks']} track(s)", style="green")
        return header_text

    def _generate_panel(self) -> Panel:
        grid = Table.grid(padding=(0, 1))
        grid.add_row(self._generate_header())
        grid.add_row(self.overall_progress)
        if self._stats["status"]:
            grid.add_row(Text(self._stats["status"], style="dim", overflow="ellipsis"))
        return Panel(grid, border_style="cyan")

    def _update_display(self) -> None:
        if self._live:
            self._live.update(self._generate_panel())

    # ProgressListener
    def on_status(self, message: str) -> None:
        log.info(message)

    def on_progress(self, update: ProgressUpdate) -> None:
        if self._stats["start_time"] is None:
            self._stats["start_time"] = datetime.now()
        description = PHASE_LABELS.get(update.phase, "Progress")
        if self._overall_task_id is None:
            self._overall_task_id = self.overall_progress.add_task(
                description, total=100, eta=update.eta
            )
        self.overall_progress.update(
            self._overall_task_id,
            description=description,
            completed=update.progress,
            eta=update.eta,
        )
        self._stats["phase"] = update.phase
        self._stats["total_tracks"] = update.total_tracks
        self._stats["status"] = escape(update.status_text)
        self._update_display()

    def on_trim_progress(self, progress: TrimProgress) -> None:
        if self._trim_task_id is None:
            self._trim_task_id = self.overall_progress.add_task(
                "✂ Trimming silence", total=max(progress.total_count, 1), eta=""
            )
        self.overall_progress.update(
            self._trim_task_id,
            total=max(progress.total_count, 1),
            completed=progress.processed_count,
            eta=(
                f"{progress.modified_count} trimmed, {progress.failed_count} failed"
            ),
        )
        self._stats["status"] = f"Silence trim {progress.status}"
        self._update_display()

    def on_manual_link_request(self, request: ManualLinkRequest) -> None:
        self._stats["manual_requests"] += 1
        if not self.interactive or self.broker is None:
            return
        task = asyncio.get_running_loop().create_task(self._prompt_manual_link(request))
        self._prompt_tasks.add(task)
        task.add_done_callback(self._prompt_tasks.discard)

    async def _prompt_manual_link(self, request: ManualLinkRequest) -> None:
        """
        Asks for a link while the live display is paused. The prompt is
        abandoned as soon as the request settles on its own (timeout or
        cancellation), so later requests are not held up behind it.
        """
        async with self._prompt_lock:
            if self.broker is None or not self.broker.is_pending(request.request_id):
                return
            if self._live:
                self._live.stop()
            settled = asyncio.ensure_future(self.broker.wait_settled(request.request_id))
            try:
                self.console.print(
                    f"\n[yellow]No duration-matching result for[/] "
                    f"[bold]{escape(request.track_name)}[/] "
                    f"[dim]({escape(request.query)})[/dim]"
                )
                answer = self._answer_future("Paste a media link (leave empty to skip)")
                await asyncio.wait({answer, settled}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                settled.cancel()
                if self._live:
                    self._live.start()

            if not answer.done():
                self.console.print(
                    f"[dim]Manual link request for '{escape(request.track_name)}'"
                    " expired.[/dim]"
                )
                return
            link = answer.result()
            self.broker.respond(request.request_id, link, cancelled=not link)

    def _answer_future(self, prompt: str) -> asyncio.Future:
        """
        Reads one line on a daemon thread so an unanswered prompt never holds
        up interpreter shutdown. A line still being read for an expired prompt
        answers the next one instead of starting a second reader.
        """
        if self._answer is not None and not self._answer.done():
            self.console.print(f"{prompt}: ", end="")
            return self._answer

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def deliver(answer: str) -> None:
            if not future.done():
                future.set_result(answer)

        def ask() -> None:
            try:
                answer = Prompt.ask(prompt, default="", show_default=False)
            except (EOFError, KeyboardInterrupt):
                answer = ""
            try:
                loop.call_soon_threadsafe(deliver, (answer or "").strip())
            except RuntimeError:
                log.debug("Manual link answered after the session ended.")

        threading.Thread(target=ask, daemon=True).start()
        self._answer = future
        return future

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        self._live = Live(
            self._generate_panel(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        for task in list(self._prompt_tasks):
            task.cancel()
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
            self._live = None
