"""
Turns a track query into a playable media link: link cache first, then two
search providers filtered by duration, then a human-supplied link.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from soundlink_cli.core.output_parser import SearchCandidate, parse_search_candidates
from soundlink_cli.core.process_runner import YtDlp
from soundlink_cli.exceptions import ProcessFailedError, ResolutionError
from soundlink_cli.models.track import ManualLinkRequest, SourceTag
from soundlink_cli.storage.cache import LinkCache

log = logging.getLogger(__name__)

MANUAL_LINK_TIMEOUT_SECONDS = 120.0
DEFAULT_TOLERANCE_MS = 20_000


class ResolutionState(Enum):
    SEARCHING_A = "searching-a"
    SEARCHING_B = "searching-b"
    AWAITING_MANUAL = "awaiting-manual"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class SearchProvider:
    """A yt-dlp search prefix and how many results to inspect."""

    prefix: str
    max_results: int
    source_tag: SourceTag
    label: str


PROVIDER_A = SearchProvider("ytsearch", 5, SourceTag.PROVIDER_A, "YouTube")
PROVIDER_B = SearchProvider("scsearch", 8, SourceTag.PROVIDER_B, "SoundCloud")


@dataclass(frozen=True)
class Resolution:
    link: str
    source_tag: SourceTag


def is_duration_match(
    candidate_ms: int | None, expected_ms: int | None, tolerance_ms: int
) -> bool:
    """
    Checks a candidate against the expected duration. Without a positive
    expected duration any candidate matches; with one, a candidate of unknown
    duration never does.
    """
    if expected_ms is None or expected_ms <= 0:
        return True
    if candidate_ms is None or candidate_ms <= 0:
        return False
    return abs(candidate_ms - expected_ms) <= tolerance_ms


class ManualLinkBroker:
    """
    Correlates manual-link requests with the responses that answer them.
    Each request waits at most ``timeout`` seconds.
    """

    def __init__(
        self,
        on_request: Callable[[ManualLinkRequest], None] | None = None,
        timeout: float = MANUAL_LINK_TIMEOUT_SECONDS,
    ):
        self.on_request = on_request
        self.timeout = timeout
        self._counter = 0
        self._pending: dict[int, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: int) -> bool:
        future = self._pending.get(request_id)
        return future is not None and not future.done()

    async def wait_settled(self, request_id: int) -> None:
        """Returns once the request is answered, cancelled or timed out."""
        future = self._pending.get(request_id)
        if future is not None:
            await asyncio.wait({future})

    async def request(self, track_name: str, query: str) -> str | None:
        """Asks for a link and returns it, or ``None`` on timeout or cancel."""
        self._counter += 1
        request_id = self._counter
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        if self.on_request:
            self.on_request(ManualLinkRequest(request_id, track_name, query))

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.info(f"[yellow]No manual link received for '{track_name}'.[/]")
            return None
        finally:
            self._pending.pop(request_id, None)

    def respond(
        self, request_id: int, link: str | None = None, cancelled: bool = False
    ) -> bool:
        """
        Completes a pending request. Unknown or already-answered ids are
        ignored and return ``False``.
        """
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return False
        manual_link = (link or "").strip()
        future.set_result(None if cancelled or not manual_link else manual_link)
        return True

    def cancel_all(self) -> None:
        """Resolves every outstanding request to ``None``."""
        for request_id in list(self._pending):
            self.respond(request_id, cancelled=True)


class LinkResolver:
    """Resolves search queries and direct links for the orchestrator."""

    def __init__(
        self,
        ytdlp: YtDlp,
        cache: LinkCache | None = None,
        broker: ManualLinkBroker | None = None,
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
        skip_manual_prompt: bool = False,
        on_status: Callable[[str], None] | None = None,
    ):
        self.ytdlp = ytdlp
        self.cache = cache
        self.broker = broker
        self.tolerance_ms = tolerance_ms
        self.skip_manual_prompt = skip_manual_prompt
        self.on_status = on_status

    def _status(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def is_duration_match(self, candidate_ms: int | None, expected_ms: int | None) -> bool:
        return is_duration_match(candidate_ms, expected_ms, self.tolerance_ms)

    async def search(
        self, provider: SearchProvider, query: str, expected_ms: int | None
    ) -> SearchCandidate | None:
        """
        Runs one provider search and returns the first duration match. A failed
        search counts as no candidate.
        """
        try:
            result = await self.ytdlp.run_checked(
                [
                    "--flat-playlist",
                    "--print",
                    "%(webpage_url)s\t%(duration)s",
                    f"{provider.prefix}{provider.max_results}:{query}",
                ]
            )
        except ProcessFailedError as e:
            log.warning(f"[yellow]{provider.label} search failed for '{query}':[/] {e}")
            return None

        candidates = parse_search_candidates(result.stdout)
        for candidate in candidates:
            if self.is_duration_match(candidate.duration_ms, expected_ms):
                return candidate
        log.debug(
            f"{provider.label}: none of {len(candidates)} candidate(s) matched "
            f"'{query}' within {self.tolerance_ms} ms."
        )
        return None

    async def resolve_query(
        self, query: str, track_name: str, expected_ms: int | None = None
    ) -> Resolution:
        """
        Resolves a search query. Any success is written through to the cache.

        Raises:
            ResolutionError: If no provider matched and no manual link arrived.
        """
        if self.cache is not None and (cached := self.cache.get(query)):
            self._status(f"⚡ [Cache] Using cached link for: {track_name}")
            return Resolution(cached, SourceTag.CACHE)

        resolution = None
        for state, provider in (
            (ResolutionState.SEARCHING_A, PROVIDER_A),
            (ResolutionState.SEARCHING_B, PROVIDER_B),
        ):
            log.debug(f"'{track_name}': {state.value}")
            if match := await self.search(provider, query, expected_ms):
                resolution = Resolution(match.url, provider.source_tag)
                break
            self._status(
                f"⚠️ No duration-matching {provider.label} result for: {track_name}."
            )

        if resolution is None and self.broker is not None and not self.skip_manual_prompt:
            log.debug(f"'{track_name}': {ResolutionState.AWAITING_MANUAL.value}")
            if manual_link := await self.broker.request(track_name, query):
                resolution = Resolution(manual_link, SourceTag.MANUAL)

        if resolution is None:
            log.debug(f"'{track_name}': {ResolutionState.FAILED.value}")
            raise ResolutionError(
                "No matching result found on YouTube/SoundCloud and no manual "
                "link provided."
            )

        log.debug(f"'{track_name}': {ResolutionState.RESOLVED.value}")
        if self.cache is not None:
            self.cache.put(query, resolution.link)
        return resolution

    async def fetch_title(self, link: str) -> str:
        """Looks up the title of a direct media link."""
        result = await self.ytdlp.run_checked(["--get-title", link])
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return lines[0] if lines else ""
