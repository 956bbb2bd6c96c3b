"""Comparison Orchestrator.

Runs one remote comparison per entry and turns every per-entry failure into
an ``Error`` result, so a bad URL never stops the rest of the batch.

Every session that was opened is either closed or aborted before the next
entry starts (see ``comparison_session``).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    Union,
)

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from visual_batch.config import BatchOptions
from visual_batch.entries import read_entries
from visual_batch.errors import (
    AbortFailure,
    CheckpointFailure,
    EntryFailure,
    NavigationFailure,
    NavigationTimeout,
    PageAcquisitionFailure,
    SessionCloseFailure,
    SessionOpenFailure,
)
from visual_batch.models import ComparisonResult, Entry, RunSummary, Verdict
from visual_batch.summary import SummaryAggregator

logger = logging.getLogger(__name__)


class PageProvider(Protocol):
    async def acquire(self, fresh: bool = False) -> Any: ...

    async def navigate(
        self, page: Any, url: str, wait_until: str, load_state: str, timeout_ms: int
    ) -> None: ...

    async def release(self, page: Any, close: bool = False) -> None: ...


class VisualDiffClient(Protocol):
    async def open(self, page: Any, app_name: str, test_name: str) -> None: ...

    async def check(self, checkpoint_name: str, region: Optional[str] = None) -> None: ...

    async def close(self, throw_on_mismatch: bool = False) -> Verdict: ...

    async def abort_if_not_closed(self) -> None: ...


ClientFactory = Callable[[], VisualDiffClient]
ResultCallback = Callable[[ComparisonResult], None]


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


async def _bounded(
    call: Awaitable[Any],
    timeout_s: float,
    failure: Type[EntryFailure],
    what: str,
) -> Any:
    try:
        return await asyncio.wait_for(call, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise failure(f"Timeout after {timeout_s:g}s during {what}") from exc
    except EntryFailure:
        raise
    except Exception as exc:
        raise failure(f"{what} failed: {exc}") from exc


class ComparisonSession:
    def __init__(self, client: VisualDiffClient, test_name: str, timeout_s: float):
        self.client = client
        self.test_name = test_name
        self.timeout_s = timeout_s
        self.closed = False

    async def check(self, checkpoint_name: str, region: Optional[str] = None) -> None:
        await _bounded(
            self.client.check(checkpoint_name, region),
            self.timeout_s,
            CheckpointFailure,
            f"checkpoint '{checkpoint_name}'",
        )

    async def close(self, throw_on_mismatch: bool = False) -> Verdict:
        verdict = await _bounded(
            self.client.close(throw_on_mismatch),
            self.timeout_s,
            SessionCloseFailure,
            f"closing session '{self.test_name}'",
        )
        if verdict is None:
            raise SessionCloseFailure(f"No results returned for session '{self.test_name}'")
        self.closed = True
        return verdict


async def abort_quietly(client: VisualDiffClient, test_name: str, timeout_s: float) -> None:
    try:
        await asyncio.wait_for(client.abort_if_not_closed(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.error("%s", AbortFailure(f"Timeout after {timeout_s:g}s aborting session '{test_name}'"))
    except Exception as exc:
        failure = AbortFailure(f"Failed to abort session '{test_name}': {exc}")
        logger.error("%s", failure)


@asynccontextmanager
async def comparison_session(
    client: VisualDiffClient,
    page: Any,
    app_name: str,
    test_name: str,
    timeout_s: float,
) -> AsyncIterator[ComparisonSession]:
    """Open a remote session and guarantee it is closed or aborted on exit."""
    await _bounded(
        client.open(page, app_name, test_name),
        timeout_s,
        SessionOpenFailure,
        f"opening session '{test_name}'",
    )
    session = ComparisonSession(client, test_name, timeout_s)
    try:
        yield session
    finally:
        if not session.closed:
            await abort_quietly(client, test_name, timeout_s)


async def navigate(pages: PageProvider, page: Any, url: str, options: BatchOptions) -> None:
    # Playwright enforces the navigation timeout itself; the outer bound covers a busy browser thread.
    limit_s = options.navigation_timeout_ms / 1000 + options.step_timeout_s
    try:
        await asyncio.wait_for(
            pages.navigate(
                page,
                url,
                options.wait_until,
                options.load_state,
                options.navigation_timeout_ms,
            ),
            timeout=limit_s,
        )
    except asyncio.TimeoutError as exc:
        raise NavigationTimeout(f"Timeout after {limit_s:g}s navigating to {url}") from exc
    except PlaywrightTimeoutError as exc:
        raise NavigationTimeout(f"Timeout navigating to {url}: {exc}") from exc
    except Exception as exc:
        raise NavigationFailure(f"Navigation to {url} failed: {exc}") from exc
    if options.settle_ms:
        await asyncio.sleep(options.settle_ms / 1000)


async def compare_entry(
    entry: Entry,
    pages: PageProvider,
    clients: ClientFactory,
    options: BatchOptions,
    fresh_page: bool = False,
) -> ComparisonResult:
    """Run one entry end to end. Never raises for per-entry failures."""
    test_name = options.test_name(entry.label)
    page = None
    try:
        page = await _bounded(
            pages.acquire(fresh=fresh_page),
            options.step_timeout_s,
            PageAcquisitionFailure,
            "page acquisition",
        )
        try:
            client = clients()
        except Exception as exc:
            raise SessionOpenFailure(f"Could not create visual-diff client: {exc}") from exc

        async with comparison_session(client, page, options.app_name, test_name, options.step_timeout_s) as session:
            await navigate(pages, page, entry.url, options)
            await session.check(options.checkpoint_name(entry.label), options.checkpoint_region)
            verdict = await session.close(options.throw_on_mismatch)
    except EntryFailure as exc:
        logger.error("Comparison failed for %s (%s): %s", entry.label, entry.url, exc)
        return ComparisonResult.from_error(entry, describe_error(exc))
    finally:
        if fresh_page and page is not None:
            await pages.release(page, close=True)

    logger.info("Compared %s: %s", entry.label, verdict.status.value)
    return ComparisonResult.from_verdict(entry, verdict)


async def _run_sequential(
    entries: Sequence[Entry],
    pages: PageProvider,
    clients: ClientFactory,
    options: BatchOptions,
) -> AsyncIterator[ComparisonResult]:
    for entry in entries:
        yield await compare_entry(entry, pages, clients, options)


async def _run_concurrent(
    entries: Sequence[Entry],
    pages: PageProvider,
    clients: ClientFactory,
    options: BatchOptions,
) -> AsyncIterator[ComparisonResult]:
    gate = asyncio.Semaphore(options.concurrency)

    async def run_one(entry: Entry) -> ComparisonResult:
        async with gate:
            return await compare_entry(entry, pages, clients, options, fresh_page=True)

    tasks = [asyncio.ensure_future(run_one(entry)) for entry in entries]
    try:
        for finished in asyncio.as_completed(tasks):
            yield await finished
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def run_batch(
    entries: Sequence[Entry],
    pages: PageProvider,
    clients: ClientFactory,
    options: Optional[BatchOptions] = None,
) -> AsyncIterator[ComparisonResult]:
    """Lazily yield one result per entry.

    With ``concurrency == 1`` results arrive in input order and reuse one
    page. Higher values give each in-flight entry its own page and yield in
    completion order. Blocking browser and SDK calls still run one at a time
    on the browser thread; settle delays overlap.
    """
    options = options or BatchOptions()
    if options.concurrency == 1:
        return _run_sequential(entries, pages, clients, options)
    return _run_concurrent(entries, pages, clients, options)


async def drive_batch(
    source: Union[str, Path, Sequence[Entry]],
    pages: PageProvider,
    clients: ClientFactory,
    options: Optional[BatchOptions] = None,
    on_result: Optional[ResultCallback] = None,
) -> RunSummary:
    """Read, compare and aggregate one pass.

    Raises SourceNotFoundError before any entry is attempted when the source
    cannot be read; otherwise always returns a sealed summary.
    """
    if isinstance(source, (str, Path)):
        entries: List[Entry] = read_entries(source)
    else:
        entries = list(source)

    aggregator = SummaryAggregator(started_at=datetime.now(timezone.utc))
    async for result in run_batch(entries, pages, clients, options):
        aggregator.accumulate(result)
        if on_result is not None:
            try:
                on_result(result)
            except Exception as exc:
                logger.warning("Result callback failed for %s: %s", result.label, exc)
    return aggregator.finalize()
