"""Applitools Eyes adapter.

Wraps the Eyes SDK behind the four calls the orchestrator consumes
(open, check, close, abort_if_not_closed). Isolated so the rest of the
package never imports ``applitools`` directly; the SDK is an optional
extra (``pip install visual-batch-compare[applitools]``).

The SDK is blocking and drives Playwright's sync API, so every SDK call
runs on the ``BrowserThread`` that owns the pages it is handed. The
orchestrator awaits those calls and can time out on any of them.

Raw verdict strings from the SDK are mapped to ``ComparisonStatus`` here,
so nothing past this module compares against service strings.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple

from visual_batch.browser import BrowserThread
from visual_batch.config import GridBrowser, RuntimeSettings
from visual_batch.errors import ConfigurationError, SessionCloseFailure
from visual_batch.models import ComparisonStatus, Verdict

logger = logging.getLogger(__name__)

SDK_BROWSER_TYPES = {
    "chrome": "CHROME",
    "firefox": "FIREFOX",
    "safari": "SAFARI",
    "edge": "EDGE_CHROMIUM",
}

GridTarget = Tuple[str, Tuple[Any, ...]]


def _count(results: Any, name: str) -> int:
    value = getattr(results, name, 0)
    if callable(value):
        value = value()
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _attr(results: Any, name: str) -> Any:
    value = getattr(results, name, None)
    if callable(value):
        value = value()
    return value


def verdict_from_results(results: Any) -> Verdict:
    if results is None:
        raise SessionCloseFailure("No results returned from Eyes")
    raw_status = _attr(results, "status")
    try:
        status = ComparisonStatus.from_remote(raw_status)
    except ValueError as exc:
        raise SessionCloseFailure(str(exc)) from exc
    return Verdict(
        status=status,
        result_url=_attr(results, "url") or None,
        steps=_count(results, "steps"),
        matches=_count(results, "matches"),
        mismatches=_count(results, "mismatches"),
        missing=_count(results, "missing"),
    )


class EyesClient:
    """One Eyes session at a time, bound to a single SDK ``Eyes`` instance.

    With Eyes disabled the SDK performs no comparison and returns no
    results; the entry then counts as passed with zero steps, which keeps
    a functional-only run (pages load, sessions open and close) meaningful.
    """

    def __init__(self, eyes: Any, target: Any, thread: BrowserThread, disabled: bool = False):
        self.eyes = eyes
        self.target = target
        self.thread = thread
        self.disabled = disabled

    async def open(self, page: Any, app_name: str, test_name: str) -> None:
        await self.thread.run(self.eyes.open, page, app_name, test_name)

    def _check(self, checkpoint_name: str, region: Optional[str]) -> None:
        if region:
            target = self.target.region(region)
        else:
            target = self.target.window().fully()
        self.eyes.check(checkpoint_name, target)

    async def check(self, checkpoint_name: str, region: Optional[str] = None) -> None:
        await self.thread.run(self._check, checkpoint_name, region)

    async def close(self, throw_on_mismatch: bool = False) -> Verdict:
        results = await self.thread.run(self.eyes.close, throw_on_mismatch)
        if results is None and self.disabled:
            logger.info("Eyes disabled; session closed without a visual verdict")
            return Verdict(status=ComparisonStatus.PASSED)
        return verdict_from_results(results)

    async def abort_if_not_closed(self) -> None:
        await self.thread.run(self.eyes.abort_if_not_closed)


def resolve_grid(browsers: Sequence[GridBrowser], browser_type: Any, device_name: Any) -> List[GridTarget]:
    """Turn grid targets into SDK arguments; unknown devices are config errors."""
    resolved: List[GridTarget] = []
    for browser in browsers:
        if browser.is_device:
            try:
                resolved.append(("device", (device_name(browser.device_name),)))
            except ValueError as exc:
                raise ConfigurationError(f"unknown device name {browser.device_name!r}") from exc
        else:
            sdk_type = getattr(browser_type, SDK_BROWSER_TYPES[browser.name])
            resolved.append(("browser", (browser.width, browser.height, sdk_type)))
    return resolved


def configure_eyes(
    eyes: Any,
    configuration: Any,
    batch: Any,
    match_level: Any,
    settings: RuntimeSettings,
    grid: Sequence[GridTarget] = (),
) -> Any:
    if settings.api_key:
        configuration.set_api_key(settings.api_key)
    configuration.set_server_url(settings.server_url)
    configuration.set_app_name(settings.app_name)
    configuration.set_batch(batch)
    configuration.set_baseline_env_name(settings.baseline_env_name)
    configuration.set_match_level(match_level)
    configuration.set_ignore_caret(settings.ignore_caret)
    configuration.set_ignore_displacements(settings.ignore_displacements)
    if settings.branch_name:
        configuration.set_branch_name(settings.branch_name)
    if settings.parent_branch_name:
        configuration.set_parent_branch_name(settings.parent_branch_name)
    for kind, args in grid:
        if kind == "device":
            configuration.add_device_emulation(*args)
        else:
            configuration.add_browser(*args)
    eyes.set_configuration(configuration)
    if settings.is_disabled:
        eyes.is_disabled = True
    return eyes


class EyesClientFactory:
    """Builds a configured ``EyesClient`` per entry from runtime settings.

    With a browser matrix configured, every ``Eyes`` shares one
    ``VisualGridRunner`` and renders on the grid; otherwise each ``Eyes``
    uses the SDK's classic runner and screenshots the local page.
    """

    def __init__(self, settings: RuntimeSettings, thread: BrowserThread):
        if not settings.is_disabled:
            settings.require_api_key()
        try:
            from applitools.playwright import (
                BatchInfo,
                BrowserType,
                Configuration,
                DeviceName,
                Eyes,
                MatchLevel,
                RunnerOptions,
                Target,
                VisualGridRunner,
            )
        except ImportError as exc:
            raise ConfigurationError(
                "Applitools SDK not installed. Run: pip install 'visual-batch-compare[applitools]'"
            ) from exc

        self.settings = settings
        self.thread = thread
        self._eyes_cls = Eyes
        self._configuration_cls = Configuration
        self._target = Target
        self._match_level = MatchLevel(settings.match_level)
        self._batch = BatchInfo(settings.batch_name)
        self._batch.id = settings.batch_id
        self._grid = resolve_grid(settings.browsers, BrowserType, DeviceName)
        self.runner = None
        if settings.uses_grid:
            self.runner = VisualGridRunner(RunnerOptions().test_concurrency(settings.grid_concurrency))
            logger.info(
                "Visual Grid enabled: %d render targets, concurrency %d",
                len(self._grid),
                settings.grid_concurrency,
            )

    def __call__(self) -> EyesClient:
        eyes = self._eyes_cls(self.runner) if self.runner is not None else self._eyes_cls()
        configure_eyes(
            eyes,
            self._configuration_cls(),
            self._batch,
            self._match_level,
            self.settings,
            self._grid,
        )
        return EyesClient(eyes, self._target, self.thread, disabled=self.settings.is_disabled)
