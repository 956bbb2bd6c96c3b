"""Shared fakes for the page provider and the visual-diff client.

No test launches a browser or talks to the Eyes service.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from visual_batch.config import BatchOptions
from visual_batch.models import ComparisonStatus, Verdict


class FakePage:
    def __init__(self, failures: Optional[Dict[str, Exception]] = None):
        self.failures = failures or {}
        self.visited: List[str] = []
        self.viewport = None
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if url in self.failures:
            raise self.failures[url]

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    async def set_viewport_size(self, viewport):
        self.viewport = viewport

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


class FakePages:
    def __init__(self, failures: Optional[Dict[str, Exception]] = None):
        self.failures = failures or {}
        self.created: List[FakePage] = []
        self.released: List[FakePage] = []
        self.shared: Optional[FakePage] = None
        self.fail_acquire: Optional[Exception] = None

    def _new(self) -> FakePage:
        page = FakePage(self.failures)
        self.created.append(page)
        return page

    async def acquire(self, fresh=False):
        if self.fail_acquire is not None:
            error, self.fail_acquire = self.fail_acquire, None
            raise error
        if fresh:
            return self._new()
        if self.shared is None or self.shared.is_closed():
            self.shared = self._new()
        return self.shared

    async def navigate(self, page, url, wait_until, load_state, timeout_ms):
        await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        await page.wait_for_load_state(load_state, timeout=timeout_ms)

    async def release(self, page, close=False):
        self.released.append(page)
        if close:
            await page.close()


def _label(test_name: str) -> str:
    return test_name.split(": ", 1)[-1]


class FakeEyes:
    """Records every session call; verdicts and failures are keyed by label."""

    def __init__(
        self,
        verdicts: Optional[Dict[str, Verdict]] = None,
        failures: Optional[Dict[Tuple[str, str], Exception]] = None,
        abort_error: Optional[Exception] = None,
    ):
        self.verdicts = verdicts or {}
        self.failures = failures or {}
        self.abort_error = abort_error
        self.calls: List[Tuple[str, str]] = []
        self.clients_created = 0

    def __call__(self):
        self.clients_created += 1
        return FakeEyesClient(self)

    def calls_for(self, step: str) -> List[str]:
        return [label for name, label in self.calls if name == step]


class FakeEyesClient:
    def __init__(self, service: FakeEyes):
        self.service = service
        self.label: Optional[str] = None
        self.pages = []

    def _maybe_fail(self, step: str) -> None:
        error = self.service.failures.get((step, self.label))
        if error is not None:
            raise error

    async def open(self, page, app_name, test_name):
        self.label = _label(test_name)
        self.pages.append(page)
        self.service.calls.append(("open", self.label))
        self._maybe_fail("open")

    async def check(self, checkpoint_name, region=None):
        self.service.calls.append(("check", self.label))
        self._maybe_fail("check")

    async def close(self, throw_on_mismatch=False):
        self.service.calls.append(("close", self.label))
        self._maybe_fail("close")
        return self.service.verdicts.get(self.label, Verdict(status=ComparisonStatus.PASSED, matches=1))

    async def abort_if_not_closed(self):
        self.service.calls.append(("abort", self.label))
        if self.service.abort_error is not None:
            raise self.service.abort_error


@pytest.fixture
def options():
    return BatchOptions(settle_ms=0, step_timeout_s=5.0)


@pytest.fixture
def pages():
    return FakePages()


@pytest.fixture
def eyes():
    return FakeEyes()

