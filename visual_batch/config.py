"""
Runtime settings for the Eyes service and options for a batch pass.

Settings come from explicit values first, then the process environment,
then `.env` / `.env.local` files in the working directory.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from visual_batch.errors import ConfigurationError

DEFAULT_SERVER_URL = "https://eyesapi.applitools.com"
DEFAULT_APP_NAME = "Automated Screenshot Comparison"
DEFAULT_BASELINE_ENV = "Production"
DEFAULT_MATCH_LEVEL = "Strict"
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
MATCH_LEVELS = ("None", "Layout", "Content", "Strict", "Exact", "IgnoreColors")
GRID_BROWSERS = ("chrome", "firefox", "safari", "edge")
DEFAULT_GRID_SIZE = {"width": 1200, "height": 800}
DEFAULT_GRID_CONCURRENCY = 5


def load_env_files(root: Optional[Path] = None) -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    root = root or Path.cwd()
    for filename in (".env", ".env.local"):
        env_path = root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def _env(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = _env(env, name)
    if value is None:
        return default
    # On by default means only an explicit "false" turns it off, and vice versa.
    if default:
        return value.lower() != "false"
    return value.lower() == "true"


def default_batch_name() -> str:
    return f"Visual Batch - {datetime.now().isoformat()}"


def default_batch_id() -> str:
    return f"batch-{int(time.time() * 1000)}"


@dataclass(frozen=True)
class GridBrowser:
    """One Visual Grid render target: a desktop browser size or a device."""

    name: Optional[str] = None
    width: int = 0
    height: int = 0
    device_name: Optional[str] = None

    @property
    def is_device(self) -> bool:
        return self.device_name is not None


def parse_browsers(raw: Optional[str]) -> Tuple[GridBrowser, ...]:
    """Parse ``chrome:1920x1080,firefox,iPhone 11`` into grid targets.

    Known browser names take an optional size (1200x800 when omitted);
    anything else is taken as a device emulation name.
    """
    if not raw:
        return ()
    targets: List[GridBrowser] = []
    for part in (p.strip() for p in raw.split(",")):
        if not part:
            continue
        name, _, size = part.partition(":")
        name = name.strip()
        if name.lower() in GRID_BROWSERS:
            viewport = parse_viewport(size) if size.strip() else dict(DEFAULT_GRID_SIZE)
            targets.append(GridBrowser(name=name.lower(), width=viewport["width"], height=viewport["height"]))
        elif size:
            raise ConfigurationError(f"unknown grid browser {name!r}; expected one of {list(GRID_BROWSERS)}")
        else:
            targets.append(GridBrowser(device_name=name))
    return tuple(targets)


@dataclass(frozen=True)
class RuntimeSettings:
    api_key: Optional[str] = None
    server_url: str = DEFAULT_SERVER_URL
    app_name: str = DEFAULT_APP_NAME
    batch_name: str = field(default_factory=default_batch_name)
    batch_id: str = field(default_factory=default_batch_id)
    branch_name: Optional[str] = None
    parent_branch_name: Optional[str] = None
    baseline_env_name: str = DEFAULT_BASELINE_ENV
    match_level: str = DEFAULT_MATCH_LEVEL
    ignore_caret: bool = True
    ignore_displacements: bool = False
    is_disabled: bool = False
    browsers: Tuple[GridBrowser, ...] = ()
    grid_concurrency: int = DEFAULT_GRID_CONCURRENCY

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def uses_grid(self) -> bool:
        return bool(self.browsers)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "APPLITOOLS_API_KEY is required. Pass --api-key, export it, or add it to .env"
            )
        return self.api_key


def load_settings(
    api_key: Optional[str] = None,
    app_name: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    browsers: Optional[str] = None,
) -> RuntimeSettings:
    """Resolve settings; explicit arguments win over environment values."""
    if env is None:
        load_env_files()
        env = os.environ

    match_level = _env(env, "APPLITOOLS_MATCH_LEVEL") or DEFAULT_MATCH_LEVEL
    if match_level not in MATCH_LEVELS:
        raise ConfigurationError(
            f"APPLITOOLS_MATCH_LEVEL '{match_level}' is not valid. Allowed values: {list(MATCH_LEVELS)}."
        )

    raw_concurrency = _env(env, "APPLITOOLS_CONCURRENCY")
    try:
        grid_concurrency = int(raw_concurrency) if raw_concurrency else DEFAULT_GRID_CONCURRENCY
    except ValueError as exc:
        raise ConfigurationError(f"APPLITOOLS_CONCURRENCY must be an integer, got {raw_concurrency!r}") from exc
    if grid_concurrency < 1:
        raise ConfigurationError(f"APPLITOOLS_CONCURRENCY must be at least 1, got {grid_concurrency}")

    return RuntimeSettings(
        api_key=api_key or _env(env, "APPLITOOLS_API_KEY"),
        server_url=_env(env, "APPLITOOLS_SERVER_URL") or DEFAULT_SERVER_URL,
        app_name=app_name or _env(env, "APPLITOOLS_APP_NAME") or DEFAULT_APP_NAME,
        batch_name=_env(env, "APPLITOOLS_BATCH_NAME") or default_batch_name(),
        batch_id=_env(env, "APPLITOOLS_BATCH_ID") or default_batch_id(),
        branch_name=_env(env, "APPLITOOLS_BRANCH_NAME"),
        parent_branch_name=_env(env, "APPLITOOLS_PARENT_BRANCH_NAME"),
        baseline_env_name=_env(env, "APPLITOOLS_BASELINE_ENV_NAME") or DEFAULT_BASELINE_ENV,
        match_level=match_level,
        ignore_caret=_flag(env, "APPLITOOLS_IGNORE_CARET", True),
        ignore_displacements=_flag(env, "APPLITOOLS_IGNORE_DISPLACEMENTS", False),
        is_disabled=_flag(env, "APPLITOOLS_IS_DISABLED", False),
        browsers=parse_browsers(browsers or _env(env, "APPLITOOLS_BROWSERS")),
        grid_concurrency=grid_concurrency,
    )


def parse_viewport(raw: Optional[str]) -> Dict[str, int]:
    if not raw:
        return dict(DEFAULT_VIEWPORT)
    size = raw.strip().lower()
    if "x" not in size:
        raise ConfigurationError(f"viewport must look like WIDTHxHEIGHT, got {raw!r}")
    width_str, height_str = size.split("x", 1)
    try:
        width, height = int(width_str), int(height_str)
    except ValueError as exc:
        raise ConfigurationError(f"viewport must look like WIDTHxHEIGHT, got {raw!r}") from exc
    if width <= 0 or height <= 0:
        raise ConfigurationError(f"viewport dimensions must be positive, got {raw!r}")
    return {"width": width, "height": height}


@dataclass(frozen=True)
class BatchOptions:
    app_name: str = DEFAULT_APP_NAME
    viewport: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    navigation_timeout_ms: int = 60000
    step_timeout_s: float = 60.0
    settle_ms: int = 2000
    wait_until: str = "networkidle"
    load_state: str = "networkidle"
    throw_on_mismatch: bool = False
    concurrency: int = 1
    test_name_prefix: str = "Comparison"
    checkpoint_region: Optional[str] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be at least 1, got {self.concurrency}")
        if self.navigation_timeout_ms <= 0 or self.step_timeout_s <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.settle_ms < 0:
            raise ConfigurationError("settle delay cannot be negative")

    def for_baselines(self) -> "BatchOptions":
        return replace(self, test_name_prefix="Baseline")

    def test_name(self, label: str) -> str:
        return f"{self.test_name_prefix}: {label}"

    def checkpoint_name(self, label: str) -> str:
        if self.checkpoint_region:
            return f"{label} - {self.checkpoint_region}"
        return f"{label} - Full Page"
