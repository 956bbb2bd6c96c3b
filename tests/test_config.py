import os

import pytest

from visual_batch.config import (
    DEFAULT_APP_NAME,
    DEFAULT_GRID_CONCURRENCY,
    DEFAULT_SERVER_URL,
    BatchOptions,
    GridBrowser,
    RuntimeSettings,
    load_env_files,
    load_settings,
    parse_browsers,
    parse_viewport,
)
from visual_batch.errors import ConfigurationError


@pytest.fixture
def environ(monkeypatch):
    """Isolate os.environ so .env loading cannot leak between tests."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("APPLITOOLS_")}
    monkeypatch.setattr(os, "environ", env)
    return env


# ── load_settings ────────────────────────────────────────────────────────────


def test_defaults_from_empty_env():
    settings = load_settings(env={})
    assert settings.api_key is None
    assert not settings.has_api_key
    assert settings.server_url == DEFAULT_SERVER_URL
    assert settings.app_name == DEFAULT_APP_NAME
    assert settings.batch_name.startswith("Visual Batch - ")
    assert settings.batch_id.startswith("batch-")
    assert settings.match_level == "Strict"
    assert settings.baseline_env_name == "Production"


def test_values_from_env():
    settings = load_settings(env={
        "APPLITOOLS_API_KEY": "env-key",
        "APPLITOOLS_SERVER_URL": "https://eyes.internal",
        "APPLITOOLS_BATCH_NAME": "Nightly",
        "APPLITOOLS_BATCH_ID": "nightly-1",
        "APPLITOOLS_BRANCH_NAME": "feature/x",
        "APPLITOOLS_PARENT_BRANCH_NAME": "main",
        "APPLITOOLS_MATCH_LEVEL": "Layout",
    })
    assert settings.api_key == "env-key"
    assert settings.server_url == "https://eyes.internal"
    assert settings.batch_name == "Nightly"
    assert settings.batch_id == "nightly-1"
    assert settings.branch_name == "feature/x"
    assert settings.parent_branch_name == "main"
    assert settings.match_level == "Layout"


def test_explicit_values_win():
    settings = load_settings(
        api_key="cli-key",
        app_name="Storefront",
        env={"APPLITOOLS_API_KEY": "env-key", "APPLITOOLS_APP_NAME": "Env App"},
    )
    assert settings.api_key == "cli-key"
    assert settings.app_name == "Storefront"


def test_blank_env_values_are_ignored():
    settings = load_settings(env={"APPLITOOLS_API_KEY": "   ", "APPLITOOLS_SERVER_URL": ""})
    assert settings.api_key is None
    assert settings.server_url == DEFAULT_SERVER_URL


def test_invalid_match_level():
    with pytest.raises(ConfigurationError, match="APPLITOOLS_MATCH_LEVEL"):
        load_settings(env={"APPLITOOLS_MATCH_LEVEL": "Fuzzy"})


def test_require_api_key():
    assert RuntimeSettings(api_key="k").require_api_key() == "k"
    with pytest.raises(ConfigurationError, match="APPLITOOLS_API_KEY"):
        RuntimeSettings().require_api_key()


def test_comparison_flag_defaults():
    settings = load_settings(env={})
    assert settings.ignore_caret is True
    assert settings.ignore_displacements is False
    assert settings.is_disabled is False
    assert settings.browsers == ()
    assert not settings.uses_grid
    assert settings.grid_concurrency == DEFAULT_GRID_CONCURRENCY


def test_comparison_flags_from_env():
    settings = load_settings(env={
        "APPLITOOLS_IGNORE_CARET": "false",
        "APPLITOOLS_IGNORE_DISPLACEMENTS": "true",
        "APPLITOOLS_IS_DISABLED": "TRUE",
    })
    assert settings.ignore_caret is False
    assert settings.ignore_displacements is True
    assert settings.is_disabled is True


def test_flags_only_flip_on_explicit_opposite():
    settings = load_settings(env={
        "APPLITOOLS_IGNORE_CARET": "no",
        "APPLITOOLS_IGNORE_DISPLACEMENTS": "1",
    })
    assert settings.ignore_caret is True
    assert settings.ignore_displacements is False


def test_browser_matrix_from_env():
    settings = load_settings(env={
        "APPLITOOLS_BROWSERS": "chrome:1920x1080, Firefox, iPhone 11",
        "APPLITOOLS_CONCURRENCY": "10",
    })
    assert settings.uses_grid
    assert settings.grid_concurrency == 10
    assert settings.browsers == (
        GridBrowser(name="chrome", width=1920, height=1080),
        GridBrowser(name="firefox", width=1200, height=800),
        GridBrowser(device_name="iPhone 11"),
    )


def test_explicit_browsers_win():
    settings = load_settings(browsers="safari", env={"APPLITOOLS_BROWSERS": "chrome"})
    assert settings.browsers == (GridBrowser(name="safari", width=1200, height=800),)


@pytest.mark.parametrize("raw", ["fast", "0", "-2"])
def test_invalid_grid_concurrency(raw):
    with pytest.raises(ConfigurationError, match="APPLITOOLS_CONCURRENCY"):
        load_settings(env={"APPLITOOLS_CONCURRENCY": raw})


# ── .env files ───────────────────────────────────────────────────────────────


def test_env_files_are_loaded(tmp_path, environ):
    (tmp_path / ".env").write_text(
        "# comment\n"
        "APPLITOOLS_API_KEY=from-file\n"
        "export APPLITOOLS_BATCH_NAME='Quoted Batch'\n"
        "not a pair\n",
        encoding="utf-8",
    )
    (tmp_path / ".env.local").write_text('APPLITOOLS_BRANCH_NAME="local"\n', encoding="utf-8")
    load_env_files(tmp_path)
    assert environ["APPLITOOLS_API_KEY"] == "from-file"
    assert environ["APPLITOOLS_BATCH_NAME"] == "Quoted Batch"
    assert environ["APPLITOOLS_BRANCH_NAME"] == "local"


def test_env_files_do_not_override_process_env(tmp_path, environ):
    environ["APPLITOOLS_API_KEY"] = "from-shell"
    (tmp_path / ".env").write_text("APPLITOOLS_API_KEY=from-file\n", encoding="utf-8")
    load_env_files(tmp_path)
    assert environ["APPLITOOLS_API_KEY"] == "from-shell"


def test_load_settings_reads_env_file_in_cwd(tmp_path, monkeypatch, environ):
    (tmp_path / ".env").write_text("APPLITOOLS_API_KEY=cwd-key\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    assert load_settings().api_key == "cwd-key"


def test_env_files_are_reread_on_each_load(tmp_path, monkeypatch, environ):
    monkeypatch.chdir(tmp_path)
    assert load_settings().api_key is None

    (tmp_path / ".env").write_text("APPLITOOLS_API_KEY=added-later\n", encoding="utf-8")
    assert load_settings().api_key == "added-later"


# ── Viewport ─────────────────────────────────────────────────────────────────


def test_parse_viewport():
    assert parse_viewport(None) == {"width": 1920, "height": 1080}
    assert parse_viewport("1280x720") == {"width": 1280, "height": 720}
    assert parse_viewport(" 375X812 ") == {"width": 375, "height": 812}


@pytest.mark.parametrize("raw", ["wide", "100x", "x100", "0x100", "-5x100"])
def test_parse_viewport_rejects_bad_input(raw):
    with pytest.raises(ConfigurationError):
        parse_viewport(raw)


# ── Visual Grid browsers ─────────────────────────────────────────────────────


def test_parse_browsers_empty():
    assert parse_browsers(None) == ()
    assert parse_browsers(" , ") == ()


def test_parse_browsers_sizes_and_devices():
    assert parse_browsers("edge:1366x768,Galaxy S20,safari") == (
        GridBrowser(name="edge", width=1366, height=768),
        GridBrowser(device_name="Galaxy S20"),
        GridBrowser(name="safari", width=1200, height=800),
    )
    assert GridBrowser(device_name="Galaxy S20").is_device
    assert not GridBrowser(name="edge").is_device


def test_parse_browsers_rejects_sized_unknown_browser():
    with pytest.raises(ConfigurationError, match="unknown grid browser 'opera'"):
        parse_browsers("opera:1200x800")


def test_parse_browsers_rejects_bad_size():
    with pytest.raises(ConfigurationError, match="WIDTHxHEIGHT"):
        parse_browsers("chrome:big")


# ── BatchOptions ─────────────────────────────────────────────────────────────


def test_option_defaults():
    options = BatchOptions()
    assert options.navigation_timeout_ms == 60000
    assert options.settle_ms == 2000
    assert options.wait_until == "networkidle"
    assert options.concurrency == 1
    assert options.throw_on_mismatch is False


@pytest.mark.parametrize(
    "kwargs",
    [{"concurrency": 0}, {"navigation_timeout_ms": 0}, {"step_timeout_s": -1}, {"settle_ms": -1}],
)
def test_option_validation(kwargs):
    with pytest.raises(ConfigurationError):
        BatchOptions(**kwargs)


def test_test_and_checkpoint_names():
    options = BatchOptions()
    assert options.test_name("Home") == "Comparison: Home"
    assert options.checkpoint_name("Home") == "Home - Full Page"
    assert BatchOptions(checkpoint_region="#main").checkpoint_name("Home") == "Home - #main"


def test_baseline_options_keep_everything_but_prefix():
    options = BatchOptions(settle_ms=10, concurrency=3)
    baseline = options.for_baselines()
    assert baseline.test_name("Home") == "Baseline: Home"
    assert baseline.settle_ms == 10
    assert baseline.concurrency == 3
    assert options.test_name("Home") == "Comparison: Home"
