from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from visual_batch.models import ComparisonResult, ComparisonStatus, RunSummary

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
REPORT_FILENAME = "applitools-eyes-report.md"
RESULTS_FILENAME = "results.json"
RULE = "=" * 80


def _non_negative(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


class SummaryAggregator:
    """Running statistics for one pass; the only place results are counted.

    ``accumulate`` never raises. Results arrive from a single consumer of the
    orchestrator stream, so no locking is needed.
    """

    def __init__(self, started_at: Optional[datetime] = None):
        self.started_at = started_at or datetime.now(timezone.utc)
        self.total = 0
        self.succeeded = 0
        self.total_matches = 0
        self.total_mismatches = 0
        self.total_missing = 0
        self.errors: List[str] = []
        self.results: List[ComparisonResult] = []
        self._sealed: Optional[RunSummary] = None

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def accumulate(self, result: ComparisonResult) -> None:
        if self._sealed is not None:
            logger.warning("Ignoring result for %s: summary already finalized", getattr(result, "label", "?"))
            return

        self.total += 1
        self.results.append(result)
        status = getattr(result, "status", None)
        if status is ComparisonStatus.PASSED:
            self.succeeded += 1

        if status is ComparisonStatus.ERROR:
            label = getattr(result, "label", "?")
            url = getattr(result, "url", "?")
            message = getattr(result, "error_message", None) or "unknown error"
            self.errors.append(f"{label} ({url}): {message}")
            return

        self.total_matches += _non_negative(getattr(result, "matches", 0))
        self.total_mismatches += _non_negative(getattr(result, "mismatches", 0))
        self.total_missing += _non_negative(getattr(result, "missing", 0))

    def finalize(self, finished_at: Optional[datetime] = None) -> RunSummary:
        if self._sealed is None:
            self._sealed = RunSummary(
                started_at=self.started_at,
                finished_at=finished_at or datetime.now(timezone.utc),
                total=self.total,
                succeeded=self.succeeded,
                failed=self.failed,
                total_matches=self.total_matches,
                total_mismatches=self.total_mismatches,
                total_missing=self.total_missing,
                errors=tuple(self.errors),
                results=tuple(self.results),
            )
        return self._sealed


def format_success_rate(summary: RunSummary) -> str:
    if summary.total == 0:
        return "0%"
    return f"{summary.success_rate:.2f}%"


def format_duration(summary: RunSummary) -> str:
    return f"{summary.duration_seconds:.2f}s"


def render_result_block(index: int, result: ComparisonResult) -> str:
    lines = [
        f"### {index}. {result.label}",
        f"- **URL**: {result.url}",
        f"- **Status**: {result.status.value}",
    ]
    if result.status is ComparisonStatus.ERROR:
        lines.append(f"- **Error**: {result.error_message}")
    else:
        lines.extend([
            f"- **Matches**: {result.matches}",
            f"- **Mismatches**: {result.mismatches}",
            f"- **Missing**: {result.missing}",
            f"- **Steps**: {result.steps}",
        ])
    if result.result_url:
        lines.append(f"- **Applitools Results**: [View Results]({result.result_url})")
    return "\n".join(lines)


def _join_numbered(items: List[str], empty: str) -> str:
    if not items:
        return empty
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def _render_baseline_block(baseline: Optional[RunSummary]) -> str:
    if baseline is None:
        return ""
    lines = [
        "",
        "## Baselines",
        f"- **Baselines Attempted**: {baseline.total}",
        f"- **Baselines Established**: {baseline.total - len(baseline.errors)}",
        f"- **Baseline Errors**: {len(baseline.errors)}",
    ]
    return "\n".join(lines) + "\n"


def render(summary: RunSummary, baseline: Optional[RunSummary] = None) -> str:
    """Render the markdown report. Output depends only on its arguments."""
    template = (TEMPLATES_DIR / "report.md").read_text(encoding="utf-8")

    blocks = [render_result_block(i, r) for i, r in enumerate(summary.results, start=1)]
    errors = list(summary.errors)
    if baseline is not None:
        errors = [f"Baseline: {e}" for e in baseline.errors] + errors

    replacements = {
        "started_at": summary.started_at.isoformat(),
        "finished_at": summary.finished_at.isoformat(),
        "duration": format_duration(summary),
        "total": summary.total,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "success_rate": format_success_rate(summary),
        "total_matches": summary.total_matches,
        "total_mismatches": summary.total_mismatches,
        "total_missing": summary.total_missing,
        "baseline_block": _render_baseline_block(baseline),
        "results_block": "\n\n".join(blocks) if blocks else "(no entries processed)",
        "errors_block": _join_numbered(errors, "No errors encountered."),
    }

    for key, value in replacements.items():
        template = template.replace("{{" + key + "}}", str(value))
    return template


def render_entry_line(result: ComparisonResult) -> str:
    if result.status is ComparisonStatus.ERROR:
        return f"❌ {result.label} ({result.url}): {result.error_message}"
    icon = "✅" if result.passed else "❌"
    return (
        f"{icon} {result.label} ({result.url}): {result.status.value} - "
        f"Matches: {result.matches}, Mismatches: {result.mismatches}, Missing: {result.missing}"
    )


def render_console(summary: RunSummary) -> str:
    lines = [
        RULE,
        "👁️  APPLITOOLS EYES TEST SUMMARY",
        RULE,
        f"Visual Tests: {summary.succeeded}/{summary.total} successful ({format_success_rate(summary)})",
        f"Total Matches: {summary.total_matches}",
        f"Total Mismatches: {summary.total_mismatches}",
        f"Total Missing: {summary.total_missing}",
        f"Total Duration: {format_duration(summary)}",
        f"Errors: {len(summary.errors)}",
        RULE,
    ]
    return "\n".join(lines)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def write_report(
    summary: RunSummary,
    output_dir: Path,
    baseline: Optional[RunSummary] = None,
) -> Dict[str, Path]:
    output_dir = Path(output_dir)
    ensure_dir(output_dir)

    report_path = output_dir / REPORT_FILENAME
    write_text(report_path, render(summary, baseline))

    results_path = output_dir / RESULTS_FILENAME
    payload: Dict[str, Any] = {"comparison": summary.to_dict()}
    if baseline is not None:
        payload["baseline"] = baseline.to_dict()
    write_json(results_path, payload)

    return {"report": report_path, "results": results_path}
