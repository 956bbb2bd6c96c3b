from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ComparisonStatus(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"
    UNRESOLVED = "Unresolved"
    ERROR = "Error"

    @classmethod
    def from_remote(cls, raw: Any) -> "ComparisonStatus":
        """Map a verdict reported by the remote service.

        Accepts plain strings and enum members from the SDK; ``Error`` is a
        local outcome and is never a valid remote verdict.
        """
        value = getattr(raw, "value", raw)
        text = str(value or "").strip().lower()
        for status in (cls.PASSED, cls.FAILED, cls.UNRESOLVED):
            if status.value.lower() == text:
                return status
        raise ValueError(f"unrecognized remote verdict: {raw!r}")


@dataclass(frozen=True)
class Entry:
    url: str
    label: str


@dataclass(frozen=True)
class Verdict:
    status: ComparisonStatus
    result_url: Optional[str] = None
    steps: int = 0
    matches: int = 0
    mismatches: int = 0
    missing: int = 0


@dataclass(frozen=True)
class ComparisonResult:
    url: str
    label: str
    status: ComparisonStatus
    result_url: Optional[str] = None
    steps: int = 0
    matches: int = 0
    mismatches: int = 0
    missing: int = 0
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        is_error = self.status is ComparisonStatus.ERROR
        if is_error and not self.error_message:
            raise ValueError(f"error result for {self.label!r} requires an error message")
        if not is_error and self.error_message:
            raise ValueError(f"{self.status.value} result for {self.label!r} cannot carry an error message")

    @classmethod
    def from_verdict(cls, entry: Entry, verdict: Verdict) -> "ComparisonResult":
        return cls(
            url=entry.url,
            label=entry.label,
            status=verdict.status,
            result_url=verdict.result_url,
            steps=verdict.steps,
            matches=verdict.matches,
            mismatches=verdict.mismatches,
            missing=verdict.missing,
        )

    @classmethod
    def from_error(cls, entry: Entry, message: str) -> "ComparisonResult":
        return cls(
            url=entry.url,
            label=entry.label,
            status=ComparisonStatus.ERROR,
            error_message=message or "unknown error",
        )

    @property
    def passed(self) -> bool:
        return self.status is ComparisonStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "label": self.label,
            "status": self.status.value,
            "result_url": self.result_url,
            "steps": self.steps,
            "matches": self.matches,
            "mismatches": self.mismatches,
            "missing": self.missing,
            "error": self.error_message,
        }


@dataclass(frozen=True)
class RunSummary:
    """Sealed statistics for one batch pass."""

    started_at: datetime
    finished_at: datetime
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    total_matches: int = 0
    total_mismatches: int = 0
    total_missing: int = 0
    errors: Tuple[str, ...] = ()
    results: Tuple[ComparisonResult, ...] = field(default_factory=tuple)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.succeeded / self.total * 100

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 2),
            "total_matches": self.total_matches,
            "total_mismatches": self.total_mismatches,
            "total_missing": self.total_missing,
            "errors": list(self.errors),
            "results": [r.to_dict() for r in self.results],
        }
