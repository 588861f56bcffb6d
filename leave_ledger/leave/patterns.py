"""Leave pattern analyzer — detects irregular leave-taking in request history.

Pure and deterministic: no store access, no clock. Each detector implements
``evaluate(history, config)`` and returns a :class:`DetectedPattern` or None;
the analyzer runs every registered detector and turns firing detectors into
an overall risk score.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from leave_ledger.common.constants import LeaveStatus, PatternType, RiskLevel, Severity
from leave_ledger.common.dates import WEEKEND

logger = logging.getLogger(__name__)

MONDAY, FRIDAY = 0, 4
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


# ── Input / config / output models ──────────────────────────────────

class LeaveHistoryEntry(BaseModel):
    """One leave request as seen by the analyzer."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    leave_type_name: Optional[str] = Field(default=None, alias="leaveTypeName")
    leave_type_code: Optional[str] = Field(default=None, alias="leaveTypeCode")
    start_date: date = Field(alias="from")
    end_date: date = Field(alias="to")
    duration_days: float = Field(alias="durationDays", ge=0)
    status: LeaveStatus
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @model_validator(mode="after")
    def _check_range(self) -> "LeaveHistoryEntry":
        if self.start_date > self.end_date:
            raise ValueError("start_date is after end_date")
        return self

    @property
    def is_sick(self) -> bool:
        text = f"{self.leave_type_name or ''} {self.leave_type_code or ''}".lower()
        return "sick" in text

    @property
    def label(self) -> str:
        return self.leave_type_name or "Leave"


class PatternConfig(BaseModel):
    """Detector thresholds; every field has a documented default."""

    lookback_days: int = 180
    statuses: set[LeaveStatus] = Field(
        default_factory=lambda: {LeaveStatus.approved, LeaveStatus.pending}
    )
    holidays: set[date] = Field(default_factory=set)

    monday_friday_ratio: float = 0.40
    monday_friday_min_occurrences: int = 3

    holiday_extension_min_occurrences: int = 3

    short_notice_days: int = 2
    short_notice_min_occurrences: int = 3

    clustering_window_days: int = 30
    clustering_max_duration: float = 1
    clustering_min_leaves: int = 3
    clustering_min_clusters: int = 1

    behavioral_recent_days: int = 30
    behavioral_multiplier: float = 1.5
    behavioral_min_baseline_leaves: int = 2

    sick_leave_ratio: float = 0.5

    severity_points: dict[Severity, int] = Field(
        default_factory=lambda: {Severity.high: 30, Severity.medium: 20, Severity.low: 10}
    )


DEFAULT_CONFIG = PatternConfig()


class PatternOccurrence(BaseModel):
    date: dt.date
    leave_request_id: Optional[str] = None
    details: Optional[str] = None


class DetectedPattern(BaseModel):
    type: PatternType
    severity: Severity
    description: str
    suggestion: str
    occurrences: list[PatternOccurrence] = Field(default_factory=list)


class PatternAnalysisResult(BaseModel):
    employee_id: str
    employee_name: Optional[str] = None
    patterns: list[DetectedPattern] = Field(default_factory=list)
    overall_risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.low


@dataclass(frozen=True)
class LeaveHistory:
    """An employee's analyzable leaves, ordered by start date, plus the
    reference date the windows are measured back from."""

    entries: Sequence[LeaveHistoryEntry]
    as_of: date


# ── Helpers ─────────────────────────────────────────────────────────

def graduated_severity(measured: float, threshold: float) -> Severity:
    """≥2× the threshold is high, ≥1.5× medium, anything else that fired low."""
    if threshold <= 0:
        return Severity.high
    ratio = measured / threshold
    if ratio >= 2:
        return Severity.high
    if ratio >= 1.5:
        return Severity.medium
    return Severity.low


def risk_level_for(score: int) -> RiskLevel:
    if score >= 75:
        return RiskLevel.critical
    if score >= 50:
        return RiskLevel.high
    if score >= 25:
        return RiskLevel.medium
    return RiskLevel.low


def _occurrence(entry: LeaveHistoryEntry, day: date, details: str) -> PatternOccurrence:
    return PatternOccurrence(date=day, leave_request_id=entry.id, details=details)


def coerce_history(records: Iterable[Any]) -> list[LeaveHistoryEntry]:
    """Validate raw records, dropping any that are malformed."""
    entries = []
    for record in records:
        if isinstance(record, LeaveHistoryEntry):
            entries.append(record)
            continue
        try:
            entries.append(LeaveHistoryEntry.model_validate(record))
        except ValidationError as exc:
            logger.debug("Dropping malformed leave record: %s", exc.errors())
    return entries


def build_history(
    entries: Iterable[LeaveHistoryEntry], as_of: date, config: PatternConfig,
) -> LeaveHistory:
    start = as_of - timedelta(days=config.lookback_days)
    window = [
        e for e in entries
        if e.status in config.statuses and start < e.start_date <= as_of
    ]
    window.sort(key=lambda e: (e.start_date, e.end_date))
    return LeaveHistory(entries=window, as_of=as_of)


# ── Detectors ───────────────────────────────────────────────────────

class Detector(Protocol):
    pattern_type: PatternType

    def evaluate(
        self, history: LeaveHistory, config: PatternConfig,
    ) -> Optional[DetectedPattern]:
        ...


class MondayFridayDetector:
    pattern_type = PatternType.monday_friday

    def evaluate(self, history, config):
        entries = history.entries
        if not entries:
            return None
        hits = []
        for entry in entries:
            for day in (entry.start_date, entry.end_date):
                if day.weekday() in (MONDAY, FRIDAY):
                    hits.append(_occurrence(
                        entry, day, f"{DAY_NAMES[day.weekday()]} - {entry.label}"
                    ))
                    break
        ratio = len(hits) / len(entries)
        if len(hits) < config.monday_friday_min_occurrences:
            return None
        if ratio < config.monday_friday_ratio:
            return None
        return DetectedPattern(
            type=self.pattern_type,
            severity=graduated_severity(ratio, config.monday_friday_ratio),
            description=(
                f"{len(hits)} of {len(entries)} leaves ({ratio * 100:.1f}%) start "
                f"or end on a Monday/Friday in the last {config.lookback_days} days"
            ),
            suggestion=(
                "Review if these leaves are legitimate or indicate a pattern "
                "of extending weekends"
            ),
            occurrences=hits,
        )


class HolidayExtensionDetector:
    pattern_type = PatternType.holiday_extension

    @staticmethod
    def _is_break(day: date, holidays: set[date]) -> bool:
        return day.weekday() in WEEKEND or day in holidays

    def evaluate(self, history, config):
        hits = []
        for entry in history.entries:
            before = entry.start_date - timedelta(days=1)
            after = entry.end_date + timedelta(days=1)
            if self._is_break(before, config.holidays):
                hits.append(_occurrence(
                    entry, entry.start_date,
                    f"Starts right after {'holiday' if before in config.holidays else 'weekend'}",
                ))
            elif self._is_break(after, config.holidays):
                hits.append(_occurrence(
                    entry, entry.end_date,
                    f"Ends right before {'holiday' if after in config.holidays else 'weekend'}",
                ))
        threshold = config.holiday_extension_min_occurrences
        if len(hits) < threshold:
            return None
        return DetectedPattern(
            type=self.pattern_type,
            severity=graduated_severity(len(hits), threshold),
            description=f"{len(hits)} leave(s) adjacent to weekends or holidays",
            suggestion=(
                "Verify if leaves are pre-planned vacations or indicate a "
                "pattern of extending breaks"
            ),
            occurrences=hits,
        )


class ShortNoticeDetector:
    pattern_type = PatternType.short_notice

    def evaluate(self, history, config):
        hits = []
        for entry in history.entries:
            if entry.created_at is None:
                continue
            notice = (entry.start_date - entry.created_at.date()).days
            if notice < config.short_notice_days:
                hits.append(_occurrence(
                    entry, entry.start_date,
                    f"Requested {notice} day(s) before leave "
                    f"(threshold: {config.short_notice_days} days)",
                ))
        threshold = config.short_notice_min_occurrences
        if len(hits) < threshold:
            return None
        return DetectedPattern(
            type=self.pattern_type,
            severity=graduated_severity(len(hits), threshold),
            description=f"{len(hits)} short-notice leave(s) in the analysis window",
            suggestion="Discuss the importance of advance notice with the employee",
            occurrences=hits,
        )


class ClusteringDetector:
    pattern_type = PatternType.clustering

    def evaluate(self, history, config):
        short = [
            e for e in history.entries
            if e.duration_days <= config.clustering_max_duration
        ]
        clusters: list[list[LeaveHistoryEntry]] = []
        current: list[LeaveHistoryEntry] = []
        for entry in short:
            if current and (
                entry.start_date - current[0].start_date
            ).days > config.clustering_window_days:
                clusters.append(current)
                current = []
            current.append(entry)
        if current:
            clusters.append(current)
        clusters = [c for c in clusters if len(c) >= config.clustering_min_leaves]
        if len(clusters) < max(config.clustering_min_clusters, 1):
            return None

        clustered = [e for c in clusters for e in c]
        mon_fri = sum(1 for e in clustered if e.start_date.weekday() in (MONDAY, FRIDAY))
        if mon_fri * 2 >= len(clustered):
            severity = Severity.high
        elif len(clusters) > config.clustering_min_clusters:
            severity = Severity.medium
        else:
            severity = Severity.low
        return DetectedPattern(
            type=self.pattern_type,
            severity=severity,
            description=(
                f"Found {len(clusters)} cluster(s) of short leaves "
                f"({len(clustered)} total) within {config.clustering_window_days} days"
            ),
            suggestion=(
                "Review if clustered single-day leaves indicate avoidance of "
                "continuous leave documentation"
            ),
            occurrences=[
                _occurrence(
                    e, e.start_date,
                    f"{e.label} - {DAY_NAMES[e.start_date.weekday()]}",
                )
                for e in clustered
            ],
        )


class BehavioralChangeDetector:
    pattern_type = PatternType.behavioral_change

    def evaluate(self, history, config):
        recent_start = history.as_of - timedelta(days=config.behavioral_recent_days)
        recent = [e for e in history.entries if e.start_date > recent_start]
        baseline = [e for e in history.entries if e.start_date <= recent_start]
        if len(baseline) < config.behavioral_min_baseline_leaves or not recent:
            return None

        baseline_days = max(config.lookback_days - config.behavioral_recent_days, 1)
        period = 30
        recent_rate = len(recent) * period / config.behavioral_recent_days
        baseline_rate = len(baseline) * period / baseline_days
        threshold = baseline_rate * config.behavioral_multiplier
        if recent_rate < threshold:
            return None
        increase = (recent_rate / baseline_rate - 1) * 100
        return DetectedPattern(
            type=self.pattern_type,
            severity=graduated_severity(recent_rate, threshold),
            description=(
                f"Leave frequency increased by {increase:.1f}% "
                f"({recent_rate:.1f} vs {baseline_rate:.1f} leaves per {period} days)"
            ),
            suggestion=(
                "Check in with employee to understand if there are underlying issues"
            ),
            occurrences=[
                _occurrence(e, e.start_date, f"{e.duration_days:g} day(s) - {e.label}")
                for e in recent
            ],
        )


class ExcessiveSickLeaveDetector:
    pattern_type = PatternType.excessive_sick_leave

    def evaluate(self, history, config):
        total = sum(e.duration_days for e in history.entries)
        sick = [e for e in history.entries if e.is_sick]
        if total <= 0 or not sick:
            return None
        sick_days = sum(e.duration_days for e in sick)
        ratio = sick_days / total
        if ratio < config.sick_leave_ratio:
            return None
        return DetectedPattern(
            type=self.pattern_type,
            severity=graduated_severity(ratio, config.sick_leave_ratio),
            description=(
                f"{sick_days:g} of {total:g} leave days ({ratio * 100:.1f}%) are sick leave"
            ),
            suggestion=(
                "Consider discussing employee wellbeing or requesting medical "
                "documentation"
            ),
            occurrences=[
                _occurrence(e, e.start_date, f"{e.duration_days:g} day(s) sick leave")
                for e in sick
            ],
        )


DETECTORS: tuple[Detector, ...] = (
    MondayFridayDetector(),
    HolidayExtensionDetector(),
    ShortNoticeDetector(),
    ClusteringDetector(),
    BehavioralChangeDetector(),
    ExcessiveSickLeaveDetector(),
)


# ── Analysis ────────────────────────────────────────────────────────

def _latest_end(entries: Iterable[LeaveHistoryEntry]) -> Optional[date]:
    return max((e.end_date for e in entries), default=None)


def analyze_leave_patterns(
    leaves: Iterable[Any],
    employee_id: str,
    employee_name: Optional[str] = None,
    config: PatternConfig = DEFAULT_CONFIG,
    *,
    as_of: Optional[date] = None,
    detectors: Sequence[Detector] = DETECTORS,
) -> PatternAnalysisResult:
    """Run every detector over one employee's leaves."""
    entries = coerce_history(leaves)
    as_of = as_of or _latest_end(entries)
    result = PatternAnalysisResult(employee_id=str(employee_id), employee_name=employee_name)
    if as_of is None:
        return result

    history = build_history(entries, as_of, config)
    patterns = [
        pattern
        for pattern in (d.evaluate(history, config) for d in detectors)
        if pattern is not None
    ]
    score = min(
        sum(config.severity_points.get(p.severity, 0) for p in patterns), 100
    )
    result.patterns = patterns
    result.overall_risk_score = score
    result.risk_level = risk_level_for(score)
    return result


def analyze_team_leave_patterns(
    leaves_by_employee: Mapping[str, Any],
    config: PatternConfig = DEFAULT_CONFIG,
    *,
    as_of: Optional[date] = None,
) -> list[PatternAnalysisResult]:
    """Analyze each employee; only those with at least one pattern are
    returned, highest risk score first.

    Each value is ``{"leaves": [...], "employeeName": ...}`` (or the
    snake_case ``employee_name``). Without *as_of* every employee is measured
    back from the latest leave end date found in the whole input.
    """
    prepared: dict[str, tuple[list[LeaveHistoryEntry], Optional[str]]] = {}
    for employee_id, data in leaves_by_employee.items():
        if isinstance(data, Mapping):
            leaves = data.get("leaves") or []
            name = data.get("employeeName", data.get("employee_name"))
        else:
            leaves, name = data, None
        prepared[str(employee_id)] = (coerce_history(leaves), name)

    if as_of is None:
        as_of = _latest_end(e for entries, _ in prepared.values() for e in entries)

    results = []
    for employee_id, (entries, name) in prepared.items():
        result = analyze_leave_patterns(
            entries, employee_id, name, config, as_of=as_of
        )
        if result.patterns:
            results.append(result)
    results.sort(key=lambda r: (-r.overall_risk_score, r.employee_id))
    return results
