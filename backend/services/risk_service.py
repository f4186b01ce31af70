"""
Risk evaluation for daily self-reports.

Pure decision functions over (new report, prior reports): no database access and no
side effects. The caller persists the risk flag, opens the alert and notifies.

Rules are an ordered tuple of (reason, predicate) pairs. Each rule is evaluated
independently and every matching reason is reported, in rule order.
Elevated/manic polarity is not evaluated.
"""
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from core.config import settings

REASON_SUICIDAL_IDEATION = "SUICIDAL_IDEATION"
REASON_DEPRESSION_EPISODE = "DEPRESSION_EPISODE"
REASON_DELIMITER = ", "


class ReportLike(Protocol):
    date: date
    mood_level: int | None
    suicidal_ideation_flag: bool


RulePredicate = Callable[[ReportLike, Sequence[ReportLike]], bool]


@dataclass(frozen=True)
class RiskRule:
    reason: str
    predicate: RulePredicate


@dataclass(frozen=True)
class RiskEvaluation:
    triggered: bool
    reasons: tuple[str, ...]

    @property
    def trigger_source(self) -> str:
        return REASON_DELIMITER.join(self.reasons)


def recent_mood_history(new_report: ReportLike, priors: Sequence[ReportLike], window: int) -> list[ReportLike]:
    """The `window` most recent priors strictly before the new report's date that carry a mood_level."""
    eligible = [r for r in priors if r.mood_level is not None and r.date < new_report.date]
    eligible.sort(key=lambda r: r.date, reverse=True)
    return eligible[:window]


def suicidal_ideation(new_report: ReportLike, priors: Sequence[ReportLike]) -> bool:
    return bool(new_report.suicidal_ideation_flag)


def sustained_depression(new_report: ReportLike, priors: Sequence[ReportLike]) -> bool:
    threshold = settings.depression_mood_threshold
    window = settings.depression_window

    if new_report.mood_level is None or new_report.mood_level > threshold:
        return False

    # No gap-filling: fewer than `window` qualifying priors never triggers.
    history = recent_mood_history(new_report, priors, window)
    return len(history) == window and all(r.mood_level <= threshold for r in history)


RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(REASON_SUICIDAL_IDEATION, suicidal_ideation),
    RiskRule(REASON_DEPRESSION_EPISODE, sustained_depression),
)


def evaluate(
    new_report: ReportLike,
    prior_reports: Sequence[ReportLike],
    rules: Sequence[RiskRule] = RISK_RULES,
) -> RiskEvaluation:
    reasons = tuple(rule.reason for rule in rules if rule.predicate(new_report, prior_reports))
    return RiskEvaluation(triggered=bool(reasons), reasons=reasons)
