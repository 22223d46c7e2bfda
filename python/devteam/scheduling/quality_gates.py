"""Quality gates on task completion.

Dependencies don't just wait for *completion*, they wait for *quality
completion*: a task whose weighted quality score is below the threshold
goes to REVIEW and its dependents stay blocked.

Four weighted checks feed the score:

=============  ======
complexity      0.3
test coverage   0.4
security        0.2
performance     0.1
=============  ======

Each check is a pluggable scorer ``(Task) -> float``.  The default scorers
read ``task.metadata["quality"]`` (as reported by the executor) and fall
back to a per-check baseline when a value is absent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from devteam.models import Task, utcnow

logger = logging.getLogger(__name__)

PASS_THRESHOLD = 0.8


class QualityCheck(str, Enum):
    COMPLEXITY = "complexity"
    TEST_COVERAGE = "test_coverage"
    SECURITY = "security"
    PERFORMANCE = "performance"


QUALITY_WEIGHTS: Dict[QualityCheck, float] = {
    QualityCheck.COMPLEXITY: 0.3,
    QualityCheck.TEST_COVERAGE: 0.4,
    QualityCheck.SECURITY: 0.2,
    QualityCheck.PERFORMANCE: 0.1,
}

# Score assumed when the executor reported nothing for a check
BASELINE_SCORES: Dict[QualityCheck, float] = {
    QualityCheck.COMPLEXITY: 0.8,
    QualityCheck.TEST_COVERAGE: 0.9,
    QualityCheck.SECURITY: 0.85,
    QualityCheck.PERFORMANCE: 0.75,
}

# Keys accepted in task.metadata["quality"] for each check
_METADATA_KEYS: Dict[QualityCheck, Tuple[str, ...]] = {
    QualityCheck.COMPLEXITY: ("complexity",),
    QualityCheck.TEST_COVERAGE: ("test_coverage", "coverage"),
    QualityCheck.SECURITY: ("security",),
    QualityCheck.PERFORMANCE: ("performance",),
}

_RECOMMENDATIONS: Dict[QualityCheck, str] = {
    QualityCheck.COMPLEXITY: "Reduce complexity: split large functions and simplify branching",
    QualityCheck.TEST_COVERAGE: "Increase test coverage to at least 80%",
    QualityCheck.SECURITY: "Resolve outstanding security findings",
    QualityCheck.PERFORMANCE: "Profile and optimize slow code paths",
}

QualityScorer = Callable[[Task], float]


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class QualityCheckResult:
    check: QualityCheck
    score: float
    weight: float
    passed: bool
    recommendation: Optional[str] = None


@dataclass(frozen=True)
class QualityGateResult:
    """Detailed result of a quality gate evaluation."""

    task_id: str
    overall_score: float
    passed: bool
    checks: Tuple[QualityCheckResult, ...] = ()
    recommendations: Tuple[str, ...] = ()
    evaluated_at: datetime = field(default_factory=utcnow)

    def score_for(self, check: QualityCheck) -> Optional[float]:
        for result in self.checks:
            if result.check == check:
                return result.score
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "overall_score": round(self.overall_score, 4),
            "passed": self.passed,
            "checks": {c.check.value: round(c.score, 4) for c in self.checks},
            "recommendations": list(self.recommendations),
            "evaluated_at": self.evaluated_at.isoformat(),
        }


# ── Scorers ──────────────────────────────────────────────────────────


def metadata_scorer(check: QualityCheck) -> QualityScorer:
    """Scorer reading *check* from ``task.metadata["quality"]``.

    Percentages (values above 1) are normalised to ``[0, 1]``.
    """
    def score(task: Task) -> float:
        reported = task.metadata.get("quality") or {}
        for key in _METADATA_KEYS[check]:
            if reported.get(key) is not None:
                value = float(reported[key])
                if value > 1.0:
                    value /= 100.0
                return value
        return BASELINE_SCORES[check]

    return score


class QualityGateEvaluator:
    """Runs the weighted checks and applies the pass threshold."""

    def __init__(
        self,
        scorers: Optional[Mapping[QualityCheck, QualityScorer]] = None,
        threshold: float = PASS_THRESHOLD,
    ) -> None:
        self._scorers: Dict[QualityCheck, QualityScorer] = {
            check: metadata_scorer(check) for check in QualityCheck
        }
        if scorers:
            self._scorers.update(scorers)
        self.threshold = threshold

    def evaluate(self, task: Task) -> QualityGateResult:
        results: List[QualityCheckResult] = []
        overall = 0.0
        for check, weight in QUALITY_WEIGHTS.items():
            try:
                score = max(0.0, min(1.0, float(self._scorers[check](task))))
            except Exception:
                logger.warning("Quality check %s failed for task %s", check.value, task.id, exc_info=True)
                score = 0.0
            passed = score >= self.threshold
            results.append(
                QualityCheckResult(
                    check=check,
                    score=score,
                    weight=weight,
                    passed=passed,
                    recommendation=None if passed else _RECOMMENDATIONS[check],
                )
            )
            overall += score * weight

        # compare at 6 dp
        overall = round(overall, 6)
        passed = overall >= self.threshold
        if not passed:
            logger.info("Task %s failed quality gate (%.2f < %.2f)", task.id, overall, self.threshold)
        return QualityGateResult(
            task_id=task.id,
            overall_score=overall,
            passed=passed,
            checks=tuple(results),
            recommendations=tuple(r.recommendation for r in results if r.recommendation),
        )
