"""Weighted complexity scoring for task plans."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import ComplexityConfig
from .schemas import ComplexityAssessment, ComplexityFactors, ComplexityLevel, TaskType

_TASK_TYPE_SCORES = {
    TaskType.GENERATION: 80.0,
    TaskType.REFACTORING: 60.0,
    TaskType.EXPLANATION: 30.0,
}
_DEFAULT_TASK_TYPE_SCORE = 50.0
_DEFAULT_SUCCESS_SCORE = 50.0


@dataclass(slots=True)
class ComplexityParams:
    """Raw inputs to :meth:`ComplexityAssessor.assess`."""

    task_type: Optional[TaskType]
    scope_size: int
    dependencies_count: int
    technology_complexity: int
    prior_success_rate: Optional[float] = None


class ComplexityAssessor:
    """Score a task on five factors and map the weighted sum to a level.

    Every factor is normalised to ``[0, 100]`` before weighting. A lower prior
    success rate yields a higher complexity contribution.
    """

    def __init__(self, config: ComplexityConfig | None = None) -> None:
        self._config = config or ComplexityConfig()

    def assess(self, params: ComplexityParams) -> ComplexityAssessment:
        weights = self._config.weights
        thresholds = self._config.thresholds

        factors = ComplexityFactors(
            task_type=_TASK_TYPE_SCORES.get(params.task_type, _DEFAULT_TASK_TYPE_SCORE),
            scope_size=min(100.0, params.scope_size * 10.0),
            dependencies_count=min(100.0, params.dependencies_count * 5.0),
            technology_complexity=min(100.0, params.technology_complexity * 10.0),
            prior_success_rate=(
                100.0 - min(100.0, params.prior_success_rate * 100.0)
                if params.prior_success_rate is not None
                else _DEFAULT_SUCCESS_SCORE
            ),
        )

        score = (
            factors.task_type * weights.task_type
            + factors.scope_size * weights.scope_size
            + factors.dependencies_count * weights.dependencies_count
            + factors.technology_complexity * weights.technology_complexity
            + factors.prior_success_rate * weights.prior_success_rate
        )

        if score >= thresholds.high:
            level = ComplexityLevel.HIGH
        elif score >= thresholds.medium:
            level = ComplexityLevel.MEDIUM
        else:
            level = ComplexityLevel.LOW

        return ComplexityAssessment(
            level=level,
            score=score,
            factors=factors,
            explanation=self._explain(level, score, factors),
        )

    def _explain(self, level: ComplexityLevel, score: float, factors: ComplexityFactors) -> str:
        weights = self._config.weights
        rows = [
            ("Task type", factors.task_type, weights.task_type),
            ("Code scope", factors.scope_size, weights.scope_size),
            ("Dependencies", factors.dependencies_count, weights.dependencies_count),
            ("Technology complexity", factors.technology_complexity, weights.technology_complexity),
            ("Prior success rate", factors.prior_success_rate, weights.prior_success_rate),
        ]
        lines = [
            f"{name} contribution: {value:.1f} (weighted: {value * weight:.1f})"
            for name, value, weight in rows
        ]
        return (
            f"Task assessed as {level.value} complexity with overall score {score:.1f}.\n"
            "Factors considered:\n- " + "\n- ".join(lines)
        )


__all__ = ["ComplexityAssessor", "ComplexityParams"]
