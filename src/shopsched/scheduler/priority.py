"""Priority engine: orders process instances for placement."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from shopsched.models import ProcessInstance

from .config import PriorityWeights
from .core import PriorityResult
from .graph import DependencyGraph

SECONDS_PER_DAY = 86400.0
MAX_DUE_DATE_SCORE = 100.0

# Share of the maximum possible score needed for each urgency level
URGENCY_THRESHOLDS = (
    (0.8, "critical"),
    (0.6, "high"),
    (0.4, "medium"),
)


class PriorityEngine:
    """Scores process instances; a higher score is placed first.

    The score is a weighted sum of the customer tier score, due-date urgency
    ``max(0, 100 - days_until_due)`` (clipped to 100) and a bonus for every
    instance that transitively depends on this one.
    """

    def __init__(self, weights: PriorityWeights | None = None, reference_time: datetime | None = None):
        """Initialize engine.

        Args:
            weights: Weights and tier scores
            reference_time: Instant due dates are measured from (the run's start time)
        """
        self.weights = weights or PriorityWeights()
        self.reference_time = reference_time or datetime.now()  # noqa: DTZ005

    def compute_priority(self, instance: ProcessInstance, all_instances: Sequence[ProcessInstance]) -> float:
        """Priority score of one instance within the given set."""
        return self.score(instance, DependencyGraph(all_instances)).score

    def score(
        self, instance: ProcessInstance, graph: DependencyGraph, *, on_critical_path: bool = False
    ) -> PriorityResult:
        """Score one instance with its breakdown."""
        tier_score = self.weights.tier_scores.get(instance.customer_priority.value, 0.0)
        due_score = self._due_date_score(instance)
        dependents = len(graph.transitive_dependents(instance.id))
        cp_score = min(self.weights.max_critical_path_score, dependents * self.weights.dependent_bonus)

        total = (
            self.weights.customer_tier * tier_score
            + self.weights.due_date * due_score
            + self.weights.critical_path * cp_score
        )
        return PriorityResult(
            process_instance_id=instance.id,
            score=total,
            tier_score=tier_score,
            due_date_score=due_score,
            critical_path_score=cp_score,
            dependents=dependents,
            on_critical_path=on_critical_path,
            urgency_level=self.urgency_level(total),
        )

    def rank(self, instances: Sequence[ProcessInstance], graph: DependencyGraph | None = None) -> list[PriorityResult]:
        """Score all instances and return them best first.

        Ties break by earliest due date (instances without one last), then by
        input order.

        Raises:
            CyclicDependencyError: If the instances' dependencies contain a cycle
        """
        graph = graph or DependencyGraph(instances)
        critical = graph.critical_path()
        results = [self.score(inst, graph, on_critical_path=critical.is_critical(inst.id)) for inst in instances]
        order = self.sort_key_map(instances, results)
        return sorted(results, key=lambda r: order[r.process_instance_id])

    def sort_key_map(
        self, instances: Sequence[ProcessInstance], results: Sequence[PriorityResult]
    ) -> dict[str, tuple[float, datetime, int]]:
        """Sort keys (ascending = scheduled first) by instance id."""
        scores = {r.process_instance_id: r.score for r in results}
        return {
            inst.id: (-scores[inst.id], inst.due_date or datetime.max, index)
            for index, inst in enumerate(instances)
        }

    def urgency_level(self, score: float) -> str:
        """Classify a score relative to the maximum achievable score."""
        max_tier = max(self.weights.tier_scores.values(), default=0.0)
        max_score = (
            self.weights.customer_tier * max_tier
            + self.weights.due_date * MAX_DUE_DATE_SCORE
            + self.weights.critical_path * self.weights.max_critical_path_score
        )
        if max_score <= 0:
            return "low"
        ratio = score / max_score
        for threshold, level in URGENCY_THRESHOLDS:
            if ratio >= threshold:
                return level
        return "low"

    def _due_date_score(self, instance: ProcessInstance) -> float:
        if instance.due_date is None:
            return 0.0
        days_until_due = (instance.due_date - self.reference_time).total_seconds() / SECONDS_PER_DAY
        return min(MAX_DUE_DATE_SCORE, max(0.0, MAX_DUE_DATE_SCORE - days_until_due))
