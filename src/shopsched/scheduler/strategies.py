"""Slot-selection strategies and their factory."""

from __future__ import annotations

from collections.abc import Iterator

from shopsched.logger import get_logger

from .config import SchedulerVariant, SlotScoringWeights
from .core import PlacementContext, SlotCandidate
from .protocols import SlotStrategy

logger = get_logger()

SECONDS_PER_DAY = 86400.0
# Lateness (days) at which the due-date slack score reaches zero
LATENESS_HORIZON_DAYS = 7.0


class FirstFitStrategy:
    """Accept the first conflict-free slot on the best-ranked machine."""

    name = SchedulerVariant.SIMPLE.value

    def select(self, candidates: Iterator[SlotCandidate], context: PlacementContext) -> SlotCandidate | None:
        return next(candidates, None)


class WeightedScoringStrategy:
    """Score every candidate and keep the best.

    The score combines, with configurable weights:
    - completion: earlier finish relative to the other candidates
    - utilization balance: less loaded machine
    - setup affinity: the machine's previous job was a similar process
    - due-date slack: finishing on time (degrades over a week of lateness)

    Ties go to the better-ranked machine.
    """

    name = SchedulerVariant.ENHANCED.value

    def __init__(self, weights: SlotScoringWeights | None = None):
        self.weights = weights or SlotScoringWeights()

    def select(self, candidates: Iterator[SlotCandidate], context: PlacementContext) -> SlotCandidate | None:
        options = list(candidates)
        if not options:
            return None

        scored = [(self.score(option, options, context), option) for option in options]
        for value, option in scored:
            logger.checks(
                f"    {context.instance_id}: {option.machine_id} {option.start} - {option.end} score {value:.3f}"
            )
        best_score, best = scored[0]
        for value, option in scored[1:]:
            if value > best_score + 1e-9:  # noqa: PLR2004
                best_score, best = value, option
        return best

    def score(self, option: SlotCandidate, options: list[SlotCandidate], context: PlacementContext) -> float:
        """Weighted score of one candidate among all of them (higher is better)."""
        earliest_end = min(o.end for o in options)
        latest_end = max(o.end for o in options)
        span = (latest_end - earliest_end).total_seconds()
        completion = 1.0 if span <= 0 else 1.0 - (option.end - earliest_end).total_seconds() / span

        max_load = max(context.workloads.get(o.machine_id, 0.0) for o in options)
        balance = 1.0 if max_load <= 0 else 1.0 - context.workloads.get(option.machine_id, 0.0) / max_load

        affinity = 1.0 if context.setup_affinity.get(option.machine_id, False) else 0.0

        if context.due_date is None or option.end <= context.due_date:
            slack = 1.0
        else:
            late_days = (option.end - context.due_date).total_seconds() / SECONDS_PER_DAY
            slack = max(0.0, 1.0 - late_days / LATENESS_HORIZON_DAYS)

        return (
            self.weights.completion * completion
            + self.weights.utilization_balance * balance
            + self.weights.setup_affinity * affinity
            + self.weights.due_date_slack * slack
        )


def create_strategy(variant: SchedulerVariant, weights: SlotScoringWeights | None = None) -> SlotStrategy:
    """Create the slot strategy for a scheduler variant.

    Raises:
        ValueError: If the variant is unknown
    """
    if variant == SchedulerVariant.SIMPLE:
        return FirstFitStrategy()
    if variant == SchedulerVariant.ENHANCED:
        return WeightedScoringStrategy(weights)

    msg = f"Unknown scheduler variant: {variant}"
    raise ValueError(msg)
