"""Protocol definitions for the scheduling system."""

from collections.abc import Iterator
from typing import Protocol

from .core import PlacementContext, SlotCandidate


class SlotStrategy(Protocol):
    """Chooses one placement among the conflict-free candidate slots."""

    name: str

    def select(self, candidates: Iterator[SlotCandidate], context: PlacementContext) -> SlotCandidate | None:
        """Pick a candidate slot.

        Args:
            candidates: Lazily computed candidates, one per capable machine,
                in machine-rank order. Strategies should only consume as many
                as they need.
            context: Run state for the instance being placed

        Returns:
            The chosen candidate, or None if there are no candidates
        """
        ...
