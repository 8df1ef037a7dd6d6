"""Tracks which tree nodes the user has expanded."""

import json
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class ExpansionStateTracker:
    """
    Remembers expanded term ids across re-renders.

    Only terms with children can be toggled; the predicate is supplied by
    whoever owns the tree. Ids that are no longer in the tree are kept and
    simply never matched. Saving to disk is best effort.
    """

    def __init__(
        self,
        has_children: Optional[Callable[[int], bool]] = None,
        storage_path: Optional[Path] = None,
    ):
        self._expanded: set[int] = set()
        self._has_children = has_children or (lambda term_id: True)
        self.storage_path = storage_path

    def bind(self, has_children: Callable[[int], bool]) -> None:
        """Point the tracker at the children predicate of a new tree."""
        self._has_children = has_children

    def is_expanded(self, term_id: int) -> bool:
        return term_id in self._expanded

    @property
    def expanded_ids(self) -> frozenset[int]:
        return frozenset(self._expanded)

    def toggle(self, term_id: int) -> bool:
        """
        Flip the expansion state of a term.

        Returns:
            The new state. Childless terms are left alone and report False.
        """
        if not self._has_children(term_id):
            logger.debug(f"Ignoring toggle of term {term_id}: no children")
            return self.is_expanded(term_id)

        if term_id in self._expanded:
            self._expanded.discard(term_id)
        else:
            self._expanded.add(term_id)
        self.save()
        return term_id in self._expanded

    def expand_all(self, candidate_ids: Iterable[int]) -> int:
        """Expand every candidate that has children. Returns how many changed."""
        changed = 0
        for term_id in candidate_ids:
            if self._has_children(term_id) and term_id not in self._expanded:
                self._expanded.add(term_id)
                changed += 1
        logger.info(f"Expanded {changed} term groups")
        if changed:
            self.save()
        return changed

    def collapse_all(self, candidate_ids: Iterable[int]) -> int:
        """Collapse every expanded candidate. Returns how many changed."""
        changed = 0
        for term_id in candidate_ids:
            if term_id in self._expanded:
                self._expanded.discard(term_id)
                changed += 1
        logger.info(f"Collapsed {changed} term groups")
        if changed:
            self.save()
        return changed

    def clear(self) -> None:
        self._expanded.clear()
        self.save()

    # ==================== SOFT PERSISTENCE ====================

    def save(self) -> bool:
        """Write expanded ids to storage. Failures are logged, never raised."""
        if self.storage_path is None:
            return False
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(sorted(self._expanded), f)
            return True
        except OSError as e:
            logger.warning(f"Storage access error while saving expansion state: {e}")
            return False

    def restore(self) -> bool:
        """Load expanded ids from storage. Missing or corrupt data is ignored."""
        if self.storage_path is None or not self.storage_path.exists():
            return False
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._expanded = {int(term_id) for term_id in raw}
            logger.debug(f"Restored {len(self._expanded)} expanded terms")
            return True
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Storage access error while restoring expansion state: {e}")
            return False
