"""Drop-target detection for drag-and-drop re-parenting of term rows."""

import logging
import math
from typing import Iterable, Optional, Sequence

from .config import DragGeometry
from .exceptions import DragStateError
from .models import (
    ROOT_ID,
    DragSession,
    DragState,
    DropIntent,
    DropResult,
    HighlightState,
    Point,
    PointerSample,
    RowGeometry,
)
from .tree_model import TermTreeModel

logger = logging.getLogger(__name__)


def nearest_candidate(
    sample: PointerSample,
    rows: Iterable[RowGeometry],
    excluded: set[int],
    proximity_tolerance: float,
) -> Optional[RowGeometry]:
    """
    Find the row closest to the pointer that could become the new parent.

    A row qualifies when it sits above the pointer, is horizontally within
    the proximity band of the placeholder and is neither the dragged term
    nor one of its descendants. On equal distances the first row wins.
    """
    closest: Optional[RowGeometry] = None
    closest_distance = math.inf

    for row in rows:
        if row.term_id == sample.dragged_item_id or row.term_id in excluded:
            continue
        if row.y >= sample.pointer_y:
            continue
        if abs(row.x - sample.placeholder_x) >= proximity_tolerance:
            continue

        distance = math.hypot(sample.pointer_y - row.y, sample.pointer_x - row.x)
        if distance < closest_distance:
            closest_distance = distance
            closest = row

    return closest


class DragReparentEngine:
    """
    Decides, sample by sample, whether a drag means "nest under" or
    "reorder among siblings".

    Nesting requires an explicit drag to the right past the nesting
    threshold; hovering near a row is not enough. The engine keeps no
    highlight state of its own: every intent is recomputed from the
    latest sample.

    States: IDLE -> DRAGGING -> DROPPED | CANCELLED -> IDLE
    """

    def __init__(self, model: TermTreeModel, geometry: Optional[DragGeometry] = None):
        self.model = model
        self.geometry = geometry or DragGeometry()
        self.state = DragState.IDLE
        self.outcome: Optional[DragState] = None
        self.session: Optional[DragSession] = None
        self._excluded: set[int] = set()

    @property
    def enabled(self) -> bool:
        return self.model.is_hierarchical

    @property
    def is_dragging(self) -> bool:
        return self.state == DragState.DRAGGING

    def press_starts_drag(self, held_ms: float) -> bool:
        """A press must be held for the start delay before it becomes a drag."""
        return self.enabled and held_ms >= self.geometry.start_delay_ms

    def start(self, item_id: int, pointer_x: float, pointer_y: float) -> DragSession:
        """
        Begin a drag gesture on a term row.

        Raises:
            DragStateError: a drag is already active or the taxonomy is flat
            TermNotFoundError: item_id is not in the tree
        """
        if not self.enabled:
            raise DragStateError("Drag and drop not available for non-hierarchical taxonomies")
        if self.state != DragState.IDLE:
            raise DragStateError(f"Cannot start a drag while {self.state.value}")

        self.model.get(item_id)
        start = Point(pointer_x, pointer_y)
        self.session = DragSession(
            dragged_item_id=item_id,
            start_pointer=start,
            current_pointer=start,
        )
        # Snapshot of the subtree under the dragged row
        self._excluded = self.model.descendants(item_id)
        self.state = DragState.DRAGGING
        self.outcome = None
        logger.debug(f"Drag start: term {item_id} at ({pointer_x}, {pointer_y})")
        return self.session

    def sample(self, sample: PointerSample, rows: Sequence[RowGeometry]) -> DropIntent:
        """
        Evaluate one pointer-move event.

        Args:
            sample: Pointer and placeholder position
            rows: Geometry of every visible term row

        Returns:
            The candidate parent (or None) and the matching highlight state
        """
        session = self._require_session(sample.dragged_item_id)
        session.current_pointer = Point(sample.pointer_x, sample.pointer_y)
        session.drag_delta = sample.pointer_x - session.start_pointer.x

        closest = nearest_candidate(
            sample, rows, self._excluded, self.geometry.proximity_tolerance
        )

        if closest is not None and session.drag_delta > self.geometry.nesting_threshold:
            session.candidate_parent_id = closest.term_id
        else:
            session.candidate_parent_id = None

        return DropIntent(
            candidate_parent_id=session.candidate_parent_id,
            highlight=self.highlight_for(session.candidate_parent_id),
        )

    def highlight_for(self, candidate_parent_id: Optional[int]) -> HighlightState:
        """Visual indicators are a pure function of the candidate."""
        if candidate_parent_id is None or candidate_parent_id not in self.model:
            return HighlightState()
        name = self.model.get(candidate_parent_id).name
        return HighlightState(
            potential_parent_id=candidate_parent_id,
            placeholder_indent=self.geometry.nest_indent,
            helper_text=f"Release to nest under {name}",
        )

    def drop(self, pointer_x: float, structural_parent_id: Optional[int] = None) -> DropResult:
        """
        Finish the gesture and decide the new parent.

        Args:
            pointer_x: Pointer x at release time
            structural_parent_id: Parent of the list the placeholder ended
                up in. Defaults to the dragged term's current parent.

        Returns:
            The candidate parent when the nesting gesture still holds,
            otherwise the structural sibling parent
        """
        session = self._require_session()
        drag_delta = pointer_x - session.start_pointer.x

        if (
            session.candidate_parent_id is not None
            and drag_delta > self.geometry.nesting_threshold
        ):
            result = DropResult(session.dragged_item_id, session.candidate_parent_id, nested=True)
        else:
            if structural_parent_id is None:
                structural_parent_id = self.model.get(session.dragged_item_id).parent
            result = DropResult(
                session.dragged_item_id, structural_parent_id or ROOT_ID, nested=False
            )

        logger.debug(
            f"Drag drop: term {result.item_id} -> parent {result.new_parent_id} "
            f"({'nest' if result.nested else 'sibling'})"
        )
        self._finish(DragState.DROPPED)
        return result

    def revalidate(self) -> None:
        """
        Drop references to terms that left the tree mid-drag.

        A vanished dragged term cancels the gesture; a vanished candidate
        only clears the nesting intent.
        """
        if self.session is None:
            return
        if self.session.dragged_item_id not in self.model:
            logger.info(f"Dragged term {self.session.dragged_item_id} is gone, cancelling drag")
            self.cancel()
            return
        candidate = self.session.candidate_parent_id
        if candidate is not None and candidate not in self.model:
            logger.info(f"Drop candidate {candidate} is gone, clearing it")
            self.session.candidate_parent_id = None

    def cancel(self) -> None:
        """Abort the gesture; nothing is committed."""
        if self.state != DragState.DRAGGING:
            return
        logger.debug("Drag cancelled")
        self._finish(DragState.CANCELLED)

    def _finish(self, outcome: DragState) -> None:
        self.outcome = outcome
        self.session = None
        self._excluded = set()
        self.state = DragState.IDLE

    def _require_session(self, item_id: Optional[int] = None) -> DragSession:
        if self.state != DragState.DRAGGING or self.session is None:
            raise DragStateError("No drag in progress")
        if item_id is not None and item_id != self.session.dragged_item_id:
            raise DragStateError(
                f"Sample for term {item_id} does not match dragged term "
                f"{self.session.dragged_item_id}"
            )
        return self.session
