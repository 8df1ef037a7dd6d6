"""Data models for taxonomy terms, tree nodes and drag state."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

ROOT_ID = 0


@dataclass
class Term:
    """Represents a single taxonomy term (category or tag)."""

    id: int
    name: str
    slug: str = ""
    description: str = ""
    parent: int = ROOT_ID
    count: int = 0

    def __hash__(self):
        return hash(self.id)

    def with_parent(self, parent: int) -> "Term":
        """Copy of this term attached to a different parent."""
        return replace(self, parent=parent)


@dataclass
class TreeNode:
    """A term placed in the tree. The synthetic root has no term."""

    term: Optional[Term] = None
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.term.id if self.term else ROOT_ID

    @property
    def is_root(self) -> bool:
        return self.term is None

    @property
    def child_ids(self) -> list[int]:
        return [child.id for child in self.children]


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class RowGeometry:
    """Top-left page offset of a visible term row."""

    term_id: int
    x: float
    y: float


@dataclass(frozen=True)
class PointerSample:
    """One pointer-move event received while dragging."""

    pointer_x: float
    pointer_y: float
    dragged_item_id: int
    placeholder_x: float


class DragState(Enum):
    """Finite state machine states for a drag gesture."""
    IDLE = "idle"
    DRAGGING = "dragging"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


@dataclass
class DragSession:
    """Ephemeral state while a term row is being dragged."""

    dragged_item_id: int
    start_pointer: Point
    current_pointer: Point
    candidate_parent_id: Optional[int] = None
    drag_delta: float = 0.0


@dataclass(frozen=True)
class HighlightState:
    """Visual indicators for the current drag sample."""

    potential_parent_id: Optional[int] = None
    placeholder_indent: int = 0
    helper_text: str = ""

    @property
    def active(self) -> bool:
        return self.potential_parent_id is not None


@dataclass(frozen=True)
class DropIntent:
    """Result of evaluating one drag sample."""

    candidate_parent_id: Optional[int]
    highlight: HighlightState = field(default_factory=HighlightState)


@dataclass(frozen=True)
class DropResult:
    """Final decision taken when the dragged row is released."""

    item_id: int
    new_parent_id: int
    nested: bool


# ==================== TERM STORE PAYLOADS ====================


@dataclass
class TermListResult:
    terms: list[Term]
    is_hierarchical: bool = True


@dataclass
class ParentOption:
    """An entry of the parent dropdown."""

    id: int
    name: str
    depth: int = 0


@dataclass
class ParentOptions:
    parent_dropdown_markup: str
    options: list[ParentOption] = field(default_factory=list)


@dataclass
class TermDetail:
    """Everything the edit form needs for one term."""

    term: Term
    parent_options: list[ParentOption] = field(default_factory=list)
    category_is_hierarchical: bool = True
    parent_dropdown_markup: str = ""


@dataclass
class TermFormFields:
    """Fields submitted by the term edit form. term_id 0 creates a new term."""

    name: str
    category: str
    term_id: int = 0
    slug: str = ""
    description: str = ""
    parent: int = ROOT_ID

    def to_payload(self) -> dict:
        return {
            "term_id": self.term_id,
            "taxonomy": self.category,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "parent": self.parent,
        }


@dataclass
class StoreMessage:
    message: str = ""


@dataclass
class DeleteResult:
    message: str = ""
    children_action: Literal["moved", "none"] = "none"


# ==================== NOTIFICATIONS ====================


class NotificationKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Notification:
    """A message shown to the user in the notification area."""

    id: int
    message: str
    kind: NotificationKind
    duration_ms: int = 3000
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def sticky(self) -> bool:
        """Sticky notifications stay until dismissed."""
        return self.duration_ms <= 0
