"""Projection of the term tree into a displayable nested view."""

import html
from dataclasses import dataclass, field
from typing import Iterator, Optional

from rich.text import Text
from rich.tree import Tree

from .expansion import ExpansionStateTracker
from .models import ROOT_ID, HighlightState, ParentOption, TreeNode
from .tree_model import TermTreeModel

NO_TERMS_MESSAGE = "No terms found."
DRAG_DISABLED_HINT = "Drag and drop not available for non-hierarchical taxonomies"
DRAG_HINT = "Drag to reorder, drag right to nest"


@dataclass
class RenderedRow:
    """One term row as the UI shell should draw it."""

    term_id: int
    name: str
    count: int
    depth: int
    has_children: bool
    expanded: bool
    visible: bool
    can_toggle: bool
    can_drag: bool
    drag_hint: str
    can_edit: bool = True
    can_delete: bool = True
    highlight: bool = False
    helper_text: str = ""
    children: list["RenderedRow"] = field(default_factory=list)


@dataclass
class TreeView:
    """Full rendered tree plus the state of the tree-level controls."""

    rows: list[RenderedRow]
    is_hierarchical: bool
    show_tree_controls: bool
    show_counts: bool
    empty_message: str = ""
    placeholder_indent: int = 0

    def iter_rows(self) -> Iterator[RenderedRow]:
        """Pre-order walk over every rendered row."""
        stack = list(reversed(self.rows))
        while stack:
            row = stack.pop()
            yield row
            stack.extend(reversed(row.children))

    def find(self, term_id: int) -> Optional[RenderedRow]:
        return next((row for row in self.iter_rows() if row.term_id == term_id), None)

    def visible_ids(self) -> list[int]:
        return [row.term_id for row in self.iter_rows() if row.visible]


class TreeRenderer:
    """
    Turns a tree plus expansion state into a TreeView.

    Rendering has no side effects and is safe to repeat; the view is
    rebuilt from the model every time and never read back.
    """

    def __init__(self, show_counts: bool = True):
        self.show_counts = show_counts

    def render(
        self,
        root: TreeNode,
        expansion: ExpansionStateTracker,
        is_hierarchical: bool = True,
        visible_ids: Optional[set[int]] = None,
        highlight: Optional[HighlightState] = None,
    ) -> TreeView:
        """
        Render the tree below the synthetic root.

        Args:
            root: Synthetic root returned by TermTreeModel.build
            expansion: Expanded ids; children of collapsed rows are hidden
            is_hierarchical: Flat taxonomies get no toggles and no drag
            visible_ids: Search filter result; overrides expansion when set
            highlight: Drag indicators of the current sample
        """
        highlight = highlight or HighlightState()
        top_rows: list[RenderedRow] = []

        # (node, depth, parent row, parent shown)
        stack: list[tuple[TreeNode, int, Optional[RenderedRow], bool]] = [
            (child, 0, None, True) for child in reversed(root.children)
        ]
        while stack:
            node, depth, parent_row, parent_open = stack.pop()
            term = node.term
            has_children = bool(node.children)
            expanded = has_children and expansion.is_expanded(node.id)

            if visible_ids is not None:
                visible = node.id in visible_ids
            else:
                visible = parent_open

            row = RenderedRow(
                term_id=node.id,
                name=term.name,
                count=term.count if self.show_counts else 0,
                depth=depth,
                has_children=has_children,
                expanded=expanded,
                visible=visible,
                can_toggle=is_hierarchical and has_children,
                can_drag=is_hierarchical,
                drag_hint=DRAG_HINT if is_hierarchical else DRAG_DISABLED_HINT,
                highlight=highlight.potential_parent_id == node.id,
                helper_text=highlight.helper_text if highlight.potential_parent_id == node.id else "",
            )
            if parent_row is None:
                top_rows.append(row)
            else:
                parent_row.children.append(row)

            children_open = visible and expanded
            stack.extend(
                (child, depth + 1, row, children_open) for child in reversed(node.children)
            )

        return TreeView(
            rows=top_rows,
            is_hierarchical=is_hierarchical,
            show_tree_controls=is_hierarchical,
            show_counts=self.show_counts,
            empty_message="" if top_rows else NO_TERMS_MESSAGE,
            placeholder_indent=highlight.placeholder_indent,
        )


def to_rich_tree(view: TreeView, title: str = "Categories") -> Tree:
    """Build a rich Tree for terminal output. Hidden rows are skipped."""
    tree = Tree(Text(title, style="bold"))
    if view.empty_message:
        tree.add(Text(view.empty_message, style="dim"))
        return tree

    stack: list[tuple[RenderedRow, Tree]] = [(row, tree) for row in reversed(view.rows)]
    while stack:
        row, branch = stack.pop()
        if not row.visible:
            continue

        label = Text()
        if row.can_toggle:
            label.append("▾ " if row.expanded else "▸ ", style="cyan")
        label.append(row.name, style="bold yellow" if row.highlight else "")
        if view.show_counts:
            label.append(f" ({row.count})", style="dim")
        label.append(f"  #{row.term_id}", style="dim")
        if row.helper_text:
            label.append(f"  ← {row.helper_text}", style="green")

        child_branch = branch.add(label)
        stack.extend((child, child_branch) for child in reversed(row.children))

    return tree


def parent_options(model: TermTreeModel, exclude_id: int = 0) -> list[ParentOption]:
    """Dropdown entries in tree order, indented by depth."""
    excluded: set[int] = set()
    if exclude_id != ROOT_ID and exclude_id in model:
        excluded = {exclude_id} | model.descendants(exclude_id)
    return [
        ParentOption(id=node.id, name=node.term.name, depth=depth)
        for node, depth in model.iter_nodes()
        if node.id not in excluded
    ]


def parent_options_markup(options: list[ParentOption], selected: int = 0) -> str:
    """HTML <option> list with "None" first and an em dash per level."""
    markup = '<option value="0">None</option>'
    for option in options:
        is_selected = ' selected="selected"' if option.id == selected else ""
        indent = "&mdash; " * option.depth
        markup += (
            f'<option value="{option.id}"{is_selected}>{indent}{html.escape(option.name)}</option>'
        )
    return markup
