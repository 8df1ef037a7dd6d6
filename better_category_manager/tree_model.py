"""In-memory term tree built from a flat parent-pointer list."""

import logging
from typing import Iterable, Iterator, Optional

from .exceptions import CategoryManagerError, CycleError, TermNotFoundError
from .models import ROOT_ID, Term, TreeNode

logger = logging.getLogger(__name__)


class TermTreeModel:
    """
    Owns the flat term collection of the loaded taxonomy and the tree
    derived from it.

    The tree is rebuilt from scratch on every load and after every
    reparent. Children keep the order in which the terms were supplied,
    so the store decides sibling order (name ASC for WordPress).
    Terms whose parent does not exist are attached to the root.
    """

    def __init__(self, terms: Iterable[Term] = (), is_hierarchical: bool = True):
        self.is_hierarchical = is_hierarchical
        self._terms: dict[int, Term] = {}
        self._children: dict[int, list[int]] = {}
        self._nodes: dict[int, TreeNode] = {}
        self.root = TreeNode()
        self.build(terms)

    # ==================== CONSTRUCTION ====================

    def build(self, terms: Iterable[Term], is_hierarchical: Optional[bool] = None) -> TreeNode:
        """
        Replace the collection and rebuild the tree.

        Args:
            terms: Flat term list in display order
            is_hierarchical: Optionally switch taxonomy mode at the same time

        Returns:
            The synthetic root node (id 0)
        """
        if is_hierarchical is not None:
            self.is_hierarchical = is_hierarchical

        collected: dict[int, Term] = {}
        for term in terms:
            if term.id in collected:
                logger.warning(f"Duplicate term id {term.id} in term list, keeping the last one")
            collected[term.id] = term

        self._terms = collected
        return self._rebuild()

    def _rebuild(self) -> TreeNode:
        # Parents that cannot be resolved are coerced to the root
        normalized: dict[int, Term] = {}
        for term in self._terms.values():
            parent = term.parent
            if not self.is_hierarchical:
                parent = ROOT_ID
            elif parent != ROOT_ID and (parent not in self._terms or parent == term.id):
                logger.debug(f"Term {term.id} has unresolvable parent {parent}, placing at root")
                parent = ROOT_ID
            normalized[term.id] = term if parent == term.parent else term.with_parent(parent)

        children: dict[int, list[int]] = {}
        for term in normalized.values():
            children.setdefault(term.parent, []).append(term.id)

        root = TreeNode()
        nodes: dict[int, TreeNode] = {ROOT_ID: root}
        placed = self._attach(root, children, normalized, nodes)

        # Terms in or below a parent cycle are unreachable from the root.
        # Only the cycle members move; their subtrees follow them.
        if len(placed) < len(normalized):
            members = self._cycle_members(normalized, placed)
            logger.warning(f"Terms {members} form a parent cycle, placing them at root")
            for term_id in members:
                normalized[term_id] = normalized[term_id].with_parent(ROOT_ID)
            children = {}
            for term in normalized.values():
                children.setdefault(term.parent, []).append(term.id)
            root = TreeNode()
            nodes = {ROOT_ID: root}
            self._attach(root, children, normalized, nodes)

        self._terms = normalized
        self._children = children
        self._nodes = nodes
        self.root = root
        return root

    @staticmethod
    def _attach(
        root: TreeNode,
        children: dict[int, list[int]],
        terms: dict[int, Term],
        nodes: dict[int, TreeNode],
    ) -> set[int]:
        """Attach children to their parents with an explicit worklist."""
        placed: set[int] = set()
        stack = [root]
        while stack:
            node = stack.pop()
            for child_id in children.get(node.id, []):
                if child_id in placed:
                    continue
                child = TreeNode(term=terms[child_id])
                node.children.append(child)
                nodes[child_id] = child
                placed.add(child_id)
                stack.append(child)
        return placed

    @staticmethod
    def _cycle_members(terms: dict[int, Term], placed: set[int]) -> list[int]:
        """Ids lying on a parent cycle, found by walking up from unplaced terms."""
        members: list[int] = []
        seen: set[int] = set()
        for start in terms:
            if start in placed or start in seen:
                continue
            path: list[int] = []
            index: dict[int, int] = {}
            current = start
            while (
                current != ROOT_ID
                and current not in placed
                and current not in seen
                and current not in index
            ):
                index[current] = len(path)
                path.append(current)
                current = terms[current].parent
            if current in index:
                members.extend(path[index[current]:])
            seen.update(path)
        return members

    # ==================== QUERIES ====================

    @property
    def terms(self) -> list[Term]:
        return list(self._terms.values())

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, term_id: int) -> bool:
        return term_id in self._terms

    def get(self, term_id: int) -> Term:
        """Return a term by id or raise TermNotFoundError."""
        try:
            return self._terms[term_id]
        except KeyError:
            raise TermNotFoundError(term_id) from None

    def node(self, term_id: int) -> TreeNode:
        if term_id == ROOT_ID:
            return self.root
        try:
            return self._nodes[term_id]
        except KeyError:
            raise TermNotFoundError(term_id) from None

    def has_children(self, term_id: int) -> bool:
        """True when at least one term has this term as its parent."""
        return bool(self._children.get(term_id))

    def children_of(self, term_id: int) -> list[int]:
        return list(self._children.get(term_id, []))

    def first_level_ids(self) -> list[int]:
        """Ids of the direct children of the synthetic root."""
        return self.children_of(ROOT_ID)

    def descendants(self, term_id: int) -> set[int]:
        """All ids below a term, excluding the term itself."""
        found: set[int] = set()
        stack = list(self._children.get(term_id, []))
        while stack:
            current = stack.pop()
            if current in found:
                continue
            found.add(current)
            stack.extend(self._children.get(current, []))
        return found

    def ancestors(self, term_id: int) -> list[int]:
        """Parent chain from the direct parent up to (not including) the root."""
        chain: list[int] = []
        seen: set[int] = set()
        current = self.get(term_id).parent
        while current != ROOT_ID and current not in seen:
            chain.append(current)
            seen.add(current)
            current = self._terms[current].parent
        return chain

    def depth(self, term_id: int) -> int:
        """Number of ancestors; first-level terms have depth 0."""
        return len(self.ancestors(term_id))

    def iter_nodes(self) -> Iterator[tuple[TreeNode, int]]:
        """Pre-order walk yielding (node, depth), root excluded."""
        stack = [(child, 0) for child in reversed(self.root.children)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            stack.extend((child, depth + 1) for child in reversed(node.children))

    def flatten(self) -> list[tuple[int, int]]:
        """The tree as (id, parent) pairs in pre-order."""
        return [(node.id, node.term.parent) for node, _ in self.iter_nodes()]

    # ==================== MUTATION ====================

    def reparent(self, term_id: int, new_parent_id: int) -> TreeNode:
        """
        Move a term under a new parent and rebuild the tree.

        Args:
            term_id: The term being moved
            new_parent_id: Target parent id, 0 for the root

        Returns:
            The rebuilt root node

        Raises:
            CycleError: new_parent_id is the term itself or one of its descendants
            TermNotFoundError: either id is unknown
        """
        if not self.is_hierarchical:
            raise CategoryManagerError("Reparenting is disabled for non-hierarchical taxonomies")

        term = self.get(term_id)
        if new_parent_id != ROOT_ID and new_parent_id not in self._terms:
            raise TermNotFoundError(new_parent_id)
        if new_parent_id == term_id or new_parent_id in self.descendants(term_id):
            raise CycleError(term_id, new_parent_id)

        if term.parent == new_parent_id:
            return self.root

        logger.debug(f"Reparenting term {term_id}: {term.parent} -> {new_parent_id}")
        self._terms[term_id] = term.with_parent(new_parent_id)
        return self._rebuild()

    def remove(self, term_id: int) -> TreeNode:
        """
        Drop a term locally. Its children move up to its parent, which is
        what WordPress does when a category with children is deleted.
        """
        term = self.get(term_id)
        for child_id in self.children_of(term_id):
            self._terms[child_id] = self._terms[child_id].with_parent(term.parent)
        del self._terms[term_id]
        return self._rebuild()
