"""Search filtering over the term tree."""

from typing import Optional

from .tree_model import TermTreeModel


def filter_terms(model: TermTreeModel, query: str) -> Optional[set[int]]:
    """
    Ids that stay visible for a search query.

    Matching is a case-insensitive substring test on the term name. Every
    ancestor of a match stays visible so the match keeps its context.

    Returns:
        None for an empty query (no filtering), otherwise the visible ids
    """
    needle = query.strip().lower()
    if not needle:
        return None

    visible: set[int] = set()
    for term in model.terms:
        if needle in term.name.lower():
            visible.add(term.id)
            visible.update(model.ancestors(term.id))
    return visible
