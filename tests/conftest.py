"""
Pytest fixtures shared by the test suite.

Stores are in-memory; the failing variants raise the same errors the
WordPress client raises so the controller paths are exercised for real.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path so tests can import the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Keep the expansion state out of the working tree
os.environ.setdefault("BCM_EXPANSION_STATE_FILE", "")

from better_category_manager.config import Config
from better_category_manager.controller import ReconciliationController
from better_category_manager.exceptions import StoreRejectionError, StoreRequestError
from better_category_manager.models import Term
from better_category_manager.notifications import NotificationCenter
from better_category_manager.term_store import InMemoryTermStore


class RejectingStore(InMemoryTermStore):
    """Rejects every hierarchy update the way wp_send_json_error does."""

    def __init__(self, *args, message: str = "Could not update the term.", **kwargs):
        super().__init__(*args, **kwargs)
        self.message = message

    async def update_term_hierarchy(self, term_id, new_parent_id, category):
        self._record("update_term_hierarchy", term_id, new_parent_id, category)
        raise StoreRejectionError(self.message)


class OfflineStore(InMemoryTermStore):
    """Transport failure on hierarchy updates; reads still work."""

    async def update_term_hierarchy(self, term_id, new_parent_id, category):
        self._record("update_term_hierarchy", term_id, new_parent_id, category)
        raise StoreRequestError("Connection refused")


def make_terms(*rows) -> list[Term]:
    """Build terms from (id, parent, name) tuples."""
    return [Term(id=i, name=name, parent=parent, slug=name.lower()) for i, parent, name in rows]


@pytest.fixture
def scenario_terms() -> list[Term]:
    """Fruit > Apple, Veg."""
    return make_terms((1, 0, "Fruit"), (2, 1, "Apple"), (3, 0, "Veg"))


@pytest.fixture
def deep_terms() -> list[Term]:
    """
    News
      World
        Europe
        Asia
      Local
    Sports
      Football
    Misc
    """
    return make_terms(
        (10, 0, "News"),
        (11, 10, "World"),
        (12, 11, "Europe"),
        (13, 11, "Asia"),
        (14, 10, "Local"),
        (20, 0, "Sports"),
        (21, 20, "Football"),
        (30, 0, "Misc"),
    )


@pytest.fixture
def settings() -> Config:
    return Config(
        ajax_url="http://wp.test/wp-admin/admin-ajax.php",
        nonce="test-nonce",
        category="category",
        search_debounce_ms=20,
        expansion_state_file=None,
    )


@pytest.fixture
def store(scenario_terms) -> InMemoryTermStore:
    return InMemoryTermStore(scenario_terms)


@pytest.fixture
def controller(store, settings) -> ReconciliationController:
    return ReconciliationController(store, settings=settings, notifications=NotificationCenter())
