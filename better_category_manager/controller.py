"""Reconciles local term-tree edits with the term store."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from .config import Config, config as default_config
from .drag_engine import DragReparentEngine
from .exceptions import (
    CycleError,
    MutationInFlightError,
    StoreRejectionError,
    StoreRequestError,
    TermNotFoundError,
)
from .expansion import ExpansionStateTracker
from .models import (
    DragSession,
    DropIntent,
    DropResult,
    ParentOption,
    PointerSample,
    RowGeometry,
    TermFormFields,
)
from .notifications import NotificationCenter
from .renderer import TreeRenderer, TreeView
from .search import filter_terms
from .term_store import TermStore
from .tree_model import TermTreeModel

logger = logging.getLogger(__name__)

TERM_UPDATED = "Term updated successfully."
TERM_DELETED = "has been deleted."
LOAD_ERROR = "Failed to load terms. Please try again."
HIERARCHY_UPDATE_ERROR = "Failed to update the term hierarchy. Please try again."
HIERARCHY_DEFECT_ERROR = "This move is not allowed. The term tree has been reloaded."
TERM_DATA_ERROR = "Failed to load term data. Please try again."
PARENT_OPTIONS_ERROR = "Failed to load parent categories. Please try again."
SAVE_ERROR = "Failed to save the term."
DELETE_ERROR = "Failed to delete term."
GENERATE_ERROR = "Failed to generate description. Please try again."
NAME_REQUIRED = "Name is required."
UNSAVED_CHANGES = "There are unsaved changes. Save or discard them first."

# Seconds a first delete click stays armed
DELETE_CONFIRM_WINDOW = 3.0


# ==================== ROW COMMANDS ====================


@dataclass(frozen=True)
class ToggleCommand:
    term_id: int


@dataclass(frozen=True)
class EditCommand:
    term_id: int


@dataclass(frozen=True)
class DeleteCommand:
    """Quick delete from the tree row. Needs a second click to confirm."""

    term_id: int


@dataclass(frozen=True)
class ConfirmDeleteCommand:
    """Delete from the editor, already confirmed by the user."""

    term_id: int


RowCommand = Union[ToggleCommand, EditCommand, DeleteCommand, ConfirmDeleteCommand]


@dataclass
class EditorState:
    """The term form currently open in the side editor."""

    category: str
    parent_options: list[ParentOption]
    parent_dropdown_markup: str = ""
    term_id: int = 0
    name: str = ""
    slug: str = ""
    description: str = ""
    parent: int = 0
    show_parent: bool = True
    is_new: bool = True
    has_unsaved_changes: bool = False

    def to_fields(self) -> TermFormFields:
        return TermFormFields(
            name=self.name,
            category=self.category,
            term_id=self.term_id,
            slug=self.slug,
            description=self.description,
            parent=self.parent,
        )


class ReconciliationController:
    """
    Owns the loaded tree and keeps it in step with the term store.

    Drops are applied to the local tree first and rendered immediately,
    then sent to the store. Whatever the store answers, the tree is
    reloaded from it afterwards; a failure only changes which single
    notification is shown. Only one mutation may wait on the store at a
    time, and tree loads are tagged with a generation so a reply that
    was overtaken by a newer load is dropped.
    """

    def __init__(
        self,
        store: TermStore,
        category: Optional[str] = None,
        notifications: Optional[NotificationCenter] = None,
        settings: Optional[Config] = None,
    ):
        self.settings = settings or default_config
        self.store = store
        self.category = category or self.settings.category
        self.notifications = notifications or NotificationCenter(
            self.settings.notification_duration_ms
        )

        self.model = TermTreeModel()
        self.expansion = ExpansionStateTracker(
            self.model.has_children, self.settings.expansion_state_file
        )
        self.expansion.restore()
        self.drag = DragReparentEngine(self.model, self.settings.drag_geometry)
        self.renderer = TreeRenderer(show_counts=self.settings.show_post_counts)

        self.view: Optional[TreeView] = None
        self.editor: Optional[EditorState] = None
        self.search_query = ""
        self.loaded = False

        self._pending_requests = 0
        self._mutation_in_flight = False
        self._load_generation = 0
        self._search_task: Optional[asyncio.Task] = None
        self._delete_armed: dict[int, float] = {}

    # ==================== STATE ====================

    @property
    def is_busy(self) -> bool:
        """True while any store call is pending; the shell disables its controls."""
        return self._pending_requests > 0

    @property
    def mutation_in_flight(self) -> bool:
        return self._mutation_in_flight

    @property
    def is_hierarchical(self) -> bool:
        return self.model.is_hierarchical

    def render(self) -> TreeView:
        """Re-project the model into a view and remember it."""
        # The model may have been rebuilt under an active drag
        self.drag.revalidate()
        highlight = None
        if self.drag.session is not None:
            highlight = self.drag.highlight_for(self.drag.session.candidate_parent_id)

        self.view = self.renderer.render(
            self.model.root,
            self.expansion,
            is_hierarchical=self.model.is_hierarchical,
            visible_ids=filter_terms(self.model, self.search_query),
            highlight=highlight,
        )
        return self.view

    # ==================== LOADING ====================

    async def load_terms(self, suppress_notification: bool = False) -> bool:
        """
        Fetch the authoritative term list and rebuild the tree.

        Args:
            suppress_notification: Do not surface load errors (used by
                reloads that follow an operation which already notified)

        Returns:
            True if the tree was replaced
        """
        self._load_generation += 1
        generation = self._load_generation
        self._pending_requests += 1
        logger.info(f"Loading terms for category: {self.category} (generation {generation})")

        try:
            result = await self.store.get_terms(self.category)
        except (StoreRequestError, StoreRejectionError) as e:
            logger.error(f"Error loading terms: {e}")
            if generation == self._load_generation and not suppress_notification:
                message = e.message if isinstance(e, StoreRejectionError) else LOAD_ERROR
                self.notifications.error(message)
            return False
        finally:
            self._pending_requests -= 1

        if generation != self._load_generation:
            logger.info(f"Discarding stale term list (generation {generation} < {self._load_generation})")
            return False

        self.model.build(result.terms, is_hierarchical=result.is_hierarchical)
        self.loaded = True
        self.render()
        logger.info(f"Loaded {len(self.model)} terms (hierarchical: {result.is_hierarchical})")
        return True

    async def select_category(self, category: str) -> bool:
        """Switch taxonomy and load its terms."""
        self.category = category
        self.close_editor(force=True)
        return await self.load_terms()

    # ==================== TREE INTERACTIONS ====================

    def on_toggle(self, term_id: int) -> TreeView:
        self.expansion.toggle(term_id)
        return self.render()

    def collapse_all(self) -> TreeView:
        """Collapse first-level terms only; deeper levels keep their state."""
        if self.model.is_hierarchical:
            self.expansion.collapse_all(self.model.first_level_ids())
        return self.render()

    def expand_all(self) -> TreeView:
        """Expand first-level terms only; deeper levels keep their state."""
        if self.model.is_hierarchical:
            self.expansion.expand_all(self.model.first_level_ids())
        return self.render()

    def on_search(self, query: str) -> TreeView:
        self.search_query = query
        return self.render()

    def on_search_input(self, query: str) -> asyncio.Task:
        """Debounced search for keystrokes; only the last query is applied."""
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()

        delay = self.settings.search_debounce_ms / 1000

        async def _apply() -> TreeView:
            await asyncio.sleep(delay)
            return self.on_search(query)

        self._search_task = asyncio.ensure_future(_apply())
        return self._search_task

    async def dispatch(self, command: RowCommand):
        """Route a typed row command to its handler."""
        if isinstance(command, ToggleCommand):
            return self.on_toggle(command.term_id)
        if isinstance(command, EditCommand):
            return await self.edit_term(command.term_id)
        if isinstance(command, DeleteCommand):
            return await self.request_delete(command.term_id)
        if isinstance(command, ConfirmDeleteCommand):
            return await self.delete_term(command.term_id)
        raise TypeError(f"Unknown row command: {command!r}")

    # ==================== DRAG AND DROP ====================

    def start_drag(self, item_id: int, pointer_x: float, pointer_y: float) -> DragSession:
        return self.drag.start(item_id, pointer_x, pointer_y)

    def drag_sample(self, sample: PointerSample, rows: Sequence[RowGeometry]) -> DropIntent:
        intent = self.drag.sample(sample, rows)
        self.render()
        return intent

    def cancel_drag(self) -> TreeView:
        self.drag.cancel()
        return self.render()

    async def finish_drag(
        self, pointer_x: float, structural_parent_id: Optional[int] = None
    ) -> tuple[DropResult, bool]:
        """Release the dragged row and commit the resulting move."""
        result = self.drag.drop(pointer_x, structural_parent_id)
        committed = await self.on_drag_drop(result.item_id, result.new_parent_id)
        return result, committed

    async def on_drag_drop(self, item_id: int, proposed_parent_id: int) -> bool:
        return await self.on_drop(item_id, proposed_parent_id)

    async def on_drop(self, item_id: int, proposed_parent_id: int) -> bool:
        """
        Move a term optimistically, then confirm with the store.

        Returns:
            True if the store accepted the new parent

        Raises:
            MutationInFlightError: another mutation is still pending
        """
        if not self.model.is_hierarchical:
            logger.warning(f"Ignoring drop of term {item_id}: taxonomy is not hierarchical")
            return False
        self._claim_mutation()

        try:
            try:
                self.model.reparent(item_id, proposed_parent_id)
            except (CycleError, TermNotFoundError) as e:
                # Candidate search should have excluded this move
                logger.error(f"Rejected drop of term {item_id} under {proposed_parent_id}: {e}")
                self.notifications.error(HIERARCHY_DEFECT_ERROR)
                await self.load_terms(suppress_notification=True)
                return False

            self.render()
            logger.info(f"Updating term hierarchy: term {item_id} -> parent {proposed_parent_id}")

            self._pending_requests += 1
            try:
                response = await self.store.update_term_hierarchy(
                    item_id, proposed_parent_id, self.category
                )
            except StoreRejectionError as e:
                logger.error(f"Hierarchy update rejected: {e.message}")
                self.notifications.error(e.message or HIERARCHY_UPDATE_ERROR)
                await self.load_terms(suppress_notification=True)
                return False
            except StoreRequestError as e:
                logger.error(f"Hierarchy update failed: {e}")
                self.notifications.error(HIERARCHY_UPDATE_ERROR)
                await self.load_terms(suppress_notification=True)
                return False
            finally:
                self._pending_requests -= 1

            self.notifications.success(response.message or TERM_UPDATED)
            await self.load_terms(suppress_notification=True)
            return True
        finally:
            self._mutation_in_flight = False

    def _claim_mutation(self) -> None:
        if self._mutation_in_flight:
            raise MutationInFlightError("A term update is already in progress")
        self._mutation_in_flight = True

    # ==================== EDITOR ====================

    async def edit_term(self, term_id: int, discard_unsaved: bool = False) -> Optional[EditorState]:
        """Load a term and its parent options into the editor."""
        if self.editor and self.editor.has_unsaved_changes and not discard_unsaved:
            self.notifications.show(UNSAVED_CHANGES, duration_ms=self.settings.notification_duration_ms)
            return None

        self._pending_requests += 1
        try:
            detail = await self.store.get_term_data(term_id, self.category)
        except StoreRejectionError as e:
            self.notifications.error(e.message or TERM_DATA_ERROR)
            return None
        except StoreRequestError as e:
            logger.error(f"Error loading term {term_id}: {e}")
            self.notifications.error(TERM_DATA_ERROR)
            return None
        finally:
            self._pending_requests -= 1

        term = detail.term
        self.editor = EditorState(
            category=self.category,
            parent_options=detail.parent_options,
            parent_dropdown_markup=detail.parent_dropdown_markup,
            term_id=term.id,
            name=term.name,
            slug=term.slug,
            description=term.description,
            parent=term.parent,
            show_parent=detail.category_is_hierarchical,
            is_new=False,
        )
        return self.editor

    async def new_term_form(self) -> Optional[EditorState]:
        """Open an empty editor with the parent dropdown filled in."""
        self._pending_requests += 1
        try:
            options = await self.store.get_parent_options(self.category)
        except StoreRejectionError as e:
            self.notifications.error(e.message or PARENT_OPTIONS_ERROR)
            return None
        except StoreRequestError as e:
            logger.error(f"Error loading parent options: {e}")
            self.notifications.error(PARENT_OPTIONS_ERROR)
            return None
        finally:
            self._pending_requests -= 1

        self.editor = EditorState(
            category=self.category,
            parent_options=options.options,
            parent_dropdown_markup=options.parent_dropdown_markup,
            show_parent=self.model.is_hierarchical,
        )
        return self.editor

    def mark_dirty(self) -> None:
        if self.editor:
            self.editor.has_unsaved_changes = True

    async def generate_description(self, prompt: Optional[str] = None) -> Optional[str]:
        """
        Ask the store for a description of the term in the open form.

        The result replaces the form's description and counts as an
        unsaved change. Nothing is persisted until the term is saved.

        Args:
            prompt: Prompt template; [TERM_NAME] is replaced by the term name.
                Defaults to the configured description prompt.

        Returns:
            The generated description, or None after an error notification
        """
        if self.editor is None:
            raise ValueError("No term form is open")

        prompt = self.settings.description_prompt if prompt is None else prompt
        self._pending_requests += 1
        try:
            description = await self.store.generate_description(self.editor.name, prompt)
        except StoreRejectionError as e:
            self.notifications.error(e.message or GENERATE_ERROR)
            return None
        except StoreRequestError as e:
            logger.error(f"Error generating description for '{self.editor.name}': {e}")
            self.notifications.error(GENERATE_ERROR)
            return None
        finally:
            self._pending_requests -= 1

        self.editor.description = description
        self.mark_dirty()
        return description

    def discard_changes(self) -> None:
        """Forget unsaved edits and close the form."""
        self.close_editor(force=True)

    def close_editor(self, force: bool = False) -> bool:
        """Close the editor. Unsaved changes keep it open unless forced."""
        if self.editor and self.editor.has_unsaved_changes and not force:
            return False
        self.editor = None
        return True

    async def save_term(self, fields: Optional[TermFormFields] = None) -> bool:
        """Create or update a term, then reload the tree silently."""
        if fields is None:
            if self.editor is None:
                raise ValueError("No term form is open")
            fields = self.editor.to_fields()

        if not fields.name.strip():
            self.notifications.error(NAME_REQUIRED)
            return False

        self._claim_mutation()
        self._pending_requests += 1
        try:
            response = await self.store.save_term(fields)
        except StoreRejectionError as e:
            self.notifications.error(e.message or SAVE_ERROR)
            return False
        except StoreRequestError as e:
            logger.error(f"Save term error: {e}")
            self.notifications.error(SAVE_ERROR)
            return False
        finally:
            self._pending_requests -= 1
            self._mutation_in_flight = False

        self.close_editor(force=True)
        self.notifications.success(response.message or TERM_UPDATED)
        await self.load_terms(suppress_notification=True)
        return True

    # ==================== DELETE ====================

    async def request_delete(self, term_id: int, now: Optional[float] = None) -> Optional[bool]:
        """
        Two-click delete from a tree row.

        The first click arms the row for DELETE_CONFIRM_WINDOW seconds and
        returns None; a second click inside the window deletes the term.
        """
        now = time.monotonic() if now is None else now
        armed_at = self._delete_armed.pop(term_id, None)
        if armed_at is not None and now - armed_at <= DELETE_CONFIRM_WINDOW:
            return await self.delete_term(term_id)

        self._delete_armed[term_id] = now
        logger.debug(f"Delete armed for term {term_id}")
        return None

    def is_delete_armed(self, term_id: int, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        armed_at = self._delete_armed.get(term_id)
        return armed_at is not None and now - armed_at <= DELETE_CONFIRM_WINDOW

    async def delete_term(self, term_id: int) -> bool:
        """Delete a term; parents with children trigger a full reload."""
        name = self.model.get(term_id).name if term_id in self.model else str(term_id)
        had_children = self.model.has_children(term_id)

        self._claim_mutation()
        self._pending_requests += 1
        try:
            result = await self.store.delete_term(term_id, self.category)
        except StoreRejectionError as e:
            self.notifications.error(e.message or DELETE_ERROR)
            return False
        except StoreRequestError as e:
            logger.error(f"Error deleting term {term_id}: {e}")
            self.notifications.error(f"{DELETE_ERROR} {e}")
            return False
        finally:
            self._pending_requests -= 1
            self._mutation_in_flight = False

        if self.editor and self.editor.term_id == term_id:
            self.close_editor(force=True)

        if had_children or result.children_action == "moved" or term_id not in self.model:
            await self.load_terms(suppress_notification=True)
        else:
            self.model.remove(term_id)
            self.render()

        self.notifications.success(f"{name} {TERM_DELETED}")
        return True
