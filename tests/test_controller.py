"""
Tests for better_category_manager/controller.py
"""

import asyncio

import pytest

from better_category_manager.controller import (
    DELETE_CONFIRM_WINDOW,
    GENERATE_ERROR,
    HIERARCHY_DEFECT_ERROR,
    HIERARCHY_UPDATE_ERROR,
    LOAD_ERROR,
    NAME_REQUIRED,
    TERM_UPDATED,
    ConfirmDeleteCommand,
    DeleteCommand,
    EditCommand,
    ReconciliationController,
    ToggleCommand,
)
from better_category_manager.exceptions import MutationInFlightError, StoreRequestError
from better_category_manager.models import (
    NotificationKind,
    PointerSample,
    RowGeometry,
    StoreMessage,
    TermFormFields,
    TermListResult,
)
from better_category_manager.notifications import NotificationCenter
from better_category_manager.term_store import InMemoryTermStore
from conftest import OfflineStore, RejectingStore


def successes(controller):
    return controller.notifications.of_kind(NotificationKind.SUCCESS)


def errors(controller):
    return controller.notifications.of_kind(NotificationKind.ERROR)


def make_controller(store, settings):
    return ReconciliationController(store, settings=settings, notifications=NotificationCenter())


class SnapshotStore(InMemoryTermStore):
    """Records the controller's tree at the moment the update is sent."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.controller = None
        self.tree_at_update = None

    async def update_term_hierarchy(self, term_id, new_parent_id, category):
        self.tree_at_update = (
            self.controller.model.root.child_ids,
            self.controller.model.node(1).child_ids,
            self.controller.view.find(1).has_children,
        )
        return StoreMessage(message="Term updated successfully.")


class GatedStore(InMemoryTermStore):
    """Holds hierarchy updates until the test releases them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def update_term_hierarchy(self, term_id, new_parent_id, category):
        await self.gate.wait()
        return await super().update_term_hierarchy(term_id, new_parent_id, category)


@pytest.mark.asyncio
class TestLoading:

    async def test_load_builds_tree_and_view(self, controller):
        assert await controller.load_terms() is True

        assert controller.model.root.child_ids == [1, 3]
        assert controller.view.visible_ids() == [1, 3]
        assert controller.loaded

    async def test_load_failure_notifies_once(self, settings):
        class DownStore(InMemoryTermStore):
            async def get_terms(self, category):
                raise StoreRequestError("timeout")

        controller = make_controller(DownStore(), settings)

        assert await controller.load_terms() is False
        assert [n.message for n in errors(controller)] == [LOAD_ERROR]

    async def test_suppressed_load_failure_is_silent(self, settings):
        class DownStore(InMemoryTermStore):
            async def get_terms(self, category):
                raise StoreRequestError("timeout")

        controller = make_controller(DownStore(), settings)

        assert await controller.load_terms(suppress_notification=True) is False
        assert controller.notifications.active() == []

    async def test_stale_load_is_discarded(self, scenario_terms, settings):
        class SlowFirstStore(InMemoryTermStore):
            def __init__(self):
                super().__init__(scenario_terms)
                self.release_first = asyncio.Event()
                self.calls_seen = 0

            async def get_terms(self, category):
                self.calls_seen += 1
                if self.calls_seen == 1:
                    await self.release_first.wait()
                    return TermListResult(terms=scenario_terms[:1])
                return TermListResult(terms=scenario_terms)

        store = SlowFirstStore()
        controller = make_controller(store, settings)

        first = asyncio.ensure_future(controller.load_terms())
        await asyncio.sleep(0)
        assert await controller.load_terms() is True
        store.release_first.set()

        assert await first is False
        assert len(controller.model) == 3

    async def test_flat_taxonomy(self, scenario_terms, settings):
        controller = make_controller(InMemoryTermStore(scenario_terms, is_hierarchical=False), settings)
        await controller.load_terms()

        assert controller.view.show_tree_controls is False
        assert all(not row.can_drag for row in controller.view.iter_rows())


@pytest.mark.asyncio
class TestDrop:

    async def test_successful_drop_scenario_b(self, scenario_terms, settings):
        store = SnapshotStore(scenario_terms)
        controller = make_controller(store, settings)
        store.controller = controller
        await controller.load_terms()

        assert await controller.on_drag_drop(3, 1) is True

        # Optimistic state was rendered before the store answered
        assert store.tree_at_update == ([1], [2, 3], True)
        assert [n.message for n in successes(controller)] == ["Term updated successfully."]
        assert errors(controller) == []
        assert store.count("get_terms") == 2
        assert not controller.mutation_in_flight

    async def test_success_without_message_uses_default(self, settings, scenario_terms):
        class QuietStore(InMemoryTermStore):
            async def update_term_hierarchy(self, term_id, new_parent_id, category):
                await super().update_term_hierarchy(term_id, new_parent_id, category)
                return StoreMessage(message="")

        controller = make_controller(QuietStore(scenario_terms), settings)
        await controller.load_terms()
        await controller.on_drop(3, 1)

        assert [n.message for n in successes(controller)] == [TERM_UPDATED]
        assert controller.model.get(3).parent == 1

    async def test_rejected_drop_scenario_c(self, scenario_terms, settings):
        store = RejectingStore(scenario_terms, message="Could not update the term.")
        controller = make_controller(store, settings)
        await controller.load_terms()

        assert await controller.on_drop(3, 1) is False

        assert controller.model.get(3).parent == 0
        assert controller.model.root.child_ids == [1, 3]
        assert [n.message for n in errors(controller)] == ["Could not update the term."]
        assert successes(controller) == []
        assert store.count("update_term_hierarchy") == 1
        assert store.count("get_terms") == 2

    async def test_transport_failure(self, scenario_terms, settings):
        store = OfflineStore(scenario_terms)
        controller = make_controller(store, settings)
        await controller.load_terms()

        assert await controller.on_drop(3, 1) is False

        assert controller.model.get(3).parent == 0
        assert [n.message for n in errors(controller)] == [HIERARCHY_UPDATE_ERROR]
        assert successes(controller) == []

    async def test_cycle_never_reaches_store(self, controller, store):
        await controller.load_terms()

        assert await controller.on_drop(1, 2) is False

        assert store.count("update_term_hierarchy") == 0
        assert [n.message for n in errors(controller)] == [HIERARCHY_DEFECT_ERROR]
        assert controller.model.get(2).parent == 1

    async def test_second_drop_while_pending_is_rejected(self, scenario_terms, settings):
        store = GatedStore(scenario_terms)
        controller = make_controller(store, settings)
        await controller.load_terms()

        first = asyncio.ensure_future(controller.on_drop(3, 1))
        await asyncio.sleep(0)
        assert controller.is_busy
        assert controller.mutation_in_flight

        with pytest.raises(MutationInFlightError):
            await controller.on_drop(2, 0)

        store.gate.set()
        assert await first is True
        assert not controller.is_busy
        assert store.count("update_term_hierarchy") == 1

    async def test_flat_taxonomy_never_calls_store(self, scenario_terms, settings):
        store = InMemoryTermStore(scenario_terms, is_hierarchical=False)
        controller = make_controller(store, settings)
        await controller.load_terms()

        assert await controller.on_drag_drop(3, 1) is False
        assert store.count("update_term_hierarchy") == 0

    async def test_full_drag_gesture(self, controller, store):
        await controller.load_terms()
        rows = [RowGeometry(1, 10, 0), RowGeometry(3, 10, 40)]

        controller.start_drag(3, 20, 45)
        intent = controller.drag_sample(PointerSample(170, 45, 3, 10), rows)
        assert intent.candidate_parent_id == 1
        assert controller.view.find(1).highlight

        result, committed = await controller.finish_drag(170)

        assert (result.new_parent_id, committed) == (1, True)
        assert store.count("update_term_hierarchy") == 1
        assert controller.model.get(3).parent == 1
        assert not controller.view.find(1).highlight

    async def test_reload_removing_candidate_keeps_drag_alive(self, controller, store):
        await controller.load_terms()
        controller.start_drag(3, 20, 45)
        intent = controller.drag_sample(PointerSample(170, 45, 3, 10), [RowGeometry(1, 10, 0)])
        assert intent.candidate_parent_id == 1

        await store.delete_term(1, "category")
        assert await controller.load_terms() is True

        assert controller.drag.is_dragging
        assert controller.drag.session.candidate_parent_id is None
        assert not any(row.highlight for row in controller.view.iter_rows())
        assert controller.on_toggle(2).visible_ids() == [2, 3]

        result, committed = await controller.finish_drag(170)
        assert (result.new_parent_id, committed) == (0, True)

    async def test_deleting_candidate_during_drag_notifies(self, controller):
        await controller.load_terms()
        controller.start_drag(3, 20, 45)
        controller.drag_sample(PointerSample(170, 45, 3, 10), [RowGeometry(1, 10, 0)])

        assert await controller.delete_term(1) is True

        assert [n.message for n in successes(controller)] == ["Fruit has been deleted."]
        assert controller.drag.session.candidate_parent_id is None

    async def test_reload_removing_dragged_term_cancels_drag(self, controller, store):
        await controller.load_terms()
        controller.start_drag(3, 20, 45)

        await store.delete_term(3, "category")
        await controller.load_terms()

        assert not controller.drag.is_dragging
        assert controller.view.visible_ids() == [1]

    async def test_cancelled_drag_changes_nothing(self, controller, store):
        await controller.load_terms()
        controller.start_drag(3, 20, 45)
        controller.drag_sample(PointerSample(170, 45, 3, 10), [RowGeometry(1, 10, 0)])
        controller.cancel_drag()

        assert store.count("update_term_hierarchy") == 0
        assert not controller.view.find(1).highlight


@pytest.mark.asyncio
class TestTreeInteractions:

    async def test_toggle_via_command(self, controller):
        await controller.load_terms()
        view = await controller.dispatch(ToggleCommand(1))

        assert view.visible_ids() == [1, 2, 3]

    async def test_expand_and_collapse_first_level_only(self, deep_terms, settings):
        controller = make_controller(InMemoryTermStore(deep_terms), settings)
        await controller.load_terms()
        controller.on_toggle(10)
        controller.on_toggle(11)

        controller.collapse_all()
        assert controller.expansion.expanded_ids == frozenset({11})

        controller.expand_all()
        assert controller.expansion.expanded_ids == frozenset({10, 11, 20})

    async def test_search_scenario_d(self, controller):
        await controller.load_terms()
        view = controller.on_search("app")

        assert view.find(2).visible
        assert view.find(1).visible
        assert not view.find(3).visible

    async def test_search_survives_reload(self, controller):
        await controller.load_terms()
        controller.on_search("veg")
        await controller.load_terms()

        assert controller.view.visible_ids() == [3]

    async def test_debounced_search_applies_last_query(self, controller):
        await controller.load_terms()
        first = controller.on_search_input("fru")
        second = controller.on_search_input("veg")

        view = await second
        assert first.cancelled()
        assert controller.search_query == "veg"
        assert view.visible_ids() == [3]


@pytest.mark.asyncio
class TestEditing:

    async def test_edit_loads_term_and_options(self, controller):
        await controller.load_terms()
        editor = await controller.dispatch(EditCommand(2))

        assert editor.name == "Apple"
        assert editor.parent == 1
        assert not editor.is_new
        assert [o.id for o in editor.parent_options] == [1, 3]

    async def test_edit_unknown_term_notifies(self, controller):
        assert await controller.edit_term(42) is None
        assert [n.message for n in errors(controller)] == ["Term not found."]

    async def test_unsaved_changes_block_switching(self, controller):
        await controller.edit_term(2)
        controller.mark_dirty()

        assert await controller.edit_term(3) is None
        assert controller.editor.term_id == 2
        assert (await controller.edit_term(3, discard_unsaved=True)).term_id == 3

    async def test_close_editor_respects_unsaved_changes(self, controller):
        await controller.edit_term(2)
        controller.mark_dirty()

        assert controller.close_editor() is False
        assert controller.close_editor(force=True) is True
        assert controller.editor is None

    async def test_discard_changes(self, controller):
        await controller.edit_term(2)
        controller.mark_dirty()
        controller.discard_changes()

        assert controller.editor is None

    async def test_save_updates_and_reloads(self, controller, store):
        await controller.load_terms()
        editor = await controller.edit_term(2)
        editor.name = "Green Apple"

        assert await controller.save_term() is True

        assert controller.editor is None
        assert controller.model.get(2).name == "Green Apple"
        assert [n.message for n in successes(controller)] == ["Term updated successfully."]

    async def test_new_term(self, controller):
        await controller.load_terms()
        editor = await controller.new_term_form()
        assert editor.is_new
        assert 'value="0">None' in editor.parent_dropdown_markup

        saved = await controller.save_term(TermFormFields(name="Citrus", category="category", parent=1))

        assert saved
        assert controller.model.children_of(1) == [2, 4]

    async def test_generate_description_fills_form(self, controller, store):
        await controller.edit_term(2)

        text = await controller.generate_description("About [TERM_NAME].")

        assert text == "About Apple."
        assert controller.editor.description == "About Apple."
        assert controller.editor.has_unsaved_changes
        assert store.count("save_term") == 0

    async def test_generate_description_uses_configured_prompt(self, controller, settings):
        await controller.edit_term(2)

        text = await controller.generate_description()

        assert text == settings.description_prompt.replace("[TERM_NAME]", "Apple")

    async def test_generate_description_rejected(self, controller):
        await controller.new_term_form()

        assert await controller.generate_description("About [TERM_NAME].") is None

        assert [n.message for n in errors(controller)] == ["Missing required parameters."]
        assert controller.editor.description == ""
        assert not controller.editor.has_unsaved_changes

    async def test_generate_description_transport_failure(self, settings, scenario_terms):
        class NoModelStore(InMemoryTermStore):
            async def generate_description(self, term_name, prompt):
                raise StoreRequestError("timeout")

        controller = make_controller(NoModelStore(scenario_terms), settings)
        await controller.edit_term(2)

        assert await controller.generate_description("x") is None
        assert [n.message for n in errors(controller)] == [GENERATE_ERROR]
        assert not controller.is_busy

    async def test_generate_description_needs_open_form(self, controller):
        with pytest.raises(ValueError):
            await controller.generate_description("x")

    async def test_name_is_required(self, controller, store):
        assert await controller.save_term(TermFormFields(name="  ", category="category")) is False

        assert [n.message for n in errors(controller)] == [NAME_REQUIRED]
        assert store.count("save_term") == 0


@pytest.mark.asyncio
class TestDelete:

    async def test_quick_delete_needs_confirmation(self, controller, store):
        await controller.load_terms()

        assert await controller.request_delete(3, now=100.0) is None
        assert controller.is_delete_armed(3, now=101.0)
        assert await controller.request_delete(3, now=101.0) is True

        assert 3 not in controller.model
        assert [n.message for n in successes(controller)] == ["Veg has been deleted."]
        # Leaf removal is applied locally without another fetch
        assert store.count("get_terms") == 1

    async def test_confirmation_expires(self, controller, store):
        await controller.load_terms()

        await controller.request_delete(3, now=100.0)
        assert await controller.request_delete(3, now=100.0 + DELETE_CONFIRM_WINDOW + 1) is None
        assert store.count("delete_term") == 0

    async def test_deleting_parent_reloads(self, controller, store):
        await controller.load_terms()

        assert await controller.dispatch(ConfirmDeleteCommand(1)) is True

        assert store.count("get_terms") == 2
        assert controller.model.get(2).parent == 0
        assert controller.model.root.child_ids == [2, 3]

    async def test_delete_via_row_command(self, controller):
        await controller.load_terms()
        assert await controller.dispatch(DeleteCommand(3)) is None
        assert await controller.dispatch(DeleteCommand(3)) is True

    async def test_delete_failure(self, controller):
        await controller.load_terms()

        assert await controller.delete_term(42) is False
        assert [n.message for n in errors(controller)] == ["Term not found."]
