"""FastAPI surface exposing the term tree to an embedding UI shell."""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from .controller import (
    ConfirmDeleteCommand,
    DeleteCommand,
    EditCommand,
    EditorState,
    ReconciliationController,
    ToggleCommand,
)
from .exceptions import DragStateError, MutationInFlightError, TermNotFoundError
from .models import NotificationKind, PointerSample, RowGeometry, TermFormFields
from .renderer import TreeView
from .term_store import WordPressTermStore

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Better Category Manager API",
    description="Hierarchical category editing with drag-and-drop re-parenting",
    version="0.1.0",
)

_controller: Optional[ReconciliationController] = None


def get_controller() -> ReconciliationController:
    """Process-wide controller backed by the WordPress term store."""
    global _controller
    if _controller is None:
        _controller = ReconciliationController(WordPressTermStore())
    return _controller


class RowResponse(BaseModel):
    """Single rendered term row."""
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
    can_edit: bool
    can_delete: bool
    highlight: bool
    helper_text: str
    children: list["RowResponse"] = []


RowResponse.model_rebuild()


class TreeResponse(BaseModel):
    """Rendered tree plus control state."""
    category: str
    is_hierarchical: bool
    show_tree_controls: bool
    show_counts: bool
    empty_message: str
    placeholder_indent: int
    busy: bool
    rows: list[RowResponse]


class NotificationResponse(BaseModel):
    id: int
    message: str
    kind: str
    duration_ms: int


class DropRequest(BaseModel):
    """Direct drop of a term onto a new parent."""
    item_id: int
    parent_id: int


class DragStartRequest(BaseModel):
    item_id: int
    pointer_x: float
    pointer_y: float


class RowGeometryModel(BaseModel):
    term_id: int
    x: float
    y: float


class DragSampleRequest(BaseModel):
    """One pointer-move event with the geometry of the visible rows."""
    pointer_x: float
    pointer_y: float
    dragged_item_id: int
    placeholder_x: float
    rows: list[RowGeometryModel]


class DragSampleResponse(BaseModel):
    candidate_parent_id: Optional[int]
    potential_parent_id: Optional[int]
    placeholder_indent: int
    helper_text: str


class DragDropRequest(BaseModel):
    pointer_x: float
    structural_parent_id: Optional[int] = None


class DropResponse(BaseModel):
    status: str
    item_id: int
    parent_id: int
    tree: TreeResponse


class TermFormRequest(BaseModel):
    """Fields of the term edit form."""
    name: str
    term_id: int = 0
    slug: str = ""
    description: str = ""
    parent: int = 0


class ParentOptionModel(BaseModel):
    id: int
    name: str
    depth: int


class EditorResponse(BaseModel):
    term_id: int
    name: str
    slug: str
    description: str
    parent: int
    show_parent: bool
    is_new: bool
    parent_dropdown: str
    parent_options: list[ParentOptionModel]


class StatusResponse(BaseModel):
    status: str
    message: str = ""


class GenerateDescriptionRequest(BaseModel):
    """Prompt for the open term form; [TERM_NAME] is filled in."""
    prompt: Optional[str] = None


class DescriptionResponse(BaseModel):
    description: str
    editor: EditorResponse


def _tree_response(controller: ReconciliationController, view: TreeView) -> TreeResponse:
    return TreeResponse(
        category=controller.category,
        is_hierarchical=view.is_hierarchical,
        show_tree_controls=view.show_tree_controls,
        show_counts=view.show_counts,
        empty_message=view.empty_message,
        placeholder_indent=view.placeholder_indent,
        busy=controller.is_busy,
        rows=[RowResponse(**asdict(row)) for row in view.rows],
    )


def _editor_response(editor: EditorState) -> EditorResponse:
    return EditorResponse(
        term_id=editor.term_id,
        name=editor.name,
        slug=editor.slug,
        description=editor.description,
        parent=editor.parent,
        show_parent=editor.show_parent,
        is_new=editor.is_new,
        parent_dropdown=editor.parent_dropdown_markup,
        parent_options=[ParentOptionModel(**asdict(o)) for o in editor.parent_options],
    )


def _latest_error(controller: ReconciliationController, default: str) -> str:
    errors = controller.notifications.of_kind(NotificationKind.ERROR)
    return errors[-1].message if errors else default


async def _ensure_loaded(controller: ReconciliationController) -> None:
    if not controller.loaded:
        if not await controller.load_terms():
            raise HTTPException(status_code=502, detail=_latest_error(controller, "Failed to load terms"))


@app.get("/")
async def root(controller: ReconciliationController = Depends(get_controller)):
    """Health check endpoint."""
    return {
        "service": "Better Category Manager",
        "status": "running",
        "category": controller.category,
    }


@app.get("/tree", response_model=TreeResponse)
async def get_tree(controller: ReconciliationController = Depends(get_controller)):
    """Current rendered tree, loading it on first access."""
    await _ensure_loaded(controller)
    return _tree_response(controller, controller.render())


@app.post("/reload", response_model=TreeResponse)
async def reload_tree(controller: ReconciliationController = Depends(get_controller)):
    if not await controller.load_terms():
        raise HTTPException(status_code=502, detail=_latest_error(controller, "Failed to load terms"))
    return _tree_response(controller, controller.render())


@app.post("/toggle/{term_id}", response_model=TreeResponse)
async def toggle(term_id: int, controller: ReconciliationController = Depends(get_controller)):
    await _ensure_loaded(controller)
    view = await controller.dispatch(ToggleCommand(term_id))
    return _tree_response(controller, view)


@app.post("/collapse-all", response_model=TreeResponse)
async def collapse_all(controller: ReconciliationController = Depends(get_controller)):
    await _ensure_loaded(controller)
    return _tree_response(controller, controller.collapse_all())


@app.post("/expand-all", response_model=TreeResponse)
async def expand_all(controller: ReconciliationController = Depends(get_controller)):
    await _ensure_loaded(controller)
    return _tree_response(controller, controller.expand_all())


@app.get("/search", response_model=TreeResponse)
async def search(q: str = "", controller: ReconciliationController = Depends(get_controller)):
    """Filter rows by name; ancestors of matches stay visible."""
    await _ensure_loaded(controller)
    return _tree_response(controller, controller.on_search(q))


# ==================== DRAG AND DROP ====================


@app.post("/drag/start")
async def drag_start(
    request: DragStartRequest, controller: ReconciliationController = Depends(get_controller)
):
    await _ensure_loaded(controller)
    try:
        session = controller.start_drag(request.item_id, request.pointer_x, request.pointer_y)
    except DragStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TermNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "dragging", "item_id": session.dragged_item_id}


@app.post("/drag/sample", response_model=DragSampleResponse)
async def drag_sample(
    request: DragSampleRequest, controller: ReconciliationController = Depends(get_controller)
):
    sample = PointerSample(
        pointer_x=request.pointer_x,
        pointer_y=request.pointer_y,
        dragged_item_id=request.dragged_item_id,
        placeholder_x=request.placeholder_x,
    )
    rows = [RowGeometry(r.term_id, r.x, r.y) for r in request.rows]
    try:
        intent = controller.drag_sample(sample, rows)
    except DragStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return DragSampleResponse(
        candidate_parent_id=intent.candidate_parent_id,
        potential_parent_id=intent.highlight.potential_parent_id,
        placeholder_indent=intent.highlight.placeholder_indent,
        helper_text=intent.highlight.helper_text,
    )


@app.post("/drag/cancel", response_model=TreeResponse)
async def drag_cancel(controller: ReconciliationController = Depends(get_controller)):
    return _tree_response(controller, controller.cancel_drag())


@app.post("/drag/drop", response_model=DropResponse)
async def drag_drop(
    request: DragDropRequest, controller: ReconciliationController = Depends(get_controller)
):
    """Release the dragged row and commit the move."""
    try:
        result, committed = await controller.finish_drag(
            request.pointer_x, request.structural_parent_id
        )
    except DragStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MutationInFlightError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return DropResponse(
        status="success" if committed else "reloaded",
        item_id=result.item_id,
        parent_id=result.new_parent_id,
        tree=_tree_response(controller, controller.render()),
    )


@app.post("/drop", response_model=DropResponse)
async def drop(request: DropRequest, controller: ReconciliationController = Depends(get_controller)):
    await _ensure_loaded(controller)
    if not controller.is_hierarchical:
        raise HTTPException(
            status_code=409, detail="Drag and drop not available for non-hierarchical taxonomies"
        )
    try:
        committed = await controller.on_drag_drop(request.item_id, request.parent_id)
    except MutationInFlightError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return DropResponse(
        status="success" if committed else "reloaded",
        item_id=request.item_id,
        parent_id=request.parent_id,
        tree=_tree_response(controller, controller.render()),
    )


# ==================== TERM EDITING ====================


@app.get("/terms/{term_id}", response_model=EditorResponse)
async def edit_term(term_id: int, controller: ReconciliationController = Depends(get_controller)):
    editor = await controller.dispatch(EditCommand(term_id))
    if editor is None and controller.editor and controller.editor.has_unsaved_changes:
        raise HTTPException(status_code=409, detail="There are unsaved changes")
    if editor is None:
        raise HTTPException(status_code=404, detail=_latest_error(controller, "Term not found."))
    return _editor_response(editor)


@app.get("/parent-options", response_model=EditorResponse)
async def new_term_form(controller: ReconciliationController = Depends(get_controller)):
    editor = await controller.new_term_form()
    if editor is None:
        raise HTTPException(status_code=502, detail=_latest_error(controller, "Failed to load parent categories"))
    return _editor_response(editor)


@app.post("/terms/generate-description", response_model=DescriptionResponse)
async def generate_description(
    request: GenerateDescriptionRequest, controller: ReconciliationController = Depends(get_controller)
):
    """Draft a description into the open term form without saving it."""
    if controller.editor is None:
        raise HTTPException(status_code=409, detail="No term form is open")

    description = await controller.generate_description(request.prompt)
    if description is None:
        raise HTTPException(
            status_code=400, detail=_latest_error(controller, "Failed to generate description.")
        )
    return DescriptionResponse(description=description, editor=_editor_response(controller.editor))


@app.post("/terms", response_model=StatusResponse)
async def save_term(
    request: TermFormRequest, controller: ReconciliationController = Depends(get_controller)
):
    fields = TermFormFields(
        name=request.name,
        category=controller.category,
        term_id=request.term_id,
        slug=request.slug,
        description=request.description,
        parent=request.parent,
    )
    try:
        saved = await controller.save_term(fields)
    except MutationInFlightError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not saved:
        raise HTTPException(status_code=400, detail=_latest_error(controller, "Failed to save the term."))
    return StatusResponse(status="success", message=controller.notifications.active()[-1].message)


@app.delete("/terms/{term_id}", response_model=StatusResponse)
async def delete_term(
    term_id: int,
    confirm: bool = False,
    controller: ReconciliationController = Depends(get_controller),
):
    """
    Quick delete. Without confirm=true the first call only arms the row;
    a second call within the confirmation window deletes it.
    """
    await _ensure_loaded(controller)
    command = ConfirmDeleteCommand(term_id) if confirm else DeleteCommand(term_id)
    try:
        deleted = await controller.dispatch(command)
    except MutationInFlightError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if deleted is None:
        return StatusResponse(status="confirm", message="Click again to confirm deletion")
    if not deleted:
        raise HTTPException(status_code=400, detail=_latest_error(controller, "Failed to delete term."))
    return StatusResponse(status="success", message=controller.notifications.active()[-1].message)


@app.get("/notifications", response_model=list[NotificationResponse])
async def notifications(controller: ReconciliationController = Depends(get_controller)):
    return [
        NotificationResponse(id=n.id, message=n.message, kind=n.kind.value, duration_ms=n.duration_ms)
        for n in controller.notifications.active()
    ]


@app.delete("/notifications/{notification_id}", response_model=StatusResponse)
async def dismiss_notification(
    notification_id: int, controller: ReconciliationController = Depends(get_controller)
):
    if not controller.notifications.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return StatusResponse(status="dismissed")
