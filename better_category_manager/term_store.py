"""Term store collaborators: WordPress admin-ajax client and in-memory store."""

import html
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from .config import config
from .exceptions import StoreRejectionError, StoreRequestError
from .models import (
    ROOT_ID,
    DeleteResult,
    ParentOption,
    ParentOptions,
    StoreMessage,
    Term,
    TermDetail,
    TermFormFields,
    TermListResult,
)
from .renderer import parent_options, parent_options_markup
from .tree_model import TermTreeModel

logger = logging.getLogger(__name__)

_OPTION_RE = re.compile(r'<option value="(\d+)"[^>]*>(.*?)</option>', re.DOTALL)
_INDENT = "&mdash; "


class TermStore(ABC):
    """Persists and serves the terms of a taxonomy."""

    @abstractmethod
    async def get_terms(self, category: str) -> TermListResult:
        ...

    @abstractmethod
    async def get_term_data(self, term_id: int, category: str) -> TermDetail:
        ...

    @abstractmethod
    async def save_term(self, fields: TermFormFields) -> StoreMessage:
        ...

    @abstractmethod
    async def delete_term(self, term_id: int, category: str) -> DeleteResult:
        ...

    @abstractmethod
    async def update_term_hierarchy(
        self, term_id: int, new_parent_id: int, category: str
    ) -> StoreMessage:
        ...

    @abstractmethod
    async def get_parent_options(self, category: str, exclude: int = 0) -> ParentOptions:
        ...

    @abstractmethod
    async def generate_description(self, term_name: str, prompt: str) -> str:
        """Draft a term description; [TERM_NAME] in the prompt is replaced."""
        ...


# ==================== RESPONSE PARSING ====================


def parse_term(raw: dict) -> Term:
    """Parse one term dict as returned by the BCM_* handlers."""
    return Term(
        id=int(raw.get("id", 0)),
        name=html.unescape(raw.get("name", "") or ""),
        slug=raw.get("slug", "") or "",
        description=raw.get("description", "") or "",
        parent=int(raw.get("parent", 0) or 0),
        count=int(raw.get("count", 0) or 0),
    )


def parse_terms_response(data: dict) -> TermListResult:
    """Parse the payload of BCM_get_terms."""
    raw_terms = data.get("terms", []) or []
    is_hierarchical = bool(data.get("is_hierarchical", True))

    # Older handlers carry the taxonomy info on the first term
    if raw_terms and isinstance(raw_terms[0].get("category_info"), dict):
        is_hierarchical = bool(raw_terms[0]["category_info"].get("hierarchical", is_hierarchical))

    return TermListResult(
        terms=[parse_term(t) for t in raw_terms],
        is_hierarchical=is_hierarchical,
    )


def parse_parent_dropdown(markup: str) -> list[ParentOption]:
    """Recover ids, names and depth from the parent <option> markup."""
    options = []
    for value, label in _OPTION_RE.findall(markup or ""):
        term_id = int(value)
        if term_id == ROOT_ID:
            continue
        depth = 0
        while label.startswith(_INDENT):
            label = label[len(_INDENT):]
            depth += 1
        options.append(ParentOption(id=term_id, name=html.unescape(label.strip()), depth=depth))
    return options


class WordPressTermStore(TermStore):
    """
    Client for the plugin's admin-ajax handlers.

    Every call is a form POST carrying the action name and nonce. Replies
    follow wp_send_json_success / wp_send_json_error: {"success": bool,
    "data": {...}}.
    """

    def __init__(
        self,
        ajax_url: Optional[str] = None,
        nonce: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.ajax_url = ajax_url or config.ajax_url
        self.nonce = config.nonce if nonce is None else nonce
        self.timeout = timeout or config.request_timeout
        self._client = client

    async def _post(self, action: str, data: dict[str, Any]) -> dict:
        """
        Call one admin-ajax action.

        Raises:
            StoreRequestError: transport failure, HTTP error status or a body
                that is not the expected JSON envelope
            StoreRejectionError: the handler answered success=false
        """
        payload = {"action": action, "nonce": self.nonce, **data}
        logger.debug(f"POST {action}: {data}")

        try:
            if self._client is not None:
                response = await self._client.post(self.ajax_url, data=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.ajax_url, data=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise StoreRequestError(f"{action} failed: {e}") from e
        except ValueError as e:
            raise StoreRequestError(f"{action} returned invalid JSON") from e

        if not isinstance(body, dict) or "success" not in body:
            raise StoreRequestError(f"{action} returned an unexpected response")

        result = body.get("data")
        if not isinstance(result, dict):
            result = {}

        if not body["success"]:
            message = result.get("message") or f"{action} was rejected"
            raise StoreRejectionError(message)

        return result

    async def get_terms(self, category: str) -> TermListResult:
        data = await self._post("BCM_get_terms", {"category": category})
        return parse_terms_response(data)

    async def get_term_data(self, term_id: int, category: str) -> TermDetail:
        data = await self._post("BCM_get_term_data", {"term_id": term_id, "category": category})
        raw_term = data.get("term")
        if not isinstance(raw_term, dict):
            raise StoreRequestError("Invalid term data received. Please try again.")

        markup = data.get("parent_terms", "") or ""
        category_info = data.get("category") or {}
        return TermDetail(
            term=parse_term(raw_term),
            parent_options=parse_parent_dropdown(markup),
            category_is_hierarchical=bool(category_info.get("hierarchical", True)),
            parent_dropdown_markup=markup,
        )

    async def save_term(self, fields: TermFormFields) -> StoreMessage:
        data = await self._post("BCM_save_term", fields.to_payload())
        return StoreMessage(message=data.get("message", "") or "")

    async def delete_term(self, term_id: int, category: str) -> DeleteResult:
        data = await self._post(
            "BCM_delete_term",
            {"term_id": term_id, "category": category, "taxonomy": category},
        )
        children_action = "moved" if data.get("children_action") == "moved" else "none"
        return DeleteResult(message=data.get("message", "") or "", children_action=children_action)

    async def update_term_hierarchy(
        self, term_id: int, new_parent_id: int, category: str
    ) -> StoreMessage:
        data = await self._post(
            "BCM_update_term_hierarchy",
            {
                "term_id": term_id,
                "parent_id": new_parent_id,
                "category": category,
                "taxonomy": category,
            },
        )
        return StoreMessage(message=data.get("message", "") or "")

    async def get_parent_options(self, category: str, exclude: int = 0) -> ParentOptions:
        data = await self._post("BCM_get_parent_terms", {"category": category, "exclude": exclude})
        markup = data.get("parent_dropdown", "") or ""
        return ParentOptions(parent_dropdown_markup=markup, options=parse_parent_dropdown(markup))

    async def generate_description(self, term_name: str, prompt: str) -> str:
        data = await self._post(
            "BCM_generate_description", {"term_name": term_name, "prompt": prompt}
        )
        description = data.get("description")
        if not isinstance(description, str):
            raise StoreRequestError("BCM_generate_description returned no description")
        return description


class InMemoryTermStore(TermStore):
    """
    Term store kept in process memory.

    Behaves like the WordPress handlers closely enough for demos and tests:
    deleting a term moves its children up, and loops are rejected.
    Every call is recorded in ``calls``.
    """

    def __init__(self, terms: list[Term] | None = None, is_hierarchical: bool = True):
        self._terms: dict[int, Term] = {t.id: t for t in (terms or [])}
        self.is_hierarchical = is_hierarchical
        self.calls: list[tuple[str, tuple]] = []

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _descendants(self, term_id: int) -> set[int]:
        found: set[int] = set()
        stack = [term_id]
        while stack:
            current = stack.pop()
            for term in self._terms.values():
                if term.parent == current and term.id not in found:
                    found.add(term.id)
                    stack.append(term.id)
        return found

    def _require(self, term_id: int) -> Term:
        if not term_id or term_id not in self._terms:
            raise StoreRejectionError("Term not found.")
        return self._terms[term_id]

    def _options(self, exclude: int = 0) -> ParentOptions:
        model = TermTreeModel(self._terms.values(), self.is_hierarchical)
        options = parent_options(model, exclude_id=exclude)
        return ParentOptions(parent_dropdown_markup=parent_options_markup(options), options=options)

    async def get_terms(self, category: str) -> TermListResult:
        self._record("get_terms", category)
        return TermListResult(terms=list(self._terms.values()), is_hierarchical=self.is_hierarchical)

    async def get_term_data(self, term_id: int, category: str) -> TermDetail:
        self._record("get_term_data", term_id, category)
        term = self._require(term_id)
        options = self._options(exclude=term_id)
        return TermDetail(
            term=term,
            parent_options=options.options,
            category_is_hierarchical=self.is_hierarchical,
            parent_dropdown_markup=options.parent_dropdown_markup,
        )

    async def save_term(self, fields: TermFormFields) -> StoreMessage:
        self._record("save_term", fields)
        if not fields.name.strip():
            raise StoreRejectionError("Name is required.")
        if fields.parent and fields.parent not in self._terms:
            raise StoreRejectionError("Parent term does not exist.")

        if fields.term_id:
            existing = self._require(fields.term_id)
            if fields.parent == fields.term_id or fields.parent in self._descendants(fields.term_id):
                raise StoreRejectionError("A term cannot be its own ancestor.")
            self._terms[fields.term_id] = Term(
                id=existing.id,
                name=fields.name,
                slug=fields.slug or existing.slug,
                description=fields.description,
                parent=fields.parent,
                count=existing.count,
            )
            return StoreMessage(message="Term updated successfully.")

        new_id = max(self._terms, default=0) + 1
        self._terms[new_id] = Term(
            id=new_id,
            name=fields.name,
            slug=fields.slug or fields.name.strip().lower().replace(" ", "-"),
            description=fields.description,
            parent=fields.parent,
        )
        return StoreMessage(message="Term created successfully.")

    async def delete_term(self, term_id: int, category: str) -> DeleteResult:
        self._record("delete_term", term_id, category)
        term = self._require(term_id)
        moved = False
        for child in list(self._terms.values()):
            if child.parent == term_id:
                self._terms[child.id] = child.with_parent(term.parent)
                moved = True
        del self._terms[term_id]
        return DeleteResult(
            message="Term deleted successfully.",
            children_action="moved" if moved else "none",
        )

    async def update_term_hierarchy(
        self, term_id: int, new_parent_id: int, category: str
    ) -> StoreMessage:
        self._record("update_term_hierarchy", term_id, new_parent_id, category)
        term = self._require(term_id)
        if new_parent_id and new_parent_id not in self._terms:
            raise StoreRejectionError("Parent term does not exist.")
        if new_parent_id == term_id or new_parent_id in self._descendants(term_id):
            raise StoreRejectionError("A term cannot be its own ancestor.")
        self._terms[term_id] = term.with_parent(new_parent_id)
        return StoreMessage(message="Term hierarchy updated.")

    async def get_parent_options(self, category: str, exclude: int = 0) -> ParentOptions:
        self._record("get_parent_options", category, exclude)
        return self._options(exclude=exclude)

    async def generate_description(self, term_name: str, prompt: str) -> str:
        """Fills the prompt template instead of calling a language model."""
        self._record("generate_description", term_name, prompt)
        if not term_name.strip() or not prompt.strip():
            raise StoreRejectionError("Missing required parameters.")
        return prompt.replace("[TERM_NAME]", term_name).strip()
