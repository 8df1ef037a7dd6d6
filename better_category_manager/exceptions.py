"""Error types raised by the term tree, drag engine and term store."""


class CategoryManagerError(Exception):
    """Base class for all category manager errors."""


class TermNotFoundError(CategoryManagerError):
    """A term id does not exist in the loaded tree."""

    def __init__(self, term_id: int):
        super().__init__(f"Term {term_id} not found")
        self.term_id = term_id


class CycleError(CategoryManagerError):
    """Reparenting would make a term its own ancestor."""

    def __init__(self, term_id: int, new_parent_id: int):
        super().__init__(
            f"Cannot move term {term_id} under {new_parent_id}: "
            "a term cannot be nested inside itself or its descendants"
        )
        self.term_id = term_id
        self.new_parent_id = new_parent_id


class DragStateError(CategoryManagerError):
    """A drag event arrived in a state that cannot accept it."""


class MutationInFlightError(CategoryManagerError):
    """A hierarchy update is already waiting on the term store."""


class StoreRequestError(CategoryManagerError):
    """The term store could not be reached or returned an unreadable reply."""


class StoreRejectionError(CategoryManagerError):
    """The term store answered with success=false."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
