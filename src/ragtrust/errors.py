"""Error taxonomy for the trust evaluation engine.

Input errors are raised before any external call. Collaborator errors wrap
failures of the generation, embedding and vector-store services; a batch
run records them per item instead of aborting. Citation policy outcomes are
never errors: they are scored and capped.
"""


class RagTrustError(Exception):
    """Base class for all engine errors."""


class InputValidationError(RagTrustError, ValueError):
    """Rejected input (empty query, collection id or dataset)."""


class CollaboratorError(RagTrustError):
    """Failure reported by an external collaborator."""

    category = "collaborator_error"
    message = "An external service failed."


class UnreachableModel(CollaboratorError):
    """The generation or embedding service could not be reached."""

    category = "unreachable_model"
    message = "Model service is not running or not reachable."


class ModelNotFound(CollaboratorError):
    """The requested model does not exist on the generation service."""

    category = "model_not_found"
    message = "Requested model was not found."


class EmptyInput(CollaboratorError):
    """An embedding was requested for blank text, or came back empty."""

    category = "empty_input"
    message = "Embedding input or output was empty."


class CollectionNotFound(CollaboratorError):
    """The vector collection does not exist."""

    category = "collection_not_found"
    message = "Vector collection was not found."


class UnreachableStore(CollaboratorError):
    """The vector store could not be reached."""

    category = "unreachable_store"
    message = "Vector store is not running or not reachable."


def normalize_error_message(exc: BaseException) -> str:
    """Map an exception to a human-readable message category.

    Args:
        exc: Any exception raised while evaluating a query.

    Returns:
        Normalized message, with the original detail appended when present.
    """
    detail = str(exc).strip()

    if isinstance(exc, CollaboratorError):
        return f"{exc.message} ({detail})" if detail else exc.message

    if isinstance(exc, InputValidationError):
        return detail or "Invalid input."

    # Unwrapped transport errors from third-party clients
    lower = detail.lower()
    if "econnrefused" in lower or "connect" in lower:
        return f"{UnreachableModel.message} ({detail})"
    if "model" in lower and "not found" in lower:
        return f"{ModelNotFound.message} ({detail})"

    return detail or type(exc).__name__
