"""Error taxonomy for the delegation core."""


class TaskRelayError(Exception):
    """Base class for delegation errors."""


class TaskValidationError(TaskRelayError):
    """A submitted task is missing required fields; nothing was created."""


class NotFoundError(TaskRelayError):
    """An external task or agent identifier is unknown."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


class ReasoningError(TaskRelayError):
    """The reasoning collaborator failed or replied with something unusable.

    Always caught at the call site and replaced by a deterministic fallback.
    """
