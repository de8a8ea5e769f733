"""Exceptions raised while executing a workflow."""


class ExecutorError(Exception):
    """Base exception for executor errors."""

    pass


class WorkflowValidationError(ExecutorError):
    """The serialized workflow cannot be executed as given."""

    pass


class ReferenceResolutionError(ExecutorError):
    """A block input references something that cannot be resolved."""

    pass


class BlockExecutionError(ExecutorError):
    """A block failed while running."""

    def __init__(self, message: str, block_id: str | None = None, status: int | None = None):
        super().__init__(message)
        self.block_id = block_id
        self.status = status
