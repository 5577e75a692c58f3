class ProcessorError(Exception):
    """Base exception for all processor-related errors."""


class InvalidStageTransitionError(ProcessorError):
    """Raised when a file is moved to a stage its current stage cannot reach."""
