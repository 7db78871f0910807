"""Engine exceptions."""


class FlowEngineError(Exception):
    """Base class for engine usage errors."""


class InvalidStepEventError(FlowEngineError):
    """An event does not apply to the step that is currently live."""


class BlockAlreadyEndedError(FlowEngineError):
    """An event reached a block traversal that has already signalled its end."""
