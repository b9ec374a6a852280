class YoloboxError(Exception):
    """Base class for errors raised by yolobox."""


class NotReadyError(YoloboxError):
    """
    The model is not loaded (still loading, never started, or already released).

    Recoverable: real-time callers should skip the frame and retry later.
    """


class LoadFailedError(NotReadyError):
    """
    The asynchronous model load failed. Terminal for that load attempt.

    The original exception is chained as ``__cause__`` and also kept on
    ``ModelLifecycle.error``.
    """


class StateError(YoloboxError):
    """A call-order precondition was violated (e.g. compute_boxes() before predict())."""


class DimensionError(YoloboxError, ValueError):
    """Input channel count does not match what the model expects."""
