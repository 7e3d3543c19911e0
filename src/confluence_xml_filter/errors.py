"""Errors and control signals raised during a migration run."""


class FilterError(Exception):
    """Fatal error aborting the whole run (unreadable package, failed cleanup)."""


class TraversalInterrupted(Exception):
    """Stops the traversal without being a failure.

    Raised from deep inside the page loops and caught by the pipeline once every
    open scope has been closed.
    """


class MaxPageCountReached(TraversalInterrupted):
    """The configured maximum number of pages has been sent."""


class TraversalCanceled(TraversalInterrupted):
    """Cancellation was requested while the traversal was running."""
