"""Error kinds raised at the pipeline's capability seams.

Stage operations catch these and turn them into result values; only a
CompositionError (or a run where no segment succeeded) fails a run.
"""


class ShortComposeError(Exception):
    """Base class for all shortcompose errors."""


class ExternalServiceError(ShortComposeError):
    """Submit, poll or fetch against an external service failed.

    Recoverable: the job runner retries the segment with a fresh job.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RenderError(ShortComposeError):
    """An overlay card could not be rendered. The card is omitted."""


class CompositionError(ShortComposeError):
    """A compositor pass failed. Always fatal for the run."""

    def __init__(self, pass_id: str, message: str, stderr: str = ""):
        super().__init__(f"{pass_id} pass failed: {message}")
        self.pass_id = pass_id
        self.stderr = stderr
