"""Domain exception hierarchy for DiffGuard.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.

The scan pipeline uses the second half of the hierarchy to decide what a
failure means for a running scan:

* fatal to the scan  — ``ScanConfigurationError``, ``ProviderListError``
* local, recovered   — ``ProviderFetchError`` (file dropped),
  ``AnalysisError`` (batch counts as zero findings),
  ``VulnerabilityValidationError`` (record dropped)
* surfaced distinctly — ``PersistenceError``
"""


class DiffGuardError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(DiffGuardError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(DiffGuardError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class AuthError(DiffGuardError):
    """Authentication or authorization failure (401/403)."""

    def __init__(self, message: str = "Not authorized", *, status_code: int = 401):
        super().__init__(message, status_code=status_code)


# ---------------------------------------------------------------------------
# Scan pipeline
# ---------------------------------------------------------------------------


class ScanError(DiffGuardError):
    """Base for failures raised while a scan is running."""

    def __init__(self, message: str = "Scan error", *, status_code: int = 500):
        super().__init__(message, status_code=status_code)


class ScanConfigurationError(ScanError):
    """Missing credential, token or provider wiring — fails the scan."""

    def __init__(self, message: str = "Scan is not configured"):
        super().__init__(message, status_code=400)


class ProviderListError(ScanError):
    """The provider refused to list changed files — fails the scan."""

    def __init__(self, message: str = "Could not list changed files", *, status: int | None = None):
        super().__init__(message, status_code=502)
        self.status = status


class ProviderFetchError(ScanError):
    """A single file's content or patch could not be fetched."""

    def __init__(self, path: str, message: str = "fetch failed"):
        super().__init__(f"{path}: {message}", status_code=502)
        self.path = path


class AnalysisError(ScanError):
    """A batch could not be analysed (retries exhausted or unparseable reply)."""

    def __init__(self, message: str = "Analysis failed"):
        super().__init__(message, status_code=502)


class VulnerabilityValidationError(ScanError):
    """A single reported vulnerability failed schema validation."""

    def __init__(self, message: str = "Invalid vulnerability record"):
        super().__init__(message, status_code=422)


class PersistenceError(ScanError):
    """Writing the scan record failed."""

    def __init__(self, message: str = "Could not persist scan record"):
        super().__init__(message, status_code=500)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
