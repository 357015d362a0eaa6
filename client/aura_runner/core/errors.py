class ApiError(Exception):
    """Base error for calls against the platform REST API."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ApiNetworkError(ApiError):
    """The request never produced an HTTP response (refused, timed out, DNS...)."""


class AuthError(ApiError):
    pass


class StartError(Exception):
    """Raised when the server refuses to open an exam session."""

    NOT_FOUND = "not_found"
    ALREADY_ATTEMPTED = "already_attempted"
    ACCESS_DENIED = "access_denied"
    ALREADY_RUNNING = "already_running"
    UNKNOWN = "unknown"

    def __init__(self, message: str, reason: str = UNKNOWN) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class SubmitError(Exception):
    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class SessionNotFound(KeyError):
    pass


class StateConflictError(Exception):
    """A write carried an expected revision that no longer matches the stored one."""

    def __init__(self, namespace: str, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"State {namespace}/{key} is at revision {actual}, expected {expected}"
        )
        self.namespace = namespace
        self.key = key
        self.expected = expected
        self.actual = actual


class SessionStateError(RuntimeError):
    """Operation not allowed in the exam session's current state."""
