"""Error taxonomy shared by stores, services and routes."""


class ReadBoostError(Exception):
    """Base class for errors raised by readboost."""


class StoreUnavailable(ReadBoostError):
    """A local or remote store call failed (network, timeout, serialization)."""

    def __init__(self, operation: str, key: str, cause: BaseException | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"{operation} failed for {key}{detail}")


class InvalidArgument(ReadBoostError):
    """A caller-supplied value violates a precondition."""


class UserNotFound(ReadBoostError):
    """No progress could be resolved for the requested user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No progress found for user {user_id}")


class SessionClosed(InvalidArgument):
    """A reading session was written to after it had been ended."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Reading session {session_id} is already closed")


class SessionExists(InvalidArgument):
    """A reading session id is already taken."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Reading session {session_id} already exists")
