"""Error taxonomy for chappy.

Every failure the core surfaces is one of these. The HTTP layer maps each
class to a status code; "no data" is never an error and comes back as an
empty list instead.
"""


class ChappyError(Exception):
    """Base class for all chappy errors."""

    retryable: bool = False


class MalformedInput(ChappyError, ValueError):
    """A required field (channel name, dm id, text) is missing or invalid."""


class NotFound(ChappyError):
    """A lookup that must match a row matched nothing."""


class UserNotFound(NotFound):
    """No user row matches the given username or user id."""

    def __init__(self, who: str):
        super().__init__(f"User {who} not found")
        self.who = who


class Forbidden(ChappyError):
    """The principal is authenticated but not allowed to do this."""


class WriteConflict(ChappyError):
    """A conditional put collided and the single retry collided too."""

    retryable = True


class StoreUnavailable(ChappyError):
    """The backing store failed with an I/O error."""
