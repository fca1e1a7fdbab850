"""Auth-specific errors."""


class AuthenticationError(Exception):
    """Raised when the bearer credential cannot be resolved to a user.

    The error message is for internal logging only —
    the client always receives a generic 401.
    """
