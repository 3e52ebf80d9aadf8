"""Domain errors for the login attempt guard.

Being rate limited is not an error: it is returned as a normal decision
(``allowed=False``). Only malformed input is signalled with exceptions.
"""


class GuardError(ValueError):
    """Base class for caller-side errors (mapped to HTTP 400)."""


class InvalidIdentity(GuardError):
    """The caller identity is missing or malformed."""


class MalformedRequest(GuardError):
    """The request body or action could not be understood."""
