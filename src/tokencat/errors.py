"""Error taxonomy for credential resolution and the usage API.

Both hierarchies are closed: the keychain layer only ever raises a
CredentialError subclass and the HTTP layer only ever raises a
UsageAPIError subclass.
"""


class CredentialError(Exception):
    """The access credential could not be resolved."""


class CredentialNotFound(CredentialError):
    """No usable credential record exists (user is not logged in)."""


class CredentialAccessDenied(CredentialError):
    """A record exists but the secret store refused to hand it over."""


class UsageAPIError(Exception):
    """Base class for usage API failures. ``message`` is user-facing."""

    message = "Unexpected error."

    def __str__(self) -> str:
        return self.message


class Unauthorized(UsageAPIError):
    message = "Authentication expired. Run `claude login` to reconnect."


class Forbidden(UsageAPIError):
    message = "Access denied. Check your Claude subscription."


class NetworkError(UsageAPIError):
    """Transport-level failure (DNS, timeout, connection reset, TLS)."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(cause)
        self.cause = cause

    @property
    def message(self) -> str:
        return f"Network error: {self.cause}"


class DecodingError(UsageAPIError):
    """The response body did not match the expected shape."""

    message = "Unexpected API response format."

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(cause)
        self.cause = cause


class UnexpectedStatus(UsageAPIError):
    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code

    @property
    def message(self) -> str:
        return f"API returned status {self.code}."
