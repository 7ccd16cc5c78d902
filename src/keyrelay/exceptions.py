"""Exception hierarchy for keyrelay.

All exceptions inherit from :class:`KeyrelayError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`keyrelay.exit_codes`.
The top-level error handler in :func:`keyrelay.app.main` catches
``KeyrelayError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    KeyrelayError (exit 1)
    +-- InvalidUsageError      (exit 2)
    +-- AuthenticationError    (exit 3)
    +-- NotFoundError          (exit 4)
    +-- ServerError            (exit 5)
    +-- TransientNetworkError  (exit 6)
    +-- ConfigurationError     (exit 7)
    +-- FileSystemError        (exit 8)
    +-- OAuthTimeoutError      (exit 9)

Polling loops (OAuth status, health checks) treat
:class:`TransientNetworkError` as retryable and never terminal on its own.
"""

from keyrelay.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_FILESYSTEM_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
    EXIT_TIMEOUT,
)


class KeyrelayError(Exception):
    """Base exception for all keyrelay errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(KeyrelayError):
    """Raised for invalid CLI arguments or an operation used in the wrong state."""

    exit_code = EXIT_INVALID_USAGE


class AuthenticationError(KeyrelayError):
    """Raised on HTTP 401/403 so callers can suggest re-entering credentials."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(KeyrelayError):
    """Raised when an account, key or file does not exist."""

    exit_code = EXIT_NOT_FOUND


class ServerError(KeyrelayError):
    """Raised when the proxy answers with an unexpected HTTP error status."""

    exit_code = EXIT_SERVER_ERROR


class TransientNetworkError(KeyrelayError):
    """Raised on network-level failures (timeout, connection refused, reset)."""

    exit_code = EXIT_CONNECTION_ERROR


class ConfigurationError(KeyrelayError):
    """Raised for configuration problems (missing secret, malformed URL, bad JSON)."""

    exit_code = EXIT_CONFIG_ERROR


class FileSystemError(KeyrelayError):
    """Raised when a file operation fails; aborts only that operation."""

    exit_code = EXIT_FILESYSTEM_ERROR


class OAuthTimeoutError(KeyrelayError):
    """Raised when an OAuth flow exhausts its poll attempts. Never auto-retried."""

    exit_code = EXIT_TIMEOUT
