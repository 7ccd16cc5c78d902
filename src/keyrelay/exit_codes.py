"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~keyrelay.exceptions.KeyrelayError` subclass.
Scripts wrapping ``keyrelay`` can inspect the exit code to tell an
authorization problem from an unreachable proxy without parsing stderr.

Example::

    $ keyrelay accounts toggle abc123 --disable
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the management key was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_AUTH_FAILURE = 3
"""The proxy or an upstream endpoint rejected the credentials (HTTP 401/403)."""

EXIT_NOT_FOUND = 4
"""The requested account, key or file does not exist."""

EXIT_SERVER_ERROR = 5
"""The proxy returned an unexpected HTTP error status."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, connection refused)."""

EXIT_CONFIG_ERROR = 7
"""Configuration is missing or invalid (no secret, malformed URL)."""

EXIT_FILESYSTEM_ERROR = 8
"""A file operation failed (permissions, missing directory)."""

EXIT_TIMEOUT = 9
"""A long-running flow gave up after exhausting its attempts."""
