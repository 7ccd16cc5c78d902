"""Browser OAuth "add account" flow, driven as a polling state machine.

The proxy performs the actual OAuth exchange. keyrelay only asks it for an
authorization URL, hands that URL to a browser, and then polls the proxy
until it reports the outcome:

    Idle -> Waiting(provider)            start()
    Waiting -> Polling(attempts=0)       URL obtained and handed to the browser
    Polling -> Polling(attempts+1)       status "pending", or a poll error
    Polling -> Success                   status "ok"
    Polling -> Error                     status "error"/"failed", or attempts
                                         reached max_attempts
    any non-terminal -> Idle             cancel()

An error raised by a poll never ends the flow; only an explicit failure
status or running out of attempts does. With the defaults (150 attempts at a
2 second interval) a flow gives up after 5 minutes.

:meth:`OAuthFlowController.cancel` is synchronous. Each flow carries a
generation number and results from an older generation are discarded, so
nothing is published for a cancelled flow once ``cancel()`` returns.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Any, Awaitable, Callable, Optional

import httpx

from keyrelay.client.management import ManagementAPIClient
from keyrelay.events import Observable
from keyrelay.exceptions import (
    AuthenticationError,
    KeyrelayError,
    OAuthTimeoutError,
)
from keyrelay.models import OAuthSession, OAuthState

logger = logging.getLogger(__name__)

TIMED_OUT = "authentication timed out"
FAILED = "authentication failed"

BrowserLauncher = Callable[[str], Any]
Sleep = Callable[[float], Awaitable[None]]


def raise_for_session(session: OAuthSession) -> None:
    """Raise the exception matching a terminal ``Error`` session.

    Raises:
        OAuthTimeoutError: When the flow ran out of attempts.
        AuthenticationError: For any other failure.
    """
    if session.state != OAuthState.ERROR:
        return
    if session.error == TIMED_OUT:
        raise OAuthTimeoutError(
            f"{session.provider or 'OAuth'} {TIMED_OUT} after {session.attempts} attempts"
        )
    raise AuthenticationError(session.error or FAILED)


class OAuthFlowController:
    """Run one OAuth flow at a time and publish its progress.

    Args:
        client: Management API client used to initiate and poll.
        browser_launcher: Called with the authorization URL. Defaults to
            :func:`webbrowser.open`. A failure here is logged, not raised;
            the user can still open the URL by hand.
        poll_interval: Seconds between polls.
        max_attempts: Polls before giving up.
        sleep: Awaitable sleep, injectable for tests.

    Example::

        controller = OAuthFlowController(client)
        controller.session.subscribe(lambda s: print(s.state.value))
        await controller.start("claude")
        final = await controller.wait()
    """

    def __init__(
        self,
        client: ManagementAPIClient,
        browser_launcher: BrowserLauncher = webbrowser.open,
        poll_interval: float = 2.0,
        max_attempts: int = 150,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self.browser_launcher = browser_launcher
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task[None]] = None
        self.session: Observable[OAuthSession] = Observable(
            OAuthSession(max_attempts=max_attempts)
        )

    @property
    def is_active(self) -> bool:
        state = self.session.value.state
        return state != OAuthState.IDLE and not state.is_terminal

    async def start(self, provider: str) -> OAuthSession:
        """Begin a flow for *provider*; an active flow is cancelled first.

        Returns:
            The ``Polling`` snapshot, or the current snapshot when the flow
            was cancelled while the URL was being requested.

        Raises:
            KeyrelayError: If the initiate call fails. ``Error`` is
                published before the exception propagates.
        """
        if self.is_active:
            self.cancel()
        self._generation += 1
        generation = self._generation

        self._publish(OAuthSession(state=OAuthState.WAITING, provider=provider))
        try:
            started = await self._client.initiate_oauth(provider)
        except (KeyrelayError, httpx.HTTPError) as exc:
            if generation == self._generation:
                self._publish(
                    OAuthSession(state=OAuthState.ERROR, provider=provider, error=str(exc))
                )
            raise
        if generation != self._generation:
            return self.session.value

        self._open_browser(started.authorization_url)
        self._publish(
            OAuthSession(
                state=OAuthState.POLLING,
                provider=provider,
                correlation_token=started.correlation_token,
                authorization_url=started.authorization_url,
            )
        )
        polling = self.session.value
        self._task = asyncio.get_running_loop().create_task(self._poll_loop(generation, polling))
        return polling

    def cancel(self) -> None:
        """Stop the active flow and publish ``Idle``. No-op when not active."""
        if not self.is_active:
            return
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._publish(OAuthSession())
        logger.debug("OAuth flow cancelled")

    async def wait(self) -> OAuthSession:
        """Wait for the polling task to end and return the final snapshot."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        return self.session.value

    def _open_browser(self, url: str) -> None:
        try:
            opened = self.browser_launcher(url)
        except (webbrowser.Error, OSError) as exc:
            logger.warning("Could not open a browser (%s); open this URL manually: %s", exc, url)
            return
        if opened is False:
            logger.warning("Could not open a browser; open this URL manually: %s", url)

    async def _poll_loop(self, generation: int, session: OAuthSession) -> None:
        token = session.correlation_token or ""
        attempts = 0
        while True:
            await self._sleep(self._poll_interval)
            if generation != self._generation:
                return
            attempts += 1
            try:
                status = await self._client.poll_oauth_status(token)
            except (KeyrelayError, httpx.HTTPError) as exc:
                logger.debug("OAuth poll %d failed: %s", attempts, exc)
                status = "pending"
            if generation != self._generation:
                return

            if status == "ok":
                self._finish(session, attempts, OAuthState.SUCCESS)
                return
            if status in ("error", "failed"):
                self._finish(session, attempts, OAuthState.ERROR, FAILED)
                return
            if attempts >= self._max_attempts:
                self._finish(session, attempts, OAuthState.ERROR, TIMED_OUT)
                return
            self._publish(session.model_copy(update={"attempts": attempts}))

    def _finish(
        self,
        session: OAuthSession,
        attempts: int,
        state: OAuthState,
        error: Optional[str] = None,
    ) -> None:
        self._publish(session.model_copy(update={"state": state, "attempts": attempts, "error": error}))
        if state == OAuthState.SUCCESS:
            logger.info("OAuth flow for %s succeeded", session.provider)
        else:
            logger.info("OAuth flow for %s ended: %s", session.provider, error)

    def _publish(self, session: OAuthSession) -> None:
        if session.max_attempts != self._max_attempts:
            session = session.model_copy(update={"max_attempts": self._max_attempts})
        self.session.set(session)
