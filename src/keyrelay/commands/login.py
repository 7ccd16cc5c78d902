"""``keyrelay login`` -- add an account through the proxy's browser OAuth flow."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from keyrelay.commands import run_with_services
from keyrelay.output import info, progress, success, suggest

if TYPE_CHECKING:
    from keyrelay.models import AccountRecord, OAuthSession
    from keyrelay.runtime import Services


def login_command(
    ctx: typer.Context,
    provider: str = typer.Argument(
        help="Provider: gemini-cli, claude, codex, qwen, iflow, antigravity, kiro."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
) -> None:
    """Sign in to a provider in the browser and wait for the proxy to confirm.

    Polls every 2 seconds for up to 5 minutes (see ``oauth.*`` in
    ``keyrelay config show``). Ctrl-C cancels the flow.

    Example::

        keyrelay login claude
    """
    from keyrelay.models import OAuthState
    from keyrelay.oauth import raise_for_session

    def _report(session: OAuthSession) -> None:
        if session.state == OAuthState.WAITING:
            info(f"Requesting authorization URL for {session.provider}...")
        elif session.state == OAuthState.POLLING and session.attempts == 0:
            info(f"Complete sign-in in your browser: {session.authorization_url}")
        elif session.state == OAuthState.POLLING:
            progress(f"Waiting for authorization ({session.attempts}/{session.max_attempts})")

    async def _run(services: Services) -> list[AccountRecord]:
        if no_browser:
            services.oauth.browser_launcher = lambda url: None
        unsubscribe = services.oauth.session.subscribe(_report)
        try:
            await services.oauth.start(provider)
            final = await services.oauth.wait()
        finally:
            unsubscribe()
        raise_for_session(final)
        return await services.accounts.get_accounts(force_refresh=True)

    records = run_with_services(ctx, _run)
    success(f"Signed in to {provider}.")
    matching = [r for r in records if r.provider == provider]
    info(f"{len(matching)} {provider} account(s) now available.")
    suggest("List them with: keyrelay accounts list")
