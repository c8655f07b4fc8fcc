"""CLI entry point for authtool."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .configs import ClientConfig, ConfigError, ConfigurationStore
from .oauth.callback import LocalhostCallbackServer, extract_query
from .oauth.discovery import resolve_discovery_document
from .oauth.errors import AuthToolError, DiscoveryError, FetchFailure, HttpFailure, ProtocolMismatch
from .oauth.flow import FlowSession, FlowState
from .oauth.pending import RedirectStateStore
from .oauth.tokens import TokenResponse, refresh_tokens
from .output import OutputHandler
from .settings import Settings, load_settings
from .storage import CONFIGURATIONS_FILE, SESSION_FILE, LocalStore, StorageError

# Logger for CLI
logger = logging.getLogger("authtool")

# Shown for every transport or JSON failure from the token endpoint
FETCH_FAILURE_MESSAGE = "Failed to fetch token"


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--store-dir", type=click.Path(file_okay=False), help="Directory for local storage")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context, json_mode: bool, store_dir: str | None, env_path: str | None, verbose: bool
) -> None:
    """authtool - Exercise an OAuth2/OIDC authorization code + PKCE flow."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["store_dir"] = Path(store_dir) if store_dir else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context) -> Settings | NoReturn:
    """Load settings once per invocation, handling errors."""
    if "settings" not in ctx.obj:
        output: OutputHandler = ctx.obj["output"]
        try:
            ctx.obj["settings"] = load_settings(ctx.obj["env_path"], ctx.obj["store_dir"])
        except ValueError as e:
            output.error(e, error_type="SettingsError")
            raise SystemExit(1)  # Never reached due to sys.exit in output.error
    settings: Settings = ctx.obj["settings"]
    return settings


def get_session_store(ctx: click.Context) -> LocalStore:
    settings = get_settings(ctx)
    return LocalStore(SESSION_FILE, settings.store_dir)


def get_config_store(ctx: click.Context) -> ConfigurationStore:
    settings = get_settings(ctx)
    return ConfigurationStore(
        LocalStore(CONFIGURATIONS_FILE, settings.store_dir),
        get_session_store(ctx),
    )


def get_state_store(ctx: click.Context) -> RedirectStateStore:
    return RedirectStateStore(get_session_store(ctx))


def resolve_config(
    ctx: click.Context,
    name: str | None,
    server: str | None = None,
    client_id: str | None = None,
    scope: str | None = None,
    audience: str | None = None,
) -> ClientConfig | NoReturn:
    """Pick the configuration for a command.

    An explicit --config wins, then ad-hoc --server/--client-id options,
    then the remembered selection.
    """
    output: OutputHandler = ctx.obj["output"]
    try:
        if name:
            return get_config_store(ctx).require(name)
        if server:
            return ClientConfig(
                name=None,
                authentication_server=server,
                client_id=client_id or "",
                scope=scope or "openid",
                audience=audience or "",
            )
        selected = get_config_store(ctx).selected()
    except (ConfigError, StorageError) as e:
        output.error(e, help_text="Run 'authtool config list' to see saved configurations.")
        raise SystemExit(1)

    if selected is None:
        output.error(
            ConfigError("No configuration selected"),
            help_text=(
                "Pass --config NAME, or select one with 'authtool config select NAME'.\n\n"
                "Example: authtool config save dev --server https://idp.example --client-id abc"
            ),
        )
        raise SystemExit(1)
    return selected


def report_fetch_failure(output: OutputHandler, error: FetchFailure) -> None:
    """Report transport and JSON failures through one fixed message."""
    logger.debug(f"Fetch failure: {error!r}")
    output.error(
        FetchFailure(FETCH_FAILURE_MESSAGE),
        error_type=type(error).__name__,
        help_text=str(error),
    )


# =============================================================================
# Configuration commands
# =============================================================================


@main.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Manage named client configurations."""
    pass


@config.command("list")
@click.pass_context
def config_list(ctx: click.Context) -> None:
    """List saved configurations."""
    output: OutputHandler = ctx.obj["output"]
    store = get_config_store(ctx)
    try:
        configs = store.list()
        selected = store.selected()
    except StorageError as e:
        output.error(e)
        return

    selected_name = selected.name if selected else None
    if not configs and not ctx.obj["json_mode"]:
        click.echo("No configurations saved. Create one with 'authtool config save'.")
        return

    output.table(
        ["", "Name", "Server", "Client ID", "Scope", "Audience"],
        [
            ["*" if c.name == selected_name else "", c.name or "", c.authentication_server,
             c.client_id, c.scope, c.audience]
            for c in configs
        ],
    )


@config.command("show")
@click.argument("name", required=False)
@click.pass_context
def config_show(ctx: click.Context, name: str | None) -> None:
    """Show a configuration (the selected one by default)."""
    output: OutputHandler = ctx.obj["output"]
    selected = resolve_config(ctx, name)
    output.success(selected.to_display_dict())


def _config_options(func: Any) -> Any:
    """Options shared by save and save-as."""
    func = click.option("--client-secret", default="", help="Client secret (stored, never sent)")(func)
    func = click.option("--audience", default="", help="API audience")(func)
    func = click.option("--scope", default="openid", show_default=True, help="Space-separated scopes")(func)
    func = click.option("--client-id", required=True, help="Client identifier")(func)
    func = click.option("--server", required=True, help="Authentication server URL")(func)
    return func


@config.command("save")
@click.argument("name")
@_config_options
@click.option("--rename-from", help="Existing configuration to rename to NAME")
@click.pass_context
def config_save(
    ctx: click.Context,
    name: str,
    server: str,
    client_id: str,
    scope: str,
    audience: str,
    client_secret: str,
    rename_from: str | None,
) -> None:
    """Save a configuration under NAME and select it."""
    output: OutputHandler = ctx.obj["output"]
    new_config = ClientConfig(name, server, client_id, scope, audience, client_secret)
    try:
        saved = get_config_store(ctx).save(new_config, previous_name=rename_from)
    except (ConfigError, StorageError) as e:
        output.error(e)
        return

    output.success(saved.to_display_dict(), human_message=f"Saved and selected '{saved.name}'.")


@config.command("save-as")
@click.argument("name")
@_config_options
@click.pass_context
def config_save_as(
    ctx: click.Context,
    name: str,
    server: str,
    client_id: str,
    scope: str,
    audience: str,
    client_secret: str,
) -> None:
    """Save a copy; a taken NAME becomes "Copy of NAME"."""
    output: OutputHandler = ctx.obj["output"]
    new_config = ClientConfig(name, server, client_id, scope, audience, client_secret)
    try:
        saved = get_config_store(ctx).save_as(new_config)
    except (ConfigError, StorageError) as e:
        output.error(e)
        return

    output.success(saved.to_display_dict(), human_message=f"Saved and selected '{saved.name}'.")


@config.command("remove")
@click.argument("name")
@click.pass_context
def config_remove(ctx: click.Context, name: str) -> None:
    """Remove a configuration."""
    output: OutputHandler = ctx.obj["output"]
    try:
        removed = get_config_store(ctx).remove(name)
    except StorageError as e:
        output.error(e)
        return

    if not removed:
        output.error(ConfigError(f"Configuration '{name}' not found"))
        return
    output.success({"removed": name}, human_message=f"Removed '{name}'.")


@config.command("select")
@click.argument("name", required=False)
@click.pass_context
def config_select(ctx: click.Context, name: str | None) -> None:
    """Select the configuration used by default (no NAME clears it)."""
    output: OutputHandler = ctx.obj["output"]
    try:
        selected = get_config_store(ctx).select(name)
    except (ConfigError, StorageError) as e:
        output.error(e)
        return

    if selected is None:
        output.success({"selected": None}, human_message="Selection cleared.")
    else:
        output.success({"selected": selected.name}, human_message=f"Selected '{selected.name}'.")


# =============================================================================
# Flow commands
# =============================================================================


@main.command()
@click.option("--config", "config_name", help="Configuration name")
@click.option("--server", help="Authentication server URL (instead of --config)")
@click.pass_context
def discover(ctx: click.Context, config_name: str | None, server: str | None) -> None:
    """Fetch and print the provider's discovery document."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    selected = resolve_config(ctx, config_name, server)

    try:
        document = asyncio.run(
            resolve_discovery_document(selected.authentication_server, timeout=settings.http_timeout)
        )
    except FetchFailure as e:
        output.error(e, help_text="Check the authentication server URL.")
        return

    output.success(document.to_dict())


@main.command()
@click.option("--config", "config_name", help="Configuration name")
@click.option("--redirect-uri", help="Redirect URI registered with the provider")
@click.option("--open/--no-open", "open_browser", default=False, help="Open the URL in a browser")
@click.pass_context
def authorize(
    ctx: click.Context, config_name: str | None, redirect_uri: str | None, open_browser: bool
) -> None:
    """Start an attempt: persist it and print the authorization URL.

    Finish it later with 'authtool callback <redirected URL>'.
    """
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    selected = resolve_config(ctx, config_name)
    redirect_uri = redirect_uri or settings.redirect_uri

    session = FlowSession(
        get_state_store(ctx), selected, timeout=settings.http_timeout, on_status=output.status
    )
    try:
        url = asyncio.run(session.begin(redirect_uri))
    except (AuthToolError, StorageError) as e:
        output.error(e, help_text="Check the authentication server URL.")
        return

    if open_browser and not webbrowser.open(url):
        output.warning("Could not open browser. Please open the URL manually.")

    output.success(
        {"authorization_url": url, "redirect_uri": redirect_uri},
        human_message=(
            f"Open this URL to authorize:\n\n  {url}\n\n"
            f"Then run: authtool callback '<redirected URL>'"
        ),
    )


def _complete_flow(
    ctx: click.Context,
    query_string: str,
    refresh_count: int = 0,
    interactive: bool = False,
) -> None:
    """Handle a redirect from scratch: rebuild, check, exchange, refresh.

    Runs in a session that has never seen the attempt in memory; all of it
    comes back from the redirect state slot.
    """
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)

    session = FlowSession(get_state_store(ctx), timeout=settings.http_timeout, on_status=output.status)
    results: dict[str, Any] = {}

    evaluation = session.receive_redirect(query_string)
    if evaluation is None:
        output.error(
            ValueError("No query string in the redirect"),
            help_text="Pass the full URL the provider redirected to, including '?code=...&state=...'.",
        )
        return

    results["authorization_response"] = evaluation.params
    output.section("Authorization response", evaluation.params)

    try:
        response = asyncio.run(session.exchange())
    except ProtocolMismatch as e:
        output.error(e, help_text="Start a new attempt with 'authtool authorize' or 'authtool login'.")
        return
    except FetchFailure as e:
        report_fetch_failure(output, e)
        return

    results["token_response"] = {"status": response.status_code, "body": response.body}
    output.section(f"Token response (HTTP {response.status_code})", response.body)

    if not response.ok:
        output.error(
            HttpFailure(f"Token exchange failed (HTTP {response.status_code})", response.status_code, response.body),
            help_text="The response body above is what the provider returned.",
        )
        return

    _show_tokens(output, session)

    results["refreshes"] = []
    remaining = refresh_count
    while session.can_refresh and (remaining > 0 or (interactive and click.confirm("\nRefresh tokens?"))):
        remaining -= 1
        try:
            refreshed = asyncio.run(session.refresh())
        except FetchFailure as e:
            report_fetch_failure(output, e)
            return

        results["refreshes"].append({"status": refreshed.status_code, "body": refreshed.body})
        output.section(f"Refresh response (HTTP {refreshed.status_code})", refreshed.body)
        if refreshed.ok:
            _show_tokens(output, session)
        else:
            output.warning("Refresh failed; the previous tokens are stale. You may retry.")

    if refresh_count > 0 and not session.can_refresh and remaining > 0:
        output.warning("No refresh token available; remaining refreshes skipped.")

    snapshot = session.snapshot()
    results["state"] = snapshot.state.value
    if snapshot.state is FlowState.REFRESH_FAILED:
        output.error(
            HttpFailure(f"Token refresh failed (HTTP {snapshot.status_code})", snapshot.status_code or 0),
        )
        return

    if ctx.obj["json_mode"]:
        output.success(results)


def _show_tokens(output: OutputHandler, session: FlowSession) -> None:
    """Print the access token and the ready-to-paste header."""
    snapshot = session.snapshot()
    if not snapshot.can_copy:
        return
    output.section("Access token", snapshot.access_token or "")
    output.section("Authorization header", snapshot.authorization_header or "")


@main.command()
@click.argument("redirect")
@click.option("--refresh", "refresh_count", default=0, help="Refresh the tokens N times after the exchange")
@click.pass_context
def callback(ctx: click.Context, redirect: str, refresh_count: int) -> None:
    """Finish an attempt from the URL (or query string) the provider redirected to."""
    _complete_flow(ctx, extract_query(redirect), refresh_count)


@main.command()
@click.option("--config", "config_name", help="Configuration name")
@click.option("--redirect-uri", help="Loopback redirect URI registered with the provider")
@click.option("--timeout", "-t", type=float, default=None, help="Seconds to wait for the redirect")
@click.option("--no-open", is_flag=True, help="Print the URL instead of opening a browser")
@click.option("--refresh", "refresh_count", default=0, help="Refresh the tokens N times after the exchange")
@click.pass_context
def login(
    ctx: click.Context,
    config_name: str | None,
    redirect_uri: str | None,
    timeout: float | None,
    no_open: bool,
    refresh_count: int,
) -> None:
    """Run the whole flow through a localhost listener.

    The attempt is persisted before the browser leaves and rebuilt from
    storage when the redirect arrives, exactly as a reloaded page would.
    """
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    selected = resolve_config(ctx, config_name)
    redirect_uri = redirect_uri or settings.redirect_uri

    requester = FlowSession(
        get_state_store(ctx), selected, timeout=settings.http_timeout, on_status=output.status
    )

    async def wait_for_redirect() -> str:
        async with LocalhostCallbackServer(redirect_uri, timeout=timeout) as server:
            url = await requester.begin(redirect_uri)
            if no_open or not webbrowser.open(url):
                click.echo(f"Open this URL to authorize:\n{url}", err=True)
            output.status(f"Waiting for redirect on {redirect_uri}")
            return await server.wait_for_callback()

    try:
        query_string = asyncio.run(wait_for_redirect())
    except (AuthToolError, StorageError) as e:
        output.error(e)
        return

    _complete_flow(
        ctx, query_string, refresh_count, interactive=not ctx.obj["json_mode"] and refresh_count == 0
    )


@main.command()
@click.option("--refresh-token", required=True, help="Refresh token to redeem")
@click.option("--config", "config_name", help="Configuration name")
@click.option("--server", help="Authentication server URL (instead of --config)")
@click.option("--client-id", help="Client identifier (with --server)")
@click.pass_context
def refresh(
    ctx: click.Context,
    refresh_token: str,
    config_name: str | None,
    server: str | None,
    client_id: str | None,
) -> None:
    """Redeem a refresh token outside of a login flow."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    selected = resolve_config(ctx, config_name, server, client_id)
    if not selected.client_id:
        output.error(ValueError("A client id is required"), help_text="Pass --client-id or --config.")
        return

    async def run() -> TokenResponse:
        document = await resolve_discovery_document(
            selected.authentication_server, timeout=settings.http_timeout
        )
        return await refresh_tokens(
            document.token_endpoint, selected.client_id, refresh_token, timeout=settings.http_timeout
        )

    try:
        response = asyncio.run(run())
    except FetchFailure as e:
        report_fetch_failure(output, e)
        return

    if not response.ok:
        output.section(f"Refresh response (HTTP {response.status_code})", response.body)
        output.error(
            HttpFailure(f"Token refresh failed (HTTP {response.status_code})", response.status_code, response.body)
        )
        return

    output.success({"status": response.status_code, "body": response.body})


@main.command()
@click.option("--reset", is_flag=True, help="Discard the pending attempt")
@click.pass_context
def status(ctx: click.Context, reset: bool) -> None:
    """Show the pending authorization attempt, if any."""
    output: OutputHandler = ctx.obj["output"]
    state_store = get_state_store(ctx)

    if reset:
        cleared = state_store.clear()
        output.success({"cleared": cleared}, human_message="Pending attempt discarded." if cleared else "Nothing to discard.")
        return

    pending = state_store.load()
    if pending is None:
        output.success({"pending": None}, human_message="No pending authorization attempt.")
        return

    try:
        endpoint: str | None = pending.discovery_document.authorization_endpoint
    except DiscoveryError:
        endpoint = None

    output.success(
        {
            "pending": {
                "client_id": pending.client_id,
                "redirect_uri": pending.redirect_uri,
                "scope": pending.request.scope,
                "audience": pending.request.audience,
                "authorization_endpoint": endpoint,
            }
        }
    )


if __name__ == "__main__":
    main()
