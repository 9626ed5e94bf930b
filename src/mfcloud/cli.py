"""
mfcloud CLI: command-line interface.

Usage:
    mfcloud status
    mfcloud login
    mfcloud get https://expense.moneyforward.com/api/external/v1/offices --param page=2
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

import httpx
import typer
from rich.console import Console
from rich.table import Table

from mfcloud import __version__
from mfcloud.auth.errors import MFCloudAuthError
from mfcloud.auth.manager import AuthManager
from mfcloud.auth.oauth_client import OAuthClient
from mfcloud.auth.token_store import TokenStore
from mfcloud.client.api_client import MFApiClient, MFApiError
from mfcloud.config import MFCloudConfig

app = typer.Typer(
    name="mfcloud",
    help="Money Forward Cloud API access with managed OAuth2 credentials",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]mfcloud[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable debug logging",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """mfcloud: Money Forward Cloud for your assistant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = MFCloudConfig.load(config)


def _build_manager(config: MFCloudConfig) -> AuthManager:
    return AuthManager(TokenStore(config.token_path), OAuthClient(config.oauth))


def _require_oauth(config: MFCloudConfig) -> None:
    if not config.oauth.is_configured:
        err_console.print(
            "[red]Error: MF_CLIENT_ID and MF_CLIENT_SECRET must be set "
            "(environment or config file).[/red]"
        )
        err_console.print("Register your app at https://app-portal.moneyforward.com/authorized_apps/")
        raise typer.Exit(2)


def _format_expiry(expires_at: int) -> str:
    return datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc).isoformat()


@app.command()
def status(ctx: typer.Context) -> None:
    """Show whether stored tokens are valid and when they expire."""
    config: MFCloudConfig = ctx.obj
    auth_status = _build_manager(config).get_auth_status()

    if not auth_status.authenticated and auth_status.expires_at is None:
        console.print("Not authenticated. Run [bold]mfcloud login[/bold] to authenticate.")
        return

    table = Table(title="MF Cloud Authentication")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Authenticated", "yes" if auth_status.authenticated else "no (expired)")
    table.add_row("Expires at", _format_expiry(auth_status.expires_at))
    table.add_row("Scopes", auth_status.scope or "-")
    table.add_row("Token file", str(config.token_path))
    console.print(table)


@app.command()
def login(ctx: typer.Context) -> None:
    """Re-authenticate in the browser, replacing any stored tokens."""
    config: MFCloudConfig = ctx.obj
    _require_oauth(config)
    manager = _build_manager(config)

    async def _run() -> None:
        try:
            await manager.do_interactive_auth()
        finally:
            await manager.oauth_client.close()

    try:
        asyncio.run(_run())
    except MFCloudAuthError as exc:
        err_console.print(f"[red]Authentication failed:[/red] {exc}")
        raise typer.Exit(1)

    console.print("[green]✓[/green] Authentication successful. You can now use MF Cloud tools.")


@app.command()
def get(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Full API URL"),
    param: list[str] = typer.Option(
        None,
        "--param",
        "-p",
        help="Query parameter as key=value (repeatable)",
    ),
) -> None:
    """Send an authorized GET request and print the JSON response."""
    config: MFCloudConfig = ctx.obj
    _require_oauth(config)

    params: dict[str, str] = {}
    for item in param or []:
        key, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected key=value, got {item!r}", param_hint="--param")
        params[key] = value

    manager = _build_manager(config)
    api = MFApiClient(manager.get_valid_token)

    async def _run() -> object:
        try:
            return await api.get(url, params or None)
        finally:
            await api.close()
            await manager.oauth_client.close()

    try:
        data = asyncio.run(_run())
    except MFApiError as exc:
        err_console.print(f"[red]{exc}[/red]")
        if exc.body:
            err_console.print(exc.body, markup=False)
        raise typer.Exit(1)
    except httpx.HTTPError as exc:
        err_console.print(f"[red]Request failed:[/red] {type(exc).__name__}: {exc}")
        raise typer.Exit(1)
    except MFCloudAuthError as exc:
        err_console.print(f"[red]Authentication failed:[/red] {exc}")
        raise typer.Exit(1)

    console.print_json(json.dumps(data))


if __name__ == "__main__":
    app()
