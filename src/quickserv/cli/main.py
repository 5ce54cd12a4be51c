"""QuickServ CLI — run the server, mint tokens, send and watch notifications.

Usage:
    quickserv serve --reload                        # Run the API + /ws
    quickserv init-db                               # Create tables (dev)
    quickserv token 42 --role admin                 # Print a bearer token
    quickserv notify 7 8 --type new_booking \\
        --title "Nova reserva" --message "..."      # Admin dispatch
    quickserv notifications                         # List my notifications
    quickserv read 12 | quickserv read --all        # Acknowledge
    quickserv listen                                # Live socket, auto-reconnect
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("QUICKSERV_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url() -> str:
    base = _api_url()
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):] + "/ws"
    return "ws://" + base.removeprefix("http://") + "/ws"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the bearer token from --token or QUICKSERV_TOKEN."""
    tok = token or os.environ.get("QUICKSERV_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set QUICKSERV_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _api(token: str):
    from quickserv.client.api import NotificationsApi
    from quickserv.client.session import SessionStore

    return NotificationsApi(_api_url(), SessionStore(token))


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_notification(n: dict) -> None:
    marker = click.style("●", fg="yellow") if not n.get("isRead") else " "
    click.echo(
        f"{marker} #{n['id']:<6} {n['type']:<15} "
        f"{click.style(n['title'], bold=True)} — {n['message']}"
    )


def _fail(e: httpx.HTTPError) -> None:
    if isinstance(e, httpx.HTTPStatusError):
        click.secho(f"Error: {e.response.status_code} {e.response.text}", fg="red", err=True)
    else:
        click.secho(f"Error: {e}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="quickserv")
def main():
    """QuickServ — real-time notifications for the services marketplace."""


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind host (default from QUICKSERV_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (default from QUICKSERV_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and the /ws endpoint with uvicorn."""
    import uvicorn

    from quickserv.config import settings

    uvicorn.run(
        "quickserv.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command("init-db")
def init_db():
    """Create the notifications table (development; use Alembic in production)."""
    from quickserv.db.engine import engine, init_models

    async def _impl():
        await init_models(engine)
        await engine.dispose()

    _run(_impl())
    click.secho("Tables created.", fg="green")


@main.command()
@click.argument("user_id", type=int)
@click.option("--role", type=click.Choice(["client", "provider", "admin"]), default="client")
@click.option("--expires-minutes", type=int, default=None)
def token(user_id: int, role: str, expires_minutes: Optional[int]):
    """Print an access token for USER_ID (signed with QUICKSERV_JWT_SECRET)."""
    from quickserv.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, role=role, expires_minutes=expires_minutes))


# ---------------------------------------------------------------------------
# REST side
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_ids", type=int, nargs=-1, required=True)
@click.option("--title", required=True)
@click.option("--message", "-m", required=True)
@click.option(
    "--type", "ntype",
    type=click.Choice(["notice", "new_booking", "booking_status", "chat_message", "order_event"]),
    default="notice",
)
@click.option("--related-id", type=int, default=None)
@click.option("--token", "-t", help="Admin token (or set QUICKSERV_TOKEN)")
def notify(user_ids: tuple[int, ...], title: str, message: str, ntype: str,
           related_id: Optional[int], token: Optional[str]):
    """Send a notification to one or more users (admin token required)."""
    api = _api(_token_from_ctx(token))

    async def _impl():
        try:
            return await api.dispatch(
                list(user_ids), title=title, message=message,
                type=ntype, related_id=related_id,
            )
        finally:
            await api.aclose()

    try:
        created = _run(_impl())
    except httpx.HTTPError as e:
        _fail(e)
    click.secho(f"Dispatched {len(created)} notification(s)", fg="green")
    for n in created:
        _print_notification(n)


@main.command()
@click.option("--unread", is_flag=True, help="Only unread notifications")
@click.option("--limit", type=int, default=20)
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
@click.option("--token", "-t", help="Bearer token (or set QUICKSERV_TOKEN)")
def notifications(unread: bool, limit: int, as_json: bool, token: Optional[str]):
    """List my notifications, newest first."""
    api = _api(_token_from_ctx(token))

    async def _impl():
        try:
            items = await api.list_notifications(limit=limit, unread_only=unread)
            count = await api.unread_count()
            return items, count
        finally:
            await api.aclose()

    try:
        items, count = _run(_impl())
    except httpx.HTTPError as e:
        _fail(e)

    if as_json:
        click.echo(_pretty_json({"unread": count, "notifications": items}))
        return
    click.secho(f"{count} unread", bold=True)
    if not items:
        click.echo("No notifications.")
    for n in items:
        _print_notification(n)


@main.command()
@click.argument("notification_id", type=int, required=False)
@click.option("--all", "all_", is_flag=True, help="Mark every notification read")
@click.option("--token", "-t", help="Bearer token (or set QUICKSERV_TOKEN)")
def read(notification_id: Optional[int], all_: bool, token: Optional[str]):
    """Mark NOTIFICATION_ID (or --all) as read."""
    if not all_ and notification_id is None:
        raise click.UsageError("Give a NOTIFICATION_ID or --all")
    api = _api(_token_from_ctx(token))

    async def _impl():
        try:
            if all_:
                return await api.mark_all_read()
            await api.mark_read(notification_id)
            return 1
        finally:
            await api.aclose()

    try:
        updated = _run(_impl())
    except httpx.HTTPError as e:
        _fail(e)
    click.secho(f"Marked {updated} notification(s) read", fg="green")


# ---------------------------------------------------------------------------
# Live socket
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", "-t", help="Bearer token (or set QUICKSERV_TOKEN)")
@click.option("--delay", type=float, default=3.0, show_default=True,
              help="Fixed reconnect delay in seconds")
@click.option("--jitter", type=float, default=0.0, show_default=True,
              help="Extra random delay (0..JITTER seconds) per retry")
@click.option("--poll", type=float, default=30.0, show_default=True,
              help="Unread-count polling interval while live (0 disables)")
def listen(token: Optional[str], delay: float, jitter: float, poll: float):
    """Hold a live socket, print notifications, reconnect on drops (Ctrl-C stops)."""
    from quickserv.client.api import NotificationsApi
    from quickserv.client.controller import ReconnectController
    from quickserv.client.session import SessionStore

    session = SessionStore(_token_from_ctx(token))
    if not session.is_valid():
        click.secho("Error: token is malformed or expired", fg="red", err=True)
        sys.exit(1)

    async def _impl():
        api = NotificationsApi(_api_url(), session)
        controller = ReconnectController(
            _ws_url(), session, api,
            reconnect_delay=delay,
            reconnect_jitter=jitter,
            poll_interval=poll or None,
        )
        controller.on_state(lambda s: click.secho(f"[{s.value}]", fg="cyan"))
        controller.on_unread_count(lambda c: click.echo(f"unread: {c}"))
        controller.on_notification(_print_notification)

        controller.start()
        try:
            # runs until the session expires or the user hits Ctrl-C
            while controller.running:
                await asyncio.sleep(0.5)
        finally:
            await controller.stop()
            await api.aclose()

    click.echo(f"Connecting to {_ws_url()} as user {session.user_id}...")
    try:
        _run(_impl())
    except KeyboardInterrupt:
        click.echo("\nStopped.")


if __name__ == "__main__":
    main()
