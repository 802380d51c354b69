"""SiteWatch CLI — talk to bridges and work the alarm queue from a terminal.

Usage:
    sitewatch call 5 /api/v1/cameras              # Run a command on bridge 5
    sitewatch call 5 /api/v1/ptz -b '{"pan": 10}' # ...with a JSON body
    sitewatch alarms --site 7 --unread            # List alarms
    sitewatch unread                              # Unread counts per site
    sitewatch mark-read 42                        # Mark one alarm read
    sitewatch mark-all-read --site 7              # Mark a site's alarms read
    sitewatch test-alarm --site 7                 # Raise a synthetic alarm
    sitewatch system-event info "Backup done"     # Publish a system event
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
    return os.environ.get("SITEWATCH_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Async HTTP client pointed at the SiteWatch backend.

    Bridge calls wait up to the server's response timeout, so the client
    timeout sits above it.
    """
    return httpx.AsyncClient(base_url=_api_url(), timeout=45.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Falls back to a worker thread when a loop is already running (Click's
    CliRunner inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _check(r: httpx.Response) -> None:
    """Exit with the server's detail message on an error response."""
    if r.is_success:
        return
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    _fail(f"{r.status_code} {detail}")


def _pretty_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table. columns: (header, dict_key, width)."""
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="sitewatch")
def main():
    """SiteWatch — bridge commands and realtime alarms."""


# ---------------------------------------------------------------------------
# sitewatch call
# ---------------------------------------------------------------------------


@main.command()
@click.argument("bridge_id", type=int)
@click.argument("path")
@click.option("--body", "-b", default="{}", help="JSON request body")
def call(bridge_id: int, path: str, body: str):
    """Run PATH on bridge BRIDGE_ID and print its reply."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        _fail(f"--body is not valid JSON: {e}")
    if not isinstance(payload, dict):
        _fail("--body must be a JSON object")
    _run(_call_impl(bridge_id, path, payload))


async def _call_impl(bridge_id: int, path: str, payload: dict):
    async with _client() as c:
        r = await c.post(
            f"/api/v1/bridges/{bridge_id}/commands",
            json={"path": path, "body": payload},
        )
        _check(r)
        result = r.json()

    if result["success"]:
        click.secho("OK", fg="green", bold=True)
        if result.get("data") is not None:
            click.echo(_pretty_json(result["data"]))
    else:
        click.secho(f"Failed: {result.get('error')}", fg="red")
        sys.exit(1)


# ---------------------------------------------------------------------------
# sitewatch alarms / unread
# ---------------------------------------------------------------------------


@main.command()
@click.option("--site", "-s", "site_id", type=int, help="Only this site")
@click.option("--unread", "unread_only", is_flag=True, help="Only unread alarms")
@click.option("--limit", "-l", default=50, help="Max results")
def alarms(site_id: Optional[int], unread_only: bool, limit: int):
    """List alarms, newest first."""
    _run(_alarms_impl(site_id, unread_only, limit))


async def _alarms_impl(site_id: Optional[int], unread_only: bool, limit: int):
    params: dict = {"limit": limit}
    if site_id is not None:
        params["site_id"] = site_id
    if unread_only:
        params["unread_only"] = "true"

    async with _client() as c:
        r = await c.get("/api/v1/alarms", params=params)
        _check(r)
        rows = r.json()

    if not rows:
        click.echo("No alarms found.")
        return

    for row in rows:
        row["read"] = "yes" if row["is_read"] else "NEW"
    click.secho(f"Alarms ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 6),
        ("Site", "site_id", 5),
        ("Read", "read", 4),
        ("Type", "alarm_type", 10),
        ("Name", "alarm_name", 40),
        ("Created", "created_at", 25),
    ])


@main.command()
def unread():
    """Unread alarm counts per site."""
    _run(_unread_impl())


async def _unread_impl():
    async with _client() as c:
        r = await c.get("/api/v1/alarms/unread-counts")
        _check(r)
        data = r.json()

    counts = data["counts"]
    if not counts:
        click.echo("No alarms loaded.")
        return
    for site_id, count in sorted(counts.items(), key=lambda kv: int(kv[0])):
        color = "yellow" if count else "green"
        click.echo(f"  site {site_id:>5}  " + click.style(str(count), fg=color))
    click.secho(f"Total unread: {data['total']}", bold=True)


# ---------------------------------------------------------------------------
# sitewatch mark-read / mark-all-read
# ---------------------------------------------------------------------------


@main.command("mark-read")
@click.argument("alarm_id", type=int)
def mark_read(alarm_id: int):
    """Mark one alarm as read."""
    _run(_mark_read_impl(alarm_id))


async def _mark_read_impl(alarm_id: int):
    async with _client() as c:
        r = await c.post(f"/api/v1/alarms/{alarm_id}/read")
        _check(r)
    click.secho(f"Alarm {alarm_id} marked read.", fg="green")


@main.command("mark-all-read")
@click.option("--site", "-s", "site_id", type=int, help="Only this site")
def mark_all_read(site_id: Optional[int]):
    """Mark every unread alarm as read."""
    _run(_mark_all_read_impl(site_id))


async def _mark_all_read_impl(site_id: Optional[int]):
    params = {"site_id": site_id} if site_id is not None else None
    async with _client() as c:
        r = await c.post("/api/v1/alarms/read-all", params=params)
        _check(r)
        result = r.json()
    click.secho(f"{result['updated']} alarm(s) marked read.", fg="green")


# ---------------------------------------------------------------------------
# sitewatch test-alarm / system-event
# ---------------------------------------------------------------------------


@main.command("test-alarm")
@click.option("--site", "-s", "site_id", type=int, help="Site (default: first site)")
@click.option("--type", "alarm_type", default="motion", help="Alarm type")
@click.option("--name", "alarm_name", help="Display name")
def test_alarm(site_id: Optional[int], alarm_type: str, alarm_name: Optional[str]):
    """Raise a synthetic alarm and broadcast it."""
    _run(_test_alarm_impl(site_id, alarm_type, alarm_name))


async def _test_alarm_impl(site_id: Optional[int], alarm_type: str, alarm_name: Optional[str]):
    body: dict = {"alarm_type": alarm_type}
    if site_id is not None:
        body["site_id"] = site_id
    if alarm_name:
        body["alarm_name"] = alarm_name

    async with _client() as c:
        r = await c.post("/api/v1/alarms/test", json=body)
        _check(r)
        alarm = r.json()
    click.secho(
        f"Alarm {alarm['id']} raised on site {alarm['site_id']}: {alarm['alarm_name']}",
        fg="green",
    )


@main.command("system-event")
@click.argument("event_type", type=click.Choice(["status_change", "maintenance", "alert", "info"]))
@click.argument("message")
@click.option(
    "--severity",
    type=click.Choice(["low", "medium", "high", "critical"]),
    default="low",
)
def system_event(event_type: str, message: str, severity: str):
    """Publish a system event to every connected dashboard."""
    _run(_system_event_impl(event_type, message, severity))


async def _system_event_impl(event_type: str, message: str, severity: str):
    async with _client() as c:
        r = await c.post(
            "/api/v1/events/system",
            json={"type": event_type, "message": message, "severity": severity},
        )
        _check(r)
        sent = r.json()
    click.secho(f"Published system event {sent['id']}", fg="green")


if __name__ == "__main__":
    main()
