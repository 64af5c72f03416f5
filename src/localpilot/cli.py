"""
LocalPilot CLI

Command-line driver for the LocalPilot command surface.

Commands:
    localpilot chat               — Interactive conversation with approval prompts
    localpilot tools              — List discovered tools and their risk tier
    localpilot search QUERY       — Index the given roots and search them
    localpilot refresh [ROOT...]  — Rebuild the file index and report its size
    localpilot status             — Show version and (redacted) configuration

Configuration comes from LOCALPILOT_* environment variables and the
optional LOCALPILOT_CONFIG_FILE; see localpilot.config.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from localpilot import PENDING_APPROVAL, LocalPilot, __version__
from localpilot.config import ModelCredentials, PilotConfig
from localpilot.exceptions import LocalPilotError
from localpilot.logging import configure_logging

EXIT_COMMANDS = {"exit", "quit", ":q"}


@click.group()
@click.version_option(version=__version__, prog_name="localpilot")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ...)")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_logs: bool) -> None:
    """LocalPilot — safety-gated local tool orchestration"""
    config = PilotConfig.from_env()
    configure_logging(level=log_level or config.log_level, json_output=json_logs or config.log_json)
    ctx.obj = config


@cli.command()
@click.option("--provider", default=None, help="Model provider: claude or openai")
@click.option("--model", default=None, help="Model name")
@click.option("--base-url", default=None, help="Model API base URL")
@click.option("--session", "session_id", default=None, help="Session id to use")
@click.pass_obj
def chat(
    config: PilotConfig,
    provider: str | None,
    model: str | None,
    base_url: str | None,
    session_id: str | None,
) -> None:
    """Chat with the assistant; dangerous tool calls ask for approval."""
    credentials = ModelCredentials(provider=provider, model=model, base_url=base_url)
    asyncio.run(_chat(config, credentials, session_id))


@cli.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
@click.pass_obj
def tools(config: PilotConfig, json_output: bool) -> None:
    """List discovered tools."""
    asyncio.run(_tools(config, json_output))


@cli.command()
@click.argument("query")
@click.option("--root", "roots", multiple=True, help="Directory to index (repeatable)")
@click.option("--limit", default=20, type=int, help="Maximum results")
@click.option("--json-output", is_flag=True, help="Output as JSON")
@click.pass_obj
def search(config: PilotConfig, query: str, roots: tuple[str, ...], limit: int, json_output: bool) -> None:
    """Index the roots, then search them for QUERY."""
    asyncio.run(_search(config, query, list(roots), limit, json_output))


@cli.command()
@click.argument("roots", nargs=-1)
@click.pass_obj
def refresh(config: PilotConfig, roots: tuple[str, ...]) -> None:
    """Rebuild the file index from ROOTS (configured or default folders if none)."""
    asyncio.run(_refresh(config, list(roots)))


@cli.command()
@click.pass_obj
def status(config: PilotConfig) -> None:
    """Show version and configuration."""
    _print_header("LocalPilot Status")
    click.echo(f"  Version: {__version__}")
    click.echo(f"  Python: {sys.version.split()[0]}")
    click.echo("\n  Configuration:")
    for line in json.dumps(config.redacted(), indent=2).splitlines():
        click.echo(f"    {line}")


# ─── Implementations ─────────────────────────────────────────


async def _chat(config: PilotConfig, credentials: ModelCredentials, session_id: str | None) -> None:
    pilot = LocalPilot(config)
    try:
        click.echo(await pilot.init())
    except LocalPilotError as e:
        raise click.ClickException(str(e)) from e

    try:
        if config.index_roots:
            click.echo(await pilot.refresh_file_index(background=True))
        click.echo("Type 'exit' to quit.\n")

        while True:
            text = await asyncio.to_thread(click.prompt, "you", prompt_suffix="> ")
            if text.strip().lower() in EXIT_COMMANDS:
                break
            try:
                reply = await pilot.process_message(text, credentials, session_id=session_id)
            except LocalPilotError as e:
                click.echo(f"error: {e}", err=True)
                continue

            while reply == PENDING_APPROVAL:
                reply = await _ask_approval(pilot, session_id)
            click.echo(f"assistant> {reply}\n")
    finally:
        await pilot.shutdown()


async def _ask_approval(pilot: LocalPilot, session_id: str | None) -> str:
    request = pilot.pending_approval(session_id)
    if request is None:
        return pilot.last_reply(session_id) or ""

    click.echo("\n  Approval required")
    click.echo(f"  Tool: {request['tool_name']}")
    click.echo(f"  Arguments: {json.dumps(request['arguments'], ensure_ascii=False)}")
    if request["justification"]:
        click.echo(f"  Reason: {request['justification']}")
    approved = await asyncio.to_thread(click.confirm, "  Run this tool?", default=False)

    arguments_json = json.dumps(request["arguments"])
    try:
        if approved:
            result = await pilot.approve_tool_call(request["tool_name"], arguments_json, session_id)
        else:
            result = await pilot.reject_tool_call(request["tool_name"], arguments_json, session_id)
    except LocalPilotError as e:
        # The request may have expired or been replaced while the operator decided.
        click.echo(f"error: {e}", err=True)
    else:
        click.echo(f"  {result}\n")

    if pilot.pending_approval(session_id) is not None:
        return PENDING_APPROVAL
    return pilot.last_reply(session_id) or ""


async def _tools(config: PilotConfig, json_output: bool) -> None:
    pilot = LocalPilot(config)
    try:
        await pilot.init()
    except LocalPilotError as e:
        raise click.ClickException(str(e)) from e
    try:
        listing = pilot.list_tools()
        if json_output:
            click.echo(json.dumps(listing, indent=2))
            return
        _print_header("Tools")
        classifier = pilot.classifier
        for tool in listing:
            tier = classifier.classify(tool["name"]).value
            click.echo(f"  {tool['name']:32s} [{tier:9s}] {tool['description'][:60]}")
    finally:
        await pilot.shutdown()


async def _search(
    config: PilotConfig,
    query: str,
    roots: list[str],
    limit: int,
    json_output: bool,
) -> None:
    pilot = LocalPilot(config, servers=[], include_file_index=False)
    try:
        await pilot.refresh_file_index(roots or None)
    except LocalPilotError as e:
        raise click.ClickException(str(e)) from e

    results = pilot.search_files(query, limit=limit)
    if json_output:
        click.echo(json.dumps(results, indent=2))
        return
    if not results:
        click.echo("  No matching files.")
        return
    for entry in results:
        click.echo(f"  {entry['name']:40s} {entry['size']:>10d}  {entry['path']}")


async def _refresh(config: PilotConfig, roots: list[str]) -> None:
    pilot = LocalPilot(config, servers=[], include_file_index=False)
    try:
        click.echo(await pilot.refresh_file_index(roots or None))
    except LocalPilotError as e:
        raise click.ClickException(str(e)) from e


def _print_header(title: str) -> None:
    click.echo(f"\n  {'=' * 60}")
    click.echo(f"  {title}")
    click.echo(f"  {'=' * 60}\n")


if __name__ == "__main__":
    cli()
