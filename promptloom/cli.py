"""
PROMPTLOOM CLI — The Interface

Workspace commands:
  - promptloom new / list / show / select / delete / duplicate / move
  - promptloom add-message / edit-message / move-message / remove-message
  - promptloom add-tool / add-param

Sharing and files:
  - promptloom share         (print a link for a prompt or its last run)
  - promptloom open <url>    (preview a shared link, optionally import it)
  - promptloom export / import

Plus:
  - promptloom run           (send the prompt to the completion API)
  - promptloom status        (config, API keys, share providers)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from promptloom.config_loader import DEFAULT_HOME, load_config, validate_api_keys
from promptloom.export import export_filename, read_export, write_export
from promptloom.identity import __codename__, __tagline__, __version__, BANNER
from promptloom.models import Message, Prompt, Tool
from promptloom.params import parse_params
from promptloom.registry import Concern
from promptloom.workspace import Workspace

load_dotenv()
load_dotenv(DEFAULT_HOME / ".env")

app = typer.Typer(
    name="promptloom",
    help=f"{__codename__} — {__tagline__}",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

HOME_HELP = "Workspace directory (default: ~/.promptloom)"


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open(home: Optional[Path]) -> Workspace:
    return Workspace.open((home or DEFAULT_HOME).expanduser().resolve())


def _resolve_prompt(ws: Workspace, ref: Optional[str]) -> Prompt:
    """A prompt by 1-based position, full id or unique id prefix; the selection when omitted."""
    if ref is None:
        if ws.selected is None:
            console.print("[red]No prompt selected. Use `promptloom select`.[/]")
            raise typer.Exit(1)
        return ws.selected

    prompts = ws.store.prompts
    if ref.isdigit() and 1 <= int(ref) <= len(prompts):
        return prompts[int(ref) - 1]
    matches = [p for p in prompts if p.id == ref] or [p for p in prompts if p.id.startswith(ref)]
    if len(matches) != 1:
        console.print(f"[red]No unique prompt matches {ref!r}[/]")
        raise typer.Exit(1)
    return matches[0]


def _resolve_message(prompt: Prompt, ref: str) -> Message:
    if ref.isdigit() and 1 <= int(ref) <= len(prompt.messages):
        return prompt.messages[int(ref) - 1]
    matches = [m for m in prompt.messages if m.id.startswith(ref)]
    if len(matches) != 1:
        console.print(f"[red]No unique message matches {ref!r}[/]")
        raise typer.Exit(1)
    return matches[0]


def _short(identifier: str) -> str:
    return identifier[:8]


def _print_preview(preview: dict) -> None:
    title = preview.get("title") or "Untitled"
    console.print(Panel(f"[bold]{title}[/]", title="Shared Prompt", border_style="magenta"))

    if preview.get("kind") == "run":
        entries = (preview.get("run") or {}).get("transcript") or []
        heading = "Run transcript"
    else:
        entries = preview.get("messages") or []
        heading = "Messages"

    table = Table(title=heading, border_style="cyan")
    table.add_column("#", style="dim")
    table.add_column("Role")
    table.add_column("Content")
    for i, m in enumerate(entries, 1):
        m = m if isinstance(m, dict) else {}
        table.add_row(str(i), str(m.get("role", "?")), str(m.get("content", ""))[:120])
    console.print(table)

    tools = preview.get("tools") if preview.get("kind") != "run" else None
    if isinstance(tools, list) and tools:
        console.print("[bold]Tools:[/] " + ", ".join(str(t.get("name", "?")) for t in tools if isinstance(t, dict)))


# ---------------------------------------------------------------------------
# Prompt commands
# ---------------------------------------------------------------------------

@app.command()
def new(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title of the new prompt"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Create a prompt and select it."""
    ws = _open(home)
    prompt = ws.new_prompt()
    if title:
        ws.store.rename_prompt(prompt.id, title)
    console.print(f"[green]Created {_short(prompt.id)}[/] {title or prompt.title}")


@app.command(name="list")
def list_prompts(
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """List prompts in workspace order."""
    ws = _open(home)
    if not ws.store.prompts:
        console.print("[dim]No prompts yet. Create one with `promptloom new`.[/]")
        return

    table = Table(title="Prompts", border_style="cyan")
    table.add_column("#", style="dim")
    table.add_column("Id", style="dim")
    table.add_column("Title")
    table.add_column("Messages")
    table.add_column("Tools")

    selected_id = ws.store.state.selected_id
    for i, p in enumerate(ws.store.prompts, 1):
        marker = "[bold green]▶[/] " if p.id == selected_id else ""
        table.add_row(str(i), _short(p.id), f"{marker}{p.title}", str(len(p.messages)), str(len(p.tools)))
    console.print(table)


@app.command()
def show(
    ref: Optional[str] = typer.Argument(None, help="Prompt position or id (default: selected)"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Show a prompt's messages and tools."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)

    table = Table(title=prompt.title, border_style="cyan")
    table.add_column("#", style="dim")
    table.add_column("Id", style="dim")
    table.add_column("Role")
    table.add_column("Label")
    table.add_column("Content")
    table.add_column("Flags", style="dim")

    for i, m in enumerate(prompt.messages, 1):
        flags = []
        if not m.enabled:
            flags.append("off")
        if ws.registry.is_set(Concern.PREVIEW, prompt.id, m.id):
            flags.append("preview")
        if ws.registry.is_set(Concern.COLLAPSED, prompt.id, m.id):
            flags.append("collapsed")
        table.add_row(str(i), _short(m.id), m.role, m.label, m.content[:120], " ".join(flags))
    console.print(table)

    if prompt.tools:
        panel = "open" if ws.registry.panel_open(prompt.id) else "closed"
        tools_table = Table(title=f"Tools (panel {panel})", border_style="magenta")
        tools_table.add_column("#", style="dim")
        tools_table.add_column("Name")
        tools_table.add_column("Parameters")
        tools_table.add_column("Enabled")
        for i, t in enumerate(prompt.tools, 1):
            params = ", ".join(
                f"{f.key}:{f.type}{'*' if f.required else ''}" for f in parse_params(t.parameters)
            )
            tools_table.add_row(str(i), t.name, params or "—", "✓" if t.enabled else "✗")
        console.print(tools_table)


@app.command(name="select")
def select_prompt(
    ref: str = typer.Argument(..., help="Prompt position or id"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Select the prompt that message/tool commands act on."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    ws.select(prompt.id)
    console.print(f"[green]Selected[/] {prompt.title}")


@app.command()
def delete(
    ref: str = typer.Argument(..., help="Prompt position or id"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Delete a prompt."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    ws.delete_prompt(prompt.id)
    console.print(f"[yellow]Deleted[/] {prompt.title}")


@app.command()
def duplicate(
    ref: Optional[str] = typer.Argument(None, help="Prompt position or id (default: selected)"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Copy a prompt with fresh ids, keeping its preview/collapsed state."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    copy = ws.duplicate_prompt(prompt.id)
    console.print(f"[green]Created {_short(copy.id)}[/] {copy.title}")


@app.command()
def move(
    source: int = typer.Argument(..., help="Current position (1-based)"),
    target: int = typer.Argument(..., help="New position (1-based)"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Reorder the prompt list."""
    ws = _open(home)
    count = len(ws.store.prompts)
    if not (1 <= source <= count and 1 <= target <= count):
        console.print(f"[red]Positions must be between 1 and {count}[/]")
        raise typer.Exit(1)
    ws.mutations.move_prompt(source - 1, target - 1)
    console.print(f"[green]Moved prompt {source} → {target}[/]")


# ---------------------------------------------------------------------------
# Message and tool commands
# ---------------------------------------------------------------------------

@app.command(name="add-message")
def add_message(
    role: str = typer.Option("user", "--role", "-r", help="system | user | assistant | comment"),
    content: str = typer.Option("", "--content", "-c", help="Initial content"),
    at: Optional[int] = typer.Option(None, "--at", help="Insert at position (1-based); default appends"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Add a message to the selected prompt."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, None)
    index = None
    if at is not None:
        index = min(max(at - 1, 0), len(prompt.messages))
    message = ws.mutations.insert_message(role, index)
    if message and content:
        ws.store.update_message(message.id, {"content": content})
    console.print(f"[green]Added {message.role} message {_short(message.id)}[/]")


@app.command(name="edit-message")
def edit_message(
    ref: str = typer.Argument(..., help="Message position or id prefix"),
    text: str = typer.Argument(..., help="New text"),
    field: str = typer.Option("content", "--field", "-f", help="content | label"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Edit a message field of the selected prompt."""
    if field not in ("content", "label"):
        console.print("[red]--field must be content or label[/]")
        raise typer.Exit(1)
    ws = _open(home)
    message = _resolve_message(_resolve_prompt(ws, None), ref)

    async def _edit() -> None:
        buffer = ws.message_buffer(message.id, field)
        buffer.set_value(text)
        if buffer.on_blur is not None:
            buffer.on_blur()
        else:
            buffer.commit_now()

    asyncio.run(_edit())
    console.print(f"[green]Updated {field} of {_short(message.id)}[/]")


@app.command(name="move-message")
def move_message(
    source: int = typer.Argument(..., help="Current position (1-based)"),
    target: int = typer.Argument(..., help="New position (1-based)"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Reorder messages of the selected prompt."""
    ws = _open(home)
    count = len(_resolve_prompt(ws, None).messages)
    if not (1 <= source <= count and 1 <= target <= count):
        console.print(f"[red]Positions must be between 1 and {count}[/]")
        raise typer.Exit(1)
    ws.mutations.move_message(source - 1, target - 1)
    console.print(f"[green]Moved message {source} → {target}[/]")


@app.command(name="remove-message")
def remove_message(
    ref: str = typer.Argument(..., help="Message position or id prefix"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Remove a message from the selected prompt."""
    ws = _open(home)
    message = _resolve_message(_resolve_prompt(ws, None), ref)
    ws.mutations.delete_message(message.id)
    console.print(f"[yellow]Removed message {_short(message.id)}[/]")


@app.command(name="add-tool")
def add_tool(
    name: str = typer.Option("toolName", "--name", "-n"),
    description: str = typer.Option("", "--description", "-d"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Add a function tool to the selected prompt."""
    ws = _open(home)
    _resolve_prompt(ws, None)
    ws.store.add_tool(Tool(name=name, description=description))
    console.print(f"[green]Added tool {name}[/]")


@app.command(name="add-param")
def add_param(
    tool: int = typer.Argument(..., help="Tool position (1-based)"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Parameter name (default: param, param1, ...)"),
    type_: str = typer.Option("string", "--type", "-t", help="string | number | integer | boolean"),
    description: str = typer.Option("", "--description", "-d"),
    required: bool = typer.Option(False, "--required"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Add a parameter to a tool's schema."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, None)
    if not 1 <= tool <= len(prompt.tools):
        console.print(f"[red]Tool position must be between 1 and {len(prompt.tools)}[/]")
        raise typer.Exit(1)
    index = tool - 1
    ws.store.add_param(index)
    field_index = len(parse_params(ws.selected.tools[index].parameters)) - 1
    patch = {"type": type_, "description": description, "required": required}
    if key:
        patch["key"] = key
    ws.store.update_param(index, field_index, patch)
    added = parse_params(ws.selected.tools[index].parameters)[field_index]
    console.print(f"[green]Added parameter {added.key}:{added.type}[/]")


# ---------------------------------------------------------------------------
# Share / export / import
# ---------------------------------------------------------------------------

@app.command()
def share(
    ref: Optional[str] = typer.Argument(None, help="Prompt position or id (default: selected)"),
    run: bool = typer.Option(False, "--run", help="Share the last run transcript instead of the prompt"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Print a share link."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    if run:
        link = asyncio.run(ws.share_run(prompt.id))
    else:
        link = asyncio.run(ws.share_prompt(prompt.id))

    via = "backend" if link.opaque_id else (link.shortened_by or "token")
    console.print(f"[dim]via {via}[/]")
    console.print(link.url, soft_wrap=True, highlight=False)


@app.command(name="open")
def open_link(
    url: str = typer.Argument(..., help="Share link"),
    do_import: bool = typer.Option(False, "--import", "-i", help="Import into my prompts"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Preview a shared link."""
    ws = _open(home)
    preview = asyncio.run(ws.open_link(url))
    if preview is None:
        console.print("[red]Nothing to preview at this link.[/]")
        raise typer.Exit(1)

    _print_preview(preview)
    if do_import:
        created = ws.import_shared(preview)
        console.print(f"[green]Imported as {_short(created.id)}[/] {created.title}")


@app.command()
def export(
    ref: Optional[str] = typer.Argument(None, help="Prompt position or id (default: selected)"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file or directory"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Export a prompt (with its view state) as JSON."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    document = ws.export_prompt(prompt.id)

    target = out or Path.cwd()
    if target.is_dir():
        target = target / export_filename(prompt.title)
    write_export(target, document)
    console.print(f"[green]Exported[/] {target}")


@app.command(name="import")
def import_file(
    path: Path = typer.Argument(..., help="Exported prompt JSON"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Import a prompt JSON file."""
    ws = _open(home)
    loaded = read_export(path)
    if loaded.is_err:
        console.print(f"[red]{loaded.error}[/]")
        raise typer.Exit(1)
    created = ws.import_document(loaded.value)
    console.print(f"[green]Imported {_short(created.id)}[/] {created.title}")


# ---------------------------------------------------------------------------
# Run / status
# ---------------------------------------------------------------------------

@app.command()
def run(
    ref: Optional[str] = typer.Argument(None, help="Prompt position or id (default: selected)"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Extra user turn to send"),
    save: bool = typer.Option(False, "--save", help="Append the reply to the prompt"),
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Run a prompt against the completion API."""
    ws = _open(home)
    prompt = _resolve_prompt(ws, ref)
    session = ws.run_session(prompt.id)

    if message:
        reply = asyncio.run(session.send_user_message(message))
    else:
        reply = asyncio.run(session.run_prompt())

    if session.error:
        console.print(Panel(session.error, title="Run failed", border_style="red"))
        raise typer.Exit(1)
    if reply is None:
        console.print("[dim]No reply.[/]")
        return

    console.print(Panel(reply.content or "(no text)", title=f"assistant · {ws.config.completion.model}", border_style="green"))
    for call in reply.tool_calls:
        fn = call.get("function") or {}
        console.print(f"[magenta]tool call[/] {fn.get('name')} {fn.get('arguments', '')}")

    if save:
        saved = session.save_assistant_to_prompt(len(session.transcript) - 1)
        if saved:
            console.print(f"[green]Saved reply as {saved.role} message {_short(saved.id)}[/]")


@app.command()
def status(
    home: Optional[Path] = typer.Option(None, "--home", help=HOME_HELP),
):
    """Check PROMPTLOOM configuration and readiness."""
    _print_banner()
    config = load_config((home or DEFAULT_HOME).expanduser())

    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")
    for key, available in validate_api_keys().items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)
    console.print(key_table)

    share_table = Table(title="Sharing", border_style="magenta")
    share_table.add_column("Strategy")
    share_table.add_column("Configured")
    share_table.add_row("Backend", config.share.backend_base or "[dim]—[/]")
    share_table.add_row(
        "Shlink",
        config.share.shlink_base if config.share.shlink_base and config.share.shlink_api_key else "[dim]—[/]",
    )
    share_table.add_row("Plain shortener", config.share.shortener_base or "[dim]—[/]")
    share_table.add_row("Local token", "[green]always[/]")
    console.print(share_table)

    console.print(f"\n[bold]Model:[/] {config.completion.model}")
    console.print(f"[bold]Debounce:[/] {config.editor.debounce_ms}ms")


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
