"""
adapters.cli.main - CLI adapter for the dietitian chat engine.

Mirrors src/adapters/rest/ but for terminal use. Uses the same
ServiceFactory and controllers as the REST API so chat behaviour is
identical. The acting user is given explicitly with --user/--role; there
is no login, identity is owned by the external auth provider.

Commands
--------
  init-db       Create the database schema
  open          Open (or reuse) a chat with a counterpart
  send          Send a message into a chat
  history       Show a chat transcript
  watch         Follow a chat live, marking incoming messages read
  inbox         List your chats (dietitians: grouped by status)
  accept        Accept a waiting chat            (dietitian)
  close         Close a chat                     (dietitian)
  plan          Suggest a nutrition plan (JSON)  (dietitian)
  repair        Recompute a chat's unread counters
  availability  Show or set a dietitian's availability
  token         Mint a development JWT for the REST API

Usage
-----
  python run_cli.py open diet-1 "Hi, I need help" --user client-1
  python run_cli.py accept <chat-id> --user diet-1 --role dietitian
  python run_cli.py history <chat-id> --user client-1
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Ensure src/ is on the path when run as a script
_SRC = Path(__file__).resolve().parent.parent.parent
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from application.context import SessionContext
from application.services.dietitian_chat import DietitianChatService, partition_inbox
from domain.entities import Chat, Message
from domain.exceptions import (
    ChatAccessError,
    ChatNotFoundError,
    ChatValidationError,
    StoreUnavailableError,
)
from domain.models import Availability, ChatStatus, MessageKind, SenderRole
from factory import ServiceFactory
from infrastructure.config import Settings

__version__ = "0.1.0"

console = Console()
app = typer.Typer(
    help="Dietitian chat CLI",
    add_completion=False,
    no_args_is_help=True,
)

_STATUS_STYLE = {
    ChatStatus.WAITING: "yellow",
    ChatStatus.ACTIVE: "green",
    ChatStatus.CLOSED: "dim",
}

UserOption = typer.Option(..., "--user", "-u", help="Acting user id.")
RoleOption = typer.Option(SenderRole.CLIENT, "--role", "-r", help="client or dietitian.")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

async def _make_factory() -> ServiceFactory:
    config = Settings.from_env()
    logging.basicConfig(level=config.log_level, format="%(levelname)s %(name)s: %(message)s")
    factory = ServiceFactory(config)
    await factory.initialize()
    return factory


def _run(coro_fn) -> None:
    """Run an async command body, reporting domain errors inline."""
    async def _main() -> None:
        factory = await _make_factory()
        try:
            await coro_fn(factory)
        finally:
            await factory.shutdown()

    try:
        asyncio.run(_main())
    except (ChatValidationError, ChatNotFoundError, ChatAccessError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)
    except StoreUnavailableError as exc:
        console.print(Panel(str(exc), title="Store unavailable", border_style="red"))
        raise typer.Exit(code=2)


def _session(user: str, role: SenderRole) -> SessionContext:
    return SessionContext(user_id=user, role=role)


def _require_dietitian(role: SenderRole) -> None:
    if role is not SenderRole.DIETITIAN:
        console.print("[bold red]Only dietitians can do this.[/bold red] Pass --role dietitian.")
        raise typer.Exit(code=1)


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "pending"


def _chat_table(chats: list[Chat], title: str) -> Table:
    t = Table(title=title, box=box.SIMPLE, padding=(0, 1))
    t.add_column("Chat")
    t.add_column("Client")
    t.add_column("Dietitian")
    t.add_column("Status")
    t.add_column("Unread (c/d)", justify="right")
    t.add_column("Last message")
    t.add_column("Updated")
    for c in chats:
        style = _STATUS_STYLE[c.status]
        t.add_row(
            c.id,
            c.client_id,
            c.dietitian_id,
            f"[{style}]{c.status.value}[/{style}]",
            f"{c.unread_count.client}/{c.unread_count.dietitian}",
            c.last_message[:40],
            _fmt_time(c.updated_at),
        )
    return t


def _print_message(message: Message, viewer_id: str) -> None:
    who = "you" if message.sender_id == viewer_id else message.sender_role.value
    colour = "cyan" if message.sender_role is SenderRole.CLIENT else "magenta"
    tick = "[green]✓[/green]" if message.read else "[dim]·[/dim]"
    header = f"[{colour}]{who}[/{colour}] [dim]{_fmt_time(message.sent_at)}[/dim] {tick}"
    if message.kind is MessageKind.PLAN_SUGGESTION:
        console.print(Panel(message.text, title=header, border_style="green"))
    else:
        console.print(f"{header}\n  {message.text}")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"dietitian-chat v{__version__}")
        raise typer.Exit()


# ---------------------------------------------------------------------------
# Commands: setup
# ---------------------------------------------------------------------------

@app.command("init-db")
def init_db() -> None:
    """Create the database schema."""
    async def body(factory: ServiceFactory) -> None:
        console.print(f"[green]Database ready:[/green] {factory.config.db_path}")

    _run(body)


@app.command()
def token(
    user: str = UserOption,
    role: SenderRole = RoleOption,
    name: Optional[str] = typer.Option(None, "--name", help="Display name claim."),
) -> None:
    """Mint a development JWT signed with JWT_SECRET."""
    auth = ServiceFactory(Settings.from_env()).create_authentication_service()
    console.print(auth.issue_token(user, role, name))


# ---------------------------------------------------------------------------
# Commands: chats
# ---------------------------------------------------------------------------

@app.command("open")
def open_chat(
    counterpart: str = typer.Argument(..., help="Dietitian id (clients) or client id (dietitians)."),
    text: Optional[str] = typer.Argument(None, help="Optional first message."),
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Open a chat with a counterpart, reusing the open one if it exists."""
    async def body(factory: ServiceFactory) -> None:
        service = factory.create_chat_service(_session(user, role))
        chat_id = await service.open_or_create_chat(counterpart, text)
        chat = await service.get_chat(chat_id)
        style = _STATUS_STYLE[chat.status]
        console.print(f"Chat [bold]{chat_id}[/bold] is [{style}]{chat.status.value}[/{style}]")

    _run(body)


@app.command()
def send(
    chat_id: str,
    text: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Send a message into a chat."""
    async def body(factory: ServiceFactory) -> None:
        service = factory.create_chat_service(_session(user, role))
        message = await service.send_message(chat_id, text)
        console.print(f"[green]Sent[/green] {message.id}")

    _run(body)


@app.command()
def history(
    chat_id: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Show a chat transcript without marking anything read."""
    async def body(factory: ServiceFactory) -> None:
        service = factory.create_chat_service(_session(user, role))
        transcript = await service.get_transcript(chat_id)
        chat = transcript.chat
        console.print(Panel(
            f"client [cyan]{chat.client_id}[/cyan]  dietitian [magenta]{chat.dietitian_id}[/magenta]"
            f"  status [{_STATUS_STYLE[chat.status]}]{chat.status.value}[/]",
            title=f"Chat {chat.id}",
            border_style="blue",
        ))
        if not transcript.messages:
            console.print("[dim]No messages yet.[/dim]")
        for message in transcript.messages:
            _print_message(message, user)

    _run(body)


@app.command()
def watch(
    chat_id: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Follow a chat live until Ctrl+C. Incoming messages are marked read."""
    async def body(factory: ServiceFactory) -> None:
        service = factory.create_chat_service(_session(user, role))
        shown: set[str] = set()

        def on_chat(chat: Chat) -> None:
            console.print(f"[dim]-- status {chat.status.value}, last: {chat.last_message[:40]}[/dim]")

        def on_messages(messages: list[Message]) -> None:
            for message in messages:
                if message.id not in shown:
                    shown.add(message.id)
                    _print_message(message, user)

        def on_error(exc: Exception) -> None:
            console.print(f"[bold red]Could not mark messages read:[/bold red] {exc}")

        async with await service.subscribe(chat_id, on_chat, on_messages, on_error):
            console.print("[dim]Watching; press Ctrl+C to stop.[/dim]")
            await asyncio.Event().wait()

    try:
        _run(body)
    except KeyboardInterrupt:
        console.print("\n[dim]Goodbye![/dim]")


@app.command()
def inbox(
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """List your chats, most recently updated first."""
    async def body(factory: ServiceFactory) -> None:
        service = factory.create_chat_service(_session(user, role))
        chats = await service.list_chats()
        if not chats:
            console.print("[dim]No chats yet.[/dim]")
            return
        if isinstance(service, DietitianChatService):
            parts = partition_inbox(chats)
            for title, group in (
                ("Waiting", parts.waiting),
                ("Active", parts.active),
                ("Closed", parts.closed),
            ):
                if group:
                    console.print(_chat_table(group, title))
        else:
            console.print(_chat_table(chats, "Your chats"))

    _run(body)


@app.command()
def accept(
    chat_id: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Accept a waiting chat and greet the client."""
    _require_dietitian(role)

    async def body(factory: ServiceFactory) -> None:
        chat = await factory.create_dietitian_chat_service(_session(user, role)).accept_chat(chat_id)
        console.print(f"Chat [bold]{chat.id}[/bold] is now [green]{chat.status.value}[/green]")

    _run(body)


@app.command("close")
def close_chat(
    chat_id: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Close a waiting or active chat."""
    _require_dietitian(role)

    async def body(factory: ServiceFactory) -> None:
        chat = await factory.create_dietitian_chat_service(_session(user, role)).close_chat(chat_id)
        console.print(f"Chat [bold]{chat.id}[/bold] is now [dim]{chat.status.value}[/dim]")

    _run(body)


@app.command()
def plan(
    chat_id: str,
    plan_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Plan as JSON."),
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Suggest the nutrition plan stored in PLAN_FILE."""
    _require_dietitian(role)
    try:
        plan_data = json.loads(plan_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[bold red]Invalid plan file:[/bold red] {exc}")
        raise typer.Exit(code=1)

    async def body(factory: ServiceFactory) -> None:
        service = factory.create_dietitian_chat_service(_session(user, role))
        message = await service.suggest_plan(chat_id, plan_data)
        _print_message(message, user)

    _run(body)


@app.command()
def repair(
    chat_id: str,
    user: str = UserOption,
    role: SenderRole = RoleOption,
) -> None:
    """Recompute both unread counters from the stored messages."""
    async def body(factory: ServiceFactory) -> None:
        counts = await factory.create_chat_service(_session(user, role)).repair_unread_counts(chat_id)
        console.print(f"Unread counters: client={counts.client} dietitian={counts.dietitian}")

    _run(body)


# ---------------------------------------------------------------------------
# Commands: presence
# ---------------------------------------------------------------------------

@app.command()
def availability(
    dietitian_id: str,
    status: Optional[Availability] = typer.Argument(None, help="online, busy or offline."),
) -> None:
    """Show a dietitian's availability, or set it when STATUS is given."""
    async def body(factory: ServiceFactory) -> None:
        presence = factory.create_presence_service()
        if status is None:
            value = await presence.get_availability(dietitian_id)
        else:
            value = await presence.set_availability(dietitian_id, status)
        console.print(f"{dietitian_id}: [bold]{value.value}[/bold]")

    _run(body)


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", callback=_version_callback, is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Dietitian chat: client/dietitian messaging from the terminal."""


if __name__ == "__main__":
    app()
