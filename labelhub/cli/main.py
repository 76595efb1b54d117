"""LabelHub CLI: main entry point using Typer."""

import asyncio
import logging
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="labelhub",
    help="Content calendar and artist AI assistant for a record label.",
    no_args_is_help=True,
)
console = Console()

# Recorded as configured_by when the CLI acts without --as
SYSTEM_USER_ID = UUID(int=0)

DEFAULT_CONFIG_TOML = (
    "[general]\n"
    'db_url = "postgresql+asyncpg://localhost/labelhub"\n'
    'log_level = "INFO"\n'
    'label_name = "67 Entertainment"\n\n'
    "[deepseek]\n"
    '# api_key = ""  # Or set DEEPSEEK_API_KEY env var\n'
    'base_url = "https://api.deepseek.com"\n'
    'model = "deepseek-chat"\n\n'
    "[anthropic]\n"
    '# api_key = ""  # Or set ANTHROPIC_API_KEY env var\n\n'
    "[chat]\n"
    'provider = "deepseek"\n'
    "timeout_seconds = 30\n"
    "default_daily_limit = 20\n"
)


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
    )


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Not a valid id: {value}[/red]")
        raise typer.Exit(1)


@app.command()
def init(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Initialize LabelHub: write a default config and create the tables."""
    _setup_logging(verbose)

    async def _init():
        from labelhub.config import DEFAULT_CONFIG_PATH
        from labelhub.storage.db import close_db, init_db

        console.print("[bold]Setting up LabelHub[/bold]", style="green")

        config_dir = DEFAULT_CONFIG_PATH.parent
        config_dir.mkdir(parents=True, exist_ok=True)
        console.print(f"  Config dir: {config_dir}")

        if not DEFAULT_CONFIG_PATH.exists():
            DEFAULT_CONFIG_PATH.write_text(DEFAULT_CONFIG_TOML)
            console.print(f"  Config written: {DEFAULT_CONFIG_PATH}")

        console.print("  Initializing database...")
        await init_db()
        await close_db()
        console.print("  Database ready.")

        console.print("\n[bold green]LabelHub initialized![/bold green]")
        console.print("\nNext: start the API with [cyan]labelhub serve[/cyan]")

    asyncio.run(_init())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the HTTP API under uvicorn."""
    _setup_logging(verbose)
    import uvicorn

    logging.getLogger(__name__).info("API starting on %s:%d", host, port)
    uvicorn.run(
        "labelhub.api.routes:app",
        host=host,
        port=port,
        workers=1,
        log_level="debug" if verbose else "info",
    )


@app.command()
def artists(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """List the artist roster with AI assistant status."""
    _setup_logging(verbose)

    async def _artists():
        from sqlalchemy import select

        from labelhub.storage.db import close_db, get_session
        from labelhub.storage.models import AgentConfig, Artist

        async with get_session() as session:
            result = await session.execute(
                select(Artist, AgentConfig.is_enabled)
                .outerjoin(AgentConfig, AgentConfig.artist_id == Artist.id)
                .order_by(Artist.name.asc())
            )
            rows = result.all()
        await close_db()

        if not rows:
            console.print("[yellow]No artists yet.[/yellow]")
            return

        table = Table(title="Artists")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Active", justify="center")
        table.add_column("AI", justify="center")
        for artist, ai_enabled in rows:
            name = f"{artist.name} (label)" if artist.is_label else artist.name
            table.add_row(
                str(artist.id),
                name,
                "yes" if artist.is_active else "no",
                "[green]on[/green]" if ai_enabled else "[dim]off[/dim]",
            )
        console.print(table)

    asyncio.run(_artists())


@app.command()
def usage(
    artist_id: str = typer.Argument(..., help="Artist id"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Show today's AI message usage for an artist."""
    _setup_logging(verbose)
    artist_uuid = _parse_uuid(artist_id)

    async def _usage():
        from labelhub.assistant.chat import get_remaining_messages
        from labelhub.storage.db import close_db, get_session

        async with get_session() as session:
            snapshot = await get_remaining_messages(session, artist_uuid)
        await close_db()

        state = "[green]enabled[/green]" if snapshot.is_enabled else "[yellow]disabled[/yellow]"
        console.print(f"\n[bold]AI assistant[/bold] {state}")
        console.print(f"  Used today: {snapshot.used_today}/{snapshot.daily_limit}")
        console.print(f"  Remaining:  {snapshot.remaining}")

    asyncio.run(_usage())


@app.command("toggle-ai")
def toggle_ai(
    artist_id: str = typer.Argument(..., help="Artist id"),
    enabled: bool = typer.Option(True, "--on/--off", help="Enable or disable the assistant"),
    user_id: Optional[str] = typer.Option(None, "--as", help="Staff user id recorded as configured_by"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Enable or disable an artist's AI assistant."""
    _setup_logging(verbose)
    artist_uuid = _parse_uuid(artist_id)
    actor_uuid = _parse_uuid(user_id) if user_id else None

    async def _toggle():
        from labelhub.assistant.agents import toggle_ai as _toggle_ai
        from labelhub.auth import Actor
        from labelhub.errors import AppError
        from labelhub.storage.db import close_db, get_session

        actor = Actor(user_id=actor_uuid or SYSTEM_USER_ID, role="admin")
        try:
            async with get_session() as session:
                config = await _toggle_ai(session, actor, artist_uuid, enabled)
                limit = config.daily_message_limit
        except AppError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(1)
        finally:
            await close_db()

        state = "enabled" if enabled else "disabled"
        console.print(f"AI assistant {state} for {artist_uuid} (limit {limit}/day)")

    asyncio.run(_toggle())


def main():
    """Entry point for the labelhub CLI."""
    app()


if __name__ == "__main__":
    main()
