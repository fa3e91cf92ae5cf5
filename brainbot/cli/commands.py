"""CLI commands for brainbot."""

import asyncio
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from brainbot import __logo__, __version__

app = typer.Typer(
    name="brainbot",
    help=f"{__logo__} brainbot - Multi-personality chat bots",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} brainbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """brainbot - Multi-personality chat bots."""
    pass


def _configure_logging(config, level: str | None = None) -> Path:
    """stderr at the configured level plus a daily-rotated file sink."""
    from brainbot.utils.helpers import ensure_dir

    log_dir = ensure_dir(config.data_path / "logs")
    logger.remove()
    logger.add(sys.stderr, level=(level or config.log_level).upper())
    logger.add(
        str(log_dir / "brainbot_{time:YYYY-MM-DD}.log"),
        level="DEBUG",
        rotation="00:00",
        retention=f"{config.log_retention_days} days",
        encoding="utf-8",
    )
    return log_dir


def _resolve_bots_path(config, override: Path | None) -> Path:
    if override:
        return override.expanduser()
    path = Path(config.bots_file).expanduser()
    if path.is_absolute() or path.exists():
        return path
    return config.data_path / path


def _make_agent(config):
    from brainbot.agent.client import AgentClient
    from brainbot.providers.image import ImageGenerator
    from brainbot.providers.tts import SpeechSynthesizer

    media = config.media_path
    speech = SpeechSynthesizer(
        config.services.tts_url,
        output_dir=media / "audio",
        timeout_s=config.services.timeout_s,
    )
    images = ImageGenerator(
        config.services.image_url,
        output_dir=media / "images",
        timeout_s=config.services.timeout_s,
    )
    return AgentClient(
        config.agent.command,
        extra_args=config.agent.extra_args,
        cwd=Path(config.agent.cwd).expanduser() if config.agent.cwd else None,
        speech=speech,
        images=images,
    )


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    bots_file: Path = typer.Option(None, "--bots", "-b", help="Path to bots.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start every configured bot."""
    from brainbot.config.loader import ConfigurationError, load_bots, load_config
    from brainbot.nudges.service import EngagementScheduler
    from brainbot.orchestrator.manager import BotManager
    from brainbot.session.cleanup import SessionCleanupService

    config = load_config(config_path)
    log_dir = _configure_logging(config, "DEBUG" if verbose else None)

    bots_path = _resolve_bots_path(config, bots_file)
    try:
        bots = load_bots(bots_path)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    agent = _make_agent(config)
    manager = BotManager.from_config(config, agent)
    added = manager.add_bots(bots)
    if not added:
        console.print("[red]✗[/red] No bots could be registered")
        raise typer.Exit(1)

    nudges = EngagementScheduler(
        manager.bots,
        manager.sessions,
        agent,
        speech=agent.speech,
        interval_s=config.nudges.interval_s,
        enabled=config.nudges.enabled,
    )
    cleanup = SessionCleanupService(
        manager.sessions,
        interval_hours=config.cleanup.interval_hours,
        age_days=config.cleanup.age_days,
        enabled=config.cleanup.enabled,
    )

    console.print(f"{__logo__} Starting {len(added)} bot(s)...")
    console.print(f"[dim]Logs: {log_dir}[/dim]")

    async def run_all():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        try:
            await manager.start_all()
            await nudges.start()
            await cleanup.start()
            for info in manager.list_bots():
                console.print(f"[green]✓[/green] {info['id']}: {info['name']} (v{info['version']})")
            await stop_event.wait()
        finally:
            console.print("\nShutting down...")
            nudges.stop()
            cleanup.stop()
            await manager.stop_all()

    asyncio.run(run_all())


# ============================================================================
# Inspection
# ============================================================================


@app.command()
def bots(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    bots_file: Path = typer.Option(None, "--bots", "-b", help="Path to bots.json"),
):
    """List configured bots."""
    from brainbot.brains.loader import BrainLoader
    from brainbot.config.loader import ConfigurationError, load_bots, load_config

    config = load_config(config_path)
    try:
        entries = load_bots(_resolve_bots_path(config, bots_file))
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    loader = BrainLoader(config.brains_path)
    table = Table(title="Bots")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Brain", style="green")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("Token", style="dim")

    for entry in entries:
        try:
            name = loader.load(entry.brain).name
        except ConfigurationError:
            name = "[red]invalid brain[/red]"
        table.add_row(
            entry.id,
            entry.brain,
            name,
            "✓" if entry.active else "✗",
            f"{entry.token[:10]}..." if entry.token else "[dim]missing[/dim]",
        )
    console.print(table)


@app.command()
def brains(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """List available brains."""
    from brainbot.brains.loader import BrainLoader
    from brainbot.config.loader import ConfigurationError, load_config

    config = load_config(config_path)
    loader = BrainLoader(config.brains_path)

    table = Table(title=f"Brains ({loader.brains_dir})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Version")
    table.add_column("Security")
    table.add_column("Voice")
    table.add_column("Images")
    table.add_column("Nudges")

    for brain_id in loader.list_brains():
        try:
            brain = loader.load(brain_id)
        except ConfigurationError as e:
            table.add_row(brain_id, f"[red]{e}[/red]", "", "", "", "", "")
            continue
        table.add_row(
            brain_id,
            brain.name,
            brain.version,
            "off" if brain.security is False else str(brain.security),
            "✓" if brain.tts.enabled else "✗",
            brain.image_gen.profile or ("✓" if brain.image_gen.enabled else "✗"),
            str(len(brain.nudges.triggers)) if brain.nudges.enabled else "✗",
        )
    console.print(table)


@app.command()
def sessions(
    bot_id: str = typer.Argument(..., help="Bot ID"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """List user sessions for a bot."""
    from brainbot.config.loader import load_config
    from brainbot.session.store import SessionStore

    config = load_config(config_path)
    store = SessionStore(config.data_path / "sessions")
    rows = store.list_sessions(bot_id)
    if not rows:
        console.print(f"No sessions for {bot_id}.")
        return

    table = Table(title=f"Sessions for {bot_id}")
    table.add_column("User", style="cyan", no_wrap=True)
    table.add_column("Messages")
    table.add_column("Conversations")
    table.add_column("Nudges")
    table.add_column("Last message", style="dim")

    for row in rows:
        table.add_row(
            row["user_id"],
            str(row["message_count"]),
            str(row["conversations"]),
            str(row["nudges"]),
            row["last_message_time"] or "never",
        )
    console.print(table)


if __name__ == "__main__":
    app()
