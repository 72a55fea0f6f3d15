"""
CLI interface for AI Usage Governor.

Thin request handler over the governor: every command maps governor
outcomes to console output and exit codes.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ai_usage_governor.config.loader import load_governor_config
from ai_usage_governor.core.errors import (
    AllProvidersFailedError,
    DailyLimitExceeded,
    GovernorError,
    QuotaError,
    RateLimited,
)
from ai_usage_governor.core.features import Feature
from ai_usage_governor.core.governor import build_governor
from ai_usage_governor.storage.db import DEFAULT_DB_PATH
from ai_usage_governor.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_QUOTA = 2  # Request refused by quota or throttle
EXIT_CODE_UNAVAILABLE = 3  # Every provider failed

DEFAULT_CONFIG_PATH = "governor.yaml"

ConfigOption = typer.Option(
    DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to governor YAML config"
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show governor logs")
):
    """AI Usage Governor CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if ctx.invoked_subcommand is None:
        console.print("AI Usage Governor - Use --help to see available commands")


@app.command()
def init(db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path")):
    """Initialize the usage database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("check-config")
def check_config(path: str = typer.Argument(DEFAULT_CONFIG_PATH, help="Config file to validate")):
    """Validate a governor config file."""
    try:
        config = load_governor_config(path)
    except Exception as e:
        console.print(f"[red]Invalid config:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {path} is valid")
    if not config.quota.enabled:
        console.print("[yellow]AI features are disabled[/]")
    for feature in Feature:
        order = " -> ".join(config.provider_order(feature))
        console.print(f"  {feature.value}: limit {config.quota.limit_for(feature)}/day via {order}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(user_id: str, config: str = ConfigOption):
    """Show remaining AI quota for a user today."""
    governor = _load_governor(config)
    try:
        usage = governor.get_user_stats(user_id)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"AI usage for {user_id} today")
    table.add_column("Feature")
    table.add_column("Remaining", justify="right")
    for feature in Feature:
        table.add_row(feature.value, str(usage.remaining_for(feature)))
    console.print(table)
    console.print(f"Total requests today: {usage.total_requests_today}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def chat(
    user_id: str,
    message: str,
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Chat session id"),
    config: str = ConfigOption
):
    """Send a chat message."""
    governor = _load_governor(config)
    reply = _handle(lambda: governor.chat.generate(user_id, message, session_id=session))
    console.print(reply.reply, markup=False)
    console.print(f"\n[dim]session {reply.session_id} via {reply.provider}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def flashcards(
    user_id: str,
    topic: str,
    count: int = typer.Option(5, "--count", "-n", help="Number of flashcards"),
    config: str = ConfigOption
):
    """Generate flashcards about a topic."""
    governor = _load_governor(config)
    result = _handle(lambda: governor.flashcards.generate(user_id, topic, count))
    table = Table(title=f"Flashcards: {topic}")
    table.add_column("Question")
    table.add_column("Answer")
    for card in result.cards:
        table.add_row(escape(card.question), escape(card.answer))
    console.print(table)
    console.print(f"[dim]{len(result.cards)} cards via {result.provider}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def quiz(
    user_id: str,
    topic: str,
    count: int = typer.Option(5, "--count", "-n", help="Number of questions"),
    config: str = ConfigOption
):
    """Generate a multiple-choice quiz about a topic."""
    governor = _load_governor(config)
    result = _handle(lambda: governor.quiz.generate(user_id, topic, count))
    console.print(f"\n[bold]Quiz: {topic}[/bold]")
    for number, question in enumerate(result.questions, start=1):
        console.print(f"\n{number}. {escape(question.question)}")
        for index, option in enumerate(question.options):
            marker = "[green]*[/]" if index == question.correct_answer_index else " "
            console.print(f"  {marker} {chr(ord('A') + index)}) {escape(option)}")
        console.print(f"  [dim]{escape(question.explanation)}[/]")
    console.print(f"\n[dim]quiz {result.record_id} via {result.provider}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def summarize(
    user_id: str,
    file: Path = typer.Argument(..., help="Text file to summarize"),
    config: str = ConfigOption
):
    """Summarize the contents of a text file."""
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error reading {file}:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    governor = _load_governor(config)
    result = _handle(lambda: governor.summary.generate(user_id, text))
    console.print(result.summarized_text, markup=False)
    console.print(f"\n[dim]via {result.provider}[/]")
    sys.exit(EXIT_CODE_PASS)


def _load_governor(config_path: str):
    try:
        return build_governor(load_governor_config(config_path))
    except Exception as e:
        console.print(f"[red]Error loading governor:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


def _handle(call):
    """Run a governor call, translating its errors into exit codes."""
    try:
        return call()
    except RateLimited as e:
        console.print(f"[yellow]{e.code}:[/] {escape(str(e))} (retry in {e.retry_after_seconds:.0f}s)")
        sys.exit(EXIT_CODE_QUOTA)
    except DailyLimitExceeded as e:
        resets = f" (resets {e.retry_at:%Y-%m-%d %H:%M} UTC)" if e.retry_at else ""
        console.print(f"[yellow]{e.code}:[/] {escape(str(e))}{resets}")
        sys.exit(EXIT_CODE_QUOTA)
    except QuotaError as e:
        console.print(f"[yellow]{e.code}:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_QUOTA)
    except AllProvidersFailedError as e:
        console.print(f"[red]{e.code}:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_UNAVAILABLE)
    except GovernorError as e:
        console.print(f"[red]{e.code}:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
