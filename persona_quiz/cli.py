import asyncio
from datetime import UTC, datetime
from typing import Optional

import typer

from persona_quiz.cli_helpers import InsightRunner, QuizRunner, Runtime, build_runtime, load_finished_state
from persona_quiz.core.constants import DEFAULT_DB_PATH
from persona_quiz.core.io_interface import RichConsoleIO
from persona_quiz.core.logging import (
    init_logging,
    log_event,
    set_run_id,
    set_trace_id,
)
from persona_quiz.core.question_bank import type_name
from persona_quiz.core.quiz_controller import QuizFlowController
from persona_quiz.core.services import PersonalityInsightService
from persona_quiz.core.storage import DatabaseStateStore, StorageError

app = typer.Typer(help="Persona Quiz - a personalized personality-type quiz in the console.")


def _init_logging_from_cli(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    log_format: str = "text",
    log_mask: bool = False,
) -> None:
    init_logging(level=log_level or "WARNING", fmt=log_format, file_path=log_file, mask=log_mask)
    # Fresh run id for each CLI invocation; also set as initial trace id
    _rid = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")[-12:]
    set_run_id(_rid)
    set_trace_id(_rid)
    log_event(
        "cli.start",
        component="cli",
        operation="start",
        log_level=log_level or "WARNING",
        log_file=log_file or "stderr",
        log_format=log_format,
        log_mask=log_mask,
    )


def _open_runtime(db_path: str, model: str | None, base_url: str | None) -> Runtime:
    try:
        return build_runtime(db_path, model, base_url)
    except (StorageError, ValueError) as e:
        typer.echo(f"Error opening state: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def quiz(
    db_path: str = typer.Option(DEFAULT_DB_PATH, help="Database file path"),
    model: str | None = typer.Option(None, help="Model identifier (default from PERSONA_QUIZ_MODEL)"),
    base_url: str | None = typer.Option(None, help="OpenAI-compatible endpoint URL"),
    log_level: str | None = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
    log_file: str | None = typer.Option(None, help="Log file path (default stderr)"),
    log_format: str = typer.Option("text", help="Log format: json|text"),
    log_mask: bool = typer.Option(False, help="Mask user free text in logs"),
):
    """
    Runs the quiz interactively, resuming any saved progress.
    """
    _init_logging_from_cli(log_level, log_file, log_format, log_mask)
    runtime = _open_runtime(db_path, model, base_url)
    if not runtime.config.has_credentials:
        typer.echo("No API key configured; questions will use their standard wording.", err=True)

    async def _main():
        controller = QuizFlowController(
            runtime.store,
            runtime.provider,
            runtime.executor,
            concurrent_limit=runtime.config.concurrent_limit,
        )
        return await QuizRunner(controller, RichConsoleIO()).run()

    asyncio.run(_main())


@app.command("show-state")
def show_state(
    db_path: str = typer.Option(DEFAULT_DB_PATH, help="Database file path"),
    log_level: str | None = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
    log_file: str | None = typer.Option(None, help="Log file path (default stderr)"),
    log_format: str = typer.Option("text", help="Log format: json|text"),
    log_mask: bool = typer.Option(False, help="Mask user free text in logs"),
):
    """
    Display the saved quiz progress.
    """
    _init_logging_from_cli(log_level, log_file, log_format, log_mask)
    try:
        state = DatabaseStateStore(db_path).load()
    except (StorageError, ValueError) as e:
        typer.echo(f"Error reading state: {e}", err=True)
        raise typer.Exit(1)

    if state is None:
        typer.echo("No saved quiz.")
        return

    total = len(state.generated_items)
    typer.echo(f"Step: {state.flow_step.value}")
    typer.echo(f"Generated: {state.generated_count()}/{total}")
    typer.echo(f"Answered: {len(state.answers)}/{total}")
    typer.echo(f"Last activity: {state.last_activity_at.strftime('%Y-%m-%d %H:%M:%S')}")
    if state.derived_type:
        label = type_name(state.derived_type)
        typer.echo(f"Result: {state.derived_type}" + (f" ({label})" if label else ""))
        typer.echo("Scores: " + " ".join(f"{k}={v}" for k, v in state.dimension_scores.items()))


@app.command()
def reset(
    db_path: str = typer.Option(DEFAULT_DB_PATH, help="Database file path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    log_level: str | None = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
    log_file: str | None = typer.Option(None, help="Log file path (default stderr)"),
    log_format: str = typer.Option("text", help="Log format: json|text"),
    log_mask: bool = typer.Option(False, help="Mask user free text in logs"),
):
    """
    Delete the saved quiz progress.
    """
    _init_logging_from_cli(log_level, log_file, log_format, log_mask)
    if not yes and not typer.confirm("Delete saved quiz progress?"):
        raise typer.Exit(0)
    try:
        DatabaseStateStore(db_path).clear()
    except (StorageError, ValueError) as e:
        typer.echo(f"Error resetting state: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("Quiz progress cleared.")


@app.command()
def analyze(
    db_path: str = typer.Option(DEFAULT_DB_PATH, help="Database file path"),
    model: str | None = typer.Option(None, help="Model identifier (default from PERSONA_QUIZ_MODEL)"),
    base_url: str | None = typer.Option(None, help="OpenAI-compatible endpoint URL"),
    log_level: str | None = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
    log_file: str | None = typer.Option(None, help="Log file path (default stderr)"),
    log_format: str = typer.Option("text", help="Log format: json|text"),
    log_mask: bool = typer.Option(False, help="Mask user free text in logs"),
):
    """
    Print a narrative analysis of the finished quiz.
    """
    _init_logging_from_cli(log_level, log_file, log_format, log_mask)
    runtime = _open_runtime(db_path, model, base_url)
    state = load_finished_state(runtime.store)
    service = PersonalityInsightService(runtime.provider, runtime.executor, state)
    asyncio.run(InsightRunner(service, RichConsoleIO(history_name=None)).show_analysis())


@app.command()
def chat(
    db_path: str = typer.Option(DEFAULT_DB_PATH, help="Database file path"),
    model: str | None = typer.Option(None, help="Model identifier (default from PERSONA_QUIZ_MODEL)"),
    base_url: str | None = typer.Option(None, help="OpenAI-compatible endpoint URL"),
    log_level: str | None = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
    log_file: str | None = typer.Option(None, help="Log file path (default stderr)"),
    log_format: str = typer.Option("text", help="Log format: json|text"),
    log_mask: bool = typer.Option(False, help="Mask user free text in logs"),
):
    """
    Ask follow-up questions about your result. Type 'exit' to leave.
    """
    _init_logging_from_cli(log_level, log_file, log_format, log_mask)
    runtime = _open_runtime(db_path, model, base_url)
    state = load_finished_state(runtime.store)
    service = PersonalityInsightService(runtime.provider, runtime.executor, state)
    asked = asyncio.run(InsightRunner(service, RichConsoleIO(history_name="chat")).chat())
    log_event("chat.finished", component="cli", operation="chat", questions=asked)


if __name__ == "__main__":
    app()
