import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from persona_quiz.core.constants import EXIT_COMMANDS, EXIT_SIGNAL, HISTORY_DIR
from persona_quiz.core.logging import LOGGER_NAME
from persona_quiz.core.models import GeneratedItem, PersonalityAnalysis


class IOInterface(ABC):
    """Abstract interface for user input/output operations."""

    @abstractmethod
    def print(self, message: str) -> None:
        """Print a message to the user."""
        pass

    @abstractmethod
    def input(self, prompt: str, completions: Sequence[str] = ()) -> str:
        """Get input from the user with a prompt. Exit commands come back as EXIT_SIGNAL."""
        pass

    def print_question(self, item: GeneratedItem, number: int, total: int) -> None:
        self.print(f"Question {number}/{total}: {item.rendered_text}")
        self.print(f"  A) {item.choice_a.text}")
        self.print(f"  B) {item.choice_b.text}")

    def print_analysis(self, analysis: PersonalityAnalysis) -> None:
        self.print(analysis.summary)
        for title, entries in (
            ("Strengths", analysis.strengths),
            ("Challenges", analysis.challenges),
            ("Career suggestions", analysis.career_suggestions),
            ("Growth tips", analysis.growth_tips),
        ):
            if entries:
                self.print(f"{title}: " + "; ".join(entries))
        if analysis.relationships:
            self.print(f"Relationships: {analysis.relationships}")

    def print_scores(self, scores: dict[str, int]) -> None:
        self.print("  ".join(f"{letter}={count}" for letter, count in scores.items()))

    def print_success(self, message: str) -> None:
        self.print(message)

    def print_error(self, message: str) -> None:
        self.print(message)

    def print_info(self, message: str) -> None:
        self.print(message)

    def print_thinking(self, message: str = "Processing...") -> None:
        self.print(message)


class RichConsoleIO(IOInterface):
    """Rich console implementation with styled panels, history and completions."""

    def __init__(self, history_name: str | None = "quiz"):
        self.console = Console()
        self.history_file = None

        if history_name:
            history_dir = Path.home() / HISTORY_DIR / "history"
            history_dir.mkdir(parents=True, exist_ok=True)
            self.history_file = str(history_dir / f"{self._sanitize_name(history_name)}.txt")

    def _sanitize_name(self, name: str) -> str:
        """Keep only characters that are safe in a file name."""
        sanitized = "".join(c for c in name if c.isalnum() or c in "-_")
        return sanitized[:50] if sanitized else "history"

    def print(self, message: str) -> None:
        self.console.print(f"[blue]ℹ[/blue] {message}")

    def print_question(self, item: GeneratedItem, number: int, total: int) -> None:
        body = f"{item.rendered_text}\n\n[bold]A)[/bold] {item.choice_a.text}\n[bold]B)[/bold] {item.choice_b.text}"
        self.console.print(Panel(body, title=f"Question {number}/{total}", border_style="blue", padding=(1, 2)))

    def print_analysis(self, analysis: PersonalityAnalysis) -> None:
        self.console.print(Panel(analysis.summary, title="Summary", border_style="magenta", padding=(1, 2)))
        table = Table(show_header=False, box=None, padding=(0, 1))
        for title, entries in (
            ("Strengths", analysis.strengths),
            ("Challenges", analysis.challenges),
            ("Careers", analysis.career_suggestions),
            ("Growth tips", analysis.growth_tips),
        ):
            if entries:
                table.add_row(f"[bold]{title}[/bold]", "\n".join(f"• {entry}" for entry in entries))
        if analysis.relationships:
            table.add_row("[bold]Relationships[/bold]", analysis.relationships)
        self.console.print(table)

    def print_scores(self, scores: dict[str, int]) -> None:
        table = Table(title="Scores")
        for letter in scores:
            table.add_column(letter, justify="center")
        table.add_row(*(str(count) for count in scores.values()))
        self.console.print(table)

    def input(self, prompt_str: str, completions: Sequence[str] = ()) -> str:
        try:
            self.console.print(f"[bold green]{prompt_str}[/bold green]", end="")
            history = FileHistory(self.history_file) if self.history_file else None
            completer = WordCompleter(list(completions) + list(EXIT_COMMANDS), ignore_case=True)
            result = prompt("", history=history, completer=completer, complete_while_typing=True)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n[yellow]💡 Tip: Type 'exit' or 'quit' to stop; your progress is kept[/yellow]\n")
            return EXIT_SIGNAL
        return self._process_input_result(result)

    def _process_input_result(self, result: str) -> str:
        result_clean = result.strip()
        if result_clean.lower() in EXIT_COMMANDS:
            logging.getLogger(LOGGER_NAME).debug(
                "exit requested", extra={"event": "io.exit", "component": "io", "operation": "input"}
            )
            self.print_info("Progress saved. Run the quiz again to continue.")
            return EXIT_SIGNAL
        return result_clean

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def print_thinking(self, message: str = "Processing...") -> None:
        self.console.print(f"[yellow]…[/yellow] {message}")

    def print_info(self, message: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan] {message}")


class TestableIO(IOInterface):
    """Testable implementation of IOInterface with predefined responses."""

    __test__ = False

    def __init__(self, responses: list[str] | None = None):
        self.responses = responses or []
        self.response_index = 0
        self.printed_messages: list[str] = []
        self.prompts: list[str] = []

    def print(self, message: str) -> None:
        self.printed_messages.append(message)

    def input(self, prompt: str, completions: Sequence[str] = ()) -> str:
        self.prompts.append(prompt)
        if self.response_index < len(self.responses):
            response = self.responses[self.response_index]
            self.response_index += 1
            if response.strip().lower() in EXIT_COMMANDS:
                return EXIT_SIGNAL
            return response
        return EXIT_SIGNAL
