# grounding/interface/cli.py

import logging
from typing import List

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text

from grounding.application.context_packer import format_relevance
from grounding.domain.models import RetrievalResult


console = Console()


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def display_welcome_banner() -> None:
    console.print(Panel.fit(
        "[bold cyan]📚 Document Grounding[/bold cyan]\n"
        "[dim]Vector + keyword + recency retrieval over your own documents[/dim]",
        box=box.DOUBLE,
        border_style="cyan",
    ))


def display_indexing_status(num_fragments: int) -> None:
    console.print(f"\n[green]✓[/green] Corpus ready — [bold]{num_fragments}[/bold] documents in scope.\n")


def prompt_for_query() -> str:
    return Prompt.ask("\n[bold yellow]❓ Your question[/bold yellow]")


def prompt_for_preset(presets: List[str], default: str) -> str:
    return Prompt.ask("[dim]Call site[/dim]", choices=presets, default=default)


def display_result(query: str, result: RetrievalResult) -> None:
    console.print(f"\n[bold]Grounding for:[/bold] [italic]\"{query}\"[/italic]\n")

    if not result.is_grounded:
        console.print("[yellow]No relevant documents found — proceeding without grounding.[/yellow]")
        return

    for rank, source in enumerate(result.sources, start=1):
        score_color = _score_to_color(source.similarity)

        panel_content = Text()
        panel_content.append("📄 Document: ", style="dim")
        panel_content.append(source.fragment.title, style="bold white")
        panel_content.append("\n🎯 Relevance: ")
        panel_content.append(format_relevance(source.similarity), style=score_color)
        panel_content.append(f"  ({source.strategy.value})", style="dim")
        panel_content.append(f"\n\n{source.fragment.body[:300]}")

        console.print(Panel(
            panel_content,
            title=f"[bold]#{rank}[/bold]",
            border_style=score_color,
            box=box.ROUNDED,
            padding=(1, 2),
        ))

    console.print(
        f"[dim]Packed {len(result.packed)} of {result.candidate_count} candidates "
        f"into {len(result.context)} characters of context.[/dim]"
    )


def display_error(message: str) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {message}\n")


def ask_continue() -> bool:
    answer = Prompt.ask(
        "\n[dim]Search again?[/dim]",
        choices=["y", "n"],
        default="y",
    )
    return answer.lower() == "y"


def _score_to_color(score: float) -> str:
    if score >= 0.75:
        return "green"
    elif score >= 0.50:
        return "yellow"
    else:
        return "red"
