from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt
from rich.table import Table
from rich.text import Text

from .config import CONFIG_PATH, load_stored_config, parse_api_keys, save_config
from .models import Config

MEGABYTE = 1024 * 1024


def _mask(key: str) -> str:
    return key[:4] + "…" + key[-4:] if len(key) > 8 else "****"


def run_onboarding(console: Console | None = None) -> Config:
    console = console or Console()

    console.clear()

    welcome_text = Text()
    welcome_text.append("🎓 Welcome to LectureLink!\n\n", style="bold cyan")
    welcome_text.append("Lecture transcripts and study notes from your recordings\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = load_stored_config()

    console.print("[bold]Transcription API keys[/bold]")
    console.print()
    console.print("Enter one or more Groq API keys, separated by commas.")
    console.print("Extra keys are used in turn when one of them is rate limited.")
    console.print("(Get one at https://console.groq.com/keys)")
    console.print()

    raw_keys = Prompt.ask("API keys", password=True, default="")
    keys = parse_api_keys(raw_keys)
    if keys:
        config.groq_api_keys = keys

    console.print()
    console.print("[bold]Chunking and retries[/bold]")
    console.print()

    segment_mb = IntPrompt.ask("Maximum segment size (MB)", default=config.max_segment_bytes // MEGABYTE)
    config.max_segment_bytes = max(1, segment_mb) * MEGABYTE
    config.max_retries = max(0, min(5, IntPrompt.ask("Retries per segment (0-5)", default=config.max_retries)))
    config.base_backoff = FloatPrompt.ask("Base backoff (seconds)", default=config.base_backoff)

    console.print()
    console.print("[bold]Study notes[/bold]")
    console.print()

    console.print("How should notes be generated?")
    console.print("  1. Auto-select (language model, falls back to key sentences)")
    console.print("  2. Language model only")
    console.print("  3. Key sentences only (offline)")
    console.print()

    notes_choice = Prompt.ask("Select option", choices=["1", "2", "3"], default="1")
    config.notes_backend = {"1": "auto", "2": "llm", "3": "extractive"}[notes_choice]

    console.print()
    console.print("[bold green]✓ Setup Complete![/bold green]")
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("API keys:", ", ".join(_mask(key) for key in config.groq_api_keys) or "none")
    summary.add_row("Segment size:", f"{config.max_segment_bytes // MEGABYTE} MB")
    summary.add_row("Retries:", str(config.max_retries))
    summary.add_row("Notes:", config.notes_backend)

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True):
        save_config(config)
        console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
        console.print()
        console.print("[bold]To transcribe a lecture, run:[/bold]")
        console.print("  [cyan]lecturelink transcribe <audio-file> --subject <name>[/cyan]")
        console.print()
    else:
        console.print("[yellow]Configuration not saved. Run 'lecturelink setup' to try again.[/yellow]")
    return config
