"""ClipCards CLI entry point.

Turns a video URL or local file into an Anki ``.apkg`` deck of sentence cards
behind a single ``clipcards`` command, with a Rich progress bar driven by the
run's event stream and human-readable error panels.
"""

import logging
import shutil
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from clipcards import __version__
from clipcards.config import Settings, load_settings
from clipcards.errors import ClipCardsError
from clipcards.ingestion.download import VIDEO_EXTENSIONS, is_url
from clipcards.ingestion.subtitles import SUPPORTED_EXTENSIONS
from clipcards.pipeline import CompletedEvent, ErrorEvent, ProgressEvent, RunManager, RunOptions
from clipcards.selection import list_hosted_models

EXIT_CANCELLED = 130

app = typer.Typer(
    name="clipcards",
    help="ClipCards: turn any video into an Anki deck of sentence flashcards.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


def _input_error(message: str) -> None:
    err_console.print(Panel(message, title="[red]Input Error[/red]", border_style="red"))
    raise typer.Exit(1)


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("clipcards")
    logger.handlers[:] = [RichHandler(console=err_console, show_path=False)]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _default_output(source: str) -> Path:
    stem = "deck" if is_url(source) else Path(source).stem
    return Path.cwd() / f"{stem}.apkg"


def _build_settings(
    config: Optional[Path],
    model: Optional[str],
    **overrides,
) -> Settings:
    settings = load_settings(config, **overrides)
    if model is not None:
        field = "hosted_model" if settings.provider == "hosted" else "local_model"
        settings = settings.model_copy(update={field: model})
    return settings


@app.command()
def main(
    source: Annotated[
        Optional[str],
        typer.Argument(
            metavar="INPUT",
            help="Video URL (http/https) or local video file (MP4, MKV, WEBM, AVI, MOV).",
            show_default=False,
        ),
    ] = None,
    subtitle: Annotated[
        Optional[Path],
        typer.Option(
            "--subtitle", "-s",
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
            help="Subtitle file (SRT, VTT, ASS or SSA). Takes priority over downloaded subtitles.",
        ),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output", "-o",
            dir_okay=False,
            resolve_path=True,
            help="Where to write the .apkg (default: <input name>.apkg in the current directory).",
        ),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config", "-c",
            dir_okay=False,
            resolve_path=True,
            help="JSON settings file.",
        ),
    ] = None,
    provider: Annotated[
        Optional[str],
        typer.Option("--provider", help="Sentence selection provider: hosted or local."),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model id for the selected provider."),
    ] = None,
    transcription: Annotated[
        Optional[str],
        typer.Option("--transcription", help="Transcription fallback: remote or local."),
    ] = None,
    whisper_model: Annotated[
        Optional[str],
        typer.Option("--whisper-model", help="whisper.cpp model size for local transcription (e.g. base, small)."),
    ] = None,
    max_cards: Annotated[
        Optional[int],
        typer.Option("--max-cards", "-n", help="Maximum number of cards in the deck."),
    ] = None,
    target: Annotated[
        Optional[str],
        typer.Option("--target", "-t", help="Language being studied (e.g. en)."),
    ] = None,
    native: Annotated[
        Optional[str],
        typer.Option("--native", help="Learner's native language for translations (e.g. ko)."),
    ] = None,
    padding_ms: Annotated[
        Optional[int],
        typer.Option("--padding-ms", help="Audio padding before and after each sentence, in milliseconds."),
    ] = None,
    keep_workspace: Annotated[
        bool,
        typer.Option("--keep-workspace", help="Keep the temporary workspace for debugging."),
    ] = False,
    list_models: Annotated[
        bool,
        typer.Option("--list-models", help="List hosted GPT models available to the API key and exit."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Build an Anki deck of the most useful sentences in a video."""
    _configure_logging(verbose)

    try:
        settings = _build_settings(
            config,
            model,
            provider=provider,
            transcription=transcription,
            whisper_model_size=whisper_model,
            max_cards=max_cards,
            target_language=target,
            native_language=native,
            audio_padding_ms=padding_ms,
            preserve_workspace=True if keep_workspace else None,
        )
    except ClipCardsError as e:
        err_console.print(Panel(str(e), title="[red]Configuration Error[/red]", border_style="red"))
        raise typer.Exit(1)

    if list_models:
        try:
            models = list_hosted_models(settings.resolved_api_key(), settings.hosted_base_url)
        except ClipCardsError as e:
            err_console.print(Panel(str(e), title="[red]Provider Error[/red]", border_style="red"))
            raise typer.Exit(1)
        for model_id in models:
            console.print(model_id)
        raise typer.Exit(0)

    # --- Input validation ---
    if source is None:
        _input_error("Missing INPUT: pass a video URL or a local video file.")

    if not is_url(source):
        video = Path(source).expanduser().resolve()
        if video.suffix.lower() not in VIDEO_EXTENSIONS:
            _input_error(
                f"Unsupported video format: [bold]{video.suffix or '(none)'}[/bold]\n"
                f"Supported formats: {', '.join(sorted(VIDEO_EXTENSIONS))}"
            )
        if not video.is_file():
            _input_error(
                f"File not found: [bold]{video}[/bold]\n"
                f"Check that the path is correct and the file is accessible."
            )
        source = str(video)

    if subtitle is not None:
        if subtitle.suffix.lower() not in SUPPORTED_EXTENSIONS:
            _input_error(
                f"Unsupported subtitle format: [bold]{subtitle.suffix or '(none)'}[/bold]\n"
                f"Supported formats: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )
        if not subtitle.is_file():
            _input_error(
                f"File not found: [bold]{subtitle}[/bold]\n"
                f"Check that the path is correct and the file is accessible."
            )

    output_path = output if output is not None else _default_output(source)

    console.print(
        f"\n[bold cyan]ClipCards[/bold cyan] {__version__}  [dim]{source}[/dim]  "
        f"{settings.target_language} → {settings.native_language}  provider=[bold]{settings.provider}[/bold]\n"
    )

    manager = RunManager()
    options = RunOptions(input=source, settings=settings, subtitle_path=subtitle)
    terminal = None
    events = manager.events(options)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=1.0)
            for event in events:
                if isinstance(event, ProgressEvent):
                    progress.update(task, description=event.message, completed=event.percent)
                else:
                    terminal = event

        if isinstance(terminal, CompletedEvent):
            try:
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(terminal.archive_path, output_path)
            except OSError as e:
                err_console.print(Panel(
                    f"Could not write [bold]{output_path}[/bold]\n  Cause: {e}",
                    title="[red]Output Error[/red]",
                    border_style="red",
                ))
                raise typer.Exit(1)
            console.print(Panel(
                f"[bold green]Deck complete[/bold green]\n\n"
                f"  Output: [dim]{output_path}[/dim]\n"
                f"  Cards:  {terminal.card_count}",
                title="[green]Deck Ready[/green]",
                border_style="green",
            ))
        elif isinstance(terminal, ErrorEvent) and terminal.cancelled:
            err_console.print(Panel("Run cancelled.", title="[yellow]Cancelled[/yellow]", border_style="yellow"))
            raise typer.Exit(EXIT_CANCELLED)
        else:
            message = terminal.message if isinstance(terminal, ErrorEvent) else "Run ended without a result."
            err_console.print(Panel(message, title="[red]Pipeline Error[/red]", border_style="red"))
            raise typer.Exit(1)

    except KeyboardInterrupt:
        manager.cancel()
        err_console.print(Panel("Run cancelled.", title="[yellow]Cancelled[/yellow]", border_style="yellow"))
        raise typer.Exit(EXIT_CANCELLED)
    finally:
        # Closing cancels an unfinished run and waits for its worker, so its cleanup is scheduled first.
        events.close()
        manager.cleanup_now()
