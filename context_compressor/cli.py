"""Command-line interface for inspecting compressed contexts."""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from context_compressor import constants
from context_compressor.compressor import SmartContextCompressor
from context_compressor.config import (
    CompressionLevel,
    CompressionOptions,
    ConfigError,
    LLMConfig,
    load_config,
)
from context_compressor.core.utils import (
    console,
    print_error_message,
    print_output_panel,
    setup_rich_logging,
)
from context_compressor.formatting import format_compressed_context
from context_compressor.store import SqliteContextStore, StoreError
from context_compressor.summarizer import (
    ContextSummarizer,
    OpenAITextGenerator,
    UnavailableGenerator,
)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "context-compressor" / "context.db"
DEFAULT_MODEL = "gpt-4o-mini"

app = typer.Typer(
    name="context-compressor",
    help="Build token-budgeted conversation context from stored chat history.",
    add_completion=True,
)


class OutputFormat(str, Enum):
    """How command results are printed."""

    TEXT = "text"
    JSON = "json"


DB_PATH = typer.Option(
    DEFAULT_DB_PATH,
    "--db",
    help="Path to the SQLite context database.",
)
LOG_LEVEL = typer.Option("warning", "--log-level", help="Set logging level.")
OUTPUT = typer.Option(OutputFormat.TEXT, "--output", "-o", help="Output format.")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_file: Annotated[
        str | None,
        typer.Option("--config-file", help="Path to a custom config file."),
    ] = None,
) -> None:
    """Smart context compression for chat assistants."""
    if ctx.invoked_subcommand is None:
        console.print("[bold red]No command specified.[/bold red]")
        console.print("[bold yellow]Running --help for your convenience.[/bold yellow]")
        console.print(ctx.get_help())
        raise typer.Exit
    import dotenv  # noqa: PLC0415

    dotenv.load_dotenv()
    set_config_defaults(ctx, config_file)


def set_config_defaults(ctx: typer.Context, config_file: str | None) -> None:
    """Set the default values for each subcommand based on the config file.

    Keys under ``[defaults]`` apply to every command; a ``[compress]`` or
    ``[stats]`` table overrides them for that command.
    """
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ConfigError) as e:
        print_error_message(str(e))
        raise typer.Exit(1) from e
    wildcard_config = config.get("defaults", {})
    ctx.default_map = {
        name: {**wildcard_config, **config.get(name, {})} for name in ("compress", "stats")
    }


def _build_summarizer(
    *,
    summarize: bool,
    model: str,
    openai_base_url: str,
    openai_api_key: str | None,
    timeout: float,
) -> ContextSummarizer:
    if not summarize:
        return ContextSummarizer(UnavailableGenerator(), timeout=timeout)
    config = LLMConfig(
        openai_base_url=openai_base_url,
        model=model,
        api_key=openai_api_key,
        timeout=timeout,
    )
    return ContextSummarizer(OpenAITextGenerator(config), timeout=timeout)


@app.command("compress")
def compress(
    user_id: Annotated[str, typer.Argument(help="Owner of the conversation.")],
    thread_id: Annotated[str, typer.Argument(help="Conversation thread to compress.")],
    session_id: Annotated[
        str | None,
        typer.Option("--session-id", help="Session scope for standing facts."),
    ] = None,
    db: Path = DB_PATH,
    level: Annotated[
        CompressionLevel,
        typer.Option("--level", "-l", case_sensitive=False, help="Compression preset."),
    ] = CompressionLevel.BALANCED,
    max_recent_messages: Annotated[
        int | None,
        typer.Option("--max-recent-messages", min=0, help="Override the preset's recent cap."),
    ] = None,
    max_summaries: Annotated[
        int | None,
        typer.Option("--max-summaries", min=0, help="Override the preset's summary cap."),
    ] = None,
    max_context_items: Annotated[
        int | None,
        typer.Option("--max-context-items", min=0, help="Override the preset's fact cap."),
    ] = None,
    relevance_threshold: Annotated[
        float | None,
        typer.Option(
            "--relevance-threshold",
            min=0.0,
            max=1.0,
            help="Override the preset's relevance floor.",
        ),
    ] = None,
    time_range_hours: Annotated[
        float | None,
        typer.Option("--time-range-hours", help="Override the preset's look-back window."),
    ] = None,
    include_store_context: Annotated[
        bool,
        typer.Option(
            "--store-context/--no-store-context",
            help="Attach the business snapshot.",
        ),
    ] = True,
    force_refresh: Annotated[
        bool,
        typer.Option("--force-refresh", help="Bypass the cache."),
    ] = False,
    summarize: Annotated[
        bool,
        typer.Option(
            "--summarize/--no-summarize",
            help="Call the language model for summaries (otherwise use fallbacks).",
        ),
    ] = True,
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="Model used for segment summaries."),
    ] = DEFAULT_MODEL,
    openai_base_url: Annotated[
        str,
        typer.Option(
            "--openai-base-url",
            envvar="OPENAI_BASE_URL",
            help="OpenAI-compatible API base URL.",
        ),
    ] = "https://api.openai.com/v1",
    openai_api_key: Annotated[
        str | None,
        typer.Option("--openai-api-key", envvar="OPENAI_API_KEY", help="API key."),
    ] = None,
    summary_timeout: Annotated[
        float,
        typer.Option("--summary-timeout", help="Seconds to wait for each summary."),
    ] = constants.DEFAULT_SUMMARY_TIMEOUT_SECONDS,
    output: OutputFormat = OUTPUT,
    log_level: str = LOG_LEVEL,
) -> None:
    """Print the compressed context for one thread."""
    setup_rich_logging(log_level)

    overrides = {
        "max_recent_messages": max_recent_messages,
        "max_summaries": max_summaries,
        "max_context_items": max_context_items,
        "relevance_threshold": relevance_threshold,
        "time_range_hours": time_range_hours,
    }
    try:
        options = CompressionOptions.for_level(
            level,
            include_store_context=include_store_context,
            force_refresh=force_refresh,
            **{k: v for k, v in overrides.items() if v is not None},
        )
    except ValidationError as e:
        print_error_message("Invalid compression options.", str(e))
        raise typer.Exit(1) from e

    store = SqliteContextStore(db.expanduser())
    compressor = SmartContextCompressor(
        store,
        _build_summarizer(
            summarize=summarize,
            model=model,
            openai_base_url=openai_base_url,
            openai_api_key=openai_api_key,
            timeout=summary_timeout,
        ),
    )
    try:
        context = asyncio.run(
            compressor.get_compressed_context(user_id, thread_id, session_id, options),
        )
    finally:
        store.close()

    if output == OutputFormat.JSON:
        typer.echo(context.model_dump_json(indent=2))
        return
    meta = context.compression_metadata
    print_output_panel(
        format_compressed_context(context),
        title=f"Context for {thread_id}",
        subtitle=f"~{context.total_tokens_estimate} tokens in {meta.processing_time_ms:.0f}ms",
    )


@app.command("stats")
def stats(
    db: Path = DB_PATH,
    output: OutputFormat = OUTPUT,
    log_level: str = LOG_LEVEL,
) -> None:
    """Show summary statistics for the last day.

    The context cache lives in memory, so a fresh process always reports an
    empty one; ``cache_size`` is only kept in the JSON output.
    """
    setup_rich_logging(log_level)
    store = SqliteContextStore(db.expanduser())
    compressor = SmartContextCompressor(store, ContextSummarizer(UnavailableGenerator()))
    try:
        # Opening the database eagerly surfaces a bad path as an error.
        _ = store.conn
        result = asyncio.run(compressor.get_compression_stats())
    except StoreError as e:
        print_error_message(str(e), "Check the --db path.")
        raise typer.Exit(1) from e
    finally:
        store.close()

    if output == OutputFormat.JSON:
        typer.echo(result.model_dump_json(indent=2))
        return
    console.print(f"[bold]Summaries (24h):[/bold] {result.total_summaries}")
    console.print(
        f"[bold]Avg characters per summarized message:[/bold] {result.avg_compression_ratio:.1f}",
    )
