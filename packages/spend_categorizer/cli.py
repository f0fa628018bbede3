# ruff: noqa: I001
"""CLI for the ``spend_categorizer`` package.

Command handlers (``cmd_*``) hold the logic and return a process exit code;
the Typer commands below are thin wrappers. Environment variables (notably
``OPENAI_API_KEY``) are loaded from a local ``.env`` using ``python-dotenv``
before any command runs.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import ConfigurationError, Settings
from .logging_setup import configure_logging

if TYPE_CHECKING:
    from .service import CategorizationService


def _persist_state(
    service: CategorizationService,
    *,
    learning_queue_path: Path,
    database_url: str | None,
    cache_file: Path | None,
) -> int:
    """Export the learning queue and cache snapshot; return an exit code."""

    from .cache import export_learning_queue

    try:
        export_learning_queue(service.learning_queue, learning_queue_path)
    except OSError as e:
        print(f"Error: failed to export learning queue: {e}", file=sys.stderr)
        return 1

    if database_url:
        try:
            from .db import export_learning_queue_to_db

            export_learning_queue_to_db(
                service.learning_queue, service.cache, database_url=database_url
            )
        except Exception as e:
            print(f"Error: failed to export learning queue to database: {e}", file=sys.stderr)
            return 1

    if cache_file is not None:
        try:
            service.cache.save(cache_file)
        except OSError as e:
            print(f"Error: failed to save cache snapshot: {e}", file=sys.stderr)
            return 1
    return 0


def cmd_categorize(
    input_path: str,
    *,
    output_format: str = "tsv",
    concurrency: int | None = None,
    cache_file: str | None = None,
    learning_queue_path: str | None = None,
    database_url: str | None = None,
) -> int:
    """Categorize transactions from a JSON/CSV file and print the results.

    Output is one line per transaction in input order,
    ``"<id>\\t<category>\\t<type>\\t<source>\\t<confidence>"``, or with
    ``output_format="json"`` a single ``{"items": [...]}`` document. The
    learning queue is exported afterwards (also after a failed run, so model
    work already paid for is kept).
    """

    from .ingest import load_transactions
    from .service import CategorizationService

    if output_format not in {"tsv", "json"}:
        print(f"Error: unknown output format: {output_format!r}", file=sys.stderr)
        return 1

    settings = Settings.from_env()

    try:
        transactions = load_transactions(input_path)
    except FileNotFoundError:
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {input_path}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Failed to parse transactions: {e}", file=sys.stderr)
        return 1

    try:
        service = CategorizationService.from_settings(settings)
    except (OSError, ValueError) as e:
        print(f"Error: failed to load rules: {e}", file=sys.stderr)
        return 1

    cache_path = Path(cache_file) if cache_file else None
    if cache_path is not None:
        service.cache.load(cache_path)

    queue_path = Path(learning_queue_path) if learning_queue_path else settings.learning_queue_path
    db_url = database_url or settings.database_url

    try:
        results = service.classify_batch(transactions, concurrency=concurrency)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: categorization failed: {e}", file=sys.stderr)
        _persist_state(
            service, learning_queue_path=queue_path, database_url=db_url, cache_file=cache_path
        )
        return 1

    if output_format == "json":
        print(json.dumps({"items": [r.to_dict() for r in results]}, ensure_ascii=False, indent=2))
    else:
        for r in results:
            print(f"{r.transaction_id}\t{r.category}\t{r.type}\t{r.source}\t{r.confidence:.2f}")

    return _persist_state(
        service, learning_queue_path=queue_path, database_url=db_url, cache_file=cache_path
    )


def cmd_rules(*, region: str | None = None, as_json: bool = False) -> int:
    """Print the effective rules in priority order."""

    from .categories import Region
    from .rules import RULES, dump_rules, load_rules

    settings = Settings.from_env()
    try:
        rules = RULES
        if settings.rules_path is not None:
            rules = load_rules(settings.rules_path) + RULES
    except (OSError, ValueError) as e:
        print(f"Error: failed to load rules: {e}", file=sys.stderr)
        return 1

    if region is not None:
        try:
            wanted = Region(region.strip().upper())
        except ValueError:
            print(f"Error: unknown region: {region!r}", file=sys.stderr)
            return 1
        rules = tuple(r for r in rules if r.region in (wanted, Region.ALL))

    if as_json:
        print(dump_rules(rules))
        return 0
    for r in rules:
        matcher = ",".join(r.keywords) if r.keywords else f"/{r.regex}/"
        print(f"{r.id}\t{r.region}\t{r.category}\t{matcher}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize bank transactions with static rules and an OpenAI fallback. "
        "Loads OPENAI_API_KEY from a local .env before running."
    ),
)


# Module-level option object to satisfy ruff B008 (no calls in parameter defaults).
INPUT_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--input",
    "-i",
    help="Path to a JSON ({'transactions': [...]} or array) or CSV file of transactions",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)


@app.command("categorize")
def categorize_cmd(
    input_path: Annotated[Path, INPUT_PATH_OPTION],
    *,
    output_format: str = typer.Option("tsv", "--format", help="Output format: tsv or json."),
    concurrency: int | None = typer.Option(
        None, min=1, help="Max concurrent model calls (default: SPEND_CATEGORIZER_CONCURRENCY)."
    ),
    cache_file: Path | None = typer.Option(
        None, help="Verdict cache snapshot to load before and save after the run."
    ),
    learning_queue: Path | None = typer.Option(
        None, help="Learning queue export path (default: SPEND_CATEGORIZER_LEARNING_QUEUE_PATH)."
    ),
    database_url: str | None = typer.Option(
        None, help="Also export the learning queue to this database (falls back to DATABASE_URL)."
    ),
) -> None:
    """Categorize a transactions file."""

    code = cmd_categorize(
        str(input_path),
        output_format=output_format,
        concurrency=concurrency,
        cache_file=str(cache_file) if cache_file else None,
        learning_queue_path=str(learning_queue) if learning_queue else None,
        database_url=database_url,
    )
    raise typer.Exit(code)


@app.command("rules")
def rules_cmd(
    region: str | None = typer.Option(None, help="Only rules that can match in AU, US or ALL."),
    as_json: bool = typer.Option(
        False, "--json", help="Emit a rule file usable as SPEND_CATEGORIZER_RULES_PATH."
    ),
) -> None:
    """List rules in priority order (first match wins)."""

    raise typer.Exit(cmd_rules(region=region, as_json=as_json))


@app.command("normalize")
def normalize_cmd(text: str = typer.Argument(..., help="Text to normalize.")) -> None:
    """Print the normalized matching form of TEXT."""

    from .normalizer import normalize_text

    typer.echo(normalize_text(text))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
