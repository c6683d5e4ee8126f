# ruff: noqa: I001
"""CLI for the ``receipt_splits`` package.

Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY`` and the
``RECEIPT_SPLITS_*`` settings) are loaded from a local ``.env`` with
``python-dotenv`` before any command runs. Business logic lives in
``receipt_splits.api``; these handlers only parse arguments and print.
"""

import datetime as dt
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import SplitSettings
from .logging_setup import configure_logging
from .outcome import Err


# ---- Small module-level helpers used by commands ------------------------------


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(1)


def _fail_outcome(err: Err) -> typer.Exit:
    print(f"Error [{err.kind.value}]: {err.detail}", file=sys.stderr)
    for key, value in err.context.items():
        print(f"  {key}: {value}", file=sys.stderr)
    return typer.Exit(1)


def _open_store(database_url: str | None):
    # Deferred so `--help` works without a database driver configured.
    from db.client import make_session_factory

    from .store import SqlTransactionStore

    return SqlTransactionStore(make_session_factory(database_url))


def _load_settings() -> SplitSettings:
    try:
        return SplitSettings.from_env()
    except ValueError as e:
        raise _fail(f"invalid configuration: {e}") from e


def _read_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise _fail(f"File not found: {path}") from e
    except json.JSONDecodeError as e:
        raise _fail(f"Failed to parse JSON in {path}: {e}") from e


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Match receipts to ledger transactions and split transactions by category. "
        "Loads DATABASE_URL and OPENAI_API_KEY from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter defaults).
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
SPLIT_FILE_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help=(
        'JSON file with either {"lineItems": [...]} (category ids) or '
        '{"splits": [...]} (category names).'
    ),
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports a friendly error instead
)


@app.command("match-receipt")
def match_receipt_cmd(
    merchant: Annotated[str, typer.Option(help="Merchant name as printed on the receipt.")],
    amount: Annotated[str, typer.Option(help="Receipt total, e.g. 42.17.")],
    date: Annotated[
        str | None, typer.Option(help="Receipt date (YYYY-MM-DD); omit to search recent days.")
    ] = None,
    account_id: Annotated[str | None, typer.Option(help="Restrict to one account.")] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Print ranked candidate transactions for a receipt."""

    from .api import match_receipt

    try:
        total = Decimal(amount)
    except InvalidOperation as e:
        raise _fail(f"invalid amount: {amount!r}") from e
    receipt_date: dt.date | None = None
    if date:
        try:
            receipt_date = dt.date.fromisoformat(date)
        except ValueError as e:
            raise _fail(f"invalid date: {date!r}") from e

    result = match_receipt(
        _open_store(database_url),
        merchant_name=merchant,
        total_amount=total,
        receipt_date=receipt_date,
        settings=_load_settings(),
        account_id=account_id,
    )
    if isinstance(result, Err):
        raise _fail_outcome(result)
    if not result.value:
        typer.echo("No matching transactions found.")
        return
    # One line per candidate: "<score>\t<id>\t<date>\t<amount>\t<name>\t<reasons>"
    for c in result.value:
        tx = c.transaction
        typer.echo(
            f"{c.score}\t{tx.id}\t{tx.date.isoformat()}\t{tx.amount}\t{tx.name}\t"
            + "; ".join(c.match_reasons)
        )


@app.command("split")
def split_cmd(
    transaction_id: Annotated[str, typer.Argument(help="Id of the transaction to split.")],
    file: Annotated[Path, SPLIT_FILE_OPTION],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Split a transaction into category children."""

    from .api import apply_split_groups, split_transaction
    from .validation import parse_ai_split_request, parse_split_request

    payload = _read_json(file)
    store = _open_store(database_url)
    settings = _load_settings()

    if isinstance(payload, dict) and "splits" in payload:
        parsed_groups = parse_ai_split_request(payload)
        if isinstance(parsed_groups, Err):
            raise _fail_outcome(parsed_groups)
        result = apply_split_groups(
            store, transaction_id, parsed_groups.value.splits, settings=settings
        )
    else:
        body = {"transactionId": transaction_id, **payload} if isinstance(payload, dict) else payload
        parsed_items = parse_split_request(body)
        if isinstance(parsed_items, Err):
            raise _fail_outcome(parsed_items)
        result = split_transaction(
            store, transaction_id, parsed_items.value.line_items, settings=settings
        )

    if isinstance(result, Err):
        raise _fail_outcome(result)
    typer.echo(result.value.message)
    for child_id in result.value.child_ids:
        typer.echo(child_id)


@app.command("undo-split")
def undo_split_cmd(
    transaction_id: Annotated[str, typer.Argument(help="Id of the split parent.")],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Remove a transaction's split children and clear its split flag."""

    from .api import undo_split

    result = undo_split(_open_store(database_url), transaction_id)
    if isinstance(result, Err):
        raise _fail_outcome(result)
    typer.echo(f"Removed {len(result.value.removed_ids)} split transactions")


@app.command("seed-taxonomy")
def seed_taxonomy_cmd(
    file: Annotated[
        Path | None, typer.Option("--file", help="Taxonomy JSON (defaults to the bundled seed).")
    ] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Upsert the two-level category taxonomy."""

    from .ingest.seed_taxonomy import DEFAULT_SEED_FILE, seed_from_file

    try:
        n = seed_from_file(database_url=database_url, file=file or DEFAULT_SEED_FILE)
    except (OSError, ValueError) as e:
        raise _fail(f"failed to seed taxonomy: {e}") from e
    typer.echo(f"Seeded {n} categories")


@app.command("serve")
def serve_cmd(
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8000,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Run the HTTP API with uvicorn."""

    import uvicorn
    from db.client import make_session_factory

    from .web import create_app

    app_ = create_app(
        session_factory=make_session_factory(database_url),
        settings=_load_settings(),
    )
    uvicorn.run(app_, host=host, port=port, log_config=None)


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Load ``.env`` (without overriding the environment) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover - `python -m receipt_splits.cli`
    main()
