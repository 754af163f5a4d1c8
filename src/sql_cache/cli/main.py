"""sql-cache main entry point and command registration."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path  # noqa: TC003
from typing import Annotated

import sentry_sdk
import typer

from sql_cache.__about__ import __version__
from sql_cache.cli.helpers import parse_params
from sql_cache.cli.output import OutputFormat, get_formatter, write_output
from sql_cache.core.cache import cache_key
from sql_cache.core.config import apply_env_overrides, load_config
from sql_cache.core.exceptions import SqlCacheError
from sql_cache.core.executor import QueryExecutor
from sql_cache.core.logging import setup_logging
from sql_cache.core.models import CacheDirective, QueryResult
from sql_cache.core.monitoring import setup_sentry

app = typer.Typer(
    help="sql-cache - cached SQL execution over pooled MySQL connections",
    no_args_is_help=True,
)

DbOption = Annotated[str, typer.Option("--db", "-d", help="Pool name from the config file")]
ParamOption = Annotated[
    list[str] | None,
    typer.Option("--param", "-p", help="Named parameter as key=value (repeatable)"),
]


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sql-cache {__version__}")
        raise typer.Exit()


def build_executor(ctx: typer.Context) -> QueryExecutor:
    return QueryExecutor.from_config(ctx.ensure_object(dict)["config"])


def run_with_executor(
    ctx: typer.Context, operation: Callable[[QueryExecutor], Awaitable[QueryResult]]
) -> QueryResult:
    executor = build_executor(ctx)

    async def runner() -> QueryResult:
        async with executor:
            return await operation(executor)

    return asyncio.run(runner()).raise_for_error()


def output_result(ctx: typer.Context, result: QueryResult) -> None:
    obj = ctx.ensure_object(dict)
    formatter = get_formatter(
        obj.get("format"),
        compact=obj.get("compact", False),
        width=obj.get("width", 40),
    )
    write_output(formatter, result)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable verbose logging"),
    ] = False,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config file"),
    ] = None,
    format: Annotated[
        OutputFormat | None,
        typer.Option("--format", "-f", help="Output format: table|json"),
    ] = None,
    width: Annotated[
        int,
        typer.Option("--width", help="Column width for table format"),
    ] = 40,
    compact: Annotated[
        bool,
        typer.Option("--compact", help="Single-line JSON output"),
    ] = False,
) -> None:
    """sql-cache - cached SQL execution over pooled MySQL connections."""
    setup_logging(verbose)
    config = apply_env_overrides(load_config(config_file))
    setup_sentry(config.sentry_dsn, config.environment)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_file"] = config_file
    ctx.obj["config"] = config
    ctx.obj["format"] = format.value if format else None
    ctx.obj["width"] = width
    ctx.obj["compact"] = compact


@app.command("query")
def query_command(
    ctx: typer.Context,
    sql: Annotated[str, typer.Argument(help="SQL with :name placeholders")],
    db: DbOption,
    param: ParamOption = None,
    cache: Annotated[
        int,
        typer.Option("--cache", "-c", help="Read through the cache, storing for N minutes"),
    ] = 0,
) -> None:
    """Run a row-producing query and print its rows."""
    params = parse_params(param)
    directive = CacheDirective.coerce(cache)
    result = run_with_executor(
        ctx, lambda executor: executor.execute_table(db, sql, params, directive)
    )
    output_result(ctx, result)


@app.command("exec")
def exec_command(
    ctx: typer.Context,
    sql: Annotated[str, typer.Argument(help="Write statement(s) with :name placeholders")],
    db: DbOption,
    param: ParamOption = None,
) -> None:
    """Run a write statement and print affected rows and generated id."""
    params = parse_params(param)
    result = run_with_executor(
        ctx, lambda executor: executor.execute_non_query(db, sql, params)
    )
    output_result(ctx, result)


@app.command("cache-key")
def cache_key_command(
    sql: Annotated[str, typer.Argument(help="SQL template as passed to query")],
    db: DbOption,
    param: ParamOption = None,
) -> None:
    """Print the cache key a query would be stored under."""
    typer.echo(cache_key(db, sql, parse_params(param)))


@app.command("cache-clear")
def cache_clear_command(ctx: typer.Context) -> None:
    """Flush every cached query result."""

    async def clear(executor: QueryExecutor) -> QueryResult:
        return QueryResult(payload=await executor.cache_clear())

    result = run_with_executor(ctx, clear)
    typer.echo("Cache cleared" if result.payload else "No cache configured")


def run() -> None:
    """Entry point with global error handling."""
    try:
        app()
    except SqlCacheError as e:
        sentry_sdk.capture_exception(e)
        typer.echo(f"Error: {e.message}", err=True)
        raise SystemExit(e.exit_code) from None
    except SystemExit:
        raise
    except KeyboardInterrupt:
        raise SystemExit(130) from None
    except Exception as e:
        sentry_sdk.capture_exception(e)
        typer.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from None
