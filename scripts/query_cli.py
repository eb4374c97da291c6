import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from loguru import logger

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from analytics_gateway.modules.query import ClientRegistry, QueryExecutor, get_settings  # noqa: E402


app = typer.Typer(help="Tools for querying the remote analytical service")


def _run(operation: Callable[[QueryExecutor], Awaitable[Any]]) -> Any:
    async def runner() -> Any:
        settings = get_settings()
        registry = ClientRegistry(settings)
        try:
            return await operation(QueryExecutor(registry, settings))
        finally:
            await registry.aclose()

    return asyncio.run(runner())


def _emit(payload: Any, success: bool = True) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
    if not success:
        raise typer.Exit(code=1)


@app.command()
def health(tenant: str = typer.Option("demo", help="Tenant identifier")) -> None:
    """Check connectivity to the remote service."""
    healthy = _run(lambda executor: executor.check_connection(tenant))
    _emit({"healthy": healthy}, success=healthy)


@app.command()
def databases(tenant: str = typer.Option("demo", help="Tenant identifier")) -> None:
    """List databases available to a tenant."""
    result = _run(lambda executor: executor.list_databases(tenant))
    _emit(result.model_dump(exclude_none=True), success=result.success)


@app.command()
def schema(
    database: Optional[str] = typer.Argument(None, help="Database to describe"),
    tenant: str = typer.Option("demo", help="Tenant identifier"),
) -> None:
    """Show the schema of a database."""
    result = _run(lambda executor: executor.get_schema(tenant, database))
    _emit(result.model_dump(exclude_none=True), success=result.success)


@app.command()
def execute(
    query: str = typer.Argument(..., help="Query text, sent verbatim"),
    database: Optional[str] = typer.Option(None, help="Target database"),
    tenant: str = typer.Option("demo", help="Tenant identifier"),
    out: Optional[Path] = typer.Option(None, help="Write the result to this JSON file"),
) -> None:
    """Execute a query and print the normalized result."""
    result = _run(lambda executor: executor.execute_query(tenant, query, database))
    body = result.to_response()

    if out is not None and result.success:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(body, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Result saved to {out}")
        typer.echo(f"{result.row_count} rows saved to {out}")
        return

    _emit(body, success=result.success)


if __name__ == "__main__":
    app()
