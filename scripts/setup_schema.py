"""
Schema setup script for the Question Rotation Engine.

Prints or applies the DDL for the `public.questions` table, including the
partial unique indexes that keep at most one current and one next row.
"""

from __future__ import annotations

import sys

import psycopg
import typer

from question_rotation.infrastructure.db_factory import build_dsn, get_sync_connection
from question_rotation.infrastructure.store import SCHEMA_SQL

app = typer.Typer(help="Create the questions table and its indexes in Postgres.")


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _apply_schema(dsn: str) -> None:
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()


@app.command()
def show() -> None:
    """
    Print the DDL without touching the database.
    """
    typer.echo(SCHEMA_SQL.strip())


@app.command()
def apply(
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Override DSN (default built from settings).",
    ),
) -> None:
    """
    Create the table and indexes if they do not exist yet.
    """
    target = _build_dsn(dsn)
    try:
        _apply_schema(target)
    except psycopg.Error as exc:
        typer.echo(f"Schema setup failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo("Schema applied: public.questions")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
