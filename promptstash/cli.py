"""PromptStash CLI tool (stashctl)."""

import json
from typing import Optional

import typer

from promptstash.core.config import settings

app = typer.Typer(name="stashctl", help="PromptStash CLI")
db_app = typer.Typer(help="Database management commands")
versions_app = typer.Typer(help="Version history maintenance")
app.add_typer(db_app, name="db")
app.add_typer(versions_app, name="versions")


DatabaseUrl = typer.Option(None, "--database-url", help="Overrides DATABASE_URL")


def _engine(database_url: Optional[str]):
    from promptstash.db.session import build_engine
    return build_engine(database_url or settings.DATABASE_URL, settings)


@db_app.command("init")
def db_init(database_url: Optional[str] = DatabaseUrl):
    """Create all tables, constraints and indexes that don't exist yet."""
    import promptstash.models  # noqa: F401 registers every table on Base
    from promptstash.db.base import Base

    engine = _engine(database_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    typer.echo(f"Schema ready on {engine.url.render_as_string(hide_password=True)}")


@versions_app.command("check")
def versions_check(
    database_url: Optional[str] = DatabaseUrl,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Report duplicate version numbers and files out of sync with their latest version."""
    from promptstash.db.session import make_session_factory
    from promptstash.services.integrity_service import integrity_service

    engine = _engine(database_url)
    try:
        with make_session_factory(engine)() as db:
            report = integrity_service.check(db)
    finally:
        engine.dispose()

    if as_json:
        typer.echo(json.dumps(report))
    else:
        for dup in report["duplicates"]:
            typer.echo(f"duplicate: file {dup['file_id']} v{dup['version']} x{dup['count']}")
        for drift in report["drift"]:
            typer.echo(
                f"drift: file {drift['file_id']} ({drift['name']}) differs from "
                f"v{drift['latest_version']}"
            )
        if report["ok"]:
            typer.echo("Version history is consistent")

    if not report["ok"]:
        raise typer.Exit(code=1)


@versions_app.command("repair")
def versions_repair(
    database_url: Optional[str] = DatabaseUrl,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the renumbering without applying it"),
):
    """Renumber duplicate versions by creation time (databases restored without the unique constraint)."""
    from promptstash.db.session import make_session_factory
    from promptstash.services.integrity_service import integrity_service

    engine = _engine(database_url)
    try:
        with make_session_factory(engine)() as db:
            changes = integrity_service.repair_duplicate_versions(db, dry_run=dry_run)
    finally:
        engine.dispose()

    if not changes:
        typer.echo("No duplicate versions found")
        return

    prefix = "[dry run] " if dry_run else ""
    for change in changes:
        typer.echo(
            f"{prefix}file {change['file_id']}: version row {change['version_id']} "
            f"v{change['from_version']} -> v{change['to_version']}"
        )
    files = len({change["file_id"] for change in changes})
    verb = "Would renumber" if dry_run else "Renumbered"
    typer.echo(f"{verb} {len(changes)} version(s) across {files} file(s)")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
    workers: int = typer.Option(1, help="Worker processes"),
):
    """Start the API server."""
    import uvicorn
    uvicorn.run("promptstash.main:app", host=host, port=port, reload=reload, workers=workers)


if __name__ == "__main__":
    app()
