"""kin CLI: operator console for inspecting and maintaining kinstore databases."""

from __future__ import annotations

from typing import Optional

import typer

from kinstore.cli import export_cmd, import_cmd, info, remove

app = typer.Typer(
    name="kin",
    help="kin — operator console for inspecting and maintaining kinstore databases.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str | None = None
    storage_uri: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("kinstore")
        except Exception:
            v = "unknown"
        print(f"kin {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="KINSTORE_DB",
        help="SQLite database file path (default: kinstore.db)",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="KINSTORE_STORAGE_URI",
        help="Storage URI (e.g. sqlite:///kinstore.db)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all kin commands."""
    from kinstore.storage import parse_storage_target

    if storage_uri:
        try:
            parse_storage_target(db_path=db, storage_uri=storage_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    state.db = db
    state.storage_uri = storage_uri
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="info")(info.info_cmd)
app.command(name="export")(export_cmd.export_cmd)
app.command(name="import")(import_cmd.import_cmd)
app.command(name="remove")(remove.remove_cmd)


def main() -> None:
    """Entry point for the kin CLI."""
    app()
