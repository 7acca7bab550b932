"""CLI commands for beatmap library operations.

Provides commands for managing the library:
  - import: Import .osz archives or song folders
  - import-stable: Import every song folder of an osu!stable install
  - list: List usable beatmap sets
  - show: Display one set with its beatmaps and files
  - delete / undelete: Soft-delete or restore a set
  - delete-all: Soft-delete every usable set
  - gc: Purge deleted sets and unreferenced blobs
  - stats: Catalog and file store counters
  - reset: Drop every set and blob
"""

from __future__ import annotations

import logging
from typing import List, Optional

import typer

from BeatmapLibrary.bootstrap import LibraryBootstrap
from BeatmapLibrary.config.loader import load_config
from BeatmapLibrary.config.models import LibraryConfig
from BeatmapLibrary.errors import BeatmapLibraryError
from BeatmapLibrary.models import BeatmapSetInfo

logger = logging.getLogger(__name__)
app = typer.Typer(help="Beatmap library management commands")

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Config file path (YAML/JSON)")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
) -> None:
    """Manage a local beatmap library."""
    if log_level:
        logging.basicConfig(level=log_level.upper())


def _load(config_path: Optional[str]) -> LibraryConfig:
    config = load_config(path=config_path)
    logging.getLogger("BeatmapLibrary").setLevel(config.log_level)
    return config


def _find_set(bootstrap: LibraryBootstrap, set_id: int) -> BeatmapSetInfo:
    beatmap_set = bootstrap.manager.query_beatmap_set(lambda s: s.id == set_id)
    if beatmap_set is None:
        typer.echo(f"No beatmap set with id {set_id}", err=True)
        raise typer.Exit(1)
    return beatmap_set


def _describe(beatmap_set: BeatmapSetInfo) -> str:
    metadata = beatmap_set.metadata
    title = f"{metadata.artist} - {metadata.title}" if metadata else "(no metadata)"
    flags = " [deleted]" if beatmap_set.delete_pending else ""
    flags += " [protected]" if beatmap_set.protected else ""
    return f"{beatmap_set.id:>6}  {title}{flags}"


@app.command("import")
def import_cmd(
    paths: List[str] = typer.Argument(..., help="Archives (.osz) or song folders"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Import beatmap archives or song folders.

    Failing archives are logged and skipped; the rest are still imported.
    """
    try:
        config = _load(config_path)
        with LibraryBootstrap(config) as bootstrap:
            before = len(bootstrap.manager.get_all_usable_beatmap_sets(populate=False))
            notification = bootstrap.manager.import_paths(*paths)
            after = len(bootstrap.manager.get_all_usable_beatmap_sets(populate=False))
            typer.echo(f"✓ {notification.text}")
            typer.echo(f"✓ {after - before} new set(s), {after} usable in total")
    except BeatmapLibraryError as e:
        typer.echo(f"✗ Error: {e}", err=True)
        raise typer.Exit(1)


@app.command("import-stable")
def import_stable(config_path: Optional[str] = _CONFIG_OPTION) -> None:
    """Import every song folder found in an osu!stable installation."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        notification = bootstrap.manager.import_from_stable()
        if notification is None:
            typer.echo("✗ No osu!stable installation found", err=True)
            raise typer.Exit(1)
        typer.echo(f"✓ {notification.text}")


@app.command("list")
def list_cmd(
    include_deleted: bool = typer.Option(
        False, "--include-deleted", help="Also list sets pending deletion"
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List beatmap sets."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        if include_deleted:
            sets = list(bootstrap.catalog.query(BeatmapSetInfo))
        else:
            sets = bootstrap.manager.get_all_usable_beatmap_sets(populate=False)

        if not sets:
            typer.echo("No beatmap sets")
            return
        for beatmap_set in sets:
            typer.echo(_describe(beatmap_set))


@app.command()
def show(
    set_id: int = typer.Argument(..., help="Beatmap set ID"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Display a beatmap set with its beatmaps and files."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        beatmap_set = _find_set(bootstrap, set_id)
        typer.echo(_describe(beatmap_set))
        typer.echo(f"  Hash: {beatmap_set.hash}")
        if beatmap_set.online_beatmap_set_id:
            typer.echo(f"  Online ID: {beatmap_set.online_beatmap_set_id}")
        typer.echo(f"\n  {len(beatmap_set.beatmaps)} beatmap(s):")
        for beatmap in beatmap_set.beatmaps:
            ruleset = beatmap.ruleset.short_name if beatmap.ruleset else beatmap.ruleset_id
            typer.echo(
                f"    [{beatmap.version}] {ruleset} {beatmap.star_difficulty:.2f}* {beatmap.path}"
            )
        typer.echo(f"\n  {len(beatmap_set.files)} file(s):")
        for record in beatmap_set.files:
            typer.echo(f"    {record.file.hash[:12]}  {record.filename}")


@app.command()
def delete(
    set_id: int = typer.Argument(..., help="Beatmap set ID"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Soft-delete a beatmap set."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        beatmap_set = _find_set(bootstrap, set_id)
        if bootstrap.manager.delete(beatmap_set):
            typer.echo(f"✓ Deleted set {set_id}")
        else:
            typer.echo(f"Set {set_id} was already deleted")


@app.command()
def undelete(
    set_id: int = typer.Argument(..., help="Beatmap set ID"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Restore a soft-deleted beatmap set."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        beatmap_set = _find_set(bootstrap, set_id)
        if bootstrap.manager.undelete(beatmap_set):
            typer.echo(f"✓ Restored set {set_id}")
        else:
            typer.echo(f"Set {set_id} was not deleted")


@app.command("delete-all")
def delete_all(config_path: Optional[str] = _CONFIG_OPTION) -> None:
    """Soft-delete every usable beatmap set."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        notification = bootstrap.manager.delete_all()
        if notification is None:
            typer.echo("No beatmap sets to delete")
            return
        typer.echo(f"✓ {notification.text}")


@app.command()
def gc(
    dry_run: bool = typer.Option(
        True, "--dry-run/--apply", help="Dry-run mode (default: true)"
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Purge deleted sets and blobs nothing references any more.

    Use --dry-run to preview, then --apply to execute.
    """
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        pending = bootstrap.catalog.stats()["delete_pending_sets"]
        removed = bootstrap.manager.purge(dry_run=dry_run)
        if dry_run:
            typer.echo(f"[DRY-RUN] {pending} deleted set(s) would be purged")
            typer.echo(f"[DRY-RUN] {removed} unreferenced blob(s) would be removed")
            typer.echo("Use --apply to execute")
        else:
            typer.echo(f"✓ Purged {pending} deleted set(s) and {removed} blob(s)")


@app.command()
def stats(config_path: Optional[str] = _CONFIG_OPTION) -> None:
    """Display catalog and file store statistics."""
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        for key, value in {**bootstrap.catalog.stats(), **bootstrap.files.stats()}.items():
            typer.echo(f"{key}: {value}")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", help="Confirm dropping every set and blob"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Drop every beatmap set and stored file."""
    if not yes:
        typer.echo("Refusing to reset without --yes", err=True)
        raise typer.Exit(1)
    config = _load(config_path)
    with LibraryBootstrap(config) as bootstrap:
        bootstrap.manager.reset()
        typer.echo("✓ Library reset")


if __name__ == "__main__":
    app()
