"""
CLI interface for the stamp collection.

Usage:
    stampbook scan passport.jpg
    stampbook list --sort visit_count
    stampbook login --uid UID --token ID_TOKEN
    stampbook sync
"""

import json
import logging
import os
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .config import StampConfig, get_home_directory, load_or_create_config
from .errors import ExtractionError, RemoteCollectionError, log_exception
from .extraction import create_extractor, read_image
from .firestore import FirestoreCollectionClient
from .identity import AuthSession, Identity, SessionFile
from .listing import SORT_KEYS, filter_records, sort_records, summarize_collection
from .local_cache import LocalCache
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .remote import RemoteCollection
from .store import CollectionStore
from .types import StampRecord, coerce_visit_date

# Configure quiet mode by default (suppress verbose library output)
# Set STAMPBOOK_VERBOSE=1 to enable debug mode via environment
if os.environ.get("STAMPBOOK_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


# Global state for CLI options
_json_output = False
_home_override: Optional[Path] = None

# camelCase aliases accepted by --sort
_SORT_ALIASES = {
    "lastVisitDate": "last_visit_date",
    "visitCount": "visit_count",
    "storeName": "store_name",
}


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"stampbook {version('stampbook')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _home_callback(value: Optional[Path]):
    global _home_override
    if value is not None:
        _home_override = value


app = typer.Typer(
    name="stampbook",
    help="Collect store passport stamps from photos.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    home: Annotated[Optional[Path], typer.Option(
        "--home",
        envvar="STAMPBOOK_HOME",
        help="Home directory for config, cache and session",
        callback=_home_callback,
        is_eager=True,
    )] = None,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Collect store passport stamps from photos."""


# -----------------------------------------------------------------------------
# Store wiring
# -----------------------------------------------------------------------------

def _get_config() -> StampConfig:
    home = _home_override or get_home_directory()
    try:
        return load_or_create_config(home)
    except (ValueError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _build_remote(config: StampConfig, sessions: SessionFile) -> Optional[RemoteCollection]:
    if not config.remote.enabled:
        return None
    client = FirestoreCollectionClient(
        config.remote.project_id,
        sessions.load,
        api_url=config.remote.api_url,
        database=config.remote.database,
        timeout=config.sync.save_timeout,
    )
    return RemoteCollection(
        client,
        load_timeout=config.sync.load_timeout,
        save_timeout=config.sync.save_timeout,
        batch_size=config.sync.batch_size,
    )


@contextmanager
def _open_store(config: Optional[StampConfig] = None) -> Iterator[CollectionStore]:
    """Activated store for the current session; closed on exit."""
    config = config or _get_config()
    ops_handler = configure_ops_log(config.path)
    sessions = SessionFile(config.session_path)
    session = sessions.load()
    identity = session.identity if session else Identity.anonymous()

    cache = LocalCache(config.local_cache_path)
    try:
        remote = _build_remote(config, sessions)
    except ValueError as e:
        cache.close()
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if not identity.is_anonymous and remote is None:
        cache.close()
        typer.echo(
            "Error: signed in, but no remote project is configured "
            f"(set remote.project_id in {config.config_path})",
            err=True,
        )
        raise typer.Exit(1)

    store = CollectionStore(cache, remote, debounce_seconds=config.sync.debounce_seconds)
    try:
        store.activate(identity)
        yield store
    finally:
        store.close()
        if remote is not None:
            remote.close()
        cache.close()
        logging.getLogger("stampbook").removeHandler(ops_handler)
        ops_handler.close()


def _fail(exc: Exception, context: str) -> None:
    log_path = log_exception(exc, context, home=_home_override)
    typer.echo(f"Error: {exc}", err=True)
    typer.echo(f"(details in {log_path})", err=True)
    raise typer.Exit(1)


def _push(store: CollectionStore, context: str) -> None:
    """Wait for background writes, then push pending changes."""
    store.wait_idle()
    try:
        store.request_sync()
    except RemoteCollectionError as e:
        _fail(e, context)


def _warn_if_dirty(store: CollectionStore) -> None:
    if store.is_dirty:
        typer.echo("Warning: changes are not synced yet; run `stampbook sync` to retry", err=True)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_record_line(record: StampRecord, id_width: int = 0) -> str:
    count = str(record.visit_count) if record.visit_count is not None else "?"
    date = record.last_visit_date or "----/--/--"
    return f"{record.id:<{id_width}}  {date}  x{count:>3}  {record.prefecture or '-'}  {record.store_name}"


def _format_records(records: list[StampRecord]) -> str:
    if _json_output:
        return json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)
    if not records:
        return "No stamps yet."
    width = max(len(r.id) for r in records)
    return "\n".join(_format_record_line(r, width) for r in records)


def _find_record(store: CollectionStore, record_id: str) -> StampRecord:
    record = store.get(record_id)
    if record is None:
        # Accept a unique id prefix
        matches = [r for r in store.records if r.id.startswith(record_id)]
        if len(matches) == 1:
            return matches[0]
        typer.echo(f"Error: no stamp with id {record_id!r}", err=True)
        raise typer.Exit(1)
    return record


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def scan(
    image: Annotated[Optional[Path], typer.Argument(
        help="Photo of a passport page (single stamp or grid)",
    )] = None,
    mock: Annotated[bool, typer.Option(
        "--mock", help="Use sample stamps instead of calling the vision model",
    )] = False,
):
    """Extract stamps from a photo and merge them into the collection."""
    if image is None and not mock:
        typer.echo("Error: specify an image (or --mock)", err=True)
        raise typer.Exit(1)

    config = _get_config()
    try:
        extractor = create_extractor(
            config.extraction.provider,
            model=config.extraction.model,
            mock=mock,
        )
        data, mime_type = (b"", "image/jpeg") if image is None else read_image(image)
        candidates = extractor.extract(data, mime_type)
    except (ExtractionError, ValueError) as e:
        _fail(e, "scan")

    with _open_store(config) as store:
        tally = store.ingest(candidates)
        _push(store, "scan")
        if _json_output:
            typer.echo(json.dumps(tally.to_dict()))
        else:
            typer.echo(
                f"Found {len(candidates)} stamps: {tally.added} added, "
                f"{tally.updated} updated, {tally.skipped} unchanged"
            )
        _warn_if_dirty(store)


@app.command("list")
def list_stamps(
    sort: Annotated[str, typer.Option(
        "--sort", "-s", help=f"Sort key: {', '.join(SORT_KEYS)}",
    )] = "last_visit_date",
    ascending: Annotated[bool, typer.Option(
        "--asc", help="Ascending order (default descending)",
    )] = False,
    search: Annotated[str, typer.Option(
        "--search", "-q", help="Only stamps whose store name or prefecture contains this",
    )] = "",
):
    """List collected stamps."""
    key = _SORT_ALIASES.get(sort, sort)
    if key not in SORT_KEYS:
        typer.echo(f"Error: unknown sort key {sort!r}", err=True)
        raise typer.Exit(1)
    with _open_store() as store:
        records = store.records
        matches = filter_records(records, search)
        typer.echo(_format_records(sort_records(matches, key, descending=not ascending)))
        if search.strip() and not _json_output:
            typer.echo(f"{len(matches)} of {len(records)} stamps match {search.strip()!r}")


@app.command()
def show(
    id: Annotated[str, typer.Argument(help="Stamp id (or unique prefix)")],
):
    """Show one stamp."""
    with _open_store() as store:
        record = _find_record(store, id)
        typer.echo(json.dumps(record.to_dict(), ensure_ascii=False, indent=2))


@app.command()
def edit(
    id: Annotated[str, typer.Argument(help="Stamp id (or unique prefix)")],
    visit_count: Annotated[Optional[int], typer.Option(
        "--visit-count", min=0, help="Number of visits",
    )] = None,
    last_visit: Annotated[Optional[str], typer.Option(
        "--last-visit", help="Last visit date (YYYY/MM/DD)",
    )] = None,
    prefecture: Annotated[Optional[str], typer.Option("--prefecture")] = None,
    address: Annotated[Optional[str], typer.Option("--address")] = None,
    name: Annotated[Optional[str], typer.Option("--name", help="Store name")] = None,
):
    """Correct fields of a stamp."""
    changes = {}
    if visit_count is not None:
        changes["visit_count"] = visit_count
    if last_visit is not None:
        changes["last_visit_date"] = coerce_visit_date(last_visit)
    if prefecture is not None:
        changes["prefecture"] = prefecture
    if address is not None:
        changes["address"] = address
    if name is not None:
        changes["store_name"] = name
    if not changes:
        typer.echo("Nothing to change", err=True)
        raise typer.Exit(1)

    with _open_store() as store:
        record = _find_record(store, id)
        updated = store.update(replace(record, **changes))
        _push(store, "edit")
        typer.echo(_format_records([updated]))
        _warn_if_dirty(store)


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Stamp id (or unique prefix)")],
):
    """Delete a stamp."""
    with _open_store() as store:
        record = _find_record(store, id)
        store.delete(record.id)
        _push(store, "delete")
        typer.echo(f"Deleted {record.store_name}")


@app.command()
def sync():
    """Write the collection to the remote store now."""
    with _open_store() as store:
        if store.identity is None or store.identity.is_anonymous:
            typer.echo("Not signed in; the collection is stored locally only.")
            return
        try:
            # A fresh process only knows the remote state, so push everything
            store.request_sync(force=True)
        except RemoteCollectionError as e:
            _fail(e, "sync")
        typer.echo(f"Synced {len(store.records)} stamps")


@app.command()
def status():
    """Show identity, sync state and progress."""
    config = _get_config()
    with _open_store(config) as store:
        summary = summarize_collection(store.records)
        info = {
            "identity": str(store.identity),
            "state": store.state.value,
            "stamps": len(store.records),
            "stores": summary.stores,
            "prefectures": summary.prefectures,
            "visits": summary.total_visits,
            "remote": config.remote.project_id or None,
            "home": str(config.path),
        }
        if _json_output:
            typer.echo(json.dumps(info, ensure_ascii=False))
            return
        for key, value in info.items():
            typer.echo(f"{key + ':':<13}{value if value is not None else '-'}")


@app.command()
def login(
    uid: Annotated[str, typer.Option("--uid", help="Authenticated user id")],
    token: Annotated[str, typer.Option("--token", help="ID token for the remote store")],
):
    """Sign in with an existing session; guest stamps are migrated."""
    config = _get_config()
    SessionFile(config.session_path).save(AuthSession(uid, token))
    with _open_store(config) as store:
        typer.echo(f"Signed in as {uid}: {len(store.records)} stamps")
        _warn_if_dirty(store)


@app.command()
def logout():
    """Sign out; later scans are stored locally."""
    config = _get_config()
    SessionFile(config.session_path).clear()
    typer.echo("Signed out")


def main():
    app()


if __name__ == "__main__":
    main()
