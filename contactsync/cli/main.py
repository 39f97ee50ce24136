"""
Command-line interface for contactsync.

Provides CLI commands for managing contact sources, syncing them, and
searching recipient suggestions.

Usage:
    # Show help
    contactsync --help

    # Add sources
    contactsync sources add "Work" --type carddav --url https://dav.example.com \\
        --username alice --password secret
    contactsync sources add "Personal" --type google --account-id alice@gmail.com

    # Run synchronization
    contactsync sync --all
    contactsync sync SOURCE_ID --verbose

    # Search suggestions
    contactsync search ali
"""

import sys
from pathlib import Path
from typing import Any, Optional

import click

from contactsync import __version__
from contactsync.api.batch import ProtocolError, SyncCancelledError
from contactsync.api.google_people import GoogleOtherContactsSearcher
from contactsync.autocomplete import ContactSearcher, LocalContactStore, VCardScanner
from contactsync.auth.credentials import (
    CredentialError,
    CredentialProvider,
    EnvCredentialProvider,
)
from contactsync.cli.formatters import (
    show_addressbooks,
    show_discovered,
    show_source_errors,
    show_sources,
    show_stats,
    show_suggestions,
    show_sync_report,
)
from contactsync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from contactsync.storage.db import ContactDatabase, StoreError
from contactsync.storage.models import VALID_SOURCE_TYPES, SourceConfig, SourceType
from contactsync.storage.sources import ContactSourceStore, SourceNotFoundError
from contactsync.sync.engine import SyncError, SyncOrchestrator
from contactsync.utils import resolve_config_dir, resolve_database_path
from contactsync.utils.logging import cleanup_old_logs, get_logger, setup_logging


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / DEFAULT_CONFIG_FILE


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="contactsync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACTSYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contactsync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CONTACTSYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.option(
    "--database",
    "-d",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    help="SQLite database path (default: <config-dir>/contacts.db).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
    database: str | None,
) -> None:
    """
    Multi-source contact sync.

    Pulls contacts from CardDAV servers, Google People and Microsoft Graph
    into a local store, and suggests recipients from synced contacts, send
    history and vCard files on disk.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    # A broken config file should not lock the user out of the CLI
    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    config = ConfigLoader.with_defaults(config)
    if database:
        config["database_path"] = database
    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    if config.get("log_dir"):
        log_dir = Path(config["log_dir"])
    else:
        log_dir = resolved_config_dir / "logs"
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Service Construction
# =============================================================================


def get_source_store(ctx: click.Context) -> ContactSourceStore:
    """Open (and create if needed) the contact database."""
    obj = ctx.find_root().obj
    if "source_store" not in obj:
        config = obj["config"]
        db_path = resolve_database_path(obj["config_dir"], config.get("database_path"))
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = ContactDatabase(str(db_path))
        db.initialize()
        obj["database"] = db
        obj["source_store"] = ContactSourceStore(db)
    store: ContactSourceStore = obj["source_store"]
    return store


def google_searchers(
    source_store: ContactSourceStore, credentials: CredentialProvider
) -> list[GoogleOtherContactsSearcher]:
    """Other-contacts searchers for the enabled Google sources with a token."""
    logger = get_logger(__name__)
    searchers: list[GoogleOtherContactsSearcher] = []
    for source in source_store.list_sources():
        if source.type_value != SourceType.GOOGLE.value or not source.enabled:
            continue
        try:
            if source.account_id:
                token = credentials.get_account_token(source.account_id)
            else:
                token = credentials.get_source_token(source.id)
        except CredentialError as e:
            logger.debug(f"Skipping Google search for {source.name}: {e}")
            continue
        searchers.append(GoogleOtherContactsSearcher(token))
    return searchers


def get_local_store(ctx: click.Context) -> LocalContactStore:
    """Build the autocomplete store searching every contact source."""
    obj = ctx.find_root().obj
    if "local_store" not in obj:
        config = obj["config"]
        source_store = get_source_store(ctx)
        scanner = VCardScanner(
            paths=config.get("vcard_paths"), ttl=config["vcard_cache_ttl"]
        )
        searchers: list[ContactSearcher] = [source_store]
        if config["google_other_contacts"]:
            searchers.extend(google_searchers(source_store, EnvCredentialProvider()))
        obj["local_store"] = LocalContactStore(
            obj["database"], vcard_scanner=scanner, searchers=searchers
        )
    local_store: LocalContactStore = obj["local_store"]
    return local_store


def get_orchestrator(ctx: click.Context) -> SyncOrchestrator:
    """Build the sync orchestrator with environment credentials."""
    obj = ctx.find_root().obj
    if "orchestrator" not in obj:
        config = obj["config"]
        obj["orchestrator"] = SyncOrchestrator(
            get_source_store(ctx),
            EnvCredentialProvider(),
            http_timeout=config["http_timeout"],
            sync_timeout=config["sync_timeout"],
            google_page_size=config["google_page_size"],
            db_max_retries=config["db_max_retries"],
            db_retry_base_delay=config["db_retry_base_delay"],
        )
    orchestrator: SyncOrchestrator = obj["orchestrator"]
    return orchestrator


def resolve_password(source_id: str, password: Optional[str]) -> str:
    """Use an explicit password, else the one from the environment."""
    if password:
        return password
    return EnvCredentialProvider().get_carddav_password(source_id)


# =============================================================================
# Sources Commands
# =============================================================================


@cli.group("sources")
def sources_group() -> None:
    """Manage remote contact sources."""


@sources_group.command("list")
@click.pass_context
def sources_list_command(ctx: click.Context) -> None:
    """List configured contact sources."""
    try:
        show_sources(get_source_store(ctx).list_sources())
    except StoreError as e:
        fail(str(e))


@sources_group.command("add")
@click.argument("name")
@click.option(
    "--type",
    "-t",
    "source_type",
    required=True,
    type=click.Choice(sorted(VALID_SOURCE_TYPES), case_sensitive=False),
    help="Kind of contact provider.",
)
@click.option("--url", default="", help="CardDAV server URL.")
@click.option("--username", "-u", default="", help="CardDAV username.")
@click.option(
    "--password",
    "-p",
    default=None,
    help="CardDAV password, used only for addressbook discovery (never stored).",
)
@click.option(
    "--account-id",
    default="",
    help="Email account linked to an OAuth source.",
)
@click.option(
    "--addressbook",
    "-a",
    "addressbooks",
    multiple=True,
    help="CardDAV addressbook path to enable (repeatable).",
)
@click.option(
    "--sync-interval",
    type=click.IntRange(min=0),
    default=0,
    help="Minutes between scheduled syncs (0 = manual only).",
)
@click.option("--disabled", is_flag=True, help="Create the source disabled.")
@click.pass_context
def sources_add_command(
    ctx: click.Context,
    name: str,
    source_type: str,
    url: str,
    username: str,
    password: Optional[str],
    account_id: str,
    addressbooks: tuple[str, ...],
    sync_interval: int,
    disabled: bool,
) -> None:
    """
    Add a contact source.

    For a CardDAV source without --addressbook, every addressbook found on
    the server is enabled. Discovery only runs when --password is given.

    Examples:

        contactsync sources add Work -t carddav --url https://dav.example.com \\
            -u alice -p secret

        contactsync sources add Personal -t google --account-id alice@gmail.com
    """
    logger = get_logger(__name__)
    store = get_source_store(ctx)

    paths = list(addressbooks)
    try:
        if source_type == SourceType.CARDDAV.value and not paths and password:
            found = get_orchestrator(ctx).discover_addressbooks(url, username, password)
            show_discovered(found)
            paths = [info.path for info in found]

        source = store.create_source(
            SourceConfig(
                name=name,
                type=source_type,
                url=url,
                username=username,
                account_id=account_id,
                enabled=not disabled,
                sync_interval=sync_interval,
                enabled_addressbooks=paths,
            )
        )
    except (ProtocolError, StoreError) as e:
        logger.error(f"Failed to add source: {e}")
        fail(str(e))
        return

    click.echo(click.style(f"Added source {source.name} ({source.id}).", fg="green"))
    if source_type == SourceType.CARDDAV.value and not paths:
        click.echo(
            "No addressbooks enabled yet. Run "
            f"'contactsync discover {source.url} -u {source.username}' "
            f"to list them, then 'contactsync sources update {source.id} -a PATH'."
        )


@sources_group.command("update")
@click.argument("source_id")
@click.option("--name", default=None, help="New display name.")
@click.option("--url", default=None, help="New CardDAV server URL.")
@click.option("--username", "-u", default=None, help="New CardDAV username.")
@click.option(
    "--sync-interval",
    type=click.IntRange(min=0),
    default=None,
    help="Minutes between scheduled syncs (0 = manual only).",
)
@click.option(
    "--enable/--disable", "enabled", default=None, help="Enable or disable the source."
)
@click.option(
    "--addressbook",
    "-a",
    "addressbooks",
    multiple=True,
    help="Replace the enabled CardDAV addressbooks (repeatable).",
)
@click.pass_context
def sources_update_command(
    ctx: click.Context,
    source_id: str,
    name: Optional[str],
    url: Optional[str],
    username: Optional[str],
    sync_interval: Optional[int],
    enabled: Optional[bool],
    addressbooks: tuple[str, ...],
) -> None:
    """Update a contact source. Unset options keep their current value."""
    store = get_source_store(ctx)
    try:
        source = store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"source not found: {source_id}")

        updated = store.update_source(
            source_id,
            SourceConfig(
                name=name if name is not None else source.name,
                type=source.type,
                url=url if url is not None else source.url,
                username=username if username is not None else source.username,
                account_id=source.account_id or "",
                enabled=enabled if enabled is not None else source.enabled,
                sync_interval=(
                    sync_interval if sync_interval is not None else source.sync_interval
                ),
                enabled_addressbooks=list(addressbooks),
            ),
        )
    except StoreError as e:
        fail(str(e))
        return

    click.echo(click.style(f"Updated source {updated.name}.", fg="green"))


@sources_group.command("remove")
@click.argument("source_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def sources_remove_command(ctx: click.Context, source_id: str, yes: bool) -> None:
    """Remove a source with its addressbooks and synced contacts."""
    if not yes:
        click.confirm(
            f"Remove source {source_id} and all of its synced contacts?", abort=True
        )
    try:
        get_source_store(ctx).delete_source(source_id)
    except StoreError as e:
        fail(str(e))
        return
    click.echo(click.style(f"Removed source {source_id}.", fg="green"))


@sources_group.command("errors")
@click.pass_context
def sources_errors_command(ctx: click.Context) -> None:
    """Show sources whose last sync failed."""
    try:
        show_source_errors(get_source_store(ctx).get_sources_with_errors())
    except StoreError as e:
        fail(str(e))


@sources_group.command("clear-error")
@click.argument("source_id")
@click.pass_context
def sources_clear_error_command(ctx: click.Context, source_id: str) -> None:
    """Clear the recorded sync error of a source."""
    try:
        get_source_store(ctx).clear_source_error(source_id)
    except StoreError as e:
        fail(str(e))
        return
    click.echo(click.style(f"Cleared error for {source_id}.", fg="green"))


@sources_group.command("stats")
@click.pass_context
def sources_stats_command(ctx: click.Context) -> None:
    """Show contact store statistics."""
    try:
        stats = get_source_store(ctx).get_stats()
        local_count = get_local_store(ctx).count()
    except StoreError as e:
        fail(str(e))
        return
    show_stats(stats, local_count)


@sources_group.command("due")
@click.pass_context
def sources_due_command(ctx: click.Context) -> None:
    """List enabled sources whose sync interval has elapsed."""
    try:
        show_sources(get_source_store(ctx).get_sources_due_for_sync())
    except StoreError as e:
        fail(str(e))


# =============================================================================
# Addressbooks Commands
# =============================================================================


@cli.group("addressbooks")
def addressbooks_group() -> None:
    """Manage the addressbooks of a source."""


@addressbooks_group.command("list")
@click.argument("source_id")
@click.pass_context
def addressbooks_list_command(ctx: click.Context, source_id: str) -> None:
    """List a source's addressbooks."""
    store = get_source_store(ctx)
    try:
        if store.get_source(source_id) is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        show_addressbooks(store.list_addressbooks(source_id))
    except StoreError as e:
        fail(str(e))


def _set_addressbook_enabled(
    ctx: click.Context, addressbook_id: str, enabled: bool
) -> None:
    try:
        get_source_store(ctx).set_addressbook_enabled(addressbook_id, enabled)
    except StoreError as e:
        fail(str(e))
        return
    state = "Enabled" if enabled else "Disabled"
    click.echo(click.style(f"{state} addressbook {addressbook_id}.", fg="green"))


@addressbooks_group.command("enable")
@click.argument("addressbook_id")
@click.pass_context
def addressbooks_enable_command(ctx: click.Context, addressbook_id: str) -> None:
    """Include an addressbook in sync and search."""
    _set_addressbook_enabled(ctx, addressbook_id, True)


@addressbooks_group.command("disable")
@click.argument("addressbook_id")
@click.pass_context
def addressbooks_disable_command(ctx: click.Context, addressbook_id: str) -> None:
    """Exclude an addressbook from sync and search."""
    _set_addressbook_enabled(ctx, addressbook_id, False)


# =============================================================================
# CardDAV Commands
# =============================================================================


@cli.command("discover")
@click.argument("url")
@click.option("--username", "-u", required=True, help="CardDAV username.")
@click.option(
    "--password", "-p", required=True, prompt=True, hide_input=True, help="Password."
)
@click.pass_context
def discover_command(ctx: click.Context, url: str, username: str, password: str) -> None:
    """
    Discover the addressbooks on a CardDAV server.

    Nothing is saved.

    Example:

        contactsync discover https://dav.example.com -u alice
    """
    try:
        found = get_orchestrator(ctx).discover_addressbooks(url, username, password)
    except ProtocolError as e:
        fail(str(e))
        return
    show_discovered(found)


@cli.command("test-connection")
@click.argument("source_id")
@click.option("--password", "-p", default=None, help="Password (default: environment).")
@click.pass_context
def test_connection_command(
    ctx: click.Context, source_id: str, password: Optional[str]
) -> None:
    """Check the connection and credentials of a CardDAV source."""
    store = get_source_store(ctx)
    try:
        source = store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        if source.type != SourceType.CARDDAV:
            fail(f"source {source.name} is not a CardDAV source")
            return
        found = get_orchestrator(ctx).test_connection(
            source.url, source.username, resolve_password(source.id, password)
        )
    except (CredentialError, ProtocolError, StoreError) as e:
        fail(str(e))
        return

    click.echo(click.style("Connection successful.", fg="green"))
    show_discovered(found)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.argument("source_id", required=False)
@click.option("--all", "sync_all", is_flag=True, help="Sync every enabled source.")
@click.option(
    "--due", is_flag=True, help="Sync enabled sources whose interval has elapsed."
)
@click.pass_context
def sync_command(
    ctx: click.Context, source_id: Optional[str], sync_all: bool, due: bool
) -> None:
    """
    Sync contact sources into the local store.

    Credentials come from the environment: CONTACTSYNC_PASSWORD_<SOURCE_ID>
    or CONTACTSYNC_PASSWORD for CardDAV, CONTACTSYNC_TOKEN_<ID> or
    CONTACTSYNC_ACCESS_TOKEN for OAuth sources.

    Examples:

        contactsync sync SOURCE_ID

        contactsync sync --all
    """
    logger = get_logger(__name__)
    if sum([bool(source_id), sync_all, due]) != 1:
        raise click.UsageError("Give exactly one of SOURCE_ID, --all or --due.")

    orchestrator = get_orchestrator(ctx)
    try:
        if source_id:
            show_sync_report(orchestrator.sync_source(source_id))
        elif sync_all:
            for report in orchestrator.sync_all_sources():
                show_sync_report(report)
        else:
            failures = 0
            for source in orchestrator.store.get_sources_due_for_sync():
                try:
                    show_sync_report(orchestrator.sync_source(source.id))
                except SyncError as e:
                    failures += 1
                    click.echo(click.style(f"{source.name}: {e}", fg="red"), err=True)
            if failures:
                sys.exit(1)
    except SyncCancelledError:
        click.echo(click.style("Sync cancelled.", fg="yellow"), err=True)
        sys.exit(1)
    except SyncError as e:
        for report in [e.report, *e.reports]:
            if report is not None:
                show_sync_report(report)
        logger.error(f"Sync failed: {e}")
        fail(str(e))
    except StoreError as e:
        fail(str(e))


# =============================================================================
# Autocomplete Commands
# =============================================================================


@cli.command("search")
@click.argument("query")
@click.option(
    "--limit", "-n", type=click.IntRange(min=1), default=None, help="Maximum results."
)
@click.pass_context
def search_command(ctx: click.Context, query: str, limit: Optional[int]) -> None:
    """Suggest recipients matching QUERY."""
    config = ctx.find_root().obj["config"]
    try:
        results = get_local_store(ctx).search(query, limit or config["search_limit"])
    except StoreError as e:
        fail(str(e))
        return
    show_suggestions(results)


@cli.command("record-sent")
@click.argument("email")
@click.argument("name", required=False, default="")
@click.pass_context
def record_sent_command(ctx: click.Context, email: str, name: str) -> None:
    """Record that mail was sent to EMAIL."""
    try:
        get_local_store(ctx).record_sent(email, name)
    except (ValueError, StoreError) as e:
        fail(str(e))
        return
    click.echo(f"Recorded {email.strip().lower()}.")


@cli.command("forget")
@click.argument("email")
@click.pass_context
def forget_command(ctx: click.Context, email: str) -> None:
    """Remove EMAIL from the send history."""
    try:
        deleted = get_local_store(ctx).delete(email)
    except StoreError as e:
        fail(str(e))
        return
    if not deleted:
        fail(f"no local contact for {email}")
        return
    click.echo(f"Forgot {email.strip().lower()}.")


if __name__ == "__main__":
    cli()
