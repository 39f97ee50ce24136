"""CLI output formatting functions.

This module contains functions for displaying sources, addressbooks, sync
reports and autocomplete suggestions on the command line.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import click

if TYPE_CHECKING:
    from contactsync.storage.models import (
        Addressbook,
        AddressbookInfo,
        AutocompleteContact,
        Source,
        SourceError,
    )
    from contactsync.sync.engine import SourceSyncReport


def format_time(value: Optional[datetime]) -> str:
    """Format a timestamp for display in local time."""
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def show_sources(sources: Sequence["Source"]) -> None:
    """Display a list of sources."""
    if not sources:
        click.echo("No contact sources configured.")
        return

    for source in sources:
        state = (
            click.style("enabled", fg="green")
            if source.enabled
            else click.style("disabled", fg="yellow")
        )
        click.echo(f"{source.id}  {source.name} [{source.type_value}] {state}")
        if source.url:
            click.echo(f"    URL: {source.url} (user: {source.username})")
        if source.account_id:
            click.echo(f"    Linked account: {source.account_id}")
        interval = (
            f"every {source.sync_interval} min" if source.sync_interval else "manual"
        )
        click.echo(
            f"    Sync: {interval}, last synced {format_time(source.last_synced_at)}"
        )
        if source.has_error:
            click.echo(
                click.style(
                    f"    Error ({format_time(source.last_error_at)}): "
                    f"{source.last_error}",
                    fg="red",
                )
            )


def show_addressbooks(addressbooks: Sequence["Addressbook"]) -> None:
    """Display the addressbooks of a source."""
    if not addressbooks:
        click.echo("No addressbooks.")
        return

    for addressbook in addressbooks:
        marker = "x" if addressbook.enabled else " "
        checkpoint = "token" if addressbook.sync_token else "no token"
        click.echo(
            f"[{marker}] {addressbook.id}  {addressbook.name}  {addressbook.path}  "
            f"({checkpoint}, last synced {format_time(addressbook.last_synced_at)})"
        )


def show_discovered(addressbooks: Sequence["AddressbookInfo"]) -> None:
    """Display addressbooks found by discovery."""
    click.echo(f"Found {len(addressbooks)} addressbook(s):")
    for info in addressbooks:
        line = f"  {info.name}  {info.path}"
        if info.description:
            line += f"  - {info.description}"
        click.echo(line)


def show_source_errors(errors: Sequence["SourceError"]) -> None:
    """Display sources whose last sync failed."""
    if not errors:
        click.echo(click.style("No sync errors.", fg="green"))
        return

    for error in errors:
        click.echo(
            click.style(f"{error.source_name} ({error.source_id})", fg="red")
            + f"  {format_time(error.error_at)}"
        )
        click.echo(f"    {error.error}")


def show_stats(stats: dict[str, Any], local_count: Optional[int] = None) -> None:
    """Display store statistics."""
    click.echo("Contact store statistics:")
    click.echo(f"  Sources: {stats['total_sources']} ({stats['enabled_sources']} enabled)")
    click.echo(f"  Addressbooks: {stats['total_addressbooks']}")
    click.echo(f"  Synced contacts: {stats['total_contacts']}")
    if local_count is not None:
        click.echo(f"  Local contacts: {local_count}")
    errors = stats["sources_with_errors"]
    color = "red" if errors else "green"
    click.echo("  Sources with errors: " + click.style(str(errors), fg=color))


def show_sync_report(report: "SourceSyncReport") -> None:
    """Display the result of syncing one source."""
    color = "red" if report.has_errors else "green"
    click.echo(click.style(report.summary(), fg=color))
    for error in report.errors:
        click.echo(f"    {error}")


def show_suggestions(contacts: Sequence["AutocompleteContact"]) -> None:
    """Display autocomplete suggestions."""
    if not contacts:
        click.echo("No matches.")
        return

    for contact in contacts:
        name = f"{contact.display_name} " if contact.display_name else ""
        details = f"[{contact.source}"
        if contact.send_count:
            details += f", sent {contact.send_count}x"
        details += "]"
        click.echo(f"{name}<{contact.email}> {click.style(details, dim=True)}")
