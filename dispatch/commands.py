"""Flask CLI commands."""

from __future__ import annotations

import click
from flask.cli import with_appcontext

from dispatch.errors import DispatchError
from dispatch.realtime.tokens import issue_actor_token
from dispatch.services import unit_service


@click.command('create-unit')
@click.option('--name', prompt=True)
@click.option('--type', 'unit_type', type=click.Choice(['patrol', 'moto', 'ambulance']), default='patrol')
@click.option('--plate', default=None)
@with_appcontext
def create_unit(name: str, unit_type: str, plate: str | None) -> None:
    """Register a response unit."""
    try:
        result = unit_service.create_unit(name, unit_type, plate=plate)
    except DispatchError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f'Unit {result["id"]} created.')


@click.command('issue-token')
@click.argument('actor_ref')
@click.option('--role', type=click.Choice(['citizen', 'operator', 'supervisor', 'admin']), default='operator')
@with_appcontext
def issue_token(actor_ref: str, role: str) -> None:
    """Print a bearer token for an actor (local testing and ops tooling)."""
    click.echo(issue_actor_token(actor_ref, role))
