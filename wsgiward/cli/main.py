"""Main CLI entrypoint for wsgiward."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import click

from ..config import Settings, load_declaration
from ..errors import ConfigError, StagingError, ValidationError
from ..events import read_events
from ..orchestrator import Orchestrator
from ..registry import Registry
from ..render import systemd, write_all
from ..spec import validate_batch
from ..state import read_registry_snapshot


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, verbose):
    """wsgiward - stage secrets and build supervised service descriptors for WSGI applications."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    ctx.ensure_object(dict)
    ctx.obj['settings'] = Settings.from_env()


def _json_output(data: Dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=2, sort_keys=True))


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _current_registry(settings: Settings) -> Registry:
    snapshot = read_registry_snapshot(settings.home_path)
    if snapshot is None:
        _fail("No reconciled registry yet; run 'wsgiward reconcile' first")
    return Registry.from_snapshot(snapshot)


def _lookup(settings: Settings, name: str):
    descriptor = _current_registry(settings).get(name)
    if descriptor is None:
        _fail(f"Application {name} is not declared")
    return descriptor


@main.command()
@click.argument('declaration', type=click.Path(dir_okay=False))
@click.pass_context
def validate(ctx, declaration):
    """Validate a declaration file without changing anything."""
    settings = ctx.obj['settings']
    try:
        specs = validate_batch(load_declaration(declaration), runtime_dir=settings.runtime_dir)
    except (ConfigError, ValidationError) as e:
        _fail(str(e))
    click.echo(f"✅ {len(specs)} application(s) valid")
    for spec in specs:
        click.echo(f"  {spec.name}: user={spec.user} binding={spec.binding.key()} database={spec.database}")


@main.command()
@click.argument('declaration', type=click.Path(dir_okay=False))
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.pass_context
def reconcile(ctx, declaration, output_json):
    """Reconcile the registry with a declaration file."""
    settings = ctx.obj['settings']
    try:
        items = load_declaration(declaration)
        result = Orchestrator.from_state(settings).reconcile(items)
    except (ConfigError, ValidationError, StagingError) as e:
        if output_json:
            _json_output({'error': str(e)})
            sys.exit(1)
        _fail(f"Reconcile failed: {e}")

    if output_json:
        _json_output(result.to_dict())
        return

    click.echo(f"✅ Reconcile {result.reconcile_id}: {len(result.registry)} application(s)")
    for name in sorted(result.registry.names()):
        click.echo(f"  {name}")
    for warning in result.warnings:
        click.echo(click.style(f"⚠️  {warning}", fg='yellow'))
    for name in result.removed_names:
        click.echo(click.style(f"🗑  {name} removed; stop it, then run 'wsgiward decommission {name}'", fg='red'))


@main.command()
@click.pass_context
def names(ctx):
    """List declared application names."""
    for name in sorted(_current_registry(ctx.obj['settings']).names()):
        click.echo(name)


@main.command()
@click.argument('name')
@click.pass_context
def show(ctx, name):
    """Show the service descriptor of an application as JSON."""
    _json_output(_lookup(ctx.obj['settings'], name).to_dict())


@main.command()
@click.argument('name')
@click.pass_context
def unit(ctx, name):
    """Print the systemd unit of an application."""
    click.echo(systemd.render_unit(_lookup(ctx.obj['settings'], name)), nl=False)


@main.command()
@click.option('--out', 'out_dir', required=True, type=click.Path(file_okay=False), help='Output directory')
@click.pass_context
def render(ctx, out_dir):
    """Write units, proxy config, sysusers and database plan for the registry."""
    settings = ctx.obj['settings']
    written = write_all(_current_registry(settings), Path(out_dir), python=settings.python)
    for rel in sorted(written):
        click.echo(rel)


@main.command()
@click.argument('name')
@click.pass_context
def decommission(ctx, name):
    """Remove the staged secrets of an application that is no longer declared."""
    try:
        removed = Orchestrator.from_state(ctx.obj['settings']).decommission(name)
    except (ValueError, StagingError) as e:
        _fail(str(e))
    click.echo(f"✅ {name} decommissioned" + ("" if removed else " (no staged secrets found)"))


@main.command()
@click.option('--tail', type=int, default=20, help='Number of events to show')
@click.option('--json', 'output_json', is_flag=True, help='Output NDJSON')
@click.pass_context
def events(ctx, tail, output_json):
    """Show recent reconcile events."""
    for event in read_events(ctx.obj['settings'].home_path)[-tail:]:
        if output_json:
            click.echo(json.dumps(event))
            continue
        data = json.dumps(event.get('data', {}))
        event_type = event.get('type', 'UNKNOWN')
        color = 'red' if event_type in ('SPEC_INVALID', 'STAGING_FAILED', 'ERROR') else 'green'
        click.echo(f"[{event.get('ts', '')}] {event.get('reconcile_id', '')} "
                   f"{click.style(event_type, fg=color)}: {data}")


@main.command()
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=8088, type=int, help='Port to bind to')
def serve(host, port):
    """Serve the read-only registry API."""
    import uvicorn
    from ..api.app import app

    uvicorn.run(app, host=host, port=port)


if __name__ == '__main__':
    main()
