"""Command-line interface for station data management"""

from typing import Optional

import click
import structlog

from station_data.exceptions import StationDataError
from station_data.models.data_sets import FormatType, RecordKind
from station_data.observability import configure_logging
from station_data.service import StationDataService
from station_data.status import StatusReporter

logger = structlog.get_logger()

FORMAT_CHOICES = {format_type.name.lower().replace("_", "-"): format_type for format_type in FormatType}
IMPORT_FORMATS = ["cdbs", "lms", "cdbs-fm", "wireless"]
DOWNLOAD_FORMATS = ["cdbs", "lms", "cdbs-fm"]
GENERIC_FORMATS = ["generic-tv", "generic-wl", "generic-fm"]
RECORD_KIND_CHOICES = {kind.value: kind for kind in RecordKind}


def _service(ctx: click.Context) -> StationDataService:
    return ctx.obj["service"]


def _root(ctx: click.Context) -> str:
    return ctx.obj["root"]


def _fail(error: Exception):
    click.echo(f"❌ {error}")
    logger.error("CLI command failed", error=str(error))
    raise SystemExit(1)


def _release(service: StationDataService):
    service.databases.close_all()
    service.live_pool.dispose()


def _status() -> StatusReporter:
    return StatusReporter(on_status=lambda status: click.echo(f"   {status}"))


@click.group()
@click.option('--root', '-r', default='default', help='Root database ID')
@click.pass_context
def cli(ctx: click.Context, root: str):
    """Station data registry management CLI"""
    ctx.ensure_object(dict)
    if "service" not in ctx.obj:
        configure_logging()
        service = StationDataService()
        ctx.obj["service"] = service
        ctx.call_on_close(lambda: _release(service))
    ctx.obj["root"] = root


@cli.command(name="list")
@click.option('--kind', '-k', type=click.Choice(list(RECORD_KIND_CHOICES)), help='Filter by record kind')
@click.option('--format', '-f', 'format_name', type=click.Choice(list(FORMAT_CHOICES)), help='Filter by format')
@click.option('--min-version', type=int, default=0, help='Minimum data set version')
@click.option('--no-generic', is_flag=True, help='Leave out generic data sets')
@click.option('--no-most-recent', is_flag=True, help='Leave out the most recent entries')
@click.pass_context
def list_data_sets(ctx: click.Context, kind: Optional[str], format_name: Optional[str], min_version: int,
                   no_generic: bool, no_most_recent: bool):
    """List station data sets"""
    try:
        items = _service(ctx).list_handles(
            _root(ctx),
            record_kind=RECORD_KIND_CHOICES[kind] if kind else None,
            format_type=FORMAT_CHOICES[format_name] if format_name else None,
            min_version=min_version,
            include_generic=not no_generic,
            include_most_recent=not no_most_recent,
        )
    except StationDataError as e:
        _fail(e)

    if not items:
        click.echo("No station data found")
        return
    for item in items:
        click.echo(f"{item.key:>6}  {item.description}")


@cli.command()
@click.argument('key', type=int)
@click.pass_context
def show(ctx: click.Context, key: int):
    """Show one data set"""
    try:
        handle = _service(ctx).get(_root(ctx), key, include_deleted=True)
    except StationDataError as e:
        _fail(e)

    click.echo(f"📦 {handle.description}")
    click.echo(f"   Key: {handle.key}")
    click.echo(f"   Type: {handle.type_name}")
    click.echo(f"   ID: {handle.id}")
    click.echo(f"   Name: {handle.name or '(none)'}")
    click.echo(f"   Version: {handle.version}")
    click.echo(f"   Date: {handle.source_date or 'unknown'}")
    click.echo(f"   Download: {'yes' if handle.is_download else 'no'}")
    if handle.deleted:
        click.echo("   ⚠️  Deleted")


@cli.command(name="import")
@click.argument('format_name', type=click.Choice(IMPORT_FORMATS))
@click.argument('path', type=click.Path(exists=True))
@click.option('--name', '-n', help='Name for the new data set')
@click.pass_context
def import_data(ctx: click.Context, format_name: str, path: str, name: Optional[str]):
    """Import a directory or ZIP archive of data files"""
    service = _service(ctx)
    try:
        if name:
            service.check_name(_root(ctx), name)
        click.echo(f"🔄 Importing {path}")
        key = service.import_data_set(_root(ctx), FORMAT_CHOICES[format_name], path, name=name, status=_status())
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Import completed, key {key}")


@cli.command(name="import-wireless")
@click.argument('station_csv', type=click.Path(exists=True))
@click.argument('pattern_csv', type=click.Path(exists=True))
@click.option('--name', '-n', help='Name for the new data set')
@click.pass_context
def import_wireless_data(ctx: click.Context, station_csv: str, pattern_csv: str, name: Optional[str]):
    """Import wireless station and pattern CSV files"""
    service = _service(ctx)
    try:
        if name:
            service.check_name(_root(ctx), name)
        status = _status()
        key = service.import_wireless(_root(ctx), station_csv, pattern_csv, name=name, status=status)
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Import completed, key {key}")
    for message in status.messages:
        click.echo(f"   - {message}")


@cli.command()
@click.argument('format_name', type=click.Choice(DOWNLOAD_FORMATS))
@click.option('--name', '-n', help='Name for the new data set')
@click.pass_context
def download(ctx: click.Context, format_name: str, name: Optional[str]):
    """Download and import current station data"""
    service = _service(ctx)
    try:
        if name:
            service.check_name(_root(ctx), name)
        key = service.download(_root(ctx), FORMAT_CHOICES[format_name], name=name, status=_status())
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Download completed, key {key}")


@cli.command(name="create-generic")
@click.argument('format_name', type=click.Choice(GENERIC_FORMATS))
@click.option('--name', '-n', help='Name for the new data set')
@click.pass_context
def create_generic(ctx: click.Context, format_name: str, name: Optional[str]):
    """Create an empty generic data set"""
    service = _service(ctx)
    try:
        if name:
            service.check_name(_root(ctx), name)
        key = service.create_generic(_root(ctx), FORMAT_CHOICES[format_name], name=name)
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Created generic station data, key {key}")


@cli.command()
@click.argument('key', type=int)
@click.argument('name')
@click.pass_context
def rename(ctx: click.Context, key: int, name: str):
    """Rename a data set"""
    service = _service(ctx)
    try:
        handle = service.get(_root(ctx), key)
        service.check_name(_root(ctx), name, handle.name)
        service.rename(_root(ctx), key, name)
        handle = service.get(_root(ctx), key)
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Renamed to {handle.description}")


@cli.command()
@click.argument('key', type=int)
@click.option('--drop-store', is_flag=True, help='Drop the backing store now')
@click.pass_context
def delete(ctx: click.Context, key: int, drop_store: bool):
    """Delete a data set"""
    try:
        _service(ctx).delete(_root(ctx), key, drop_store=drop_store)
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Deleted station data {key}")


@cli.command()
@click.argument('key', type=int)
@click.argument('search')
@click.option('--elevation', is_flag=True, help='Search elevation patterns')
@click.pass_context
def antennas(ctx: click.Context, key: int, search: str, elevation: bool):
    """Search antennas in a data set"""
    try:
        found = _service(ctx).find_antennas(_root(ctx), key, search, elevation=elevation)
    except StationDataError as e:
        _fail(e)

    if not found:
        click.echo("No antennas found")
        return
    click.echo(f"Found {len(found)} antennas:")
    for antenna in found:
        click.echo(f"   {antenna.antenna_id}  {antenna.name}")


@cli.command()
@click.pass_context
def close(ctx: click.Context):
    """Sync backing stores with the index and release the root database"""
    try:
        _service(ctx).close(_root(ctx))
    except StationDataError as e:
        _fail(e)
    click.echo(f"✅ Closed root database {_root(ctx)}")


if __name__ == '__main__':
    cli()
