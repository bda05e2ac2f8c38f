"""
n8nkeeper CLI.

Keeps a Windows n8n installation and its Node.js runtime compatible.

Commands:
    (none)              - Resolve, install if needed, repair PATH, validate
    run                 - Same as running with no command
    resolve             - Show which Node.js release would be installed
    repair-path         - Repair PATH only
    doctor              - Diagnose runtime and PATH problems
    backup              - Snapshot management commands
    export <file>       - Export the n8n data directory
    import <file>       - Import an exported archive
    uninstall           - Remove all traces of Node.js and n8n
"""

import sys
from pathlib import Path

import click

from .__version__ import __version__
from . import backup
from . import doctor as doctor_checks
from . import downloader
from . import paths
from . import privilege
from . import uninstall as uninstaller
from .environment import EnvironmentStore, get_environment_store
from .errors import N8nKeeperError, NoCandidateError
from .flow import ConvergeFlow
from .path_repair import converge_path
from .releases import WINDOWS_X64_MSI, filter_releases, select_release
from .versioning import parse_constraint


def _get_store(require_admin: bool = False) -> EnvironmentStore:
    """Get the environment store, exiting on failure."""
    try:
        store = get_environment_store()
    except N8nKeeperError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if require_admin and not store.is_simulation and not privilege.is_admin():
        click.echo("Error: Administrator rights are required for this command.", err=True)
        click.echo(f"       {privilege.elevation_hint()}", err=True)
        sys.exit(1)

    return store


def _run_flow(install_app: bool) -> None:
    store = _get_store(require_admin=True)

    click.echo()
    click.echo("=" * 60)
    click.echo("n8nkeeper")
    click.echo("=" * 60)
    click.echo(f"Version: {__version__}")
    click.echo(f"Environment: {store.mode_name}")

    result = ConvergeFlow(store, install_app=install_app).run()

    click.echo()
    if not result.ok:
        click.echo(f"Failed during: {result.failed_stage.value}", err=True)
        click.echo(f"  {result.reason}", err=True)
        sys.exit(1)

    click.echo("Complete!")
    if result.snapshot:
        click.echo(f"  Data snapshot: {result.snapshot}")
    click.echo("  Open a new terminal to pick up PATH changes.")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="n8nkeeper")
@click.pass_context
def cli(ctx):
    """n8nkeeper - keep n8n and Node.js compatible and working.

    Without a command, runs the full flow: resolve the Node.js version n8n
    needs, install it if necessary, repair PATH, and validate.
    """
    paths.load_config()
    if ctx.invoked_subcommand is None:
        _run_flow(install_app=True)


@cli.command()
@click.option('--skip-app', is_flag=True, help='Do not install or upgrade n8n')
def run(skip_app):
    """Resolve, install if needed, repair PATH, and validate."""
    _run_flow(install_app=not skip_app)


@cli.command()
@click.option('--list', 'show_all', is_flag=True, help='List every matching release')
def resolve(show_all):
    """Show which Node.js release n8n's engine constraint selects."""
    click.echo()
    try:
        metadata = downloader.fetch_app_metadata()
        releases = downloader.fetch_release_index()
    except N8nKeeperError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    version_range = parse_constraint(metadata.node_constraint)
    click.echo(f"  n8n version:     {metadata.version}")
    click.echo(f"  Engine range:    {metadata.node_constraint}")
    click.echo(f"  Parsed as:       {version_range.describe()}")
    for warning in version_range.warnings:
        click.echo(f"  Warning:         {warning}")

    release = select_release(releases, version_range, WINDOWS_X64_MSI)
    if release is None:
        click.echo(f"Error: {NoCandidateError(metadata.node_constraint, WINDOWS_X64_MSI)}", err=True)
        sys.exit(1)

    click.echo(f"  Selected:        {release.display_version}" + (" (LTS)" if release.lts else ""))

    if show_all:
        click.echo()
        click.echo("Matching releases:")
        for r in filter_releases(releases, version_range, WINDOWS_X64_MSI):
            marker = " *" if r == release else ""
            lts = f" LTS {r.lts_name}" if r.lts_name else ""
            click.echo(f"  {r.display_version}{lts}{marker}")


@cli.command('repair-path')
def repair_path():
    """Repair PATH so node, npm and npm global shims resolve."""
    store = _get_store(require_admin=True)
    click.echo()
    click.echo("Repairing PATH...")

    try:
        result = converge_path(
            store,
            paths.get_node_install_dir(),
            paths.get_npm_prefix(),
            paths.get_npm_cache_dir(),
        )
    except (N8nKeeperError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"  User PATH:    {'updated' if result.user_changed else 'already correct'}")
    click.echo(f"  Machine PATH: {'updated' if result.machine_changed else 'already correct'}")
    click.echo()
    click.echo("Open a new terminal to pick up PATH changes.")


@cli.command()
@click.option('--offline', is_flag=True, help='Skip checks that need network access')
@click.option('--verbose', '-v', is_flag=True, help='Show details for passing checks')
def doctor(offline, verbose):
    """Diagnose runtime, n8n and PATH problems."""
    store = _get_store()

    click.echo()
    click.echo("n8nkeeper Doctor")
    click.echo("-" * 70)

    results = doctor_checks.run_checks(store, offline=offline)
    for result in results:
        doctor_checks.print_check(result, verbose)

    failed = [r for r in results if not r.passed]
    click.echo()
    if failed:
        click.echo(f"{len(failed)} issue(s) found")
        sys.exit(1)
    click.echo("No issues found")


# =============================================================================
# Backup Commands
# =============================================================================

@cli.group('backup')
def backup_group():
    """Snapshot management commands."""
    pass


@backup_group.command('create')
def backup_create():
    """Snapshot the n8n data directory."""
    click.echo()
    click.echo(f"  Data dir: {paths.get_data_dir()}")
    try:
        snapshot = backup.create_snapshot(reason="manual")
    except N8nKeeperError as e:
        click.echo(f"Backup failed: {e}", err=True)
        sys.exit(1)

    size_mb = snapshot.stat().st_size / (1024 * 1024)
    click.echo(f"  Output:   {snapshot}")
    click.echo()
    click.echo(f"Backup complete: {snapshot.name} ({size_mb:.1f} MB)")


@backup_group.command('list')
def backup_list():
    """List snapshots."""
    click.echo()
    snapshots = backup.list_snapshots()
    if not snapshots:
        click.echo("  No snapshots found")
        return

    click.echo(f"  {'File':<40} {'Size':<10} {'Reason':<14}")
    click.echo(f"  {'-'*40} {'-'*10} {'-'*14}")
    for s in snapshots:
        size_str = f"{s['size'] / (1024 * 1024):.1f} MB"
        click.echo(f"  {s['filename']:<40} {size_str:<10} {s['reason']:<14}")

    click.echo()
    click.echo(f"Location: {paths.get_backup_dir()}")


@backup_group.command('cleanup')
@click.option('--keep', default=5, help='Number of snapshots to keep')
@click.option('--dry-run', is_flag=True, help='Show what would be deleted')
@click.option('-y', '--yes', is_flag=True, help='Skip confirmation')
def backup_cleanup(keep, dry_run, yes):
    """Remove old snapshots, keeping the newest ones."""
    click.echo()
    to_delete = backup.cleanup_old_snapshots(keep=keep, dry_run=True)
    if not to_delete:
        click.echo(f"No snapshots to remove (keeping {keep})")
        return

    click.echo(f"Snapshots to remove ({len(to_delete)}):")
    for path in to_delete:
        click.echo(f"  {path.name}")

    if dry_run:
        click.echo()
        click.echo("Dry run - no changes made")
        return

    if not yes and not click.confirm("Proceed with cleanup?"):
        click.echo("Cleanup cancelled")
        return

    deleted = backup.cleanup_old_snapshots(keep=keep, dry_run=False)
    click.echo(f"Removed {len(deleted)} snapshot(s)")


@cli.command('export')
@click.argument('output', type=click.Path(dir_okay=False))
def export_cmd(output):
    """Export the n8n data directory to OUTPUT (.tar.gz)."""
    click.echo()
    try:
        archive = backup.export_data(Path(output))
    except N8nKeeperError as e:
        click.echo(f"Export failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"Exported {paths.get_data_dir()} to {archive}")


@cli.command('import')
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('--replace', is_flag=True, help='Replace the data directory instead of merging')
@click.option('-y', '--yes', is_flag=True, help='Skip confirmation')
def import_cmd(archive, replace, yes):
    """Import an exported ARCHIVE into the n8n data directory."""
    click.echo()
    archive_path = Path(archive)
    try:
        metadata = backup.read_metadata(archive_path)
    except N8nKeeperError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Archive:  {archive_path}")
    click.echo(f"Created:  {str(metadata.get('created_at', 'unknown'))[:19]}")
    click.echo(f"Target:   {paths.get_data_dir()}")
    click.echo(f"Mode:     {'replace' if replace else 'merge'}")
    click.echo()

    if not yes and not click.confirm("Proceed with import?"):
        click.echo("Import cancelled")
        return

    try:
        snapshot = backup.import_data(archive_path, replace=replace)
    except N8nKeeperError as e:
        click.echo(f"Import failed: {e}", err=True)
        sys.exit(1)

    if snapshot:
        click.echo(f"Previous data saved to: {snapshot}")
    click.echo("Import complete")


@cli.command()
@click.option('--remove-data', is_flag=True, help='Also delete the n8n data directory (after a snapshot)')
@click.option('-y', '--yes', is_flag=True, help='Skip confirmation')
def uninstall(remove_data, yes):
    """Remove all traces of Node.js and n8n for a clean reinstall."""
    store = _get_store(require_admin=True)

    click.echo()
    click.echo("This removes Node.js, npm global packages, the npm cache,")
    click.echo("and their PATH entries.")
    if remove_data:
        click.echo(f"The n8n data directory will also be deleted: {paths.get_data_dir()}")
    click.echo()

    if not yes and not click.confirm("Proceed with uninstall?"):
        click.echo("Uninstall cancelled")
        return

    click.echo("Uninstalling...")
    try:
        report = uninstaller.full_uninstall(store, remove_data=remove_data)
    except N8nKeeperError as e:
        click.echo(f"Uninstall aborted: {e}", err=True)
        sys.exit(1)

    click.echo()
    if report.ok:
        click.echo("Uninstall complete")
    else:
        failed = [s for s in report.steps if not s.ok]
        click.echo(f"Uninstall finished with {len(failed)} warning(s)")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
