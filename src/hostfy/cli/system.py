import click

from hostfy.cli.utils import echo_report, get_context, get_deployer, handle_errors
from hostfy.deploy import reconcile


@click.command()
@click.option("--catalog-url", help="Use this catalog instead of the default one.")
@click.pass_context
@handle_errors
def init(ctx, catalog_url):
    """Prepare this host: state directory, secrets, network and proxy."""
    deployer = get_deployer(ctx)
    cfg = deployer.initialize(catalog_url)
    click.echo(f"State directory: {deployer.store.root}")
    click.echo(f"Catalog: {cfg.catalog_url}")
    click.secho("hostfy is ready", fg="green")


@click.command()
@click.option("--refresh", is_flag=True, help="Fetch the catalog even if the cache is fresh.")
@click.pass_context
@handle_errors
def catalog(ctx, refresh):
    """List the apps available in the catalog."""
    repository = get_context(ctx).catalog
    apps = repository.fetch(force_refresh=refresh, allow_stale=not refresh).apps
    for app_id, app in sorted(apps.items()):
        marker = " [stack]" if app.is_stack() else ""
        click.echo(f"{app_id}{marker} - {app.description}")


@click.command()
@click.pass_context
@handle_errors
def pull(ctx):
    """Refresh the local copy of the catalog."""
    fetched = get_context(ctx).catalog.fetch(force_refresh=True)
    click.echo(f"Catalog refreshed: {len(fetched.apps)} apps")


@click.command()
@click.option("--force", is_flag=True, help="Remove without asking.")
@click.pass_context
@handle_errors
def cleanup(ctx, force):
    """Remove containers and databases no installed app uses."""
    deploy_ctx = get_context(ctx)
    report = reconcile.find_orphans(deploy_ctx)
    for warning in report.warnings:
        click.secho(f"warning: {warning}", fg="yellow", err=True)
    if report.empty:
        click.echo("Nothing to clean up.")
        return

    for name in report.containers:
        click.echo(f"container: {name}")
    for name in report.databases:
        click.echo(f"database: {name}")
    if not force:
        click.confirm("Remove these?", abort=True)

    echo_report(reconcile.remove_orphans(deploy_ctx, report))
    click.secho("Cleanup done", fg="green")


@click.group()
def db():
    """Manage app databases."""
    pass


@db.command(name="list")
@click.pass_context
@handle_errors
def list_databases(ctx):
    """List databases and the app using each."""
    usage = reconcile.list_databases_with_usage(get_context(ctx))
    if not usage:
        click.echo("No databases.")
    for name, owner in sorted(usage.items()):
        click.echo(f"{name} - {owner or 'unused'}")


@db.command(name="remove")
@click.argument("name")
@click.option("--force", is_flag=True, help="Remove without asking.")
@click.pass_context
@handle_errors
def remove_database(ctx, name, force):
    """Drop a database no app uses."""
    if not force:
        click.confirm(f"Drop database {name}?", abort=True)
    reconcile.remove_database(get_context(ctx), name)
    click.secho(f"Dropped {name}", fg="green")
