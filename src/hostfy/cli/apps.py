import json

import click

from hostfy.cli.utils import echo_report, get_deployer, handle_errors, parse_env
from hostfy.catalog.templates import POSTGRES_USER

ALL = "all"


@click.command()
@click.argument("app")
@click.option("--domain", required=True, help="Primary domain the app is served on.")
@click.option("--name", help="Stack name, to install the same app more than once.")
@click.option("--env", "env", multiple=True, callback=parse_env, help="Override an env var (KEY=VALUE).")
@click.pass_context
@handle_errors
def install(ctx, app, domain, name, env):
    """Install an app from the catalog."""
    deployer = get_deployer(ctx)
    result = deployer.install(app, domain, name=name, env_overrides=env)

    click.secho(f"Installed {result.app.name} ({app})", fg="green")
    if result.reused_secrets:
        click.echo("Secrets restored from the previous installation.")
    for key, value in result.user_env.items():
        click.echo(f"  {key}={value}")
    if result.database:
        secrets = deployer.ctx.secrets
        click.echo(f"Database: {result.database} (user {POSTGRES_USER}, password {secrets.postgres_password})")
    if result.domains:
        click.echo("Point these domains at this host:")
        for domain_name in result.domains:
            click.echo(f"  {domain_name}")


@click.command()
@click.argument("app")
@click.option("--domain", help="New primary domain.")
@click.option("--env", "env", multiple=True, callback=parse_env, help="Set an env var (KEY=VALUE).")
@click.pass_context
@handle_errors
def update(ctx, app, domain, env):
    """Change the domain or env of an installed app."""
    result = get_deployer(ctx).update(app, domain=domain, env_overrides=env)
    if result.nothing_to_update:
        click.echo("Nothing to update.")
        return
    for change in result.changes:
        click.echo(f"  {change}")
    click.secho(f"Updated {app}", fg="green")


@click.command(name="config")
@click.argument("app")
@click.option("--domain", required=True, help="New primary domain.")
@click.pass_context
@handle_errors
def config_app(ctx, app, domain):
    """Change the primary domain of an installed app."""
    result = get_deployer(ctx).update(app, domain=domain)
    if result.nothing_to_update:
        click.echo("Nothing to update.")
        return
    click.secho(f"{app} now served on {domain}", fg="green")


@click.command()
@click.argument("app")
@click.option("--force", is_flag=True, help="Recreate every container even without a new image.")
@click.pass_context
@handle_errors
def upgrade(ctx, app, force):
    """Upgrade an app to the images named in the catalog."""
    result = get_deployer(ctx).upgrade(app, force=force)
    if result.up_to_date:
        click.echo(f"{app} is already up to date.")
        return
    if result.added_env:
        click.echo("New env vars: " + ", ".join(result.added_env))
    click.secho(f"Upgraded {app}: {', '.join(result.upgraded)}", fg="green")


@click.command()
@click.argument("app")
@click.option("--purge", is_flag=True, help="Also delete volumes, database and saved secrets.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
@handle_errors
def remove(ctx, app, purge, yes):
    """Remove an installed app, keeping its data unless --purge."""
    if purge and not yes:
        click.confirm(f"Permanently delete all data of {app}?", abort=True)
    report = get_deployer(ctx).remove(app, purge=purge)
    echo_report(report)
    if purge:
        click.secho(f"Removed {app} and its data", fg="green")
    else:
        click.secho(f"Removed {app}; data and secrets kept for reinstall", fg="green")


@click.command(name="list")
@click.pass_context
@handle_errors
def list_apps(ctx):
    """List installed apps."""
    deployer = get_deployer(ctx)
    apps = deployer.store.list_apps()
    if not apps:
        click.echo("No apps installed.")
        return
    for app in apps:
        kind = "stack" if app.is_stack else "app"
        click.echo(f"{app.name} - {app.catalog_app} ({kind}) - {app.domain or '-'} - {deployer.app_status(app)}")


@click.command()
@click.pass_context
@handle_errors
def status(ctx):
    """Show host status as JSON."""
    click.echo(json.dumps(get_deployer(ctx).status(), indent=2))


def _lifecycle(ctx, app, action):
    deployer = get_deployer(ctx)
    if app == ALL:
        if action == "stop":
            for record in deployer.store.list_apps():
                deployer.stop(record.name)
        elif action == "start":
            echo_report(deployer.start_all())
        else:
            echo_report(deployer.restart_all())
    else:
        getattr(deployer, action)(app)
    click.echo(f"{action}: {app}")


@click.command()
@click.argument("app")
@click.pass_context
@handle_errors
def start(ctx, app):
    """Start an app, or everything with 'all'."""
    _lifecycle(ctx, app, "start")


@click.command()
@click.argument("app")
@click.pass_context
@handle_errors
def stop(ctx, app):
    """Stop an app, or every app with 'all'."""
    _lifecycle(ctx, app, "stop")


@click.command()
@click.argument("app")
@click.pass_context
@handle_errors
def restart(ctx, app):
    """Restart an app, or everything with 'all'."""
    _lifecycle(ctx, app, "restart")


@click.command()
@click.argument("app")
@click.option("-c", "--container", help="Stack member to show (defaults to the main one).")
@click.option("--tail", default=100, show_default=True, help="Lines to show from the end.")
@click.option("-f", "--follow", is_flag=True, help="Keep streaming new output.")
@click.pass_context
@handle_errors
def logs(ctx, app, container, tail, follow):
    """Show container logs of an app."""
    for chunk in get_deployer(ctx).logs(app, container=container, tail=tail, follow=follow):
        click.echo(chunk, nl=False)


@click.command()
@click.argument("app")
@click.pass_context
@handle_errors
def secrets(ctx, app):
    """Show the credentials of an installed app."""
    info = get_deployer(ctx).describe_secrets(app)
    database = info.get("database")
    if database:
        click.echo(f"Database: {database['name']}")
        click.echo(f"  user: {database['user']}")
        click.echo(f"  password: {database['password']}")
    if not info["env"]:
        click.echo("No secret env vars.")
    for key, value in sorted(info["env"].items()):
        click.echo(f"{key}={value}")
