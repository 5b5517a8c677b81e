import click

from hostfy.cli.apps import (
    config_app,
    install,
    list_apps,
    logs,
    remove,
    restart,
    secrets,
    start,
    status,
    stop,
    update,
    upgrade,
)
from hostfy.cli.system import catalog, cleanup, db, init, pull
from hostfy.cli.utils import configure_logging
from hostfy.version import get_version


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show debug output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.version_option(get_version(), prog_name="hostfy")
@click.pass_context
def main(ctx, verbose, quiet):
    """hostfy: deploy catalog apps on this host behind Traefik"""
    ctx.ensure_object(dict)
    configure_logging(verbose, quiet)


main.add_command(init)
main.add_command(catalog)
main.add_command(pull)
main.add_command(install)
main.add_command(update)
main.add_command(config_app)
main.add_command(upgrade)
main.add_command(remove)
main.add_command(remove, name="uninstall")
main.add_command(list_apps)
main.add_command(status)
main.add_command(start)
main.add_command(stop)
main.add_command(restart)
main.add_command(logs)
main.add_command(secrets)
main.add_command(cleanup)
main.add_command(db)
