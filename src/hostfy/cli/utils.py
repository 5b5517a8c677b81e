import functools
import logging
from typing import Dict, Tuple

import click

from hostfy.config import config
from hostfy.deploy.cleanup import CleanupReport
from hostfy.deploy.context import DeployContext
from hostfy.deploy.orchestrator import Deployer
from hostfy.errors import HostfyError


class CommandError(click.ClickException):
    """A ``HostfyError`` presented to the operator, remediation hint included."""

    def __init__(self, error: HostfyError):
        super().__init__(error.message)
        self.hint = error.hint

    def format_message(self):
        if self.hint:
            return f"{self.message}\n  hint: {self.hint}"
        return self.message


def handle_errors(f):
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except HostfyError as e:
            raise CommandError(e) from e

    return wrapper


def log_level(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    level = logging.getLevelName(config.log_level)
    if not isinstance(level, int):
        raise click.BadParameter(f"unknown log level {config.log_level!r}", param_hint="HOSTFY_LOG_LEVEL")
    return level


def configure_logging(verbose: bool, quiet: bool):
    logging.basicConfig(level=log_level(verbose, quiet), format="%(levelname)s %(name)s: %(message)s")


def get_context(ctx: click.Context) -> DeployContext:
    """The per-invocation ``DeployContext``, built on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get("context") is None:
        obj["context"] = DeployContext()
    return obj["context"]


def get_deployer(ctx: click.Context) -> Deployer:
    return Deployer(get_context(ctx))


def parse_env(ctx, param, values: Tuple[str, ...]) -> Dict[str, str]:
    env = {}
    for item in values or ():
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", ctx=ctx, param=param)
        env[key] = value
    return env


def echo_report(report: CleanupReport):
    for warning in report.warnings:
        click.secho(f"warning: {warning}", fg="yellow", err=True)
