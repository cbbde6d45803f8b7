"""
armapply CLI entry point.
"""
import logging
import os
import sys
import threading
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from armapply import __version__
from armapply.client import ArmClient
from armapply.config import Settings
from armapply.credentials import AzureCliCredential, StaticTokenCredential
from armapply.errors import ArmApplyError, DocumentError
from armapply.executor import Executor, plan as build_plan
from armapply.naming.catalog import Catalog
from armapply.naming.generator import unique_string
from armapply.parsers.documents import load_deployment
from armapply.reporters import json_reporter, markdown

_BANNER = r"""
   __ _ _ __ _ __ ___   __ _ _ __  _ __ | |_   _
  / _` | '__| '_ ` _ \ / _` | '_ \| '_ \| | | | |
 | (_| | |  | | | | | | (_| | |_) | |_) | | |_| |
  \__,_|_|  |_| |_| |_|\__,_| .__/| .__/|_|\__, |
                            |_|   |_|      |___/
"""


def _print_banner(no_color: bool = False) -> None:
    c = Console(stderr=True, no_color=no_color)
    c.print(f"[bold blue]{_BANNER}[/bold blue]")
    c.print(f"  [dim]v{__version__}[/dim]\n")


def _configure_logging(debug: bool, no_color: bool = False) -> None:
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=debug,
        show_time=debug,
    )
    logger = logging.getLogger("armapply")
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


def _credential():
    token = os.environ.get("ARMAPPLY_ACCESS_TOKEN", "")
    if token:
        return StaticTokenCredential(token)
    return AzureCliCredential()


def _settings(endpoint: Optional[str], catalog: Optional[str],
              poll_interval: Optional[float], parallel: int = 1) -> Settings:
    settings = Settings()
    if endpoint:
        settings.endpoint = endpoint.rstrip("/")
    if catalog:
        settings.catalog_path = catalog
    if poll_interval is not None:
        settings.poll_interval = poll_interval
    settings.max_workers = max(parallel, 1)
    return settings


def _fail(stderr: Console, exc: Exception) -> None:
    stderr.print(f"[red]error:[/red] {escape(str(exc))}", highlight=False, soft_wrap=True)
    sys.exit(2 if isinstance(exc, DocumentError) else 1)


_scope_options = [
    click.option("--subscription-id", "-s", envvar="AZURE_SUBSCRIPTION_ID", default="",
                 help="Azure subscription ID. [env: AZURE_SUBSCRIPTION_ID]"),
    click.option("--resource-group", "-g", envvar="AZURE_RESOURCE_GROUP", default="",
                 help="Resource group. Required when PATH is a single file. [env: AZURE_RESOURCE_GROUP]"),
    click.option("--endpoint", default=None,
                 help="Control-plane endpoint. [env: ARMAPPLY_ENDPOINT]"),
    click.option("--catalog", type=click.Path(exists=True, dir_okay=False), default=None,
                 help="Naming catalog YAML to use instead of the built-in one. [env: ARMAPPLY_CATALOG]"),
]


def scope_options(fn):
    for opt in reversed(_scope_options):
        fn = opt(fn)
    return fn


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__)
@click.pass_context
def cli(ctx):
    """armapply — apply declarative resource documents to Azure Resource Manager."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


@cli.command()
@click.argument("path", type=click.Path())
@scope_options
@click.option("--parallel", type=click.IntRange(min=1), default=1, show_default=True,
              help="Apply independent resources concurrently with up to N workers.")
@click.option("--timeout", type=click.FloatRange(min=0), default=None,
              help="Cancel waiting for operations after this many seconds.")
@click.option("--poll-interval", type=click.FloatRange(min=0), default=None,
              help="Seconds between long-running operation status checks. [default: 1.0]")
@click.option("--debug", is_flag=True, default=False,
              help="Log request and response detail to stderr.")
@click.option("--no-color", is_flag=True, default=False,
              help="Disable rich terminal color output.")
def apply(
    path: str,
    subscription_id: str,
    resource_group: str,
    endpoint: Optional[str],
    catalog: Optional[str],
    parallel: int,
    timeout: Optional[float],
    poll_interval: Optional[float],
    debug: bool,
    no_color: bool,
) -> None:
    """
    Create or update every resource declared under PATH.

    PATH is a resource file or a directory with an optional group.yaml or
    subscription.yaml plus resource files.
    """
    _configure_logging(debug, no_color)
    _print_banner(no_color)
    stderr = Console(stderr=True, no_color=no_color)
    settings = _settings(endpoint, catalog, poll_interval, parallel)

    try:
        names = Catalog.load(settings.catalog_path)
        deployment = load_deployment(path, subscription_id, resource_group)
    except ArmApplyError as exc:
        _fail(stderr, exc)

    count = len(deployment.resources) + (1 if deployment.group is not None else 0)
    stderr.print(f"Found [bold]{count}[/bold] resources.")

    cancel = threading.Event()
    timer = None
    if timeout:
        timer = threading.Timer(timeout, cancel.set)
        timer.daemon = True
        timer.start()

    client = ArmClient(_credential(), settings=settings)
    executor = Executor(
        client, names, settings=settings,
        console=Console(no_color=no_color, highlight=False), cancel=cancel,
    )
    try:
        executor.apply(deployment)
    except ArmApplyError as exc:
        _fail(stderr, exc)
    finally:
        if timer is not None:
            timer.cancel()

    sys.exit(0)


@cli.command()
@click.argument("path", type=click.Path())
@scope_options
@click.option(
    "--format", "output_format",
    type=click.Choice(["markdown", "json"], case_sensitive=False),
    default="markdown",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--output", "-o",
    type=click.Path(),
    default=None,
    help="Write plan to this file (default: stdout).",
)
@click.option("--no-color", is_flag=True, default=False,
              help="Disable rich terminal color output.")
def plan(
    path: str,
    subscription_id: str,
    resource_group: str,
    endpoint: Optional[str],
    catalog: Optional[str],
    output_format: str,
    output: Optional[str],
    no_color: bool,
) -> None:
    """
    Show the requests apply would send for PATH, without calling the API.
    """
    _configure_logging(False, no_color)
    stderr = Console(stderr=True, no_color=no_color)
    settings = _settings(endpoint, catalog, None)

    try:
        names = Catalog.load(settings.catalog_path)
        deployment = load_deployment(path, subscription_id, resource_group)
        planned = build_plan(deployment, names, settings)
    except ArmApplyError as exc:
        _fail(stderr, exc)

    scope = f"/subscriptions/{deployment.subscription_id}"
    if deployment.resource_group:
        scope += f"/resourceGroups/{deployment.resource_group}"

    if output_format.lower() == "json":
        content = json_reporter.build_report(planned, path, scope)
    else:
        content = markdown.build_report(planned, path, scope)

    if output:
        with open(output, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        stderr.print(f"Plan written to [bold]{output}[/bold]")
    else:
        click.echo(content)


@cli.command("unique-string")
@click.argument("parts", nargs=-1, required=True)
def unique_string_cmd(parts: Tuple[str, ...]) -> None:
    """Print the 13-character token ARM's uniqueString() gives for PARTS."""
    click.echo(unique_string(*parts))


@cli.command("catalog")
@click.argument("resource_type", required=False)
@click.option("--catalog", "catalog_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Naming catalog YAML to read.")
def catalog_cmd(resource_type: Optional[str], catalog_path: Optional[str]) -> None:
    """List catalog resource types, or the naming kinds of RESOURCE_TYPE."""
    stderr = Console(stderr=True)
    try:
        names = Catalog.load(catalog_path or Settings().catalog_path)
        if not resource_type:
            for t in names:
                click.echo(t)
            return
        kinds = names.kinds(resource_type)
    except ArmApplyError as exc:
        _fail(stderr, exc)

    tbl = Table(title=resource_type, show_header=True, header_style="bold")
    tbl.add_column("Kind")
    tbl.add_column("Abbreviation")
    tbl.add_column("Length")
    tbl.add_column("Scope")
    tbl.add_column("Restricted")
    for k in kinds:
        rules = k.naming_rules
        length = f"{rules.min_length}-{rules.max_length}" if rules.max_length else "-"
        tbl.add_row(
            k.label() or "(default)",
            k.abbreviation or "-",
            length,
            rules.uniqueness_scope or "-",
            rules.restricted_chars.global_ or "-",
        )
    Console().print(tbl)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
