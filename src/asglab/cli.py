"""CLI entry point for asglab.

Offline companion to the Pulumi program: reads a stack's configuration from
the project files, checks it, and shows what `pulumi up` would declare.

Commands:
    asglab settings            # Effective settings of the default stack
    asglab validate            # Check settings and resource references
    asglab plan                # Resources grouped by dependency level
    asglab user-data           # Bootstrap script run by each instance
    asglab dimension ARN       # CloudWatch LoadBalancer dimension for an ALB ARN
    asglab config show         # CLI preferences
"""

import logging
import sys
import traceback
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from asglab import __version__
from asglab.arn import ArnError, load_balancer_dimension
from asglab.config import ConfigError, StackSettings, load_stack_settings
from asglab.config_manager import ConfigManager
from asglab.graph import GraphError, build_stack_graph
from asglab.tagging import format_tags, generate_stack_tags
from asglab.user_data import encode_user_data, render_user_data

logger = logging.getLogger(__name__)

console = Console()
error_console = Console(stderr=True)


def _fail(ctx: click.Context, message: str, exit_code: int = 1) -> None:
    error_console.print(f"[bold red]Error:[/bold red] {message}", highlight=False)
    if ctx.obj and ctx.obj.get("verbose"):
        traceback.print_exc()
    ctx.exit(exit_code)


def _load_settings(
    ctx: click.Context, stack: str | None, project_dir: str | None
) -> tuple[str, StackSettings]:
    """Resolve stack and project directory from options or preferences, then load."""
    prefs = ConfigManager.load_config(ctx.obj.get("config_path"))
    stack_name = stack or prefs.default_stack
    directory = Path(project_dir or prefs.project_dir or ".")
    logger.debug(f"Loading stack {stack_name} from {directory.resolve()}")
    return stack_name, load_stack_settings(stack_name, directory)


def stack_options(func):
    """Add --stack and --project-dir options to a command."""
    func = click.option(
        "--project-dir",
        "-C",
        type=click.Path(file_okay=False),
        help="Directory containing Pulumi.yaml (default: preference or current directory)",
    )(func)
    func = click.option(
        "--stack",
        "-s",
        help="Pulumi stack name (default: preference, initially 'dev')",
    )(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and tracebacks")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Preferences file (default: ~/.asglab/config.toml)",
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: str | None) -> None:
    """asglab - autoscaling stress lab on AWS.

    Inspects the Pulumi stack configuration of the lab without touching AWS.
    Deploy with `pulumi up`; use these commands to check what it will do.

    \b
    Examples:
        asglab validate --stack dev
        asglab plan
        asglab user-data --base64
        asglab dimension arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web-alb/50dc6c495c0c9188
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path


@main.command(name="settings")
@stack_options
@click.pass_context
def settings_command(ctx: click.Context, stack: str | None, project_dir: str | None) -> None:
    """Show the effective settings of a stack."""
    try:
        stack_name, settings = _load_settings(ctx, stack, project_dir)
    except ConfigError as e:
        _fail(ctx, str(e))
        return

    defaults = StackSettings().to_dict()
    table = Table(title=f"Stack settings: {stack_name}")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Default", style="dim")
    for key, value in settings.to_dict().items():
        shown = f"[bold]{value}[/bold]" if value != defaults[key] else str(value)
        table.add_row(key, shown, str(defaults[key]))
    console.print(table)
    console.print(f"Tags: {format_tags(dict(generate_stack_tags(settings.environment)))}")


@main.command(name="validate")
@stack_options
@click.pass_context
def validate_command(ctx: click.Context, stack: str | None, project_dir: str | None) -> None:
    """Check settings invariants and resource references.

    Exits 1 if any check fails.
    """
    try:
        stack_name, settings = _load_settings(ctx, stack, project_dir)
    except ConfigError as e:
        _fail(ctx, str(e))
        return

    errors = settings.validation_errors()
    if not errors:
        try:
            build_stack_graph(settings).validate()
        except GraphError as e:
            errors.append(str(e))

    if errors:
        error_console.print(f"[bold red]✗ Stack {stack_name} is invalid:[/bold red]")
        for error in errors:
            error_console.print(f"  - {error}", highlight=False)
        ctx.exit(1)

    console.print(f"[bold green]✓ Stack {stack_name} is valid[/bold green] ({settings.summary()})")


@main.command(name="plan")
@stack_options
@click.pass_context
def plan_command(ctx: click.Context, stack: str | None, project_dir: str | None) -> None:
    """Show the resources the stack declares, grouped by dependency level."""
    try:
        stack_name, settings = _load_settings(ctx, stack, project_dir)
        settings.validate()
        graph = build_stack_graph(settings)
        levels = graph.levels()
    except (ConfigError, GraphError) as e:
        _fail(ctx, str(e))
        return

    table = Table(title=f"Resource plan: {stack_name} ({len(graph.nodes)} resources)")
    table.add_column("Level", justify="right")
    table.add_column("Resource", style="cyan")
    table.add_column("Type")
    table.add_column("Depends on", style="dim")
    for level, nodes in enumerate(levels):
        for node in nodes:
            table.add_row(str(level), node.name, node.kind.short_name, ", ".join(node.dependencies))
    console.print(table)


@main.command(name="user-data")
@stack_options
@click.option("--base64", "as_base64", is_flag=True, help="Print as the launch template stores it")
@click.pass_context
def user_data_command(
    ctx: click.Context, stack: str | None, project_dir: str | None, as_base64: bool
) -> None:
    """Print the bootstrap script run by each lab instance."""
    try:
        _, settings = _load_settings(ctx, stack, project_dir)
    except ConfigError as e:
        _fail(ctx, str(e))
        return

    script = render_user_data(settings)
    click.echo(encode_user_data(script) if as_base64 else script, nl=as_base64)


@main.command(name="dimension")
@click.argument("arn")
@click.pass_context
def dimension_command(ctx: click.Context, arn: str) -> None:
    """Print the CloudWatch LoadBalancer dimension for a load balancer ARN.

    \b
    Example:
        $ asglab dimension arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web-alb/50dc6c495c0c9188
        app/web-alb/50dc6c495c0c9188
    """
    try:
        click.echo(load_balancer_dimension(arn))
    except ArnError as e:
        _fail(ctx, str(e), exit_code=2)


@main.group(name="config")
def config_group() -> None:
    """Manage asglab CLI preferences."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current preferences."""
    config_path = ctx.obj.get("config_path")
    try:
        prefs = ConfigManager.load_config(config_path)
        path = ConfigManager.get_config_path(config_path)
    except ConfigError as e:
        _fail(ctx, str(e))
        return

    console.print(f"Preferences file: {path}", highlight=False)
    console.print(f"  default_stack: {prefs.default_stack}", highlight=False)
    console.print(f"  project_dir:   {prefs.project_dir or '(current directory)'}", highlight=False)


@config_group.command(name="set-stack")
@click.argument("stack")
@click.pass_context
def config_set_stack(ctx: click.Context, stack: str) -> None:
    """Set the stack used when --stack is not given."""
    try:
        ConfigManager.set_default_stack(stack, ctx.obj.get("config_path"))
    except ConfigError as e:
        _fail(ctx, str(e))
        return
    console.print(f"[green]Default stack set to {stack}[/green]")


@config_group.command(name="set-project-dir")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def config_set_project_dir(ctx: click.Context, path: str) -> None:
    """Set the Pulumi project directory used when --project-dir is not given."""
    try:
        prefs = ConfigManager.set_project_dir(path, ctx.obj.get("config_path"))
    except ConfigError as e:
        _fail(ctx, str(e))
        return
    console.print(f"[green]Project directory set to {prefs.project_dir}[/green]", highlight=False)


if __name__ == "__main__":
    sys.exit(main())
