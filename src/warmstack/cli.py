"""
Command-line interface for warmstack

Starts, stops and inspects named, long-lived worker server instances running
in containers, and manages the runtime, model and MCP settings they use.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .config import VALID_RUNTIMES, WarmstackConfig, expand_path, load_config
from .container_runtime import (
    INTERRUPTED_EXIT_CODES,
    RUNTIME_CLASSES,
    create_runtime,
    detection_order,
    get_runtime,
)
from .credentials import GitHubCredentialProvider
from .errors import PortDiscoveryFailedError, WarmstackError
from .logging_config import SubprocessLogHandler, setup_logging
from .manager import InstanceManager, StartOptions
from .mcp import (
    MCP_CONFIG_FILE,
    get_effective_mcp_config_path,
    init_local_mcp_config,
    load_mcp_config,
)
from .worker_models import (
    LOCAL_MODEL_FILE,
    clear_local_model,
    list_available_models,
    normalize_model,
    read_local_model,
    resolve_default_model,
    write_local_model,
)

DEFAULT_INSTANCE = "default"
WORKER_LOG_LEVELS = ["none", "error", "warning", "info", "debug", "all"]


def _fail(error: WarmstackError) -> None:
    """Report a warmstack error and exit non-zero."""
    click.echo(f"❌ {error.message}", err=True)
    if isinstance(error, PortDiscoveryFailedError) and error.logs:
        click.echo("\nLast container logs:", err=True)
        for line in error.logs.splitlines()[-20:]:
            click.echo(f"   {line}", err=True)
    if error.suggestion:
        click.echo(f"💡 {error.suggestion}", err=True)
    sys.exit(1)


def _get_runtime(ctx: click.Context):
    """Resolve the container runtime once per invocation."""
    if ctx.obj.get("runtime") is None:
        config = ctx.obj["config"]
        log_handler = SubprocessLogHandler("container_runtime", config.log_dir)
        ctx.obj["runtime"] = get_runtime(config, log_handler)
    return ctx.obj["runtime"]


def _get_manager(ctx: click.Context) -> InstanceManager:
    if ctx.obj.get("manager") is None:
        ctx.obj["manager"] = InstanceManager(ctx.obj["config"], _get_runtime(ctx))
    return ctx.obj["manager"]


def _display_path(path: Optional[str]) -> str:
    if not path:
        return "-"
    home = str(Path.home())
    if path == home or path.startswith(home + "/"):
        return "~" + path[len(home):]
    return path


name_option = click.option(
    "--name",
    "-n",
    default=DEFAULT_INSTANCE,
    show_default=True,
    help="Server instance name",
)


@click.group()
@click.option(
    "--config-file",
    type=click.Path(path_type=Path),
    help="Path to user settings file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set console logging level",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for log files",
)
@click.option(
    "--runtime",
    type=click.Choice(VALID_RUNTIMES, case_sensitive=False),
    default=None,
    help="Container runtime to use for this invocation",
)
@click.version_option(package_name="warmstack")
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    log_level: Optional[str],
    verbose: bool,
    log_dir: Optional[Path],
    runtime: Optional[str],
) -> None:
    """
    Warmstack: keep worker servers warm in containers

    Start named server instances once, then connect to them, read their
    logs and stop them by name.
    """
    try:
        config = load_config(
            config_file=str(config_file) if config_file else None,
            cli_overrides={
                k: v for k, v in {
                    "log_level": log_level.upper() if log_level else None,
                    "verbose": verbose or None,
                    "log_dir": str(log_dir) if log_dir else None,
                    "container_runtime": runtime.lower() if runtime else None,
                }.items() if v is not None
            },
        )
    except ValueError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        log_dir=config.log_dir,
        verbose=config.verbose,
        log_level=config.log_level,
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# Instance lifecycle commands
@cli.command()
@name_option
@click.option("--port", "-p", type=click.IntRange(1, 65535), help="Port to publish (skips port discovery)")
@click.option("--model", "-m", help="Model the worker should use")
@click.option(
    "--log-level",
    "worker_log_level",
    type=click.Choice(WORKER_LOG_LEVELS, case_sensitive=False),
    default="info",
    show_default=True,
    help="Worker log level",
)
@click.option("--mcp-config", help="MCP config file or directory for this instance")
@click.option("--no-mcp-install", is_flag=True, help="Skip installing MCP server dependencies")
@click.option("--no-pull", is_flag=True, help="Skip the image check and pull")
@click.pass_context
def start(
    ctx: click.Context,
    name: str,
    port: Optional[int],
    model: Optional[str],
    worker_log_level: str,
    mcp_config: Optional[str],
    no_mcp_install: bool,
    no_pull: bool,
) -> None:
    """Start a named server instance in the background."""
    options = StartOptions(
        port=port,
        model=model,
        log_level=worker_log_level.lower(),
        mcp_config=mcp_config,
        install_mcp_deps=not no_mcp_install,
        pull_image=not no_pull,
    )

    if port is None:
        click.echo(f"🚀 Starting server '{name}' (detecting port)...")
    else:
        click.echo(f"🚀 Starting server '{name}' on port {port}...")

    try:
        result = _get_manager(ctx).start(name, options)
    except WarmstackError as e:
        _fail(e)

    record = result.record
    click.echo(f"✅ Server '{name}' started on port {record.port}")
    click.echo(f"   Container: {record.container_label} ({record.short_handle})")
    click.echo(f"   Workspace: {_display_path(record.workspace_path)}")
    if record.model:
        click.echo(f"   Model    : {record.model}")
    if record.aux_config_path:
        click.echo(f"   MCP      : {_display_path(record.aux_config_path)}")
    click.echo(f"\nConnect with: warmstack connect --name {name}")


@cli.command()
@name_option
@click.pass_context
def stop(ctx: click.Context, name: str) -> None:
    """Stop a server instance and forget it."""
    try:
        record = _get_manager(ctx).stop(name)
    except WarmstackError as e:
        _fail(e)

    click.echo(f"✅ Server '{name}' stopped (port {record.port})")


@cli.command("list")
@click.pass_context
def list_servers(ctx: click.Context) -> None:
    """List all server instances."""
    try:
        instances = _get_manager(ctx).list_instances()
    except WarmstackError as e:
        _fail(e)

    if not instances:
        click.echo("No server instances found.")
        click.echo("Start one with: warmstack start --name <name>")
        return

    rows = [
        (
            status.record.instance_name,
            status.status.value,
            str(status.record.port),
            status.uptime_display,
            _display_path(status.record.workspace_path),
        )
        for status in instances
    ]
    header = ("NAME", "STATUS", "PORT", "UPTIME", "WORKSPACE")
    widths = [max(len(row[i]) for row in rows + [header]) for i in range(len(header) - 1)]

    def format_row(row: Tuple[str, ...]) -> str:
        cells = [cell.ljust(width) for cell, width in zip(row, widths)]
        return "  ".join(cells + [row[-1]])

    click.echo(format_row(header))
    for row in rows:
        click.echo(format_row(row))


@cli.command()
@name_option
@click.pass_context
def status(ctx: click.Context, name: str) -> None:
    """Show the status of a server instance."""
    try:
        instance = _get_manager(ctx).status(name)
    except WarmstackError as e:
        _fail(e)

    record = instance.record
    icon = "🟢" if instance.running else "🔴"
    click.echo(f"{icon} Server '{name}': {instance.status.value}")
    click.echo(f"   Port      : {record.port}")
    click.echo(f"   Container : {record.container_label} ({record.short_handle})")
    click.echo(f"   Started   : {record.started_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    click.echo(f"   Uptime    : {instance.uptime_display}")
    click.echo(f"   Workspace : {_display_path(record.workspace_path)}")
    click.echo(f"   Model     : {record.model or 'default'}")
    click.echo(f"   Log level : {record.log_level}")
    if record.aux_config_path:
        click.echo(f"   MCP config: {_display_path(record.aux_config_path)}")


@cli.command()
@name_option
@click.option("--no-tty", is_flag=True, help="Run non-interactively and print the response")
@click.argument("prompt", nargs=-1)
@click.pass_context
def connect(ctx: click.Context, name: str, no_tty: bool, prompt: Tuple[str, ...]) -> None:
    """Connect to a running server instance.

    PROMPT: Optional prompt; required with --no-tty
    """
    if no_tty and not prompt:
        click.echo("❌ A prompt is required with --no-tty", err=True)
        sys.exit(1)

    try:
        result = _get_manager(ctx).connect(name, interactive=not no_tty, prompt=prompt)
    except WarmstackError as e:
        _fail(e)

    if no_tty:
        if result.combined_output:
            click.echo(result.combined_output)
        if not result.success:
            click.echo(f"❌ Worker exited with code {result.exit_code}", err=True)
            sys.exit(1)
        return

    if not result.success and result.exit_code not in INTERRUPTED_EXIT_CODES:
        sys.exit(result.exit_code if result.exit_code > 0 else 1)


@cli.command()
@name_option
@click.option("--tail", "-t", type=click.IntRange(min=0), help="Number of lines to show from the end")
@click.option("--follow", "-f", is_flag=True, help="Stream logs until interrupted")
@click.pass_context
def logs(ctx: click.Context, name: str, tail: Optional[int], follow: bool) -> None:
    """Show the logs of a server instance."""
    try:
        result = _get_manager(ctx).logs(name, tail=tail, follow=follow)
    except WarmstackError as e:
        _fail(e)

    if follow:
        if not result.success and result.exit_code not in INTERRUPTED_EXIT_CODES:
            click.echo(f"❌ Log stream ended with code {result.exit_code}", err=True)
            sys.exit(1)
        return

    if not result.success:
        click.echo(f"❌ Failed to fetch logs: {result.combined_output}", err=True)
        sys.exit(1)

    if result.combined_output:
        click.echo(result.combined_output)


# Runtime commands
@cli.group()
@click.pass_context
def runtime(ctx: click.Context) -> None:
    """Inspect and choose the container runtime."""
    pass


@runtime.command("show")
@click.pass_context
def runtime_show(ctx: click.Context) -> None:
    """Show the configured and the resolved runtime."""
    config: WarmstackConfig = ctx.obj["config"]
    click.echo(f"Configured runtime: {config.container_runtime}")

    try:
        resolved = _get_runtime(ctx)
    except WarmstackError as e:
        _fail(e)

    click.echo(f"Active runtime    : {resolved.display_name} ({resolved.version()})")


@runtime.command("list")
@click.pass_context
def runtime_list(ctx: click.Context) -> None:
    """List supported runtimes and whether they are installed."""
    config: WarmstackConfig = ctx.obj["config"]
    click.echo("Container runtimes (auto-detection order):")

    for runtime_name in detection_order():
        adapter = create_runtime(runtime_name)
        marker = "*" if config.container_runtime == runtime_name else " "
        if adapter.is_available():
            click.echo(f"  {marker} ✅ {runtime_name:<10} {adapter.version()}")
        else:
            click.echo(f"  {marker} ❌ {runtime_name:<10} not installed ({adapter.install_hint})")


@runtime.command("set")
@click.option(
    "--runtime",
    "runtime_name",
    required=True,
    type=click.Choice(VALID_RUNTIMES, case_sensitive=False),
    help="Runtime to use by default",
)
@click.pass_context
def runtime_set(ctx: click.Context, runtime_name: str) -> None:
    """Persist the default container runtime."""
    config: WarmstackConfig = ctx.obj["config"]
    runtime_name = runtime_name.lower()

    if runtime_name != "auto" and not create_runtime(runtime_name).is_available():
        click.echo(f"⚠️  {RUNTIME_CLASSES[runtime_name].display_name} is not installed on this system")

    settings = config.load_user_settings()
    settings.runtime = runtime_name
    config.save_user_settings(settings)
    click.echo(f"✅ Default runtime set to: {runtime_name}")


# MCP commands
@cli.group()
@click.pass_context
def mcp(ctx: click.Context) -> None:
    """Manage MCP server configuration."""
    pass


@mcp.command("show")
@click.pass_context
def mcp_show(ctx: click.Context) -> None:
    """Show the MCP configuration new instances will use."""
    config: WarmstackConfig = ctx.obj["config"]
    click.echo(f"Global MCP path: {config.mcp_path or '(not set)'}")

    effective = get_effective_mcp_config_path(config)
    if effective is None:
        click.echo("No MCP configuration found.")
        click.echo("Create one with: warmstack mcp init")
        return

    click.echo(f"Effective config: {effective}")
    mcp_config = load_mcp_config(Path(effective))
    if mcp_config is None or not mcp_config.mcp_servers:
        click.echo("No MCP servers configured.")
        return

    click.echo("Servers:")
    for server_name, server in sorted(mcp_config.mcp_servers.items()):
        command = " ".join([server.command or "?"] + server.args)
        click.echo(f"  - {server_name}: {command}")


@mcp.command("set-path")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def mcp_set_path(ctx: click.Context, path: str) -> None:
    """Set the global MCP config directory.

    PATH: Directory containing mcp-config.json
    """
    config: WarmstackConfig = ctx.obj["config"]
    mcp_path = expand_path(path)

    if not (Path(mcp_path) / MCP_CONFIG_FILE).is_file():
        click.echo(f"⚠️  {MCP_CONFIG_FILE} not found in {mcp_path}")

    settings = config.load_user_settings()
    settings.mcp_path = mcp_path
    config.save_user_settings(settings)
    click.echo(f"✅ Global MCP path set to: {mcp_path}")


@mcp.command("clear-path")
@click.pass_context
def mcp_clear_path(ctx: click.Context) -> None:
    """Clear the global MCP config directory."""
    config: WarmstackConfig = ctx.obj["config"]
    settings = config.load_user_settings()
    settings.mcp_path = None
    config.save_user_settings(settings)
    click.echo("✅ Global MCP path cleared")


@mcp.command("init")
@click.pass_context
def mcp_init(ctx: click.Context) -> None:
    """Create a sample MCP config in the current directory."""
    created = init_local_mcp_config()
    if created is None:
        click.echo("⚠️  A local MCP config already exists")
        return
    click.echo(f"✅ Created sample MCP config: {created}")


# Model commands
@cli.group()
@click.pass_context
def model(ctx: click.Context) -> None:
    """Choose the default model for new instances."""
    pass


@model.command("show")
@click.pass_context
def model_show(ctx: click.Context) -> None:
    """Show the local, global and effective default model."""
    config: WarmstackConfig = ctx.obj["config"]
    local_model = read_local_model()
    global_model = normalize_model(config.default_model)

    click.echo("🤖 Model Configuration:")
    click.echo(f"   Local  ({LOCAL_MODEL_FILE}): {local_model or '(not set)'}")
    click.echo(f"   Global (settings file): {global_model or '(not set)'}")

    effective = resolve_default_model(config)
    if effective:
        click.echo(f"✅ New instances use: {effective}")
    else:
        click.echo("ℹ️  New instances use the worker's default model")


@model.command("set")
@click.argument("model_id")
@click.option("--global", "global_", is_flag=True, help="Set the default for all projects")
@click.pass_context
def model_set(ctx: click.Context, model_id: str, global_: bool) -> None:
    """Set the default model.

    MODEL_ID: Model to use, or 'default' for the worker's own default
    """
    config: WarmstackConfig = ctx.obj["config"]

    if global_:
        settings = config.load_user_settings()
        settings.model = model_id
        config.save_user_settings(settings)
        click.echo(f"✅ Global model set to: {model_id}")
        return

    path = write_local_model(model_id)
    click.echo(f"✅ Local model set to: {model_id}")
    click.echo(f"   Config: {path}")


@model.command("clear")
@click.option("--global", "global_", is_flag=True, help="Clear the default for all projects")
@click.pass_context
def model_clear(ctx: click.Context, global_: bool) -> None:
    """Clear the default model."""
    config: WarmstackConfig = ctx.obj["config"]

    if global_:
        settings = config.load_user_settings()
        if settings.model is None:
            click.echo("⚠️  No global model configured")
            return
        settings.model = None
        config.save_user_settings(settings)
        click.echo("✅ Global model cleared")
        return

    if clear_local_model():
        click.echo("✅ Local model cleared")
    else:
        click.echo("⚠️  No local model configured")


@model.command("list")
@click.pass_context
def model_list(ctx: click.Context) -> None:
    """List the models the worker image accepts."""
    config: WarmstackConfig = ctx.obj["config"]
    click.echo("🤖 Fetching available models...")

    try:
        token = GitHubCredentialProvider(config).get_token()
        models = list_available_models(_get_runtime(ctx), config, token)
    except WarmstackError as e:
        _fail(e)

    click.echo("Available models:")
    for model_id in models:
        click.echo(f"  • {model_id}")
    click.echo("\n💡 Set one with: warmstack model set <model> [--global]")


# Configuration commands
@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Display current configuration."""
    config: WarmstackConfig = ctx.obj["config"]
    values = config.mask_sensitive_values()

    click.echo("Current Warmstack Configuration:")
    click.echo("=" * 40)
    click.echo(f"Log Level           : {values['log_level']}")
    click.echo(f"Log Dir             : {values['log_dir']}")
    click.echo(f"Verbose             : {values['verbose']}")
    click.echo(f"Container Runtime   : {values['container_runtime']}")
    click.echo(f"Image               : {values['image_name']}")
    click.echo(f"Container Prefix    : {values['container_prefix']}")
    click.echo(f"State Dir           : {values['state_dir']}")
    click.echo(f"Worker Config Dir   : {values['worker_config_dir']}")
    click.echo(f"Port Discovery      : {values['port_discovery_timeout']}s "
               f"(every {values['port_discovery_interval']}s)")
    click.echo(f"Default Model       : {values['default_model'] or '(worker default)'}")
    click.echo(f"Prompt Timeout      : {values['prompt_timeout']}s")
    click.echo(f"MCP Path            : {values['mcp_path'] or '(not set)'}")
    click.echo(f"GitHub Token        : {values['github_token'] or '(from environment or gh)'}")
    click.echo(f"Settings File       : {values['settings_file']}")


@cli.command("check-system")
@click.pass_context
def check_system(ctx: click.Context) -> None:
    """Check that a container runtime and GitHub credentials are available."""
    config: WarmstackConfig = ctx.obj["config"]
    credentials = GitHubCredentialProvider(config)

    click.echo("🔍 Checking system requirements...")

    issues = []

    try:
        resolved = _get_runtime(ctx)
        click.echo(f"✅ {resolved.display_name} available: {resolved.version()}")
    except WarmstackError as e:
        issues.append((e.message, e.suggestion))

    if credentials.gh_available():
        click.echo("✅ GitHub CLI found")
        if credentials.gh_authenticated():
            click.echo("✅ GitHub CLI authenticated")
        else:
            issues.append(("Not authenticated with GitHub CLI", "Run 'gh auth login'"))
    else:
        click.echo("⚠️  GitHub CLI (gh) not found")

    try:
        credentials.get_token()
        click.echo("✅ GitHub token available")
    except WarmstackError as e:
        issues.append((e.message, e.suggestion))

    if issues:
        click.echo("\n❌ System check failed:")
        for message, suggestion in issues:
            click.echo(f"  ❌ {message}")
            if suggestion:
                click.echo(f"     💡 {suggestion}")
        click.echo(f"\nFound {len(issues)} issue(s)")
        sys.exit(1)

    click.echo("\n✅ System check passed!")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Display version information."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as get_version

    try:
        warmstack_version = get_version("warmstack")
    except PackageNotFoundError:
        warmstack_version = "development"

    click.echo(f"Warmstack version: {warmstack_version}")

    try:
        resolved = _get_runtime(ctx)
    except WarmstackError:
        click.echo("Container runtime: not available")
        return

    click.echo(f"Container runtime: {resolved.version()}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
