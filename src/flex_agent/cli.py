"""Flex Agent CLI - config driven metrics collection."""

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .agent import Agent
from .config import DEFAULT_EVENT_LIMIT, DEFAULT_METRIC_API_URL, AgentSettings
from .dispatcher import RunResult
from .errors import ConfigError
from .loader import discover_files, load_file
from .pipeline import compile_pipeline
from .sources import detect_kind, list_sources

console = Console(stderr=True)


def setup_logging(level: str):
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def config_options(func):
    """Options shared by every command that reads configs."""
    func = click.option("--config-file", "-c", envvar="FLEX_CONFIG_FILE", default="", help="Single config file")(func)
    func = click.option("--config-dir", "-d", envvar="FLEX_CONFIG_DIR", default="flexConfigs/", show_default=True, help="Directory of YAML configs")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="flex-agent")
def main():
    """Flex Agent - collect metrics from commands, HTTP, files, SQL and JMX."""
    pass


@main.command()
@config_options
@click.option("--event-limit", envvar="FLEX_EVENT_LIMIT", default=DEFAULT_EVENT_LIMIT, show_default=True, help="Max samples emitted per cycle (0 = unlimited)")
@click.option("--force-log-event", envvar="FLEX_FORCE_LOG_EVENT", is_flag=True, help="Also log Metric API bound samples as events")
@click.option("--entity", envvar="FLEX_ENTITY", default="", help="Entity name for the integration payload")
@click.option("--metric-api-url", envvar="FLEX_METRIC_API_URL", default=DEFAULT_METRIC_API_URL, help="Metric API endpoint")
@click.option("--metric-api-key", envvar="FLEX_METRIC_API_KEY", default="", help="Metric API key")
@click.option("--insights-url", envvar="FLEX_INSIGHTS_URL", default="", help="Insights insert endpoint")
@click.option("--insights-api-key", envvar="FLEX_INSIGHTS_API_KEY", default="", help="Insights insert key")
@click.option("--insights-output", envvar="FLEX_INSIGHTS_OUTPUT", is_flag=True, help="Send metric sets to Insights")
@click.option("--interval", envvar="FLEX_INTERVAL", default=60, show_default=True, help="Seconds between cycles")
@click.option("--max-concurrency", envvar="FLEX_MAX_CONCURRENCY", default=10, show_default=True, help="APIs fetched at once")
@click.option("--log-level", default="INFO", help="Log level")
@click.option("--once", is_flag=True, help="Run one cycle, print the payload and exit")
def run(
    config_file: str,
    config_dir: str,
    event_limit: int,
    force_log_event: bool,
    entity: str,
    metric_api_url: str,
    metric_api_key: str,
    insights_url: str,
    insights_api_key: str,
    insights_output: bool,
    interval: int,
    max_concurrency: int,
    log_level: str,
    once: bool,
):
    """Run the flex collection agent."""
    setup_logging(log_level)

    settings = AgentSettings(
        config_file=config_file,
        config_dir=config_dir,
        event_limit=event_limit,
        force_log_event=force_log_event,
        entity=entity,
        metric_api_url=metric_api_url,
        metric_api_key=metric_api_key,
        insights_url=insights_url,
        insights_api_key=insights_api_key,
        insights_output=insights_output,
        interval=interval,
        max_concurrency=max_concurrency,
        integration_version=__version__,
    )
    agent = Agent(settings, output=sys.stdout)

    async def _run():
        agent.setup()
        if once:
            results = await agent.run_once()
            await agent.harvest()
            await agent.stop()
            _display_results(results)
            return

        console.print(Panel(
            f"[bold green]Flex Agent v{__version__}[/bold green]\n"
            f"Configs: {len(agent.configs)}\n"
            f"Metric API: {settings.metric_api_url if settings.metric_api_key else 'disabled'}\n"
            f"Interval: {interval}s",
            title="Starting",
        ))
        await agent.run()

    asyncio.run(_run())


def _display_results(results: list[RunResult]):
    """Display one table row per dataset plus any failures."""
    table = Table(title="Collected Datasets", show_lines=False)
    table.add_column("Unit", style="cyan")
    table.add_column("Samples", justify="right")
    table.add_column("Dropped", justify="right", style="yellow")
    table.add_column("Mode", style="dim")

    failures = []
    for result in results:
        failures.extend(result.failures)
        for dataset in result.datasets:
            mode = "metric api" if dataset.metric_bound else "payload"
            table.add_row(dataset.unit, str(len(dataset.samples)), str(dataset.dropped), mode)

    console.print(table)
    for failure in failures:
        console.print(f"  [red]x {failure.unit}: {failure.error}[/red]")


@main.command()
@config_options
def validate(config_file: str, config_dir: str):
    """Load configs and compile every API without fetching anything."""
    settings = AgentSettings(config_file=config_file, config_dir=config_dir)
    paths = discover_files(settings)
    if not paths:
        console.print("[yellow]No config files found[/yellow]")
        sys.exit(1)

    table = Table(show_header=True)
    table.add_column("Config", style="cyan")
    table.add_column("API")
    table.add_column("Source")
    table.add_column("Stages", justify="right")
    table.add_column("Status")

    errors = 0
    for path in paths:
        try:
            configs = load_file(path)
        except ConfigError as e:
            table.add_row(path.name, "-", "-", "-", f"[red]x {e.message}[/red]")
            errors += 1
            continue
        for config in configs:
            for api in config.apis:
                kind = detect_kind(api)
                try:
                    stages = str(len(compile_pipeline(api, config.custom_attributes)))
                    status = "[green]+ ok[/green]" if kind else "[red]x no source[/red]"
                    errors += 0 if kind else 1
                except ConfigError as e:
                    stages = "-"
                    status = f"[red]x {e}[/red]"
                    errors += 1
                table.add_row(path.name, api.name or "<unnamed>", kind.value if kind else "-", stages, status)

    console.print(table)
    if errors:
        console.print(f"\n[red]{errors} problem(s) found[/red]")
        sys.exit(1)


SOURCE_INFO = {
    "cache": ("Output stored by an earlier API", "cache"),
    "file": ("Local file contents", "file"),
    "url": ("HTTP(S) endpoint, JSON or Prometheus text", "url"),
    "database": ("SQL queries through a DB-API driver", "database, db_conn, db_queries"),
    "jmx": ("MBean queries through nrjmx", "jmx, commands"),
    "shell": ("Shell commands", "commands"),
}


@main.command()
def sources():
    """List available source kinds."""
    console.print("[bold]Available Sources:[/bold]\n")

    table = Table(show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Description")
    table.add_column("Selected by", style="dim")

    registered = list_sources()
    for kind, (desc, fields) in SOURCE_INFO.items():
        status = "[green]+" if kind in registered else "[red]x"
        table.add_row(f"{status} {kind}", desc, fields)

    console.print(table)


if __name__ == "__main__":
    main()
