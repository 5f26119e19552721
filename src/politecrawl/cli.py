"""Command-line interface for PoliteCrawl."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from politecrawl import __version__
from politecrawl.config import Config, load_config
from politecrawl.crawler import CrawlOrchestrator, HttpTransport, RobotsPolicyResolver
from politecrawl.observability import MetricsManager, configure_logging
from politecrawl.protocols import CrawlError, CrawlRequest, CrawlResponse, Priority

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """PoliteCrawl - robots.txt-aware, rate-limited fetching."""
    config = load_config(Path(config_path) if config_path else None)
    if log_level:
        config.monitoring.log_level = log_level
    configure_logging(config.monitoring)
    if config.monitoring.prometheus_port:
        MetricsManager().start_server(config.monitoring.prometheus_port)
    ctx.obj = config


@cli.command()
@click.argument("urls", nargs=-1, required=True)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=Priority.NORMAL.value)
@click.option("--no-cache", is_flag=True, help="Bypass the response cache")
@click.option("--retries", type=int, default=None, help="Retries for retryable failures")
@click.pass_obj
def fetch(config: Config, urls: List[str], priority: str, no_cache: bool, retries: Optional[int]) -> None:
    """Crawl URLS sequentially and print a summary."""
    requests = [
        CrawlRequest(url=url, priority=Priority(priority), respect_cache=not no_cache, retries=retries)
        for url in urls
    ]

    async def run() -> None:
        async with CrawlOrchestrator(config) as orchestrator:
            results = await orchestrator.crawl_batch(requests)
            _print_results(results)
            stats = orchestrator.get_stats()
            console.print_json(json.dumps({k: v for k, v in stats.items() if k != "cache_stats"}, default=str))
            console.print_json(json.dumps(asdict(orchestrator.compliance_report())))

    asyncio.run(run())


def _print_results(results: List[CrawlResponse | CrawlError]) -> None:
    table = Table(title="Crawl results")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Cached")
    table.add_column("Bytes / Error")
    for result in results:
        if isinstance(result, CrawlResponse):
            table.add_row(result.url, str(result.status), "yes" if result.from_cache else "no", str(result.size))
        else:
            status = str(result.code) if result.code else result.kind.value
            retry = " (retryable)" if result.retryable else ""
            table.add_row(result.url, f"[red]{status}[/red]", "-", f"{result.error}{retry}")
    console.print(table)


@cli.command()
@click.argument("host")
@click.option("--path", "paths", multiple=True, help="Path to test against the policy (repeatable)")
@click.option("--user-agent", default=None, help="User agent to evaluate (defaults to the configured one)")
@click.pass_obj
def robots(config: Config, host: str, paths: List[str], user_agent: Optional[str]) -> None:
    """Fetch and show the robots.txt policy for HOST."""
    agent = user_agent or config.crawler.user_agent

    async def run() -> None:
        async with HttpTransport(config.crawler) as transport:
            resolver = RobotsPolicyResolver(transport, config.robots)
            policy = await resolver.get_policy(host)

        rule = policy.applicable_rule(agent)
        console.print(f"[bold]{host}[/bold]: {len(policy.rules)} rule(s), applicable agent: "
                      f"{rule.agent if rule else 'none'}")
        console.print(f"Crawl delay: {resolver.crawl_delay(policy, agent)}s")
        for sitemap in policy.sitemaps:
            console.print(f"Sitemap: {sitemap}")

        if paths:
            table = Table(title="Verdicts")
            table.add_column("Path")
            table.add_column("Allowed")
            for path in paths:
                allowed = resolver.is_allowed(policy, f"https://{host}{path}", agent)
                table.add_row(path, "[green]yes[/green]" if allowed else "[red]no[/red]")
            console.print(table)

    asyncio.run(run())


@cli.command(name="show-config")
@click.pass_obj
def show_config(config: Config) -> None:
    """Print the effective configuration."""
    console.print_json(config.model_dump_json())


def main() -> None:
    cli(obj=None)


if __name__ == "__main__":
    main()
