from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from kg_pathfinder.errors import InvalidParameterError, MalformedPathError
from kg_pathfinder.settings import settings

console = Console(markup=False, highlight=False)
err_console = Console(stderr=True, markup=False, highlight=False)


def _configure_logging(verbose: bool = False) -> None:
    level = "DEBUG" if verbose else (settings.log_level or "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging (includes every SPARQL query)")
def cli(verbose):
    """kg-pathfinder - find how two entities are connected"""
    _configure_logging(verbose)


@cli.command()
@click.argument("source")
@click.argument("target")
@click.option("--endpoint", default="https://dbpedia.org/sparql", show_default=True, help="SPARQL endpoint URL")
@click.option("--topic", default="", help="Rank paths by relevance to this topic")
@click.option("--max-results", default=None, type=int, help="Paths to show")
@click.option("--max-depth", default=None, type=int, help="Longest path, in hops")
@click.option("--predicate", "predicates", multiple=True, help="Only follow these predicates")
@click.option("--label-path", default=None, help='Property path to labels, e.g. "rdfs:label"')
@click.option("--deadline", default=None, type=float, help="Stop searching after N seconds")
def explore(source, target, endpoint, topic, max_results, max_depth, predicates, label_path, deadline):
    """Find paths between SOURCE and TARGET"""
    from kg_pathfinder.exploration import PathExplorationService

    async def run() -> str:
        async with PathExplorationService() as service:
            return await service.explore(
                source,
                target,
                endpoint,
                topic=topic,
                max_results=max_results,
                max_depth=max_depth,
                predicates=list(predicates) or None,
                label_path=label_path,
                deadline_s=deadline,
            )

    try:
        text = asyncio.run(run())
    except (InvalidParameterError, MalformedPathError) as e:
        err_console.print(f"Error: {e}")
        sys.exit(2)
    console.print(text)


@cli.command("resolve-path")
@click.argument("expression")
@click.option("--subject", default="?entity", show_default=True, help="Term the path starts from")
@click.option("--variable", default=None, help="Name of the final variable")
def resolve_path(expression, subject, variable):
    """Show the graph patterns for a property path EXPRESSION"""
    from kg_pathfinder.sparql.property_path import resolve

    try:
        resolved = resolve(expression, subject=subject, variable=variable)
    except MalformedPathError as e:
        err_console.print(f"Error: {e}")
        sys.exit(2)

    table = Table(title=f"Property path {resolved.path_id}")
    table.add_column("#", style="cyan", width=4)
    table.add_column("Pattern", style="white", overflow="fold")
    for i, pattern in enumerate(resolved.patterns, 1):
        table.add_row(str(i), pattern)
    console.print(table)
    console.print(f"Final variable: {resolved.final_variable}")
    if resolved.alias:
        console.print(f"Alias: {resolved.alias}")


@cli.command()
def version():
    """Print the installed version"""
    from kg_pathfinder import __version__

    console.print(__version__)


if __name__ == "__main__":
    cli()
