"""Multitree CLI — command-line interface for taxonomy queries and tree previews."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from multitree.client import Multitree
from multitree.preview import render_preview

DEFAULT_DB = "multitree.db"


@click.group()
@click.option(
    "--db",
    default=DEFAULT_DB,
    envvar="MULTITREE_DB_PATH",
    help="Path to the database file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, verbose: bool) -> None:
    """Multitree CLI — resolve taxa and preview calibration tree descriptions."""
    if verbose:
        logging.basicConfig(stream=sys.stderr, level=logging.DEBUG, format="%(levelname)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["db"] = db


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize a new multitree database."""
    db_path = ctx.obj["db"]
    if Path(db_path).exists():
        click.echo(f"Database already exists at {db_path}")
        return
    Multitree(db_path).close()
    click.echo(f"Initialized multitree database at {db_path}")


@cli.command()
@click.argument("node_id", type=int)
@click.option("--parent", type=int, default=None, help="Parent node id (omit for a root).")
@click.option("--name", default=None, help="Scientific name in the reference taxonomy.")
@click.pass_context
def node(ctx: click.Context, node_id: int, parent: int | None, name: str | None) -> None:
    """Create or re-parent a multitree node."""
    with Multitree(ctx.obj["db"]) as mt:
        with mt.batch():
            mt.node(node_id, parent=parent)
            if name:
                mt.name(mt.default_source_tree, node_id, name)
    click.echo(f"Node: {node_id} (parent={parent})")


@cli.command()
@click.argument("source_tree")
@click.argument("source_node_id", type=int)
@click.argument("multitree_node_id", type=int)
@click.pass_context
def pin(ctx: click.Context, source_tree: str, source_node_id: int, multitree_node_id: int) -> None:
    """Pin a custom-tree node onto an existing multitree node."""
    with Multitree(ctx.obj["db"]) as mt:
        mt.pin(source_tree, source_node_id, multitree_node_id)
    click.echo(f"Pinned {source_tree}:{source_node_id} -> {multitree_node_id}")


@cli.command()
@click.argument("source_tree")
@click.argument("source_node_id", type=int)
@click.pass_context
def resolve(ctx: click.Context, source_tree: str, source_node_id: int) -> None:
    """Show the multitree node id for a source-tree reference."""
    with Multitree(ctx.obj["db"]) as mt:
        node_id = mt.resolve(source_tree, source_node_id)
        refs = ", ".join(str(r) for r in mt.references(node_id))
    click.echo(f"{source_tree}:{source_node_id} -> {node_id}  (references: {refs})")


@cli.command()
@click.argument("node_id", type=int)
@click.pass_context
def ancestors(ctx: click.Context, node_id: int) -> None:
    """List the ancestors of a multitree node, nearest first."""
    with Multitree(ctx.obj["db"]) as mt:
        steps = mt.ancestors(node_id)
        names = {s.node_id: mt.lookup_name(s.node_id)["unique_name"] for s in steps}
    if not steps:
        click.echo(f"Node {node_id} not found.")
        return
    for s in steps:
        click.echo(f"  {s.depth:>4}  {s.node_id}  {names[s.node_id]}")


@cli.command()
@click.argument("node_a", type=int)
@click.argument("node_b", type=int)
@click.pass_context
def mrca(ctx: click.Context, node_a: int, node_b: int) -> None:
    """Show the most recent common ancestor of two nodes."""
    with Multitree(ctx.obj["db"]) as mt:
        mrca_id = mt.mrca(node_a, node_b)
        name = mt.lookup_name(mrca_id)["unique_name"]
    click.echo(f"MRCA: {mrca_id}  {name}")


@cli.command()
@click.argument("node_id", type=int)
@click.option("--depth", "depth_limit", type=int, default=None, help="Levels below the root.")
@click.pass_context
def clade(ctx: click.Context, node_id: int, depth_limit: int | None) -> None:
    """List a node and its descendants."""
    with Multitree(ctx.obj["db"]) as mt:
        members = mt.clade(node_id, depth_limit=depth_limit)
        names = {m.node_id: mt.lookup_name(m.node_id)["unique_name"] for m in members}
    if not members:
        click.echo(f"Node {node_id} not found.")
        return
    for m in members:
        click.echo(f"{'  ' * m.depth}{names[m.node_id]} ({m.node_id})")


@cli.command()
@click.argument("hints_file", type=click.Path(exists=True))
@click.option("--calibration", "calibration_id", type=int, default=None, help="Calibration id.")
@click.option("--json", "as_json", is_flag=True, help="Print the tree description as JSON.")
@click.pass_context
def preview(ctx: click.Context, hints_file: str, calibration_id: int | None, as_json: bool) -> None:
    """Preview the tree description for a JSON list of hints."""
    hints = json.loads(Path(hints_file).read_text())
    with Multitree(ctx.obj["db"]) as mt:
        description = mt.tree_description(hints, calibration_id=calibration_id)
    if as_json:
        click.echo(description.model_dump_json(indent=2))
        return
    for skipped in description.skipped:
        click.echo(f"Skipped hint {skipped.hint.taxon_name!r}: {skipped.reason}", err=True)
    click.echo(render_preview(description))


@cli.command("import-taxdump")
@click.argument("nodes_file", type=click.Path(exists=True))
@click.argument("names_file", type=click.Path(exists=True), required=False)
@click.pass_context
def import_taxdump(ctx: click.Context, nodes_file: str, names_file: str | None) -> None:
    """Load NCBI nodes.dmp (and names.dmp) into the reference taxonomy."""
    with Multitree(ctx.obj["db"]) as mt:
        counts = mt.load_taxdump(nodes_file, names_file)
    click.echo(f"Imported {counts['nodes']} nodes and {counts['names']} names")


@cli.command("export")
@click.argument("output", type=click.Path())
@click.pass_context
def export_json(ctx: click.Context, output: str) -> None:
    """Export the multitree to a JSON snapshot."""
    with Multitree(ctx.obj["db"]) as mt:
        mt.export_json(output)
    click.echo(f"Exported snapshot to {output}")


@cli.command("import")
@click.argument("input_file", type=click.Path(exists=True))
@click.pass_context
def import_json(ctx: click.Context, input_file: str) -> None:
    """Replace the database contents with a JSON snapshot."""
    with Multitree(ctx.obj["db"]) as mt:
        mt.import_json(input_file)
    click.echo(f"Imported snapshot from {input_file} into {ctx.obj['db']}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show database statistics."""
    with Multitree(ctx.obj["db"]) as mt:
        s = mt.stats()
    click.echo(f"Nodes: {s.node_count}  Roots: {s.root_count}  Names: {s.name_count}")
    click.echo(f"Identities: {s.identity_count}  Pinned: {s.pinned_count}")
    click.echo(f"Custom trees: {s.custom_tree_count}  Calibrations: {s.calibration_count}")


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the integrity of the hierarchy."""
    with Multitree(ctx.obj["db"]) as mt:
        result = mt.validate()
    if result.valid:
        click.echo("Multitree is valid.")
    else:
        click.echo("Validation errors:")
        for err in result.errors:
            click.echo(f"  ERROR: {err}")
    for warn in result.warnings:
        click.echo(f"  WARNING: {warn}")


@cli.command()
@click.option("--db", default=None, help="Database path (overrides MULTITREE_DB_PATH).")
def mcp(db: str | None) -> None:
    """Start the MCP server for AI agent integration."""
    import os

    if db:
        os.environ["MULTITREE_DB_PATH"] = db
    from multitree.mcp.server import run_server

    run_server()


if __name__ == "__main__":
    cli()
