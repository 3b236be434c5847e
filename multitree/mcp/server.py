"""Multitree MCP server — exposes taxonomy queries as tools for AI agents."""

from __future__ import annotations

import functools
import logging
import os
import sys
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from multitree.client import Multitree
from multitree.preview import render_preview

# All logging goes to stderr; stdout carries JSON-RPC
logging.basicConfig(stream=sys.stderr, level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("multitree.mcp")

DEFAULT_DB = "multitree.db"

# ---------------------------------------------------------------------------
# Client singleton — safe for single-process stdio MCP
# ---------------------------------------------------------------------------

_CLIENT: Multitree | None = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
    global _CLIENT
    db_path = os.environ.get("MULTITREE_DB_PATH", DEFAULT_DB)
    logger.info("Opening multitree database: %s", db_path)
    _CLIENT = Multitree(db_path)
    try:
        yield {}
    finally:
        if _CLIENT is not None:
            _CLIENT.close()
            _CLIENT = None


mcp = FastMCP(
    "Multitree",
    instructions=(
        "Multitree is a taxonomy store that overlays custom trees on the NCBI taxonomy. "
        "Taxa are referenced as (source_tree, source_node_id); resolve_taxon maps a "
        "reference to its multitree node id, which the structural tools expect. "
        "build_tree_description turns include (+) / exclude (-) hints into the "
        "minimal set of taxa a calibration should match."
    ),
    lifespan=app_lifespan,
)


def _get_client() -> Multitree:
    """Return the active Multitree client."""
    if _CLIENT is None:
        raise RuntimeError("Multitree client is not initialized")
    return _CLIENT


def _safe_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> dict:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            logger.exception("Tool %s failed", fn.__name__)
            return {"error": True, "message": f"{type(exc).__name__}: {exc}"}
    return wrapper


# ===================================================================
# Identity tools
# ===================================================================


@mcp.tool()
@_safe_tool
def resolve_taxon(source_tree: str, source_node_id: int) -> dict:
    """Resolve a source-tree reference to its multitree node id.

    Args:
        source_tree: Source tree label, e.g. "NCBI" or "FCD-12".
        source_node_id: Node id within that source tree.
    """
    mt = _get_client()
    node_id = mt.resolve(source_tree, source_node_id)
    return {
        "multitree_node_id": node_id,
        "references": [r.model_dump() for r in mt.references(node_id)],
    }


@mcp.tool()
@_safe_tool
def get_node_info(node_ids: list[int]) -> dict:
    """Get names, identity and calibration details for multitree nodes.

    Args:
        node_ids: Multitree node ids.
    """
    infos = _get_client().node_info(node_ids)
    return {"count": len(infos), "nodes": [i.model_dump() for i in infos]}


# ===================================================================
# Structure tools
# ===================================================================


@mcp.tool()
@_safe_tool
def get_ancestors(node_id: int) -> dict:
    """Get the root-ward path of a multitree node (the node itself at depth 0).

    Args:
        node_id: Multitree node id.
    """
    steps = _get_client().ancestors(node_id)
    return {"count": len(steps), "ancestors": [s.model_dump() for s in steps]}


@mcp.tool()
@_safe_tool
def get_mrca(node_a: int, node_b: int) -> dict:
    """Find the most recent common ancestor of two multitree nodes.

    Args:
        node_a: First multitree node id.
        node_b: Second multitree node id.
    """
    mt = _get_client()
    mrca_id = mt.mrca(node_a, node_b)
    return {"mrca": mrca_id, "name": mt.lookup_name(mrca_id)["unique_name"]}


@mcp.tool()
@_safe_tool
def get_clade(node_id: int, depth_limit: int | None = None) -> dict:
    """Get a node and its descendants, breadth-first.

    Args:
        node_id: Clade root (multitree node id).
        depth_limit: Deepest level to return (1 = the root and its children); omit for the full clade.
    """
    members = _get_client().clade(node_id, depth_limit=depth_limit)
    return {"count": len(members), "members": [m.model_dump() for m in members]}


# ===================================================================
# Tree description tools
# ===================================================================


@mcp.tool()
@_safe_tool
def build_tree_description(
    hints: list[dict[str, Any]],
    calibration_id: int | None = None,
) -> dict:
    """Compute the taxa a calibration matches from include/exclude hints.

    Args:
        hints: Hints with keys source_tree, source_node_id, operator ("+" or "-"),
            taxon_name, side ("A" or "B") and display_order.
        calibration_id: Calibration to attribute the entries to.
    """
    description = _get_client().tree_description(hints, calibration_id=calibration_id)
    return {
        "count": len(description.entries),
        "seed_node_id": description.seed_node_id,
        "entries": [e.model_dump() for e in description.entries],
        "skipped": [s.model_dump() for s in description.skipped],
        "preview": render_preview(description),
    }


@mcp.tool()
@_safe_tool
def get_stats() -> dict:
    """Get node, identity and name counts for the multitree."""
    return _get_client().stats().model_dump()


# ===================================================================
# Entry point
# ===================================================================


def run_server() -> None:
    """Run the multitree MCP server over stdio."""
    mcp.run(transport="stdio")
