"""SQLite persistence adapter for TaxonomyCore.

The in-memory TaxonomyCore (from core.py) is the real engine; this adapter
handles durable storage only. Tables mirror the multitree schema: parent
edges, the node identity table, names per source tree, custom trees and the
calibration/publication records used for enrichment.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from multitree.engine.core import (
    DEFAULT_SOURCE_TREE,
    Calibration,
    CustomTree,
    Identity,
    MultitreeNode,
    Publication,
    TaxonName,
    TaxonomyCore,
)

SCHEMA_VERSION = "1"

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS multitree (
    node_id INTEGER PRIMARY KEY,
    parent_node_id INTEGER,
    is_public_path INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS node_identity (
    source_tree TEXT NOT NULL,
    source_node_id INTEGER NOT NULL,
    multitree_node_id INTEGER NOT NULL,
    is_pinned_node INTEGER NOT NULL DEFAULT 0,
    is_public_node INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (source_tree, source_node_id)
);

CREATE TABLE IF NOT EXISTS names (
    source_tree TEXT NOT NULL,
    source_node_id INTEGER NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    unique_name TEXT NOT NULL DEFAULT '',
    name_class TEXT NOT NULL DEFAULT 'scientific name',
    PRIMARY KEY (source_tree, source_node_id)
);

CREATE TABLE IF NOT EXISTS custom_trees (
    tree_id INTEGER PRIMARY KEY,
    source_tree TEXT NOT NULL UNIQUE,
    root_node_id INTEGER,
    calibration_id INTEGER,
    is_public INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS calibrations (
    calibration_id INTEGER PRIMARY KEY,
    node_name TEXT NOT NULL DEFAULT '',
    publication_id INTEGER,
    min_age REAL,
    max_age REAL
);

CREATE TABLE IF NOT EXISTS publications (
    publication_id INTEGER PRIMARY KEY,
    short_name TEXT NOT NULL DEFAULT '',
    full_reference TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_multitree_parent ON multitree(parent_node_id);
CREATE INDEX IF NOT EXISTS idx_identity_node ON node_identity(multitree_node_id);
"""

_TABLES = (
    "multitree",
    "node_identity",
    "names",
    "custom_trees",
    "calibrations",
    "publications",
)


class SQLiteStorage:
    """SQLite persistence adapter for TaxonomyCore."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        conn = self._conn
        has_meta = conn.execute(
            "SELECT count(*) FROM sqlite_master WHERE type='table' AND name='meta'"
        ).fetchone()[0]

        if has_meta:
            row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
            if row is None:
                raise ValueError(
                    f"Database has meta table but no schema_version key. "
                    f"The database at '{self._path}' may be corrupted."
                )
            if row[0] != SCHEMA_VERSION:
                raise ValueError(
                    f"Unsupported schema version '{row[0]}' in database "
                    f"'{self._path}'. Expected version {SCHEMA_VERSION}."
                )
            return

        conn.executescript(_SCHEMA_V1)
        conn.execute(
            "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
        conn.execute(
            "INSERT OR IGNORE INTO meta (key, value) VALUES ('default_source_tree', ?)",
            (DEFAULT_SOURCE_TREE,),
        )
        conn.commit()

    def close(self) -> None:
        self._conn.close()

    def save(self, store: TaxonomyCore) -> None:
        """Persist the whole store (full overwrite)."""
        conn = self._conn
        data = store.to_dict()
        try:
            for table in _TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES ('default_source_tree', ?)",
                (data["default_source_tree"],),
            )
            conn.executemany(
                "INSERT INTO multitree (node_id, parent_node_id, is_public_path) VALUES (?, ?, ?)",
                [(n["node_id"], n["parent_node_id"], int(n["is_public_path"])) for n in data["nodes"]],
            )
            conn.executemany(
                "INSERT INTO node_identity"
                " (source_tree, source_node_id, multitree_node_id, is_pinned_node, is_public_node)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        i["source_tree"],
                        i["source_node_id"],
                        i["multitree_node_id"],
                        int(i["is_pinned_node"]),
                        int(i["is_public_node"]),
                    )
                    for i in data["identities"]
                ],
            )
            conn.executemany(
                "INSERT INTO names (source_tree, source_node_id, name, unique_name, name_class)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (n["source_tree"], n["source_node_id"], n["name"], n["unique_name"], n["name_class"])
                    for n in data["names"]
                ],
            )
            conn.executemany(
                "INSERT INTO custom_trees"
                " (tree_id, source_tree, root_node_id, calibration_id, is_public)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (t["tree_id"], t["source_tree"], t["root_node_id"], t["calibration_id"], int(t["is_public"]))
                    for t in data["custom_trees"]
                ],
            )
            conn.executemany(
                "INSERT INTO calibrations"
                " (calibration_id, node_name, publication_id, min_age, max_age)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (c["calibration_id"], c["node_name"], c["publication_id"], c["min_age"], c["max_age"])
                    for c in data["calibrations"]
                ],
            )
            conn.executemany(
                "INSERT INTO publications (publication_id, short_name, full_reference)"
                " VALUES (?, ?, ?)",
                [(p["publication_id"], p["short_name"], p["full_reference"]) for p in data["publications"]],
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def load(self) -> TaxonomyCore:
        """Load the stored multitree into a fresh TaxonomyCore."""
        conn = self._conn
        row = conn.execute("SELECT value FROM meta WHERE key = 'default_source_tree'").fetchone()
        store = TaxonomyCore(default_source_tree=row[0] if row else DEFAULT_SOURCE_TREE)

        with store.batch():
            for node_id, parent_id, is_public_path in conn.execute(
                "SELECT node_id, parent_node_id, is_public_path FROM multitree"
            ):
                store.add_node(MultitreeNode(node_id, parent_id, bool(is_public_path)))

            for source_tree, source_node_id, mt_id, pinned, public in conn.execute(
                "SELECT source_tree, source_node_id, multitree_node_id, is_pinned_node,"
                " is_public_node FROM node_identity"
            ):
                store.add_identity(
                    Identity(source_tree, source_node_id, mt_id, bool(pinned), bool(public))
                )

            for source_tree, source_node_id, name, unique_name, name_class in conn.execute(
                "SELECT source_tree, source_node_id, name, unique_name, name_class FROM names"
            ):
                store.add_name(TaxonName(source_tree, source_node_id, name, unique_name, name_class))

            for tree_id, source_tree, root_node_id, calibration_id, is_public in conn.execute(
                "SELECT tree_id, source_tree, root_node_id, calibration_id, is_public"
                " FROM custom_trees"
            ):
                store.add_custom_tree(
                    CustomTree(tree_id, source_tree, root_node_id, calibration_id, bool(is_public))
                )

            for cal_row in conn.execute(
                "SELECT calibration_id, node_name, publication_id, min_age, max_age FROM calibrations"
            ):
                store.add_calibration(Calibration(*cal_row))

            for pub_row in conn.execute(
                "SELECT publication_id, short_name, full_reference FROM publications"
            ):
                store.add_publication(Publication(*pub_row))

        return store
