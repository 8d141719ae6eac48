"""
Read-only API server over the wallpaper store.
Reads from the existing SQLite database. Never writes.

Run: python main.py serve
"""

import sqlite3
from pathlib import Path

from flask import Flask, jsonify, request

from models import Source

MAX_LIMIT = 200


def _parse_int(value: str | None, default: int, name: str) -> tuple[int, str | None]:
    """Parse an integer query param. Returns (value, error_message)."""
    if value is None:
        return default, None
    try:
        return int(value), None
    except (ValueError, TypeError):
        return default, f"Invalid value for '{name}': expected integer, got '{value}'"


def _parse_bool(value: str | None, name: str) -> tuple[bool | None, str | None]:
    if value is None or value == "":
        return None, None
    lowered = value.lower()
    if lowered in ("1", "true", "yes"):
        return True, None
    if lowered in ("0", "false", "no"):
        return False, None
    return None, f"Invalid value for '{name}': expected true/false, got '{value}'"


def _row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "source": row["source"],
        "content_url": row["content_url"],
        "preview_url": row["preview_url"],
        "title": row["title"],
        "attribution": row["attribution"],
        "local_path": row["local_path"],
        "local_preview_path": row["local_preview_path"],
        "pinned": bool(row["pinned"]),
        "added_at": row["added_at"],
    }


def create_app(db_path: Path):
    app = Flask(__name__)

    # ── CORS for development ──
    @app.after_request
    def add_cors(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        return response

    def get_db():
        """Open a read-only connection."""
        conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    # ── API Routes ──

    @app.route("/api/items")
    def list_items():
        source = request.args.get("source")
        limit, err = _parse_int(request.args.get("limit"), 50, "limit")
        if err:
            return jsonify({"error": err}), 400
        offset, err = _parse_int(request.args.get("offset"), 0, "offset")
        if err:
            return jsonify({"error": err}), 400
        pinned, err = _parse_bool(request.args.get("pinned"), "pinned")
        if err:
            return jsonify({"error": err}), 400

        if limit < 1 or offset < 0:
            return jsonify({"error": "'limit' must be >= 1 and 'offset' >= 0"}), 400
        limit = min(limit, MAX_LIMIT)

        if source and source not in {s.value for s in Source}:
            return jsonify({"error": f"Unknown source '{source}'"}), 400

        conditions = []
        params: list = []
        if source:
            conditions.append("source = ?")
            params.append(source)
        if pinned is not None:
            conditions.append("pinned = ?")
            params.append(1 if pinned else 0)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        conn = get_db()
        try:
            total = conn.execute(
                f"SELECT COUNT(*) as cnt FROM items {where}", params
            ).fetchone()["cnt"]

            rows = conn.execute(
                f"SELECT * FROM items {where} "
                f"ORDER BY added_at DESC, rowid DESC "
                f"LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()

            return jsonify({
                "items": [_row_to_dict(r) for r in rows],
                "total": total,
                "limit": limit,
                "offset": offset,
            })
        finally:
            conn.close()

    @app.route("/api/items/<item_id>")
    def get_item(item_id):
        conn = get_db()
        try:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            if not row:
                return jsonify({"error": "Item not found"}), 404
            return jsonify(_row_to_dict(row))
        finally:
            conn.close()

    @app.route("/api/stats")
    def get_stats():
        conn = get_db()
        try:
            total = conn.execute("SELECT COUNT(*) as cnt FROM items").fetchone()["cnt"]
            pinned = conn.execute(
                "SELECT COUNT(*) as cnt FROM items WHERE pinned = 1"
            ).fetchone()["cnt"]

            by_source = {}
            last_added = {}
            for row in conn.execute(
                "SELECT source, COUNT(*) as cnt, MAX(added_at) as latest "
                "FROM items GROUP BY source"
            ):
                by_source[row["source"]] = row["cnt"]
                last_added[row["source"]] = row["latest"]

            return jsonify({
                "total_items": total,
                "pinned_items": pinned,
                "by_source": by_source,
                "last_added": last_added,
            })
        finally:
            conn.close()

    return app
