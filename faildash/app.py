"""The dashboard's WSGI application and its command-line entry point."""

from __future__ import annotations

import argparse
import logging
import os
import posixpath
from collections.abc import Callable
from contextlib import ExitStack

from werkzeug.serving import run_simple
from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response

from .database import Database, DatabaseError
from .handlers import APIHandler, IngestHandler
from .importer import FileImporter
from .mttr import MTTRCalculator

log = logging.getLogger(__name__)

_FAILURES_SUBTREE = "/api/failures/"
_RESOLVE_SUFFIX = "/resolve"

Handler = Callable[[Request], Response]


def _not_found() -> Response:
    response = Response("404 page not found\n", status=404, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _clean_path(path: str) -> str:
    """Collapse repeated slashes and dot segments, keeping a trailing slash."""
    cleaned = posixpath.normpath(path or "/")
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    if path.endswith("/") and cleaned != "/":
        cleaned += "/"
    return cleaned


def create_app(db: Database) -> Callable:
    """Build the WSGI application serving the JSON API over the given database."""
    api = APIHandler(db, MTTRCalculator(db.conn))
    ingest = IngestHandler(db)
    routes: dict[str, Handler] = {
        "/api/dashboard": api.dashboard,
        "/api/failures": api.failures,
        "/api/mttr": api.mttr,
        "/api/pipelines": api.pipelines,
        "/api/jira/pending": api.pending_jira,
        "/api/ingest/jenkins": ingest.ingest_jenkins,
        "/api/ingest/github": ingest.ingest_github,
    }

    def failure_action(request: Request) -> Response:
        if request.path.endswith(_RESOLVE_SUFFIX):
            return ingest.resolve_failure(request)
        return _not_found()

    @Request.application
    def application(request: Request) -> Response:
        path = request.path
        cleaned = _clean_path(path)
        if cleaned != path and request.method != "CONNECT":
            query = request.query_string.decode("latin-1")
            return redirect(f"{cleaned}?{query}" if query else cleaned, code=301)
        handler = routes.get(path)
        if handler is not None:
            return handler(request)
        if path.startswith(_FAILURES_SUBTREE):
            return failure_action(request)
        return _not_found()

    return application


def _split_address(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    if not port_text.isdigit() or int(port_text) > 65535:
        raise ValueError(f"address {addr}: invalid port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host or "0.0.0.0", int(port_text)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="faildash", description="CI failure analysis dashboard")
    parser.add_argument("-addr", "--addr", default=":8080", help="HTTP listen address")
    parser.add_argument("-db", "--db", default="mcp-dashboard.db", help="SQLite database path")
    parser.add_argument(
        "-import-dir",
        "--import-dir",
        dest="import_dir",
        default="",
        help="Directory to poll for JSON results (optional)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the dashboard server; returns the process exit status."""
    args = _parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        db = Database(args.db)
    except DatabaseError as exc:
        log.critical("Failed to open database: %s", exc)
        return 1

    with ExitStack() as stack:
        stack.callback(db.close)

        if args.import_dir:
            importer = FileImporter(db, args.import_dir)
            importer.start()
            stack.callback(importer.stop)
            log.info("File importer watching: %s", args.import_dir)
        else:
            env_dir = os.environ.get("MCP_IMPORT_DIR", "")
            if env_dir:
                importer = FileImporter(db, env_dir)
                importer.start()
                stack.callback(importer.stop)
                log.info("File importer watching (env): %s", env_dir)

        app = create_app(db)
        log.info("MCP Dashboard starting on %s", args.addr)
        log.info("Database: %s", args.db)
        try:
            host, port = _split_address(args.addr)
            run_simple(host, port, app, threaded=True)
        except (OSError, ValueError) as exc:
            log.critical("Server error: %s", exc)
            return 1
    return 0