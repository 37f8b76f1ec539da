"""CLI entry-point to launch the PatientVault local HTTP API."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app
from api.service import PatientService
from core.errors import StorageError
from core.logging_utils import configure_json_logging, redact_secret
from core.paths import resolve_working_dir
from core.settings import load_settings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 27183
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]


def _resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip()
    if not host:
        host = DEFAULT_HOST
    norm = host.lower()
    if norm == "localhost":
        return "127.0.0.1"
    if norm.startswith("::ffff:"):
        norm = norm.split("::ffff:")[-1]
    if norm == "::1":
        return "127.0.0.1"
    if norm.startswith("127."):
        return norm
    raise ValueError(
        f"Refusing to bind API server to non-loopback host '{candidate}'. PatientVault only serves on localhost."
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the local PatientVault API service.")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument("--api-key", dest="api_key", default=None, help="Override the API key for this session")
    parser.add_argument("--working-dir", dest="working_dir", default=None, help="Override the working directory")
    parser.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Additional allowed CORS origin (repeatable).",
    )
    return parser.parse_args(argv)


def resolve_api_settings(args: argparse.Namespace) -> tuple[Path, dict, str, int, Optional[str], List[str]]:
    working_dir = Path(args.working_dir).expanduser() if args.working_dir else resolve_working_dir()
    settings = load_settings(working_dir)
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    host = _resolve_bind_host(args.host or api_settings.get("host") or DEFAULT_HOST)
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT

    api_key = args.api_key if args.api_key else api_settings.get("api_key")
    cors = list(args.cors) if args.cors else list(api_settings.get("cors_origins") or DEFAULT_CORS)
    return working_dir, settings, host, port, api_key, cors


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)
    try:
        working_dir, settings, host, port, api_key, cors = resolve_api_settings(args)
    except ValueError as exc:
        logging.error("%s", exc)
        return 2

    configure_json_logging(working_dir)
    try:
        service = PatientService(working_dir, settings=settings)
    except StorageError as exc:
        logging.error("Unable to open storage registry: %s", exc.message)
        return 1

    if api_key:
        logging.info("API key required (%s)", redact_secret(api_key))
    else:
        logging.info("No API key configured; serving loopback clients only.")

    config = APIServerConfig(
        service=service,
        api_key=api_key,
        cors_origins=cors,
        app_version=API_VERSION,
    )
    app = create_app(config)

    print(f"API listening on http://{host}:{port}", flush=True)

    uvicorn_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)
    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
