from __future__ import annotations

import argparse
import os

from .settings import ClientSettings


def parse_args(argv: list[str], settings: ClientSettings | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the chunked upload command; env settings supply defaults."""
    s = settings or ClientSettings.from_env()
    parser = argparse.ArgumentParser(description="Upload a project archive to the panel in chunks")
    parser.add_argument("file", help="Archive to upload")
    parser.add_argument("--base-url", default=s.base_url)
    parser.add_argument("--username", default=os.getenv("PANEL_USERNAME"))
    parser.add_argument("--password", default=os.getenv("PANEL_PASSWORD"))
    parser.add_argument("--project-name", required=True)
    parser.add_argument("--framework", default=None, dest="project_framework")
    parser.add_argument("--chunk-size-mb", type=float, default=s.chunk_size_mb)
    parser.add_argument("--retries", type=int, default=s.chunk_retries)
    parser.add_argument("--retry-delay", type=float, default=s.retry_delay_s)
    parser.add_argument("--timeout", type=float, default=s.timeout_s)
    parser.add_argument("--session-file", default=s.session_file)
    parser.add_argument("--health-timeout", type=float, default=20.0)
    return parser.parse_args(argv)
