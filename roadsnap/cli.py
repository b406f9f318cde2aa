"""CLI entrypoint for batch road-snapped override creation."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from roadsnap.common.config_loader import load_engine_config
from roadsnap.common.constants import CATEGORIES, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS, HTTP_OK
from roadsnap.common.errors import ConfigError, OverrideError
from roadsnap.common.fs import dump_json, read_json_source, write_json
from roadsnap.common.http import HttpClient
from roadsnap.common.logging import build_logger, log_event
from roadsnap.pipeline.categories import CATEGORY_SPECS
from roadsnap.pipeline.orchestrator import OverrideResponse, build_orchestrator
from roadsnap.pipeline.store import PostgresOverrideStore


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("category", choices=CATEGORIES)
    parser.add_argument("--request", required=True, help="JSON request body file, or - for stdin")
    parser.add_argument("--detailed", action="store_true", help="force structured per-item details")
    parser.add_argument("--output", default=None, help="write the response JSON here as well as stdout")
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--log-dir", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    return parser.parse_args(argv)


def exit_code_for(response: OverrideResponse) -> int:
    if response.status_code != HTTP_OK:
        return EXIT_HARD_FAIL
    body = response.body
    if body.get("failed_count") or body.get("skipped_count"):
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    logger = build_logger(Path(args.log_dir) if args.log_dir else None, level=args.log_level)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    config = load_engine_config(Path(args.config_dir), overlay_config_dir=overlay_config_dir)

    dsn = os.environ.get(config.store_dsn_env)
    if not dsn:
        raise ConfigError(f"Environment variable {config.store_dsn_env} is not set")

    body = read_json_source(args.request)
    if args.detailed and isinstance(body, dict):
        body = {**body, "detailed": True}

    spec = CATEGORY_SPECS[args.category]
    with HttpClient(retry=config.http_retry, rate_limits=config.rate_limits()) as http_client:
        orchestrator = build_orchestrator(spec, config, PostgresOverrideStore(dsn), http_client)
        response = orchestrator.handle(body)

    payload = {"status_code": response.status_code, **response.body}
    print(dump_json(payload))
    if args.output:
        write_json(Path(args.output), payload)

    log_event(
        logger,
        f"{args.category} batch finished with status {response.status_code}",
        category=spec.name,
        event="CLI_DONE",
        status=str(response.status_code),
    )
    return exit_code_for(response)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except OverrideError as exc:
        print(f"error [{exc.error_code}]: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
