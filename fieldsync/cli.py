"""CLI entrypoint for the offline field data subsystem."""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path

from fieldsync.common.config_loader import load_config
from fieldsync.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from fieldsync.common.errors import FieldSyncError
from fieldsync.common.logging import build_logger, log_event
from fieldsync.dataset.normalise import valid_lat_lon
from fieldsync.geo.nearest import Coordinate
from fieldsync.service import DownloadOptions, FieldSyncService, build_service


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("query", nargs="?", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--force", action="store_true")
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    parser.add_argument("-k", type=int, default=3)
    return parser.parse_args(argv)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True))


def _print_progress(percent: int, pages: int, records: int, phase: str) -> None:
    print(f"{phase}: {percent}% ({pages} pages, {records} records)", file=sys.stderr)


def execute_command(args: argparse.Namespace, service: FieldSyncService) -> int:
    if args.command == "download":
        opts = DownloadOptions(
            page_size=args.page_size or int(service.config.dataset["page_size"]),
            concurrency=args.concurrency or int(service.config.dataset["concurrency"]),
            force=args.force,
        )
        result = service.download_dataset(opts, _print_progress)
        _print_json(dataclasses.asdict(result))
        return EXIT_SUCCESS if result.ok else EXIT_PARTIAL

    if args.command == "nearest":
        if args.lat is None or args.lng is None:
            raise SystemExit("nearest requires --lat and --lng")
        if not valid_lat_lon(args.lat, args.lng):
            print(f"invalid coordinate: lat={args.lat} lng={args.lng}", file=sys.stderr)
            return EXIT_HARD_FAIL
        meters = service.find_nearest_meters(Coordinate(lat=args.lat, lng=args.lng), args.k)
        _print_json([meter.to_dict() for meter in meters])
        return EXIT_SUCCESS

    if args.command == "search":
        _print_json([record.to_dict() for record in service.search_meters(args.query or "")])
        return EXIT_SUCCESS

    if args.command == "drain":
        service.queue.recover_in_flight()
        service.monitor.refresh()
        result = service.drain()
        _print_json(result.to_dict())
        return EXIT_PARTIAL if result.failed or result.skipped else EXIT_SUCCESS

    if args.command == "status":
        if args.force:
            service.monitor.refresh()
        manifest = service.dataset_manifest()
        _print_json(
            {
                "online": service.is_online(),
                "pending": service.pending_count(),
                "failed": [item.to_dict() for item in service.queue.failed_items()],
                "last_sync": service.queue.last_sync_status(),
                "dataset": manifest.to_dict(),
            }
        )
        return EXIT_SUCCESS

    if args.command == "drafts":
        _print_json([draft.to_dict() for draft in service.drafts.list()])
        return EXIT_SUCCESS

    raise ValueError(f"Unknown command: {args.command}")


def run_command(args: argparse.Namespace) -> int:
    data_dir = Path(args.data_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None

    logger = build_logger(data_dir, level=args.log_level)
    config = load_config(Path(args.config_dir), overlay_config_dir=overlay_config_dir)
    service = build_service(config, data_dir=data_dir)

    log_event(logger, "command start", component="cli", event="COMMAND_START", status=args.command)
    try:
        exit_code = execute_command(args, service)
    except FieldSyncError as exc:
        log_event(
            logger,
            f"command {args.command} failed: {exc}",
            component="cli",
            event="COMMAND_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        return EXIT_HARD_FAIL
    finally:
        service.api.client.close()
    log_event(logger, "command end", component="cli", event="COMMAND_END", status=str(exit_code))
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except FieldSyncError:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
