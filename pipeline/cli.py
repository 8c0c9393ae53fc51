# cli.py
import argparse
import json
import sys
import time
from datetime import datetime
from pathlib import Path

if __package__ in (None, ""):
    project_root = Path(__file__).resolve().parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

from utils.config_loader import load_settings
from utils.logger import get_logger, log_stage
from utils.security import generate_api_key, hash_token
from pipeline.service import AllowListService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync and enforce the xmlrpc.php IP allow list.")
    parser.add_argument("--config", help="Path to allowlist.yaml (default: config/allowlist.yaml)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run one sync cycle (or loop with --interval-minutes)")
    sync.add_argument(
        "--interval-minutes",
        type=float,
        default=0.0,
        help="If >0, run the sync continuously at the specified interval.",
    )

    sub.add_parser("status", help="Show last sync status as JSON")
    sub.add_parser("rules", help="Print the rules block for manual copy/paste")
    log = sub.add_parser("log", help="Show the activity log, newest first")
    log.add_argument("--limit", type=int, default=None)
    sub.add_parser("activate", help="Seed default settings and run the initial sync")
    sub.add_parser("deactivate", help="Remove the rules block from the config file")
    sub.add_parser("uninstall", help="Remove rules, stored options and cached IPs")

    settings = sub.add_parser("configure", help="Update stored settings and re-sync")
    toggle = settings.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enabled", action="store_const", const=True)
    toggle.add_argument("--disable", dest="enabled", action="store_const", const=False)
    settings.add_argument("--ip-source", help="Feed URL (http, https or file)")
    settings.add_argument("--custom-ips-file", help="File with extra IPs/CIDRs, one per line")

    sub.add_parser("hash-key", help="Generate an API key and the hash to put in the config")
    return parser


def run_sync(service: AllowListService, interval_minutes: float, logger) -> int:
    def execute_once() -> bool:
        with log_stage(logger, "sync_total"):
            outcome = service.sync()
        print(outcome.status)
        return outcome.ok

    interval_seconds = max(0.0, interval_minutes) * 60.0
    if interval_seconds <= 0:
        return 0 if execute_once() else 1

    logger.info(
        "Starting continuous sync every %.1f minutes. Press Ctrl+C to stop.",
        interval_minutes,
    )
    iteration = 1
    try:
        while True:
            start_time = time.monotonic()
            logger.info("Sync iteration %d started at %s", iteration, datetime.now().isoformat())
            try:
                execute_once()
            except Exception:
                logger.exception("Sync iteration %d failed", iteration)

            elapsed = time.monotonic() - start_time
            sleep_for = max(0.0, interval_seconds - elapsed)
            logger.info(
                "Sync iteration %d completed in %.2fs; sleeping for %.2fs",
                iteration,
                elapsed,
                sleep_for,
            )
            iteration += 1
            time.sleep(sleep_for)
    except KeyboardInterrupt:
        logger.info("Continuous sync interrupted by user; exiting.")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "hash-key":
        api_key = generate_api_key()
        print(f"api_key: {api_key}")
        print(f"api_key_hash: {hash_token(api_key)}")
        return 0

    settings = load_settings(args.config)
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    logger = get_logger("cli", settings.log_level, "cli.log")
    logger.info("CLI invocation | command=%s config=%s", args.command, args.config)

    service = AllowListService(settings)

    if args.command == "sync":
        return run_sync(service, args.interval_minutes, logger)
    if args.command == "status":
        print(json.dumps(service.status().model_dump(mode="json"), indent=2))
        return 0
    if args.command == "rules":
        rules = service.manual_rules()
        print(rules or "No IPs loaded - run a sync first")
        return 0 if rules else 1
    if args.command == "log":
        lines = service.log_lines(args.limit)
        print("\n".join(lines) if lines else "No log entries yet")
        return 0
    if args.command == "activate":
        outcome = service.activate()
        print(outcome.status)
        return 0 if outcome.ok else 1
    if args.command == "deactivate":
        removed = service.deactivate()
        print("Rules removed" if removed else "Config file missing or not writable; nothing removed")
        return 0 if removed else 1
    if args.command == "uninstall":
        service.uninstall()
        print("Uninstalled")
        return 0
    if args.command == "configure":
        custom_ips = None
        if args.custom_ips_file:
            custom_ips = Path(args.custom_ips_file).read_text(encoding="utf-8")
        try:
            outcome = service.update_settings(
                enabled=args.enabled,
                ip_source=args.ip_source,
                custom_ips=custom_ips,
            )
        except ValueError as e:
            parser.error(str(e))
        if outcome is None:
            print("Protection disabled")
            return 0
        print(outcome.status)
        return 0 if outcome.ok else 1

    parser.error(f"Unknown command {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
