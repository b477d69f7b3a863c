"""CLI entry point for plantr."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .bech32 import npub_decode
from .cache import Cache
from .config import Config, load_config
from .errors import FormatError, PlantrError
from .formatting import format_relative_time, format_task, plant_pot_naddr
from .relay import SqliteRelay
from .secret_codec import SecretCodec, hex_to_nsec, nsec_to_hex
from .signer import SignerFactory, WatchOnlySigner
from .store import PlantLogStore, PlantPotStore, WeatherStore
from .subscriptions import SubscriptionManager


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


class _NoDeviceSigners(SignerFactory):
    """The command line only reads; it never rebuilds device identities."""

    def from_secret(self, secret: bytes):
        raise PlantrError("Device signing is not available from the command line")


def _owner_pubkey(args: argparse.Namespace, config: Config) -> str:
    owner = args.owner or config.identity.owner_pubkey
    if not owner:
        raise PlantrError("No owner identity: pass --owner or set identity.owner_pubkey")
    if owner.startswith("npub1"):
        return npub_decode(owner)
    return owner


def _open_relay(config: Config) -> SqliteRelay:
    relay = SqliteRelay(config.relay.store_path, url=config.relay.url)
    relay.connect()
    return relay


async def cmd_pots(args: argparse.Namespace) -> int:
    """List the owner's current plant pots."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        owner = WatchOnlySigner(_owner_pubkey(args, config))
        store = PlantPotStore(relay, Cache(), owner, SecretCodec(_NoDeviceSigners()), config)
        pots = await store.list_pots()

        if not pots:
            print("No plant pots")
            return 0

        for pot in pots:
            print(f"{pot.display_name} ({pot.identifier}), updated {format_relative_time(pot.created_at)}")
            print(f"  device: {pot.device_pubkey}")
            if pot.weather_station:
                print(f"  weather station: {pot.weather_station}")
            if pot.tasks:
                for task in pot.tasks:
                    print(f"  - {format_task(task)}")
            else:
                print("  no pending tasks")
            print(f"  {plant_pot_naddr(pot, [config.relay.url])}")
        return 0
    finally:
        await relay.close()


async def cmd_logs(args: argparse.Namespace) -> int:
    """List the completion logs of one plant pot."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        store = PlantLogStore(relay, Cache(), _owner_pubkey(args, config), config)
        logs = await store.list_logs(args.identifier)

        if not logs:
            print(f"No logs for {args.identifier}")
            return 0

        for log in logs:
            tasks = ", ".join(format_task(t) for t in log.tasks) or "no tasks"
            print(f"{format_relative_time(log.created_at)}: {tasks}")
        return 0
    finally:
        await relay.close()


async def cmd_stations(args: argparse.Namespace) -> int:
    """List known weather stations."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        stations = await WeatherStore(relay, Cache(), config).list_stations()
        for station in stations:
            line = f"{station.name} {station.pubkey}"
            if station.geohash:
                line += f" [{station.geohash}]"
            print(line)
            if station.description:
                print(f"  {station.description}")
        if not stations:
            print("No weather stations")
        return 0
    finally:
        await relay.close()


async def cmd_reading(args: argparse.Namespace) -> int:
    """Show the latest reading of a weather station."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        reading = await WeatherStore(relay, Cache(), config).latest_reading(args.station)
        if reading is None:
            print("No readings")
            return 0
        print(f"Temperature: {reading.temperature or '-'}")
        print(f"Humidity: {reading.humidity or '-'}")
        print(f"Updated: {format_relative_time(reading.created_at)}")
        return 0
    finally:
        await relay.close()


async def cmd_watch(args: argparse.Namespace) -> int:
    """Follow live changes to the owner's pots and logs."""
    config = load_config(args.config)
    relay = _open_relay(config)
    cache = Cache()
    owner = _owner_pubkey(args, config)
    manager = SubscriptionManager(relay, cache, owner, config)

    cache.add_listener(lambda key: print(f"changed: {'/'.join(key)}"))

    try:
        store = PlantPotStore(
            relay, cache, WatchOnlySigner(owner), SecretCodec(_NoDeviceSigners()), config
        )
        await store.list_pots()
        await manager.watch_plant_pots()
        await manager.watch_plant_logs()

        print(f"Watching {len(manager.subscriptions)} subscriptions, Ctrl-C to stop")
        if args.seconds:
            await asyncio.sleep(args.seconds)
        else:
            await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await manager.close_all()
        await relay.close()
    return 0


async def cmd_import(args: argparse.Namespace) -> int:
    """Load records from a JSON-lines file into the local relay."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        added = await relay.import_jsonl(args.path)
        print(f"Imported {added} records")
        return 0
    finally:
        await relay.close()


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local relay statistics."""
    config = load_config(args.config)
    relay = _open_relay(config)
    try:
        stats = relay.get_stats()
        if args.json_output:
            print(json.dumps(stats, indent=2))
        else:
            print(f"Relay: {stats['url']} ({config.relay.store_path})")
            print(f"Records: {stats['total_records']}")
            for kind, count in sorted(stats["records_by_kind"].items()):
                print(f"  kind {kind}: {count}")
        return 0
    finally:
        await relay.close()


def cmd_key(args: argparse.Namespace) -> int:
    """Convert a device secret between hex and nsec."""
    try:
        if args.value.startswith("nsec1"):
            print(nsec_to_hex(args.value))
        else:
            print(hex_to_nsec(args.value))
    except FormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="plantr",
        description="Local view of plant pot command queues synced from a relay",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--owner",
        type=str,
        default=None,
        help="Owner identity (hex or npub), overrides identity.owner_pubkey",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Pots command
    pots_parser = subparsers.add_parser("pots", help="List plant pots")
    pots_parser.set_defaults(func=cmd_pots)

    # Logs command
    logs_parser = subparsers.add_parser("logs", help="List completion logs of a plant pot")
    logs_parser.add_argument("identifier", help="Plant pot identifier (d tag)")
    logs_parser.set_defaults(func=cmd_logs)

    # Weather commands
    stations_parser = subparsers.add_parser("stations", help="List weather stations")
    stations_parser.set_defaults(func=cmd_stations)

    reading_parser = subparsers.add_parser("reading", help="Latest weather reading")
    reading_parser.add_argument("station", help="Weather station identity (hex)")
    reading_parser.set_defaults(func=cmd_reading)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Follow live changes")
    watch_parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    # Import command
    import_parser = subparsers.add_parser("import", help="Import records from a JSON-lines file")
    import_parser.add_argument("path", type=Path, help="File with one record per line")
    import_parser.set_defaults(func=cmd_import)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local relay statistics")
    status_parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Key command
    key_parser = subparsers.add_parser("key", help="Convert a device secret between hex and nsec")
    key_parser.add_argument("value", help="64 character hex secret or nsec1... string")
    key_parser.set_defaults(func=cmd_key)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except PlantrError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
