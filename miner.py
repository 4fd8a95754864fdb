#!/usr/bin/env python3
"""
NIBBLEPOW Miner CLI
Search for proof-of-work solutions to coordinator jobs.

Usage:
    nibblepow-miner start                        Start mining (saved or default coordinator)
    nibblepow-miner start --url <url>            Mine against a specific coordinator
    nibblepow-miner start --workers 8            Use 8 search threads
    nibblepow-miner status                       Show the coordinator's current job
    nibblepow-miner set-url <url>                Set default coordinator URL
"""

import sys
import os
import json
import argparse
import logging

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import config
from core.errors import MalformedJobError, InvariantViolation
from core.job import JobDescriptor, encode_job
from mining.coordinator import Coordinator, format_hashrate
from network.client import CoordinatorClient

logger = logging.getLogger('nibblepow')


def load_miner_config(path: str = None) -> dict:
    """Load miner configuration."""
    path = path or config.MINER_CONFIG_FILE
    if os.path.exists(path):
        with open(path, 'r') as f:
            return json.load(f)
    return {}


def save_miner_config(cfg: dict, path: str = None):
    """Save miner configuration."""
    path = path or config.MINER_CONFIG_FILE
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        json.dump(cfg, f, indent=2)


def resolve_settings(args, saved: dict = None) -> dict:
    """CLI flags override the settings file, which overrides config defaults."""
    settings = config.get_miner_defaults()
    settings.update({k: v for k, v in (saved or {}).items() if k in settings})

    for key in ('url', 'workers', 'poll_interval'):
        value = getattr(args, key, None)
        if value is not None:
            settings[key] = value

    if settings['workers'] < 1:
        raise ValueError("--workers must be at least 1")
    if settings['poll_interval'] <= 0:
        raise ValueError("--poll-interval must be positive")
    return settings


def setup_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, level),
        format="[%(asctime)s] %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def cmd_start(args):
    """Start mining."""
    try:
        settings = resolve_settings(args, load_miner_config())
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print("""
╔══════════════════════════════════════════════════════════╗
║                   NIBBLEPOW Miner                        ║
╚══════════════════════════════════════════════════════════╝
""")
    print(f"Coordinator:   {settings['url']}")
    print(f"Workers:       {settings['workers']}")
    print(f"Poll interval: {settings['poll_interval']}s")
    print(f"\nPress Ctrl+C to stop mining.\n")

    client = CoordinatorClient(base_url=settings['url'])
    coordinator = Coordinator(
        fetch_job=client.fetch_job,
        submit_solution=client.submit_solution,
        num_workers=settings['workers'],
        poll_interval=settings['poll_interval'],
    )

    exit_code = 0
    try:
        coordinator.run(max_solutions=args.solutions or 0)
    except KeyboardInterrupt:
        print(f"\n\nMining stopped!")
        coordinator.shutdown()
    except InvariantViolation as e:
        logger.critical(f"Internal coordination error: {e}")
        exit_code = 2
    finally:
        client.close()

    stats = coordinator.stats
    print(f"""
╔══════════════════════════════════════════════════════════╗
║                   Mining Summary                         ║
╠══════════════════════════════════════════════════════════╣
║  Time:             {stats.elapsed / 60:<10.1f} minutes                   ║
║  Hashrate:         {format_hashrate(stats.hashrate):<38}║
║  Solutions:        {stats.submitted}/{stats.solutions:<36}║
║  Job restarts:     {stats.restarts:<38}║
║  Malformed jobs:   {stats.malformed_jobs:<38}║
╚══════════════════════════════════════════════════════════╝
""")
    return exit_code


def cmd_status(args):
    """Show the coordinator's current job."""
    settings = resolve_settings(args, load_miner_config())
    client = CoordinatorClient(base_url=settings['url'])

    print("\n📊 NIBBLEPOW Coordinator Status")
    print("═" * 50)
    print(f"  Coordinator: {settings['url']}")

    try:
        text = client.get_status()
    finally:
        client.close()

    if text is None:
        print(f"  Coordinator: ✗ Unreachable\n")
        return 1

    print(f"  Coordinator: ✓ Online")
    try:
        encoded = encode_job(JobDescriptor(raw=text))
    except MalformedJobError as e:
        print(f"  Job:         ✗ Malformed ({e})\n")
        return 1

    print(f"  Job:         {encoded.descriptor.content_id}")
    print(f"  Zeroes:      {encoded.target.zeroes}")
    print(f"  Difficulty:  {encoded.target.difficulty}")
    print(f"  Encoded:     {len(encoded.blob)} bytes")
    print()
    return 0


def cmd_set_url(args):
    """Set default coordinator URL."""
    cfg = load_miner_config()
    cfg['url'] = args.url
    save_miner_config(cfg)

    print(f"\n✓ Default coordinator set to:")
    print(f"  {args.url}\n")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='nibblepow-miner',
        description='NIBBLEPOW Miner CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log verbosity')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # start
    p_start = subparsers.add_parser('start', help='Start mining')
    p_start.add_argument('--url', '-u', help=f'Coordinator URL (default: {config.COORDINATOR_URL})')
    p_start.add_argument('--workers', '-t', type=int, help=f'Search threads (default: {config.DEFAULT_WORKER_COUNT})')
    p_start.add_argument('--poll-interval', '-p', type=float, dest='poll_interval',
                         help=f'Seconds between job polls (default: {config.POLL_INTERVAL})')
    p_start.add_argument('--solutions', '-n', type=int, help='Stop after submitting N solutions')

    # status
    p_status = subparsers.add_parser('status', help='Show the current job')
    p_status.add_argument('--url', '-u', help='Coordinator URL')

    # set-url
    p_seturl = subparsers.add_parser('set-url', help='Set default coordinator URL')
    p_seturl.add_argument('url', help='Coordinator URL')

    return parser


def main(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == 'start':
        return cmd_start(args)
    elif args.command == 'status':
        return cmd_status(args)
    elif args.command == 'set-url':
        return cmd_set_url(args)

    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
