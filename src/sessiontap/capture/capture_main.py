#!/usr/bin/env python3
"""
SessionTap - capture proxy for analytics ingestion traffic

Runs mitmproxy with the capture addon. Point the browser client's API host at
the proxy (reverse mode) or route the browser through it (regular mode).

Usage:
    sessiontap --listen 3001 --reverse https://us.i.posthog.com --data-dir data

Requirements:
    pip install mitmproxy
"""

import argparse
import asyncio
import logging

from mitmproxy import options
from mitmproxy.tools.dump import DumpMaster

from ..common.capture_log import CaptureStore
from .capture_addon import CaptureAddon
from .filters import IngestionFilter


# ============================================================================
# COMMAND-LINE INTERFACE
# ============================================================================

def parse_args(argv=None):
    """
    Parse command-line arguments.

    Returns:
        Namespace object with parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="SessionTap - capture proxy for analytics ingestion traffic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Reverse proxy in front of the ingestion host (set api_host to http://localhost:3001)
  %(prog)s --listen 3001 --reverse https://us.i.posthog.com

  # Regular proxy, capture only ingestion hosts
  %(prog)s --listen 8080 --filter-host "*.posthog.com"

  # Store captures somewhere else
  %(prog)s --listen 3001 --reverse https://us.i.posthog.com --data-dir captures/

Captured traffic is appended to:
  <data-dir>/events.jsonl
  <data-dir>/recordings.jsonl

Press Ctrl+C to stop.
        """
    )

    parser.add_argument(
        '--listen',
        type=int,
        default=3001,
        metavar='PORT',
        help='Port to listen on (default: 3001)'
    )

    parser.add_argument(
        '--listen-host',
        type=str,
        default='127.0.0.1',
        metavar='HOST',
        dest='listen_host',
        help='Interface to listen on (default: 127.0.0.1)'
    )

    parser.add_argument(
        '--reverse',
        type=str,
        default='',
        metavar='URL',
        help='Run as reverse proxy forwarding to this upstream (e.g. https://us.i.posthog.com)'
    )

    parser.add_argument(
        '--data-dir',
        type=str,
        default='data',
        metavar='PATH',
        dest='data_dir',
        help='Directory for capture logs (default: data)'
    )

    parser.add_argument(
        '--filter-host',
        type=str,
        default='',
        metavar='HOSTS',
        dest='filter_host',
        help='Capture only requests to these hosts (comma-separated). Supports wildcards: *.posthog.com'
    )

    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Reduce logging output'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Show requests passed through uncaptured'
    )

    return parser.parse_args(argv)


async def run_proxy(addon: CaptureAddon, listen_host: str, listen_port: int, mode: str, quiet: bool = False) -> None:
    """
    Run mitmproxy with the capture addon until interrupted.

    Args:
        addon: Capture addon instance
        listen_host: Interface to bind
        listen_port: Port to bind
        mode: mitmproxy mode spec ("regular" or "reverse:<url>")
        quiet: Disable mitmproxy's own event log
    """
    opts = options.Options(
        listen_host=listen_host,
        listen_port=listen_port,
        mode=[mode],
        ssl_insecure=True
    )
    master = DumpMaster(opts, with_termlog=not quiet, with_dumper=False)
    master.addons.add(addon)
    await master.run()


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main(argv=None):
    """
    Main entry point for the capture proxy.

    Flow:
    1. Parse command-line arguments
    2. Build the capture store, filter and addon
    3. Start mitmproxy with the addon
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s'
    )

    host_filters = [h.strip() for h in args.filter_host.split(',') if h.strip()]
    store = CaptureStore(args.data_dir)
    addon = CaptureAddon(
        store,
        ingestion_filter=IngestionFilter(host_filters),
        quiet=args.quiet,
        verbose=args.verbose
    )
    mode = f"reverse:{args.reverse}" if args.reverse else 'regular'

    # Print startup banner
    print(f"┌{'─' * 50}┐")
    print(f"│ SessionTap Capture Proxy                         │")
    print(f"├{'─' * 50}┤")
    print(f"│ Listening: http://{args.listen_host}:{args.listen:<{30 - len(args.listen_host)}} │")
    upstream = args.reverse or '(regular proxy)'
    upstream_display = upstream if len(upstream) <= 38 else upstream[:35] + "..."
    print(f"│ Upstream:  {upstream_display:<38} │")
    data_display = args.data_dir if len(args.data_dir) <= 38 else args.data_dir[:35] + "..."
    print(f"│ Data dir:  {data_display:<38} │")
    print(f"└{'─' * 50}┘")
    print()
    print("Press Ctrl+C to stop.\n", flush=True)

    try:
        asyncio.run(run_proxy(addon, args.listen_host, args.listen, mode, quiet=args.quiet))
    except KeyboardInterrupt:
        # Normal shutdown via Ctrl+C
        pass


if __name__ == '__main__':
    main()
