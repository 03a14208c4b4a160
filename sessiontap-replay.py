#!/usr/bin/env python3
"""
SessionTap Replay CLI

Command-line interface for replaying captured ingestion traffic.

Commands:
    replay      - Replay one captured recording as a new session
    plan        - Generate a demo dataset from a population plan
    inspect     - Summarize captured traffic

Examples:
    # Dry run a replay (nothing is sent)
    python3 sessiontap-replay.py replay --recording-id onboarding --user-id user-1

    # Send it for real
    python3 sessiontap-replay.py replay --config replay.yaml --live

    # Simulate a month of users (dry run first, then asks for confirmation)
    python3 sessiontap-replay.py plan generation-config.yaml

    # Look at what was captured
    python3 sessiontap-replay.py inspect --recording-id onboarding
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from sessiontap.capture.utils import summarize_record
from sessiontap.common import CaptureStore, SessionTapError, SourceIOError, get_project_key_from_env
from sessiontap.common.utils import parse_iso_ms
from sessiontap.replay import DemoPlan, DemoPlanner, ReplayConfig, ReplayResult, SessionReplayer, run_schedule


def parse_timestamp(value: str) -> int:
    """Epoch milliseconds or an ISO 8601 date/time."""
    if value.isdigit():
        return int(value)
    return parse_iso_ms(value)


def print_result(result: ReplayResult):
    mode = "DRY RUN" if result.dry_run else "LIVE"
    print(f"\n📊 Replay Summary ({mode}):")
    print(f"   Recordings: {result.total_recordings}")
    print(f"   Successful: {result.successful_recordings} ({result.success_rate:.1f}%)")
    print(f"   Failed: {result.failed_recordings}")
    print(f"   Time shift: {result.delta_ms} ms")
    print(f"   Duration: {result.total_duration_sec:.2f}s")
    for original, new in result.session_map.items():
        print(f"   Session: {original} → {new}")
    for outcome in result.outcomes:
        if outcome.failed:
            print(f"   ❌ Recording #{outcome.index}: {outcome.error_type}: {outcome.error}")


def cmd_replay(args):
    """
    Replay one captured recording as a new session.

    Args:
        args: Parsed command-line arguments
    """
    print(f"📡 SessionTap Replay")

    # Project key comes from the config file or environment only (never the command line)
    overrides: Dict[str, Any] = {
        'recording_id': args.recording_id,
        'target_user_id': args.user_id,
        'target_session_id': args.session_id,
        'target_timestamp': args.timestamp,
        'target_host': args.host,
        'data_dir': args.data_dir,
        'event_mode': args.event_mode,
        'timestamp_offset_ms': args.offset_ms,
        'max_in_flight': args.max_in_flight,
    }

    try:
        if args.config:
            config = ReplayConfig.from_yaml(args.config, **overrides)
        else:
            config = ReplayConfig.from_dict({k: v for k, v in overrides.items() if v is not None})
    except (OSError, ValueError, TypeError) as e:
        print(f"❌ Invalid replay configuration: {e}")
        if not get_project_key_from_env():
            print("   Set the project key with: export POSTHOG_API_KEY=phc_...")
        sys.exit(1)

    print(f"   Recording: {config.recording_id or '(unprefixed logs)'}")
    print(f"   Target: {config.base_url}")
    print(f"   Session: {config.target_session_id}")
    print(f"   User: {config.target_user_id}")
    if not args.live:
        print(f"   Mode: dry run (use --live to send)")

    replayer = SessionReplayer(config)
    try:
        result = asyncio.run(replayer.replay(dry_run=not args.live))
    except SourceIOError as e:
        print(f"❌ {e}")
        sys.exit(1)

    print_result(result)

    if args.output:
        replayer.save_result(result, args.output)

    if result.failed_recordings > 0:
        sys.exit(1)


def cmd_plan(args):
    """
    Generate a demo dataset from a population plan.

    The first pass is always a dry run; a live run only follows an explicit "Y".

    Args:
        args: Parsed command-line arguments
    """
    print(f"🗓️  SessionTap Demo Planner")
    print(f"   Plan: {args.plan_file}")

    try:
        plan = DemoPlan.from_yaml(args.plan_file)
    except (OSError, ValueError, KeyError) as e:
        print(f"❌ Invalid plan: {e}")
        sys.exit(1)

    if args.seed is not None:
        plan.seed = args.seed

    defaults = dict(plan.replay)
    if args.data_dir:
        defaults['data_dir'] = args.data_dir

    schedule = DemoPlanner(plan).schedule()
    print(f"   Scheduled sessions: {len(schedule)}")
    print(f"   Users: {len({s.user_id for s in schedule})}")
    print()
    print("INFO: The first run will ALWAYS be a dry run (no data will be sent).")
    print("INFO: After seeing the dry run output, you may confirm a LIVE run.\n")

    def report(session, result):
        icon = "✅" if result.failed_recordings == 0 else "❌"
        print(f"{icon} {session.user_id} ({session.persona}) session {session.session_index} "
              f"← {session.recording_id}: {result.successful_recordings}/{result.total_recordings} recording(s)")

    try:
        asyncio.run(run_schedule(schedule, defaults, dry_run=True, on_result=report))
    except (SessionTapError, ValueError) as e:
        print(f"❌ Dry run failed: {e}")
        sys.exit(1)

    answer = input('\nDo you want to perform a LIVE run and send data? '
                   'Type "Y" (capital Y) and press Enter to continue: ')
    if answer != "Y":
        print("LIVE run cancelled. No data has been sent.")
        return

    try:
        results = asyncio.run(run_schedule(schedule, defaults, dry_run=False, on_result=report))
    except SessionTapError as e:
        print(f"❌ Live run aborted: {e}")
        sys.exit(1)

    failed = sum(1 for r in results if r.failed_recordings)
    print(f"\n📊 {len(results) - failed}/{len(results)} sessions replayed without failures")
    if failed:
        sys.exit(1)


def cmd_inspect(args):
    """
    Summarize captured traffic.

    Args:
        args: Parsed command-line arguments
    """
    print(f"🔍 SessionTap Capture Inspection")
    store = CaptureStore(args.data_dir)

    try:
        recordings = store.load_recordings(args.recording_id)
        events = store.load_events(args.recording_id)
    except SourceIOError as e:
        print(f"❌ {e}")
        sys.exit(1)

    undecodable = 0
    for record in recordings + events:
        if record.decompressed is None:
            undecodable += 1
        if args.verbose:
            print(f"   {record.captured_at_iso} {summarize_record(record)}")

    print(f"\n📊 Summary:")
    print(f"   Recording requests: {len(recordings)}")
    print(f"   Event requests: {len(events)}")
    print(f"   Recorded events: {sum(len(r.events()) for r in recordings)}")
    print(f"   Application events: {sum(len(r.events()) for r in events)}")
    if undecodable:
        print(f"   ⚠️  Stored raw (not decodable): {undecodable}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="SessionTap Replay - replay captured ingestion traffic as new sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry run a replay
  %(prog)s replay --recording-id onboarding --user-id user-1

  # Replay one day back into a specific session, for real
  %(prog)s replay --recording-id onboarding --user-id user-1 --session-id my-session --live

  # Demo dataset from a plan
  %(prog)s plan generation-config.yaml

The project key is read from the config file or the POSTHOG_API_KEY environment variable.
        """
    )
    parser.add_argument('--log-level', default='warning', choices=['debug', 'info', 'warning', 'error'],
                        help='Log level (default: warning)')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- REPLAY command ---
    replay_parser = subparsers.add_parser('replay', help='Replay a captured recording')
    replay_parser.add_argument('-c', '--config', help='Replay config YAML file')
    replay_parser.add_argument('-r', '--recording-id', help='Recording id (capture log prefix)')
    replay_parser.add_argument('-u', '--user-id', help='Distinct id for identified events')
    replay_parser.add_argument('-s', '--session-id', help='Session id for the replay (default: new UUID)')
    replay_parser.add_argument('-t', '--timestamp', type=parse_timestamp,
                               help='Start of the replayed session (epoch ms or ISO 8601)')
    replay_parser.add_argument('--offset-ms', type=int, help='Fixed time shift when no timestamp is given')
    replay_parser.add_argument('--host', help='Ingestion host (default: us.i.posthog.com)')
    replay_parser.add_argument('--data-dir', help='Capture log directory (default: data)')
    replay_parser.add_argument('--event-mode', choices=['batch', 'single'], help='How events are sent (default: batch)')
    replay_parser.add_argument('-w', '--max-in-flight', type=int, help='Concurrent recording dispatches (default: 4)')
    replay_parser.add_argument('--live', action='store_true', help='Send data (default is a dry run)')
    replay_parser.add_argument('-o', '--output', help='Save results to JSON file')

    # --- PLAN command ---
    plan_parser = subparsers.add_parser('plan', help='Generate a demo dataset from a population plan')
    plan_parser.add_argument('plan_file', help='Plan YAML file')
    plan_parser.add_argument('--seed', type=int, help='Random seed for a reproducible schedule')
    plan_parser.add_argument('--data-dir', help='Capture log directory (default: data)')

    # --- INSPECT command ---
    inspect_parser = subparsers.add_parser('inspect', help='Summarize captured traffic')
    inspect_parser.add_argument('-r', '--recording-id', help='Recording id (capture log prefix)')
    inspect_parser.add_argument('--data-dir', default='data', help='Capture log directory (default: data)')
    inspect_parser.add_argument('--verbose', action='store_true', help='List every captured request')

    # Parse arguments
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format='%(levelname)s %(name)s: %(message)s'
    )

    # Dispatch to command handler
    if args.command == 'replay':
        cmd_replay(args)
    elif args.command == 'plan':
        cmd_plan(args)
    elif args.command == 'inspect':
        cmd_inspect(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == '__main__':
    main()
