"""CLI: command-line interface for incr."""

import argparse
import sys

from incr.app import App
from incr.config import FULL
from incr.errors import ConfigError, SchedulingError
from incr.models import KINDS
from incr.store import utcnow


def cmd_track(args, app: App):
    due_at = utcnow() if args.due else None
    state = app.track(args.id, args.kind, args.parent, due_at=due_at)
    print(f"Tracking {state.id} ({state.kind}), priority {state.effective_priority}")


def cmd_untrack(args, app: App):
    app.untrack(args.id)
    print(f"Untracked {args.id}")


def cmd_priority(args, app: App):
    if args.value.lower() == "none":
        value = None
    else:
        try:
            value = int(args.value)
        except ValueError:
            print(f"Error: priority must be an integer or 'none', got {args.value!r}",
                  file=sys.stderr)
            sys.exit(1)
    state = app.set_priority(args.id, value)
    print(f"{state.id}: priority {state.effective_priority} ({state.priority_source})")


def cmd_rep(args, app: App):
    due = app.complete_repetition(args.id)
    state = app.get(args.id)
    print(f"{state.id}: interval {state.last_interval:g} days, next due "
          f"{due.strftime('%Y-%m-%d %H:%M:%S')}")


def cmd_due(args, app: App):
    ranked = app.due_set(kind=args.kind).ranked()
    if args.limit:
        ranked = ranked[:args.limit]
    if not ranked:
        print("Nothing due.")
        return
    for node_id, priority, due in ranked:
        print(f"{priority:>3}  {due.strftime('%Y-%m-%d %H:%M')}  {node_id}")


def cmd_shield(args, app: App):
    if app.mode != FULL:
        print("The priority shield needs performance_mode = \"full\" in settings.toml.")
        return
    top = app.shield()
    if not top:
        print("Shield is empty.")
        return
    for rank, node_id in enumerate(top, 1):
        print(f"{rank}. {node_id} (priority {app.get(node_id).effective_priority})")


def cmd_pretag(args, app: App):
    if app.mode != FULL:
        print("Pretagging needs performance_mode = \"full\" in settings.toml.")
        return
    summary = app.worker.run()
    print(f"Pretagging {summary.state}: {summary.processed} processed, "
          f"{len(summary.skipped)} skipped")


def cmd_status(args, app: App):
    now = utcnow()
    counts = {kind: 0 for kind in KINDS}
    for node_id in app.store.node_ids():
        counts[app.store.peek(node_id).kind] += 1
    due = app.due_set(now)
    print(f"Nodes:          {len(app.store)} ({counts['incremental']} incremental, "
          f"{counts['flashcard']} flashcard)")
    print(f"Due now:        {len(due)}")
    print(f"Mode:           {app.mode}")
    checkpoint = app.store.get_checkpoint()
    if checkpoint is not None:
        print(f"Pretagging:     paused after {checkpoint}")


def main():
    parser = argparse.ArgumentParser(prog="incr", description="Priority-driven incremental scheduler")
    subparsers = parser.add_subparsers(dest="command")

    p_track = subparsers.add_parser("track", help="Start scheduling a node")
    p_track.add_argument("id")
    p_track.add_argument("--kind", choices=KINDS, default="incremental")
    p_track.add_argument("--parent", help="Parent node id (for priority inheritance)")
    p_track.add_argument("--due", action="store_true", help="Make the node due now")

    p_untrack = subparsers.add_parser("untrack", help="Stop scheduling a node")
    p_untrack.add_argument("id")

    p_priority = subparsers.add_parser("priority", help="Set a node's priority (0-100, or none)")
    p_priority.add_argument("id")
    p_priority.add_argument("value")

    p_rep = subparsers.add_parser("rep", help="Complete a repetition of a node now")
    p_rep.add_argument("id")

    p_due = subparsers.add_parser("due", help="List due nodes, most urgent first")
    p_due.add_argument("--kind", choices=KINDS)
    p_due.add_argument("--limit", type=int)

    subparsers.add_parser("shield", help="Show the most urgent due nodes")
    subparsers.add_parser("pretag", help="Run a pretagging pass (full mode)")
    subparsers.add_parser("status", help="Show node counts and stats")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        app = App()
    except ConfigError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        sys.exit(1)
    if not app.incr_dir.exists():
        app.incr_dir.mkdir(parents=True, exist_ok=True)
        print(f"Created incr directory: {app.incr_dir}")
    app.open(autostart=False)

    commands = {
        "track": cmd_track,
        "untrack": cmd_untrack,
        "priority": cmd_priority,
        "rep": cmd_rep,
        "due": cmd_due,
        "shield": cmd_shield,
        "pretag": cmd_pretag,
        "status": cmd_status,
    }
    try:
        commands[args.command](args, app)
    except (SchedulingError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        app.close()
