"""
GroupDesigner CLI entry point.

Usage:
    groupdesigner form Raid                          # Form a group or group set
    groupdesigner load Raid                          # Alias of form
    groupdesigner info                               # Saved groups and group sets
    groupdesigner peers                              # Last exported peer registry
    groupdesigner run --role peer --name Bob         # Run a node until stopped
    groupdesigner demo                               # Simulated formation
"""

import argparse
import logging
import sys

from rich.console import Console

logger = logging.getLogger("GroupDesigner.CLI")

console = Console()


def _print_lines(lines, ok: bool = True) -> None:
    for line in lines:
        console.print(f"  {line}", style=None if ok else "red", highlight=False)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_form(args) -> int:
    """Form a saved group or group set as the master."""
    from groupdesigner.commands import build_transport, form_target, lookup, not_found_lines
    from groupdesigner.config import load_config
    from groupdesigner.errors import GroupNotFoundError
    from groupdesigner.game import DetachedClient
    from groupdesigner.node import GroupDesignerNode

    config = load_config(args.config)
    try:
        target = lookup(config, args.name)
    except GroupNotFoundError:
        _print_lines(not_found_lines(config, args.name), ok=False)
        return 1

    identity = args.identity or config.identity
    if not identity:
        console.print("  [red]No identity: pass --identity or set 'identity' in the config[/]")
        return 2

    node = GroupDesignerNode(
        build_transport(config, identity),
        DetachedClient(identity),
        master=True,
        request_interval_s=config.request_interval,
        persist=True,
    )
    node.init()
    node.start_background()
    try:
        node.wait_for_peers(max_wait_s=args.wait)
        ok, _, lines = form_target(node.former(config.formation_settings()), target)
    finally:
        node.shutdown(stop_peers=args.stop_peers)
    _print_lines(lines, ok=ok)
    return 0 if ok else 1


def cmd_info(args) -> int:
    """Show saved groups and group sets."""
    from groupdesigner.commands import group_sets_table, groups_table
    from groupdesigner.config import load_config

    config = load_config(args.config)
    console.print(f"\n[bold cyan]  GroupDesigner[/] [dim]{config.path}[/]\n")
    console.print(groups_table(config))
    console.print(group_sets_table(config))
    return 0


def cmd_peers(args) -> int:
    """Show the peer registry last exported by a master."""
    from groupdesigner.commands import peers_table
    from groupdesigner.registry import DEFAULT_PEER_FILE, load_peer_file

    path = args.file or DEFAULT_PEER_FILE
    peers = load_peer_file(path)
    if not peers:
        console.print(f"  [dim]No peers recorded in {path}[/]")
        return 0
    console.print(peers_table(peers))
    return 0


def cmd_run(args) -> int:
    """Run a master or peer node until interrupted or told to shut down."""
    from groupdesigner.commands import build_transport
    from groupdesigner.config import load_config
    from groupdesigner.game import DetachedClient
    from groupdesigner.node import GroupDesignerNode

    config = load_config(args.config)
    identity = args.name or config.identity
    if not identity:
        console.print("  [red]No identity: pass --name or set 'identity' in the config[/]")
        return 2

    node = GroupDesignerNode(
        build_transport(config, identity),
        DetachedClient(identity),
        master=args.role == "master",
        request_interval_s=config.request_interval,
        persist=args.role == "master",
    )
    node.init()
    try:
        node.run()
    except KeyboardInterrupt:
        pass
    finally:
        node.shutdown()
    return 0


def cmd_demo(args) -> int:
    """Form a group set on a simulated world."""
    from groupdesigner.demo import run_demo

    results = run_demo(delay_ms=args.delay, drop_rate=args.drop_rate, console=console)
    return 0 if results and all(r.success for r in results) else 1


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    from groupdesigner import __version__
    from groupdesigner.config import default_config_path

    parser = argparse.ArgumentParser(
        prog="groupdesigner",
        description="GroupDesigner - group formation for multibox characters",
        epilog=(
            "Quick start:\n"
            "  groupdesigner demo                         # Try it on a simulated world\n"
            "  groupdesigner info                         # List saved groups\n"
            "  groupdesigner form Raid --identity Alice   # Form a saved group set\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", default=default_config_path(), help="Config file")
    sub = parser.add_subparsers(dest="command")

    for verb in ("form", "load"):
        p_form = sub.add_parser(verb, help="Form a group or group set by name")
        p_form.add_argument("name", help="Group or group set name (case-insensitive)")
        p_form.add_argument(
            "--identity", default=None,
            help="Coordinator name; must not be a member of any group being formed",
        )
        p_form.add_argument("--wait", type=float, default=10.0,
                            help="Seconds to wait for peers before forming")
        p_form.add_argument("--stop-peers", action="store_true",
                            help="Broadcast shutdown to every peer afterwards")

    sub.add_parser("info", help="Show saved groups and group sets")

    p_peers = sub.add_parser("peers", help="Show the exported peer registry")
    p_peers.add_argument("--file", default=None, help="Registry JSON file")

    p_run = sub.add_parser("run", help="Run a node until stopped")
    p_run.add_argument("--role", choices=["master", "peer"], default="peer")
    p_run.add_argument("--name", default=None, help="Character name of this node")

    p_demo = sub.add_parser("demo", help="Simulated group-set formation")
    p_demo.add_argument("--delay", type=int, default=20, help="Base delay in ms")
    p_demo.add_argument("--drop-rate", type=float, default=0.0,
                        help="Probability of losing each message")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    commands = {
        "form": cmd_form,
        "load": cmd_form,
        "info": cmd_info,
        "peers": cmd_peers,
        "run": cmd_run,
        "demo": cmd_demo,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    return handler(args)


def _friendly_error_handler() -> None:
    """Run :func:`main` with user-friendly error reporting."""
    from groupdesigner.errors import GroupDesignerError

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n  Interrupted.\n")
        sys.exit(130)
    except SystemExit:
        raise
    except FileNotFoundError as exc:
        print(f"\n  File not found: {exc.filename or exc}\n")
        sys.exit(1)
    except (GroupDesignerError, ValueError) as exc:
        print(f"\n  Error: {exc}\n")
        sys.exit(1)


if __name__ == "__main__":
    _friendly_error_handler()
