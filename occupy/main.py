"""Occupy entry point.

Operator surface over the configured store:
  occupy [sweeper]                 run the expiry sweeper until interrupted
  occupy seed                      create teams and repositories, clear stale sessions
  occupy claim ISSUE TEAM          claim an issue for a team
  occupy close ISSUE TEAM PR_URL   close a held issue with its pull request
  occupy pr ISSUE STATUS           set PR status (approved, merged, rejected)
  occupy --check                   load and validate config, then exit
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from occupy.app import Contest
from occupy.config import AppConfig, load_config
from occupy.errors import LifecycleError, StoreError
from occupy.logging import OccupyLogging

SUBCOMMANDS = ("sweeper", "seed", "claim", "close", "pr")

LOG = logging.getLogger("occupy")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI with optional subcommand (sweeper is the default)."""
    argv = argv if argv is not None else sys.argv[1:]
    sub = "sweeper"
    rest = list(argv)
    if argv and not argv[0].startswith("-") and argv[0] in SUBCOMMANDS:
        sub = argv[0]
        rest = argv[1:]

    parser = argparse.ArgumentParser(
        prog=f"occupy {sub}",
        description="Issue-occupying contest core",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only load and validate config, then exit",
    )
    if sub == "sweeper":
        parser.add_argument("--once", action="store_true", help="Run one sweep pass then exit")
    elif sub == "claim":
        parser.add_argument("issue_id")
        parser.add_argument("team")
    elif sub == "close":
        parser.add_argument("issue_id")
        parser.add_argument("team")
        parser.add_argument("pr_url")
    elif sub == "pr":
        parser.add_argument("issue_id")
        parser.add_argument("status", choices=["approved", "merged", "rejected"])
    parsed = parser.parse_args(rest)
    parsed.subcommand = sub
    return parsed


async def _run_sweeper(contest: Contest, once: bool) -> int:
    if once:
        report = await contest.sweeper.sweep_once()
        print(f"Expired: {len(report.expired)}, failed: {len(report.failed)}")
        return 1 if report.failed else 0
    await contest.sweeper.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await contest.sweeper.stop()


async def run_command(config: AppConfig, args: argparse.Namespace, contest: Contest | None = None) -> int:
    """Execute one subcommand against the configured store."""
    contest = contest or Contest(config)
    if args.subcommand == "sweeper":
        if not config.sweeper.enabled:
            LOG.warning("Sweeper disabled in config; nothing to do.")
            return 0
        return await _run_sweeper(contest, args.once)
    if args.subcommand == "seed":
        await contest.bootstrap()
        teams = await contest.store.list_teams()
        print(f"Teams: {', '.join(sorted(t.name for t in teams))}")
        return 0
    if args.subcommand == "claim":
        result = await contest.coordinator.occupy(args.issue_id, args.team)
        if result.success:
            print(f"Issue {args.issue_id} occupied by {args.team}")
            return 0
        print(f"Claim failed ({result.error_kind}): {result.message}")
        return 1
    try:
        if args.subcommand == "close":
            await contest.lifecycle.close_issue(args.issue_id, args.team, args.pr_url)
            print(f"Issue {args.issue_id} closed")
        elif args.subcommand == "pr":
            awarded = await contest.lifecycle.update_pr_status(args.issue_id, args.status)
            print(f"PR of {args.issue_id} -> {args.status} ({awarded} points awarded)")
    except (LifecycleError, StoreError) as e:
        print(f"Error: {e}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point: load config, set up logging, dispatch subcommand."""
    args = parse_args(argv)

    config_path = args.config
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            config_path = Path("config.example.yaml")
            logging.basicConfig(level=logging.INFO)
            LOG.warning("config.yaml not found, using config.example.yaml")

    config = load_config(config_path)

    if args.check:
        print("Config OK:", config.store.backend, ", ".join(config.contest.teams))
        return 0

    OccupyLogging(config.logging).setup()
    try:
        return asyncio.run(run_command(config, args))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        LOG.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
