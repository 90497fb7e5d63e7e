"""Tests for the occupy CLI (argument parsing, subcommands, config check)."""

from pathlib import Path

import pytest
from conftest import START, add_issue, add_occupied

from occupy.app import INITIAL_REPOSITORIES, Contest
from occupy.config import AppConfig, StoreConfig, SweeperConfig
from occupy.main import main, parse_args, run_command
from occupy.models import IssueStatus
from occupy.store import MemoryStore


@pytest.fixture
def contest() -> Contest:
    return Contest(AppConfig(store=StoreConfig(backend="memory")), store=MemoryStore())


class TestParseArgs:
    def test_default_is_sweeper(self) -> None:
        args = parse_args([])
        assert args.subcommand == "sweeper"
        assert args.once is False
        assert args.config == Path("config.yaml")

    def test_sweeper_once_with_config(self) -> None:
        args = parse_args(["sweeper", "--once", "-c", "contest.yaml"])
        assert args.once is True
        assert args.config == Path("contest.yaml")

    def test_claim(self) -> None:
        args = parse_args(["claim", "I1", "TeamAlpha"])
        assert (args.subcommand, args.issue_id, args.team) == ("claim", "I1", "TeamAlpha")

    def test_pr_status_choices(self) -> None:
        assert parse_args(["pr", "I1", "merged"]).status == "merged"
        with pytest.raises(SystemExit):
            parse_args(["pr", "I1", "pending"])


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_seed(self, contest, capsys) -> None:
        code = await run_command(contest.config, parse_args(["seed"]), contest=contest)
        assert code == 0
        assert "TeamAlpha" in capsys.readouterr().out
        assert len(await contest.store.list_repositories()) == len(INITIAL_REPOSITORIES)

    @pytest.mark.asyncio
    async def test_claim_close_and_merge(self, contest, capsys) -> None:
        await contest.bootstrap()
        await add_issue(contest.store, "I1", tag="easy")
        assert await run_command(contest.config, parse_args(["claim", "I1", "TeamAlpha"]), contest=contest) == 0
        assert await run_command(contest.config, parse_args(["claim", "I1", "TeamBravo"]), contest=contest) == 1
        assert "already_resolved" in capsys.readouterr().out

        pr = "https://github.com/example/ui-kit/pull/3"
        assert await run_command(contest.config, parse_args(["close", "I1", "TeamBravo", pr]), contest=contest) == 1
        assert await run_command(contest.config, parse_args(["close", "I1", "TeamAlpha", pr]), contest=contest) == 0
        assert await run_command(contest.config, parse_args(["pr", "I1", "merged"]), contest=contest) == 0
        assert "10 points awarded" in capsys.readouterr().out
        assert await contest.store.read_points("TeamAlpha") == 10

    @pytest.mark.asyncio
    async def test_sweeper_once(self, contest, capsys) -> None:
        await contest.bootstrap()
        await add_occupied(contest.store, "I1", "TeamAlpha", START)
        code = await run_command(contest.config, parse_args(["sweeper", "--once"]), contest=contest)
        assert code == 0
        assert "Expired: 1" in capsys.readouterr().out
        assert (await contest.store.read_one("I1")).status == IssueStatus.OPEN

    @pytest.mark.asyncio
    async def test_sweeper_disabled(self) -> None:
        config = AppConfig(store=StoreConfig(backend="memory"), sweeper=SweeperConfig(enabled=False))
        contest = Contest(config, store=MemoryStore())
        assert await run_command(config, parse_args([]), contest=contest) == 0


class TestMain:
    def test_check(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("contest:\n  teams: [Red, Blue]\nstore:\n  backend: memory\n", encoding="utf-8")
        assert main(["--check", "-c", str(path)]) == 0
        assert "Config OK: memory Red, Blue" in capsys.readouterr().out

    def test_claim_against_yaml_store(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            f"store:\n  backend: yaml\n  data_dir: {tmp_path / 'data'}\nlogging:\n  level: ERROR\n",
            encoding="utf-8",
        )
        assert main(["seed", "-c", str(path)]) == 0
        assert main(["claim", "missing", "TeamAlpha", "-c", str(path)]) == 1
        assert "not_found" in capsys.readouterr().out


class TestContest:
    @pytest.mark.asyncio
    async def test_client_shares_store_and_sessions(self, contest) -> None:
        await contest.bootstrap()
        await add_issue(contest.store, "I1")
        client = contest.client()
        client.start()
        await client.login("TeamDelta")
        assert (await client.claim("I1")).success
        assert (await contest.store.read_one("I1")).assigned_to == "TeamDelta"
        assert client.find("I1").status == IssueStatus.OCCUPIED
        await client.stop()
