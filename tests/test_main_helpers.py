import pytest

from maplister import main as cli
from maplister.coordinator import CrawlSummary
from maplister.errors import ConfigError
from maplister.main import _apply_overrides, _interval_minutes, parse_args


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MAPLISTER_CONFIG", raising=False)
    monkeypatch.delenv("MAPLISTER_DB", raising=False)


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.game is None
    assert args.sqlite_path is None
    assert args.once is False
    assert args.list_games is False


def test_parse_args_overrides() -> None:
    args = parse_args(["--game", "3", "--db", "tf2.sqlite", "--workers", "4", "--once"])
    assert (args.game, args.sqlite_path, args.workers, args.once) == (3, "tf2.sqlite", 4, True)


@pytest.mark.parametrize("flags", [["--workers", "0"], ["--game", "-1"]])
def test_parse_args_rejects_non_positive(flags) -> None:
    with pytest.raises(SystemExit):
        parse_args(flags)


def test_apply_overrides_only_touches_given_flags() -> None:
    config = {"game": 1, "output": {"sqlite_path": "a.sqlite"}, "crawl": {"workers": 8}}

    _apply_overrides(parse_args(["--workers", "2"]), config)

    assert config == {"game": 1, "output": {"sqlite_path": "a.sqlite"}, "crawl": {"workers": 2}}

    _apply_overrides(parse_args(["--game", "2", "--db", "b.sqlite"]), config)
    assert config["game"] == 2
    assert config["output"]["sqlite_path"] == "b.sqlite"


def test_interval_minutes() -> None:
    assert _interval_minutes({}) == 0
    assert _interval_minutes({"schedule": {"minutes": 15}}) == 15
    assert _interval_minutes({"schedule": {"minutes": -5}}) == 0
    assert _interval_minutes({"schedule": {"minutes": "soon"}}) == 0


def test_list_games(capsys) -> None:
    assert cli.run(["--list-games"]) == 0
    out = capsys.readouterr().out
    assert "1: Counter-Strike: Global Offensive (id 4660)" in out
    assert "3: Team Fortress 2 (id 297)" in out


def test_run_once_crawls_selected_game(tmp_path, monkeypatch) -> None:
    calls = []

    def fake_run_crawl(settings, session_factory, *, game_id):
        calls.append((settings.workers, game_id))
        return CrawlSummary(inserted=2)

    monkeypatch.setattr(cli, "run_crawl", fake_run_crawl)

    db_path = tmp_path / "catalog.sqlite"
    assert cli.run(["--game", "2", "--db", str(db_path), "--workers", "2", "--once"]) == 0
    assert calls == [(2, 2)]
    assert db_path.exists()


def test_unknown_game_choice() -> None:
    with pytest.raises(ConfigError, match="valid: 1, 2, 3"):
        cli.run(["--game", "9", "--once"])
