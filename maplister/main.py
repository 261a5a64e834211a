"""Command line entry point for mirroring a game's map catalog."""

from __future__ import annotations

import argparse
from typing import Any, Iterable

from apscheduler.schedulers.blocking import BlockingScheduler
from dotenv import load_dotenv

from maplister.config import load_config, settings_from_config
from maplister.coordinator import CrawlSummary
from maplister.errors import ConfigError, CrawlAbortedError
from maplister.games import Game, build_game_table
from maplister.logging_config import configure_logging, get_logger
from maplister.pipeline import run_crawl
from maplister.storage.db import get_engine, init_db, make_session

LOGGER = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Mirror a game's map catalog into a local SQLite database."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration merged over the packaged defaults.",
    )
    parser.add_argument(
        "--game",
        type=int,
        default=None,
        help="Game choice to crawl (see --list-games); overrides the configuration.",
    )
    parser.add_argument(
        "--db",
        dest="sqlite_path",
        type=str,
        default=None,
        help="SQLite database path; overrides output.sqlite_path.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Size of the fetch worker pool; overrides crawl.workers.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Crawl a single time even when a schedule is configured.",
    )
    parser.add_argument(
        "--list-games",
        action="store_true",
        help="Print the known game choices and exit.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO).",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.workers is not None and args.workers <= 0:
        parser.error("--workers must be a positive integer")
    if args.game is not None and args.game <= 0:
        parser.error("--game must be a positive integer")
    return args


def _apply_overrides(args: argparse.Namespace, config: dict[str, Any]) -> dict[str, Any]:
    if args.game is not None:
        config["game"] = args.game
    if args.sqlite_path:
        config.setdefault("output", {})["sqlite_path"] = args.sqlite_path
    if args.workers is not None:
        config.setdefault("crawl", {})["workers"] = args.workers
    return config


def _report(game: Game, summary: CrawlSummary) -> None:
    LOGGER.info(
        "Run summary | game=%s | total_estimate=%d | %s",
        game.name,
        summary.total_estimate,
        summary.as_log_line(),
    )
    for stage, count in sorted(summary.failures.items()):
        LOGGER.warning("Failed branches | stage=%s | count=%d", stage, count)


def run(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    configure_logging(args.log_level)

    config = _apply_overrides(args, load_config(args.config))
    games = build_game_table(config.get("games"))

    if args.list_games:
        for entry in games:
            print(f"{entry.choice}: {entry.name} (id {entry.game_id})")
        return 0

    game = games.by_choice(config.get("game", 1))
    settings = settings_from_config(config)

    sqlite_path = config.get("output", {}).get("sqlite_path", "maplister.sqlite")
    engine = get_engine(sqlite_path)
    init_db(engine)
    session_factory = make_session(engine)
    LOGGER.info(
        "Mirroring %s (id %d) into %s | workers=%d | page_size=%d",
        game.name,
        game.game_id,
        sqlite_path,
        settings.workers,
        settings.page_size,
    )

    def crawl() -> None:
        summary = run_crawl(settings, session_factory, game_id=game.game_id)
        _report(game, summary)

    interval = 0 if args.once else _interval_minutes(config)
    try:
        crawl()
        if not interval:
            return 0

        scheduler = BlockingScheduler()

        def scheduled_crawl() -> None:
            try:
                crawl()
            except CrawlAbortedError:
                LOGGER.exception("Scheduled crawl aborted")

        scheduler.add_job(scheduled_crawl, "interval", minutes=interval, max_instances=1)
        LOGGER.info("Scheduler started with interval=%s minutes", interval)
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            LOGGER.info("Shutdown signal received; stopping scheduler")
    finally:
        engine.dispose()
    return 0


def _interval_minutes(config: dict[str, Any]) -> int:
    try:
        return max(0, int((config.get("schedule") or {}).get("minutes") or 0))
    except (TypeError, ValueError):
        LOGGER.warning("schedule.minutes must be an integer; running once")
        return 0


def main() -> None:
    try:
        raise SystemExit(run())
    except (ConfigError, CrawlAbortedError) as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:  # pragma: no cover - interactive
        LOGGER.info("Interrupted by user")
        raise SystemExit(130)


if __name__ == "__main__":
    main()
