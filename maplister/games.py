"""Lookup table between CLI game choices, remote game ids and game names."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from maplister.errors import ConfigError


@dataclass(frozen=True)
class Game:
    choice: int
    game_id: int
    name: str


DEFAULT_GAMES: tuple[Game, ...] = (
    Game(choice=1, game_id=4660, name="Counter-Strike: Global Offensive"),
    Game(choice=2, game_id=2, name="Counter-Strike: Source"),
    Game(choice=3, game_id=297, name="Team Fortress 2"),
)


class GameTable:
    """Bidirectional game lookup, built once at startup."""

    def __init__(self, games: Iterable[Game]) -> None:
        self._by_choice: dict[int, Game] = {}
        self._by_id: dict[int, Game] = {}
        for game in games:
            if game.choice in self._by_choice:
                raise ConfigError(f"Duplicate game choice {game.choice}")
            if game.game_id in self._by_id:
                raise ConfigError(f"Duplicate game id {game.game_id}")
            self._by_choice[game.choice] = game
            self._by_id[game.game_id] = game
        if not self._by_choice:
            raise ConfigError("No games configured")

    def __iter__(self) -> Iterator[Game]:
        return iter(sorted(self._by_choice.values(), key=lambda game: game.choice))

    def __len__(self) -> int:
        return len(self._by_choice)

    def by_choice(self, choice: int) -> Game:
        try:
            return self._by_choice[int(choice)]
        except (KeyError, TypeError, ValueError) as exc:
            valid = ", ".join(str(key) for key in sorted(self._by_choice))
            raise ConfigError(f"Unknown game choice {choice!r} (valid: {valid})") from exc

    def by_id(self, game_id: int) -> Game:
        try:
            return self._by_id[int(game_id)]
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Unknown game id {game_id!r}") from exc


def build_game_table(entries: Iterable[dict[str, Any]] | None = None) -> GameTable:
    """Build the table from config entries, falling back to :data:`DEFAULT_GAMES`."""

    if not entries:
        return GameTable(DEFAULT_GAMES)

    games: list[Game] = []
    for entry in entries:
        try:
            games.append(
                Game(
                    choice=int(entry["choice"]),
                    game_id=int(entry["id"]),
                    name=str(entry.get("name") or entry["id"]).strip(),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid game entry: {entry!r}") from exc
    return GameTable(games)
