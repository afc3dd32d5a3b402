"""Client for the public Chess.com game archive API.

Only the read endpoints needed to pick a game for review:
player profile, list of monthly archives, games of one month.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request

BASE_URL = "https://api.chess.com/pub"

# Chess.com rejects requests without a User-Agent
_HEADERS = {"User-Agent": "game-review/0.1", "Accept": "application/json"}
_TIMEOUT = 15.0


class ChessComError(Exception):
    """Raised when the Chess.com API cannot be reached or answers badly."""


def _get_json(url: str) -> dict:
    request = urllib.request.Request(url, headers=_HEADERS)
    try:
        with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
            data = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise ChessComError(f"{url} returned HTTP {e.code}") from e
    except (urllib.error.URLError, OSError) as e:
        raise ChessComError(f"Could not reach {url}: {e}") from e
    except json.JSONDecodeError as e:
        raise ChessComError(f"Invalid JSON from {url}") from e

    if not isinstance(data, dict):
        raise ChessComError(f"Unexpected response from {url}")
    return data


def _player_url(username: str) -> str:
    name = username.strip().lower()
    if not name:
        raise ValueError("Username must not be empty")
    return f"{BASE_URL}/player/{name}"


def get_player_profile(username: str) -> dict:
    """Fetch a player's public profile."""
    return _get_json(_player_url(username))


def get_archives(username: str) -> list[str]:
    """List the monthly archive URLs of a player, oldest first."""
    data = _get_json(f"{_player_url(username)}/games/archives")
    return list(data.get("archives", []))


def get_archive_games(archive_url: str) -> list[dict]:
    """Fetch every game of one monthly archive URL."""
    data = _get_json(archive_url)
    return list(data.get("games", []))


def get_monthly_games(username: str, year: int, month: int) -> list[dict]:
    """Fetch a player's games for one month.

    Args:
        username: Chess.com username (case-insensitive).
        year: Four-digit year.
        month: Month number, 1-12.

    Returns:
        Game dicts as returned by the API (pgn, white, black, url, ...).
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    return get_archive_games(f"{_player_url(username)}/games/{year:04d}/{month:02d}")
