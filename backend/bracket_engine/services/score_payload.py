"""
Match score payload: a tagged variant stored in Match.score_json.

  {"kind": "games", "games": [{"score_a": 21, "score_b": 15}, ...],
   "total_points_a": 42, "total_points_b": 33}
  {"kind": "walkover"}
  {"kind": "bye"}

Only the "games" variant carries points; walkovers and byes count for
win/loss but never for points.

Raw game input is accepted as pairs ([[21, 15], [21, 18]]), dicts
({"a": 21, "b": 15} or {"score_a": 21, "score_b": 15}) or a string
("21-15, 21-18" / "21-15 21-18").
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from bracket_engine.exceptions import ValidationError


class GameScore(BaseModel):
    score_a: int
    score_b: int


class GamesResult(BaseModel):
    kind: Literal["games"] = "games"
    games: List[GameScore]
    total_points_a: int
    total_points_b: int


class WalkoverResult(BaseModel):
    kind: Literal["walkover"] = "walkover"


class ByeResult(BaseModel):
    kind: Literal["bye"] = "bye"


ScorePayload = Annotated[Union[GamesResult, WalkoverResult, ByeResult], Field(discriminator="kind")]

_payload_adapter = TypeAdapter(ScorePayload)


def parse_games(raw: Any) -> List[GameScore]:
    """Normalize raw game input into GameScore objects.

    Raises ValidationError on anything that is not a list of integer pairs.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return _parse_games_string(raw)
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"Unsupported games payload: {raw!r}")

    games: List[GameScore] = []
    for item in raw:
        if isinstance(item, GameScore):
            games.append(item)
        elif isinstance(item, dict):
            a = item.get("score_a", item.get("a"))
            b = item.get("score_b", item.get("b"))
            games.append(_game(a, b))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            games.append(_game(item[0], item[1]))
        else:
            raise ValidationError(f"Each game must be a pair of scores, got {item!r}")
    return games


def _game(a: Any, b: Any) -> GameScore:
    try:
        return GameScore(score_a=int(a), score_b=int(b))
    except (TypeError, ValueError):
        raise ValidationError(f"Game scores must be integers, got {a!r}-{b!r}")


def _parse_games_string(raw: str) -> List[GameScore]:
    """Parse strings like '21-15', '21-15 18-21 21-19', '21-15, 21-18'."""
    normalized = raw.replace(",", " ").strip()
    games: List[GameScore] = []
    for part in normalized.split():
        pair = part.split("-")
        if len(pair) != 2:
            raise ValidationError(f"Cannot parse game score '{part}'")
        games.append(_game(pair[0], pair[1]))
    return games


def build_games_result(games: List[GameScore]) -> GamesResult:
    """Validate played games and compute per-side totals."""
    if not games:
        raise ValidationError("At least one game score is required")
    for game in games:
        if game.score_a < 0 or game.score_b < 0:
            raise ValidationError("Game scores cannot be negative")
    return GamesResult(
        games=list(games),
        total_points_a=sum(g.score_a for g in games),
        total_points_b=sum(g.score_b for g in games),
    )


def dump_payload(payload: Union[GamesResult, WalkoverResult, ByeResult]) -> Dict[str, Any]:
    return payload.model_dump()


def load_payload(score_json: Optional[Dict[str, Any]]) -> Optional[Union[GamesResult, WalkoverResult, ByeResult]]:
    """Read Match.score_json back into its variant. None when empty or unreadable."""
    if not score_json:
        return None
    try:
        return _payload_adapter.validate_python(score_json)
    except PydanticValidationError:
        return None


def points_for_sides(score_json: Optional[Dict[str, Any]]) -> Optional[tuple]:
    """(points_a, points_b) for a played result, None for walkover/bye/empty."""
    payload = load_payload(score_json)
    if isinstance(payload, GamesResult) and payload.games:
        return payload.total_points_a, payload.total_points_b
    return None
