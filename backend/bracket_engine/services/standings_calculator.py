"""
Swiss standings: aggregation of completed results into ranked, tie-broken rows.

Ranking order:
  1. wins DESC
  2. point differential DESC
  3. points for DESC
  4. head-to-head, only when exactly two entries are still level
  5. entry id ASC

Walkovers and byes count for wins/losses but add nothing to points.
The computation is a pure function of the terminal Swiss matches through a
round; persisting a snapshot replaces the (division, round) rows in one
transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import groupby
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from bracket_engine.models.division import Division
from bracket_engine.models.draw_state import DrawState
from bracket_engine.models.entry import PAIRABLE_ENTRY_STATUSES
from bracket_engine.models.match import PHASE_SWISS, SIDE_A, SIDE_B, TERMINAL_STATUSES, Match
from bracket_engine.models.standing import Standing
from bracket_engine.services.score_payload import points_for_sides
from bracket_engine.utils.queries import MatchFilter, fetch_entries, fetch_matches, get_or_404

logger = logging.getLogger(__name__)

H2H_WIN = "W"
H2H_LOSS = "L"


@dataclass
class StandingRow:
    entry_id: int
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    h2h_results: Dict[int, str] = field(default_factory=dict)
    rank: int = 0

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against

    @property
    def tiebreak_json(self) -> Dict:
        return {
            "point_diff": self.point_diff,
            "h2h_results": {str(k): self.h2h_results[k] for k in sorted(self.h2h_results)},
        }

    def level_key(self):
        return (self.wins, self.point_diff, self.points_for)


def aggregate_results(matches: Iterable[Match], entry_ids: Iterable[int] = ()) -> Dict[int, StandingRow]:
    """Fold terminal matches into per-entry rows. Entries with no matches get zero rows."""
    rows: Dict[int, StandingRow] = {eid: StandingRow(entry_id=eid) for eid in entry_ids}

    def row(entry_id: int) -> StandingRow:
        if entry_id not in rows:
            rows[entry_id] = StandingRow(entry_id=entry_id)
        return rows[entry_id]

    ordered = sorted(matches, key=lambda m: (m.round_number, m.sequence, m.id or 0))
    for match in ordered:
        if match.status not in TERMINAL_STATUSES:
            continue
        side_a = match.side_a_entry_id
        side_b = match.side_b_entry_id
        if side_a is None:
            continue

        standing_a = row(side_a)
        standing_b = row(side_b) if side_b is not None else None

        if match.winner_side == SIDE_A:
            standing_a.wins += 1
            if standing_b:
                standing_b.losses += 1
        elif match.winner_side == SIDE_B and standing_b:
            standing_b.wins += 1
            standing_a.losses += 1

        if standing_b:
            if match.winner_side == SIDE_A:
                standing_a.h2h_results[side_b] = H2H_WIN
                standing_b.h2h_results[side_a] = H2H_LOSS
            elif match.winner_side == SIDE_B:
                standing_b.h2h_results[side_a] = H2H_WIN
                standing_a.h2h_results[side_b] = H2H_LOSS

            points = points_for_sides(match.score_json)
            if points is not None:
                points_a, points_b = points
                standing_a.points_for += points_a
                standing_a.points_against += points_b
                standing_b.points_for += points_b
                standing_b.points_against += points_a

    return rows


def rank_standings(rows: Iterable[StandingRow]) -> List[StandingRow]:
    """Order rows by the tie-break hierarchy and assign dense ranks 1..N."""
    ordered = sorted(rows, key=lambda r: (-r.wins, -r.point_diff, -r.points_for, r.entry_id))

    result: List[StandingRow] = []
    for _, group in groupby(ordered, key=lambda r: r.level_key()):
        tied = list(group)
        if len(tied) == 2:
            first, second = tied
            if first.h2h_results.get(second.entry_id) == H2H_LOSS:
                tied = [second, first]
        result.extend(tied)

    for index, standing in enumerate(result, start=1):
        standing.rank = index
    return result


def compute_standings(matches: Iterable[Match], entry_ids: Iterable[int] = ()) -> List[StandingRow]:
    return rank_standings(aggregate_results(matches, entry_ids).values())


def calculate_standings(session: Session, division_id: int, through_round: int) -> List[StandingRow]:
    """Ranked standings for a division through *through_round* (read-only)."""
    get_or_404(session, Division, division_id, "Division")
    entries = fetch_entries(session, division_id, statuses=PAIRABLE_ENTRY_STATUSES)
    matches = fetch_matches(
        session,
        MatchFilter(
            division_id=division_id,
            phase=PHASE_SWISS,
            max_round=through_round,
            statuses=TERMINAL_STATUSES,
        ),
    )
    return compute_standings(matches, [e.id for e in entries])


def persist_standings(session: Session, division_id: int, through_round: int, rows: List[StandingRow]) -> None:
    """Replace the (division, round) snapshot inside the caller's transaction.

    The division's DrawState row is locked first so two writers for the same
    division serialize on backends that support row locks.
    """
    session.exec(select(DrawState).where(DrawState.division_id == division_id).with_for_update()).first()
    session.execute(
        delete(Standing).where(Standing.division_id == division_id, Standing.round_number == through_round)
    )
    now = datetime.utcnow()
    for r in rows:
        session.add(
            Standing(
                division_id=division_id,
                entry_id=r.entry_id,
                round_number=through_round,
                rank=r.rank,
                wins=r.wins,
                losses=r.losses,
                points_for=r.points_for,
                points_against=r.points_against,
                tiebreak_json=r.tiebreak_json,
                computed_at=now,
            )
        )
    session.flush()


def recalculate_standings(session: Session, division_id: int, through_round: int) -> List[StandingRow]:
    """Compute and store a standings snapshot in one transaction."""
    try:
        rows = calculate_standings(session, division_id, through_round)
        persist_standings(session, division_id, through_round, rows)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"Standings for division {division_id} through round {through_round}: {len(rows)} entries")
    return rows


def get_stored_standings(session: Session, division_id: int, through_round: int) -> List[Standing]:
    return list(
        session.exec(
            select(Standing)
            .where(Standing.division_id == division_id, Standing.round_number == through_round)
            .order_by(Standing.rank)
        ).all()
    )


def eligible_standings(session: Session, division_id: int, rows: List[StandingRow]) -> List[StandingRow]:
    """Rows of entries still in the draw; withdrawn entries keep their results but cannot qualify."""
    pairable = {e.id for e in fetch_entries(session, division_id, statuses=PAIRABLE_ENTRY_STATUSES)}
    return [row for row in rows if row.entry_id in pairable]


def get_qualifiers(session: Session, division_id: int, qualifier_count: Optional[int] = None) -> List[StandingRow]:
    """Top-N eligible entries of the final Swiss standings."""
    state = session.exec(select(DrawState).where(DrawState.division_id == division_id)).first()
    total_rounds = state.total_rounds if state else get_or_404(session, Division, division_id, "Division").swiss_rounds
    count = qualifier_count if qualifier_count is not None else (state.qualifier_count if state else 0)
    return eligible_standings(session, division_id, calculate_standings(session, division_id, total_rounds))[:count]
