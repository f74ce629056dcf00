"""
Knockout bracket builder: Swiss qualifiers -> fully linked single elimination.

Seed placement folds the bracket so the top seeds meet as late as possible:
  2  -> [1, 2]
  4  -> [1, 4, 2, 3]
  8  -> [1, 8, 4, 5, 3, 6, 2, 7]
Consecutive seeds in that order form the round-1 matches.

Every round is created up front. Match (r, s) feeds match (r + 1, ceil(s / 2)),
odd sequences into side A and even sequences into side B, so advancement is a
single write to a named slot.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlmodel import Session

from bracket_engine.exceptions import ConsistencyError, ValidationError
from bracket_engine.models.division import Division
from bracket_engine.models.draw_state import DRAW_COMPLETED, DRAW_KNOCKOUT, DRAW_SWISS, DrawState
from bracket_engine.models.match import PHASE_KNOCKOUT, SIDE_A, SIDE_B, STATUS_SCHEDULED, Match
from bracket_engine.services.standings_calculator import calculate_standings, eligible_standings, persist_standings
from bracket_engine.services.swiss_pairing import get_draw_state, is_power_of_two, is_round_complete, is_swiss_complete
from bracket_engine.utils.queries import MatchFilter, emit_audit_event, fetch_matches, get_or_404, persist_matches

logger = logging.getLogger(__name__)


@dataclass
class BracketSlot:
    round_number: int
    sequence: int
    seed_a: Optional[int] = None  # round 1 only
    seed_b: Optional[int] = None
    next_sequence: Optional[int] = None  # None for the final
    next_side: Optional[str] = None


def knockout_round_label(round_number: int, total_rounds: int) -> str:
    remaining = total_rounds - round_number
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semi-Final"
    if remaining == 2:
        return "Quarter-Final"
    return f"Round of {2 ** (remaining + 1)}"


def bracket_seed_order(size: int) -> List[int]:
    """Seeds in bracket position order; consecutive pairs meet in round 1.

    Each step expands seed s into (s, size + 1 - s) and swaps the last two
    pairs of the bottom half so the 2 seed lands at the foot of the bracket.
    """
    if size < 2 or not is_power_of_two(size):
        raise ValidationError(f"Bracket size must be a power of two, got {size}")
    if size == 2:
        return [1, 2]

    expanded: List[int] = []
    for s in bracket_seed_order(size // 2):
        expanded.append(s)
        expanded.append(size + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]
    return top + bot


def build_bracket_structure(size: int) -> List[BracketSlot]:
    """All slots of a *size*-entry bracket, round by round."""
    order = bracket_seed_order(size)
    total_rounds = int(math.log2(size))
    slots: List[BracketSlot] = []
    for round_number in range(1, total_rounds + 1):
        match_count = size // (2 ** round_number)
        for seq in range(1, match_count + 1):
            slot = BracketSlot(round_number=round_number, sequence=seq)
            if round_number == 1:
                slot.seed_a = order[2 * (seq - 1)]
                slot.seed_b = order[2 * (seq - 1) + 1]
            if round_number < total_rounds:
                slot.next_sequence = (seq + 1) // 2
                slot.next_side = SIDE_A if seq % 2 == 1 else SIDE_B
            slots.append(slot)
    return slots


def build_knockout_bracket(session: Session, division_id: int, actor: Optional[str] = None) -> List[Match]:
    """
    Create the knockout phase from the final Swiss standings.

    Raises:
        ValidationError: Swiss unfinished, bracket already built, or a
            qualifier count that is not a power of two
    """
    division = get_or_404(session, Division, division_id, "Division")
    try:
        state = get_draw_state(session, division_id)
        if state is None or state.phase != DRAW_SWISS:
            raise ValidationError("Knockout can only be built from a division in the Swiss phase")
        if not is_swiss_complete(session, division_id):
            raise ValidationError("Swiss phase is not complete")
        if fetch_matches(session, MatchFilter(division_id=division_id, phase=PHASE_KNOCKOUT)):
            raise ValidationError("Knockout bracket already exists for this division")

        size = state.qualifier_count
        if size < 2 or not is_power_of_two(size):
            raise ValidationError(f"Qualifier count must be a power of two, got {size}")

        standings = calculate_standings(session, division_id, state.total_rounds)
        persist_standings(session, division_id, state.total_rounds, standings)
        eligible = eligible_standings(session, division_id, standings)
        if len(eligible) < size:
            raise ValidationError(f"Only {len(eligible)} entries available for {size} qualifier places")
        # Seeds follow standings order once withdrawn entries are dropped
        seed_to_entry = {seed: row.entry_id for seed, row in enumerate(eligible[:size], start=1)}

        slots = build_bracket_structure(size)
        by_position: Dict[Tuple[int, int], Match] = {}
        for slot in slots:
            by_position[(slot.round_number, slot.sequence)] = Match(
                division_id=division_id,
                round_number=slot.round_number,
                sequence=slot.sequence,
                phase=PHASE_KNOCKOUT,
                side_a_entry_id=seed_to_entry.get(slot.seed_a),
                side_b_entry_id=seed_to_entry.get(slot.seed_b),
                status=STATUS_SCHEDULED,
            )
        matches = persist_matches(session, list(by_position.values()))

        # Second pass once every row has an id
        for slot in slots:
            if slot.next_sequence is None:
                continue
            feeder = by_position[(slot.round_number, slot.sequence)]
            feeder.next_match_id = by_position[(slot.round_number + 1, slot.next_sequence)].id
            feeder.next_match_side = slot.next_side
        persist_matches(session, matches)

        total_rounds = int(math.log2(size))
        moved = session.execute(
            update(DrawState)
            .where(DrawState.id == state.id, DrawState.phase == DRAW_SWISS)
            .values(phase=DRAW_KNOCKOUT, current_round=1, knockout_rounds=total_rounds, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            raise ConsistencyError("Knockout bracket was built concurrently by another request")

        emit_audit_event(
            session,
            "knockout_built",
            tournament_id=division.tournament_id,
            division_id=division_id,
            actor=actor,
            payload={"qualifiers": [seed_to_entry[s] for s in sorted(seed_to_entry)], "matches": len(matches)},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Division {division_id}: knockout bracket built, {size} qualifiers, {len(matches)} matches")
    session.refresh(state)
    for m in matches:
        session.refresh(m)
    return matches


def advance_winner(session: Session, match: Match, overwrite: bool = False) -> Optional[Match]:
    """
    Write the winner of a finished knockout match into its next-match slot.

    The write is conditional on the next match still being scheduled and, unless
    *overwrite* is set, on the slot being empty or already holding the same
    entry. Runs inside the caller's transaction. Returns the next match, or
    None when *match* is the final.
    """
    if match.phase != PHASE_KNOCKOUT:
        return None
    winner_entry_id = match.entry_for_side(match.winner_side)
    if winner_entry_id is None:
        raise ConsistencyError(f"Match {match.id} has no winner to advance")

    if match.next_match_id is None:
        _finish_knockout_round(session, match)
        return None

    slot_name = "side_a_entry_id" if match.next_match_side == SIDE_A else "side_b_entry_id"
    slot = getattr(Match, slot_name)
    conditions = [Match.id == match.next_match_id, Match.status == STATUS_SCHEDULED]
    if not overwrite:
        conditions.append(or_(slot.is_(None), slot == winner_entry_id))
    result = session.execute(
        update(Match)
        .where(*conditions)
        .values(**{slot_name: winner_entry_id})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConsistencyError(
            f"Cannot advance entry {winner_entry_id} into match {match.next_match_id}: "
            "the next match has already progressed"
        )

    next_match = session.get(Match, match.next_match_id)
    session.refresh(next_match)
    _finish_knockout_round(session, match)
    logger.info(
        f"Knockout: entry {winner_entry_id} advanced from match {match.id} "
        f"to match {next_match.id} side {match.next_match_side}"
    )
    return next_match


def _finish_knockout_round(session: Session, match: Match) -> None:
    """Move the DrawState round pointer on once the knockout round is fully decided."""
    session.flush()
    if not is_round_complete(session, match.division_id, match.round_number, phase=PHASE_KNOCKOUT):
        return
    state = get_draw_state(session, match.division_id)
    if state is None or state.phase != DRAW_KNOCKOUT:
        return

    if match.next_match_id is None:
        values = {"phase": DRAW_COMPLETED}
    else:
        values = {"current_round": match.round_number + 1}
    session.execute(
        update(DrawState)
        .where(DrawState.id == state.id, DrawState.phase == DRAW_KNOCKOUT, DrawState.current_round == match.round_number)
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    session.refresh(state)
    if state.phase == DRAW_COMPLETED:
        logger.info(f"Division {match.division_id}: knockout final decided, draw completed")


def get_knockout_matches(session: Session, division_id: int) -> List[Match]:
    get_or_404(session, Division, division_id, "Division")
    return fetch_matches(session, MatchFilter(division_id=division_id, phase=PHASE_KNOCKOUT))
