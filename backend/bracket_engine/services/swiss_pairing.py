"""
Swiss pairing engine.

Round 1: entries ordered by seed, split into halves, top[i] vs bottom[i]:
  8 entries -> (1v5), (2v6), (3v7), (4v8)
  odd count -> the lowest seed gets the bye

Later rounds: standings through the previous round are grouped by wins
(descending). An odd group floats its lowest-ranked member down into the next
group, then each group pairs its top half against its bottom half by rank.
A proposed rematch is swapped with the adjacent pair in the same group when
that clears both pairs; otherwise the rematch is accepted and logged. This is
a greedy heuristic, not an optimal matching: heavily skewed score
distributions can still produce rematches.

The bye goes to the lowest-ranked entry that has not had one yet (DrawState
bye_history). Bye matches are created already completed with a bye payload.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import groupby
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bracket_engine.config import SWISS_MAX_ROUNDS, SWISS_MIN_ROUNDS
from bracket_engine.exceptions import ConsistencyError, ValidationError
from bracket_engine.models.audit_event import AuditEvent
from bracket_engine.models.court import Court
from bracket_engine.models.court_assignment import CourtAssignment
from bracket_engine.models.division import Division
from bracket_engine.models.draw_state import DRAW_NOT_STARTED, DRAW_SWISS, DrawState
from bracket_engine.models.entry import PAIRABLE_ENTRY_STATUSES, Entry
from bracket_engine.models.match import (
    PHASE_SWISS,
    SIDE_A,
    STATUS_COMPLETED,
    STATUS_ON_COURT,
    STATUS_PENDING_SIGNOFF,
    STATUS_SCHEDULED,
    TERMINAL_STATUSES,
    Match,
)
from bracket_engine.models.match_conflict import MatchConflict
from bracket_engine.models.standing import Standing
from bracket_engine.services.score_payload import ByeResult, dump_payload
from bracket_engine.services.standings_calculator import StandingRow, calculate_standings, eligible_standings, persist_standings
from bracket_engine.utils.queries import MatchFilter, emit_audit_event, fetch_entries, fetch_matches, get_or_404, persist_matches

logger = logging.getLogger(__name__)


@dataclass
class PairingPlan:
    pairs: List[Tuple[int, int]]  # (side_a_entry_id, side_b_entry_id), higher-ranked on side A
    bye_entry_id: Optional[int] = None
    rematches: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class RoundResult:
    division_id: int
    round_number: int
    matches: List[Match]
    bye_entry_id: Optional[int]
    rematches: List[Tuple[int, int]]


# ============================================================================
# Configuration helpers
# ============================================================================


def recommended_swiss_rounds(entry_count: int) -> int:
    if entry_count <= 8:
        return 3
    if entry_count <= 16:
        return 4
    if entry_count <= 32:
        return 5
    if entry_count <= 64:
        return 6
    return 7


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def validate_swiss_config(rounds: int, qualifiers: int, entry_count: int) -> None:
    if rounds < SWISS_MIN_ROUNDS:
        raise ValidationError(f"Swiss requires minimum {SWISS_MIN_ROUNDS} rounds")
    if rounds > SWISS_MAX_ROUNDS:
        raise ValidationError(f"Maximum {SWISS_MAX_ROUNDS} Swiss rounds allowed")
    if qualifiers > entry_count:
        raise ValidationError(f"Cannot have {qualifiers} qualifiers with only {entry_count} entries")
    if qualifiers and (qualifiers < 2 or not is_power_of_two(qualifiers)):
        raise ValidationError(f"Qualifier count must be a power of two, got {qualifiers}")


def auto_assign_seeds(entries: Sequence[Entry]) -> Dict[int, int]:
    """
    Seed map {entry_id: seed} with unseeded entries filling the lowest unused
    seeds in arrival order. *entries* must already be in arrival order.
    """
    used = {e.seed for e in entries if e.seed is not None}
    seeds: Dict[int, int] = {}
    next_seed = 1
    for entry in entries:
        if entry.seed is not None:
            seeds[entry.id] = entry.seed
            continue
        while next_seed in used:
            next_seed += 1
        seeds[entry.id] = next_seed
        used.add(next_seed)
        next_seed += 1
    return seeds


# ============================================================================
# Pure pairing
# ============================================================================


def pair_round_one(ordered_entry_ids: Sequence[int]) -> PairingPlan:
    """Top half vs bottom half over seed order; odd count gives the last seed a bye."""
    pool = list(ordered_entry_ids)
    bye_entry_id = None
    if len(pool) % 2 == 1:
        bye_entry_id = pool.pop()

    half = len(pool) // 2
    pairs = [(pool[i], pool[i + half]) for i in range(half)]
    return PairingPlan(pairs=pairs, bye_entry_id=bye_entry_id)


def _played(history: Set[FrozenSet[int]], a: int, b: int) -> bool:
    return frozenset((a, b)) in history


def choose_bye(ranked_entry_ids: Sequence[int], bye_history: Iterable[int]) -> int:
    """Lowest-ranked entry without a previous bye; the lowest-ranked overall once everyone has had one."""
    had_bye = set(bye_history)
    for entry_id in reversed(ranked_entry_ids):
        if entry_id not in had_bye:
            return entry_id
    return ranked_entry_ids[-1]


def _pair_group(group: List[int], history: Set[FrozenSet[int]], rematches: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    half = len(group) // 2
    pairs = [(group[i], group[i + half]) for i in range(half)]

    for i in range(len(pairs)):
        a, b = pairs[i]
        if not _played(history, a, b):
            continue
        swapped = False
        for j in (i + 1, i - 1):
            if j < 0 or j >= len(pairs):
                continue
            c, d = pairs[j]
            if not _played(history, a, d) and not _played(history, c, b):
                pairs[i], pairs[j] = (a, d), (c, b)
                swapped = True
                break
        if not swapped:
            logger.warning(f"No rematch-free arrangement for entries {a} and {b}; accepting rematch")
            rematches.append((a, b))
    return pairs


def pair_next_round(
    standings: Sequence[StandingRow],
    history: Set[FrozenSet[int]],
    bye_history: Iterable[int] = (),
) -> PairingPlan:
    """
    Pair a Swiss round from ranked standings.

    Args:
        standings: rows of the entries to pair, in rank order
        history: frozensets of entry pairs that have already met
        bye_history: entries that already received a bye
    """
    ranked = sorted(standings, key=lambda r: r.rank)
    bye_entry_id = None
    if len(ranked) % 2 == 1:
        bye_entry_id = choose_bye([r.entry_id for r in ranked], bye_history)
        ranked = [r for r in ranked if r.entry_id != bye_entry_id]

    groups = [[r.entry_id for r in grp] for _, grp in groupby(ranked, key=lambda r: r.wins)]

    # Odd groups float their lowest-ranked member to the top of the next group
    for i in range(len(groups) - 1):
        if len(groups[i]) % 2 == 1:
            groups[i + 1].insert(0, groups[i].pop())

    pairs: List[Tuple[int, int]] = []
    rematches: List[Tuple[int, int]] = []
    for group in groups:
        pairs.extend(_pair_group(group, history, rematches))
    return PairingPlan(pairs=pairs, bye_entry_id=bye_entry_id, rematches=rematches)


# ============================================================================
# Persistence
# ============================================================================


def get_draw_state(session: Session, division_id: int) -> Optional[DrawState]:
    return session.exec(select(DrawState).where(DrawState.division_id == division_id)).first()


def _build_round_matches(division_id: int, round_number: int, plan: PairingPlan) -> List[Match]:
    matches = [
        Match(
            division_id=division_id,
            round_number=round_number,
            sequence=seq,
            phase=PHASE_SWISS,
            side_a_entry_id=a,
            side_b_entry_id=b,
            status=STATUS_SCHEDULED,
        )
        for seq, (a, b) in enumerate(plan.pairs, start=1)
    ]
    if plan.bye_entry_id is not None:
        # No game is played: resolved on creation, no court, no end time
        matches.append(
            Match(
                division_id=division_id,
                round_number=round_number,
                sequence=len(plan.pairs) + 1,
                phase=PHASE_SWISS,
                side_a_entry_id=plan.bye_entry_id,
                side_b_entry_id=None,
                status=STATUS_COMPLETED,
                winner_side=SIDE_A,
                score_json=dump_payload(ByeResult()),
            )
        )
    return matches


def _commit_round(session: Session) -> None:
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConsistencyError("Round was generated concurrently by another request")


def generate_round_1(session: Session, division_id: int, actor: Optional[str] = None) -> RoundResult:
    """Seed the division and create round-1 matches plus its DrawState."""
    division = get_or_404(session, Division, division_id, "Division")
    try:
        state = get_draw_state(session, division_id)
        if state is not None and state.phase != DRAW_NOT_STARTED:
            raise ValidationError("Draw already generated for this division. Reset it first.")
        if fetch_matches(session, MatchFilter(division_id=division_id)):
            raise ValidationError("Division already has matches. Reset the draw first.")

        entries = fetch_entries(session, division_id, statuses=PAIRABLE_ENTRY_STATUSES)
        if len(entries) < 2:
            raise ValidationError("Need at least 2 entries to generate draw")
        validate_swiss_config(division.swiss_rounds, division.swiss_qualifiers, len(entries))

        seeds = auto_assign_seeds(entries)
        for entry in entries:
            if entry.seed is None:
                entry.seed = seeds[entry.id]
                session.add(entry)
        ordered = sorted(entries, key=lambda e: (seeds[e.id], e.id))

        plan = pair_round_one([e.id for e in ordered])
        matches = persist_matches(session, _build_round_matches(division_id, 1, plan))

        if state is None:
            state = DrawState(division_id=division_id, total_rounds=division.swiss_rounds)
        state.phase = DRAW_SWISS
        state.current_round = 1
        state.total_rounds = division.swiss_rounds
        state.qualifier_count = division.swiss_qualifiers
        state.bye_history = [plan.bye_entry_id] if plan.bye_entry_id is not None else []
        state.updated_at = datetime.utcnow()
        session.add(state)

        emit_audit_event(
            session,
            "draw_generated",
            tournament_id=division.tournament_id,
            division_id=division_id,
            actor=actor,
            payload={"round": 1, "matches": len(matches), "bye_entry_id": plan.bye_entry_id},
        )
    except Exception:
        session.rollback()
        raise
    _commit_round(session)

    logger.info(
        f"Division {division_id}: generated round 1 with {len(plan.pairs)} matches"
        + (f", bye to entry {plan.bye_entry_id}" if plan.bye_entry_id is not None else "")
    )
    for m in matches:
        session.refresh(m)
    return RoundResult(division_id, 1, matches, plan.bye_entry_id, [])


def _played_history(session: Session, division_id: int) -> Set[FrozenSet[int]]:
    history: Set[FrozenSet[int]] = set()
    for m in fetch_matches(session, MatchFilter(division_id=division_id, phase=PHASE_SWISS)):
        if m.side_a_entry_id is not None and m.side_b_entry_id is not None:
            history.add(frozenset((m.side_a_entry_id, m.side_b_entry_id)))
    return history


def generate_next_round(
    session: Session,
    division_id: int,
    through_round: Optional[int] = None,
    actor: Optional[str] = None,
) -> RoundResult:
    """
    Pair round through_round + 1 from the standings through *through_round*.

    The DrawState round counter is advanced with a compare-and-set in the same
    transaction as the new matches, so a duplicate request fails instead of
    creating a second copy of the round.
    """
    division = get_or_404(session, Division, division_id, "Division")
    try:
        state = get_draw_state(session, division_id)
        if state is None or state.phase != DRAW_SWISS:
            raise ValidationError("Division is not in the Swiss phase")
        if through_round is None:
            through_round = state.current_round
        if through_round != state.current_round:
            raise ValidationError(
                f"Current round is {state.current_round}; cannot pair from round {through_round}"
            )
        if state.current_round >= state.total_rounds:
            raise ValidationError(f"All {state.total_rounds} Swiss rounds have already been generated")
        if not is_round_complete(session, division_id, through_round):
            raise ValidationError(f"Round {through_round} still has unfinished matches")

        standings = calculate_standings(session, division_id, through_round)
        persist_standings(session, division_id, through_round, standings)

        candidates = eligible_standings(session, division_id, standings)
        if len(candidates) < 2:
            raise ValidationError("Need at least 2 active entries to pair a round")

        plan = pair_next_round(candidates, _played_history(session, division_id), state.bye_history)
        new_round = through_round + 1

        bye_history = list(state.bye_history)
        if plan.bye_entry_id is not None and plan.bye_entry_id not in bye_history:
            bye_history.append(plan.bye_entry_id)

        advanced = session.execute(
            update(DrawState)
            .where(DrawState.id == state.id, DrawState.current_round == through_round)
            .values(current_round=new_round, bye_history=bye_history, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if advanced.rowcount != 1:
            raise ConsistencyError(f"Round {new_round} was generated concurrently by another request")

        matches = persist_matches(session, _build_round_matches(division_id, new_round, plan))
        emit_audit_event(
            session,
            "round_generated",
            tournament_id=division.tournament_id,
            division_id=division_id,
            actor=actor,
            payload={
                "round": new_round,
                "matches": len(matches),
                "bye_entry_id": plan.bye_entry_id,
                "rematches": [list(p) for p in plan.rematches],
            },
        )
    except Exception:
        session.rollback()
        raise
    _commit_round(session)

    logger.info(
        f"Division {division_id}: generated round {new_round} with {len(plan.pairs)} matches, "
        f"{len(plan.rematches)} accepted rematch(es)"
    )
    session.refresh(state)
    for m in matches:
        session.refresh(m)
    return RoundResult(division_id, new_round, matches, plan.bye_entry_id, plan.rematches)


def is_round_complete(session: Session, division_id: int, round_number: int, phase: str = PHASE_SWISS) -> bool:
    matches = fetch_matches(session, MatchFilter(division_id=division_id, phase=phase, round_number=round_number))
    return bool(matches) and all(m.status in TERMINAL_STATUSES for m in matches)


def is_swiss_complete(session: Session, division_id: int) -> bool:
    state = get_draw_state(session, division_id)
    if state is None or state.phase == DRAW_NOT_STARTED:
        return False
    if state.phase != DRAW_SWISS:
        return True
    return state.current_round >= state.total_rounds and is_round_complete(session, division_id, state.total_rounds)


def reset_draw(session: Session, division_id: int, actor: Optional[str] = None) -> int:
    """Delete every match, standing and the DrawState of a division that has not started play."""
    division = get_or_404(session, Division, division_id, "Division")
    matches = fetch_matches(session, MatchFilter(division_id=division_id))
    for m in matches:
        played = m.started_at is not None or m.status in (STATUS_ON_COURT, STATUS_PENDING_SIGNOFF)
        if played or (m.status in TERMINAL_STATUSES and not m.is_bye):
            raise ConsistencyError(f"Cannot reset draw: match {m.id} has already been played")

    match_ids = [m.id for m in matches]
    try:
        if match_ids:
            session.execute(
                update(Court)
                .where(Court.current_match_id.in_(match_ids))
                .values(current_match_id=None, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            session.execute(
                update(Match)
                .where(Match.division_id == division_id)
                .values(next_match_id=None)
                .execution_options(synchronize_session=False)
            )
            # Audit rows outlive the matches they mention
            session.execute(
                update(AuditEvent)
                .where(AuditEvent.match_id.in_(match_ids))
                .values(match_id=None)
                .execution_options(synchronize_session=False)
            )
            session.execute(delete(MatchConflict).where(MatchConflict.match_id.in_(match_ids)))
            session.execute(delete(CourtAssignment).where(CourtAssignment.match_id.in_(match_ids)))
            session.execute(delete(Match).where(Match.division_id == division_id))
        session.execute(delete(Standing).where(Standing.division_id == division_id))
        session.execute(delete(DrawState).where(DrawState.division_id == division_id))
        emit_audit_event(
            session,
            "draw_reset",
            tournament_id=division.tournament_id,
            division_id=division_id,
            actor=actor,
            payload={"deleted_matches": len(match_ids)},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.expire_all()
    logger.info(f"Division {division_id}: draw reset, {len(match_ids)} matches deleted")
    return len(match_ids)
