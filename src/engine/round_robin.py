"""
Round robin scheduling and standings.

Schedules use the circle method: the first player stays put while everyone else
rotates one place per round. With an odd number of players a ghost entry is
added and whoever is paired with it sits the round out (``byePlayerId``).
"""
import enum
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import DEFAULT_MAX_SETS, POINTS_PER_LOSS, POINTS_PER_WIN
from .errors import EngineError, guard_invariants, invalid_result, not_found
from .models import (
    Match, Player, Round, RoundRobinSchedule, RoundRobinTiebreakDetails, ScoreMode, StandingsRow,
)
from .scoring import check_result, get_point_totals, get_set_totals, normalize_scores

logger = logging.getLogger(__name__)


class RoundRobinCriterion(str, enum.Enum):
    """Tiebreak criteria among players level on points, in order of priority."""
    HEAD_TO_HEAD = 'headToHead'
    HEAD_TO_HEAD_SET_DIFF = 'headToHeadSetDiff'
    HEAD_TO_HEAD_SETS_WON = 'headToHeadSetsWon'
    SET_DIFF = 'setDiff'
    SETS_WON = 'setsWon'
    POINTS_DIFF = 'pointsDiff'


def generate_schedule(players: Sequence[Player], id_prefix: str = 'rr') -> RoundRobinSchedule:
    """Pair every player with every other exactly once."""
    entries: List[Optional[str]] = [p.id for p in players]
    if len(entries) % 2:
        entries.append(None)
    if not entries:
        return RoundRobinSchedule()

    n = len(entries)
    fixed, rotating = entries[0], entries[1:]
    counter = 0
    rounds = []
    for round_index in range(n - 1):
        current = [fixed] + rotating
        matches = []
        bye_player_id = None
        for i in range(n // 2):
            p1, p2 = current[i], current[n - 1 - i]
            if p1 is None or p2 is None:
                bye_player_id = p1 or p2
                continue
            counter += 1
            matches.append(Match(id=f'{id_prefix}{counter}', player1_id=p1, player2_id=p2))
        rounds.append(Round(round_number=round_index + 1, bye_player_id=bye_player_id, matches=tuple(matches)))
        rotating = rotating[-1:] + rotating[:-1]

    logger.debug(f'Generated round robin: {len(players)} players, {len(rounds)} rounds, {counter} matches')
    return RoundRobinSchedule(rounds=tuple(rounds))


def find_match(schedule: RoundRobinSchedule, match_id: str) -> Optional[Match]:
    return next((m for m in schedule.all_matches() if m.id == match_id), None)


def _replace_match(schedule: RoundRobinSchedule, updated: Match) -> RoundRobinSchedule:
    rounds = []
    for r in schedule.rounds:
        if any(m.id == updated.id for m in r.matches):
            r = replace(r, matches=tuple(updated if m.id == updated.id else m for m in r.matches))
        rounds.append(r)
    return replace(schedule, rounds=tuple(rounds))


@guard_invariants
def record_result(schedule: RoundRobinSchedule, match_id: str, winner_id: Optional[str], scores=(),
                  walkover: bool = False, *, scoring_mode: ScoreMode = ScoreMode.SETS,
                  max_sets: int = DEFAULT_MAX_SETS) -> Tuple[RoundRobinSchedule, Optional[EngineError]]:
    """Overwrite one match result. ``winner_id=None`` clears it."""
    match = find_match(schedule, match_id)
    if match is None:
        return schedule, not_found('Match', match_id)

    if winner_id is None:
        if not match.has_result:
            return schedule, None
        logger.info(f'Match {match_id}: result cleared')
        return _replace_match(schedule, replace(match, winner_id=None, scores=(), walkover=False)), None

    scores, message = normalize_scores(scores)
    if message:
        return schedule, invalid_result(message)
    error = check_result(match, winner_id, scores, walkover, scoring_mode, max_sets)
    if error:
        return schedule, error

    logger.info(f'Match {match_id}: winner {winner_id}')
    updated = replace(match, winner_id=winner_id, scores=scores, walkover=bool(walkover))
    return _replace_match(schedule, updated), None


def is_schedule_complete(schedule: RoundRobinSchedule) -> bool:
    return all(m.winner_id for m in schedule.all_matches())


class _Tally:
    def __init__(self):
        self.played = 0
        self.wins = 0
        self.losses = 0
        self.sets_won = 0
        self.sets_lost = 0
        self.points_won = 0
        self.points_lost = 0


def _decided_matches(schedule: RoundRobinSchedule):
    for m in schedule.all_matches():
        if m.winner_id and m.player1_id and m.player2_id:
            yield m


def _head_to_head(player_id: str, tied_ids: Sequence[str], h2h: Dict[Tuple[str, str], Tuple[int, int, int]]):
    """(wins, set diff, sets won) of ``player_id`` against the other tied players."""
    wins = sets_won = sets_lost = 0
    for opponent in tied_ids:
        if opponent == player_id:
            continue
        won, for_, against = h2h.get((player_id, opponent), (0, 0, 0))
        wins += won
        sets_won += for_
        sets_lost += against
    return wins, sets_won - sets_lost, sets_won


def _tiebreak_key(details: RoundRobinTiebreakDetails) -> Tuple:
    key = (
        details.head_to_head, details.head_to_head_set_diff, details.head_to_head_sets_won,
        details.set_diff, details.sets_won,
    )
    if details.points_diff_applicable:
        key += (details.points_diff,)
    return tuple(-value for value in key)


def _applied_criteria(a: RoundRobinTiebreakDetails, b: RoundRobinTiebreakDetails) -> Tuple[str, ...]:
    """Criteria examined between two tied rows, up to and including the decisive one."""
    pairs = [
        (RoundRobinCriterion.HEAD_TO_HEAD, a.head_to_head, b.head_to_head),
        (RoundRobinCriterion.HEAD_TO_HEAD_SET_DIFF, a.head_to_head_set_diff, b.head_to_head_set_diff),
        (RoundRobinCriterion.HEAD_TO_HEAD_SETS_WON, a.head_to_head_sets_won, b.head_to_head_sets_won),
        (RoundRobinCriterion.SET_DIFF, a.set_diff, b.set_diff),
        (RoundRobinCriterion.SETS_WON, a.sets_won, b.sets_won),
    ]
    if a.points_diff_applicable and b.points_diff_applicable:
        pairs.append((RoundRobinCriterion.POINTS_DIFF, a.points_diff, b.points_diff))

    applied = []
    for criterion, left, right in pairs:
        applied.append(criterion.value)
        if left != right:
            break
    return tuple(applied)


def compute_standings(schedule: RoundRobinSchedule, players: Sequence[Player],
                      scoring_mode: ScoreMode = ScoreMode.SETS, max_sets: int = DEFAULT_MAX_SETS,
                      points_per_win: int = POINTS_PER_WIN,
                      points_per_loss: int = POINTS_PER_LOSS) -> List[StandingsRow]:
    """
    Rank players by points, then resolve ties among players on equal points:

    1. head-to-head wins among the tied players
    2. head-to-head set difference
    3. head-to-head sets won
    4. overall set difference
    5. overall sets won
    6. overall points difference (POINTS scoring only)

    Rows still level after every criterion keep the order of ``players``.
    """
    tallies = {p.id: _Tally() for p in players}
    h2h: Dict[Tuple[str, str], Tuple[int, int, int]] = {}

    for m in _decided_matches(schedule):
        t1, t2 = tallies.get(m.player1_id), tallies.get(m.player2_id)
        if t1 is None or t2 is None:
            continue
        s1, s2 = get_set_totals(m.scores, scoring_mode, max_sets)
        pt1, pt2 = get_point_totals(m.scores, scoring_mode)
        p1_won = m.winner_id == m.player1_id

        t1.played += 1
        t2.played += 1
        t1.sets_won += s1
        t1.sets_lost += s2
        t2.sets_won += s2
        t2.sets_lost += s1
        t1.points_won += pt1
        t1.points_lost += pt2
        t2.points_won += pt2
        t2.points_lost += pt1
        if p1_won:
            t1.wins += 1
            t2.losses += 1
        else:
            t2.wins += 1
            t1.losses += 1
        h2h[(m.player1_id, m.player2_id)] = (int(p1_won), s1, s2)
        h2h[(m.player2_id, m.player1_id)] = (int(not p1_won), s2, s1)

    rows = []
    for p in players:
        t = tallies[p.id]
        rows.append(StandingsRow(
            player_id=p.id,
            name=p.name,
            elo=p.elo,
            played=t.played,
            wins=t.wins,
            losses=t.losses,
            points=t.wins * points_per_win + t.losses * points_per_loss,
            sets_won=t.sets_won,
            sets_lost=t.sets_lost,
            points_won=t.points_won,
            points_lost=t.points_lost,
        ))

    rows.sort(key=lambda r: -r.points)
    points_diff_applicable = scoring_mode == ScoreMode.POINTS

    standings = []
    i = 0
    while i < len(rows):
        j = i
        while j < len(rows) and rows[j].points == rows[i].points:
            j += 1
        standings.extend(_resolve_tie(rows[i:j], h2h, points_diff_applicable))
        i = j
    return standings


def _resolve_tie(tied: List[StandingsRow], h2h, points_diff_applicable: bool) -> List[StandingsRow]:
    tied_ids = [r.player_id for r in tied] if len(tied) > 1 else []
    detailed = []
    for row in tied:
        wins, set_diff, sets_won = _head_to_head(row.player_id, tied_ids, h2h)
        details = RoundRobinTiebreakDetails(
            head_to_head=wins,
            head_to_head_set_diff=set_diff,
            head_to_head_sets_won=sets_won,
            set_diff=row.set_diff,
            sets_won=row.sets_won,
            points_diff=row.points_diff,
            points_diff_applicable=points_diff_applicable,
        )
        detailed.append(replace(row, tiebreak_details=details))

    if len(detailed) == 1:
        return detailed

    detailed.sort(key=lambda r: _tiebreak_key(r.tiebreak_details))
    result = []
    for k, row in enumerate(detailed):
        neighbour = detailed[k + 1] if k + 1 < len(detailed) else detailed[k - 1]
        applied = _applied_criteria(row.tiebreak_details, neighbour.tiebreak_details)
        result.append(replace(row, tiebreak_details=replace(row.tiebreak_details, tiebreak_applied=applied)))
    return result
