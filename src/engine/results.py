"""
Final placements.

Elimination formats rank players by the stage in which they were knocked out:
everybody eliminated in the same stage shares a rank range (e.g. both
semifinal losers are "3.-4."). Players still alive have no rank yet.
"""
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import DEFAULT_MAX_SETS
from .double_elimination import get_double_elim_winner
from .elimination import get_bracket_winner
from .models import (
    Bracket, DoubleElim, Format, Match, Player, RankedResult, RoundRobinSchedule, ScoreMode, StandingsRow,
    Tournament,
)
from .round_robin import compute_standings


def sort_results(results: Iterable[RankedResult]) -> List[RankedResult]:
    """By rank range, unranked last, then by name."""
    def key(row):
        start = row.rank_start if row.rank_start is not None else math.inf
        end = row.rank_end if row.rank_end is not None else math.inf
        return start, end, row.name
    return sorted(results, key=key)


def offset_results(results: Sequence[RankedResult], offset: int) -> List[RankedResult]:
    if not offset:
        return list(results)
    return [
        row if row.rank_start is None or row.rank_end is None
        else RankedResult(row.player_id, row.name, row.rank_start + offset, row.rank_end + offset)
        for row in results
    ]


def _tie_key(row: StandingsRow, scoring_mode: ScoreMode) -> Tuple:
    key = (row.points, row.set_diff, row.sets_won)
    if scoring_mode == ScoreMode.POINTS:
        key += (row.points_diff,)
    return key


def build_standings_results(standings: Sequence[StandingsRow],
                            scoring_mode: ScoreMode = ScoreMode.SETS) -> List[RankedResult]:
    """Rows with identical points, set difference and sets won share a rank range."""
    results = []
    index = 0
    while index < len(standings):
        key = _tie_key(standings[index], scoring_mode)
        end = index + 1
        while end < len(standings) and _tie_key(standings[end], scoring_mode) == key:
            end += 1
        for row in standings[index:end]:
            results.append(RankedResult(row.player_id, row.name, index + 1, end))
        index = end
    return results


def build_round_robin_results(schedule: RoundRobinSchedule, players: Sequence[Player],
                              scoring_mode: ScoreMode = ScoreMode.SETS,
                              max_sets: int = DEFAULT_MAX_SETS) -> List[RankedResult]:
    standings = compute_standings(schedule, players, scoring_mode, max_sets)
    return build_standings_results(standings, scoring_mode)


def _collect_player_ids(matches: Iterable[Match]) -> List[str]:
    ids = []
    seen = set()
    for m in matches:
        for player_id in m.players:
            if player_id and player_id not in seen:
                seen.add(player_id)
                ids.append(player_id)
    return ids


def _ranks_from_eliminations(groups: Sequence[Sequence[str]], total: int) -> Dict[str, Tuple[int, int]]:
    """Earliest eliminations take the bottom ranks."""
    ranks = {}
    current = total
    for group in groups:
        if not group:
            continue
        start = current - len(group) + 1
        for player_id in group:
            ranks[player_id] = (start, current)
        current = start - 1
    return ranks


def _rows(player_ids: Sequence[str], players: Sequence[Player],
          ranks: Dict[str, Tuple[int, int]]) -> List[RankedResult]:
    names = {p.id: p.name for p in players}
    rows = []
    for player_id in player_ids:
        start, end = ranks.get(player_id, (None, None))
        rows.append(RankedResult(player_id, names.get(player_id, player_id), start, end))
    return sort_results(rows)


def build_bracket_results(bracket: Optional[Bracket], players: Sequence[Player]) -> List[RankedResult]:
    if bracket is None:
        return []
    player_ids = _collect_player_ids(m for r in bracket.rounds for m in r)

    eliminated = set()
    groups = []
    for round_matches in bracket.rounds:
        round_losers = []
        for m in round_matches:
            loser = m.loser_id
            if loser and loser not in eliminated:
                eliminated.add(loser)
                round_losers.append(loser)
        groups.append(round_losers)

    ranks = _ranks_from_eliminations(groups, len(player_ids))
    winner_id = get_bracket_winner(bracket)
    if winner_id:
        ranks[winner_id] = (1, 1)

    third = bracket.third_place_match
    if third is not None and third.winner_id and third.loser_id:
        ranks[third.winner_id] = (3, 3)
        ranks[third.loser_id] = (4, 4)

    return _rows(player_ids, players, ranks)


def build_double_elim_results(state: Optional[DoubleElim], players: Sequence[Player]) -> List[RankedResult]:
    """Players are ranked by the stage of their second loss."""
    if state is None:
        return []
    finals = (state.finals.grand_final, state.finals.reset_final)
    player_ids = _collect_player_ids(
        [m for r in state.winners.rounds for m in r]
        + [m for r in state.losers.rounds for m in r]
        + list(finals)
    )

    losses = {player_id: 0 for player_id in player_ids}
    for r in state.winners.rounds:
        for m in r:
            if m.loser_id:
                losses[m.loser_id] += 1

    stages = [list(r) for r in state.losers.rounds] + [[finals[0]], [finals[1]]]
    groups: List[List[str]] = [[] for _ in stages]
    eliminated = set()
    for stage_index, stage in enumerate(stages):
        for m in stage:
            loser = m.loser_id
            if not loser or loser in eliminated:
                continue
            losses[loser] += 1
            if losses[loser] >= 2:
                eliminated.add(loser)
                groups[stage_index].append(loser)

    ranks = _ranks_from_eliminations(groups, len(player_ids))
    winner_id = get_double_elim_winner(state)
    if winner_id:
        ranks[winner_id] = (1, 1)
    return _rows(player_ids, players, ranks)


def build_tournament_results(tournament: Tournament) -> List[RankedResult]:
    """Final placements for any format; group playoffs list consolation after the main field."""
    players = tournament.players
    if tournament.format == Format.SINGLE_ELIM:
        return build_bracket_results(tournament.bracket, players)
    if tournament.format == Format.DOUBLE_ELIM:
        return build_double_elim_results(tournament.double_elim, players)
    if tournament.format == Format.ROUND_ROBIN:
        if tournament.schedule is None:
            return []
        return build_round_robin_results(tournament.schedule, players, tournament.scoring_mode,
                                         tournament.max_sets)

    playoffs = tournament.group_stage_playoffs
    if playoffs is None:
        return []
    if playoffs.main_double_elim is not None:
        main = build_double_elim_results(playoffs.main_double_elim, players)
    else:
        main = build_bracket_results(playoffs.main_bracket, players)
    if playoffs.consolation_double_elim is not None:
        consolation = build_double_elim_results(playoffs.consolation_double_elim, players)
    else:
        consolation = build_bracket_results(playoffs.consolation_bracket, players)
    return sort_results(main + offset_results(consolation, len(main)))
