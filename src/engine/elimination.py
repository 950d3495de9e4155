"""
Single elimination bracket generation and management.
"""
import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import DEFAULT_MAX_SETS, MIN_PLAYERS
from .errors import EngineError, guard_invariants, invalid_result, not_found
from .graph import Edge, LOSER, MatchGraph, WINNER, slot_for_position, swap_in
from .models import Bracket, Match, Player, ScoreMode
from .scoring import check_result, normalize_scores
from .validation import check_bracket_geometry

logger = logging.getLogger(__name__)


def get_round_name(players_in_round: int) -> str:
    """Get the name of a round based on number of players."""
    if players_in_round == 2:
        return "Final"
    elif players_in_round == 4:
        return "Semifinal"
    elif players_in_round == 8:
        return "Quarterfinal"
    else:
        return f"Round of {players_in_round}"


def get_round_names(bracket: Bracket) -> List[str]:
    return [get_round_name(len(round_matches) * 2) for round_matches in bracket.rounds]


def calculate_bracket_size(num_players: int) -> int:
    """Calculate the bracket size (next power of 2)."""
    if num_players <= 0:
        return 0
    return 2 ** math.ceil(math.log2(num_players))


def calculate_byes(num_players: int) -> int:
    """Calculate number of byes needed."""
    return calculate_bracket_size(num_players) - num_players


def _generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Generate the standard tournament bracket order.
    This ensures that if all higher seeds win, they meet in the proper rounds.

    For 8 players: [1, 8, 4, 5, 2, 7, 3, 6]
    This gives matchups: 1v8, 4v5, 2v7, 3v6
    Winners: 1v4 side, 2v3 side
    Final: 1v2 (if chalk)
    """
    if bracket_size <= 2:
        return [1, 2][:bracket_size]

    half_size = bracket_size // 2
    upper_half = _generate_bracket_order(half_size)

    # Pair each upper seed with its complement
    result = []
    for seed in upper_half:
        result.extend([seed, bracket_size + 1 - seed])
    return result


def match_id(prefix: str, round_number: int, match_number: int) -> str:
    return f'{prefix}W{round_number}-M{match_number}'


def third_place_id(prefix: str) -> str:
    return f'{prefix}3P'


def _first_round_players(players: Sequence[Player], bracket_size: int) -> List[Optional[str]]:
    order = _generate_bracket_order(bracket_size)
    return [players[seed - 1].id if seed <= len(players) else None for seed in order]


def _build_rounds(players: Sequence[Player], id_prefix: str) -> Tuple[Tuple[Match, ...], ...]:
    bracket_size = calculate_bracket_size(len(players))
    total_rounds = int(math.log2(bracket_size))
    slots = _first_round_players(players, bracket_size)

    rounds = []
    for round_number in range(1, total_rounds + 1):
        round_matches = []
        for i in range(bracket_size >> round_number):
            next_id = None
            if round_number < total_rounds:
                next_id = match_id(id_prefix, round_number + 1, i // 2 + 1)
            match = Match(id=match_id(id_prefix, round_number, i + 1), next_match_id=next_id, position=i)
            if round_number == 1:
                p1, p2 = slots[2 * i], slots[2 * i + 1]
                # A first-round pairing against a bye is padding, never played
                match = replace(match, player1_id=p1, player2_id=p2, dummy=p1 is None or p2 is None)
            round_matches.append(match)
        rounds.append(tuple(round_matches))
    return tuple(rounds)


def winner_edges(rounds: Sequence[Sequence[Match]]) -> List[Edge]:
    """Advancement edges encoded by ``nextMatchId``/``position``."""
    return [
        Edge(m.id, m.next_match_id, slot_for_position(m.position), WINNER)
        for round_matches in rounds
        for m in round_matches
        if m.next_match_id
    ]


def bracket_graph(bracket: Bracket) -> MatchGraph:
    edges = winner_edges(bracket.rounds)
    third = bracket.third_place_match
    if third is not None and len(bracket.rounds) >= 2:
        for semi in bracket.rounds[-2]:
            edges.append(Edge(semi.id, third.id, slot_for_position(semi.position), LOSER))
    return MatchGraph([m.id for m in bracket.all_matches()], edges)


def apply_matches(bracket: Bracket, matches: Dict[str, Match]) -> Bracket:
    """New bracket with ``matches`` swapped in; untouched rounds are shared."""
    rounds = tuple(swap_in(round_matches, matches) for round_matches in bracket.rounds)
    third = bracket.third_place_match
    if third is not None:
        third = matches.get(third.id, third)
    if third is bracket.third_place_match and all(a is b for a, b in zip(rounds, bracket.rounds)):
        return bracket
    return replace(bracket, rounds=rounds, third_place_match=third)


def _settle(bracket: Bracket, changed: Dict[str, Match], start: Optional[str]) -> Bracket:
    check_bracket_geometry(bracket)
    graph = bracket_graph(bracket)
    matches = {m.id: m for m in bracket.all_matches()}
    matches.update(changed)
    settled = graph.settle(matches, None if start is None else [start])
    return apply_matches(bracket, settled)


def build_bracket(players: Sequence[Player], id_prefix: str = '') -> Bracket:
    """
    Build a single elimination bracket from players in seed order.

    The field is padded to the next power of two. Top seeds receive the byes;
    those first-round matches are dummies and their lone player advances at
    once. When there are at least two rounds a third-place match is created,
    filled by the semifinal losers as the semifinals are decided.
    """
    if len(players) < MIN_PLAYERS:
        raise ValueError(f'A bracket needs at least {MIN_PLAYERS} players')

    rounds = _build_rounds(players, id_prefix)
    third = Match(id=third_place_id(id_prefix)) if len(rounds) >= 2 else None
    bracket = _settle(Bracket(rounds=rounds, third_place_match=third), {}, None)
    logger.debug(f'Built bracket {id_prefix or "main"}: {len(players)} players, '
                 f'{calculate_byes(len(players))} byes, {len(rounds)} rounds')
    return bracket


def find_match(bracket: Bracket, match_id: str) -> Optional[Match]:
    return next((m for m in bracket.all_matches() if m.id == match_id), None)


@guard_invariants
def advance_winner(bracket: Bracket, match_id: str, winner_id: str, scores=(), walkover: bool = False, *,
                   scoring_mode: ScoreMode = ScoreMode.SETS,
                   max_sets: int = DEFAULT_MAX_SETS) -> Tuple[Bracket, Optional[EngineError]]:
    """Record a result and push its consequences downstream."""
    match = find_match(bracket, match_id)
    if match is None:
        return bracket, not_found('Match', match_id)

    scores, message = normalize_scores(scores)
    if message:
        return bracket, invalid_result(message)
    error = check_result(match, winner_id, scores, walkover, scoring_mode, max_sets)
    if error:
        return bracket, error

    updated = replace(match, winner_id=winner_id, scores=scores, walkover=bool(walkover))
    logger.info(f'Match {match_id}: winner {winner_id}')
    return _settle(bracket, {match_id: updated}, match_id), None


@guard_invariants
def clear_match_result(bracket: Bracket, match_id: str) -> Tuple[Bracket, Optional[EngineError]]:
    """Clear a played result; every slot and result that depended on it is reset."""
    match = find_match(bracket, match_id)
    if match is None:
        return bracket, not_found('Match', match_id)
    if not match.has_result:
        return bracket, None
    if match.dummy or not match.player1_id or not match.player2_id:
        return bracket, invalid_result(f"Match '{match_id}' is a bye and cannot be cleared")

    cleared = replace(match, winner_id=None, scores=(), walkover=False)
    logger.info(f'Match {match_id}: result cleared')
    return _settle(bracket, {match_id: cleared}, match_id), None


def get_bracket_winner(bracket: Bracket) -> Optional[str]:
    if not bracket.rounds or not bracket.rounds[-1]:
        return None
    return bracket.rounds[-1][0].winner_id


def can_edit_match(bracket: Bracket, match_id: str) -> bool:
    match = find_match(bracket, match_id)
    return match is not None and is_playable(match)


def is_playable(match: Match) -> bool:
    return bool(match.player1_id and match.player2_id) and not match.dummy
