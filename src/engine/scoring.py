"""
Score validation and winner determination.

In SETS mode a result is a single pair holding the number of sets each player
won. In POINTS mode every pair is one set's points and the winner is whoever
took more sets. A set scored MAX_POINTS is a walked-over set.
"""
from typing import Optional, Sequence, Tuple

from .constants import MAX_POINTS
from .errors import EngineError, invalid_result
from .models import Match, ScoreMode, SetScore


def is_walkover_score(value) -> bool:
    return abs(value) == MAX_POINTS


def get_walkover_set_winner(a: int, b: int) -> int:
    """Return 1 or 2 for the player awarded a walked-over set, 0 otherwise."""
    if not is_walkover_score(a) and not is_walkover_score(b):
        return 0
    if a == b:
        return 0
    if a == MAX_POINTS or b == -MAX_POINTS:
        return 1
    if b == MAX_POINTS or a == -MAX_POINTS:
        return 2
    return 0


def sets_to_win(max_sets: int) -> int:
    """Sets needed to take a best-of-``max_sets`` match."""
    return max_sets // 2 + 1


def has_walkover(scores: Sequence[SetScore]) -> bool:
    return any(is_walkover_score(a) or is_walkover_score(b) for a, b in scores)


def get_set_totals(scores: Sequence[SetScore], scoring_mode: ScoreMode = ScoreMode.POINTS,
                   max_sets: int = 5) -> Tuple[int, int]:
    """Sets won by each player."""
    if not scores:
        return 0, 0

    if scoring_mode == ScoreMode.SETS:
        a, b = scores[0]
        if 0 <= a <= max_sets and 0 <= b <= max_sets:
            return a, b
        return 0, 0

    p1_sets = 0
    p2_sets = 0
    for a, b in scores:
        walkover_winner = get_walkover_set_winner(a, b)
        if walkover_winner == 1:
            p1_sets += 1
        elif walkover_winner == 2:
            p2_sets += 1
        elif a > b:
            p1_sets += 1
        elif b > a:
            p2_sets += 1
    return p1_sets, p2_sets


def get_point_totals(scores: Sequence[SetScore], scoring_mode: ScoreMode) -> Tuple[int, int]:
    """Rally points per player; walked-over sets and SETS mode count nothing."""
    if scoring_mode != ScoreMode.POINTS:
        return 0, 0
    p1_points = 0
    p2_points = 0
    for a, b in scores:
        if is_walkover_score(a) or is_walkover_score(b):
            continue
        p1_points += a
        p2_points += b
    return p1_points, p2_points


def normalize_scores(raw) -> Tuple[Optional[Tuple[SetScore, ...]], Optional[str]]:
    """Coerce user input into a tuple of integer pairs. Returns (scores, error message)."""
    if raw is None:
        return (), None
    if isinstance(raw, (str, bytes)) or not isinstance(raw, (list, tuple)):
        return None, 'Scores must be a list of [score1, score2] pairs'
    scores = []
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            return None, 'Each set must be [score1, score2]'
        a, b = entry
        if isinstance(a, bool) or isinstance(b, bool) or not isinstance(a, int) or not isinstance(b, int):
            return None, 'Scores must be integers'
        scores.append((a, b))
    return tuple(scores), None


def validate_scores(scores: Sequence[SetScore], scoring_mode: ScoreMode, max_sets: int,
                    walkover: bool = False) -> Optional[str]:
    """Return an error message for malformed scores, None when they are acceptable."""
    for a, b in scores:
        if a < 0 or b < 0:
            return 'Scores must not be negative'
        if a > MAX_POINTS or b > MAX_POINTS:
            return f'Scores must not exceed {MAX_POINTS}'

    if scoring_mode == ScoreMode.SETS:
        if walkover and not scores:
            return None
        if len(scores) != 1:
            return 'SETS scoring expects exactly one [sets1, sets2] pair'
        a, b = scores[0]
        if a > max_sets or b > max_sets:
            return f'Set counts must not exceed {max_sets}'
        if a + b > max_sets:
            return f'At most {max_sets} sets can be played'
        # A finished best-of-max_sets match stops once someone reaches sets_to_win
        if not walkover and a != b and max(a, b) != sets_to_win(max_sets):
            return f'The winner must take exactly {sets_to_win(max_sets)} sets'
        return None

    if len(scores) > max_sets:
        return f'At most {max_sets} sets can be recorded'
    if not scores and not walkover:
        return 'At least one set score is required'
    return None


def determine_winner(scores: Sequence[SetScore], scoring_mode: ScoreMode = ScoreMode.SETS,
                     max_sets: int = 5) -> Tuple[Optional[int], Tuple[int, int]]:
    """Determine winner from set scores. Returns (winner_index, set_wins)."""
    p1_sets, p2_sets = get_set_totals(scores, scoring_mode, max_sets)
    if p1_sets > p2_sets:
        return 0, (p1_sets, p2_sets)
    if p2_sets > p1_sets:
        return 1, (p1_sets, p2_sets)
    return None, (p1_sets, p2_sets)


def check_result(match: Match, winner_id: str, scores: Sequence[SetScore], walkover: bool,
                 scoring_mode: ScoreMode, max_sets: int) -> Optional[EngineError]:
    """Validate a result for ``match``; the winner implied by the scores is authoritative."""
    if not match.player1_id or not match.player2_id or match.dummy:
        return invalid_result(f"Match '{match.id}' is not ready to be played")
    if winner_id not in (match.player1_id, match.player2_id):
        return invalid_result(f"Player '{winner_id}' is not playing in match '{match.id}'")

    message = validate_scores(scores, scoring_mode, max_sets, walkover)
    if message:
        return invalid_result(message)
    if walkover:
        return None

    winner_index, (p1_sets, p2_sets) = determine_winner(scores, scoring_mode, max_sets)
    if winner_index is None:
        return invalid_result(f'Scores do not decide a winner ({p1_sets}-{p2_sets} in sets)')
    expected = match.players[winner_index]
    if expected != winner_id:
        return invalid_result(f"Scores make '{expected}' the winner, not '{winner_id}'")
    return None
