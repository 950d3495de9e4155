"""
Double elimination bracket generation and management.

In double elimination:
- Players must lose twice to be eliminated
- Winners Bracket: Players that haven't lost yet
- Losers Bracket: Players that have lost once
- Grand Final: Winners bracket champion vs Losers bracket champion
- Bracket Reset: If losers bracket winner wins Grand Final, a final match decides the champion
"""
import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .constants import DEFAULT_MAX_SETS, MIN_PLAYERS
from .errors import EngineError, InvariantViolation, guard_invariants, invalid_result, not_found
from .elimination import _build_rounds, apply_matches, get_bracket_winner, is_playable, winner_edges
from .graph import Edge, LOSER, MatchGraph, WINNER, cleared, slot_for_position, swap_in
from .models import (
    Bracket, DoubleElim, DoubleElimFinals, DoubleElimMatch, LoserLink, LosersBracket, Match,
    PLAYER1, PLAYER2, Player, ScoreMode,
)
from .scoring import check_result, normalize_scores
from .validation import check_bracket_geometry, check_loser_links

logger = logging.getLogger(__name__)


def get_losers_round_name(round_num: int, total_losers_rounds: int) -> str:
    """Get the name for a losers bracket round (0-indexed)."""
    rounds_from_end = total_losers_rounds - round_num - 1
    if rounds_from_end == 0:
        return "Losers Final"
    elif rounds_from_end == 1:
        return "Losers Semifinal"
    else:
        return f"Losers Round {round_num + 1}"


def get_winners_round_name(players_in_round: int) -> str:
    """Get the name for a winners bracket round."""
    if players_in_round == 2:
        return "Winners Final"
    elif players_in_round == 4:
        return "Winners Semifinal"
    elif players_in_round == 8:
        return "Winners Quarterfinal"
    else:
        return f"Winners Round of {players_in_round}"


def calculate_losers_bracket_rounds(bracket_size: int) -> int:
    """
    Calculate number of rounds in losers bracket.
    For N players in winners bracket (power of 2):
    - Winners bracket has log2(N) rounds
    - Losers bracket has 2 * (log2(N) - 1) rounds

    Pattern: minor, major, minor, major, ... ending with a major round
    """
    if bracket_size < 2:
        return 0
    winners_rounds = int(math.log2(bracket_size))
    return 2 * (winners_rounds - 1)


def losers_match_id(prefix: str, round_number: int, match_number: int) -> str:
    return f'{prefix}L{round_number}-M{match_number}'


def _other(slot: str) -> str:
    return PLAYER2 if slot == PLAYER1 else PLAYER1


def _build_losers_bracket(winners_rounds, prefix: str):
    """
    Build the losers bracket and the winners-match -> losers-slot links.

    - L Round 1 (minor): losers of winners round 1 pair off
    - L Round 2k-2 (major): losers of winners round k drop into player1,
      the previous losers round winner arrives in player2
    - L Round 2k-1 (minor): winners of the previous major round pair off

    Drop order into major rounds is reversed on every other major round so
    that players do not meet again straight away.
    """
    total_rounds = calculate_losers_bracket_rounds(2 ** len(winners_rounds))
    loser_links: Dict[str, LoserLink] = {}
    rounds: List[List[DoubleElimMatch]] = []

    for round_index in range(total_rounds):
        round_number = round_index + 1
        is_major_round = round_index % 2 == 1
        round_matches = []

        if round_index == 0:
            first = winners_rounds[0]
            for j in range(len(first) // 2):
                mid = losers_match_id(prefix, round_number, j + 1)
                sources = (first[2 * j].id, first[2 * j + 1].id)
                loser_links[sources[0]] = LoserLink(mid, PLAYER1)
                loser_links[sources[1]] = LoserLink(mid, PLAYER2)
                round_matches.append(DoubleElimMatch(id=mid, position=j, winners_sources=sources))

        elif is_major_round:
            w_round = round_index // 2 + 2
            dropping = winners_rounds[w_round - 1]
            count = len(rounds[-1])
            if len(dropping) != count:
                raise InvariantViolation(f'Winners round {w_round} does not fit losers round {round_number}')
            for j in range(count):
                mid = losers_match_id(prefix, round_number, j + 1)
                source = dropping[count - 1 - j] if w_round % 2 == 0 else dropping[j]
                loser_links[source.id] = LoserLink(mid, PLAYER1)
                round_matches.append(DoubleElimMatch(
                    id=mid, position=j, winners_sources=(source.id,), loser_slot_from_winners=PLAYER1,
                ))

        else:
            for j in range(len(rounds[-1]) // 2):
                mid = losers_match_id(prefix, round_number, j + 1)
                round_matches.append(DoubleElimMatch(id=mid, position=j))

        rounds.append(round_matches)

    # Wire losers bracket advancement
    for round_index in range(len(rounds) - 1):
        next_round = rounds[round_index + 1]
        major_next = round_index % 2 == 0
        for j, match in enumerate(rounds[round_index]):
            target = next_round[j] if major_next else next_round[j // 2]
            rounds[round_index][j] = replace(match, next_match_id=target.id)

    return tuple(tuple(r) for r in rounds), loser_links


def build_double_elim(players: List[Player], id_prefix: str = '') -> DoubleElim:
    """Build winners bracket, losers bracket and finals from players in seed order."""
    if len(players) < MIN_PLAYERS:
        raise ValueError(f'A bracket needs at least {MIN_PLAYERS} players')

    grand_final = Match(id=f'{id_prefix}GF', position=0)
    reset_final = Match(id=f'{id_prefix}BR', position=1)

    winners_rounds = list(_build_rounds(players, id_prefix))
    final = winners_rounds[-1][0]
    winners_rounds[-1] = (replace(final, next_match_id=grand_final.id, position=0),)

    losers_rounds, loser_links = _build_losers_bracket(winners_rounds, id_prefix)
    if losers_rounds:
        last = losers_rounds[-1][0]
        losers_rounds = losers_rounds[:-1] + ((replace(last, next_match_id=grand_final.id),),)
    else:
        # Two players: the winners final loser goes straight to the grand final
        loser_links[final.id] = LoserLink(grand_final.id, PLAYER2)

    state = DoubleElim(
        winners=Bracket(rounds=tuple(winners_rounds)),
        losers=LosersBracket(rounds=losers_rounds),
        finals=DoubleElimFinals(grand_final=grand_final, reset_final=reset_final),
        loser_links=loser_links,
    )
    state = _settle(state, {}, None)
    logger.debug(f'Built double elimination {id_prefix or "main"}: {len(players)} players, '
                 f'{len(winners_rounds)} winners rounds, {len(losers_rounds)} losers rounds')
    return state


def all_matches(state: DoubleElim) -> List[Match]:
    matches = state.winners.all_matches()
    matches.extend(m for r in state.losers.rounds for m in r)
    matches.extend([state.finals.grand_final, state.finals.reset_final])
    return matches


def find_match(state: DoubleElim, match_id: str) -> Tuple[Optional[str], Optional[Match]]:
    """Return (section, match) where section is 'winners', 'losers' or 'finals'."""
    for m in state.winners.all_matches():
        if m.id == match_id:
            return 'winners', m
    for r in state.losers.rounds:
        for m in r:
            if m.id == match_id:
                return 'losers', m
    for m in (state.finals.grand_final, state.finals.reset_final):
        if m.id == match_id:
            return 'finals', m
    return None, None


def double_elim_graph(state: DoubleElim) -> MatchGraph:
    grand_final = state.finals.grand_final
    by_id = {m.id: m for r in state.losers.rounds for m in r}

    edges = winner_edges(state.winners.rounds)
    for r in state.losers.rounds:
        for m in r:
            if not m.next_match_id:
                continue
            if m.next_match_id == grand_final.id:
                slot = PLAYER2
            else:
                target = by_id.get(m.next_match_id)
                if target is None:
                    raise InvariantViolation(f'Losers match {m.id} advances to unknown match {m.next_match_id}')
                if target.loser_slot_from_winners:
                    slot = _other(target.loser_slot_from_winners)
                else:
                    slot = slot_for_position(m.position)
            edges.append(Edge(m.id, m.next_match_id, slot, WINNER))
    for source, link in state.loser_links.items():
        edges.append(Edge(source, link.match_id, link.slot, LOSER))

    return MatchGraph(
        [m.id for m in all_matches(state)],
        edges,
        no_byes=(grand_final.id, state.finals.reset_final.id),
    )


def _sync_reset_final(grand_final: Match, reset_final: Match) -> Match:
    """The reset final is live only when the losers bracket champion took the grand final."""
    if grand_final.winner_id and grand_final.player2_id and grand_final.winner_id == grand_final.player2_id:
        wanted = grand_final.players
    else:
        wanted = (None, None)
    if reset_final.players != wanted:
        return replace(cleared(reset_final), player1_id=wanted[0], player2_id=wanted[1])
    return reset_final


def _apply(state: DoubleElim, matches: Dict[str, Match]) -> DoubleElim:
    winners = apply_matches(state.winners, matches)
    losers_rounds = tuple(swap_in(r, matches) for r in state.losers.rounds)
    grand_final = matches.get(state.finals.grand_final.id, state.finals.grand_final)
    reset_final = _sync_reset_final(grand_final, matches.get(state.finals.reset_final.id, state.finals.reset_final))

    losers = state.losers
    if any(a is not b for a, b in zip(losers_rounds, losers.rounds)):
        losers = replace(losers, rounds=losers_rounds)
    finals = state.finals
    if grand_final is not finals.grand_final or reset_final is not finals.reset_final:
        finals = DoubleElimFinals(grand_final=grand_final, reset_final=reset_final)
    if winners is state.winners and losers is state.losers and finals is state.finals:
        return state
    return replace(state, winners=winners, losers=losers, finals=finals)


def _settle(state: DoubleElim, changed: Dict[str, Match], start: Optional[str]) -> DoubleElim:
    check_bracket_geometry(state.winners)
    check_loser_links(state)
    graph = double_elim_graph(state)
    matches = {m.id: m for m in all_matches(state)}
    matches.update(changed)
    settled = graph.settle(matches, None if start is None else [start])
    result = _apply(state, settled)

    grand_final = result.finals.grand_final
    if (get_bracket_winner(result.winners) and _losers_champion(result)
            and not (grand_final.player1_id and grand_final.player2_id)):
        raise InvariantViolation('Both brackets are decided but the grand final is missing a finalist')
    return result


def _losers_champion(state: DoubleElim) -> Optional[str]:
    if state.losers.rounds:
        return state.losers.rounds[-1][0].winner_id
    return state.winners.rounds[-1][0].loser_id


@guard_invariants
def advance_double_elim(state: DoubleElim, match_id: str, winner_id: str, scores=(), walkover: bool = False, *,
                        scoring_mode: ScoreMode = ScoreMode.SETS,
                        max_sets: int = DEFAULT_MAX_SETS) -> Tuple[DoubleElim, Optional[EngineError]]:
    """Record a result; winners advance and winners-bracket losers drop into the losers bracket."""
    section, match = find_match(state, match_id)
    if match is None:
        return state, not_found('Match', match_id)

    scores, message = normalize_scores(scores)
    if message:
        return state, invalid_result(message)
    error = check_result(match, winner_id, scores, walkover, scoring_mode, max_sets)
    if error:
        return state, error

    updated = replace(match, winner_id=winner_id, scores=scores, walkover=bool(walkover))
    logger.info(f'Match {match_id} ({section}): winner {winner_id}')
    return _settle(state, {match_id: updated}, match_id), None


@guard_invariants
def clear_double_elim_match(state: DoubleElim, match_id: str) -> Tuple[DoubleElim, Optional[EngineError]]:
    """Clear a result and everything downstream of it in both brackets and the finals."""
    section, match = find_match(state, match_id)
    if match is None:
        return state, not_found('Match', match_id)
    if not match.has_result:
        return state, None
    if not is_playable(match):
        return state, invalid_result(f"Match '{match_id}' is a bye and cannot be cleared")

    logger.info(f'Match {match_id} ({section}): result cleared')
    return _settle(state, {match_id: cleared(match)}, match_id), None


def get_double_elim_winner(state: DoubleElim) -> Optional[str]:
    reset_final = state.finals.reset_final
    grand_final = state.finals.grand_final
    if reset_final.winner_id:
        return reset_final.winner_id
    if grand_final.winner_id and grand_final.winner_id == grand_final.player1_id:
        return grand_final.winner_id
    return None


def can_edit_double_elim_match(state: DoubleElim, match_id: str) -> bool:
    """Both slots hold real players; bracket matches lock once the title is decided."""
    section, match = find_match(state, match_id)
    if match is None or not is_playable(match):
        return False
    if section == 'finals':
        return True
    return get_double_elim_winner(state) is None
