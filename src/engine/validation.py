"""
Structural validation of stored tournaments.

``is_valid_tournament`` checks a wire-format dict before it is turned into
model objects; documents written by older versions (``groupStageBrackets``)
are accepted. ``check_bracket_geometry`` and ``check_loser_links`` guard the
invariants the engines rely on and raise ``InvariantViolation``.
"""
from numbers import Number
from typing import Any, Dict, List

from .errors import InvariantViolation
from .models import BracketType, DoubleElim, Format, PLAYER1, PLAYER2, ScoreMode, Bracket

_SLOTS = (PLAYER1, PLAYER2)


def _is_str(value) -> bool:
    return isinstance(value, str)


def _is_number(value) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool) and value == value


def _is_list(value) -> bool:
    return isinstance(value, list)


def _is_dict(value) -> bool:
    return isinstance(value, dict)


def _optional(value: Dict, key: str, check) -> bool:
    return value.get(key) is None or check(value[key])


def _enum_member(enum_cls):
    values = {member.value for member in enum_cls}
    return lambda value: value in values


def _is_set_score(value) -> bool:
    return _is_list(value) and len(value) == 2 and all(_is_number(v) for v in value)


def is_valid_player(value: Any) -> bool:
    return (
        _is_dict(value)
        and _is_str(value.get('id'))
        and _is_str(value.get('name'))
        and _optional(value, 'seed', _is_number)
        and _optional(value, 'elo', _is_number)
    )


def is_valid_match(value: Any) -> bool:
    if not _is_dict(value) or not _is_str(value.get('id')):
        return False
    for key in ('player1Id', 'player2Id', 'winnerId', 'nextMatchId'):
        if not _optional(value, key, _is_str):
            return False
    if 'scores' in value and not (_is_list(value['scores']) and all(_is_set_score(s) for s in value['scores'])):
        return False
    for key in ('walkover', 'dummy'):
        if key in value and not isinstance(value[key], bool):
            return False
    return _optional(value, 'position', _is_number)


def is_valid_bracket(value: Any) -> bool:
    return (
        _is_dict(value)
        and _is_list(value.get('rounds'))
        and all(_is_list(r) and all(is_valid_match(m) for m in r) for r in value['rounds'])
        and _optional(value, 'thirdPlaceMatch', is_valid_match)
    )


def is_valid_schedule(value: Any) -> bool:
    if not _is_dict(value) or not _is_list(value.get('rounds')):
        return False
    for r in value['rounds']:
        if not _is_dict(r) or not _is_number(r.get('roundNumber')):
            return False
        if not _optional(r, 'byePlayerId', _is_str):
            return False
        if not _is_list(r.get('matches')) or not all(is_valid_match(m) for m in r['matches']):
            return False
    return True


def _is_valid_double_elim_match(value: Any) -> bool:
    if not is_valid_match(value):
        return False
    sources = value.get('winnersSources')
    if sources is not None and not (_is_list(sources) and all(_is_str(s) for s in sources)):
        return False
    return value.get('loserSlotFromWinners') in (None,) + _SLOTS


def is_valid_double_elim(value: Any) -> bool:
    if not _is_dict(value) or not is_valid_bracket(value.get('winners')):
        return False
    losers = value.get('losers')
    if not _is_dict(losers) or not _is_list(losers.get('rounds')):
        return False
    if not all(_is_list(r) and all(_is_valid_double_elim_match(m) for m in r) for r in losers['rounds']):
        return False
    finals = value.get('finals')
    if not _is_dict(finals) or not is_valid_match(finals.get('grandFinal')) or not is_valid_match(finals.get('resetFinal')):
        return False
    links = value.get('loserLinks')
    if not _is_dict(links):
        return False
    return all(_is_dict(link) and _is_str(link.get('matchId')) and link.get('slot') in _SLOTS
               for link in links.values())


def _is_valid_group_stage(value: Any) -> bool:
    if not _is_dict(value) or not _is_list(value.get('groups')):
        return False
    for group in value['groups']:
        if not _is_dict(group) or not _is_str(group.get('id')) or not _is_str(group.get('name')):
            return False
        if not _is_list(group.get('playerIds')) or not all(_is_str(p) for p in group['playerIds']):
            return False
        if not is_valid_schedule(group.get('schedule')) or not _is_number(group.get('order')):
            return False
    settings = value.get('settings')
    return (
        _is_dict(settings)
        and _is_number(settings.get('groupCount'))
        and _is_list(settings.get('qualifiers'))
        and all(_is_number(q) for q in settings['qualifiers'])
        and isinstance(settings.get('consolation'), bool)
        and _optional(settings, 'bracketType', _enum_member(BracketType))
    )


def _is_valid_playoffs(value: Any) -> bool:
    return (
        _is_dict(value)
        and _enum_member(BracketType)(value.get('bracketType'))
        and _optional(value, 'mainBracket', is_valid_bracket)
        and _optional(value, 'mainDoubleElim', is_valid_double_elim)
        and _optional(value, 'consolationBracket', is_valid_bracket)
        and _optional(value, 'consolationDoubleElim', is_valid_double_elim)
    )


_TOPOLOGY_CHECKS = {
    Format.SINGLE_ELIM.value: ('bracket', is_valid_bracket),
    Format.DOUBLE_ELIM.value: ('doubleElim', is_valid_double_elim),
    Format.ROUND_ROBIN.value: ('schedule', is_valid_schedule),
    Format.GROUPS_TO_BRACKET.value: ('groupStage', _is_valid_group_stage),
}


def is_valid_tournament(value: Any) -> bool:
    if not _is_dict(value):
        return False
    if not _is_str(value.get('id')) or not _is_str(value.get('name')) or not _is_str(value.get('createdAt')):
        return False
    if not _is_list(value.get('players')) or not all(is_valid_player(p) for p in value['players']):
        return False
    for key in ('completedAt', 'winnerId'):
        if not _optional(value, key, _is_str):
            return False
    if not _optional(value, 'scoringMode', _enum_member(ScoreMode)):
        return False
    for key in ('maxSets', 'groupStageMaxSets', 'bracketMaxSets'):
        if not _optional(value, key, _is_number):
            return False

    check = _TOPOLOGY_CHECKS.get(value.get('format'))
    if check is None:
        return False
    key, validator = check
    if not validator(value.get(key)):
        return False
    if value['format'] == Format.GROUPS_TO_BRACKET.value:
        for legacy_key in ('groupStagePlayoffs', 'groupStageBrackets'):
            if not _optional(value, legacy_key, _is_valid_playoffs):
                return False
    return True


def validate_tournaments(data: Any) -> List[Dict]:
    """Keep only the well-formed tournament documents."""
    if not _is_list(data):
        return []
    return [t for t in data if is_valid_tournament(t)]


def check_bracket_geometry(bracket: Bracket):
    """Round ``i`` of a padded bracket holds ``size / 2**(i+1)`` matches."""
    if not bracket.rounds:
        raise InvariantViolation('Bracket has no rounds')
    size = 2 ** len(bracket.rounds)
    for i, round_matches in enumerate(bracket.rounds):
        expected = size >> (i + 1)
        if len(round_matches) != expected:
            raise InvariantViolation(
                f'Bracket round {i + 1} has {len(round_matches)} matches, expected {expected}')


def check_loser_links(state: DoubleElim):
    """Every loser link starts in the winners bracket and lands on a real slot."""
    winners = {m.id for m in state.winners.all_matches()}
    targets = {m.id for r in state.losers.rounds for m in r}
    targets.add(state.finals.grand_final.id)
    for source, link in state.loser_links.items():
        if source not in winners:
            raise InvariantViolation(f'Loser link from unknown winners match {source}')
        if link.match_id not in targets or link.slot not in _SLOTS:
            raise InvariantViolation(f'Loser link from {source} points outside the losers bracket')
