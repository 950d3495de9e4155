"""
Tests for stored-document validation and topology invariants.
"""
from dataclasses import replace

import pytest
from conftest import make_players
from engine.double_elimination import build_double_elim
from engine.elimination import build_bracket
from engine.errors import InvariantViolation
from engine.models import Format, GroupStageSettings, LoserLink, PLAYER1
from engine.tournament import create_tournament
from engine.validation import (
    check_bracket_geometry,
    check_loser_links,
    is_valid_match,
    is_valid_player,
    is_valid_tournament,
    validate_tournaments,
)


def tournament_dict(fmt=Format.SINGLE_ELIM, **kwargs):
    if fmt == Format.GROUPS_TO_BRACKET:
        kwargs.setdefault('group_settings', GroupStageSettings(group_count=2, qualifiers=(1, 1)))
    tournament, error = create_tournament('Cup', make_players(4), fmt, **kwargs)
    assert error is None
    return tournament.to_dict()


class TestIsValidTournament:
    """Tests for is_valid_tournament."""

    @pytest.mark.parametrize('fmt', list(Format))
    def test_created_tournaments_are_valid(self, fmt):
        assert is_valid_tournament(tournament_dict(fmt))

    def test_missing_id(self):
        data = tournament_dict()
        del data['id']
        assert not is_valid_tournament(data)

    def test_unknown_format(self):
        data = tournament_dict()
        data['format'] = 'SWISS'
        assert not is_valid_tournament(data)

    def test_missing_topology(self):
        data = tournament_dict(Format.ROUND_ROBIN)
        data['schedule'] = None
        assert not is_valid_tournament(data)

    def test_bad_scoring_mode(self):
        data = tournament_dict()
        data['scoringMode'] = 'GOALS'
        assert not is_valid_tournament(data)

    def test_legacy_playoffs_key(self):
        data = tournament_dict(Format.GROUPS_TO_BRACKET)
        data['groupStageBrackets'] = {'bracketType': 'single_elim', 'mainBracket': None}
        assert is_valid_tournament(data)
        data['groupStageBrackets'] = {'bracketType': 'swiss'}
        assert not is_valid_tournament(data)

    def test_not_a_dict(self):
        assert not is_valid_tournament(['id', 'name'])
        assert not is_valid_tournament(None)


class TestFieldValidators:
    """Tests for player and match validators."""

    def test_player(self):
        assert is_valid_player({'id': 'a', 'name': 'A', 'seed': 1})
        assert not is_valid_player({'id': 'a', 'name': 'A', 'seed': 'first'})
        assert not is_valid_player({'id': 'a'})

    def test_match_scores(self):
        assert is_valid_match({'id': 'm', 'scores': [[3, 1], [2, 3]]})
        assert not is_valid_match({'id': 'm', 'scores': [[3]]})
        assert not is_valid_match({'id': 'm', 'scores': [['3', 1]]})

    def test_match_flags(self):
        assert not is_valid_match({'id': 'm', 'walkover': 'yes'})
        assert not is_valid_match({'id': 'm', 'winnerId': 7})


class TestValidateTournaments:
    """Tests for validate_tournaments."""

    def test_filters_invalid(self):
        good = tournament_dict()
        assert validate_tournaments([good, {'id': 'x'}, 'junk']) == [good]

    def test_non_list(self):
        assert validate_tournaments({'id': 'x'}) == []


class TestInvariantChecks:
    """Tests for check_bracket_geometry and check_loser_links."""

    def test_geometry_ok(self):
        check_bracket_geometry(build_bracket(make_players(6)))

    def test_geometry_missing_match(self):
        bracket = build_bracket(make_players(8))
        broken = replace(bracket, rounds=(bracket.rounds[0][:3],) + bracket.rounds[1:])
        with pytest.raises(InvariantViolation):
            check_bracket_geometry(broken)

    def test_geometry_empty(self):
        with pytest.raises(InvariantViolation):
            check_bracket_geometry(replace(build_bracket(make_players(4)), rounds=()))

    def test_loser_links_ok(self):
        check_loser_links(build_double_elim(make_players(8)))

    def test_loser_link_to_unknown_match(self):
        state = build_double_elim(make_players(4))
        links = dict(state.loser_links)
        links['W1-M1'] = LoserLink('L9-M9', PLAYER1)
        with pytest.raises(InvariantViolation):
            check_loser_links(replace(state, loser_links=links))

    def test_loser_link_from_unknown_match(self):
        state = build_double_elim(make_players(4))
        links = dict(state.loser_links)
        links['X1'] = LoserLink('L1-M1', PLAYER1)
        with pytest.raises(InvariantViolation):
            check_loser_links(replace(state, loser_links=links))
