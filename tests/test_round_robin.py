"""
Tests for round robin scheduling and standings.
"""
from itertools import combinations

import pytest
from conftest import make_players
from engine.errors import ErrorKind
from engine.models import ScoreMode
from engine.round_robin import (
    RoundRobinCriterion,
    compute_standings,
    find_match,
    generate_schedule,
    is_schedule_complete,
    record_result,
)


def match_between(schedule, a, b):
    return next(m for m in schedule.all_matches() if set(m.players) == {a, b})


def record(schedule, a, b, score_a, score_b, scoring_mode=ScoreMode.SETS, max_sets=5):
    """Record ``a`` vs ``b`` with ``a``'s score first, whatever the slot order."""
    m = match_between(schedule, a, b)
    if m.player1_id == a:
        scores = [(score_a, score_b)]
    else:
        scores = [(score_b, score_a)]
    winner = a if score_a > score_b else b
    schedule, error = record_result(schedule, m.id, winner, scores, scoring_mode=scoring_mode, max_sets=max_sets)
    assert error is None, error
    return schedule


class TestGenerateSchedule:
    """Tests for generate_schedule."""

    def test_five_players(self, five_players):
        """Five rounds, one bye per round, ten matches."""
        schedule = generate_schedule(five_players)
        assert len(schedule.rounds) == 5
        assert all(r.bye_player_id is not None for r in schedule.rounds)
        assert sorted(r.bye_player_id for r in schedule.rounds) == ['p1', 'p2', 'p3', 'p4', 'p5']
        assert len(schedule.all_matches()) == 10

    def test_every_pair_meets_once(self, eight_players):
        schedule = generate_schedule(eight_players)
        pairs = [frozenset(m.players) for m in schedule.all_matches()]
        assert len(pairs) == len(set(pairs)) == 28
        assert set(pairs) == {frozenset(p) for p in combinations([p.id for p in eight_players], 2)}

    def test_even_count_has_no_byes(self, four_players):
        schedule = generate_schedule(four_players)
        assert len(schedule.rounds) == 3
        assert all(r.bye_player_id is None for r in schedule.rounds)
        for r in schedule.rounds:
            ids = [p for m in r.matches for p in m.players]
            assert len(ids) == len(set(ids)) == 4

    def test_match_ids(self, four_players):
        schedule = generate_schedule(four_players)
        assert [m.id for m in schedule.all_matches()] == [f'rr{i}' for i in range(1, 7)]
        prefixed = generate_schedule(four_players, id_prefix='g1-')
        assert prefixed.all_matches()[0].id == 'g1-1'

    def test_empty(self):
        assert generate_schedule([]).rounds == ()


class TestRecordResult:
    """Tests for record_result."""

    def test_record_and_clear(self, four_players):
        schedule = generate_schedule(four_players)
        match_id = schedule.all_matches()[0].id
        updated, error = record_result(schedule, match_id, find_match(schedule, match_id).player1_id, [(3, 2)])
        assert error is None
        assert find_match(updated, match_id).winner_id is not None
        cleared, error = record_result(updated, match_id, None)
        assert error is None
        assert cleared == schedule

    def test_unknown_match(self, four_players):
        schedule = generate_schedule(four_players)
        result, error = record_result(schedule, 'rr99', 'p1', [(3, 0)])
        assert error.kind == ErrorKind.NOT_FOUND
        assert result is schedule

    def test_invalid_scores(self, four_players):
        schedule = generate_schedule(four_players)
        m = schedule.all_matches()[0]
        _, error = record_result(schedule, m.id, m.player1_id, [(0, 3)])
        assert error.kind == ErrorKind.INVALID_RESULT

    def test_complete(self, four_players):
        schedule = generate_schedule(four_players)
        assert not is_schedule_complete(schedule)
        for a, b in combinations(['p1', 'p2', 'p3', 'p4'], 2):
            schedule = record(schedule, a, b, 3, 0)
        assert is_schedule_complete(schedule)


class TestComputeStandings:
    """Tests for compute_standings."""

    def test_points_and_order(self, four_players):
        schedule = generate_schedule(four_players)
        for a, b in combinations(['p1', 'p2', 'p3', 'p4'], 2):
            schedule = record(schedule, a, b, 3, 1)
        standings = compute_standings(schedule, four_players)
        assert [r.player_id for r in standings] == ['p1', 'p2', 'p3', 'p4']
        assert [r.points for r in standings] == [6, 4, 2, 0]
        assert standings[0].sets_won == 9 and standings[0].sets_lost == 3

    def test_wins_equal_losses(self, five_players):
        schedule = generate_schedule(five_players)
        schedule = record(schedule, 'p1', 'p2', 3, 0)
        schedule = record(schedule, 'p3', 'p5', 1, 3)
        schedule = record(schedule, 'p4', 'p1', 3, 2)
        standings = compute_standings(schedule, five_players)
        assert sum(r.wins for r in standings) == sum(r.losses for r in standings) == 3

    def test_head_to_head_cycle(self):
        """Three-way tie on points resolved by head-to-head set difference, then sets won."""
        players = make_players(3)
        schedule = generate_schedule(players)
        schedule = record(schedule, 'p1', 'p2', 3, 1)
        schedule = record(schedule, 'p2', 'p3', 3, 0)
        schedule = record(schedule, 'p3', 'p1', 3, 2)
        standings = compute_standings(schedule, players)
        assert [r.player_id for r in standings] == ['p1', 'p2', 'p3']

        top, middle, bottom = (r.tiebreak_details for r in standings)
        assert top.head_to_head == middle.head_to_head == bottom.head_to_head == 1
        assert top.tiebreak_applied == ('headToHead', 'headToHeadSetDiff', 'headToHeadSetsWon')
        assert middle.tiebreak_applied == ('headToHead', 'headToHeadSetDiff')
        assert bottom.tiebreak_applied == ('headToHead', 'headToHeadSetDiff')

    def test_head_to_head_decides_two_way_tie(self):
        players = make_players(4)
        schedule = generate_schedule(players)
        # p1 and p3 finish on 4 points, p2 and p4 on 2
        schedule = record(schedule, 'p1', 'p2', 3, 0)
        schedule = record(schedule, 'p1', 'p3', 3, 0)
        schedule = record(schedule, 'p1', 'p4', 0, 3)
        schedule = record(schedule, 'p3', 'p2', 3, 2)
        schedule = record(schedule, 'p2', 'p4', 3, 0)
        schedule = record(schedule, 'p3', 'p4', 3, 0)
        standings = compute_standings(schedule, players)
        assert [r.player_id for r in standings] == ['p1', 'p3', 'p2', 'p4']
        assert standings[0].tiebreak_details.tiebreak_applied == ('headToHead',)
        assert standings[2].tiebreak_details.tiebreak_applied == ('headToHead',)

    def test_full_tie_keeps_player_order(self, four_players):
        standings = compute_standings(generate_schedule(four_players), four_players)
        assert [r.player_id for r in standings] == ['p1', 'p2', 'p3', 'p4']
        assert all(r.points == 0 for r in standings)

    def test_points_diff_only_in_points_mode(self):
        players = make_players(2)
        schedule = generate_schedule(players)
        schedule = record(schedule, 'p1', 'p2', 11, 7, scoring_mode=ScoreMode.POINTS)
        standings = compute_standings(schedule, players, ScoreMode.POINTS)
        assert standings[0].points_won == 11 and standings[0].points_lost == 7
        assert standings[0].tiebreak_details.points_diff_applicable
        assert RoundRobinCriterion.POINTS_DIFF.value == 'pointsDiff'

    @pytest.mark.parametrize('points_per_win, points_per_loss', [(3, 0), (2, 1)])
    def test_custom_points(self, four_players, points_per_win, points_per_loss):
        schedule = record(generate_schedule(four_players), 'p1', 'p2', 3, 0)
        standings = compute_standings(schedule, four_players, points_per_win=points_per_win,
                                      points_per_loss=points_per_loss)
        by_id = {r.player_id: r for r in standings}
        assert by_id['p1'].points == points_per_win
        assert by_id['p2'].points == points_per_loss
