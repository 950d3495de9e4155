"""
Tournament-level operations: creation, result dispatch and seeding.

Every operation takes a ``Tournament`` snapshot and returns
``(tournament, error)``; on error the input snapshot comes back unchanged.
"""
import logging
import random
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from . import double_elimination, elimination, round_robin
from .constants import DEFAULT_MAX_SETS, MIN_PLAYERS
from .errors import EngineError, guard_invariants, invalid_result, not_found
from .group_stage import build_group_stage_playoffs, create_group_stage, is_group_stage_complete
from .models import (
    Format, GroupStage, GroupStagePlayoffs, GroupStageSettings, Match, Player, ScoreMode, Tournament,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def assign_seeds(players: Sequence[Player]) -> List[Player]:
    """Order players by seed (unseeded last, keeping list order) and renumber 1..n."""
    ordered = sorted(
        enumerate(players),
        key=lambda item: (item[1].seed is None, item[1].seed or 0, item[0]),
    )
    return [replace(player, seed=index + 1) for index, (_, player) in enumerate(ordered)]


def validate_players(players: Sequence[Player]) -> Optional[EngineError]:
    if len(players) < MIN_PLAYERS:
        return invalid_result(f'At least {MIN_PLAYERS} players are required')
    ids = [p.id for p in players]
    if len(set(ids)) != len(ids):
        return invalid_result('Player ids must be unique')
    if any(not p.id or not p.name or not p.name.strip() for p in players):
        return invalid_result('Every player needs an id and a name')
    return None


def group_max_sets(tournament: Tournament) -> int:
    return tournament.group_stage_max_sets or tournament.max_sets


def bracket_max_sets(tournament: Tournament) -> int:
    return tournament.bracket_max_sets or tournament.max_sets


def _build_topology(tournament: Tournament) -> Tournament:
    players = list(tournament.players)
    fmt = tournament.format
    if fmt == Format.SINGLE_ELIM:
        return replace(tournament, bracket=elimination.build_bracket(players))
    if fmt == Format.DOUBLE_ELIM:
        return replace(tournament, double_elim=double_elimination.build_double_elim(players))
    if fmt == Format.ROUND_ROBIN:
        return replace(tournament, schedule=round_robin.generate_schedule(players))
    group_stage = create_group_stage(players, tournament.group_stage.settings)
    return replace(tournament, group_stage=group_stage,
                   group_stage_playoffs=_playoffs_for(tournament, group_stage))


def _playoffs_for(tournament: Tournament, group_stage: GroupStage) -> Optional[GroupStagePlayoffs]:
    """Playoffs seeded from a finished group stage, None while group matches remain.

    Groups of one player have no matches, so such a stage is finished as soon
    as it is created.
    """
    if not is_group_stage_complete(group_stage):
        return None
    return build_group_stage_playoffs(group_stage, tournament.players, tournament.scoring_mode,
                                      group_max_sets(tournament))


def create_tournament(name: str, players: Sequence[Player], format: Format,
                      scoring_mode: ScoreMode = ScoreMode.SETS, max_sets: int = DEFAULT_MAX_SETS,
                      group_settings: Optional[GroupStageSettings] = None, tournament_id: Optional[str] = None,
                      created_at: Optional[str] = None, group_stage_max_sets: Optional[int] = None,
                      bracket_max_sets: Optional[int] = None) -> Tuple[Optional[Tournament], Optional[EngineError]]:
    """Create a tournament and its topology. Returns (tournament, error)."""
    if not name or not name.strip():
        return None, invalid_result('Tournament name is required')
    error = validate_players(players)
    if error:
        return None, error
    if max_sets < 1:
        return None, invalid_result('maxSets must be at least 1')

    format = Format(format)
    group_stage = None
    if format == Format.GROUPS_TO_BRACKET:
        if group_settings is None:
            return None, invalid_result('Group settings are required for a group stage')
        if not 1 <= group_settings.group_count <= len(players):
            return None, invalid_result('Group count must be between 1 and the number of players')
        group_stage = GroupStage(groups=(), settings=group_settings)

    tournament = Tournament(
        id=tournament_id or uuid.uuid4().hex,
        name=name.strip(),
        format=format,
        players=tuple(assign_seeds(players)),
        created_at=created_at or _now(),
        scoring_mode=ScoreMode(scoring_mode),
        max_sets=max_sets,
        group_stage_max_sets=group_stage_max_sets,
        bracket_max_sets=bracket_max_sets,
        group_stage=group_stage,
    )
    tournament = _build_topology(tournament)
    logger.info(f'Created tournament {tournament.id} ({format.value}, {len(players)} players)')
    return tournament, None


def _playoff_sections(playoffs: GroupStagePlayoffs):
    """(field name, engine module) for every playoff topology that exists."""
    for field_name in ('main_bracket', 'consolation_bracket'):
        if getattr(playoffs, field_name) is not None:
            yield field_name, elimination
    for field_name in ('main_double_elim', 'consolation_double_elim'):
        if getattr(playoffs, field_name) is not None:
            yield field_name, double_elimination


def _section_matches(value, engine) -> List[Match]:
    if engine is elimination:
        return value.all_matches()
    return double_elimination.all_matches(value)


def playoffs_have_results(playoffs: Optional[GroupStagePlayoffs]) -> bool:
    if playoffs is None:
        return False
    return any(
        m.winner_id and elimination.is_playable(m)
        for field_name, engine in _playoff_sections(playoffs)
        for m in _section_matches(getattr(playoffs, field_name), engine)
    )


def _apply_bracket(topology, engine, match_id, winner_id, scores, walkover, scoring_mode, max_sets):
    if engine is elimination:
        if winner_id is None:
            return elimination.clear_match_result(topology, match_id)
        return elimination.advance_winner(topology, match_id, winner_id, scores, walkover,
                                          scoring_mode=scoring_mode, max_sets=max_sets)
    if winner_id is None:
        return double_elimination.clear_double_elim_match(topology, match_id)
    return double_elimination.advance_double_elim(topology, match_id, winner_id, scores, walkover,
                                                  scoring_mode=scoring_mode, max_sets=max_sets)


def _record_group_match(tournament: Tournament, match_id, winner_id, scores, walkover):
    group_stage = tournament.group_stage
    for index, group in enumerate(group_stage.groups):
        if round_robin.find_match(group.schedule, match_id) is None:
            continue
        if playoffs_have_results(tournament.group_stage_playoffs):
            return tournament, invalid_result('Group results cannot change once the playoffs have started')
        schedule, error = round_robin.record_result(
            group.schedule, match_id, winner_id, scores, walkover,
            scoring_mode=tournament.scoring_mode, max_sets=group_max_sets(tournament),
        )
        if error:
            return tournament, error
        groups = group_stage.groups[:index] + (replace(group, schedule=schedule),) + group_stage.groups[index + 1:]
        group_stage = replace(group_stage, groups=groups)
        return replace(tournament, group_stage=group_stage,
                       group_stage_playoffs=_playoffs_for(tournament, group_stage)), None
    return None, None


def _record_playoff_match(tournament: Tournament, match_id, winner_id, scores, walkover):
    playoffs = tournament.group_stage_playoffs
    if playoffs is None:
        return None, None
    for field_name, engine in _playoff_sections(playoffs):
        topology = getattr(playoffs, field_name)
        if not any(m.id == match_id for m in _section_matches(topology, engine)):
            continue
        updated, error = _apply_bracket(topology, engine, match_id, winner_id, scores, walkover,
                                        tournament.scoring_mode, bracket_max_sets(tournament))
        if error:
            return tournament, error
        return replace(tournament, group_stage_playoffs=replace(playoffs, **{field_name: updated})), None
    return None, None


def tournament_winner(tournament: Tournament) -> Optional[str]:
    fmt = tournament.format
    if fmt == Format.SINGLE_ELIM:
        return elimination.get_bracket_winner(tournament.bracket)
    if fmt == Format.DOUBLE_ELIM:
        return double_elimination.get_double_elim_winner(tournament.double_elim)
    if fmt == Format.ROUND_ROBIN:
        if not round_robin.is_schedule_complete(tournament.schedule):
            return None
        standings = round_robin.compute_standings(tournament.schedule, tournament.players,
                                                  tournament.scoring_mode, tournament.max_sets)
        return standings[0].player_id if standings else None

    playoffs = tournament.group_stage_playoffs
    if playoffs is None:
        return None
    if playoffs.main_double_elim is not None:
        return double_elimination.get_double_elim_winner(playoffs.main_double_elim)
    if playoffs.main_bracket is not None:
        return elimination.get_bracket_winner(playoffs.main_bracket)
    return None


@guard_invariants
def record_match_result(tournament: Tournament, match_id: str, winner_id: Optional[str], scores=(),
                        walkover: bool = False, now: Optional[str] = None) -> Tuple[Tournament, Optional[EngineError]]:
    """
    Record (or, with ``winner_id=None``, clear) a match result anywhere in the
    tournament and keep ``winnerId``/``completedAt`` in step.
    """
    fmt = tournament.format
    mode = tournament.scoring_mode

    if fmt == Format.SINGLE_ELIM:
        bracket, error = _apply_bracket(tournament.bracket, elimination, match_id, winner_id, scores, walkover,
                                        mode, tournament.max_sets)
        updated = replace(tournament, bracket=bracket)
    elif fmt == Format.DOUBLE_ELIM:
        state, error = _apply_bracket(tournament.double_elim, double_elimination, match_id, winner_id, scores,
                                      walkover, mode, tournament.max_sets)
        updated = replace(tournament, double_elim=state)
    elif fmt == Format.ROUND_ROBIN:
        schedule, error = round_robin.record_result(tournament.schedule, match_id, winner_id, scores, walkover,
                                                    scoring_mode=mode, max_sets=tournament.max_sets)
        updated = replace(tournament, schedule=schedule)
    else:
        updated, error = _record_group_match(tournament, match_id, winner_id, scores, walkover)
        if updated is None and error is None:
            updated, error = _record_playoff_match(tournament, match_id, winner_id, scores, walkover)
        if updated is None and error is None:
            error = not_found('Match', match_id)

    if error:
        return tournament, error

    winner = tournament_winner(updated)
    completed_at = None
    if winner:
        completed_at = tournament.completed_at if winner == tournament.winner_id else None
        completed_at = completed_at or now or _now()
    if winner != tournament.winner_id:
        logger.info(f'Tournament {tournament.id}: winner {winner}')
    return replace(updated, winner_id=winner, completed_at=completed_at), None


def has_results(tournament: Tournament) -> bool:
    fmt = tournament.format
    if fmt == Format.SINGLE_ELIM:
        matches = tournament.bracket.all_matches()
    elif fmt == Format.DOUBLE_ELIM:
        matches = double_elimination.all_matches(tournament.double_elim)
    elif fmt == Format.ROUND_ROBIN:
        matches = tournament.schedule.all_matches()
    else:
        if playoffs_have_results(tournament.group_stage_playoffs):
            return True
        matches = [m for g in tournament.group_stage.groups for m in g.schedule.all_matches()]
    return any(m.winner_id and elimination.is_playable(m) for m in matches)


def reorder_players(tournament: Tournament, ordered_ids: Sequence[str]) -> Tuple[Tournament, Optional[EngineError]]:
    """
    Reassign seeds in the given order and rebuild the topology.

    Player ids never change. Only allowed before any result is recorded.
    """
    by_id = {p.id: p for p in tournament.players}
    if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
        missing = next((i for i in ordered_ids if i not in by_id), None)
        if missing is not None:
            return tournament, not_found('Player', missing)
        return tournament, invalid_result('The new order must list every player exactly once')
    if has_results(tournament):
        return tournament, invalid_result('Players cannot be reordered once results are recorded')

    players = tuple(replace(by_id[player_id], seed=index + 1) for index, player_id in enumerate(ordered_ids))
    logger.info(f'Tournament {tournament.id}: players reordered')
    return _build_topology(replace(tournament, players=players)), None


def shuffle_players(players: Sequence[Player], rng: Optional[random.Random] = None) -> List[Player]:
    """Random seed order; pass a seeded ``random.Random`` for a reproducible draw."""
    rng = rng or random.Random()
    shuffled = list(players)
    rng.shuffle(shuffled)
    return [replace(player, seed=index + 1) for index, player in enumerate(shuffled)]
