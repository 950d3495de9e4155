"""
Group stage: groups, cross-group qualification and playoff seeding.

Each group plays a round robin. The top ``qualifiers[i]`` of group ``i`` go
straight into the playoff bracket. Remaining players are compared across groups
on per-match rates so that groups of different sizes are comparable; the best of
them fill the bracket up to the next power of two as lucky losers.
"""
import enum
import logging
import math
import random
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .constants import CONSOLATION_PREFIX, DEFAULT_ELO, DEFAULT_MAX_SETS, GROUP_LABELS, MIN_PLAYERS
from .double_elimination import build_double_elim
from .elimination import _generate_bracket_order, build_bracket, calculate_bracket_size
from .models import (
    BracketType, Group, GroupAdvancerEntry, GroupAdvancersResult, GroupStage, GroupStagePlayoffs,
    GroupStageSettings, GroupTiebreakDetails, NormalizedStats, Player, RoundRobinSchedule, ScoreMode,
    StandingsRow,
)
from .round_robin import compute_standings, generate_schedule, is_schedule_complete
from .scoring import has_walkover

logger = logging.getLogger(__name__)

QUALIFIER = 'qualifier'
LUCKY = 'lucky'
NON_QUALIFIER = 'nonQualifier'


class GroupStageCriterion(str, enum.Enum):
    """Lucky loser ranking criteria, in order of priority."""
    SETS_WON_PER_MATCH = 'setsWonPerMatch'
    SET_DIFF_PER_MATCH = 'setDiffPerMatch'
    POINTS_DIFF_PER_MATCH = 'pointsDiffPerMatch'
    OPPONENT_AVG_RANK = 'opponentAvgRank'
    RELATIVE_RANK = 'relativeRank'
    FAIR_PLAY = 'fairPlay'
    LOTTERY = 'lottery'


def index_to_group_label(index: int) -> str:
    """0 -> 'A', 25 -> 'Z', 26 -> 'AA'."""
    n = max(0, index)
    label = ''
    while True:
        label = GROUP_LABELS[n % len(GROUP_LABELS)] + label
        n = n // len(GROUP_LABELS) - 1
        if n < 0:
            return label


def normalize_qualifiers(qualifiers: Sequence[int], group_count: int) -> Tuple[int, ...]:
    """One non-negative quota per group; missing quotas are 0."""
    result = []
    for i in range(group_count):
        try:
            value = int(qualifiers[i])
        except (IndexError, TypeError, ValueError):
            value = 0
        result.append(max(0, value))
    return tuple(result)


def _elo(player: Player) -> float:
    return player.elo if player.elo is not None else DEFAULT_ELO


def distribute_players(players: Sequence[Player], group_count: int) -> List[List[str]]:
    """Deal players into groups in seed order: seed 1 to group A, seed 2 to group B, ..."""
    indexed = sorted(
        enumerate(players),
        key=lambda item: (item[1].seed if item[1].seed is not None else math.inf, item[0]),
    )
    buckets: List[List[str]] = [[] for _ in range(group_count)]
    for index, (_, player) in enumerate(indexed):
        buckets[index % group_count].append(player.id)
    return buckets


def group_players(group: Group, players: Sequence[Player]) -> List[Player]:
    ids = set(group.player_ids)
    return [p for p in players if p.id in ids]


def create_group_stage(players: Sequence[Player], settings: GroupStageSettings) -> GroupStage:
    group_count = max(1, settings.group_count)
    settings = replace(
        settings,
        group_count=group_count,
        qualifiers=normalize_qualifiers(settings.qualifiers, group_count),
    )

    groups = []
    for index, player_ids in enumerate(distribute_players(players, group_count)):
        group_id = f'g{index + 1}'
        members = [p for p in players if p.id in set(player_ids)]
        groups.append(Group(
            id=group_id,
            name=f'Group {index_to_group_label(index)}',
            player_ids=tuple(player_ids),
            schedule=generate_schedule(members, id_prefix=f'{group_id}-'),
            order=index + 1,
        ))

    logger.debug(f'Created group stage: {len(players)} players in {group_count} groups')
    return GroupStage(groups=tuple(groups), settings=settings)


def get_group_standings(group_stage: GroupStage, players: Sequence[Player],
                        scoring_mode: ScoreMode = ScoreMode.SETS,
                        max_sets: int = DEFAULT_MAX_SETS) -> Dict[str, List[StandingsRow]]:
    """Standings of every group, keyed by group id."""
    return {
        group.id: compute_standings(group.schedule, group_players(group, players), scoring_mode, max_sets)
        for group in group_stage.groups
    }


def is_group_stage_complete(group_stage: GroupStage) -> bool:
    return all(is_schedule_complete(group.schedule) for group in group_stage.groups)


def normalize_stats(row: StandingsRow) -> NormalizedStats:
    played = row.played or 0
    divisor = played if played > 0 else 1
    return NormalizedStats(
        points_pct=row.points / divisor,
        set_diff_per_match=row.set_diff / divisor,
        sets_won_per_match=row.sets_won / divisor,
        points_diff_per_match=row.points_diff / divisor,
        played=played,
    )


def stable_hash(text: str) -> int:
    """djb2-xor over 32-bit integers."""
    value = 5381
    for ch in text:
        value = (value * 33) & 0xFFFFFFFF
        if value >= 0x80000000:
            value -= 0x100000000
        value ^= ord(ch)
    return value & 0xFFFFFFFF


def stable_lottery_value(player_id: str, group_id: str) -> float:
    return stable_hash(f'{player_id}|{group_id}') / 0xFFFFFFFF


def _group_maps(schedule: RoundRobinSchedule) -> Tuple[Dict[str, Set[str]], Set[str]]:
    """Opponents met in decided matches, and players involved in a walkover."""
    opponents: Dict[str, Set[str]] = {}
    walkovers: Set[str] = set()
    for m in schedule.all_matches():
        if not m.winner_id or not m.player1_id or not m.player2_id:
            continue
        opponents.setdefault(m.player1_id, set()).add(m.player2_id)
        opponents.setdefault(m.player2_id, set()).add(m.player1_id)
        if m.walkover or has_walkover(m.scores):
            walkovers.update(m.players)
    return opponents, walkovers


def _opponent_avg_rank(player_id: str, opponents: Dict[str, Set[str]], rank_by_id: Dict[str, int],
                       group_size: int) -> float:
    met = opponents.get(player_id)
    if not met:
        return group_size
    return sum(rank_by_id.get(o, group_size) for o in met) / len(met)


def _process_group(group: Group, players: Sequence[Player], take: int, scoring_mode: ScoreMode,
                   max_sets: int) -> Tuple[List[GroupAdvancerEntry], List[GroupAdvancerEntry]]:
    standings = compute_standings(group.schedule, group_players(group, players), scoring_mode, max_sets)
    group_size = len(standings) or 1
    rank_by_id = {row.player_id: i + 1 for i, row in enumerate(standings)}
    opponents, walkovers = _group_maps(group.schedule)
    by_id = {p.id: p for p in players}

    main, others = [], []
    for rank_index, row in enumerate(standings):
        normalized = normalize_stats(row)
        details = GroupTiebreakDetails(
            sets_won_per_match=normalized.sets_won_per_match,
            set_diff_per_match=normalized.set_diff_per_match,
            points_diff_per_match=normalized.points_diff_per_match,
            opponent_avg_rank=_opponent_avg_rank(row.player_id, opponents, rank_by_id, group_size),
            relative_rank=(rank_index + 1) / group_size,
            fair_play=row.player_id not in walkovers,
            points_diff_applicable=scoring_mode == ScoreMode.POINTS,
        )
        qualified = rank_index < take
        entry = GroupAdvancerEntry(
            player=by_id[row.player_id],
            group_id=group.id,
            group_rank=rank_index + 1,
            stats=row,
            normalized=normalized,
            tiebreak_details=details,
            advance_type=QUALIFIER if qualified else NON_QUALIFIER,
        )
        (main if qualified else others).append(entry)
    return main, others


def _criteria(details: GroupTiebreakDetails) -> List[Tuple[GroupStageCriterion, float]]:
    """Criterion values oriented so that smaller is better."""
    values = [
        (GroupStageCriterion.SETS_WON_PER_MATCH, -details.sets_won_per_match),
        (GroupStageCriterion.SET_DIFF_PER_MATCH, -details.set_diff_per_match),
    ]
    if details.points_diff_applicable:
        values.append((GroupStageCriterion.POINTS_DIFF_PER_MATCH, -details.points_diff_per_match))
    values.extend([
        (GroupStageCriterion.OPPONENT_AVG_RANK, details.opponent_avg_rank),
        (GroupStageCriterion.RELATIVE_RANK, details.relative_rank),
        (GroupStageCriterion.FAIR_PLAY, 0 if details.fair_play else 1),
    ])
    return values


def _candidate_key(entry: GroupAdvancerEntry) -> Tuple:
    # Rounded so that equal rates computed from different group sizes tie
    return tuple(round(value, 6) for _, value in _criteria(entry.tiebreak_details))


def _applied_criteria(entry: GroupAdvancerEntry, peer: Optional[GroupAdvancerEntry]) -> Tuple[str, ...]:
    if peer is None:
        return ()
    applied = []
    for (criterion, a), (_, b) in zip(_criteria(entry.tiebreak_details), _criteria(peer.tiebreak_details)):
        applied.append(criterion.value)
        if round(a, 6) != round(b, 6):
            return tuple(applied)
    if entry.tiebreak_details.lottery_used:
        applied.append(GroupStageCriterion.LOTTERY.value)
    return tuple(applied)


def rank_lucky_candidates(candidates: Sequence[GroupAdvancerEntry], slots: int,
                          rng: Optional[random.Random] = None) -> List[GroupAdvancerEntry]:
    """
    Order non-qualifiers for lucky loser selection.

    Candidates level on every criterion are separated by a lottery draw, taken
    from ``rng`` when given and from a stable hash of player and group otherwise.
    """
    ranked = sorted(candidates, key=_candidate_key)

    i = 0
    while i < len(ranked):
        j = i + 1
        key = _candidate_key(ranked[i])
        while j < len(ranked) and _candidate_key(ranked[j]) == key:
            j += 1
        if j - i > 1:
            drawn = []
            for entry in ranked[i:j]:
                lottery = rng.random() if rng is not None else stable_lottery_value(entry.id, entry.group_id)
                details = replace(entry.tiebreak_details, lottery=lottery, lottery_used=True)
                drawn.append(replace(entry, tiebreak_details=details))
            drawn.sort(key=lambda e: e.tiebreak_details.lottery)
            ranked[i:j] = drawn
        i = j

    result = []
    for index, entry in enumerate(ranked):
        if slots <= 0 or len(ranked) < 2:
            applied = ()
        else:
            cutoff = slots - 1
            peer_index = cutoff + 1 if index <= cutoff else cutoff
            applied = _applied_criteria(entry, ranked[peer_index] if peer_index < len(ranked) else None)
        result.append(replace(entry, tiebreak_applied=applied))
    return result


def compute_group_advancers(groups: Sequence[Group], settings: GroupStageSettings, players: Sequence[Player],
                            scoring_mode: ScoreMode = ScoreMode.SETS, max_sets: int = DEFAULT_MAX_SETS,
                            rng: Optional[random.Random] = None) -> GroupAdvancersResult:
    """Split players into direct qualifiers, lucky losers and the consolation field."""
    qualifiers = normalize_qualifiers(settings.qualifiers, len(groups))
    main: List[GroupAdvancerEntry] = []
    others: List[GroupAdvancerEntry] = []
    for index, group in enumerate(groups):
        take = min(qualifiers[index], len(group.player_ids))
        group_main, group_others = _process_group(group, players, take, scoring_mode, max_sets)
        main.extend(group_main)
        others.extend(group_others)

    main.sort(key=lambda e: (e.group_rank, -_elo(e.player)))

    target_size = calculate_bracket_size(max(len(main), 1))
    slots = max(0, target_size - len(main))
    candidates = rank_lucky_candidates(others, slots, rng)

    lucky_losers = tuple(replace(e, advance_type=LUCKY) for e in candidates[:slots])
    lucky_ids = {e.id for e in lucky_losers}
    consolation = sorted((e for e in others if e.id not in lucky_ids), key=lambda e: -_elo(e.player))

    logger.debug(f'Group advancers: {len(main)} qualifiers, {len(lucky_losers)} lucky losers, '
                 f'{len(consolation)} in consolation')
    return GroupAdvancersResult(
        main=tuple(main),
        lucky_losers=lucky_losers,
        main_with_lucky=tuple(main) + lucky_losers,
        consolation=tuple(consolation),
        lucky_candidates=tuple(candidates),
        bracket_target_size=target_size,
        lucky_loser_slots=slots,
    )


def build_playoff_seed_order(main: Sequence[GroupAdvancerEntry],
                             lucky_losers: Sequence[GroupAdvancerEntry] = ()) -> List[Player]:
    """
    Seed order for the playoff bracket.

    Qualifiers are ordered by group rank tier (all group winners, then all
    runners-up, ...) and by elo within a tier; lucky losers follow. Where two
    players from the same group would meet in round one, a player is swapped
    with another of the same tier if that clears the clash.
    """
    entries = sorted(main, key=lambda e: (e.group_rank, -_elo(e.player))) + list(lucky_losers)
    n = len(entries)
    if n < MIN_PLAYERS:
        return [e.player for e in entries]

    size = calculate_bracket_size(n)
    order = _generate_bracket_order(size)
    opponent = {}
    for i in range(0, size, 2):
        a, b = order[i] - 1, order[i + 1] - 1
        if a < n and b < n:
            opponent[a] = b
            opponent[b] = a

    main_count = len(main)

    def tier(index):
        return (0, entries[index].group_rank) if index < main_count else (1, 0)

    def clash(index):
        other = opponent.get(index)
        return other is not None and entries[index].group_id == entries[other].group_id

    for a in sorted(opponent):
        b = opponent[a]
        if a > b or not clash(a):
            continue
        # Move the lower seed first so the top seeds keep their lines
        for idx in (b, a):
            swapped = False
            for candidate in range(n - 1, -1, -1):
                if candidate in (a, b) or tier(candidate) != tier(idx):
                    continue
                entries[idx], entries[candidate] = entries[candidate], entries[idx]
                if not clash(idx) and not clash(candidate):
                    swapped = True
                    break
                entries[idx], entries[candidate] = entries[candidate], entries[idx]
            if swapped:
                break

    return [e.player for e in entries]


def build_group_stage_playoffs(group_stage: GroupStage, players: Sequence[Player],
                               scoring_mode: ScoreMode = ScoreMode.SETS, max_sets: int = DEFAULT_MAX_SETS,
                               rng: Optional[random.Random] = None) -> GroupStagePlayoffs:
    """Main playoff from qualifiers and lucky losers, plus the optional consolation bracket."""
    settings = group_stage.settings
    advancers = compute_group_advancers(group_stage.groups, settings, players, scoring_mode, max_sets, rng)
    seeded = build_playoff_seed_order(advancers.main, advancers.lucky_losers)
    consolation = [e.player for e in advancers.consolation] if settings.consolation else []
    double = settings.bracket_type == BracketType.DOUBLE_ELIM

    playoffs = GroupStagePlayoffs(bracket_type=settings.bracket_type)
    if len(seeded) >= MIN_PLAYERS:
        if double:
            playoffs = replace(playoffs, main_double_elim=build_double_elim(seeded))
        else:
            playoffs = replace(playoffs, main_bracket=build_bracket(seeded))
    if len(consolation) >= MIN_PLAYERS:
        if double:
            playoffs = replace(playoffs, consolation_double_elim=build_double_elim(consolation, CONSOLATION_PREFIX))
        else:
            playoffs = replace(playoffs, consolation_bracket=build_bracket(consolation, CONSOLATION_PREFIX))

    logger.info(f'Built playoffs: {len(seeded)} in main bracket, {len(consolation)} in consolation')
    return playoffs
