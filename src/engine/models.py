"""
Data model for tournaments, brackets and schedules.

Every entity is an immutable snapshot. Engine operations never mutate a
snapshot; they build a new one with ``dataclasses.replace`` and reuse every
untouched part of the old one.

``to_dict()`` produces the wire/storage format (camelCase keys, lists instead of
tuples) and ``from_dict()`` reads it back.
"""
import enum
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional, Tuple


class Format(str, enum.Enum):
    SINGLE_ELIM = 'SINGLE_ELIM'
    DOUBLE_ELIM = 'DOUBLE_ELIM'
    ROUND_ROBIN = 'ROUND_ROBIN'
    GROUPS_TO_BRACKET = 'GROUPS_TO_BRACKET'


class BracketType(str, enum.Enum):
    SINGLE_ELIM = 'single_elim'
    DOUBLE_ELIM = 'double_elim'


class ScoreMode(str, enum.Enum):
    SETS = 'SETS'
    POINTS = 'POINTS'


PLAYER1 = 'player1Id'
PLAYER2 = 'player2Id'
SLOTS = (PLAYER1, PLAYER2)

SetScore = Tuple[int, int]


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def _wire_value(value):
    if is_dataclass(value):
        return value.to_dict()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_wire_value(item) for item in value]
    if isinstance(value, dict):
        return {k: _wire_value(v) for k, v in value.items()}
    return value


class _Wire:
    """Mixin giving dataclasses a camelCase ``to_dict``.

    Fields declared with ``metadata={'optional': True}`` are left out of the
    output while their value is None, so documents that never carried the key
    round-trip unchanged.
    """

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None and f.metadata.get('optional'):
                continue
            data[_camel(f.name)] = _wire_value(value)
        return data


def _optional():
    return field(default=None, metadata={'optional': True})


def _scores(raw) -> Tuple[SetScore, ...]:
    return tuple((s[0], s[1]) for s in (raw or []))


@dataclass(frozen=True)
class Player(_Wire):
    id: str
    name: str
    seed: Optional[int] = _optional()
    elo: Optional[float] = _optional()

    @classmethod
    def from_dict(cls, data: Dict) -> 'Player':
        return cls(id=data['id'], name=data['name'], seed=data.get('seed'), elo=data.get('elo'))


@dataclass(frozen=True)
class Match(_Wire):
    id: str
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None
    scores: Tuple[SetScore, ...] = ()
    winner_id: Optional[str] = None
    walkover: bool = False
    next_match_id: Optional[str] = None
    position: Optional[int] = _optional()
    dummy: bool = False

    @property
    def players(self) -> Tuple[Optional[str], Optional[str]]:
        return self.player1_id, self.player2_id

    def slot(self, slot: str) -> Optional[str]:
        return self.player1_id if slot == PLAYER1 else self.player2_id

    @property
    def loser_id(self) -> Optional[str]:
        """Loser of a decided match between two real players."""
        if not self.winner_id or not self.player1_id or not self.player2_id:
            return None
        return self.player2_id if self.winner_id == self.player1_id else self.player1_id

    @property
    def has_result(self) -> bool:
        return bool(self.winner_id) or self.walkover or bool(self.scores)

    @classmethod
    def _kwargs(cls, data: Dict) -> Dict:
        return dict(
            id=data['id'],
            player1_id=data.get('player1Id'),
            player2_id=data.get('player2Id'),
            scores=_scores(data.get('scores')),
            winner_id=data.get('winnerId'),
            walkover=bool(data.get('walkover', False)),
            next_match_id=data.get('nextMatchId'),
            position=data.get('position'),
            dummy=bool(data.get('dummy', False)),
        )

    @classmethod
    def from_dict(cls, data: Dict) -> 'Match':
        return cls(**cls._kwargs(data))


@dataclass(frozen=True)
class DoubleElimMatch(Match):
    """Losers-bracket match; remembers which winners-bracket matches drop into it."""
    winners_sources: Optional[Tuple[str, ...]] = _optional()
    loser_slot_from_winners: Optional[str] = _optional()

    @classmethod
    def from_dict(cls, data: Dict) -> 'DoubleElimMatch':
        sources = data.get('winnersSources')
        return cls(
            winners_sources=tuple(sources) if sources is not None else None,
            loser_slot_from_winners=data.get('loserSlotFromWinners'),
            **cls._kwargs(data),
        )


@dataclass(frozen=True)
class Bracket(_Wire):
    rounds: Tuple[Tuple[Match, ...], ...] = ()
    third_place_match: Optional[Match] = None

    def all_matches(self) -> List[Match]:
        matches = [m for round_matches in self.rounds for m in round_matches]
        if self.third_place_match is not None:
            matches.append(self.third_place_match)
        return matches

    @classmethod
    def from_dict(cls, data: Dict) -> 'Bracket':
        third = data.get('thirdPlaceMatch')
        return cls(
            rounds=tuple(tuple(Match.from_dict(m) for m in r) for r in data.get('rounds', [])),
            third_place_match=Match.from_dict(third) if third else None,
        )


@dataclass(frozen=True)
class LosersBracket(_Wire):
    rounds: Tuple[Tuple[DoubleElimMatch, ...], ...] = ()

    @classmethod
    def from_dict(cls, data: Dict) -> 'LosersBracket':
        return cls(rounds=tuple(
            tuple(DoubleElimMatch.from_dict(m) for m in r) for r in data.get('rounds', [])
        ))


@dataclass(frozen=True)
class LoserLink(_Wire):
    match_id: str
    slot: str

    @classmethod
    def from_dict(cls, data: Dict) -> 'LoserLink':
        return cls(match_id=data['matchId'], slot=data['slot'])


@dataclass(frozen=True)
class DoubleElimFinals(_Wire):
    grand_final: Match
    reset_final: Match

    @classmethod
    def from_dict(cls, data: Dict) -> 'DoubleElimFinals':
        return cls(
            grand_final=Match.from_dict(data['grandFinal']),
            reset_final=Match.from_dict(data['resetFinal']),
        )


@dataclass(frozen=True)
class DoubleElim(_Wire):
    winners: Bracket
    losers: LosersBracket
    finals: DoubleElimFinals
    loser_links: Dict[str, LoserLink] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict) -> 'DoubleElim':
        return cls(
            winners=Bracket.from_dict(data['winners']),
            losers=LosersBracket.from_dict(data.get('losers', {})),
            finals=DoubleElimFinals.from_dict(data['finals']),
            loser_links={k: LoserLink.from_dict(v) for k, v in data.get('loserLinks', {}).items()},
        )


@dataclass(frozen=True)
class Round(_Wire):
    round_number: int
    bye_player_id: Optional[str] = None
    matches: Tuple[Match, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict) -> 'Round':
        return cls(
            round_number=data['roundNumber'],
            bye_player_id=data.get('byePlayerId'),
            matches=tuple(Match.from_dict(m) for m in data.get('matches', [])),
        )


@dataclass(frozen=True)
class RoundRobinSchedule(_Wire):
    rounds: Tuple[Round, ...] = ()

    def all_matches(self) -> List[Match]:
        return [m for r in self.rounds for m in r.matches]

    @classmethod
    def from_dict(cls, data: Dict) -> 'RoundRobinSchedule':
        return cls(rounds=tuple(Round.from_dict(r) for r in data.get('rounds', [])))


@dataclass(frozen=True)
class Group(_Wire):
    id: str
    name: str
    player_ids: Tuple[str, ...]
    schedule: RoundRobinSchedule
    order: int

    @classmethod
    def from_dict(cls, data: Dict) -> 'Group':
        return cls(
            id=data['id'],
            name=data['name'],
            player_ids=tuple(data.get('playerIds', [])),
            schedule=RoundRobinSchedule.from_dict(data['schedule']),
            order=data['order'],
        )


@dataclass(frozen=True)
class GroupStageSettings(_Wire):
    group_count: int
    qualifiers: Tuple[int, ...] = ()
    consolation: bool = False
    bracket_type: BracketType = BracketType.SINGLE_ELIM

    @classmethod
    def from_dict(cls, data: Dict) -> 'GroupStageSettings':
        return cls(
            group_count=data['groupCount'],
            qualifiers=tuple(data.get('qualifiers', [])),
            consolation=bool(data.get('consolation', False)),
            bracket_type=BracketType(data.get('bracketType') or BracketType.SINGLE_ELIM.value),
        )


@dataclass(frozen=True)
class GroupStage(_Wire):
    groups: Tuple[Group, ...]
    settings: GroupStageSettings

    @classmethod
    def from_dict(cls, data: Dict) -> 'GroupStage':
        return cls(
            groups=tuple(Group.from_dict(g) for g in data.get('groups', [])),
            settings=GroupStageSettings.from_dict(data['settings']),
        )


@dataclass(frozen=True)
class GroupStagePlayoffs(_Wire):
    bracket_type: BracketType
    main_bracket: Optional[Bracket] = None
    main_double_elim: Optional[DoubleElim] = None
    consolation_bracket: Optional[Bracket] = None
    consolation_double_elim: Optional[DoubleElim] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'GroupStagePlayoffs':
        def opt(key, loader):
            return loader(data[key]) if data.get(key) else None

        return cls(
            bracket_type=BracketType(data['bracketType']),
            main_bracket=opt('mainBracket', Bracket.from_dict),
            main_double_elim=opt('mainDoubleElim', DoubleElim.from_dict),
            consolation_bracket=opt('consolationBracket', Bracket.from_dict),
            consolation_double_elim=opt('consolationDoubleElim', DoubleElim.from_dict),
        )


# --- Standings & results ---

@dataclass(frozen=True)
class RoundRobinTiebreakDetails(_Wire):
    head_to_head: int = 0
    head_to_head_set_diff: int = 0
    head_to_head_sets_won: int = 0
    set_diff: int = 0
    sets_won: int = 0
    points_diff: int = 0
    points_diff_applicable: bool = False
    tiebreak_applied: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StandingsRow(_Wire):
    player_id: str
    name: str
    elo: Optional[float] = _optional()
    played: int = 0
    wins: int = 0
    losses: int = 0
    points: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    points_won: int = 0
    points_lost: int = 0
    tiebreak_details: Optional[RoundRobinTiebreakDetails] = _optional()

    @property
    def set_diff(self) -> int:
        return self.sets_won - self.sets_lost

    @property
    def points_diff(self) -> int:
        return self.points_won - self.points_lost


@dataclass(frozen=True)
class NormalizedStats(_Wire):
    points_pct: float
    set_diff_per_match: float
    sets_won_per_match: float
    points_diff_per_match: float
    played: int


@dataclass(frozen=True)
class GroupTiebreakDetails(_Wire):
    sets_won_per_match: float
    set_diff_per_match: float
    points_diff_per_match: float
    opponent_avg_rank: float
    relative_rank: float
    fair_play: bool
    points_diff_applicable: bool
    lottery: Optional[float] = None
    lottery_used: bool = False


@dataclass(frozen=True)
class GroupAdvancerEntry(_Wire):
    player: Player
    group_id: str
    group_rank: int
    stats: StandingsRow
    normalized: NormalizedStats
    tiebreak_details: GroupTiebreakDetails
    advance_type: str
    tiebreak_applied: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.player.id

    def to_dict(self) -> Dict[str, Any]:
        data = self.player.to_dict()
        data.update(super().to_dict())
        del data['player']
        return data


@dataclass(frozen=True)
class GroupAdvancersResult(_Wire):
    main: Tuple[GroupAdvancerEntry, ...]
    lucky_losers: Tuple[GroupAdvancerEntry, ...]
    main_with_lucky: Tuple[GroupAdvancerEntry, ...]
    consolation: Tuple[GroupAdvancerEntry, ...]
    lucky_candidates: Tuple[GroupAdvancerEntry, ...]
    bracket_target_size: int
    lucky_loser_slots: int


@dataclass(frozen=True)
class RankedResult(_Wire):
    player_id: str
    name: str
    rank_start: Optional[int] = None
    rank_end: Optional[int] = None


# --- Tournament ---

TOPOLOGY_FIELDS = {
    Format.SINGLE_ELIM: 'bracket',
    Format.DOUBLE_ELIM: 'double_elim',
    Format.ROUND_ROBIN: 'schedule',
    Format.GROUPS_TO_BRACKET: 'group_stage',
}


@dataclass(frozen=True)
class Tournament:
    """Tagged union over ``format``; only the topology of that format is set."""
    id: str
    name: str
    format: Format
    players: Tuple[Player, ...]
    created_at: str
    completed_at: Optional[str] = None
    winner_id: Optional[str] = None
    scoring_mode: ScoreMode = ScoreMode.SETS
    max_sets: int = 5
    group_stage_max_sets: Optional[int] = None
    bracket_max_sets: Optional[int] = None
    bracket: Optional[Bracket] = None
    double_elim: Optional[DoubleElim] = None
    schedule: Optional[RoundRobinSchedule] = None
    group_stage: Optional[GroupStage] = None
    group_stage_playoffs: Optional[GroupStagePlayoffs] = None

    def player(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id == player_id), None)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'name': self.name,
            'format': self.format.value,
            'players': [p.to_dict() for p in self.players],
            'createdAt': self.created_at,
            'completedAt': self.completed_at,
            'winnerId': self.winner_id,
            'scoringMode': self.scoring_mode.value,
            'maxSets': self.max_sets,
        }
        if self.group_stage_max_sets is not None:
            data['groupStageMaxSets'] = self.group_stage_max_sets
        if self.bracket_max_sets is not None:
            data['bracketMaxSets'] = self.bracket_max_sets
        topology = TOPOLOGY_FIELDS[self.format]
        value = getattr(self, topology)
        data[_camel(topology)] = value.to_dict() if value is not None else None
        if self.format == Format.GROUPS_TO_BRACKET:
            playoffs = self.group_stage_playoffs
            data['groupStagePlayoffs'] = playoffs.to_dict() if playoffs is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Tournament':
        fmt = Format(data['format'])
        kwargs = dict(
            id=data['id'],
            name=data['name'],
            format=fmt,
            players=tuple(Player.from_dict(p) for p in data.get('players', [])),
            created_at=data['createdAt'],
            completed_at=data.get('completedAt'),
            winner_id=data.get('winnerId'),
            scoring_mode=ScoreMode(data.get('scoringMode') or ScoreMode.SETS.value),
            max_sets=data.get('maxSets') or 5,
            group_stage_max_sets=data.get('groupStageMaxSets'),
            bracket_max_sets=data.get('bracketMaxSets'),
        )
        if fmt == Format.SINGLE_ELIM:
            kwargs['bracket'] = Bracket.from_dict(data['bracket'])
        elif fmt == Format.DOUBLE_ELIM:
            kwargs['double_elim'] = DoubleElim.from_dict(data['doubleElim'])
        elif fmt == Format.ROUND_ROBIN:
            kwargs['schedule'] = RoundRobinSchedule.from_dict(data['schedule'])
        else:
            kwargs['group_stage'] = GroupStage.from_dict(data['groupStage'])
            # Older documents stored the playoffs under 'groupStageBrackets'
            playoffs = data.get('groupStagePlayoffs') or data.get('groupStageBrackets')
            if playoffs:
                kwargs['group_stage_playoffs'] = GroupStagePlayoffs.from_dict(playoffs)
        return cls(**kwargs)
