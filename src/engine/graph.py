"""
Match dependency graph.

Brackets are directed acyclic graphs: every match is a node and every edge says
"the winner (or loser) of match A plays in slot S of match B". Recording or
clearing a result only changes one node; ``MatchGraph.settle`` then walks the
descendants of that node in topological order and re-derives their slots:

- a slot fed by an undecided match is empty;
- a match whose participants changed loses its result;
- a match left with a single player once both feeders are decided is a bye and
  the player advances automatically;
- a match left with no players once both feeders are decided is resolved empty.

Each node is visited at most once per walk, so cascades always terminate.
"""
import heapq
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .errors import InvariantViolation
from .models import Match, PLAYER1, PLAYER2, SLOTS

WINNER = 'winner'
LOSER = 'loser'


class Edge(NamedTuple):
    source: str
    target: str
    slot: str
    outcome: str


def slot_for_position(position: Optional[int]) -> str:
    """Even positions feed player1, odd positions feed player2."""
    return PLAYER1 if (position or 0) % 2 == 0 else PLAYER2


def cleared(match: Match) -> Match:
    if not match.has_result:
        return match
    return replace(match, winner_id=None, scores=(), walkover=False)


class MatchGraph:
    def __init__(self, order: Sequence[str], edges: Iterable[Edge], no_byes: Iterable[str] = ()):
        self.order = list(order)
        self.index = {match_id: i for i, match_id in enumerate(self.order)}
        if len(self.index) != len(self.order):
            raise InvariantViolation('Duplicate match ids in bracket')
        self.no_byes = set(no_byes)
        self.incoming: Dict[str, Dict[str, Edge]] = defaultdict(dict)
        self.outgoing: Dict[str, List[Edge]] = defaultdict(list)
        for edge in edges:
            self._add(edge)

    def _add(self, edge: Edge):
        if edge.source not in self.index or edge.target not in self.index:
            raise InvariantViolation(f'Edge {edge.source} -> {edge.target} points outside the bracket')
        if self.index[edge.source] >= self.index[edge.target]:
            raise InvariantViolation(f'Edge {edge.source} -> {edge.target} does not lead to a later match')
        if edge.slot in self.incoming[edge.target]:
            raise InvariantViolation(f'Slot {edge.slot} of {edge.target} is fed twice')
        self.incoming[edge.target][edge.slot] = edge
        self.outgoing[edge.source].append(edge)

    def descendants(self, match_id: str) -> List[str]:
        """Matches reachable from ``match_id``, in topological order."""
        seen = set()
        stack = [match_id]
        while stack:
            for edge in self.outgoing.get(stack.pop(), []):
                if edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return sorted(seen, key=self.index.__getitem__)

    def settle(self, matches: Dict[str, Match], start: Optional[Iterable[str]] = None) -> Dict[str, Match]:
        """
        Re-derive every match downstream of ``start`` (all matches when None).

        ``matches`` maps id -> Match and is not modified; the returned dict
        shares every match object that did not change.
        """
        current = dict(matches)
        missing = [match_id for match_id in self.order if match_id not in current]
        if missing:
            raise InvariantViolation(f'Matches missing from bracket: {", ".join(missing)}')

        heap = []
        queued = set()

        def push(match_id):
            if match_id not in queued:
                queued.add(match_id)
                heapq.heappush(heap, (self.index[match_id], match_id))

        if start is None:
            for match_id in self.order:
                push(match_id)
        else:
            for match_id in start:
                for edge in self.outgoing.get(match_id, []):
                    push(edge.target)

        resolved = {}
        while heap:
            _, match_id = heapq.heappop(heap)
            before = current[match_id]
            after = self._derive(before, current, resolved)
            if after is not before:
                current[match_id] = after
                for edge in self.outgoing.get(match_id, []):
                    push(edge.target)
        return current

    def _is_resolved(self, match_id: str, current: Dict[str, Match], cache: Dict[str, bool]) -> bool:
        if match_id in cache:
            return cache[match_id]
        match = current[match_id]
        if match.winner_id:
            result = True
        elif match.player1_id or match.player2_id:
            result = False
        else:
            result = all(
                self._is_resolved(edge.source, current, cache)
                for edge in self.incoming.get(match_id, {}).values()
            )
        cache[match_id] = result
        return result

    def _derive(self, match: Match, current: Dict[str, Match], cache: Dict[str, bool]) -> Match:
        feeds = self.incoming.get(match.id, {})
        values = {}
        settled = True
        for slot in SLOTS:
            edge = feeds.get(slot)
            if edge is None:
                values[slot] = match.slot(slot)
                continue
            source = current[edge.source]
            if self._is_resolved(edge.source, current, cache):
                values[slot] = source.winner_id if edge.outcome == WINNER else source.loser_id
            else:
                values[slot] = None
                settled = False

        p1, p2 = values[PLAYER1], values[PLAYER2]
        if (p1, p2) != match.players:
            match = replace(match, player1_id=p1, player2_id=p2, winner_id=None, scores=(), walkover=False)
        if p1 and p2:
            return match

        lone = p1 or p2
        if lone and settled and match.id not in self.no_byes:
            if match.winner_id != lone or match.scores or match.walkover:
                match = replace(match, winner_id=lone, scores=(), walkover=False)
            return match
        return cleared(match)


def swap_in(items: Tuple[Match, ...], matches: Dict[str, Match]) -> Tuple[Match, ...]:
    """Replace matches by id, returning ``items`` itself when nothing changed."""
    updated = tuple(matches.get(m.id, m) for m in items)
    if all(a is b for a, b in zip(updated, items)):
        return items
    return updated
