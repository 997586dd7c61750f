"""
Voting Engine — one ballot per round (police election or day elimination).

Tie-breaking: the first target (in tally-discovery order) to reach the
maximum count wins. Deterministic so that replays and tests agree.
"""
from enum import Enum
from typing import Collection, Dict, Iterable, List, Optional

from pydantic import BaseModel

from models.errors import IneligibleVoterError, InvalidTargetError


class VoteKind(str, Enum):
    POLICE = "police"
    DAY = "day"


def tally_votes(targets: Iterable[str]) -> Dict[str, int]:
    """Count votes per target. Dict order is the order targets were first seen."""
    tally: Dict[str, int] = {}
    for target in targets:
        tally[target] = tally.get(target, 0) + 1
    return tally


def plurality(tally: Dict[str, int]) -> Optional[str]:
    """Return the first target reaching the highest count, or None for an empty tally."""
    winner: Optional[str] = None
    max_votes = 0
    for target, count in tally.items():
        if count > max_votes:
            max_votes = count
            winner = target
    return winner


class Ballot(BaseModel):
    kind: VoteKind
    candidates: List[str]
    votes: Dict[str, str] = {}

    def cast(self, voter_id: str, target_id: str, alive_ids: Collection[str]) -> None:
        """Record a vote, replacing any earlier vote by the same voter."""
        if voter_id not in alive_ids:
            raise IneligibleVoterError(f"{voter_id} is not alive and cannot vote")
        if target_id not in self.candidates:
            raise InvalidTargetError(f"{target_id} is not a candidate in this {self.kind.value} vote")
        self.votes[voter_id] = target_id

    def is_complete(self, alive_ids: Collection[str]) -> bool:
        voted = sum(1 for pid in alive_ids if pid in self.votes)
        return voted == len(alive_ids)

    def tally(self) -> Dict[str, int]:
        return tally_votes(self.votes.values())

    def winner(self) -> Optional[str]:
        return plurality(self.tally())
