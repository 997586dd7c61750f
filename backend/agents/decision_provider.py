"""
Decision providers — one capability per decision kind.

Two implementations: AIPlayer (Gemini) and HumanPlayer (WebSocket input
raced against a timer). Providers only ever see frozen GameContext snapshots
and PlayerView lists; they never touch GameState.
"""
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from models.game import GameContext, PlayerView, WitchDecision

_YES = re.compile(r"^\s*(yes|yeah|yep|sure|ok|okay|y)\b", re.IGNORECASE)
_NO = re.compile(r"^\s*(no|nope|nah|none|pass|skip|n)\b", re.IGNORECASE)


def parse_target(response: Optional[str], candidates: Sequence[PlayerView]) -> Optional[str]:
    """Extract the first candidate (by id or name) mentioned in a free-text reply."""
    if not response:
        return None
    cleaned = response.strip().rstrip(".").lower()
    # Exact matches first so "Mira" never loses to a longer name containing it
    for player in candidates:
        if cleaned in (player.id.lower(), player.name.lower()):
            return player.id
    for player in sorted(candidates, key=lambda p: len(p.name), reverse=True):
        if re.search(rf"\b{re.escape(player.name.lower())}\b", cleaned):
            return player.id
    for player in candidates:
        if re.search(rf"\b{re.escape(player.id.lower())}\b", cleaned):
            return player.id
    return None


def parse_yes_no(response: Optional[str]) -> Optional[bool]:
    if not response:
        return None
    if _YES.match(response):
        return True
    if _NO.match(response):
        return False
    return None


def names(candidates: Sequence[PlayerView]) -> str:
    return ", ".join(p.name for p in candidates)


class DecisionProvider(ABC):
    """Source of game decisions for one seat."""

    is_human = False

    def __init__(self, player_id: str, name: str):
        self.player_id = player_id
        self.name = name

    def observe(self, line: str) -> None:
        """A narrated line this player was allowed to hear."""

    def remember(self, key: str, value: str) -> None:
        """Private knowledge, e.g. a seer's investigation result."""

    @abstractmethod
    async def decide_nomination(self, context: GameContext) -> bool:
        ...

    @abstractmethod
    async def decide_vote(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        ...

    @abstractmethod
    async def decide_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        ...

    @abstractmethod
    async def decide_investigate(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        ...

    @abstractmethod
    async def decide_witch(
        self,
        victim: Optional[PlayerView],
        can_save: bool,
        can_poison: bool,
        candidates: List[PlayerView],
        context: GameContext,
    ) -> WitchDecision:
        ...

    @abstractmethod
    async def decide_hunter_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        ...

    @abstractmethod
    async def decide_speech(self, context: GameContext) -> Optional[str]:
        ...
