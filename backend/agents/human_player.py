"""
Human Player — decisions typed or spoken by the connected human.

Every decision is a private prompt followed by a wait on an input gate.
The gate is a future raced against a timer: whichever finishes first wins,
and on timeout the decision is an abstention.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from agents.decision_provider import (
    DecisionProvider,
    names,
    parse_target,
    parse_yes_no,
)
from models.game import GameContext, PlayerView, WitchDecision

logger = logging.getLogger(__name__)

Prompt = Callable[[str], Awaitable[None]]


class HumanInputGate:
    """At most one pending wait. Input that arrives while nobody waits is dropped."""

    def __init__(self):
        self._future: Optional[asyncio.Future] = None

    @property
    def waiting(self) -> bool:
        return self._future is not None and not self._future.done()

    def arm(self) -> None:
        """Start accepting input before the prompt goes out, so a fast reply is not lost."""
        self._future = asyncio.get_running_loop().create_future()

    async def wait(self, timeout: float) -> Optional[str]:
        if self._future is None:
            self.arm()
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._future = None

    def deliver(self, text: str) -> bool:
        if not self.waiting:
            return False
        self._future.set_result(text)
        return True


class HumanPlayer(DecisionProvider):
    is_human = True

    def __init__(self, player_id: str, name: str, prompt: Prompt, timeout: float = 30.0):
        super().__init__(player_id, name)
        self._prompt = prompt
        self.timeout = timeout
        self.gate = HumanInputGate()

    @property
    def awaiting_input(self) -> bool:
        return self.gate.waiting

    def deliver(self, text: str) -> bool:
        return self.gate.deliver(text)

    async def _ask(self, text: str) -> Optional[str]:
        self.gate.arm()
        await self._prompt(text)
        reply = await self.gate.wait(self.timeout)
        if reply is None:
            logger.info(f"{self.name} did not answer within {self.timeout:.0f}s")
        return reply

    async def _choose(self, text: str, candidates: List[PlayerView]) -> Optional[str]:
        if not candidates:
            return None
        return parse_target(await self._ask(f"{text} Options: {names(candidates)}."), candidates)

    async def decide_nomination(self, context: GameContext) -> bool:
        reply = await self._ask(
            f"{self.name}, would you like to nominate yourself for police chief? Please say 'yes' or 'no'."
        )
        return bool(parse_yes_no(reply))

    async def decide_vote(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(f"{self.name}, please vote for one of the following players.", candidates)

    async def decide_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(f"{self.name}, choose tonight's victim.", candidates)

    async def decide_investigate(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(f"{self.name}, choose a player to investigate.", candidates)

    async def decide_witch(
        self,
        victim: Optional[PlayerView],
        can_save: bool,
        can_poison: bool,
        candidates: List[PlayerView],
        context: GameContext,
    ) -> WitchDecision:
        decision = WitchDecision()
        if can_save and victim is not None:
            reply = await self._ask(
                f"{victim.name} was killed tonight. Will you use your antidote? Please say 'yes' or 'no'."
            )
            decision.save = bool(parse_yes_no(reply))
        if can_poison and candidates:
            reply = await self._ask(
                f"Will you use your poison? Say a player's name or 'no'. Options: {names(candidates)}."
            )
            decision.poison_target = parse_target(reply, candidates)
        return decision

    async def decide_hunter_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(
            f"{self.name}, you were the hunter. Name one player to take with you, or say 'no'.", candidates,
        )

    async def decide_speech(self, context: GameContext) -> Optional[str]:
        return await self._ask("It's your turn to speak.")
