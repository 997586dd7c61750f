"""
AI Player — LLM-powered seat for Nightfall.

Uses gemini-2.5-flash (text-only) for every decision kind:
  1. Police nomination      — yes / no
  2. Votes and night kills  — one name from the candidate list
  3. Seer investigation     — one name
  4. Witch potions          — structured SAVE / POISON reply
  5. Hunter revenge         — one name or nobody
  6. Day speech             — 1-3 sentences in character

Each seat keeps a rolling buffer of the narration it was allowed to hear
plus its private knowledge (seer results). When GEMINI_API_KEY is missing or
a reply cannot be parsed, the seat falls back to a random legal choice.
A failing API call raises DecisionProviderFailure and the orchestrator
treats it as no decision.
"""
import logging
import random
import re
from typing import Dict, List, Optional

from google.genai import types

from agents.decision_provider import (
    DecisionProvider,
    names,
    parse_target,
    parse_yes_no,
)
from config import settings
from models.errors import DecisionProviderFailure
from models.game import GameContext, PlayerView, Role, WitchDecision
from services.genai_client import get_genai_client

logger = logging.getLogger(__name__)

CONTEXT_BUFFER_SIZE = 60
PROMPT_HISTORY_LINES = 25
DEFAULT_SPEECH = "I don't have much to add yet. Let's hear from the others."

_ROLE_GOALS: Dict[Role, str] = {
    Role.WEREWOLF: (
        "You are a Werewolf. Each night you and the other werewolves choose a villager to kill. "
        "By day, blend in and steer suspicion away from your pack. Never admit what you are."
    ),
    Role.VILLAGER: (
        "You are a Villager. You have no night power. Listen carefully, find the werewolves, "
        "and vote them out."
    ),
    Role.SEER: (
        "You are the Seer. Each night you learn the true role of one player. "
        "Use what you learn wisely; revealing yourself makes you a target."
    ),
    Role.WITCH: (
        "You are the Witch. You hold one antidote that can save the werewolves' victim "
        "and one poison that can kill any player. Each can be used once per game."
    ),
    Role.HUNTER: (
        "You are the Hunter. If you die, by vote or by night, you take one player down with you."
    ),
}

_BASE_SYSTEM = """You are {name}, a player in a game of Werewolf.

YOUR SECRET ROLE: {role}
{goal}

PERSONALITY:
{personality}

ABSOLUTE RULES:
- Always stay in character as {name}. Never say you are an AI.
- Never reveal your role unless it helps your side win.
- Keep spoken responses to 1-3 sentences — natural conversation length.
- When asked for a decision, answer in exactly the requested format.

WHAT YOU PRIVATELY KNOW:
{knowledge}

CURRENT GAME STATE:
{game_state}"""

_WITCH_REPLY = re.compile(r"SAVE\s*:\s*(?P<save>\w+).*?POISON\s*:\s*(?P<poison>.+)", re.IGNORECASE | re.DOTALL)


async def _call_gemini(prompt: str, system: str, temperature: float = 0.7) -> Optional[str]:
    """
    Async text generation via Gemini.
    Returns None when no client is configured; raises DecisionProviderFailure on API errors.
    """
    client = get_genai_client()
    if client is None:
        return None
    try:
        response = await client.aio.models.generate_content(
            model=settings.player_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=temperature,
                max_output_tokens=300,
            ),
        )
    except Exception as exc:
        raise DecisionProviderFailure(f"Gemini call failed: {exc}") from exc
    text = response.text
    return text.strip() if text else None


class AIPlayer(DecisionProvider):
    """One LLM-driven seat. Holds only what this player has seen or learned."""

    def __init__(
        self,
        player_id: str,
        name: str,
        role: Role,
        personality: str = "",
        rng: Optional[random.Random] = None,
        temperature: float = 0.7,
    ):
        super().__init__(player_id, name)
        self.role = role
        self.personality = personality or "You are thoughtful and fair."
        self.rng = rng or random.Random()
        self.temperature = temperature
        self.context_buffer: List[str] = []
        self.known_information: Dict[str, str] = {}

    # ── Memory ────────────────────────────────────────────────────────────────

    def observe(self, line: str) -> None:
        self.context_buffer.append(line)
        if len(self.context_buffer) > CONTEXT_BUFFER_SIZE:
            del self.context_buffer[:-CONTEXT_BUFFER_SIZE]

    def remember(self, key: str, value: str) -> None:
        self.known_information[key] = value

    # ── Prompt building ───────────────────────────────────────────────────────

    def _format_state(self, context: GameContext) -> str:
        lines = "\n".join(f"  {line}" for line in self.context_buffer[-PROMPT_HISTORY_LINES:]) or "  (nothing yet)"
        time_of_day = "Night" if context.is_night else "Day"
        return (
            f"{time_of_day} {context.day} | Phase: {context.phase.value}\n"
            f"Alive players: {names(context.alive_players)}\n"
            f"Recent events:\n{lines}"
        )

    def _system(self, context: GameContext) -> str:
        knowledge = "\n".join(f"  {k}: {v}" for k, v in self.known_information.items()) or "  (nothing)"
        return _BASE_SYSTEM.format(
            name=self.name,
            role=self.role.value,
            goal=_ROLE_GOALS[self.role],
            personality=self.personality,
            knowledge=knowledge,
            game_state=self._format_state(context),
        )

    async def _ask(self, prompt: str, context: GameContext) -> Optional[str]:
        return await _call_gemini(prompt, self._system(context), self.temperature)

    async def _choose(
        self, instruction: str, candidates: List[PlayerView], context: GameContext, allow_none: bool = False,
    ) -> Optional[str]:
        if not candidates:
            return None
        reply = await self._ask(
            f"{instruction}\nOptions: {names(candidates)}\n\n"
            f"Reply with ONLY the player's name{' or NONE' if allow_none else ''} (no explanation).",
            context,
        )
        if allow_none and reply and reply.strip().upper().startswith("NONE"):
            return None
        target = parse_target(reply, candidates)
        if target is None:
            target = self.rng.choice(candidates).id
            logger.warning(f"{self.name} could not parse a choice from {(reply or '').strip()!r}, random: {target}")
        return target

    # ── Decisions ─────────────────────────────────────────────────────────────

    async def decide_nomination(self, context: GameContext) -> bool:
        reply = await self._ask(
            "POLICE ELECTION — the police chief leads the village discussion. "
            "Do you nominate yourself? Reply with ONLY YES or NO.",
            context,
        )
        decision = parse_yes_no(reply)
        if decision is None:
            decision = self.rng.random() > 0.5
        logger.info(f"{self.name} nomination: {decision}")
        return decision

    async def decide_vote(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(
            "VOTE — choose the player you vote for. "
            "Vote against the biggest threat to your side; never vote for yourself.",
            candidates, context,
        )

    async def decide_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(
            "NIGHT — the werewolves must choose one villager to kill. "
            "Priority: anyone who seems to be the Seer or Witch, then the most persuasive villager.",
            candidates, context,
        )

    async def decide_investigate(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(
            "NIGHT — choose one player whose true role you want to learn. "
            "Pick the player you are least sure about.",
            candidates, context,
        )

    async def decide_witch(
        self,
        victim: Optional[PlayerView],
        can_save: bool,
        can_poison: bool,
        candidates: List[PlayerView],
        context: GameContext,
    ) -> WitchDecision:
        if not can_save and not can_poison:
            return WitchDecision()
        situation = f"{victim.name} was killed by the werewolves tonight." if victim else "Nobody died tonight."
        options = []
        if can_save:
            options.append(f"SAVE: yes or no (use your antidote on {victim.name})")
        if can_poison:
            options.append(f"POISON: one name from [{names(candidates)}] or NONE")
        reply = await self._ask(
            f"NIGHT — {situation}\nReply on one line in the format 'SAVE: <yes|no>; POISON: <name|NONE>'.\n"
            + "\n".join(options),
            context,
        )
        if reply is None:
            # Offline fallback: spend the antidote half the time, keep the poison
            return WitchDecision(save=can_save and self.rng.random() > 0.5)

        match = _WITCH_REPLY.search(reply)
        if not match:
            logger.warning(f"{self.name} gave an unparseable witch reply {reply!r}, using no potions")
            return WitchDecision()
        save = can_save and bool(parse_yes_no(match.group("save")))
        poison_target = parse_target(match.group("poison"), candidates) if can_poison else None
        return WitchDecision(save=save, poison_target=poison_target)

    async def decide_hunter_kill(self, candidates: List[PlayerView], context: GameContext) -> Optional[str]:
        return await self._choose(
            "You have died and, as the Hunter, may take one living player with you. "
            "Choose the player most likely to be a werewolf.",
            candidates, context, allow_none=True,
        )

    async def decide_speech(self, context: GameContext) -> Optional[str]:
        reply = await self._ask(
            "It's your turn to speak. Share your thoughts about who might be a werewolf.",
            context,
        )
        return reply or DEFAULT_SPEECH
