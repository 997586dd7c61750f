"""
Shared fakes for engine and orchestrator tests.

ScriptedPlayer answers every decision from a fixed script; RecordingDispatcher
captures everything the orchestrator publishes or voices and can answer
private prompts on behalf of a human seat.
"""
import asyncio
import random
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from agents.decision_provider import DecisionProvider
from agents.game_master import GameMaster
from agents.human_player import HumanPlayer
from agents.orchestrator import MODERATOR, Dispatcher, Orchestrator
from models.game import GameContext, PlayerView, Role, WitchDecision, WitchPotions

# A choice is a callable (candidate ids, context) -> id or None
Choice = Callable[[List[str], GameContext], Optional[str]]


def first(ids: List[str], context: GameContext) -> Optional[str]:
    return ids[0] if ids else None


def abstain(ids: List[str], context: GameContext) -> Optional[str]:
    return None


def prefer(*preferred: str) -> Choice:
    """Pick the first preferred id that is a candidate, else the first candidate."""
    def choose(ids: List[str], context: GameContext) -> Optional[str]:
        for pid in preferred:
            if pid in ids:
                return pid
        return first(ids, context)
    return choose


class ScriptedPlayer(DecisionProvider):

    def __init__(
        self,
        player_id: str,
        name: Optional[str] = None,
        nominate: bool = False,
        vote: Choice = first,
        kill: Choice = first,
        investigate: Choice = first,
        witch: Optional[WitchDecision] = None,
        hunter: Choice = first,
        speech: Optional[str] = "I have nothing to hide.",
    ):
        super().__init__(player_id, name or player_id.title())
        self.nominate = nominate
        self.vote = vote
        self.kill = kill
        self.investigate = investigate
        self.witch = witch or WitchDecision()
        self.hunter = hunter
        self.speech = speech
        self.heard: List[str] = []
        self.memory: Dict[str, str] = {}
        self.calls: List[str] = []

    def observe(self, line: str) -> None:
        self.heard.append(line)

    def remember(self, key: str, value: str) -> None:
        self.memory[key] = value

    @staticmethod
    def _ids(candidates: List[PlayerView]) -> List[str]:
        return [c.id for c in candidates]

    async def decide_nomination(self, context):
        self.calls.append("nomination")
        return self.nominate

    async def decide_vote(self, candidates, context):
        self.calls.append("vote")
        return self.vote(self._ids(candidates), context)

    async def decide_kill(self, candidates, context):
        self.calls.append("kill")
        return self.kill(self._ids(candidates), context)

    async def decide_investigate(self, candidates, context):
        self.calls.append("investigate")
        return self.investigate(self._ids(candidates), context)

    async def decide_witch(self, victim, can_save, can_poison, candidates, context):
        self.calls.append("witch")
        return self.witch

    async def decide_hunter_kill(self, candidates, context):
        self.calls.append("hunter")
        return self.hunter(self._ids(candidates), context)

    async def decide_speech(self, context):
        self.calls.append("speech")
        return self.speech


class FailingPlayer(ScriptedPlayer):
    """Every decision call blows up, as a broken model client would."""

    async def decide_nomination(self, context):
        raise RuntimeError("model unavailable")

    async def decide_vote(self, candidates, context):
        raise RuntimeError("model unavailable")

    async def decide_kill(self, candidates, context):
        raise RuntimeError("model unavailable")

    async def decide_speech(self, context):
        raise RuntimeError("model unavailable")


class RecordingDispatcher(Dispatcher):

    def __init__(self):
        self.messages: List[Tuple[dict, Optional[List[str]]]] = []
        self.spoken: List[Tuple[str, str, Optional[List[str]]]] = []
        self.orchestrator: Optional[Orchestrator] = None
        # player id -> (prompt text -> reply or None)
        self.human_answers: Dict[str, Callable[[str], Optional[str]]] = {}

    async def publish(self, message, audience=None):
        self.messages.append((message, audience))
        if message["type"] == "game_log" and audience and len(audience) == 1:
            self._maybe_answer(audience[0], message["message"])

    async def synthesize(self, text, speaker, audience=None):
        self.spoken.append((text, speaker, audience))

    def _maybe_answer(self, player_id: str, prompt: str) -> None:
        answer = self.human_answers.get(player_id)
        provider = self.orchestrator.providers.get(player_id) if self.orchestrator else None
        if answer is None or provider is None or not getattr(provider, "awaiting_input", False):
            return
        reply = answer(prompt)
        if reply is not None:
            asyncio.get_running_loop().call_soon(self.orchestrator.handle_human_input, player_id, reply)

    def of_type(self, msg_type: str) -> List[dict]:
        return [m for m, _ in self.messages if m["type"] == msg_type]

    def logs(self) -> List[str]:
        return [m["message"] for m in self.of_type("game_log")]


class FakeGenai:
    """Stands in for genai.Client: text replies for players, PCM for TTS requests."""

    def __init__(self, reply=None, error=None, audio=b"\x00\x00" * 240, tts_error=None):
        self.reply = reply
        self.error = error
        self.audio = audio
        self.tts_error = tts_error
        self.voices: List[str] = []
        self.aio = SimpleNamespace(models=SimpleNamespace(generate_content=self.generate_content))

    async def generate_content(self, model, contents, config):
        if "AUDIO" in (config.response_modalities or []):
            self.voices.append(config.speech_config.voice_config.prebuilt_voice_config.voice_name)
            if self.tts_error:
                raise self.tts_error
            part = SimpleNamespace(inline_data=SimpleNamespace(data=self.audio))
            return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.reply)


def seated_game(roles: Dict[str, Role], humans=(), seed: int = 7) -> GameMaster:
    """A started game with a fixed deal; the game_started event is still queued."""
    gm = GameMaster(rng=random.Random(seed))
    for pid in roles:
        gm.add_player(pid, pid.title(), is_human=pid in humans)
    while gm.has_events():
        gm.next_event()
    gm.start_game()
    gm.state.roles = dict(roles)
    gm.state.witch_potions = {pid: WitchPotions() for pid, role in roles.items() if role == Role.WITCH}
    return gm


def drain(gm: GameMaster) -> list:
    events = []
    while gm.has_events():
        events.append(gm.next_event())
    return events


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_orchestrator(dispatcher):
    def build(
        gm: GameMaster, providers=(), humans=(), human_timeout: float = 0.05, ai_timeout: float = 0.5,
    ) -> Orchestrator:
        orchestrator = Orchestrator(dispatcher, gm, human_timeout=human_timeout, ai_timeout=ai_timeout)
        dispatcher.orchestrator = orchestrator
        for provider in providers:
            orchestrator.register(provider)
        for pid in humans:
            orchestrator.register(HumanPlayer(
                pid, gm.state.players[pid].name,
                prompt=lambda text, pid=pid: orchestrator.speak(MODERATOR, text, [pid]),
                timeout=human_timeout,
            ))
        return orchestrator
    return build
