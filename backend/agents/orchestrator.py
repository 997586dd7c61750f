"""
Orchestrator — drives one game from start to finish.

The only component that does async work. It pops events from the
GameMaster outbox in order and runs the handler for each type:

  game_started           → private role cards, open the police election
  police_election_started→ first nominee turn
  next_speaker           → nomination question or day speech, then next
  nominations_closed     → resolve (random / unopposed / vote)
  voting_started         → collect one vote per living player, force-close
  police_chief_elected   → announce, fall into night
  night_started          → first night step
  werewolves_turn        → parallel werewolf choices, plurality kill
  seer_turn / witch_turn → one decision each, then the next night step
  night_completed        → dawn
  day_started            → death announcements, hunter revenge, speaking
  speaking_started       → first speaker
  votes_resolved         → elimination, hunter revenge, night
  hunter_shot            → announce, continue the interrupted phase
  game_ended             → winner and full role reveal

Decision providers are the only suspend points besides narration. AI calls
are bounded by ai_decision_timeout (shielded, never cancelled); humans by
their own input timer. Any failure is an abstention.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from agents.ai_player import AIPlayer
from agents.decision_provider import DecisionProvider
from agents.game_master import GameMaster
from agents.human_player import HumanPlayer
from agents.role_assigner import role_assigner
from config import settings
from models.errors import DecisionProviderFailure, DispatchFailure, GameError, SetupError
from models.game import EventType, GameEvent, Phase, PlayerView, Role, Step, WitchDecision

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODERATOR = "Moderator"

# Rule announcements and role cards are shown but never voiced
NARRATION_ONLY_PATTERNS = [
    re.compile(r"Game has started", re.IGNORECASE),
    re.compile(r"You are .+\. Your role is", re.IGNORECASE),
    re.compile(r"It's time to elect a police chief", re.IGNORECASE),
    re.compile(r"Each player will have a chance to nominate themselves", re.IGNORECASE),
]

ProviderFactory = Callable[[str, str, Role, str], DecisionProvider]


def is_narration_only(message: str) -> bool:
    return any(pattern.search(message) for pattern in NARRATION_ONLY_PATTERNS)


def _discard_result(task: asyncio.Task) -> None:
    """Swallow the outcome of an abandoned provider call so it is not reported as unhandled."""
    if not task.cancelled() and task.exception() is not None:
        logger.info(f"Late provider call failed after its timeout: {task.exception()}")


class Dispatcher(ABC):
    """Outbound side of the transport: message delivery and voice synthesis."""

    @abstractmethod
    async def publish(self, message: Dict[str, Any], audience: Optional[List[str]] = None) -> None:
        """Deliver one JSON message to everyone, or only to `audience`."""

    @abstractmethod
    async def synthesize(self, text: str, speaker: str, audience: Optional[List[str]] = None) -> None:
        """Voice `text` and return once audio dispatch has been initiated."""


class Orchestrator:

    def __init__(
        self,
        dispatcher: Dispatcher,
        game_master: Optional[GameMaster] = None,
        provider_factory: Optional[ProviderFactory] = None,
        human_timeout: Optional[float] = None,
        ai_timeout: Optional[float] = None,
    ):
        self.dispatcher = dispatcher
        self.gm = game_master or GameMaster()
        self.providers: Dict[str, DecisionProvider] = {}
        self.human_timeout = settings.human_input_timeout if human_timeout is None else human_timeout
        self.ai_timeout = settings.ai_decision_timeout if ai_timeout is None else ai_timeout
        self._provider_factory = provider_factory or self._make_ai_player
        self._personalities: Dict[str, str] = {}
        self._active_actor: Optional[str] = None

        self._handlers: Dict[EventType, Callable[[GameEvent], Awaitable[None]]] = {
            EventType.GAME_STARTED: self._on_game_started,
            EventType.POLICE_ELECTION_STARTED: self._on_police_election_started,
            EventType.NEXT_SPEAKER: self._on_next_speaker,
            EventType.NOMINATIONS_CLOSED: self._on_nominations_closed,
            EventType.VOTING_STARTED: self._on_voting_started,
            EventType.POLICE_CHIEF_ELECTED: self._on_police_chief_elected,
            EventType.NIGHT_STARTED: self._on_night_started,
            EventType.WEREWOLVES_TURN: self._on_werewolves_turn,
            EventType.SEER_TURN: self._on_seer_turn,
            EventType.WITCH_TURN: self._on_witch_turn,
            EventType.NIGHT_COMPLETED: self._on_night_completed,
            EventType.DAY_STARTED: self._on_day_started,
            EventType.SPEAKING_STARTED: self._on_speaking_started,
            EventType.VOTES_RESOLVED: self._on_votes_resolved,
            EventType.HUNTER_SHOT: self._on_hunter_shot,
            EventType.GAME_ENDED: self._on_game_ended,
        }

    @property
    def game_id(self) -> str:
        return self.gm.state.id

    @property
    def current_speaker(self) -> Optional[str]:
        """The player whose input is awaited right now, else the queue's current speaker."""
        return self._active_actor or self.gm.state.current_speaker

    # ── Table setup ───────────────────────────────────────────────────────────

    def seat_human(self, player_id: str, name: str = "Human Player") -> None:
        self.gm.add_player(player_id, name, is_human=True)
        self.register(HumanPlayer(
            player_id, name,
            prompt=lambda text: self.speak(MODERATOR, text, [player_id]),
            timeout=self.human_timeout,
        ))

    def seat_ai(self, player_id: str, name: str, personality: str = "") -> None:
        self.gm.add_player(player_id, name, is_human=False)
        self._personalities[player_id] = personality

    def setup_table(
        self, human_player_id: str, human_name: str = "Human Player", total_players: Optional[int] = None,
    ) -> None:
        """One human seat plus AI fill-in up to the configured table size."""
        total = settings.total_players if total_players is None else total_players
        if total < settings.min_players:
            raise SetupError(f"At least {settings.min_players} players are needed, got {total}")
        cast = role_assigner.ai_cast(total - 1, self.gm.rng)
        self.seat_human(human_player_id, human_name)
        for i, character in enumerate(cast):
            self.seat_ai(f"ai_{i + 1}", character["name"], character["personality"])

    def register(self, provider: DecisionProvider) -> None:
        self.providers[provider.player_id] = provider

    def _make_ai_player(self, player_id: str, name: str, role: Role, personality: str) -> DecisionProvider:
        return AIPlayer(player_id, name, role, personality, rng=self.gm.rng)

    # ── Event pump ────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Start the game and play it to the end."""
        self.gm.start_game()
        try:
            await self.resume()
        except Exception:
            logger.exception(f"[{self.game_id}] Game loop crashed")
            raise

    async def resume(self) -> None:
        """Dispatch queued events until the outbox is empty."""
        while self.gm.has_events():
            event = self.gm.next_event()
            handler = self._handlers.get(event.type)
            if handler is None:
                continue
            await handler(event)
        if not self.gm.is_over:
            logger.error(f"[{self.game_id}] Event pump ran dry before the game ended")

    # ── Human input ───────────────────────────────────────────────────────────

    def handle_human_input(self, player_id: str, message: str) -> bool:
        """Route free text to the awaited human. Input from anyone else is ignored."""
        if player_id != self.current_speaker:
            logger.debug(f"[{self.game_id}] Ignoring input from {player_id} (current: {self.current_speaker})")
            return False
        provider = self.providers.get(player_id)
        if not isinstance(provider, HumanPlayer):
            return False
        return provider.deliver(message)

    def handle_utterance(self, speaker_id: str, text: str, is_final: bool = True) -> bool:
        """Speech-to-text results; only final utterances count as input."""
        if not is_final or not text.strip():
            return False
        return self.handle_human_input(speaker_id, text.strip())

    # ── Narration ─────────────────────────────────────────────────────────────

    def _speaker_identity(self, speaker: str):
        if speaker == MODERATOR:
            return MODERATOR, MODERATOR
        state = self.gm.state
        player = state.players.get(speaker)
        name = player.name if player else speaker
        # A player's role is public only once they are dead or the game is over
        role = state.role_of(speaker)
        revealed = role is not None and (state.phase == Phase.ENDED or (player and not player.alive))
        return name, role.value if revealed else None

    async def speak(self, speaker: str, message: str, audience: Optional[List[str]] = None) -> None:
        """
        speaker_info, then game_log, then (unless narration-only) voice synthesis.
        Delivery failures are logged and never stop the game.
        """
        name, role = self._speaker_identity(speaker)
        try:
            await self.dispatcher.publish(
                {"type": "speaker_info", "speaker": speaker, "name": name, "role": role}, audience,
            )
            await self.dispatcher.publish({
                "type": "game_log",
                "speaker": name,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "isPrivate": audience is not None,
            }, audience)
            if not is_narration_only(message):
                await self.dispatcher.synthesize(message, speaker, audience)
        except Exception as exc:
            failure = exc if isinstance(exc, DispatchFailure) else DispatchFailure(str(exc))
            logger.warning(f"[{self.game_id}] speak({speaker}) failed: {failure}")

        line = f"{name}: {message}"
        for pid, provider in self.providers.items():
            if audience is None or pid in audience:
                provider.observe(line)

    async def _publish(self, message: Dict[str, Any], audience: Optional[List[str]] = None) -> None:
        try:
            await self.dispatcher.publish(message, audience)
        except Exception as exc:
            logger.warning(f"[{self.game_id}] publish {message.get('type')} failed: {exc}")

    async def _publish_status(self) -> None:
        state = self.gm.state
        status = state.phase.value if state.step is None else f"{state.phase.value}:{state.step.value}"
        await self._publish({"type": "game_status", "status": status})

    # ── Decisions ─────────────────────────────────────────────────────────────

    async def _call_provider(self, provider: DecisionProvider, call: Callable[[DecisionProvider], Awaitable[T]]) -> T:
        if provider.is_human:
            # The human's own input timer bounds this call
            try:
                return await call(provider)
            except Exception as exc:
                raise DecisionProviderFailure(f"{provider.name}: {exc}") from exc

        task = asyncio.ensure_future(call(provider))
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.ai_timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_discard_result)
            raise DecisionProviderFailure(f"{provider.name} did not decide within {self.ai_timeout:.0f}s")
        except DecisionProviderFailure:
            raise
        except Exception as exc:
            raise DecisionProviderFailure(f"{provider.name}: {exc}") from exc

    async def _decide(
        self,
        actor_id: str,
        call: Callable[[DecisionProvider], Awaitable[T]],
        default: T = None,
        announce: bool = True,
    ) -> T:
        """
        Ask one actor for a decision; failures and timeouts become `default`.

        A human is told it is their turn with a current_speaker sent only to
        them. Turns already announced to the table pass announce=False.
        """
        provider = self.providers.get(actor_id)
        if provider is None:
            logger.warning(f"[{self.game_id}] No decision provider for {actor_id}")
            return default
        if provider.is_human:
            self._active_actor = actor_id
            if announce:
                await self._publish(
                    {"type": "current_speaker", "speaker": actor_id, "isPlayerTurn": True}, [actor_id],
                )
        try:
            return await self._call_provider(provider, call)
        except DecisionProviderFailure as exc:
            logger.warning(f"[{self.game_id}] {exc}, treating as no decision")
            return default
        finally:
            if self._active_actor == actor_id:
                self._active_actor = None

    def _views(self, player_ids: List[str]) -> List[PlayerView]:
        return [self.gm.state.view(pid) for pid in player_ids]

    def _name(self, player_id: Optional[str]) -> str:
        player = self.gm.state.players.get(player_id) if player_id else None
        return player.name if player else str(player_id)

    @staticmethod
    def _valid(choice: Optional[str], candidates: List[str]) -> Optional[str]:
        return choice if choice in candidates else None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def _on_game_started(self, event: GameEvent) -> None:
        state = self.gm.state
        for pid, player in state.players.items():
            if pid not in self.providers and not player.is_human:
                self.register(self._provider_factory(
                    pid, player.name, state.roles[pid], self._personalities.get(pid, ""),
                ))

        await self._publish({"type": "game_started"})
        await self._publish_status()
        await self.speak(MODERATOR, "Game has started! I will now privately tell each player their role.")
        for pid, player in state.players.items():
            await self.speak(MODERATOR, f"You are {player.name}. Your role is {state.roles[pid].value}.", [pid])

        wolves = state.living_with_role(Role.WEREWOLF)
        if len(wolves) > 1:
            await self.speak(
                MODERATOR, f"The werewolves are: {', '.join(self._name(w) for w in wolves)}.", wolves,
            )
        self.gm.start_police_election()

    async def _on_game_ended(self, event: GameEvent) -> None:
        winner = event.data["winner"]
        await self._publish_status()
        await self._publish({"type": "game_ended", "winner": winner})
        await self.speak(MODERATOR, f"Game Over! The {winner} have won!")
        for pid, role in event.data["roles"].items():
            await self.speak(MODERATOR, f"{self._name(pid)} was a {role}.")

    # ── Police election ───────────────────────────────────────────────────────

    async def _on_police_election_started(self, event: GameEvent) -> None:
        await self._publish_status()
        await self.speak(
            MODERATOR,
            "It's time to elect a police chief. Each player will have a chance to nominate themselves.",
        )
        self.gm.process_next_speaker()

    async def _on_next_speaker(self, event: GameEvent) -> None:
        pid = event.actor
        provider = self.providers.get(pid)
        await self._publish({
            "type": "current_speaker", "speaker": pid, "isPlayerTurn": bool(provider and provider.is_human),
        })
        context = self.gm.state.context()

        if event.data["step"] == Step.NOMINATIONS.value:
            nominated = await self._decide(pid, lambda p: p.decide_nomination(context), False, announce=False)
            if nominated:
                self.gm.nominate(pid)
                await self.speak(MODERATOR, f"{self._name(pid)} has nominated themselves for police chief.")
            else:
                await self.speak(MODERATOR, f"{self._name(pid)} declines to nominate themselves.")
        else:
            speech = await self._decide(pid, lambda p: p.decide_speech(context), announce=False)
            if speech:
                await self.speak(pid, speech)
            else:
                await self.speak(MODERATOR, f"{self._name(pid)} stays silent.")
        self.gm.process_next_speaker()

    async def _on_nominations_closed(self, event: GameEvent) -> None:
        self.gm.resolve_nominations()

    async def _on_police_chief_elected(self, event: GameEvent) -> None:
        chief = event.actor
        method = event.data["method"]
        if method == "random":
            text = f"Since no one nominated themselves, {self._name(chief)} has been randomly selected as police chief."
        elif method == "unopposed":
            text = f"{self._name(chief)} is the only nominee and becomes police chief by default."
        elif method == "vote":
            text = f"{self._name(chief)} has been elected as police chief."
        else:
            text = "No votes were cast. The village will go without a police chief."
        await self.speak(MODERATOR, text)
        self.gm.start_night()

    # ── Voting ────────────────────────────────────────────────────────────────

    async def _on_voting_started(self, event: GameEvent) -> None:
        await self._publish_status()
        kind = event.data["kind"]
        candidates: List[str] = event.data["candidates"]
        if kind == "police":
            await self.speak(MODERATOR, "Multiple players have nominated themselves. We will now hold a vote.")
        else:
            await self.speak(MODERATOR, "Everyone has spoken. It's time to vote.")

        for voter in event.data["voters"]:
            if not self.gm.vote_open:
                break
            if not self.gm.state.is_alive(voter):
                continue
            options = candidates if kind == "police" else [c for c in candidates if c != voter]
            context = self.gm.state.context()
            views = self._views(options)
            choice = self._valid(await self._decide(voter, lambda p: p.decide_vote(views, context)), options)
            if choice is None:
                await self.speak(MODERATOR, f"{self._name(voter)} abstains.")
                continue
            try:
                self.gm.cast_vote(voter, choice)
            except GameError as exc:
                logger.warning(f"[{self.game_id}] Vote from {voter} rejected: {exc}")
                continue
            await self.speak(MODERATOR, f"{self._name(voter)} has cast their vote.")

        # Abstentions leave the ballot open; close it on what was cast
        if self.gm.vote_open:
            self.gm.process_votes()

    async def _on_votes_resolved(self, event: GameEvent) -> None:
        eliminated = event.target
        if eliminated is None:
            await self.speak(MODERATOR, "No votes were cast. No one is eliminated today.")
        else:
            await self.speak(
                MODERATOR, f"{self._name(eliminated)} has been eliminated. They were a {event.data['role']}.",
            )
            if self.gm.check_game_end():
                return
        await self._continue_day()

    # ── Night ─────────────────────────────────────────────────────────────────

    async def _on_night_started(self, event: GameEvent) -> None:
        await self._publish_status()
        await self.speak(MODERATOR, f"Night {event.day} has fallen. Everyone close your eyes.")
        self.gm.advance_night()

    async def _on_werewolves_turn(self, event: GameEvent) -> None:
        wolves: List[str] = event.data["werewolves"]
        await self.speak(MODERATOR, "Werewolves, open your eyes and choose your victim.", wolves)

        context = self.gm.state.context()
        views = self._views(self.gm.candidates(exclude=wolves))
        # Independent reads of the same snapshot; joined before any mutation
        choices = await asyncio.gather(*(
            self._decide(wolf, lambda p: p.decide_kill(views, context)) for wolf in wolves
        ))
        kill = self.gm.werewolves_attack(dict(zip(wolves, choices)))

        if kill.target is not None:
            await self.speak(MODERATOR, "The werewolves have made their choice.", wolves)
            if self.gm.check_game_end():
                return
        else:
            await self.speak(MODERATOR, "The werewolves could not agree on a victim.", wolves)
        await self.speak(MODERATOR, "Werewolves, close your eyes.", wolves)
        self.gm.advance_night()

    async def _on_seer_turn(self, event: GameEvent) -> None:
        seer = event.actor
        await self.speak(MODERATOR, "Seer, open your eyes and choose a player to investigate.", [seer])

        options = self.gm.candidates(exclude=[seer])
        context = self.gm.state.context()
        views = self._views(options)
        target = self._valid(await self._decide(seer, lambda p: p.decide_investigate(views, context)), options)
        if target is not None:
            role = self.gm.investigate(seer, target)
            provider = self.providers.get(seer)
            if provider is not None:
                provider.remember(f"{self._name(target)}'s role", role.value)
            await self.speak(MODERATOR, f"{self._name(target)} is a {role.value}.", [seer])

        await self.speak(MODERATOR, "Seer, close your eyes.", [seer])
        self.gm.advance_night()

    async def _on_witch_turn(self, event: GameEvent) -> None:
        witch = event.actor
        victim = event.target
        can_save = event.data["can_save"]
        can_poison = event.data["can_poison"]
        await self.speak(MODERATOR, "Witch, open your eyes.", [witch])

        if can_save or can_poison:
            if victim is not None:
                await self.speak(MODERATOR, f"Tonight, {self._name(victim)} was attacked.", [witch])
            options = self.gm.candidates(exclude=[witch])
            context = self.gm.state.context()
            views = self._views(options)
            victim_view = self.gm.state.view(victim) if victim else None
            decision = await self._decide(
                witch,
                lambda p: p.decide_witch(victim_view, can_save, can_poison, views, context),
                WitchDecision(),
            )
            if decision.save and can_save:
                self.gm.use_antidote(witch)
                await self.speak(MODERATOR, "The witch has used the antidote.", [witch])
            poison_target = self._valid(decision.poison_target, options)
            if poison_target is not None and can_poison:
                self.gm.use_poison(witch, poison_target)
                await self.speak(MODERATOR, "The witch has used the poison.", [witch])
                if self.gm.check_game_end():
                    return

        await self.speak(MODERATOR, "Witch, close your eyes.", [witch])
        self.gm.advance_night()

    async def _on_night_completed(self, event: GameEvent) -> None:
        self.gm.start_day()

    # ── Day ───────────────────────────────────────────────────────────────────

    async def _on_day_started(self, event: GameEvent) -> None:
        await self._publish_status()
        await self.speak(MODERATOR, f"Day {event.day} has begun. Everyone open your eyes.")
        deaths = event.data["deaths"]
        if deaths:
            for death in deaths:
                await self.speak(
                    MODERATOR, f"Last night, {self._name(death['id'])} was killed. They were a {death['role']}.",
                )
        else:
            await self.speak(MODERATOR, "No one died last night.")
        await self._continue_day()

    async def _on_speaking_started(self, event: GameEvent) -> None:
        await self._publish_status()
        self.gm.process_next_speaker()

    async def _continue_day(self) -> None:
        """Settle owed hunter shots, then move on from wherever the day stands."""
        state = self.gm.state
        if state.pending_revenge:
            await self._hunter_revenge(state.pending_revenge[0])
        elif state.step == Step.ANNOUNCE:
            self.gm.start_speaking()
        else:
            self.gm.start_night()

    async def _hunter_revenge(self, hunter: str) -> None:
        await self.speak(MODERATOR, f"{self._name(hunter)} was the hunter and may take one player with them.")
        options = self.gm.candidates(exclude=[hunter])
        context = self.gm.state.context()
        views = self._views(options)
        target = self._valid(await self._decide(hunter, lambda p: p.decide_hunter_kill(views, context)), options)
        self.gm.hunter_shot(hunter, target)

    async def _on_hunter_shot(self, event: GameEvent) -> None:
        if event.target is None:
            await self.speak(MODERATOR, f"The hunter {self._name(event.actor)} chose not to shoot.")
        else:
            await self.speak(
                MODERATOR,
                f"The hunter has chosen to take {self._name(event.target)} with them. "
                f"They were a {event.data['role']}.",
            )
            if self.gm.check_game_end():
                return
        await self._continue_day()
