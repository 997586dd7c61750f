from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Tuple
from enum import Enum
from datetime import datetime, timezone
import uuid

from agents.speaker_queue import SpeakerQueue
from agents.voting import Ballot, VoteKind


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    WEREWOLF = "werewolf"
    VILLAGER = "villager"
    SEER = "seer"
    WITCH = "witch"
    HUNTER = "hunter"


class Phase(str, Enum):
    WAITING = "waiting"
    POLICE_ELECTION = "police_election"
    NIGHT = "night"
    DAY = "day"
    ENDED = "ended"


class Step(str, Enum):
    """Sub-phase inside police_election, night or day."""
    NOMINATIONS = "nominations"
    WEREWOLVES = "werewolves"
    SEER = "seer"
    WITCH = "witch"
    ANNOUNCE = "announce"
    SPEAKING = "speaking"
    VOTING = "voting"


# Night sub-phases run in this order; a step with no living actor is skipped.
NIGHT_STEPS: List[Step] = [Step.WEREWOLVES, Step.SEER, Step.WITCH]


class Winner(str, Enum):
    VILLAGERS = "villagers"
    WEREWOLVES = "werewolves"


class DeathCause(str, Enum):
    WEREWOLVES = "werewolves"
    POISON = "poison"
    VOTE = "vote"
    HUNTER = "hunter"


class EventType(str, Enum):
    PLAYER_JOINED = "player_joined"
    GAME_STARTED = "game_started"
    POLICE_ELECTION_STARTED = "police_election_started"
    NEXT_SPEAKER = "next_speaker"
    NOMINATION_RECORDED = "nomination_recorded"
    NOMINATIONS_CLOSED = "nominations_closed"
    VOTING_STARTED = "voting_started"
    VOTE_CAST = "vote_cast"
    VOTES_RESOLVED = "votes_resolved"
    POLICE_CHIEF_ELECTED = "police_chief_elected"
    NIGHT_STARTED = "night_started"
    WEREWOLVES_TURN = "werewolves_turn"
    SEER_TURN = "seer_turn"
    WITCH_TURN = "witch_turn"
    NIGHT_KILL = "night_kill"
    ANTIDOTE_USED = "antidote_used"
    POISON_USED = "poison_used"
    NIGHT_COMPLETED = "night_completed"
    DAY_STARTED = "day_started"
    SPEAKING_STARTED = "speaking_started"
    HUNTER_SHOT = "hunter_shot"
    GAME_ENDED = "game_ended"


class PlayerState(BaseModel):
    id: str
    name: str
    is_human: bool = False
    alive: bool = True
    has_spoken: bool = False

    def to_public(self) -> Dict[str, Any]:
        """Safe representation — omits role (hidden during game)."""
        return {
            "id": self.id,
            "name": self.name,
            "isHuman": self.is_human,
            "alive": self.alive,
        }


class PlayerView(BaseModel):
    """What a decision provider is allowed to know about another player."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class GameContext(BaseModel):
    """Read-only snapshot handed to decision providers."""
    model_config = ConfigDict(frozen=True)

    day: int
    is_night: bool
    phase: Phase
    alive_players: Tuple[PlayerView, ...] = ()


class WitchPotions(BaseModel):
    antidote: bool = True
    poison: bool = True


class WitchDecision(BaseModel):
    save: bool = False
    poison_target: Optional[str] = None


class GameState(BaseModel):
    """
    Authoritative game record. Never mutated in place by callers: transitions
    in agents.game_master work on a deep copy and hand back the new record.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8].upper())
    phase: Phase = Phase.WAITING
    step: Optional[Step] = None
    day: int = 0
    # Insertion order of `players` is the roster order
    players: Dict[str, PlayerState] = {}
    roles: Dict[str, Role] = {}
    witch_potions: Dict[str, WitchPotions] = {}
    police_chief: Optional[str] = None
    nominees: List[str] = []
    queue: SpeakerQueue = Field(default_factory=SpeakerQueue)
    ballot: Optional[Ballot] = None
    dead: List[str] = []
    night_deaths: List[str] = []
    pending_revenge: List[str] = []
    hunters_fired: List[str] = []
    winner: Optional[Winner] = None
    event_seq: int = 0
    created_at: datetime = Field(default_factory=_utcnow)

    # ── Read helpers ──────────────────────────────────────────────────────────

    @property
    def is_night(self) -> bool:
        return self.phase == Phase.NIGHT

    @property
    def current_speaker(self) -> Optional[str]:
        return self.queue.current

    def is_alive(self, player_id: str) -> bool:
        player = self.players.get(player_id)
        return bool(player and player.alive)

    def alive_ids(self) -> List[str]:
        return [pid for pid, p in self.players.items() if p.alive]

    def role_of(self, player_id: str) -> Optional[Role]:
        return self.roles.get(player_id)

    def living_with_role(self, role: Role) -> List[str]:
        return [pid for pid in self.alive_ids() if self.roles.get(pid) == role]

    def view(self, player_id: str) -> PlayerView:
        player = self.players[player_id]
        return PlayerView(id=player.id, name=player.name)

    def context(self) -> GameContext:
        return GameContext(
            day=self.day,
            is_night=self.is_night,
            phase=self.phase,
            alive_players=tuple(self.view(pid) for pid in self.alive_ids()),
        )

    def to_public(self) -> Dict[str, Any]:
        """Snapshot safe to show any client; roles only once the game is over."""
        data: Dict[str, Any] = {
            "game_id": self.id,
            "phase": self.phase.value,
            "step": self.step.value if self.step else None,
            "day": self.day,
            "players": [p.to_public() for p in self.players.values()],
            "police_chief": self.police_chief,
            "current_speaker": self.current_speaker,
            "winner": self.winner.value if self.winner else None,
        }
        if self.phase == Phase.ENDED:
            data["roles"] = {pid: role.value for pid, role in self.roles.items()}
        return data


class GameEvent(BaseModel):
    seq: int
    type: EventType
    day: int
    phase: Phase
    actor: Optional[str] = None
    target: Optional[str] = None
    data: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=_utcnow)
