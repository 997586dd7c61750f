"""
Game Master — Pure deterministic Python, no LLM, no I/O.

Responsibilities:
- Phase transitions (Police Election → Night → Day → Night …)
- Night sub-phase sequencing (Werewolves → Seer → Witch → dawn)
- Speaker queue draining and vote round lifecycle
- Deaths, potions, hunter revenge bookkeeping
- Win condition checks

Every transition is a function `(state, ...) -> (new_state, event)` that works
on a deep copy, so a transition that raises leaves the caller's state exactly
as it was. GameMaster holds the current record and an outbox of emitted
events that the orchestrator drains in order.
"""
import logging
import random
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from agents.role_assigner import role_assigner
from agents.voting import Ballot, VoteKind, plurality, tally_votes
from models.errors import (
    GameEndedError,
    InvalidTargetError,
    InvalidTransitionError,
    SetupError,
)
from models.game import (
    NIGHT_STEPS,
    DeathCause,
    EventType,
    GameEvent,
    GameState,
    Phase,
    PlayerState,
    Role,
    Step,
    Winner,
    WitchPotions,
)

logger = logging.getLogger(__name__)

Transition = Tuple[GameState, GameEvent]

MIN_PLAYERS_TO_START = 3

# Role whose living holder runs each night step
_NIGHT_STEP_ROLE: Dict[Step, Role] = {
    Step.WEREWOLVES: Role.WEREWOLF,
    Step.SEER: Role.SEER,
    Step.WITCH: Role.WITCH,
}


# ── Helpers ───────────────────────────────────────────────────────────────────

def _draft(
    state: GameState,
    action: str,
    phases: Sequence[Phase],
    steps: Optional[Sequence[Optional[Step]]] = None,
) -> GameState:
    """Validate that `action` is legal right now and return a mutable copy."""
    if state.phase == Phase.ENDED:
        raise GameEndedError(f"{action}: the game has already ended")
    if state.phase not in phases:
        raise InvalidTransitionError(f"{action} is not allowed during {state.phase.value}")
    if steps is not None and state.step not in steps:
        step = state.step.value if state.step else "none"
        raise InvalidTransitionError(f"{action} is not allowed during step {step}")
    return state.model_copy(deep=True)


def _event(
    state: GameState,
    type: EventType,
    actor: Optional[str] = None,
    target: Optional[str] = None,
    **data,
) -> GameEvent:
    state.event_seq += 1
    return GameEvent(
        seq=state.event_seq,
        type=type,
        day=state.day,
        phase=state.phase,
        actor=actor,
        target=target,
        data=data,
    )


def _kill(state: GameState, player_id: str, cause: DeathCause) -> None:
    """Mark a player dead. Night deaths are collected for the dawn announcement."""
    player = state.players[player_id]
    player.alive = False
    if player_id not in state.dead:
        state.dead.append(player_id)
    if cause in (DeathCause.WEREWOLVES, DeathCause.POISON):
        state.night_deaths.append(player_id)
    # Night deaths become revenge-eligible only at dawn, once the witch is done
    elif state.roles.get(player_id) == Role.HUNTER and player_id not in state.hunters_fired:
        state.pending_revenge.append(player_id)


def _require_living(state: GameState, player_id: str, what: str) -> None:
    if not state.is_alive(player_id):
        raise InvalidTargetError(f"{what} {player_id} is not a living player")


# ── Setup ─────────────────────────────────────────────────────────────────────

def add_player(state: GameState, player_id: str, name: str, is_human: bool = False) -> Transition:
    if state.phase != Phase.WAITING:
        raise SetupError("Players cannot join once the game has started")
    if player_id in state.players:
        raise SetupError(f"Player {player_id} is already seated")
    draft = state.model_copy(deep=True)
    draft.players[player_id] = PlayerState(id=player_id, name=name, is_human=is_human)
    return draft, _event(draft, EventType.PLAYER_JOINED, actor=player_id, name=name, is_human=is_human)


def start_game(state: GameState, rng: random.Random) -> Transition:
    if state.phase == Phase.ENDED:
        raise GameEndedError("start_game: the game has already ended")
    if state.phase != Phase.WAITING:
        raise SetupError("The game has already started")
    if len(state.players) < MIN_PLAYERS_TO_START:
        raise SetupError(
            f"Not enough players to start the game: {len(state.players)} < {MIN_PLAYERS_TO_START}"
        )
    roles = role_assigner.assign(list(state.players), rng)

    draft = state.model_copy(deep=True)
    draft.roles = roles
    draft.witch_potions = {
        pid: WitchPotions() for pid, role in roles.items() if role == Role.WITCH
    }
    draft.phase = Phase.POLICE_ELECTION
    draft.step = None
    draft.day = 0
    return draft, _event(draft, EventType.GAME_STARTED, players=list(draft.players))


# ── Police election ───────────────────────────────────────────────────────────

def start_police_election(state: GameState) -> Transition:
    draft = _draft(state, "start_police_election", [Phase.POLICE_ELECTION], [None])
    if draft.police_chief is not None:
        raise InvalidTransitionError("The police election has already been held")
    draft.step = Step.NOMINATIONS
    draft.nominees = []
    draft.queue.enqueue(draft.alive_ids())
    return draft, _event(draft, EventType.POLICE_ELECTION_STARTED, queue=list(draft.queue.pending))


def nominate(state: GameState, player_id: str) -> Transition:
    draft = _draft(state, "nominate", [Phase.POLICE_ELECTION], [Step.NOMINATIONS])
    if draft.queue.current != player_id:
        raise InvalidTransitionError(f"{player_id} is not the current speaker")
    if player_id not in draft.nominees:
        draft.nominees.append(player_id)
    return draft, _event(draft, EventType.NOMINATION_RECORDED, actor=player_id)


def resolve_nominations(state: GameState, rng: random.Random) -> Transition:
    """
    Zero nominations: a random living player becomes chief.
    One nomination: that player wins unopposed.
    More: a police vote among the nominees, every living player voting.
    """
    draft = _draft(state, "resolve_nominations", [Phase.POLICE_ELECTION], [Step.NOMINATIONS])
    if draft.queue.current is not None or draft.queue.pending:
        raise InvalidTransitionError("Nominations are still open")

    nominees = [pid for pid in draft.nominees if draft.is_alive(pid)]
    if len(nominees) >= 2:
        draft.step = Step.VOTING
        draft.ballot = Ballot(kind=VoteKind.POLICE, candidates=nominees)
        return draft, _event(
            draft, EventType.VOTING_STARTED,
            kind=VoteKind.POLICE.value, candidates=nominees, voters=draft.alive_ids(),
        )

    if nominees:
        chief, method = nominees[0], "unopposed"
    else:
        chief, method = rng.choice(draft.alive_ids()), "random"
    draft.police_chief = chief
    draft.step = None
    return draft, _event(draft, EventType.POLICE_CHIEF_ELECTED, actor=chief, method=method)


# ── Speaker queue ─────────────────────────────────────────────────────────────

def process_next_speaker(state: GameState) -> Transition:
    """
    Pop the next speaker. When the queue is drained, nominations close
    (police election) or the day moves straight into its vote.
    """
    draft = _draft(
        state, "process_next_speaker",
        [Phase.POLICE_ELECTION, Phase.DAY], [Step.NOMINATIONS, Step.SPEAKING],
    )
    speaker = draft.queue.pop(draft.is_alive)
    if speaker is not None:
        if draft.step == Step.SPEAKING:
            draft.players[speaker].has_spoken = True
        return draft, _event(draft, EventType.NEXT_SPEAKER, actor=speaker, step=draft.step.value)

    if draft.step == Step.NOMINATIONS:
        return draft, _event(draft, EventType.NOMINATIONS_CLOSED, nominees=list(draft.nominees))

    candidates = draft.alive_ids()
    draft.step = Step.VOTING
    draft.ballot = Ballot(kind=VoteKind.DAY, candidates=candidates)
    return draft, _event(
        draft, EventType.VOTING_STARTED,
        kind=VoteKind.DAY.value, candidates=candidates, voters=candidates,
    )


def start_speaking(state: GameState) -> Transition:
    draft = _draft(state, "start_speaking", [Phase.DAY], [Step.ANNOUNCE])
    if draft.pending_revenge:
        raise InvalidTransitionError("A hunter still has to take their shot")
    draft.step = Step.SPEAKING
    draft.queue.enqueue(
        pid for pid in draft.alive_ids() if not draft.players[pid].has_spoken
    )
    return draft, _event(draft, EventType.SPEAKING_STARTED, queue=list(draft.queue.pending))


# ── Voting ────────────────────────────────────────────────────────────────────

def cast_vote(state: GameState, voter_id: str, target_id: str) -> Transition:
    draft = _draft(state, "cast_vote", [Phase.POLICE_ELECTION, Phase.DAY], [Step.VOTING])
    if draft.ballot is None:
        raise InvalidTransitionError("The vote has already been resolved")
    draft.ballot.cast(voter_id, target_id, draft.alive_ids())
    return draft, _event(
        draft, EventType.VOTE_CAST, actor=voter_id, target=target_id, kind=draft.ballot.kind.value,
    )


def process_votes(state: GameState) -> Transition:
    """
    Close the ballot. An empty tally eliminates nobody (police: no chief).
    The ballot is cleared either way.
    """
    draft = _draft(state, "process_votes", [Phase.POLICE_ELECTION, Phase.DAY], [Step.VOTING])
    if draft.ballot is None:
        raise InvalidTransitionError("The vote has already been resolved")
    tally = draft.ballot.tally()
    winner = draft.ballot.winner()
    kind = draft.ballot.kind
    draft.ballot = None

    if kind == VoteKind.POLICE:
        draft.police_chief = winner
        draft.step = None
        return draft, _event(
            draft, EventType.POLICE_CHIEF_ELECTED, actor=winner,
            method="vote" if winner else "vacant", tally=tally,
        )

    if winner is not None:
        _kill(draft, winner, DeathCause.VOTE)
    return draft, _event(
        draft, EventType.VOTES_RESOLVED, target=winner,
        tally=tally, role=draft.roles[winner].value if winner else None,
    )


# ── Night ─────────────────────────────────────────────────────────────────────

def start_night(state: GameState) -> Transition:
    draft = _draft(state, "start_night", [Phase.POLICE_ELECTION, Phase.DAY])
    if draft.phase == Phase.POLICE_ELECTION and draft.step is not None:
        raise InvalidTransitionError("The police election is still running")
    if draft.phase == Phase.DAY and (draft.step != Step.VOTING or draft.ballot is not None):
        raise InvalidTransitionError("The day vote has not been resolved")
    if draft.pending_revenge:
        raise InvalidTransitionError("A hunter still has to take their shot")
    draft.day += 1
    draft.phase = Phase.NIGHT
    draft.step = None
    draft.night_deaths = []
    draft.queue.clear()
    return draft, _event(draft, EventType.NIGHT_STARTED)


def advance_night(state: GameState) -> Transition:
    """Move to the next night step that has a living actor, or finish the night."""
    draft = _draft(state, "advance_night", [Phase.NIGHT])
    start = 0 if draft.step is None else NIGHT_STEPS.index(draft.step) + 1
    draft.queue.clear()

    for step in NIGHT_STEPS[start:]:
        actors = draft.living_with_role(_NIGHT_STEP_ROLE[step])
        if not actors:
            continue
        draft.step = step
        if step == Step.WEREWOLVES:
            return draft, _event(draft, EventType.WEREWOLVES_TURN, werewolves=actors)
        actor = actors[0]
        draft.queue.current = actor
        if step == Step.SEER:
            return draft, _event(draft, EventType.SEER_TURN, actor=actor)
        potions = draft.witch_potions.get(actor, WitchPotions(antidote=False, poison=False))
        victim = draft.night_deaths[0] if draft.night_deaths else None
        return draft, _event(
            draft, EventType.WITCH_TURN, actor=actor, target=victim,
            can_save=bool(victim and potions.antidote), can_poison=potions.poison,
        )

    draft.step = None
    return draft, _event(draft, EventType.NIGHT_COMPLETED, deaths=list(draft.night_deaths))


def werewolves_attack(state: GameState, votes: Dict[str, Optional[str]]) -> Transition:
    """
    Resolve the werewolves' choices with the plurality rule. Votes from
    non-werewolves, self-votes, and votes for werewolves or the dead are ignored.
    """
    draft = _draft(state, "werewolves_attack", [Phase.NIGHT], [Step.WEREWOLVES])
    wolves = draft.living_with_role(Role.WEREWOLF)
    valid: List[str] = []
    for wolf in wolves:
        target = votes.get(wolf)
        if target is None or target == wolf:
            continue
        if not draft.is_alive(target) or draft.roles.get(target) == Role.WEREWOLF:
            logger.warning(f"[{draft.id}] Ignoring werewolf {wolf} vote for {target}")
            continue
        valid.append(target)

    tally = tally_votes(valid)
    victim = plurality(tally)
    if victim is not None:
        _kill(draft, victim, DeathCause.WEREWOLVES)
    return draft, _event(draft, EventType.NIGHT_KILL, target=victim, tally=tally, werewolves=wolves)


def _witch_potions(draft: GameState, witch_id: str) -> WitchPotions:
    if draft.queue.current != witch_id or draft.roles.get(witch_id) != Role.WITCH:
        raise InvalidTransitionError(f"{witch_id} is not the acting witch")
    return draft.witch_potions[witch_id]


def use_antidote(state: GameState, witch_id: str) -> Transition:
    draft = _draft(state, "use_antidote", [Phase.NIGHT], [Step.WITCH])
    potions = _witch_potions(draft, witch_id)
    if not potions.antidote:
        raise InvalidTransitionError("The antidote has already been used")
    if not draft.night_deaths:
        raise InvalidTransitionError("Nobody died tonight")
    victim = draft.night_deaths.pop(0)
    draft.players[victim].alive = True
    draft.dead.remove(victim)
    potions.antidote = False
    return draft, _event(draft, EventType.ANTIDOTE_USED, actor=witch_id, target=victim)


def use_poison(state: GameState, witch_id: str, target_id: str) -> Transition:
    draft = _draft(state, "use_poison", [Phase.NIGHT], [Step.WITCH])
    potions = _witch_potions(draft, witch_id)
    if not potions.poison:
        raise InvalidTransitionError("The poison has already been used")
    _require_living(draft, target_id, "Poison target")
    if target_id == witch_id:
        raise InvalidTargetError("The witch cannot poison herself")
    _kill(draft, target_id, DeathCause.POISON)
    potions.poison = False
    return draft, _event(draft, EventType.POISON_USED, actor=witch_id, target=target_id)


# ── Day ───────────────────────────────────────────────────────────────────────

def start_day(state: GameState) -> Transition:
    draft = _draft(state, "start_day", [Phase.NIGHT])
    deaths = list(draft.night_deaths)
    draft.phase = Phase.DAY
    draft.step = Step.ANNOUNCE
    draft.queue.clear()
    for player in draft.players.values():
        player.has_spoken = False
    for pid in deaths:
        if (
            draft.roles.get(pid) == Role.HUNTER
            and pid not in draft.hunters_fired
            and pid not in draft.pending_revenge
        ):
            draft.pending_revenge.append(pid)
    return draft, _event(
        draft, EventType.DAY_STARTED,
        deaths=[{"id": pid, "role": draft.roles[pid].value} for pid in deaths],
    )


def hunter_shot(state: GameState, hunter_id: str, target_id: Optional[str]) -> Transition:
    """The dead hunter takes one living player with them, or declines (target None)."""
    draft = _draft(state, "hunter_shot", [Phase.NIGHT, Phase.DAY])
    if hunter_id not in draft.pending_revenge:
        raise InvalidTransitionError(f"{hunter_id} has no revenge shot to take")
    if target_id is not None:
        _require_living(draft, target_id, "Hunter target")
    draft.pending_revenge.remove(hunter_id)
    draft.hunters_fired.append(hunter_id)
    role = None
    if target_id is not None:
        _kill(draft, target_id, DeathCause.HUNTER)
        role = draft.roles[target_id].value
    return draft, _event(draft, EventType.HUNTER_SHOT, actor=hunter_id, target=target_id, role=role)


# ── Win condition ─────────────────────────────────────────────────────────────

def winner_of(state: GameState) -> Optional[Winner]:
    alive = state.alive_ids()
    werewolves = sum(1 for pid in alive if state.roles.get(pid) == Role.WEREWOLF)
    if werewolves == 0:
        return Winner.VILLAGERS
    if len(alive) - werewolves == 0:
        return Winner.WEREWOLVES
    return None


def check_game_end(state: GameState) -> Tuple[GameState, Optional[GameEvent]]:
    """Returns the ended state and its event, or the unchanged state and None."""
    if state.phase == Phase.WAITING:
        raise InvalidTransitionError("The game has not started")
    draft = _draft(state, "check_game_end", [Phase.POLICE_ELECTION, Phase.NIGHT, Phase.DAY])
    winner = winner_of(draft)
    if winner is None:
        return state, None
    draft.phase = Phase.ENDED
    draft.step = None
    draft.winner = winner
    draft.ballot = None
    draft.pending_revenge = []
    draft.queue.clear()
    return draft, _event(
        draft, EventType.GAME_ENDED, winner=winner.value,
        roles={pid: role.value for pid, role in draft.roles.items()},
    )


# ── Game Master ───────────────────────────────────────────────────────────────

class GameMaster:
    """
    Holds the current GameState and commits transitions atomically.
    Every committed event lands in the outbox; the orchestrator pops them
    in FIFO order and reacts.
    """

    def __init__(self, state: Optional[GameState] = None, rng: Optional[random.Random] = None):
        self.state = state or GameState()
        self.rng = rng or random.Random()
        self.history: List[GameEvent] = []
        self._outbox: Deque[GameEvent] = deque()

    # ── Outbox ────────────────────────────────────────────────────────────────

    def _commit(self, transition: Transition) -> GameEvent:
        state, event = transition
        self.state = state
        self.history.append(event)
        self._outbox.append(event)
        logger.info(f"[{state.id}] #{event.seq} {event.type.value} (day {event.day}, {event.phase.value})")
        return event

    def has_events(self) -> bool:
        return bool(self._outbox)

    def next_event(self) -> GameEvent:
        return self._outbox.popleft()

    @property
    def is_over(self) -> bool:
        return self.state.phase == Phase.ENDED

    # ── Transitions ───────────────────────────────────────────────────────────

    def add_player(self, player_id: str, name: str, is_human: bool = False) -> GameEvent:
        return self._commit(add_player(self.state, player_id, name, is_human))

    def start_game(self) -> GameEvent:
        return self._commit(start_game(self.state, self.rng))

    def start_police_election(self) -> GameEvent:
        return self._commit(start_police_election(self.state))

    def nominate(self, player_id: str) -> GameEvent:
        return self._commit(nominate(self.state, player_id))

    def resolve_nominations(self) -> GameEvent:
        return self._commit(resolve_nominations(self.state, self.rng))

    def process_next_speaker(self) -> GameEvent:
        return self._commit(process_next_speaker(self.state))

    def start_speaking(self) -> GameEvent:
        return self._commit(start_speaking(self.state))

    def cast_vote(self, voter_id: str, target_id: str) -> GameEvent:
        """Record a vote; the round resolves itself once every living player has voted."""
        event = self._commit(cast_vote(self.state, voter_id, target_id))
        if self.state.ballot.is_complete(self.state.alive_ids()):
            self.process_votes()
        return event

    def process_votes(self) -> GameEvent:
        return self._commit(process_votes(self.state))

    @property
    def vote_open(self) -> bool:
        return self.state.ballot is not None

    def start_night(self) -> GameEvent:
        return self._commit(start_night(self.state))

    def advance_night(self) -> GameEvent:
        return self._commit(advance_night(self.state))

    def werewolves_attack(self, votes: Dict[str, Optional[str]]) -> GameEvent:
        return self._commit(werewolves_attack(self.state, votes))

    def use_antidote(self, witch_id: str) -> GameEvent:
        return self._commit(use_antidote(self.state, witch_id))

    def use_poison(self, witch_id: str, target_id: str) -> GameEvent:
        return self._commit(use_poison(self.state, witch_id, target_id))

    def start_day(self) -> GameEvent:
        return self._commit(start_day(self.state))

    def hunter_shot(self, hunter_id: str, target_id: Optional[str]) -> GameEvent:
        return self._commit(hunter_shot(self.state, hunter_id, target_id))

    def check_game_end(self) -> bool:
        """True (and a game_ended event queued) iff one side has been wiped out."""
        state, event = check_game_end(self.state)
        if event is None:
            return False
        self._commit((state, event))
        logger.info(f"[{state.id}] Game over, winner: {state.winner.value}")
        return True

    # ── Queries ───────────────────────────────────────────────────────────────

    def investigate(self, seer_id: str, target_id: str) -> Role:
        """The seer's night check. Read-only."""
        if self.state.roles.get(seer_id) != Role.SEER or not self.state.is_alive(seer_id):
            raise InvalidTransitionError(f"{seer_id} is not a living seer")
        _require_living(self.state, target_id, "Investigation target")
        return self.state.roles[target_id]

    def candidates(self, exclude: Iterable[str] = ()) -> List[str]:
        excluded = set(exclude)
        return [pid for pid in self.state.alive_ids() if pid not in excluded]
