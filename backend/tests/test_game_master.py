"""State machine transitions, one phase at a time."""
import pytest

from agents.game_master import GameMaster
from conftest import drain, seated_game
from models.errors import (
    GameEndedError,
    IneligibleVoterError,
    InvalidTargetError,
    InvalidTransitionError,
    SetupError,
)
from models.game import EventType, Phase, Role, Step, Winner

W, V, S, WI, H = Role.WEREWOLF, Role.VILLAGER, Role.SEER, Role.WITCH, Role.HUNTER


def types(gm):
    return [e.type for e in drain(gm)]


def into_night(gm):
    drain(gm)
    gm.start_night()
    gm.advance_night()
    drain(gm)


def finish_night(gm):
    """Advance through any remaining night steps and open the day."""
    while gm.state.phase == Phase.NIGHT and gm.state.step is not None:
        gm.advance_night()
    gm.start_day()
    drain(gm)


def speak_all(gm):
    gm.start_speaking()
    while gm.state.step == Step.SPEAKING:
        gm.process_next_speaker()


# ── Setup ─────────────────────────────────────────────────────────────────────

def test_start_needs_three_players():
    gm = GameMaster()
    gm.add_player("a", "A")
    gm.add_player("b", "B")
    with pytest.raises(SetupError):
        gm.start_game()
    assert gm.state.phase == Phase.WAITING


def test_roster_is_frozen_after_start():
    gm = seated_game({"a": W, "b": V, "c": V})
    with pytest.raises(SetupError):
        gm.add_player("d", "D")


def test_start_deals_one_role_per_player():
    gm = GameMaster()
    for pid in ("a", "b", "c", "d", "e", "f"):
        gm.add_player(pid, pid.upper())
    gm.start_game()
    assert set(gm.state.roles) == {"a", "b", "c", "d", "e", "f"}
    assert gm.state.phase == Phase.POLICE_ELECTION
    assert gm.state.day == 0


# ── Police election ───────────────────────────────────────────────────────────

def test_no_nominations_picks_a_random_living_chief():
    gm = seated_game({"a": W, "b": V, "c": V})
    gm.start_police_election()
    assert [gm.process_next_speaker().type for _ in range(4)][-1] == EventType.NOMINATIONS_CLOSED
    event = gm.resolve_nominations()
    assert event.type == EventType.POLICE_CHIEF_ELECTED
    assert event.data["method"] == "random"
    assert gm.state.police_chief in ("a", "b", "c")


def test_only_the_current_speaker_can_nominate():
    gm = seated_game({"a": W, "b": V, "c": V})
    gm.start_police_election()
    gm.process_next_speaker()
    with pytest.raises(InvalidTransitionError):
        gm.nominate("b")
    gm.nominate("a")
    assert gm.state.nominees == ["a"]


def test_resolution_waits_for_every_nominee_turn():
    gm = seated_game({"a": W, "b": V, "c": V})
    gm.start_police_election()
    gm.process_next_speaker()
    with pytest.raises(InvalidTransitionError):
        gm.resolve_nominations()


def test_several_nominees_open_a_police_vote():
    gm = seated_game({"a": W, "b": V, "c": V, "d": V})
    gm.start_police_election()
    for pid in ("a", "b", "c", "d"):
        gm.process_next_speaker()
        if pid in ("b", "d"):
            gm.nominate(pid)
    assert gm.process_next_speaker().type == EventType.NOMINATIONS_CLOSED
    event = gm.resolve_nominations()
    assert event.type == EventType.VOTING_STARTED
    assert event.data["candidates"] == ["b", "d"]
    assert event.data["voters"] == ["a", "b", "c", "d"]

    gm.cast_vote("a", "d")
    gm.cast_vote("b", "b")
    gm.cast_vote("c", "b")
    gm.cast_vote("d", "d")
    # Every living player voted, so the round closed itself
    assert not gm.vote_open
    assert gm.state.police_chief == "d"


def test_police_vote_with_no_votes_leaves_chief_vacant():
    gm = seated_game({"a": W, "b": V, "c": V})
    gm.start_police_election()
    for pid in ("a", "b", "c"):
        gm.process_next_speaker()
        gm.nominate(pid)
    gm.process_next_speaker()
    gm.resolve_nominations()
    event = gm.process_votes()
    assert event.data["method"] == "vacant"
    assert gm.state.police_chief is None
    gm.start_night()
    assert gm.state.phase == Phase.NIGHT


# ── Night ─────────────────────────────────────────────────────────────────────

def test_night_runs_werewolves_then_seer_then_witch():
    gm = seated_game({"w": W, "s": S, "wi": WI, "v1": V, "v2": V})
    drain(gm)
    gm.start_night()
    assert gm.state.day == 1
    assert gm.advance_night().type == EventType.WEREWOLVES_TURN
    kill = gm.werewolves_attack({"w": "v1"})
    assert kill.target == "v1"
    assert not gm.state.is_alive("v1")

    seer = gm.advance_night()
    assert (seer.type, seer.actor) == (EventType.SEER_TURN, "s")
    assert gm.investigate("s", "w") == W

    witch = gm.advance_night()
    assert (witch.type, witch.actor, witch.target) == (EventType.WITCH_TURN, "wi", "v1")
    assert witch.data["can_save"] and witch.data["can_poison"]

    assert gm.advance_night().type == EventType.NIGHT_COMPLETED
    day = gm.start_day()
    assert day.data["deaths"] == [{"id": "v1", "role": "villager"}]
    assert (gm.state.phase, gm.state.step, gm.state.day) == (Phase.DAY, Step.ANNOUNCE, 1)


def test_night_skips_roles_nobody_holds():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V})
    drain(gm)
    gm.start_night()
    gm.advance_night()
    gm.werewolves_attack({"w": "v2"})
    assert gm.advance_night().type == EventType.NIGHT_COMPLETED


def test_night_skips_a_dead_seer():
    gm = seated_game({"w1": W, "w2": W, "s": S, "wi": WI, "v": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w1": "s", "w2": "s"})
    assert gm.advance_night().type == EventType.WITCH_TURN


def test_werewolf_self_votes_and_pack_votes_are_ignored():
    gm = seated_game({"w1": W, "w2": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    kill = gm.werewolves_attack({"w1": "w1", "w2": "w1"})
    assert kill.target is None
    assert gm.state.alive_ids() == ["w1", "w2", "v1", "v2", "v3"]


def test_split_werewolves_kill_the_first_choice():
    gm = seated_game({"w1": W, "w2": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    assert gm.werewolves_attack({"w1": "v3", "w2": "v1"}).target == "v3"


def test_witch_can_save_and_poison_in_one_night():
    gm = seated_game({"w1": W, "w2": W, "s": S, "wi": WI, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w1": "v1", "w2": "v1"})
    gm.advance_night()
    gm.advance_night()

    gm.use_antidote("wi")
    assert gm.state.is_alive("v1")
    gm.use_poison("wi", "w1")
    assert not gm.state.is_alive("w1")
    assert gm.state.witch_potions["wi"].model_dump() == {"antidote": False, "poison": False}

    gm.advance_night()
    assert gm.start_day().data["deaths"] == [{"id": "w1", "role": "werewolf"}]


def test_potions_are_single_use():
    gm = seated_game({"w1": W, "w2": W, "s": S, "wi": WI, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w1": "v1"})
    gm.advance_night()
    gm.advance_night()
    gm.use_antidote("wi")
    with pytest.raises(InvalidTransitionError):
        gm.use_antidote("wi")
    finish_night(gm)

    speak_all(gm)
    gm.process_votes()
    gm.start_night()
    gm.advance_night()
    gm.werewolves_attack({"w1": "v2"})
    gm.advance_night()
    witch = gm.advance_night()
    assert witch.data["can_save"] is False
    assert witch.data["can_poison"] is True


def test_witch_cannot_poison_herself():
    gm = seated_game({"w1": W, "w2": W, "s": S, "wi": WI, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({})
    gm.advance_night()
    witch = gm.advance_night()
    assert witch.data["can_save"] is False
    with pytest.raises(InvalidTargetError):
        gm.use_poison("wi", "wi")
    assert gm.state.witch_potions["wi"].poison


# ── Day ───────────────────────────────────────────────────────────────────────

def test_day_queue_covers_every_living_player_once_then_votes():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V, "v4": V})
    into_night(gm)
    gm.werewolves_attack({"w": "v2"})
    finish_night(gm)

    gm.start_speaking()
    speakers = []
    event = gm.process_next_speaker()
    while event.type == EventType.NEXT_SPEAKER:
        assert gm.state.ballot is None
        speakers.append(event.actor)
        event = gm.process_next_speaker()

    assert speakers == ["w", "v1", "v3", "v4"]
    assert event.type == EventType.VOTING_STARTED
    assert event.data["kind"] == "day"
    assert gm.state.step == Step.VOTING
    assert all(gm.state.players[pid].has_spoken for pid in speakers)


def test_day_vote_eliminates_exactly_one_player():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V, "v4": V})
    into_night(gm)
    gm.werewolves_attack({})
    finish_night(gm)
    speak_all(gm)
    drain(gm)

    for voter, target in [("w", "v1"), ("v1", "w"), ("v3", "w"), ("v4", "v1"), ("v2", "w")]:
        gm.cast_vote(voter, target)
    resolved = [e for e in drain(gm) if e.type == EventType.VOTES_RESOLVED]
    assert len(resolved) == 1
    assert resolved[0].target == "w"
    assert resolved[0].data["role"] == "werewolf"
    assert gm.state.ballot is None
    assert gm.state.dead == ["w"]


def test_start_night_waits_for_the_day_vote():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    gm.werewolves_attack({})
    finish_night(gm)
    with pytest.raises(InvalidTransitionError):
        gm.start_night()


def test_failed_transition_leaves_state_untouched():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    gm.werewolves_attack({"w": "v1"})
    finish_night(gm)
    speak_all(gm)
    drain(gm)

    before = gm.state
    history = len(gm.history)
    with pytest.raises(IneligibleVoterError):
        gm.cast_vote("v1", "w")
    assert gm.state is before
    assert gm.state.ballot.votes == {}
    assert len(gm.history) == history
    assert not gm.has_events()


# ── Hunter ────────────────────────────────────────────────────────────────────

def test_hunter_killed_at_night_shoots_at_dawn():
    gm = seated_game({"w1": W, "w2": W, "hu": H, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    gm.werewolves_attack({"w1": "hu", "w2": "hu"})
    assert gm.state.pending_revenge == []
    finish_night(gm)
    assert gm.state.pending_revenge == ["hu"]

    with pytest.raises(InvalidTransitionError):
        gm.start_speaking()
    event = gm.hunter_shot("hu", "w2")
    assert (event.actor, event.target, event.data["role"]) == ("hu", "w2", "werewolf")
    assert gm.state.pending_revenge == []
    with pytest.raises(InvalidTransitionError):
        gm.hunter_shot("hu", "w1")
    gm.start_speaking()


def test_hunter_saved_by_the_witch_never_shoots():
    gm = seated_game({"w1": W, "w2": W, "hu": H, "wi": WI, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w1": "hu"})
    gm.advance_night()
    gm.use_antidote("wi")
    finish_night(gm)
    assert gm.state.pending_revenge == []


def test_hunter_voted_out_owes_a_shot_before_night():
    gm = seated_game({"w": W, "hu": H, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({})
    finish_night(gm)
    speak_all(gm)
    for voter in ("w", "v1", "v2"):
        gm.cast_vote(voter, "hu")
    gm.cast_vote("hu", "w")
    assert gm.state.pending_revenge == ["hu"]
    with pytest.raises(InvalidTransitionError):
        gm.start_night()
    gm.hunter_shot("hu", None)
    gm.start_night()
    assert gm.state.day == 2


# ── Game end ──────────────────────────────────────────────────────────────────

def test_game_continues_while_both_sides_live():
    gm = seated_game({"w": W, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w": "v1"})
    assert gm.check_game_end() is False
    assert gm.state.phase == Phase.NIGHT


def test_werewolves_win_when_no_villagers_remain():
    gm = seated_game({"w": W, "v1": V, "v2": V})
    into_night(gm)
    gm.werewolves_attack({"w": "v1"})
    finish_night(gm)
    speak_all(gm)
    gm.cast_vote("w", "v2")
    gm.cast_vote("v2", "w")
    assert gm.check_game_end() is True
    assert gm.state.winner == Winner.WEREWOLVES

    ended = [e for e in drain(gm) if e.type == EventType.GAME_ENDED]
    assert ended[0].data["roles"] == {"w": "werewolf", "v1": "villager", "v2": "villager"}
    assert gm.state.to_public()["roles"]["w"] == "werewolf"


def test_villagers_win_when_the_last_werewolf_falls():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    gm.werewolves_attack({})
    finish_night(gm)
    speak_all(gm)
    for voter in ("v1", "v2", "v3"):
        gm.cast_vote(voter, "w")
    gm.cast_vote("w", "v1")
    assert gm.check_game_end() is True
    assert gm.state.winner == Winner.VILLAGERS


def test_nothing_is_allowed_after_the_end():
    gm = seated_game({"w": W, "v1": V, "v2": V, "v3": V})
    into_night(gm)
    gm.werewolves_attack({})
    finish_night(gm)
    speak_all(gm)
    for voter in ("v1", "v2", "v3", "w"):
        gm.cast_vote(voter, "w" if voter != "w" else "v1")
    gm.check_game_end()
    with pytest.raises(GameEndedError):
        gm.start_night()
    with pytest.raises(GameEndedError):
        gm.check_game_end()


def test_roles_stay_hidden_while_playing():
    gm = seated_game({"w": W, "v1": V, "v2": V})
    assert "roles" not in gm.state.to_public()


def test_game_end_check_needs_a_started_game():
    gm = GameMaster()
    with pytest.raises(InvalidTransitionError):
        gm.check_game_end()
