"""
Game HTTP endpoints.

Routes:
  GET  /api/game                      — Public game state (roles hidden until the end)
  GET  /api/game/roles/{player_id}    — A player's own role
  GET  /api/game/events               — Event log (public only, or all post-game)

The game itself is started over the WebSocket (`start_game`).
"""
import logging

from fastapi import APIRouter, HTTPException, Query

from agents.orchestrator import Orchestrator
from models.game import EventType, Phase
from routers.ws_router import session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["game"])

# Events whose content is announced to the whole table while the game runs
PUBLIC_EVENTS = {
    EventType.GAME_STARTED,
    EventType.POLICE_ELECTION_STARTED,
    EventType.NOMINATION_RECORDED,
    EventType.VOTING_STARTED,
    EventType.POLICE_CHIEF_ELECTED,
    EventType.NIGHT_STARTED,
    EventType.DAY_STARTED,
    EventType.VOTES_RESOLVED,
    EventType.HUNTER_SHOT,
    EventType.GAME_ENDED,
}


def _require_game() -> Orchestrator:
    if session.orchestrator is None:
        raise HTTPException(status_code=404, detail="No game has been started")
    return session.orchestrator


@router.get("/game")
async def get_game():
    """
    Public game state.
    Player roles are NOT included until the game has ended.
    """
    orchestrator = _require_game()
    return orchestrator.gm.state.to_public()


@router.get("/game/roles/{player_id}")
async def get_role(player_id: str):
    state = _require_game().gm.state
    if player_id not in state.players:
        raise HTTPException(status_code=404, detail="Player not found in this game")
    role = state.role_of(player_id)
    if role is None:
        raise HTTPException(status_code=409, detail="Roles have not been assigned yet")
    return {"player_id": player_id, "name": state.players[player_id].name, "role": role.value}


@router.get("/game/events")
async def get_events(
    visible_only: bool = Query(
        True, description="True = public events only; False = full log (post-game reveal)"
    ),
):
    """
    Game event log.
    During play: only events the table has heard about.
    After game ends: set visible_only=false for the full log, night actions included.
    """
    orchestrator = _require_game()
    if not visible_only and orchestrator.gm.state.phase != Phase.ENDED:
        raise HTTPException(
            status_code=403,
            detail="Full event log is only available after the game has ended.",
        )

    events = orchestrator.gm.history
    if visible_only:
        events = [e for e in events if e.type in PUBLIC_EVENTS]
    return {
        "game_id": orchestrator.game_id,
        "events": [
            {
                "seq": e.seq,
                "type": e.type.value,
                "day": e.day,
                "phase": e.phase.value,
                "actor": e.actor,
                "target": e.target,
                "timestamp": e.timestamp.isoformat(),
            }
            for e in events
        ],
    }
