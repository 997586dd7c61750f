"""
WebSocket Hub — one table, one human, real-time narration.

URL: /ws?playerId={player_id}

Connection flow:
  1. Accept connection and register it under the player id
  2. Send private "connected" message with the public game snapshot
  3. Message loop (_handle_message dispatcher)
  4. On disconnect: drop the connection; the game keeps running and a
     silent human simply times out on each decision

Client → server message types handled here:
  ping          — keep-alive heartbeat → responds with "pong"
  start_game    — seat the caller plus AI players and run the game
  speech_event  — client-side speech capture start/end (logged only)
  utterance     — speech-to-text result; final ones are the human's input
  message       — typed input, same route as a final utterance

Server → client: speaker_info, game_log, current_speaker, game_started,
game_status, game_ended, audio, error (see Orchestrator for ordering).
"""
import asyncio
import json
import logging
import random
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from agents.game_master import GameMaster
from agents.orchestrator import MODERATOR, Dispatcher, Orchestrator
from config import settings
from models.errors import DispatchFailure, GameError
from services.tts_service import SAMPLE_RATE, tts_service, voice_for
from utils.audio import pcm_duration, pcm_frames

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks active WebSocket connections by player id.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    async def connect(self, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._connections[player_id] = ws
        logger.debug(f"{player_id} connected ({self.count()} total)")

    def disconnect(self, player_id: str) -> None:
        self._connections.pop(player_id, None)

    def count(self) -> int:
        return len(self._connections)

    async def send_to(self, player_id: str, message: Dict[str, Any]) -> None:
        """Send a private message to a single player."""
        ws = self._connections.get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"send_to {player_id} failed: {exc}")
                self.disconnect(player_id)

    async def broadcast(self, message: Dict[str, Any], audience: Optional[List[str]] = None) -> None:
        """Send to every connection, or only to the players in `audience`."""
        for pid in list(self._connections):
            if audience is None or pid in audience:
                await self.send_to(pid, message)

    async def broadcast_audio(self, pcm: bytes, audience: Optional[List[str]] = None) -> None:
        """Stream 16-bit PCM as base64 chunks."""
        for frame in pcm_frames(pcm):
            await self.broadcast({"type": "audio", "data": frame, "sampleRate": SAMPLE_RATE}, audience)


# Module-level singleton
manager = ConnectionManager()


class WebSocketDispatcher(Dispatcher):
    """Orchestrator output over the connection manager, with Gemini TTS for voice."""

    def __init__(self, connections: ConnectionManager, voices: Optional[Dict[str, str]] = None):
        self.connections = connections
        self.voices = voices or {}

    async def publish(self, message: Dict[str, Any], audience: Optional[List[str]] = None) -> None:
        await self.connections.broadcast(message, audience)

    async def synthesize(self, text: str, speaker: str, audience: Optional[List[str]] = None) -> None:
        voice = settings.narrator_voice if speaker == MODERATOR else self.voices.get(speaker)
        pcm = await tts_service.synthesize(text, voice)
        if pcm is None:
            return
        logger.debug(f"Voicing {pcm_duration(pcm, SAMPLE_RATE):.1f}s of audio for {speaker}")
        try:
            await self.connections.broadcast_audio(pcm, audience)
        except Exception as exc:
            raise DispatchFailure(f"Audio delivery failed: {exc}") from exc


# ── Game session ───────────────────────────────────────────────────────────────

class GameSession:
    """The single game this server hosts: its orchestrator and the task running it."""

    def __init__(self):
        self.orchestrator: Optional[Orchestrator] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self, human_player_id: str, human_name: str = "Human Player") -> Orchestrator:
        if self.running:
            raise GameError("A game is already in progress")

        dispatcher = WebSocketDispatcher(manager)
        orchestrator = Orchestrator(dispatcher, GameMaster(rng=random.Random(settings.rng_seed)))
        orchestrator.setup_table(human_player_id, human_name)
        dispatcher.voices = {pid: voice_for(i) for i, pid in enumerate(orchestrator.gm.state.players)}

        self.orchestrator = orchestrator
        self.task = asyncio.create_task(self._run(orchestrator))
        logger.info(f"[{orchestrator.game_id}] Game started for {human_player_id}")
        return orchestrator

    @staticmethod
    async def _run(orchestrator: Orchestrator) -> None:
        try:
            await orchestrator.run()
        except Exception:
            # Already logged by the orchestrator; tell the table the game is gone
            await manager.broadcast({
                "type": "error", "message": "The game stopped unexpectedly", "code": "SERVER_ERROR",
            })

    def reset(self) -> None:
        if self.running:
            self.task.cancel()
        self.orchestrator = None
        self.task = None


session = GameSession()


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws")
async def websocket_endpoint(
    ws: WebSocket,
    playerId: str = Query(..., description="Client-chosen player id"),
):
    await manager.connect(playerId, ws)

    orchestrator = session.orchestrator
    await manager.send_to(playerId, {
        "type": "connected",
        "playerId": playerId,
        "gameState": orchestrator.gm.state.to_public() if orchestrator else None,
    })

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(playerId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            msg_type = data.get("type", "")
            # Accept both { type, data: { ... } } and flat { type, ... }
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else data
            await _handle_message(playerId, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(playerId)
        logger.info(f"{playerId} disconnected")


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(player_id: str, msg_type: str, data: Dict[str, Any]) -> None:
    try:
        await _dispatch_message(player_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        await manager.send_to(player_id, {"type": "error", "message": str(exc), "code": exc.code})
    except Exception:
        logger.exception(f"Unhandled error in _handle_message (type={msg_type})")
        await manager.send_to(player_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR",
        })


async def _dispatch_message(player_id: str, msg_type: str, data: Dict[str, Any]) -> None:
    if msg_type == "ping":
        await manager.send_to(player_id, {"type": "pong"})

    elif msg_type == "start_game":
        await _on_start_game(player_id, data)

    elif msg_type == "speech_event":
        logger.debug(f"{player_id} speech {data.get('status')}")

    elif msg_type == "utterance":
        _on_input(player_id, data.get("text", ""), bool(data.get("isFinal", True)))

    elif msg_type == "message":
        _on_input(player_id, data.get("text", ""), True)

    else:
        await manager.send_to(player_id, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })


# ── Handlers ──────────────────────────────────────────────────────────────────

async def _on_start_game(player_id: str, data: Dict[str, Any]) -> None:
    # The human seat belongs to the connection; a payload id must agree with it
    requested = data.get("playerId")
    if requested and requested != player_id:
        await manager.send_to(player_id, {
            "type": "error",
            "message": f"Connected as '{player_id}', cannot start a game as '{requested}'",
            "code": "PLAYER_MISMATCH",
        })
        return
    if session.running:
        await manager.send_to(player_id, {
            "type": "error", "message": "A game is already in progress", "code": "GAME_IN_PROGRESS",
        })
        return
    session.start(player_id, data.get("name") or "Human Player")


def _on_input(player_id: str, text: str, is_final: bool) -> None:
    orchestrator = session.orchestrator
    if orchestrator is None or not session.running:
        logger.debug(f"Input from {player_id} with no game running")
        return
    if not orchestrator.handle_utterance(player_id, text, is_final) and is_final:
        logger.debug(f"[{orchestrator.game_id}] Input from {player_id} was not awaited")
