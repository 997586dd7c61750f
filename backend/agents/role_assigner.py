"""
Role Assignment — deterministic role math with a randomized shuffle.

Responsibilities:
- Compute role counts from the table size (ratio based, no lookup table)
- Build the flat role pool and Fisher–Yates shuffle it
- Hand out one role per player in roster order
- Provide names and personalities for the AI seats that fill the table

Called once by the game master when the game starts.
"""
import logging
import math
import random
from typing import Dict, List, Optional

from models.errors import SetupError
from models.game import Role

logger = logging.getLogger(__name__)


# ── Static AI cast ────────────────────────────────────────────────────────────
# Enough seats for a 20-player table. Personalities are prompt fragments.
_AI_CAST: List[Dict[str, str]] = [
    {"name": "Garin", "personality": "You are cautious and analytical, carefully considering each decision."},
    {"name": "Elara", "personality": "You are bold and outspoken, not afraid to voice your suspicions."},
    {"name": "Theron", "personality": "You are diplomatic and strategic, building alliances when possible."},
    {"name": "Mira", "personality": "You are observant and quiet, speaking only when you have something important to say."},
    {"name": "Aldric", "personality": "You are charismatic and persuasive, good at influencing others."},
    {"name": "Rowena", "personality": "You are sharp-tongued and impatient with vague answers."},
    {"name": "Bram", "personality": "You are warm and trusting until someone gives you a reason not to be."},
    {"name": "Isolde", "personality": "You are methodical and keep careful track of who said what."},
    {"name": "Corvin", "personality": "You are theatrical and enjoy stirring the pot."},
    {"name": "Wren", "personality": "You are nervous under pressure but fiercely loyal to your friends."},
    {"name": "Hale", "personality": "You are blunt and vote with your gut."},
    {"name": "Sable", "personality": "You are calm and speak in short, measured sentences."},
    {"name": "Osric", "personality": "You are suspicious of anyone who talks too much."},
    {"name": "Linnea", "personality": "You are curious and ask pointed questions."},
    {"name": "Fenn", "personality": "You are a peacemaker who hates needless accusations."},
    {"name": "Marisol", "personality": "You are competitive and hate losing a vote."},
    {"name": "Tobin", "personality": "You are easily swayed by a confident argument."},
    {"name": "Greer", "personality": "You are stubborn and rarely change your mind."},
    {"name": "Ansel", "personality": "You are playful and crack jokes to ease the tension."},
    {"name": "Vesna", "personality": "You are secretive and reveal little about yourself."},
]


def compute_role_counts(n: int) -> Dict[Role, int]:
    """
    Role counts for an n-player table:
      werewolves = ceil(n/3); seer and witch from 6 players; hunter from 9.
    Raises SetupError if the special roles would not fit.
    """
    counts: Dict[Role, int] = {
        Role.WEREWOLF: math.ceil(n / 3),
        Role.SEER: 1 if n >= 6 else 0,
        Role.WITCH: 1 if n >= 6 else 0,
        Role.HUNTER: 1 if n >= 9 else 0,
    }
    villagers = n - sum(counts.values())
    if villagers < 0:
        raise SetupError(f"Cannot build roles for {n} players: special roles exceed player count")
    counts[Role.VILLAGER] = villagers
    return counts


def build_role_pool(n: int) -> List[Role]:
    """Flat, unshuffled pool with one entry per seat."""
    counts = compute_role_counts(n)
    pool: List[Role] = []
    for role in (Role.WEREWOLF, Role.VILLAGER, Role.SEER, Role.WITCH, Role.HUNTER):
        pool.extend([role] * counts[role])
    return pool


def shuffle_roles(pool: List[Role], rng: random.Random) -> List[Role]:
    """Fisher–Yates shuffle; returns a new list."""
    roles = list(pool)
    for i in range(len(roles) - 1, 0, -1):
        j = rng.randint(0, i)
        roles[i], roles[j] = roles[j], roles[i]
    return roles


class RoleAssigner:
    """Deterministic role math, randomized deal."""

    def assign(self, player_ids: List[str], rng: Optional[random.Random] = None) -> Dict[str, Role]:
        """Deal one role per player in roster order."""
        rng = rng or random.Random()
        pool = build_role_pool(len(player_ids))
        roles = shuffle_roles(pool, rng)
        assignments = dict(zip(player_ids, roles))
        counts = {role.value: count for role, count in compute_role_counts(len(player_ids)).items()}
        logger.info(f"Dealt {len(player_ids)} roles: {counts}")
        return assignments

    def ai_cast(self, count: int, rng: Optional[random.Random] = None) -> List[Dict[str, str]]:
        """Pick `count` distinct AI names and personalities."""
        if count > len(_AI_CAST):
            raise SetupError(f"At most {len(_AI_CAST)} AI players are supported, got {count}")
        rng = rng or random.Random()
        return rng.sample(_AI_CAST, count)


# Module-level singleton
role_assigner = RoleAssigner()
