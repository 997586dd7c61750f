"""Error taxonomy for the game engine."""


class GameError(Exception):
    """Base class for every engine error. `code` is sent to clients verbatim."""

    code = "GAME_ERROR"


class SetupError(GameError):
    """Too few players, impossible role math, or roster edits after start."""

    code = "SETUP_ERROR"


class IneligibleVoterError(GameError):
    """A dead or unknown player tried to vote."""

    code = "INELIGIBLE_VOTER"


class InvalidTargetError(GameError):
    """The chosen target is not a legal choice for this action."""

    code = "INVALID_TARGET"


class InvalidTransitionError(GameError):
    """The requested operation is not legal in the current phase."""

    code = "INVALID_TRANSITION"


class GameEndedError(InvalidTransitionError):
    """Any transition requested after the game has ended."""

    code = "GAME_ENDED"


class DecisionProviderFailure(GameError):
    """An AI or human decision source raised or timed out."""

    code = "DECISION_FAILED"


class DispatchFailure(GameError):
    """Narration or voice synthesis could not be delivered."""

    code = "DISPATCH_FAILED"
