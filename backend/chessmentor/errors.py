"""Error taxonomy shared by the session engine and the HTTP layer."""

from __future__ import annotations


class ChessMentorError(Exception):
    """Base class for recoverable domain errors."""

    code = "chessmentor_error"


class IllegalMoveError(ChessMentorError):
    code = "illegal_move"

    def __init__(self, move: str, fen: str | None = None) -> None:
        super().__init__(f"Illegal move: {move}")
        self.move = move
        self.fen = fen


class SessionStateError(ChessMentorError):
    """The operation is not allowed in the session's current state."""

    code = "invalid_state"


class SessionBusyError(SessionStateError):
    """A previous move is still being analysed."""

    code = "session_busy"


class EvaluatorUnavailableError(ChessMentorError):
    code = "evaluator_unavailable"


class MentorServiceError(ChessMentorError):
    code = "mentor_unavailable"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnsupportedModelError(MentorServiceError):
    code = "mentor_model_unsupported"

    def __init__(self, model: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code)
        self.model = model


class StalePositionResult(ChessMentorError):
    """A late analysis result no longer matches the live position.

    Raised and swallowed inside the analysis pipeline; never reaches the user.
    """

    code = "stale_result"


class PersistenceError(ChessMentorError):
    code = "persistence_failed"
