"""Exception types shared by the engine bridge components."""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


# ── Engine process ───────────────────────────────────────────────────────────

class EngineError(BridgeError):
    """Something went wrong talking to the UCI engine subprocess."""


class EngineStartupError(EngineError):
    """The engine could not be launched, died, or never acknowledged."""


class EngineTimeoutError(EngineError):
    """A search did not produce a 'bestmove' line within its bound."""


class EngineBusyError(EngineError):
    """A search was requested while another one is still outstanding."""


# ── Game record / synchronisation ───────────────────────────────────────────

class IllegalMoveError(BridgeError):
    """The rules oracle rejected a move before it reached the history."""

    def __init__(self, move, fen=None):
        self.move = move
        self.fen = fen
        detail = f" in position {fen}" if fen else ""
        super().__init__(f"Illegal move '{move}'{detail}")


class DesynchronizationError(BridgeError):
    """The tracked game record and the observed board cannot be reconciled."""


class MoveRejectedError(BridgeError):
    """A move was executed but the board did not register it."""

    def __init__(self, move, reason):
        self.move = move
        self.reason = reason
        super().__init__(f"Move {move} rejected by the board: {reason}")


class ViewUnavailableError(BridgeError):
    """The board snapshot provider returned nothing."""


# ── Operator commands ────────────────────────────────────────────────────────

class CommandError(BridgeError):
    """An operator command failed.

    Attributes:
        reason:     Machine-readable slug, e.g. 'engine_not_enabled'.
        suggestion: Optional remedial command for the operator.
    """

    def __init__(self, reason, message, suggestion=None):
        self.reason = reason
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def to_dict(self):
        result = {
            'success': False,
            'error': self.message,
            'reason': self.reason,
        }
        if self.suggestion:
            result['suggestion'] = self.suggestion
        return result
