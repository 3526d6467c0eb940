"""Authoritative record of the game being played.

The tracker owns the starting position and the ordered list of moves
applied to it.  The current position is always rebuilt by replaying that
list through python-chess, never stored on its own.
"""
import chess

from errors import DesynchronizationError, IllegalMoveError


def color_name(turn):
    """python-chess colour (bool) → 'white' / 'black'."""
    return 'white' if turn == chess.WHITE else 'black'


def placement(fen):
    """Piece-placement field of a FEN-like string ('' for None)."""
    if not fen:
        return ''
    return fen.split()[0]


def parse_move(move):
    """Parse a UCI move string into a chess.Move, or raise IllegalMoveError."""
    try:
        return chess.Move.from_uci(move.strip().lower())
    except (ValueError, AttributeError):
        raise IllegalMoveError(move) from None


class PositionTracker:
    """Single source of truth for what has been played.

    Attributes:
        starting_fen: Custom starting FEN, or None for the standard start.
        move_history: List of UCI moves applied from the starting position.
    """

    def __init__(self, on_new_game=None):
        # Called with no arguments whenever the starting position changes
        # identity (reset / custom start) so the engine can be told.
        self.on_new_game = on_new_game
        self.starting_fen = None
        self.move_history = []
        self._cached_board = None

    # ── Mutations ─────────────────────────────────────────────────────────────

    def reset(self, starting_fen=None):
        """Clear the history and set a new starting position.

        Args:
            starting_fen: FEN of a custom start (puzzle / from-position), or
                          None for the standard initial position.

        Raises:
            ValueError: *starting_fen* is not a usable position.
        """
        if starting_fen is not None:
            starting_fen = self.normalize_fen(starting_fen)
        self.starting_fen = starting_fen
        self.move_history = []
        self._cached_board = None
        if self.on_new_game is not None:
            self.on_new_game()

    def apply_move(self, move):
        """Validate *move* against the current position and append it.

        Returns the normalised UCI string that was appended.

        Raises:
            IllegalMoveError: the oracle rejected the move; history unchanged.
        """
        board = self.board()
        parsed = parse_move(move)
        if not board.is_legal(parsed):
            raise IllegalMoveError(move, board.fen())
        uci = parsed.uci()
        board.push(parsed)
        self.move_history.append(uci)
        self._cached_board = board
        return uci

    def replace_history(self, moves, starting_fen=None):
        """Replace the whole record after validating every move in order.

        Nothing changes unless the entire sequence is legal.

        Raises:
            IllegalMoveError: the first move that failed to validate.
            ValueError:       *starting_fen* is not a usable position.
        """
        if starting_fen is not None:
            starting_fen = self.normalize_fen(starting_fen)
        board = self._start_board(starting_fen)
        applied = []
        for move in moves:
            parsed = parse_move(move)
            if not board.is_legal(parsed):
                raise IllegalMoveError(move, board.fen())
            board.push(parsed)
            applied.append(parsed.uci())

        start_changed = starting_fen != self.starting_fen
        self.starting_fen = starting_fen
        self.move_history = applied
        self._cached_board = board
        if start_changed and self.on_new_game is not None:
            self.on_new_game()
        return list(applied)

    # ── Derived position ──────────────────────────────────────────────────────

    def board(self):
        """Return a fresh copy of the current position.

        Raises:
            DesynchronizationError: the recorded history no longer replays.
        """
        if self._cached_board is None:
            self._cached_board = self._replay()
        return self._cached_board.copy()

    def fen(self):
        return self.board().fen()

    def turn(self):
        """Side to move ('white' or 'black') in the derived position."""
        return color_name(self.board().turn)

    def is_custom_start(self):
        return self.starting_fen is not None

    def start_fen(self):
        """FEN of the starting position (standard FEN when not custom)."""
        return self.starting_fen or chess.STARTING_FEN

    def outcome(self):
        """Return a python-chess Outcome when the game is over, else None."""
        return self.board().outcome(claim_draw=False)

    def summary(self):
        """Describe the terminal state of the derived position (or None)."""
        board = self.board()
        if board.is_checkmate():
            winner = 'Black' if board.turn == chess.WHITE else 'White'
            return f"{winner} wins by checkmate"
        if board.is_stalemate():
            return "Draw by stalemate"
        if board.is_insufficient_material():
            return "Draw by insufficient material"
        outcome = board.outcome(claim_draw=True)
        if outcome is not None:
            return f"Draw ({outcome.termination.name.lower().replace('_', ' ')})"
        return None

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def normalize_fen(fen):
        """Parse *fen* into a valid position and return its canonical FEN.

        Castling rights that the placement contradicts are dropped, since
        the observed metadata is not trusted.

        Raises:
            ValueError: the position is not a legal chess position.
        """
        board = chess.Board(fen.strip())
        board.castling_rights = board.clean_castling_rights()
        if not board.is_valid():
            raise ValueError(f"Invalid position: {fen} ({board.status()!r})")
        return board.fen()

    @staticmethod
    def _start_board(starting_fen):
        if starting_fen is None:
            return chess.Board()
        return chess.Board(starting_fen)

    def _replay(self):
        board = self._start_board(self.starting_fen)
        for index, move in enumerate(self.move_history):
            parsed = chess.Move.from_uci(move)
            if not board.is_legal(parsed):
                raise DesynchronizationError(
                    f"Move {index + 1} ({move}) in the recorded history no "
                    f"longer replays from {board.fen()}"
                )
            board.push(parsed)
        return board
