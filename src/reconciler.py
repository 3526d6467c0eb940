"""Reconcile the tracked game record against an observed board.

The observed board comes from scraping a live view, so it can lag, skip
plies, or carry wrong metadata.  Only the piece placement of a snapshot is
trusted; turn, castling and en-passant fields are ignored here.
"""
import re

import chess

from errors import IllegalMoveError, ViewUnavailableError
from position_tracker import placement
from uci_handler import UCIHandler

# Reconciliation outcomes.
STATUS_UNCHANGED    = 'unchanged'
STATUS_INFERRED     = 'inferred_move'
STATUS_FULL_RESYNC  = 'full_resync'
STATUS_CUSTOM_START = 'custom_start'
STATUS_DIVERGENCE   = 'divergence'

_MANUAL_SYNC_HINT = (
    "Use 'reset' to start fresh, or 'position <moves>' to set the move "
    "history manually"
)

# "12." / "12..." prefixes and trailing annotations in scraped SAN lists.
_MOVE_NUMBER_RE = re.compile(r'^\d+\.+')
_ANNOTATION_RE = re.compile(r'[!?]+$')


def canonical_placement(fen):
    """Canonical placement string so equivalent spellings compare equal."""
    field = placement(fen)
    try:
        return chess.BaseBoard(field).board_fen()
    except ValueError:
        return field


def placement_after(board, move):
    """Placement reached by playing *move* on a copy of *board*."""
    child = board.copy(stack=False)
    child.push(move)
    return child.board_fen()


def infer_moves(board, target_placement):
    """All legal moves from *board* whose result has *target_placement*.

    Candidates are returned in python-chess's legal-move enumeration order.
    """
    return [
        move for move in board.legal_moves
        if placement_after(board, move) == target_placement
    ]


def normalize_move_list(moves, board):
    """Convert a scraped move list (SAN or UCI) into UCI moves.

    Each entry is checked against the rules in sequence from *board*
    (which is not modified).

    Returns the list of UCI moves, or None if any entry fails to validate.
    """
    board = board.copy()
    result = []
    for raw in moves:
        if not isinstance(raw, str):
            return None
        text = _ANNOTATION_RE.sub('', _MOVE_NUMBER_RE.sub('', raw.strip()).strip())
        if not text:
            continue
        move = None
        if UCIHandler.validate_uci_move(text):
            candidate = chess.Move.from_uci(text.lower())
            if board.is_legal(candidate):
                move = candidate
        if move is None:
            try:
                move = board.parse_san(text)
            except ValueError:
                return None
        board.push(move)
        result.append(move.uci())
    return result


class ObservationReconciler:
    """Align a PositionTracker with snapshots from a view provider.

    Args:
        tracker: PositionTracker to update.
        view:    Object offering get_board_snapshot() and
                 get_move_list_snapshot() (the latter may return None).
        log:     Callable used for console output.
    """

    def __init__(self, tracker, view, log=print):
        self.tracker = tracker
        self.view = view
        self._print = log

    def reconcile(self, snapshot=None):
        """Absorb one board snapshot.

        Args:
            snapshot: FEN-like string; fetched from the view when omitted.

        Returns:
            dict: {'synced': bool, 'status': STATUS_*, ...} with 'move'
                  for an inferred move, 'moves' for a full re-sync,
                  'start_fen' for a custom start, and 'error' /
                  'suggestion' for a divergence.

        Raises:
            ViewUnavailableError: no snapshot could be obtained.
        """
        if snapshot is None:
            snapshot = self.view.get_board_snapshot()
        if not snapshot:
            raise ViewUnavailableError("Could not read board state")

        target = canonical_placement(snapshot)
        if not self.tracker.move_history:
            return self._reconcile_empty(snapshot, target)
        return self._reconcile_history(snapshot, target)

    # ── Empty history ─────────────────────────────────────────────────────────

    def _reconcile_empty(self, snapshot, target):
        start_board = self.tracker.board()
        if start_board.board_fen() == target:
            return self._result(STATUS_UNCHANGED, snapshot)

        resync = self._adopt_move_list(target, snapshot)
        if resync is not None:
            return resync

        # One ply from a recorded start (the opponent moved first in a
        # fresh game, or replied to a puzzle position).
        inferred = self._infer(start_board, target, snapshot)
        if inferred is not None:
            return inferred

        if target == chess.STARTING_BOARD_FEN:
            self._print("[Sync] ✓ Board at the standard starting position")
            self.tracker.reset()
            return self._result(STATUS_UNCHANGED, snapshot, new_game=True)

        try:
            self.tracker.reset(snapshot)
        except ValueError as exc:
            return self._divergence(
                snapshot, f"Board does not form a usable start position: {exc}"
            )
        self._print(f"[Sync] ✓ Custom starting position detected: {self.tracker.starting_fen}")
        return self._result(
            STATUS_CUSTOM_START, snapshot, start_fen=self.tracker.starting_fen,
        )

    # ── Non-empty history ─────────────────────────────────────────────────────

    def _reconcile_history(self, snapshot, target):
        expected = self.tracker.board()
        if expected.board_fen() == target:
            return self._result(STATUS_UNCHANGED, snapshot)

        inferred = self._infer(expected, target, snapshot)
        if inferred is not None:
            return inferred

        self._print("[Sync] ⚠ Positions diverged — attempting full re-sync...")
        resync = self._adopt_move_list(target, snapshot)
        if resync is not None:
            return resync

        return self._divergence(
            snapshot,
            "Could not detect the opponent move — positions too different",
        )

    # ── Strategies ────────────────────────────────────────────────────────────

    def _infer(self, board, target, snapshot):
        """Single-ply inference.  Ties resolve to the first candidate."""
        candidates = infer_moves(board, target)
        if not candidates:
            return None
        move = candidates[0].uci()
        if len(candidates) > 1:
            self._print(
                f"[Sync] ⚠ {len(candidates)} moves reach the observed board "
                f"({', '.join(m.uci() for m in candidates)}); taking {move}"
            )
        self.tracker.apply_move(move)
        self._print(f"[Sync] 🔄 Detected opponent move: {move}")
        return self._result(STATUS_INFERRED, snapshot, move=move)

    def _adopt_move_list(self, target, snapshot):
        """Rebuild the history from the view's move list when it fully fits."""
        try:
            scraped = self.view.get_move_list_snapshot()
        except Exception as exc:
            self._print(f"[Sync] Could not read move list: {exc}")
            return None
        if not scraped:
            return None

        starts = [self.tracker.starting_fen]
        if self.tracker.starting_fen is not None:
            starts.append(None)
        for start_fen in starts:
            start_board = chess.Board(start_fen) if start_fen else chess.Board()
            moves = normalize_move_list(scraped, start_board)
            if not moves:
                continue
            final = start_board.copy()
            for move in moves:
                final.push_uci(move)
            if final.board_fen() != target:
                continue
            try:
                self.tracker.replace_history(moves, start_fen)
            except (IllegalMoveError, ValueError):
                continue
            self._print(f"[Sync] ✓ Synced position with {len(moves)} extracted move(s)")
            return self._result(
                STATUS_FULL_RESYNC, snapshot, moves=list(moves), move_count=len(moves),
            )
        self._print("[Sync] ⚠ Extracted move list does not match the board")
        return None

    # ── Results ───────────────────────────────────────────────────────────────

    def _result(self, status, snapshot, **extra):
        result = {
            'synced': True,
            'status': status,
            'current_fen': snapshot,
            'expected_fen': self.tracker.fen(),
            'move_count': len(self.tracker.move_history),
        }
        result.update(extra)
        return result

    def _divergence(self, snapshot, message):
        self._print(f"[Sync] ✗ {message}")
        return {
            'synced': False,
            'status': STATUS_DIVERGENCE,
            'error': message,
            'current_fen': snapshot,
            'expected_fen': self.tracker.fen(),
            'move_count': len(self.tracker.move_history),
            'suggestion': _MANUAL_SYNC_HINT,
        }
