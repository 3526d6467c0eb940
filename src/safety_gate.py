"""Turn and safety checks around every engine query and played move.

The observed board updates asynchronously, so "whose turn is it" is
re-derived from independent signals each time, and any disagreement stops
the iteration before the engine is asked anything.
"""
import time

from errors import MoveRejectedError
from position_tracker import parse_move
from reconciler import canonical_placement, placement_after

# Gate rejection reasons.
REASON_VIEW_UNAVAILABLE   = 'view_unavailable'
REASON_NO_TURN            = 'no_turn_indicator'
REASON_NOT_OUR_TURN       = 'not_our_turn'
REASON_TURN_MISMATCH      = 'turn_mismatch'
REASON_PLACEMENT_MISMATCH = 'placement_mismatch'
REASON_REPEAT_POSITION    = 'repeat_position'
REASON_GAME_OVER          = 'game_over'


def snapshot_turn(snapshot):
    """Side to move according to a FEN-like snapshot, or None."""
    if not snapshot:
        return None
    fields = snapshot.split()
    if len(fields) < 2:
        return None
    return {'w': 'white', 'b': 'black'}.get(fields[1].lower())


class TurnSafetyGate:
    """Last line of defence before an engine query and before recording a move.

    Args:
        tracker:         PositionTracker holding the game record.
        view:            Board snapshot provider.
        settle_delay:    Seconds to wait between post-move snapshot checks.
        verify_attempts: How many post-move snapshots to examine.
    """

    def __init__(self, tracker, view, settle_delay=0.3, verify_attempts=5,
                 log=print, sleep=time.sleep):
        self.tracker = tracker
        self.view = view
        self.settle_delay = settle_delay
        self.verify_attempts = verify_attempts
        self._print = log
        self._sleep = sleep

    # ── Before the search ─────────────────────────────────────────────────────

    def check(self, playing_color, snapshot=None):
        """Re-derive the turn from the view and from the game record.

        Returns:
            dict: {'ok': bool, 'reason': str or None, 'snapshot': str,
                   'turn': str or None}
        """
        if snapshot is None:
            snapshot = self.view.get_board_snapshot()
        if not snapshot:
            return self._reject(REASON_VIEW_UNAVAILABLE, snapshot)

        observed = snapshot_turn(snapshot)
        if observed is None:
            return self._reject(REASON_NO_TURN, snapshot)
        if observed != playing_color:
            return self._reject(REASON_NOT_OUR_TURN, snapshot, observed)

        board = self.tracker.board()
        expected = 'white' if board.turn else 'black'
        if expected != observed:
            return self._reject(REASON_TURN_MISMATCH, snapshot, observed)
        if board.board_fen() != canonical_placement(snapshot):
            return self._reject(REASON_PLACEMENT_MISMATCH, snapshot, observed)
        if board.is_game_over():
            return self._reject(REASON_GAME_OVER, snapshot, observed)

        return {'ok': True, 'reason': None, 'snapshot': snapshot, 'turn': observed}

    def authorize(self, playing_color, position_command, last_queried):
        """Run the full pre-search gate for *position_command*.

        Checks the turn against a fresh snapshot, refuses to re-query the
        position that was last sent, then takes one more snapshot right
        before the engine is called and checks again.
        """
        first = self.check(playing_color)
        if not first['ok']:
            return first

        if position_command == last_queried:
            return self._reject(REASON_REPEAT_POSITION, first['snapshot'], first['turn'])

        second = self.check(playing_color)
        if not second['ok']:
            self._print(f"[Gate] Board changed during sync ({second['reason']}) — skipping")
        return second

    # ── After the move ────────────────────────────────────────────────────────

    def verify_move(self, move, before_snapshot, playing_color):
        """Confirm the view registered *move*.

        The board must show the tracked position with *move* played (not
        merely a placement different from *before_snapshot*), and the turn
        indicator must have passed to the opponent.

        Returns the snapshot that confirmed the move.

        Raises:
            MoveRejectedError: the conditions did not hold within the attempts.
        """
        before = canonical_placement(before_snapshot)
        expected = placement_after(self.tracker.board(), parse_move(move))
        reason = "board unchanged"
        for _ in range(self.verify_attempts):
            self._sleep(self.settle_delay)
            snapshot = self.view.get_board_snapshot()
            if not snapshot or canonical_placement(snapshot) == before:
                reason = "board unchanged"
                continue
            if canonical_placement(snapshot) != expected:
                reason = "board shows a different move"
                continue
            turn = snapshot_turn(snapshot)
            if turn is not None and turn != playing_color:
                return snapshot
            reason = "turn did not pass to the opponent"
        raise MoveRejectedError(move, reason)

    @staticmethod
    def _reject(reason, snapshot, turn=None):
        return {'ok': False, 'reason': reason, 'snapshot': snapshot, 'turn': turn}
