"""Autoplay loop: sync → gate → search → execute → verify → record.

Two producers drive the loop: a fixed-interval timer thread and board-change
events from the view.  Both call trigger(); a non-blocking lock lets exactly
one iteration run at a time and drops triggers that arrive meanwhile.
"""
import threading
import traceback

from errors import (
    BridgeError,
    DesynchronizationError,
    IllegalMoveError,
    MoveRejectedError,
)
from position_tracker import parse_move
from reconciler import STATUS_CUSTOM_START, STATUS_FULL_RESYNC
from safety_gate import REASON_NOT_OUR_TURN, REASON_REPEAT_POSITION
from uci_handler import UCIHandler

STATE_DISABLED = 'disabled'
STATE_IDLE     = 'idle'
STATE_BUSY     = 'busy'

# Gate reasons that are routine while waiting and not worth printing.
_QUIET_REASONS = (REASON_NOT_OUR_TURN, REASON_REPEAT_POSITION)


def orientation_color(orientation):
    """Side shown at the bottom of the board, from get_orientation()."""
    if not orientation:
        return None
    color = orientation.get('bottom_color')
    return color if color in ('white', 'black') else None


class AutoplayController:
    """Plays engine moves whenever it is our turn on the observed board.

    Args:
        tracker:       PositionTracker (the game record).
        reconciler:    ObservationReconciler bound to the same tracker.
        gate:          TurnSafetyGate bound to the same tracker.
        view:          View snapshot provider (is_game_active, get_orientation).
        executor:      Move executor with execute(move_dict).
        get_engine:    Callable returning the current EngineManager or None.
        poll_interval: Seconds between timer-driven iterations.
    """

    def __init__(self, tracker, reconciler, gate, view, executor, get_engine,
                 poll_interval=0.25, log=print):
        self.tracker = tracker
        self.reconciler = reconciler
        self.gate = gate
        self.view = view
        self.executor = executor
        self.get_engine = get_engine
        self.poll_interval = poll_interval
        self._print = log

        # ── AutoplayState ─────────────────────────────────────────────────────
        self.enabled = False
        self.playing_color = 'white'
        self.auto_color = False
        self.last_queried = None
        self._busy = threading.Lock()

        self._paused = False
        self._last_report = None
        self._timer_thread = None
        self._stop_event = threading.Event()

    # ── Enable / disable ──────────────────────────────────────────────────────

    @property
    def busy(self):
        return self._busy.locked()

    @property
    def state(self):
        if not self.enabled:
            return STATE_DISABLED
        return STATE_BUSY if self.busy else STATE_IDLE

    def enable(self, color=None, start_timer=True):
        """Turn autoplay on.

        Args:
            color: 'white' / 'black' to play a fixed side, or None to follow
                   the board orientation (the side shown at the bottom).
        """
        if color is None:
            self.auto_color = True
            detected = orientation_color(self.view.get_orientation())
            if detected:
                self.playing_color = detected
        else:
            self.auto_color = False
            self.playing_color = color
        self.enabled = True
        self._paused = False
        self._last_report = None
        self.last_queried = None

        mode = "auto-detect" if self.auto_color else "fixed"
        self._print(f"[Autoplay] 🤖 Enabled — playing as {self.playing_color} ({mode})")
        if start_timer:
            self._start_timer()

    def disable(self):
        self.enabled = False
        self._stop_timer()
        self._print("[Autoplay] ⏹ Disabled")

    def status(self):
        return {
            'enabled': self.enabled,
            'state': self.state,
            'color': self.playing_color,
            'auto_color': self.auto_color,
            'last_queried': self.last_queried,
            'poll_interval': self.poll_interval,
        }

    # ── Triggers ──────────────────────────────────────────────────────────────

    def _start_timer(self):
        self._stop_timer()
        self._stop_event = threading.Event()
        self._timer_thread = threading.Thread(
            target=self._timer_loop, args=(self._stop_event,), daemon=True,
        )
        self._timer_thread.start()

    def _stop_timer(self):
        self._stop_event.set()
        thread = self._timer_thread
        self._timer_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _timer_loop(self, stop_event):
        """Background thread: fallback fixed-interval trigger."""
        while not stop_event.wait(self.poll_interval):
            self.trigger()

    def notify_board_changed(self):
        """Event-driven trigger from the view's change observer."""
        self.trigger()

    def trigger(self):
        """Run one iteration unless one is already running.

        Returns the iteration outcome dict, or {'action': 'dropped'} when
        another iteration held the busy flag.
        """
        if not self.enabled:
            return {'action': 'disabled'}
        if not self._busy.acquire(blocking=False):
            return {'action': 'dropped'}
        try:
            return self._iterate()
        except MoveRejectedError as exc:
            self._report(f"[Autoplay] ⚠ {exc}")
            return {'action': 'rejected', 'move': exc.move, 'error': str(exc)}
        except BridgeError as exc:
            self._report(f"[Autoplay] ✗ {type(exc).__name__}: {exc}")
            return {'action': 'error', 'error': str(exc)}
        except Exception as exc:
            self._report(f"[Autoplay] ✗ Unexpected error: {exc}")
            traceback.print_exc()
            return {'action': 'error', 'error': str(exc)}
        finally:
            self._busy.release()

    # ── One iteration ─────────────────────────────────────────────────────────

    def _iterate(self):
        if not self.view.is_game_active():
            if not self._paused:
                self._paused = True
                self._print("[Autoplay] ⏸ Game not active — autoplay paused")
                summary = self.tracker.summary()
                if summary:
                    self._print(f"[Autoplay] Result: {summary}")
            return {'action': 'paused'}
        if self._paused:
            self._paused = False
            self._print("[Autoplay] ▶ Game active — autoplay resumed")

        sync = self.reconciler.reconcile()

        # A flipped board in auto mode is a new position even when the old
        # history no longer reconciles against it.
        if self.auto_color:
            detected = orientation_color(self.view.get_orientation())
            if detected and detected != self.playing_color:
                self._print(
                    f"[Autoplay] Board orientation changed: now playing "
                    f"{detected} — treating as a new position"
                )
                self.playing_color = detected
                self.tracker.reset()
                self.last_queried = None
                self.reconciler.reconcile()
                return {'action': 'new_position', 'color': detected}

        if not sync['synced']:
            raise DesynchronizationError(f"{sync['error']}. {sync['suggestion']}")
        if sync['status'] in (STATUS_CUSTOM_START, STATUS_FULL_RESYNC) or sync.get('new_game'):
            self.last_queried = None

        engine = self.get_engine()
        if engine is None or not engine.is_ready():
            self._report("[Autoplay] ✗ Engine not enabled or not ready")
            return {'action': 'skipped', 'reason': 'engine_not_ready'}

        starting_fen = self.tracker.starting_fen
        moves = list(self.tracker.move_history)
        position_command = UCIHandler.position_command(starting_fen, moves)
        verdict = self.gate.authorize(self.playing_color, position_command, self.last_queried)
        if not verdict['ok']:
            if verdict['reason'] not in _QUIET_REASONS:
                self._report(f"[Gate] Skipping search: {verdict['reason']}")
            return {'action': 'skipped', 'reason': verdict['reason']}

        self._last_report = None
        self._print(
            f"[Autoplay] 🤖 Our turn ({self.playing_color}) — "
            f"{len(moves)} move(s) played, searching ({engine.search_config_str()})"
        )
        self.last_queried = position_command
        engine.set_position(starting_fen, moves)
        result = engine.search(turn=self.playing_color)
        best = result.get('move')
        if not best:
            self._print("[Autoplay] ⚠ Engine returned no move — game may be over")
            return {'action': 'skipped', 'reason': 'no_move'}

        board = self.tracker.board()
        if not board.is_legal(parse_move(best)):
            raise IllegalMoveError(best, board.fen())

        self._print(f"[Engine] Playing: {best} (engine={result.get('think_ms', 0)}ms)")
        self.executor.execute(UCIHandler.parse_uci_move(best))
        self.gate.verify_move(best, verdict['snapshot'], self.playing_color)

        self.tracker.apply_move(best)
        self.last_queried = None
        self._print(f"[Autoplay] ✓ Move {len(self.tracker.move_history)}. {best} confirmed")
        summary = self.tracker.summary()
        if summary:
            self._print(f"[Autoplay] 🏁 {summary}")
        return {'action': 'played', 'move': best, 'ponder': result.get('ponder')}

    def _report(self, message):
        """Print *message* unless it repeats the previous report."""
        if message != self._last_report:
            self._last_report = message
            self._print(message)
