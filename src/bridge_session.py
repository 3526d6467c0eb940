"""Session context: game record, engine session, autoplay and operator commands.

One BridgeSession is built when the client starts and shut down when it
exits.  Every command either returns a result dict or raises CommandError
carrying a machine-readable reason and, where useful, a remedy.
"""
import os

from autoplay import AutoplayController
from config import DEFAULTS
from engine_manager import EngineManager, list_engines
from errors import (
    CommandError,
    EngineBusyError,
    EngineError,
    EngineStartupError,
    IllegalMoveError,
    MoveRejectedError,
    ViewUnavailableError,
)
from position_tracker import PositionTracker, parse_move
from reconciler import ObservationReconciler
from safety_gate import TurnSafetyGate
from uci_handler import UCIHandler


class BridgeSession:
    """Owns the shared state and implements the operator-facing commands.

    Args:
        view:     View snapshot provider (board, move list, orientation,
                  game-active flag).
        executor: Move executor with execute(move_dict).
        config:   Dict shaped like config.DEFAULTS.
    """

    def __init__(self, view, executor, config=None, log=print):
        self.config = dict(DEFAULTS)
        if config:
            self.config.update(config)
        self.view = view
        self.executor = executor
        self._print = log

        self.engine = None
        self.tracker = PositionTracker(on_new_game=self._on_new_game)
        self.reconciler = ObservationReconciler(self.tracker, view, log=log)
        self.gate = TurnSafetyGate(
            self.tracker, view,
            settle_delay=self.config['settle_delay'],
            verify_attempts=self.config['verify_attempts'],
            log=log,
        )
        self.autoplay = AutoplayController(
            self.tracker, self.reconciler, self.gate, view, executor,
            get_engine=lambda: self.engine,
            poll_interval=self.config['poll_interval'],
            log=log,
        )

    # ── Engine commands ───────────────────────────────────────────────────────

    def list_engines(self):
        return list_engines(self.config['engines_dir'])

    def enable_engine(self, name=None):
        """Start an engine from engines_dir (the first executable if unnamed)."""
        if self.engine is not None:
            return {
                'success': True,
                'message': 'Engine already enabled',
                'engine': self.engine.name,
            }
        selected = self._select_engine(name)
        self.engine = self._start_engine(selected)
        return {
            'success': True,
            'message': f"Engine '{selected['name']}' enabled",
            'engine': selected['name'],
            'search': self.engine.search_config_str(),
        }

    def disable_engine(self):
        if self.engine is None:
            return {'success': True, 'message': 'Engine already disabled'}
        name = self.engine.name
        self.engine.quit()
        self.engine = None
        self._print(f"[Engine] ✓ '{name}' stopped")
        return {'success': True, 'message': 'Engine disabled', 'stopped': name}

    def switch_engine(self, name):
        """Tear down the current engine and start *name* in its place."""
        if not name:
            raise CommandError('engine_not_found', "Engine name required",
                               "engine switch <name>")
        selected = self._select_engine(name)
        previous = self.engine.name if self.engine else None
        if self.engine is not None:
            self.engine.quit()
            self.engine = None
        self._print(f"[Engine] Switching engine: {previous or 'none'} → {name}")
        self.engine = self._start_engine(selected)
        return {
            'success': True,
            'message': 'Engine switched',
            'previous': previous,
            'engine': name,
        }

    def configure_nodes(self, nodes):
        if nodes <= 0:
            raise CommandError('invalid_config', "Node limit must be positive")
        self.config['search_mode'] = 'nodes'
        self.config['nodes'] = nodes
        if self.engine is not None:
            self.engine.set_search_nodes(nodes)
        return {'success': True, 'search': f"nodes {nodes:,}"}

    def configure_time(self, base_ms, increment_ms, clock_policy=None):
        if base_ms <= 0 or increment_ms < 0:
            raise CommandError('invalid_config',
                               "Time base must be positive and increment non-negative")
        if clock_policy is not None:
            if clock_policy not in ('per_game', 'accumulate'):
                raise CommandError('invalid_config',
                                   "Clock policy must be 'per_game' or 'accumulate'")
            self.config['clock_policy'] = clock_policy
        self.config['search_mode'] = 'time'
        self.config['time_base_ms'] = base_ms
        self.config['time_increment_ms'] = increment_ms
        if self.engine is not None:
            self.engine.clock_policy = self.config['clock_policy']
            self.engine.set_search_time(base_ms, increment_ms)
        return {
            'success': True,
            'search': f"time base={base_ms}ms inc={increment_ms}ms ({self.config['clock_policy']})",
        }

    def set_threads(self, threads):
        if threads <= 0:
            raise CommandError('invalid_config', "Thread count must be positive")
        self.config['threads'] = threads
        if self.engine is not None:
            self._engine_call(self.engine.set_threads, threads)
        return {'success': True, 'threads': threads}

    def set_engine_option(self, name, value):
        if not name:
            raise CommandError('invalid_config', "Option name required",
                               "setoption <name> <value>")
        key = name.lower()
        if key in ('threads', 'hash'):
            try:
                value = int(value)
            except ValueError:
                raise CommandError('invalid_config', f"{name} must be an integer") from None
            self.config['threads' if key == 'threads' else 'hash_mb'] = value
        else:
            self.config['engine_options'] = dict(self.config['engine_options'], **{name: value})
        if self.engine is not None:
            self._engine_call(self.engine.set_option, name, value)
        return {'success': True, 'option': name, 'value': value}

    def engine_status(self):
        status = {
            'enabled': self.engine is not None,
            'available': [e['name'] for e in self.list_engines()],
            'search_mode': self.config['search_mode'],
            'nodes': self.config['nodes'],
        }
        if self.engine is not None:
            status.update(self.engine.status())
        return status

    # ── Position commands ─────────────────────────────────────────────────────

    def reset(self, starting_fen=None):
        """Forget the move history and return to the standard start (or *starting_fen*)."""
        previous = len(self.tracker.move_history)
        try:
            self._engine_call(self.tracker.reset, starting_fen)
        except ValueError as exc:
            raise CommandError('invalid_position', str(exc)) from exc
        self.autoplay.last_queried = None
        self._print(f"[Position] 🔄 Reset — cleared {previous} move(s)")
        return {
            'success': True,
            'previous_move_count': previous,
            'starting_fen': self.tracker.starting_fen,
            'engine_reset': self.engine is not None and self.engine.is_ready(),
        }

    def set_position(self, moves, starting_fen=None):
        """Replace the move history manually after validating every move."""
        invalid = [m for m in moves if not UCIHandler.validate_uci_move(m)]
        if invalid:
            raise CommandError(
                'invalid_move',
                f"Invalid UCI move format: {', '.join(invalid)}",
                "Moves look like e2e4 or e7e8q",
            )
        try:
            applied = self._engine_call(self.tracker.replace_history, moves, starting_fen)
        except IllegalMoveError as exc:
            raise CommandError('illegal_move', str(exc)) from exc
        except ValueError as exc:
            raise CommandError('invalid_position', str(exc)) from exc
        self.autoplay.last_queried = None
        self._print(f"[Position] 📍 Set manually: {' '.join(applied) or '(no moves)'}")
        return {
            'success': True,
            'move_history': applied,
            'move_count': len(applied),
            'starting_fen': self.tracker.starting_fen,
        }

    def sync(self):
        """Reconcile once against the board and report the outcome."""
        try:
            result = self._engine_call(self.reconciler.reconcile)
        except ViewUnavailableError as exc:
            raise CommandError('view_unavailable', str(exc),
                               "Make sure a game board is open in the browser") from exc
        if not result['synced']:
            raise CommandError('needs_manual_sync', result['error'], result['suggestion'])
        result['move_history'] = list(self.tracker.move_history)
        return result

    def play_move(self, move):
        """Play *move* on the board by hand and record it once confirmed."""
        parsed = UCIHandler.parse_uci_move(move)
        if parsed is None:
            raise CommandError('invalid_move', f"Invalid UCI move format: {move}",
                               "Moves look like e2e4 or e7e8q")
        board = self.tracker.board()
        uci = move.strip().lower()
        if not board.is_legal(parse_move(uci)):
            raise CommandError('illegal_move', f"Illegal move '{move}' in position {board.fen()}",
                               "Run 'sync' if the board has moved on")
        mover = self.tracker.turn()
        before = self.view.get_board_snapshot()
        if not before:
            raise CommandError('view_unavailable', "Could not read board state")
        try:
            self.executor.execute(parsed)
            self.gate.verify_move(uci, before, mover)
        except MoveRejectedError as exc:
            raise CommandError('move_rejected', str(exc),
                               "Check the browser for dialogs, then 'sync'") from exc
        self.tracker.apply_move(uci)
        return {'success': True, 'move': uci, 'move_count': len(self.tracker.move_history)}

    # ── Autoplay commands ─────────────────────────────────────────────────────

    def enable_autoplay(self, color=None, start_timer=True):
        """Sync, then let the engine play *color* (None/'auto' follows the board)."""
        if color == 'auto':
            color = None
        if color is not None and color not in ('white', 'black'):
            raise CommandError('invalid_color', "Color must be 'white', 'black' or 'auto'")
        if self.engine is None or not self.engine.is_ready():
            raise CommandError('engine_not_enabled', "Engine not enabled",
                               "engine enable [name]")
        self._print("[Autoplay] 🔄 Auto-syncing position before enabling autoplay...")
        sync = self.sync()
        self.autoplay.enable(color, start_timer=start_timer)
        return {
            'success': True,
            'color': self.autoplay.playing_color,
            'auto_color': self.autoplay.auto_color,
            'move_history': list(self.tracker.move_history),
            'sync': sync['status'],
        }

    def disable_autoplay(self):
        self.autoplay.disable()
        return {'success': True, 'message': 'Autoplay disabled'}

    def suggest(self):
        """Ask the engine for a move in the tracked position; nothing is played."""
        if self.engine is None or not self.engine.is_ready():
            raise CommandError('engine_not_enabled', "Engine not enabled",
                               "engine enable [name]")
        try:
            self.reconciler.reconcile()
        except ViewUnavailableError:
            self._print("[Engine] Board unavailable — suggesting for the tracked position")
        engine = self.engine
        moves = list(self.tracker.move_history)
        result = self._engine_call(self._search_once, engine, moves)
        return {
            'success': True,
            'move': result['move'],
            'ponder': result['ponder'],
            'think_ms': result['think_ms'],
            'info': result['info'],
            'fen': self.tracker.fen(),
            'move_history': moves,
        }

    # ── Status / teardown ─────────────────────────────────────────────────────

    def status(self):
        return {
            'game_active': self.view.is_game_active(),
            'turn': self.tracker.turn(),
            'starting_fen': self.tracker.starting_fen,
            'move_history': list(self.tracker.move_history),
            'engine': self.engine.name if self.engine else None,
            'engine_ready': self.engine.is_ready() if self.engine else False,
            'autoplay': self.autoplay.status(),
        }

    def shutdown(self):
        self.autoplay.disable()
        if self.engine is not None:
            self.engine.quit()
            self.engine = None

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _on_new_game(self):
        if self.engine is not None and self.engine.is_ready():
            self.engine.new_game()

    def _select_engine(self, name):
        engines = self.list_engines()
        if name:
            selected = next((e for e in engines if e['name'] == name), None)
            if selected is None:
                raise CommandError(
                    'engine_not_found',
                    f"Engine '{name}' not found. Available: "
                    f"{', '.join(e['name'] for e in engines) or '(none)'}",
                    "engines list",
                )
            if not selected['executable']:
                raise CommandError(
                    'not_executable',
                    f"Engine '{name}' is not executable",
                    f"chmod +x {os.path.join(self.config['engines_dir'], name)}",
                )
            return selected
        runnable = [e for e in engines if e['executable']]
        if not runnable:
            raise CommandError(
                'no_engines',
                f"No executable engines found in {self.config['engines_dir']}",
                "Drop a UCI engine binary into the engines folder",
            )
        return runnable[0]

    def _start_engine(self, selected):
        cfg = self.config
        engine = EngineManager(
            selected['path'],
            threads=cfg['threads'],
            hash_mb=cfg['hash_mb'],
            options=cfg['engine_options'],
            search_mode=cfg['search_mode'],
            nodes=cfg['nodes'],
            time_base=cfg['time_base_ms'],
            time_increment=cfg['time_increment_ms'],
            clock_policy=cfg['clock_policy'],
            transcript_path=cfg['transcript_path'],
            log=self._print,
        )
        try:
            engine.start()
        except EngineStartupError as exc:
            raise CommandError(
                'engine_start_failed', str(exc),
                "Make sure the executable is a UCI-compatible engine",
            ) from exc
        return engine

    def _search_once(self, engine, moves):
        # No turn is passed, so suggestions never spend clock time.
        engine.set_position(self.tracker.starting_fen, moves)
        return engine.search(limits=engine.build_limits())

    def _engine_call(self, func, *args):
        """Run *func*, turning engine failures into CommandError."""
        try:
            return func(*args)
        except EngineBusyError as exc:
            raise CommandError('engine_busy', str(exc),
                               "Wait for the current search to finish") from exc
        except EngineError as exc:
            raise CommandError('engine_error', str(exc), "engine switch <name>") from exc
