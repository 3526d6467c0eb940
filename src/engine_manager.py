"""UCI engine manager for the engine bridge.

Handles discovery of engine executables and the process lifecycle,
protocol framing and move searching for a single UCI engine subprocess.
"""
import os
import queue
import subprocess
import sys
import threading
import time

from errors import (
    EngineBusyError,
    EngineError,
    EngineStartupError,
    EngineTimeoutError,
)
from uci_handler import UCIHandler


# Engine session states.
STATE_NOT_STARTED  = 'not_started'
STATE_INITIALIZING = 'initializing'
STATE_READY        = 'ready'
STATE_SEARCHING    = 'searching'
STATE_STOPPED      = 'stopped'

# Clock policies for time-control search.
CLOCK_PER_GAME   = 'per_game'     # both clocks reset on every new game
CLOCK_ACCUMULATE = 'accumulate'   # clocks carry over across games/puzzles

_HANDSHAKE_TIMEOUT   = 5.0     # seconds per startup step (uciok, readyok)
_NODES_SEARCH_LIMIT  = 300.0   # ceiling for node-limited searches
_TIME_SEARCH_MARGIN  = 10.0    # added on top of the clock in time mode
_QUIT_GRACE          = 2.0
_STOP_GRACE          = 2.0     # wait for the bestmove of an abandoned search


def list_engines(engines_dir):
    """Describe the engine files found in *engines_dir*.

    Returns a list of dicts sorted by name:
        {'name': str, 'path': str, 'size': int, 'executable': bool}
    """
    if not os.path.isdir(engines_dir):
        return []
    engines = []
    for name in sorted(os.listdir(engines_dir)):
        if name == '.gitkeep':
            continue
        path = os.path.join(engines_dir, name)
        if not os.path.isfile(path):
            continue
        executable = sys.platform == 'win32' or os.access(path, os.X_OK)
        engines.append({
            'name': name,
            'path': path,
            'size': os.path.getsize(path),
            'executable': executable,
        })
    return engines


class EngineManager:
    """Manages one UCI chess engine subprocess.

    One instance is bound to one executable for its whole life.  Switching
    engines means quitting this instance and building a new one; a live
    instance is never re-pointed at another binary.

    Lifecycle:
      1. start()           — spawn + uci/uciok + options + isready/readyok.
      2. new_game()        — whenever the starting position changes identity.
      3. set_position()    — prime the next search.
      4. search()          — blocks until 'bestmove' (one at a time).
      5. quit()            — graceful 'quit', then terminate/kill.

    Search modes
    ------------
    nodes (default)
        go nodes <count>

    time
        go wtime <ms> btime <ms> winc <ms> binc <ms>
        Both sides start with time_base ms.  After each completed search
        the clock of the side that searched is decremented by the actual
        think time and incremented by time_increment.  With the
        'per_game' clock policy both clocks are reset by new_game().

    Every line sent to and received from the engine is appended to the
    transcript file, so communication can be followed live with:
        tail -f engine.log
    """

    def __init__(self, path, threads=1, hash_mb=None, options=None,
                 search_mode='nodes', nodes=1_000_000, time_base=60_000,
                 time_increment=1_000, clock_policy=CLOCK_PER_GAME,
                 transcript_path=None, log=print):
        self.path = path
        self.name = os.path.basename(path)
        self.process = None
        self.state = STATE_NOT_STARTED
        self._print = log

        # ── Configuration ─────────────────────────────────────────────────────
        self.threads = threads
        self.hash_mb = hash_mb
        self.options = dict(options or {})
        self.search_mode    = search_mode      # 'nodes' | 'time'
        self.nodes_count    = nodes
        self.time_base      = time_base
        self.time_increment = time_increment
        self.clock_policy   = clock_policy
        self.clocks = {'white': time_base, 'black': time_base}

        # Statistics from the most recent 'info' lines of the last search.
        self.last_info = {}

        # ── Protocol plumbing ─────────────────────────────────────────────────
        self._lines = queue.Queue()
        self._reader_thread = None
        self._search_lock = threading.Lock()

        # ── Transcript ────────────────────────────────────────────────────────
        if transcript_path is None:
            transcript_path = os.path.join(
                os.path.dirname(os.path.dirname(os.path.abspath(path))),
                'engine.log',
            )
        self._log_path = transcript_path
        self._log_file = None
        self._log_lock = threading.Lock()

    # ── Search-mode configuration ─────────────────────────────────────────────

    def set_search_nodes(self, nodes):
        """Switch to node-limited search."""
        if nodes <= 0:
            raise ValueError("node limit must be positive")
        self.search_mode = 'nodes'
        self.nodes_count = nodes

    def set_search_time(self, base_ms, increment_ms):
        """Switch to time-control search and reset both clocks to *base_ms*."""
        if base_ms <= 0 or increment_ms < 0:
            raise ValueError("time base must be positive and increment non-negative")
        self.search_mode    = 'time'
        self.time_base      = base_ms
        self.time_increment = increment_ms
        self.reset_clocks()

    def reset_clocks(self):
        self.clocks = {'white': self.time_base, 'black': self.time_base}

    def search_config_str(self):
        """Human-readable description of the current search configuration."""
        if self.search_mode == 'nodes':
            return f"nodes {self.nodes_count:,}"
        base_s = self.time_base / 1000
        inc_s  = self.time_increment / 1000
        return f"time  base={base_s:g}s  inc={inc_s:g}s  ({self.clock_policy})"

    def build_limits(self):
        """Return the go-limits dict for the configured search mode."""
        if self.search_mode == 'nodes':
            return {'nodes': self.nodes_count}
        return {
            'wtime': self.clocks['white'],
            'btime': self.clocks['black'],
            'winc': self.time_increment,
            'binc': self.time_increment,
        }

    def set_option(self, name, value):
        """Record a named engine option and apply it now if running."""
        if name.lower() == 'threads':
            self.threads = int(value)
        elif name.lower() == 'hash':
            self.hash_mb = int(value)
        else:
            self.options[name] = value
        if self.process is not None and self.state == STATE_READY:
            self._send(f"setoption name {name} value {value}")
            self._wait_ready()

    def set_threads(self, threads):
        self.set_option('Threads', threads)

    # ── Process lifecycle ─────────────────────────────────────────────────────

    def start(self):
        """Spawn the engine executable and perform the UCI handshake.

        Sequence:
          uci → (wait for uciok)
          setoption name Threads value <n>
          setoption name Hash value <mb>          (if configured)
          setoption name <key> value <value>      (custom options)
          isready → (wait for readyok)

        Raises EngineStartupError if the process cannot be launched, exits,
        or does not acknowledge a step within the handshake timeout.
        """
        if self.process is not None:
            self.quit()

        if not os.path.isfile(self.path):
            raise EngineStartupError(f"Engine executable not found: {self.path}")

        self._open_log()
        self._print(f"[Engine] Starting '{self.name}'...")
        try:
            self.process = subprocess.Popen(
                [self.path],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            self.process = None
            self.state = STATE_STOPPED
            self._close_log()
            raise EngineStartupError(f"Failed to launch '{self.name}': {exc}") from exc

        self.state = STATE_INITIALIZING
        self._lines = queue.Queue()
        self._reader_thread = threading.Thread(
            target=self._reader, args=(self.process, self._lines), daemon=True,
        )
        self._reader_thread.start()

        try:
            self._send("uci")
            if self._wait_for("uciok", _HANDSHAKE_TIMEOUT) is None:
                raise EngineStartupError("Timed out waiting for 'uciok'")

            self._send(f"setoption name Threads value {self.threads}")
            if self.hash_mb:
                self._send(f"setoption name Hash value {self.hash_mb}")
            for name, value in self.options.items():
                self._send(f"setoption name {name} value {value}")

            self._send("isready")
            if self._wait_for("readyok", _HANDSHAKE_TIMEOUT) is None:
                raise EngineStartupError("Timed out waiting for 'readyok'")
        except EngineError:
            self.quit()
            raise

        self.state = STATE_READY
        self._print(f"[Engine] ✓ '{self.name}' ready ({self.search_config_str()})")

    def new_game(self):
        """Announce a new game and wait until the engine is ready again."""
        self._ensure_alive()
        self._send("ucinewgame")
        self._wait_ready()
        if self.clock_policy == CLOCK_PER_GAME:
            self.reset_clocks()

    def set_position(self, start_fen=None, moves=()):
        """Send the position-setup command; primes the next search."""
        self._ensure_alive()
        self._send(UCIHandler.position_command(start_fen, moves))

    def search(self, turn=None, limits=None):
        """Run one search and block until the engine reports its move.

        Args:
            turn:   side to move ('white' or 'black'); the clock of this side
                    is updated after a time-control search.
            limits: Optional go-limits dict (see UCIHandler.go_command).
                    Defaults to build_limits().

        Returns:
            dict: {'move': str or None, 'ponder': str or None,
                   'think_ms': int, 'info': dict}

        Raises:
            EngineBusyError:    another search is outstanding.
            EngineStartupError: the engine is not running (or died).
            EngineTimeoutError: no 'bestmove' within the ceiling.
        """
        if not self._search_lock.acquire(blocking=False):
            raise EngineBusyError("A search is already in progress")
        try:
            self._ensure_alive()
            if limits is None:
                limits = self.build_limits()
            timeout = self._search_timeout(limits, turn)

            self._drain()
            self.last_info = {}
            self.state = STATE_SEARCHING
            t0 = time.monotonic()
            self._send(UCIHandler.go_command(limits))
            result = self._read_until_bestmove(timeout)
            think_ms = int((time.monotonic() - t0) * 1000)
            self.state = STATE_READY

            if 'wtime' in limits and turn in self.clocks:
                self.clocks[turn] = max(
                    0, self.clocks[turn] - think_ms + self.time_increment
                )
                self._log(f"# clock: {turn}={self.clocks[turn]}ms (used {think_ms}ms)")

            result['think_ms'] = think_ms
            result['info'] = dict(self.last_info)
            return result
        finally:
            if self.state == STATE_SEARCHING:
                self.state = STATE_READY
            self._search_lock.release()

    def stop(self):
        """Ask the engine to end an outstanding search early."""
        if self.state == STATE_SEARCHING and self.process is not None:
            self._send("stop")

    def quit(self):
        """Shut the engine down.  Safe to call repeatedly."""
        proc = self.process
        self.process = None
        if proc is None:
            self._close_log()
            return

        self.state = STATE_STOPPED
        try:
            proc.stdin.write("quit\n")
            proc.stdin.flush()
            self._log("> quit")
        except (OSError, ValueError):
            pass

        try:
            proc.wait(timeout=_QUIT_GRACE)
        except subprocess.TimeoutExpired:
            proc.terminate()
            try:
                proc.wait(timeout=_QUIT_GRACE)
            except subprocess.TimeoutExpired:
                proc.kill()
        for stream in (proc.stdin, proc.stdout):
            try:
                stream.close()
            except (OSError, ValueError):
                pass

        self._close_log()

    def is_ready(self):
        """True while the process is alive and has finished initialising."""
        return (
            self.process is not None
            and self.process.poll() is None
            and self.state in (STATE_READY, STATE_SEARCHING)
        )

    @property
    def is_searching(self):
        return self.state == STATE_SEARCHING

    def status(self):
        return {
            'engine': self.name,
            'state': self.state,
            'ready': self.is_ready(),
            'searching': self.is_searching,
            'search': self.search_config_str(),
            'search_mode': self.search_mode,
            'nodes': self.nodes_count,
            'clocks': dict(self.clocks),
            'threads': self.threads,
            'options': dict(self.options),
        }

    # ── Low-level helpers ─────────────────────────────────────────────────────

    def _reader(self, proc, lines):
        """Background thread: move stdout lines into the queue."""
        try:
            for raw in proc.stdout:
                line = raw.strip()
                if line:
                    self._log(f"< {line}")
                    lines.put(line)
        except (OSError, ValueError):
            pass
        finally:
            lines.put(None)  # EOF sentinel

    def _ensure_alive(self):
        if self.process is None:
            raise EngineStartupError("Engine not started")
        if self.process.poll() is not None:
            self.state = STATE_STOPPED
            raise EngineStartupError(
                f"Engine process exited (code {self.process.returncode})"
            )

    def _send(self, cmd):
        """Write *cmd* to the engine's stdin and log it."""
        proc = self.process
        if proc is None:
            raise EngineStartupError("Engine not started")
        try:
            proc.stdin.write(cmd + "\n")
            proc.stdin.flush()
        except (OSError, ValueError) as exc:
            self.state = STATE_STOPPED
            raise EngineStartupError(f"Engine pipe closed: {exc}") from exc
        self._log(f"> {cmd}")

    def _next_line(self, deadline):
        """Return the next engine line, or None once *deadline* passes."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        try:
            line = self._lines.get(timeout=remaining)
        except queue.Empty:
            return None
        if line is None:
            self.state = STATE_STOPPED
            raise EngineStartupError("Engine process exited unexpectedly")
        return line

    def _wait_for(self, token, timeout):
        """Read lines until one equals *token*; None on timeout."""
        deadline = time.monotonic() + timeout
        while True:
            line = self._next_line(deadline)
            if line is None:
                return None
            if line == token:
                return line

    def _wait_ready(self):
        self._send("isready")
        if self._wait_for("readyok", _HANDSHAKE_TIMEOUT) is None:
            raise EngineTimeoutError("Timed out waiting for 'readyok'")

    def _drain(self):
        """Discard unread lines left over from an earlier exchange."""
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                return
            if line is None:
                self.state = STATE_STOPPED
                raise EngineStartupError("Engine process exited unexpectedly")

    def _search_timeout(self, limits, turn):
        if 'wtime' in limits or 'btime' in limits:
            key = 'btime' if turn == 'black' else 'wtime'
            inc_key = 'binc' if turn == 'black' else 'winc'
            budget_ms = limits.get(key, self.time_base) + limits.get(inc_key, 0)
            return budget_ms / 1000 + _TIME_SEARCH_MARGIN
        if 'movetime' in limits:
            return limits['movetime'] / 1000 + _TIME_SEARCH_MARGIN
        return _NODES_SEARCH_LIMIT

    def _read_until_bestmove(self, timeout):
        """Read engine lines until 'bestmove'; parse 'info' lines on the way."""
        deadline = time.monotonic() + timeout
        while True:
            line = self._next_line(deadline)
            if line is None:
                self._abandon_search()
                raise EngineTimeoutError(
                    f"No 'bestmove' from '{self.name}' within {timeout:g}s"
                )
            if line.startswith("info"):
                info = UCIHandler.parse_info(line)
                if info:
                    self.last_info.update(info)
                continue
            result = UCIHandler.parse_bestmove(line)
            if result is not None:
                return result

    def _abandon_search(self):
        """Stop a timed-out search and consume its late 'bestmove'.

        An engine that stays silent after 'stop' is shut down, so its
        answer can never be read as the result of a later search.
        """
        self._log("# search timed out")
        try:
            self._send("stop")
            deadline = time.monotonic() + _STOP_GRACE
            while True:
                line = self._next_line(deadline)
                if line is None:
                    break
                if line.startswith("bestmove"):
                    self._log("# discarded bestmove of the abandoned search")
                    return
        except EngineStartupError:
            pass
        self._print(f"[Engine] ✗ '{self.name}' did not answer 'stop' — shutting it down")
        self.quit()

    # ── Transcript ────────────────────────────────────────────────────────────

    def _open_log(self):
        try:
            self._log_file = open(self._log_path, 'a', buffering=1)
        except OSError as exc:
            self._print(f"[Engine] Warning: could not open log file: {exc}")
            self._log_file = None
            return
        self._log("=" * 60)
        self._log(f"# engine:  {self.name}")
        self._log(f"# search:  {self.search_config_str()}")
        self._log(f"# started: {time.strftime('%Y-%m-%d %H:%M:%S')}")

    def _log(self, text):
        """Append *text* to the transcript (no-op if it is not open)."""
        with self._log_lock:
            if self._log_file is None:
                return
            now = time.time()
            stamp = time.strftime('%H:%M:%S', time.localtime(now))
            try:
                self._log_file.write(f"[{stamp}.{int(now % 1 * 1000):03d}] {text}\n")
            except (OSError, ValueError):
                pass

    def _close_log(self):
        with self._log_lock:
            lf = self._log_file
            self._log_file = None
        if lf is not None:
            try:
                lf.write(f"# stopped: {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                lf.close()
            except (OSError, ValueError):
                pass
