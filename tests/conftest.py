import stat
import sys

import chess
import pytest

FAKE_ENGINE = '''#!{python}
import sys
import time

import chess

MODE = {mode!r}
board = chess.Board()
for line in sys.stdin:
    cmd = line.strip()
    if cmd == 'uci':
        if MODE == 'no_uciok':
            continue
        print('id name FakeEngine')
        print('option name Threads type spin default 1 min 1 max 8')
        print('uciok')
    elif cmd == 'isready':
        print('readyok')
    elif cmd.startswith('position'):
        parts = cmd.split()
        idx = parts.index('moves') if 'moves' in parts else len(parts)
        if parts[1] == 'startpos':
            board = chess.Board()
        else:
            board = chess.Board(' '.join(parts[2:idx]))
        for mv in parts[idx + 1:]:
            board.push_uci(mv)
    elif cmd.startswith('go'):
        if MODE == 'crash_on_go':
            sys.exit(3)
        if MODE == 'silent_go':
            continue
        if MODE == 'slow_go':
            time.sleep(1.0)
        moves = sorted(m.uci() for m in board.legal_moves)
        best = moves[0] if moves else '(none)'
        print('info depth 3 seldepth 5 score cp 25 nodes 1200 nps 40000 pv ' + best)
        print('bestmove ' + best)
    elif cmd == 'quit':
        break
    sys.stdout.flush()
'''


@pytest.fixture
def make_engine(tmp_path):
    """Write a scripted UCI engine into tmp_path/engines and return its path."""
    if sys.platform == 'win32':
        pytest.skip("scripted engines rely on a shebang line")
    engines_dir = tmp_path / 'engines'
    engines_dir.mkdir(exist_ok=True)

    def _make(name='fake-engine', mode='normal'):
        path = engines_dir / name
        path.write_text(FAKE_ENGINE.format(python=sys.executable, mode=mode))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


class FakeView:
    """In-memory board page: a python-chess board plus page metadata.

    Attributes:
        board:       chess.Board shown on the page.
        snapshot:    When set, returned instead of board.fen().
        move_list:   Value of get_move_list_snapshot().
        bottom:      Side shown at the bottom of the board.
        active:      Value of is_game_active().
    """

    def __init__(self, board=None):
        self.board = board or chess.Board()
        self.snapshot = None
        self.move_list = None
        self.bottom = 'white'
        self.active = True
        self.snapshot_calls = 0

    def get_board_snapshot(self):
        self.snapshot_calls += 1
        if self.snapshot is not None:
            return self.snapshot
        return self.board.fen()

    def get_move_list_snapshot(self):
        return self.move_list

    def get_orientation(self):
        return {'bottom_color': self.bottom}

    def is_game_active(self):
        return self.active

    def play(self, *moves):
        """Simulate moves made on the page (e.g. by the opponent)."""
        for move in moves:
            self.board.push_uci(move)


class FakeExecutor:
    """Records executed moves and applies them to the view unless told not to."""

    def __init__(self, view, accept=True):
        self.view = view
        self.accept = accept
        self.executed = []

    def execute(self, move):
        uci = move['from'] + move['to'] + (move.get('promotion') or '')
        self.executed.append(uci)
        if self.accept:
            self.view.play(uci)


@pytest.fixture
def view():
    return FakeView()


@pytest.fixture
def executor(view):
    return FakeExecutor(view)


class LogRecorder:
    """Log sink that keeps printed lines for assertions."""

    def __init__(self):
        self.lines = []

    def __call__(self, message=''):
        self.lines.append(str(message))

    def text(self):
        return '\n'.join(self.lines)


def fen_after(*moves, start=None):
    board = chess.Board(start) if start else chess.Board()
    for move in moves:
        board.push_uci(move)
    return board.fen()


@pytest.fixture
def log():
    return LogRecorder()
