"""Chess.com interface: board snapshots in, clicked moves out."""
import re
import time

from selenium.common.exceptions import WebDriverException

from browser_launcher import _short_err
from errors import MoveRejectedError
from uci_handler import UCIHandler

# SAN tokens inside a PGN-like string.
_SAN_TOKEN_RE = re.compile(
    r'O-O-O[+#]?|O-O[+#]?|[NBRQK]?[a-h]?[1-8]?x?[a-h][1-8](?:=[NBRQ])?[+#]?'
)

_PROMOTION_NAMES = {'q': 'queen', 'r': 'rook', 'b': 'bishop', 'n': 'knight'}


class ChessComInterface:
    """Handles interaction with the chess.com game page.

    Plays two roles for the bridge: the view (get_board_snapshot,
    get_move_list_snapshot, get_orientation, is_game_active) and the move
    executor (execute).
    """

    def __init__(self, driver, log=print):
        """
        Args:
            driver: Selenium WebDriver attached to the browser.
        """
        self.driver = driver
        self._print = log
        # (is_flipped, board_rect) is stable for a whole game; refreshed at
        # most once a minute or when invalidated.
        self._board_params_cache = None
        self._board_params_time  = 0.0

    # ── Board-parameter cache ─────────────────────────────────────────────────

    def _get_cached_board_params(self, max_age=60.0):
        """Return (is_flipped, board_rect); board_rect may be None."""
        now = time.monotonic()
        if self._board_params_cache and (now - self._board_params_time < max_age):
            return self._board_params_cache
        info = self.driver.execute_script("""
            const board = document.querySelector('.board');
            if (!board) return null;
            const r = board.getBoundingClientRect();
            return {
                flipped: board.classList.contains('flipped'),
                left: r.left, top: r.top, width: r.width
            };
        """)
        if not info:
            return False, None
        rect = {'left': info['left'], 'top': info['top'], 'width': info['width']}
        self._board_params_cache = (bool(info['flipped']), rect if rect['width'] else None)
        self._board_params_time  = now
        return self._board_params_cache

    def invalidate_board_params_cache(self):
        """Discard cached board parameters (call when a new game starts)."""
        self._board_params_cache = None
        self._board_params_time  = 0.0

    @staticmethod
    def _coords_for_square_py(square, is_flipped, board_rect):
        """Return {'x': float, 'y': float} for the centre of *square*."""
        file_num = ord(square[0]) - ord('a') + 1
        rank_num = int(square[1])
        sq_size  = board_rect['width'] / 8
        if is_flipped:
            fi = 8 - file_num
            ri = rank_num - 1
        else:
            fi = file_num - 1
            ri = 8 - rank_num
        return {
            'x': board_rect['left'] + fi * sq_size + sq_size / 2,
            'y': board_rect['top']  + ri * sq_size + sq_size / 2,
        }

    # ── View ──────────────────────────────────────────────────────────────────

    def get_board_snapshot(self):
        """
        Get the current board as a FEN-like string.

        The page's own game object is preferred.  When only the rendered
        pieces can be read, the placement is rebuilt from their square-XY
        classes and the side to move comes from move-list parity.

        Returns:
            str: FEN-like string, or None if no board is readable
        """
        js_script = """
        let fen = null;
        if (window.chessGame && typeof window.chessGame.getFEN === 'function') {
            try { fen = window.chessGame.getFEN(); } catch (e) {}
        }
        if (!fen && window.game && typeof window.game.getFEN === 'function') {
            try { fen = window.game.getFEN(); } catch (e) {}
        }
        if (fen) return { fen: fen };

        const pieces = document.querySelectorAll('.board .piece');
        if (pieces.length === 0) return null;
        const grid = Array.from({ length: 8 }, () => Array(8).fill(null));
        pieces.forEach(piece => {
            const cls = piece.className;
            const sq = cls.match(/square-(\\d)(\\d)/);
            const code = cls.match(/\\b([wb])([pnbrqk])\\b/);
            if (!sq || !code) return;
            const file = parseInt(sq[1]) - 1;
            const row = 8 - parseInt(sq[2]);
            if (file < 0 || file > 7 || row < 0 || row > 7) return;
            grid[row][file] = code[1] === 'w' ? code[2].toUpperCase() : code[2];
        });
        const rows = grid.map(row => {
            let out = '', empty = 0;
            for (const cell of row) {
                if (cell === null) { empty++; continue; }
                if (empty) { out += empty; empty = 0; }
                out += cell;
            }
            return empty ? out + empty : out;
        });
        return { placement: rows.join('/') };
        """
        try:
            result = self.driver.execute_script(js_script)
        except WebDriverException as e:
            self._print(f"[ChessCom] Error getting board: {_short_err(e)}")
            return None
        if not result:
            return None
        if result.get('fen'):
            return result['fen']

        turn = self.get_turn()
        side = {'white': 'w', 'black': 'b'}.get(turn, '-')
        return f"{result['placement']} {side} - - 0 1"

    def get_turn(self):
        """
        Side to move from move-list parity.

        Returns:
            str: 'white', 'black', or 'unknown' (no move list on the page)
        """
        js_script = """
        const table = document.querySelector('.moves-table, .move-list, wc-simple-move-list');
        if (!table) return 'unknown';
        const cells = Array.from(
            table.querySelectorAll('.moves-table-cell.moves-move, .node')
        ).filter(cell => cell.textContent.trim().length > 0);
        return cells.length % 2 === 0 ? 'white' : 'black';
        """
        try:
            return self.driver.execute_script(js_script) or 'unknown'
        except WebDriverException as e:
            self._print(f"[ChessCom] Error detecting turn: {_short_err(e)}")
            return 'unknown'

    def get_move_list_snapshot(self):
        """
        Get the moves played so far as shown by the page.

        Returns:
            list[str]: SAN or UCI moves in order, or None if unavailable
        """
        js_script = """
        const game = window.chessGame || window.game;
        if (game && typeof game.getHistory === 'function') {
            try {
                const h = game.getHistory();
                if (h && h.length) return h;
            } catch (e) {}
        }
        if (game && typeof game.getPGN === 'function') {
            try {
                const pgn = game.getPGN();
                if (pgn) return pgn;
            } catch (e) {}
        }
        if (window.gameSetup && window.gameSetup.moves) return window.gameSetup.moves;

        const cells = document.querySelectorAll(
            '.moves-table-cell.moves-move, .move-list .node, wc-simple-move-list .node'
        );
        const moves = Array.from(cells)
            .map(cell => cell.textContent.trim())
            .filter(text => text.length > 0 && text.length < 10);
        return moves.length ? moves : null;
        """
        try:
            raw = self.driver.execute_script(js_script)
        except WebDriverException as e:
            self._print(f"[ChessCom] Error reading move list: {_short_err(e)}")
            return None
        return _moves_from_page(raw)

    def get_orientation(self):
        """Return {'bottom_color': 'white' | 'black'} from the board's flip state."""
        try:
            flipped = self.driver.execute_script(
                "const b = document.querySelector('.board');"
                "return b ? b.classList.contains('flipped') : null;"
            )
        except WebDriverException as e:
            self._print(f"[ChessCom] Error reading orientation: {_short_err(e)}")
            return None
        if flipped is None:
            return None
        return {'bottom_color': 'black' if flipped else 'white'}

    def is_game_active(self):
        """True while a board is shown and no game-over dialog is up."""
        try:
            return bool(self.driver.execute_script("""
                const board = document.querySelector('.board');
                const over = document.querySelector('.game-over-modal, .game-over-text');
                return !!board && !over;
            """))
        except WebDriverException as e:
            self._print(f"[ChessCom] Error checking game state: {_short_err(e)}")
            return False

    # ── Move execution ────────────────────────────────────────────────────────

    def execute(self, move):
        """
        Play a parsed move with CDP mouse events (click source, click target).

        CDP input events are not throttled when the tab is in the
        background, unlike execute_script.

        Args:
            move: {'from': 'e2', 'to': 'e4', 'promotion': 'q' or None}

        Raises:
            MoveRejectedError: the squares could not be located or clicked
        """
        uci = move['from'] + move['to'] + (move.get('promotion') or '')
        self._print(f"[ChessCom] Move: {UCIHandler.format_move_display(move)}")

        try:
            is_flipped, board_rect = self._get_cached_board_params()
        except WebDriverException as e:
            raise MoveRejectedError(uci, f"board not readable: {_short_err(e)}") from e
        if not board_rect:
            raise MoveRejectedError(uci, "board element not found")

        src = self._coords_for_square_py(move['from'], is_flipped, board_rect)
        dst = self._coords_for_square_py(move['to'], is_flipped, board_rect)
        try:
            self._dispatch('mouseMoved', src)
            self._click(src)
            time.sleep(0.05)   # let piece-selection state register
            self._click(dst)
        except WebDriverException as e:
            raise MoveRejectedError(uci, f"CDP error: {_short_err(e)}") from e

        time.sleep(0.05)
        if move.get('promotion'):
            self.handle_promotion(uci, move['promotion'])

    def _dispatch(self, event_type, point, **extra):
        params = {'type': event_type, 'x': point['x'], 'y': point['y']}
        params.update(extra)
        self.driver.execute_cdp_cmd('Input.dispatchMouseEvent', params)

    def _click(self, point):
        self._dispatch('mousePressed', point, button='left', clickCount=1)
        time.sleep(0.015)
        self._dispatch('mouseReleased', point, button='left', clickCount=1)

    def handle_promotion(self, uci, piece):
        """Pick *piece* ('q', 'r', 'b', 'n') in the promotion dialog."""
        name = _PROMOTION_NAMES.get(piece.lower())
        if name is None:
            raise MoveRejectedError(uci, f"unknown promotion piece '{piece}'")
        self._print(f"[ChessCom] Handling promotion to: {piece.upper()}")
        time.sleep(0.3)

        js_script = """
        const name = arguments[0], code = arguments[1];
        const choice =
            document.querySelector('.promotion-piece.' + name) ||
            document.querySelector('.promotion-window .' + 'w' + code) ||
            document.querySelector('.promotion-window .' + 'b' + code);
        if (!choice) return false;
        choice.click();
        return true;
        """
        try:
            clicked = self.driver.execute_script(js_script, name, piece.lower())
        except WebDriverException as e:
            raise MoveRejectedError(uci, f"promotion failed: {_short_err(e)}") from e
        if not clicked:
            raise MoveRejectedError(uci, "promotion dialog not found")

    # ── Change notification ───────────────────────────────────────────────────

    def setup_move_observer(self):
        """
        Set up a MutationObserver on the move list.

        The observer sets window.__boardChanged (debounced 50ms); Python
        polls and clears it with poll_board_changed().

        Returns:
            bool: True if a move list was found and is being observed
        """
        js_script = """
        if (window.__moveObserver) {
            window.__moveObserver.disconnect();
            delete window.__moveObserver;
        }
        window.__boardChanged = false;

        let debounceTimer = null;
        const observer = new MutationObserver(() => {
            clearTimeout(debounceTimer);
            debounceTimer = setTimeout(() => { window.__boardChanged = true; }, 50);
        });

        // The board itself mutates on every piece animation; the move list
        // changes exactly once per ply.
        const target = document.querySelector('.moves-table, .move-list, wc-simple-move-list');
        if (!target) return false;
        observer.observe(target, { childList: true, subtree: true });
        window.__moveObserver = observer;
        return true;
        """
        try:
            return bool(self.driver.execute_script(js_script))
        except WebDriverException as e:
            self._print(f"[ChessCom] Error setting up move observer: {_short_err(e)}")
            return False

    def poll_board_changed(self):
        """Return True (and clear the flag) if the observer saw a change."""
        return bool(self.driver.execute_script(
            "const c = window.__boardChanged === true;"
            "window.__boardChanged = false;"
            "return c;"
        ))


def _moves_from_page(raw):
    """Normalise whatever the page returned into a list of move strings."""
    if not raw:
        return None
    if isinstance(raw, str):
        moves = _SAN_TOKEN_RE.findall(raw)
    elif isinstance(raw, list):
        moves = []
        for item in raw:
            if isinstance(item, dict):
                item = item.get('san') or item.get('lan') or item.get('move')
            if isinstance(item, str) and item.strip():
                moves.append(item.strip())
    else:
        return None
    return moves or None
