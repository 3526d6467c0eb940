"""UCI protocol helpers: move strings, result lines and position commands."""
import re

# Origin square + destination square + optional promotion piece.
_MOVE_RE = re.compile(r'^([a-h][1-8])([a-h][1-8])([qrbn]?)$')

_INFO_INT_FIELDS = ('depth', 'seldepth', 'nodes', 'nps', 'time', 'multipv')


class UCIHandler:
    """Handles UCI protocol parsing and validation."""

    @staticmethod
    def validate_uci_move(move):
        """
        Validate a coordinate move string.

        Args:
            move: String move in UCI format (e.g. 'e2e4', 'a7a8q')

        Returns:
            bool: True if valid UCI format, False otherwise
        """
        if not isinstance(move, str):
            return False
        return bool(_MOVE_RE.match(move.strip().lower()))

    @staticmethod
    def parse_uci_move(move):
        """
        Parse a UCI move string.

        Args:
            move: String move in UCI format (e.g., 'e2e4' or 'e7e8q')

        Returns:
            dict: {'from': 'e2', 'to': 'e4', 'promotion': 'q' or None}
            None: If move is invalid
        """
        if not isinstance(move, str):
            return None
        match = _MOVE_RE.match(move.strip().lower())
        if not match:
            return None
        from_square, to_square, promotion = match.groups()
        return {
            'from': from_square,
            'to': to_square,
            'promotion': promotion or None,
        }

    @staticmethod
    def format_move_display(move_dict):
        """
        Format a parsed move for display.

        Args:
            move_dict: Dictionary with move information

        Returns:
            str: Formatted move string
        """
        if not move_dict:
            return "Invalid move"
        base = f"{move_dict['from']} -> {move_dict['to']}"
        if move_dict.get('promotion'):
            piece_name = {
                'q': 'Queen',
                'r': 'Rook',
                'b': 'Bishop',
                'n': 'Knight',
            }.get(move_dict['promotion'], move_dict['promotion'])
            base += f" (promotes to {piece_name})"
        return base

    @staticmethod
    def parse_bestmove(line):
        """
        Parse an engine result line.

        'bestmove e2e4 ponder e7e5' -> {'move': 'e2e4', 'ponder': 'e7e5'}
        'bestmove (none)'           -> {'move': None, 'ponder': None}

        Returns:
            dict or None if *line* is not a bestmove line.
        """
        parts = line.strip().split()
        if not parts or parts[0] != 'bestmove':
            return None
        move = parts[1] if len(parts) >= 2 and parts[1] not in ('(none)', '0000') else None
        ponder = None
        if len(parts) >= 4 and parts[2] == 'ponder':
            ponder = parts[3]
        return {'move': move, 'ponder': ponder}

    @staticmethod
    def parse_info(line):
        """
        Extract search statistics from an 'info' line.

        Returns a dict with any of: depth, seldepth, nodes, nps, time,
        multipv, score_cp, score_mate, pv (list of moves).  Empty dict when
        the line carries none of them.
        """
        tokens = line.strip().split()
        if not tokens or tokens[0] != 'info':
            return {}
        info = {}
        i = 1
        while i < len(tokens):
            token = tokens[i]
            if token in _INFO_INT_FIELDS and i + 1 < len(tokens):
                try:
                    info[token] = int(tokens[i + 1])
                except ValueError:
                    pass
                i += 2
            elif token == 'score' and i + 2 < len(tokens):
                kind, value = tokens[i + 1], tokens[i + 2]
                try:
                    if kind == 'cp':
                        info['score_cp'] = int(value)
                    elif kind == 'mate':
                        info['score_mate'] = int(value)
                except ValueError:
                    pass
                i += 3
            elif token == 'pv':
                info['pv'] = tokens[i + 1:]
                break
            elif token == 'string':
                # Free text runs to end of line.
                break
            else:
                i += 1
        return info

    @staticmethod
    def position_command(start_fen=None, moves=()):
        """
        Build the position-setup command.

        Args:
            start_fen: Custom starting FEN, or None for the standard start.
            moves:     Iterable of UCI move strings applied from the start.

        Returns:
            str: e.g. 'position startpos moves e2e4 e7e5'
        """
        if start_fen:
            command = f"position fen {start_fen}"
        else:
            command = "position startpos"
        moves = list(moves)
        if moves:
            command += " moves " + " ".join(moves)
        return command

    @staticmethod
    def go_command(limits):
        """
        Build a 'go' command from a limits dict.

        {'nodes': 1000}                               -> 'go nodes 1000'
        {'wtime': .., 'btime': .., 'winc': .., 'binc': ..}
                                                      -> 'go wtime .. btime .. winc .. binc ..'
        """
        if 'nodes' in limits:
            return f"go nodes {int(limits['nodes'])}"
        if 'movetime' in limits:
            return f"go movetime {int(limits['movetime'])}"
        parts = ['go']
        for key in ('wtime', 'btime', 'winc', 'binc'):
            if key in limits:
                parts.append(f"{key} {int(limits[key])}")
        return " ".join(parts)
