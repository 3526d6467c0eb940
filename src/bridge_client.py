"""Terminal client: connects the browser, the engine and the autoplay loop."""
import argparse
import sys
import threading
import time
import traceback

from selenium.common.exceptions import WebDriverException

from bridge_session import BridgeSession
from browser_launcher import BrowserLauncher, _short_err
from chesscom_interface import ChessComInterface
from config import load_config
from errors import BridgeError, CommandError
from uci_handler import UCIHandler

HELP_TEXT = """\
Available Commands:
  - 'engines list'                 - List engine executables in engines/
  - 'engine enable [name]'         - Start an engine (first executable if no name)
  - 'engine disable'               - Stop the engine
  - 'engine switch <name>'         - Replace the running engine
  - 'engine status'                - Show engine state and search settings
  - 'config nodes <n>'             - Search a fixed number of nodes per move
  - 'config time <base_ms> <inc_ms> [per_game|accumulate]'
                                   - Search with simulated clocks
  - 'threads <n>'                  - Set the engine's Threads option
  - 'setoption <name> <value>'     - Set any engine option
  - 'reset'                        - Forget the move history (new game)
  - 'position [fen <fen> moves] <uci...>' - Set the move history by hand
  - 'sync'                         - Reconcile with the board now
  - 'autoplay on [white|black|auto]' / 'autoplay off'
  - 'suggest'                      - Ask the engine for a move without playing it
  - 'move <uci>' or just '<uci>'   - Play a move on the board
  - 'status'                       - Show game, engine and autoplay state
  - 'movelist'                     - Print the tracked move history
  - 'help' / 'quit'"""


def _bg_print(msg=''):
    """Print from a background thread without disrupting the readline input prompt.

    Clears the current terminal line (which may contain a half-typed command),
    prints the message, then reprints '> ' plus whatever the user had typed.
    """
    try:
        import readline
        buf = readline.get_line_buffer()
        sys.stdout.write(f'\r\033[K{msg}\n> {buf}')
    except (ImportError, AttributeError):
        # readline unavailable (Windows without pyreadline, or non-tty)
        sys.stdout.write(f'\n{msg}\n')
    sys.stdout.flush()


class BridgeClient:
    """Interactive front end around a BridgeSession."""

    def __init__(self, config, session=None, log=print):
        self.config = config
        self.session = session
        self.browser_launcher = None
        self.chesscom_interface = None
        self.running = False
        self._print = log

        self.monitor_thread = None
        self.monitor_thread_running = False
        self.monitor_interval = 0.05

    def start(self):
        """Attach to the browser, build the session and run the prompt."""
        print("=" * 60)
        print("Chess.com UCI Bridge")
        print("=" * 60)
        print()

        try:
            print("[Client] Connecting to browser...")
            self.browser_launcher = BrowserLauncher(self.config['debugging_port'])
            driver = self.browser_launcher.connect_to_edge()
            self.chesscom_interface = ChessComInterface(driver, log=_bg_print)
            self.session = BridgeSession(
                self.chesscom_interface, self.chesscom_interface,
                config=self.config, log=_bg_print,
            )
            self.running = True

            if self.config['engine']:
                self.run_command(f"engine enable {self.config['engine']}")

            if self.chesscom_interface.setup_move_observer():
                print("[Client] ✓ Move observer initialized")
            else:
                print("[Client] ⚠ Could not set up move observer — relying on the autoplay timer")
            self.start_background_monitor()

            self.run_terminal_interface()

        except KeyboardInterrupt:
            print("\n[Client] Shutting down...")
        except WebDriverException as e:
            print(f"\n[Client] Browser error: {_short_err(e)}")
            print("\n[Client] Troubleshooting:")
            print(f"  - Start Edge with --remote-debugging-port={self.config['debugging_port']}")
            print("  - Open a chess.com game in that browser")
        finally:
            self.cleanup()

    # ── Background monitor ────────────────────────────────────────────────────

    def start_background_monitor(self):
        self.monitor_thread_running = True
        self.monitor_thread = threading.Thread(target=self.background_monitor_loop, daemon=True)
        self.monitor_thread.start()

    def stop_background_monitor(self):
        self.monitor_thread_running = False
        if self.monitor_thread is not None:
            self.monitor_thread.join(timeout=2)
            self.monitor_thread = None

    def background_monitor_loop(self):
        """Poll the move observer flag and wake autoplay on every change."""
        while self.monitor_thread_running and self.running:
            try:
                if self.chesscom_interface.poll_board_changed():
                    self.session.autoplay.notify_board_changed()
            except WebDriverException as e:
                _bg_print(f"[Monitor] Browser error: {_short_err(e)}")
                time.sleep(1.0)
            time.sleep(self.monitor_interval)

    # ── Commands ──────────────────────────────────────────────────────────────

    def run_terminal_interface(self):
        print(HELP_TEXT)
        print()
        while self.running:
            try:
                user_input = input("> ").strip()
            except EOFError:
                break
            if not user_input:
                continue
            if not self.run_command(user_input):
                break

    def run_command(self, line):
        """Execute one command line.  Returns False when the client should exit."""
        try:
            return self.handle_command(line)
        except CommandError as e:
            self._print(f"[Error] {e}")
            if e.suggestion:
                self._print(f"[Error] Suggestion: {e.suggestion}")
        except BridgeError as e:
            self._print(f"[Error] {type(e).__name__}: {e}")
        except WebDriverException as e:
            self._print(f"[Error] Browser: {_short_err(e)}")
        return True

    def handle_command(self, line):
        session = self.session
        parts = line.split()
        command = parts[0].lower()
        args = parts[1:]

        if command in ('quit', 'exit'):
            print("[Client] Exiting...")
            return False
        elif command == 'help':
            self._print(HELP_TEXT)
        elif command == 'engines':
            engines = session.list_engines()
            if not engines:
                self._print(f"[Engine] No engines found in {session.config['engines_dir']}")
            for e in engines:
                flag = '' if e['executable'] else '  (not executable)'
                self._print(f"  {e['name']}  {e['size']:,} bytes{flag}")
        elif command == 'engine':
            self._engine_command(args)
        elif command == 'config':
            self._config_command(args)
        elif command == 'threads':
            self._print_result(session.set_threads(_int_arg(args, 0, "threads <n>")))
        elif command == 'setoption':
            if len(args) < 2:
                raise CommandError('invalid_config', "Usage: setoption <name> <value>")
            self._print_result(session.set_engine_option(' '.join(args[:-1]), args[-1]))
        elif command == 'reset':
            result = session.reset()
            self._print(f"[Position] Cleared {result['previous_move_count']} move(s)")
        elif command == 'position':
            self._position_command(args)
        elif command == 'sync':
            result = session.sync()
            self._print(f"[Sync] {result['status']} — {result['move_count']} move(s) tracked")
        elif command == 'autoplay':
            self._autoplay_command(args)
        elif command == 'suggest':
            result = session.suggest()
            info = result['info']
            score = _format_score(info)
            self._print(
                f"[Engine] Suggestion: {result['move']}"
                + (f" (ponder {result['ponder']})" if result['ponder'] else '')
                + (f"  {score}" if score else '')
                + f"  [{result['think_ms']}ms]"
            )
        elif command == 'move':
            if not args:
                raise CommandError('invalid_move', "Usage: move <uci>")
            result = session.play_move(args[0])
            self._print(f"[Success] Move {result['move_count']}. {result['move']} confirmed")
        elif command == 'status':
            self._print_status(session.status())
        elif command == 'movelist':
            moves = session.tracker.move_history
            self._print(f"[Position] {' '.join(moves) if moves else '(no moves)'}")
            summary = session.tracker.summary()
            if summary:
                self._print(f"[Position] {summary}")
        elif UCIHandler.validate_uci_move(command):
            result = session.play_move(command)
            self._print(f"[Success] Move {result['move_count']}. {result['move']} confirmed")
        else:
            self._print(f"[Client] Unknown command: {line}  (type 'help')")
        return True

    def _engine_command(self, args):
        session = self.session
        sub = args[0].lower() if args else 'status'
        if sub == 'enable':
            self._print_result(session.enable_engine(args[1] if len(args) > 1 else None))
        elif sub == 'disable':
            self._print_result(session.disable_engine())
        elif sub == 'switch':
            self._print_result(session.switch_engine(args[1] if len(args) > 1 else None))
        elif sub == 'status':
            status = session.engine_status()
            if not status['enabled']:
                self._print(f"[Engine] Disabled. Available: {', '.join(status['available']) or '(none)'}")
                return
            self._print(f"[Engine] {status['engine']}: {status['state']}  ({status['search']})")
            if status['search_mode'] == 'time':
                self._print(f"[Engine] Clocks: white={status['clocks']['white']}ms "
                            f"black={status['clocks']['black']}ms")
        else:
            raise CommandError('invalid_config', f"Unknown engine command: {sub}",
                               "engine enable|disable|switch|status")

    def _config_command(self, args):
        if not args:
            raise CommandError('invalid_config', "Usage: config nodes <n> | config time <base_ms> <inc_ms>")
        sub = args[0].lower()
        if sub == 'nodes':
            self._print_result(self.session.configure_nodes(_int_arg(args, 1, "config nodes <n>")))
        elif sub == 'time':
            usage = "config time <base_ms> <inc_ms> [per_game|accumulate]"
            base = _int_arg(args, 1, usage)
            inc = _int_arg(args, 2, usage)
            policy = args[3].lower() if len(args) > 3 else None
            self._print_result(self.session.configure_time(base, inc, policy))
        else:
            raise CommandError('invalid_config', f"Unknown config setting: {sub}")

    def _position_command(self, args):
        fen = None
        if args and args[0].lower() == 'fen':
            # position fen <6 fields> [moves ...]
            if 'moves' in args:
                idx = args.index('moves')
                fen, moves = ' '.join(args[1:idx]), args[idx + 1:]
            else:
                fen, moves = ' '.join(args[1:]), []
        else:
            moves = [m for m in args if m.lower() not in ('startpos', 'moves')]
        result = self.session.set_position([m.lower() for m in moves], fen)
        self._print(f"[Position] {result['move_count']} move(s) set")

    def _autoplay_command(self, args):
        sub = args[0].lower() if args else 'status'
        if sub == 'on':
            color = args[1].lower() if len(args) > 1 else None
            result = self.session.enable_autoplay(color)
            self._print(f"[Autoplay] Playing {result['color']}"
                        + (" (follows board orientation)" if result['auto_color'] else ''))
        elif sub == 'off':
            self.session.disable_autoplay()
        else:
            status = self.session.autoplay.status()
            self._print(f"[Autoplay] {status['state']} — color {status['color']}"
                        + (" (auto)" if status['auto_color'] else ''))

    def _print_result(self, result):
        message = result.get('message')
        if message:
            self._print(f"[Success] {message}")
        else:
            details = ', '.join(f"{k}={v}" for k, v in result.items() if k != 'success')
            self._print(f"[Success] {details}")

    def _print_status(self, status):
        self._print(f"[Status] Game active: {status['game_active']}")
        self._print(f"[Status] Turn: {status['turn']}  Moves: {len(status['move_history'])}")
        if status['starting_fen']:
            self._print(f"[Status] Custom start: {status['starting_fen']}")
        self._print(f"[Status] Engine: {status['engine'] or 'disabled'}"
                    + (" (ready)" if status['engine_ready'] else ''))
        autoplay = status['autoplay']
        self._print(f"[Status] Autoplay: {autoplay['state']} ({autoplay['color']})")

    # ── Teardown ──────────────────────────────────────────────────────────────

    def cleanup(self):
        print("[Client] Cleaning up...")
        self.running = False
        self.stop_background_monitor()
        if self.session is not None:
            self.session.shutdown()
        if self.browser_launcher:
            self.browser_launcher.close()
        print("[Client] Goodbye!")


def _int_arg(args, index, usage):
    try:
        return int(args[index])
    except (IndexError, ValueError):
        raise CommandError('invalid_config', f"Usage: {usage}") from None


def _format_score(info):
    if info.get('score_mate') is not None:
        return f"mate {info['score_mate']}"
    if info.get('score_cp') is not None:
        return f"{info['score_cp'] / 100:+.2f}"
    return ''


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Bridge a UCI engine to a chess.com board")
    parser.add_argument('--config', help="path to a JSON configuration file")
    parser.add_argument('--port', type=int, help="browser remote-debugging port")
    parser.add_argument('--engine', help="engine to enable at startup")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except CommandError as e:
        print(f"[Client] {e}")
        sys.exit(1)
    if args.port:
        config['debugging_port'] = args.port
    if args.engine:
        config['engine'] = args.engine

    try:
        BridgeClient(config).start()
    except Exception:
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
