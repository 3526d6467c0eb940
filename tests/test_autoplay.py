from unittest.mock import MagicMock

import chess
import pytest

from autoplay import STATE_BUSY, STATE_DISABLED, STATE_IDLE, AutoplayController
from position_tracker import PositionTracker
from reconciler import ObservationReconciler
from safety_gate import TurnSafetyGate

from conftest import FakeExecutor


def mock_engine(*moves):
    engine = MagicMock()
    engine.is_ready.return_value = True
    engine.search_config_str.return_value = "nodes 1,000"
    engine.search.side_effect = [
        {'move': move, 'ponder': None, 'think_ms': 3, 'info': {}} for move in moves
    ]
    return engine


@pytest.fixture
def build(view, log):
    def _build(engine, executor=None, color='white'):
        tracker = PositionTracker()
        gate = TurnSafetyGate(tracker, view, settle_delay=0, verify_attempts=2,
                              log=log, sleep=lambda _s: None)
        controller = AutoplayController(
            tracker, ObservationReconciler(tracker, view, log=log), gate, view,
            executor or FakeExecutor(view), get_engine=lambda: engine, log=log,
        )
        controller.enable(color, start_timer=False)
        return controller

    return _build


def test_plays_engine_move_when_it_is_our_turn(build, view):
    engine = mock_engine("e2e4")
    controller = build(engine)

    result = controller.trigger()

    assert result == {'action': 'played', 'move': 'e2e4', 'ponder': None}
    assert controller.tracker.move_history == ["e2e4"]
    assert controller.last_queried is None
    engine.set_position.assert_called_once_with(None, [])
    engine.search.assert_called_once_with(turn='white')


def test_detects_opponent_move_then_replies(build, view):
    engine = mock_engine("e7e5")
    controller = build(engine, color='black')
    view.play("e2e4")

    result = controller.trigger()

    assert result['action'] == 'played'
    assert controller.tracker.move_history == ["e2e4", "e7e5"]
    engine.set_position.assert_called_once_with(None, ["e2e4"])


def test_no_engine_call_when_not_our_turn(build):
    engine = mock_engine("e7e5")
    controller = build(engine, color='black')

    result = controller.trigger()

    assert result == {'action': 'skipped', 'reason': 'not_our_turn'}
    engine.search.assert_not_called()
    engine.set_position.assert_not_called()


def test_rejected_move_is_not_recorded_nor_retried(build, view):
    engine = mock_engine("e2e4", "e2e4")
    executor = FakeExecutor(view, accept=False)
    controller = build(engine, executor=executor)

    first = controller.trigger()
    assert first['action'] == 'rejected'
    assert controller.tracker.move_history == []
    assert controller.last_queried == "position startpos"

    second = controller.trigger()
    assert second == {'action': 'skipped', 'reason': 'repeat_position'}
    assert engine.search.call_count == 1
    assert executor.executed == ["e2e4"]


def test_illegal_engine_move_is_not_executed(build, view):
    engine = mock_engine("e2e5")
    executor = FakeExecutor(view)
    controller = build(engine, executor=executor)

    result = controller.trigger()

    assert result['action'] == 'error'
    assert executor.executed == []
    assert controller.tracker.move_history == []


def test_engine_without_move_is_skipped(build):
    engine = mock_engine(None)
    controller = build(engine)
    assert controller.trigger() == {'action': 'skipped', 'reason': 'no_move'}


def test_missing_engine_is_skipped(build):
    controller = build(None)
    assert controller.trigger() == {'action': 'skipped', 'reason': 'engine_not_ready'}


def test_trigger_while_busy_is_dropped(build):
    engine = mock_engine("e2e4")
    controller = build(engine)
    controller._busy.acquire()
    try:
        assert controller.state == STATE_BUSY
        assert controller.trigger() == {'action': 'dropped'}
    finally:
        controller._busy.release()
    engine.search.assert_not_called()
    assert controller.state == STATE_IDLE


def test_inactive_game_pauses(build, view, log):
    engine = mock_engine("e2e4")
    controller = build(engine)
    view.active = False

    assert controller.trigger() == {'action': 'paused'}
    assert controller.trigger() == {'action': 'paused'}
    assert log.text().count("autoplay paused") == 1
    engine.search.assert_not_called()


def test_orientation_change_starts_new_position(build, view):
    engine = mock_engine("e7e5")
    controller = build(engine, color=None)
    assert controller.playing_color == 'white'
    controller.tracker.apply_move("e2e4")
    view.play("e2e4")

    view.bottom = 'black'
    result = controller.trigger()

    assert result == {'action': 'new_position', 'color': 'black'}
    assert controller.playing_color == 'black'
    assert controller.last_queried is None
    engine.search.assert_not_called()


def test_flipped_board_with_unrelated_position_starts_over(build, view):
    engine = mock_engine("g8f6")
    controller = build(engine, color=None)
    controller.tracker.apply_move("e2e4")
    controller.tracker.apply_move("e7e5")
    puzzle = "r1bqkbnr/pppp1ppp/2n5/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R b KQkq - 3 3"
    view.board = chess.Board(puzzle)
    view.bottom = 'black'

    result = controller.trigger()

    assert result == {'action': 'new_position', 'color': 'black'}
    assert controller.tracker.move_history == []
    assert controller.tracker.board().board_fen() == view.board.board_fen()

    assert controller.trigger()['action'] == 'played'
    assert controller.tracker.move_history == ["g8f6"]
    engine.search.assert_not_called()


def test_disabled_controller_does_nothing(build):
    engine = mock_engine("e2e4")
    controller = build(engine)
    controller.disable()
    assert controller.state == STATE_DISABLED
    assert controller.trigger() == {'action': 'disabled'}
