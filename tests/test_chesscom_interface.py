from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import WebDriverException

import chesscom_interface
from chesscom_interface import ChessComInterface, _moves_from_page
from errors import MoveRejectedError


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(chesscom_interface.time, 'sleep', lambda _s: None)


@pytest.fixture
def driver():
    return MagicMock()


@pytest.fixture
def page(driver, log):
    return ChessComInterface(driver, log=log)


def cdp_events(driver):
    return [c.args[1] for c in driver.execute_cdp_cmd.call_args_list]


def test_snapshot_prefers_game_fen(page, driver):
    driver.execute_script.return_value = {'fen': 'rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1'}
    assert page.get_board_snapshot().split()[1] == 'b'


def test_snapshot_from_rendered_pieces_uses_move_list_parity(page, driver):
    driver.execute_script.side_effect = [{'placement': '8/8/8/8/8/8/8/4K2k'}, 'black']
    assert page.get_board_snapshot() == '8/8/8/8/8/8/8/4K2k b - - 0 1'


def test_snapshot_without_turn_indicator(page, driver):
    driver.execute_script.side_effect = [{'placement': '8/8/8/8/8/8/8/4K2k'}, 'unknown']
    assert page.get_board_snapshot().split()[1] == '-'


def test_snapshot_browser_error_returns_none(page, driver, log):
    driver.execute_script.side_effect = WebDriverException("Message: session deleted")
    assert page.get_board_snapshot() is None
    assert "session deleted" in log.text()


def test_orientation(page, driver):
    driver.execute_script.return_value = True
    assert page.get_orientation() == {'bottom_color': 'black'}
    driver.execute_script.return_value = None
    assert page.get_orientation() is None


def test_execute_clicks_source_then_target(page, driver):
    driver.execute_script.return_value = {'flipped': False, 'left': 0, 'top': 0, 'width': 800}
    page.execute({'from': 'e2', 'to': 'e4', 'promotion': None})

    events = cdp_events(driver)
    assert [e['type'] for e in events] == [
        'mouseMoved', 'mousePressed', 'mouseReleased', 'mousePressed', 'mouseReleased',
    ]
    assert (events[1]['x'], events[1]['y']) == (450, 650)
    assert (events[3]['x'], events[3]['y']) == (450, 450)


def test_execute_on_flipped_board(page, driver):
    driver.execute_script.return_value = {'flipped': True, 'left': 100, 'top': 0, 'width': 800}
    page.execute({'from': 'e7', 'to': 'e5', 'promotion': None})
    events = cdp_events(driver)
    assert (events[1]['x'], events[1]['y']) == (450, 650)


def test_execute_without_board_is_rejected(page, driver):
    driver.execute_script.return_value = None
    with pytest.raises(MoveRejectedError):
        page.execute({'from': 'e2', 'to': 'e4', 'promotion': None})
    driver.execute_cdp_cmd.assert_not_called()


def test_promotion_dialog_missing(page, driver):
    driver.execute_script.side_effect = [
        {'flipped': False, 'left': 0, 'top': 0, 'width': 800},
        False,
    ]
    with pytest.raises(MoveRejectedError) as excinfo:
        page.execute({'from': 'a7', 'to': 'a8', 'promotion': 'q'})
    assert excinfo.value.reason == "promotion dialog not found"


def test_poll_board_changed(page, driver):
    driver.execute_script.return_value = True
    assert page.poll_board_changed() is True


def test_moves_from_page_shapes():
    assert _moves_from_page("1. e4 e5 2. Nf3 Nc6 3. O-O") == ['e4', 'e5', 'Nf3', 'Nc6', 'O-O']
    assert _moves_from_page([{'san': 'e4'}, 'e5', '']) == ['e4', 'e5']
    assert _moves_from_page([]) is None
    assert _moves_from_page(42) is None
