from unittest.mock import MagicMock

import pytest

from bridge_client import BridgeClient
from config import DEFAULTS
from errors import CommandError


@pytest.fixture
def session():
    session = MagicMock()
    session.reset.return_value = {'previous_move_count': 3}
    session.set_position.return_value = {'move_count': 2}
    session.enable_autoplay.return_value = {'color': 'black', 'auto_color': False}
    session.play_move.return_value = {'move': 'e2e4', 'move_count': 1}
    return session


@pytest.fixture
def client(session, log):
    return BridgeClient(dict(DEFAULTS), session=session, log=log)


def test_quit_stops_the_prompt(client):
    assert client.run_command("quit") is False


def test_engine_subcommands(client, session):
    client.run_command("engine enable stockfish")
    client.run_command("engine switch lc0")
    client.run_command("engine disable")
    session.enable_engine.assert_called_once_with('stockfish')
    session.switch_engine.assert_called_once_with('lc0')
    session.disable_engine.assert_called_once_with()


def test_config_time_with_policy(client, session):
    client.run_command("config time 180000 2000 accumulate")
    session.configure_time.assert_called_once_with(180000, 2000, 'accumulate')


def test_position_with_fen_and_moves(client, session):
    client.run_command("position fen 6k1/5ppp/8/8/8/8/5PPP/3R2K1 w - - 0 1 moves d1d8")
    session.set_position.assert_called_once_with(
        ['d1d8'], '6k1/5ppp/8/8/8/8/5PPP/3R2K1 w - - 0 1'
    )


def test_position_startpos_moves(client, session):
    client.run_command("position startpos moves e2e4 E7E5")
    session.set_position.assert_called_once_with(['e2e4', 'e7e5'], None)


def test_autoplay_on_with_color(client, session):
    client.run_command("autoplay on black")
    session.enable_autoplay.assert_called_once_with('black')


def test_bare_coordinate_move_is_played(client, session):
    client.run_command("e2e4")
    session.play_move.assert_called_once_with('e2e4')


def test_command_errors_are_printed_with_suggestion(client, session, log):
    session.enable_autoplay.side_effect = CommandError(
        'engine_not_enabled', "Engine not enabled", "engine enable [name]")
    assert client.run_command("autoplay on") is True
    assert "[Error] Engine not enabled" in log.text()
    assert "Suggestion: engine enable [name]" in log.text()


def test_bad_number_is_reported(client, session, log):
    client.run_command("config nodes lots")
    session.configure_nodes.assert_not_called()
    assert "Usage: config nodes <n>" in log.text()


def test_unknown_command(client, log):
    client.run_command("resign")
    assert "Unknown command" in log.text()
