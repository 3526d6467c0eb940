import os

import chess
import pytest

from bridge_session import BridgeSession
from errors import CommandError

from conftest import FakeExecutor


@pytest.fixture
def session(tmp_path, view, executor, log):
    engines_dir = tmp_path / 'engines'
    engines_dir.mkdir(exist_ok=True)
    config = {
        'engines_dir': str(engines_dir),
        'transcript_path': str(tmp_path / 'engine.log'),
        'nodes': 1000,
        'settle_delay': 0,
        'verify_attempts': 2,
    }
    session = BridgeSession(view, executor, config=config, log=log)
    yield session
    session.shutdown()


def reason_of(excinfo):
    return excinfo.value.reason


def test_enable_without_engines(session):
    with pytest.raises(CommandError) as excinfo:
        session.enable_engine()
    assert reason_of(excinfo) == 'no_engines'


def test_enable_unknown_engine_lists_available(session, make_engine):
    make_engine('alpha')
    with pytest.raises(CommandError) as excinfo:
        session.enable_engine('beta')
    assert reason_of(excinfo) == 'engine_not_found'
    assert 'alpha' in str(excinfo.value)


def test_enable_non_executable_engine(session, make_engine):
    path = make_engine('alpha')
    os.chmod(path, 0o644)
    with pytest.raises(CommandError) as excinfo:
        session.enable_engine('alpha')
    assert reason_of(excinfo) == 'not_executable'
    assert excinfo.value.suggestion.startswith('chmod +x')


def test_enable_first_executable_then_disable(session, make_engine):
    make_engine('alpha')
    result = session.enable_engine()
    assert result['engine'] == 'alpha'
    assert session.engine.is_ready()
    assert session.enable_engine()['message'] == 'Engine already enabled'

    session.disable_engine()
    assert session.engine is None
    assert session.disable_engine()['message'] == 'Engine already disabled'


def test_switch_replaces_engine_instance(session, make_engine):
    make_engine('alpha')
    make_engine('beta')
    session.enable_engine('alpha')
    first = session.engine

    result = session.switch_engine('beta')

    assert result['previous'] == 'alpha'
    assert session.engine is not first
    assert session.engine.name == 'beta'
    assert first.process is None


def test_search_settings_survive_engine_switch(session, make_engine):
    make_engine('alpha')
    make_engine('beta')
    session.configure_time(30_000, 500, 'accumulate')
    session.enable_engine('alpha')
    session.switch_engine('beta')
    assert session.engine.search_mode == 'time'
    assert session.engine.time_base == 30_000
    assert session.engine.clock_policy == 'accumulate'


def test_config_validation(session):
    with pytest.raises(CommandError):
        session.configure_nodes(0)
    with pytest.raises(CommandError):
        session.configure_time(1000, 0, 'sometimes')
    with pytest.raises(CommandError):
        session.set_engine_option('Threads', 'many')


def test_autoplay_requires_engine(session):
    with pytest.raises(CommandError) as excinfo:
        session.enable_autoplay('white', start_timer=False)
    assert reason_of(excinfo) == 'engine_not_enabled'
    assert not session.autoplay.enabled


def test_autoplay_rejects_bad_color(session):
    with pytest.raises(CommandError) as excinfo:
        session.enable_autoplay('green', start_timer=False)
    assert reason_of(excinfo) == 'invalid_color'


def test_autoplay_enable_syncs_first(session, make_engine, view):
    make_engine('alpha')
    session.enable_engine()
    view.play("e2e4")

    result = session.enable_autoplay('black', start_timer=False)

    assert result['color'] == 'black'
    assert result['move_history'] == ["e2e4"]
    assert session.autoplay.enabled
    assert session.autoplay.last_queried is None


def test_autoplay_plays_through_session(session, make_engine, view):
    make_engine('alpha')
    session.enable_engine()
    session.enable_autoplay('white', start_timer=False)

    result = session.autoplay.trigger()

    assert result['action'] == 'played'
    assert session.tracker.move_history == [result['move']]
    assert view.board.move_stack[-1].uci() == result['move']


def test_set_position_validates_format_and_legality(session):
    with pytest.raises(CommandError) as excinfo:
        session.set_position(["e2e4", "bogus"])
    assert reason_of(excinfo) == 'invalid_move'

    with pytest.raises(CommandError) as excinfo:
        session.set_position(["e2e4", "e2e4"])
    assert reason_of(excinfo) == 'illegal_move'
    assert session.tracker.move_history == []

    result = session.set_position(["e2e4", "e7e5"])
    assert result['move_count'] == 2


def test_reset_clears_history(session):
    session.set_position(["d2d4"])
    result = session.reset()
    assert result['previous_move_count'] == 1
    assert session.tracker.move_history == []


def test_sync_reports_divergence(session, view):
    session.set_position(["e2e4", "e7e5"])
    view.play("d2d4", "d7d5", "c2c4")
    with pytest.raises(CommandError) as excinfo:
        session.sync()
    assert reason_of(excinfo) == 'needs_manual_sync'
    assert excinfo.value.to_dict()['suggestion']


def test_sync_without_board(session, view):
    view.snapshot = ""
    with pytest.raises(CommandError) as excinfo:
        session.sync()
    assert reason_of(excinfo) == 'view_unavailable'


def test_suggest_does_not_play_or_mark_position(session, make_engine, view, executor):
    make_engine('alpha')
    session.enable_engine()
    session.engine.set_search_time(60_000, 0)

    result = session.suggest()

    assert chess.Move.from_uci(result['move']) in chess.Board().legal_moves
    assert executor.executed == []
    assert session.tracker.move_history == []
    assert session.autoplay.last_queried is None
    assert session.engine.clocks == {'white': 60_000, 'black': 60_000}


def test_manual_move_is_played_and_recorded(session, executor):
    result = session.play_move("g1f3")
    assert result['move'] == "g1f3"
    assert executor.executed == ["g1f3"]
    assert session.tracker.move_history == ["g1f3"]


def test_manual_move_rejected_by_board(session, view):
    session.executor = FakeExecutor(view, accept=False)
    with pytest.raises(CommandError) as excinfo:
        session.play_move("g1f3")
    assert reason_of(excinfo) == 'move_rejected'
    assert session.tracker.move_history == []


def test_manual_illegal_move(session, executor):
    with pytest.raises(CommandError) as excinfo:
        session.play_move("e2e5")
    assert reason_of(excinfo) == 'illegal_move'
    assert executor.executed == []


def test_status_summary(session):
    status = session.status()
    assert status['turn'] == 'white'
    assert status['engine'] is None
    assert status['autoplay']['state'] == 'disabled'
