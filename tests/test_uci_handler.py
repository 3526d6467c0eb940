import pytest

from uci_handler import UCIHandler


@pytest.mark.parametrize("move", ["e2e4", "a7a8q", "h2h1n", "E2E4"])
def test_validate_accepts_coordinate_moves(move):
    assert UCIHandler.validate_uci_move(move)


@pytest.mark.parametrize("move", ["e2e9", "e2", "Nf3", "e7e8k", "0000", "", None, "e2e4e5"])
def test_validate_rejects_malformed_moves(move):
    assert not UCIHandler.validate_uci_move(move)


def test_parse_uci_move_splits_squares_and_promotion():
    assert UCIHandler.parse_uci_move("e7e8q") == {'from': 'e7', 'to': 'e8', 'promotion': 'q'}
    assert UCIHandler.parse_uci_move("g1f3") == {'from': 'g1', 'to': 'f3', 'promotion': None}
    assert UCIHandler.parse_uci_move("z9z9") is None


def test_format_move_display_names_promotion_piece():
    text = UCIHandler.format_move_display({'from': 'b7', 'to': 'b8', 'promotion': 'n'})
    assert text == "b7 -> b8 (promotes to Knight)"


def test_parse_bestmove_with_ponder():
    assert UCIHandler.parse_bestmove("bestmove e2e4 ponder e7e5") == {
        'move': 'e2e4', 'ponder': 'e7e5',
    }


def test_parse_bestmove_without_move():
    assert UCIHandler.parse_bestmove("bestmove (none)") == {'move': None, 'ponder': None}
    assert UCIHandler.parse_bestmove("info depth 1") is None


def test_parse_info_extracts_score_and_pv():
    info = UCIHandler.parse_info(
        "info depth 12 seldepth 18 multipv 1 score cp -34 nodes 52012 nps 810000 time 64 pv d7d5 c2c4"
    )
    assert info['depth'] == 12
    assert info['seldepth'] == 18
    assert info['score_cp'] == -34
    assert info['nodes'] == 52012
    assert info['pv'] == ['d7d5', 'c2c4']


def test_parse_info_mate_score_and_free_text():
    assert UCIHandler.parse_info("info score mate -3 depth 20")['score_mate'] == -3
    assert UCIHandler.parse_info("info string NNUE enabled") == {}


def test_position_command_startpos_and_fen():
    assert UCIHandler.position_command() == "position startpos"
    assert UCIHandler.position_command(None, ["e2e4", "e7e5"]) == "position startpos moves e2e4 e7e5"
    fen = "8/8/8/8/8/8/4k3/4K2R w K - 0 1"
    assert UCIHandler.position_command(fen, ["h1h2"]) == f"position fen {fen} moves h1h2"


def test_go_command_for_each_limit_kind():
    assert UCIHandler.go_command({'nodes': 1_000_000}) == "go nodes 1000000"
    assert UCIHandler.go_command({'movetime': 500}) == "go movetime 500"
    assert UCIHandler.go_command(
        {'wtime': 60000, 'btime': 59000, 'winc': 1000, 'binc': 1000}
    ) == "go wtime 60000 btime 59000 winc 1000 binc 1000"
