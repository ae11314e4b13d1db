import json

import pytest
from click.testing import CliRunner

from slot_math import rtp_cli
from slot_math import config as app_config
from slot_math.rtp_cli import cli

FLAT_GAME = {
    "game": {
        "name": "Flat",
        "short_name": "flat",
        "layout": {"rows": 3, "columns": 5, "paylines": [{"id": 1, "rows": [2, 2, 2, 2, 2]}]},
        "symbols": [
            {"id": 1, "name": "Bar", "line_payouts": [0, 1, 2, 4, 8]},
            {"id": 2, "name": "Wild", "line_payouts": [0, 2, 4, 8, 16]},
            {"id": 3, "name": "Star", "scatter_payouts": [0, 0, 1, 2, 3], "free_spins": [0, 0, 5, 5, 5]},
        ],
        "wild_symbol_id": 2,
        "scatter_symbol_id": 3,
        "reel_strips": {"regular": [[1]] * 5, "bonus": [[1]] * 5},
    }
}


@pytest.fixture(autouse=True)
def testing_config(monkeypatch):
    monkeypatch.setattr(rtp_cli, 'Config', app_config.TestingConfig)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def flat_game(tmp_path):
    path = tmp_path / "gameConfig.json"
    path.write_text(json.dumps(FLAT_GAME))
    return str(path)


def test_exact_json(runner):
    result = runner.invoke(cli, ['exact', 'arabian_nights', '--json'])
    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report['source'] == 'exact'
    assert report['total_rtp'] > report['regular']['symbol_rtp'] > 0
    assert 0 < report['bonus']['q'] < 1


def test_exact_text(runner, flat_game):
    result = runner.invoke(cli, ['exact', flat_game])
    assert result.exit_code == 0, result.output
    assert "Exact RTP for Flat" in result.output
    assert "Total RTP: 800.000000%" in result.output


def test_simulate_json(runner):
    result = runner.invoke(cli, ['simulate', 'arabian_nights', '-n', '500', '-w', '1', '--seed', '1', '--json'])
    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report['source'] == 'simulation'
    assert report['regular']['symbol_rtp'] >= 0


def test_validate_agreement(runner, flat_game):
    result = runner.invoke(cli, ['validate', flat_game, '-n', '100', '--tolerance', '0.001'])
    assert result.exit_code == 0, result.output
    assert "✅ Flat: exact 800.0000% vs simulated 800.0000%" in result.output


def test_validate_divergence_exits_nonzero(runner):
    result = runner.invoke(cli, ['validate', 'arabian_nights', '-n', '200', '--seed', '4', '--tolerance', '1e-9'])
    assert result.exit_code == 1
    assert "❌ Error" in result.output


def test_play_json_rounds(runner, flat_game):
    result = runner.invoke(cli, ['play', flat_game, '--rounds', '3', '--bet', '2', '--json'])
    assert result.exit_code == 0, result.output
    rounds = [json.loads(line) for line in result.output.splitlines() if line.strip()]
    assert [r['round'] for r in rounds] == [1, 2, 3]
    for played in rounds:
        assert played['grid'] == [[1] * 5] * 3
        assert played['gain'] == 16
        assert played['wins'][0]['line_id'] == 1
        assert played['wins'][0]['count'] == 5


def test_play_text(runner):
    result = runner.invoke(cli, ['play', 'arabian_nights', '--rounds', '2', '--seed', '7', '--lines', '10'])
    assert result.exit_code == 0, result.output
    assert "Round 1" in result.output
    assert "free spins remaining" in result.output


def test_play_rejects_bad_lines(runner):
    result = runner.invoke(cli, ['play', 'arabian_nights', '--lines', '31'])
    assert result.exit_code == 1
    assert "❌ Error" in result.output


def test_missing_slot(runner, tmp_path):
    result = runner.invoke(cli, ['--slots-dir', str(tmp_path), 'exact', 'no_such_slot'])
    assert result.exit_code == 1
    assert "Configuration file not found" in result.output


def test_invalid_config_reports_errors(runner, tmp_path):
    broken = dict(FLAT_GAME['game'], scatter_symbol_id=2)
    path = tmp_path / "gameConfig.json"
    path.write_text(json.dumps({"game": broken}))
    result = runner.invoke(cli, ['exact', str(path)])
    assert result.exit_code == 1
    assert "Config validation error" in result.output


def test_tester_without_graphs(runner, flat_game):
    result = runner.invoke(cli, ['tester', flat_game, '--spins', '20', '--no-graphs'])
    assert result.exit_code == 0, result.output
    assert "--- Simulation Summary ---" in result.output
    assert "Overall RTP: 800.00% (Exact: 800.00%)" in result.output


def test_tester_with_graphs(runner, flat_game, tmp_path):
    graph_dir = tmp_path / "graphs"
    result = runner.invoke(cli, ['tester', flat_game, '--spins', '20', '--graph-dir', str(graph_dir)])
    assert result.exit_code == 0, result.output
    assert (graph_dir / "flat_rtp_convergence.png").exists()
    assert (graph_dir / "flat_win_multipliers.png").exists()


@pytest.mark.parametrize("command", [
    ['simulate', '-n', '50', '-w', '1'],
    ['tester', '--spins', '5', '--no-graphs'],
])
def test_unset_seed_is_drawn_and_echoed(runner, flat_game, monkeypatch, command):
    monkeypatch.setattr(app_config.TestingConfig, 'SEED', None)
    result = runner.invoke(cli, [command[0], flat_game] + command[1:])
    assert result.exit_code == 0, result.output
    assert "🎲 Using random seed" in result.output


def test_configured_seed_is_used_silently(runner, flat_game):
    result = runner.invoke(cli, ['simulate', flat_game, '-n', '50', '-w', '1'])
    assert result.exit_code == 0, result.output
    assert "random seed" not in result.output
