import os
import tempfile
import unittest

import pytest

from slot_math.exceptions import GameLogicException, InvalidParameterException, SimulationDivergenceException
from slot_math.models import ScanResult, WinItem
from slot_math.tests.factories import A, C, PAYTABLE, SCATTER, WILD, make_config, make_ruleset
from slot_math.utils import slot_tester
from slot_math.utils.rtp_calculator import evaluate_exact_rtp
from slot_math.utils.slot_tester import (
    SlotTester,
    StatAccumulator,
    _split_work,
    compare_reports,
    simulate_reels,
    simulate_rtp,
)

FLAT_STRIPS = ((A,),) * 5


def flat_config():
    """Every spin shows nothing but A, so every line pays a five-of-a-kind."""
    return make_config(regular=FLAT_STRIPS, bonus=FLAT_STRIPS)


def win(symbol, amount, free_spins=0):
    return WinItem(pay=amount, multiplier=1, symbol=symbol, count=3, line=0 if symbol == SCATTER else 1,
                   cells=(), free_spins=free_spins)


class TestStatAccumulator(unittest.TestCase):

    def test_update_tracks_pays_and_free_spins(self):
        acc = StatAccumulator()
        self.assertEqual(acc.update([win(A, 10), win(SCATTER, 5, free_spins=3)], cost=5), 15)
        acc.update([], cost=5)
        acc.flush()
        self.assertEqual(acc.spins, 2)
        self.assertEqual(acc.symbol_pays, {A: 10, SCATTER: 5})
        self.assertEqual(acc.sum_sq_pay, 225)
        self.assertEqual((acc.free_spins_awarded, acc.free_spin_hits, acc.winning_spins), (3, 1, 1))
        self.assertEqual(acc.wins_by_multiplier, {3: 1, 0: 1})

    def test_merge_sums_shards(self):
        first, second = StatAccumulator(), StatAccumulator()
        first.update([win(A, 2)], cost=1)
        first.checkpoint()
        second.update([win(A, 4), win(SCATTER, 1, free_spins=1)], cost=1)
        second.update([], cost=1)
        second.checkpoint()
        merged = StatAccumulator.merged([first, second])
        self.assertEqual(merged.spins, 3)
        self.assertEqual(merged.symbol_pays, {A: 6, SCATTER: 1})
        self.assertEqual(merged.sum_sq_pay, 4 + 25)
        self.assertEqual(merged.free_spin_hits, 1)
        self.assertEqual(merged.winning_spins, 2)
        self.assertEqual(merged.convergence, [(3, 7)])


def test_split_work():
    assert _split_work(10, 3) == [4, 3, 3]
    assert _split_work(2, 4) == [1, 1]
    assert sum(_split_work(1_000_001, 8)) == 1_000_001


def test_flat_reels_have_no_variance():
    result = simulate_reels(flat_config(), 'regular', 500, seed=1, batch_size=128)
    assert result.spins == 500
    assert result.line_rtp == pytest.approx(50)
    assert result.scatter_rtp == 0
    assert result.hit_rate == 1
    assert result.variance == pytest.approx(0, abs=1e-9)
    assert result.q == 0
    assert result.free_spin_hit_rate == float('inf')
    assert result.convergence[-1] == (500, pytest.approx(50))


def test_flat_reels_match_exact_report():
    config = flat_config()
    exact = evaluate_exact_rtp(config)
    simulated = simulate_rtp(config, 200, seed=3)
    assert simulated.bonus.symbol_rtp == pytest.approx(150)
    assert simulated.total_rtp == pytest.approx(exact.total_rtp)
    differences = compare_reports(exact, simulated, tolerance=1e-9)
    assert max(differences.values()) < 1e-9


def test_same_seed_same_result():
    config = make_config()
    first = simulate_reels(config, 'regular', 2000, seed=42)
    second = simulate_reels(config, 'regular', 2000, seed=42)
    assert first.as_dict() == second.as_dict()


def test_simulation_converges_to_exact_rtp():
    config = make_config()
    exact = evaluate_exact_rtp(config)
    simulated = simulate_rtp(config, 100_000, seed=2024)
    assert simulated.regular.symbol_rtp == pytest.approx(exact.regular.symbol_rtp, rel=0.05)
    assert simulated.bonus.symbol_rtp == pytest.approx(3 * exact.bonus.symbol_rtp, rel=0.05)
    assert simulated.regular.q == pytest.approx(exact.regular.q, rel=0.05)
    assert simulated.bonus.q == pytest.approx(exact.bonus.q, rel=0.05)
    assert simulated.total_rtp == pytest.approx(exact.total_rtp, rel=0.05)
    compare_reports(exact, simulated, tolerance=0.05)
    assert 0 < simulated.regular.hit_rate < 1
    assert simulated.regular.volatility > 0


def steady_config():
    """Mostly A with one scatter per reel and no wild on the first reel, so pays vary little from spin to spin."""
    edge = (A, A, A, SCATTER, A, A, C, A, A, A)
    middle = (A, A, A, SCATTER, A, A, C, A, WILD, A)
    strips = (edge, middle, middle, middle, edge)
    ruleset = make_ruleset(paytable={**PAYTABLE, A: (0, 1, 2, 3, 4)},
                           scatter_payouts=(0, 1, 2, 3, 4), scatter_free_spins=(0, 0, 1, 1, 1))
    return make_config(ruleset, regular=strips, bonus=strips)


@pytest.mark.slow
def test_simulation_matches_exact_within_half_percent():
    config = steady_config()
    exact = evaluate_exact_rtp(config)
    simulated = simulate_rtp(config, 1_000_000, seed=777, workers=4)
    assert simulated.regular.spins == 1_000_000
    differences = compare_reports(exact, simulated, tolerance=0.005)
    assert max(differences.values()) < 0.005
    assert simulated.regular.q == pytest.approx(exact.regular.q, rel=0.02)


def test_workers_split_iterations():
    result = simulate_reels(make_config(), 'bonus', 3001, seed=9, workers=2, batch_size=500)
    assert result.spins == 3001
    assert result.errors == 0
    assert result.convergence[-1][0] == 3001


def test_invalid_iteration_count():
    with pytest.raises(InvalidParameterException):
        simulate_reels(make_config(), 'regular', 0)
    with pytest.raises(InvalidParameterException):
        simulate_reels(make_config(), 'regular', 10, workers=0)
    with pytest.raises(ValueError):
        simulate_reels(make_config(), 'turbo', 10)


def test_scan_errors_are_counted_and_fail_validation(monkeypatch):
    real_scan = slot_tester.scan_grid
    calls = {'n': 0}

    def flaky_scan(state, ruleset):
        calls['n'] += 1
        if calls['n'] % 2 == 0:
            return ScanResult(error=GameLogicException())
        return real_scan(state, ruleset)

    monkeypatch.setattr(slot_tester, 'scan_grid', flaky_scan)
    config = flat_config()
    simulated = simulate_rtp(config, 100, seed=5)
    assert simulated.regular.errors == 50
    assert simulated.regular.spins == 50
    assert simulated.errors == 100
    with pytest.raises(SimulationDivergenceException) as exc_info:
        compare_reports(evaluate_exact_rtp(config), simulated, tolerance=0.5)
    assert exc_info.value.details['errors'] == 100


def test_divergence_beyond_tolerance():
    config = make_config()
    exact = evaluate_exact_rtp(config)
    simulated = simulate_rtp(config, 300, seed=8)
    with pytest.raises(SimulationDivergenceException) as exc_info:
        compare_reports(exact, simulated, tolerance=1e-12)
    assert 'differences' in exc_info.value.details


class TestSlotTesterSessions(unittest.TestCase):

    def setUp(self):
        self.config = make_config()

    def test_session_statistics(self):
        tester = SlotTester(self.config, num_spins=400, bet=1, seed=17, exact_rtp=1.0)
        tester.run_simulation()
        self.assertEqual(tester.total_bet, 400 * 5)
        self.assertEqual(sum(tester.wins_by_multiplier.values()), 400)
        self.assertEqual(len(tester.session_wins), 400)
        self.assertAlmostEqual(tester.total_win, sum(tester.session_wins))
        self.assertEqual(len(tester.bonus_data), tester.bonus_triggers)
        self.assertGreater(tester.bonus_triggers, 0)
        self.assertFalse(tester.state.free_mode)
        self.assertEqual(tester.rtp_over_time[-1]['spin_count'], 400)
        self.assertAlmostEqual(tester.overall_rtp,
                               tester.base_game_rtp_contribution + tester.bonus_rtp_contribution)

    def test_flat_sessions(self):
        tester = SlotTester(flat_config(), num_spins=10, bet=2)
        tester.run_simulation()
        self.assertEqual(tester.overall_rtp, 5000)
        self.assertEqual(tester.wins_by_multiplier, {50: 10})
        self.assertEqual(tester.bonus_triggers, 0)
        self.assertEqual(tester.volatility_index, 0)

    def test_summary_and_graphs(self):
        tester = SlotTester(self.config, num_spins=50, seed=1, exact_rtp=0.9)
        tester.run_simulation()
        tester.print_summary_statistics()
        with tempfile.TemporaryDirectory() as graph_dir:
            paths = tester.generate_graphs(os.path.join(graph_dir, 'graphs'))
            self.assertEqual(len(paths), 2)
            for path in paths:
                self.assertTrue(os.path.exists(path))
            self.assertTrue(paths[0].endswith('test_slot_win_multipliers.png'))

    def test_rejects_non_positive_spins(self):
        with self.assertRaises(InvalidParameterException):
            SlotTester(self.config, num_spins=0)
