import logging
import math
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import matplotlib
matplotlib.use('Agg')  # Use a non-interactive backend suitable for saving files
import matplotlib.pyplot as plt
import numpy as np

from slot_math.exceptions import InvalidParameterException, SimulationDivergenceException
from slot_math.utils.rtp_calculator import steady_state_multiplier
from slot_math.utils.spin_handler import new_round, play_round, scan_grid

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10_000


@dataclass
class StatAccumulator:
    """
    Running statistics of one simulation shard.

    Counters are plain ints. Pay sums are folded in with ``math.fsum`` once per
    batch, and shards are combined with ``merged``.
    """
    spins: int = 0
    errors: int = 0
    symbol_pays: Dict[int, float] = field(default_factory=dict)
    sum_sq_pay: float = 0.0
    free_spins_awarded: int = 0
    free_spin_hits: int = 0
    winning_spins: int = 0
    wins_by_multiplier: Dict[int, int] = field(default_factory=dict)
    convergence: List[Tuple[int, float]] = field(default_factory=list)
    _pending_pays: Dict[int, List[float]] = field(default_factory=dict, repr=False)
    _pending_sq: List[float] = field(default_factory=list, repr=False)

    def update(self, wins, cost):
        """Records one scanned spin and returns its total pay."""
        pay = 0.0
        for win in wins:
            if win.pay != 0:
                amount = win.amount
                self._pending_pays.setdefault(win.symbol, []).append(amount)
                pay += amount
            if win.free_spins != 0:
                self.free_spins_awarded += win.free_spins
                self.free_spin_hits += 1
        self.spins += 1
        if pay != 0:
            self._pending_sq.append(pay * pay)
            self.winning_spins += 1
        category = round(pay / cost) if cost else 0
        self.wins_by_multiplier[category] = self.wins_by_multiplier.get(category, 0) + 1
        return pay

    def flush(self):
        for symbol_id, amounts in self._pending_pays.items():
            self.symbol_pays[symbol_id] = math.fsum([self.symbol_pays.get(symbol_id, 0.0)] + amounts)
        self.sum_sq_pay = math.fsum([self.sum_sq_pay] + self._pending_sq)
        self._pending_pays = {}
        self._pending_sq = []

    def total_pay(self):
        return math.fsum(self.symbol_pays.values())

    def checkpoint(self):
        self.flush()
        self.convergence.append((self.spins, self.total_pay()))

    @classmethod
    def merged(cls, accumulators):
        """
        Combines shard accumulators.

        Convergence points are summed batch by batch over the batches every
        shard completed, then closed with the overall totals.
        """
        result = cls()
        for acc in accumulators:
            acc.flush()
        symbol_ids = sorted({s for acc in accumulators for s in acc.symbol_pays})
        for symbol_id in symbol_ids:
            result.symbol_pays[symbol_id] = math.fsum(acc.symbol_pays.get(symbol_id, 0.0) for acc in accumulators)
        result.sum_sq_pay = math.fsum(acc.sum_sq_pay for acc in accumulators)
        for acc in accumulators:
            result.spins += acc.spins
            result.errors += acc.errors
            result.free_spins_awarded += acc.free_spins_awarded
            result.free_spin_hits += acc.free_spin_hits
            result.winning_spins += acc.winning_spins
            for category, count in acc.wins_by_multiplier.items():
                result.wins_by_multiplier[category] = result.wins_by_multiplier.get(category, 0) + count

        common = min((len(acc.convergence) for acc in accumulators), default=0)
        for idx in range(common):
            spins = sum(acc.convergence[idx][0] for acc in accumulators)
            pay = math.fsum(acc.convergence[idx][1] for acc in accumulators)
            result.convergence.append((spins, pay))
        if result.spins and (not result.convergence or result.convergence[-1][0] != result.spins):
            result.convergence.append((result.spins, result.total_pay()))
        return result


@dataclass
class ReelSetSimulation:
    mode: str
    spins: int
    cost: float
    line_rtp: float
    scatter_rtp: float
    q: float
    sq: Optional[float]
    free_spins: int
    free_spin_hits: int
    hit_rate: float
    variance: float
    errors: int
    wins_by_multiplier: Dict[int, int] = field(default_factory=dict)
    convergence: List[Tuple[int, float]] = field(default_factory=list)

    @property
    def symbol_rtp(self):
        return self.line_rtp + self.scatter_rtp

    @property
    def volatility(self):
        return math.sqrt(self.variance)

    @property
    def free_spin_hit_rate(self):
        if self.free_spin_hits == 0:
            return math.inf
        return self.spins / self.free_spin_hits

    def as_dict(self):
        return {
            'line_rtp': self.line_rtp,
            'scatter_rtp': self.scatter_rtp,
            'symbol_rtp': self.symbol_rtp,
            'q': self.q,
            'sq': self.sq,
            'free_spin_hit_rate': self.free_spin_hit_rate,
            'hit_rate': self.hit_rate,
            'variance': self.variance,
            'volatility': self.volatility,
            'spins': self.spins,
            'errors': self.errors,
        }


@dataclass
class SimulationReport:
    regular: ReelSetSimulation
    bonus: ReelSetSimulation
    free_spin_rtp: float
    total_rtp: float
    seed_entropy: Optional[int] = None

    @property
    def errors(self):
        return self.regular.errors + self.bonus.errors

    def as_dict(self):
        return {
            'source': 'simulation',
            'regular': self.regular.as_dict(),
            'bonus': self.bonus.as_dict(),
            'free_spin_rtp': self.free_spin_rtp,
            'total_rtp': self.total_rtp,
        }


def _split_work(total, parts):
    """Divide work into roughly equal integer chunks."""
    base = total // parts
    remainder = total % parts
    sizes = []
    for i in range(parts):
        chunk = base + (1 if i < remainder else 0)
        if chunk > 0:
            sizes.append(chunk)
    return sizes


def _seed_sequence(seed):
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


def _simulate_shard(config, mode, iterations, seed_seq, bet, lines, batch_size):
    rng = np.random.default_rng(seed_seq)
    ruleset = config.ruleset
    state = new_round(config, bet=bet, lines=lines)
    if mode == 'bonus':
        # Held above zero and never applied, so every scan pays the free-spin multiplier.
        state.free_spins_remaining = max(max(ruleset.scatter_free_spins, default=0), 1)
    reels = config.reels_for(mode)
    strips = reels.strips
    lengths = np.array(reels.lengths)
    cost = state.cost
    grid = state.grid

    acc = StatAccumulator()
    done = 0
    while done < iterations:
        size = min(batch_size, iterations - done)
        stops_batch = rng.integers(0, lengths, size=(size, len(strips))).tolist()
        for stops in stops_batch:
            for c_idx, offset in enumerate(stops):
                grid.set_column(c_idx + 1, strips[c_idx], offset)
            result = scan_grid(state, ruleset)
            if not result.ok:
                acc.errors += 1
                continue
            acc.update(result.wins, cost)
        done += size
        acc.checkpoint()
        logger.debug("%s shard: %d/%d spins", mode, done, iterations)
    return acc


def simulate_reels(config, mode, iterations, seed=None, workers=1, bet=1, lines=None,
                   batch_size=DEFAULT_BATCH_SIZE):
    """
    Runs ``iterations`` independent spins on one reel set and derives its ratios.

    Args:
        config (GameConfig): The game under test.
        mode (str): ``'regular'`` or ``'bonus'``. Bonus spins use the bonus reel
            set with the free-spin state forced on.
        iterations (int): Number of spins, split across ``workers`` processes.
        seed (int | numpy.random.SeedSequence | None): Root seed; each worker
            gets its own spawned stream.

    Returns:
        ReelSetSimulation

    Raises:
        InvalidParameterException: For non-positive ``iterations``/``workers``/``batch_size``.
        ConfigurationException: If bonus spins retrigger one free spin or more on average.
    """
    if iterations <= 0:
        raise InvalidParameterException("Iteration count must be positive", details={'iterations': iterations})
    if workers <= 0:
        raise InvalidParameterException("Worker count must be positive", details={'workers': workers})
    if batch_size <= 0:
        raise InvalidParameterException("Batch size must be positive", details={'batch_size': batch_size})
    config.reels_for(mode)

    chunk_sizes = _split_work(iterations, workers)
    seeds = _seed_sequence(seed).spawn(len(chunk_sizes))
    logger.info("Simulating %d %s spins on %d worker(s)", iterations, mode, len(chunk_sizes))

    if len(chunk_sizes) == 1:
        shards = [_simulate_shard(config, mode, chunk_sizes[0], seeds[0], bet, lines, batch_size)]
    else:
        with ProcessPoolExecutor(max_workers=len(chunk_sizes)) as executor:
            futures = [
                executor.submit(_simulate_shard, config, mode, chunk, shard_seed, bet, lines, batch_size)
                for chunk, shard_seed in zip(chunk_sizes, seeds)
            ]
            shards = [future.result() for future in futures]

    acc = StatAccumulator.merged(shards)
    return _derive(config, mode, acc, bet, lines)


def _derive(config, mode, acc, bet, lines):
    ruleset = config.ruleset
    cost = bet * (lines if lines is not None else len(ruleset.paylines))
    n = acc.spins
    if n == 0:
        raise InvalidParameterException("No spins were scanned successfully", details={'errors': acc.errors})

    scatter_id = ruleset.scatter_symbol_id
    line_pay = math.fsum(pay for symbol_id, pay in acc.symbol_pays.items() if symbol_id != scatter_id)
    scatter_pay = acc.symbol_pays.get(scatter_id, 0.0)
    q = acc.free_spins_awarded / n
    if mode == 'bonus':
        sq = steady_state_multiplier(q)
    else:
        sq = 1 / (1 - q) if q < 1 else None

    mean = acc.total_pay() / n
    variance = max(acc.sum_sq_pay / n - mean * mean, 0.0) / (cost * cost)

    result = ReelSetSimulation(
        mode=mode,
        spins=n,
        cost=cost,
        line_rtp=line_pay / (n * cost),
        scatter_rtp=scatter_pay / (n * cost),
        q=q,
        sq=sq,
        free_spins=acc.free_spins_awarded,
        free_spin_hits=acc.free_spin_hits,
        hit_rate=acc.winning_spins / n,
        variance=variance,
        errors=acc.errors,
        wins_by_multiplier=dict(acc.wins_by_multiplier),
        convergence=[(spins, pay / (spins * cost)) for spins, pay in acc.convergence if spins],
    )
    logger.info("*%s reels simulation*", mode)
    logger.info("symbols: %.5f(lined) + %.5f(scatter) = %.6f%%",
                result.line_rtp * 100, result.scatter_rtp * 100, result.symbol_rtp * 100)
    logger.info("free spins %d, q = %.5f, sq = 1/(1-q) = %s",
                result.free_spins, q, f"{sq:.6f}" if sq is not None else "n/a")
    logger.info("free games hit rate: 1/%.5f, hit rate %.5f, volatility %.4f",
                result.free_spin_hit_rate, result.hit_rate, result.volatility)
    if acc.errors:
        logger.warning("%d %s spins failed to scan", acc.errors, mode)
    return result


def simulate_rtp(config, iterations, seed=None, workers=1, bet=1, lines=None, batch_size=DEFAULT_BATCH_SIZE):
    """
    Monte Carlo counterpart of ``evaluate_exact_rtp``.

    Bonus pays already carry the free-spin multiplier from the scanner, so a
    granted free spin is worth ``sq_bonus * symbol_rtp_bonus``.
    """
    root = _seed_sequence(seed)
    bonus_seed, regular_seed = root.spawn(2)

    bonus = simulate_reels(config, 'bonus', iterations, bonus_seed, workers, bet, lines, batch_size)
    free_spin_rtp = bonus.sq * bonus.symbol_rtp
    regular = simulate_reels(config, 'regular', iterations, regular_seed, workers, bet, lines, batch_size)
    total_rtp = regular.symbol_rtp + regular.q * free_spin_rtp
    logger.info("RTP = %.5f(sym) + %.5f*%.5f(fg) = %.6f%%",
                regular.symbol_rtp * 100, regular.q, free_spin_rtp * 100, total_rtp * 100)

    return SimulationReport(
        regular=regular,
        bonus=bonus,
        free_spin_rtp=free_spin_rtp,
        total_rtp=total_rtp,
        seed_entropy=root.entropy,
    )


def _relative_difference(exact, simulated):
    if exact == 0:
        return abs(simulated)
    return abs(simulated - exact) / abs(exact)


def compare_reports(exact, simulated, tolerance):
    """
    Checks a simulation against the exact figures.

    Returns the relative differences per figure. The simulated bonus figures
    include the free-spin multiplier, so the exact bonus ratio is scaled to match.

    Raises:
        SimulationDivergenceException: If any difference exceeds ``tolerance``
            or any simulated spin failed to scan.
    """
    differences = {
        'total_rtp': _relative_difference(exact.total_rtp, simulated.total_rtp),
        'regular_symbol_rtp': _relative_difference(exact.regular.symbol_rtp, simulated.regular.symbol_rtp),
        'bonus_symbol_rtp': _relative_difference(
            exact.bonus.symbol_rtp * exact.free_spin_multiplier, simulated.bonus.symbol_rtp),
    }
    diverged = {name: diff for name, diff in differences.items() if diff > tolerance}
    if simulated.errors:
        raise SimulationDivergenceException(
            f"{simulated.errors} simulated spins failed to scan",
            details={'errors': simulated.errors, 'differences': differences})
    if diverged:
        raise SimulationDivergenceException(
            f"Simulated RTP differs from exact RTP by more than {tolerance:.4%}",
            details={'tolerance': tolerance, 'differences': differences,
                     'exact_total_rtp': exact.total_rtp, 'simulated_total_rtp': simulated.total_rtp})
    logger.info("Simulation agrees with exact RTP within %.4f%%: %s", tolerance * 100, differences)
    return differences


class SlotTester:
    """Plays whole sessions (paid spins plus the free spins they trigger) and reports on them."""

    def __init__(self, config, num_spins, bet=1, lines=None, seed=None, exact_rtp=None):
        if num_spins <= 0:
            raise InvalidParameterException("Number of spins must be positive", details={'num_spins': num_spins})
        self.config = config
        self.num_spins = num_spins
        self.bet = bet
        self.lines = lines
        self.exact_rtp = exact_rtp
        self.rng = np.random.default_rng(seed)
        self.state = new_round(config, bet=bet, lines=lines)

        # Statistics to be collected
        self.total_bet = 0.0
        self.total_win = 0.0
        self.hit_count = 0
        self.bonus_triggers = 0
        self.total_bonus_win = 0.0
        self.bonus_data = []
        self.session_wins = []
        self.wins_by_multiplier = {}
        self.rtp_over_time = []

        # Derived statistics
        self.overall_rtp = 0
        self.hit_frequency = 0
        self.bonus_frequency = 0
        self.avg_bonus_win = 0
        self.base_game_rtp_contribution = 0
        self.bonus_rtp_contribution = 0
        self.volatility_index = 0

    def run_simulation(self):
        logger.info("Starting session test for %s with %d paid spins at bet %s x %d lines",
                    self.config.short_name, self.num_spins, self.bet, self.state.lines)
        interval = self.num_spins // 20 or 1
        for i in range(self.num_spins):
            self._play_session()
            if (i + 1) % interval == 0 or (i + 1) == self.num_spins:
                current_rtp = (self.total_win / self.total_bet) * 100 if self.total_bet > 0 else 0
                self.rtp_over_time.append({'spin_count': i + 1, 'rtp': current_rtp})
                logger.debug("Completed %d/%d paid spins", i + 1, self.num_spins)
        self.calculate_derived_statistics()
        logger.info("Session test finished for %s", self.config.short_name)

    def _play_session(self):
        state = self.state
        cost = state.cost
        play_round(state, self.config, self.rng)
        base_win = state.gain
        self.total_bet += cost

        if state.free_mode:
            self.bonus_triggers += 1
            while state.free_mode:
                play_round(state, self.config, self.rng)
            bonus_win = state.gain - base_win
            self.bonus_data.append({'total_win': bonus_win, 'num_spins': state.free_spins_played})
            self.total_bonus_win += bonus_win

        session_win = state.gain
        self.total_win += session_win
        self.session_wins.append(session_win)
        if session_win > 0:
            self.hit_count += 1
        multiplier_category = round(session_win / cost)
        self.wins_by_multiplier[multiplier_category] = self.wins_by_multiplier.get(multiplier_category, 0) + 1

    def calculate_derived_statistics(self):
        self.overall_rtp = (self.total_win / self.total_bet) * 100 if self.total_bet > 0 else 0
        self.hit_frequency = (self.hit_count / self.num_spins) * 100
        self.bonus_frequency = (self.bonus_triggers / self.num_spins) * 100
        self.avg_bonus_win = (self.total_bonus_win / self.bonus_triggers) if self.bonus_triggers > 0 else 0

        base_game_win = self.total_win - self.total_bonus_win
        self.base_game_rtp_contribution = (base_game_win / self.total_bet) * 100 if self.total_bet > 0 else 0
        self.bonus_rtp_contribution = (self.total_bonus_win / self.total_bet) * 100 if self.total_bet > 0 else 0

        if self.session_wins:
            self.volatility_index = float(np.std(self.session_wins)) / self.state.cost

    def print_summary_statistics(self):
        print("\n--- Simulation Summary ---")
        print(f"Slot Game: {self.config.name}")
        print(f"Paid Spins Simulated: {self.num_spins}")
        print(f"Bet: {self.bet} x {self.state.lines} lines = {self.state.cost} per spin")
        print(f"Total Wagered: {self.total_bet:.2f}")
        print(f"Total Won: {self.total_win:.2f}")

        print("\n--- Detailed Metrics ---")
        target_rtp_display = f"{self.exact_rtp * 100:.2f}%" if self.exact_rtp is not None else "N/A"
        print(f"Overall RTP: {self.overall_rtp:.2f}% (Exact: {target_rtp_display})")
        print(f"Hit Frequency: {self.hit_frequency:.2f}% ({self.hit_count} wins out of {self.num_spins} spins)")
        print(f"Bonus Trigger Frequency: {self.bonus_frequency:.2f}% "
              f"({self.bonus_triggers} triggers in {self.num_spins} spins)")

        avg_bonus_spins = 0
        if self.bonus_triggers > 0:
            avg_bonus_spins = sum(b['num_spins'] for b in self.bonus_data) / self.bonus_triggers
        print(f"Average Bonus Win: {self.avg_bonus_win:.2f} "
              f"(Total from bonuses: {self.total_bonus_win:.2f} from {self.bonus_triggers} triggers)")
        print(f"Average Spins in Bonus: {avg_bonus_spins:.2f} spins")
        print(f"Base Game RTP Contribution: {self.base_game_rtp_contribution:.2f}%")
        print(f"Bonus Game RTP Contribution: {self.bonus_rtp_contribution:.2f}%")
        print(f"Volatility Index (Win StdDev / Bet): {self.volatility_index:.2f}")

        print("\nWin Distribution (by Bet Multiplier):")
        for mult, count in sorted(self.wins_by_multiplier.items()):
            print(f"  {mult}x Bet: {count} times ({(count / self.num_spins) * 100:.2f}%)")

    def generate_graphs(self, graph_dir="slot_tester_graphs"):
        """Saves the win multiplier and RTP convergence graphs; returns the written paths."""
        os.makedirs(graph_dir, exist_ok=True)
        slot_name_for_file = self.config.short_name.replace("/", "_")
        saved = []

        # Graph 1: Histogram of Win Multipliers
        if self.wins_by_multiplier:
            multipliers = sorted(self.wins_by_multiplier.keys())
            counts = [self.wins_by_multiplier[m] for m in multipliers]

            plt.figure(figsize=(12, 7))
            plt.bar([str(m) + 'x' for m in multipliers], counts, color='skyblue', width=0.8)
            plt.title(f"Win Multiplier Distribution for {self.config.name}", fontsize=16)
            plt.xlabel("Bet Multiplier", fontsize=12)
            plt.ylabel("Frequency", fontsize=12)
            plt.xticks(rotation=45, ha="right", fontsize=10)
            plt.grid(axis='y', linestyle='--', alpha=0.7)
            plt.tight_layout()
            saved.append(self._save(graph_dir, f"{slot_name_for_file}_win_multipliers.png"))

        # Graph 2: RTP Convergence Over Time
        if self.rtp_over_time:
            spin_counts = [d['spin_count'] for d in self.rtp_over_time]
            rtps = [d['rtp'] for d in self.rtp_over_time]

            plt.figure(figsize=(10, 6))
            plt.plot(spin_counts, rtps, label="Simulated RTP", marker='.', linestyle='-')
            if self.exact_rtp is not None:
                plt.axhline(y=self.exact_rtp * 100, color='r', linestyle='--',
                            label=f"Exact RTP ({self.exact_rtp * 100:.2f}%)")
            plt.title(f"RTP Convergence for {self.config.name}", fontsize=16)
            plt.xlabel("Number of Spins", fontsize=12)
            plt.ylabel("RTP (%)", fontsize=12)
            plt.legend(fontsize=10)
            plt.grid(True, linestyle='--', alpha=0.7)
            plt.tight_layout()
            saved.append(self._save(graph_dir, f"{slot_name_for_file}_rtp_convergence.png"))

        plt.close('all')
        return [path for path in saved if path]

    def _save(self, graph_dir, file_name):
        graph_file_path = os.path.join(graph_dir, file_name)
        try:
            plt.savefig(graph_file_path)
        except OSError as e:
            logger.error("Failed to save graph %s: %s", graph_file_path, e)
            return None
        finally:
            plt.clf()
        logger.info("Saved graph to %s", graph_file_path)
        return graph_file_path
