"""
Exact RTP of a reel set, computed by counting stop combinations.

Every reel stops at an independent, uniformly chosen offset, so every row of a
column shows the same symbol distribution and each payline has the same
expected value. Line figures are therefore computed for a single line and are
already ratios to the line bet; they are not multiplied by the line count.

Combination counts are exact integers. Floats appear only when a count is
divided by the size of the combination space.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from slot_math.exceptions import ConfigurationException

logger = logging.getLogger(__name__)


@dataclass
class ReelStats:
    lengths: List[int]
    combinations: int
    counts: Dict[int, List[int]]

    def count(self, symbol_id):
        return self.counts.get(symbol_id, [0] * len(self.lengths))


@dataclass
class ReelSetRTP:
    name: str
    line_rtp: float
    scatter_rtp: float
    q: float
    sq: Optional[float]
    free_spins: int
    free_spin_hits: int
    combinations: int
    lengths: List[int] = field(default_factory=list)

    @property
    def symbol_rtp(self):
        return self.line_rtp + self.scatter_rtp

    @property
    def free_spin_hit_rate(self):
        """Average number of spins between free-spin awards (``inf`` if never)."""
        if self.free_spin_hits == 0:
            return math.inf
        return self.combinations / self.free_spin_hits

    def as_dict(self):
        return {
            'line_rtp': self.line_rtp,
            'scatter_rtp': self.scatter_rtp,
            'symbol_rtp': self.symbol_rtp,
            'q': self.q,
            'sq': self.sq,
            'free_spin_hit_rate': self.free_spin_hit_rate,
            'free_spins': self.free_spins,
            'combinations': self.combinations,
            'lengths': list(self.lengths),
        }


@dataclass
class ExactRTPReport:
    regular: ReelSetRTP
    bonus: ReelSetRTP
    free_spin_multiplier: float
    free_spin_rtp: float
    total_rtp: float

    def as_dict(self):
        return {
            'source': 'exact',
            'regular': self.regular.as_dict(),
            'bonus': self.bonus.as_dict(),
            'free_spin_rtp': self.free_spin_rtp,
            'total_rtp': self.total_rtp,
        }


def reel_stats(strips: Sequence[Sequence[int]], ruleset) -> ReelStats:
    if len(strips) != ruleset.columns:
        raise ConfigurationException(
            f"Expected {ruleset.columns} reel strips, got {len(strips)}",
            details={'strips': len(strips), 'columns': ruleset.columns})
    lengths = [len(strip) for strip in strips]
    counts: Dict[int, List[int]] = {}
    for col, strip in enumerate(strips):
        for symbol_id in strip:
            counts.setdefault(symbol_id, [0] * len(strips))[col] += 1
    return ReelStats(lengths=lengths, combinations=math.prod(lengths), counts=counts)


def run_combinations(lengths, heads, n, breakers):
    """
    Number of stop combinations whose first ``n`` columns match ``heads`` and whose run breaks at column ``n``.

    ``heads[i]`` is the number of matching stops in column ``i``. Column ``n``
    (0-based, when it exists) must show none of the ``breakers[n]`` run-extending
    stops. Columns past the break are free.
    """
    total = 1
    for i, length in enumerate(lengths):
        if i < n:
            total *= heads[i]
        elif i == n:
            total *= length - breakers[i]
        else:
            total *= length
    return total


def _pays(ruleset, symbol_id):
    return [ruleset.line_pay(symbol_id, run) for run in range(1, ruleset.columns + 1)]


def _check_wild_pays(ruleset):
    """
    Rejects wild pays that drop as the run gets longer.

    Mixed runs are split from wild-only runs by the shortest wild run that
    outpays them, which only holds when longer wild runs never pay less.
    """
    wild_pays = _pays(ruleset, ruleset.wild_symbol_id)
    drops = [(run, run + 1) for run in range(ruleset.line_min, ruleset.columns)
             if wild_pays[run] < wild_pays[run - 1]]
    if drops:
        raise ConfigurationException(
            "Wild pays decrease with run length at "
            + ", ".join(f"{shorter}->{longer}" for shorter, longer in drops),
            details={'wild_pays': wild_pays, 'decreasing_runs': drops})


def line_ev_sum(stats, ruleset):
    """
    Sum over all stop combinations of the single-line pay (in line bets).

    Each symbol run is split into pure runs, mixed runs (paid with the wild
    multiplier) and runs led by enough wilds that the wild pay wins instead.
    """
    columns = ruleset.columns
    wild_id = ruleset.wild_symbol_id
    wm = ruleset.wild_multiplier
    lengths = stats.lengths
    w = stats.count(wild_id)
    wild_pays = _pays(ruleset, wild_id)
    ev_sum = 0

    for symbol_id in ruleset.paying_symbols():
        s = stats.count(symbol_id)
        combined = [s[i] + w[i] for i in range(columns)]
        for n in range(ruleset.line_min, columns + 1):
            payout = ruleset.line_pay(symbol_id, n)
            if payout <= 0:
                continue
            combs_total = run_combinations(lengths, combined, n, combined)
            combs_no_wild = run_combinations(lengths, s, n, combined)

            min_wild_run = next(
                (wn for wn in range(ruleset.line_min, n + 1) if wild_pays[wn - 1] >= payout * wm), None)
            if min_wild_run is not None:
                heads = w[:min_wild_run] + combined[min_wild_run:]
                excluded = run_combinations(lengths, heads, n, combined)
            else:
                # All-wild heads make the break symbol the line symbol, never this one.
                excluded = run_combinations(lengths, w, n, combined)

            combs_with_wild = combs_total - combs_no_wild - excluded
            ev_sum += (combs_no_wild + combs_with_wild * wm) * payout

    for n in range(ruleset.line_min, columns + 1):
        payout = wild_pays[n - 1]
        if payout <= 0:
            continue
        wild_clean = run_combinations(lengths, w, n, w)
        losses = 0
        for symbol_id in ruleset.paying_symbols():
            s = stats.count(symbol_id)
            combined = [s[i] + w[i] for i in range(columns)]
            for sn in range(n + 1, columns + 1):
                if ruleset.line_pay(symbol_id, sn) * wm <= payout:
                    continue
                heads = w[:n] + [s[n]] + combined[n + 1:]
                losses += run_combinations(lengths, heads, sn, combined)
        ev_sum += (wild_clean - losses) * payout

    return ev_sum


def scatter_window_histogram(strip, rows, scatter_id):
    """How many of the strip's stops show 0, 1, 2... scatters in a ``rows``-high window."""
    length = len(strip)
    histogram: Dict[int, int] = {}
    for offset in range(length):
        visible = sum(1 for r in range(rows) if strip[(offset + r) % length] == scatter_id)
        histogram[visible] = histogram.get(visible, 0) + 1
    return histogram


def scatter_ev_sums(strips, ruleset):
    """
    Returns ``(ev_sum, free_spin_sum, free_spin_hits)`` over all stop combinations.

    Columns are resolved one at a time from an explicit stack of
    ``(column, scatters so far, ways)`` branches.
    """
    rows = ruleset.rows
    scatter_id = ruleset.scatter_symbol_id
    histograms = []
    for col, strip in enumerate(strips):
        histogram = scatter_window_histogram(strip, rows, scatter_id)
        if any(visible > 1 for visible in histogram):
            logger.debug("Reel %d can show several scatters at once: %s", col + 1, histogram)
        histograms.append(sorted(histogram.items()))

    ev_sum = 0
    fs_sum = 0
    fs_hits = 0
    stack = [(0, 0, 1)]
    while stack:
        col, scatters, ways = stack.pop()
        if col == len(histograms):
            if scatters >= ruleset.scatter_min:
                ev_sum += ways * ruleset.scatter_pay(scatters)
                awarded = ruleset.scatter_spins(scatters)
                if awarded > 0:
                    fs_sum += ways * awarded
                    fs_hits += ways
            continue
        for visible, stops in histograms[col]:
            stack.append((col + 1, scatters + visible, ways * stops))
    return ev_sum, fs_sum, fs_hits


def steady_state_multiplier(q):
    """Expected spins played per granted free spin, retriggers included: ``1/(1-q)``."""
    if q >= 1:
        raise ConfigurationException(
            f"Free spins retrigger without end (q = {q:.5f} >= 1)", details={'q': q})
    return 1 / (1 - q)


def evaluate_reel_set(name, strips, ruleset, require_steady_state=False):
    _check_wild_pays(ruleset)
    stats = reel_stats(strips, ruleset)
    n = stats.combinations
    line_rtp = line_ev_sum(stats, ruleset) / n
    scatter_ev, fs_sum, fs_hits = scatter_ev_sums(strips, ruleset)
    q = fs_sum / n
    if require_steady_state:
        sq = steady_state_multiplier(q)
    else:
        sq = 1 / (1 - q) if q < 1 else None

    result = ReelSetRTP(
        name=name,
        line_rtp=line_rtp,
        scatter_rtp=scatter_ev / n,
        q=q,
        sq=sq,
        free_spins=fs_sum,
        free_spin_hits=fs_hits,
        combinations=n,
        lengths=stats.lengths,
    )
    logger.info("*%s reels calculations*", name)
    logger.info("reels lengths %s, total reshuffles %d", stats.lengths, n)
    logger.info("symbols: %.5f(lined) + %.5f(scatter) = %.6f%%",
                result.line_rtp * 100, result.scatter_rtp * 100, result.symbol_rtp * 100)
    logger.info("free spins %d, q = %.5f, sq = 1/(1-q) = %s", fs_sum, q, f"{sq:.6f}" if sq is not None else "n/a")
    logger.info("free games hit rate: 1/%.5f", result.free_spin_hit_rate)
    return result


def evaluate_exact_rtp(config):
    """
    Exact RTP of ``config``: regular spins plus the free-spin sessions they trigger.

    The bonus reel set is evaluated first. Each granted free spin is worth
    ``free_spin_multiplier * sq_bonus * symbol_rtp_bonus`` bets, and a regular
    spin grants ``q_regular`` free spins on average.

    Raises:
        ConfigurationException: On a strip count mismatch, wild pays that
            decrease with run length, or when free spins retrigger at least
            one free spin per spin on average.
    """
    ruleset = config.ruleset

    bonus = evaluate_reel_set('bonus', config.bonus_reels.strips, ruleset, require_steady_state=True)
    free_spin_rtp = ruleset.free_spin_multiplier * bonus.sq * bonus.symbol_rtp
    logger.info("RTP = %s*sq*rtp(sym) = %s*%.5f*%.5f = %.6f%%", ruleset.free_spin_multiplier,
                ruleset.free_spin_multiplier, bonus.sq, bonus.symbol_rtp * 100, free_spin_rtp * 100)

    regular = evaluate_reel_set('regular', config.regular_reels.strips, ruleset)
    total_rtp = regular.symbol_rtp + regular.q * free_spin_rtp
    logger.info("RTP = %.5f(sym) + %.5f*%.5f(fg) = %.6f%%",
                regular.symbol_rtp * 100, regular.q, free_spin_rtp * 100, total_rtp * 100)

    return ExactRTPReport(
        regular=regular,
        bonus=bonus,
        free_spin_multiplier=ruleset.free_spin_multiplier,
        free_spin_rtp=free_spin_rtp,
        total_rtp=total_rtp,
    )
