"""Small rulesets and reel sets shared by the tests."""
import itertools
import math

from slot_math.models import GameConfig, ReelSet, Ruleset
from slot_math.utils.spin_handler import new_round, scan_grid

A, B, C, WILD, SCATTER = 1, 2, 3, 4, 5

PAYLINES = (
    (2, 2, 2, 2, 2),
    (1, 1, 1, 1, 1),
    (3, 3, 3, 3, 3),
    (1, 2, 3, 2, 1),
    (3, 2, 1, 2, 3),
)

PAYTABLE = {
    A: (0, 2, 10, 20, 50),
    B: (0, 0, 5, 10, 40),
    C: (0, 0, 0, 0, 0),
    WILD: (0, 5, 30, 60, 200),
    SCATTER: (0, 0, 0, 0, 0),
}

REGULAR_STRIPS = (
    (A, WILD, B, SCATTER, C),
    (B, A, WILD, C, A),
    (A, B, SCATTER, WILD, A),
    (WILD, A, B, A, C),
    (A, SCATTER, B, WILD, B),
)

# First reel can show two scatters at once.
BONUS_STRIPS = (
    (SCATTER, SCATTER, A, WILD, B),
    (A, WILD, B, A, SCATTER),
    (B, A, WILD, SCATTER, C),
    (A, B, WILD, A, SCATTER),
    (WILD, A, SCATTER, B, A),
)


def make_ruleset(**overrides):
    params = dict(
        columns=5,
        rows=3,
        wild_symbol_id=WILD,
        scatter_symbol_id=SCATTER,
        paylines=PAYLINES,
        paytable=dict(PAYTABLE),
        scatter_payouts=(0, 1, 4, 10, 50),
        scatter_free_spins=(0, 0, 1, 1, 1),
        wild_multiplier=2,
        free_spin_multiplier=3,
        line_min=2,
        scatter_min=2,
    )
    params.update(overrides)
    return Ruleset(**params)


def make_config(ruleset=None, regular=REGULAR_STRIPS, bonus=BONUS_STRIPS):
    return GameConfig(
        name="Test Slot",
        short_name="test_slot",
        ruleset=ruleset or make_ruleset(),
        regular_reels=ReelSet('regular', tuple(regular)),
        bonus_reels=ReelSet('bonus', tuple(bonus)),
    )


def fill_rows(grid, rows):
    """Writes a row-major list of symbol rows into ``grid``."""
    for r_idx, row in enumerate(rows):
        for c_idx, symbol_id in enumerate(row):
            grid.set_symbol(c_idx + 1, r_idx + 1, symbol_id)
    return grid


def enumerate_reel_set(config, mode):
    """
    Scans every stop combination of one reel set and returns
    ``(line_rtp, scatter_rtp, q, free_spin_hits)`` in units of the spin cost.
    """
    reels = config.reels_for(mode)
    state = new_round(config)
    if mode == 'bonus':
        state.free_spins_remaining = 1
    line_total = 0.0
    scatter_total = 0.0
    free_spins = 0
    hits = 0
    for stops in itertools.product(*(range(len(strip)) for strip in reels.strips)):
        for c_idx, offset in enumerate(stops):
            state.grid.set_column(c_idx + 1, reels.strips[c_idx], offset)
        result = scan_grid(state, config.ruleset)
        for win in result.wins:
            if win.line:
                line_total += win.amount
            else:
                scatter_total += win.amount
                free_spins += win.free_spins
                if win.free_spins:
                    hits += 1
    n = math.prod(reels.lengths)
    cost = state.cost
    return line_total / (n * cost), scatter_total / (n * cost), free_spins / n, hits
