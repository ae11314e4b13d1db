import json
import logging
import os

from marshmallow import ValidationError

from slot_math.exceptions import ConfigurationException, GameLogicException, InvalidParameterException
from slot_math.models import RoundState, ScanResult, WinItem
from slot_math.schemas import GameConfigSchema
from slot_math.utils.grid import Grid

logger = logging.getLogger(__name__)

DEFAULT_SLOTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'public', 'slots'))


def load_game_config(slot, slots_dir=None):
    """
    Loads and validates a slot's game configuration.

    ``slot`` is either a path to a ``gameConfig.json`` file or the short name of
    a slot, in which case the file is looked up as
    ``<slots_dir>/<short_name>/gameConfig.json``.

    Args:
        slot (str): File path or slot short name.
        slots_dir (str, optional): Directory holding one folder per slot.
            Defaults to the bundled ``public/slots``.

    Returns:
        GameConfig: The validated configuration.

    Raises:
        FileNotFoundError: If the configuration file cannot be found.
        ConfigurationException: If the JSON is malformed or fails schema validation.
    """
    if os.path.isfile(slot):
        file_path = slot
    else:
        base_dir = slots_dir or DEFAULT_SLOTS_DIR
        file_path = os.path.join(base_dir, slot, "gameConfig.json")
        if not os.path.exists(file_path):
            logger.error("Configuration file not found for slot '%s' at %s", slot, file_path)
            raise FileNotFoundError(f"Configuration file not found for slot '{slot}' at {file_path}")

    try:
        with open(file_path, 'r') as f:
            raw_config = json.load(f)
    except json.JSONDecodeError as e:
        logger.error("JSON decode error for %s: %s at line %s col %s", file_path, e.msg, e.lineno, e.colno)
        raise ConfigurationException(
            f"Invalid JSON in {file_path}: {e.msg} (line {e.lineno}, col {e.colno})",
            details={'path': file_path})

    try:
        config = GameConfigSchema().load(raw_config)
    except ValidationError as e:
        logger.error("Configuration validation error for %s: %s", file_path, e.messages)
        raise ConfigurationException(
            f"Config validation error for '{file_path}'", details={'path': file_path, 'errors': e.messages})

    logger.info("Loaded config for '%s' (%d lines, %d symbols) from %s",
                config.short_name, len(config.ruleset.paylines), len(config.ruleset.paytable), file_path)
    return config


def new_round(config, bet=1, lines=None):
    """Fresh idle round with an empty grid sized for ``config``; all paylines active by default."""
    ruleset = config.ruleset
    if lines is None:
        lines = len(ruleset.paylines)
    state = RoundState(bet=1, lines=len(ruleset.paylines), grid=Grid(ruleset.columns, ruleset.rows))
    set_bet(state, bet)
    set_lines(state, lines, ruleset)
    return state


def set_bet(state, bet):
    """
    Changes the per-line bet.

    Raises:
        InvalidParameterException: If ``bet`` is not positive, or a free-spin
            session is active. The round is left untouched in both cases.
    """
    if bet <= 0:
        raise InvalidParameterException("Bet must be positive", details={'bet': bet})
    if bet == state.bet:
        return
    if state.free_mode:
        raise InvalidParameterException(
            "Bet cannot change during free spins",
            details={'free_spins_remaining': state.free_spins_remaining})
    state.bet = bet


def set_lines(state, lines, ruleset):
    """Changes the number of active paylines; same rejection rules as ``set_bet``."""
    line_count = len(ruleset.paylines)
    if lines < 1 or lines > line_count:
        raise InvalidParameterException(
            f"Line selection must be between 1 and {line_count}", details={'lines': lines})
    if lines == state.lines:
        return
    if state.free_mode:
        raise InvalidParameterException(
            "Line selection cannot change during free spins",
            details={'free_spins_remaining': state.free_spins_remaining})
    state.lines = lines


def set_gain(state, gain):
    state.gain = gain


def spin_round(state, config, rng):
    """
    Stops every reel of the round's grid.

    The bonus reel set is used while free spins remain, the regular set otherwise.
    ``rng`` is a ``numpy.random.Generator`` owned by the caller.
    """
    reels = config.bonus_reels if state.free_mode else config.regular_reels
    state.grid.spin_all(reels.strips, rng)
    return state.grid


def _line_cells(line, count):
    return tuple((col, line[col - 1]) for col in range(1, count + 1))


def _scan_payline(grid, line, line_id, bet, ruleset, free_multiplier):
    """
    Evaluates one payline and returns its ``WinItem`` or None.

    A mixed run (symbol plus at least one wild) is worth ``wild_multiplier``
    times its table pay. It beats a leading pure-wild run only when strictly
    larger; ties go to the wild win, which never carries the wild multiplier.
    """
    wild = ruleset.wild_symbol_id
    wild_run = 0
    line_symbol = 0
    run = ruleset.columns
    has_wild = False

    for col in range(1, ruleset.columns + 1):
        symbol = grid.on_line(col, line)
        if symbol == wild:
            if line_symbol == 0:
                wild_run = col
            has_wild = True
        elif line_symbol == 0:
            line_symbol = symbol
        elif symbol != line_symbol:
            run = col - 1
            break

    pay_wild = ruleset.line_pay(wild, wild_run) if wild_run >= ruleset.line_min else 0
    pay_line = ruleset.line_pay(line_symbol, run) if run >= ruleset.line_min and line_symbol else 0
    wild_multiplier = ruleset.wild_multiplier if has_wild else 1

    if pay_line * wild_multiplier > pay_wild:
        return WinItem(
            pay=bet * pay_line,
            multiplier=wild_multiplier * free_multiplier,
            symbol=line_symbol,
            count=run,
            line=line_id,
            cells=_line_cells(line, run),
        )
    if pay_wild > 0:
        return WinItem(
            pay=bet * pay_wild,
            multiplier=free_multiplier,
            symbol=wild,
            count=wild_run,
            line=line_id,
            cells=_line_cells(line, wild_run),
        )
    return None


def _scan_scatters(grid, bet, lines, ruleset, free_multiplier):
    scatter = ruleset.scatter_symbol_id
    count = grid.count_symbol(scatter)
    if count < ruleset.scatter_min:
        return None
    return WinItem(
        pay=bet * lines * ruleset.scatter_pay(count),
        multiplier=free_multiplier,
        symbol=scatter,
        count=count,
        line=0,
        cells=tuple(grid.locate_symbol(scatter)),
        free_spins=ruleset.scatter_spins(count),
    )


def scan_grid(state, ruleset):
    """
    Evaluates the round's grid against the first ``state.lines`` paylines and the scatter rule.

    Wins are ordered by payline, with the scatter win (if any) last. The
    free-spin multiplier applies to every win while the round has free spins
    remaining.

    Returns:
        ScanResult: ``error`` is None on success. A grid whose shape does not
        match the ruleset is reported through ``error`` instead of raising.
    """
    grid = state.grid
    if grid.dimensions() != (ruleset.columns, ruleset.rows):
        return ScanResult(error=GameLogicException(
            "Grid does not match the ruleset dimensions",
            details={'grid': grid.dimensions(), 'ruleset': (ruleset.columns, ruleset.rows)}))

    free_multiplier = ruleset.free_spin_multiplier if state.free_mode else 1
    wins = []
    for line_idx, line in enumerate(ruleset.paylines[:state.lines]):
        win = _scan_payline(grid, line, line_idx + 1, state.bet, ruleset, free_multiplier)
        if win is not None:
            wins.append(win)

    scatter_win = _scan_scatters(grid, state.bet, state.lines, ruleset, free_multiplier)
    if scatter_win is not None:
        wins.append(scatter_win)
    return ScanResult(wins=wins)


def apply_wins(state, wins):
    """
    Credits a scanned win list to the round and advances the free-spin counters.

    Inside a free-spin session wins accumulate into ``gain``; a paid spin
    replaces it. The remaining counter is decremented for the spin just played
    before any retrigger from ``wins`` is added.
    """
    total = sum(w.amount for w in wins)
    if state.free_mode:
        state.gain += total
        state.free_spins_played += 1
    else:
        state.gain = total
        state.free_spins_played = 0

    if state.free_spins_remaining > 0:
        state.free_spins_remaining -= 1
    for win in wins:
        if win.free_spins:
            state.free_spins_remaining += win.free_spins
    return state


def play_round(state, config, rng):
    """
    One player action: spin, scan and apply.

    Raises:
        GameLogicException: If the scan reports an error. The round's counters
            are left as they were before the call.
    """
    spin_round(state, config, rng)
    result = scan_grid(state, config.ruleset)
    if not result.ok:
        raise result.error
    apply_wins(state, result.wins)
    if result.free_spins and state.free_spins_played == 0:
        logger.debug("Free spins triggered: %d awarded (%s)", result.free_spins, state)
    return result
