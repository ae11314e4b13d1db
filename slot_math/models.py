"""
Data model shared by the scanner, the exact calculator and the simulator.

Everything here is plain configuration or plain state. Rulesets that differ in
grid size or paytable shape are different ``Ruleset`` values, not subclasses.
"""
import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from slot_math.utils.grid import Grid

Cell = Tuple[int, int]


@dataclass(frozen=True)
class Ruleset:
    columns: int
    rows: int
    wild_symbol_id: int
    scatter_symbol_id: int
    paylines: Tuple[Tuple[int, ...], ...]
    paytable: Dict[int, Tuple[float, ...]]
    scatter_payouts: Tuple[float, ...]
    scatter_free_spins: Tuple[int, ...]
    wild_multiplier: float = 2
    free_spin_multiplier: float = 3
    line_min: int = 2
    scatter_min: int = 2

    def line_pay(self, symbol_id, count):
        """Paytable multiplier for ``count`` consecutive ``symbol_id`` (0 if it does not pay)."""
        pays = self.paytable.get(symbol_id)
        if not pays or count < 1 or count > len(pays):
            return 0
        return pays[count - 1]

    def scatter_pay(self, count):
        if count < 1 or count > len(self.scatter_payouts):
            return 0
        return self.scatter_payouts[count - 1]

    def scatter_spins(self, count):
        if count < 1 or count > len(self.scatter_free_spins):
            return 0
        return self.scatter_free_spins[count - 1]

    def paying_symbols(self):
        """Non-wild symbols with at least one nonzero line pay, in id order."""
        return [
            sym for sym in sorted(self.paytable)
            if sym != self.wild_symbol_id and any(p > 0 for p in self.paytable[sym])
        ]


@dataclass(frozen=True)
class ReelSet:
    name: str
    strips: Tuple[Tuple[int, ...], ...]

    @property
    def lengths(self):
        return [len(strip) for strip in self.strips]


@dataclass(frozen=True)
class GameConfig:
    name: str
    short_name: str
    ruleset: Ruleset
    regular_reels: ReelSet
    bonus_reels: ReelSet

    def reels_for(self, mode):
        if mode == "regular":
            return self.regular_reels
        if mode == "bonus":
            return self.bonus_reels
        raise ValueError(f"Unknown reel set mode '{mode}'. Expected 'regular' or 'bonus'.")


@dataclass(frozen=True)
class WinItem:
    pay: float
    multiplier: float
    symbol: int
    count: int
    line: int
    cells: Tuple[Cell, ...]
    free_spins: int = 0

    @property
    def amount(self):
        return self.pay * self.multiplier

    def to_dict(self):
        return {
            "pay": self.pay,
            "multiplier": self.multiplier,
            "symbol_id": self.symbol,
            "count": self.count,
            "line_id": self.line if self.line else "scatter",
            "positions": [list(cell) for cell in self.cells],
            "free_spins": self.free_spins,
            "win_amount": self.amount,
        }


@dataclass
class ScanResult:
    wins: List[WinItem] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self):
        return self.error is None

    @property
    def total(self):
        return sum(w.amount for w in self.wins)

    @property
    def free_spins(self):
        return sum(w.free_spins for w in self.wins)


@dataclass
class RoundState:
    bet: float
    lines: int
    grid: Grid
    gain: float = 0
    free_spins_remaining: int = 0
    free_spins_played: int = 0

    @property
    def cost(self):
        return self.bet * self.lines

    @property
    def free_mode(self):
        return self.free_spins_remaining != 0

    def clone(self):
        return copy.deepcopy(self)

    def __repr__(self):
        return (f"<RoundState bet={self.bet} lines={self.lines} gain={self.gain} "
                f"fsr={self.free_spins_remaining} fsn={self.free_spins_played}>")
