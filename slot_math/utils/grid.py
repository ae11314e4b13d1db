"""
Fixed-size symbol grid with reel-stop semantics.

Columns and rows are 1-based everywhere in the public API. Cells are stored
column-major, one list per reel, so a reel stop maps onto a single list.
"""


class Grid:
    def __init__(self, columns=5, rows=3):
        if columns <= 0 or rows <= 0:
            raise ValueError(f"Grid dimensions must be positive, got {columns}x{rows}.")
        self.columns = columns
        self.rows = rows
        self.cells = [[0] * rows for _ in range(columns)]

    def __repr__(self):
        return f"<Grid {self.columns}x{self.rows} {self.cells}>"

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self.cells == other.cells

    def _check(self, col, row):
        if not (1 <= col <= self.columns and 1 <= row <= self.rows):
            raise IndexError(f"Cell ({col},{row}) is outside the {self.columns}x{self.rows} grid.")

    def dimensions(self):
        return self.columns, self.rows

    def at(self, col, row):
        self._check(col, row)
        return self.cells[col - 1][row - 1]

    def on_line(self, col, line):
        """Symbol that ``line`` (1-based row per column) passes through at ``col``."""
        return self.at(col, line[col - 1])

    def set_symbol(self, col, row, symbol_id):
        self._check(col, row)
        self.cells[col - 1][row - 1] = symbol_id

    def set_column(self, col, strip, offset):
        """
        Shows ``rows`` consecutive strip entries starting at ``offset`` in column ``col``.

        The offset is taken modulo the strip length, so negative offsets and
        offsets past the end wrap around the reel.
        """
        self._check(col, 1)
        strip_len = len(strip)
        if strip_len == 0:
            raise ValueError(f"Reel strip for column {col} is empty.")
        start = offset % strip_len
        column = self.cells[col - 1]
        for r_idx in range(self.rows):
            column[r_idx] = strip[(start + r_idx) % strip_len]

    def spin_all(self, strips, rng):
        """
        Stops every reel at an offset drawn uniformly from ``[0, len(strip))``.

        Args:
            strips (Sequence[Sequence[int]]): One reel strip per column.
            rng (numpy.random.Generator): Source of randomness, owned by the caller.

        Returns:
            list[int]: The offsets used, one per column.
        """
        if len(strips) != self.columns:
            raise ValueError(f"Expected {self.columns} reel strips, got {len(strips)}.")
        offsets = []
        for c_idx, strip in enumerate(strips):
            offset = int(rng.integers(len(strip)))
            self.set_column(c_idx + 1, strip, offset)
            offsets.append(offset)
        return offsets

    def count_symbol(self, symbol_id):
        return sum(column.count(symbol_id) for column in self.cells)

    def locate_symbol(self, symbol_id):
        """(col, row) of every ``symbol_id``, column by column and top to bottom within a column."""
        positions = []
        for c_idx, column in enumerate(self.cells):
            for r_idx, symbol_in_cell in enumerate(column):
                if symbol_in_cell == symbol_id:
                    positions.append((c_idx + 1, r_idx + 1))
        return positions

    def clone(self):
        twin = Grid(self.columns, self.rows)
        twin.cells = [column[:] for column in self.cells]
        return twin

    def to_rows(self):
        """Row-major copy, handy for printing."""
        return [[self.cells[c][r] for c in range(self.columns)] for r in range(self.rows)]
