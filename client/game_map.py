"""
Text grid maps.

    #  wall
    .  floor (spaces count as floor too)
    @  floor, and where the local player starts
"""

WALL = '#'
FLOOR = '.'
START = '@'


class MapLoadError(Exception):
    """The map file is missing or malformed."""


class GameMap:
    """A rectangular grid of cells plus a start position."""

    def __init__(self, rows: list, start: tuple = (0, 0)):
        self.rows = rows
        self.height = len(rows)
        self.width = max((len(r) for r in rows), default=0)
        self.start_row, self.start_col = start

    def is_wall(self, row: int, col: int) -> bool:
        if not self.in_bounds(row, col):
            return False
        line = self.rows[row]
        return col < len(line) and line[col] == WALL

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.height and 0 <= col < self.width

    def clamp(self, row: int, col: int) -> tuple:
        row = max(0, min(self.height - 1, row))
        col = max(0, min(self.width - 1, col))
        return row, col


def parse_map(text: str) -> GameMap:
    rows = [line.rstrip('\r\n') for line in text.splitlines()]
    while rows and not rows[-1].strip():
        rows.pop()
    if not rows:
        raise MapLoadError("Map is empty")

    start = None
    for r, line in enumerate(rows):
        c = line.find(START)
        if c >= 0:
            if start is not None:
                raise MapLoadError(f"Second start position at line {r + 1}")
            start = (r, c)
    if start is None:
        start = (0, 0)

    # The start marker is only a marker; the cell itself is floor
    sr, sc = start
    if rows[sr][sc:sc + 1] == START:
        rows[sr] = rows[sr][:sc] + FLOOR + rows[sr][sc + 1:]
    return GameMap(rows, start)


def load_map(path: str) -> GameMap:
    """Read a map file. Raises MapLoadError on any failure."""
    try:
        with open(path, encoding='utf-8') as f:
            text = f.read()
    except OSError as e:
        raise MapLoadError(f"Cannot read map {path}: {e}") from e
    return parse_map(text)
