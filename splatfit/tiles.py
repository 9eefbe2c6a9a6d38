from typing import NamedTuple

BLOCK_X = 16
BLOCK_Y = 16


class TileBounds(NamedTuple):
    """Tile grid covering an image: (tiles wide, tiles high, depth)."""

    x: int
    y: int
    z: int = 1

    @classmethod
    def for_image(cls, width: int, height: int) -> "TileBounds":
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {width}x{height}")
        return cls(
            (width + BLOCK_X - 1) // BLOCK_X,
            (height + BLOCK_Y - 1) // BLOCK_Y,
            1,
        )

    @property
    def num_tiles(self) -> int:
        return self.x * self.y * self.z
