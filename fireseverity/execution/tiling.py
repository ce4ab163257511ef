"""
Block-wise Execution of Per-Pixel Raster Operations.

Every compositing and severity stage is a per-pixel function, so a raster
can be split into tiles, evaluated independently (optionally on a thread
pool) and stitched back with results identical to a single pass. This is
the swap point for heavier execution backends.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileWindow:
    """Row/column slice of a raster."""

    row: int
    col: int
    height: int
    width: int

    @property
    def slices(self) -> Tuple[slice, slice]:
        return (slice(self.row, self.row + self.height), slice(self.col, self.col + self.width))


def iterate_windows(shape: Tuple[int, int], tile_size: Tuple[int, int]) -> Iterator[TileWindow]:
    """
    Cover a (height, width) raster with tiles in row-major order.

    Edge tiles are truncated to the raster.
    """
    height, width = shape
    tile_h, tile_w = tile_size
    for row in range(0, height, tile_h):
        for col in range(0, width, tile_w):
            yield TileWindow(
                row=row,
                col=col,
                height=min(tile_h, height - row),
                width=min(tile_w, width - col),
            )


class TileExecutor:
    """
    Evaluates per-pixel functions tile by tile.

    Example:
        executor = TileExecutor(tile_size=(256, 256), max_workers=4)
        composite = executor.map_blocks(mean_composite, stack)
    """

    def __init__(self, tile_size: Tuple[int, int] = (512, 512), max_workers: int = 1):
        """
        Initialize executor.

        Args:
            tile_size: Tile (height, width) in pixels
            max_workers: Worker threads; 1 evaluates sequentially
        """
        if isinstance(tile_size, int):
            tile_size = (tile_size, tile_size)
        if tile_size[0] < 1 or tile_size[1] < 1:
            raise ValueError(f"tile_size dimensions must be positive, got {tile_size}")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.tile_size = (int(tile_size[0]), int(tile_size[1]))
        self.max_workers = max_workers

    def map_blocks(self, func: Callable[..., np.ndarray], *arrays: np.ndarray) -> np.ndarray:
        """
        Apply func to matching tiles of each array and stitch the results.

        All arrays share their last two (spatial) dimensions; func must
        return an array whose last two dimensions match its input tile.

        Args:
            func: Per-pixel function of the tile arrays
            *arrays: Inputs with shape (..., H, W)

        Returns:
            Stitched output with shape (..., H, W)
        """
        if not arrays:
            raise ValueError("map_blocks needs at least one array")
        shape = arrays[0].shape[-2:]
        for array in arrays[1:]:
            if array.shape[-2:] != shape:
                raise ValueError(f"Spatial shape mismatch: {array.shape[-2:]} vs {shape}")

        windows = list(iterate_windows(shape, self.tile_size))

        def run(window: TileWindow) -> np.ndarray:
            rows, cols = window.slices
            return func(*(array[..., rows, cols] for array in arrays))

        if self.max_workers > 1 and len(windows) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results: List[np.ndarray] = list(pool.map(run, windows))
        else:
            results = [run(window) for window in windows]

        first = results[0]
        output = np.empty(first.shape[:-2] + tuple(shape), dtype=first.dtype)
        for window, result in zip(windows, results):
            rows, cols = window.slices
            output[..., rows, cols] = result

        logger.debug(f"Evaluated {len(windows)} tiles of {self.tile_size} over {shape}")
        return output

    def to_dict(self) -> Dict[str, Any]:
        return {"tile_size": list(self.tile_size), "max_workers": self.max_workers}

    @classmethod
    def from_settings(cls, settings) -> "TileExecutor":
        """Create an executor from ExecutionSettings."""
        return cls(tile_size=(settings.tile_size, settings.tile_size), max_workers=settings.max_workers)
