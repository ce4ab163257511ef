"""
Execution Package

Block-wise evaluation, export collaborators and the per-event batch driver.
"""

from fireseverity.execution.tiling import TileExecutor

__all__ = ["TileExecutor"]
