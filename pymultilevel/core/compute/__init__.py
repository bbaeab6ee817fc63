"""Compute utilities shared across PyMultilevel."""

from pymultilevel.core.compute.timing import Timer

__all__ = ["Timer"]
