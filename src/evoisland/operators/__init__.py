"""
evoisland.operators
===================

Operators the engines apply to a ranked population.

Design:
 - Variation (random generation, mutation, crossover) is supplied by the user as
   callbacks on :class:`~evoisland.engine.GeneticConfig`; the entity stays opaque.
 - Selection is the engine's own concern: a closed set of strategies in
   :mod:`evoisland.operators.selection`, plus a callable escape hatch returning an
   index into the ranking.
"""

from __future__ import annotations

from evoisland.operators.selection import (
    Select,
    SelectionFunction,
    SelectionState,
    Selector,
)

__all__ = ["Select", "SelectionFunction", "SelectionState", "Selector"]
