# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""Configuration for HybridFactorGraph."""

from __future__ import annotations
from dataclasses import dataclass

RAISE = "raise"
IGNORE = "ignore"


@dataclass
class HybridConfig:
    on_unknown_factor: str = RAISE   # "raise" or "ignore" a factor with no capability
    equality_tol: float = 1e-9       # default tolerance for equals()

    def __post_init__(self) -> None:
        if self.on_unknown_factor not in (RAISE, IGNORE):
            raise ValueError(
                f"Unknown on_unknown_factor policy '{self.on_unknown_factor}', "
                f"expected '{RAISE}' or '{IGNORE}'"
            )
