# Copyright (c) 2025.
# This file is part of Hybrid-JIT, released under the MIT License.
"""Hybrid-JIT: hybrid discrete-continuous factor graphs on JAX."""

__version__ = "0.1.0"
