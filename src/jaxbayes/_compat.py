"""Shims for running TensorFlow Probability's JAX substrate on recent JAX."""

from __future__ import annotations

import jax
from jax.interpreters import xla


def ensure_jax_tfp_compat() -> None:
    """Alias ``xla.pytype_aval_mappings``, which JAX 0.7 moved to ``jax.core``."""
    if not hasattr(xla, "pytype_aval_mappings") and hasattr(
        jax.core, "pytype_aval_mappings"
    ):
        xla.pytype_aval_mappings = jax.core.pytype_aval_mappings
