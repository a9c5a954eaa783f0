"""Standard primitive distributions for jaxbayes.

Each family is a `Distribution`: calling it with parameters builds a
`Primitive` program node. Sampling and densities come from TensorFlow
Probability. Discrete families also enumerate their support, which is what
lets the `Enumerator` integrate them out exactly.
"""

import jax
import jax.numpy as jnp
from tensorflow_probability.substrates import jax as tfp

from jaxbayes.core import (
    Any,
    Callable,
    Dist,
    Distribution,
    Sequence,
    distribution,
)

tfd = tfp.distributions


def tfp_distribution(
    dist: Callable[..., "tfd.Distribution"],
    /,
    name: str | None = None,
    slot: str = "real",
    support: Callable[..., Any] | None = None,
) -> Distribution:
    """Wrap a TFP distribution constructor as a `Distribution` family.

    The sampler and the log density are compiled with `jax.jit` once per
    family; they are retraced only when parameter shapes or dtypes change.
    """

    @jax.jit
    def keyful_sampler(key, *args, **kwargs):
        d = dist(*args, **kwargs)
        return d.sample(seed=key)

    @jax.jit
    def logpdf(v, *args, **kwargs):
        d = dist(*args, **kwargs)
        return d.log_prob(v)

    return distribution(
        keyful_sampler,
        logpdf,
        name=name,
        slot=slot,
        support=support,
    )


########################
# Finite-support utils #
########################


def _normalized(pairs: Sequence[tuple[Any, Any]]) -> list[tuple[Any, Any]]:
    pairs = list(pairs)
    if not pairs:
        raise ValueError("A discrete distribution needs at least one outcome.")
    total = sum(p for _, p in pairs)
    return [(x, p / total) for x, p in pairs]


@jax.jit
def _categorical_index(key, probs):
    return tfd.Categorical(probs=probs).sample(seed=key)


def _categorical_sample(key, pairs):
    pairs = _normalized(pairs)
    idx = _categorical_index(key, jnp.asarray([p for _, p in pairs]))
    return pairs[int(idx)][0]


def _categorical_logpdf(v, pairs):
    mass = sum(p for x, p in _normalized(pairs) if bool(x == v))
    return jnp.log(jnp.asarray(mass, dtype=jnp.float32))


##########################
# Discrete distributions #
##########################

bernoulli = tfp_distribution(
    lambda p: tfd.Bernoulli(probs=p, dtype=jnp.bool_),
    name="Bernoulli",
    slot="bool",
    support=lambda p: [(False, 1 - p), (True, p)],
)
"""Bernoulli distribution over booleans.

Args:
    p: Probability of `True`.
"""

categorical = distribution(
    _categorical_sample,
    _categorical_logpdf,
    name="Categorical",
    slot="any",
    support=_normalized,
)
"""Categorical distribution over arbitrary values.

Args:
    pairs: Sequence of `(value, probability)`; probabilities are normalized.
"""

uniform_discrete = distribution(
    lambda key, values: _categorical_sample(key, [(x, 1.0) for x in values]),
    lambda v, values: _categorical_logpdf(v, [(x, 1.0) for x in values]),
    name="UniformDiscrete",
    slot="any",
    support=lambda values: _normalized([(x, 1.0) for x in values]),
)
"""Uniform distribution over a finite sequence of values.

Args:
    values: The outcomes; duplicates receive proportionally more mass.
"""

dirac = distribution(
    lambda key, value: value,
    lambda v, value: jnp.where(v == value, 0.0, -jnp.inf),
    name="Dirac",
    slot="any",
    support=lambda value: [(value, 1.0)],
)
"""Point mass.

Args:
    value: The only outcome.
"""


def choice(p, d: Dist, d_: Dist) -> Dist:
    """With probability `p` continue as `d`, otherwise as `d_`."""
    return bernoulli(p).bind(lambda b: d if b else d_)


############################
# Continuous distributions #
############################

normal = tfp_distribution(
    tfd.Normal,
    name="Normal",
)
"""Normal (Gaussian) distribution.

Args:
    loc: Mean of the distribution.
    scale: Standard deviation (> 0).
"""

uniform = tfp_distribution(
    tfd.Uniform,
    name="Uniform",
)
"""Uniform distribution on an interval.

Args:
    low: Lower bound of the distribution.
    high: Upper bound of the distribution.
"""

exponential = tfp_distribution(
    tfd.Exponential,
    name="Exponential",
)
"""Exponential distribution for positive continuous values.

Args:
    rate: Rate parameter (> 0).
"""

gamma = tfp_distribution(
    tfd.Gamma,
    name="Gamma",
)
"""Gamma distribution for positive continuous values.

Args:
    concentration: Shape parameter (alpha > 0).
    rate: Rate parameter (beta > 0).
"""

beta = tfp_distribution(
    tfd.Beta,
    name="Beta",
)
"""Beta distribution on the interval [0, 1].

Args:
    concentration1: Alpha parameter (> 0).
    concentration0: Beta parameter (> 0).
"""
