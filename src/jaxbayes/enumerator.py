"""
Exact inference for models with finite discrete support.

The `Enumerator` integrates discrete random variables out by following every
execution path: a discrete draw branches into its whole support, weighted by
the probability of each outcome, and conditioning multiplies path weights
exactly. Draws without finite support are handed to a delegate: the default
`Deterministic` delegate refuses them, `Sampler` draws them at random.
"""

import warnings

import jax.numpy as jnp
import jax.scipy.special

from jaxbayes.core import (
    ONE,
    Any,
    Bind,
    Callable,
    Conditional,
    Dist,
    Draw,
    FloatArray,
    Optional,
    Primitive,
    PRNGKey,
    Pytree,
    Return,
    Sequence,
    UnhandledContinuousError,
    log_mul,
    log_weight,
    score_weight,
    split,
)

# Warn when normalizing a population that has no mass left.
warn_on_zero_evidence = True


def _warn_zero_evidence(what: str):
    if warn_on_zero_evidence:
        warnings.warn(
            f"{what}: every outcome has zero weight, so the result is NaN. "
            "The conditioning rules out all of the model's support."
        )


#############
# Delegates #
#############


@Pytree.dataclass
class Deterministic(Pytree):
    """Delegate for exact enumeration: draws without finite support are errors."""

    @property
    def key(self) -> None:
        return None

    def draw(self, d: Draw, key) -> Any:
        raise UnhandledContinuousError(
            f"Enumerator: there were unhandled continuous random variables "
            f"(a {d.name} draw with parameters {d.args})."
        )


@Pytree.dataclass
class Sampler(Pytree):
    """Delegate that samples draws without finite support, so discrete
    variables are enumerated and the rest are drawn at random."""

    key: PRNGKey

    def draw(self, d: Draw, key: PRNGKey) -> Any:
        return d.sample(key)


##############
# Population #
##############


@Pytree.dataclass
class Population(Pytree):
    """Outcomes paired with unnormalized log weights, one entry per path.
    The same outcome may appear more than once."""

    particles: tuple

    def to_list(self) -> list[tuple[Any, FloatArray]]:
        return list(self.particles)

    def explicit(self) -> list[tuple[Any, FloatArray]]:
        return [(x, jnp.exp(w)) for x, w in self.particles]

    def log_evidence(self) -> FloatArray:
        return jax.scipy.special.logsumexp(jnp.stack([w for _, w in self.particles]))

    def evidence(self) -> FloatArray:
        return jnp.exp(self.log_evidence())

    def expectation(self, f: Callable[[Any], Any]) -> FloatArray:
        log_z = self.log_evidence()
        if jnp.isneginf(log_z):
            _warn_zero_evidence("expectation")
        return sum(jnp.exp(w - log_z) * f(x) for x, w in self.particles)


##############
# Enumerator #
##############


@Pytree.dataclass
class Enumerator(Pytree):
    inner: Deterministic | Sampler = Pytree.field(default_factory=Deterministic)

    def population(self, d: Dist) -> Population:
        return Population(tuple(self._paths(d, self.inner.key)))

    def _paths(self, d: Dist, key: Optional[PRNGKey]) -> list[tuple[Any, FloatArray]]:
        # Depth-first over execution paths. Each work item is either a program
        # to descend into or an outcome to pass to the pending frames, which
        # form a linked list of Bind continuations and Conditional scores.
        paths = []
        work = [(False, d, key, jnp.array(ONE), None)]
        while work:
            resume, d, key, w, frames = work.pop()
            if resume:
                x = d
                while frames is not None and isinstance(frames[0], Conditional):
                    w = log_mul(w, score_weight(frames[0], x))
                    frames = frames[2]
                if frames is None:
                    paths.append((x, w))
                else:
                    bind, key, frames = frames
                    work.append((False, bind.apply(x), key, w, frames))
                continue

            while isinstance(d, (Bind, Conditional)):
                if isinstance(d, Bind):
                    sub_key = None
                    if key is not None:
                        key, sub_key = split(key)
                    frames = (d, key, frames)
                    key = sub_key
                else:
                    frames = (d, None, frames)
                d = d.parent

            if isinstance(d, Return):
                outcomes = [(d.value, jnp.array(ONE))]
            elif isinstance(d, Primitive):
                if d.draw.is_discrete:
                    outcomes = [(x, log_weight(p)) for x, p in d.draw.support()]
                else:
                    outcomes = [(self.inner.draw(d.draw, key), jnp.array(ONE))]
            else:
                raise TypeError(f"Enumerator: unknown program node {type(d).__name__}.")

            for x, v in reversed(outcomes):
                work.append((True, x, None, log_mul(w, v), frames))
        return paths


#######
# API #
#######


def to_population(
    d: Dist, inner: Deterministic | Sampler | None = None
) -> Population:
    enumerator = Enumerator() if inner is None else Enumerator(inner)
    return enumerator.population(d)


def to_list(d: Dist) -> list[tuple[Any, FloatArray]]:
    """Outcomes with log weights, without aggregation or normalization."""
    return to_population(d).to_list()


def explicit(d: Dist) -> list[tuple[Any, FloatArray]]:
    """Same as `to_list`, with weights out of log space."""
    return to_population(d).explicit()


def evidence(d: Dist) -> FloatArray:
    """Total unnormalized mass of the model."""
    return to_population(d).evidence()


def log_evidence(d: Dist) -> FloatArray:
    return to_population(d).log_evidence()


def _hashable(x):
    if hasattr(x, "tolist"):
        x = x.tolist()
    if isinstance(x, (list, tuple)):
        return tuple(_hashable(v) for v in x)
    return x


def _outcome_key(x):
    # Booleans are kept apart from the numbers they compare equal to.
    if isinstance(x, bool):
        return (bool, x)
    if isinstance(x, tuple):
        return tuple(_outcome_key(v) for v in x)
    return x


def compact(pairs: Sequence[tuple[Any, Any]]) -> list[tuple[Any, Any]]:
    """
    Add up the weights of equal outcomes. The result is sorted by outcome.

    Arrays become Python scalars or tuples first. Equal numbers merge
    (`1` and `1.0`), but `True` and `1` stay separate outcomes.
    """
    totals = {}
    for x, w in pairs:
        x = _hashable(x)
        k = _outcome_key(x)
        totals[k] = (x, totals[k][1] + w) if k in totals else (x, w)
    return sorted(totals.values(), key=lambda xw: xw[0])


def normalize(pairs: Sequence[tuple[Any, Any]]) -> list[tuple[Any, Any]]:
    """Rescale the weights to sum to one."""
    z = jnp.asarray(sum(w for _, w in pairs))
    if z == 0:
        _warn_zero_evidence("normalize")
    return [(x, w / z) for x, w in pairs]


def enumerate(d: Dist) -> list[tuple[Any, FloatArray]]:
    """
    The exact distribution of `d`: outcomes aggregated, sorted and normalized.

    > enumerate = normalize . compact . explicit
    """
    return normalize(compact(explicit(d)))


def mass(d: Dist, a: Any) -> FloatArray:
    """Normalized probability of the outcome `a`."""
    a = _outcome_key(_hashable(a))
    for x, p in enumerate(d):
        if _outcome_key(x) == a:
            return p
    return jnp.array(0.0)


def expectation(f: Callable[[Any], Any], d: Dist) -> FloatArray:
    """Expectation of `f` under `d`, self-normalized by the evidence."""
    return to_population(d).expectation(f)
