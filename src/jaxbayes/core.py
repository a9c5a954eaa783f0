import inspect
from dataclasses import field
from functools import wraps
from typing import overload

import beartype.typing as btyping
import jax.numpy as jnp
import jax.random as jrand
import jaxtyping as jtyping
import penzai.pz as pz
from typing_extensions import dataclass_transform

##########
# Typing #
##########

Any = btyping.Any
PRNGKey = jtyping.PRNGKeyArray
Array = jtyping.Array
ArrayLike = jtyping.ArrayLike
FloatArray = jtyping.Float[jtyping.Array, "..."]
Callable = btyping.Callable
Sequence = btyping.Sequence
Optional = btyping.Optional
Generic = btyping.Generic
TypeVar = btyping.TypeVar

A = TypeVar("A")
R = TypeVar("R")

#######################
# Probabilistic types #
#######################

LogWeight = FloatArray
Density = FloatArray
Slot = str

##########
# Pytree #
##########


class Pytree(pz.Struct):
    """`Pytree` is an abstract base class which registers a class with JAX's `Pytree`
    system, so that programs, draws and populations can be passed through
    `jax.tree_util` like any other JAX data.

    Fields declared with `Pytree.static(...)` are embedded in the `PyTreeDef`
    (continuations, scores and samplers live there); fields declared with
    `Pytree.field(...)` or left unannotated are leaves.
    """

    @staticmethod
    @overload
    def dataclass(
        incoming: None = None,
        /,
        **kwargs,
    ) -> Callable[[type[R]], type[R]]: ...

    @staticmethod
    @overload
    def dataclass(
        incoming: type[R],
        /,
        **kwargs,
    ) -> type[R]: ...

    @dataclass_transform(
        frozen_default=True,
    )
    @staticmethod
    def dataclass(
        incoming: type[R] | None = None,
        /,
        **kwargs,
    ) -> type[R] | Callable[[type[R]], type[R]]:
        """
        Denote that a class (which is inheriting `Pytree`) should be treated
        as a frozen dataclass. Instances are immutable once constructed.

        Examples
        --------

        ```{python}
        from jaxbayes import Pytree


        @Pytree.dataclass
        class Observation(Pytree):
            value: float
            label: str = Pytree.static(default="y")


        Observation(1.0)
        ```
        """

        return pz.pytree_dataclass(
            incoming,
            overwrite_parent_init=True,
            **kwargs,
        )

    @staticmethod
    def static(**kwargs):
        """Declare a field of a `Pytree` dataclass to be static."""
        return field(metadata={"pytree_node": False}, **kwargs)

    @staticmethod
    def field(**kwargs):
        """Declare a field of a `Pytree` dataclass to be dynamic.
        Alternatively, one can leave the annotation off in the declaration."""
        return field(**kwargs)


##########
# Errors #
##########


class ModelError(Exception):
    """Base class for errors caused by how a model was built or interpreted."""


class UnconditionedSamplingError(ModelError):
    """Raised when a forward sampler reaches a conditioning node."""


class UnhandledContinuousError(ModelError):
    """Raised when exact enumeration reaches a draw without finite support."""


class ShapeInvariantViolation(ModelError, ValueError):
    """Raised when slot lists of a joint-trace program (or a trace) don't line up."""


###############
# Log weights #
###############

# Log of the multiplicative identity.
ONE = 0.0


def log_weight(likelihood: ArrayLike) -> FloatArray:
    """Move a nonnegative likelihood into the log domain."""
    likelihood = jnp.asarray(likelihood)
    if jnp.any(likelihood < 0):
        raise ValueError(f"Likelihoods must be nonnegative, got {likelihood}.")
    return jnp.log(likelihood)


def log_mul(w: ArrayLike, w_: ArrayLike) -> FloatArray:
    """
    Multiply two weights held in log space.

    Negative infinity (a zero weight) absorbs everything, including a
    positive infinity, so zero weights never turn into NaN.
    """
    w, w_ = jnp.asarray(w), jnp.asarray(w_)
    zero = jnp.isneginf(w) | jnp.isneginf(w_)
    return jnp.where(zero, -jnp.inf, w + w_)


#################
# Random source #
#################


def split(key: PRNGKey) -> tuple[PRNGKey, PRNGKey]:
    """Split a key into two independent keys. Pure: same key, same pair."""
    k1, k2 = jrand.split(key)
    return k1, k2


#################
# Distributions #
#################


@Pytree.dataclass
class Distribution(Pytree):
    """A `Distribution` is a named family of primitive distributions.

    It bundles a keyful sampler, a log density and, for families with finite
    support, an enumeration of the support. Calling a family with parameters
    gives a `Primitive` program node:

        >>> from jaxbayes import normal
        >>> x = normal(0.0, 1.0)  # Dist[float], nothing is sampled yet

    Attributes:
        sample: `(key, *args) -> value`
        logpdf: `(value, *args) -> log density`
        name: Name used in error messages and pretty printing.
        slot: Tag a draw of this family contributes to a joint-trace shape.
        support: `(*args) -> [(value, probability), ...]`, discrete families only.
    """

    sample: Callable[..., Any] = Pytree.static()
    logpdf: Callable[..., Any] = Pytree.static()
    name: str | None = Pytree.static(default=None)
    slot: str = Pytree.static(default="real")
    support: Callable[..., Any] | None = Pytree.static(default=None)

    def __call__(self, *args) -> "Primitive":
        return Primitive(self.draw(*args))

    def draw(self, *args) -> "Draw":
        return Draw(self, args)


@Pytree.dataclass
class Draw(Pytree):
    """A family together with its parameters: everything needed to sample
    or score a single random choice."""

    dist: Distribution
    args: tuple

    @property
    def name(self) -> str:
        return self.dist.name or "<anonymous>"

    @property
    def slot(self) -> Slot:
        return self.dist.slot

    @property
    def is_discrete(self) -> bool:
        return self.dist.support is not None

    def sample(self, key: PRNGKey) -> Any:
        return self.dist.sample(key, *self.args)

    def logpdf(self, value) -> FloatArray:
        return jnp.asarray(self.dist.logpdf(value, *self.args))

    def density(self, value) -> FloatArray:
        return jnp.exp(self.logpdf(value))

    def support(self) -> list[tuple[Any, Any]]:
        if not self.is_discrete:
            raise UnhandledContinuousError(
                f"The {self.name} distribution has no finite support to enumerate."
            )
        return list(self.dist.support(*self.args))


def distribution(
    sampler: Callable[..., Any],
    logpdf: Callable[..., Any],
    /,
    name: str | None = None,
    slot: str = "real",
    support: Callable[..., Any] | None = None,
) -> Distribution:
    return Distribution(sampler, logpdf, name, slot, support)


########
# Dist #
########


class Dist(Generic[A], Pytree):
    """A probabilistic program: the free structure built from `Return`, `Bind`,
    `Primitive` and `Conditional` nodes.

    Programs are immutable. Building one performs no sampling; every meaning
    is given by an interpreter (`sample`, `prior`, `as_weighted`, `Enumerator`, ...)
    which traverses the same structure without changing it.
    """

    def bind(self, f: Callable[[A], "Dist"]) -> "Dist":
        return Bind(self, f)

    def map(self, f: Callable[[A], R]) -> "Dist":
        return Bind(self, lambda x: Return(f(x)))

    def sample(self, key: PRNGKey) -> A:
        return sample(self, key)


@Pytree.dataclass
class Return(Dist[A]):
    value: Any


@Pytree.dataclass
class Bind(Dist[A]):
    parent: Dist
    continuation: Callable[[Any], Dist] = Pytree.static()

    def apply(self, x) -> Dist:
        d = self.continuation(x)
        if not isinstance(d, Dist):
            raise TypeError(
                f"A continuation must return a Dist, got {type(d).__name__}."
            )
        return d


@Pytree.dataclass
class Primitive(Dist[A]):
    draw: Draw


@Pytree.dataclass
class Conditional(Dist[A]):
    """Reweight `parent` by `score(value)`. With `log_score`, the score is
    already a log weight."""

    score: Callable[[Any], Any] = Pytree.static()
    parent: Dist
    log_score: bool = Pytree.static(default=False)


def score_weight(node, x) -> FloatArray:
    """The log weight a conditioning node assigns to the value `x`."""
    s = node.score(x)
    if node.log_score:
        return jnp.asarray(s, dtype=float)
    return log_weight(s)


def defer(thunk: Callable[[], Dist]) -> Dist:
    """A program that builds `thunk()` only once an interpreter reaches it."""
    return Bind(Return(None), lambda _: thunk())


def sample(d: Dist, key: PRNGKey) -> Any:
    """Forward sampling. Each `Bind` splits the key: the first half drives the
    continuation, the second half the parent.

    Pending continuations are kept on an explicit stack, so the depth of a
    program is not limited by Python's recursion limit.
    """
    pending = []
    while True:
        while isinstance(d, Bind):
            key, sub_key = split(key)
            pending.append((d, key))
            d, key = d.parent, sub_key

        if isinstance(d, Return):
            x = d.value
        elif isinstance(d, Primitive):
            x = d.draw.sample(key)
        elif isinstance(d, Conditional):
            raise UnconditionedSamplingError(
                f"sample: reached a Conditional over {type(d.parent).__name__}. "
                "Conditioned programs can't be sampled forward; interpret them with "
                "`prior`, `as_weighted` or an `Enumerator` instead."
            )
        else:
            raise TypeError(f"sample: unknown program node {type(d).__name__}.")

        if not pending:
            return x
        bind, key = pending.pop()
        d = bind.apply(x)


def prior(d: Dist) -> Dist:
    """
    Strip the outer conditioning of a program.

    The result samples `(value, log_weight)` pairs: a draw from the prior
    together with the product (in log space) of every score met on the way.
    A `Bind` passes the weight of its parent through to the continuation's
    value; conditioning inside a continuation is left in place.
    """
    if isinstance(d, Conditional):
        node = d
        return defer(lambda: prior(node.parent)).map(
            lambda xw: (xw[0], log_mul(xw[1], score_weight(node, xw[0])))
        )
    elif isinstance(d, Bind):
        bind = d
        return defer(lambda: prior(bind.parent)).bind(
            lambda xw: bind.apply(xw[0]).map(lambda y: (y, xw[1]))
        )
    return d.map(lambda x: (x, jnp.array(ONE)))


def prior_unweighted(d: Dist) -> Dist:
    """Like `prior`, but throws the scores away."""
    while isinstance(d, Conditional):
        d = d.parent
    if isinstance(d, Bind):
        bind = d
        return defer(lambda: prior_unweighted(bind.parent)).bind(bind.apply)
    return d


##################
# Model building #
##################


def condition(
    score: Callable[[A], Any], d: Dist, *, log_score: bool = False
) -> Conditional:
    return Conditional(score, d, log_score)


def factor(likelihood: ArrayLike) -> Dist:
    """Reweight by a constant likelihood."""
    return Conditional(lambda _: likelihood, Return(None))


def log_factor(lw: ArrayLike) -> Dist:
    """Reweight by a constant log likelihood."""
    return Conditional(lambda _: lw, Return(None), log_score=True)


def observe(
    d: Dist,
    likelihood: Distribution | Callable[[Any], Any],
    value: Any,
) -> Conditional:
    """
    Condition `d` on `value` having been drawn from `likelihood(x)`.

    `likelihood` is either a family taking `x` as its only parameter or a
    function from `x` to a `Draw` (or `Primitive` node).
    """

    def score(x):
        lik = likelihood.draw(x) if isinstance(likelihood, Distribution) else likelihood(x)
        if isinstance(lik, Primitive):
            lik = lik.draw
        return lik.density(value)

    return Conditional(score, d)


def sequence(ds: Sequence[Dist]) -> Dist:
    ds = tuple(ds)
    if not ds:
        return Return([])
    head, rest = ds[0], ds[1:]
    return head.bind(lambda x: sequence(rest).map(lambda xs: [x, *xs]))


def lift2(f: Callable[[Any, Any], R], d: Dist, d_: Dist) -> Dist:
    return d.bind(lambda x: d_.map(lambda y: f(x, y)))


def _replay(fn, args, kwargs, history: tuple) -> Dist:
    gen = fn(*args, **kwargs)
    try:
        d = next(gen)
        for v in history:
            d = gen.send(v)
    except StopIteration as stop:
        return Return(stop.value)
    if not isinstance(d, Dist):
        raise TypeError(
            f"@program {fn.__name__} yielded {type(d).__name__}; only Dist can be yielded."
        )
    return Bind(d, lambda v: _replay(fn, args, kwargs, (*history, v)))


def program(fn: Callable[..., Any]) -> Callable[..., Dist]:
    """
    Author a program with generator syntax.

    Each `yield` binds a program; the generator's return value is the result.
    The continuation of every `yield` re-runs the generator from the start,
    feeding back the values chosen so far, so the body must not have side
    effects other than yielding.

    Example:
        >>> @program
        ... def sum_of_normals():
        ...     x = yield normal(0.0, 1.0)
        ...     y = yield normal(0.0, 1.0)
        ...     return x + y
    """

    @wraps(fn)
    def wrapped(*args, **kwargs) -> Dist:
        if not inspect.isgeneratorfunction(fn):
            r = fn(*args, **kwargs)
            return r if isinstance(r, Dist) else Return(r)
        return _replay(fn, args, kwargs, ())

    return wrapped
