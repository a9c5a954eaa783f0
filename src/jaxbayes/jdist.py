"""
Joint-trace programs.

A `JDist` mirrors `Dist` node for node, but every program also knows its
*shape*: the ordered tuple of slot tags, one per primitive draw it performs.
The shape of `JBind(parent, k, tail)` is `parent.shape + tail`, which is what
lets a flat trace of sampled values be split between a parent and its
continuation without running anything:

    >>> two_normals = jbind(
    ...     jprimitive(normal, 0.0, 1.0),
    ...     lambda x: jmap(lambda y: x + y, jprimitive(normal, 0.0, 1.0)),
    ...     tail=("real",),
    ... )
    >>> two_normals.shape
    ('real', 'real')
    >>> evaluate(two_normals, (1.0, 2.0))
    3.0

Continuations are opaque, so a bind declares the shape its continuation will
produce and the declaration is checked every time the continuation runs.
"""

from abc import abstractmethod

import jax.numpy as jnp

from jaxbayes.core import (
    ONE,
    Any,
    Callable,
    Conditional,
    Dist,
    Distribution,
    Draw,
    FloatArray,
    Generic,
    Primitive,
    PRNGKey,
    Pytree,
    Return,
    Sequence,
    ShapeInvariantViolation,
    Slot,
    TypeVar,
    UnconditionedSamplingError,
    log_mul,
    score_weight,
    split,
)

A = TypeVar("A")
B = TypeVar("B")

Shape = tuple[Slot, ...]
Trace = tuple


class JDist(Generic[A], Pytree):
    @property
    @abstractmethod
    def shape(self) -> Shape:
        pass

    def bind(
        self,
        f: Callable[[A], "JDist"],
        *,
        tail: Sequence[Slot] | None = None,
        shape: Sequence[Slot] | None = None,
    ) -> "JBind":
        return jbind(self, f, tail=tail, shape=shape)

    def map(self, f: Callable[[A], B]) -> "JBind":
        return jmap(f, self)

    def sample(self, key: PRNGKey) -> A:
        return jsample(self, key)

    def eval(self, trace: Sequence[Any]) -> A:
        return evaluate(self, trace)

    def density(self, trace: Sequence[Any]) -> FloatArray:
        return density(self, trace)


@Pytree.dataclass
class JReturn(JDist[A]):
    value: Any

    @property
    def shape(self) -> Shape:
        return ()


@Pytree.dataclass
class JBind(JDist[A]):
    parent: JDist
    continuation: Callable[[Any], JDist] = Pytree.static()
    tail: tuple[str, ...] = Pytree.static()

    @property
    def shape(self) -> Shape:
        tails = []
        d = self
        while isinstance(d, JBind):
            tails.append(d.tail)
            d = d.parent
        shape = d.shape
        for tail in reversed(tails):
            shape = shape + tail
        return shape

    def apply(self, x, interpreter: str = "apply") -> JDist:
        d = self.continuation(x)
        if not isinstance(d, JDist):
            raise TypeError(
                f"{interpreter}: a JBind continuation must return a JDist, "
                f"got {type(d).__name__}."
            )
        if d.shape != self.tail:
            raise ShapeInvariantViolation(
                f"{interpreter}: JBind over {self.parent.shape}: the continuation "
                f"returned a program with slots {d.shape}, but the bind declared {self.tail}."
            )
        return d

    def split_trace(self, trace: Trace) -> tuple[Trace, Trace]:
        n = len(self.parent.shape)
        return trace[:n], trace[n:]


@Pytree.dataclass
class JPrimitive(JDist[A]):
    draw: Draw

    @property
    def shape(self) -> Shape:
        return (self.draw.slot,)


@Pytree.dataclass
class JConditional(JDist[A]):
    score: Callable[[Any], Any] = Pytree.static()
    parent: JDist
    log_score: bool = Pytree.static(default=False)

    @property
    def shape(self) -> Shape:
        return self.parent.shape


################
# Construction #
################


def jreturn(x) -> JReturn:
    return JReturn(x)


def jprimitive(dist: Distribution, *args) -> JPrimitive:
    return JPrimitive(dist.draw(*args))


def jcondition(
    score: Callable[[Any], Any], d: JDist, *, log_score: bool = False
) -> JConditional:
    return JConditional(score, d, log_score)


def jbind(
    parent: JDist,
    continuation: Callable[[Any], JDist],
    *,
    tail: Sequence[Slot] | None = None,
    shape: Sequence[Slot] | None = None,
) -> JBind:
    """
    Sequence `parent` with `continuation`.

    Pass either `tail`, the slots the continuation's programs draw, or
    `shape`, the slots of the whole bind. With `shape`, the parent's slots
    must be a prefix of it.
    """
    if (tail is None) == (shape is None):
        raise ValueError("jbind needs exactly one of `tail` or `shape`.")
    if shape is not None:
        shape = tuple(shape)
        n = len(parent.shape)
        if shape[:n] != parent.shape:
            raise ShapeInvariantViolation(
                f"jbind: parent slots {parent.shape} are not a prefix of the "
                f"declared shape {shape}."
            )
        tail = shape[n:]
    return JBind(parent, continuation, tuple(tail))


def jmap(f: Callable[[Any], Any], d: JDist) -> JBind:
    return JBind(d, lambda x: JReturn(f(x)), ())


################
# Interpreters #
################


def _check_trace(d: JDist, trace: Sequence[Any], interpreter: str) -> Trace:
    trace = tuple(trace)
    if len(trace) != len(d.shape):
        raise ShapeInvariantViolation(
            f"{interpreter}: the trace has {len(trace)} values but the program "
            f"has {len(d.shape)} slots {d.shape}."
        )
    return trace


def _eval(d: JDist, trace: Trace):
    while isinstance(d, JBind):
        prefix, trace = d.split_trace(trace)
        d = d.apply(_eval(d.parent, prefix), "eval")
    if isinstance(d, JReturn):
        return d.value
    elif isinstance(d, JPrimitive):
        return trace[0]
    elif isinstance(d, JConditional):
        return _eval(d.parent, trace)
    raise TypeError(f"eval: unknown program node {type(d).__name__}.")


def evaluate(d: JDist, trace: Sequence[Any]) -> Any:
    """The value `d` produces when its draws are replaced, in order, by `trace`."""
    return _eval(d, _check_trace(d, trace, "eval"))


def _log_density(d: JDist, trace: Trace) -> FloatArray:
    if isinstance(d, JReturn):
        return jnp.array(ONE)
    elif isinstance(d, JPrimitive):
        return d.draw.logpdf(trace[0])
    elif isinstance(d, JBind):
        prefix, suffix = d.split_trace(trace)
        x = _eval(d.parent, prefix)
        return log_mul(
            _log_density(d.parent, prefix), _log_density(d.apply(x, "density"), suffix)
        )
    elif isinstance(d, JConditional):
        w = score_weight(d, _eval(d.parent, trace))
        return log_mul(w, _log_density(d.parent, trace))
    raise TypeError(f"density: unknown program node {type(d).__name__}.")


def log_density(d: JDist, trace: Sequence[Any]) -> FloatArray:
    return _log_density(d, _check_trace(d, trace, "density"))


def density(d: JDist, trace: Sequence[Any]) -> FloatArray:
    """
    Joint density of `trace` under `d`.

    Conditioning multiplies in the score of the conditioned value; nothing
    is renormalized.
    """
    return jnp.exp(log_density(d, trace))


def _log_likelihood(d: JDist, trace: Trace) -> FloatArray:
    if isinstance(d, (JReturn, JPrimitive)):
        return jnp.array(ONE)
    elif isinstance(d, JBind):
        prefix, suffix = d.split_trace(trace)
        x = _eval(d.parent, prefix)
        return log_mul(
            _log_likelihood(d.parent, prefix),
            _log_likelihood(d.apply(x, "likelihood"), suffix),
        )
    elif isinstance(d, JConditional):
        w = score_weight(d, _eval(d.parent, trace))
        return log_mul(w, _log_likelihood(d.parent, trace))
    raise TypeError(f"likelihood: unknown program node {type(d).__name__}.")


def log_likelihood(d: JDist, trace: Sequence[Any]) -> FloatArray:
    return _log_likelihood(d, _check_trace(d, trace, "likelihood"))


def likelihood(d: JDist, trace: Sequence[Any]) -> FloatArray:
    """Product of the conditioning scores of `d` at `trace`, draws excluded."""
    return jnp.exp(log_likelihood(d, trace))


def jsample(d: JDist, key: PRNGKey) -> Any:
    """Forward sampling of a joint-trace program, splitting keys as `sample` does."""
    pending = []
    while True:
        while isinstance(d, JBind):
            key, sub_key = split(key)
            pending.append((d, key))
            d, key = d.parent, sub_key

        if isinstance(d, JReturn):
            x = d.value
        elif isinstance(d, JPrimitive):
            x = d.draw.sample(key)
        elif isinstance(d, JConditional):
            raise UnconditionedSamplingError(
                f"jsample: reached a JConditional over slots {d.parent.shape}. "
                "Sample `marginal(d)` through `prior` or `as_weighted` instead."
            )
        else:
            raise TypeError(f"jsample: unknown program node {type(d).__name__}.")

        if not pending:
            return x
        bind, key = pending.pop()
        d = bind.apply(x, "jsample")


def marginal(d: JDist) -> Dist:
    """Forget the trace structure of `d`."""
    if isinstance(d, JReturn):
        return Return(d.value)
    elif isinstance(d, JBind):
        bind = d
        return marginal(d.parent).bind(lambda x: marginal(bind.apply(x, "marginal")))
    elif isinstance(d, JPrimitive):
        return Primitive(d.draw)
    elif isinstance(d, JConditional):
        return Conditional(d.score, marginal(d.parent), d.log_score)
    raise TypeError(f"marginal: unknown program node {type(d).__name__}.")


def joint(d: JDist) -> Dist:
    """A program over the traces of `d` instead of its values."""
    if isinstance(d, JReturn):
        return Return(())
    elif isinstance(d, JBind):
        bind = d
        return joint(d.parent).bind(
            lambda xs: joint(bind.apply(_eval(bind.parent, xs), "joint")).map(
                lambda ys: (*xs, *ys)
            )
        )
    elif isinstance(d, JPrimitive):
        return Primitive(d.draw).map(lambda x: (x,))
    elif isinstance(d, JConditional):
        score, parent = d.score, d.parent
        return Conditional(
            lambda xs: score(_eval(parent, xs)), joint(parent), d.log_score
        )
    raise TypeError(f"joint: unknown program node {type(d).__name__}.")


def traced(d: JDist) -> JDist:
    """Same shape and density as `d`, but its value is its own trace."""
    if isinstance(d, JReturn):
        return JReturn(())
    elif isinstance(d, JPrimitive):
        return JBind(d, lambda x: JReturn((x,)), ())
    elif isinstance(d, JBind):
        bind = d
        return JBind(
            traced(d.parent),
            lambda xs: jmap(
                lambda ys: (*xs, *ys),
                traced(bind.apply(_eval(bind.parent, xs), "traced")),
            ),
            d.tail,
        )
    elif isinstance(d, JConditional):
        score, parent = d.score, d.parent
        return JConditional(
            lambda xs: score(_eval(parent, xs)), traced(parent), d.log_score
        )
    raise TypeError(f"traced: unknown program node {type(d).__name__}.")


def propose(new: JDist, old: JDist) -> JDist:
    """
    Use `new` as an importance proposal for `old`.

    Traces are drawn from `new`, mapped through `old`'s evaluation, and
    reweighted by `density(old, trace) / density(new, trace)`. Both programs
    must have the same shape. The ratio is kept as a log weight, so it
    survives densities far outside the range of a float.
    """
    if new.shape != old.shape:
        raise ShapeInvariantViolation(
            f"propose: the proposal has slots {new.shape} but the target has {old.shape}."
        )

    def log_ratio(xs):
        return _log_density(old, xs) - _log_density(new, xs)

    return jmap(
        lambda xs: _eval(old, xs), JConditional(log_ratio, traced(new), log_score=True)
    )
