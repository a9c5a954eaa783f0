"""
Likelihood accumulation for importance sampling.

A `Weighted` computation runs a program under its prior while carrying a
running weight (held in log space) that only `factor` changes. It is a state
transformer over `Dist`: given the incoming log weight it returns a program
over `(value, log_weight)` pairs.

`WeightRecorder` additionally forwards every factor to the program it wraps,
so the likelihood of a draw can be tallied a second time on its own.
"""

import jax.numpy as jnp

from jaxbayes.core import (
    ONE,
    Any,
    ArrayLike,
    Bind,
    Callable,
    Conditional,
    Dist,
    Generic,
    Primitive,
    Pytree,
    Return,
    TypeVar,
    defer,
    log_factor as dist_log_factor,
    log_mul,
    log_weight,
    score_weight,
)

A = TypeVar("A")


def _weighted(m) -> "Weighted":
    if not isinstance(m, Weighted):
        raise TypeError(f"Expected a Weighted computation, got {type(m).__name__}.")
    return m


@Pytree.dataclass
class Weighted(Generic[A], Pytree):
    run: Callable[[Any], Dist] = Pytree.static()

    def bind(self, f: Callable[[A], "Weighted"]) -> "Weighted":
        run = self.run
        return Weighted(
            lambda w: defer(lambda: run(w)).bind(
                lambda xw: _weighted(f(xw[0])).run(xw[1])
            )
        )

    def map(self, f: Callable[[A], Any]) -> "Weighted":
        run = self.run
        return Weighted(lambda w: run(w).map(lambda xw: (f(xw[0]), xw[1])))

    @staticmethod
    def pure(x) -> "Weighted":
        return Weighted(lambda w: Return((x, w)))

    @staticmethod
    def lift(d: Dist) -> "Weighted":
        """Run `d` without touching the weight."""
        return Weighted(lambda w: d.map(lambda x: (x, w)))

    @staticmethod
    def factor(likelihood: ArrayLike) -> "Weighted":
        return factor(likelihood)


def _lazy(thunk: Callable[[], Weighted]) -> Weighted:
    # Builds the computation only when it runs.
    return Weighted(lambda w: thunk().run(w))


def log_factor(lw: ArrayLike) -> Weighted:
    """Add `lw` to the running log weight."""
    return Weighted(lambda w: Return((None, log_mul(w, lw))))


def factor(likelihood: ArrayLike) -> Weighted:
    """Multiply the running weight by a nonnegative `likelihood`."""
    return log_factor(log_weight(likelihood))


def run_weighted(m: Weighted) -> Dist:
    """A program over `(value, log_weight)`, starting from weight one."""
    return m.run(jnp.array(ONE))


def with_weight(m: Dist) -> Weighted:
    """
    Embed a program over `(value, log_weight)` pairs; its weight becomes the
    running weight.

    > run_weighted(with_weight(m)) is m
    """
    return Weighted(lambda _: m)


def discard_weight(m: Weighted) -> Dist:
    return run_weighted(m).map(lambda xw: xw[0])


def reset_weight(m: Weighted) -> Weighted:
    """Set the running weight back to one once `m` has run."""
    run = m.run
    return Weighted(lambda w: run(w).map(lambda xw: (xw[0], jnp.array(ONE))))


def map_monad(t: Callable[[Dist], Dist], m: Weighted) -> Weighted:
    """Apply a transformation to the program underneath `m`."""
    run = m.run
    return Weighted(lambda w: t(run(w)))


def as_weighted(d: Dist) -> Weighted:
    """Interpret a model so that each `Conditional`, at any depth, becomes a
    `factor` of its score."""
    if isinstance(d, Return):
        return Weighted.pure(d.value)
    elif isinstance(d, Primitive):
        return Weighted.lift(d)
    elif isinstance(d, Bind):
        bind = d
        return _lazy(lambda: as_weighted(bind.parent)).bind(
            lambda x: as_weighted(bind.apply(x))
        )
    elif isinstance(d, Conditional):
        node = d
        return _lazy(lambda: as_weighted(node.parent)).bind(
            lambda x: log_factor(score_weight(node, x)).map(lambda _: x)
        )
    raise TypeError(f"as_weighted: unknown program node {type(d).__name__}.")


##################
# WeightRecorder #
##################


@Pytree.dataclass
class WeightRecorder(Generic[A], Pytree):
    """
    Like `Weighted`, but every factor is also passed down to the wrapped
    program as a `Conditional`. Useful for getting the likelihood of samples
    from the posterior.

    Recorders only forward to the `Dist` they wrap; they don't stack.
    """

    weighted: Weighted

    def bind(self, f: Callable[[A], "WeightRecorder"]) -> "WeightRecorder":
        def k(x):
            r = f(x)
            if not isinstance(r, WeightRecorder):
                raise TypeError(
                    f"Expected a WeightRecorder computation, got {type(r).__name__}."
                )
            return r.weighted

        return WeightRecorder(self.weighted.bind(k))

    def map(self, f: Callable[[A], Any]) -> "WeightRecorder":
        return WeightRecorder(self.weighted.map(f))

    @staticmethod
    def pure(x) -> "WeightRecorder":
        return WeightRecorder(Weighted.pure(x))

    @staticmethod
    def lift(d: Dist) -> "WeightRecorder":
        return WeightRecorder(Weighted.lift(d))

    @staticmethod
    def factor(likelihood: ArrayLike) -> "WeightRecorder":
        return WeightRecorder.log_factor(log_weight(likelihood))

    @staticmethod
    def log_factor(lw: ArrayLike) -> "WeightRecorder":
        return WeightRecorder(
            log_factor(lw).bind(lambda _: Weighted.lift(dist_log_factor(lw)))
        )


def duplicate_weight(r: WeightRecorder) -> Weighted:
    """Stop passing factors on: the recorded weight is all that is left."""
    return r.weighted


def reset_weight_recorder(r: WeightRecorder) -> WeightRecorder:
    """Reset the recorded weight to one; factors already passed on stay."""
    return WeightRecorder(reset_weight(r.weighted))


def map_monad_weight_recorder(
    t: Callable[[Dist], Dist], r: WeightRecorder
) -> WeightRecorder:
    return WeightRecorder(map_monad(t, r.weighted))


def as_weight_recorder(d: Dist) -> WeightRecorder:
    """Interpret a model as a `WeightRecorder`."""
    if isinstance(d, Return):
        return WeightRecorder.pure(d.value)
    elif isinstance(d, Primitive):
        return WeightRecorder.lift(d)
    elif isinstance(d, Bind):
        bind = d
        parent = WeightRecorder(_lazy(lambda: as_weight_recorder(bind.parent).weighted))
        return parent.bind(lambda x: as_weight_recorder(bind.apply(x)))
    elif isinstance(d, Conditional):
        node = d
        parent = WeightRecorder(_lazy(lambda: as_weight_recorder(node.parent).weighted))
        return parent.bind(
            lambda x: WeightRecorder.log_factor(score_weight(node, x)).map(lambda _: x)
        )
    raise TypeError(f"as_weight_recorder: unknown program node {type(d).__name__}.")
