"""
Test cases for joint-trace programs: shapes, evaluation, joint densities and
importance proposals.
"""

import jax.numpy as jnp
import jax.random as jrand
import pytest
from tensorflow_probability.substrates import jax as tfp

from jaxbayes.core import (
    Conditional,
    ShapeInvariantViolation,
    UnconditionedSamplingError,
    prior,
    sample,
)
from jaxbayes.distributions import bernoulli, normal
from jaxbayes.jdist import (
    JBind,
    JReturn,
    density,
    evaluate,
    jbind,
    jcondition,
    jmap,
    joint,
    jprimitive,
    jreturn,
    jsample,
    likelihood,
    log_density,
    log_likelihood,
    marginal,
    propose,
    traced,
)

tfd = tfp.distributions


def normal_pdf(loc, scale, x):
    return tfd.Normal(loc, scale).prob(x)


def sum_of_normals(scale=1.0):
    return jbind(
        jprimitive(normal, 0.0, scale),
        lambda x: jmap(lambda y: x + y, jprimitive(normal, 0.0, scale)),
        tail=("real",),
    )


@pytest.fixture
def key():
    """Standard random key for reproducible tests."""
    return jrand.key(42)


class TestShape:
    """Shapes are known without running anything."""

    def test_shapes(self):
        assert jreturn(1).shape == ()
        assert jprimitive(normal, 0.0, 1.0).shape == ("real",)
        assert jprimitive(bernoulli, 0.5).shape == ("bool",)
        assert sum_of_normals().shape == ("real", "real")
        assert jcondition(lambda x: 1.0, sum_of_normals()).shape == ("real", "real")

    def test_bind_from_full_shape(self):
        d = jbind(
            jprimitive(bernoulli, 0.5),
            lambda b: jprimitive(normal, 0.0, 1.0),
            shape=("bool", "real"),
        )
        assert isinstance(d, JBind)
        assert d.tail == ("real",)
        assert d.shape == ("bool", "real")

    def test_bind_rejects_wrong_prefix(self):
        with pytest.raises(ShapeInvariantViolation, match="prefix"):
            jbind(
                jprimitive(normal, 0.0, 1.0),
                lambda x: jprimitive(normal, x, 1.0),
                shape=("bool", "real"),
            )

    def test_bind_needs_one_declaration(self):
        with pytest.raises(ValueError, match="exactly one"):
            jbind(jprimitive(normal, 0.0, 1.0), lambda x: jreturn(x))

    def test_continuation_must_match_declared_tail(self, key):
        d = jbind(jprimitive(normal, 0.0, 1.0), lambda x: jreturn(x), tail=("real",))
        with pytest.raises(ShapeInvariantViolation, match="eval: .*declared"):
            evaluate(d, (1.0, 2.0))
        with pytest.raises(ShapeInvariantViolation, match="density: "):
            density(d, (1.0, 2.0))
        with pytest.raises(ShapeInvariantViolation, match="jsample: "):
            jsample(d, key)

    def test_trace_length_is_checked(self):
        with pytest.raises(ShapeInvariantViolation, match="1 values"):
            evaluate(sum_of_normals(), (1.0,))
        with pytest.raises(ShapeInvariantViolation):
            density(sum_of_normals(), (1.0, 2.0, 3.0))


class TestEvalAndDensity:
    """Test trace evaluation and joint densities."""

    def test_eval(self):
        assert evaluate(sum_of_normals(), (1.0, 2.0)) == 3.0
        assert sum_of_normals().eval((1.0, 2.0)) == 3.0
        assert evaluate(jreturn("x"), ()) == "x"

    def test_density_of_return(self):
        assert jnp.allclose(density(JReturn(5), ()), 1.0)

    def test_density_is_product_of_draws(self):
        d = sum_of_normals()
        expected = normal_pdf(0.0, 1.0, 1.0) * normal_pdf(0.0, 1.0, 2.0)
        assert jnp.allclose(density(d, (1.0, 2.0)), expected, rtol=1e-6)
        assert jnp.allclose(d.density((1.0, 2.0)), expected, rtol=1e-6)

    def test_density_follows_data_dependent_branches(self):
        d = jbind(
            jprimitive(bernoulli, 0.5),
            lambda b: jprimitive(normal, 1.0 if b else -1.0, 1.0),
            tail=("real",),
        )
        expected = 0.5 * normal_pdf(1.0, 1.0, 0.5)
        assert jnp.allclose(density(d, (True, 0.5)), expected, rtol=1e-6)
        expected = 0.5 * normal_pdf(-1.0, 1.0, 0.5)
        assert jnp.allclose(density(d, (False, 0.5)), expected, rtol=1e-6)

    def test_bind_density_factorizes(self):
        parent = jprimitive(normal, 0.0, 1.0)

        def continuation(x):
            return jprimitive(normal, x, 2.0)

        d = jbind(parent, continuation, tail=("real",))
        trace = (0.3, -0.4)
        expected = density(parent, trace[:1]) * density(continuation(0.3), trace[1:])
        assert jnp.allclose(density(d, trace), expected, rtol=1e-6)

    def test_conditional_multiplies_score(self):
        d = jcondition(lambda x: 0.5, jprimitive(normal, 0.0, 1.0))
        expected = 0.5 * normal_pdf(0.0, 1.0, 1.0)
        assert jnp.allclose(density(d, (1.0,)), expected, rtol=1e-6)
        assert jnp.allclose(likelihood(d, (1.0,)), 0.5, rtol=1e-6)

    def test_score_sees_evaluated_value(self):
        d = jcondition(lambda s: jnp.exp(-s), sum_of_normals())
        assert jnp.allclose(likelihood(d, (1.0, 2.0)), jnp.exp(-3.0), rtol=1e-6)


class TestSampling:
    """Test sampling and the conversions back to plain programs."""

    def test_jsample_matches_marginal(self, key):
        d = sum_of_normals()
        for k in jrand.split(key, 3):
            assert jnp.allclose(jsample(d, k), sample(marginal(d), k))
        assert jnp.allclose(d.sample(key), jsample(d, key))

    def test_jsample_long_chain(self, key):
        d = jprimitive(normal, 0.0, 1.0)
        for _ in range(600):
            d = jmap(lambda x: x + 1.0, d)
        assert d.shape == ("real",)
        assert jnp.isfinite(jsample(d, key))

    def test_jsample_refuses_conditioning(self, key):
        d = jcondition(lambda x: 1.0, jprimitive(normal, 0.0, 1.0))
        with pytest.raises(UnconditionedSamplingError):
            jsample(d, key)

    def test_marginal_keeps_conditioning(self, key):
        d = jcondition(lambda x: 0.25, jprimitive(normal, 0.0, 1.0))
        m = marginal(d)
        assert isinstance(m, Conditional)
        _, w = sample(prior(m), key)
        assert jnp.allclose(w, jnp.log(0.25))

    def test_joint_samples_traces(self, key):
        d = sum_of_normals()
        trace = sample(joint(d), key)
        assert len(trace) == 2
        assert jnp.isfinite(density(d, trace))

    def test_joint_score_uses_evaluated_value(self, key):
        d = jcondition(lambda s: jnp.exp(-jnp.abs(s)), sum_of_normals())
        trace, w = sample(prior(joint(d)), key)
        assert jnp.allclose(w, -jnp.abs(evaluate(d, trace)), rtol=1e-5)

    def test_traced(self):
        d = sum_of_normals()
        t = traced(d)
        assert t.shape == d.shape
        assert evaluate(t, (1.0, 2.0)) == (1.0, 2.0)
        assert jnp.allclose(density(t, (1.0, 2.0)), density(d, (1.0, 2.0)))


class TestPropose:
    """Test importance proposals between programs of the same shape."""

    def test_shape_mismatch(self):
        with pytest.raises(ShapeInvariantViolation, match="propose"):
            propose(jprimitive(normal, 0.0, 1.0), sum_of_normals())

    def test_value_comes_from_target(self):
        d = propose(sum_of_normals(2.0), sum_of_normals())
        assert evaluate(d, (1.0, 2.0)) == 3.0
        assert d.shape == ("real", "real")

    def test_weight_is_density_ratio(self):
        new, old = sum_of_normals(2.0), sum_of_normals()
        trace = (1.0, 2.0)
        expected = density(old, trace) / density(new, trace)
        assert jnp.allclose(likelihood(propose(new, old), trace), expected, rtol=1e-5)

    def test_density_equals_target_density(self):
        new, old = sum_of_normals(2.0), sum_of_normals()
        trace = (1.0, 2.0)
        assert jnp.allclose(
            density(propose(new, old), trace), density(old, trace), rtol=1e-5
        )

    def test_prior_weight_of_proposal(self, key):
        new, old = sum_of_normals(2.0), sum_of_normals()
        proposal = propose(new, old)
        trace, w = sample(prior(joint(proposal)), key)
        ratio = density(old, trace) / density(new, trace)
        assert jnp.allclose(jnp.exp(w), ratio, rtol=1e-5)

    @pytest.mark.parametrize("new_scale,old_scale", [(2.0, 0.05), (0.05, 2.0)])
    def test_weight_stays_finite_for_mismatched_scales(self, new_scale, old_scale):
        new, old = sum_of_normals(new_scale), sum_of_normals(old_scale)
        trace = (1.0, 2.0)
        expected = log_density(old, trace) - log_density(new, trace)
        assert jnp.abs(expected) > 500.0
        lw = log_likelihood(propose(new, old), trace)
        assert jnp.isfinite(lw), f"log weight {lw} is not finite"
        assert jnp.allclose(lw, expected, rtol=1e-5)
        assert jnp.allclose(
            log_density(propose(new, old), trace), log_density(old, trace), rtol=1e-5
        )

    def test_prior_weight_for_mismatched_scales(self, key):
        new, old = sum_of_normals(1.0), sum_of_normals(0.05)
        trace, w = sample(prior(joint(propose(new, old))), key)
        expected = log_density(old, trace) - log_density(new, trace)
        assert jnp.isfinite(w)
        assert jnp.allclose(w, expected, rtol=1e-5)
