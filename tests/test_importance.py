"""
Test cases for importance sampling with the prior as proposal.

The Beta-Bernoulli model has a closed-form posterior: with a Beta(1, 1)
prior and observations [True, True, False] the posterior is Beta(3, 2), with
mean 3/5, variance 1/25 and marginal likelihood 1/12.
"""

import jax.numpy as jnp
import jax.random as jrand
import pytest

from jaxbayes.core import condition, observe
from jaxbayes.distributions import bernoulli, beta, normal
from jaxbayes.importance import effective_sample_size, importance_sampling


def coin_toss(a, b, results):
    d = beta(a, b)
    for r in results:
        d = observe(d, bernoulli, r)
    return d


@pytest.fixture(scope="module")
def particles():
    model = coin_toss(1.0, 1.0, [True, True, False])
    return importance_sampling(model, jrand.key(42), 1000)


class TestBetaBernoulli:
    """Test importance estimates against the conjugate posterior."""

    def test_posterior_mean(self, particles):
        mean = particles.expectation(lambda p: p)
        assert jnp.abs(mean - 0.6) < 0.04, f"posterior mean {mean} is not near 0.6"

    def test_posterior_variance(self, particles):
        var = particles.variance(lambda p: p)
        assert jnp.abs(var - 0.04) < 0.01, f"posterior variance {var} is not near 0.04"

    def test_log_marginal_likelihood(self, particles):
        log_z = particles.log_marginal_likelihood()
        assert jnp.abs(log_z - jnp.log(1.0 / 12.0)) < 0.1

    def test_weights(self, particles):
        assert particles.n_samples == 1000
        assert particles.log_weights.shape == (1000,)
        assert jnp.allclose(jnp.sum(particles.normalized_weights()), 1.0, rtol=1e-5)
        ess = particles.effective_sample_size()
        assert 1.0 <= ess <= 1000.0


class TestEffectiveSampleSize:
    def test_uniform_weights(self):
        ess = effective_sample_size(jnp.zeros(10))
        assert jnp.allclose(ess, 10.0, rtol=1e-6)

    def test_one_dominant_weight(self):
        ess = effective_sample_size(jnp.array([0.0, -jnp.inf, -jnp.inf]))
        assert jnp.allclose(ess, 1.0, rtol=1e-6)


class TestDegenerate:
    def test_all_weights_zero_warns(self):
        model = condition(lambda x: 0.0, normal(0.0, 1.0))
        result = importance_sampling(model, jrand.key(0), 5)
        with pytest.warns(UserWarning, match="zero weight"):
            result.normalized_weights()
