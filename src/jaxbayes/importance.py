"""
Importance sampling with the prior as proposal.

Each particle is a `prior` sample: a value drawn ignoring the conditioning
of the outer model, weighted by the likelihood that conditioning assigns to it.
"""

import warnings

import jax
import jax.numpy as jnp
import jax.random as jrand
import jax.scipy.special

from jaxbayes.core import Any, Callable, Dist, PRNGKey, Pytree, prior, sample

# Warn when every particle has zero weight.
warn_on_degenerate_weights = True


def effective_sample_size(log_weights: jnp.ndarray) -> jnp.ndarray:
    """
    Compute the effective sample size from log importance weights.

    Args:
        log_weights: Array of log importance weights

    Returns:
        Effective sample size in [1, num_samples]
    """
    log_weights_normalized = log_weights - jax.scipy.special.logsumexp(log_weights)
    weights_normalized = jnp.exp(log_weights_normalized)
    return 1.0 / jnp.sum(weights_normalized**2)


@Pytree.dataclass
class ParticleCollection(Pytree):
    """Result of importance sampling: values and their log weights."""

    values: list
    log_weights: jnp.ndarray

    @property
    def n_samples(self) -> int:
        return len(self.values)

    def effective_sample_size(self) -> jnp.ndarray:
        return effective_sample_size(self.log_weights)

    def log_marginal_likelihood(self) -> jnp.ndarray:
        """
        Estimate log marginal likelihood using importance sampling.

        Returns:
            Log-sum-exp of the importance weights minus the log particle count
        """
        return jax.scipy.special.logsumexp(self.log_weights) - jnp.log(self.n_samples)

    def normalized_weights(self) -> jnp.ndarray:
        log_z = jax.scipy.special.logsumexp(self.log_weights)
        if warn_on_degenerate_weights and jnp.isneginf(log_z):
            warnings.warn(
                "importance sampling: every particle has zero weight; "
                "normalized weights are NaN."
            )
        return jnp.exp(self.log_weights - log_z)

    def expectation(self, f: Callable[[Any], Any]) -> jnp.ndarray:
        """Self-normalized estimate of the posterior expectation of `f`."""
        fs = jnp.asarray([f(x) for x in self.values])
        return jnp.sum(self.normalized_weights() * fs)

    def variance(self, f: Callable[[Any], Any]) -> jnp.ndarray:
        mean = self.expectation(f)
        return self.expectation(lambda x: (f(x) - mean) ** 2)


def importance_sampling(
    model: Dist,
    key: PRNGKey,
    n_samples: int,
) -> ParticleCollection:
    """
    Draw `n_samples` independent prior samples of `model`, each weighted by
    the likelihood of the outer conditioning.

    Args:
        model: Conditioned program
        key: Random key; one split per particle
        n_samples: Number of particles

    Returns:
        ParticleCollection with the sampled values and log weights
    """
    proposal = prior(model)
    particles = [sample(proposal, k) for k in jrand.split(key, n_samples)]
    values = [x for x, _ in particles]
    log_weights = jnp.stack([jnp.asarray(w) for _, w in particles])
    return ParticleCollection(values, log_weights)
