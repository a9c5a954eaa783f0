from beartype import BeartypeConf
from beartype.claw import beartype_this_package

conf = BeartypeConf(
    is_color=True,
    is_debug=False,
    is_pep484_tower=True,
    violation_type=TypeError,
)

beartype_this_package(conf=conf)

from ._compat import ensure_jax_tfp_compat

ensure_jax_tfp_compat()

from .core import (
    Bind,
    Conditional,
    Dist,
    Distribution,
    Draw,
    ModelError,
    Primitive,
    Pytree,
    Return,
    ShapeInvariantViolation,
    UnconditionedSamplingError,
    UnhandledContinuousError,
    condition,
    defer,
    distribution,
    factor,
    lift2,
    log_factor,
    log_mul,
    log_weight,
    observe,
    prior,
    prior_unweighted,
    program,
    sample,
    score_weight,
    sequence,
    split,
)
from .distributions import (
    bernoulli,
    beta,
    categorical,
    choice,
    dirac,
    exponential,
    gamma,
    normal,
    tfp_distribution,
    uniform,
    uniform_discrete,
)
from .enumerator import (
    Deterministic,
    Enumerator,
    Population,
    Sampler,
    compact,
    enumerate,
    evidence,
    expectation,
    explicit,
    log_evidence,
    mass,
    normalize,
    to_list,
    to_population,
)
from .importance import ParticleCollection, importance_sampling
from .jdist import (
    JBind,
    JConditional,
    JDist,
    JPrimitive,
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
from .weighted import (
    WeightRecorder,
    Weighted,
    as_weight_recorder,
    as_weighted,
    discard_weight,
    duplicate_weight,
    reset_weight,
    run_weighted,
    with_weight,
)

__all__ = [
    "Bind",
    "Conditional",
    "Deterministic",
    "Dist",
    "Distribution",
    "Draw",
    "Enumerator",
    "JBind",
    "JConditional",
    "JDist",
    "JPrimitive",
    "JReturn",
    "ModelError",
    "ParticleCollection",
    "Population",
    "Primitive",
    "Pytree",
    "Return",
    "Sampler",
    "ShapeInvariantViolation",
    "UnconditionedSamplingError",
    "UnhandledContinuousError",
    "WeightRecorder",
    "Weighted",
    "as_weight_recorder",
    "as_weighted",
    "bernoulli",
    "beta",
    "categorical",
    "choice",
    "compact",
    "condition",
    "defer",
    "density",
    "dirac",
    "discard_weight",
    "distribution",
    "duplicate_weight",
    "enumerate",
    "evaluate",
    "evidence",
    "expectation",
    "explicit",
    "exponential",
    "factor",
    "gamma",
    "importance_sampling",
    "jbind",
    "jcondition",
    "jmap",
    "joint",
    "jprimitive",
    "jreturn",
    "jsample",
    "lift2",
    "log_evidence",
    "log_factor",
    "likelihood",
    "log_density",
    "log_likelihood",
    "log_mul",
    "log_weight",
    "marginal",
    "mass",
    "normal",
    "normalize",
    "observe",
    "prior",
    "prior_unweighted",
    "program",
    "propose",
    "reset_weight",
    "run_weighted",
    "sample",
    "score_weight",
    "sequence",
    "split",
    "tfp_distribution",
    "to_list",
    "to_population",
    "traced",
    "uniform",
    "uniform_discrete",
    "with_weight",
]
