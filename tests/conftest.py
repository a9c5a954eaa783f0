# Importing the package installs the JAX compatibility shim before any test
# module imports TensorFlow Probability.
import jaxbayes  # noqa: F401
