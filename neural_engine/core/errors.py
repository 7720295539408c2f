"""
Error taxonomy for operator execution.

Every error is fatal for the invocation that raised it and propagates to the
caller; nothing here is recovered locally.
"""


class NeuralEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(NeuralEngineError, ValueError):
    """Bad or missing attributes, or input/output sets inconsistent with the declared mode."""


class ShapeMismatch(NeuralEngineError, ValueError):
    """Operand dimensions disagree. Raised during shape inference only."""


class AllocationError(NeuralEngineError, RuntimeError):
    """A required buffer could not be obtained."""


class ComputeError(NeuralEngineError, RuntimeError):
    """The delegated matmul primitive reported a failure."""
