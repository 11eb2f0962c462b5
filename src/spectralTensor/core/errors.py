"""Exception types shared across spectralTensor.

Every invariant violation detected by the solvers is raised immediately.
Nothing in the library catches these; a partially computed physical quantity
is never returned.
"""


class ConfigurationError(ValueError):
    """Invalid or unsupported solver configuration.

    Raised for invalid flag combinations, unsupported dimensionality,
    missing pattern axes and states that do not fit a spatial partition.
    """


class DimensionMismatchError(ValueError):
    """Shape or dimension mismatch between cooperating buffers."""


def format_error(function: str, message: str, hint: str = "") -> str:
    """Build a uniform error message.

    Args:
        function: Name of the failing operation (e.g. 'StateTreeNode.add()')
        message: Description including the offending values
        hint: Optional suggested fix

    Returns:
        Formatted message string
    """
    text = f"Error in {function}: {message}"
    if hint:
        text += f" Suggestion: {hint}"
    return text


__all__ = ["ConfigurationError", "DimensionMismatchError", "format_error"]
