"""Minimum-gain rule deciding whether a re-encoding replaces the original."""

DEFAULT_MIN_GAIN_RATIO = 0.03


def gain_ratio(original_size: int, candidate_size: int) -> float:
    """Return the fractional size reduction of `candidate_size` versus `original_size`.

    Negative when the candidate is larger. An empty original has no gain.
    """
    if original_size <= 0:
        return 0.0
    return (original_size - candidate_size) / original_size


def accept_rewrite(original_size: int, candidate_size: int, min_gain_ratio: float = DEFAULT_MIN_GAIN_RATIO) -> bool:
    """Return True if the candidate shrinks the original by at least `min_gain_ratio`."""
    if original_size <= 0:
        return True
    return gain_ratio(original_size, candidate_size) >= min_gain_ratio
