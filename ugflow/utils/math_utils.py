from __future__ import annotations

import numpy as np


def unphred(q: list[int | float] | tuple[int | float] | np.ndarray, scaling_factor: float = 10) -> np.ndarray:
    """Transform Phred quality scores to probabilities
    See https://en.wikipedia.org/wiki/Phred_quality_score

    Parameters
    ----------
    q : Union[list, tuple, np.ndarray]
        List of integer or float phred qualities
    scaling_factor : float, optional
        Divisor of the quality in the exponent (10 for the Phred scale)

    Returns
    -------
    np.ndarray
        List of error probabilities
    """
    p = np.power(10, -np.array(q, dtype=float) / scaling_factor)
    return p


def floored_log10(p: float | np.ndarray, floor: float) -> float | np.ndarray:
    """log10 of probabilities where zero and nan probabilities are replaced by `floor`

    Parameters
    ----------
    p : float | np.ndarray
        Probabilities
    floor : float
        Minimal probability

    Returns
    -------
    float | np.ndarray
        log10 of the floored probabilities
    """
    arr = np.array(p, dtype=float)
    arr[np.isnan(arr) | (arr <= 0)] = floor
    result = np.log10(arr)
    if np.ndim(p) == 0:
        return float(result)
    return result
