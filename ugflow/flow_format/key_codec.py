# Conversions between base space and flow space ("key") representation
from __future__ import annotations

import re

import numpy as np

from ugflow.utils import misc_utils as utils
from ugflow.utils.consts import MAX_CAPPED_KEY_VALUE

WILDCARD_BASE = "N"


def base2key(sequence: str, flow_order: str, clipping: int | None = None) -> np.ndarray:
    """Converts bases to flow order

    `N` in the sequence matches any flow, so it is absorbed into the current hmer

    Parameters
    ----------
    sequence : str
        Input sequence (bases)
    flow_order : str
        Flow order (cycle)
    clipping : int, optional
        Maximal hmer to report. Values are also capped at 127

    Returns
    -------
    np.ndarray
        sequence in key space

    Raises
    ------
    ValueError
        If the sequence contains characters other than ACGTN or bases that are not in the flow order
    """
    # sanitize input
    sequence = sequence.upper()
    if bool(re.compile(r"[^ACGTN]").search(sequence)):
        raise ValueError(
            "Input contains non ACGTNacgtn characters" + (f":\n{sequence}" if len(sequence) <= 100 else "")
        )
    if not flow_order:
        raise ValueError("Empty flow order")
    missing = set(sequence) - set(flow_order) - {WILDCARD_BASE}
    if missing:
        raise ValueError(f"Flow order {flow_order} does not contain {''.join(sorted(missing))}")

    key = []
    pos = 0
    flow = 0
    while pos < len(sequence):
        base = flow_order[flow % len(flow_order)]
        hcount = 0
        while pos + hcount < len(sequence) and sequence[pos + hcount] in (base, WILDCARD_BASE):
            hcount += 1
        key.append(hcount)
        pos += hcount
        flow += 1

    key = np.array(key, dtype=int)
    if clipping is not None:
        return np.clip(key, 0, min(clipping, MAX_CAPPED_KEY_VALUE))
    return key


def key2base(key: np.ndarray) -> np.ndarray:
    """
    Returns an array that for every flow outputs the last base output at the beginning of the flow

    Parameters
    ----------
    key: np.ndarray
        Hmer for each flow

    Returns
    -------
    np.ndarray
            Array of the last output base BEFORE each flow (For instance for flows 01021 the output is -1 -1 0 0 2 )

    """
    key = np.asarray(key, dtype=int)
    if len(key) == 0:
        return np.array([], dtype=int)
    n_reps_shifted = utils.shiftarray(key, 1, 0)
    flow2base = -1 + np.cumsum(n_reps_shifted)
    return flow2base.astype(int)


def get_flow2base(flow_order: str, length: int) -> np.ndarray:
    """Array of the nucleotide of each flow

    Parameters
    ----------
    flow_order: str
        Flow cycle
    length: int
        Number of flows

    Returns
    -------
    np.ndarray
        Array of characters of size `length`
    """
    n_cycles = length // len(flow_order) + 1
    return np.array(list(flow_order * n_cycles)[:length])


def key2sequence(key: np.ndarray, flow_order: str | np.ndarray) -> str:
    """Expands key back to bases

    Parameters
    ----------
    key: np.ndarray
        Hmer for each flow
    flow_order: str | np.ndarray
        Flow cycle or the array of the nucleotides of each flow

    Returns
    -------
    str
    """
    key = np.asarray(key, dtype=int)
    if isinstance(flow_order, str):
        flow_order = get_flow2base(flow_order, len(key))
    return "".join(np.repeat(flow_order[: len(key)], key))


def key_as_string(key: np.ndarray) -> str:
    """One character per flow (0-9, then A for 10, B for 11 etc.), convenient for logging"""
    return "".join(str(x) if x < 10 else chr(ord("A") + x - 10) for x in np.asarray(key, dtype=int))


def base_array_to_key_space(
    sequence: str, key_length: int, values: np.ndarray, default_value: float, flow_order: str
) -> np.ndarray:
    """Converts per-base values into per-flow values

    Every flow that contains an hmer gets the minimum of the values of its bases,
    flows with zero calls inherit the value of the last non-zero flow, zero flows before
    the first base get `default_value`

    Parameters
    ----------
    sequence: str
        Bases
    key_length: int
        Number of flows in the output
    values: np.ndarray
        Value per base
    default_value: float
        Value for the flows before the first base
    flow_order: str
        Flow cycle

    Returns
    -------
    np.ndarray
        Array of size `key_length`
    """
    values = np.asarray(values)
    if len(values) != len(sequence):
        raise ValueError(f"Got {len(values)} values for {len(sequence)} bases")
    key = base2key(sequence, flow_order)
    if len(key) < key_length:
        key = np.concatenate((key, np.zeros(key_length - len(key), dtype=int)))
    key = key[:key_length]
    flow2base = key2base(key)

    per_flow = np.full(key_length, default_value, dtype=np.result_type(values, np.asarray(default_value)))
    for i in np.flatnonzero(key):
        per_flow[i] = values[flow2base[i] + 1 : flow2base[i] + 1 + key[i]].min()
    last_filled = utils.idx_last_nz(key)
    result = np.where(last_filled >= 0, per_flow[np.clip(last_filled, 0, None)], default_value)
    return result.astype(per_flow.dtype)


def find_left_clipping(base_clipping: int, flow2base: np.ndarray, key: np.ndarray) -> tuple:
    """Translates clipping of bases from the start of the sequence into the flow space

    Parameters
    ----------
    base_clipping: int
        Number of bases to clip
    flow2base: np.ndarray
        flow2base array of the key
    key: np.ndarray
        Key

    Returns
    -------
    tuple (int, int)
        (fn, n) subtract n from the hmer count of flow fn, trim all flows before fn.
        (len(key), 0) if all the bases are clipped
    """
    if base_clipping == 0:
        return (0, 0)
    stop_clip = np.flatnonzero(np.asarray(flow2base) + np.asarray(key) >= base_clipping)
    if len(stop_clip) == 0:
        return (len(key), 0)
    stop_clip = int(stop_clip[0])
    hmer_clipped = int(base_clipping - flow2base[stop_clip] - 1)
    return (stop_clip, hmer_clipped)


def find_right_clipping(base_clipping: int, reverse_flow2base: np.ndarray, reverse_key: np.ndarray) -> tuple:
    """Translates clipping of bases from the end of the sequence into the flow space

    Parameters
    ----------
    base_clipping: int
        Number of bases to clip
    reverse_flow2base: np.ndarray
        flow2base array of the reversed key
    reverse_key: np.ndarray
        Reversed key

    Returns
    -------
    tuple (int, int)
        (fn, n) subtract n from the hmer count of flow -fn-1, trim all flows after -fn-1
    """
    return find_left_clipping(base_clipping, reverse_flow2base, reverse_key)
