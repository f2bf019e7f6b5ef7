from __future__ import annotations

import re

import numpy as np
import pysam

CIGAR_OPS = "MIDNSHP=XB"
READ_CONSUMING_OPS = (pysam.CMATCH, pysam.CINS, pysam.CSOFT_CLIP, pysam.CEQUAL, pysam.CDIFF)
REFERENCE_CONSUMING_OPS = (pysam.CMATCH, pysam.CDEL, pysam.CREF_SKIP, pysam.CEQUAL, pysam.CDIFF)


def revcomp(seq: str | list | np.ndarray) -> str | list | np.ndarray:
    """Reverse complements DNA given as string

    Parameters
    ----------
    :param: seq Union[str,list,np.ndarray]
        DNA string
    :raises ValueError: is seq is not of the right type

    :return: str | list | np.ndarray
    """
    complement = {
        "A": "T",
        "C": "G",
        "G": "C",
        "T": "A",
        "a": "t",
        "c": "g",
        "g": "c",
        "t": "a",
    }
    if isinstance(seq, str):
        reverse_complement = "".join(complement.get(base, base) for base in reversed(seq))
    elif isinstance(seq, list):
        reverse_complement = [complement.get(base, base) for base in reversed(seq)]
    elif isinstance(seq, np.ndarray):
        reverse_complement = np.array([complement.get(base, base) for base in reversed(seq)])
    else:
        raise ValueError(f"Got unexpected variable {seq} of type {type(seq)}, expected str, list or numpy array")

    return reverse_complement


def parse_cigar(cigar: str | list) -> list:
    """Converts CIGAR string to the list of (operation, length) tuples in pysam encoding

    Parameters
    ----------
    cigar: str | list
        CIGAR string (e.g. 10M1D5M) or a list of tuples that is returned as is

    Returns
    -------
    list
        List of (op, length) tuples
    """
    if not isinstance(cigar, str):
        return list(cigar)
    if not re.fullmatch(r"(\d+[MIDNSHP=XB])*", cigar):
        raise ValueError(f"Unable to parse CIGAR {cigar}")
    return [(CIGAR_OPS.index(op), int(length)) for length, op in re.findall(r"(\d+)([MIDNSHP=XB])", cigar)]


def reference_length(cigartuples: list) -> int:
    """Number of reference bases spanned by the alignment"""
    return sum(length for op, length in cigartuples if op in REFERENCE_CONSUMING_OPS)


def hard_clips(cigartuples: list) -> tuple:
    """Returns number of bases hard clipped from the left and from the right of the alignment"""
    if not cigartuples:
        return (0, 0)
    left = cigartuples[0][1] if cigartuples[0][0] == pysam.CHARD_CLIP else 0
    right = cigartuples[-1][1] if len(cigartuples) > 1 and cigartuples[-1][0] == pysam.CHARD_CLIP else 0
    return (left, right)


def get_read_index_for_reference_coordinate(alignment_start: int, cigartuples: list, ref_coord: int) -> tuple:
    """Finds the offset in the aligned sequence of a reference coordinate

    Parameters
    ----------
    alignment_start: int
        Reference position of the first aligned base (0-based)
    cigartuples: list
        Alignment as a list of (op, length) tuples
    ref_coord: int
        Reference coordinate (0-based)

    Returns
    -------
    tuple (int, bool)
        Offset in the sequence and whether the coordinate falls inside a deletion. In the deletion case
        the offset of the first base after the deletion is returned. (-1, False) if the coordinate is not covered
    """
    if ref_coord < alignment_start:
        return (-1, False)
    read_pos = 0
    ref_pos = alignment_start
    for op, length in cigartuples:
        consumes_read = op in READ_CONSUMING_OPS
        consumes_ref = op in REFERENCE_CONSUMING_OPS
        if consumes_ref and ref_pos + length > ref_coord:
            if consumes_read:
                return (read_pos + ref_coord - ref_pos, False)
            return (read_pos, True)
        if consumes_ref:
            ref_pos += length
        if consumes_read:
            read_pos += length
    return (-1, False)


def hard_clip_cigar(cigartuples: list, n_bases: int, from_start: bool = True) -> tuple:
    """Hard clips read bases from one end of the alignment

    Soft clipped bases are counted as read bases and become hard clipped, deletions that
    end up at the clipped end of the alignment are removed

    Parameters
    ----------
    cigartuples: list
        Alignment as a list of (op, length) tuples
    n_bases: int
        Number of read bases to clip
    from_start: bool
        Clip from the start (True) or from the end (False) of the alignment

    Returns
    -------
    tuple (list, int)
        The new alignment (empty if no aligned bases remain) and the number of
        reference bases removed from the clipped end
    """
    cigar = list(cigartuples) if from_start else list(reversed(cigartuples))
    hard_clipped = 0
    while cigar and cigar[0][0] == pysam.CHARD_CLIP:
        hard_clipped += cigar.pop(0)[1]

    remaining = n_bases
    reference_shift = 0
    result = []
    for op, length in cigar:
        consumes_read = op in READ_CONSUMING_OPS
        consumes_ref = op in REFERENCE_CONSUMING_OPS
        if remaining == 0 and (result or consumes_read):
            result.append((op, length))
            continue
        if not consumes_read:
            if consumes_ref:
                reference_shift += length
            continue
        clipped = min(length, remaining)
        remaining -= clipped
        hard_clipped += clipped
        if consumes_ref:
            reference_shift += clipped
        if length > clipped:
            result.append((op, length - clipped))

    if not any(op in (pysam.CMATCH, pysam.CEQUAL, pysam.CDIFF) for op, _ in result):
        return ([], reference_shift)
    if hard_clipped > 0:
        result = [(pysam.CHARD_CLIP, hard_clipped)] + result
    if not from_start:
        result = result[::-1]
    return (result, reference_shift)
