from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pysam

from ugflow.dna import utils as dnautils
from ugflow.flow_format import key_codec


@dataclass
class Haplotype:
    """Candidate haplotype: sequence and its alignment to the reference

    Attributes
    ----------
    bases: str
        Haplotype sequence
    start: int
        Reference position of the first base (0-based)
    cigar: list | str
        Alignment of the haplotype to the reference, CIGAR string or list of (op, length) tuples.
        Default - all bases are matches
    is_reference: bool
        Reference haplotype
    contig: str
        Chromosome
    """

    bases: str
    start: int = 0
    cigar: list = None
    is_reference: bool = False
    contig: str = ""

    def __post_init__(self):
        if self.cigar is None:
            self.cigar = [(pysam.CMATCH, len(self.bases))]
        self.cigar = dnautils.parse_cigar(self.cigar)

    @property
    def end(self) -> int:
        """Reference end (exclusive)"""
        return self.start + dnautils.reference_length(self.cigar)

    def __len__(self) -> int:
        return len(self.bases)


class FlowBasedHaplotype:
    """Haplotype in flow space

    Attributes
    ----------
    haplotype: Haplotype
        Source haplotype
    key: np.ndarray
        Hmer in each flow
    rkey: np.ndarray
        Reversed key
    flow2base: np.ndarray
        Last base output before each flow
    rflow2base: np.ndarray
        flow2base of the reversed key
    flow_order: np.ndarray
        Nucleotide of each flow
    """

    def __init__(self, haplotype: Haplotype, flow_order: str):
        self.haplotype = haplotype
        self.key = key_codec.base2key(haplotype.bases, flow_order)
        self.flow2base = key_codec.key2base(self.key)
        self.rkey = self.key[::-1].copy()
        self.rflow2base = key_codec.key2base(self.rkey)
        self.flow_order = key_codec.get_flow2base(flow_order, len(self.key))

    @property
    def start(self) -> int:
        return self.haplotype.start

    @property
    def end(self) -> int:
        return self.haplotype.end

    @property
    def cigar(self) -> list:
        return self.haplotype.cigar

    @property
    def bases(self) -> str:
        return self.haplotype.bases

    @property
    def contig(self) -> str:
        return self.haplotype.contig

    def key_length(self) -> int:
        return len(self.key)

    def find_left_clipping(self, base_clipping: int) -> tuple:
        """Clips flows from the left to clip the input number of bases

        Returns
        -------
        tuple (int, int)
            Number of flows to remove and the number of bases to subtract from the leftmost remaining flow
        """
        return key_codec.find_left_clipping(base_clipping, self.flow2base, self.key)

    def find_right_clipping(self, base_clipping: int) -> tuple:
        """Clips flows from the right to clip the input number of bases

        Returns
        -------
        tuple (int, int)
            Number of flows to remove and the number of bases to subtract from the rightmost remaining flow
        """
        return key_codec.find_right_clipping(base_clipping, self.rflow2base, self.rkey)

    def equal_up_to_hmer_change(self, other: FlowBasedHaplotype) -> bool:
        """Checks if two haplotypes differ by at most a single hmer length change

        Parameters
        ----------
        other: FlowBasedHaplotype
            Haplotype to compare to (same flow order)

        Returns
        -------
        bool
        """
        if other.key_length() != self.key_length():
            return False
        if np.any((self.key == 0) != (other.key == 0)):
            return False
        return bool(np.sum(self.key != other.key) <= 1)

    def __repr__(self) -> str:
        return f"FlowBasedHaplotype({self.contig}:{self.start}-{self.end}, key={key_codec.key_as_string(self.key)})"
