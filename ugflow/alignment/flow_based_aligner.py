# Alignment of flow based reads to flow based haplotypes
from __future__ import annotations

import logging

import numpy as np

from ugflow import logger
from ugflow.dna import utils as dnautils
from ugflow.flow_format import key_codec
from ugflow.flow_format.flow_based_alignment_args import FlowBasedAlignmentArgs
from ugflow.flow_format.flow_based_haplotype import FlowBasedHaplotype
from ugflow.flow_format.flow_based_read import FlowBasedRead
from ugflow.utils import math_utils
from ugflow.utils.consts import Direction


class FlowBasedAligner:
    """Scores reads against haplotypes in flow space

    The model assumes that between the read and the haplotype there are no insertions or deletions of flows.
    The best starting position of the read on the haplotype is searched in a small window around the position
    estimated from the alignments of the read and of the haplotype to the reference, and P(R|H) is the product
    of the probabilities of the haplotype hmers in the flow matrix of the read.

    Parameters
    ----------
    args: FlowBasedAlignmentArgs, optional
        Alignment uncertainty and probability floor are taken from here
    """

    def __init__(self, args: FlowBasedAlignmentArgs | None = None):
        if args is None:
            args = FlowBasedAlignmentArgs()
        self.args = args

    def haplotype_read_matching(self, haplotype: FlowBasedHaplotype, read: FlowBasedRead) -> float:
        """Log10 likelihood of the read given the haplotype

        Example: align read ACGGT to haplotype GACG-TA. In flow space the overlapping sequences ACGGT and ACGT
        have the same length and P(R|H) = prod P(R_i | H_i) over the flows.

        Parameters
        ----------
        haplotype: FlowBasedHaplotype
            Haplotype
        read: FlowBasedRead
            Read after `apply_alignment` and `apply_base_clipping`

        Returns
        -------
        float
            log10 P(read | haplotype), -inf if the read can not be placed on the haplotype

        Raises
        ------
        RuntimeError
            If the read is not in the reference direction or not trimmed to the haplotype
        """
        if read.direction != Direction.REFERENCE:
            raise RuntimeError("Read should be aligned with the reference")
        if not read.is_trimmed_to_haplotype:
            raise RuntimeError("Reads should be trimmed to the haplotype")

        if not read.is_valid():
            # the read is not informative, same likelihood for all the haplotypes
            return read.n_flows * np.log10(self.args.probability_floor)

        # the read is assumed to be trimmed to the haplotype, the region of the haplotype to align to
        # is estimated from the points of the haplotype that align to the start and to the end of the read
        haplotype_start, _ = dnautils.get_read_index_for_reference_coordinate(
            haplotype.start, haplotype.cigar, read.trimmed_start
        )
        haplotype_end, _ = dnautils.get_read_index_for_reference_coordinate(
            haplotype.start, haplotype.cigar, read.trimmed_end - 1
        )
        if haplotype_start < 0 or haplotype_end < 0:
            return -np.inf
        haplotype_length = haplotype_end - haplotype_start + 1
        read_length = read.total_key_bases()

        # if the read falls inside a deletion of the haplotype the trimmed haplotype is shorter than the read,
        # so the haplotype is extended by the difference
        uncertainty = max(read_length - haplotype_length, 0)
        left_clip = max(haplotype_start - uncertainty, 0)
        right_clip = max(len(haplotype.bases) - haplotype_end - 1 - uncertainty, 0)
        if left_clip >= len(haplotype.bases) or right_clip >= len(haplotype.bases):
            return -np.inf

        clip_left, left_hmer_clip = haplotype.find_left_clipping(left_clip)
        clip_right, right_hmer_clip = haplotype.find_right_clipping(right_clip)
        if clip_left >= haplotype.key_length() or clip_right >= haplotype.key_length():
            return -np.inf
        if left_hmer_clip < 0 or right_hmer_clip < 0:
            raise RuntimeError("Negative hmer clips found")

        original_length = haplotype.key_length()
        step = self.args.alignment_uncertainty
        clip_left = max(clip_left - step, 0)
        clip_right = min(original_length - clip_right + step, original_length)
        key = haplotype.key[clip_left:clip_right]
        flow_order = haplotype.flow_order[clip_left:clip_right]
        starting_points = np.flatnonzero(flow_order == read.flow_order[0])
        starting_point = int(starting_points[0]) if len(starting_points) > 0 else 0

        if logger.isEnabledFor(logging.DEBUG):
            name = getattr(read, "read_name", "")
            logger.debug("haplotype   %s %s", name, haplotype.bases)
            logger.debug("read        %s %s", name, read.seq)
            logger.debug("haplotype.f %s %s", name, "".join(haplotype.flow_order))
            logger.debug("read.f      %s %s", name, "".join(read.flow_order))
            logger.debug("haplotype.K %s %s", name, key_codec.key_as_string(haplotype.key))
            logger.debug("haplotype.k %s %s", name, key_codec.key_as_string(key))
            logger.debug("read.k      %s %s", name, key_codec.key_as_string(read.key))
            logger.debug("starting point: %s %d", name, starting_point)

        n_flows = read.n_flows
        flows = np.arange(n_flows)
        best_alignment = -np.inf
        for start in range(starting_point, len(key) - n_flows + 1, step):
            hmers = np.clip(key[start : start + n_flows], None, read.max_hmer + 1)
            probs = read.get_probs(flows, hmers)
            result = np.sum(math_utils.floored_log10(probs, self.args.probability_floor))
            if result > best_alignment:
                best_alignment = result
        return float(best_alignment)
