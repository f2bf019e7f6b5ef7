# Read x haplotype likelihood matrix of flow based reads
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
import pysam
from joblib import Parallel, delayed

from ugflow import logger
from ugflow.alignment.flow_based_aligner import FlowBasedAligner
from ugflow.alignment.threading_utils import AlignerPool
from ugflow.flow_format.flow_based_alignment_args import FlowBasedAlignmentArgs
from ugflow.flow_format.flow_based_haplotype import FlowBasedHaplotype
from ugflow.flow_format.flow_based_read import FlowBasedRead
from ugflow.flow_format.read_group_info import ReadGroupInfoCache, find_first_usable_flow_order


@dataclass
class SampleLikelihoods:
    """Likelihoods of the reads of a single sample

    Attributes
    ----------
    sample: str
        Sample name
    haplotypes: list
        Haplotypes (rows of the matrix)
    read_names: list
        Read names (columns of the matrix)
    matrix: np.ndarray
        n_haplotypes x n_reads matrix of log10 P(read | haplotype)
    read_status: np.ndarray
        False for the reads that are not informative or were filtered as poorly modeled
    """

    sample: str
    haplotypes: list
    read_names: list
    matrix: np.ndarray
    read_status: np.ndarray

    @property
    def n_reads(self) -> int:
        return self.matrix.shape[1]

    def best_alleles(self) -> np.ndarray:
        """Index of the most likely haplotype for each read"""
        return np.argmax(self.matrix, axis=0)


def log10_min_true_likelihood(
    read_length: int, expected_error_rate: float, catastrophic_error_rate: float, cap_likelihoods: bool = True
) -> float:
    """Minimal log10 likelihood of a read that is explained by the haplotype

    The read is allowed `read_length * expected_error_rate` expected errors and
    `read_length * catastrophic_error_rate` catastrophic errors (at least 3 and 2 when capped)

    Parameters
    ----------
    read_length: int
        Read length
    expected_error_rate: float
        Expected error rate per base
    catastrophic_error_rate: float
        Catastrophic error rate per base
    cap_likelihoods: bool
        Apply the minimal number of errors

    Returns
    -------
    float
    """
    max_errors = math.ceil(read_length * expected_error_rate)
    max_catastrophic_errors = math.ceil(read_length * catastrophic_error_rate)
    if cap_likelihoods:
        max_errors = max(3, max_errors)
        max_catastrophic_errors = max(2, max_catastrophic_errors)
    return max_errors * math.log10(expected_error_rate) + max_catastrophic_errors * math.log10(
        catastrophic_error_rate
    )


def normalize_likelihoods(matrix: np.ndarray, log10_global_read_mismapping_rate: float) -> tuple:
    """Caps the likelihoods of each read from below by the best likelihood plus the mismapping rate

    Parameters
    ----------
    matrix: np.ndarray
        n_haplotypes x n_reads log10 likelihoods
    log10_global_read_mismapping_rate: float
        Maximal difference from the best likelihood (negative)

    Returns
    -------
    tuple (np.ndarray, np.ndarray)
        Normalized matrix and a boolean array of the reads that have a finite likelihood.
        Reads without a finite likelihood get zeros
    """
    finite = np.isfinite(matrix)
    has_finite = finite.any(axis=0)
    best = np.max(np.where(finite, matrix, -np.inf), axis=0, initial=-np.inf)
    best = np.where(has_finite, best, 0)
    result = np.maximum(matrix, best + log10_global_read_mismapping_rate)
    result = np.where(has_finite[np.newaxis, :], result, 0.0)
    return result, has_finite


class FlowBasedLikelihoodEngine:
    """Computes likelihoods of flow based reads given haplotypes

    Parameters
    ----------
    args: FlowBasedAlignmentArgs, optional
        Model and alignment parameters
    """

    def __init__(self, args: FlowBasedAlignmentArgs | None = None):
        if args is None:
            args = FlowBasedAlignmentArgs()
        self.args = args
        self.read_group_cache = ReadGroupInfoCache(args.flow_order_cycle_length, args.default_max_class)
        self.aligner_pool = AlignerPool(lambda: FlowBasedAligner(self.args))

    def compute_read_likelihoods(
        self,
        haplotypes: list,
        per_sample_reads: dict,
        header: pysam.AlignmentHeader | dict,
        filter_poorly: bool | None = None,
    ) -> dict:
        """Likelihood matrix of every sample

        Parameters
        ----------
        haplotypes: list
            List of Haplotype, all haplotypes are assumed to span the same region
        per_sample_reads: dict
            Sample name -> list of pysam.AlignedSegment
        header: pysam.AlignmentHeader | dict
            Header that contains the read groups of the reads
        filter_poorly: bool, optional
            Flag the reads that are not explained by any haplotype (default - as configured)

        Returns
        -------
        dict
            Sample name -> SampleLikelihoods

        Raises
        ------
        ValueError
            If there are no haplotypes or the flow order is not available
        """
        if not haplotypes:
            raise ValueError("At least one haplotype is required")
        if filter_poorly is None:
            filter_poorly = self.args.filter_poorly_modeled_reads
        return {
            sample: self._compute_sample_likelihoods(sample, haplotypes, reads, header, filter_poorly)
            for sample, reads in per_sample_reads.items()
        }

    def _get_flow_order(self, header: pysam.AlignmentHeader | dict, reads: list) -> str:
        if reads:
            return self.read_group_cache.get_for_read(header, reads[0]).flow_order
        return find_first_usable_flow_order(header, self.args.flow_order_cycle_length)

    def convert_reads(self, reads: list, header: pysam.AlignmentHeader | dict) -> list:
        """Converts records to FlowBasedReads in the reference direction"""
        result = []
        for record in reads:
            info = self.read_group_cache.get_for_read(header, record)
            result.append(
                FlowBasedRead.from_sam_record(record, info.flow_order, info.max_class, self.args).apply_alignment()
            )
        return result

    def _score_haplotype(self, haplotype: FlowBasedHaplotype, reads: list) -> np.ndarray:
        aligner = self.aligner_pool.get()
        scores = np.array([aligner.haplotype_read_matching(haplotype, read) for read in reads], dtype=float)
        if logger.isEnabledFor(logging.DEBUG):
            for read, score in zip(reads, scores):
                logger.debug("likelihood: %f %s %s", score, read.read_name, haplotype.bases)
        return scores

    def _compute_sample_likelihoods(
        self,
        sample: str,
        haplotypes: list,
        reads: list,
        header: pysam.AlignmentHeader | dict,
        filter_poorly: bool,
    ) -> SampleLikelihoods:
        flow_order = self._get_flow_order(header, reads)
        processed_reads = self.convert_reads(reads, header)
        processed_haplotypes = [FlowBasedHaplotype(hap, flow_order) for hap in haplotypes]

        # all haplotypes are assumed to start and end at the same place
        haplotype_start = haplotypes[0].start
        haplotype_end = haplotypes[0].end
        for read in processed_reads:
            read.apply_base_clipping(max(0, haplotype_start - read.start), max(0, read.end - haplotype_end))

        if not processed_reads:
            matrix = np.zeros((len(haplotypes), 0))
        elif self.args.n_jobs > 1:
            rows = Parallel(n_jobs=self.args.n_jobs, prefer="threads")(
                delayed(self._score_haplotype)(hap, processed_reads) for hap in processed_haplotypes
            )
            matrix = np.vstack(rows)
        else:
            matrix = np.vstack([self._score_haplotype(hap, processed_reads) for hap in processed_haplotypes])

        matrix, has_finite = normalize_likelihoods(matrix, self.args.log10_global_read_mismapping_rate)
        read_status = has_finite & np.array([read.is_valid() for read in processed_reads], dtype=bool)
        if filter_poorly and processed_reads:
            thresholds = np.array(
                [
                    log10_min_true_likelihood(
                        read.seq_length(),
                        self.args.expected_error_rate_per_base,
                        self.args.catastrophic_error_rate,
                        self.args.cap_likelihoods,
                    )
                    for read in processed_reads
                ]
            )
            read_status &= matrix.max(axis=0) >= thresholds

        logger.debug(
            "Sample %s: %d haplotypes, %d reads, %d reads not informative",
            sample,
            len(haplotypes),
            len(processed_reads),
            int(np.sum(~read_status)),
        )
        return SampleLikelihoods(
            sample=sample,
            haplotypes=list(haplotypes),
            read_names=[read.read_name for read in processed_reads],
            matrix=matrix,
            read_status=read_status,
        )
