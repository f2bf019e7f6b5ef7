# Flow-based read class
# Holds a read in flow space together with its flow probability matrix
from __future__ import annotations

import copy
import logging

import numpy as np
import pysam

from ugflow import logger
from ugflow.dna import utils as dnautils
from ugflow.flow_format import key_codec
from ugflow.flow_format.flow_based_alignment_args import FlowBasedAlignmentArgs
from ugflow.utils import math_utils as phred
from ugflow.utils import misc_utils as utils
from ugflow.utils.consts import DEFAULT_FLOW_ORDER, DEFAULT_MAX_CLASS, Direction, ReadTags


class FlowBasedRead:
    """Class that helps working with flow based reads

    The read is kept in flow space: `key` is the hmer called in each flow and
    `_flow_matrix[h, f]` is the probability that the true hmer in flow `f` is `h`.

    Attributes
    ----------
    read_name: str
        Read name
    seq: str
        Read sequence as reported in the record (reference direction)
    key: np.ndarray
        sequence in flow base
    flow2base: np.ndarray
        position of the last output sequence base _before_ each flow for forward key
    flow_order: np.ndarray
        nucleotide of each flow
    direction: Direction
        SYNTHESIS or REFERENCE
    cigar: list
        Alignment (list of (op, length) tuples)
    start: int
        Reference start (0-based)
    end: int
        Reference end (0-based, exclusive)
    _max_hmer: int
        Maximal hmer
    _flow_matrix: np.ndarray
        (max_hmer+1) x n_flows probability matrix

    Methods
    -------
    apply_alignment:
        Brings the read to the reference direction and applies hard clipping
    apply_base_clipping:
        Trims the read to the haplotype boundaries
    """

    key: np.ndarray
    flow_order: np.ndarray
    cigar: list
    _max_hmer: int
    seq: str
    read_name: str
    is_reverse: bool
    start: int
    end: int
    flow2base: np.ndarray
    direction: Direction

    def __init__(self, dct: dict):
        """Generic constructor

        Parameters
        ----------
        Receives key-value dictionary and sets the corresponding properties of the object

        Returns
        -------
        None
        """
        self.cigar = None
        self.start = None
        self.end = None
        self.is_reverse = False
        self._args = FlowBasedAlignmentArgs()
        self._alignment_applied = False
        self._trimmed_to_haplotype = False
        self.trim_left_base = 0
        self.trim_right_base = 0
        for k in dct:
            setattr(self, k, dct[k])
        assert hasattr(self, "key"), "Something is broken in the constructor, key is not defined"
        assert hasattr(self, "flow_order"), "Something is broken in the constructor, flow_order is not defined"
        self.key = np.asarray(self.key, dtype=int)
        self.flow2base = key_codec.key2base(self.key)
        if isinstance(self.flow_order, str):
            self.flow_order = key_codec.get_flow2base(self.flow_order, len(self.key))

        self._valid = self._validate_seq()

    @classmethod
    def from_tuple(
        cls,
        read_name: str,
        read: str,
        flow_order: str = DEFAULT_FLOW_ORDER,
        max_hmer_size: int = DEFAULT_MAX_CLASS,
        args: FlowBasedAlignmentArgs | None = None,
    ) -> FlowBasedRead:
        """Constructor of an error-free read from name and sequence

        Parameters
        ----------
        read_name: str
            Name of the read
        read: str
            String of bases
        flow_order: str
            The flow cycle
        max_hmer_size: int
            Maximal size of the called hmer
        args: FlowBasedAlignmentArgs, optional
            Model parameters

        Returns
        -------
        FlowBasedRead
        """
        if args is None:
            args = FlowBasedAlignmentArgs()
        key = key_codec.base2key(read, flow_order)
        flow_matrix = np.full((max_hmer_size + 1, len(key)), args.filling_value)
        flow_matrix[np.clip(key, 0, max_hmer_size), np.arange(len(key))] = 1
        dct = {
            "read_name": read_name,
            "seq": read,
            "key": key,
            "flow_order": flow_order,
            "_max_hmer": max_hmer_size,
            "_flow_matrix": flow_matrix,
            "_args": args,
            "direction": Direction.SYNTHESIS,
        }
        return cls(dct)

    @classmethod
    def from_sam_record(
        cls,
        sam_record: pysam.AlignedSegment,
        flow_order: str = DEFAULT_FLOW_ORDER,
        max_hmer_size: int = DEFAULT_MAX_CLASS,
        args: FlowBasedAlignmentArgs | None = None,
    ) -> FlowBasedRead:
        """Constructor from BAM record. Sets `seq`, `key`, `flow_order` and `_flow_matrix` attributes

        Two encodings are supported:

        * base format (`tp` tag): the key is generated from the read bases and the probabilities
          of the alternative hmers come from QUAL and tp. The read is in the reference direction.
        * flow format (`kr`, `kh`, `kf`, `kd` tags): the key and the sparse matrix are stored
          in the tags in the synthesis direction.

        Parameters
        ----------
        sam_record: pysam.AlignedSegment
            Input record
        flow_order: str
            The flow cycle
        max_hmer_size: int
            Maximal reported hmer size
        args: FlowBasedAlignmentArgs, optional
            Model parameters (filling value, minimal call probability etc.)

        Returns
        -------
        FlowBasedRead

        Raises
        ------
        ValueError
            If the record has neither tp nor kr tag
        """
        if args is None:
            args = FlowBasedAlignmentArgs()
        dct = {}
        dct["record"] = sam_record
        dct["read_name"] = sam_record.query_name
        dct["seq"] = sam_record.query_sequence
        dct["is_reverse"] = sam_record.is_reverse
        dct["_max_hmer"] = max_hmer_size
        dct["_args"] = args
        dct["flow_order"] = flow_order

        if sam_record.has_tag(ReadTags.TP.value):
            if sam_record.query_qualities is None:
                raise ValueError(f"Read {sam_record.query_name} has tp tag but no base qualities")
            dct["key"] = key_codec.base2key(dct["seq"], flow_order)
            dct["_flow_matrix"] = cls._matrix_from_qual_tp(
                dct["key"],
                np.array(sam_record.query_qualities, dtype=int),
                tp=np.array(sam_record.get_tag(ReadTags.TP.value), dtype=int),
                filler=args.filling_value,
                min_call_prob=args.minimal_call_prob,
                max_hmer_size=max_hmer_size,
            )
            dct["direction"] = Direction.REFERENCE
        elif sam_record.has_tag(ReadTags.KEY.value):
            dct["key"] = np.array(sam_record.get_tag(ReadTags.KEY.value), dtype=int)
            dct["_flow_matrix"] = cls._matrix_from_sparse(
                dct["key"],
                cls._get_int_tag(sam_record, ReadTags.HMER.value),
                cls._get_int_tag(sam_record, ReadTags.FLOW.value),
                cls._get_int_tag(sam_record, ReadTags.DELTA.value),
                filler=args.filling_value,
                scaling_factor=args.probability_scaling_factor,
                max_hmer_size=max_hmer_size,
                n_quantization_bins=args.probability_quantization,
            )
            dct["direction"] = Direction.SYNTHESIS
        else:
            raise ValueError(
                f"Read {sam_record.query_name} has neither {ReadTags.TP.value} nor {ReadTags.KEY.value} tag"
            )

        dct["cigar"] = sam_record.cigartuples
        dct["start"] = sam_record.reference_start
        dct["end"] = sam_record.reference_end
        result = cls(dct)
        result._post_process_matrix()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "cons: name: %s len: %d loc: %s-%s rev: %s cigar: %s",
                result.read_name,
                len(result.seq),
                result.start,
                result.end,
                result.is_reverse,
                sam_record.cigarstring,
            )
            logger.debug("     bases: %s", result.seq)
            logger.debug("       key: %s", key_codec.key_as_string(result.key))
        return result

    @staticmethod
    def _get_int_tag(sam_record: pysam.AlignedSegment, tag: str) -> np.ndarray:
        if not sam_record.has_tag(tag):
            return np.array([], dtype=int)
        return np.array(sam_record.get_tag(tag), dtype=int)

    @classmethod
    def _matrix_from_qual_tp(
        cls,
        key: np.ndarray,
        qual: np.ndarray,
        tp: np.ndarray,
        filler: float,
        min_call_prob: float,
        max_hmer_size: int = DEFAULT_MAX_CLASS,
    ) -> np.ndarray:
        """Fill flow matrix from the base format (QUAL + tp) data

        To fill the probability (P(i,j)) for call i for flow j
        QUAL values of the homopolymer output at flow j correspond to the probabilities
        of the errors that are defined by the tp tag.

        Example:

        Sequence  AAAAA
        QUAL      BCICB
        tp        -1, 1, 0, 1, -1

        This correspond to the probabilities of 4-mer (5-mer -1) and 6-mer (5-mer + 1)
        To calculate:
        P(4) = 2*PhredToProb('B') = 0.001,
        P(6) = 2*PhredToProb('C') = 0.0008,
        The values that are not mentioned are filled with `filler` value

        For the flows where the call is zero all the probabilities are initialized with filler

        P(5) = max(1-sum(P(i)) for i < max_hmer_size, min_call_prob), P(5) itself counted as filler

        Parameters
        ----------
        key : np.ndarray
            Key (starting from the first flow of the flow order)
        qual : np.ndarray
            Quality array of the read
        tp : np.ndarray
            tp tag of the read
        filler : float
            Value to place as zero probability
        min_call_prob: float
            The minimal value to place as the probability of the actual call
        max_hmer_size : int, optional
            Maximum hmer probability to report

        Returns
        -------
        np.ndarray
            max_hmer+1 x n_flows flow matrix
        """
        key = np.asarray(key, dtype=int)
        if len(qual) != key.sum() or len(tp) != key.sum():
            raise ValueError(f"Length of QUAL ({len(qual)}) or tp ({len(tp)}) differs from the read length")
        flow_matrix = np.ones((max_hmer_size + 1, len(key))) * filler

        probs = phred.unphred(qual)
        flow_to_place = np.repeat(np.arange(len(key)), key)
        place_to_locate = np.clip(tp + np.repeat(key, key), 0, max_hmer_size)
        errors = tp != 0
        flat_loc = np.ravel_multi_index((place_to_locate[errors], flow_to_place[errors]), flow_matrix.shape)
        out = np.bincount(flat_loc, probs[errors], minlength=flow_matrix.size)
        flow_matrix.flat[flat_loc] = out[flat_loc]

        # the call row still holds the filler here, the last row is not counted
        total = np.sum(flow_matrix[:max_hmer_size], axis=0)
        call_rows = np.clip(key, None, max_hmer_size)
        flow_matrix[call_rows, np.arange(flow_matrix.shape[1])] = np.clip(1 - total, min_call_prob, None)
        return flow_matrix

    @classmethod
    def _matrix_from_sparse(
        cls,
        key: np.ndarray,
        row: np.ndarray,
        column: np.ndarray,
        values: np.ndarray,
        filler: float,
        scaling_factor: float,
        max_hmer_size: int = DEFAULT_MAX_CLASS,
        n_quantization_bins: int | None = None,
    ) -> np.ndarray:
        """Fill flow matrix from the flow format (kh, kf, kd tags)

        The key itself is added to the sparse entries with zero kd (probability of the call relative to itself).
        Hmers above `max_hmer_size` are reported in the last row. Positive kd values are quantized
        into `n_quantization_bins` bins before the conversion to probabilities

        Parameters
        ----------
        key: np.ndarray
            Key (kr tag)
        row: np.ndarray
            Hmer of each entry (kh tag)
        column: np.ndarray
            Flow of each entry (kf tag)
        values: np.ndarray
            Phred-like difference from the call (kd tag)
        filler: float
            Minimal probability in the matrix
        scaling_factor: float
            Divisor of kd in the exponent
        max_hmer_size: int
            Maximal hmer
        n_quantization_bins: int, optional
            Number of kd bins, no quantization if None

        Returns
        -------
        np.ndarray
            max_hmer+1 x n_flows flow matrix
        """
        if not len(row) == len(column) == len(values):
            raise ValueError("kh, kf and kd tags should have the same length")
        key = np.asarray(key, dtype=int)
        flow_matrix = np.ones((max_hmer_size + 1, len(key))) * filler
        row = np.concatenate((np.asarray(row, dtype=int), key))
        column = np.concatenate((np.asarray(column, dtype=int), np.arange(len(key))))
        values = np.concatenate((np.asarray(values, dtype=float), np.zeros(len(key))))
        if n_quantization_bins is not None:
            values = cls._quantize_kd(values, n_quantization_bins, scaling_factor)
        probs = np.maximum(phred.unphred(values, scaling_factor), filler)
        np.maximum.at(flow_matrix, (np.clip(row, 0, max_hmer_size), column), probs)
        return flow_matrix

    @staticmethod
    def _quantize_kd(values: np.ndarray, n_bins: int, scaling_factor: float) -> np.ndarray:
        """Bins the positive kd values, the bins split the range of 6 * scaling_factor"""
        values = np.asarray(values, dtype=float)
        bin_size = 6 * scaling_factor / n_bins
        quantized = np.trunc(bin_size * np.trunc(values / bin_size) + 1)
        return np.where(values > 0, quantized, values)

    def _post_process_matrix(self) -> None:
        """Cleans the flow matrix after parsing: nan removal, the configured filters, clipping
        of low probabilities and spreading of the unclipped boundary flows"""
        self._flow_matrix = self._fix_nan(self._flow_matrix)
        self._apply_matrix_filters()
        if self._args.spread_edge_probs:
            left_clip, right_clip = dnautils.hard_clips(self.cigar or [])
            if self.direction == Direction.SYNTHESIS and self.is_reverse:
                left_clip, right_clip = right_clip, left_clip
            if left_clip == 0:
                self._spread_flow_probs(self._flow_matrix, self.key, self._first_nonzero(self.key))
            if right_clip == 0:
                self._spread_flow_probs(self._flow_matrix, self.key, self._last_nonzero(self.key))

    def _fix_nan(self, flow_matrix: np.ndarray) -> np.ndarray:
        """Replaces nan entries of the flow matrix with the filling value"""
        flow_matrix = flow_matrix.copy()
        flow_matrix[np.isnan(flow_matrix)] = self._args.filling_value
        return flow_matrix

    def _apply_matrix_filters(self) -> None:
        """Simplifications of the flow matrix (all off by default except for `_clip_probs`).
        The order of the filters matters"""
        args = self._args
        if args.disallow_larger_probs:
            np.minimum(self._flow_matrix, 1, out=self._flow_matrix)
        if args.remove_longer_than_one_indels:
            self._remove_long_indels()
        if args.remove_one_to_zero_probs:
            self._flow_matrix[1:, self.key == 0] = args.filling_value
        if args.lump_probs:
            self._lump_probs()
        self._clip_probs()
        if args.symmetric_indels:
            self._smooth_indels()
        if args.only_ins_or_del:
            self._report_ins_or_del()
        if args.retain_max_n_probs:
            self._retain_max_n_probs()

    def _clip_probs(self) -> None:
        """Probabilities below `probability_ratio_threshold` that are not the call are set to the filling value"""
        sub_matrix = self._flow_matrix[: self._max_hmer]
        not_call = np.arange(self._max_hmer)[:, np.newaxis] != self.key[np.newaxis, :]
        sub_matrix[(sub_matrix < self._args.probability_ratio_threshold) & not_call] = self._args.filling_value

    def _remove_long_indels(self) -> None:
        hmers = np.arange(self._max_hmer + 1)[:, np.newaxis]
        self._flow_matrix[np.abs(hmers - self.key[np.newaxis, :]) > 1] = self._args.filling_value

    def _lump_probs(self) -> None:
        """Probabilities of hmers that differ from the call by more than one are added to the call -1 / +1"""
        filler = self._args.filling_value
        flow_matrix = self._flow_matrix
        flows = np.arange(self.n_flows)
        for hmer in range(self._max_hmer):
            informative = flow_matrix[hmer] > filler
            for far, shift in ((hmer < self.key - 1, -1), (hmer > self.key + 1, 1)):
                move = informative & far
                rows = np.clip(self.key[move] + shift, 0, self._max_hmer)
                flow_matrix[rows, flows[move]] += flow_matrix[hmer, move]
                flow_matrix[hmer, move] = filler

    def _indel_flows(self) -> tuple:
        """Flows where both one base deletion and one base insertion can be reported and their calls"""
        flows = np.flatnonzero((self.key > 1) & (self.key < self._max_hmer))
        return flows, self.key[flows]

    def _smooth_indels(self) -> None:
        flows, calls = self._indel_flows()
        mean = (self._flow_matrix[calls - 1, flows] + self._flow_matrix[calls + 1, flows]) / 2
        self._flow_matrix[calls - 1, flows] = mean
        self._flow_matrix[calls + 1, flows] = mean

    def _report_ins_or_del(self) -> None:
        """Only the more probable of the one base deletion and insertion is kept"""
        filler = self._args.filling_value
        flows, calls = self._indel_flows()
        deletion = self._flow_matrix[calls - 1, flows]
        insertion = self._flow_matrix[calls + 1, flows]
        both = (deletion > filler) & (insertion > filler)
        to_remove = np.where(deletion > insertion, calls + 1, calls - 1)
        self._flow_matrix[to_remove[both], flows[both]] = filler

    def _retain_max_n_probs(self) -> None:
        """Keeps (call + 1) // 2 + 1 highest probabilities in every flow, as the base format reports
        one probability per pair of bases of the hmer"""
        sub_matrix = self._flow_matrix[: self._max_hmer]
        n_keep = np.clip((self.key + 1) // 2 + 1, 1, self._max_hmer)
        descending = -np.sort(-sub_matrix, axis=0)
        threshold = descending[n_keep - 1, np.arange(self.n_flows)]
        sub_matrix[sub_matrix < threshold[np.newaxis, :]] = self._args.filling_value

    def _spread_flow_probs(self, flow_matrix: np.ndarray, key: np.ndarray, flow: int) -> None:
        """The hmer of the boundary flow is uncertain (it could continue outside of the read),
        so the probabilities of all hmers from the call up are made equal"""
        if flow < 0:
            return
        call = min(key[flow], self._max_hmer)
        fill_prob = max(flow_matrix[call:, flow].mean(), self._args.filling_value)
        flow_matrix[call:, flow] = fill_prob

    @staticmethod
    def _first_nonzero(key: np.ndarray) -> int:
        nz = np.flatnonzero(key)
        return int(nz[0]) if len(nz) > 0 else -1

    @staticmethod
    def _last_nonzero(key: np.ndarray) -> int:
        nz = np.flatnonzero(key)
        return int(nz[-1]) if len(nz) > 0 else -1

    def _validate_seq(self) -> bool:
        """The read is not informative if it contains hmers that can not be represented"""
        return len(self.key) > 0 and bool(np.all(self.key <= self._max_hmer - 1))

    def is_valid(self) -> bool:
        """Returns if the key is valid"""
        return self._valid

    @property
    def max_hmer(self) -> int:
        return self._max_hmer

    @property
    def n_flows(self) -> int:
        return len(self.key)

    @property
    def flow_matrix(self) -> np.ndarray:
        return self._flow_matrix

    @property
    def is_trimmed_to_haplotype(self) -> bool:
        return self._trimmed_to_haplotype

    @property
    def trimmed_start(self) -> int:
        """Reference start after trimming to the haplotype"""
        return self.start + self.trim_left_base

    @property
    def trimmed_end(self) -> int:
        """Reference end (exclusive) after trimming to the haplotype"""
        return self.end - self.trim_right_base

    def seq_length(self) -> int:
        """Number of bases of the read as reported in the record"""
        return len(self.seq)

    def total_key_bases(self) -> int:
        return int(self.key.sum())

    def get_flow_order(self) -> str:
        """First cycle of the flow order"""
        cycle_length = self._args.flow_order_cycle_length
        return "".join(self.flow_order[:cycle_length])

    def get_prob(self, flow: int, hmer: int) -> float:
        """Probability of `hmer` in `flow`, hmers larger than the maximal hmer are reported as the maximal hmer"""
        return self._flow_matrix[min(max(hmer, 0), self._max_hmer), flow]

    def get_probs(self, flows: np.ndarray, hmers: np.ndarray) -> np.ndarray:
        """Vectorized `get_prob`"""
        return self._flow_matrix[np.clip(hmers, 0, self._max_hmer), flows]

    def _alignment_clips(self) -> tuple:
        """Bases that are not part of the alignment but are represented in the key
        (hard clips for flow format reads and soft clips for all reads)"""
        if not self.cigar:
            return (0, 0)
        cigar = list(self.cigar)
        left = right = 0
        keeps_hard_clips = self.record_keeps_hard_clipped_bases()
        while cigar and cigar[0][0] in (pysam.CHARD_CLIP, pysam.CSOFT_CLIP):
            if cigar[0][0] == pysam.CSOFT_CLIP or keeps_hard_clips:
                left += cigar[0][1]
            cigar = cigar[1:]
        while cigar and cigar[-1][0] in (pysam.CHARD_CLIP, pysam.CSOFT_CLIP):
            if cigar[-1][0] == pysam.CSOFT_CLIP or keeps_hard_clips:
                right += cigar[-1][1]
            cigar = cigar[:-1]
        return (left, right)

    def record_keeps_hard_clipped_bases(self) -> bool:
        """Flow format key describes the read before hard clipping, base format does not"""
        return hasattr(self, "record") and self.record.has_tag(ReadTags.KEY.value)

    def apply_alignment(self) -> FlowBasedRead:
        """Applies alignment (inversion / clipping) to the FlowBasedRead in place

        Reverse reads in the synthesis direction are flipped. Bases of the key that are outside
        of the aligned part of the read are then clipped.

        Returns
        -------
        FlowBasedRead
            self, in the reference direction

        Raises
        ------
        RuntimeError
            If the alignment was already applied
        """
        if self._alignment_applied:
            raise RuntimeError(f"Alignment already applied to read {getattr(self, 'read_name', '')}")
        if self.is_reverse and self.direction == Direction.SYNTHESIS:
            self._flow_matrix = self._flow_matrix[:, ::-1].copy()
            self.key = self.key[::-1].copy()
            self.flow2base = key_codec.key2base(self.key)
            self.flow_order = dnautils.revcomp(self.flow_order)

        left_bases, right_bases = self._alignment_clips()
        clip_left, left_hmer_clip = key_codec.find_left_clipping(left_bases, self.flow2base, self.key)
        reverse_key = self.key[::-1]
        clip_right, right_hmer_clip = key_codec.find_right_clipping(
            right_bases, key_codec.key2base(reverse_key), reverse_key
        )
        self._apply_clipping(clip_left, left_hmer_clip, clip_right, right_hmer_clip, self._args.spread_edge_probs)
        self.direction = Direction.REFERENCE
        self._alignment_applied = True
        return self

    def apply_base_clipping(
        self, clip_left_base: int, clip_right_base: int, spread_edge_probs: bool | None = None
    ) -> FlowBasedRead:
        """Trims the read in base space (usually to the boundaries of the haplotype)

        Parameters
        ----------
        clip_left_base: int
            Number of bases to remove from the left
        clip_right_base: int
            Number of bases to remove from the right
        spread_edge_probs: bool, optional
            Spread the probabilities of the new boundary flows (default - as configured)

        Returns
        -------
        FlowBasedRead
            self

        Raises
        ------
        RuntimeError
            If the read is not in the reference direction
        """
        if self.direction != Direction.REFERENCE:
            raise RuntimeError("Base clipping is defined only for reads in the reference direction")
        if clip_left_base < 0 or clip_right_base < 0:
            raise ValueError(f"Negative clipping {clip_left_base}, {clip_right_base}")
        if spread_edge_probs is None:
            spread_edge_probs = self._args.spread_edge_probs

        self._trimmed_to_haplotype = True
        self.trim_left_base = clip_left_base
        self.trim_right_base = clip_right_base
        if self.total_key_bases() - clip_left_base - clip_right_base < self._args.minimal_read_length:
            self._valid = False
            return self
        if clip_left_base + clip_right_base >= self.total_key_bases():
            self._valid = False
            return self

        clip_left, left_hmer_clip = key_codec.find_left_clipping(clip_left_base, self.flow2base, self.key)
        reverse_key = self.key[::-1]
        clip_right, right_hmer_clip = key_codec.find_right_clipping(
            clip_right_base, key_codec.key2base(reverse_key), reverse_key
        )
        self._apply_clipping(clip_left, left_hmer_clip, clip_right, right_hmer_clip, spread_edge_probs)
        return self

    def _apply_clipping(
        self, clip_left: int, left_hmer_clip: int, clip_right: int, right_hmer_clip: int, spread_edge_probs: bool
    ) -> None:
        """Removes flows from both ends of the read and subtracts partial hmers from the boundary flows.
        The state is replaced only after the new arrays are built"""
        original_length = len(self.key)
        if original_length == 0:
            self._valid = False
            return
        if clip_left < 0 or clip_right < 0 or clip_left >= original_length or clip_right >= original_length:
            raise RuntimeError(f"Weird read clip calculated: {clip_left}, {clip_right} for {original_length} flows")
        if left_hmer_clip < 0 or right_hmer_clip < 0:
            raise RuntimeError(f"Weird read clip calculated: {left_hmer_clip}, {right_hmer_clip}")
        if left_hmer_clip > 0 and left_hmer_clip >= self.key[clip_left]:
            raise RuntimeError(f"Weird read clip calculated: hmer clip {left_hmer_clip} at flow {clip_left}")
        right_flow = original_length - 1 - clip_right
        if right_hmer_clip > 0 and right_hmer_clip >= self.key[right_flow]:
            raise RuntimeError(f"Weird read clip calculated: hmer clip {right_hmer_clip} at flow {right_flow}")

        key = self.key.copy()
        key[clip_left] -= left_hmer_clip
        # if no bases left on the boundary flow - truncate it too
        shift_left = True
        while clip_left < original_length and key[clip_left] == 0:
            clip_left += 1
            shift_left = False

        key[original_length - 1 - clip_right] -= right_hmer_clip
        shift_right = True
        while clip_right < original_length - clip_left and key[original_length - 1 - clip_right] == 0:
            clip_right += 1
            shift_right = False

        if clip_left + clip_right >= original_length:
            self._valid = False
            return

        new_key = key[clip_left : original_length - clip_right]
        flow_matrix = self._flow_matrix[:, clip_left : original_length - clip_right].copy()
        if shift_left:
            flow_matrix[:, 0] = utils.shiftarray(flow_matrix[:, 0], -left_hmer_clip, 0)
        if shift_right:
            flow_matrix[:, -1] = utils.shiftarray(flow_matrix[:, -1], -right_hmer_clip, 0)
        if spread_edge_probs:
            self._spread_flow_probs(flow_matrix, new_key, self._first_nonzero(new_key))
            self._spread_flow_probs(flow_matrix, new_key, self._last_nonzero(new_key))

        self.flow_order = self.flow_order[clip_left : original_length - clip_right]
        self.key = new_key
        self.flow2base = key_codec.key2base(new_key)
        self._flow_matrix = flow_matrix

    def copy(self) -> FlowBasedRead:
        """Deep copy of the read"""
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (
            f"FlowBasedRead({getattr(self, 'read_name', '')}, {self.direction.value}, "
            f"key={key_codec.key_as_string(self.key)}, valid={self._valid})"
        )


def adjust_flow_order_to_uncertain_flow(flow_order: str, first_uncertain_flow_base: str, cycle_length: int) -> str:
    """Rotates the flow cycle so that it starts at the first uncertain flow

    Raises
    ------
    ValueError
        If the nucleotide is not in the flow order
    """
    doubled = flow_order + flow_order
    start = doubled.find(first_uncertain_flow_base)
    if start < 0:
        raise ValueError(f"Nucleotide {first_uncertain_flow_base} is not in the flow order {flow_order}")
    return doubled[start : start + cycle_length]


def count_uncertain_bases(forward_seq: str, flow_order: str, n_uncertain_flows: int) -> int:
    """Number of bases (in the synthesis direction) that are read in the first `n_uncertain_flows` flows"""
    key = key_codec.base2key(forward_seq, flow_order)
    return int(key[:n_uncertain_flows].sum())


def hard_clip_uncertain_bases(
    record: pysam.AlignedSegment, flow_order: str, args: FlowBasedAlignmentArgs | None = None
) -> pysam.AlignedSegment | None:
    """Hard clips the bases read in the first uncertain flows (5' end) of the read

    The first flows of the read often generate noisy calls. `args.num_uncertain_flows` flows
    starting from the flow of `args.first_uncertain_flow_base` are removed. For reverse reads
    the bases are clipped from the end of the alignment. Base qualities and the tp tag are
    clipped together with the bases; the kr/kh/kf/kd tags keep describing the whole read.

    Parameters
    ----------
    record: pysam.AlignedSegment
        Input record, not modified
    flow_order: str
        Flow cycle of the read group of the read
    args: FlowBasedAlignmentArgs, optional
        Number of uncertain flows and the nucleotide of the first of them

    Returns
    -------
    pysam.AlignedSegment | None
        Clipped copy of the record, the record itself if nothing is clipped,
        None if no aligned bases remain
    """
    if args is None:
        args = FlowBasedAlignmentArgs()
    flow_order = adjust_flow_order_to_uncertain_flow(
        flow_order, args.first_uncertain_flow_base, args.flow_order_cycle_length
    )
    seq = record.query_sequence
    forward_seq = dnautils.revcomp(seq) if record.is_reverse else seq
    n_clip = count_uncertain_bases(forward_seq, flow_order, args.num_uncertain_flows)
    if n_clip == 0:
        return record
    if n_clip >= len(seq):
        return None
    cigar, reference_shift = dnautils.hard_clip_cigar(record.cigartuples, n_clip, from_start=not record.is_reverse)
    if not cigar:
        return None

    keep = slice(0, len(seq) - n_clip) if record.is_reverse else slice(n_clip, len(seq))
    qualities = record.query_qualities
    result = copy.deepcopy(record)
    result.query_sequence = seq[keep]
    if qualities is not None:
        result.query_qualities = qualities[keep]
    if record.has_tag(ReadTags.TP.value):
        result.set_tag(ReadTags.TP.value, list(record.get_tag(ReadTags.TP.value))[keep])
    result.cigartuples = cigar
    result.reference_start = record.reference_start + reference_shift
    return result
