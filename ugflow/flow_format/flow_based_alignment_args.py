from __future__ import annotations

import argparse
from dataclasses import dataclass, fields

from ugflow.utils.consts import DEFAULT_MAX_CLASS, FLOW_ORDER_CYCLE_LENGTH


@dataclass(frozen=True)
class FlowBasedAlignmentArgs:
    """Parameters of the flow based read model and of the read/haplotype alignment

    Attributes
    ----------
    probability_ratio_threshold: float
        Probabilities in the flow matrix below this value are replaced by `filling_value`
    filling_value: float
        Probability of the flow matrix entries that are not reported by the read
    probability_scaling_factor: float
        Divisor of the kd values of the flow format reads (10 is the Phred scale)
    flow_order_cycle_length: int
        Length of the flow cycle read from the read group
    alignment_uncertainty: int
        Number of flows the haplotype window is extended by, on each side, and the step of the offset scan
    minimal_read_length: int
        Reads that are shorter after trimming to the haplotype are invalid
    minimal_call_prob: float
        Minimal probability of the called hmer
    probability_floor: float
        Probability used instead of zero / nan when scoring
    default_max_class: int
        Maximal hmer when the read group does not report it
    spread_edge_probs: bool
        Spread the probabilities of the first and the last informative flows
    log10_global_read_mismapping_rate: float
        Likelihood of a read relative to the best haplotype is not allowed to drop below this value
    expected_error_rate_per_base: float
        Expected sequencing error rate used by the poorly modeled reads filter
    catastrophic_error_rate: float
        Rate of catastrophic errors used by the poorly modeled reads filter
    cap_likelihoods: bool
        Apply the minimal number of errors (3 expected, 2 catastrophic) in the poorly modeled reads filter
    filter_poorly_modeled_reads: bool
        Flag reads that no haplotype explains well
    n_jobs: int
        Number of threads that score haplotypes
    disallow_larger_probs: bool
        Cap the probabilities of the flow matrix at 1
    remove_longer_than_one_indels: bool
        Keep only the probabilities of hmers that differ from the call by at most one
    remove_one_to_zero_probs: bool
        Remove the probabilities of non-zero hmers in the flows with zero call
    lump_probs: bool
        Move the probabilities of the hmers that differ from the call by more than one to the call +-1
    symmetric_indels: bool
        Replace the probabilities of the call +-1 by their mean
    only_ins_or_del: bool
        Keep only the more probable of the call +-1
    retain_max_n_probs: bool
        Keep only the (call+1)//2 + 1 highest probabilities of every flow (similar to the base format)
    probability_quantization: int
        Number of bins the kd values of the flow format reads are quantized into
    num_uncertain_flows: int
        Number of flows on the 5' end of the read that are hard clipped by `hard_clip_uncertain_bases`
    first_uncertain_flow_base: str
        Nucleotide of the first uncertain flow
    """

    probability_ratio_threshold: float = 0.003
    filling_value: float = 0.001
    probability_scaling_factor: float = 10
    flow_order_cycle_length: int = FLOW_ORDER_CYCLE_LENGTH
    alignment_uncertainty: int = 4
    minimal_read_length: int = 10
    minimal_call_prob: float = 0.1
    probability_floor: float = 1e-4
    default_max_class: int = DEFAULT_MAX_CLASS
    spread_edge_probs: bool = True
    log10_global_read_mismapping_rate: float = -4.5
    expected_error_rate_per_base: float = 0.02
    catastrophic_error_rate: float = 0.001
    cap_likelihoods: bool = True
    filter_poorly_modeled_reads: bool = True
    n_jobs: int = 1
    disallow_larger_probs: bool = False
    remove_longer_than_one_indels: bool = False
    remove_one_to_zero_probs: bool = False
    lump_probs: bool = False
    symmetric_indels: bool = False
    only_ins_or_del: bool = False
    retain_max_n_probs: bool = False
    probability_quantization: int = 121
    num_uncertain_flows: int = 0
    first_uncertain_flow_base: str = "T"

    def __post_init__(self):
        if not 0 < self.filling_value < 1:
            raise ValueError(f"filling_value should be in (0,1), got {self.filling_value}")
        if not 0 < self.probability_floor < 1:
            raise ValueError(f"probability_floor should be in (0,1), got {self.probability_floor}")
        if self.alignment_uncertainty < 1:
            raise ValueError(f"alignment_uncertainty should be positive, got {self.alignment_uncertainty}")
        if self.flow_order_cycle_length < 1:
            raise ValueError(f"flow_order_cycle_length should be positive, got {self.flow_order_cycle_length}")
        if self.log10_global_read_mismapping_rate > 0:
            raise ValueError("log10_global_read_mismapping_rate should not be positive")
        if not 0 < self.expected_error_rate_per_base < 1 or not 0 < self.catastrophic_error_rate < 1:
            raise ValueError("Error rates should be in (0,1)")
        if self.probability_quantization < 1:
            raise ValueError(f"probability_quantization should be positive, got {self.probability_quantization}")
        if self.num_uncertain_flows < 0:
            raise ValueError(f"num_uncertain_flows should not be negative, got {self.num_uncertain_flows}")
        if len(self.first_uncertain_flow_base) != 1:
            raise ValueError("First uncertain flow base should be of length 1")

    @classmethod
    def from_namespace(cls, args: argparse.Namespace) -> FlowBasedAlignmentArgs:
        """Builds the parameters from the arguments registered by `add_argparse_arguments`"""
        values = {f.name: getattr(args, f"flow_{f.name}") for f in fields(cls) if hasattr(args, f"flow_{f.name}")}
        return cls(**values)


def add_argparse_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Registers the flow based alignment parameters (all prefixed with --flow_)

    Parameters
    ----------
    parser: argparse.ArgumentParser
        Parser to add the arguments to

    Returns
    -------
    argparse.ArgumentParser
        The same parser
    """
    defaults = FlowBasedAlignmentArgs()
    group = parser.add_argument_group("flow based alignment")
    group.add_argument(
        "--flow_probability_ratio_threshold",
        default=defaults.probability_ratio_threshold,
        type=float,
        help="Lowest probability ratio to be used as an option",
    )
    group.add_argument(
        "--flow_filling_value",
        default=defaults.filling_value,
        type=float,
        help="Value to put in places of the flow matrix that are not reported by the read",
    )
    group.add_argument(
        "--flow_probability_scaling_factor",
        default=defaults.probability_scaling_factor,
        type=float,
        help="Divisor of the kd values of flow format reads",
    )
    group.add_argument(
        "--flow_flow_order_cycle_length",
        default=defaults.flow_order_cycle_length,
        type=int,
        help="Length of the flow order cycle",
    )
    group.add_argument(
        "--flow_alignment_uncertainty",
        default=defaults.alignment_uncertainty,
        type=int,
        help="Number of flows to extend the haplotype window by when matching reads",
    )
    group.add_argument(
        "--flow_minimal_read_length",
        default=defaults.minimal_read_length,
        type=int,
        help="Reads shorter than this after trimming to the haplotype are not informative",
    )
    group.add_argument(
        "--flow_minimal_call_prob",
        default=defaults.minimal_call_prob,
        type=float,
        help="Minimal probability of the called hmer",
    )
    group.add_argument(
        "--flow_probability_floor",
        default=defaults.probability_floor,
        type=float,
        help="Probability that replaces zero probabilities when scoring",
    )
    group.add_argument(
        "--flow_default_max_class",
        default=defaults.default_max_class,
        type=int,
        help="Maximal hmer when the read group has no mc field",
    )
    group.add_argument(
        "--flow_no_spread_edge_probs",
        dest="flow_spread_edge_probs",
        action="store_false",
        help="Do not spread the probabilities of the first and the last flows of the read",
    )
    group.add_argument(
        "--flow_log10_global_read_mismapping_rate",
        default=defaults.log10_global_read_mismapping_rate,
        type=float,
        help="Read likelihood is not allowed to be lower than the best haplotype likelihood plus this value",
    )
    group.add_argument(
        "--flow_expected_error_rate_per_base",
        default=defaults.expected_error_rate_per_base,
        type=float,
        help="Expected error rate per base for the poorly modeled reads filter",
    )
    group.add_argument(
        "--flow_catastrophic_error_rate",
        default=defaults.catastrophic_error_rate,
        type=float,
        help="Catastrophic error rate for the poorly modeled reads filter",
    )
    group.add_argument(
        "--flow_no_cap_likelihoods",
        dest="flow_cap_likelihoods",
        action="store_false",
        help="Do not apply minimal error counts in the poorly modeled reads filter",
    )
    group.add_argument(
        "--flow_no_filter_poorly_modeled_reads",
        dest="flow_filter_poorly_modeled_reads",
        action="store_false",
        help="Keep the reads that are not explained well by any haplotype",
    )
    group.add_argument("--flow_n_jobs", default=defaults.n_jobs, type=int, help="Number of threads")

    filters = parser.add_argument_group("flow matrix filtering")
    for name, help_message in (
        ("disallow_larger_probs", "Cap probabilities of error to 1 relative to base call"),
        ("remove_longer_than_one_indels", "Do not use the probabilities of more than one base indels"),
        ("remove_one_to_zero_probs", "Remove probabilities of non-zero hmers in flows with zero call"),
        ("lump_probs", "Combine all probabilities of insertion or deletion in the flow together"),
        ("symmetric_indels", "Make the probabilities of one base insertion and deletion equal"),
        ("only_ins_or_del", "Report either insertion or deletion probability, not both"),
        ("retain_max_n_probs", "Keep only hmer/2 probabilities (like in base format)"),
    ):
        filters.add_argument(f"--flow_{name}", action="store_true", help=help_message)
    filters.add_argument(
        "--flow_probability_quantization",
        default=defaults.probability_quantization,
        type=int,
        help="Number of quantization bins of the kd values",
    )
    group.add_argument(
        "--flow_num_uncertain_flows",
        default=defaults.num_uncertain_flows,
        type=int,
        help="Number of uncertain flows to hard clip on the 5' end of the read",
    )
    group.add_argument(
        "--flow_first_uncertain_flow_base",
        default=defaults.first_uncertain_flow_base,
        help="Nucleotide that is read in the first uncertain (5') flow",
    )
    return parser
