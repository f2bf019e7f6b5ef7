import numpy as np
import pysam
import pytest

from ugflow.flow_format import key_codec
from ugflow.flow_format.flow_based_alignment_args import FlowBasedAlignmentArgs
from ugflow.flow_format.flow_based_read import (
    FlowBasedRead,
    adjust_flow_order_to_uncertain_flow,
    count_uncertain_bases,
    hard_clip_uncertain_bases,
)
from ugflow.utils.consts import Direction

NO_SPREAD = FlowBasedAlignmentArgs(spread_edge_probs=False)


def test_matrix_from_qual_tp_no_errors(make_record):
    record = make_record("TTTAGC")
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12, args=NO_SPREAD)
    assert list(read.key) == [3, 0, 0, 1, 0, 1, 1]
    assert read.direction == Direction.REFERENCE
    assert read.flow_matrix.shape == (13, 7)
    calls = read.flow_matrix[read.key, np.arange(7)]
    np.testing.assert_array_almost_equal(calls, np.ones(7) * 0.988)
    mask = np.ones(read.flow_matrix.shape, dtype=bool)
    mask[read.key, np.arange(7)] = False
    np.testing.assert_array_almost_equal(read.flow_matrix[mask], 0.001)


def test_matrix_from_qual_tp_with_error(make_record):
    record = make_record("TTTAGC", quals=[30, 20, 30, 30, 30, 30], tp=[0, -1, 0, 0, 0, 0])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12, args=NO_SPREAD)
    assert read.flow_matrix[2, 0] == pytest.approx(0.01)
    assert read.flow_matrix[3, 0] == pytest.approx(0.979)
    assert read.flow_matrix[4, 0] == pytest.approx(0.001)


def test_matrix_from_qual_tp_low_probability_clipped(make_record):
    record = make_record("TTTAGC", quals=[30, 40, 30, 30, 30, 30], tp=[0, -1, 0, 0, 0, 0])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12, args=NO_SPREAD)
    assert read.flow_matrix[2, 0] == pytest.approx(0.001)


def test_matrix_from_qual_tp_call_ignores_last_row(make_record):
    # the error of the first base moves probability into the last row (12), it does not reduce the call
    record = make_record("T" * 11, quals=[10] + [30] * 10, tp=[1] + [0] * 10)
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12, args=NO_SPREAD)
    assert list(read.key) == [11]
    assert read.flow_matrix[12, 0] == pytest.approx(0.1)
    assert read.flow_matrix[11, 0] == pytest.approx(0.988)


def test_matrix_from_qual_tp_wrong_length():
    with pytest.raises(ValueError):
        FlowBasedRead._matrix_from_qual_tp(
            np.array([2, 0, 0, 1]), np.array([30, 30]), np.array([0, 0]), filler=0.001, min_call_prob=0.1
        )


def test_spread_edge_probs(make_record):
    record = make_record("TTTAGC")
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12)
    np.testing.assert_array_almost_equal(read.flow_matrix[3:, 0], np.ones(10) * 0.0997)
    np.testing.assert_array_almost_equal(read.flow_matrix[1:, 6], np.ones(12) * 0.08325)
    assert read.flow_matrix[3, 3] == pytest.approx(0.001)
    assert read.flow_matrix[1, 3] == pytest.approx(0.988)


def test_from_tuple():
    read = FlowBasedRead.from_tuple("r1", "TTTAGC", flow_order="TGCA", max_hmer_size=12)
    assert read.direction == Direction.SYNTHESIS
    assert read.read_name == "r1"
    assert list(read.key) == [3, 0, 0, 1, 0, 1, 1]
    assert list(read.flow2base) == [-1, 2, 2, 2, 3, 3, 4]
    assert read.get_flow_order() == "TGCA"
    assert read.get_prob(0, 3) == 1
    assert read.get_prob(0, 2) == pytest.approx(0.001)
    assert read.is_valid()


def test_validity_by_max_hmer():
    assert not FlowBasedRead.from_tuple("r1", "A" * 12, max_hmer_size=12).is_valid()
    assert FlowBasedRead.from_tuple("r1", "A" * 11, max_hmer_size=12).is_valid()
    assert not FlowBasedRead.from_tuple("r1", "", max_hmer_size=12).is_valid()


def test_get_prob_clamps_hmer():
    read = FlowBasedRead.from_tuple("r1", "TTTAGC", max_hmer_size=12)
    assert read.get_prob(0, 20) == read.flow_matrix[12, 0]
    assert read.get_prob(0, -1) == read.flow_matrix[0, 0]
    np.testing.assert_array_equal(read.get_probs(np.array([0, 3]), np.array([3, 1])), [1, 1])


def test_apply_alignment_twice(make_record):
    read = FlowBasedRead.from_sam_record(make_record("TTTAGC"), flow_order="TGCA")
    read.apply_alignment()
    with pytest.raises(RuntimeError):
        read.apply_alignment()


def test_base_format_reverse_read_not_flipped(make_record):
    record = make_record("TTTAGC", is_reverse=True)
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD).apply_alignment()
    assert read.direction == Direction.REFERENCE
    assert list(read.key) == [3, 0, 0, 1, 0, 1, 1]
    assert key_codec.key2sequence(read.key, read.flow_order) == "TTTAGC"


def test_flow_format_forward(make_record):
    record = make_record("TTTAGC", kr=[3, 0, 0, 1, 0, 1, 1], kh=[2], kf=[0], kd=[20])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD)
    assert read.direction == Direction.SYNTHESIS
    np.testing.assert_array_equal(read.flow_matrix[read.key, np.arange(7)], np.ones(7))
    assert read.flow_matrix[2, 0] == pytest.approx(0.01)
    assert read.flow_matrix[1, 1] == pytest.approx(0.001)
    read.apply_alignment()
    assert read.direction == Direction.REFERENCE
    assert list(read.key) == [3, 0, 0, 1, 0, 1, 1]


def test_flow_format_reverse(make_record):
    # read synthesized as TTTAGC, reported on the reverse strand
    record = make_record("GCTAAA", is_reverse=True, kr=[3, 0, 0, 1, 0, 1, 1], kh=[2], kf=[0], kd=[20])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD)
    assert read.direction == Direction.SYNTHESIS
    read.apply_alignment()
    assert read.direction == Direction.REFERENCE
    assert list(read.key) == [1, 1, 0, 1, 0, 0, 3]
    assert "".join(read.flow_order) == "GCATGCA"
    assert key_codec.key2sequence(read.key, read.flow_order) == "GCTAAA"
    assert read.flow_matrix[2, 6] == pytest.approx(0.01)
    assert read.flow_matrix[3, 6] == 1


def test_flow_format_hard_clip(make_record):
    record = make_record(
        "TAGC",
        cigar=[(pysam.CHARD_CLIP, 2), (pysam.CMATCH, 4)],
        kr=[3, 0, 0, 1, 0, 1, 1],
        kh=[2],
        kf=[0],
        kd=[20],
    )
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD).apply_alignment()
    assert list(read.key) == [1, 0, 0, 1, 0, 1, 1]
    assert read.flow_matrix[0, 0] == pytest.approx(0.01)
    assert read.flow_matrix[1, 0] == 1
    assert read.flow_matrix[12, 0] == 0
    assert read.total_key_bases() == 4


def test_base_format_soft_clip(make_record):
    record = make_record("TTTAGC", cigar=[(pysam.CSOFT_CLIP, 1), (pysam.CMATCH, 5)])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD).apply_alignment()
    assert list(read.key) == [2, 0, 0, 1, 0, 1, 1]
    assert read.start == 0
    assert read.end == 5


def test_base_format_hard_clip_not_clipped_again(make_record):
    record = make_record("TAGC", cigar=[(pysam.CHARD_CLIP, 2), (pysam.CMATCH, 4)])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA", args=NO_SPREAD).apply_alignment()
    assert list(read.key) == [1, 0, 0, 1, 0, 1, 1]


def test_apply_base_clipping(make_record):
    seq = "TGCA" * 5
    record = make_record(seq, start=100)
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA").apply_alignment()
    assert not read.is_trimmed_to_haplotype
    read.apply_base_clipping(2, 3)
    assert read.is_trimmed_to_haplotype
    assert read.is_valid()
    assert read.total_key_bases() == 15
    assert read.n_flows == 15
    assert read.trimmed_start == 102
    assert read.trimmed_end == 117
    assert key_codec.key2sequence(read.key, read.flow_order) == seq[2:-3]


def test_apply_base_clipping_hmer(make_record):
    seq = "TTTTGCATGCATGCAGGGG"
    read = FlowBasedRead.from_sam_record(make_record(seq), flow_order="TGCA", args=NO_SPREAD).apply_alignment()
    read.apply_base_clipping(2, 1)
    assert read.key[0] == 2
    assert read.key[-1] == 3
    assert key_codec.key2sequence(read.key, read.flow_order) == seq[2:-1]
    # the probabilities of the clipped flows are shifted with the hmer
    assert read.flow_matrix[2, 0] == pytest.approx(0.988)
    assert read.flow_matrix[3, -1] == pytest.approx(0.988)


def test_apply_base_clipping_too_short(make_record):
    read = FlowBasedRead.from_sam_record(make_record("TGCA" * 5), flow_order="TGCA").apply_alignment()
    read.apply_base_clipping(6, 5)
    assert read.is_trimmed_to_haplotype
    assert not read.is_valid()


def test_apply_base_clipping_before_alignment(make_record):
    record = make_record("TTTAGC", kr=[3, 0, 0, 1, 0, 1, 1])
    read = FlowBasedRead.from_sam_record(record, flow_order="TGCA")
    with pytest.raises(RuntimeError):
        read.apply_base_clipping(1, 1)


def test_apply_base_clipping_negative(make_record):
    read = FlowBasedRead.from_sam_record(make_record("TGCA" * 5), flow_order="TGCA").apply_alignment()
    with pytest.raises(ValueError):
        read.apply_base_clipping(-1, 0)


def test_record_without_flow_tags(make_record):
    record = make_record("TTTAGC")
    record.set_tag("tp", None)
    with pytest.raises(ValueError):
        FlowBasedRead.from_sam_record(record, flow_order="TGCA")


def test_copy_is_independent(make_record):
    read = FlowBasedRead.from_sam_record(make_record("TGCA" * 5), flow_order="TGCA").apply_alignment()
    other = read.copy()
    other.apply_base_clipping(2, 2)
    assert read.n_flows == 20
    assert other.n_flows == 16


def _flow_format_read(make_record, kh, kf, kd, **kwargs):
    record = make_record("TTTAGC", kr=[3, 0, 0, 1, 0, 1, 1], kh=kh, kf=kf, kd=kd)
    args = FlowBasedAlignmentArgs(spread_edge_probs=False, **kwargs)
    return FlowBasedRead.from_sam_record(record, flow_order="TGCA", max_hmer_size=12, args=args)


def test_disallow_larger_probs(make_record):
    assert _flow_format_read(make_record, [2], [0], [-10]).flow_matrix[2, 0] == pytest.approx(10)
    read = _flow_format_read(make_record, [2], [0], [-10], disallow_larger_probs=True)
    assert read.flow_matrix[2, 0] == 1


def test_remove_longer_than_one_indels(make_record):
    read = _flow_format_read(make_record, [1, 2], [0, 0], [10, 20], remove_longer_than_one_indels=True)
    assert read.flow_matrix[1, 0] == pytest.approx(0.001)
    assert read.flow_matrix[2, 0] == pytest.approx(0.01)
    assert read.flow_matrix[3, 0] == 1


def test_remove_one_to_zero_probs(make_record):
    assert _flow_format_read(make_record, [1], [1], [10]).flow_matrix[1, 1] == pytest.approx(0.1)
    read = _flow_format_read(make_record, [1], [1], [10], remove_one_to_zero_probs=True)
    assert read.flow_matrix[1, 1] == pytest.approx(0.001)
    assert read.flow_matrix[0, 1] == 1


def test_lump_probs(make_record):
    read = _flow_format_read(make_record, [0, 1, 2, 5], [0, 0, 0, 0], [20, 20, 10, 20], lump_probs=True)
    assert read.flow_matrix[2, 0] == pytest.approx(0.12)
    assert read.flow_matrix[0, 0] == pytest.approx(0.001)
    assert read.flow_matrix[1, 0] == pytest.approx(0.001)
    assert read.flow_matrix[4, 0] == pytest.approx(0.011)
    assert read.flow_matrix[5, 0] == pytest.approx(0.001)
    assert read.flow_matrix[3, 0] == 1


def test_symmetric_indels(make_record):
    read = _flow_format_read(make_record, [2, 4], [0, 0], [10, 20], symmetric_indels=True)
    assert read.flow_matrix[2, 0] == pytest.approx(0.055)
    assert read.flow_matrix[4, 0] == pytest.approx(0.055)


def test_only_ins_or_del(make_record):
    read = _flow_format_read(make_record, [2, 4], [0, 0], [10, 20], only_ins_or_del=True)
    assert read.flow_matrix[2, 0] == pytest.approx(0.1)
    assert read.flow_matrix[4, 0] == pytest.approx(0.001)


def test_retain_max_n_probs(make_record):
    # call 3 keeps (3 + 1) // 2 + 1 = 3 probabilities
    read = _flow_format_read(make_record, [1, 2, 4, 5], [0, 0, 0, 0], [20, 10, 13, 16], retain_max_n_probs=True)
    np.testing.assert_array_almost_equal(
        read.flow_matrix[:6, 0], [0.001, 0.001, 0.1, 1, 10 ** -1.3, 0.001]
    )
    assert read.flow_matrix[1, 3] == 1


def test_filters_off_by_default(make_record):
    read = _flow_format_read(make_record, [1, 2, 4, 5], [0, 0, 0, 0], [20, 10, 13, 16])
    np.testing.assert_array_almost_equal(read.flow_matrix[:6, 0], [0.001, 0.01, 0.1, 1, 10 ** -1.3, 10 ** -1.6])


def test_kd_quantization(make_record):
    # default 121 bins keep integer kd values, 10 bins of 6 move 17 to 13
    assert _flow_format_read(make_record, [2], [0], [17]).flow_matrix[2, 0] == pytest.approx(10 ** -1.7)
    read = _flow_format_read(make_record, [2], [0], [17], probability_quantization=10)
    assert read.flow_matrix[2, 0] == pytest.approx(10 ** -1.3)


def test_quantize_kd():
    np.testing.assert_array_equal(FlowBasedRead._quantize_kd(np.arange(-1, 31), 121, 10), np.arange(-1, 31))
    np.testing.assert_array_equal(FlowBasedRead._quantize_kd([0, 5, 6, 29, 30], 10, 10), [0, 1, 7, 25, 31])


def test_adjust_flow_order_to_uncertain_flow():
    assert adjust_flow_order_to_uncertain_flow("TAGC", "T", 4) == "TAGC"
    assert adjust_flow_order_to_uncertain_flow("TAGC", "G", 4) == "GCTA"
    with pytest.raises(ValueError):
        adjust_flow_order_to_uncertain_flow("TAGC", "N", 4)


def test_count_uncertain_bases():
    assert count_uncertain_bases("ACCGAT", "TAGC", 4) == 3
    assert count_uncertain_bases("ACCGAT", "TAGC", 100) == 6
    assert count_uncertain_bases("ACCGAT", "TAGC", 0) == 0


testdata = [
    ("TAGCGA", False, 4, "T", "GA", 104, 106),
    ("ACCGAT", False, 4, "T", "GAT", 103, 106),
    ("TAGCGA", True, 4, "T", "TAGC", 100, 104),
    ("TAGCGA", False, 1, "T", "AGCGA", 101, 106),
    ("ACCGAT", False, 2, "T", "CCGAT", 101, 106),
    ("TAGCGA", True, 10, "T", None, None, None),
    ("TAGCGA", False, 4, "A", "AGCGA", 101, 106),
    ("ACCGAT", False, 4, "A", "GAT", 103, 106),
    ("TAGCGA", True, 4, "A", "TAGCG", 100, 105),
    ("TAGCGA", False, 1, "A", "TAGCGA", 100, 106),
    ("ACCGAT", False, 2, "A", "CCGAT", 101, 106),
    ("TAGCGA", True, 10, "A", "TAG", 100, 103),
]


@pytest.mark.parametrize("seq,is_reverse,n_flows,first_base,expected,start,end", testdata)
def test_hard_clip_uncertain_bases(make_record, seq, is_reverse, n_flows, first_base, expected, start, end):
    record = make_record(seq, start=100, is_reverse=is_reverse)
    args = FlowBasedAlignmentArgs(num_uncertain_flows=n_flows, first_uncertain_flow_base=first_base)
    result = hard_clip_uncertain_bases(record, "TAGC", args)
    if expected is None:
        assert result is None
        return
    assert result.query_sequence == expected
    assert result.reference_start == start
    assert result.reference_end == end
    assert len(result.query_qualities) == len(expected)
    assert len(result.get_tag("tp")) == len(expected)
    assert record.query_sequence == seq


def test_hard_clip_uncertain_bases_cigar(make_record):
    record = make_record("TAGCGA", start=100)
    args = FlowBasedAlignmentArgs(num_uncertain_flows=4)
    assert hard_clip_uncertain_bases(record, "TAGC", args).cigartuples == [(pysam.CHARD_CLIP, 4), (pysam.CMATCH, 2)]
    record = make_record("TAGCGA", start=100, is_reverse=True)
    assert hard_clip_uncertain_bases(record, "TAGC", args).cigartuples == [(pysam.CMATCH, 4), (pysam.CHARD_CLIP, 2)]


def test_hard_clip_uncertain_bases_flow_format(make_record):
    # the key keeps describing the clipped bases, they are removed again in flow space
    record = make_record("TTTAGC", start=100, kr=[3, 0, 0, 1, 0, 1, 1])
    args = FlowBasedAlignmentArgs(num_uncertain_flows=1, spread_edge_probs=False)
    clipped = hard_clip_uncertain_bases(record, "TGCA", args)
    assert clipped.query_sequence == "AGC"
    assert clipped.reference_start == 103
    read = FlowBasedRead.from_sam_record(clipped, flow_order="TGCA", args=args).apply_alignment()
    assert list(read.key) == [1, 0, 1, 1]
    assert key_codec.key2sequence(read.key, read.flow_order) == "AGC"
