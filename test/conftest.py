import pysam
import pytest

from ugflow.flow_format.read_group_info import get_bam_header


@pytest.fixture
def bam_header():
    return get_bam_header("1", flow_order="TGCA", max_class=12)


@pytest.fixture
def make_record(bam_header):
    """Factory of aligned records. Base format (tp tag) by default, flow format if `kr` is given"""

    def _make_record(
        seq,
        start=0,
        cigar=None,
        name="read",
        is_reverse=False,
        quals=None,
        tp=None,
        kr=None,
        kh=None,
        kf=None,
        kd=None,
        read_group="1",
    ):
        record = pysam.AlignedSegment(bam_header)
        record.query_name = name
        record.query_sequence = seq
        record.flag = 16 if is_reverse else 0
        record.reference_id = 0
        record.reference_start = start
        record.mapping_quality = 60
        record.cigartuples = cigar if cigar is not None else [(pysam.CMATCH, len(seq))]
        if quals is None:
            quals = [30] * len(seq)
        record.query_qualities = pysam.qualitystring_to_array("".join(chr(q + 33) for q in quals))
        if kr is None:
            record.set_tag("tp", [int(v) for v in tp] if tp is not None else [0] * len(seq))
        else:
            record.set_tag("kr", [int(v) for v in kr])
            for tag, value in (("kh", kh), ("kf", kf), ("kd", kd)):
                if value:
                    record.set_tag(tag, [int(v) for v in value])
        if read_group is not None:
            record.set_tag("RG", read_group)
        return record

    return _make_record
