from __future__ import annotations

import threading
from dataclasses import dataclass

import pysam

from ugflow import logger
from ugflow.utils.consts import DEFAULT_MAX_CLASS, FLOW_ORDER_CYCLE_LENGTH, RG_FLOW_ORDER, RG_MAX_CLASS, RG_PLATFORM


def _header_to_dict(header: pysam.AlignmentHeader | dict) -> dict:
    if isinstance(header, pysam.AlignmentHeader):
        return header.to_dict()
    return header


def get_read_groups(header: pysam.AlignmentHeader | dict) -> list:
    """Read group records (list of dictionaries) of the header"""
    return list(_header_to_dict(header).get("RG", []))


def get_bam_header(rgid: str | None = None, flow_order: str = "TGCA", max_class: int | None = None):
    """Minimal header of a flow based BAM with a single read group

    Parameters
    ----------
    rgid: str, optional
        Read group id (default: "1")
    flow_order: str
        FO field of the read group
    max_class: int, optional
        mc field of the read group

    Returns
    -------
    pysam.AlignmentHeader
    """
    if rgid is None:
        rgid = "1"
    read_group = {"ID": rgid, RG_FLOW_ORDER: flow_order, RG_PLATFORM: "ULTIMA", "SM": "NA12878"}
    if max_class is not None:
        read_group[RG_MAX_CLASS] = str(max_class)
    dct = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": "chr1", "LN": 248956422}],
        "RG": [read_group],
    }
    return pysam.AlignmentHeader.from_dict(dct)


@dataclass(frozen=True)
class ReadGroupInfo:
    """Flow information of a read group

    Attributes
    ----------
    flow_order: str
        First cycle of the flow order (FO field)
    max_class: int
        Maximal called hmer (mc field)
    """

    flow_order: str
    max_class: int = DEFAULT_MAX_CLASS

    @classmethod
    def from_read_group(
        cls,
        read_group: dict,
        cycle_length: int = FLOW_ORDER_CYCLE_LENGTH,
        default_max_class: int = DEFAULT_MAX_CLASS,
    ) -> ReadGroupInfo:
        """Parses read group record of the header

        Parameters
        ----------
        read_group: dict
            Read group record (ID, FO, mc, PL ...)
        cycle_length: int
            Length of the flow cycle
        default_max_class: int
            Maximal hmer if mc is not reported

        Returns
        -------
        ReadGroupInfo

        Raises
        ------
        ValueError
            If the read group has no flow order
        """
        flow_order = read_group.get(RG_FLOW_ORDER)
        if flow_order is None or len(flow_order) < cycle_length:
            raise ValueError(f"Read group {read_group.get('ID')} has no usable flow order ({RG_FLOW_ORDER})")
        max_class = read_group.get(RG_MAX_CLASS)
        max_class = default_max_class if max_class is None else int(max_class)
        return cls(flow_order=flow_order[:cycle_length], max_class=max_class)


def find_first_usable_flow_order(
    header: pysam.AlignmentHeader | dict, cycle_length: int = FLOW_ORDER_CYCLE_LENGTH
) -> str:
    """First flow order in the header that is at least one cycle long

    Raises
    ------
    ValueError
        If no read group reports a flow order
    """
    for read_group in get_read_groups(header):
        flow_order = read_group.get(RG_FLOW_ORDER)
        if flow_order is not None and len(flow_order) >= cycle_length:
            return flow_order[:cycle_length]
    raise ValueError("Unable to perform flow based operations without the flow order")


class ReadGroupInfoCache:
    """Thread safe cache of ReadGroupInfo by read group id. Entries are never evicted

    Parameters
    ----------
    cycle_length: int
        Length of the flow cycle
    default_max_class: int
        Maximal hmer for read groups without mc field
    """

    def __init__(self, cycle_length: int = FLOW_ORDER_CYCLE_LENGTH, default_max_class: int = DEFAULT_MAX_CLASS):
        self._cycle_length = cycle_length
        self._default_max_class = default_max_class
        self._cache = {}
        self._lock = threading.Lock()

    def get(self, header: pysam.AlignmentHeader | dict, read_group_id: str) -> ReadGroupInfo:
        """Returns information of the read group, parses the header on the first request

        Parameters
        ----------
        header: pysam.AlignmentHeader | dict
            Header that contains the read group
        read_group_id: str
            Read group id

        Returns
        -------
        ReadGroupInfo

        Raises
        ------
        ValueError
            If the read group is not in the header or has no flow order
        """
        with self._lock:
            info = self._cache.get(read_group_id)
            if info is None:
                records = [x for x in get_read_groups(header) if x.get("ID") == read_group_id]
                if not records:
                    raise ValueError(f"Read group {read_group_id} not found in the header")
                info = ReadGroupInfo.from_read_group(records[0], self._cycle_length, self._default_max_class)
                logger.debug(
                    "Read group %s: flow order %s, max class %d", read_group_id, info.flow_order, info.max_class
                )
                self._cache[read_group_id] = info
            return info

    def get_for_read(self, header: pysam.AlignmentHeader | dict, read: pysam.AlignedSegment) -> ReadGroupInfo:
        """Information of the read group of the read. Reads without RG tag get the first usable flow order

        Raises
        ------
        ValueError
            If no flow order is available
        """
        if read.has_tag("RG"):
            return self.get(header, read.get_tag("RG"))
        return ReadGroupInfo(
            flow_order=find_first_usable_flow_order(header, self._cycle_length), max_class=self._default_max_class
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
