from enum import Enum

DEFAULT_FLOW_ORDER = "TGCA"
FLOW_ORDER_CYCLE_LENGTH = 4

# read group header fields
RG_FLOW_ORDER = "FO"
RG_MAX_CLASS = "mc"
RG_PLATFORM = "PL"
DEFAULT_MAX_CLASS = 12

# maximal value of a capped key entry
MAX_CAPPED_KEY_VALUE = 127


class ReadTags(Enum):
    """Flow-based read tags"""

    TP = "tp"
    KEY = "kr"
    HMER = "kh"
    FLOW = "kf"
    DELTA = "kd"


class Direction(Enum):
    """Orientation of a flow-space sequence"""

    SYNTHESIS = "synthesis"
    REFERENCE = "reference"
