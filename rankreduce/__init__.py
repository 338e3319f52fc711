from .dtw_utils import (
    DimensionMismatch,
    EmptyDataset,
    InvalidConfiguration,
    NoDistanceComputed,
    compute_envelope,
    dtw_distance,
    lb_keogh,
    sakoe_chiba_window,
)
from .dtw_functions import (
    DTWDistance,
    DTWSearch,
    EuclideanDistance,
    LinearNNSearch,
    k_nearest,
    make_distance_function,
    make_search,
    predict_1nn,
)
from .reduction_utils import IndexRange, NeighborRecord, RankedList, remove_duplicates
from .reduction_functions import NumerosityReduction, ReductionConfig

__version__ = "0.1.0"
