from .normalizer import normalize
from .differ import CollectionRef, ReconciliationDiffer, aggregate, is_size_issue
from .list_counts import compare_list_counts, within_threshold

__all__ = [
    "normalize",
    "CollectionRef",
    "ReconciliationDiffer",
    "aggregate",
    "is_size_issue",
    "compare_list_counts",
    "within_threshold",
]
