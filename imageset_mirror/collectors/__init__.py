"""Image collectors and the aggregator that sequences them."""

from .additional import AdditionalCollector
from .aggregator import CollectionAggregator, merge_images
from .base import Collector, plan_item, plan_items
from .operator import OperatorCollector
from .release import ReleaseCollector

__all__ = [
    "AdditionalCollector",
    "CollectionAggregator",
    "Collector",
    "OperatorCollector",
    "ReleaseCollector",
    "merge_images",
    "plan_item",
    "plan_items",
]
