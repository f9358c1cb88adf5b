"""The six scan pipeline stages, in execution order."""

from .bf_estimator import BFEstimator
from .delta_comparator import DeltaComparator
from .insight_writer import InsightWriter
from .meta_binder import MetaBinder
from .privacy_publisher import PrivacyPublisher
from .vision_qc import VisionQC

__all__ = [
    "BFEstimator",
    "DeltaComparator",
    "InsightWriter",
    "MetaBinder",
    "PrivacyPublisher",
    "VisionQC",
]
