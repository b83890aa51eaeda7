"""
2D Feature Tracking

연속된 카메라 이미지에서 키포인트를 검출하고, 디스크립터를 계산하고,
프레임 간에 매칭하는 도구를 제공합니다.
"""

from .keypoint_detection import KeypointDetector, DetectionResult
from .descriptor_extraction import DescriptorExtractor, DescriptionResult
from .descriptor_matching import DescriptorMatcher, MatchResult
from .data_buffer import DataBuffer, DataFrame
from .tracking_pipeline import FeatureTrackingPipeline, TrackingConfig, TrackingResult

__version__ = "0.1.0"
__all__ = [
    "KeypointDetector",
    "DetectionResult",
    "DescriptorExtractor",
    "DescriptionResult",
    "DescriptorMatcher",
    "MatchResult",
    "DataBuffer",
    "DataFrame",
    "FeatureTrackingPipeline",
    "TrackingConfig",
    "TrackingResult",
]
