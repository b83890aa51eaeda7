"""
Descriptor Extraction Module

검출된 키포인트 주변의 디스크립터를 계산합니다.
BRISK, BRIEF, ORB, FREAK, AKAZE, SIFT 디스크립터를 지원합니다.
BRIEF, FREAK 는 opencv-contrib 의 xfeatures2d 모듈이 필요합니다.
"""

import logging
import time
import cv2
import numpy as np
from typing import List
from dataclasses import dataclass

from .keypoint_detection import KeypointDetector, to_grayscale

logger = logging.getLogger(__name__)

DESCRIPTOR_TYPES = ("BRISK", "BRIEF", "ORB", "FREAK", "AKAZE", "SIFT")

# 그래디언트 히스토그램 기반 디스크립터 (나머지는 이진 디스크립터)
HOG_DESCRIPTORS = ("SIFT",)

DES_BINARY = "DES_BINARY"
DES_HOG = "DES_HOG"


@dataclass
class DescriptionResult:
    """디스크립터 계산 결과를 저장하는 데이터 클래스"""
    keypoints: List[cv2.KeyPoint]
    descriptors: np.ndarray
    descriptor_type: str
    time_ms: float


def descriptor_category(descriptor_type: str) -> str:
    """디스크립터 종류에 맞는 범주 (DES_BINARY 또는 DES_HOG) 를 반환합니다."""
    name = descriptor_type.upper()
    if name not in DESCRIPTOR_TYPES:
        raise ValueError(f"지원하지 않는 디스크립터: {descriptor_type}")
    return DES_HOG if name in HOG_DESCRIPTORS else DES_BINARY


def is_compatible(detector_type: str, descriptor_type: str) -> bool:
    """
    검출기와 디스크립터 조합이 사용 가능한지 확인합니다.

    AKAZE 디스크립터는 AKAZE 키포인트의 옥타브 정보가 필요하고,
    ORB 디스크립터는 SIFT 키포인트의 옥타브 인코딩을 처리하지 못합니다.
    """
    detector = detector_type.upper()
    descriptor = descriptor_type.upper()

    if descriptor == "AKAZE" and detector != "AKAZE":
        return False
    if descriptor == "ORB" and detector == "SIFT":
        return False
    return True


def _require_contrib(name: str):
    if not hasattr(cv2, "xfeatures2d"):
        raise ImportError(
            f"{name} 디스크립터에는 opencv-contrib-python 이 필요합니다.")


class DescriptorExtractor:
    """
    디스크립터 추출기 클래스

    Attributes:
        descriptor_type: 디스크립터 이름 (대문자)
        params: 디스크립터 파라미터
        extractor: OpenCV 디스크립터 추출기 객체

    Example:
        >>> extractor = DescriptorExtractor("brisk")
        >>> result = extractor.compute(image, keypoints)
        >>> print(result.descriptors.shape)
    """

    DEFAULTS = {
        "BRISK": {"thresh": 30, "octaves": 3, "patternScale": 1.0},
        "BRIEF": {"bytes": 32, "use_orientation": False},
        "ORB": KeypointDetector.DEFAULTS["ORB"],
        "FREAK": {"orientationNormalized": True, "scaleNormalized": True,
                  "patternScale": 22.0, "nOctaves": 4},
        "AKAZE": KeypointDetector.DEFAULTS["AKAZE"],
        "SIFT": KeypointDetector.DEFAULTS["SIFT"],
    }

    def __init__(self, descriptor_type: str = "brisk", **kwargs):
        """
        디스크립터 추출기 초기화

        Args:
            descriptor_type: DESCRIPTOR_TYPES 중 하나 (대소문자 무관)
            **kwargs: 디스크립터별 파라미터
        """
        self.descriptor_type = descriptor_type.upper()
        if self.descriptor_type not in DESCRIPTOR_TYPES:
            raise ValueError(f"지원하지 않는 디스크립터: {descriptor_type}")

        unknown = set(kwargs) - set(self.DEFAULTS[self.descriptor_type])
        if unknown:
            raise ValueError(
                f"{self.descriptor_type} 디스크립터에 없는 파라미터: "
                f"{', '.join(sorted(unknown))}")

        self.params = {**self.DEFAULTS[self.descriptor_type], **kwargs}
        self.extractor = self._create_extractor()

    @property
    def category(self) -> str:
        return descriptor_category(self.descriptor_type)

    def _create_extractor(self):
        """디스크립터 종류에 맞는 추출기 생성"""
        p = self.params
        if self.descriptor_type == "BRISK":
            return cv2.BRISK_create(**p)
        elif self.descriptor_type == "BRIEF":
            _require_contrib("BRIEF")
            return cv2.xfeatures2d.BriefDescriptorExtractor_create(**p)
        elif self.descriptor_type == "ORB":
            return cv2.ORB_create(**p)
        elif self.descriptor_type == "FREAK":
            _require_contrib("FREAK")
            return cv2.xfeatures2d.FREAK_create(**p)
        elif self.descriptor_type == "AKAZE":
            return cv2.AKAZE_create(**p)
        else:
            return cv2.SIFT_create(**p)

    def compute(self, image: np.ndarray,
                keypoints: List[cv2.KeyPoint]) -> DescriptionResult:
        """
        키포인트의 디스크립터를 계산합니다.

        계산할 수 없는 키포인트 (경계 근처 등) 는 라이브러리가 제거하므로
        반환되는 keypoints 가 descriptors 의 행과 대응됩니다.

        Args:
            image: 입력 이미지 (BGR 또는 그레이스케일)
            keypoints: 검출된 키포인트

        Returns:
            DescriptionResult: 키포인트와 디스크립터
        """
        gray = to_grayscale(image)

        start_time = time.time()
        if keypoints:
            keypoints, descriptors = self.extractor.compute(gray, list(keypoints))
        else:
            keypoints, descriptors = [], None
        elapsed_ms = (time.time() - start_time) * 1000

        logger.info("%s descriptor extraction in %.3f ms",
                    self.descriptor_type, elapsed_ms)

        return DescriptionResult(
            keypoints=list(keypoints),
            descriptors=descriptors if descriptors is not None else np.array([]),
            descriptor_type=self.descriptor_type,
            time_ms=elapsed_ms
        )
