"""
Descriptor Matching Module

연속된 두 프레임의 디스크립터를 매칭합니다.
Brute-Force 와 FLANN 매처, 최근접 이웃(NN) 과 k-NN 선택을 지원하며,
k-NN 에서는 거리 비율 테스트로 애매한 매칭을 제거합니다.
"""

import logging
import time
import cv2
import numpy as np
from typing import List, Sequence, Tuple
from dataclasses import dataclass, field

from .descriptor_extraction import DES_BINARY, DES_HOG

logger = logging.getLogger(__name__)

MATCHER_ALIASES = {"MAT_BF": "MAT_BF", "BF": "MAT_BF",
                   "MAT_FLANN": "MAT_FLANN", "FLANN": "MAT_FLANN"}
SELECTOR_ALIASES = {"SEL_NN": "SEL_NN", "NN": "SEL_NN",
                    "SEL_KNN": "SEL_KNN", "KNN": "SEL_KNN"}


@dataclass
class MatchResult:
    """매칭 결과를 저장하는 데이터 클래스"""
    matches: List[cv2.DMatch] = field(default_factory=list)
    num_matches: int = 0
    num_candidates: int = 0
    matcher_type: str = ""
    selector_type: str = ""
    time_ms: float = 0.0


def filter_by_distance_ratio(knn_matches: Sequence[Sequence[cv2.DMatch]],
                             ratio: float = 0.8) -> List[cv2.DMatch]:
    """
    거리 비율 테스트

    최근접 이웃의 거리가 두 번째 이웃 거리의 ratio 배보다 작은 경우만 남깁니다.
    이웃이 두 개 미만인 후보는 버립니다.
    """
    good_matches = []
    for pair in knn_matches:
        if len(pair) < 2:
            continue
        best, second = pair[0], pair[1]
        if best.distance < ratio * second.distance:
            good_matches.append(best)
    return good_matches


class DescriptorMatcher:
    """
    디스크립터 매칭 클래스

    Attributes:
        matcher_type: "MAT_BF" 또는 "MAT_FLANN"
        selector_type: "SEL_NN" 또는 "SEL_KNN"
        descriptor_category: "DES_BINARY" 또는 "DES_HOG"
        matcher: OpenCV 매처 객체
    """

    def __init__(self, matcher_type: str = "MAT_BF",
                 selector_type: str = "SEL_NN",
                 descriptor_category: str = DES_BINARY,
                 cross_check: bool = False,
                 ratio_threshold: float = 0.8,
                 k: int = 2):
        """
        매처 초기화

        Args:
            matcher_type: "MAT_BF"/"bf" 또는 "MAT_FLANN"/"flann"
            selector_type: "SEL_NN"/"nn" 또는 "SEL_KNN"/"knn"
            descriptor_category: 이진 디스크립터는 해밍 거리, HOG 는 L2 거리
            cross_check: BF 매처의 교차 검증 여부
            ratio_threshold: k-NN 거리 비율 임계값
            k: k-NN 이웃 수
        """
        try:
            self.matcher_type = MATCHER_ALIASES[matcher_type.upper()]
        except KeyError:
            raise ValueError(f"지원하지 않는 매처 타입: {matcher_type}") from None
        try:
            self.selector_type = SELECTOR_ALIASES[selector_type.upper()]
        except KeyError:
            raise ValueError(f"지원하지 않는 선택 방식: {selector_type}") from None

        self.descriptor_category = descriptor_category.upper()
        if self.descriptor_category not in (DES_BINARY, DES_HOG):
            raise ValueError(f"지원하지 않는 디스크립터 범주: {descriptor_category}")

        if k < 2 and self.selector_type == "SEL_KNN":
            raise ValueError("거리 비율 테스트에는 k >= 2 가 필요합니다.")
        if cross_check and self.selector_type == "SEL_KNN":
            raise ValueError("교차 검증은 SEL_NN 에서만 사용할 수 있습니다.")

        self.cross_check = cross_check
        self.ratio_threshold = ratio_threshold
        self.k = k
        self.matcher = self._create_matcher()

    def _create_matcher(self):
        """매처 타입에 맞는 매처 생성"""
        if self.matcher_type == "MAT_BF":
            if self.descriptor_category == DES_BINARY:
                norm_type = cv2.NORM_HAMMING
            else:
                norm_type = cv2.NORM_L2
            return cv2.BFMatcher(norm_type, crossCheck=self.cross_check)

        # FLANN 기본 설정 (KD-Tree) 은 float32 디스크립터를 요구
        return cv2.DescriptorMatcher_create(cv2.DescriptorMatcher_FLANNBASED)

    def _prepare(self, descriptors: np.ndarray) -> np.ndarray:
        if self.matcher_type == "MAT_FLANN" and descriptors.dtype != np.float32:
            return descriptors.astype(np.float32)
        return descriptors

    def match(self, descriptors_source: np.ndarray,
              descriptors_ref: np.ndarray) -> MatchResult:
        """
        두 디스크립터 집합 간의 매칭을 수행합니다.

        Args:
            descriptors_source: 이전 프레임의 디스크립터 (query)
            descriptors_ref: 현재 프레임의 디스크립터 (train)

        Returns:
            MatchResult: 매칭 결과
        """
        empty = MatchResult(matcher_type=self.matcher_type,
                            selector_type=self.selector_type)

        if descriptors_source is None or descriptors_ref is None:
            return empty
        if len(descriptors_source) == 0 or len(descriptors_ref) == 0:
            return empty

        descriptors_source = self._prepare(descriptors_source)
        descriptors_ref = self._prepare(descriptors_ref)

        start_time = time.time()
        if self.selector_type == "SEL_NN":
            matches = list(self.matcher.match(descriptors_source, descriptors_ref))
        else:
            # FLANN 은 train 디스크립터가 k 개보다 적으면 실패
            if len(descriptors_ref) < self.k:
                return empty
            knn_matches = self.matcher.knnMatch(
                descriptors_source, descriptors_ref, k=self.k)
            matches = filter_by_distance_ratio(knn_matches, self.ratio_threshold)
        elapsed_ms = (time.time() - start_time) * 1000

        logger.info("%s with n=%d matches in %.3f ms",
                    self.selector_type, len(matches), elapsed_ms)

        return MatchResult(
            matches=matches,
            num_matches=len(matches),
            num_candidates=len(descriptors_source),
            matcher_type=self.matcher_type,
            selector_type=self.selector_type,
            time_ms=elapsed_ms
        )

    def match_and_draw(self,
                       image_source: np.ndarray, keypoints_source: List[cv2.KeyPoint],
                       image_ref: np.ndarray, keypoints_ref: List[cv2.KeyPoint],
                       descriptors_source: np.ndarray, descriptors_ref: np.ndarray,
                       max_matches: int = 0) -> Tuple[MatchResult, np.ndarray]:
        """
        매칭을 수행하고 결과를 시각화합니다.

        Args:
            image_source, image_ref: 이전 / 현재 프레임 이미지
            keypoints_source, keypoints_ref: 각 프레임의 키포인트
            descriptors_source, descriptors_ref: 각 프레임의 디스크립터
            max_matches: 거리 순으로 그릴 최대 매칭 수 (0 이면 전부)

        Returns:
            Tuple[MatchResult, np.ndarray]: 매칭 결과와 시각화 이미지
        """
        result = self.match(descriptors_source, descriptors_ref)
        return result, draw_matches(image_source, keypoints_source,
                                    image_ref, keypoints_ref,
                                    result.matches, max_matches)


def draw_matches(image_source: np.ndarray, keypoints_source: List[cv2.KeyPoint],
                 image_ref: np.ndarray, keypoints_ref: List[cv2.KeyPoint],
                 matches: List[cv2.DMatch], max_matches: int = 0) -> np.ndarray:
    """매칭된 키포인트 쌍을 선으로 연결한 이미지를 만듭니다."""
    display_matches = sorted(matches, key=lambda m: m.distance)
    if max_matches > 0:
        display_matches = display_matches[:max_matches]

    # matches 의 queryIdx 는 source, trainIdx 는 ref 를 가리킴
    return cv2.drawMatches(
        image_source, keypoints_source,
        image_ref, keypoints_ref,
        display_matches, None,
        flags=cv2.DrawMatchesFlags_DRAW_RICH_KEYPOINTS
    )


def extract_matched_points(keypoints_source: List[cv2.KeyPoint],
                           keypoints_ref: List[cv2.KeyPoint],
                           matches: List[cv2.DMatch]) -> Tuple[np.ndarray, np.ndarray]:
    """
    매칭된 키포인트에서 좌표를 추출합니다.

    Returns:
        Tuple[np.ndarray, np.ndarray]: 매칭된 점들의 좌표 (pts_source, pts_ref)
    """
    pts_source = np.float32([keypoints_source[m.queryIdx].pt for m in matches]).reshape(-1, 2)
    pts_ref = np.float32([keypoints_ref[m.trainIdx].pt for m in matches]).reshape(-1, 2)
    return pts_source, pts_ref
