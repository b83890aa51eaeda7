"""
Keypoint Detection Module

그레이스케일 이미지에서 키포인트를 검출합니다.
Shi-Tomasi, Harris, FAST, BRISK, ORB, AKAZE, SIFT 검출기를 지원합니다.
"""

import logging
import time
import cv2
import numpy as np
from typing import List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DETECTOR_TYPES = ("SHITOMASI", "HARRIS", "FAST", "BRISK", "ORB", "AKAZE", "SIFT")


@dataclass
class DetectionResult:
    """키포인트 검출 결과를 저장하는 데이터 클래스"""
    keypoints: List[cv2.KeyPoint]
    algorithm: str
    num_keypoints: int
    time_ms: float


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """BGR 이미지를 그레이스케일로 변환합니다."""
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def detect_shi_tomasi(gray: np.ndarray,
                      block_size: int = 4,
                      max_overlap: float = 0.0,
                      quality_level: float = 0.01,
                      k: float = 0.04) -> List[cv2.KeyPoint]:
    """
    Shi-Tomasi 코너 검출

    Args:
        gray: 그레이스케일 이미지
        block_size: 미분 공분산 행렬을 계산할 이웃 블록 크기
        max_overlap: 특징점 간 최대 허용 겹침 비율
        quality_level: 최소 허용 코너 품질
        k: Harris 자유 파라미터 (useHarrisDetector=False 이므로 사용되지 않음)

    Returns:
        List[cv2.KeyPoint]: 크기가 block_size 인 키포인트
    """
    min_distance = (1.0 - max_overlap) * block_size
    max_corners = int(gray.shape[0] * gray.shape[1] / max(1.0, min_distance))

    corners = cv2.goodFeaturesToTrack(
        gray, max_corners, quality_level, min_distance,
        mask=None, blockSize=block_size, useHarrisDetector=False, k=k
    )

    # 코너가 없으면 None 반환
    if corners is None:
        return []

    return [cv2.KeyPoint(float(x), float(y), float(block_size))
            for x, y in corners.reshape(-1, 2)]


def harris_response(gray: np.ndarray,
                    block_size: int = 2,
                    k_size: int = 3,
                    k: float = 0.04) -> np.ndarray:
    """Harris 응답을 계산하고 [0, 255] 범위로 정규화합니다."""
    corners = cv2.cornerHarris(gray, block_size, k_size, k, borderType=cv2.BORDER_DEFAULT)
    return cv2.normalize(corners, None, 0, 255, cv2.NORM_MINMAX, cv2.CV_32FC1)


def detect_harris(gray: np.ndarray,
                  block_size: int = 2,
                  k_size: int = 3,
                  k: float = 0.04,
                  min_response: int = 125) -> List[cv2.KeyPoint]:
    """
    Harris 코너 검출

    정규화된 응답이 min_response 보다 큰 모든 픽셀을 키포인트로 만듭니다.
    비최대 억제는 수행하지 않습니다.

    Returns:
        List[cv2.KeyPoint]: 크기가 2 * k_size 이고 응답값을 가진 키포인트
    """
    corners_norm = harris_response(gray, block_size, k_size, k)
    response = corners_norm.astype(np.int32)

    keypoints = []
    ys, xs = np.nonzero(response > min_response)
    for x, y in zip(xs, ys):
        keypoints.append(cv2.KeyPoint(float(x), float(y), float(2 * k_size),
                                      -1, float(response[y, x])))
    return keypoints


class KeypointDetector:
    """
    키포인트 검출기 클래스

    Attributes:
        algorithm: 사용할 알고리즘 (대문자 이름)
        params: 알고리즘 파라미터 (기본값 + 사용자 지정값)
        detector: OpenCV Feature2D 객체 (Shi-Tomasi/Harris 는 None)

    Example:
        >>> detector = KeypointDetector(algorithm="fast")
        >>> result = detector.detect(image)
        >>> print(f"검출된 키포인트: {result.num_keypoints}개")
    """

    DEFAULTS = {
        "SHITOMASI": {"block_size": 4, "max_overlap": 0.0,
                      "quality_level": 0.01, "k": 0.04},
        "HARRIS": {"block_size": 2, "k_size": 3, "k": 0.04, "min_response": 125},
        "FAST": {"threshold": 10, "nonmaxSuppression": True,
                 "type": cv2.FAST_FEATURE_DETECTOR_TYPE_9_16},
        "BRISK": {"thresh": 30, "octaves": 3, "patternScale": 1.0},
        "ORB": {"nfeatures": 500, "scaleFactor": 1.2, "nlevels": 8,
                "edgeThreshold": 31, "firstLevel": 0, "WTA_K": 2,
                "scoreType": cv2.ORB_HARRIS_SCORE, "patchSize": 31,
                "fastThreshold": 20},
        "AKAZE": {"descriptor_type": cv2.AKAZE_DESCRIPTOR_MLDB,
                  "descriptor_size": 0, "descriptor_channels": 3,
                  "threshold": 0.001, "nOctaves": 4, "nOctaveLayers": 4,
                  "diffusivity": cv2.KAZE_DIFF_PM_G2},
        "SIFT": {"nfeatures": 0, "nOctaveLayers": 3, "contrastThreshold": 0.04,
                 "edgeThreshold": 10, "sigma": 1.6},
    }

    WINDOW_NAMES = {
        "SHITOMASI": "Shi-Tomasi Corner Detector Results",
        "HARRIS": "Harris Corner Detector Results",
        "FAST": "FAST Detector Results",
        "BRISK": "BRISK Detector Results",
        "ORB": "ORB Detector Results",
        "AKAZE": "AKAZE Detector Results",
        "SIFT": "SIFT Detector Results",
    }

    def __init__(self, algorithm: str = "shitomasi", **kwargs):
        """
        키포인트 검출기 초기화

        Args:
            algorithm: DETECTOR_TYPES 중 하나 (대소문자 무관)
            **kwargs: 알고리즘별 파라미터 (DEFAULTS 의 키 이름 사용)
        """
        self.algorithm = algorithm.upper()
        if self.algorithm not in DETECTOR_TYPES:
            raise ValueError(f"지원하지 않는 검출기: {algorithm}")

        unknown = set(kwargs) - set(self.DEFAULTS[self.algorithm])
        if unknown:
            raise ValueError(
                f"{self.algorithm} 검출기에 없는 파라미터: {', '.join(sorted(unknown))}")

        self.params = {**self.DEFAULTS[self.algorithm], **kwargs}
        self.detector = self._create_detector()

    def _create_detector(self):
        """알고리즘에 맞는 Feature2D 검출기 생성"""
        p = self.params
        if self.algorithm == "FAST":
            return cv2.FastFeatureDetector_create(**p)
        elif self.algorithm == "BRISK":
            return cv2.BRISK_create(**p)
        elif self.algorithm == "ORB":
            return cv2.ORB_create(**p)
        elif self.algorithm == "AKAZE":
            return cv2.AKAZE_create(**p)
        elif self.algorithm == "SIFT":
            return cv2.SIFT_create(**p)
        # Shi-Tomasi, Harris 는 함수 호출로 처리
        return None

    def _run(self, gray: np.ndarray, mask: Optional[np.ndarray]) -> List[cv2.KeyPoint]:
        if self.algorithm == "SHITOMASI":
            return detect_shi_tomasi(gray, **self.params)
        if self.algorithm == "HARRIS":
            return detect_harris(gray, **self.params)
        return list(self.detector.detect(gray, mask))

    def detect(self, image: np.ndarray,
               mask: Optional[np.ndarray] = None,
               visualize: bool = False) -> DetectionResult:
        """
        이미지에서 키포인트를 검출합니다.

        Args:
            image: 입력 이미지 (BGR 또는 그레이스케일)
            mask: 검출 영역 마스크 (Feature2D 검출기만 사용)
            visualize: True 이면 결과 창을 띄우고 키 입력을 기다림

        Returns:
            DetectionResult: 검출된 키포인트와 소요 시간
        """
        gray = to_grayscale(image)

        start_time = time.time()
        keypoints = self._run(gray, mask)
        elapsed_ms = (time.time() - start_time) * 1000

        logger.info("%s detection with n=%d keypoints in %.3f ms",
                    self.algorithm, len(keypoints), elapsed_ms)

        result = DetectionResult(
            keypoints=keypoints,
            algorithm=self.algorithm,
            num_keypoints=len(keypoints),
            time_ms=elapsed_ms
        )

        if visualize:
            from visualization.keypoint_viewer import show_image
            show_image(self.WINDOW_NAMES[self.algorithm], self.draw(gray, keypoints))

        return result

    def draw(self, image: np.ndarray, keypoints: List[cv2.KeyPoint]) -> np.ndarray:
        """
        키포인트를 시각화합니다.

        Harris 는 정규화된 응답 이미지 위에 그립니다.
        """
        if self.algorithm == "HARRIS":
            p = self.params
            corners_norm = harris_response(to_grayscale(image), p["block_size"],
                                           p["k_size"], p["k"])
            image = cv2.convertScaleAbs(corners_norm)

        return cv2.drawKeypoints(
            image,
            keypoints,
            None,
            flags=cv2.DRAW_MATCHES_FLAGS_DRAW_RICH_KEYPOINTS
        )

    def detect_and_draw(self, image: np.ndarray,
                        mask: Optional[np.ndarray] = None) -> Tuple[DetectionResult, np.ndarray]:
        """
        키포인트를 검출하고 시각화 이미지를 반환합니다.

        Returns:
            Tuple[DetectionResult, np.ndarray]: 검출 결과와 시각화 이미지
        """
        result = self.detect(image, mask)
        return result, self.draw(image, result.keypoints)


def compare_detectors(image: np.ndarray, algorithms=DETECTOR_TYPES) -> dict:
    """
    여러 검출기의 키포인트 수와 실행 시간을 비교합니다.

    Returns:
        dict: 알고리즘별 키포인트 수, 실행 시간, 평균 이웃 크기
    """
    results = {}

    for algo in algorithms:
        result = KeypointDetector(algorithm=algo).detect(image)
        sizes = [kp.size for kp in result.keypoints]

        results[algo] = {
            "num_keypoints": result.num_keypoints,
            "time_ms": result.time_ms,
            "mean_size": float(np.mean(sizes)) if sizes else 0.0,
        }

    return results


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) > 1:
        image = cv2.imread(sys.argv[1])

        if image is not None:
            print("=== 키포인트 검출 비교 ===\n")
            for algo, stats in compare_detectors(image).items():
                print(f"{algo}:")
                print(f"  - 검출된 키포인트: {stats['num_keypoints']}개")
                print(f"  - 실행 시간: {stats['time_ms']:.2f}ms")
                print(f"  - 평균 이웃 크기: {stats['mean_size']:.2f}")
                print()
        else:
            print(f"이미지를 불러올 수 없습니다: {sys.argv[1]}")
    else:
        print("사용법: python -m feature_tracking.keypoint_detection <image_path>")
