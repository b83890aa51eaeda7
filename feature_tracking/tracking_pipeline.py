"""
2D Feature Tracking Pipeline

이미지 시퀀스에서 연속된 프레임 간 키포인트를 추적하는 메인 모듈입니다.

파이프라인 흐름:
1. 이미지 로드 및 그레이스케일 변환 (링 버퍼에 저장)
2. 키포인트 검출
3. (선택) 앞 차량 영역의 키포인트만 유지
4. (선택) 키포인트 수 제한
5. 디스크립터 계산
6. 이전 프레임과 디스크립터 매칭
"""

import csv
import logging
import cv2
import numpy as np
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field

from .data_buffer import DataBuffer, DataFrame
from .keypoint_detection import KeypointDetector, DETECTOR_TYPES, to_grayscale
from .descriptor_extraction import (DescriptorExtractor, DESCRIPTOR_TYPES,
                                    descriptor_category, is_compatible)
from .descriptor_matching import (DescriptorMatcher, MATCHER_ALIASES, SELECTOR_ALIASES,
                                  draw_matches)

logger = logging.getLogger(__name__)

MATCH_WINDOW_NAME = "Matching keypoints between two camera images"


class IncompatibleCombinationError(ValueError):
    """검출기와 디스크립터 조합을 함께 사용할 수 없을 때 발생"""


@dataclass
class TrackingConfig:
    """추적 파이프라인 설정"""
    detector_type: str = "SHITOMASI"
    descriptor_type: str = "BRISK"
    matcher_type: str = "MAT_BF"
    selector_type: str = "SEL_NN"
    focus_on_vehicle: bool = True
    vehicle_rect: Tuple[int, int, int, int] = (535, 180, 180, 150)  # x, y, w, h
    limit_keypoints: bool = False
    max_keypoints: int = 50
    buffer_size: int = 2
    visualize: bool = False

    @property
    def descriptor_category(self) -> str:
        return descriptor_category(self.descriptor_type)


@dataclass
class FrameStats:
    """프레임별 처리 통계"""
    index: int
    num_keypoints: int
    mean_size: float
    std_size: float
    num_matches: int
    detection_ms: float
    description_ms: float
    matching_ms: float


@dataclass
class TrackingResult:
    """추적 파이프라인 결과"""
    config: TrackingConfig
    frames: List[FrameStats] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def total_keypoints(self) -> int:
        return sum(f.num_keypoints for f in self.frames)

    @property
    def total_matches(self) -> int:
        return sum(f.num_matches for f in self.frames)

    def summary(self) -> Dict:
        """벤치마크 보고서의 한 행"""
        n = max(self.num_frames, 1)
        detection_ms = sum(f.detection_ms for f in self.frames) / n
        description_ms = sum(f.description_ms for f in self.frames) / n
        # 키포인트 수로 가중 평균 (키포인트 없는 프레임은 제외됨)
        size_sum = sum(f.mean_size * f.num_keypoints for f in self.frames)
        avg_size = size_sum / self.total_keypoints if self.total_keypoints else 0.0
        return {
            "detector": self.config.detector_type,
            "descriptor": self.config.descriptor_type,
            "matcher": self.config.matcher_type,
            "selector": self.config.selector_type,
            "frames": self.num_frames,
            "avg_keypoints": self.total_keypoints / n,
            "avg_size": avg_size,
            "total_matches": self.total_matches,
            "avg_detection_ms": detection_ms,
            "avg_description_ms": description_ms,
            "avg_total_ms": detection_ms + description_ms,
        }


def keypoints_in_rect(keypoints: List[cv2.KeyPoint],
                      rect: Tuple[int, int, int, int]) -> List[cv2.KeyPoint]:
    """사각형 (x, y, w, h) 안에 있는 키포인트만 반환합니다."""
    x, y, w, h = rect
    return [kp for kp in keypoints
            if x <= kp.pt[0] < x + w and y <= kp.pt[1] < y + h]


def limit_keypoints(keypoints: List[cv2.KeyPoint],
                    max_keypoints: int,
                    detector_type: str) -> List[cv2.KeyPoint]:
    """
    키포인트 수를 max_keypoints 개로 제한합니다.

    Shi-Tomasi 는 응답값이 없지만 품질 내림차순으로 반환되므로 앞에서부터 자르고,
    나머지 검출기는 응답값이 큰 순서로 남깁니다.
    """
    if detector_type.upper() == "SHITOMASI":
        return list(keypoints[:max_keypoints])
    return sorted(keypoints, key=lambda kp: kp.response, reverse=True)[:max_keypoints]


def collect_image_paths(directory: str,
                        start: int = 0,
                        end: Optional[int] = None,
                        pattern: str = "*.png") -> List[Path]:
    """
    디렉터리에서 이미지 경로를 이름 순으로 수집합니다.

    Args:
        directory: 이미지 디렉터리
        start, end: 사용할 이미지 인덱스 범위 (end 포함)
        pattern: 파일 이름 패턴
    """
    paths = sorted(Path(directory).glob(pattern))
    stop = None if end is None else end + 1
    return paths[start:stop]


class FeatureTrackingPipeline:
    """
    2D 특징 추적 파이프라인

    Example:
        >>> pipeline = FeatureTrackingPipeline(TrackingConfig(detector_type="FAST"))
        >>> result = pipeline.run(image_paths)
        >>> print(result.total_matches)
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        self.config = config or TrackingConfig()
        cfg = self.config

        if not is_compatible(cfg.detector_type, cfg.descriptor_type):
            raise IncompatibleCombinationError(
                f"{cfg.detector_type.upper()} 키포인트에 "
                f"{cfg.descriptor_type.upper()} 디스크립터를 사용할 수 없습니다.")

        self.detector = KeypointDetector(algorithm=cfg.detector_type)
        self.extractor = DescriptorExtractor(descriptor_type=cfg.descriptor_type)
        self.matcher = DescriptorMatcher(
            matcher_type=cfg.matcher_type,
            selector_type=cfg.selector_type,
            descriptor_category=cfg.descriptor_category
        )
        self.buffer = DataBuffer(size=cfg.buffer_size)

    def load_images(self, image_paths: Iterable) -> List[Tuple[str, np.ndarray]]:
        """
        이미지를 로드합니다. 읽을 수 없는 파일은 경고 후 건너뜁니다.

        Returns:
            List[Tuple[str, np.ndarray]]: (경로, 이미지) 리스트
        """
        images = []
        for path in image_paths:
            image = cv2.imread(str(path))
            if image is None:
                logger.warning("Could not load image: %s", path)
                continue
            images.append((str(path), image))
        return images

    def process_frame(self, image: np.ndarray, index: int = 0) -> FrameStats:
        """
        한 프레임을 처리하고 버퍼에 추가합니다.

        Args:
            image: 입력 이미지 (BGR 또는 그레이스케일)
            index: 프레임 번호 (통계용)

        Returns:
            FrameStats: 프레임 처리 통계
        """
        cfg = self.config
        gray = to_grayscale(image)
        frame = DataFrame(camera_image=gray)

        # 키포인트 검출
        detection = self.detector.detect(gray, visualize=cfg.visualize)
        keypoints = detection.keypoints

        if cfg.focus_on_vehicle:
            keypoints = keypoints_in_rect(keypoints, cfg.vehicle_rect)

        if cfg.limit_keypoints:
            keypoints = limit_keypoints(keypoints, cfg.max_keypoints, cfg.detector_type)
            logger.info("NOTE: keypoints have been limited to %d", len(keypoints))

        # 통계는 디스크립터 계산 전 키포인트 기준 (계산 시 경계 키포인트가 제거됨)
        sizes = np.array([kp.size for kp in keypoints], dtype=np.float64)

        # 디스크립터 계산
        description = self.extractor.compute(gray, keypoints)
        frame.keypoints = description.keypoints
        frame.descriptors = description.descriptors

        previous = self.buffer.latest
        self.buffer.push(frame)

        # 이전 프레임과 매칭
        matching_ms = 0.0
        if previous is not None:
            match_result = self.matcher.match(previous.descriptors, frame.descriptors)
            frame.kpt_matches = match_result.matches
            matching_ms = match_result.time_ms

            if cfg.visualize:
                from visualization.keypoint_viewer import show_image
                show_image(MATCH_WINDOW_NAME, draw_matches(
                    previous.camera_image, previous.keypoints,
                    frame.camera_image, frame.keypoints,
                    frame.kpt_matches))

        return FrameStats(
            index=index,
            num_keypoints=len(keypoints),
            mean_size=float(sizes.mean()) if sizes.size else 0.0,
            std_size=float(sizes.std()) if sizes.size else 0.0,
            num_matches=len(frame.kpt_matches),
            detection_ms=detection.time_ms,
            description_ms=description.time_ms,
            matching_ms=matching_ms
        )

    def run(self, image_paths: Iterable) -> TrackingResult:
        """
        이미지 시퀀스 전체를 처리합니다.

        Args:
            image_paths: 시간 순으로 정렬된 이미지 경로

        Returns:
            TrackingResult: 프레임별 통계
        """
        cfg = self.config
        logger.info("Tracking with %s / %s / %s / %s",
                    cfg.detector_type, cfg.descriptor_type,
                    cfg.matcher_type, cfg.selector_type)

        self.buffer.clear()
        result = TrackingResult(config=cfg)

        for index, (path, image) in enumerate(self.load_images(image_paths)):
            stats = self.process_frame(image, index)
            result.frames.append(stats)
            logger.debug("%s: %d keypoints, %d matches",
                         path, stats.num_keypoints, stats.num_matches)

        return result


def benchmark(image_paths: Iterable,
              detectors: Iterable[str] = DETECTOR_TYPES,
              descriptors: Iterable[str] = DESCRIPTOR_TYPES,
              **config_kwargs) -> List[Dict]:
    """
    검출기 × 디스크립터 조합을 모두 평가합니다.

    함께 사용할 수 없는 조합은 건너뜁니다.

    Args:
        image_paths: 이미지 경로
        detectors, descriptors: 평가할 알고리즘 이름
        **config_kwargs: TrackingConfig 의 나머지 필드

    Returns:
        List[Dict]: 조합별 TrackingResult.summary()
    """
    image_paths = list(image_paths)
    rows = []

    for detector_type in detectors:
        for descriptor_type in descriptors:
            config = TrackingConfig(detector_type=detector_type,
                                    descriptor_type=descriptor_type,
                                    **config_kwargs)
            try:
                pipeline = FeatureTrackingPipeline(config)
            except IncompatibleCombinationError as e:
                logger.info("Skipping %s/%s: %s", detector_type, descriptor_type, e)
                continue

            rows.append(pipeline.run(image_paths).summary())

    return rows


def save_report(rows: List[Dict], output_path: str) -> None:
    """벤치마크 결과를 CSV 로 저장합니다."""
    if not rows:
        raise ValueError("저장할 결과가 없습니다.")

    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)

    logger.info("Report saved: %s", output_path)


def build_arg_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description="2D feature tracking on an image sequence"
    )
    parser.add_argument("image_dir", help="directory with the image sequence")
    parser.add_argument("--pattern", default="*.png", help="image file pattern")
    parser.add_argument("--start", type=int, default=0, help="first image index")
    parser.add_argument("--end", type=int, default=9, help="last image index (inclusive)")
    parser.add_argument("--detector", default="SHITOMASI", choices=DETECTOR_TYPES,
                        type=str.upper)
    parser.add_argument("--descriptor", default="BRISK", choices=DESCRIPTOR_TYPES,
                        type=str.upper)
    parser.add_argument("--matcher", default="MAT_BF", choices=sorted(MATCHER_ALIASES),
                        type=str.upper)
    parser.add_argument("--selector", default="SEL_NN", choices=sorted(SELECTOR_ALIASES),
                        type=str.upper)
    parser.add_argument("--no-focus", action="store_true",
                        help="keep keypoints outside the preceding vehicle")
    parser.add_argument("--max-keypoints", type=int, default=0,
                        help="limit keypoints per frame (0 = no limit)")
    parser.add_argument("--visualize", action="store_true",
                        help="show detection and matching windows")
    parser.add_argument("--benchmark", action="store_true",
                        help="evaluate every detector/descriptor combination")
    parser.add_argument("--report", default="benchmark.csv",
                        help="CSV output path for --benchmark")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s"
    )

    image_paths = collect_image_paths(args.image_dir, args.start, args.end, args.pattern)
    if len(image_paths) < 2:
        print(f"오류: 최소 2개의 이미지가 필요합니다: {args.image_dir}")
        return 1

    common = dict(
        matcher_type=args.matcher,
        selector_type=args.selector,
        focus_on_vehicle=not args.no_focus,
        limit_keypoints=args.max_keypoints > 0,
        max_keypoints=args.max_keypoints or 50,
    )

    if args.benchmark:
        rows = benchmark(image_paths, **common)
        save_report(rows, args.report)
        for row in rows:
            print(f"{row['detector']:>10} + {row['descriptor']:<6} "
                  f"keypoints {row['avg_keypoints']:8.1f}  "
                  f"matches {row['total_matches']:6d}  "
                  f"time {row['avg_total_ms']:8.2f}ms")
        return 0

    config = TrackingConfig(detector_type=args.detector,
                            descriptor_type=args.descriptor,
                            visualize=args.visualize,
                            **common)
    try:
        pipeline = FeatureTrackingPipeline(config)
    except IncompatibleCombinationError as e:
        print(f"오류: {e}")
        return 1

    result = pipeline.run(image_paths)
    for stats in result.frames:
        print(f"  이미지 {stats.index}: {stats.num_keypoints}개 키포인트, "
              f"{stats.num_matches}개 매칭 "
              f"(크기 {stats.mean_size:.2f} ± {stats.std_size:.2f})")
    print(f"\n전체 키포인트: {result.total_keypoints}개")
    print(f"전체 매칭: {result.total_matches}개")
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
