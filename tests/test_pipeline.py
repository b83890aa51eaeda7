"""
추적 파이프라인 테스트 모듈

링 버퍼, 프레임 처리, 벤치마크, 보고서 저장을 테스트합니다.
"""

import csv
import sys
import tempfile
import cv2
import numpy as np
from pathlib import Path
import unittest

# 프로젝트 루트를 path에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def make_sequence(n_frames=3, shift=4, seed=0):
    """조금씩 이동하는 체커보드 시퀀스 생성"""
    rng = np.random.RandomState(seed)
    width = 640
    base = np.zeros((480, width + n_frames * shift, 3), dtype=np.uint8)
    for i in range(0, base.shape[0], 40):
        for j in range(0, base.shape[1], 40):
            if (i // 40 + j // 40) % 2 == 0:
                base[i:i+40, j:j+40] = [255, 255, 255]

    frames = []
    for n in range(n_frames):
        frame = base[:, n * shift:n * shift + width].copy()
        noise = rng.randint(0, 30, frame.shape).astype(np.uint8)
        frames.append(cv2.add(frame, noise))
    return frames


class TestDataBuffer(unittest.TestCase):
    """링 버퍼 테스트"""

    def test_ring_buffer_drops_oldest(self):
        from feature_tracking.data_buffer import DataBuffer, DataFrame

        buffer = DataBuffer(size=2)
        frames = [DataFrame(camera_image=np.full((2, 2), i, dtype=np.uint8))
                  for i in range(3)]
        for frame in frames:
            buffer.push(frame)

        self.assertEqual(len(buffer), 2)
        self.assertTrue(buffer.is_full())
        self.assertIs(buffer.latest, frames[2])
        self.assertIs(buffer.previous, frames[1])
        self.assertIs(buffer[0], frames[1])
        self.assertEqual([f.camera_image[0, 0] for f in buffer], [1, 2])

    def test_empty_buffer(self):
        from feature_tracking.data_buffer import DataBuffer, DataFrame

        buffer = DataBuffer()
        self.assertIsNone(buffer.latest)
        self.assertIsNone(buffer.previous)

        buffer.push(DataFrame(camera_image=np.zeros((2, 2), dtype=np.uint8)))
        self.assertIsNone(buffer.previous)
        self.assertIsNone(buffer.latest.descriptors)
        self.assertFalse(buffer.is_full())

        buffer.clear()
        self.assertEqual(len(buffer), 0)

    def test_invalid_size(self):
        from feature_tracking.data_buffer import DataBuffer

        with self.assertRaises(ValueError):
            DataBuffer(size=0)


class TestKeypointFilters(unittest.TestCase):
    """차량 영역 필터와 키포인트 수 제한 테스트"""

    def test_keypoints_in_rect(self):
        from feature_tracking.tracking_pipeline import keypoints_in_rect

        keypoints = [
            cv2.KeyPoint(535.0, 180.0, 1.0),   # 왼쪽 위 모서리 (포함)
            cv2.KeyPoint(714.9, 329.9, 1.0),   # 오른쪽 아래 안쪽
            cv2.KeyPoint(715.0, 200.0, 1.0),   # 오른쪽 경계 (제외)
            cv2.KeyPoint(100.0, 100.0, 1.0),
        ]
        kept = keypoints_in_rect(keypoints, (535, 180, 180, 150))
        self.assertEqual([kp.pt for kp in kept], [keypoints[0].pt, keypoints[1].pt])

    def test_limit_keypoints_by_response(self):
        from feature_tracking.tracking_pipeline import limit_keypoints

        keypoints = [cv2.KeyPoint(float(i), 0.0, 1.0, -1, float(r))
                     for i, r in enumerate([5, 50, 10, 40])]
        kept = limit_keypoints(keypoints, 2, "FAST")
        self.assertEqual([kp.response for kp in kept], [50.0, 40.0])

    def test_limit_shi_tomasi_keeps_order(self):
        from feature_tracking.tracking_pipeline import limit_keypoints

        keypoints = [cv2.KeyPoint(float(i), 0.0, 4.0) for i in range(10)]
        kept = limit_keypoints(keypoints, 3, "SHITOMASI")
        self.assertEqual([kp.pt[0] for kp in kept], [0.0, 1.0, 2.0])


class TestTrackingPipeline(unittest.TestCase):
    """프레임 처리 테스트"""

    def setUp(self):
        self.frames = make_sequence()

    def test_default_config(self):
        from feature_tracking.tracking_pipeline import TrackingConfig

        config = TrackingConfig()
        self.assertEqual(config.detector_type, "SHITOMASI")
        self.assertEqual(config.descriptor_type, "BRISK")
        self.assertEqual(config.descriptor_category, "DES_BINARY")
        self.assertEqual(config.vehicle_rect, (535, 180, 180, 150))
        self.assertEqual(TrackingConfig(descriptor_type="SIFT").descriptor_category, "DES_HOG")

    def test_summary_size_weighted_by_keypoints(self):
        """키포인트 없는 프레임은 평균 크기에 영향을 주지 않음"""
        from feature_tracking.tracking_pipeline import FrameStats, TrackingConfig, TrackingResult

        result = TrackingResult(config=TrackingConfig(), frames=[
            FrameStats(0, 30, 7.0, 0.0, 0, 1.0, 1.0, 0.0),
            FrameStats(1, 0, 0.0, 0.0, 0, 1.0, 1.0, 0.0),
            FrameStats(2, 10, 11.0, 0.0, 5, 1.0, 1.0, 0.2),
        ])
        summary = result.summary()

        self.assertAlmostEqual(summary["avg_size"], 8.0)
        self.assertAlmostEqual(summary["avg_keypoints"], 40 / 3)
        self.assertEqual(TrackingResult(config=TrackingConfig()).summary()["avg_size"], 0.0)

    def test_incompatible_combination(self):
        from feature_tracking.tracking_pipeline import (FeatureTrackingPipeline, TrackingConfig,
                                                       IncompatibleCombinationError)

        with self.assertRaises(IncompatibleCombinationError):
            FeatureTrackingPipeline(TrackingConfig(detector_type="FAST", descriptor_type="AKAZE"))
        self.assertTrue(issubclass(IncompatibleCombinationError, ValueError))

    def test_process_frames(self):
        """두 번째 프레임부터 이전 프레임과 매칭"""
        from feature_tracking.tracking_pipeline import FeatureTrackingPipeline, TrackingConfig

        pipeline = FeatureTrackingPipeline(TrackingConfig(
            detector_type="FAST", descriptor_type="BRISK", focus_on_vehicle=False))

        first = pipeline.process_frame(self.frames[0], 0)
        second = pipeline.process_frame(self.frames[1], 1)

        self.assertGreater(first.num_keypoints, 0)
        self.assertEqual(first.num_matches, 0)
        self.assertGreater(second.num_matches, 0)
        self.assertEqual(len(pipeline.buffer), 2)
        self.assertEqual(pipeline.buffer.latest.camera_image.ndim, 2)

        for m in pipeline.buffer.latest.kpt_matches:
            self.assertLess(m.queryIdx, len(pipeline.buffer.previous.keypoints))
            self.assertLess(m.trainIdx, len(pipeline.buffer.latest.keypoints))

        # 버퍼 크기 2 유지
        pipeline.process_frame(self.frames[2], 2)
        self.assertEqual(len(pipeline.buffer), 2)

    def test_focus_on_vehicle(self):
        from feature_tracking.tracking_pipeline import FeatureTrackingPipeline, TrackingConfig

        rect = (100, 100, 200, 150)
        pipeline = FeatureTrackingPipeline(TrackingConfig(
            detector_type="FAST", descriptor_type="ORB", vehicle_rect=rect))
        pipeline.process_frame(self.frames[0])

        keypoints = pipeline.buffer.latest.keypoints
        self.assertGreater(len(keypoints), 0)
        for kp in keypoints:
            self.assertTrue(100 <= kp.pt[0] < 300)
            self.assertTrue(100 <= kp.pt[1] < 250)

    def test_limit_keypoints(self):
        from feature_tracking.tracking_pipeline import FeatureTrackingPipeline, TrackingConfig

        pipeline = FeatureTrackingPipeline(TrackingConfig(
            detector_type="SHITOMASI", descriptor_type="SIFT", focus_on_vehicle=False,
            limit_keypoints=True, max_keypoints=10))
        stats = pipeline.process_frame(self.frames[0])

        self.assertLessEqual(stats.num_keypoints, 10)
        self.assertAlmostEqual(stats.mean_size, 4.0)
        self.assertAlmostEqual(stats.std_size, 0.0)

    def test_run_skips_unreadable(self):
        """읽을 수 없는 파일은 건너뜀"""
        from feature_tracking.tracking_pipeline import (FeatureTrackingPipeline, TrackingConfig,
                                                       collect_image_paths)

        with tempfile.TemporaryDirectory() as tmp:
            for i, frame in enumerate(self.frames):
                cv2.imwrite(str(Path(tmp) / f"{i:04d}.png"), frame)
            (Path(tmp) / "0010.png").write_text("not an image")

            paths = collect_image_paths(tmp)
            self.assertEqual(len(paths), 4)

            pipeline = FeatureTrackingPipeline(TrackingConfig(
                detector_type="ORB", descriptor_type="ORB",
                selector_type="SEL_KNN", focus_on_vehicle=False))
            result = pipeline.run(paths)

        self.assertEqual(result.num_frames, 3)
        self.assertEqual(result.frames[0].num_matches, 0)
        self.assertEqual(result.total_matches,
                         sum(f.num_matches for f in result.frames))

        summary = result.summary()
        self.assertEqual(summary["detector"], "ORB")
        self.assertEqual(summary["frames"], 3)

    def test_collect_image_paths_range(self):
        from feature_tracking.tracking_pipeline import collect_image_paths

        with tempfile.TemporaryDirectory() as tmp:
            for i in range(6):
                (Path(tmp) / f"{i:04d}.png").touch()
            paths = collect_image_paths(tmp, start=1, end=3)

        self.assertEqual([p.name for p in paths], ["0001.png", "0002.png", "0003.png"])


class TestBenchmark(unittest.TestCase):
    """조합 벤치마크 테스트"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.paths = []
        for i, frame in enumerate(make_sequence()):
            path = Path(self.tmp.name) / f"{i:04d}.png"
            cv2.imwrite(str(path), frame)
            self.paths.append(path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_benchmark_skips_incompatible(self):
        from feature_tracking.tracking_pipeline import benchmark

        rows = benchmark(self.paths, detectors=("FAST", "AKAZE"),
                         descriptors=("BRISK", "AKAZE"), focus_on_vehicle=False)

        combos = [(r["detector"], r["descriptor"]) for r in rows]
        self.assertEqual(combos, [("FAST", "BRISK"), ("AKAZE", "BRISK"), ("AKAZE", "AKAZE")])
        for row in rows:
            self.assertEqual(row["frames"], 3)
            self.assertGreater(row["avg_keypoints"], 0)

    def test_keypoint_stats_independent_of_descriptor(self):
        """키포인트 통계는 디스크립터 계산 전 기준"""
        from feature_tracking.tracking_pipeline import benchmark

        rows = benchmark(self.paths, detectors=("FAST",),
                         descriptors=("BRISK", "ORB", "SIFT"), focus_on_vehicle=False)

        self.assertEqual(len(rows), 3)
        for row in rows[1:]:
            self.assertEqual(row["avg_keypoints"], rows[0]["avg_keypoints"])
            self.assertAlmostEqual(row["avg_size"], rows[0]["avg_size"])

    def test_save_report(self):
        from feature_tracking.tracking_pipeline import benchmark, save_report

        rows = benchmark(self.paths, detectors=("ORB",), descriptors=("BRISK",),
                         focus_on_vehicle=False)
        output = Path(self.tmp.name) / "report.csv"
        save_report(rows, str(output))

        with open(output, newline="") as f:
            loaded = list(csv.DictReader(f))
        self.assertEqual(len(loaded), 1)
        self.assertEqual(loaded[0]["detector"], "ORB")
        self.assertEqual(loaded[0]["descriptor"], "BRISK")

        with self.assertRaises(ValueError):
            save_report([], str(output))

    def test_plots(self):
        """벤치마크 그래프 저장"""
        from feature_tracking.tracking_pipeline import benchmark
        from visualization.keypoint_viewer import TrackingReportPlotter, save_size_histogram

        rows = benchmark(self.paths, detectors=("FAST",), descriptors=("BRISK", "ORB"),
                         focus_on_vehicle=False)
        plot_dir = Path(self.tmp.name) / "plots"
        paths = TrackingReportPlotter(rows, backend="Agg").save_all(str(plot_dir))

        self.assertEqual(len(paths), 3)
        for path in paths:
            self.assertTrue(Path(path).exists())

        hist_path = Path(self.tmp.name) / "sizes.png"
        save_size_histogram([7.0, 7.0, 12.0], str(hist_path))
        self.assertTrue(hist_path.exists())


class TestCommandLine(unittest.TestCase):
    """명령행 인터페이스 테스트"""

    def test_main_requires_two_images(self):
        from feature_tracking.tracking_pipeline import main

        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(main([tmp]), 1)

    def test_matcher_aliases(self):
        from feature_tracking.tracking_pipeline import build_arg_parser, main

        args = build_arg_parser().parse_args(["images", "--matcher", "flann",
                                              "--selector", "knn"])
        self.assertEqual(args.matcher, "FLANN")
        self.assertEqual(args.selector, "KNN")

        with tempfile.TemporaryDirectory() as tmp:
            for i, frame in enumerate(make_sequence()):
                cv2.imwrite(str(Path(tmp) / f"{i:04d}.png"), frame)
            code = main([tmp, "--detector", "fast", "--matcher", "flann",
                         "--selector", "knn", "--no-focus"])
            self.assertEqual(code, 0)

    def test_main_runs_benchmark(self):
        from feature_tracking.tracking_pipeline import main

        with tempfile.TemporaryDirectory() as tmp:
            for i, frame in enumerate(make_sequence()):
                cv2.imwrite(str(Path(tmp) / f"{i:04d}.png"), frame)
            report = Path(tmp) / "out.csv"

            code = main([tmp, "--report", str(report), "--benchmark"])
            self.assertEqual(code, 0)
            self.assertTrue(report.exists())


if __name__ == "__main__":
    unittest.main(verbosity=2)
