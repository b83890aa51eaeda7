"""
Keypoint Visualization Module

검출 / 매칭 결과를 OpenCV 창으로 보여주고,
벤치마크 결과를 Matplotlib 그래프로 저장합니다.
"""

import numpy as np
from typing import Dict, List, Optional, Sequence

import cv2


def show_image(window_name: str, image: np.ndarray, wait: bool = True) -> None:
    """
    크기 조절 가능한 창에 이미지를 표시합니다.

    Args:
        window_name: 창 제목
        image: 표시할 이미지
        wait: True 이면 키 입력이 있을 때까지 대기
    """
    cv2.namedWindow(window_name, cv2.WINDOW_NORMAL)
    cv2.imshow(window_name, image)
    if wait:
        cv2.waitKey(0)


class TrackingReportPlotter:
    """
    벤치마크 결과 시각화 클래스

    benchmark() 가 반환한 행 리스트를 받아 조합별 막대 그래프를 그립니다.
    """

    def __init__(self, rows: List[Dict], backend: Optional[str] = None):
        """
        Args:
            rows: tracking_pipeline.benchmark() 결과
            backend: Matplotlib 백엔드 (예: "Agg"), None 이면 기본값
        """
        self.rows = rows
        if backend is not None:
            import matplotlib
            matplotlib.use(backend)

    def _labels(self) -> List[str]:
        return [f"{r['detector']}\n{r['descriptor']}" for r in self.rows]

    def save_bar_chart(self, column: str, output_path: str,
                       title: Optional[str] = None,
                       ylabel: Optional[str] = None) -> None:
        """
        한 컬럼 값을 조합별 막대 그래프로 저장합니다.

        Args:
            column: 행 딕셔너리의 키 (예: "total_matches")
            output_path: 저장 경로
        """
        import matplotlib.pyplot as plt

        values = [r[column] for r in self.rows]
        labels = self._labels()

        fig, ax = plt.subplots(figsize=(max(8, len(values) * 0.6), 6))
        ax.bar(range(len(values)), values, color='steelblue')
        ax.set_xticks(range(len(values)))
        ax.set_xticklabels(labels, rotation=90, fontsize=8)
        ax.set_ylabel(ylabel or column)
        ax.set_title(title or column)
        ax.grid(axis='y', alpha=0.3)

        plt.tight_layout()
        plt.savefig(output_path, dpi=120)
        plt.close(fig)

        print(f"그래프 저장됨: {output_path}")

    def save_all(self, output_dir: str) -> List[str]:
        """키포인트 수, 매칭 수, 처리 시간 그래프를 모두 저장합니다."""
        from pathlib import Path

        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

        charts = [
            ("avg_keypoints", "Keypoints per frame", "keypoints"),
            ("total_matches", "Matched keypoints (all frames)", "matches"),
            ("avg_total_ms", "Detection + description time", "ms"),
        ]
        paths = []
        for column, title, ylabel in charts:
            path = str(out / f"{column}.png")
            self.save_bar_chart(column, path, title=title, ylabel=ylabel)
            paths.append(path)
        return paths


def save_size_histogram(sizes: Sequence[float], output_path: str,
                        title: str = "Keypoint neighborhood size",
                        bins: int = 30) -> None:
    """
    키포인트 이웃 크기 분포를 히스토그램으로 저장합니다.

    Args:
        sizes: cv2.KeyPoint.size 값들
        output_path: 저장 경로
    """
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.hist(np.asarray(sizes, dtype=np.float64), bins=bins, color='steelblue', alpha=0.8)
    ax.set_xlabel('size [px]')
    ax.set_ylabel('count')
    ax.set_title(title)

    plt.tight_layout()
    plt.savefig(output_path, dpi=120)
    plt.close(fig)

    print(f"히스토그램 저장됨: {output_path}")
