"""
Frame Data Buffer

연속 프레임 처리를 위한 고정 크기 링 버퍼입니다.
버퍼가 가득 차면 가장 오래된 프레임을 버립니다.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

import cv2
import numpy as np


@dataclass
class DataFrame:
    """한 프레임의 이미지와 특징 정보"""
    camera_image: np.ndarray
    keypoints: List[cv2.KeyPoint] = field(default_factory=list)
    descriptors: Optional[np.ndarray] = None
    kpt_matches: List[cv2.DMatch] = field(default_factory=list)  # 이전 프레임과의 매칭


class DataBuffer:
    """
    프레임 링 버퍼

    Example:
        >>> buffer = DataBuffer(size=2)
        >>> buffer.push(DataFrame(camera_image=img))
        >>> buffer.latest.keypoints
    """

    def __init__(self, size: int = 2):
        if size < 1:
            raise ValueError(f"버퍼 크기는 1 이상이어야 합니다: {size}")
        self.size = size
        self._frames = deque(maxlen=size)

    def push(self, frame: DataFrame) -> None:
        self._frames.append(frame)

    def clear(self) -> None:
        self._frames.clear()

    def is_full(self) -> bool:
        return len(self._frames) == self.size

    @property
    def latest(self) -> Optional[DataFrame]:
        """가장 최근 프레임 (없으면 None)"""
        return self._frames[-1] if self._frames else None

    @property
    def previous(self) -> Optional[DataFrame]:
        """최근 프레임 바로 앞의 프레임 (없으면 None)"""
        return self._frames[-2] if len(self._frames) >= 2 else None

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[DataFrame]:
        return iter(self._frames)

    def __getitem__(self, index: int) -> DataFrame:
        return self._frames[index]
