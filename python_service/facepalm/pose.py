"""
姿态数据结构
与具体模型无关的关键点 / 姿态表示
"""

from typing import Dict, Optional, Iterator
from dataclasses import dataclass, field
from enum import IntEnum


class PoseLandmark(IntEnum):
    """MediaPipe Pose 33 个关键点索引"""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10

    # 上肢
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22

    # 下肢
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# 上半身骨骼连接（用于绘制）
UPPER_BODY_CONNECTIONS = [
    (PoseLandmark.LEFT_EAR, PoseLandmark.LEFT_EYE),
    (PoseLandmark.LEFT_EYE, PoseLandmark.NOSE),
    (PoseLandmark.NOSE, PoseLandmark.RIGHT_EYE),
    (PoseLandmark.RIGHT_EYE, PoseLandmark.RIGHT_EAR),
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.RIGHT_SHOULDER),
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_ELBOW),
    (PoseLandmark.LEFT_ELBOW, PoseLandmark.LEFT_WRIST),
    (PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_ELBOW),
    (PoseLandmark.RIGHT_ELBOW, PoseLandmark.RIGHT_WRIST),
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_HIP),
    (PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_HIP),
    (PoseLandmark.LEFT_HIP, PoseLandmark.RIGHT_HIP),
]


@dataclass(frozen=True)
class Landmark:
    """单个 2D 关键点（显示方向的像素坐标）"""
    name: str
    x: float
    y: float
    confidence: float = 1.0


@dataclass(frozen=True)
class Pose:
    """
    单帧姿态
    关键点名称到 Landmark 的映射，缺失的关键点不在映射中
    """
    landmarks: Dict[str, Landmark] = field(default_factory=dict)
    frame_id: int = 0
    timestamp: float = 0.0
    width: int = 0
    height: int = 0
    inference_time_ms: float = 0.0

    @classmethod
    def from_points(cls, points: Dict[str, tuple], **kwargs) -> "Pose":
        """由 {名称: (x, y)} 或 {名称: (x, y, confidence)} 构建"""
        landmarks = {}
        for name, point in points.items():
            if point is None:
                continue
            landmarks[name] = Landmark(name, *point)
        return cls(landmarks=landmarks, **kwargs)

    def get(self, landmark) -> Optional[Landmark]:
        """按名称或 PoseLandmark 获取关键点，缺失时返回 None"""
        name = landmark.name if isinstance(landmark, PoseLandmark) else str(landmark)
        return self.landmarks.get(name)

    def __iter__(self) -> Iterator[Landmark]:
        return iter(self.landmarks.values())

    @property
    def is_empty(self) -> bool:
        return not self.landmarks
