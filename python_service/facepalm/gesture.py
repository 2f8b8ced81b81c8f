"""
手势判定模块
基于单帧姿态关键点判断是否为捂脸（facepalm）动作
"""

from typing import Optional, Tuple

from .pose import Pose, PoseLandmark, Landmark


# 判定所需的关键点
REQUIRED_LANDMARKS: Tuple[PoseLandmark, ...] = (
    PoseLandmark.RIGHT_WRIST,
    PoseLandmark.LEFT_EAR,
    PoseLandmark.RIGHT_EAR,
    PoseLandmark.RIGHT_SHOULDER,
)


def _between(value: float, a: float, b: float) -> bool:
    """value 是否落在 a、b 构成的闭区间内（与端点顺序无关）"""
    return min(a, b) <= value <= max(a, b)


def is_facepalm(pose: Optional[Pose]) -> bool:
    """
    判断姿态是否为捂脸动作

    条件：
    1. 右手腕的 x 坐标位于左右耳 x 坐标之间
    2. 右手腕的 y 坐标 >= 右肩的 y 坐标（图像坐标系，y 向下增大）

    任一关键点缺失时返回 False，不做推断。
    """
    if pose is None:
        return False

    wrist: Optional[Landmark] = pose.get(PoseLandmark.RIGHT_WRIST)
    left_ear = pose.get(PoseLandmark.LEFT_EAR)
    right_ear = pose.get(PoseLandmark.RIGHT_EAR)
    shoulder = pose.get(PoseLandmark.RIGHT_SHOULDER)

    if wrist is None or left_ear is None or right_ear is None or shoulder is None:
        return False

    # NOTE: 竖直方向的比较依赖摄像头安装方向和镜像设置，这里不做补偿
    return _between(wrist.x, left_ear.x, right_ear.x) and wrist.y >= shoulder.y


def missing_landmarks(pose: Optional[Pose]) -> Tuple[str, ...]:
    """返回判定所需但缺失的关键点名称（用于调试显示）"""
    if pose is None:
        return tuple(lm.name for lm in REQUIRED_LANDMARKS)
    return tuple(lm.name for lm in REQUIRED_LANDMARKS if pose.get(lm) is None)
