import asyncio

import numpy as np
import pytest

from facepalm.frame import ImageHandle
from facepalm.pose import Pose


def make_pose(wrist=(150, 350), left_ear=(100, 100), right_ear=(200, 100), shoulder=(150, 300), frame_id=0):
    """构建只含捂脸判定所需关键点的姿态，传入 None 表示缺失"""
    return Pose.from_points({
        "RIGHT_WRIST": wrist,
        "LEFT_EAR": left_ear,
        "RIGHT_EAR": right_ear,
        "RIGHT_SHOULDER": shoulder,
    }, frame_id=frame_id)


def make_handle(release=None, rotation=0):
    return ImageHandle(np.zeros((8, 6, 3), dtype=np.uint8), rotation=rotation, release=release)


class BlockingEstimator:
    """阻塞直到 release 被设置的假估计器，记录并发调用数"""

    def __init__(self, pose_factory=None):
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.frames = []
        self.gate = asyncio.Event()
        self._pose_factory = pose_factory or (lambda frame: Pose(frame_id=frame.frame_id))

    async def __call__(self, frame):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.frames.append(frame)
        try:
            await self.gate.wait()
        finally:
            self.active -= 1
        return self._pose_factory(frame)


@pytest.fixture
def facepalm_pose():
    return make_pose()
