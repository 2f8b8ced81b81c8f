import asyncio
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import numpy as np
import pytest

from facepalm.detector import EstimationError, PoseEstimator
from facepalm.frame import ImageHandle, normalize_frame
from facepalm.gesture import is_facepalm
from facepalm.pose import PoseLandmark


# 视图坐标（归一化）下的捂脸姿态
FACEPALM_POINTS = {
    PoseLandmark.LEFT_EAR: (0.2, 0.3),
    PoseLandmark.RIGHT_EAR: (0.8, 0.3),
    PoseLandmark.RIGHT_SHOULDER: (0.5, 0.5),
    PoseLandmark.RIGHT_WRIST: (0.5, 0.6),
}


class FakePose:
    """替代 mediapipe Pose 图，返回固定的 33 个关键点"""

    def __init__(self, points=None, visibility=None, error=None, detected=True):
        self.points = points or FACEPALM_POINTS
        self.visibility = visibility or {}
        self.error = error
        self.detected = detected
        self.shapes = []
        self.closed = False

    def process(self, image):
        self.shapes.append(image.shape)
        if self.error is not None:
            raise self.error
        if not self.detected:
            return SimpleNamespace(pose_landmarks=None)
        landmarks = []
        for idx in PoseLandmark:
            x, y = self.points.get(idx, (0.0, 0.0))
            landmarks.append(SimpleNamespace(x=x, y=y, visibility=self.visibility.get(idx, 0.9)))
        return SimpleNamespace(pose_landmarks=SimpleNamespace(landmark=landmarks))

    def close(self):
        self.closed = True


def _estimator(fake, min_visibility=0.5):
    estimator = PoseEstimator.__new__(PoseEstimator)
    estimator.min_visibility = min_visibility
    estimator._pose = fake
    estimator._executor = ThreadPoolExecutor(max_workers=1)
    estimator._closed = False
    return estimator


def _frame(rotation=0, frame_id=1):
    # 宽 8 高 6 的传感器图像
    return normalize_frame(ImageHandle(np.zeros((6, 8, 3), dtype=np.uint8), rotation=rotation), frame_id=frame_id)


def test_detect_scales_to_view_frame():
    fake = FakePose()
    with _estimator(fake) as estimator:
        pose = estimator.detect(_frame(rotation=90, frame_id=4))

    # 旋转 90 度后视图为 宽 6 高 8
    assert fake.shapes == [(8, 6, 3)]
    assert (pose.width, pose.height) == (6, 8)
    assert pose.frame_id == 4
    wrist = pose.get(PoseLandmark.RIGHT_WRIST)
    assert wrist.x == pytest.approx(0.5 * 6)
    assert wrist.y == pytest.approx(0.6 * 8)
    assert wrist.confidence == pytest.approx(0.9)
    assert len(list(pose)) == len(PoseLandmark)
    assert is_facepalm(pose)


def test_low_visibility_landmark_is_absent():
    fake = FakePose(visibility={PoseLandmark.LEFT_EAR: 0.2})
    with _estimator(fake) as estimator:
        pose = estimator.detect(_frame())

    assert pose.get(PoseLandmark.LEFT_EAR) is None
    assert pose.get(PoseLandmark.RIGHT_EAR) is not None
    assert not is_facepalm(pose)


def test_no_person_gives_empty_pose():
    with _estimator(FakePose(detected=False)) as estimator:
        pose = estimator.detect(_frame(frame_id=9))
    assert pose.is_empty
    assert pose.frame_id == 9
    assert not is_facepalm(pose)


def test_process_error_is_wrapped():
    with _estimator(FakePose(error=ValueError("graph broke"))) as estimator:
        with pytest.raises(EstimationError, match="graph broke"):
            estimator.detect(_frame())

        with pytest.raises(EstimationError):
            asyncio.run(estimator.estimate(_frame()))


def test_estimate_runs_on_executor_and_fails_after_close():
    fake = FakePose()
    estimator = _estimator(fake)

    pose = asyncio.run(estimator.estimate(_frame(frame_id=2)))
    assert pose.frame_id == 2
    assert is_facepalm(pose)

    estimator.close()
    assert fake.closed
    with pytest.raises(EstimationError):
        asyncio.run(estimator.estimate(_frame()))

    # 重复关闭无副作用
    estimator.close()
