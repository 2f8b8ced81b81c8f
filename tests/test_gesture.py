import itertools

import pytest

from facepalm.gesture import is_facepalm, missing_landmarks, REQUIRED_LANDMARKS
from facepalm.pose import Pose

from conftest import make_pose


@pytest.mark.parametrize("wrist, expected", [
    ((150, 350), True),
    ((150, 250), False),   # 手腕 y 小于肩膀 y
    ((250, 350), False),   # 手腕在双耳之外
    ((50, 350), False),
    ((100, 300), True),    # 区间端点和肩膀高度都算命中
    ((200, 300), True),
])
def test_reference_positions(wrist, expected):
    pose = make_pose(wrist=wrist, left_ear=(100, 0), right_ear=(200, 0), shoulder=(0, 300))
    assert is_facepalm(pose) is expected


@pytest.mark.parametrize("wrist", [(150, 350), (150, 250), (250, 350), (100, 400), (99, 400)])
def test_swapping_ears_does_not_change_result(wrist):
    normal = make_pose(wrist=wrist, left_ear=(100, 0), right_ear=(200, 0), shoulder=(0, 300))
    swapped = make_pose(wrist=wrist, left_ear=(200, 0), right_ear=(100, 0), shoulder=(0, 300))
    assert is_facepalm(normal) == is_facepalm(swapped)


def test_any_missing_landmark_is_false():
    names = ["wrist", "left_ear", "right_ear", "shoulder"]
    for count in range(1, len(names) + 1):
        for missing in itertools.combinations(names, count):
            pose = make_pose(**{name: None for name in missing})
            assert is_facepalm(pose) is False, missing


def test_empty_and_none_pose():
    assert is_facepalm(Pose()) is False
    assert is_facepalm(None) is False


def test_missing_landmarks_reports_names():
    pose = make_pose(wrist=None, shoulder=None)
    assert set(missing_landmarks(pose)) == {"RIGHT_WRIST", "RIGHT_SHOULDER"}
    assert missing_landmarks(make_pose()) == ()
    assert len(missing_landmarks(None)) == len(REQUIRED_LANDMARKS)


def test_extra_landmarks_are_ignored():
    pose = Pose.from_points({
        "RIGHT_WRIST": (150, 350),
        "LEFT_EAR": (100, 100),
        "RIGHT_EAR": (200, 100),
        "RIGHT_SHOULDER": (150, 300),
        "LEFT_WRIST": (900, 0),
        "NOSE": (150, 80, 0.9),
    })
    assert is_facepalm(pose) is True
    assert pose.get("NOSE").confidence == 0.9
