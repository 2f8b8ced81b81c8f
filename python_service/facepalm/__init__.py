"""
Facepalm Camera 核心模块
包含帧采样、姿态估计、捂脸判定、状态机和拍照保存
"""

from .capture import CameraCapture
from .detector import PoseEstimator, EstimationError
from .frame import Frame, Nv21Buffer, ImageHandle, UnrecognizedFrameFormat
from .gesture import is_facepalm
from .pipeline import FacepalmPipeline
from .pose import Pose, Landmark, PoseLandmark
from .sampler import FrameSampler
from .shutter import PhotoSaver
from .state_machine import GestureStateMachine, ReadinessState, CaptureIntent

__all__ = [
    "CameraCapture",
    "PoseEstimator",
    "EstimationError",
    "Frame",
    "Nv21Buffer",
    "ImageHandle",
    "UnrecognizedFrameFormat",
    "is_facepalm",
    "FacepalmPipeline",
    "Pose",
    "Landmark",
    "PoseLandmark",
    "FrameSampler",
    "PhotoSaver",
    "GestureStateMachine",
    "ReadinessState",
    "CaptureIntent"
]
