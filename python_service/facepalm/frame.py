"""
帧数据结构
将不同平台的原始帧（NV21 字节流 / 图像句柄）统一转换为 BGR Frame
"""

import time
from typing import Optional, Callable, Union
from dataclasses import dataclass, field
from enum import Enum

import cv2
import numpy as np


VALID_ROTATIONS = (0, 90, 180, 270)

# 旋转到显示方向（顺时针）
_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class UnrecognizedFrameFormat(ValueError):
    """无法识别的帧像素格式"""


class PixelFormat(Enum):
    """像素格式"""
    BGR = "bgr"
    NV21 = "nv21"


@dataclass(frozen=True)
class Nv21Buffer:
    """原始帧：NV21 (YUV420sp) 字节流"""
    data: Union[bytes, bytearray, memoryview, np.ndarray]
    width: int
    height: int
    rotation: int = 0
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class ImageHandle:
    """
    原始帧：平台图像句柄
    这里为 OpenCV 读取的 numpy 图像（BGR / BGRA / 灰度），release 为可选的资源释放回调
    """
    image: np.ndarray
    rotation: int = 0
    timestamp: Optional[float] = None
    release: Optional[Callable[[], None]] = field(default=None, compare=False, repr=False)


RawFrame = Union[Nv21Buffer, ImageHandle]


@dataclass(frozen=True)
class Frame:
    """统一后的视频帧"""
    image: np.ndarray               # BGR 图像数据（只读）
    width: int                      # 图像宽度
    height: int                     # 图像高度
    pixel_format: PixelFormat       # 原始像素格式
    rotation: int                   # 到显示方向的旋转角度
    frame_id: int = 0               # 帧序号
    timestamp: float = 0.0          # 时间戳（毫秒）
    release_hook: Optional[Callable[[], None]] = field(default=None, compare=False, repr=False)

    def release(self):
        """释放底层平台资源（如果有）"""
        if self.release_hook is not None:
            self.release_hook()

    def upright(self) -> np.ndarray:
        """按 rotation 旋转到显示方向的图像"""
        return rotate_to_view(self.image, self.rotation)


def rotate_to_view(image: np.ndarray, rotation: int) -> np.ndarray:
    """将图像顺时针旋转 rotation 度到显示方向"""
    code = _ROTATE_CODES.get(rotation % 360)
    if code is None:
        return image
    return cv2.rotate(image, code)


def release_raw(raw) -> None:
    """释放被丢弃的原始帧"""
    release = getattr(raw, "release", None)
    if callable(release):
        release()


def _check_rotation(rotation) -> int:
    try:
        rotation = int(rotation) % 360
    except (TypeError, ValueError):
        raise UnrecognizedFrameFormat(f"无效的旋转角度: {rotation!r}")
    if rotation not in VALID_ROTATIONS:
        raise UnrecognizedFrameFormat(f"无效的旋转角度: {rotation}")
    return rotation


def _nv21_to_bgr(raw: Nv21Buffer) -> np.ndarray:
    width, height = int(raw.width), int(raw.height)
    if width <= 0 or height <= 0 or width % 2 or height % 2:
        raise UnrecognizedFrameFormat(f"NV21 尺寸无效: {width}x{height}")

    if isinstance(raw.data, np.ndarray):
        if raw.data.dtype != np.uint8:
            raise UnrecognizedFrameFormat(f"NV21 数据类型无效: {raw.data.dtype}")
        yuv = raw.data.ravel()
    else:
        try:
            yuv = np.frombuffer(raw.data, dtype=np.uint8)
        except (TypeError, ValueError) as e:
            raise UnrecognizedFrameFormat(f"NV21 数据无法读取: {e}")
    expected = width * height * 3 // 2
    if yuv.size != expected:
        raise UnrecognizedFrameFormat(
            f"NV21 数据长度不匹配: 期望 {expected}，实际 {yuv.size}"
        )

    return cv2.cvtColor(yuv.reshape(height * 3 // 2, width), cv2.COLOR_YUV2BGR_NV21)


def _handle_to_bgr(raw: ImageHandle) -> np.ndarray:
    image = raw.image
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise UnrecognizedFrameFormat(f"不支持的图像句柄: {type(image).__name__}")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    raise UnrecognizedFrameFormat(f"不支持的图像形状: {image.shape}")


def normalize_frame(raw: RawFrame, frame_id: int = 0, timestamp: Optional[float] = None) -> Frame:
    """
    将原始帧转换为统一的 Frame

    Args:
        raw: Nv21Buffer 或 ImageHandle
        frame_id: 帧序号
        timestamp: 时间戳（毫秒），默认使用原始帧时间戳或当前时间

    Returns:
        Frame 对象

    Raises:
        UnrecognizedFrameFormat: 像素格式无法识别
    """
    if isinstance(raw, Nv21Buffer):
        image = _nv21_to_bgr(raw)
        pixel_format = PixelFormat.NV21
        release_hook = None
    elif isinstance(raw, ImageHandle):
        image = _handle_to_bgr(raw)
        pixel_format = PixelFormat.BGR
        release_hook = raw.release
    else:
        raise UnrecognizedFrameFormat(f"未知的帧类型: {type(raw).__name__}")

    rotation = _check_rotation(raw.rotation)

    if timestamp is None:
        timestamp = raw.timestamp if raw.timestamp is not None else time.time() * 1000

    # 只读视图，不影响调用方的数组
    image = image.view()
    image.flags.writeable = False

    return Frame(
        image=image,
        width=image.shape[1],
        height=image.shape[0],
        pixel_format=pixel_format,
        rotation=rotation,
        frame_id=frame_id,
        timestamp=timestamp,
        release_hook=release_hook
    )
