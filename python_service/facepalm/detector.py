"""
姿态检测模块
使用 MediaPipe Pose 进行人体关键点检测
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple, Iterable

import cv2
import numpy as np

from .frame import Frame
from .gesture import REQUIRED_LANDMARKS
from .pose import Pose, Landmark, PoseLandmark, UPPER_BODY_CONNECTIONS


class EstimationError(RuntimeError):
    """姿态估计失败"""


class PoseEstimator:
    """
    姿态估计器
    封装 MediaPipe Pose，提供同步 detect() 和异步 estimate() 接口

    MediaPipe 图不是线程安全的，所有推理都在单线程执行器上进行。
    """

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        min_visibility: float = 0.5
    ):
        """
        初始化估计器

        Args:
            model_complexity: 模型复杂度 (0=lite, 1=full, 2=heavy)
            min_detection_confidence: 检测置信度阈值
            min_tracking_confidence: 追踪置信度阈值
            min_visibility: 关键点可见度阈值，低于此值视为缺失
        """
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.min_visibility = min_visibility

        try:
            import mediapipe as mp
            self._mp_pose = mp.solutions.pose
        except (ImportError, AttributeError) as e:
            raise RuntimeError(
                "MediaPipe Pose 不可用，请安装带 solutions 接口的 mediapipe"
            ) from e

        # 创建检测器实例
        self._pose = self._mp_pose.Pose(
            static_image_mode=False,
            model_complexity=int(model_complexity),
            smooth_landmarks=True,
            enable_segmentation=False,
            min_detection_confidence=float(min_detection_confidence),
            min_tracking_confidence=float(min_tracking_confidence)
        )

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose")
        self._closed = False

    def detect(self, frame: Frame) -> Pose:
        """
        检测人体关键点

        Args:
            frame: 统一后的视频帧

        Returns:
            Pose 对象（未检测到人时关键点为空）

        Raises:
            EstimationError: MediaPipe 处理失败
        """
        start_time = time.time()

        # 旋转到显示方向，转换颜色空间 BGR -> RGB
        image_rgb = cv2.cvtColor(frame.upright(), cv2.COLOR_BGR2RGB)
        image_height, image_width = image_rgb.shape[:2]

        try:
            results = self._pose.process(image_rgb)
        except Exception as e:
            raise EstimationError(f"MediaPipe 处理失败: {e}") from e

        landmarks = {}
        if results.pose_landmarks:
            points = results.pose_landmarks.landmark
            for idx in PoseLandmark:
                lm = points[int(idx)]
                visibility = float(getattr(lm, "visibility", 1.0))
                if visibility < self.min_visibility:
                    continue
                landmarks[idx.name] = Landmark(
                    name=idx.name,
                    x=float(lm.x) * image_width,
                    y=float(lm.y) * image_height,
                    confidence=visibility
                )

        inference_time = (time.time() - start_time) * 1000

        return Pose(
            landmarks=landmarks,
            frame_id=frame.frame_id,
            timestamp=frame.timestamp,
            width=image_width,
            height=image_height,
            inference_time_ms=inference_time
        )

    async def estimate(self, frame: Frame) -> Pose:
        """异步姿态估计，在单线程执行器上运行 detect()"""
        if self._closed:
            raise EstimationError("估计器已关闭")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.detect, frame)

    def draw_landmarks(
        self,
        image: np.ndarray,
        pose: Optional[Pose],
        color: Tuple[int, int, int] = (0, 255, 255),  # 青色
        highlight: Iterable[PoseLandmark] = REQUIRED_LANDMARKS,
        thickness: int = 2,
        circle_radius: int = 4
    ) -> np.ndarray:
        """
        在图像上绘制上半身关键点

        Args:
            image: 显示方向的原始图像
            pose: 姿态结果
            color: 颜色 (BGR)
            highlight: 高亮显示的关键点（捂脸判定所用）
            thickness: 线条粗细
            circle_radius: 关键点圆圈半径

        Returns:
            绘制后的图像
        """
        output = image.copy()
        if pose is None or pose.is_empty:
            return output

        def _pt(lm: Landmark) -> Tuple[int, int]:
            return int(lm.x), int(lm.y)

        # 绘制连线
        for start, end in UPPER_BODY_CONNECTIONS:
            a, b = pose.get(start), pose.get(end)
            if a is not None and b is not None:
                cv2.line(output, _pt(a), _pt(b), color, thickness)

        # 绘制关键点，判定用的关键点用绿色
        highlight_names = {lm.name for lm in highlight}
        for lm in pose:
            if lm.name in highlight_names:
                cv2.circle(output, _pt(lm), circle_radius + 2, (0, 255, 0), -1)
            elif PoseLandmark[lm.name] <= PoseLandmark.RIGHT_WRIST:
                cv2.circle(output, _pt(lm), circle_radius, color, -1)

        return output

    def close(self):
        """释放资源"""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        self._pose.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
