"""
摄像头采集模块
负责从摄像头获取视频帧，推送给唯一的帧监听者
"""

import cv2
import numpy as np
from typing import Optional, Callable
import threading
import queue
import time

from .frame import ImageHandle


FrameListener = Callable[[ImageHandle], None]


class CameraCapture:
    """
    摄像头采集类
    采集线程读取帧：有监听者时直接推送，否则放入缓冲队列供拉取
    """

    def __init__(
        self,
        device_id: int = 0,
        width: int = 640,
        height: int = 480,
        fps: int = 30,
        mirror: bool = True,
        rotation: int = 0,
        buffer_size: int = 1
    ):
        """
        初始化摄像头

        Args:
            device_id: 摄像头设备ID
            width: 分辨率宽度
            height: 分辨率高度
            fps: 目标帧率
            mirror: 是否水平翻转（镜像模式）
            rotation: 画面到显示方向的旋转角度
            buffer_size: 拉取模式下的帧缓冲区大小
        """
        self.device_id = device_id
        self.width = width
        self.height = height
        self.fps = fps
        self.mirror = mirror
        self.rotation = rotation
        self.buffer_size = buffer_size

        # 内部状态
        self._cap: Optional[cv2.VideoCapture] = None
        self._frame_queue: queue.Queue = queue.Queue(maxsize=buffer_size)
        self._listener: Optional[FrameListener] = None
        self._latest: Optional[np.ndarray] = None
        self._latest_lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._frame_count = 0
        self._start_time = 0.0

    def set_frame_listener(self, listener: Optional[FrameListener]):
        """
        设置帧监听者（同一时间只允许一个）

        Raises:
            RuntimeError: 已存在监听者
        """
        if listener is not None and self._listener is not None:
            raise RuntimeError("摄像头只支持一个帧监听者")
        self._listener = listener

    def start(self) -> bool:
        """
        启动摄像头采集

        Returns:
            是否成功启动
        """
        if self._running:
            return True

        # 初始化摄像头
        self._cap = cv2.VideoCapture(self.device_id)
        if not self._cap.isOpened():
            print(f"[ERROR] 无法打开摄像头 {self.device_id}")
            return False

        # 设置摄像头参数
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap.set(cv2.CAP_PROP_FPS, self.fps)

        # 读取实际参数（可能与设置不同）
        actual_width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = self._cap.get(cv2.CAP_PROP_FPS)

        print(f"[INFO] 摄像头已启动: {actual_width}x{actual_height} @ {actual_fps:.1f}fps")

        # 启动采集线程
        self._running = True
        self._start_time = time.time() * 1000
        self._frame_count = 0
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

        return True

    def stop(self):
        """停止摄像头采集"""
        self._running = False

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

        if self._cap:
            self._cap.release()
            self._cap = None

        # 清空队列
        while not self._frame_queue.empty():
            try:
                self._frame_queue.get_nowait()
            except queue.Empty:
                break

        print("[INFO] 摄像头已停止")

    def _capture_loop(self):
        """采集线程主循环"""
        while self._running and self._cap and self._cap.isOpened():
            ret, image = self._cap.read()

            if not ret:
                print("[WARN] 读取帧失败")
                time.sleep(0.01)
                continue

            self._publish(image)

    def _publish(self, image: np.ndarray):
        """分发一帧图像"""
        # 镜像翻转
        if self.mirror:
            image = cv2.flip(image, 1)

        self._frame_count += 1
        with self._latest_lock:
            self._latest = image

        raw = ImageHandle(
            image=image,
            rotation=self.rotation,
            timestamp=time.time() * 1000
        )

        listener = self._listener
        if listener is not None:
            try:
                listener(raw)
            except Exception as e:
                print(f"[WARN] 帧监听回调异常: {e}")
            return

        # 放入队列（如果满了则丢弃旧帧）
        try:
            if self._frame_queue.full():
                self._frame_queue.get_nowait()  # 丢弃旧帧
            self._frame_queue.put_nowait(raw)
        except (queue.Full, queue.Empty):
            pass

    def latest(self) -> Optional[np.ndarray]:
        """最近一帧图像的副本（用于拍照）"""
        with self._latest_lock:
            return self._latest.copy() if self._latest is not None else None

    def read(self, timeout: float = 0.1) -> Optional[ImageHandle]:
        """
        拉取一帧原始帧

        Args:
            timeout: 超时时间（秒）

        Returns:
            ImageHandle 对象，如果无可用帧则返回 None
        """
        try:
            return self._frame_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    @property
    def is_running(self) -> bool:
        """是否正在运行"""
        return self._running

    @property
    def actual_fps(self) -> float:
        """计算实际帧率"""
        if self._frame_count == 0 or self._start_time == 0:
            return 0.0
        elapsed = (time.time() * 1000 - self._start_time) / 1000
        return self._frame_count / elapsed if elapsed > 0 else 0.0

    def __enter__(self):
        """支持 with 语句"""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """支持 with 语句"""
        self.stop()
        return False
