"""
处理流水线
摄像头 -> 帧采样 -> 姿态估计 -> 状态机 -> 拍照保存
"""

import asyncio
from typing import Optional, Callable, Set

import numpy as np

from config.settings import Config
from .frame import RawFrame, rotate_to_view
from .pose import Pose
from .sampler import FrameSampler, EstimatePose
from .shutter import PhotoSaver
from .state_machine import GestureStateMachine, CaptureIntent, CaptureResult


Snapshot = Callable[[], Optional[np.ndarray]]


class FacepalmPipeline:
    """
    捂脸拍照流水线
    连接采样器、状态机和照片保存器
    """

    def __init__(
        self,
        state_machine: GestureStateMachine,
        estimate_pose: EstimatePose,
        saver: Optional[PhotoSaver] = None,
        snapshot: Optional[Snapshot] = None,
        rotation: int = 0,
        debug: bool = False
    ):
        """
        Args:
            state_machine: 手势状态机
            estimate_pose: 异步姿态估计函数
            saver: 照片保存器，None 时只发出拍照意图
            snapshot: 获取当前画面的函数（拍照用）
            rotation: 画面到显示方向的旋转角度
            debug: 是否打印调试信息
        """
        self.state_machine = state_machine
        self.saver = saver
        self.rotation = rotation
        self.debug = debug
        self._snapshot = snapshot

        self.sampler = FrameSampler(
            estimate_pose,
            on_result=self._on_pose,
            on_failure=state_machine.on_estimation_failure,
            debug=debug
        )
        self.last_pose: Optional[Pose] = None
        self._pending_saves: Set[asyncio.Future] = set()

        state_machine.register_capture_callback(self._on_capture)

    @classmethod
    def from_config(
        cls,
        config: Config,
        estimate_pose: EstimatePose,
        snapshot: Optional[Snapshot] = None
    ) -> "FacepalmPipeline":
        """根据配置创建流水线"""
        labels = config.labels
        state_machine = GestureStateMachine(
            ready_label=labels.ready,
            not_ready_label=labels.not_ready,
            failed_label=labels.failed,
            saved_label=labels.saved,
            save_failed_label=labels.save_failed,
            debug=config.debug
        )
        saver = PhotoSaver(
            output_dir=config.capture.output_dir,
            fallback_dir=config.capture.fallback_dir,
            filename_format=config.capture.filename_format,
            jpeg_quality=config.capture.jpeg_quality
        )
        return cls(
            state_machine,
            estimate_pose,
            saver=saver,
            snapshot=snapshot,
            rotation=config.camera.rotation,
            debug=config.debug
        )

    def offer(self, raw: RawFrame) -> bool:
        """摄像头推送回调"""
        return self.sampler.offer(raw)

    async def run(self, source):
        """从帧序列拉取直到结束，并等待未完成的保存"""
        await self.sampler.run(source)
        await self.wait_saves()

    def _on_pose(self, pose: Optional[Pose]):
        self.last_pose = pose
        self.state_machine.on_pose_result(pose)

    def _on_capture(self, intent: CaptureIntent):
        """收到拍照意图：截取当前画面并保存"""
        if self.saver is None:
            return

        image = self._snapshot() if self._snapshot else None
        if image is not None:
            image = rotate_to_view(image, self.rotation)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            self._save(intent, image)
            return

        # 文件写入放到线程池，避免阻塞事件循环
        future = loop.run_in_executor(None, self._save, intent, image)
        self._pending_saves.add(future)
        future.add_done_callback(self._pending_saves.discard)

    def _save(self, intent: CaptureIntent, image: Optional[np.ndarray]) -> CaptureResult:
        try:
            result = self.saver.save(intent, image)
        except Exception as e:
            result = CaptureResult(intent=intent, ok=False, error=str(e))
        if not result.ok:
            print(f"[ERROR] 照片保存失败: {result.error}", flush=True)
        self.state_machine.on_capture_result(result)
        return result

    async def wait_saves(self):
        """等待所有保存任务完成"""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)
