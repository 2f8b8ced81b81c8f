"""
帧采样模块
从摄像头接收帧，保证同一时间最多只有一个姿态估计调用在进行
"""

import asyncio
import threading
from typing import Optional, Callable, Awaitable, Dict, Iterable, AsyncIterable, Union
from dataclasses import dataclass, asdict

from .frame import Frame, RawFrame, UnrecognizedFrameFormat, normalize_frame, release_raw
from .pose import Pose


EstimatePose = Callable[[Frame], Awaitable[Optional[Pose]]]


@dataclass
class SamplerStats:
    """采样统计"""
    received: int = 0        # 收到的帧
    dispatched: int = 0      # 送去估计的帧
    dropped: int = 0         # 因估计进行中而丢弃的帧
    unrecognized: int = 0    # 格式无法识别的帧
    failed: int = 0          # 估计失败次数

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class FrameSampler:
    """
    帧采样器

    背压策略：只保留最新帧，不排队。估计进行中到达的帧直接丢弃。
    标志位的检查与设置在锁内完成，offer() 可以从任意线程调用；
    估计调用和结果回调都在绑定的事件循环上执行。

    已知风险：估计函数永不返回时标志位不会清除，采样会一直停止。
    """

    def __init__(
        self,
        estimate_pose: EstimatePose,
        on_result: Callable[[Optional[Pose]], None],
        on_failure: Callable[[BaseException], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
        debug: bool = False
    ):
        """
        初始化采样器

        Args:
            estimate_pose: 异步姿态估计函数
            on_result: 估计成功回调
            on_failure: 估计失败回调
            loop: 执行估计的事件循环，默认在首次 offer 时绑定当前运行的循环
            debug: 是否打印丢帧信息
        """
        self._estimate_pose = estimate_pose
        self._on_result = on_result
        self._on_failure = on_failure
        self._loop = loop
        self.debug = debug

        self._lock = threading.Lock()
        self._outstanding = False
        self._task: Optional[asyncio.Task] = None
        self._frame_count = 0
        self._stats = SamplerStats()

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """绑定事件循环"""
        self._loop = loop

    @property
    def outstanding(self) -> bool:
        """是否有估计调用在进行"""
        return self._outstanding

    @property
    def stats(self) -> SamplerStats:
        with self._lock:
            return SamplerStats(**asdict(self._stats))

    def _running_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def offer(self, raw: RawFrame) -> bool:
        """
        提交一帧原始帧

        Returns:
            是否启动了一次姿态估计
        """
        running = self._running_loop()
        if self._loop is None:
            if running is None:
                raise RuntimeError("FrameSampler 未绑定事件循环")
            self._loop = running

        # 原子的 检查-设置
        with self._lock:
            self._stats.received += 1
            if self._outstanding:
                self._stats.dropped += 1
                busy = True
            else:
                self._outstanding = True
                self._frame_count += 1
                frame_id = self._frame_count
                busy = False

        if busy:
            release_raw(raw)
            return False

        try:
            frame = normalize_frame(raw, frame_id=frame_id)
        except UnrecognizedFrameFormat as e:
            with self._lock:
                self._stats.unrecognized += 1
                self._outstanding = False
            release_raw(raw)
            if self.debug:
                print(f"[DEBUG] 丢弃无法识别的帧: {e}", flush=True)
            return False

        with self._lock:
            self._stats.dispatched += 1

        if running is self._loop:
            self._spawn(frame)
            return True

        try:
            self._loop.call_soon_threadsafe(self._spawn, frame)
        except RuntimeError:
            # 事件循环已关闭
            frame.release()
            with self._lock:
                self._outstanding = False
            raise
        return True

    def _spawn(self, frame: Frame):
        self._task = self._loop.create_task(self._estimate(frame))

    async def _estimate(self, frame: Frame):
        """执行一次姿态估计，完成或失败后清除在途标志"""
        try:
            try:
                pose = await self._estimate_pose(frame)
            except Exception as e:
                with self._lock:
                    self._stats.failed += 1
                self._deliver(self._on_failure, e)
            else:
                self._deliver(self._on_result, pose)
        finally:
            with self._lock:
                self._outstanding = False
            frame.release()

    def _deliver(self, callback, value):
        try:
            callback(value)
        except Exception as e:
            print(f"[WARN] 采样回调异常: {e}", flush=True)

    async def drain(self):
        """
        等待在途的估计调用结束

        其他线程提交的帧可能还没有在事件循环上创建任务，
        因此以在途标志为准，而不是只看最近一次的任务。
        """
        while self._outstanding:
            task = self._task
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)
            else:
                await asyncio.sleep(0.001)

    async def run(self, source: Union[Iterable[RawFrame], AsyncIterable[RawFrame]]):
        """
        从帧序列拉取帧直到结束

        Args:
            source: 同步或异步的原始帧序列（可以是无限序列，不可重启）
        """
        self.bind_loop(asyncio.get_running_loop())

        if hasattr(source, "__aiter__"):
            async for raw in source:
                self.offer(raw)
                await asyncio.sleep(0)
        else:
            for raw in source:
                self.offer(raw)
                await asyncio.sleep(0)

        # 帧序列结束，等待最后一次估计
        await self.drain()
