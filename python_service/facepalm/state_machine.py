"""
手势状态机模块
管理拍照就绪状态（Armed / Disarmed），并在检测到捂脸动作时触发拍照
"""

import time
import threading
from typing import Dict, Optional, List, Callable, Any
from dataclasses import dataclass, field
from enum import Enum

from .gesture import is_facepalm
from .pose import Pose


class ReadinessState(Enum):
    """就绪状态枚举"""
    DISARMED = "disarmed"   # 未就绪（初始状态）
    ARMED = "armed"         # 已就绪，等待捂脸动作


class EventType(Enum):
    """界面通知类型"""
    ARMED = "armed"
    DETECTED = "detected"
    ESTIMATION_FAILED = "estimation_failed"
    SAVED = "saved"
    SAVE_FAILED = "save_failed"


@dataclass(frozen=True)
class CaptureIntent:
    """拍照意图，由拍照模块消费一次"""
    timestamp: float         # 时间戳（毫秒）
    frame_id: int = 0        # 触发拍照的帧序号


@dataclass
class CaptureResult:
    """拍照保存结果"""
    intent: CaptureIntent
    ok: bool
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class StateEvent:
    """状态变化通知"""
    event_type: str          # "armed" | "detected" | "estimation_failed" | "saved" | "save_failed"
    state: str               # 当前就绪状态
    label: str               # 界面显示文案
    timestamp: float         # 时间戳（毫秒）
    meta: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "event_type": self.event_type,
            "state": self.state,
            "label": self.label,
            "timestamp": self.timestamp,
            "meta": self.meta
        }


class GestureStateMachine:
    """
    捂脸拍照状态机

    - arm(): Disarmed -> Armed（已就绪时幂等）
    - on_pose_result(): 仅在 Armed 时判定，命中则 Armed -> Disarmed 并发出一次 CaptureIntent
    - on_estimation_failure(): 只通知界面，不改变状态

    所有状态修改都在锁内完成，回调在锁外执行。
    """

    def __init__(
        self,
        ready_label: str = "Ready",
        not_ready_label: str = "Not ready",
        failed_label: str = "Failed processing",
        saved_label: str = "Saved. Not ready.",
        save_failed_label: str = "Save failed",
        predicate: Callable[[Pose], bool] = is_facepalm,
        debug: bool = False
    ):
        self.ready_label = ready_label
        self.not_ready_label = not_ready_label
        self.failed_label = failed_label
        self.saved_label = saved_label
        self.save_failed_label = save_failed_label
        self.debug = debug

        self._predicate = predicate
        self._state = ReadinessState.DISARMED
        self._lock = threading.Lock()

        # 界面通知回调
        self._callbacks: List[Callable[[StateEvent], None]] = []
        # 拍照意图回调
        self._capture_callbacks: List[Callable[[CaptureIntent], None]] = []

        # 统计
        self._captures = 0

    @property
    def state(self) -> ReadinessState:
        """当前就绪状态"""
        return self._state

    @property
    def is_armed(self) -> bool:
        return self._state == ReadinessState.ARMED

    @property
    def capture_count(self) -> int:
        """已发出的拍照意图数量"""
        return self._captures

    def register_callback(self, callback: Callable[[StateEvent], None]):
        """注册界面通知回调"""
        self._callbacks.append(callback)

    def register_capture_callback(self, callback: Callable[[CaptureIntent], None]):
        """注册拍照意图回调"""
        self._capture_callbacks.append(callback)

    def _emit_event(self, event: StateEvent):
        """发送界面通知"""
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                print(f"[WARN] 事件回调异常: {e}", flush=True)

    def _emit_capture(self, intent: CaptureIntent):
        """发送拍照意图"""
        for callback in self._capture_callbacks:
            try:
                callback(intent)
            except Exception as e:
                print(f"[WARN] 拍照回调异常: {e}", flush=True)

    def _make_event(self, event_type: EventType, label: str, meta: Optional[Dict[str, Any]] = None) -> StateEvent:
        return StateEvent(
            event_type=event_type.value,
            state=self._state.value,
            label=label,
            timestamp=time.time() * 1000,
            meta=meta or {}
        )

    def arm(self) -> bool:
        """
        进入就绪状态

        Returns:
            是否发生了状态转换（已就绪时返回 False）
        """
        with self._lock:
            changed = self._state != ReadinessState.ARMED
            self._state = ReadinessState.ARMED
            event = self._make_event(EventType.ARMED, self.ready_label)

        if changed:
            print("[STATE] Disarmed -> Armed", flush=True)
        self._emit_event(event)
        return changed

    def on_pose_result(self, pose: Optional[Pose]) -> Optional[CaptureIntent]:
        """
        处理一帧姿态结果

        Args:
            pose: 姿态估计结果，None 表示该帧无可用结果

        Returns:
            触发拍照时返回 CaptureIntent，否则返回 None
        """
        with self._lock:
            # 未就绪时直接丢弃，不做判定
            if self._state != ReadinessState.ARMED or pose is None:
                return None

            if not self._predicate(pose):
                if self.debug:
                    print(f"[DEBUG] 帧 {pose.frame_id}: 未检测到捂脸", flush=True)
                return None

            self._state = ReadinessState.DISARMED
            self._captures += 1
            intent = CaptureIntent(timestamp=time.time() * 1000, frame_id=pose.frame_id)
            event = self._make_event(
                EventType.DETECTED,
                self.not_ready_label,
                {"frame_id": pose.frame_id}
            )

        print(f"[STATE] 检测到捂脸 (帧 {pose.frame_id})，Armed -> Disarmed", flush=True)
        # 先通知界面，保存结果的通知总在 detected 之后
        self._emit_event(event)
        self._emit_capture(intent)
        return intent

    def on_estimation_failure(self, error: BaseException):
        """姿态估计失败：只通知界面，不改变就绪状态"""
        print(f"[ERROR] 姿态估计失败: {error}", flush=True)
        with self._lock:
            event = self._make_event(
                EventType.ESTIMATION_FAILED,
                self.failed_label,
                {"error": str(error)}
            )
        self._emit_event(event)

    def on_capture_result(self, result: CaptureResult):
        """拍照保存结果：只通知界面，不改变就绪状态"""
        with self._lock:
            if result.ok:
                event = self._make_event(EventType.SAVED, self.saved_label, {"path": result.path})
            else:
                event = self._make_event(EventType.SAVE_FAILED, self.save_failed_label, {"error": result.error})
        self._emit_event(event)

    def snapshot(self) -> Dict:
        """当前状态快照（用于客户端查询）"""
        with self._lock:
            return {
                "state": self._state.value,
                "label": self.ready_label if self._state == ReadinessState.ARMED else self.not_ready_label,
                "captures": self._captures
            }
