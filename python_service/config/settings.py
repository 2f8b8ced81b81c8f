"""
Facepalm Camera 配置文件
包含摄像头、姿态估计、采样、拍照保存、界面文案和服务器配置
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class CameraConfig:
    """摄像头配置"""

    device_id: int = 0               # 摄像头设备ID
    width: int = 640                 # 分辨率宽度
    height: int = 480                # 分辨率高度
    fps: int = 30                    # 帧率
    mirror: bool = True              # 是否镜像（自拍模式）
    rotation: int = 0                # 画面到显示方向的旋转角度（0/90/180/270）


@dataclass
class EstimatorConfig:
    """姿态估计配置（MediaPipe Pose）"""

    model_complexity: int = 1                # 模型复杂度 (0=lite, 1=full, 2=heavy)
    min_detection_confidence: float = 0.5    # 检测置信度阈值
    min_tracking_confidence: float = 0.5     # 追踪置信度阈值
    min_visibility: float = 0.5              # 低于此可见度的关键点视为缺失


@dataclass
class SamplerConfig:
    """帧采样配置"""

    # 队列只用于拉取模式（调试预览），推送模式下始终只保留一个在途帧
    pull_timeout: float = 0.1        # 拉取超时（秒）


@dataclass
class CaptureConfig:
    """拍照保存配置"""

    output_dir: str = str(Path("captures"))
    fallback_dir: str = str(Path.home() / ".facepalm_camera")
    filename_format: str = "%Y-%m-%d-%H-%M-%S"   # 毫秒部分另行追加
    jpeg_quality: int = 95


@dataclass
class LabelConfig:
    """界面状态文案"""

    ready: str = "Ready"
    not_ready: str = "Not ready"
    failed: str = "Failed processing"
    saved: str = "Saved. Not ready."
    save_failed: str = "Save failed"


@dataclass
class ServerConfig:
    """WebSocket 服务器配置"""

    host: str = "127.0.0.1"
    port: int = 8765
    mjpeg_port: int = 8766

    stats_interval: int = 5000       # 统计信息打印间隔（毫秒）


@dataclass
class Config:
    """主配置类，整合所有配置"""

    camera: CameraConfig = field(default_factory=CameraConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    labels: LabelConfig = field(default_factory=LabelConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # 调试选项
    debug: bool = False              # 打印逐帧调试信息
    show_preview: bool = True        # 显示调试预览窗口


# 创建默认配置实例
default_config = Config()
