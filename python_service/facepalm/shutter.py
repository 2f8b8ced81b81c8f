"""
拍照保存模块
接收拍照意图，将当前画面保存为 JPEG 文件
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .state_machine import CaptureIntent, CaptureResult


class PhotoSaver:
    """
    照片保存器
    文件名由拍照意图的时间戳生成：yyyy-MM-dd-HH-mm-ss-SSS.jpg
    """

    def __init__(
        self,
        output_dir: str = "captures",
        fallback_dir: Optional[str] = None,
        filename_format: str = "%Y-%m-%d-%H-%M-%S",
        jpeg_quality: int = 95
    ):
        self.filename_format = filename_format
        self.jpeg_quality = jpeg_quality
        self.output_dir = self._resolve_output_dir(output_dir, fallback_dir)

    def _resolve_output_dir(self, output_dir: str, fallback_dir: Optional[str]) -> Path:
        """创建输出目录，失败时使用备用目录"""
        candidates = [output_dir] + ([fallback_dir] if fallback_dir else [])
        for candidate in candidates:
            path = Path(candidate).expanduser()
            try:
                path.mkdir(parents=True, exist_ok=True)
                return path
            except OSError as e:
                print(f"[WARN] 无法创建输出目录 {path}: {e}")
        raise RuntimeError(f"无可用的输出目录: {candidates}")

    def filename_for(self, intent: CaptureIntent) -> str:
        """根据时间戳生成文件名（毫秒精度）"""
        millis = int(round(intent.timestamp))
        moment = datetime.fromtimestamp(millis // 1000)
        return f"{moment.strftime(self.filename_format)}-{millis % 1000:03d}.jpg"

    def save(self, intent: CaptureIntent, image: Optional[np.ndarray]) -> CaptureResult:
        """
        保存照片

        Args:
            intent: 拍照意图
            image: BGR 图像，None 表示当前没有可用画面

        Returns:
            CaptureResult 保存结果
        """
        if image is None:
            return CaptureResult(intent=intent, ok=False, error="没有可用的画面")

        path = self.output_dir / self.filename_for(intent)
        try:
            ok = cv2.imwrite(str(path), image, [cv2.IMWRITE_JPEG_QUALITY, int(self.jpeg_quality)])
        except cv2.error as e:
            return CaptureResult(intent=intent, ok=False, path=str(path), error=str(e))

        if not ok:
            return CaptureResult(intent=intent, ok=False, path=str(path), error="写入 JPEG 失败")

        print(f"[INFO] 照片已保存: {path}", flush=True)
        return CaptureResult(intent=intent, ok=True, path=str(path))
