"""
WebSocket 服务模块
向前端推送就绪状态变化，接收"就绪"指令，并提供带姿态骨骼的 MJPEG 预览流
"""

import asyncio
import json
import time
import threading
import socketserver
from typing import Set, Optional, Dict, Any
from dataclasses import dataclass, asdict
from http.server import HTTPServer, BaseHTTPRequestHandler

import cv2
import numpy as np
import websockets
from websockets.asyncio.server import serve, ServerConnection

from facepalm.capture import CameraCapture
from facepalm.detector import PoseEstimator
from facepalm.frame import rotate_to_view
from facepalm.pipeline import FacepalmPipeline
from facepalm.state_machine import StateEvent
from config.settings import Config, default_config


# Global reference for MJPEG stream
_current_frame: Optional[np.ndarray] = None
_frame_lock = threading.Lock()


def set_current_frame(frame: np.ndarray):
    """Set current frame for MJPEG streaming"""
    global _current_frame
    with _frame_lock:
        _current_frame = frame.copy()


def get_current_frame() -> Optional[np.ndarray]:
    """Get current frame for MJPEG streaming"""
    with _frame_lock:
        return _current_frame.copy() if _current_frame is not None else None


class ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Multi-threaded HTTP server to handle multiple clients"""
    daemon_threads = True
    allow_reuse_address = True


class MJPEGHandler(BaseHTTPRequestHandler):
    """MJPEG stream HTTP handler"""

    def log_message(self, format, *args):
        # Suppress default logging
        pass

    def do_GET(self):
        if self.path != '/stream':
            self.send_response(404)
            self.end_headers()
            return

        self.send_response(200)
        self.send_header('Content-Type', 'multipart/x-mixed-replace; boundary=frame')
        self.send_header('Cache-Control', 'no-cache')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()

        try:
            while True:
                frame = get_current_frame()
                if frame is not None:
                    ret, jpeg = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, 70])
                    if ret:
                        self.wfile.write(b'--frame\r\n')
                        self.wfile.write(b'Content-Type: image/jpeg\r\n\r\n')
                        self.wfile.write(jpeg.tobytes())
                        self.wfile.write(b'\r\n')
                        self.wfile.flush()
                time.sleep(0.033)  # ~30 FPS
        except (BrokenPipeError, ConnectionResetError):
            pass


def run_mjpeg_server(host: str, port: int):
    """Run MJPEG HTTP server in a separate thread"""
    server = ThreadingHTTPServer((host, port), MJPEGHandler)
    print(f"[MJPEG] Stream available at http://{host}:{port}/stream")
    server.serve_forever()


@dataclass
class WebSocketMessage:
    """WebSocket 消息结构"""
    type: str
    timestamp: float
    data: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = json.loads(json_str)
        return cls(**data)


class FacepalmServer:
    """
    Facepalm Camera WebSocket 服务器
    整合摄像头采集、姿态估计、捂脸判定和拍照保存
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or default_config

        self.camera: Optional[CameraCapture] = None
        self.estimator: Optional[PoseEstimator] = None
        self.pipeline: Optional[FacepalmPipeline] = None

        # WebSocket 连接
        self._clients: Set[ServerConnection] = set()

        # 运行状态
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._start_time = 0.0

    async def start(self):
        """启动服务"""
        print("[SERVER] 正在初始化组件...")
        self._loop = asyncio.get_running_loop()

        self.camera = CameraCapture(
            device_id=self.config.camera.device_id,
            width=self.config.camera.width,
            height=self.config.camera.height,
            fps=self.config.camera.fps,
            mirror=self.config.camera.mirror,
            rotation=self.config.camera.rotation
        )

        self.estimator = PoseEstimator(
            model_complexity=self.config.estimator.model_complexity,
            min_detection_confidence=self.config.estimator.min_detection_confidence,
            min_tracking_confidence=self.config.estimator.min_tracking_confidence,
            min_visibility=self.config.estimator.min_visibility
        )

        self.pipeline = FacepalmPipeline.from_config(
            self.config,
            self.estimator.estimate,
            snapshot=self.camera.latest
        )
        self.pipeline.sampler.bind_loop(self._loop)

        # 注册状态事件回调
        self.pipeline.state_machine.register_callback(self._on_state_event)

        # 摄像头线程直接推送给采样器
        self.camera.set_frame_listener(self.pipeline.offer)
        if not self.camera.start():
            raise RuntimeError("无法启动摄像头")

        self._running = True
        self._start_time = time.time()

        print("[SERVER] 组件初始化完成")

    async def stop(self):
        """停止服务"""
        print("[SERVER] 正在停止服务...")

        self._running = False

        # 关闭连接
        for client in self._clients.copy():
            await client.close()

        # 释放资源
        if self.camera:
            self.camera.stop()
            self.camera.set_frame_listener(None)

        if self.pipeline:
            await self.pipeline.sampler.drain()
            await self.pipeline.wait_saves()

        if self.estimator:
            self.estimator.close()

        print("[SERVER] 服务已停止")

    def _on_state_event(self, event: StateEvent):
        """状态事件回调（可能来自保存线程）"""
        message = WebSocketMessage(
            type="state_event",
            timestamp=event.timestamp,
            data=event.to_dict()
        )
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(
            lambda: asyncio.ensure_future(self._broadcast(message.to_json()))
        )

    async def _broadcast(self, message: str):
        """广播消息到所有客户端"""
        if not self._clients:
            return

        # 并发发送
        await asyncio.gather(
            *[client.send(message) for client in self._clients.copy()],
            return_exceptions=True
        )

    async def _preview_loop(self):
        """更新 MJPEG 预览画面（叠加姿态骨骼和状态文案）"""
        while self._running:
            image = self.camera.latest() if self.camera else None
            if image is not None:
                image = rotate_to_view(image, self.config.camera.rotation)
                output = self.estimator.draw_landmarks(image, self.pipeline.last_pose)
                label = self.pipeline.state_machine.snapshot()["label"]
                color = (0, 255, 0) if self.pipeline.state_machine.is_armed else (200, 200, 200)
                cv2.putText(output, label, (10, 30),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
                set_current_frame(output)
            await asyncio.sleep(0.033)

    async def handle_client(self, websocket: ServerConnection):
        """处理客户端连接"""
        client_id = id(websocket)
        print(f"[SERVER] 客户端已连接: {client_id}")

        self._clients.add(websocket)

        # 发送欢迎消息
        welcome = WebSocketMessage(
            type="connected",
            timestamp=time.time() * 1000,
            data={
                "message": "Welcome to Facepalm Camera",
                "version": "0.1.0",
                "state": self.pipeline.state_machine.snapshot() if self.pipeline else None
            }
        )
        await websocket.send(welcome.to_json())

        try:
            async for message in websocket:
                await self._handle_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            print(f"[SERVER] 客户端已断开: {client_id}")

    async def _handle_message(self, websocket, message: str):
        """处理客户端消息"""
        try:
            data = json.loads(message)
            msg_type = data.get("type")

            if msg_type == "ping":
                # 心跳响应
                pong = WebSocketMessage(
                    type="pong",
                    timestamp=time.time() * 1000,
                    data={}
                )
                await websocket.send(pong.to_json())

            elif msg_type == "arm":
                # 用户点击"就绪"
                self.pipeline.state_machine.arm()

            elif msg_type == "get_state":
                reply = WebSocketMessage(
                    type="state",
                    timestamp=time.time() * 1000,
                    data={
                        **self.pipeline.state_machine.snapshot(),
                        "sampler": self.pipeline.sampler.stats.to_dict()
                    }
                )
                await websocket.send(reply.to_json())

            else:
                print(f"[WARN] 未知消息类型: {msg_type}")

        except json.JSONDecodeError:
            print(f"[WARN] 无效的 JSON 消息: {message}")
        except Exception as e:
            print(f"[ERROR] 处理消息异常: {e}")

    def _resolve_address(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        mjpeg_port: Optional[int] = None
    ):
        """未指定的监听地址取自配置"""
        server_config = self.config.server
        return (
            server_config.host if host is None else host,
            server_config.port if port is None else port,
            server_config.mjpeg_port if mjpeg_port is None else mjpeg_port
        )

    async def run(self, host: Optional[str] = None, port: Optional[int] = None, mjpeg_port: Optional[int] = None):
        """运行服务器，参数为 None 时使用 config.server 中的设置"""
        host, port, mjpeg_port = self._resolve_address(host, port, mjpeg_port)
        await self.start()

        # 启动 MJPEG 流服务器（在单独线程中）
        mjpeg_thread = threading.Thread(
            target=run_mjpeg_server,
            args=(host, mjpeg_port),
            daemon=True
        )
        mjpeg_thread.start()

        preview_task = asyncio.create_task(self._preview_loop())

        print(f"[SERVER] WebSocket 服务器启动: ws://{host}:{port}")

        interval = self.config.server.stats_interval / 1000
        try:
            async with serve(self.handle_client, host, port):
                while self._running:
                    await asyncio.sleep(interval)

                    # 打印并广播统计信息
                    stats = self.pipeline.sampler.stats
                    print(f"[STATS] 帧数: {stats.received}, 估计: {stats.dispatched}, "
                          f"丢弃: {stats.dropped}, 失败: {stats.failed}, "
                          f"摄像头 FPS: {self.camera.actual_fps:.1f}, 客户端: {len(self._clients)}")
                    await self._broadcast(WebSocketMessage(
                        type="stats",
                        timestamp=time.time() * 1000,
                        data=stats.to_dict()
                    ).to_json())
        finally:
            preview_task.cancel()
            try:
                await preview_task
            except asyncio.CancelledError:
                pass


async def main():
    """主函数"""
    server = FacepalmServer()

    try:
        await server.run()
    except KeyboardInterrupt:
        print("\n[SERVER] 收到中断信号")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
