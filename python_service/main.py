#!/usr/bin/env python3
"""
Facepalm Camera - 捂脸自动拍照
主入口文件

用法:
    python main.py              # 启动 WebSocket 服务器
    python main.py --debug      # 启动调试预览窗口
    python main.py --test       # 运行自检
"""

import argparse
import asyncio

import cv2

from config.settings import Config


async def _debug_loop(config: Config):
    from facepalm.capture import CameraCapture
    from facepalm.detector import PoseEstimator
    from facepalm.frame import rotate_to_view
    from facepalm.gesture import missing_landmarks
    from facepalm.pipeline import FacepalmPipeline
    from facepalm.state_machine import StateEvent

    camera = CameraCapture(
        device_id=config.camera.device_id,
        width=config.camera.width,
        height=config.camera.height,
        fps=config.camera.fps,
        mirror=config.camera.mirror,
        rotation=config.camera.rotation
    )
    estimator = PoseEstimator(
        model_complexity=config.estimator.model_complexity,
        min_detection_confidence=config.estimator.min_detection_confidence,
        min_tracking_confidence=config.estimator.min_tracking_confidence,
        min_visibility=config.estimator.min_visibility
    )
    pipeline = FacepalmPipeline.from_config(config, estimator.estimate, snapshot=camera.latest)
    state_machine = pipeline.state_machine

    label = {"text": state_machine.not_ready_label}

    def on_state_event(event: StateEvent):
        print(f"[EVENT] {event.event_type}: {event.label} {event.meta or ''}")
        label["text"] = event.label

    state_machine.register_callback(on_state_event)

    if not camera.start():
        print("[ERROR] 无法启动摄像头")
        estimator.close()
        return

    loop = asyncio.get_running_loop()
    pipeline.sampler.bind_loop(loop)

    try:
        while camera.is_running:
            raw = await loop.run_in_executor(None, camera.read, config.sampler.pull_timeout)
            if raw is None:
                continue

            pipeline.offer(raw)

            # 绘制骨骼
            output = estimator.draw_landmarks(
                rotate_to_view(raw.image, raw.rotation),
                pipeline.last_pose
            )

            stats = pipeline.sampler.stats
            missing = missing_landmarks(pipeline.last_pose)
            info_lines = [
                f"FPS: {camera.actual_fps:.1f}",
                f"Estimated: {stats.dispatched} | Dropped: {stats.dropped}",
                f"Missing: {', '.join(missing) if missing else '-'}",
                f"State: {label['text']}"
            ]

            y_offset = 30
            for line in info_lines:
                color = (0, 255, 0) if state_machine.is_armed and line.startswith("State") else (255, 255, 255)
                cv2.putText(output, line, (10, y_offset),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)
                y_offset += 25

            # 显示控制提示
            cv2.putText(output, "Press 'r' when ready | 'q' to quit",
                        (10, output.shape[0] - 10),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)

            if config.show_preview:
                cv2.imshow("Facepalm Camera Debug", output)

            # 键盘控制
            key = cv2.waitKey(1) & 0xFF
            if key == ord('q'):
                break
            elif key == ord('r'):
                state_machine.arm()

            await asyncio.sleep(0)

    finally:
        camera.stop()
        await pipeline.sampler.drain()
        await pipeline.wait_saves()
        estimator.close()
        cv2.destroyAllWindows()
        print("[DEBUG] 调试模式结束")


def run_debug_mode(config: Config):
    """
    调试模式：显示预览窗口，不启动 WebSocket 服务器
    按 'r' 进入就绪状态，捂脸即拍照
    """
    print("=" * 50)
    print("Facepalm Camera 调试模式")
    print("=" * 50)
    print("按 'r' 就绪")
    print("按 'q' 退出")
    print("=" * 50)

    asyncio.run(_debug_loop(config))


def run_server_mode(config: Config):
    """
    服务器模式：启动 WebSocket 服务器
    """
    from server import FacepalmServer

    print("=" * 50)
    print("Facepalm Camera 服务器模式")
    print("=" * 50)

    server = FacepalmServer(config)

    async def _run():
        try:
            await server.run()
        finally:
            await server.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print("\n[SERVER] 收到中断信号")


def run_test_mode(config: Config):
    """
    测试模式：检查摄像头、姿态估计和判定逻辑是否可用
    """
    print("=" * 50)
    print("Facepalm Camera 测试模式")
    print("=" * 50)

    # 测试摄像头
    print("\n[TEST] 测试摄像头模块...")
    from facepalm.capture import CameraCapture

    camera = CameraCapture(device_id=config.camera.device_id)
    if camera.start():
        raw = camera.read(timeout=2.0)
        if raw is not None:
            print(f"  ✓ 摄像头正常: {raw.image.shape[1]}x{raw.image.shape[0]}")
        else:
            print("  ✗ 无法读取帧")
        camera.stop()
    else:
        print("  ✗ 无法启动摄像头")

    # 测试姿态估计
    print("\n[TEST] 测试姿态估计模块...")
    import numpy as np
    from facepalm.detector import PoseEstimator
    from facepalm.frame import ImageHandle, normalize_frame

    try:
        with PoseEstimator() as estimator:
            frame = normalize_frame(ImageHandle(np.zeros((480, 640, 3), dtype=np.uint8)))
            pose = estimator.detect(frame)
            print(f"  ✓ 姿态估计正常: inference_time={pose.inference_time_ms:.1f}ms")
    except RuntimeError as e:
        print(f"  ✗ 姿态估计不可用: {e}")

    # 测试判定
    print("\n[TEST] 测试捂脸判定...")
    from facepalm.gesture import is_facepalm
    from facepalm.pose import Pose

    pose = Pose.from_points({
        "LEFT_EAR": (100, 100), "RIGHT_EAR": (200, 100),
        "RIGHT_SHOULDER": (150, 300), "RIGHT_WRIST": (150, 350)
    })
    print(f"  {'✓' if is_facepalm(pose) else '✗'} 捂脸判定正常")

    # 测试状态机
    print("\n[TEST] 测试状态机模块...")
    from facepalm.state_machine import GestureStateMachine

    sm = GestureStateMachine()
    sm.arm()
    intent = sm.on_pose_result(pose)
    print(f"  {'✓' if intent is not None and not sm.is_armed else '✗'} 状态机正常")

    print("\n" + "=" * 50)
    print("所有测试完成!")
    print("=" * 50)


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description="Facepalm Camera - 捂脸自动拍照",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
    python main.py                  启动 WebSocket 服务器
    python main.py --debug          启动调试预览窗口
    python main.py --test           运行自检
    python main.py --port 9000      指定端口号
    python main.py -o ~/Pictures    指定照片保存目录
        """
    )

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="启动调试模式（预览窗口）"
    )

    parser.add_argument(
        "--test", "-t",
        action="store_true",
        help="运行测试模式"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="服务器主机地址 (默认: 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8765,
        help="服务器端口 (默认: 8765)"
    )

    parser.add_argument(
        "--mjpeg-port",
        type=int,
        default=8766,
        help="MJPEG 预览流端口 (默认: 8766)"
    )

    parser.add_argument(
        "--camera", "-c",
        type=int,
        default=0,
        help="摄像头设备 ID (默认: 0)"
    )

    parser.add_argument(
        "--rotation", "-r",
        type=int,
        choices=[0, 90, 180, 270],
        default=0,
        help="画面旋转角度 (默认: 0)"
    )

    parser.add_argument(
        "--no-mirror",
        action="store_true",
        help="关闭镜像"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="照片保存目录 (默认: ./captures)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="打印逐帧调试信息"
    )

    args = parser.parse_args()

    # 创建配置
    config = Config()
    config.server.host = args.host
    config.server.port = args.port
    config.server.mjpeg_port = args.mjpeg_port
    config.camera.device_id = args.camera
    config.camera.rotation = args.rotation
    config.camera.mirror = not args.no_mirror
    config.debug = args.verbose
    if args.output:
        config.capture.output_dir = args.output

    # 根据参数选择模式
    if args.test:
        run_test_mode(config)
    elif args.debug:
        run_debug_mode(config)
    else:
        run_server_mode(config)


if __name__ == "__main__":
    main()
