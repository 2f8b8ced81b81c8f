from datetime import datetime

import numpy as np

from facepalm.shutter import PhotoSaver
from facepalm.state_machine import CaptureIntent


def _intent_at(moment: datetime, millis: int) -> CaptureIntent:
    return CaptureIntent(timestamp=int(moment.timestamp()) * 1000 + millis)


def test_filename_from_timestamp(tmp_path):
    saver = PhotoSaver(output_dir=str(tmp_path))
    intent = _intent_at(datetime(2024, 1, 2, 3, 4, 5), 7)
    assert saver.filename_for(intent) == "2024-01-02-03-04-05-007.jpg"


def test_save_writes_jpeg(tmp_path):
    saver = PhotoSaver(output_dir=str(tmp_path / "photos"))
    image = np.full((16, 16, 3), 200, dtype=np.uint8)

    result = saver.save(_intent_at(datetime(2024, 5, 6, 7, 8, 9), 123), image)

    assert result.ok
    assert result.error is None
    saved = tmp_path / "photos" / "2024-05-06-07-08-09-123.jpg"
    assert result.path == str(saved)
    assert saved.read_bytes()[:2] == b"\xff\xd8"


def test_save_without_image_fails(tmp_path):
    saver = PhotoSaver(output_dir=str(tmp_path))
    result = saver.save(CaptureIntent(timestamp=0), None)
    assert not result.ok
    assert result.error
    assert list(tmp_path.iterdir()) == []


def test_falls_back_when_output_dir_unusable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    fallback = tmp_path / "fallback"

    saver = PhotoSaver(output_dir=str(blocker / "photos"), fallback_dir=str(fallback))

    assert saver.output_dir == fallback
    assert fallback.is_dir()
