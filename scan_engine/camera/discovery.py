"""Capture device discovery helpers."""

from __future__ import annotations

import glob
import logging
import sys
from pathlib import Path
from typing import List, Optional

import cv2


logger = logging.getLogger(__name__)


def discover_devices(max_devices: int = 10) -> List[tuple]:
    """
    List capture devices as ``(device_id, label)`` pairs.

    Linux reads /dev/video* nodes and their sysfs names; other platforms
    probe OpenCV indices until the first one that will not open.
    """
    if sys.platform == "linux":
        return _discover_linux(max_devices)
    return _discover_by_probing(max_devices)


def _discover_linux(max_devices: int) -> List[tuple]:
    devices: list[tuple] = []

    for index in _detect_from_dev_nodes()[:max_devices]:
        if not _is_capture_node(index):
            logger.debug("Skipping metadata node /dev/video%s", index)
            continue
        label = _read_sysfs_name(index) or f"Camera {index}"
        devices.append((str(index), label))

    logger.debug(f"Discovered {len(devices)} capture nodes")
    return devices


def _discover_by_probing(max_devices: int) -> List[tuple]:
    devices: list[tuple] = []

    for index in range(max_devices):
        cap = cv2.VideoCapture(index)
        try:
            if not cap.isOpened():
                break
            devices.append((str(index), f"Camera {index}"))
        finally:
            cap.release()

    logger.debug(f"Probed {len(devices)} capture indices")
    return devices


def _detect_from_dev_nodes() -> list[int]:
    """Gather numeric indices from /dev/video*."""
    indices: list[int] = []
    for path in sorted(glob.glob("/dev/video*")):
        try:
            indices.append(int(Path(path).name.replace("video", "")))
        except ValueError:
            continue
    return sorted(indices)


def _is_capture_node(index: int) -> bool:
    # UVC cameras expose a second node per device for metadata only
    caps = Path(f"/sys/class/video4linux/video{index}/index")
    try:
        if caps.exists():
            return caps.read_text(encoding="utf-8").strip() == "0"
    except OSError:
        return True
    return True


def _read_sysfs_name(index: int) -> Optional[str]:
    sys_name = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        if sys_name.exists():
            text = sys_name.read_text(encoding="utf-8").strip()
            return text or None
    except OSError:
        return None
    return None


def device_node(device_id: str) -> Optional[Path]:
    """Filesystem node backing a numeric device id, if the platform has one."""
    if sys.platform != "linux" or not device_id.isdigit():
        return None
    return Path(f"/dev/video{device_id}")
