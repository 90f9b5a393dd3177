"""Hardware encoder selection for the transcoder."""

import os
import sys
from collections.abc import Callable
from enum import Enum

from loguru import logger

NVIDIA_DEVICE = "/dev/nvidia0"
DRI_RENDER_DEVICE = "/dev/dri/renderD128"


class HwAccelProfile(str, Enum):
    NVENC = "nvenc"
    VAAPI = "vaapi"
    QSV = "qsv"
    SOFTWARE = "software"

    def __str__(self) -> str:
        return self.value

    @property
    def video_encoder(self) -> str:
        return _VIDEO_ENCODERS[self]


_VIDEO_ENCODERS = {
    HwAccelProfile.NVENC: "h264_nvenc",
    HwAccelProfile.VAAPI: "h264_vaapi",
    HwAccelProfile.QSV: "h264_qsv",
    HwAccelProfile.SOFTWARE: "libx264",
}


def probe_hwaccel(
    platform_name: str | None = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> HwAccelProfile:
    """Pick an encoder profile from GPU device nodes and platform identity.

    Linux prefers NVENC, then VAAPI; Windows uses Quick Sync; everything else
    encodes in software.
    """
    platform_name = platform_name or sys.platform

    if platform_name.startswith("linux"):
        if exists(NVIDIA_DEVICE):
            return HwAccelProfile.NVENC
        if exists(DRI_RENDER_DEVICE):
            return HwAccelProfile.VAAPI
    elif platform_name in ("win32", "cygwin"):
        return HwAccelProfile.QSV

    return HwAccelProfile.SOFTWARE


def resolve_hwaccel(setting: str, probe: Callable[[], HwAccelProfile] = probe_hwaccel) -> HwAccelProfile:
    """Resolve the TRANSCODER_HWACCEL setting, probing when it is `auto`."""
    if setting == "auto":
        profile = probe()
        logger.debug("Probed hardware acceleration profile: {}", profile)
        return profile

    try:
        return HwAccelProfile(setting)
    except ValueError:
        logger.warning("Unknown TRANSCODER_HWACCEL value '{}', falling back to software", setting)
        return HwAccelProfile.SOFTWARE
