from __future__ import annotations

import io
import logging

import av

logger = logging.getLogger(__name__)


def probe_duration_seconds(audio: bytes) -> float:
    """Read the playback length of an encoded clip from its container metadata.

    Falls back to summing packet durations when the container header carries no
    total (common for raw mp3 streams without a Xing/VBRI frame).
    """
    if not audio:
        return 0.0

    container = av.open(io.BytesIO(audio), mode="r")
    try:
        if container.duration is not None and container.duration > 0:
            return float(container.duration) / av.time_base

        stream = container.streams.audio[0]
        if stream.duration is not None and stream.time_base is not None:
            return float(stream.duration * stream.time_base)

        total = 0.0
        for packet in container.demux(stream):
            if packet.duration is not None and packet.time_base is not None:
                total += float(packet.duration * packet.time_base)
        logger.debug("Duration from packets: seconds=%.3f", total)
        return total
    finally:
        container.close()
