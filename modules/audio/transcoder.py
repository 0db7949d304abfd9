from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import threading
from pathlib import Path

from modules.core.errors import ConversionError

logger = logging.getLogger(__name__)


class FfmpegTranscoder:
    """Convert a recorded clip of any container/codec into small mono audio.

    Each call runs ffmpeg once; there is no retry. At most
    ``max_concurrency`` conversions run at the same time.
    """

    def __init__(
        self,
        ffmpeg_path: str = "",
        sample_rate: int = 16000,
        channels: int = 1,
        bitrate: str = "96k",
        max_concurrency: int = 2,
        timeout_s: float = 60.0,
    ):
        self.ffmpeg_path = (ffmpeg_path or "").strip()
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.bitrate = bitrate
        self.timeout_s = float(timeout_s)
        self._slots = threading.BoundedSemaphore(max(1, int(max_concurrency)))

    def _resolve_ffmpeg_bin(self) -> str | None:
        explicit = self.ffmpeg_path.strip('"').strip("'")
        if explicit and Path(explicit).exists():
            return explicit
        return shutil.which("ffmpeg") or shutil.which("ffmpeg.exe")

    def build_command(self, ffmpeg_bin: str, input_path: Path, output_path: Path) -> list[str]:
        return [
            ffmpeg_bin,
            "-y",
            "-i",
            str(input_path),
            "-vn",
            "-ar",
            str(self.sample_rate),
            "-ac",
            str(self.channels),
            "-b:a",
            self.bitrate,
            "-loglevel",
            "error",
            str(output_path),
        ]

    def _run(self, input_path: Path, output_path: Path) -> Path:
        ffmpeg_bin = self._resolve_ffmpeg_bin()
        if not ffmpeg_bin:
            raise ConversionError("ffmpeg not found in PATH")
        if not input_path.exists():
            raise ConversionError(f"input clip missing: {input_path}")

        cmd = self.build_command(ffmpeg_bin, input_path, output_path)
        with self._slots:
            try:
                proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)
            except subprocess.TimeoutExpired as exc:
                raise ConversionError(f"ffmpeg timed out after {self.timeout_s:.0f}s") from exc
            except OSError as exc:
                raise ConversionError(f"ffmpeg could not start: {exc}") from exc

        stderr_text = (proc.stderr or "").strip()
        if proc.returncode != 0:
            logger.warning(
                "ffmpeg failed(returncode=%s): input=%s stderr=%s",
                proc.returncode,
                input_path,
                stderr_text[:1000],
            )
            raise ConversionError(
                f"ffmpeg exited with {proc.returncode}",
                returncode=proc.returncode,
                stderr=stderr_text[:4000],
            )
        if not output_path.exists() or output_path.stat().st_size <= 0:
            raise ConversionError(f"ffmpeg produced empty output: {output_path}", returncode=0, stderr=stderr_text)
        return output_path

    async def transcode(self, input_path: str | Path, output_path: str | Path) -> Path:
        src = Path(input_path)
        dst = Path(output_path)
        logger.info("Transcode start: input=%s bytes=%s output=%s", src, src.stat().st_size if src.exists() else 0, dst)
        result = await asyncio.to_thread(self._run, src, dst)
        logger.info("Transcode done: output=%s bytes=%s", result, result.stat().st_size)
        return result
