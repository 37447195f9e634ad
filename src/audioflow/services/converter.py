"""FFmpeg-based MP3 converter.

Runs ffmpeg as an asyncio subprocess with machine-readable progress on
stdout (-progress pipe:1). Output is written to a temp file next to the
destination and moved into place only after it validates, so a failed or
cancelled conversion never leaves a partial MP3 behind.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from audioflow.config.models import ConverterConfig
from audioflow.exceptions import ConversionError
from audioflow.services.interfaces import ProgressCallback

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".audioflow_temp_"
STDERR_TAIL_LINES = 20


def parse_progress_line(line: str) -> int | None:
    """Extract the output time in microseconds from a -progress line.

    ffmpeg reports out_time_us (and the historically misnamed out_time_ms,
    which is also in microseconds).

    Returns:
        Microseconds, or None if the line carries no usable time.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def validate_output(output_path: Path) -> str | None:
    """Check that ffmpeg produced a non-empty file.

    Returns:
        Error message if invalid, None if OK.
    """
    if not output_path.exists():
        return f"Output file does not exist: {output_path}"
    try:
        size = output_path.stat().st_size
    except OSError as e:
        return f"Could not stat output file: {e}"
    if size == 0:
        return f"Output file is empty: {output_path}"
    return None


def cleanup_temp_file(path: Path) -> None:
    """Remove a temporary file, logging any errors."""
    if path.exists():
        try:
            path.unlink()
            logger.debug("Cleaned up temp file: %s", path)
        except OSError as e:
            logger.warning("Could not clean up temp file %s: %s", path, e)


class FFmpegConverter:
    """Converts recordings to MP3 with ffmpeg (libmp3lame)."""

    def __init__(self, config: ConverterConfig | None = None) -> None:
        """Initialize the converter.

        Args:
            config: Converter settings. Defaults to ConverterConfig().
        """
        self._config = config or ConverterConfig()
        self.input_extensions = frozenset(self._config.input_extensions)
        self._ffmpeg: Path | None = None
        self._ffprobe: Path | None = None

    def _resolve(self, configured: Path | None, name: str) -> Path:
        if configured is not None:
            return configured
        found = shutil.which(name)
        if found is None:
            raise ConversionError(f"Required tool not available: {name}")
        return Path(found)

    @property
    def ffmpeg_path(self) -> Path:
        """Path to ffmpeg, resolved from config or PATH on first use."""
        if self._ffmpeg is None:
            self._ffmpeg = self._resolve(self._config.ffmpeg_path, "ffmpeg")
        return self._ffmpeg

    @property
    def ffprobe_path(self) -> Path:
        """Path to ffprobe, resolved from config or PATH on first use."""
        if self._ffprobe is None:
            self._ffprobe = self._resolve(self._config.ffprobe_path, "ffprobe")
        return self._ffprobe

    def build_command(self, source: Path, destination: Path) -> list[str]:
        """Build the ffmpeg command line for one conversion."""
        return [
            str(self.ffmpeg_path),
            "-hide_banner",
            "-nostats",
            "-y",
            "-i",
            str(source),
            "-vn",
            "-codec:a",
            "libmp3lame",
            "-b:a",
            self._config.bitrate,
            "-ar",
            str(self._config.sample_rate),
            "-ac",
            str(self._config.channels),
            "-af",
            f"volume={self._config.volume}",
            "-progress",
            "pipe:1",
            str(destination),
        ]

    async def probe_duration(self, source: Path) -> float | None:
        """Return the source duration in seconds, or None if unknown.

        A missing duration only disables progress reporting; it is not an
        error.
        """
        try:
            process = await asyncio.create_subprocess_exec(  # nosec B603
                str(self.ffprobe_path),
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(source),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (OSError, ConversionError) as e:
            logger.debug("ffprobe unavailable for %s: %s", source, e)
            return None

        stdout, _ = await process.communicate()
        if process.returncode != 0:
            return None
        try:
            duration = float(stdout.decode().strip())
        except ValueError:
            return None
        return duration if duration > 0 else None

    async def convert(
        self,
        source: Path,
        destination: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Convert source into an MP3 at destination.

        Args:
            source: Recording to convert.
            destination: Path of the MP3 to write.
            on_progress: Optional callback receiving a 0.0-1.0 fraction.

        Returns:
            The destination path.

        Raises:
            ConversionError: If ffmpeg is missing, exits non-zero or produces
                no output.
        """
        if not source.exists():
            raise ConversionError(f"Source file does not exist: {source}")

        duration = await self.probe_duration(source) if on_progress else None
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(f"{TEMP_PREFIX}{destination.name}")
        cmd = self.build_command(source, temp_path)
        logger.debug("Running ffmpeg: %s", " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(  # nosec B603
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConversionError(f"Cannot start ffmpeg: {e}") from e

        try:
            stderr_task = asyncio.create_task(self._read_stderr(process))
            assert process.stdout is not None
            async for raw in process.stdout:
                out_time_us = parse_progress_line(raw.decode(errors="replace"))
                if out_time_us is not None and duration and on_progress:
                    on_progress(min(1.0, out_time_us / 1_000_000 / duration))
            stderr_lines = await stderr_task
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            cleanup_temp_file(temp_path)
            raise

        if returncode != 0:
            cleanup_temp_file(temp_path)
            tail = "\n".join(stderr_lines[-STDERR_TAIL_LINES:])
            raise ConversionError(
                f"ffmpeg failed for {source.name} (exit {returncode}): {tail}"
            )

        error = validate_output(temp_path)
        if error is not None:
            cleanup_temp_file(temp_path)
            raise ConversionError(error)

        temp_path.replace(destination)
        if on_progress:
            on_progress(1.0)
        logger.info("Converted %s to %s", source.name, destination.name)
        return destination

    @staticmethod
    async def _read_stderr(process: asyncio.subprocess.Process) -> list[str]:
        assert process.stderr is not None
        lines = []
        async for raw in process.stderr:
            line = raw.decode(errors="replace").rstrip()
            if line:
                lines.append(line)
        return lines
