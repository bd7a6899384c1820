"""ffmpeg/ffprobe adapter.

Converts large animated GIFs to H.264 MP4, extracts poster frames and reads
durations. Every public method degrades to None instead of raising: a
missing binary, a non-zero exit, a timeout or an oversize input all mean
"fall back", never "fail the job". Work happens in a private temporary
directory that is removed on every path.
"""

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ingest_shared.errors import TransientExternalError
from ledger import StorageLedger
from settings import MB

logger = logging.getLogger(__name__)

MIN_TRANSCODE_BYTES = 2 * MB
MAX_TRANSCODE_BYTES = 50 * MB
DEFAULT_TIMEOUT = 5 * 60
PROBE_TIMEOUT = 10
POSTER_MAX_DIMENSION = 500

VIDEO_FILTER = (
    "scale='min(1080,iw)':'min(1080,ih)':force_original_aspect_ratio=decrease,fps=15"
)
POSTER_FILTER = (
    f"scale='min({POSTER_MAX_DIMENSION},iw)':'min({POSTER_MAX_DIMENSION},ih)'"
    ":force_original_aspect_ratio=decrease"
)


class TranscodeError(TransientExternalError):
    pass


@dataclass(frozen=True)
class TranscodeResult:
    video_url: str
    poster_url: str
    duration_seconds: float


class Transcoder:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe"):
        self.timeout = timeout
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self._available: bool | None = None

    async def _exec(self, *args: str, timeout: float | None = None) -> str:
        """Run a command, return stdout. Kills the process on timeout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"{args[0]} not found in PATH") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TranscodeError(f"{args[0]} timed out after {timeout}s")

        if proc.returncode != 0:
            tail = stderr.decode(errors="ignore").strip()[-500:]
            raise TranscodeError(f"{args[0]} exited with {proc.returncode}: {tail}")
        return stdout.decode(errors="ignore")

    async def is_available(self) -> bool:
        """Probe ffmpeg and ffprobe once per instance."""
        if self._available is None:
            try:
                await self._exec(self.ffmpeg, "-version", timeout=PROBE_TIMEOUT)
                await self._exec(self.ffprobe, "-version", timeout=PROBE_TIMEOUT)
                self._available = True
            except TranscodeError as e:
                logger.warning(f"Transcoder unavailable, skipping video work: {e}")
                self._available = False
        return self._available

    async def _render_poster(self, source: Path, poster: Path):
        await self._exec(
            self.ffmpeg, "-y", "-i", str(source),
            "-vf", POSTER_FILTER, "-frames:v", "1", str(poster),
            timeout=self.timeout,
        )

    async def _probe_duration(self, path: Path) -> float | None:
        stdout = await self._exec(
            self.ffprobe, "-v", "error", "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1", str(path),
            timeout=PROBE_TIMEOUT,
        )
        try:
            return float(stdout.strip())
        except ValueError:
            return None

    async def transcode_animated(self, data: bytes, public_id: str, folder: str,
                                 ledger: StorageLedger) -> TranscodeResult | None:
        """Convert an animated GIF to MP4 and upload video + poster.

        Returns None when the input is outside [2 MB, 50 MB], the binaries
        are missing, or anything in the conversion fails.
        """
        size_mb = len(data) / MB
        if len(data) < MIN_TRANSCODE_BYTES:
            logger.info(f"GIF is {size_mb:.2f}MB, below transcode threshold")
            return None
        if len(data) > MAX_TRANSCODE_BYTES:
            logger.warning(f"GIF is {size_mb:.2f}MB, too large to transcode (max 50MB)")
            return None
        if not await self.is_available():
            return None

        logger.info(f"Transcoding {public_id} ({size_mb:.2f}MB) to video")
        try:
            with tempfile.TemporaryDirectory(prefix="media-ingest-") as tmp:
                gif_path = Path(tmp) / "input.gif"
                mp4_path = Path(tmp) / "output.mp4"
                poster_path = Path(tmp) / "poster.jpg"
                await asyncio.to_thread(gif_path.write_bytes, data)

                await self._exec(
                    self.ffmpeg, "-y", "-i", str(gif_path),
                    "-vf", VIDEO_FILTER,
                    "-c:v", "libx264", "-preset", "medium", "-crf", "23",
                    "-pix_fmt", "yuv420p", "-movflags", "+faststart",
                    str(mp4_path),
                    timeout=self.timeout,
                )

                poster_bytes = None
                try:
                    await self._render_poster(gif_path, poster_path)
                    poster_bytes = await asyncio.to_thread(poster_path.read_bytes)
                except (TranscodeError, OSError) as e:
                    logger.warning(f"Poster frame failed for {public_id}: {e}")

                try:
                    duration = await self._probe_duration(mp4_path) or 0.0
                except TranscodeError as e:
                    logger.warning(f"Duration probe failed for {public_id}: {e}")
                    duration = 0.0

                video_bytes = await asyncio.to_thread(mp4_path.read_bytes)
        except (TranscodeError, OSError) as e:
            logger.error(f"GIF to video conversion failed for {public_id}: {e}")
            return None

        try:
            video_url = await ledger.put(video_bytes, f"{folder}/{public_id}.mp4", "video/mp4")
        except TransientExternalError as e:
            logger.error(f"Uploading converted video for {public_id} failed: {e}")
            return None

        poster_url = video_url
        if poster_bytes:
            try:
                poster_url = await ledger.put(
                    poster_bytes, f"{folder}/{public_id}-thumb.jpg", "image/jpeg"
                )
            except TransientExternalError as e:
                logger.warning(f"Uploading poster for {public_id} failed: {e}")

        logger.info(f"Converted {public_id}: video={video_url}, poster={poster_url}, duration={duration}s")
        return TranscodeResult(video_url=video_url, poster_url=poster_url, duration_seconds=duration)

    async def extract_poster(self, data: bytes, suffix: str = ".mp4") -> bytes | None:
        """First-frame JPEG of a video, or None."""
        if not await self.is_available():
            return None
        try:
            with tempfile.TemporaryDirectory(prefix="media-ingest-") as tmp:
                video_path = Path(tmp) / f"input{suffix}"
                poster_path = Path(tmp) / "poster.jpg"
                await asyncio.to_thread(video_path.write_bytes, data)
                await self._render_poster(video_path, poster_path)
                return await asyncio.to_thread(poster_path.read_bytes)
        except (TranscodeError, OSError) as e:
            logger.warning(f"Failed to generate video poster: {e}")
            return None

    async def probe_duration(self, data: bytes, suffix: str = ".mp4") -> float | None:
        """Duration of a video in seconds, or None."""
        if not await self.is_available():
            return None
        try:
            with tempfile.TemporaryDirectory(prefix="media-ingest-") as tmp:
                video_path = Path(tmp) / f"input{suffix}"
                await asyncio.to_thread(video_path.write_bytes, data)
                return await self._probe_duration(video_path)
        except (TranscodeError, OSError) as e:
            logger.warning(f"Failed to get video duration: {e}")
            return None
