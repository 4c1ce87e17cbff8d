"""Download execution through aria2c (and ffmpeg for segmented streams)."""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .context import RunContext
from .errors import RequestFailed
from .http import HttpClient

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class DownloadPlan:
    fast_url: str
    slow_url: str
    title: str
    source_url: str
    video_id: str = ""
    hls_url: Optional[str] = None

    def url_for_attempt(self, attempt: int, fast_attempts: int = 2) -> str:
        """The CDN gets the first ``fast_attempts`` tries, the legacy URL the rest."""
        return self.fast_url if attempt < fast_attempts else self.slow_url


class Downloader:
    def __init__(self, ctx: RunContext, http: HttpClient, runner: Runner = subprocess.run) -> None:
        self.ctx = ctx
        self.http = http
        self.settings = ctx.settings
        self.runner = runner

    def _aria2c(self, *args: str) -> None:
        connections = str(self.settings.ARIA2C_CONNECTIONS)
        self.runner(["aria2c", "-j", connections, "-x", connections, *args], check=True)

    def _retry(self, attempt_fn: Callable[[int], None], what: str) -> bool:
        attempts = self.settings.DOWNLOAD_ATTEMPTS
        for attempt in range(attempts):
            try:
                attempt_fn(attempt)
            except (subprocess.CalledProcessError, OSError) as e:
                logger.warning(f"Oops! We lost some video fragment of {what} (attempt {attempt + 1}/{attempts}): {e}")
                continue
            return True
        return False

    def execute(self, plan: DownloadPlan) -> bool:
        """Download ``plan`` as a single mp4, falling back from the fast to the slow URL."""
        filename = f"{plan.title}.mp4"
        fast_attempts = self.settings.FAST_URL_ATTEMPTS

        def attempt(n: int) -> None:
            url = plan.url_for_attempt(n, fast_attempts)
            logger.debug(f"Attempt {n + 1} for {filename} using {url}")
            self._aria2c("-d", str(self.ctx.output_dir), "-o", filename, url)

        if self._retry(attempt, filename):
            logger.info(f"Downloaded {filename}")
            return True
        return self._persistent_failure(plan)

    async def execute_segmented(self, plan: DownloadPlan) -> bool:
        """Fetch the HLS segments with aria2c and remux them into one mp4 with ffmpeg."""
        if not plan.hls_url:
            logger.info("No segmented stream for this video, downloading it directly.")
            return self.execute(plan)

        tmp_dir = self.ctx.output_dir / (plan.video_id or str(int(time.time())))
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)
        tmp_dir.mkdir(parents=True)

        try:
            try:
                playlist = await self.http.get_text(plan.hls_url, accept=(200,))
            except RequestFailed as e:
                logger.warning(f"Can't get current video HLS-URL: {e}")
                return self._persistent_failure(plan)

            base_uri = plan.hls_url[: plan.hls_url.rfind("/") + 1]
            full_path = tmp_dir / "video_full.m3u8"
            local_path = tmp_dir / "video_tmp.m3u8"
            segments_dir = tmp_dir / "video_segments"
            full_path.write_text(rewrite_playlist(playlist, base_uri), encoding="utf-8")
            local_path.write_text(rewrite_playlist(playlist, "video_segments/"), encoding="utf-8")

            def attempt(n: int) -> None:
                # -c resumes the segments already fetched by a previous attempt
                self._aria2c("-i", str(full_path), "-d", str(segments_dir), "-c")

            if not self._retry(attempt, plan.title):
                return self._persistent_failure(plan)

            output = self.ctx.output_dir / f"{plan.title}.mp4"
            if output.exists():
                output = self.ctx.output_dir / f"{plan.title}-{time.time_ns()}.mp4"
            try:
                self.runner(
                    ["ffmpeg", "-i", str(local_path), "-async", "1", "-c", "copy",
                     "-bsf:a", "aac_adtstoasc", "-n", str(output)],
                    check=True,
                )
            except (subprocess.CalledProcessError, OSError) as e:
                logger.warning(f"ffmpeg could not merge the segments of {plan.title}: {e}")
                return self._persistent_failure(plan)
            logger.info(f"Downloaded {output.name}")
            return True
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    def _persistent_failure(self, plan: DownloadPlan) -> bool:
        logger.error("Persistent errors during the download of the current video. Going to the next one.")
        self.ctx.mark_unresolved(plan.source_url)
        return False


def rewrite_playlist(playlist: str, prefix: str) -> str:
    """Prefix every ``.ts`` segment line of an HLS playlist."""
    lines = []
    for line in playlist.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#") and stripped.endswith(".ts"):
            line = prefix + stripped
        lines.append(line)
    return "\n".join(lines) + "\n"
