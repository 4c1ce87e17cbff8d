import dataclasses
import subprocess

import httpx
import pytest

from poliwebex.downloader import Downloader, DownloadPlan, rewrite_playlist

from .conftest import PLAYBACK_URL, mock_http

PLAN = DownloadPlan(
    fast_url="https://cdn.example/fast.mp4",
    slow_url="https://nfg1vss.webex.com/apis/download.do?fileName=slow.mp4",
    title="Lesson 2020_10_12 - Analisi 1",
    source_url=PLAYBACK_URL,
    video_id="8de59dbf0a0345c6b525ed45a2c50607",
)


class FakeRunner:
    def __init__(self, failures=0):
        self.failures = failures
        self.commands = []

    def __call__(self, cmd, check=False, **kwargs):
        self.commands.append(cmd)
        if len(self.commands) <= self.failures:
            raise subprocess.CalledProcessError(1, cmd)
        return subprocess.CompletedProcess(cmd, 0)


@pytest.fixture
def output_dir(ctx):
    ctx.output_dir.mkdir(parents=True)
    return ctx.output_dir


def test_first_two_attempts_use_fast_url():
    assert [PLAN.url_for_attempt(n) for n in range(5)] == [
        PLAN.fast_url,
        PLAN.fast_url,
        PLAN.slow_url,
        PLAN.slow_url,
        PLAN.slow_url,
    ]


def test_direct_download_succeeds_first_time(ctx, output_dir):
    runner = FakeRunner()

    assert Downloader(ctx, mock_http(lambda r: httpx.Response(404)), runner).execute(PLAN)

    assert runner.commands == [[
        "aria2c", "-j", "16", "-x", "16",
        "-d", str(output_dir), "-o", "Lesson 2020_10_12 - Analisi 1.mp4", PLAN.fast_url,
    ]]
    assert ctx.not_downloaded == []


def test_falls_back_to_slow_url_after_two_failures(ctx, output_dir):
    runner = FakeRunner(failures=2)

    assert Downloader(ctx, mock_http(lambda r: httpx.Response(404)), runner).execute(PLAN)

    assert [cmd[-1] for cmd in runner.commands] == [PLAN.fast_url, PLAN.fast_url, PLAN.slow_url]


def test_gives_up_after_five_attempts(ctx, output_dir):
    runner = FakeRunner(failures=100)

    assert not Downloader(ctx, mock_http(lambda r: httpx.Response(404)), runner).execute(PLAN)

    assert len(runner.commands) == 5
    assert ctx.not_downloaded == [PLAYBACK_URL]


def test_missing_aria2c_counts_as_failed_attempt(ctx, output_dir):
    def runner(cmd, check=False):
        raise FileNotFoundError("aria2c")

    assert not Downloader(ctx, mock_http(lambda r: httpx.Response(404)), runner).execute(PLAN)
    assert ctx.not_downloaded == [PLAYBACK_URL]


def test_rewrite_playlist_prefixes_segments_only():
    playlist = "#EXTM3U\n#EXTINF:10.0,\nseg0.ts\n#EXTINF:10.0,\nseg1.ts\n#EXT-X-ENDLIST"

    assert rewrite_playlist(playlist, "https://host/dir/") == (
        "#EXTM3U\n#EXTINF:10.0,\nhttps://host/dir/seg0.ts\n"
        "#EXTINF:10.0,\nhttps://host/dir/seg1.ts\n#EXT-X-ENDLIST\n"
    )


async def test_segmented_download_fetches_and_remuxes(ctx, output_dir):
    hls_url = "https://nfg1vss.webex.com/hls-vod/recordingDir/1/fileName/lesson.mp4.m3u8"
    plan = dataclasses.replace(PLAN, hls_url=hls_url)
    written = {}

    def runner(cmd, check=False):
        if cmd[0] == "aria2c":
            written["full"] = open(cmd[cmd.index("-i") + 1], encoding="utf-8").read()
        return subprocess.CompletedProcess(cmd, 0)

    calls = []

    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(200, text="#EXTM3U\nseg0.ts\n")

    ok = await Downloader(ctx, mock_http(handler), runner).execute_segmented(plan)

    assert ok
    assert calls == [hls_url]
    assert "https://nfg1vss.webex.com/hls-vod/recordingDir/1/fileName/seg0.ts" in written["full"]
    assert not (output_dir / plan.video_id).exists()


async def test_segmented_download_without_stream_goes_direct(ctx, output_dir):
    runner = FakeRunner()

    assert await Downloader(ctx, mock_http(lambda r: httpx.Response(404)), runner).execute_segmented(PLAN)
    assert runner.commands[0][-1] == PLAN.fast_url
