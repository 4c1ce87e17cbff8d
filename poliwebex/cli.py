'''
Download recorded Webex lectures of Politecnico di Milano.

Logs in through the PoliMi identity provider (person code or SPID) with a
headless Chrome, keeps the session cookie for the next runs, resolves every
lecture URL through the Webex recordings API and downloads it with aria2c.

Usage:
    poliwebex -v "https://politecnicomilano.webex.com/recordingservice/sites/politecnicomilano/recording/playback/8de59dbf0a0345c6b525ed45a2c50607"
    poliwebex -f URLsList.txt -o "~/Lessons"
    poliwebex -v URL -w VIDEO_PASSWORD -i 2
'''

import argparse
import asyncio
import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from .context import BrowserSession, RunContext
from .cookies import get_cookies
from .credentials import ConfigStore, SecretStore
from .downloader import Downloader
from .errors import ExitCode, FatalError, FatalSetupError, ItemUnresolved
from .http import HttpClient
from .links import LinkExtractor, partition_links
from .log import setup_logging
from .resolver import Resolver
from .settings import Settings

logger = logging.getLogger(__name__)

MAX_TIMEOUT_SCALE = 10


def str_to_bool(v):
    """Convert string to boolean for argparse."""
    if isinstance(v, bool):
        return v
    if v.lower() in ('yes', 'true', 't', 'y', '1'):
        return True
    elif v.lower() in ('no', 'false', 'f', 'n', '0'):
        return False
    else:
        raise argparse.ArgumentTypeError('Boolean value expected.')


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="poliwebex", description="Download PoliMi Webex recorded lectures.")
    parser.add_argument('-v', '--videoUrls', nargs='+', action='extend', help='Lecture or recordings listing URLs')
    parser.add_argument('-f', '--videoUrlsFile', help='Path to txt file containing the URLs (one URL for each line)')
    parser.add_argument('-p', '--password', help='Your PoliMi password (saved in the system keyring)')
    parser.add_argument('-s', '--segmented', action='store_true',
                        help='Download video in a segmented way. Could be (a lot) faster on powerful PC with good download speed')
    parser.add_argument('-o', '--outputDirectory', default=settings.OUTPUT_DIR, help='Output directory for MP4 files')
    parser.add_argument('-k', '--noKeyring', action='store_true', help='Do not use system keyring')
    parser.add_argument('-i', '--timeout', type=float, help='Scale timeout by a factor X')
    parser.add_argument('-w', '--videoPwd', default='', help='Video Password')
    parser.add_argument('-e', '--extractOnly', action='store_true',
                        help='Only print the lecture links found in the recordings listings')
    parser.add_argument('--headless', type=str_to_bool, default=settings.HEADLESS,
                        help='Run browser in headless mode (true/false)')
    return parser


def _tool_version(tool: str) -> Optional[str]:
    if shutil.which(tool) is None:
        return None
    try:
        result = subprocess.run([tool, "-version" if tool == "ffmpeg" else "--version"],
                                capture_output=True, text=True, check=True)
    except (subprocess.CalledProcessError, OSError):
        return None
    return result.stdout.splitlines()[0] if result.stdout else tool


def read_url_file(path: Path) -> list[str]:
    with open(path, 'r', encoding='utf-8') as f:
        return [
            line.strip()
            for line in f.read().splitlines()
            if line.strip() and not line.strip().startswith('#')
        ]


def sanity_checks(args: argparse.Namespace) -> tuple[list[str], float, Path]:
    """Validate tools and arguments; return (urls, timeout scale, output directory)."""
    for tool, code, hint in (
        ("aria2c", ExitCode.MISSING_ARIA2C, "You need aria2c in $PATH for this to work. Make sure it is a relatively recent one."),
        ("ffmpeg", ExitCode.MISSING_FFMPEG, "FFmpeg is missing. You need a fairly recent release of FFmpeg in $PATH."),
    ):
        version = _tool_version(tool)
        if version is None:
            raise FatalSetupError(hint, code)
        logger.info(f"Using {version}")

    if args.videoUrls is None and args.videoUrlsFile is None:
        raise FatalSetupError("Missing URLs arguments.", ExitCode.BAD_URL_ARGS)
    if args.videoUrls is not None and args.videoUrlsFile is not None:
        raise FatalSetupError("Can't get URLs from both argument.", ExitCode.BAD_URL_ARGS)
    if args.videoUrlsFile is not None:
        try:
            urls = read_url_file(Path(args.videoUrlsFile))
        except OSError as e:
            raise FatalSetupError(f"Can't read {args.videoUrlsFile}: {e}", ExitCode.BAD_URL_ARGS) from e
    else:
        urls = [u for u in args.videoUrls if u.strip()]

    timeout_scale = 1.0
    if args.timeout is not None:
        if args.timeout != args.timeout or args.timeout <= 0:
            raise FatalSetupError("Incorrect timeout value. Insert a positive integer or float.", ExitCode.BAD_TIMEOUT)
        if args.timeout > MAX_TIMEOUT_SCALE:
            raise FatalSetupError("This is a really big scale factor for the timeout value...", ExitCode.BAD_TIMEOUT)
        timeout_scale = args.timeout

    output_dir = Path(args.outputDirectory).expanduser()
    if not output_dir.exists():
        logger.info(f"Creating output directory: {output_dir.absolute()}")
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FatalSetupError(f"Can not create the output directory: {e}", ExitCode.OUTPUT_DIR) from e

    return urls, timeout_scale, output_dir


async def run(ctx: RunContext, http: HttpClient, urls: list[str], segmented: bool = False,
              extract_only: bool = False, downloader: Optional[Downloader] = None) -> list[str]:
    """Process every URL; return the ones downloaded successfully."""
    direct, listing = partition_links(urls, ctx.settings)
    try:
        if listing:
            direct += await LinkExtractor(ctx, http).extract(listing)
        direct = list(dict.fromkeys(direct))
        if extract_only:
            for url in direct:
                print(url)
            return []

        cookie = await get_cookies(ctx, http)
    finally:
        # The browser is never needed for the download phase
        await ctx.browser.close()

    headers = {
        "Cookie": cookie,
        "accessPwd": ctx.video_password,
        "Accept": "application/json",
    }
    resolver = Resolver(ctx, http)
    downloader = downloader or Downloader(ctx, http)
    downloaded = []
    for url in direct:
        logger.info(f"Start downloading video: {url}")
        try:
            resolved = await resolver.resolve(url, headers)
        except ItemUnresolved as e:
            logger.warning(f"{e.reason}. Going to the next one.")
            ctx.mark_unresolved(url)
            continue
        if segmented:
            ok = await downloader.execute_segmented(resolved.plan)
        else:
            ok = downloader.execute(resolved.plan)
        if ok:
            downloaded.append(url)
    return downloaded


def report(ctx: RunContext, downloaded: list[str]) -> None:
    if ctx.not_downloaded:
        logger.warning("These videos have not been downloaded:")
        for url in ctx.not_downloaded:
            logger.warning(f"  {url}")
    else:
        logger.info("All requested videos have been downloaded!")
    logger.info(f"Done! {len(downloaded)} video(s) downloaded.")


async def main(argv: Optional[list[str]] = None) -> None:
    # Load settings from .env and allow override by CLI
    settings = Settings()
    setup_logging(settings.LOG_LEVEL)
    args = build_parser(settings).parse_args(argv)

    urls, timeout_scale, output_dir = sanity_checks(args)
    logger.info(f"Video URLs: {urls}")
    logger.info(f"Output Directory: {output_dir}")

    ctx = RunContext(
        settings=settings,
        config=ConfigStore(Path(settings.CONFIG_FILE)),
        secrets=None if args.noKeyring else SecretStore.detect(),
        browser=BrowserSession(headless=args.headless),
        timeout_scale=timeout_scale,
        output_dir=output_dir,
        video_password=args.videoPwd,
        password=args.password,
    )
    http = HttpClient()
    try:
        downloaded = await run(ctx, http, urls, segmented=args.segmented, extract_only=args.extractOnly)
    finally:
        await http.aclose()
    if not args.extractOnly:
        report(ctx, downloaded)


def entrypoint() -> None:
    try:
        asyncio.run(main())
    except FatalError as e:
        logger.critical(str(e))
        sys.exit(int(e.exit_code))
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        sys.exit(130)


if __name__ == '__main__':
    entrypoint()
