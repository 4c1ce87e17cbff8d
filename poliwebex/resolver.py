"""From a lecture URL to a :class:`DownloadPlan`.

The recordings API has answered in several shapes over time. Each shape
is decoded into its own source type and the sources are tried in priority
order:

1. :class:`LegacyStream` (``mp4StreamOption``): the media filename comes
   from an XML manifest of the html5 pipeline.
2. :class:`NewApiDownload` (``downloadRecordingInfo.downloadInfo.mp4URL``).
3. :class:`FastPath` (``fallbackPlaySrc``): a CDN URL, preferred for the
   first download attempts, with the URL of 1. or 2. as slow fallback.
"""

import asyncio
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union
from urllib.parse import urlparse

from .context import RunContext
from .downloader import DownloadPlan
from .errors import ItemUnresolved, RequestFailed
from .http import HttpClient
from .links import extract_rcid, get_redirect_url

logger = logging.getLogger(__name__)

VIDEO_ID_LENGTH = 32
ALPHANUMERIC = re.compile(r"^[a-zA-Z0-9]+$")
ILLEGAL_CHARS = re.compile(r'[/\\?%*:;|"<>]')

CODE_NOT_FOUND = 54001
CODE_PASSWORD = 53005
STATUS_RATE_LIMITED = 429
API_ACCEPT = (200, 403, 404, STATUS_RATE_LIMITED)
SKIP_PASSWORD = "0"


def extract_video_id(url: str) -> Optional[str]:
    """The 32 character video id in the path of a playback URL.

    A segment of exactly 32 alphanumeric characters wins; otherwise the
    first longer segment whose first 32 characters are alphanumeric.
    """
    parts = urlparse(url).path.split("/")
    for part in parts:
        if len(part) == VIDEO_ID_LENGTH and ALPHANUMERIC.match(part):
            return part
    for part in parts:
        if len(part) > VIDEO_ID_LENGTH and ALPHANUMERIC.match(part[:VIDEO_ID_LENGTH]):
            return part[:VIDEO_ID_LENGTH]
    return None


def sanitize_title(title: str) -> str:
    return ILLEGAL_CHARS.sub("-", title)


def _parse_create_time(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value) / 1000)
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Unrecognised creation time: {value!r}")
        return None
    # Dates are shown in the local timezone, like the Webex web player does
    return parsed.astimezone() if parsed.tzinfo else parsed


def build_title(record_name: str, create_time: Any = None) -> str:
    title = sanitize_title(record_name.strip())
    created = _parse_create_time(create_time)
    if created is not None:
        title = f"Lesson {created.year}_{created.month:02d}_{created.day:02d} - {title}"
    return title


@dataclass(frozen=True)
class LegacyStream:
    recording_dir: str
    timestamp: str
    token: str


@dataclass(frozen=True)
class NewApiDownload:
    mp4_url: str


@dataclass(frozen=True)
class FastPath:
    url: str


RecordingSource = Union[LegacyStream, NewApiDownload, FastPath]


def decode_legacy(obj: Mapping) -> Optional[LegacyStream]:
    option = obj.get("mp4StreamOption")
    if not isinstance(option, dict):
        return None
    values = [option.get(k) for k in ("recordingDir", "timestamp", "token")]
    if not all(values):
        return None
    return LegacyStream(*(str(v) for v in values))


def decode_new_api(obj: Mapping) -> Optional[NewApiDownload]:
    info = obj.get("downloadRecordingInfo")
    download = info.get("downloadInfo") if isinstance(info, dict) else None
    url = download.get("mp4URL") if isinstance(download, dict) else None
    return NewApiDownload(url) if url else None


def decode_fast_path(obj: Mapping) -> Optional[FastPath]:
    url = obj.get("fallbackPlaySrc")
    return FastPath(url) if url else None


DECODERS: tuple[Callable[[Mapping], Optional[RecordingSource]], ...] = (
    decode_legacy,
    decode_new_api,
    decode_fast_path,
)


@dataclass(frozen=True)
class RecordingMetadata:
    title: str
    create_time: Any
    sources: tuple[RecordingSource, ...]
    password_protected: bool = False


def parse_metadata(obj: Mapping, url: str, password_protected: bool = False) -> RecordingMetadata:
    name = obj.get("recordName")
    if not isinstance(name, str):
        raise ItemUnresolved(url, "unexpected recordings API response")
    sources = tuple(s for s in (decode(obj) for decode in DECODERS) if s is not None)
    return RecordingMetadata(
        title=build_title(name, obj.get("createTime")),
        create_time=obj.get("createTime"),
        sources=sources,
        password_protected=password_protected,
    )


@dataclass(frozen=True)
class ResolvedRecording:
    metadata: RecordingMetadata
    plan: DownloadPlan


class Resolver:
    def __init__(self, ctx: RunContext, http: HttpClient) -> None:
        self.ctx = ctx
        self.http = http
        self.settings = ctx.settings

    async def resolve(self, url: str, headers: Mapping[str, str]) -> ResolvedRecording:
        """Raises :class:`ItemUnresolved` when ``url`` cannot be downloaded."""
        source_url = url
        if extract_rcid(url) is not None:
            url = await get_redirect_url(self.http, url, headers)
            logger.debug(f"{source_url} redirects to {url}")

        video_id = extract_video_id(url)
        if video_id is None:
            raise ItemUnresolved(source_url, "Can't find video ID")

        obj, password_protected = await self._query_recording(video_id, headers, source_url)
        metadata = parse_metadata(obj, source_url, password_protected)
        logger.info(f"Video title is: {metadata.title}")
        plan = await self._plan(metadata, video_id, source_url)
        return ResolvedRecording(metadata, plan)

    async def _fetch(self, api_url: str, headers: Mapping[str, str], source_url: str) -> dict:
        try:
            response = await self.http.get(api_url, headers, accept=API_ACCEPT)
        except RequestFailed as e:
            raise ItemUnresolved(source_url, f"Undefined URL request response: {e}") from e
        if response.status_code == STATUS_RATE_LIMITED:
            raise ItemUnresolved(source_url, "Too many requests, the recordings API is rate limiting us")
        try:
            obj = json.loads(response.text)
        except ValueError as e:
            raise ItemUnresolved(source_url, "Error downloading this video: response is not JSON") from e
        if not isinstance(obj, dict):
            raise ItemUnresolved(source_url, "Error downloading this video: unexpected response")
        return obj

    async def _query_recording(self, video_id: str, headers: Mapping[str, str], source_url: str) -> tuple[dict, bool]:
        api_url = self.settings.stream_api_url(video_id)
        headers = dict(headers)
        password_protected = False
        while True:
            obj = await self._fetch(api_url, headers, source_url)
            code = obj.get("code")
            if code == CODE_NOT_FOUND:
                raise ItemUnresolved(source_url, "The recording does not exist")
            if code != CODE_PASSWORD:
                return obj, password_protected
            password_protected = True
            password = await self._ask_video_password()
            if password == SKIP_PASSWORD:
                raise ItemUnresolved(source_url, "Video password not provided")
            headers["accessPwd"] = password

    async def _ask_video_password(self) -> str:
        while True:
            password = (await asyncio.to_thread(
                self.ctx.prompt,
                "This video is password protected or the password is wrong. "
                f"Enter the video password ({SKIP_PASSWORD} to skip this video): ",
            )).strip()
            if password.isascii():
                return password
            logger.warning("Webex only accepts video passwords made of ASCII characters, try again.")

    async def _resolve_legacy(self, source: LegacyStream, url: str) -> tuple[str, str]:
        """Return (direct download URL, HLS playlist URL)."""
        params = (source.recording_dir, source.timestamp, source.token)
        try:
            root = await self.http.get_xml(self.settings.manifest_url(*params))
        except RequestFailed as e:
            raise ItemUnresolved(url, f"Can't get current video XML-URL: {e}") from e
        except ET.ParseError as e:
            raise ItemUnresolved(url, "Can't parse XML correctly") from e
        filename = (root.findtext("RecordingXML/Screen/Sequence") or "").strip()
        if not filename.endswith(".mp4"):
            raise ItemUnresolved(url, "Can't parse XML correctly")
        return self.settings.direct_download_url(*params, filename), self.settings.hls_url(*params, filename)

    async def _plan(self, metadata: RecordingMetadata, video_id: str, url: str) -> DownloadPlan:
        fast = next((s.url for s in metadata.sources if isinstance(s, FastPath)), None)
        slow = hls = None
        for index, source in enumerate(metadata.sources):
            if isinstance(source, LegacyStream):
                try:
                    slow, hls = await self._resolve_legacy(source, url)
                except ItemUnresolved as e:
                    if index == len(metadata.sources) - 1:
                        raise
                    logger.debug(f"Legacy pipeline failed, trying the next source: {e.reason}")
                    continue
                break
            if isinstance(source, NewApiDownload):
                slow = source.mp4_url
                break

        if fast is None and slow is None:
            raise ItemUnresolved(url, "No download URL in the recordings API response")
        return DownloadPlan(
            fast_url=fast or slow,
            slow_url=slow or fast,
            title=metadata.title,
            source_url=url,
            video_id=video_id,
            hls_url=hls,
        )
