"""MCP tool for looking up basic information about a Bilibili video.

``bilibili_video_conclusion`` only accepts the numeric ``aid``.  Users
usually paste a BV id, a full ``bilibili.com/video/...`` link or a
``b23.tv`` short link instead, so this module exposes
``bilibili_video_info`` to resolve any of those into the aid, and to
list the pages of multi-part uploads so the model can pick a ``pid``.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple, Union

from server import mcp  # Shared FastMCP instance
from utils.bili_api import (
    BiliClient,
    BiliToolError,
    InvalidIdentifier,
    VideoMetadata,
    build_headers,
    get_tool_timeout,
)


logger = logging.getLogger(__name__)

_BVID_RE = re.compile(r"(BV1[0-9A-Za-z]{9})")
_AID_RE = re.compile(r"(?:^|[/=])av([0-9]+)|^([0-9]+)\Z", re.IGNORECASE | re.ASCII)
_SHORT_LINK_RE = re.compile(r"(?:https?://)?(?:b23\.tv|bili2233\.cn)/[0-9A-Za-z]+")


def parse_video_reference(video: str) -> Optional[Tuple[str, Union[str, int]]]:
    """Find a video id in user input.

    Returns:
        ``("bvid", "BV1...")`` or ``("aid", 123)``, or ``None`` when
        the text holds neither.

    Examples::

        >>> parse_video_reference("https://www.bilibili.com/video/BV1xx411c7mD?p=2")
        ('bvid', 'BV1xx411c7mD')
        >>> parse_video_reference("av170001")
        ('aid', 170001)
    """
    text = video.strip()
    match = _BVID_RE.search(text)
    if match:
        return "bvid", match.group(1)
    match = _AID_RE.search(text)
    if match:
        return "aid", int(match.group(1) or match.group(2))
    return None


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_video_info(metadata: VideoMetadata) -> str:
    lines: List[str] = [
        f"aid: {metadata.aid} (use \"{metadata.aid}\" as video_aid)",
        f"bvid: {metadata.bvid}",
        f"title: {metadata.title}",
        f"uploader: {metadata.owner_name} (mid {metadata.owner_mid})",
        f"pages: {len(metadata.pages)}",
    ]
    for page in metadata.pages:
        lines.append(
            f"- pid {page.page}: {page.part} [cid {page.cid}, {_format_duration(page.duration)}]"
        )
    return "\n".join(lines)


def lookup_video_info(
    video: str,
    client: Optional[BiliClient] = None,
    timeout: Optional[float] = None,
) -> str:
    """Resolve ``video`` and describe it.  Never raises."""
    client = client if client is not None else BiliClient()
    timeout = timeout if timeout is not None else get_tool_timeout()
    try:
        text = video.strip()
        short_link = _SHORT_LINK_RE.search(text)
        if short_link:
            text = client.resolve_short_link(
                short_link.group(0), headers=build_headers(), timeout=timeout
            )
        reference = parse_video_reference(text)
        if reference is None:
            raise InvalidIdentifier(
                f"Could not find a BV id, av id or b23.tv link in {video!r}."
            )
        kind, value = reference
        if kind == "aid":
            metadata = client.get_video_metadata(aid=int(value), timeout=timeout)
        else:
            metadata = client.get_video_metadata(
                bvid=str(value), headers=build_headers(), timeout=timeout
            )
    except BiliToolError as exc:
        logger.warning("Video info lookup for %r failed: %s", video, exc)
        return f"Error: {exc}"
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Unexpected failure looking up %r", video)
        return f"Error: unexpected failure while looking up the video: {exc!r}"
    return format_video_info(metadata)


@mcp.tool()
def bilibili_video_info(video: str) -> str:  # type: ignore[override]
    """Look up a Bilibili video and return its aid, title, uploader and pages.

    Use this to convert a BV id (``BV1xx411c7mD``), a video link
    (``https://www.bilibili.com/video/BV1xx411c7mD``) or a short link
    (``https://b23.tv/xxxxxxx``) into the numeric aid required by
    ``bilibili_video_conclusion``.

    Args:
        video: A BV id, an av id, a bare aid or a video/short link.

    Returns:
        Lines with ``aid``, ``bvid``, ``title``, ``uploader`` and one
        ``pid`` line per page, or a sentence starting with ``Error:``.
    """
    return lookup_video_info(video)
