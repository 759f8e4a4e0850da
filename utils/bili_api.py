"""
Client and payload parsers for the Bilibili web API.

This module wraps the handful of public ``api.bilibili.com`` endpoints
used by the tools in this project:

* ``/x/web-interface/view`` – video metadata (uploader, pages and their
  content ids).
* ``/x/web-interface/view/conclusion/get`` – the AI-generated summary
  and outline of one page of a video.  Requests to it must be WBI
  signed (see ``utils.wbi``).

Every response from these endpoints is wrapped in an envelope of the
form ``{"code": 0, "message": "0", "data": {...}}``.  A non-zero
``code`` is an application error even though the HTTP status is 200,
so :class:`BiliClient` checks the envelope before returning anything.

Failures are reported with the exception classes defined below.  Tools
catch :class:`BiliToolError` at their boundary and turn it into text,
so nothing in this module needs to worry about the agent-facing
message format.

Configuration is read from the environment at call time:

* ``BILIBILI_COOKIES`` – cookie header sent with every request.  An
  unset variable sends an empty cookie; the conclusion endpoint still
  answers for most videos without a login.
* ``BILIBILI_TIMEOUT`` – per-request timeout in seconds used by the
  tools (default 90).
* ``BILIBILI_MAX_OUTPUT`` – optional character cap on tool output.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import requests

from utils.user_agents import get_random_user_agent


logger = logging.getLogger(__name__)

# Base URL for the Bilibili web API
BILI_API_BASE_URL = "https://api.bilibili.com"
VIEW_URL = BILI_API_BASE_URL + "/x/web-interface/view"
CONCLUSION_URL = BILI_API_BASE_URL + "/x/web-interface/view/conclusion/get"
NAV_URL = BILI_API_BASE_URL + "/x/web-interface/nav"

BILI_ORIGIN = "https://www.bilibili.com"

# Timeout applied by ``BiliClient`` when the caller does not pass one.
DEFAULT_REQUEST_TIMEOUT = 30.0
# Timeout the tools apply to each of their requests.
DEFAULT_TOOL_TIMEOUT = 90.0

# ASCII digits only, matched against the whole string.
_AID_RE = re.compile(r"(?:av)?([0-9]+)", re.ASCII)


# -----------------------------------------------------------------------------
# Errors


class BiliToolError(Exception):
    """Base class for every failure the Bilibili tools report."""


class InvalidArgument(BiliToolError):
    """A tool argument failed validation; no request was made."""


class InvalidIdentifier(InvalidArgument):
    """The video identifier is not a numeric aid."""


class UpstreamShapeError(BiliToolError):
    """The API answered, but not with the fields we expected."""


class UpstreamApiError(BiliToolError):
    """The API envelope carried a non-zero ``code``."""

    def __init__(self, code: int, message: str, url: str = "") -> None:
        self.code = code
        self.message = message
        self.url = url
        super().__init__(f"Bilibili API returned code {code} ({message or 'no message'}) for {url}")


class UpstreamTimeout(BiliToolError):
    """A request did not complete within its timeout."""


class TransportError(BiliToolError):
    """Connection-level failure or an HTTP error status."""


# -----------------------------------------------------------------------------
# Configuration


def get_cookie() -> str:
    """Return the configured cookie string, or ``""`` when unset."""
    return os.environ.get("BILIBILI_COOKIES", "")


def get_tool_timeout() -> float:
    """Return the per-request timeout for tools from ``BILIBILI_TIMEOUT``."""
    raw = os.environ.get("BILIBILI_TIMEOUT")
    if not raw:
        return DEFAULT_TOOL_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring BILIBILI_TIMEOUT=%r: not a number", raw)
        return DEFAULT_TOOL_TIMEOUT
    if value <= 0:
        logger.warning("Ignoring BILIBILI_TIMEOUT=%r: must be positive", raw)
        return DEFAULT_TOOL_TIMEOUT
    return value


def get_max_output_length() -> Optional[int]:
    """Return the output cap from ``BILIBILI_MAX_OUTPUT`` (``None`` = unlimited)."""
    raw = os.environ.get("BILIBILI_MAX_OUTPUT")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring BILIBILI_MAX_OUTPUT=%r: not an integer", raw)
        return None
    return value if value > 0 else None


def build_headers(aid: Optional[int] = None, cookie: Optional[str] = None) -> Dict[str, str]:
    """Build the request headers Bilibili expects from a browser.

    Args:
        aid: Numeric video id used for the ``Referer``.  Without it the
            site root is used.
        cookie: Cookie header value.  Defaults to ``BILIBILI_COOKIES``.

    Returns:
        A dictionary of headers with a freshly picked User-Agent.
    """
    referer = f"{BILI_ORIGIN}/video/av{aid}" if aid is not None else BILI_ORIGIN + "/"
    return {
        "User-Agent": get_random_user_agent(),
        "Referer": referer,
        "Origin": BILI_ORIGIN,
        "Cookie": get_cookie() if cookie is None else cookie,
    }


# -----------------------------------------------------------------------------
# Argument validation


def normalize_aid(video_aid: Union[str, int]) -> int:
    """Turn ``"123"`` or ``"av123"`` into the integer ``123``.

    Raises:
        InvalidIdentifier: For anything else, including BV ids and
            links, which must be resolved with ``bilibili_video_info``
            first.
    """
    match = _AID_RE.fullmatch(str(video_aid))
    if not match:
        raise InvalidIdentifier(
            f"Invalid videoAid {video_aid!r}: it should be a string of numbers, "
            "optionally prefixed with 'av'. If a BVid or a short link is given, "
            "convert it to an aid number with the bilibili_video_info tool first."
        )
    return int(match.group(1))


def normalize_page(pid: Union[str, int]) -> int:
    """Validate a 1-based page number.

    Accepts ints, whole floats (``2.0``) and digit strings; rejects
    booleans and fractional values instead of rounding them.
    """
    if isinstance(pid, bool) or (isinstance(pid, float) and not pid.is_integer()):
        raise InvalidArgument(f"Invalid pid {pid!r}: it should be a positive integer.")
    try:
        page = int(pid)
    except (TypeError, ValueError, OverflowError):
        raise InvalidArgument(f"Invalid pid {pid!r}: it should be a positive integer.") from None
    if page < 1:
        raise InvalidArgument(f"Invalid pid {pid!r}: page numbers start from 1.")
    return page


# -----------------------------------------------------------------------------
# Typed payloads


@dataclass
class VideoPage:
    page: int
    cid: int
    part: str = ""
    duration: int = 0


@dataclass
class VideoMetadata:
    """The parts of the ``view`` payload the tools use."""

    aid: int
    bvid: str
    title: str
    owner_mid: int
    owner_name: str
    pages: List[VideoPage] = field(default_factory=list)

    def page(self, pid: int) -> VideoPage:
        """Return the 1-based page ``pid``.

        Raises:
            UpstreamShapeError: If the video has fewer pages.
        """
        if pid < 1 or pid > len(self.pages):
            raise UpstreamShapeError(
                f"Page {pid} is out of range: video av{self.aid} has "
                f"{len(self.pages)} page(s)."
            )
        return self.pages[pid - 1]


@dataclass
class OutlinePoint:
    timestamp: int
    content: str


@dataclass
class OutlineSection:
    timestamp: int
    title: str
    points: List[OutlinePoint] = field(default_factory=list)


@dataclass
class Unavailable:
    """Bilibili declined to summarise the video (``result_type`` 0)."""


@dataclass
class Summary:
    text: str


@dataclass
class SummaryWithOutline:
    text: str
    sections: List[OutlineSection] = field(default_factory=list)


@dataclass
class UnknownResultType:
    result_type: Any


ConclusionResult = Union[Unavailable, Summary, SummaryWithOutline, UnknownResultType]


def _require(mapping: Any, key: str, where: str) -> Any:
    if not isinstance(mapping, dict) or key not in mapping or mapping[key] is None:
        raise UpstreamShapeError(f"Missing field '{key}' in {where}.")
    return mapping[key]


def _require_int(mapping: Any, key: str, where: str) -> int:
    value = _require(mapping, key, where)
    if isinstance(value, bool):
        raise UpstreamShapeError(f"Field '{key}' in {where} is not an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise UpstreamShapeError(f"Field '{key}' in {where} is not an integer.") from None


def _optional_int(mapping: Dict[str, Any], key: str, default: int) -> int:
    """Informational field: fall back to ``default`` when absent or not an integer."""
    value = mapping.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _require_list(mapping: Any, key: str, where: str) -> List[Any]:
    value = _require(mapping, key, where)
    if not isinstance(value, list):
        raise UpstreamShapeError(f"Field '{key}' in {where} is not a list.")
    return value


def parse_video_metadata(payload: Dict[str, Any]) -> VideoMetadata:
    """Parse a ``view`` response into :class:`VideoMetadata`."""
    data = _require(payload, "data", "video info response")
    owner = _require(data, "owner", "video info")
    pages = []
    for index, raw_page in enumerate(_require_list(data, "pages", "video info"), start=1):
        cid = _require_int(raw_page, "cid", f"page {index}")
        pages.append(
            VideoPage(
                page=_optional_int(raw_page, "page", index),
                cid=cid,
                part=str(raw_page.get("part") or ""),
                duration=_optional_int(raw_page, "duration", 0),
            )
        )
    return VideoMetadata(
        aid=_require_int(data, "aid", "video info"),
        bvid=str(data.get("bvid", "")),
        title=str(data.get("title", "")),
        owner_mid=_require_int(owner, "mid", "video owner"),
        owner_name=str(owner.get("name", "")),
        pages=pages,
    )


def parse_conclusion(payload: Dict[str, Any]) -> ConclusionResult:
    """Parse a ``conclusion/get`` response into a result variant.

    The variant is chosen by ``data.model_result.result_type``.  Only
    the fields that variant needs are validated, so a tag of ``0``
    succeeds whatever else the payload holds.
    """
    data = _require(payload, "data", "conclusion response")
    model_result = _require(data, "model_result", "conclusion data")
    result_type = _require(model_result, "result_type", "model_result")

    if result_type == 0:
        return Unavailable()
    if result_type == 1:
        return Summary(text=str(_require(model_result, "summary", "model_result")))
    if result_type == 2:
        sections = []
        for i, raw_section in enumerate(_require_list(model_result, "outline", "model_result")):
            where = f"outline section {i}"
            points = [
                OutlinePoint(
                    timestamp=_require_int(raw_point, "timestamp", f"{where} point {j}"),
                    content=str(_require(raw_point, "content", f"{where} point {j}")),
                )
                for j, raw_point in enumerate(_require_list(raw_section, "part_outline", where))
            ]
            sections.append(
                OutlineSection(
                    timestamp=_require_int(raw_section, "timestamp", where),
                    title=str(_require(raw_section, "title", where)),
                    points=points,
                )
            )
        return SummaryWithOutline(
            text=str(_require(model_result, "summary", "model_result")),
            sections=sections,
        )
    return UnknownResultType(result_type=result_type)


# -----------------------------------------------------------------------------
# HTTP client


class BiliClient:
    """Thin wrapper around a ``requests`` session for the Bilibili API.

    Args:
        session: Session to send requests with.  Tests pass a mock here.
        timeout: Default timeout in seconds for requests that do not
            specify one.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = DEFAULT_REQUEST_TIMEOUT if timeout is None else timeout

    def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> requests.Response:
        timeout = self.timeout if timeout is None else timeout
        logger.info("GET %s params=%s", url, params)
        try:
            response = self.session.get(
                url, params=params, headers=headers, timeout=timeout, **kwargs
            )
            response.raise_for_status()
        except requests.Timeout as exc:
            raise UpstreamTimeout(f"Request to {url} timed out after {timeout:g}s.") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc
        return response

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        check_code: bool = True,
    ) -> Dict[str, Any]:
        """GET ``url`` and return the decoded JSON envelope.

        Args:
            url: Endpoint URL.
            params: Query parameters.
            headers: Request headers; see :func:`build_headers`.
            timeout: Seconds before the request is abandoned.  Defaults
                to the client's timeout.
            check_code: Raise :class:`UpstreamApiError` when the
                envelope's ``code`` is non-zero.

        Returns:
            The decoded JSON object.
        """
        response = self._get(url, params=params, headers=headers, timeout=timeout)
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamShapeError(f"Response from {url} is not valid JSON.") from exc
        logger.debug("Response from %s: %s", url, payload)
        if not isinstance(payload, dict):
            raise UpstreamShapeError(f"Response from {url} is not a JSON object.")
        if check_code:
            code = payload.get("code", 0)
            if code != 0:
                raise UpstreamApiError(code, str(payload.get("message", "")), url)
        return payload

    def get_video_metadata(
        self,
        aid: Optional[int] = None,
        bvid: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> VideoMetadata:
        """Fetch and parse the ``view`` payload by ``aid`` or ``bvid``."""
        if aid is not None:
            params: Dict[str, Any] = {"aid": aid}
        elif bvid:
            params = {"bvid": bvid}
        else:
            raise InvalidArgument("Either an aid or a bvid is required.")
        if headers is None:
            headers = build_headers(aid)
        payload = self.get_json(VIEW_URL, params=params, headers=headers, timeout=timeout)
        return parse_video_metadata(payload)

    def get_conclusion(
        self,
        signed_params: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ConclusionResult:
        """Fetch and parse the conclusion for already signed parameters."""
        payload = self.get_json(
            CONCLUSION_URL, params=signed_params, headers=headers, timeout=timeout
        )
        return parse_conclusion(payload)

    def resolve_short_link(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Follow the redirects of a ``b23.tv`` link and return the final URL."""
        if not re.match(r"^https?://", url):
            url = "https://" + url
        response = self._get(url, headers=headers, timeout=timeout, allow_redirects=True)
        logger.info("Short link %s resolved to %s", url, response.url)
        return response.url
