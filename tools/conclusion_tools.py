"""MCP tool for fetching Bilibili's AI summary of a video.

This module exposes a single tool, ``bilibili_video_conclusion``, that
accepts a numeric video id (``aid``) and a page number and returns the
summary Bilibili generated for that page, together with its outline
when one exists.

The tool makes two requests:

1. ``x/web-interface/view`` to find the uploader's ``mid`` and the
   page's ``cid``.
2. ``x/web-interface/view/conclusion/get``, WBI signed with the
   ``aid``, ``cid`` and ``up_mid`` parameters.

The result is always text.  Validation, network and payload errors are
returned as a sentence starting with ``Error:`` rather than raised, as
the calling model can act on a message but not on an exception.

Example call:

.. code-block:: json

    {
      "video_aid": "av170001",
      "pid": 1
    }
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from server import mcp  # Shared FastMCP instance
from utils.bili_api import (
    BiliClient,
    BiliToolError,
    ConclusionResult,
    Summary,
    SummaryWithOutline,
    Unavailable,
    build_headers,
    get_max_output_length,
    get_tool_timeout,
    normalize_aid,
    normalize_page,
)
from utils.wbi import WbiKeyProvider, default_key_provider, enc_wbi


logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = (
    "BiliAPI returned result: Unable to provide a conclusion for this video, or the "
    "conclusion cannot be generated for this video due to the content (news, ad, etc.). "
    "Remember, this is a restriction by the Bilibili Services, not from the tool."
)
UNKNOWN_RESULT_MESSAGE = (
    "BiliAPI returned unknown result type. Please report this issue to the developer."
)


def format_conclusion(result: ConclusionResult) -> str:
    """Render a parsed conclusion as text for the model.

    Outline sections and their points keep the order Bilibili sent
    them in; timestamps are seconds from the start of the page.
    """
    if isinstance(result, Unavailable):
        return UNAVAILABLE_MESSAGE
    if isinstance(result, Summary):
        return result.text
    if isinstance(result, SummaryWithOutline):
        lines: List[str] = [result.text, "", "Outline (generated by BiliAPI):"]
        for section in result.sections:
            lines.append(f"## [position: {section.timestamp}s] {section.title}")
            for point in section.points:
                lines.append(f"- [position: {point.timestamp}s] {point.content}")
        return "\n".join(lines)
    return UNKNOWN_RESULT_MESSAGE


class ConclusionFetcher:
    """Fetch and format video conclusions.

    Args:
        client: HTTP client; a new one is created when omitted.
        key_provider: Source of WBI keys.  Defaults to the shared,
            cached provider.
        timeout: Seconds allowed for each request.  Defaults to
            ``BILIBILI_TIMEOUT`` (90 when unset).
        max_output_length: Character cap on the returned text.
            Defaults to ``BILIBILI_MAX_OUTPUT`` (unlimited when unset).
    """

    def __init__(
        self,
        client: Optional[BiliClient] = None,
        key_provider: Optional[WbiKeyProvider] = None,
        timeout: Optional[float] = None,
        max_output_length: Optional[int] = None,
    ) -> None:
        self.client = client if client is not None else BiliClient()
        self.key_provider = key_provider if key_provider is not None else default_key_provider
        self.timeout = timeout if timeout is not None else get_tool_timeout()
        self.max_output_length = (
            max_output_length if max_output_length is not None else get_max_output_length()
        )

    def fetch(self, aid: int, pid: int) -> ConclusionResult:
        """Run both requests for a validated ``aid`` and page.

        Raises:
            BiliToolError: On any network or payload problem.
        """
        headers = build_headers(aid)
        metadata = self.client.get_video_metadata(aid=aid, headers=headers, timeout=self.timeout)
        page = metadata.page(pid)
        logger.info(
            "Resolved av%s page %s to cid=%s up_mid=%s", aid, pid, page.cid, metadata.owner_mid
        )

        keys = self.key_provider.get_keys(timeout=self.timeout)
        signed = enc_wbi(
            {"aid": aid, "cid": page.cid, "up_mid": metadata.owner_mid},
            keys.img_key,
            keys.sub_key,
        )
        return self.client.get_conclusion(signed, headers=headers, timeout=self.timeout)

    def get_conclusion(self, video_aid: Union[str, int], pid: Union[str, int]) -> str:
        """Return the conclusion text, or an error description.  Never raises."""
        try:
            aid = normalize_aid(video_aid)
            page = normalize_page(pid)
            text = format_conclusion(self.fetch(aid, page))
        except BiliToolError as exc:
            logger.warning("Conclusion for %r page %r failed: %s", video_aid, pid, exc)
            return f"Error: {exc}"
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected failure fetching conclusion for %r", video_aid)
            return f"Error: unexpected failure while fetching the conclusion: {exc!r}"
        if self.max_output_length is not None and len(text) > self.max_output_length:
            text = text[: self.max_output_length]
        return text


@mcp.tool()
def bilibili_video_conclusion(video_aid: str, pid: int) -> str:  # type: ignore[override]
    """Fetch the AI-generated conclusion (summary and outline) of a Bilibili video.

    Args:
        video_aid: The aid of the video, as digits (``"170001"``) or
            with the ``av`` prefix (``"av170001"``).  BV ids and short
            links are not accepted; convert them with
            ``bilibili_video_info`` first.
        pid: The page number of the video, starting from 1.

    Returns:
        The summary text.  When Bilibili also produced an outline, it
        follows the summary with one ``## [position: <s>s] <title>``
        heading per section and one ``- [position: <s>s] <content>``
        line per point.  On failure, a sentence starting with
        ``Error:`` describing what went wrong.
    """
    return ConclusionFetcher().get_conclusion(video_aid, pid)
