"""
Reusable prompts to guide the language model when using the Bilibili tools.

They explain which identifier each tool expects, how to chain
``bilibili_video_info`` into ``bilibili_video_conclusion`` and how to
read the outline that comes back.  They are registered with FastMCP via
the ``@mcp.prompt()`` decorator.
"""

from __future__ import annotations

# Import the shared MCP server.  Absolute import so this works when the
# server is started from the project root.
from server import mcp  # type: ignore


@mcp.prompt()
def video_conclusion_guidance() -> str:
    """
    Guidance for summarising Bilibili videos.

    When a user shares a Bilibili video and asks what it is about, call
    ``bilibili_video_conclusion`` with:

    - ``video_aid``: the numeric aid as a string, with or without the
      ``av`` prefix (``"170001"`` or ``"av170001"``).
    - ``pid``: the page number, starting from 1.  Multi-part uploads
      have one page per part; links with ``?p=3`` refer to page 3.

    If the user gives a BV id (``BV1xx411c7mD``), a full video link or
    a ``b23.tv`` short link, call ``bilibili_video_info`` first.  It
    returns the aid and lists every page with its title and duration.

    The conclusion is either a plain summary, or a summary followed by
    an outline.  Outline headings look like
    ``## [position: 125s] Title`` and points like
    ``- [position: 130s] ...``; the positions are seconds from the
    start of the page and can be quoted to the user as ``2:05``.

    A reply saying Bilibili cannot provide a conclusion is a
    restriction of the platform (news, ads, very short videos and so
    on), not a failure of the tool: tell the user rather than retrying.
    Replies starting with ``Error:`` describe what went wrong.
    """
    return (
        "To summarise a Bilibili video, call `bilibili_video_conclusion` with `video_aid` set to the "
        "numeric aid (digits, optionally prefixed with 'av') and `pid` set to the page number starting "
        "from 1. If you only have a BV id, a video link or a b23.tv short link, call "
        "`bilibili_video_info` first to get the aid and the list of pages. Outline entries are "
        "prefixed with [position: Ns], the offset in seconds from the start of the page. If the tool "
        "says Bilibili cannot provide a conclusion, that is a platform restriction; tell the user "
        "instead of retrying."
    )
