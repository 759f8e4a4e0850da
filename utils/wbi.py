"""WBI request signing for the Bilibili web API.

Some read endpoints (the video conclusion among them) reject requests
that do not carry a ``wts`` timestamp and a ``w_rid`` signature.  The
signature is computed as follows:

1. Fetch the current ``img_key`` and ``sub_key``.  They are the file
   stems of the two image URLs under ``data.wbi_img`` in the ``nav``
   response and rotate roughly once a day.
2. Concatenate them and permute the 64 characters with
   ``MIXIN_KEY_ENC_TAB``; the first 32 characters are the mixin key.
3. Add ``wts`` (Unix time in seconds) to the parameters, sort them by
   key, drop the characters ``!'()*`` from every value and URL-encode
   the result.
4. ``w_rid`` is the hex MD5 of that query string followed by the mixin
   key.

Any deviation is not reported as an HTTP error: the API answers with
``code: -403`` or an empty payload instead, so keep this module exact.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Dict, NamedTuple, Optional
from urllib.parse import quote, urlencode

from utils.bili_api import NAV_URL, BiliClient, UpstreamShapeError, build_headers


logger = logging.getLogger(__name__)

MIXIN_KEY_ENC_TAB = [
    46, 47, 18, 2, 53, 8, 23, 32, 15, 50, 10, 31, 58, 3, 45, 35, 27, 43, 5, 49,
    33, 9, 42, 19, 29, 28, 14, 39, 12, 38, 41, 13, 37, 48, 7, 16, 24, 55, 40,
    61, 26, 17, 0, 1, 60, 51, 30, 4, 22, 25, 54, 21, 56, 59, 6, 63, 57, 62, 11,
    36, 20, 34, 44, 52,
]

# Characters Bilibili strips from parameter values before signing.
_FILTERED_CHARS = "!'()*"

# Seconds a fetched key pair is reused before asking ``nav`` again.
WBI_KEY_TTL = 3600.0


class WbiKeys(NamedTuple):
    img_key: str
    sub_key: str


def get_mixin_key(orig: str) -> str:
    """Permute ``img_key + sub_key`` into the 32-character mixin key."""
    return "".join(orig[i] for i in MIXIN_KEY_ENC_TAB)[:32]


def enc_wbi(
    params: Dict[str, Any],
    img_key: str,
    sub_key: str,
    wts: Optional[int] = None,
) -> Dict[str, str]:
    """Return a signed copy of ``params``.

    Args:
        params: Query parameters to sign.  Not modified.
        img_key: Image key from the key provider.
        sub_key: Sub key from the key provider.
        wts: Timestamp in seconds.  Defaults to the current time.

    Returns:
        The sorted, filtered parameters plus ``wts`` and ``w_rid``, in
        the order they should be sent.
    """
    mixin_key = get_mixin_key(img_key + sub_key)
    signed = dict(params)
    signed["wts"] = round(time.time()) if wts is None else wts
    signed = {
        key: "".join(ch for ch in str(value) if ch not in _FILTERED_CHARS)
        for key, value in sorted(signed.items())
    }
    query = urlencode(signed, quote_via=quote)
    signed["w_rid"] = hashlib.md5((query + mixin_key).encode("utf-8")).hexdigest()
    return signed


def _key_from_url(url: str) -> str:
    """``https://i0.hdslb.com/bfs/wbi/7cd0...077c.png`` -> ``7cd0...077c``."""
    return url.rsplit("/", 1)[-1].split(".", 1)[0]


class WbiKeyProvider:
    """Fetch and cache the WBI key pair.

    The ``nav`` endpoint answers with ``code: -101`` for anonymous
    visitors but still includes ``wbi_img``, so its envelope code is
    not checked.
    """

    def __init__(self, client: Optional[BiliClient] = None, ttl: float = WBI_KEY_TTL) -> None:
        self.client = client if client is not None else BiliClient()
        self.ttl = ttl
        self._keys: Optional[WbiKeys] = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def get_keys(self, timeout: Optional[float] = None, force_refresh: bool = False) -> WbiKeys:
        with self._lock:
            now = time.monotonic()
            if not force_refresh and self._keys is not None and now - self._fetched_at < self.ttl:
                return self._keys
            payload = self.client.get_json(
                NAV_URL, headers=build_headers(), timeout=timeout, check_code=False
            )
            wbi_img = (payload.get("data") or {}).get("wbi_img") or {}
            img_url = wbi_img.get("img_url")
            sub_url = wbi_img.get("sub_url")
            if not img_url or not sub_url:
                raise UpstreamShapeError("Missing 'wbi_img' keys in nav response.")
            self._keys = WbiKeys(_key_from_url(img_url), _key_from_url(sub_url))
            self._fetched_at = now
            logger.info("Fetched new WBI keys")
            return self._keys

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0


# Process-wide provider shared by the tools.
default_key_provider = WbiKeyProvider()
