#!/usr/bin/env python3
"""Print a Bilibili cookie string for ``BILIBILI_COOKIES``.

Opens bilibili.com in a Playwright-controlled Chromium, waits until the
``SESSDATA`` login cookie is present (letting you log in interactively
when it is not) and prints the cookies as a ``Cookie`` header value.
The browser state is saved so later runs can be headless.
"""

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from playwright.async_api import async_playwright

DEFAULT_URL = "https://www.bilibili.com"
DEFAULT_STORAGE = Path.home() / ".bili_storage.json"
LOGIN_COOKIE = "SESSDATA"
# Cookies the web API looks at; anything else is left out of the header.
WANTED_COOKIES = ("SESSDATA", "bili_jct", "DedeUserID", "DedeUserID__ckMd5", "buvid3", "buvid4")


def format_cookie_header(cookies) -> str:
    values = {c["name"]: c["value"] for c in cookies if c.get("name") in WANTED_COOKIES}
    return "; ".join(f"{name}={values[name]}" for name in WANTED_COOKIES if name in values)


def _has_login(cookies) -> bool:
    return any(c.get("name") == LOGIN_COOKIE and c.get("value") for c in cookies)


async def fetch_cookies(url: str, storage: Path, headless: bool, wait: int, login_wait: int):
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        context_kwargs = {}
        if storage.exists():
            context_kwargs["storage_state"] = str(storage)
        context = await browser.new_context(**context_kwargs)
        page = await context.new_page()
        await page.goto(url, wait_until="domcontentloaded")

        # Give the site a moment to set its tracking cookies
        deadline = time.time() + wait
        cookies = await context.cookies(url)
        while not _has_login(cookies) and time.time() < deadline:
            await page.wait_for_timeout(500)
            cookies = await context.cookies(url)

        # No login stored: let the user log in in a visible window
        if not _has_login(cookies):
            if headless:
                await browser.close()
                browser = await p.chromium.launch(headless=False)
                context = await browser.new_context()
                page = await context.new_page()
                await page.goto(url)
            print(
                f"Log in to Bilibili in the browser window (waiting up to {login_wait}s)...",
                file=sys.stderr,
            )
            deadline = time.time() + login_wait
            cookies = await context.cookies(url)
            while not _has_login(cookies) and time.time() < deadline:
                await page.wait_for_timeout(1000)
                cookies = await context.cookies(url)

        if _has_login(cookies):
            state = await context.storage_state()
            storage.write_text(json.dumps(state))

        await browser.close()
        if not _has_login(cookies):
            raise RuntimeError("Could not capture the SESSDATA cookie. Make sure you logged in.")
        return cookies


def main():
    ap = argparse.ArgumentParser(description="Print a BILIBILI_COOKIES value.")
    ap.add_argument("--url", default=DEFAULT_URL, help="Page to open (default: %(default)s).")
    ap.add_argument(
        "--storage",
        default=str(DEFAULT_STORAGE),
        help="Path to Playwright storage state.",
    )
    ap.add_argument(
        "--headless",
        action="store_true",
        help="Force headless mode (first run needs a visible login).",
    )
    ap.add_argument(
        "--wait",
        type=int,
        default=5,
        help="Seconds to wait for stored cookies before prompting login (default: 5).",
    )
    ap.add_argument(
        "--login-wait",
        type=int,
        default=120,
        help="Seconds to wait for an interactive login (default: 120).",
    )
    ap.add_argument(
        "--json",
        action="store_true",
        help="Print JSON with the cookie header and expiry instead of the raw header.",
    )
    args = ap.parse_args()

    try:
        cookies = asyncio.run(
            fetch_cookies(args.url, Path(args.storage), args.headless, args.wait, args.login_wait)
        )
    except Exception as e:
        print(f"[error] {e}", file=sys.stderr)
        sys.exit(1)

    header = format_cookie_header(cookies)
    if args.json:
        login = next(c for c in cookies if c.get("name") == LOGIN_COOKIE)
        expires = login.get("expires") or 0
        out = {
            "cookie": header,
            "expires": expires if expires > 0 else None,
            "days_left": int((expires - time.time()) / 86400) if expires > 0 else None,
        }
        print(json.dumps(out))
    else:
        print(header)


if __name__ == "__main__":
    main()
