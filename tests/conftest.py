"""Shared fixtures for the Bilibili tool tests.

The HTTP layer is replaced by a ``unittest.mock.Mock`` session whose
``get`` returns canned responses in order, so tests can also assert how
many requests were made and with which parameters.
"""

from unittest.mock import Mock

import pytest

from utils.wbi import WbiKeys

# Reference key pair from the public WBI documentation.
IMG_KEY = "7cd084941338484aae1ad9425b84077c"
SUB_KEY = "4932caff0ff746eab6f01bf08b70ac45"
MIXIN_KEY = "ea1db124af3c7062474693fa704f4ff8"


def make_response(payload=None, url="https://api.bilibili.com/"):
    response = Mock()
    response.json.return_value = payload
    response.url = url
    return response


def view_payload(aid=170001, mid=9824766, cids=(279786,), bvid="BV17x411w7KC"):
    return {
        "code": 0,
        "message": "0",
        "data": {
            "aid": aid,
            "bvid": bvid,
            "title": "Test video",
            "owner": {"mid": mid, "name": "uploader"},
            "pages": [
                {"page": i, "cid": cid, "part": f"Part {i}", "duration": 125}
                for i, cid in enumerate(cids, start=1)
            ],
        },
    }


def conclusion_payload(model_result):
    return {"code": 0, "message": "0", "data": {"code": 0, "model_result": model_result}}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BILIBILI_COOKIES", "BILIBILI_TIMEOUT", "BILIBILI_MAX_OUTPUT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def key_provider():
    provider = Mock()
    provider.get_keys.return_value = WbiKeys(IMG_KEY, SUB_KEY)
    return provider
