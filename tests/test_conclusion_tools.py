import hashlib

import pytest
import requests

from conftest import MIXIN_KEY, conclusion_payload, make_response, view_payload
from tools import conclusion_tools
from tools.conclusion_tools import (
    UNAVAILABLE_MESSAGE,
    UNKNOWN_RESULT_MESSAGE,
    ConclusionFetcher,
    bilibili_video_conclusion,
)
from utils.bili_api import CONCLUSION_URL, NAV_URL, VIEW_URL, BiliClient, UpstreamTimeout
from utils.wbi import WbiKeyProvider

OUTLINE = {
    "result_type": 2,
    "summary": "S",
    "outline": [
        {
            "title": "Intro",
            "timestamp": 10,
            "part_outline": [
                {"timestamp": 12, "content": "Hello"},
                {"timestamp": 30, "content": "World"},
            ],
        },
        {"title": "Wrap-up", "timestamp": 90, "part_outline": []},
    ],
}


@pytest.fixture
def fetcher(session, key_provider):
    return ConclusionFetcher(
        client=BiliClient(session=session), key_provider=key_provider, timeout=5
    )


def _respond(session, model_result, cids=(279786,)):
    session.get.side_effect = [
        make_response(view_payload(cids=cids)),
        make_response(conclusion_payload(model_result)),
    ]


@pytest.mark.parametrize("video_aid", ["170001", "av170001"])
def test_both_id_forms_request_the_same_video(fetcher, session, video_aid):
    _respond(session, {"result_type": 1, "summary": "S"})
    fetcher.get_conclusion(video_aid, 1)

    view_call = session.get.call_args_list[0]
    assert view_call.args[0] == VIEW_URL
    assert view_call.kwargs["params"] == {"aid": 170001}


@pytest.mark.parametrize(
    "video_aid",
    [
        "BV17x411w7KC",
        "https://b23.tv/abc",
        "av",
        "12 34",
        " 170001",
        "170001\n",
        "av١٢٣",  # Arabic-Indic digits
        "１２３",  # fullwidth digits
    ],
)
def test_invalid_id_makes_no_requests(fetcher, session, key_provider, video_aid):
    result = fetcher.get_conclusion(video_aid, 1)

    assert result.startswith("Error: ")
    assert "bilibili_video_info" in result
    session.get.assert_not_called()
    key_provider.get_keys.assert_not_called()


def test_invalid_page_makes_no_requests(fetcher, session):
    result = fetcher.get_conclusion("170001", 0)

    assert result.startswith("Error: ")
    session.get.assert_not_called()


def test_page_out_of_range_skips_conclusion_request(fetcher, session):
    _respond(session, {"result_type": 1, "summary": "S"}, cids=(1, 2))
    result = fetcher.get_conclusion("170001", 3)

    assert result.startswith("Error: ")
    assert "out of range" in result
    assert session.get.call_count == 1


def test_null_page_number_in_metadata_still_resolves(fetcher, session):
    payload = view_payload()
    payload["data"]["pages"][0]["page"] = None
    session.get.side_effect = [
        make_response(payload),
        make_response(conclusion_payload({"result_type": 1, "summary": "S"})),
    ]
    assert fetcher.get_conclusion("170001", 1) == "S"


def test_signed_conclusion_request(fetcher, session, monkeypatch):
    monkeypatch.setattr("utils.wbi.time.time", lambda: 1702204169)
    _respond(session, {"result_type": 1, "summary": "S"}, cids=(11, 22))
    fetcher.get_conclusion("av170001", 2)

    call = session.get.call_args_list[1]
    params = call.kwargs["params"]
    assert call.args[0] == CONCLUSION_URL
    assert list(params) == ["aid", "cid", "up_mid", "wts", "w_rid"]
    query = "aid=170001&cid=22&up_mid=9824766&wts=1702204169"
    assert params["w_rid"] == hashlib.md5((query + MIXIN_KEY).encode()).hexdigest()


def test_every_request_uses_tool_timeout_and_headers(fetcher, session, key_provider, monkeypatch):
    monkeypatch.setenv("BILIBILI_COOKIES", "SESSDATA=abc")
    _respond(session, {"result_type": 1, "summary": "S"})
    fetcher.get_conclusion("170001", 1)

    for call in session.get.call_args_list:
        assert call.kwargs["timeout"] == 5
        assert call.kwargs["headers"]["Cookie"] == "SESSDATA=abc"
        assert call.kwargs["headers"]["Referer"] == "https://www.bilibili.com/video/av170001"
    key_provider.get_keys.assert_called_once_with(timeout=5)


def test_result_type_0_returns_restriction_message(fetcher, session):
    _respond(session, {"result_type": 0, "summary": "ignored", "outline": None})
    assert fetcher.get_conclusion("170001", 1) == UNAVAILABLE_MESSAGE


def test_result_type_1_returns_summary_verbatim(fetcher, session):
    _respond(session, {"result_type": 1, "summary": "S"})
    assert fetcher.get_conclusion("170001", 1) == "S"


def test_result_type_2_renders_outline_in_order(fetcher, session):
    _respond(session, OUTLINE)
    result = fetcher.get_conclusion("170001", 1)

    assert result == (
        "S\n"
        "\n"
        "Outline (generated by BiliAPI):\n"
        "## [position: 10s] Intro\n"
        "- [position: 12s] Hello\n"
        "- [position: 30s] World\n"
        "## [position: 90s] Wrap-up"
    )


def test_unknown_result_type(fetcher, session):
    _respond(session, {"result_type": 99})
    assert fetcher.get_conclusion("170001", 1) == UNKNOWN_RESULT_MESSAGE


def test_timeout_on_view_request(fetcher, session):
    session.get.side_effect = requests.Timeout("read timed out")
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "timed out after 5s" in result


def test_timeout_on_key_fetch(fetcher, session, key_provider):
    session.get.side_effect = [make_response(view_payload())]
    key_provider.get_keys.side_effect = UpstreamTimeout(
        "Request to https://api.bilibili.com/x/web-interface/nav timed out after 5s."
    )
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "nav timed out" in result
    key_provider.get_keys.assert_called_once_with(timeout=5)
    assert session.get.call_count == 1


def test_key_fetch_timeout_through_provider(session):
    session.get.side_effect = [make_response(view_payload()), requests.Timeout("read timed out")]
    client = BiliClient(session=session)
    fetcher = ConclusionFetcher(
        client=client, key_provider=WbiKeyProvider(client=client), timeout=5
    )
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "timed out after 5s" in result
    assert session.get.call_args_list[1].args[0] == NAV_URL
    assert session.get.call_args_list[1].kwargs["timeout"] == 5
    assert session.get.call_count == 2


def test_timeout_on_conclusion_request(fetcher, session):
    session.get.side_effect = [make_response(view_payload()), requests.Timeout("read timed out")]
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "timed out" in result
    assert session.get.call_count == 2


def test_upstream_error_code_is_reported(fetcher, session):
    session.get.side_effect = [
        make_response(view_payload()),
        make_response({"code": -403, "message": "访问权限不足"}),
    ]
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "-403" in result


def test_unexpected_exception_is_returned_as_text(fetcher, session):
    session.get.side_effect = RuntimeError("boom")
    result = fetcher.get_conclusion("170001", 1)

    assert result.startswith("Error: ")
    assert "boom" in result


def test_output_is_truncated_to_max_length(session, key_provider):
    fetcher = ConclusionFetcher(
        client=BiliClient(session=session), key_provider=key_provider, timeout=5,
        max_output_length=3,
    )
    _respond(session, {"result_type": 1, "summary": "abcdef"})
    assert fetcher.get_conclusion("170001", 1) == "abc"


def test_fetcher_reads_timeout_from_environment(monkeypatch, key_provider):
    monkeypatch.setenv("BILIBILI_TIMEOUT", "12")
    assert ConclusionFetcher(key_provider=key_provider).timeout == 12.0


def test_tool_returns_text_for_invalid_id(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(requests.Session, "get", fail)
    result = bilibili_video_conclusion("BV17x411w7KC", 1)
    assert result.startswith("Error: Invalid videoAid")


def test_tool_delegates_to_fetcher(monkeypatch):
    calls = []

    class FakeFetcher:
        def get_conclusion(self, video_aid, pid):
            calls.append((video_aid, pid))
            return "S"

    monkeypatch.setattr(conclusion_tools, "ConclusionFetcher", FakeFetcher)
    assert bilibili_video_conclusion("av170001", 2) == "S"
    assert calls == [("av170001", 2)]
