import json

import respx
from httpx import Response

import mascot_cli

API = "http://mascot.test/api/mascot"


def test_chat_prints_answer_and_sources(capsys):
    body = {
        "output": "Rest and ice the knee.",
        "sources": [
            {"id": "physio-au", "title": "Choose Physio", "url": "https://choose.physio/"},
            {"id": "file-1", "title": "guide.pdf", "file_id": "file-1"},
        ],
        "thread_id": "thread_1",
    }
    with respx.mock(assert_all_called=True) as respx_mock:
        route = respx_mock.post(API).mock(return_value=Response(200, json=body))
        code = mascot_cli.main(
            ["--base-url", "http://mascot.test/", "chat", "knee pain", "--category", "physical"]
        )
    assert code == 0
    sent = json.loads(route.calls.last.request.content)
    assert sent == {"message": "knee pain", "followup": False, "categoryLabel": "physical"}
    out = capsys.readouterr().out
    assert "Rest and ice the knee." in out
    assert "- Choose Physio <https://choose.physio/>" in out
    assert "- guide.pdf <file file-1>" in out
    assert "thread_id: thread_1" in out


def test_chat_peeks_until_reply(monkeypatch, capsys):
    monkeypatch.setattr(mascot_cli.time, "sleep", lambda _: None)
    responses = [
        Response(202, json={"pending": True, "thread_id": "thread_7"}),
        Response(202, json={"pending": True, "thread_id": "thread_7"}),
        Response(200, json={"output": "Done.", "sources": [], "thread_id": "thread_7"}),
    ]
    with respx.mock() as respx_mock:
        route = respx_mock.post(API).mock(side_effect=responses)
        code = mascot_cli.main(["--base-url", "http://mascot.test", "chat", "hello"])
    assert code == 0
    assert route.call_count == 3
    peek = json.loads(route.calls.last.request.content)
    assert peek["peek"] is True
    assert peek["thread_id"] == "thread_7"
    assert "Done." in capsys.readouterr().out


def test_chat_reports_errors(capsys):
    with respx.mock() as respx_mock:
        respx_mock.post(API).mock(return_value=Response(502, json={"error": "rate_limited"}))
        code = mascot_cli.main(["--base-url", "http://mascot.test", "chat", "hello"])
    assert code == 1
    assert "HTTP 502: rate_limited" in capsys.readouterr().out


def test_chat_gives_up_after_timeout(monkeypatch, capsys):
    monkeypatch.setattr(mascot_cli.time, "sleep", lambda _: None)
    with respx.mock() as respx_mock:
        respx_mock.post(API).mock(return_value=Response(202, json={"pending": True, "thread_id": "t"}))
        code = mascot_cli.main(["--base-url", "http://mascot.test", "chat", "hello", "--timeout", "0"])
    assert code == 2
    assert "Timed out" in capsys.readouterr().out


def test_no_command_prints_help():
    assert mascot_cli.main([]) == 1
