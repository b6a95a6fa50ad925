import requests

from golazo.core.models import Tier
from golazo.services.subscribers import StaticSubscriberDirectory
from golazo.services.telegram import ConsoleNotifier, TelegramNotifier


class FakeResponse:
    def __init__(self, ok=True, status_code=200):
        self.ok = ok
        self.status_code = status_code
        self.text = "" if ok else "Bad Request: chat not found"


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []

    def post(self, url, data=None, timeout=None):
        self.posts.append((url, data))
        if self.error:
            raise self.error
        return self.response


def test_telegram_posts_html_message():
    session = FakeSession()
    notifier = TelegramNotifier("123:abc", session=session)
    assert notifier.send_main_alert("42", "<b>hi</b>") is True

    url, data = session.posts[0]
    assert url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert data["chat_id"] == "42"
    assert data["parse_mode"] == "HTML"


def test_telegram_failures_return_false():
    assert TelegramNotifier(None, session=FakeSession()).send_pre_alert("42", "x") is False
    assert TelegramNotifier("t", session=FakeSession()).send_pre_alert("", "x") is False

    rejected = FakeSession(response=FakeResponse(ok=False, status_code=400))
    assert TelegramNotifier("t", session=rejected).send_detailed_analysis("42", "x") is False

    broken = FakeSession(error=requests.ConnectionError("offline"))
    assert TelegramNotifier("t", session=broken).send_main_alert("42", "x") is False


def test_console_notifier_counts():
    notifier = ConsoleNotifier()
    assert notifier.send_pre_alert("u", "a")
    assert notifier.send_main_alert("u", "b")
    assert notifier.sent == 2


def test_subscribers_from_env(monkeypatch):
    monkeypatch.setenv("SUBSCRIBERS_FREE", "1, 2,,3")
    monkeypatch.setenv("SUBSCRIBERS_INSIDER", "")
    monkeypatch.delenv("SUBSCRIBERS_ESTRATEGA", raising=False)

    directory = StaticSubscriberDirectory.from_env()
    assert directory.get_users_by_tier(Tier.FREE) == ["1", "2", "3"]
    assert directory.get_users_by_tier(Tier.INSIDER) == []
    assert directory.get_users_by_tier("estratega") == []
