import uvicorn

from judging import __main__ as entry
from judging.config import get_settings


def test_server_entry_point_runs_the_app(monkeypatch):
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    entry.main()
    settings = get_settings()
    assert calls == [("judging.main:app", {"host": settings.host, "port": settings.port})]
