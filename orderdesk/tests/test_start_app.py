import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

import config  # noqa: E402
import start_app  # noqa: E402
from start_app import main  # noqa: E402


def _fake_uvicorn(monkeypatch):
    calls = []

    def fake_run(app, **kwargs):
        calls.append((app, kwargs))

    monkeypatch.setattr(start_app, "uvicorn", type("U", (), {"run": staticmethod(fake_run)}))
    monkeypatch.setattr(start_app, "load_dotenv", lambda: None)
    return calls


def test_in_memory_database(monkeypatch, capsys):
    monkeypatch.delenv("COURIER_API_KEY", raising=False)
    monkeypatch.delenv("DELIVERY_PROXY_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./ignored.db")
    calls = _fake_uvicorn(monkeypatch)

    main(["--in-memory", "--port", "9001"])

    app, kwargs = calls[0]
    assert app == "orderdesk.app.main:app"
    assert kwargs["port"] == 9001
    assert config.get_settings().database_url == "sqlite+aiosqlite://"
    assert "delivery orders will not be booked" in capsys.readouterr().err
    config.get_settings.cache_clear()


def test_missing_dependency_exits(monkeypatch, capsys):
    def broken(app, **kwargs):
        raise ModuleNotFoundError("nope", name="aiosqlite")

    monkeypatch.setattr(start_app, "uvicorn", type("U", (), {"run": staticmethod(broken)}))
    monkeypatch.setattr(start_app, "load_dotenv", lambda: None)
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1
    assert "pip install -e ." in capsys.readouterr().err
    config.get_settings.cache_clear()
