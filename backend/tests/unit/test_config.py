from greenguard.config import Settings, env_flag, env_float


def test_env_flag(monkeypatch):
    monkeypatch.setenv("X_FLAG", "Yes")
    assert env_flag("X_FLAG") is True
    monkeypatch.setenv("X_FLAG", "0")
    assert env_flag("X_FLAG", True) is False
    assert env_flag("X_UNSET_FLAG", True) is True


def test_env_float_ignores_garbage(monkeypatch):
    monkeypatch.setenv("X_TIMEOUT", "soon")
    assert env_float("X_TIMEOUT", 4.0) == 4.0


def test_settings_from_env(monkeypatch):
    monkeypatch.delenv("OFFLINE_MODE", raising=False)
    monkeypatch.setenv("DEMO_OFFLINE", "1")
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
    monkeypatch.setenv("HISTORY_WINDOW", "0")
    monkeypatch.setenv("AI_TIMEOUT_S", "2.5")

    s = Settings.from_env()

    assert s.offline_mode is True
    assert s.ai_enabled is False
    assert s.gemini_api_key == "g-key"
    assert s.history_window == 1
    assert s.ai_timeout_s == 2.5
