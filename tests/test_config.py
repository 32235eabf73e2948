from rukun.config import Settings


def test_cors_origins_are_normalised_without_trailing_slash():
    settings = Settings(cors_origins=["http://localhost:5173/", "https://rw05.example.com"])

    assert settings.cors_allow_origins == ["http://localhost:5173", "https://rw05.example.com"]


def test_dues_defaults():
    settings = Settings()

    assert settings.reference_timezone == "Asia/Jakarta"
    assert settings.default_due_day == 10
    assert settings.currency == "IDR"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("DEFAULT_DUE_DAY", "5")
    monkeypatch.setenv("LOG_FORMAT", "json")

    settings = Settings()

    assert settings.default_due_day == 5
    assert settings.log_format == "json"
