from siakad.config import Settings


def test_defaults():
    settings = Settings()
    assert settings.max_credits_per_term == 24
    assert settings.database_kwargs() == {"database_path": settings.database_path}


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SIAKAD_MAX_CREDITS_PER_TERM", "20")
    monkeypatch.setenv("SIAKAD_DATABASE_TYPE", "postgresql")
    monkeypatch.setenv("SIAKAD_DATABASE_HOST", "db.internal")

    settings = Settings()

    assert settings.max_credits_per_term == 20
    assert settings.database_kwargs()["host"] == "db.internal"
    assert settings.database_kwargs()["database"] == "siakad"


def test_init_values_win_over_environment(monkeypatch):
    monkeypatch.setenv("SIAKAD_LOCK_TIMEOUT", "1.5")
    assert Settings(lock_timeout=3.0).lock_timeout == 3.0
    assert Settings().lock_timeout == 1.5
