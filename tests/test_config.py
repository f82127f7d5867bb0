import pytest

from tracking_api.config import Settings


def test_allow_list_is_trimmed_and_case_insensitive():
    settings = Settings(authorized_userids=" A01234567 ,, b12345678 ")
    assert settings.allowed_user_ids() == {"a01234567", "b12345678"}
    assert settings.is_authorized("a01234567")
    assert settings.is_authorized(" B12345678 ")
    assert not settings.is_authorized("C00000000")


def test_empty_allow_list_rejects_everyone():
    settings = Settings(authorized_userids="")
    assert settings.allowed_user_ids() == set()
    assert not settings.is_authorized("A01234567")


def test_db_type_alias(monkeypatch):
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    monkeypatch.setenv("DB_TYPE", "Postgres")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@localhost/usage")
    settings = Settings()
    assert settings.validate_settings()
    assert settings.storage_backend == "postgres"


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv("MAX_REQUESTS_PER_USER", "7")
    monkeypatch.setenv("PORT", "8080")
    settings = Settings()
    assert settings.max_requests_per_user == 7
    assert settings.port == 8080
    assert settings.context_window_size == 5


@pytest.mark.parametrize(
    "overrides",
    [
        {"storage_backend": "mongodb"},
        {"max_requests_per_user": 0},
        {"context_window_size": 0},
        {"storage_backend": "postgres", "database_url": None},
    ],
)
def test_validate_settings_rejects_bad_values(overrides):
    with pytest.raises(ValueError):
        Settings(**overrides).validate_settings()


def test_cors_origins_dedupes():
    settings = Settings(frontend_url="http://localhost:8501", ui_url="http://localhost:8501")
    assert settings.cors_origins() == ["http://localhost:8501"]
    assert Settings().cors_origins() == ["http://localhost:5173", "http://localhost:8501"]
