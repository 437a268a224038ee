import pytest
from pydantic import ValidationError

from semantic_search.config import ConfigurationError, Settings


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("EMBEDDING_PROVIDER", "Mock")
    monkeypatch.setenv("EMBEDDING_DIMENSION", "1536")
    monkeypatch.setenv("DB_NAME", "code_index")
    monkeypatch.setenv("PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("SKIP_UNCHANGED", "false")

    settings = Settings()

    assert settings.embedding_provider == "mock"
    assert settings.use_mock_embeddings
    assert settings.embedding_dimension == 1536
    assert settings.db_name == "code_index"
    assert settings.project_root == tmp_path
    assert settings.skip_unchanged is False


def test_defaults_match_openai_large_model(monkeypatch):
    monkeypatch.delenv("EMBEDDING_DIMENSION", raising=False)

    settings = Settings()

    assert settings.openai_embedding_model == "text-embedding-3-large"
    assert settings.embedding_dimension == 3072
    assert settings.hnsw_m == 32
    assert settings.hnsw_ef_construction == 128


def test_unknown_provider_is_rejected():
    with pytest.raises(ValidationError):
        Settings(embedding_provider="gemini")


def test_blank_api_key_is_treated_as_missing():
    settings = Settings(embedding_provider="openai", openai_api_key="   ")

    assert settings.openai_api_key is None
    with pytest.raises(ConfigurationError):
        settings.validate_for_startup()


def test_startup_validation():
    Settings(embedding_provider="mock", openai_api_key=None, embedding_dimension=8).validate_for_startup()
    Settings(embedding_provider="openai", openai_api_key="sk-test", embedding_dimension=3072).validate_for_startup()

    with pytest.raises(ConfigurationError):
        Settings(embedding_provider="openai", openai_api_key="sk-test", embedding_dimension=1536).validate_for_startup()
    with pytest.raises(ConfigurationError):
        Settings(embedding_provider="mock", embedding_dimension=0).validate_for_startup()


def test_database_url():
    settings = Settings(db_host="db", db_port=5433, db_user="indexer", db_password="s3cret", db_name="code")

    url = settings.database_url()
    assert url.render_as_string(hide_password=False) == "postgresql+psycopg2://indexer:s3cret@db:5433/code"
    assert settings.database_url("postgres").database == "postgres"
    assert Settings(db_password="").database_url().password is None
