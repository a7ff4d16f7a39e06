import logging
import os

import pytest

from fleet.lib import secrets


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("OPENAI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(secrets, "_warned", set())


def test_environment_wins_over_files(tmp_path, monkeypatch):
    (tmp_path / ".env.local").write_text("OPENAI_API_KEY=from-file\n")
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    assert secrets.resolve("OPENAI_API_KEY", cwd=tmp_path) == "from-env"


def test_first_key_found_in_local_files(tmp_path):
    (tmp_path / "secrets").mkdir()
    (tmp_path / "secrets" / "local.env").write_text("GOOGLE_API_KEY=google-key\n")
    assert secrets.resolve("GEMINI_API_KEY", "GOOGLE_API_KEY", cwd=tmp_path) == "google-key"


def test_env_local_wins_over_secrets_dir(tmp_path):
    (tmp_path / ".env.local").write_text("OPENAI_API_KEY=first\n")
    (tmp_path / "secrets").mkdir()
    (tmp_path / "secrets" / "local.env").write_text("OPENAI_API_KEY=second\n")
    assert secrets.resolve("OPENAI_API_KEY", cwd=tmp_path) == "first"


def test_missing_key_returns_none(tmp_path):
    assert secrets.resolve("OPENAI_API_KEY", cwd=tmp_path) is None


def test_warns_once_on_broad_permissions(tmp_path, caplog):
    path = tmp_path / ".env.local"
    path.write_text("OPENAI_API_KEY=k\n")
    os.chmod(path, 0o644)

    with caplog.at_level(logging.WARNING, logger="fleet.lib.secrets"):
        secrets.resolve("OPENAI_API_KEY", cwd=tmp_path)
        secrets.resolve("OPENAI_API_KEY", cwd=tmp_path)

    warnings = [r for r in caplog.records if "chmod 600" in r.getMessage()]
    assert len(warnings) == 1


def test_private_file_does_not_warn(tmp_path, caplog):
    path = tmp_path / ".env.local"
    path.write_text("OPENAI_API_KEY=k\n")
    os.chmod(path, 0o600)

    with caplog.at_level(logging.WARNING, logger="fleet.lib.secrets"):
        secrets.resolve("OPENAI_API_KEY", cwd=tmp_path)

    assert not caplog.records
