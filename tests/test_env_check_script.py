"""Tests for the environment drift detection script."""

from __future__ import annotations

from pathlib import Path

import pytest

from scripts import check_env

REQUIRED_ENV_KEYS = [
    "AIRTABLE_CLIENT_ID",
    "AIRTABLE_CLIENT_SECRET",
    "AIRTABLE_REDIRECT_URI",
    "SESSION_SECRET",
    "APP_ENV",
    "COOKIE_SECURE",
    "BACKEND_BASE_URL",
]

VALID_ENV = {
    "AIRTABLE_CLIENT_ID": "abc",
    "AIRTABLE_CLIENT_SECRET": "secret",
    "AIRTABLE_REDIRECT_URI": "https://api.example.com/auth/airtable/callback",
    "SESSION_SECRET": "s" * 40,
}


def _write_env(env_path: Path, **values: str) -> None:
    contents = "\n".join(f"{key}={value}" for key, value in values.items())
    env_path.write_text(contents + "\n", encoding="utf-8")


def _clear_required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in REQUIRED_ENV_KEYS:
        # setenv first so keys loaded from the file are removed on teardown.
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


@pytest.mark.parametrize("command", ["record", "verify", "check"])
def test_main_requires_existing_env_file(tmp_path: Path, command: str) -> None:
    env_file = tmp_path / ".missing-env"
    hash_file = tmp_path / ".env.sha256"

    argv = [command, "--env-file", str(env_file)]
    if command != "check":
        argv.extend(["--hash-file", str(hash_file)])

    exit_code = check_env.main(argv)
    assert exit_code == check_env.EXIT_RUNTIME_ERROR


def test_record_and_verify_detects_mismatched_checksum(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    hash_file = tmp_path / ".env.sha256"

    _clear_required_env(monkeypatch)
    _write_env(env_file, **VALID_ENV)

    exit_code = check_env.main(
        ["record", "--env-file", str(env_file), "--hash-file", str(hash_file)]
    )
    assert exit_code == check_env.EXIT_OK
    assert hash_file.read_text(encoding="utf-8").strip()

    _clear_required_env(monkeypatch)
    exit_code = check_env.main(
        ["verify", "--env-file", str(env_file), "--hash-file", str(hash_file)]
    )
    assert exit_code == check_env.EXIT_OK

    _write_env(env_file, **{**VALID_ENV, "AIRTABLE_CLIENT_SECRET": "different"})

    _clear_required_env(monkeypatch)
    exit_code = check_env.main(
        ["verify", "--env-file", str(env_file), "--hash-file", str(hash_file)]
    )
    assert exit_code == check_env.EXIT_CHECKSUM_ERROR


def test_validation_failure_for_missing_required_values(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"

    _clear_required_env(monkeypatch)
    values = dict(VALID_ENV)
    del values["AIRTABLE_CLIENT_SECRET"]
    _write_env(env_file, **values)

    exit_code = check_env.main(["check", "--env-file", str(env_file)])
    assert exit_code == check_env.EXIT_VALIDATION_ERROR


def test_strict_mode_fails_on_lint_problems(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"

    _clear_required_env(monkeypatch)
    _write_env(
        env_file,
        **{
            **VALID_ENV,
            "AIRTABLE_REDIRECT_URI": "https://api.example.com/oauth/callback",
            "SESSION_SECRET": "short",
        },
    )

    assert check_env.main(["check", "--env-file", str(env_file)]) == check_env.EXIT_OK

    _clear_required_env(monkeypatch)
    exit_code = check_env.main(["check", "--strict", "--env-file", str(env_file)])
    assert exit_code == check_env.EXIT_LINT_ERROR


def test_lint_flags_insecure_production_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"

    _clear_required_env(monkeypatch)
    _write_env(
        env_file,
        **{
            **VALID_ENV,
            "APP_ENV": "production",
            "COOKIE_SECURE": "false",
            "BACKEND_BASE_URL": "http://api.example.com",
        },
    )

    settings = check_env._validate_settings(env_file)
    problems = check_env.lint_settings(settings)

    assert any("COOKIE_SECURE" in problem for problem in problems)
    assert any("BACKEND_BASE_URL" in problem for problem in problems)
    assert not any("AIRTABLE_REDIRECT_URI" in problem for problem in problems)
