"""Tests for secret wrapping and credential resolution."""

import pytest

from filemover.core.errors import ConfigError, CredentialNotFoundError, is_retryable
from filemover.core.secrets import (
    DictSecretBackend,
    EnvSecretBackend,
    FileSecretBackend,
    SecretsResolver,
    SecretValue,
    default_resolver,
)
from filemover.pipeline.capabilities import CredentialResolver, SecretsCredentialResolver


class TestSecretValue:
    def test_never_renders_value(self):
        secret = SecretValue("hunter2")
        assert str(secret) == "[REDACTED]"
        assert "hunter2" not in repr(secret)
        assert f"{secret}" == "[REDACTED]"
        assert secret.get_secret() == "hunter2"

    def test_equality_and_truthiness(self):
        assert SecretValue("a") == SecretValue("a")
        assert SecretValue("a") != "a"
        assert not SecretValue("")


# ── Backends ─────────────────────────────────────────────────────────────


class TestBackends:
    def test_env_prefers_prefixed_variable(self, monkeypatch):
        monkeypatch.setenv("SFTP_PROD_PASSWORD", "plain")
        assert EnvSecretBackend().get("sftp-prod.password") == "plain"

        monkeypatch.setenv("FILEMOVER_SECRET_SFTP_PROD_PASSWORD", "prefixed")
        assert EnvSecretBackend().get("sftp-prod.password") == "prefixed"

    def test_env_missing(self, monkeypatch):
        monkeypatch.delenv("NOPE_KEY", raising=False)
        monkeypatch.delenv("FILEMOVER_SECRET_NOPE_KEY", raising=False)
        assert EnvSecretBackend().get("nope-key") is None

    def test_file_backend_strips_and_caches(self, tmp_path):
        (tmp_path / "partner-a").write_text("s3cret\n")
        backend = FileSecretBackend(tmp_path)
        assert backend.get("partner-a") == "s3cret"

        (tmp_path / "partner-a").unlink()
        assert backend.get("partner-a") == "s3cret"
        backend.clear_cache()
        assert backend.get("partner-a") is None

    def test_file_backend_rejects_paths(self, tmp_path):
        (tmp_path / "outside").write_text("x")
        inner = tmp_path / "secrets"
        inner.mkdir()
        assert FileSecretBackend(inner).get("../outside") is None


# ── Resolver ─────────────────────────────────────────────────────────────


class TestSecretsResolver:
    def test_backends_tried_in_order(self):
        resolver = SecretsResolver([DictSecretBackend({"k": "first"}), DictSecretBackend({"k": "second"})])
        assert resolver.resolve("k").get_secret() == "first"

    def test_add_backend_with_priority(self):
        resolver = SecretsResolver([DictSecretBackend({"k": "low"})])
        resolver.add_backend(DictSecretBackend({"k": "high"}), priority=0)
        assert resolver.resolve("k").get_secret() == "high"

    def test_explicit_backend_reference(self, monkeypatch):
        monkeypatch.setenv("PARTNER_TOKEN", "from-env")
        resolver = SecretsResolver([DictSecretBackend({"PARTNER_TOKEN": "from-dict"})])
        assert resolver.resolve("secret:env:PARTNER_TOKEN").get_secret() == "from-env"
        assert resolver.resolve("secret:dict:PARTNER_TOKEN").get_secret() == "from-dict"

    def test_missing_is_terminal(self):
        with pytest.raises(CredentialNotFoundError) as exc:
            SecretsResolver([DictSecretBackend()]).resolve("partner-a")
        assert exc.value.reference == "partner-a"
        assert not is_retryable(exc.value)

    @pytest.mark.parametrize("reference", ["secret:nope", "secret:vault:key"])
    def test_bad_references(self, reference):
        with pytest.raises(ConfigError):
            SecretsResolver().resolve(reference)

    def test_default_resolver_reads_secret_files(self, tmp_path):
        (tmp_path / "partner-b-cred").write_text("from-file")
        assert default_resolver(tmp_path).resolve("partner-b-cred").get_secret() == "from-file"


class TestSecretsCredentialResolver:
    def test_satisfies_protocol(self):
        assert isinstance(SecretsCredentialResolver(SecretsResolver()), CredentialResolver)

    @pytest.mark.asyncio
    async def test_resolves(self):
        resolver = SecretsCredentialResolver(SecretsResolver([DictSecretBackend({"ref": "pw"})]))
        assert await resolver.resolve("ref") == SecretValue("pw")
