import pytest

from shulam_x402.config import X402Settings, load_settings
from shulam_x402.errors import ConfigError
from shulam_x402.facilitator import DEFAULT_FACILITATOR_URL


def test_defaults():
    settings = load_settings(env_file=None, environ={})

    assert settings == X402Settings()
    assert settings.facilitator_url == DEFAULT_FACILITATOR_URL
    assert settings.facilitator_timeout == 5.0
    assert settings.max_retries == 2
    assert settings.webhook_secret is None


def test_environment_values():
    settings = load_settings(
        env_file=None,
        environ={
            "X402_FACILITATOR_URL": "http://localhost:8080/",
            "X402_FACILITATOR_TIMEOUT_SECONDS": "1.5",
            "X402_FACILITATOR_MAX_RETRIES": "0",
            "X402_FACILITATOR_BACKOFF_SECONDS": "0.05",
            "X402_PROVIDER_NAME": "Weather API",
            "X402_WEBHOOK_SECRET": "s3cr3t",
        },
    )

    assert settings.facilitator_url == "http://localhost:8080"
    assert settings.facilitator_timeout == 1.5
    assert settings.max_retries == 0
    assert settings.backoff_seconds == 0.05
    assert settings.provider_name == "Weather API"
    assert settings.webhook_secret == "s3cr3t"


def test_layering(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "X402_PROVIDER_NAME=from-file\n"
        "X402_FACILITATOR_MAX_RETRIES=5\n"
        "X402_FACILITATOR_TIMEOUT_SECONDS=9\n"
    )

    settings = load_settings(
        env_file=str(env_file),
        environ={"X402_FACILITATOR_MAX_RETRIES": "3", "X402_PROVIDER_NAME": "from-env"},
        overrides={"X402_PROVIDER_NAME": "explicit"},
    )

    assert settings.facilitator_timeout == 9.0
    assert settings.max_retries == 3
    assert settings.provider_name == "explicit"


def test_missing_env_file_is_ignored(tmp_path):
    settings = load_settings(env_file=str(tmp_path / "absent.env"), environ={})
    assert settings == X402Settings()


@pytest.mark.parametrize(
    "key,value",
    [
        ("X402_FACILITATOR_URL", "ftp://facilitator"),
        ("X402_FACILITATOR_TIMEOUT_SECONDS", "soon"),
        ("X402_FACILITATOR_TIMEOUT_SECONDS", "0"),
        ("X402_FACILITATOR_MAX_RETRIES", "-1"),
        ("X402_FACILITATOR_MAX_RETRIES", "two"),
        ("X402_FACILITATOR_BACKOFF_SECONDS", "-0.1"),
    ],
)
def test_invalid_values(key, value):
    with pytest.raises(ConfigError) as exc_info:
        load_settings(env_file=None, environ={key: value})
    assert key in str(exc_info.value)


def test_repr_hides_webhook_secret():
    settings = X402Settings(webhook_secret="s3cr3t")

    assert "s3cr3t" not in repr(settings)
    assert "<redacted>" in repr(settings)


def test_facilitator_config():
    settings = X402Settings(
        facilitator_url="http://localhost:8080",
        facilitator_timeout=2.0,
        max_retries=4,
        backoff_seconds=0.5,
    )
    config = settings.facilitator_config()

    assert config.url == "http://localhost:8080"
    assert config.timeout == 2.0
    assert config.policy.max_retries == 4
    assert config.policy.backoff_base == 0.5
