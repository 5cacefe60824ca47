import pytest

from bizcrawler.config import JobInput, load_job_input, load_settings
from bizcrawler.errors import ConfigurationError

ENV_KEYS = ["LLM_MODE", "ANTHROPIC_API_KEY", "CRAWL_CONCURRENCY", "MAX_ATTEMPTS", "PROXY_URLS",
            "DENY_EXTENSIONS", "RUN_TIMEOUT_SECS", "BLOCK_RESOURCES"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # Keep a developer's .env file out of the tests
    monkeypatch.setattr("bizcrawler.config.load_dotenv", lambda *args, **kwargs: False)


def test_defaults():
    settings = load_settings()
    assert settings.llm_mode == "anthropic"
    assert settings.max_attempts == 3
    assert 1 <= settings.concurrency <= 5
    assert settings.proxy_urls == ()
    assert ".pdf" in settings.deny_extensions


def test_env_overrides_and_clamping(monkeypatch):
    monkeypatch.setenv("CRAWL_CONCURRENCY", "50")
    monkeypatch.setenv("MAX_ATTEMPTS", "5")
    monkeypatch.setenv("PROXY_URLS", "http://p1:8000, http://p2:8000")
    monkeypatch.setenv("DENY_EXTENSIONS", "pdf,.ZIP")
    monkeypatch.setenv("RUN_TIMEOUT_SECS", "0")
    monkeypatch.setenv("BLOCK_RESOURCES", "false")

    settings = load_settings()

    assert settings.concurrency == 10
    assert settings.max_attempts == 5
    assert settings.proxy_urls == ("http://p1:8000", "http://p2:8000")
    assert settings.deny_extensions == (".pdf", ".zip")
    assert settings.run_timeout_secs is None
    assert settings.block_resources is False


def test_missing_credential_is_configuration_error():
    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
        load_settings().require_credentials()


def test_credential_from_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    load_settings().require_credentials()


def test_job_input_accepts_both_url_forms():
    job = load_job_input({
        "startUrls": [{"url": "https://example.com"}, "https://example.org", {"url": ""}],
        "maxPagesToCrawl": 5,
        "includeScreenshots": True,
    })
    assert job.start_urls == ["https://example.com", "https://example.org"]
    assert job.max_pages_to_crawl == 5
    assert job.include_screenshots is True


def test_job_input_defaults():
    job = JobInput(start_urls=["https://example.com"])
    assert job.max_pages_to_crawl == 1
    assert job.include_screenshots is False
    assert job.snapshot()["startUrls"] == ["https://example.com"]


@pytest.mark.parametrize("data", [None, {}, {"startUrls": []}, {"startUrls": [{"url": "  "}]}])
def test_empty_start_urls_is_configuration_error(data):
    with pytest.raises(ConfigurationError, match="startUrls"):
        load_job_input(data)


def test_max_pages_must_be_positive():
    with pytest.raises(ConfigurationError, match="maxPagesToCrawl"):
        load_job_input({"startUrls": ["https://example.com"], "maxPagesToCrawl": 0})
