"""
Tests for configuration loading.
"""

from gitbroker.utils.config import ClientConfig, Config, get_config, reset_config


class TestConfig:
    """Test Config."""

    def test_defaults(self):
        """Test the bundled defaults are loaded."""
        config = Config()

        assert config.get("retry.max_retries") == 5
        assert config.get("author.name") == "gitbroker"
        assert config.get("broker.remote") is None

    def test_dotted_get_set(self):
        config = Config()

        config.set("broker.topic", "PINGPONG")
        config.set("new.nested.key", 1)

        assert config.get("broker.topic") == "PINGPONG"
        assert config.get("new.nested.key") == 1
        assert config.get("missing.key", "fallback") == "fallback"

    def test_file_overrides_defaults(self, tmp_path):
        """Test a user file is deep-merged over the defaults."""
        path = tmp_path / "broker.yaml"
        path.write_text("broker:\n  topic: ORDERS\nretry:\n  max_retries: 9\n")

        config = Config(str(path))

        assert config.get("broker.topic") == "ORDERS"
        assert config.get("retry.max_retries") == 9
        assert config.get("retry.retry_backoff_ms") == 100

    def test_env_overrides(self, monkeypatch, tmp_path):
        """Test environment variables win over files."""
        path = tmp_path / "broker.yaml"
        path.write_text("broker:\n  topic: ORDERS\n")
        monkeypatch.setenv("GITBROKER_TOPIC", "PINGPONG")
        monkeypatch.setenv("GITBROKER_USERNAME", "user")

        config = Config(str(path))

        assert config.get("broker.topic") == "PINGPONG"
        assert config.get("credentials.username") == "user"

    def test_global_config(self):
        first = get_config()

        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestClientConfig:
    """Test ClientConfig."""

    def test_from_config(self, tmp_path):
        path = tmp_path / "broker.yaml"
        path.write_text("author:\n  name: Full Name\n  email: email@example.org\nretry:\n  deadline_ms: 2000\n")

        client = ClientConfig.from_config(Config(str(path)))

        assert client.author_name == "Full Name"
        assert client.author_email == "email@example.org"
        assert client.deadline_ms == 2000
        assert client.work_dir is None

    def test_overrides(self):
        client = ClientConfig.from_config(Config(), max_retries=0)

        assert client.max_retries == 0
