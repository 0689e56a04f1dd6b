"""Unit tests for configuration loading and validation."""

import pytest

from gridplace.config import (
    Config,
    ConfigError,
    load_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)
from gridplace.config.config import ENV_VARS
from gridplace.config.environment import (
    Environment,
    get_config_file_path,
    get_environment,
)
from gridplace.core.validation import DEFAULT_PALETTE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from GRIDPLACE_* variables and marker files."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_defaults(self):
        config = Config()

        assert config.canvas.grid_size == 1000
        assert config.canvas.cooldown_ms == 300_000
        assert config.canvas.palette == list(DEFAULT_PALETTE)
        assert config.broadcaster.max_connections == 1000
        assert config.broadcaster.max_per_origin == 5
        assert config.broadcaster.max_lifetime_seconds == 86400
        assert config.broadcaster.ping_interval_seconds == 30
        assert config.storage.backend == "sqlite"
        assert config.environment == "development"
        validate_config(config)

    def test_palette_normalized(self):
        config = Config(canvas={"palette": [" #ffffff", "#e50000"]})
        assert config.canvas.palette == ["#FFFFFF", "#E50000"]


class TestFileLoading:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "gridplace.yaml"
        path.write_text(
            "canvas:\n"
            "  grid_size: 64\n"
            "  cooldown_ms: 1000\n"
            "broadcaster:\n"
            "  max_per_origin: 2\n"
            "storage:\n"
            "  backend: memory\n"
        )

        config = load_config_from_file(path)

        assert config.canvas.grid_size == 64
        assert config.canvas.cooldown_ms == 1000
        assert config.broadcaster.max_per_origin == 2
        assert config.broadcaster.max_connections == 1000
        assert config.storage.backend == "memory"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("canvas: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config_from_file(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config_from_file(path) == Config()

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("storage:\n  backend: postgres\n")
        with pytest.raises(ConfigError, match="validation failed"):
            load_config_from_file(path)


class TestEnvLoading:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GRIDPLACE_COOLDOWN_MS", "5000")
        monkeypatch.setenv("GRIDPLACE_PING_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("GRIDPLACE_LOG_LEVEL", "debug")
        monkeypatch.setenv("GRIDPLACE_METRICS_ENABLED", "yes")
        monkeypatch.setenv("GRIDPLACE_ALLOWED_ORIGINS", "https://a.test,https://b.test")
        monkeypatch.setenv("GRIDPLACE_ENVIRONMENT", "Testing")

        config = load_config_from_env()

        assert config.canvas.cooldown_ms == 5000
        assert config.broadcaster.ping_interval_seconds == 2.5
        assert config.logging.level == "DEBUG"
        assert config.metrics.enabled is True
        assert config.security.allowed_origins == ["https://a.test", "https://b.test"]
        assert config.environment == "testing"

    def test_invalid_int(self, monkeypatch):
        monkeypatch.setenv("GRIDPLACE_GRID_SIZE", "large")
        with pytest.raises(ConfigError, match="GRIDPLACE_GRID_SIZE"):
            load_config_from_env()

    def test_env_merges_over_file(self, tmp_path, monkeypatch):
        """Test an env var replaces only the key it names."""
        path = tmp_path / "gridplace.yaml"
        path.write_text("canvas:\n  grid_size: 64\n  cooldown_ms: 1000\n")
        monkeypatch.setenv("GRIDPLACE_COOLDOWN_MS", "2000")

        config = load_config(path)

        assert config.canvas.grid_size == 64
        assert config.canvas.cooldown_ms == 2000

    def test_missing_path_uses_env_only(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == Config()


class TestValidateConfig:
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"canvas": {"grid_size": 0}}, "grid_size"),
            ({"canvas": {"cooldown_ms": -1}}, "cooldown_ms"),
            ({"canvas": {"palette": []}}, "palette must not be empty"),
            ({"canvas": {"palette": ["#FFFFFF", "#ffffff"]}}, "duplicate"),
            (
                {"broadcaster": {"max_connections": 2, "max_per_origin": 3}},
                "max_per_origin cannot exceed",
            ),
            ({"broadcaster": {"queue_size": 1}}, "queue_size"),
            ({"server": {"port": 70000}}, "server.port"),
            ({"security": {"auth_failures_per_minute": 0}}, "auth_failures"),
        ],
    )
    def test_invalid(self, overrides, message):
        with pytest.raises(ConfigError, match=message):
            validate_config(Config(**overrides))

    def test_zero_cooldown_allowed(self):
        validate_config(Config(canvas={"cooldown_ms": 0}))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"debug": True},
            {"logging": {"level": "DEBUG"}},
            {"logging": {"enable_redaction": False}},
            {"storage": {"backend": "memory"}},
        ],
    )
    def test_production_rules(self, overrides):
        with pytest.raises(ConfigError):
            validate_config(Config(environment="production", **overrides))


class TestEnvironment:
    def test_from_env_var(self, monkeypatch):
        monkeypatch.setenv("GRIDPLACE_ENVIRONMENT", "staging")
        assert get_environment() == Environment.STAGING

    def test_from_marker_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env.production").write_text("")
        assert get_environment() == Environment.PRODUCTION

    def test_default(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert get_environment() == Environment.DEVELOPMENT

    def test_marker_file_reaches_config(self, tmp_path):
        """Test a detected production environment enforces production rules."""
        (tmp_path / ".env.production").write_text("")
        path = tmp_path / "gridplace.yaml"
        path.write_text("storage:\n  backend: memory\n")

        config = load_config(path)

        assert config.environment == "production"
        with pytest.raises(ConfigError, match="not durable"):
            validate_config(config)

    def test_explicit_environment_wins(self, tmp_path):
        (tmp_path / ".env.production").write_text("")
        path = tmp_path / "gridplace.yaml"
        path.write_text("environment: testing\n")

        assert load_config(path).environment == "testing"

    def test_config_file_discovery(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert get_config_file_path(Environment.TESTING) is None

        (tmp_path / "gridplace.yaml").write_text("{}\n")
        assert get_config_file_path(Environment.TESTING).name == "gridplace.yaml"
