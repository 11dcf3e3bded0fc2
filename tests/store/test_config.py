"""Tests for configuration loading."""

from assessment.config.app_config import clear_config_cache, load_app_config


class TestLoadAppConfig:
    """Tests for load_app_config."""

    def test_defaults_when_file_missing(self, tmp_path):
        """A missing file yields built-in defaults."""
        config = load_app_config(tmp_path / "missing.yaml")

        assert config.grading.default_points == 10
        assert config.grading.pass_quality == 60
        assert config.grading.multi_answer_delimiter == ","
        assert config.grading.ai_timeout_seconds == 30
        assert config.makeup.max_attempts == 2
        assert config.makeup.create_on_overdue is True
        assert config.reminders.thresholds_days == [3, 1, 0]
        assert config.llm.provider == "lmstudio"

    def test_partial_override(self, tmp_path):
        """Keys present in the file override defaults; the rest stay."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "grading:\n"
            "  default_points: 5\n"
            "makeup:\n"
            "  max_attempts: 3\n"
            "reminders:\n"
            "  thresholds_days: [7, 1]\n"
            "database:\n"
            "  path: /tmp/other.db\n",
            encoding="utf-8",
        )

        config = load_app_config(path)

        assert config.grading.default_points == 5
        assert config.grading.pass_quality == 60
        assert config.makeup.max_attempts == 3
        assert config.makeup.weak_topic_limit == 3
        assert config.reminders.thresholds_days == [7, 1]
        assert config.database_path == "/tmp/other.db"

    def test_empty_file_uses_defaults(self, tmp_path):
        """An empty YAML document is treated as no overrides."""
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        assert load_app_config(path).makeup.max_attempts == 2

    def test_env_path_and_cache(self, tmp_path, monkeypatch):
        """The environment path is read once and cached until cleared."""
        path = tmp_path / "env.yaml"
        path.write_text("grading:\n  pass_quality: 70\n", encoding="utf-8")
        monkeypatch.setenv("ASSESSMENT_CONFIG", str(path))
        clear_config_cache()

        first = load_app_config()
        path.write_text("grading:\n  pass_quality: 80\n", encoding="utf-8")

        assert first.grading.pass_quality == 70
        assert load_app_config() is first
        assert load_app_config(force_reload=True).grading.pass_quality == 80
