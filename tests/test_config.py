"""Tests for KairosConfig."""

from kairos.config import EstimationConfig, KairosConfig, ProbeConfig, StoreConfig


class TestDefaults:
    def test_store_defaults(self):
        c = StoreConfig()
        assert c.file_name == "service_metrics.json"
        assert c.max_samples_per_service == 100
        assert c.retrain_batch_size == 5
        assert c.lock_timeout == 10.0

    def test_estimation_defaults(self):
        c = EstimationConfig()
        assert c.half_life_days == 30.0
        assert c.outlier_iqr_factor == 1.5
        assert c.min_outlier_samples == 5
        assert c.min_training_samples == 5
        assert c.ridge_lambda == 0.1
        assert c.min_estimate_ms == 1.0

    def test_probe_defaults(self):
        assert ProbeConfig().cpu_sample_interval == 0.1


class TestKairosConfig:
    def test_properties(self, tmp_path):
        config = KairosConfig(project_path=tmp_path)
        assert config.kairos_dir == tmp_path / ".kairos"
        assert config.metrics_path == tmp_path / ".kairos" / "service_metrics.json"

    def test_load_defaults(self, tmp_path):
        config = KairosConfig.load(tmp_path)
        assert config.store.file_name == "service_metrics.json"
        assert config.project_path == tmp_path

    def test_load_from_toml(self, tmp_path):
        kairos_dir = tmp_path / ".kairos"
        kairos_dir.mkdir()
        (kairos_dir / "config.toml").write_text(
            '[store]\nmax_samples_per_service = 20\n'
            '[estimation]\nhalf_life_days = 7.5\nridge_lambda = 2\n'
        )
        config = KairosConfig.load(tmp_path)
        assert config.store.max_samples_per_service == 20
        assert config.estimation.half_life_days == 7.5
        assert config.estimation.ridge_lambda == 2.0
        assert isinstance(config.estimation.ridge_lambda, float)

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KAIROS_RETRAIN_BATCH_SIZE", "3")
        config = KairosConfig.load(tmp_path)
        assert config.store.retrain_batch_size == 3

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        kairos_dir = tmp_path / ".kairos"
        kairos_dir.mkdir()
        (kairos_dir / "config.toml").write_text('[store]\nfile_name = "toml.json"\n')
        monkeypatch.setenv("KAIROS_FILE_NAME", "env.json")
        config = KairosConfig.load(tmp_path)
        assert config.store.file_name == "env.json"
        assert config.metrics_path.name == "env.json"

    def test_lock_timeout_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KAIROS_LOCK_TIMEOUT", "2.5")
        config = KairosConfig.load(tmp_path)
        assert config.store.lock_timeout == 2.5
