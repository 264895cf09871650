"""Tests for weighted ridge regression."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from kairos.config import EstimationConfig
from kairos.core import trainer
from kairos.core.fingerprint import FEATURE_SCHEMA_VERSION, NUM_FEATURES, to_feature_vector
from kairos.models import MachineFingerprint, NetworkType, NormalizationStats, Sample, ServiceModel

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _fp(freq=3.0, **kw):
    base = dict(
        physical_cores=4, logical_cores=8, frequency_ghz=freq,
        available_ram_gb=8.0, total_ram_gb=16.0, disk_is_ssd=True,
        is_on_ac_power=True, network_type=NetworkType.ETHERNET,
    )
    base.update(kw)
    return MachineFingerprint(**base)


def _sample(ms, fp, minutes_ago=0):
    return Sample(
        service_id="sfc",
        duration_ms=ms,
        fingerprint=fp,
        features=to_feature_vector(fp),
        timestamp=NOW - timedelta(minutes=minutes_ago),
    )


def _linear_samples():
    # Faster clock, shorter run
    return [
        _sample(20000.0 - 1000.0 * f, _fp(freq=f), minutes_ago=i)
        for i, f in enumerate((2.0, 2.2, 2.5, 2.8, 3.0, 3.3, 3.6, 4.0))
    ]


def _model(intercept, coef0=0.0):
    coefficients = (coef0,) + (0.0,) * (NUM_FEATURES - 1)
    return ServiceModel(
        intercept=intercept,
        coefficients=coefficients,
        sample_count=5,
        normalization=NormalizationStats(means=(0.0,) * NUM_FEATURES, std_devs=(1.0,) * NUM_FEATURES),
        ridge_lambda=0.1,
        r_squared=0.0,
        feature_version=FEATURE_SCHEMA_VERSION,
        trained_at=NOW,
    )


class TestTrain:
    def test_not_enough_samples(self):
        samples = [_sample(1000.0, _fp()) for _ in range(4)]
        assert trainer.train(samples, NOW) is None

    def test_min_training_samples_configurable(self):
        samples = [_sample(1000.0, _fp()) for _ in range(3)]
        assert trainer.train(samples, NOW, EstimationConfig(min_training_samples=3)) is not None

    def test_identical_hardware_is_solvable(self):
        durations = (950.0, 1000.0, 1050.0, 980.0, 1020.0)
        samples = [_sample(d, _fp()) for d in durations]
        model = trainer.train(samples, NOW)
        assert model is not None
        assert all(c == pytest.approx(0.0, abs=1e-9) for c in model.coefficients)
        assert model.intercept == pytest.approx(1000.0, rel=1e-3)
        assert model.r_squared == 0.0
        assert trainer.predict(model, to_feature_vector(_fp())) == pytest.approx(1000.0, rel=1e-3)

    def test_model_metadata(self):
        samples = [_sample(1000.0, _fp()) for _ in range(5)]
        model = trainer.train(samples, NOW)
        assert model.sample_count == 5
        assert model.ridge_lambda == 0.1
        assert model.feature_version == FEATURE_SCHEMA_VERSION
        assert model.trained_at == NOW
        assert len(model.coefficients) == NUM_FEATURES
        assert len(model.normalization.means) == NUM_FEATURES

    def test_learns_hardware_effect(self):
        model = trainer.train(_linear_samples(), NOW)
        assert model.r_squared > 0.9
        fast = trainer.predict(model, to_feature_vector(_fp(freq=4.0)))
        slow = trainer.predict(model, to_feature_vector(_fp(freq=2.0)))
        assert fast < slow

    def test_residuals_are_small(self):
        samples = _linear_samples()
        model = trainer.train(samples, NOW)
        for s in samples:
            assert trainer.predict(model, s.features) == pytest.approx(s.duration_ms, rel=0.05)

    def test_r_squared_in_range(self):
        rng = np.random.default_rng(7)
        samples = [
            _sample(float(rng.uniform(100, 5000)), _fp(freq=float(rng.uniform(1.5, 4.5))), minutes_ago=i)
            for i in range(12)
        ]
        model = trainer.train(samples, NOW)
        assert 0.0 <= model.r_squared <= 1.0


class TestWeightedRSquared:
    def test_perfect_fit(self):
        y = np.array([1.0, 2.0, 3.0])
        assert trainer.weighted_r_squared(y, y, np.ones(3)) == pytest.approx(1.0)

    def test_constant_target(self):
        y = np.array([5.0, 5.0, 5.0])
        assert trainer.weighted_r_squared(y, y, np.ones(3)) == 0.0

    def test_worse_than_mean_clamped(self):
        y = np.array([1.0, 2.0, 3.0])
        assert trainer.weighted_r_squared(y, y[::-1] * 10, np.ones(3)) == 0.0


class TestPredict:
    def test_linear_combination(self):
        model = _model(1000.0, coef0=100.0)
        features = (2.0,) + (0.0,) * (NUM_FEATURES - 1)
        assert trainer.predict(model, features) == pytest.approx(1200.0)

    def test_floored_at_minimum(self):
        assert trainer.predict(_model(-500.0), (0.0,) * NUM_FEATURES) == 1.0

    def test_custom_floor(self):
        assert trainer.predict(_model(-500.0), (0.0,) * NUM_FEATURES, min_estimate_ms=50.0) == 50.0

    def test_never_negative_for_extreme_hardware(self):
        model = trainer.train(_linear_samples(), NOW)
        extreme = to_feature_vector(_fp(freq=400.0))
        assert trainer.predict(model, extreme) >= 1.0

    def test_non_finite_falls_back_to_floor(self):
        assert trainer.predict(_model(float("nan")), (0.0,) * NUM_FEATURES) == 1.0
