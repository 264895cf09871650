"""Versioned JSON metrics document holding samples, models and retrain counters."""

from __future__ import annotations

import json
import logging
import math
import os
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from kairos.config import KairosConfig
from kairos.core.fingerprint import (
    FEATURE_SCHEMA_VERSION,
    NUM_FEATURES,
    fingerprint_from_dict,
    fingerprint_to_dict,
    to_feature_vector,
)
from kairos.errors import (
    InvalidDuration,
    InvalidServiceId,
    PersistenceFailure,
    SchemaMismatch,
)
from kairos.models import MachineFingerprint, NormalizationStats, Sample, ServiceModel

logger = logging.getLogger("kairos.store")

DEFAULT_MAX_SAMPLES_PER_SERVICE = 100
DEFAULT_RETRAIN_BATCH_SIZE = 5
DEFAULT_LOCK_TIMEOUT = 10.0

# Separates a service id from its options hash in model keys
MODEL_KEY_SEPARATOR = ":"


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def _as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_dt(s: str) -> datetime:
    return _as_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))


def _file_signature(path: Path) -> tuple[int, int, int] | None:
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_ino, st.st_size, st.st_mtime_ns)


def _sample_to_json(s: Sample) -> dict[str, Any]:
    d: dict[str, Any] = {
        "serviceId": s.service_id,
        "durationMs": s.duration_ms,
        "timestamp": _iso(s.timestamp),
        "pcFingerprint": fingerprint_to_dict(s.fingerprint),
        "features": list(s.features),
    }
    if s.preset_id is not None:
        d["presetId"] = s.preset_id
    if s.options_hash is not None:
        d["optionsHash"] = s.options_hash
    return d


def _sample_from_json(d: dict[str, Any], rebuild_features: bool) -> Sample:
    fingerprint = fingerprint_from_dict(d.get("pcFingerprint"))
    features = tuple(float(v) for v in d.get("features", ()))
    if rebuild_features or len(features) != NUM_FEATURES:
        features = to_feature_vector(fingerprint)
    return Sample(
        service_id=d["serviceId"],
        duration_ms=float(d["durationMs"]),
        fingerprint=fingerprint,
        features=features,
        timestamp=_parse_dt(d["timestamp"]),
        preset_id=d.get("presetId"),
        options_hash=d.get("optionsHash"),
    )


def _model_to_json(m: ServiceModel) -> dict[str, Any]:
    return {
        "intercept": m.intercept,
        "coefficients": list(m.coefficients),
        "sampleCount": m.sample_count,
        "normalization": {
            "means": list(m.normalization.means),
            "stdDevs": list(m.normalization.std_devs),
        },
        "ridgeLambda": m.ridge_lambda,
        "rSquared": m.r_squared,
        "featureVersion": m.feature_version,
        "trainedAt": _iso(m.trained_at),
    }


def _model_from_json(d: dict[str, Any]) -> ServiceModel:
    norm = d["normalization"]
    return ServiceModel(
        intercept=float(d["intercept"]),
        coefficients=tuple(float(c) for c in d["coefficients"]),
        sample_count=int(d["sampleCount"]),
        normalization=NormalizationStats(
            means=tuple(float(v) for v in norm["means"]),
            std_devs=tuple(float(v) for v in norm["stdDevs"]),
        ),
        ridge_lambda=float(d["ridgeLambda"]),
        r_squared=float(d["rSquared"]),
        feature_version=d.get("featureVersion", FEATURE_SCHEMA_VERSION),
        trained_at=_parse_dt(d["trainedAt"]) if "trainedAt" in d else datetime.now(timezone.utc),
    )


def _model_fits_schema(m: ServiceModel) -> bool:
    return (
        m.feature_version == FEATURE_SCHEMA_VERSION
        and len(m.coefficients) == NUM_FEATURES
        and len(m.normalization.means) == NUM_FEATURES
        and len(m.normalization.std_devs) == NUM_FEATURES
    )


def model_key(service_id: str, options_hash: str | None = None) -> str:
    """Key under which a model is stored: ``service`` or ``service:hash``."""
    if options_hash:
        return f"{service_id}{MODEL_KEY_SEPARATOR}{options_hash}"
    return service_id


def validate_service_id(service_id: str) -> None:
    """Raise InvalidServiceId for empty ids or ids containing the model key separator."""
    if not service_id or MODEL_KEY_SEPARATOR in service_id:
        raise InvalidServiceId(service_id)


def check_version(doc: dict[str, Any]) -> None:
    """Raise SchemaMismatch unless the document matches the current schema."""
    stored = doc.get("version")
    if stored != FEATURE_SCHEMA_VERSION:
        raise SchemaMismatch(stored, FEATURE_SCHEMA_VERSION)



class MetricsStore:
    """File-backed store for service timing samples and trained models.

    State lives in memory and is written to one JSON document after each
    mutation. Every mutation holds a file lock on the document, first reloads
    it if another handle rewrote it since it was read, then applies the
    change and writes it back, so concurrent processes never drop each
    other's samples. Reads answer from the in-memory copy.

    Mutations of one service are serialized through that service's lock (see
    ``service_lock``); a document-wide lock guards the shared maps.
    """

    def __init__(
        self,
        path: Path | str,
        max_samples_per_service: int | None = None,
        retrain_batch_size: int | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self._path = Path(path)
        self._max_override = max_samples_per_service
        self._batch_override = retrain_batch_size
        self._file_lock = FileLock(
            str(self._path.with_name(self._path.name + ".lock")), timeout=lock_timeout
        )

        self._lock = threading.RLock()
        self._service_locks: dict[str, threading.RLock] = {}
        self._loaded = False
        self._dirty = False
        self._disk_signature: tuple[int, int, int] | None = None
        self.load_error: PersistenceFailure | None = None

        self._samples: dict[str, list[Sample]] = {}
        self._models: dict[str, ServiceModel] = {}
        self._counters: dict[str, int] = {}
        self.max_samples_per_service = max_samples_per_service or DEFAULT_MAX_SAMPLES_PER_SERVICE
        self.retrain_batch_size = retrain_batch_size or DEFAULT_RETRAIN_BATCH_SIZE

    @classmethod
    def from_config(cls, config: KairosConfig) -> MetricsStore:
        """Unopened store at the configured path; use it as a context manager."""
        return cls(
            config.metrics_path,
            max_samples_per_service=config.store.max_samples_per_service,
            retrain_batch_size=config.store.retrain_batch_size,
            lock_timeout=config.store.lock_timeout,
        )

    def __enter__(self) -> MetricsStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        """True when in-memory state has not reached disk yet."""
        return self._dirty

    def open(self) -> None:
        if self._loaded:
            return
        self.load()
        self._loaded = True

    def close(self) -> None:
        if self._loaded and self._dirty:
            try:
                self.save()
            except PersistenceFailure:
                logger.warning("Unsaved metrics discarded on close", exc_info=True)
        self._loaded = False

    def _require_open(self) -> None:
        if not self._loaded:
            raise RuntimeError("Store is not open")

    @contextmanager
    def service_lock(self, service_id: str) -> Iterator[None]:
        """Serialize mutations of a single service."""
        with self._lock:
            lock = self._service_locks.setdefault(service_id, threading.RLock())
        with lock:
            yield

    # --- Persistence ---

    def _reset(self) -> None:
        self._samples = {}
        self._models = {}
        self._counters = {}

    def _acquire_file_lock(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file_lock.acquire()
        except Timeout as exc:
            raise PersistenceFailure(self._path, f"locked by another process: {exc}") from exc
        except OSError as exc:
            raise PersistenceFailure(self._path, f"cannot lock: {exc}") from exc

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Apply one change against the latest document and write it back.

        If the document cannot be locked the change is still applied in
        memory, the store stays dirty and PersistenceFailure is raised.
        """
        with self._lock:
            try:
                self._acquire_file_lock()
            except PersistenceFailure:
                logger.warning("Metrics file unavailable; keeping change in memory")
                yield
                self._dirty = True
                raise
            try:
                self._refresh()
                yield
                self._dirty = True
                self._write()
            finally:
                self._file_lock.release()

    def _refresh(self) -> None:
        """Reload when another handle rewrote the document. Caller holds the file lock."""
        if self._dirty:
            # Unsaved local changes cannot be merged; they overwrite the file
            logger.warning("Saving unsaved metrics over %s", self._path)
            return
        if _file_signature(self._path) == self._disk_signature:
            return
        logger.debug("Metrics file changed on disk; reloading %s", self._path)
        try:
            self.load()
        except PersistenceFailure:
            logger.warning("Cannot reload %s; keeping in-memory metrics", self._path, exc_info=True)

    def _read_raw(self) -> tuple[bytes | None, tuple[int, int, int] | None]:
        try:
            with open(self._path, "rb") as f:
                st = os.fstat(f.fileno())
                raw = f.read()
        except (FileNotFoundError, NotADirectoryError):
            return None, None
        except OSError as exc:
            raise PersistenceFailure(self._path, f"cannot read: {exc}") from exc
        return raw, (st.st_ino, st.st_size, st.st_mtime_ns)

    def _quarantine(self, exc: Exception) -> None:
        """Move an undecodable document aside so the store can start over."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        target = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        try:
            os.replace(self._path, target)
        except FileNotFoundError:
            pass
        except OSError as move_exc:
            raise PersistenceFailure(
                self._path, f"unreadable document ({exc}) cannot be moved aside: {move_exc}"
            ) from move_exc
        self.load_error = PersistenceFailure(
            self._path, f"unreadable document ({exc}); moved to {target.name}"
        )
        self._disk_signature = None
        logger.warning("%s; starting from defaults", self.load_error)

    def load(self) -> None:
        """(Re)load the document from disk; a missing file yields defaults.

        An undecodable document is moved aside and the store starts from
        defaults; the failure is kept in ``load_error``.
        """
        with self._lock:
            raw, signature = self._read_raw()
            self._reset()
            self._dirty = False
            self.load_error = None
            self._disk_signature = signature
            if raw is None:
                return

            try:
                doc = json.loads(raw)
                if not isinstance(doc, dict):
                    raise ValueError("document is not an object")
                migrated = self._apply_document(doc)
            except (KeyError, TypeError, ValueError) as exc:
                self._reset()
                self._quarantine(exc)
                return

            for service_id in self._samples:
                self._enforce_cap(service_id)

            total = sum(len(v) for v in self._samples.values())
            logger.debug(
                "Loaded %d samples and %d models from %s",
                total, len(self._models), self._path,
            )
            if migrated:
                self._dirty = True
                self._save_quietly()

    def _apply_document(self, doc: dict[str, Any]) -> bool:
        """Fill in-memory state from a decoded document. Returns True if migrated."""
        migrated = False
        try:
            check_version(doc)
        except SchemaMismatch as exc:
            logger.warning("%s; dropping trained models and rebuilding sample features", exc)
            migrated = True

        for raw in doc.get("samples", []):
            s = _sample_from_json(raw, rebuild_features=migrated)
            self._samples.setdefault(s.service_id, []).append(s)

        if not migrated:
            for key, raw in doc.get("models", {}).items():
                m = _model_from_json(raw)
                if _model_fits_schema(m):
                    self._models[key] = m
                else:
                    logger.warning("Discarding incompatible model %s", key)

        self._counters = {k: int(v) for k, v in doc.get("samplesSinceRetrain", {}).items()}
        if self._max_override is None:
            self.max_samples_per_service = int(
                doc.get("maxSamplesPerService", DEFAULT_MAX_SAMPLES_PER_SERVICE)
            )
        if self._batch_override is None:
            self.retrain_batch_size = int(doc.get("retrainBatchSize", DEFAULT_RETRAIN_BATCH_SIZE))
        return migrated

    def to_document(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": FEATURE_SCHEMA_VERSION,
                "samples": [
                    _sample_to_json(s)
                    for service_samples in self._samples.values()
                    for s in service_samples
                ],
                "models": {k: _model_to_json(m) for k, m in self._models.items()},
                "maxSamplesPerService": self.max_samples_per_service,
                "samplesSinceRetrain": dict(self._counters),
                "retrainBatchSize": self.retrain_batch_size,
            }

    def _write(self) -> None:
        payload = json.dumps(self.to_document(), indent=2)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.error("Failed to save metrics to %s: %s", self._path, exc)
            raise PersistenceFailure(self._path, f"cannot write: {exc}") from exc
        self._dirty = False
        self._disk_signature = _file_signature(self._path)

    def save(self) -> None:
        """Atomically write the document. Raises PersistenceFailure on I/O errors."""
        with self._lock:
            self._acquire_file_lock()
            try:
                self._write()
            finally:
                self._file_lock.release()

    def _save_quietly(self) -> None:
        try:
            self.save()
        except PersistenceFailure:
            logger.warning("Migrated metrics kept in memory only", exc_info=True)

    # --- Samples ---

    def _enforce_cap(self, service_id: str) -> int:
        samples = self._samples.get(service_id, [])
        excess = len(samples) - self.max_samples_per_service
        if excess <= 0:
            return 0
        del samples[:excess]
        logger.debug("Evicted %d oldest samples for %s", excess, service_id)
        return excess

    def append_sample(
        self,
        service_id: str,
        duration_ms: float,
        fingerprint: MachineFingerprint,
        preset_id: str | None = None,
        options_hash: str | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """Record a completed run. Returns True when a retrain is due."""
        self._require_open()
        validate_service_id(service_id)
        if duration_ms is None or not math.isfinite(duration_ms) or duration_ms <= 0:
            raise InvalidDuration(service_id, duration_ms)

        sample = Sample(
            service_id=service_id,
            duration_ms=float(duration_ms),
            fingerprint=fingerprint,
            features=to_feature_vector(fingerprint),
            timestamp=_as_utc(timestamp) if timestamp else datetime.now(timezone.utc),
            preset_id=preset_id,
            options_hash=options_hash,
        )

        with self.service_lock(service_id), self._mutation():
            self._samples.setdefault(service_id, []).append(sample)
            self._enforce_cap(service_id)
            counter = self._counters.get(service_id, 0) + 1
            self._counters[service_id] = counter
        return counter >= self.retrain_batch_size

    def snapshot(self, service_id: str) -> tuple[Sample, ...]:
        """Immutable copy of a service's samples, oldest first."""
        self._require_open()
        with self._lock:
            return tuple(self._samples.get(service_id, ()))

    def all_samples(self) -> tuple[Sample, ...]:
        self._require_open()
        with self._lock:
            return tuple(s for samples in self._samples.values() for s in samples)

    def service_ids(self) -> list[str]:
        self._require_open()
        with self._lock:
            return sorted(sid for sid, samples in self._samples.items() if samples)

    def preset_ids(self) -> list[str]:
        return sorted({s.preset_id for s in self.all_samples() if s.preset_id})

    def sample_count(self, service_id: str | None = None) -> int:
        self._require_open()
        with self._lock:
            if service_id is not None:
                return len(self._samples.get(service_id, ()))
            return sum(len(v) for v in self._samples.values())

    def samples_since_retrain(self, service_id: str) -> int:
        self._require_open()
        with self._lock:
            return self._counters.get(service_id, 0)

    def clear_service(self, service_id: str) -> int:
        """Drop all samples, models and the retrain counter of one service."""
        self._require_open()
        with self.service_lock(service_id), self._mutation():
            removed = len(self._samples.pop(service_id, []))
            self._drop_models(service_id)
            self._counters.pop(service_id, None)
        logger.info("Cleared %d samples for %s", removed, service_id)
        return removed

    def clear_all(self) -> int:
        """Reset the document to defaults. Returns the number of samples removed.

        Waits for every in-flight append or retrain to finish first.
        """
        self._require_open()
        with self._lock:
            service_ids = sorted(set(self._service_locks) | set(self._samples))
        with ExitStack() as stack:
            for service_id in service_ids:
                stack.enter_context(self.service_lock(service_id))
            with self._mutation():
                removed = sum(len(v) for v in self._samples.values())
                self._reset()
        logger.info("Cleared all metrics (%d samples)", removed)
        return removed

    # --- Models ---

    def _drop_models(self, service_id: str) -> None:
        prefix = service_id + MODEL_KEY_SEPARATOR
        for key in [k for k in self._models if k == service_id or k.startswith(prefix)]:
            del self._models[key]

    def get_model(self, key: str) -> ServiceModel | None:
        self._require_open()
        with self._lock:
            return self._models.get(key)

    def models(self) -> dict[str, ServiceModel]:
        self._require_open()
        with self._lock:
            return dict(self._models)

    def commit_models(self, service_id: str, models: dict[str, ServiceModel]) -> None:
        """Replace a service's trained models in one step and reset its counter."""
        self._require_open()
        with self.service_lock(service_id), self._mutation():
            self._drop_models(service_id)
            self._models.update(models)
            self._counters[service_id] = 0
