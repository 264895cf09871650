"""Markdown formatters for LLM-friendly output."""

from __future__ import annotations

from kairos.core.fingerprint import FEATURE_NAMES, to_feature_vector
from kairos.models import (
    EstimateResult,
    EstimateSource,
    MachineFingerprint,
    PresetStats,
    RecordResult,
    ServiceStats,
)


def format_duration(ms: float | None) -> str:
    """Human-readable duration: ``850ms``, ``12.5s``, ``3m 4s``."""
    if ms is None:
        return "—"
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, rest = divmod(ms, 60_000)
    seconds = round(rest / 1000)
    if seconds == 60:
        minutes, seconds = minutes + 1, 0
    return f"{int(minutes)}m {seconds}s"


def format_quality(r_squared: float | None) -> str:
    if r_squared is None:
        return "—"
    return f"{r_squared:.2f}"


def format_stats(stats: list[ServiceStats], title: str = "Service Durations") -> str:
    """Format per-service statistics as a table."""
    if not stats:
        return f"## {title}\n\nNo timing data recorded."

    lines = [
        f"## {title}",
        "",
        "| Service | Average | Median | Min | Max | StdDev | Samples | Confidence | Estimate | R² |",
        "|---------|---------|--------|-----|-----|--------|---------|------------|----------|----|",
    ]
    for s in stats:
        lines.append(
            f"| {s.service_id} | {format_duration(s.average_ms)} "
            f"| {format_duration(s.median_ms)} | {format_duration(s.min_ms)} "
            f"| {format_duration(s.max_ms)} | {format_duration(s.std_dev_ms)} "
            f"| {s.sample_count} | {s.confidence.value} "
            f"| {format_duration(s.estimated_ms)} | {format_quality(s.model_quality)} |"
        )
    return "\n".join(lines)


def format_presets(presets: list[PresetStats], title: str = "Preset Durations") -> str:
    """Format per-preset statistics as a table."""
    if not presets:
        return f"## {title}\n\nNo preset runs recorded."

    lines = [
        f"## {title}",
        "",
        "| Preset | Average | Min | Max | Runs | Confidence |",
        "|--------|---------|-----|-----|------|------------|",
    ]
    for p in presets:
        lines.append(
            f"| {p.preset_id} | {format_duration(p.average_ms)} "
            f"| {format_duration(p.min_ms)} | {format_duration(p.max_ms)} "
            f"| {p.run_count} | {p.confidence.value} |"
        )
    return "\n".join(lines)


def format_estimate(result: EstimateResult) -> str:
    """Format a single estimate with where it came from."""
    if result.source is EstimateSource.NONE:
        return f"No timing data for **{result.service_id}** yet."

    lines = [
        f"## Estimate: {result.service_id}",
        f"**Expected duration:** {format_duration(result.estimated_ms)}  ",
        f"**Source:** {result.source.value}  ",
    ]
    if result.confidence is not None:
        lines.append(f"**Confidence:** {result.confidence.value}  ")
    if result.model_quality is not None:
        lines.append(f"**Model R²:** {format_quality(result.model_quality)}  ")
    if result.stats is not None:
        s = result.stats
        lines.append(
            f"**History:** {s.sample_count} runs, average {format_duration(s.average_ms)}, "
            f"range {format_duration(s.min_ms)}–{format_duration(s.max_ms)}"
        )
    return "\n".join(lines)


def format_record(result: RecordResult) -> str:
    """Format the confirmation for a recorded run."""
    s = result.sample
    lines = [f"Recorded **{s.service_id}**: {format_duration(s.duration_ms)}"]
    if s.preset_id:
        lines.append(f"- Preset: {s.preset_id}")
    if s.options_hash:
        lines.append(f"- Options: `{s.options_hash}`")
    if result.model is not None:
        lines.append(
            f"- Model retrained on {result.model.sample_count} samples "
            f"(R² {format_quality(result.model.r_squared)})"
        )
    elif result.retrain_due:
        lines.append("- Retrain due, but not enough samples yet")
    return "\n".join(lines)


def format_fingerprint(fp: MachineFingerprint) -> str:
    """Format a machine fingerprint and its feature vector."""
    lines = [
        "## Machine Fingerprint",
        "",
        "| Field | Value |",
        "|-------|-------|",
        f"| Cores | {fp.physical_cores} physical / {fp.logical_cores} logical |",
        f"| Clock | {fp.frequency_ghz} GHz |",
        f"| RAM | {fp.available_ram_gb} GB free of {fp.total_ram_gb} GB |",
        f"| SSD | {'yes' if fp.disk_is_ssd else 'no'} |",
        f"| AC power | {'yes' if fp.is_on_ac_power else 'no'} |",
        f"| AVX2 | {'yes' if fp.has_avx2 else 'no'} |",
        f"| Discrete GPU | {'yes' if fp.has_discrete_gpu else 'no'} |",
        f"| Network | {fp.network_type.value} |",
        f"| CPU load | {fp.cpu_load_percent}% |",
        "",
        "**Features:** "
        + ", ".join(
            f"{name}={value:g}" for name, value in zip(FEATURE_NAMES, to_feature_vector(fp))
        ),
    ]
    return "\n".join(lines)
