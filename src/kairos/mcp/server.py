"""FastMCP server factory exposing the duration estimation engine as tools."""

from __future__ import annotations

from kairos.config import KairosConfig
from kairos.core.estimator import DurationEstimator, compute_options_hash
from kairos.core.probe import capture_fingerprint
from kairos.core.store import MetricsStore
from kairos.errors import KairosError
from kairos.mcp.formatters import (
    format_estimate,
    format_fingerprint,
    format_presets,
    format_record,
    format_stats,
)


def _with_load_notice(store: MetricsStore, text: str) -> str:
    """Prefix tool output with a notice when a corrupt document was moved aside."""
    if store.load_error is None:
        return text
    return f"> **Warning:** {store.load_error}\n\n{text}"


def create_server(config: KairosConfig | None = None):
    """Create and return a configured FastMCP server instance.

    Args:
        config: Optional pre-loaded config. If None, loads from cwd.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("kairos", instructions="Learned run-time estimates for maintenance services")
    _config = config or KairosConfig.load()

    @mcp.tool()
    def kairos_record(
        service_id: str,
        duration_ms: float,
        preset_id: str | None = None,
        options: dict | None = None,
    ) -> str:
        """Record how long a service run took on this machine.

        The current machine fingerprint is captured automatically. Models are
        retrained once enough new runs have accumulated.

        Args:
            service_id: Service identifier (e.g. "sfc", "chkdsk")
            duration_ms: Elapsed wall time in milliseconds (must be > 0)
            preset_id: Preset the run belonged to (optional)
            options: Service option settings; runs with different options are modelled separately (optional)
        """
        options_hash = compute_options_hash(options) if options else None
        try:
            with MetricsStore.from_config(_config) as store:
                result = DurationEstimator.from_config(store, _config).record(
                    service_id, duration_ms,
                    preset_id=preset_id, options_hash=options_hash,
                )
                return _with_load_notice(store, format_record(result))
        except (KairosError, OSError) as exc:
            return f"Error recording run: {exc}"

    @mcp.tool()
    def kairos_stats(service_id: str | None = None) -> str:
        """Duration statistics (outlier-filtered average, median, range, confidence).

        Args:
            service_id: Service to report on (omit for all services)
        """
        try:
            with MetricsStore.from_config(_config) as store:
                engine = DurationEstimator.from_config(store, _config)
                fp = engine.current_fingerprint()
                if service_id:
                    stats = engine.compute_stats(service_id, fp)
                    if stats is None:
                        return _with_load_notice(store, f"No timing data for '{service_id}'.")
                    return _with_load_notice(store, format_stats([stats]))
                return _with_load_notice(store, format_stats(engine.compute_all_stats(fp)))
        except (KairosError, OSError) as exc:
            return f"Error computing stats: {exc}"

    @mcp.tool()
    def kairos_estimate(
        service_id: str,
        options: dict | None = None,
        default_secs: float | None = None,
    ) -> str:
        """Estimate how long a service will take on this machine.

        Uses the trained regression model when one exists, otherwise the
        robust historical average.

        Args:
            service_id: Service identifier
            options: Service option settings to match (optional)
            default_secs: Answer to give when there is no history (optional)
        """
        options_hash = compute_options_hash(options) if options else None
        default_ms = default_secs * 1000 if default_secs is not None else None
        try:
            with MetricsStore.from_config(_config) as store:
                result = DurationEstimator.from_config(store, _config).estimate(
                    service_id, options_hash=options_hash, default_ms=default_ms
                )
                return _with_load_notice(store, format_estimate(result))
        except (KairosError, OSError) as exc:
            return f"Error estimating duration: {exc}"

    @mcp.tool()
    def kairos_presets() -> str:
        """Total-duration statistics per preset."""
        try:
            with MetricsStore.from_config(_config) as store:
                rows = DurationEstimator.from_config(store, _config).preset_stats()
                return _with_load_notice(store, format_presets(rows))
        except (KairosError, OSError) as exc:
            return f"Error computing preset stats: {exc}"

    @mcp.tool()
    def kairos_retrain(service_id: str | None = None) -> str:
        """Retrain duration models now, regardless of the batch counter.

        Args:
            service_id: Service to retrain (omit for all services)
        """
        try:
            with MetricsStore.from_config(_config) as store:
                count = DurationEstimator.from_config(store, _config).retrain(service_id)
        except (KairosError, OSError) as exc:
            return f"Error retraining: {exc}"
        target = f"'{service_id}'" if service_id else "all services"
        return _with_load_notice(store, f"Retrained {count} model(s) for {target}.")

    @mcp.tool()
    def kairos_clear(service_id: str | None = None, confirm_all: bool = False) -> str:
        """Delete recorded runs and models.

        Args:
            service_id: Service to clear
            confirm_all: Must be true to clear every service when service_id is omitted
        """
        if not service_id and not confirm_all:
            return "Refusing to clear all services without confirm_all=true."
        try:
            with MetricsStore.from_config(_config) as store:
                engine = DurationEstimator.from_config(store, _config)
                removed = engine.clear_service(service_id) if service_id else engine.clear_all()
        except (KairosError, OSError) as exc:
            return f"Error clearing metrics: {exc}"
        return _with_load_notice(store, f"Removed {removed} sample(s).")

    @mcp.tool()
    def kairos_fingerprint() -> str:
        """Show the fingerprint of this machine as used for estimation."""
        fp = capture_fingerprint(cpu_interval=_config.probe.cpu_sample_interval)
        return format_fingerprint(fp)

    return mcp


def main() -> None:
    """Entry point for kairos-mcp (stdio transport)."""
    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
