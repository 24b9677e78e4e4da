"""OpenTelemetry metrics and logs for the trading engine."""

import logging
import os
from decimal import Decimal

from opentelemetry import metrics
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from propdesk._version import VERSION

logger = logging.getLogger(__name__)

# Module-level state
_initialized = False
_meter = None
_log_handler = None

# Counters (cumulative)
_trades_total = None
_trade_value_total = None
_balance_mutations_total = None
_balance_anomalies_total = None
_breaker_trips_total = None
_positions_settled_total = None
_settlement_errors_total = None
_status_transitions_total = None

# Gauges (current state) - using ObservableGauge with callbacks
_gauge_callbacks = {}


def setup_telemetry() -> bool:
    """Initialize OpenTelemetry metrics.

    Returns True if telemetry was initialized, False if disabled.
    """
    global _initialized, _meter
    global _trades_total, _trade_value_total
    global _balance_mutations_total, _balance_anomalies_total
    global _breaker_trips_total, _positions_settled_total, _settlement_errors_total
    global _status_transitions_total

    if _initialized:
        return True

    if os.getenv("OTLP_ENABLED", "true").lower() == "false":
        return False

    otlp_endpoint = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/metrics")
    export_interval = int(os.getenv("OTLP_EXPORT_INTERVAL", "5000"))

    resource = Resource.create({
        "service.name": "propdesk",
        "service.version": VERSION,
    })

    exporter = OTLPMetricExporter(endpoint=otlp_endpoint)
    reader = PeriodicExportingMetricReader(
        exporter,
        export_interval_millis=export_interval,
    )
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter("propdesk", VERSION)

    _trades_total = _meter.create_counter(
        "propdesk_trades_total",
        description="Total number of trades executed",
        unit="1",
    )

    _trade_value_total = _meter.create_counter(
        "propdesk_trade_value_total",
        description="Total dollar value of trades",
        unit="currency",
    )

    _balance_mutations_total = _meter.create_counter(
        "propdesk_balance_mutations_total",
        description="Balance deductions and credits",
        unit="1",
    )

    _balance_anomalies_total = _meter.create_counter(
        "propdesk_balance_anomalies_total",
        description="Large transactions, oversized credits and rejected negative balances",
        unit="1",
    )

    _breaker_trips_total = _meter.create_counter(
        "propdesk_circuit_breaker_trips_total",
        description="Markets frozen by the arbitrage sentinel",
        unit="1",
    )

    _positions_settled_total = _meter.create_counter(
        "propdesk_positions_settled_total",
        description="Positions closed by market resolution",
        unit="1",
    )

    _settlement_errors_total = _meter.create_counter(
        "propdesk_settlement_errors_total",
        description="Positions that failed to settle",
        unit="1",
    )

    _status_transitions_total = _meter.create_counter(
        "propdesk_challenge_status_transitions_total",
        description="Challenge status changes (failed, passed, closed)",
        unit="1",
    )

    # === LOGS ===
    global _log_handler
    logs_endpoint = otlp_endpoint.replace("/v1/metrics", "/v1/logs")
    log_exporter = OTLPLogExporter(endpoint=logs_endpoint)
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(log_exporter))
    set_logger_provider(logger_provider)

    _log_handler = LoggingHandler(
        level=logging.INFO,
        logger_provider=logger_provider,
    )

    _initialized = True
    return True


def get_log_handler() -> LoggingHandler | None:
    """Get the OTLP logging handler to attach to Python loggers."""
    return _log_handler


def is_enabled() -> bool:
    return _initialized


# --- Counter update functions ---

def record_trade(market_id: str, side: str, amount: Decimal) -> None:
    """Record a trade execution."""
    if not _initialized:
        return

    attributes = {"market_id": market_id, "side": side}
    _trades_total.add(1, attributes)
    _trade_value_total.add(float(amount), attributes)


def record_balance_mutation(operation: str, source: str) -> None:
    if not _initialized:
        return

    _balance_mutations_total.add(1, {"operation": operation, "source": source})


def record_balance_anomaly(kind: str) -> None:
    """Record a soft or hard balance anomaly (large_transaction, large_credit, negative_balance)."""
    if not _initialized:
        return

    _balance_anomalies_total.add(1, {"kind": kind})


def record_breaker_trip(market_id: str, trigger: str) -> None:
    if not _initialized:
        return

    _breaker_trips_total.add(1, {"market_id": market_id, "trigger": trigger})


def record_position_settled(market_id: str) -> None:
    if not _initialized:
        return

    _positions_settled_total.add(1, {"market_id": market_id})


def record_settlement_error() -> None:
    if not _initialized:
        return

    _settlement_errors_total.add(1)


def record_status_transition(phase: str, status: str) -> None:
    if not _initialized:
        return

    _status_transitions_total.add(1, {"phase": phase, "status": status})


# --- Gauge registration for observable metrics ---

def register_gauge_callback(name: str, callback, description: str, unit: str = "1") -> None:
    """Register a callback for an observable gauge.

    The callback should return an iterable of (value, attributes) tuples.
    """
    if not _initialized or _meter is None:
        return

    if name in _gauge_callbacks:
        return  # Already registered

    def wrapped_callback(options):
        try:
            for value, attrs in callback():
                yield metrics.Observation(value, attrs)
        except Exception:
            # A broken gauge must not stop the exporter
            logger.exception("Gauge callback failed", extra={"gauge": name})

    _meter.create_observable_gauge(
        name,
        callbacks=[wrapped_callback],
        description=description,
        unit=unit,
    )
    _gauge_callbacks[name] = callback


# --- Account metrics storage ---
# Latest values per challenge, exported as observable gauges
_equity_values: dict[str, float] = {}  # challenge_id -> equity
_drawdown_usage: dict[str, float] = {}  # challenge_id -> drawdown usage (percent)


def _equity_callback():
    for challenge_id, value in _equity_values.items():
        yield (value, {"challenge_id": challenge_id})


def _drawdown_usage_callback():
    for challenge_id, value in _drawdown_usage.items():
        yield (value, {"challenge_id": challenge_id})


def setup_account_metrics() -> None:
    """Register account-level observable gauges.

    Call this after setup_telemetry().
    """
    if not _initialized or _meter is None:
        return

    register_gauge_callback(
        "propdesk_challenge_equity",
        _equity_callback,
        "Cash plus market value of open positions",
        "currency",
    )

    register_gauge_callback(
        "propdesk_challenge_drawdown_usage",
        _drawdown_usage_callback,
        "Share of the max total drawdown already used",
        "percent",
    )


def record_account_risk(challenge_id: str, equity: Decimal, drawdown_usage: Decimal) -> None:
    """Record the latest equity and drawdown usage for a challenge.

    Called whenever the rules are enforced for a challenge.
    """
    if not _initialized:
        return

    _equity_values[challenge_id] = float(equity)
    _drawdown_usage[challenge_id] = float(drawdown_usage)
