# File: lattice_link/metrics.py

from prometheus_client import Counter, Gauge, Histogram

METRICS = {
    "reconciliation_latency": Histogram(
        "lattice_link_reconciliation_duration_ms",
        "Time taken for a reconciliation run in milliseconds",
        ["operation"],
        buckets=(100, 500, 1000, 5000, 15000, 60000, 300000),
    ),
    "reconciliation_actions": Counter(
        "lattice_link_reconciliation_actions_total",
        "Count of reconciliation actions issued against providers",
        ["action_type"],
    ),
    "entity_results": Counter(
        "lattice_link_entity_results_total",
        "Final per-entity statuses reported by reconciliation runs",
        ["status"],
    ),
    "provider_errors": Counter(
        "lattice_link_provider_errors_total",
        "Provider errors by classification",
        ["kind"],
    ),
    "rollbacks": Counter(
        "lattice_link_rollbacks_total",
        "Rollbacks by outcome",
        ["outcome"],
    ),
    "ledger_entries": Gauge(
        "lattice_link_ledger_entries",
        "Entries currently held in the reconciliation ledger",
    ),
    "api_requests": Counter(
        "lattice_link_api_requests_total",
        "Total REST API requests",
        ["method", "endpoint"],
    ),
}
