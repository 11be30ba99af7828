"""
alerts — Flood alert read path.

Sub-modules:
    models            — FloodAlert, AlertSummary and severity vocabulary
    alert_aggregator  — Concurrent merge of registry and weather alert feeds
"""
