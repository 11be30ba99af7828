"""
risk — Flood risk aggregation engine.

Sub-modules:
    models           — Location, payloads, RiskFactor, FloodRiskAssessment
    normalizer       — Raw payload → [0, 1] risk factor value
    risk_aggregator  — Concurrent fan-out, deadline join, weighted scoring
"""
