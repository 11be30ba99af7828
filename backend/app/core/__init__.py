"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables, settings & provider configs
    logging_config  — structured JSON / pretty logging
    errors          — exception hierarchy & handlers
    middleware      — request logging & correlation IDs
    health          — provider configuration health report
"""
