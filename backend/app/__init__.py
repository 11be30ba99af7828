"""Application package: engine, providers and HTTP surface."""
