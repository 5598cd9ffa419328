"""Ingestion layer.

Adapters that receive position data (push channel payloads, polled HTTP
responses, publisher input) and emit normalized domain objects.
"""

__all__: list[str] = []
