"""Weather MCP Server - privacy-first usage analytics.

This package provides the telemetry pipeline used by the Weather MCP tool
handlers: anonymized events, in-memory batching and delivery to a remote
collection endpoint.
"""

from __future__ import annotations

__version__ = "1.6.1"
