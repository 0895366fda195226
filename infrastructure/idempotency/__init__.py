"""Idempotency adapters: gateway-backed markers and optional Redis claims."""
from .gateway_markers import GatewayMetadataMarkerStore

__all__ = ["GatewayMetadataMarkerStore"]
