"""Factory for creating and managing source adapter instances."""

from typing import Any, Dict, List, Optional, Type

import httpx
import structlog

from pricewatch.config import settings
from pricewatch.tracking.base import BaseHTTPAdapter, SourceAdapter

logger = structlog.get_logger(__name__)


class AdapterFactory:
    """Registry of source adapters keyed by source id.

    Adapters are created lazily on first use and cached, so every job on a
    source shares one instance. HTTP adapters get the factory's shared
    httpx client and user agent injected.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
    ):
        self.http_client = http_client
        self.user_agent = user_agent if user_agent is not None else (settings.HTTP_USER_AGENT or None)
        self._registry: Dict[str, tuple[Type[SourceAdapter], Dict[str, Any]]] = {}
        self._instances: Dict[str, SourceAdapter] = {}

    def register_adapter(
        self, source_id: str, adapter_class: Type[SourceAdapter], **options: Any
    ) -> None:
        """Register an adapter class for a source.

        Args:
            source_id: Source identifier (e.g., "amazon")
            adapter_class: Adapter class (must inherit from SourceAdapter)
            **options: Extra constructor arguments for the adapter
        """
        if not issubclass(adapter_class, SourceAdapter):
            raise ValueError(f"Adapter class must inherit from SourceAdapter: {adapter_class}")

        self._registry[source_id] = (adapter_class, options)
        self._instances.pop(source_id, None)
        logger.info("adapter_registered", source_id=source_id, adapter_type=adapter_class.adapter_type)

    def register_instance(self, adapter: SourceAdapter) -> None:
        """Register a ready-made adapter under its own source id."""
        self._registry[adapter.source_id] = (type(adapter), {})
        self._instances[adapter.source_id] = adapter
        logger.info("adapter_registered", source_id=adapter.source_id, adapter_type=adapter.adapter_type)

    def get(self, source_id: str) -> Optional[SourceAdapter]:
        """Return the adapter for a source, creating it on first use."""
        adapter = self._instances.get(source_id)
        if adapter is not None:
            return adapter

        entry = self._registry.get(source_id)
        if entry is None:
            return None

        adapter_class, options = entry
        if issubclass(adapter_class, BaseHTTPAdapter):
            options = {
                "http_client": self.http_client,
                "user_agent": self.user_agent,
                **options,
            }
        adapter = adapter_class(source_id=source_id, **options)
        self._instances[source_id] = adapter
        logger.info("adapter_created", source_id=source_id, adapter_type=adapter.adapter_type)
        return adapter

    def get_registered_sources(self) -> List[str]:
        return list(self._registry.keys())

    def has_adapter(self, source_id: str) -> bool:
        return source_id in self._registry

    async def cleanup(self) -> None:
        """Release resources held by created adapters."""
        for source_id, adapter in list(self._instances.items()):
            try:
                await adapter.cleanup()
            except Exception as e:
                logger.warning("adapter_cleanup_failed", source_id=source_id, error=str(e))
        self._instances.clear()
