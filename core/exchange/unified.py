from __future__ import annotations

"""
Unified Exchange Adapter Factory
================================

Builds adapters from ``ExchangeConfig``:
- Picks the adapter class for the configured exchange type
- Wires the shared registry, constraint store and balance map
- Creates a transport and a nonce source sized for the exchange
- Seeds the constraint store from a snapshot in JSON_FILE mode
"""

import logging
from typing import Dict, List, Optional, Type

from core.exchange.bitfinex import BitfinexExchange
from core.exchange.common import ExchangeAdapter, ExchangeError, HttpClient, SourceMode, ValidationError
from core.exchange.config import ExchangeConfig, ExchangeType, get_exchange_config
from core.exchange.kraken import KrakenExchange
from core.exchange.liquid import LiquidExchange
from core.exchange.registry import (
    BalanceMap,
    ConstraintStore,
    ReferenceRegistry,
    get_balance_map,
    get_constraint_store,
    get_registry,
)
from core.exchange.signing import NonceSource, get_nonce_source
from core.exchange.transport import RequestsTransport

logger = logging.getLogger(__name__)


class ExchangeAdapterFactory:
    """Factory for creating exchange adapters."""

    _adapters: Dict[ExchangeType, Type[ExchangeAdapter]] = {
        ExchangeType.BITFINEX: BitfinexExchange,
        ExchangeType.KRAKEN: KrakenExchange,
        ExchangeType.LIQUID: LiquidExchange,
    }

    @classmethod
    def create_adapter(
        cls,
        config: ExchangeConfig,
        http_client: Optional[HttpClient] = None,
        *,
        registry: Optional[ReferenceRegistry] = None,
        constraints: Optional[ConstraintStore] = None,
        balances: Optional[BalanceMap] = None,
        nonce: Optional[NonceSource] = None,
    ) -> ExchangeAdapter:
        """Create an adapter; collaborators default to the process-wide instances."""
        adapter_class = cls._adapters.get(config.settings.type)
        if not adapter_class:
            raise ValidationError(f"Unsupported exchange type: {config.settings.type}")

        registry = registry or get_registry()
        if constraints is None:
            constraints = get_constraint_store() if registry is get_registry() else ConstraintStore(registry)
        if config.settings.source == SourceMode.JSON_FILE:
            if not config.settings.snapshot_path:
                raise ValidationError(f"{config.name}: JSON_FILE source requires snapshot_path")
            constraints.load_snapshot(config.settings.snapshot_path, registry)

        try:
            adapter = adapter_class(
                config,
                http=http_client or RequestsTransport(timeout_s=config.settings.timeout_ms / 1000.0),
                registry=registry,
                constraints=constraints,
                balances=balances or get_balance_map(),
                nonce=nonce or get_nonce_source(config.credentials, adapter_class.nonce_divisor),
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to create adapter for {config.settings.type.value}: {e}")
            raise ExchangeError(f"Adapter creation failed: {e}") from e
        logger.info(f"Created {config.settings.type.value} adapter '{config.name}' ({config.settings.source.value})")
        return adapter

    @classmethod
    def create_from_ssot(cls, exchange_name: str, http_client: Optional[HttpClient] = None) -> ExchangeAdapter:
        """Create adapter from the persisted SSOT configuration."""
        config = get_exchange_config(exchange_name)
        if config is None:
            raise ValidationError(f"No configuration found for exchange: {exchange_name}")
        return cls.create_adapter(config, http_client)

    @classmethod
    def get_supported_exchanges(cls) -> List[str]:
        return [t.value for t in cls._adapters]


def create_exchange_adapter(
    exchange_name: str,
    api_key: str = "",
    api_secret: str = "",
    http_client: Optional[HttpClient] = None,
    **overrides,
) -> ExchangeAdapter:
    """Convenience function: build a config for ``exchange_name`` and an adapter for it."""
    exchange_type = ExchangeType(exchange_name.lower())
    config = ExchangeConfig.create(exchange_type.value, exchange_type, api_key, api_secret, **overrides)
    return ExchangeAdapterFactory.create_adapter(config, http_client)


__all__ = [
    "ExchangeAdapterFactory",
    "create_exchange_adapter",
]
