"""Authentication strategy factory.

Builds strategy instances from typed configuration, keyed by strategy kind.
"""

import logging
from typing import Optional

import httpx

from identity_broker.config.settings import (
    BearerStrategySpec,
    LocalStrategySpec,
    OAuthStrategySpec,
    SamlStrategySpec,
    StrategySpec,
)

from .bearer import BearerTokenStrategy
from .local import CredentialVerifier, LocalAuthStrategy
from .oauth import OAuthStrategy
from .provider import AuthStrategy
from .state import StateStore

logger = logging.getLogger(__name__)


def build_strategy(
    spec: StrategySpec,
    secret: Optional[str] = None,
    verifier: Optional[CredentialVerifier] = None,
    state_store: Optional[StateStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthStrategy:
    """Instantiate the strategy described by ``spec``.

    Args:
        spec: Strategy configuration (name, type tag, per-kind config)
        secret: Broker secret for symmetric token verification
        verifier: Credential verifier for local strategies
        state_store: OAuth state store shared by OAuth strategies
        transport: httpx transport override for OAuth strategies

    Returns:
        Configured AuthStrategy instance

    Raises:
        ValueError: If the configuration is incomplete or the type unknown
        NotImplementedError: For the SAML placeholder
    """
    if isinstance(spec, LocalStrategySpec):
        return LocalAuthStrategy(spec.name, spec.config, verifier=verifier)

    elif isinstance(spec, OAuthStrategySpec):
        return OAuthStrategy(spec.name, spec.config, state_store=state_store, transport=transport)

    elif isinstance(spec, BearerStrategySpec):
        return BearerTokenStrategy(spec.name, spec.config, secret=secret)

    elif isinstance(spec, SamlStrategySpec):
        raise NotImplementedError(
            f"SAML strategy '{spec.name}' is not supported. "
            f"Valid options: local, oauth, jwt"
        )

    raise ValueError(f"Unknown strategy type: {getattr(spec, 'type', spec)!r}")


def build_registry(
    specs: list[StrategySpec],
    secret: Optional[str] = None,
    verifier: Optional[CredentialVerifier] = None,
    state_store: Optional[StateStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, AuthStrategy]:
    """Build the name -> strategy registry, skipping disabled strategies.

    Raises:
        ValueError: If two enabled strategies share a name
    """
    registry: dict[str, AuthStrategy] = {}
    for spec in specs:
        if not spec.enabled:
            logger.info(f"Skipping disabled strategy: {spec.name}")
            continue
        if spec.name in registry:
            raise ValueError(f"Duplicate strategy name: {spec.name}")

        registry[spec.name] = build_strategy(
            spec,
            secret=secret,
            verifier=verifier,
            state_store=state_store,
            transport=transport,
        )
        logger.info(f"Strategy initialized: {spec.name} ({registry[spec.name].__class__.__name__})")
    return registry
