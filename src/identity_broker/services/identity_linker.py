"""Identity linking.

Resolves a candidate identity produced by any strategy into a canonical user
and manages each user's set of linked strategies.

Invariants:
- (strategy_name, strategy_id) maps to at most one user. The storage unique
  constraint enforces it; a duplicate on first-time creation means another
  request won the race and is re-resolved as a lookup.
- A user keeps at least one link: unlinking the last one is refused.
"""

import logging
from typing import Any, Optional

from identity_broker.domain.models import (
    AuthErrorCode,
    AuthResult,
    CandidateIdentity,
    StrategyLink,
    TokenBundle,
    User,
    new_record_id,
    utc_now,
)
from identity_broker.infrastructure.storage import DuplicateLinkError, StorageBackend

logger = logging.getLogger(__name__)


class IdentityLinker:
    """Canonical-user resolution and link management."""

    def __init__(self, storage: Optional[StorageBackend]):
        self.storage = storage

    async def resolve_or_create(
        self,
        strategy_name: str,
        identity: CandidateIdentity,
        tokens: Optional[TokenBundle] = None,
    ) -> AuthResult:
        """Find the user owning an external identity, creating one if new.

        Args:
            strategy_name: Strategy the identity came from
            identity: Candidate identity
            tokens: Provider tokens stored on a newly created link

        Returns:
            Success carrying the canonical user, or ``DatabaseRequired``
        """
        if self.storage is None:
            return AuthResult.fail(AuthErrorCode.DATABASE_REQUIRED)

        user = await self._lookup(strategy_name, identity.provider_id)
        if user is not None:
            return AuthResult.ok(user=user, identity=identity, tokens=tokens)

        now = utc_now()
        new_user = User(
            id=new_record_id(),
            username=identity.username,
            email=identity.email,
            profile=dict(identity.profile),
            created_at=now,
            updated_at=now,
        )
        link = _new_link(new_user.id, strategy_name, identity.provider_id, identity.profile, tokens)

        try:
            user = await self.storage.create_linked_user(new_user, link)
            logger.info(f"Created user {user.id} for {strategy_name}:{identity.provider_id}")
        except DuplicateLinkError:
            logger.info(
                f"Concurrent first login for {strategy_name}:{identity.provider_id}, re-resolving"
            )
            user = await self._lookup(strategy_name, identity.provider_id)
            if user is None:
                # Winner's link vanished between insert and lookup
                raise

        return AuthResult.ok(user=user, identity=identity, tokens=tokens)

    async def ensure_user(self, strategy_name: str, user: User) -> User:
        """Persist a verifier-supplied user the broker has not seen yet.

        The user keeps its id and gets a link keyed by that id. A link for
        that id resolves to its owner, which may be another canonical user
        the identity was linked to. Users already in storage are returned as
        stored.
        """
        stored = await self._lookup(strategy_name, user.id)
        if stored is None:
            stored = await self.storage.get_user(user.id)
        if stored is not None:
            return stored

        link = _new_link(user.id, strategy_name, user.id, {}, None)
        try:
            stored = await self.storage.create_linked_user(user, link)
            logger.info(f"Registered user {user.id} from {strategy_name}")
        except DuplicateLinkError:
            logger.info(f"Concurrent first login for {strategy_name}:{user.id}, re-resolving")
            stored = await self._lookup(strategy_name, user.id)
            if stored is None:
                stored = await self.storage.get_user(user.id)
            if stored is None:
                raise
        return stored

    async def _lookup(self, strategy_name: str, provider_id: str) -> Optional[User]:
        link = await self.storage.get_link(strategy_name, provider_id)
        if link is None:
            return None
        return await self.storage.get_user(link.user_id)

    async def link(
        self,
        user_id: str,
        strategy_name: str,
        provider_id: str,
        profile: Optional[dict[str, Any]] = None,
        tokens: Optional[TokenBundle] = None,
    ) -> AuthResult:
        """Attach an external identity to an already-authenticated user.

        Returns:
            Success carrying the updated user; ``DatabaseRequired`` without
            storage; ``LinkAlreadyClaimed`` if another user owns the identity
        """
        if self.storage is None:
            return AuthResult.fail(AuthErrorCode.DATABASE_REQUIRED)

        link = _new_link(user_id, strategy_name, provider_id, profile or {}, tokens)
        try:
            await self.storage.create_link(link)
        except DuplicateLinkError:
            existing = await self.storage.get_link(strategy_name, provider_id)
            if existing is None or existing.user_id != user_id:
                logger.warning(
                    f"Link refused: {strategy_name}:{provider_id} already claimed (user {user_id})"
                )
                return AuthResult.fail(AuthErrorCode.LINK_ALREADY_CLAIMED)
            # Already linked to this user

        logger.info(f"Linked {strategy_name}:{provider_id} to user {user_id}")
        return AuthResult.ok(user=await self.storage.get_user(user_id))

    async def unlink(self, user_id: str, strategy_name: str) -> AuthResult:
        """Remove a linked strategy, never the last one."""
        if self.storage is None:
            return AuthResult.fail(AuthErrorCode.DATABASE_REQUIRED)

        links = await self.storage.list_links(user_id)
        if len(links) <= 1:
            return AuthResult.fail(AuthErrorCode.CANNOT_REMOVE_LAST_STRATEGY)
        if not any(link.strategy_name == strategy_name for link in links):
            return AuthResult.fail(AuthErrorCode.STRATEGY_NOT_LINKED)
        if all(link.strategy_name == strategy_name for link in links):
            # Every remaining link belongs to this strategy
            return AuthResult.fail(AuthErrorCode.CANNOT_REMOVE_LAST_STRATEGY)

        removed = await self.storage.delete_link(user_id, strategy_name)
        logger.info(f"Unlinked {strategy_name} from user {user_id} ({removed} link(s))")
        return AuthResult.ok(user=await self.storage.get_user(user_id))

    async def list_links(self, user_id: str) -> list[StrategyLink]:
        if self.storage is None:
            return []
        return await self.storage.list_links(user_id)


def _new_link(
    user_id: str,
    strategy_name: str,
    provider_id: str,
    profile: dict[str, Any],
    tokens: Optional[TokenBundle],
) -> StrategyLink:
    now = utc_now()
    return StrategyLink(
        id=new_record_id(),
        user_id=user_id,
        strategy_name=strategy_name,
        strategy_id=provider_id,
        profile=dict(profile),
        tokens=tokens,
        created_at=now,
        updated_at=now,
    )
