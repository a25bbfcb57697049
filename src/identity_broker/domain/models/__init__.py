"""Domain models for the Identity Broker"""

from identity_broker.domain.models.identity import (
    CandidateIdentity,
    Session,
    StrategyLink,
    TokenBundle,
    User,
    new_record_id,
    new_session_id,
    parse_utc_timestamp,
    to_json_compatible,
    utc_now,
)
from identity_broker.domain.models.result import AuthErrorCode, AuthResult

__all__ = [
    # Identity models
    "User",
    "StrategyLink",
    "Session",
    "TokenBundle",
    "CandidateIdentity",
    "new_record_id",
    "new_session_id",
    "parse_utc_timestamp",
    "to_json_compatible",
    "utc_now",
    # Outcomes
    "AuthResult",
    "AuthErrorCode",
]
