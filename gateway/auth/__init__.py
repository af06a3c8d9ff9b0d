"""Authentication collaborator: bearer token verification and role guards."""

from .principal import Principal, principal_from_claims

__all__ = ["Principal", "principal_from_claims"]
