"""Claim-signing supervisor service."""

from .process import RegistrySubjectReader, StaticSubjectReader, create_app
from .service import ClaimSigningSupervisor

__all__ = ["ClaimSigningSupervisor", "RegistrySubjectReader", "StaticSubjectReader", "create_app"]
