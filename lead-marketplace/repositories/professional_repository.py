"""
Professional directory (read-only).

Professional profiles are owned by the account system. The marketplace only
needs to know whether a professional is verified, which earns the claim-cost
discount.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable
from uuid import UUID

from repositories.client import get_supabase

_PROFESSIONALS_TABLE: str = "professionals"


class ProfessionalDirectory(ABC):
    @abstractmethod
    def is_verified(self, professional_id: UUID) -> bool: ...


class InMemoryProfessionalDirectory(ProfessionalDirectory):
    def __init__(self, verified: Iterable[UUID] = ()):
        self._lock = threading.Lock()
        self._verified = set(verified)

    def set_verified(self, professional_id: UUID, verified: bool = True) -> None:
        with self._lock:
            if verified:
                self._verified.add(professional_id)
            else:
                self._verified.discard(professional_id)

    def is_verified(self, professional_id: UUID) -> bool:
        with self._lock:
            return professional_id in self._verified


class SupabaseProfessionalDirectory(ProfessionalDirectory):
    def __init__(self, client: Any = None):
        self._client = client if client is not None else get_supabase()

    def is_verified(self, professional_id: UUID) -> bool:
        """
        Look up the verification flag of a professional.

        Unknown professionals are treated as unverified.
        """

        response = (
            self._client.table(_PROFESSIONALS_TABLE)
            .select("professional_id, is_verified")
            .eq("professional_id", str(professional_id))
            .limit(1)
            .execute()
        )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch professional: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return False
        return bool(rows[0].get("is_verified", False))


__all__ = [
    "ProfessionalDirectory",
    "InMemoryProfessionalDirectory",
    "SupabaseProfessionalDirectory",
]
