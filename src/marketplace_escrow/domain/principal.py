"""Authenticated caller identity, as handed over by the auth collaborator."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    """An authenticated user. Credentials are validated upstream, never here."""

    id: str
    email: str | None = None
    is_provider: bool = False
