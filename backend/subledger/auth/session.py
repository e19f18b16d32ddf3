"""Authenticated request context."""

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class AuthSession:
    """The verified identity behind a request, passed explicitly to handlers."""

    user_id: uuid.UUID
    email: str
    claims: dict[str, Any] = field(default_factory=dict, compare=False)
