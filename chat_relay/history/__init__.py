from __future__ import annotations

from .models import Message, Role, Transcript

__all__ = ["Message", "Role", "Transcript"]
