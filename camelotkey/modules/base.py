from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .helperClasses import ResolvedKey


class KeyProvider(ABC):
    """Base class for the key data providers.

    The resolver tries providers in a fixed order. ``lookup`` returns
    None when the provider has nothing to offer and the next one should
    be tried; a provider that returns a ``KeyMiss`` ends the chain.
    """
    name: str

    @abstractmethod
    async def is_configured(self) -> bool:
        """Check if the provider can be queried right now."""
        raise NotImplementedError

    @abstractmethod
    async def lookup(self, title: str, artist: str) -> Optional[ResolvedKey]:
        """Resolve a title/artist pair to a key."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
