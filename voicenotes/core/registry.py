"""In-memory catalog of transcription and summarization providers."""

from typing import Dict, List, Optional, Union
import logging

from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import ProviderKind
from voicenotes.providers.base import BaseProvider, Summarizer, Transcriber

logger = logging.getLogger(__name__)

_KIND_METHODS = {
    ProviderKind.TRANSCRIBER: "transcribe",
    ProviderKind.SUMMARIZER: "summarize",
}


def _coerce_kind(kind: Union[ProviderKind, str, None], provider_id: Optional[str]) -> ProviderKind:
    if isinstance(kind, ProviderKind):
        return kind
    try:
        return ProviderKind(kind)
    except ValueError:
        raise ProviderError.invalid_provider_type(provider_id, kind)


class ProviderRegistry:
    """
    Two-partition map of providers keyed by id.

    The registry only stores and looks up providers. Ids are unique across
    both partitions and registered providers are never replaced.
    """

    def __init__(self):
        self._partitions: Dict[ProviderKind, Dict[str, BaseProvider]] = {
            ProviderKind.TRANSCRIBER: {},
            ProviderKind.SUMMARIZER: {},
        }

    def register(self, provider: BaseProvider, kind: Union[ProviderKind, str, None] = None) -> None:
        """
        Register a provider under its explicit kind tag.

        Args:
            provider: Provider instance
            kind: Optional kind; must agree with ``provider.kind`` when both are set

        Raises:
            ProviderError: INVALID_PROVIDER_TYPE or PROVIDER_ALREADY_REGISTERED
        """
        provider_id = getattr(provider, "id", None)
        if not provider_id:
            raise ProviderError.invalid_provider_type(None, kind)

        declared = getattr(provider, "kind", None)
        if kind is None and declared is None:
            raise ProviderError.invalid_provider_type(provider_id, None)

        resolved = _coerce_kind(kind if kind is not None else declared, provider_id)
        if declared is not None and _coerce_kind(declared, provider_id) != resolved:
            raise ProviderError.invalid_provider_type(provider_id, f"{kind} (declared {declared})")

        if not callable(getattr(provider, _KIND_METHODS[resolved], None)):
            raise ProviderError.invalid_provider_type(provider_id, resolved.value)

        if self.is_registered(provider_id):
            raise ProviderError.provider_already_registered(provider_id)

        self._partitions[resolved][provider_id] = provider
        logger.info(f"Registered {resolved.value} provider: {provider_id}")

    def get(self, provider_id: str, kind: Union[ProviderKind, str]) -> BaseProvider:
        """Look up a provider in one partition."""
        resolved = _coerce_kind(kind, provider_id)
        provider = self._partitions[resolved].get(provider_id)
        if provider is None:
            raise ProviderError.provider_not_found(provider_id, resolved.value)
        return provider

    def get_transcriber(self, provider_id: str) -> Transcriber:
        return self.get(provider_id, ProviderKind.TRANSCRIBER)

    def get_summarizer(self, provider_id: str) -> Summarizer:
        return self.get(provider_id, ProviderKind.SUMMARIZER)

    def find(self, provider_id: str) -> Optional[BaseProvider]:
        """Look up a provider in either partition, or None."""
        for partition in self._partitions.values():
            if provider_id in partition:
                return partition[provider_id]
        return None

    def list_all(self, kind: Union[ProviderKind, str]) -> List[BaseProvider]:
        return list(self._partitions[_coerce_kind(kind, None)].values())

    def list_ids(self, kind: Union[ProviderKind, str]) -> List[str]:
        return list(self._partitions[_coerce_kind(kind, None)].keys())

    def is_registered(self, provider_id: str) -> bool:
        return any(provider_id in partition for partition in self._partitions.values())

    def unregister(self, provider_id: str) -> bool:
        """
        Remove a provider from whichever partition holds it.

        Returns:
            True if anything was removed
        """
        removed = False
        for partition in self._partitions.values():
            if partition.pop(provider_id, None) is not None:
                removed = True
        if removed:
            logger.info(f"Unregistered provider: {provider_id}")
        return removed

    def clear(self) -> None:
        for partition in self._partitions.values():
            partition.clear()

    def count(self) -> Dict[ProviderKind, int]:
        return {kind: len(partition) for kind, partition in self._partitions.items()}
