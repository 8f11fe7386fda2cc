"""Document Store Protocol.

The registry treats document pinning as a black box: store bytes, get back a
content-addressed identifier. Identical bytes always yield the same hash, so
pinning the same file twice is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from title_registry.domain.enums import DocumentKind


@dataclass(frozen=True)
class DocumentUpload:
    """A document received with a registration request.

    Attributes:
        kind: Which required document this is.
        filename: Original client filename, kept as pin metadata.
        content_type: MIME type reported by the client.
        content: Raw file bytes.
    """

    kind: DocumentKind
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol that document store implementations must satisfy.

    Concrete implementations:
        - PinataDocumentStore   (IPFS pinning over HTTP)
        - InMemoryDocumentStore (content hashes computed locally)
    """

    async def pin_file(self, content: bytes, metadata: dict) -> str:
        """Pin a file and return its content hash.

        Raises:
            DocumentUploadError: if the store rejects or cannot be reached.
        """
        ...
