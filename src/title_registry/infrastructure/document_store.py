"""Document store backends.

PinataDocumentStore pins files to IPFS through Pinata's HTTP API and
returns the IPFS content hash. InMemoryDocumentStore derives a content hash
locally; it is used in development and tests.

Usage:
    store = get_document_store()
    content_hash = await store.pin_file(pdf_bytes, {"name": "deed.pdf"})
"""

from __future__ import annotations

import hashlib
import json

import httpx

from title_registry.config import get_settings
from title_registry.domain.exceptions import DocumentUploadError
from title_registry.logging_config import get_logger

logger = get_logger(__name__)


class PinataDocumentStore:
    """Pins files via POST /pinning/pinFileToIPFS."""

    def __init__(
        self,
        api_key: str,
        secret_api_key: str,
        base_url: str = "https://api.pinata.cloud",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._headers = {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_api_key,
        }
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def pin_file(self, content: bytes, metadata: dict) -> str:
        filename = metadata.get("name", "document")
        files = {"file": (filename, content, metadata.get("content_type", "application/pdf"))}
        data = {"pinataMetadata": json.dumps({"name": filename})}

        try:
            if self._client is not None:
                response = await self._post(self._client, files, data)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, files, data)
            response.raise_for_status()
            ipfs_hash = response.json().get("IpfsHash")
        except httpx.HTTPStatusError as err:
            logger.error(
                "documents.pin_rejected",
                filename=filename,
                status_code=err.response.status_code,
            )
            raise DocumentUploadError(
                f"Document store rejected {filename}: HTTP {err.response.status_code}",
                filename=filename,
            ) from err
        except (httpx.HTTPError, ValueError) as err:
            logger.error("documents.pin_failed", filename=filename, error=str(err))
            raise DocumentUploadError(
                f"Document store unavailable for {filename}: {err}",
                filename=filename,
            ) from err

        if not ipfs_hash:
            raise DocumentUploadError(
                f"Document store returned no content hash for {filename}",
                filename=filename,
            )

        logger.info("documents.pinned", filename=filename, content_hash=ipfs_hash)
        return ipfs_hash

    async def _post(self, client: httpx.AsyncClient, files: dict, data: dict) -> httpx.Response:
        return await client.post(
            f"{self._base_url}/pinning/pinFileToIPFS",
            headers=self._headers,
            files=files,
            data=data,
        )


class InMemoryDocumentStore:
    """Content-addressed store kept in a dict. Same bytes, same hash."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}

    async def pin_file(self, content: bytes, metadata: dict) -> str:
        content_hash = "sha256-" + hashlib.sha256(content).hexdigest()
        self.files[content_hash] = content
        logger.debug("documents.pinned", filename=metadata.get("name"), content_hash=content_hash)
        return content_hash


_store: PinataDocumentStore | InMemoryDocumentStore | None = None


def get_document_store() -> PinataDocumentStore | InMemoryDocumentStore:
    """Return the configured document store (created on first use)."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.document_store_simulate:
            _store = InMemoryDocumentStore()
        else:
            _store = PinataDocumentStore(
                api_key=settings.pinata_api_key,
                secret_api_key=settings.pinata_secret_api_key,
                base_url=settings.pinata_base_url,
                timeout=settings.pinata_timeout_seconds,
            )
        logger.info("documents.store_initialized", simulated=settings.document_store_simulate)
    return _store
