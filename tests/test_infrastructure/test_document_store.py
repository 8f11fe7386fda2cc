"""Tests for the document store backends.

The Pinata store is exercised through httpx.MockTransport, so no network
access or API keys are needed.
"""

from __future__ import annotations

import json

import httpx
import pytest

from title_registry.domain.exceptions import DocumentUploadError
from title_registry.infrastructure.document_store import InMemoryDocumentStore, PinataDocumentStore

PDF = b"%PDF-1.4 mother deed"


def pinata(handler) -> PinataDocumentStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PinataDocumentStore(
        api_key="key",
        secret_api_key="secret",
        base_url="https://pinata.test/",
        client=client,
    )


class TestPinataDocumentStore:
    @pytest.mark.asyncio
    async def test_pins_and_returns_ipfs_hash(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200, json={"IpfsHash": "QmDeed", "PinSize": len(PDF)})

        content_hash = await pinata(handler).pin_file(PDF, {"name": "deed.pdf"})

        assert content_hash == "QmDeed"
        assert seen["url"] == "https://pinata.test/pinning/pinFileToIPFS"
        assert seen["headers"]["pinata_api_key"] == "key"
        assert seen["headers"]["pinata_secret_api_key"] == "secret"
        assert PDF in seen["body"]
        assert json.dumps({"name": "deed.pdf"}).encode() in seen["body"]

    @pytest.mark.asyncio
    async def test_rejected_upload(self) -> None:
        store = pinata(lambda request: httpx.Response(401, json={"error": "bad key"}))
        with pytest.raises(DocumentUploadError, match="HTTP 401") as exc_info:
            await store.pin_file(PDF, {"name": "deed.pdf"})
        assert exc_info.value.filename == "deed.pdf"

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DocumentUploadError, match="unavailable"):
            await pinata(handler).pin_file(PDF, {"name": "deed.pdf"})

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        store = pinata(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(DocumentUploadError):
            await store.pin_file(PDF, {"name": "deed.pdf"})

    @pytest.mark.asyncio
    async def test_missing_hash(self) -> None:
        store = pinata(lambda request: httpx.Response(200, json={"PinSize": 1}))
        with pytest.raises(DocumentUploadError, match="no content hash"):
            await store.pin_file(PDF, {"name": "deed.pdf"})


class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_content_addressed(self) -> None:
        store = InMemoryDocumentStore()
        first = await store.pin_file(PDF, {"name": "a.pdf"})
        second = await store.pin_file(PDF, {"name": "b.pdf"})
        other = await store.pin_file(b"%PDF-1.4 other", {"name": "a.pdf"})

        assert first == second
        assert first != other
        assert first.startswith("sha256-")
        assert store.files[first] == PDF
