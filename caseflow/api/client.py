"""Async HTTP client for the Case.dev API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import CaseflowConfig, load_config
from ..errors import CaseApiError, CaseConnectionError
from ..events import VAULT_CREATED, EventBus
from .models import (
    DocumentRef,
    OcrJob,
    SearchChunk,
    TabularAnalysis,
    TranscriptionJob,
    Vault,
    VaultObject,
    WorkflowResult,
    WorkflowSummary,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull the server-provided message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return str(message)
    return f"API Error: {response.status_code}"


class _Service:
    def __init__(self, client: "CaseClient") -> None:
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._client.request(method, path, **kwargs)


class VaultService(_Service):
    """Vault storage and search."""

    async def list(self) -> List[Vault]:
        data = await self._request("GET", "/api/vaults")
        return [Vault.model_validate(v) for v in data.get("vaults", [])]

    async def create(self, name: str, description: Optional[str] = None) -> Vault:
        body: Dict[str, Any] = {"name": name}
        if description:
            body["description"] = description
        vault = Vault.model_validate(await self._request("POST", "/api/vaults", json=body))
        if self._client.bus is not None:
            await self._client.bus.publish(VAULT_CREATED, vault)
        return vault

    async def list_objects(self, vault_id: str) -> List[VaultObject]:
        data = await self._request("GET", f"/api/vaults/{vault_id}/objects")
        objects = []
        for obj in data.get("objects", []):
            obj.setdefault("vaultId", vault_id)
            objects.append(VaultObject.model_validate(obj))
        return objects

    async def get_object(self, vault_id: str, object_id: str) -> VaultObject:
        data = await self._request("GET", f"/api/vaults/{vault_id}/objects/{object_id}")
        data.setdefault("vaultId", vault_id)
        return VaultObject.model_validate(data)

    async def object_text(self, vault_id: str, object_id: str) -> str:
        """Return the extracted text of a vault object."""
        data = await self._request(
            "GET", f"/api/vaults/{vault_id}/objects/{object_id}/text"
        )
        return data.get("text") or ""

    async def search(
        self,
        vault_id: str,
        query: str,
        top_k: int = 10,
        method: str = "hybrid",
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[SearchChunk]:
        body: Dict[str, Any] = {"query": query, "topK": top_k, "method": method}
        if filters:
            body["filters"] = filters
        data = await self._request("POST", f"/api/vaults/{vault_id}/search", json=body)
        chunks = data.get("chunks") or data.get("results") or []
        return [SearchChunk.model_validate(c) for c in chunks]

    async def upload_text(
        self,
        vault_id: str,
        filename: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        content_type: str = "text/plain",
    ) -> Dict[str, Any]:
        """Upload ``content`` through a presigned URL and start ingestion."""
        body: Dict[str, Any] = {"filename": filename, "contentType": content_type}
        if metadata:
            body["metadata"] = metadata
        upload = await self._request("POST", f"/api/vaults/{vault_id}/upload", json=body)

        request = self._client.http.build_request(
            "PUT",
            upload["uploadUrl"],
            content=content.encode("utf-8"),
            headers={"Content-Type": content_type},
        )
        # Presigned URLs carry their own signature.
        request.headers.pop("Authorization", None)
        try:
            response = await self._client.http.send(request)
        except httpx.HTTPError as e:
            raise CaseConnectionError(f"Failed to upload file content: {e}") from e
        if response.is_error:
            raise CaseApiError(response.status_code, "Failed to upload file content")

        object_id = upload["objectId"]
        await self._request("POST", f"/api/vaults/{vault_id}/ingest/{object_id}")
        logger.info(f"Uploaded {filename} to vault {vault_id} as {object_id}")
        return {"vault_id": vault_id, "object_id": object_id, "filename": filename}


class OcrService(_Service):
    async def submit(
        self,
        document_url: Optional[str] = None,
        vault_id: Optional[str] = None,
        object_id: Optional[str] = None,
        filename: Optional[str] = None,
        engine: str = "doctr",
        embed: bool = False,
        tables: bool = False,
    ) -> str:
        """Submit a document for OCR and return the job id."""
        if not document_url and not (vault_id and object_id):
            raise ValueError("Either document_url or (vault_id + object_id) is required")
        body: Dict[str, Any] = {
            "engine": engine,
            "features": {"embed": embed, "tables": tables},
        }
        if document_url:
            body["documentUrl"] = document_url
        else:
            body["vaultId"] = vault_id
            body["objectId"] = object_id
        if filename:
            body["filename"] = filename
        data = await self._request("POST", "/api/ocr", json=body)
        logger.info(f"Submitted OCR job {data['id']} using {engine}")
        return data["id"]

    async def get(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/ocr/{job_id}")

    async def list(self) -> List[OcrJob]:
        data = await self._request("GET", "/api/ocr")
        return [OcrJob.model_validate(j) for j in data.get("jobs", [])]

    async def results(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/ocr/{job_id}/results")


class TranscriptionService(_Service):
    async def submit(
        self,
        audio_url: Optional[str] = None,
        vault_id: Optional[str] = None,
        object_id: Optional[str] = None,
        language_code: str = "en",
        speaker_labels: bool = True,
        punctuate: bool = True,
        format_text: bool = True,
        word_boost: Optional[List[str]] = None,
    ) -> str:
        """Submit audio for transcription and return the job id."""
        if not audio_url and not (vault_id and object_id):
            raise ValueError("Either audio_url or (vault_id + object_id) is required")
        body: Dict[str, Any] = {
            "languageCode": language_code,
            "speakerLabels": speaker_labels,
            "punctuate": punctuate,
            "formatText": format_text,
            "wordBoost": word_boost or [],
        }
        if audio_url:
            body["audioUrl"] = audio_url
        else:
            body["vaultId"] = vault_id
            body["objectId"] = object_id
        data = await self._request("POST", "/api/transcription", json=body)
        logger.info(f"Submitted transcription job {data['id']}")
        return data["id"]

    async def get(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/transcription/{job_id}")

    async def list(self) -> List[TranscriptionJob]:
        data = await self._request("GET", "/api/transcription")
        return [TranscriptionJob.model_validate(j) for j in data.get("jobs", [])]

    async def streaming_url(self) -> str:
        data = await self._request("GET", "/api/transcription/streaming-url")
        return data["url"]


class WorkflowService(_Service):
    async def list(self) -> List[WorkflowSummary]:
        data = await self._request("GET", "/api/workflows")
        return [WorkflowSummary.model_validate(w) for w in data.get("workflows", [])]

    async def get(self, workflow_id: str) -> WorkflowSummary:
        return WorkflowSummary.model_validate(
            await self._request("GET", f"/api/workflows/{workflow_id}")
        )

    async def execute(
        self,
        workflow_id: str,
        input: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> WorkflowResult:
        body: Dict[str, Any] = {"input": input}
        if options:
            body["options"] = options
        data = await self._request(
            "POST", f"/api/workflows/{workflow_id}/execute", json=body
        )
        return WorkflowResult.model_validate(data)

    async def execute_combined(
        self,
        workflow_id: str,
        documents: List[DocumentRef],
        options: Optional[Dict[str, Any]] = None,
    ) -> WorkflowResult:
        body: Dict[str, Any] = {
            "documents": [d.model_dump(by_alias=True) for d in documents]
        }
        if options:
            body["options"] = options
        data = await self._request(
            "POST", f"/api/workflows/{workflow_id}/execute-combined", json=body
        )
        return WorkflowResult.model_validate(data)


class TabularService(_Service):
    async def get(self, analysis_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/tabular-analysis/{analysis_id}")

    async def load(self, analysis_id: str) -> TabularAnalysis:
        return TabularAnalysis.model_validate(await self.get(analysis_id))

    async def update(self, analysis_id: str, **fields: Any) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/api/tabular-analysis/{analysis_id}", json=fields
        )

    async def run_workflow(self, analysis_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/api/tabular-analysis/{analysis_id}/run-workflow"
        )


class LlmService(_Service):
    async def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """OpenAI-compatible chat completion."""
        body: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return await self._request("POST", "/api/llm/chat/completions", json=body)


class CaseClient:
    """Thin async wrapper over ``httpx.AsyncClient`` with service namespaces."""

    def __init__(
        self,
        config: Optional[CaseflowConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or load_config()
        self.bus = bus
        headers = {"Content-Type": "application/json"}
        if self.config.api.api_key:
            headers["Authorization"] = f"Bearer {self.config.api.api_key}"
        self.http = httpx.AsyncClient(
            base_url=self.config.api.base_url,
            headers=headers,
            timeout=self.config.api.timeout,
            transport=transport,
        )

        self.vaults = VaultService(self)
        self.ocr = OcrService(self)
        self.transcription = TranscriptionService(self)
        self.workflows = WorkflowService(self)
        self.tabular = TabularService(self)
        self.llm = LlmService(self)

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            CaseApiError: On a non-2xx response, carrying the server message.
            CaseConnectionError: When no response was received.
        """
        try:
            response = await self.http.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise CaseConnectionError(f"Could not reach Case.dev: {e}") from e
        if response.is_error:
            message = _error_message(response)
            logger.error(f"{method} {path} failed: {response.status_code} {message}")
            raise CaseApiError(response.status_code, message)
        if not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "CaseClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
