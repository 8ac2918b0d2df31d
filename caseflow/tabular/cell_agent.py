"""Single-cell extraction against one vault document."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..api.client import CaseClient
from ..api.models import CellValue, ExtractionColumn, SearchChunk

logger = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"
EXTRACTION_TEMPERATURE = 0.1

_NUMBER_RE = re.compile(r"-?\d*\.?\d+")


def build_search_query(
    column: ExtractionColumn, dependencies: Optional[Dict[str, Any]] = None
) -> str:
    query = f"{column.name}: {column.prompt}"
    if dependencies:
        context = ", ".join(f"{k}: {v}" for k, v in dependencies.items())
        query += f" (Context: {context})"
    return query


def build_system_prompt(
    column: ExtractionColumn, dependencies: Optional[Dict[str, Any]] = None
) -> str:
    prompt = (
        "You are a precise data extraction assistant. Your task is to extract "
        "specific information from legal documents.\n\n"
        "EXTRACTION TASK:\n"
        f"- Field: {column.name}\n"
        f"- Instructions: {column.prompt}\n"
        f"- Expected Type: {column.data_type}\n\n"
        "RULES:\n"
        "1. Extract ONLY the requested information\n"
        f'2. If the information is not found, respond with "{NOT_FOUND}"\n'
        "3. Be precise and concise - no explanations unless absolutely necessary\n"
        "4. For dates, use ISO format (YYYY-MM-DD)\n"
        '5. For boolean, respond with "true" or "false"\n'
        "6. For numbers, respond with just the number (no currency symbols or "
        "units unless specified)"
    )
    if dependencies:
        prompt += "\n\nCONTEXT FROM OTHER COLUMNS:"
        for key, value in dependencies.items():
            prompt += f"\n- {key}: {value}"
    return prompt


def build_user_prompt(column: ExtractionColumn, document_title: str, context: str) -> str:
    return (
        f"Document: {document_title}\n\n"
        f"DOCUMENT CONTENT:\n{context}\n\n"
        f'Extract the "{column.name}" field based on the instructions: "{column.prompt}"\n\n'
        "Respond with ONLY the extracted value, nothing else."
    )


def parse_extracted_value(text: str, data_type: str) -> Tuple[Any, float]:
    """Convert a model reply to a typed value and a confidence score."""
    trimmed = text.strip()
    if trimmed == NOT_FOUND or "not found" in trimmed.lower():
        return None, 0.0

    if data_type == "boolean":
        lower = trimmed.lower()
        if lower in ("true", "yes"):
            return True, 0.9
        if lower in ("false", "no"):
            return False, 0.9
        return None, 0.3

    if data_type == "number":
        match = _NUMBER_RE.search(re.sub(r"[^0-9.\-]", "", trimmed))
        if match:
            return float(match.group(0)), 0.85
        return None, 0.3

    if data_type == "date":
        try:
            return datetime.fromisoformat(trimmed).date().isoformat(), 0.85
        except ValueError:
            return trimmed, 0.6

    return trimmed, 0.8


def _document_chunks(chunks: List[SearchChunk], document_id: str) -> List[SearchChunk]:
    # Some deployments ignore the object_id filter.
    if chunks and chunks[0].object_id != document_id:
        own = [c for c in chunks if c.object_id == document_id]
        return own or chunks[:5]
    return chunks


async def extract_cell(
    client: CaseClient,
    vault_id: str,
    document_id: str,
    document_title: str,
    column: ExtractionColumn,
    dependencies: Optional[Dict[str, Any]] = None,
    model_id: Optional[str] = None,
) -> CellValue:
    """Extract one cell. Failures are returned as a cell carrying ``error``."""
    tokens_used = 0
    try:
        chunks = await client.vaults.search(
            vault_id,
            build_search_query(column, dependencies),
            top_k=10,
            method="hybrid",
            filters={"object_id": document_id},
        )
        chunks = _document_chunks(chunks, document_id)
        if not chunks:
            return CellValue(
                value=None,
                confidence=0,
                error="No relevant content found in document",
                tokensUsed=0,
            )

        context = "\n\n".join(f"[Source {i + 1}]\n{c.text}" for i, c in enumerate(chunks))
        response = await client.llm.chat(
            model=model_id or client.config.default_model,
            messages=[
                {"role": "system", "content": build_system_prompt(column, dependencies)},
                {
                    "role": "user",
                    "content": build_user_prompt(column, document_title, context),
                },
            ],
            temperature=EXTRACTION_TEMPERATURE,
        )
        tokens_used = (response.get("usage") or {}).get("total_tokens", 0)
        choices = response.get("choices") or [{}]
        reply = (choices[0].get("message") or {}).get("content") or ""
        value, confidence = parse_extracted_value(reply, column.data_type)
        return CellValue(
            value=value,
            confidence=confidence,
            sources=[c.object_name or "Document" for c in chunks],
            tokensUsed=tokens_used,
        )
    except Exception as e:
        logger.error(f"Extraction of {column.name} from {document_id} failed: {e}")
        return CellValue(value=None, confidence=0, error=str(e), tokensUsed=tokens_used)


async def extract_row(
    client: CaseClient,
    vault_id: str,
    document_id: str,
    document_title: str,
    columns: List[ExtractionColumn],
    model_id: Optional[str] = None,
) -> Dict[str, CellValue]:
    """Extract every column for a document, left to right.

    Each column sees the values already extracted to its left, keyed by
    column name.
    """
    cells: Dict[str, CellValue] = {}
    ordered = sorted(columns, key=lambda c: c.order)
    for index, column in enumerate(ordered):
        dependencies = {
            left.name: cells[left.id].value
            for left in ordered[:index]
            if left.id in cells and cells[left.id].value is not None
        }
        cells[column.id] = await extract_cell(
            client,
            vault_id,
            document_id,
            document_title,
            column,
            dependencies=dependencies or None,
            model_id=column.model_id or model_id,
        )
    return cells
