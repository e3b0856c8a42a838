from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .documents import SourceDocument


@dataclass(frozen=True, slots=True)
class EntityMention:
    """A named mention (person, organization, ...) found across documents."""

    id: str
    name: str
    type: str
    frequency: float
    document_ids: tuple[str, ...] = ()
    related_entity_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ConceptMention:
    """A thematic mention found across documents."""

    id: str
    name: str
    relevance: float
    document_ids: tuple[str, ...] = ()
    related_concept_ids: tuple[str, ...] = ()


class MentionExtractor(Protocol):
    async def extract_entities(self, documents: list[SourceDocument]) -> list[EntityMention]: ...

    async def extract_concepts(self, documents: list[SourceDocument]) -> list[ConceptMention]: ...


def _slug(s: str) -> str:
    s = re.sub(r"\s+", " ", s.strip())
    s = re.sub(r"[^A-Za-z0-9 _\-]", "", s)
    s = s.strip().lower().replace(" ", "-")
    s = re.sub(r"\-+", "-", s)
    return s or "unknown"


_STOPWORDS = frozenset(
    """
    a about above after again against all also an and any are as at be because been before being
    below between both but by can could did does doing down during each few for from further had
    has have having here how however into its itself just more most much must need only other our
    ours over same should some such than that their theirs them then there these they this those
    through under until very was were what when where which while who whom why will with within
    without would your yours the it in on of to we he she is if or so no not my us me
    """.split()
)

_ENTITY_SPAN = re.compile(r"\b[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+){0,4}\b")
_HANDLE = re.compile(r"[@#][A-Za-z][A-Za-z0-9_\-']*")
_TERM = re.compile(r"\b[a-z][a-z\-]{3,}\b")


def _related(
    doc_sets: dict[str, set[str]], *, max_related: int
) -> dict[str, tuple[str, ...]]:
    """Pair mentions that share documents, strongest overlap first."""
    keys = list(doc_sets)
    out: dict[str, tuple[str, ...]] = {}
    for k in keys:
        scored = []
        for i, other in enumerate(keys):
            if other == k:
                continue
            shared = len(doc_sets[k] & doc_sets[other])
            if shared:
                scored.append((-shared, i, other))
        scored.sort()
        out[k] = tuple(o for _s, _i, o in scored[:max_related])
    return out


@dataclass(slots=True)
class HeuristicExtractor:
    """Cheap, deterministic, dependency-free extractor.

    Entities are runs of Capitalized Words plus @handles and #tags; concepts are
    frequent lowercase terms. Scores are normalized to (0, 1]. Mentions sharing a
    document are related. Swap in the HTTP extractor for real NLP.
    """

    max_entities: int = 50
    max_concepts: int = 30
    max_related: int = 5
    min_concept_count: int = 2

    async def extract_entities(self, documents: list[SourceDocument]) -> list[EntityMention]:
        counts: Counter[str] = Counter()
        names: dict[str, str] = {}
        types: dict[str, str] = {}
        docs_of: dict[str, set[str]] = {}
        doc_order: dict[str, int] = {d.id: i for i, d in enumerate(documents)}

        for doc in documents:
            text = doc.content or ""
            found: list[tuple[str, str]] = []
            for m in _ENTITY_SPAN.finditer(text):
                name = m.group(0)
                if m.start() > 0 and text[m.start() - 1] in "@#":
                    continue
                if " " not in name and name.lower() in _STOPWORDS:
                    continue
                found.append((name, "PROPER_NOUN"))
            for m in _HANDLE.finditer(text):
                token = m.group(0)
                found.append((token, "HANDLE" if token.startswith("@") else "TAG"))

            for name, kind in found:
                eid = _slug(name)
                counts[eid] += 1
                names.setdefault(eid, name)
                types.setdefault(eid, kind)
                docs_of.setdefault(eid, set()).add(doc.id)

        if not counts:
            return []

        # Counter.most_common keeps first-seen order for ties.
        kept = [eid for eid, _n in counts.most_common(self.max_entities)]
        top = counts[kept[0]]
        related = _related({k: docs_of[k] for k in kept}, max_related=self.max_related)

        return [
            EntityMention(
                id=eid,
                name=names[eid],
                type=types[eid],
                frequency=round(counts[eid] / top, 4),
                document_ids=tuple(sorted(docs_of[eid], key=doc_order.__getitem__)),
                related_entity_ids=related[eid],
            )
            for eid in kept
        ]

    async def extract_concepts(self, documents: list[SourceDocument]) -> list[ConceptMention]:
        counts: Counter[str] = Counter()
        docs_of: dict[str, set[str]] = {}
        doc_order: dict[str, int] = {d.id: i for i, d in enumerate(documents)}

        for doc in documents:
            for m in _TERM.finditer((doc.content or "").lower()):
                term = m.group(0).strip("-")
                if len(term) < 4 or term in _STOPWORDS:
                    continue
                counts[term] += 1
                docs_of.setdefault(term, set()).add(doc.id)

        kept = [t for t, n in counts.most_common() if n >= self.min_concept_count][: self.max_concepts]
        if not kept:
            return []

        n_docs = max(1, len(documents))
        related = _related({k: docs_of[k] for k in kept}, max_related=self.max_related)
        return [
            ConceptMention(
                id=_slug(term),
                name=term,
                relevance=round(len(docs_of[term]) / n_docs, 4),
                document_ids=tuple(sorted(docs_of[term], key=doc_order.__getitem__)),
                related_concept_ids=tuple(_slug(r) for r in related[term]),
            )
            for term in kept
        ]


def _pick(obj: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in obj and obj[k] is not None:
            return obj[k]
    return default


@dataclass
class HttpMentionExtractor:
    """Client for a remote extraction service.

    POST {base_url}/entities and {base_url}/concepts with
    ``{"documents": [{"id", "metadata", "content"}]}``; both camelCase and
    snake_case response keys are accepted. Errors are raised to the caller.
    """

    base_url: str
    timeout_s: float = 60.0
    headers: dict[str, str] = field(default_factory=dict)
    client: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers or None,
                timeout=httpx.Timeout(self.timeout_s, connect=10.0),
                follow_redirects=True,
            )
        return self.client

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def _post(self, path: str, documents: list[SourceDocument]) -> dict[str, Any]:
        payload = {
            "documents": [{"id": d.id, "metadata": d.metadata, "content": d.content} for d in documents]
        }
        resp = await self._client().post(path, json=payload)
        resp.raise_for_status()
        return resp.json()

    async def extract_entities(self, documents: list[SourceDocument]) -> list[EntityMention]:
        data = await self._post("/entities", documents)
        return [
            EntityMention(
                id=str(e["id"]),
                name=str(_pick(e, "name", default=e["id"])),
                type=str(_pick(e, "type", default="UNKNOWN")),
                frequency=float(_pick(e, "frequency", default=0.0)),
                document_ids=tuple(str(x) for x in _pick(e, "documentIds", "document_ids", default=[])),
                related_entity_ids=tuple(
                    str(x) for x in _pick(e, "relatedEntityIds", "related_entity_ids", default=[])
                ),
            )
            for e in data.get("entities", [])
        ]

    async def extract_concepts(self, documents: list[SourceDocument]) -> list[ConceptMention]:
        data = await self._post("/concepts", documents)
        return [
            ConceptMention(
                id=str(c["id"]),
                name=str(_pick(c, "name", default=c["id"])),
                relevance=float(_pick(c, "relevance", default=0.0)),
                document_ids=tuple(str(x) for x in _pick(c, "documentIds", "document_ids", default=[])),
                related_concept_ids=tuple(
                    str(x) for x in _pick(c, "relatedConceptIds", "related_concept_ids", default=[])
                ),
            )
            for c in data.get("concepts", [])
        ]
