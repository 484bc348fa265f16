# --------------------------------------------------------------------------------------
# DOCUMENT DATA SOURCE (keyword search over preloaded text files)
# --------------------------------------------------------------------------------------
# INDEXING:
#   Every *.txt under DOCUMENTS_DIR is loaded once (DirectoryLoader + TextLoader) and
#   split into sections at markdown heading lines (MarkdownHeaderTextSplitter, headers
#   kept in the section text).
#
# SCORING:
#   terms  = fixed domain vocabulary (substring match on the question)
#          + question tokens of 3+ letters minus stop-words
#   score  = sum of term frequencies in the section
#          + HEADING_BONUS when the section starts with a heading (only if a term hit)
#   Top 3 sections per document, merged across documents by score (stable sort).
#
# OUTCOMES:
#   hits      -> numbered, source-attributed snippets (status ok)
#   no hits   -> NO_RELEVANT_INFO (status empty)   <- "found nothing"
#   exception -> "Document search failed: ..."  (status error) <- "search failed"
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, os, re, time, uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from langchain_community.document_loaders import DirectoryLoader, TextLoader
from langchain_core.documents import Document
from langchain_text_splitters import MarkdownHeaderTextSplitter

from ..capabilities import CapabilityResult
from ..errors import InitializationFailure
from ..instrumentation import CallTimeout, call_with_timeout

log = logging.getLogger(__name__)

NAME = "document_search"
DOCUMENTS_DIR = os.getenv("DOCUMENTS_DIR", "data/documents")
SEARCH_TIMEOUT_S = float(os.getenv("SEARCH_TIMEOUT_S", "10"))
TOP_SECTIONS_PER_DOC = 3
HEADING_BONUS = 2
SNIPPET_CHARS = 500

NO_RELEVANT_INFO = (
    "No relevant information found in the documents. "
    "Try rephrasing the question or asking about topics the documents cover."
)

DOMAIN_TERMS = [
    "adam smith", "keynes", "marx", "ricardo", "mill", "marshall", "schumpeter",
    "wealth of nations", "invisible hand", "comparative advantage", "labor theory",
    "supply", "demand", "capitalism", "socialism", "communism", "free market",
    "economic", "economics", "economy", "trade", "value", "price", "money",
    "competition", "monopoly", "elasticity", "equilibrium", "inflation",
    "unemployment", "fiscal", "monetary", "policy", "government", "intervention",
]

STOP_WORDS = {
    "what", "who", "how", "why", "when", "where", "which", "the", "and", "but", "for",
    "are", "was", "were", "been", "have", "has", "had", "will", "would", "could",
    "should", "may", "might", "can", "about", "tell", "explain", "describe", "does",
    "did", "this", "that", "with", "from", "into", "you", "your", "his", "her", "their",
    "its", "some", "any", "give", "show", "please", "know",
}

HEADERS = [("#", "h1"), ("##", "h2"), ("###", "h3"), ("####", "h4")]


@dataclass
class SearchResult:
    source_document: str
    snippet: str
    score: int
    matched_terms: List[str] = field(default_factory=list)


def extract_search_terms(question: str) -> List[str]:
    lower = question.lower()
    found = [t for t in DOMAIN_TERMS if t in lower]
    words = [w for w in re.findall(r"\b[a-z]{3,}\b", lower) if w not in STOP_WORDS]
    return list(dict.fromkeys(found + words))


def make_preview(content: str, max_length: int = SNIPPET_CHARS) -> str:
    text = re.sub(r"^#+\s*", "", content, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    text = re.sub(r" {2,}\n", "\n", text).strip()
    if len(text) > max_length:
        text = text[:max_length]
        last_stop = text.rfind(".")
        if last_stop > max_length * 0.7:
            text = text[: last_stop + 1]
        text += "..."
    return text


def score_section(section: str, terms: List[str]) -> tuple[int, List[str]]:
    lower = section.lower()
    score, matched = 0, []
    for term in terms:
        n = lower.count(term)
        if n:
            score += n
            matched.append(term)
    if matched and section.lstrip().startswith("#"):
        score += HEADING_BONUS
    return score, matched


class DocumentDataSource:
    def __init__(self, data_dir: str | os.PathLike | None = None, timeout: float | None = None):
        self.data_dir = Path(data_dir or DOCUMENTS_DIR)
        self.timeout = SEARCH_TIMEOUT_S if timeout is None else timeout
        self.documents: Dict[str, Document] = {}
        self.sections: Dict[str, List[str]] = {}
        self.error: Optional[str] = None
        self._splitter = MarkdownHeaderTextSplitter(headers_to_split_on=HEADERS, strip_headers=False)

    def initialize(self) -> None:
        base = self.data_dir.expanduser().resolve()
        if not base.is_dir():
            self.error = f"Documents directory not found: {base}"
            raise InitializationFailure(self.error)
        t0 = time.time()
        loader = DirectoryLoader(
            str(base), glob="*.txt", loader_cls=TextLoader,
            loader_kwargs={"encoding": "utf-8"}, silent_errors=True,
        )
        docs = sorted(loader.load(), key=lambda d: d.metadata.get("source", ""))
        for doc in docs:
            name = Path(doc.metadata.get("source", "document")).stem
            self.documents[name] = doc
            self.sections[name] = [s.page_content for s in self._splitter.split_text(doc.page_content)]
            log.info(f"[DOCS] loaded document={name} sections={len(self.sections[name])}")
        if not self.documents:
            self.error = f"No text documents found in {base}"
            raise InitializationFailure(self.error)
        self.error = None
        log.info(f"[DOCS] indexed docs={len(self.documents)} ms={(time.time() - t0) * 1000:.1f}")

    @property
    def available(self) -> bool:
        return bool(self.documents)

    def list_documents(self) -> List[str]:
        return list(self.documents)

    def describe(self) -> str:
        if not self.available:
            return f"Keyword search over local text documents (unavailable: {self.error})."
        return f"Keyword search over {len(self.documents)} text document(s): {', '.join(self.documents)}."

    def search(self, question: str) -> List[SearchResult]:
        terms = extract_search_terms(question)
        log.info(f"[DOCS] search terms={terms}")
        results: List[SearchResult] = []
        for name, sections in self.sections.items():
            hits = []
            for section in sections:
                score, matched = score_section(section, terms)
                if score > 0:
                    hits.append(SearchResult(name, make_preview(section), score, matched))
            hits.sort(key=lambda r: r.score, reverse=True)
            results.extend(hits[:TOP_SECTIONS_PER_DOC])
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def run(self, question: str) -> CapabilityResult:
        rid = uuid.uuid4().hex[:8]
        t0 = time.time()
        if not self.available:
            return CapabilityResult(NAME, "unavailable", f"Document search is unavailable: {self.error}")
        try:
            results = call_with_timeout(self.search, question, timeout=self.timeout, label="search")
        except CallTimeout as e:
            return CapabilityResult(NAME, "error", f"Document search failed: {e}.")
        except Exception as e:
            log.exception(f"[SEARCH {rid}] failed")
            return CapabilityResult(NAME, "error", f"Document search failed: {e}")
        log.info(f"[SEARCH {rid}] hits={len(results)} ms={(time.time() - t0) * 1000:.1f}")
        if not results:
            return CapabilityResult(NAME, "empty", NO_RELEVANT_INFO, artifact=[])
        return CapabilityResult(NAME, "ok", format_search_results(results), artifact=results)

    def query(self, question: str) -> str:
        return self.run(question).content


def format_search_results(results: List[SearchResult]) -> str:
    docs = list(dict.fromkeys(r.source_document for r in results))
    lines = [f"Found relevant information in {len(docs)} document(s):", ""]
    for i, r in enumerate(results, 1):
        lines.append(f"[{i}] {r.source_document} (score {r.score}): {r.snippet}")
        lines.append(f"    Matched terms: {', '.join(r.matched_terms)}")
    return "\n".join(lines)
