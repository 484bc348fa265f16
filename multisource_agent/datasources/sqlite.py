# --------------------------------------------------------------------------------------
# SQLITE DATA SOURCE (structured queries)
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Natural language -> single read-only SELECT -> bounded, human-readable summary.
#
# FLOW:
#   initialize()      : one read-only SQLAlchemy engine per *.db / *.sqlite / *.sqlite3 in
#                       SQLITE_DATA_DIR; the SchemaCatalog comes from sqlalchemy.inspect().
#   generate_query()  : ordered (predicate, builder) templates; model fallback when none
#                       match. Identifiers only ever come from the catalog; user literals
#                       are bound as `:name` parameters through text().
#   execute()         : runs on the FIRST discovered store only (single-store limitation),
#                       serialized through a lock; 10 rows max, scalar special case.
#
# FAILURE SEMANTICS:
#   Nothing raises past run()/query()/execute(); rejections and database errors come
#   back as strings that embed the offending SQL plus a hint to re-check the schema.
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, os, re, threading, time, uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from langchain_core.messages import HumanMessage, SystemMessage
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.dialects.sqlite import dialect as sqlite_dialect
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import NullType

from ..capabilities import CapabilityResult
from ..errors import InitializationFailure, QueryRejected
from ..instrumentation import preview
from ..llm import invoke_text, strip_code_fences

log = logging.getLogger(__name__)

NAME = "database_query"
SQLITE_DATA_DIR = os.getenv("SQLITE_DATA_DIR", "data/sqlite")
DB_EXTENSIONS = (".db", ".sqlite", ".sqlite3")
MAX_DISPLAY_ROWS = 10
MAX_TOP_N = 100

NO_RESULTS = "No results found for your query."
NO_QUERY = (
    "I could not generate a valid SQL query for your question. "
    "Please try rephrasing it or ask about data stored in the database."
)

WRITE_KEYWORDS = re.compile(
    r"\b(INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|REPLACE|TRUNCATE|ATTACH|DETACH|PRAGMA|VACUUM|REINDEX)\b",
    re.IGNORECASE,
)


def is_read_only(sql: str) -> bool:
    return not WRITE_KEYWORDS.search(sql or "")


_PREPARER = sqlite_dialect().identifier_preparer


def _q(ident: str) -> str:
    return _PREPARER.quote_identifier(ident)


# ---------------------------------------------------------------------------------------
# Schema catalog
# ---------------------------------------------------------------------------------------
@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    primary_key: bool


@dataclass(frozen=True)
class ForeignKey:
    column: str
    ref_table: str
    ref_column: str


@dataclass
class SchemaCatalog:
    tables: Dict[str, List[ColumnInfo]] = field(default_factory=dict)
    foreign_keys: Dict[str, List[ForeignKey]] = field(default_factory=dict)

    def table(self, name: str) -> Optional[str]:
        """Canonical table name for a case-insensitive lookup."""
        low = name.lower()
        return next((t for t in self.tables if t.lower() == low), None)

    def has(self, *names: str) -> bool:
        return all(self.table(n) for n in names)

    def column(self, table: str, name: str) -> Optional[str]:
        low = name.lower()
        return next((c.name for c in self.tables.get(table, []) if c.name.lower() == low), None)

    def primary_keys(self, table: str) -> List[str]:
        return [c.name for c in self.tables.get(table, []) if c.primary_key]

    def name_column(self, table: str) -> Optional[str]:
        for candidate in ("Name", "Title"):
            col = self.column(table, candidate)
            if col:
                return col
        return None

    def describe(self) -> str:
        lines = []
        for table, cols in self.tables.items():
            rendered = ", ".join(
                f"{c.name} {c.type or 'ANY'}{' PK' if c.primary_key else ''}" for c in cols
            )
            lines.append(f'- Table "{table}": columns ({rendered})')
            for fk in self.foreign_keys.get(table, []):
                lines.append(f"    {table}.{fk.column} -> {fk.ref_table}.{fk.ref_column or '(pk)'}")
        return "\n".join(lines)


def _type_name(col_type) -> str:
    # untyped sqlite columns reflect as NullType, which has no DDL rendering
    return "" if isinstance(col_type, NullType) else str(col_type)


def introspect(engine: Engine) -> SchemaCatalog:
    catalog = SchemaCatalog()
    inspector = inspect(engine)
    for name in sorted(inspector.get_table_names()):
        pk = set(inspector.get_pk_constraint(name).get("constrained_columns") or [])
        catalog.tables[name] = [
            ColumnInfo(c["name"], _type_name(c["type"]), bool(c.get("nullable", True)), c["name"] in pk)
            for c in inspector.get_columns(name)
        ]
        catalog.foreign_keys[name] = [
            ForeignKey(col, fk["referred_table"], ref or "")
            for fk in inspector.get_foreign_keys(name)
            for col, ref in zip(fk["constrained_columns"],
                                fk.get("referred_columns") or [None] * len(fk["constrained_columns"]))
        ]
    return catalog


def make_engine(path: Path) -> Engine:
    url = URL.create("sqlite", database=f"file:{quote(path.as_posix())}", query={"mode": "ro", "uri": "true"})
    return create_engine(url, connect_args={"check_same_thread": False})


# ---------------------------------------------------------------------------------------
# Query spec
# ---------------------------------------------------------------------------------------
@dataclass(frozen=True)
class QuerySpec:
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    database: str = ""
    origin: str = "template"

    def __post_init__(self):
        if not is_read_only(self.sql):
            raise QueryRejected(self.sql, "only read-only queries are allowed")


# ---------------------------------------------------------------------------------------
# Deterministic templates
# ---------------------------------------------------------------------------------------
ENTITY_TERMS: List[Tuple[str, str]] = [
    (r"invoice ?lines?|line ?items?", "InvoiceLine"),
    (r"playlist ?tracks?", "PlaylistTrack"),
    (r"media ?types?|formats?", "MediaType"),
    (r"playlists?", "Playlist"),
    (r"artists?|musicians?|bands?", "Artist"),
    (r"albums?|records?", "Album"),
    (r"tracks?|songs?", "Track"),
    (r"customers?|clients?", "Customer"),
    (r"employees?|staff|workers?", "Employee"),
    (r"invoices?|sales?|purchases?", "Invoice"),
    (r"genres?|categor(?:y|ies)", "Genre"),
]

QUOTED = re.compile(r'"([^"]{1,100})"|“([^”]{1,100})”|(?<!\w)\'([^\']{1,100})\'(?!\w)')
QUALIFIERS = re.compile(r"\b(by|from|does|per|each|with|where|whose|than)\b")


def find_entities(text: str, catalog: SchemaCatalog) -> List[str]:
    """Tables mentioned in `text`, ordered by first mention."""
    hits: List[Tuple[int, int, str]] = []
    for pattern, table in ENTITY_TERMS:
        m = re.search(rf"\b(?:{pattern})\b", text)
        canonical = catalog.table(table)
        if m and canonical:
            hits.append((m.start(), -(m.end() - m.start()), canonical))
    for table in catalog.tables:
        m = re.search(rf"\b{re.escape(table.lower())}s?\b", text)
        if m:
            hits.append((m.start(), -(m.end() - m.start()), table))
    seen, ordered = set(), []
    for _, _, table in sorted(hits):
        if table not in seen:
            seen.add(table)
            ordered.append(table)
    return ordered


@dataclass
class _Ask:
    text: str
    lower: str
    catalog: SchemaCatalog
    entities: List[str]

    @property
    def entity(self) -> Optional[str]:
        return self.entities[0] if self.entities else None


def _fk_path(catalog: SchemaCatalog, start: str, goal: str, max_hops: int = 2) -> Optional[List[Tuple[str, ForeignKey]]]:
    frontier: List[Tuple[str, List[Tuple[str, ForeignKey]]]] = [(start, [])]
    for _ in range(max_hops):
        nxt = []
        for table, path in frontier:
            for fk in catalog.foreign_keys.get(table, []):
                parent = catalog.table(fk.ref_table)
                if not parent or parent == table:
                    continue
                step = path + [(table, fk)]
                if parent == goal:
                    return step
                nxt.append((parent, step))
        frontier = nxt
    return None


def _listing(catalog: SchemaCatalog, table: str, *, path: Sequence[Tuple[str, ForeignKey]] = (),
             where: str = "", limit: bool = False) -> str:
    t = _q(table)
    select, joins, joined = [f"{t}.*"], [], {table}

    def _join(child: str, fk: ForeignKey, kind: str) -> Optional[str]:
        parent = catalog.table(fk.ref_table)
        if not parent or parent in joined:
            return None
        ref = fk.ref_column or next(iter(catalog.primary_keys(parent)), "")
        if not ref:
            return None
        joined.add(parent)
        joins.append(f"{kind} JOIN {_q(parent)} ON {_q(child)}.{_q(fk.column)} = {_q(parent)}.{_q(ref)}")
        return parent

    for child, fk in path:
        _join(child, fk, "INNER")
    for fk in catalog.foreign_keys.get(table, []):
        label = catalog.name_column(catalog.table(fk.ref_table) or "")
        parent = _join(table, fk, "LEFT") if label else None
        if parent:
            select.append(f"{_q(parent)}.{_q(label)} AS {_q(parent + label)}")
    for child, fk in path:
        parent = catalog.table(fk.ref_table)
        label = catalog.name_column(parent)
        alias = parent + (label or "")
        if label and f"AS {_q(alias)}" not in " ".join(select):
            select.append(f"{_q(parent)}.{_q(label)} AS {_q(alias)}")

    sql = f"SELECT {', '.join(select)} FROM {t}"
    if joins:
        sql += " " + " ".join(joins)
    if where:
        sql += f" WHERE {where}"
    pks = catalog.primary_keys(table)
    if pks:
        sql += " ORDER BY " + ", ".join(f"{t}.{_q(c)}" for c in pks)
    if limit:
        sql += " LIMIT :limit"
    return sql


def _check_literal(term: str) -> str:
    term = term.strip()
    if not is_read_only(term):
        raise QueryRejected(term, f"search term {term!r} contains a write keyword")
    return term


def _rule_schema(ask: _Ask):
    if re.search(r"\btables\b|\bschema\b|\bstructure\b", ask.lower):
        return ("SELECT name AS TableName FROM sqlite_master "
                "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"), {}
    return None


def _rule_count(ask: _Ask):
    if not ask.entity or not re.search(r"\bhow many\b|\bcount\b|\bnumber of\b", ask.lower):
        return None
    if QUOTED.search(ask.text) or QUALIFIERS.search(ask.lower):
        return None
    return f"SELECT COUNT(*) AS count FROM {_q(ask.entity)}", {}


TOP_N = re.compile(r"\b(?:first|top)\s+(\d+)\b")


def _top_n(ask: _Ask) -> Optional[int]:
    m = TOP_N.search(ask.lower)
    return max(1, min(int(m.group(1)), MAX_TOP_N)) if m else None


def _ranked(sql: str, n: Optional[int]):
    if n is None:
        return sql, {}
    return sql + " LIMIT :limit", {"limit": n}


def _rule_revenue(ask: _Ask):
    if not re.search(r"\b(revenue|spent|spend|spending|paying|best customers|top(?: \d+)? customers)\b|\bsales\b",
                     ask.lower):
        return None
    if not ask.catalog.has("Customer", "Invoice"):
        return None
    if ask.entity not in (None, ask.catalog.table("Customer"), ask.catalog.table("Invoice")):
        return None
    return _ranked("SELECT Customer.FirstName, Customer.LastName, SUM(Invoice.Total) AS TotalSpent "
                   "FROM Customer INNER JOIN Invoice ON Customer.CustomerId = Invoice.CustomerId "
                   "GROUP BY Customer.CustomerId ORDER BY TotalSpent DESC", _top_n(ask))


def _rule_popular_tracks(ask: _Ask):
    if not re.search(r"\b(popular|best[- ]selling|top[- ]selling|most (?:purchased|sold)|by sales)\b", ask.lower):
        return None
    if not ask.catalog.has("Track", "Album", "Artist", "InvoiceLine"):
        return None
    return _ranked("SELECT Track.Name, Album.Title, Artist.Name AS ArtistName, "
                   "COUNT(InvoiceLine.TrackId) AS TimesPurchased FROM Track "
                   "INNER JOIN Album ON Track.AlbumId = Album.AlbumId "
                   "INNER JOIN Artist ON Album.ArtistId = Artist.ArtistId "
                   "LEFT JOIN InvoiceLine ON Track.TrackId = InvoiceLine.TrackId "
                   "GROUP BY Track.TrackId ORDER BY TimesPurchased DESC", _top_n(ask))


def _rule_top_n(ask: _Ask):
    m = TOP_N.search(ask.lower)
    if not m:
        return None
    table = next(iter(find_entities(ask.lower[m.end():], ask.catalog)), None) or ask.entity
    if not table:
        return None
    return _listing(ask.catalog, table, limit=True), {"limit": _top_n(ask)}


def _rule_by_parent(ask: _Ask):
    m = re.search(r"\bby\s+(.+?)\s*[?.!]*$", ask.text, re.IGNORECASE)
    if not m or not ask.entity:
        return None
    name = re.sub(r"^(?:the\s+)?(?:artist|band|composer)\s+", "", m.group(1).strip(), flags=re.I)
    name = _check_literal(name.strip("\"'“”"))
    goal = ask.catalog.table("Artist")
    mentioned = [e for e in ask.entities[1:] if ask.catalog.name_column(e)]
    for target in mentioned + ([goal] if goal else []):
        path = _fk_path(ask.catalog, ask.entity, target)
        if path:
            label = ask.catalog.name_column(target)
            where = f"{_q(target)}.{_q(label)} LIKE :term"
            return _listing(ask.catalog, ask.entity, path=path, where=where), {"term": f"%{name}%"}
    return None


def _rule_from_country(ask: _Ask):
    m = re.search(r"\bfrom\s+([A-Z][\w .'-]{1,40}?)\s*[?.!]*$", ask.text)
    if not m or not ask.entity:
        return None
    col = ask.catalog.column(ask.entity, "Country")
    if not col:
        return None
    country = _check_literal(m.group(1))
    where = f"{_q(ask.entity)}.{_q(col)} LIKE :term"
    return _listing(ask.catalog, ask.entity, where=where), {"term": f"%{country}%"}


def _rule_literal(ask: _Ask):
    m = QUOTED.search(ask.text)
    if not m or not ask.entity:
        return None
    label = ask.catalog.name_column(ask.entity)
    if not label:
        return None
    term = _check_literal(next(g for g in m.groups() if g))
    where = f"{_q(ask.entity)}.{_q(label)} LIKE :term"
    return _listing(ask.catalog, ask.entity, where=where), {"term": f"%{term}%"}


def _rule_listing(ask: _Ask):
    if ask.entity and re.search(r"\b(list|show|all|display|give me|what are)\b", ask.lower):
        return _listing(ask.catalog, ask.entity), {}
    return None


def _rule_bare_entity(ask: _Ask):
    # "artists?" / "albums please"
    if ask.entity and len(re.findall(r"[a-z]+", ask.lower)) <= 3:
        return _listing(ask.catalog, ask.entity), {}
    return None


# Evaluated in order; first builder returning (sql, params) wins. Default: model fallback.
# Ranking rules precede top_n so "top N" keeps their ORDER BY.
RULES: List[Tuple[str, Callable[[_Ask], Optional[Tuple[str, Dict[str, Any]]]]]] = [
    ("schema", _rule_schema),
    ("count", _rule_count),
    ("revenue", _rule_revenue),
    ("popular_tracks", _rule_popular_tracks),
    ("top_n", _rule_top_n),
    ("literal", _rule_literal),
    ("by_parent", _rule_by_parent),
    ("from_country", _rule_from_country),
    ("listing", _rule_listing),
    ("bare_entity", _rule_bare_entity),
]

SQL_SYSTEM_PROMPT = (
    "You translate questions into ONE read-only SQLite SELECT statement.\n"
    "Database schema:\n{schema}\n\n"
    "Rules:\n"
    "- Output only the SQL, no explanation, no code fences.\n"
    "- Use only the tables and columns listed above; use JOINs along the listed foreign keys.\n"
    "- Never modify data (no INSERT/UPDATE/DELETE/DROP/ALTER).\n"
    "- If the question cannot be answered from this schema, output NONE."
)

TABLE_REFS = re.compile(r"\b(?:from|join)\s+[\"`\[]?([A-Za-z_][\w]*)", re.IGNORECASE)
CTE_NAMES = re.compile(r"(?:\bwith|,)\s+([A-Za-z_][\w]*)\s+as\s*\(", re.IGNORECASE)


# ---------------------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------------------
class SqliteDataSource:
    def __init__(self, data_dir: str | os.PathLike | None = None, llm=None):
        self.data_dir = Path(data_dir or SQLITE_DATA_DIR)
        self.llm = llm
        self.engines: Dict[str, Engine] = {}
        self.catalogs: Dict[str, SchemaCatalog] = {}
        self.error: Optional[str] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        base = self.data_dir.expanduser().resolve()
        if not base.is_dir():
            self.error = f"SQLite data directory not found: {base}"
            raise InitializationFailure(self.error)
        files = sorted(p for p in base.iterdir() if p.suffix.lower() in DB_EXTENSIONS and p.is_file())
        for path in files:
            engine = make_engine(path)
            try:
                catalog = introspect(engine)
            except SQLAlchemyError as e:
                log.warning(f"[SQLITE] failed to load database {path.name}: {e}")
                engine.dispose()
                continue
            self.engines[path.stem] = engine
            self.catalogs[path.stem] = catalog
            log.info(f"[SQLITE] loaded database={path.stem} tables={len(catalog.tables)}")
        if not self.engines:
            self.error = f"No SQLite databases could be loaded from {base}"
            raise InitializationFailure(self.error)
        self.error = None

    def close(self) -> None:
        with self._lock:
            for engine in self.engines.values():
                engine.dispose()
            self.engines.clear()

    @property
    def available(self) -> bool:
        return bool(self.engines)

    @property
    def database(self) -> Optional[str]:
        # Queries always go to the first discovered store (sorted by file name).
        return next(iter(self.engines), None)

    @property
    def catalog(self) -> SchemaCatalog:
        return self.catalogs.get(self.database or "", SchemaCatalog())

    def describe(self) -> str:
        if not self.available:
            return f"Read-only SQL over the local database (unavailable: {self.error})."
        tables = ", ".join(
            f"{t}({', '.join(c.name for c in cols)})" for t, cols in self.catalog.tables.items()
        )
        others = [name for name in self.engines if name != self.database]
        extra = f" Other discovered databases (not queried): {', '.join(others)}." if others else ""
        return f"Read-only SQL over the '{self.database}' database. Tables: {tables}.{extra}"

    # ------------------------------------------------------------------
    # query generation
    # ------------------------------------------------------------------
    def generate_query(self, question: str, catalog: SchemaCatalog | None = None) -> Optional[QuerySpec]:
        catalog = catalog or self.catalog
        lower = question.lower()
        ask = _Ask(question.strip(), lower, catalog, find_entities(lower, catalog))
        for rule_name, rule in RULES:
            built = rule(ask)
            if built:
                sql, params = built
                log.info(f"[SQLITE] template={rule_name} entities={ask.entities}")
                return QuerySpec(sql, dict(params), self.database or "", "template")
        return self._model_query(question, catalog)

    def _model_query(self, question: str, catalog: SchemaCatalog) -> Optional[QuerySpec]:
        if self.llm is None:
            return None
        messages = [
            SystemMessage(content=SQL_SYSTEM_PROMPT.format(schema=catalog.describe())),
            HumanMessage(content=question),
        ]
        try:
            raw = invoke_text(self.llm, messages, label="sql")
        except Exception as e:
            log.warning(f"[SQLITE] model query generation failed: {e}")
            return None
        sql = strip_code_fences(raw).strip().rstrip(";").strip()
        if not sql or sql.upper().startswith("NONE"):
            return None
        validate_model_sql(sql, catalog)
        return QuerySpec(sql, {}, self.database or "", "model")

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def execute(self, spec: QuerySpec) -> str:
        return self._execute(spec)[1]

    def _execute(self, spec: QuerySpec) -> Tuple[str, str]:
        rid = uuid.uuid4().hex[:8]
        t0 = time.time()
        if not self.available:
            return "unavailable", f"No database available for querying: {self.error}"
        if not is_read_only(spec.sql):
            return "rejected", rejection_text(spec.sql, "only read-only queries are allowed", self.catalog)
        log.info(f"[SQL {rid}] origin={spec.origin} sql={preview(spec.sql)} params={spec.params}")
        with self._lock:
            engine = self.engines[self.database]
            try:
                with engine.connect() as conn:
                    if spec.origin == "model":
                        # sent verbatim; a ':' inside the model's literals is not a bind
                        result = conn.exec_driver_sql(spec.sql)
                    else:
                        result = conn.execute(text(spec.sql), spec.params)
                    columns = list(result.keys())
                    rows = result.fetchall()
            except SQLAlchemyError as e:
                err = str(getattr(e, "orig", None) or e)
                log.error(f"[SQL {rid}] fail error={err} ms={(time.time() - t0) * 1000:.1f}")
                return "error", error_text(spec.sql, err, self.catalog)
        log.info(f"[SQL {rid}] ok rows={len(rows)} ms={(time.time() - t0) * 1000:.1f}")
        return ("ok" if rows else "empty"), format_results(columns, rows)

    def run(self, question: str) -> CapabilityResult:
        if not self.available:
            return CapabilityResult(NAME, "unavailable", f"No database available for querying: {self.error}")
        try:
            spec = self.generate_query(question)
        except QueryRejected as e:
            log.warning(f"[SQLITE] rejected query={preview(e.query)} reason={e.reason}")
            return CapabilityResult(NAME, "rejected", rejection_text(e.query, e.reason, self.catalog))
        if spec is None:
            return CapabilityResult(NAME, "empty", NO_QUERY)
        status, content = self._execute(spec)
        return CapabilityResult(NAME, status, content, artifact=spec)

    def query(self, question: str) -> str:
        return self.run(question).content


def validate_model_sql(sql: str, catalog: SchemaCatalog) -> None:
    if not is_read_only(sql):
        raise QueryRejected(sql, "the query contains a write operation")
    if ";" in sql:
        raise QueryRejected(sql, "only a single statement is allowed")
    if not re.match(r"^\s*(select|with)\b", sql, re.IGNORECASE):
        raise QueryRejected(sql, "only SELECT queries are allowed")
    ctes = {n.lower() for n in CTE_NAMES.findall(sql)}
    unknown = sorted({
        t for t in TABLE_REFS.findall(sql)
        if t.lower() not in ctes and not catalog.table(t) and t.lower() != "sqlite_master"
    })
    if unknown:
        raise QueryRejected(sql, f"unknown table(s): {', '.join(unknown)}")


def _schema_hint(catalog: SchemaCatalog) -> str:
    return f"Please re-check the schema (tables: {', '.join(catalog.tables) or 'none'}) and try again."


def rejection_text(sql: str, reason: str, catalog: SchemaCatalog) -> str:
    return f"Query rejected: {reason}. Query: {sql}. {_schema_hint(catalog)}"


def error_text(sql: str, err: str, catalog: SchemaCatalog) -> str:
    return f"Database query error: {err}. Query: {sql}. {_schema_hint(catalog)}"


def _render(value) -> str:
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(round(value, 4))
    return str(value)


def format_results(columns: Sequence[str], rows: Sequence[Sequence]) -> str:
    if not rows:
        return NO_RESULTS
    if len(rows) == 1 and len(columns) == 1:
        value = rows[0][0]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return f"The result is {_render(value)}."
    lines = [f"Found {len(rows)} result(s):", ""]
    for i, row in enumerate(rows[:MAX_DISPLAY_ROWS], 1):
        fields = " | ".join(
            f"{col}: {_render(val)}" for col, val in zip(columns, row) if val is not None and val != ""
        )
        lines.append(f"{i}. {fields}")
    extra = len(rows) - MAX_DISPLAY_ROWS
    if extra > 0:
        lines += ["", f"... +{extra} more result(s)."]
    return "\n".join(lines)
