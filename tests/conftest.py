from types import SimpleNamespace

import pytest
from langchain_core.language_models import FakeListChatModel
from sqlalchemy import create_engine

from multisource_agent.capabilities import build_registry
from multisource_agent.datasources.documents import DocumentDataSource
from multisource_agent.datasources.shell import ShellDataSource
from multisource_agent.datasources.sqlite import SqliteDataSource

SCHEMA = """
CREATE TABLE Artist (ArtistId INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Album (
    AlbumId INTEGER PRIMARY KEY, Title TEXT NOT NULL,
    ArtistId INTEGER NOT NULL REFERENCES Artist(ArtistId)
);
CREATE TABLE Genre (GenreId INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Track (
    TrackId INTEGER PRIMARY KEY, Name TEXT NOT NULL,
    AlbumId INTEGER REFERENCES Album(AlbumId),
    GenreId INTEGER REFERENCES Genre(GenreId),
    Milliseconds INTEGER, UnitPrice NUMERIC
);
CREATE TABLE Customer (
    CustomerId INTEGER PRIMARY KEY, FirstName TEXT, LastName TEXT, Country TEXT
);
CREATE TABLE Invoice (
    InvoiceId INTEGER PRIMARY KEY,
    CustomerId INTEGER NOT NULL REFERENCES Customer(CustomerId),
    Total NUMERIC
);
CREATE TABLE InvoiceLine (
    InvoiceLineId INTEGER PRIMARY KEY,
    InvoiceId INTEGER NOT NULL REFERENCES Invoice(InvoiceId),
    TrackId INTEGER NOT NULL REFERENCES Track(TrackId),
    UnitPrice NUMERIC, Quantity INTEGER
);
"""

ROWS = {
    "Artist": [(1, "AC/DC"), (2, "Accept"), (3, "Aerosmith")],
    "Album": [(1, "For Those About To Rock", 1), (2, "Let There Be Rock", 1), (3, "Balls to the Wall", 2)],
    "Genre": [(1, "Rock"), (2, "Metal")],
    "Track": [
        (1, "For Those About To Rock (We Salute You)", 1, 1, 343719, 0.99),
        (2, "Put The Finger On You", 1, 1, 205662, 0.99),
        (3, "Go Down", 2, 1, 331180, 0.99),
        (4, "Balls to the Wall", 3, 2, 342562, 0.99),
    ],
    "Customer": [(1, "Luis", "Goncalves", "Brazil"), (2, "Leonie", "Kohler", "Germany"), (3, "Eduardo", "Martins", "Brazil")],
    "Invoice": [(1, 1, 1.98), (2, 2, 3.96), (3, 1, 0.99)],
    "InvoiceLine": [(1, 1, 1, 0.99, 1), (2, 1, 2, 0.99, 1), (3, 2, 1, 0.99, 1), (4, 3, 4, 0.99, 1)],
}

ADAM_SMITH = """# Adam Smith

Adam Smith was a Scottish economist and moral philosopher. His book The Wealth of Nations
is often called the first modern work of economics.

## The Invisible Hand

Smith argued that the invisible hand of the free market turns self-interest into public benefit.
Competition keeps price close to value.
"""

KEYNES = """# John Maynard Keynes

Keynes argued that aggregate demand drives output and employment in the short run.

## Government Intervention

During recessions Keynes favored government intervention through fiscal policy to restore demand.
"""


@pytest.fixture
def sqlite_dir(tmp_path):
    d = tmp_path / "sqlite"
    d.mkdir()
    engine = create_engine(f"sqlite:///{d / 'chinook.db'}")
    with engine.begin() as conn:
        for statement in SCHEMA.split(";"):
            if statement.strip():
                conn.exec_driver_sql(statement)
        for table, rows in ROWS.items():
            marks = ", ".join("?" for _ in rows[0])
            conn.exec_driver_sql(f"INSERT INTO {table} VALUES ({marks})", rows)
    engine.dispose()
    (d / "notes.txt").write_text("not a database")
    return d


@pytest.fixture
def documents_dir(tmp_path):
    d = tmp_path / "documents"
    d.mkdir()
    (d / "adam_smith.txt").write_text(ADAM_SMITH, encoding="utf-8")
    (d / "keynes.txt").write_text(KEYNES, encoding="utf-8")
    (d / "ignored.md").write_text("# Adam Smith\nnot indexed", encoding="utf-8")
    return d


@pytest.fixture
def database(sqlite_dir):
    source = SqliteDataSource(sqlite_dir)
    source.initialize()
    yield source
    source.close()


@pytest.fixture
def documents(documents_dir):
    source = DocumentDataSource(documents_dir)
    source.initialize()
    return source


class BrokenLLM:
    """Chat model stand-in whose every call fails (e.g. Ollama not running)."""

    def __init__(self):
        self.calls = 0

    def invoke(self, messages, config=None, **kwargs):
        self.calls += 1
        raise ConnectionError("ollama is not reachable")


@pytest.fixture
def broken_llm():
    return BrokenLLM()


def fake_llm(*responses):
    return FakeListChatModel(responses=list(responses))


class Approver:
    """Records every approval prompt; answers with a fixed decision."""

    def __init__(self, decision: bool):
        self.decision = decision
        self.prompts = []

    def __call__(self, command: str) -> bool:
        self.prompts.append(command)
        return self.decision


@pytest.fixture
def no_subprocess(monkeypatch):
    calls = []

    def _fail(*args, **kwargs):
        calls.append(args)
        raise AssertionError(f"no command may be started: {args}")

    monkeypatch.setattr("subprocess.Popen", _fail)
    return calls


def session_stub(llm=None, tmp_path=None):
    """Minimal stand-in for AgentSession: what the graph nodes read from config."""
    registry = build_registry(
        SqliteDataSource(tmp_path), DocumentDataSource(tmp_path), ShellDataSource(approver=Approver(False))
    )
    return SimpleNamespace(llm=llm, registry=registry)
