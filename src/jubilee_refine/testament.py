"""Testament classification -- resolves a document id to source-context metadata."""

from __future__ import annotations

import logging
import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

_log = logging.getLogger(__name__)


class Corpus(StrEnum):
    OLD = "old"
    NEW = "new"


class Book(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    corpus: Corpus
    chapters: int


class ContextMetadata(BaseModel):
    """Source-language and cultural conditioning for one document."""

    model_config = ConfigDict(frozen=True)

    corpus: Corpus
    source_language: str
    cultural_context: str
    author_perspective: str
    book_id: str | None = None
    book_name: str | None = None


class VerseReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    book_id: str
    chapter: int | None = None
    verse: int | None = None


_OLD_BOOKS: tuple[tuple[str, str, int], ...] = (
    ("genesis", "Genesis", 50), ("exodus", "Exodus", 40), ("leviticus", "Leviticus", 27),
    ("numbers", "Numbers", 36), ("deuteronomy", "Deuteronomy", 34), ("joshua", "Joshua", 24),
    ("judges", "Judges", 21), ("ruth", "Ruth", 4), ("1samuel", "1 Samuel", 31),
    ("2samuel", "2 Samuel", 24), ("1kings", "1 Kings", 22), ("2kings", "2 Kings", 25),
    ("1chronicles", "1 Chronicles", 29), ("2chronicles", "2 Chronicles", 36),
    ("ezra", "Ezra", 10), ("nehemiah", "Nehemiah", 13), ("esther", "Esther", 10),
    ("job", "Job", 42), ("psalms", "Psalms", 150), ("proverbs", "Proverbs", 31),
    ("ecclesiastes", "Ecclesiastes", 12), ("songofsolomon", "Song of Solomon", 8),
    ("isaiah", "Isaiah", 66), ("jeremiah", "Jeremiah", 52),
    ("lamentations", "Lamentations", 5), ("ezekiel", "Ezekiel", 48), ("daniel", "Daniel", 12),
    ("hosea", "Hosea", 14), ("joel", "Joel", 3), ("amos", "Amos", 9), ("obadiah", "Obadiah", 1),
    ("jonah", "Jonah", 4), ("micah", "Micah", 7), ("nahum", "Nahum", 3),
    ("habakkuk", "Habakkuk", 3), ("zephaniah", "Zephaniah", 3), ("haggai", "Haggai", 2),
    ("zechariah", "Zechariah", 14), ("malachi", "Malachi", 4),
)

_NEW_BOOKS: tuple[tuple[str, str, int], ...] = (
    ("matthew", "Matthew", 28), ("mark", "Mark", 16), ("luke", "Luke", 24), ("john", "John", 21),
    ("acts", "Acts", 28), ("romans", "Romans", 16), ("1corinthians", "1 Corinthians", 16),
    ("2corinthians", "2 Corinthians", 13), ("galatians", "Galatians", 6),
    ("ephesians", "Ephesians", 6), ("philippians", "Philippians", 4),
    ("colossians", "Colossians", 4), ("1thessalonians", "1 Thessalonians", 5),
    ("2thessalonians", "2 Thessalonians", 3), ("1timothy", "1 Timothy", 6),
    ("2timothy", "2 Timothy", 4), ("titus", "Titus", 3), ("philemon", "Philemon", 1),
    ("hebrews", "Hebrews", 13), ("james", "James", 5), ("1peter", "1 Peter", 5),
    ("2peter", "2 Peter", 3), ("1john", "1 John", 5), ("2john", "2 John", 1),
    ("3john", "3 John", 1), ("jude", "Jude", 1), ("revelation", "Revelation", 22),
)

_OT_PERSPECTIVES: dict[str, str] = {
    "genesis": "Moses and the Exodus generation",
    "exodus": "Moses during the wilderness journey",
    "leviticus": "Moses receiving priestly instructions at Sinai",
    "numbers": "Moses during the wilderness wanderings",
    "deuteronomy": "Moses addressing Israel before entering Canaan",
    "joshua": "Joshua during the conquest of Canaan",
    "judges": "Pre-monarchic Israel, possibly Samuel",
    "ruth": "Early monarchic period, Samuel or court historian",
    "1samuel": "Samuel, Nathan, and court historians",
    "2samuel": "Nathan, Gad, and court historians",
    "1kings": "Prophetic historians during exile",
    "2kings": "Prophetic historians during exile",
    "1chronicles": "Ezra and post-exilic Levites",
    "2chronicles": "Ezra and post-exilic Levites",
    "ezra": "Ezra the scribe in post-exilic Jerusalem",
    "nehemiah": "Nehemiah during Jerusalem restoration",
    "esther": "Persian-period Jewish author",
    "job": "Ancient wisdom tradition, possibly patriarchal era",
    "psalms": "David, Asaph, Sons of Korah, and temple musicians",
    "proverbs": "Solomon and royal wisdom collectors",
    "ecclesiastes": "Solomon reflecting in later life",
    "songofsolomon": "Solomon in his youth",
    "isaiah": "Isaiah ben Amoz in 8th-century Judah",
    "jeremiah": "Jeremiah during Judah's final days and exile",
    "lamentations": "Jeremiah mourning Jerusalem's fall",
    "ezekiel": "Ezekiel among the Babylonian exiles",
    "daniel": "Daniel in the Babylonian and Persian courts",
    "hosea": "Hosea in 8th-century northern Israel",
    "joel": "Joel in post-exilic Judah",
    "amos": "Amos the shepherd-prophet from Tekoa",
    "obadiah": "Obadiah during Edom's judgment",
    "jonah": "Jonah reflecting on his Nineveh mission",
    "micah": "Micah of Moresheth in 8th-century Judah",
    "nahum": "Nahum prophesying Nineveh's fall",
    "habakkuk": "Habakkuk before Babylon's rise",
    "zephaniah": "Zephaniah during Josiah's reign",
    "haggai": "Haggai during temple reconstruction",
    "zechariah": "Zechariah during temple reconstruction",
    "malachi": "Malachi in late post-exilic period",
}

_OT_DEFAULT_PERSPECTIVE = "Ancient Israelite author"
_OT_LANGUAGE = "Hebrew"
_OT_CULTURE = "Ancient Israelite"
_NT_LANGUAGE = "Greek"
_NT_CULTURE = "First-century Jewish/Greco-Roman"
_NT_PERSPECTIVE = "Apostolic/First-century believers"

_REFERENCE_RE = re.compile(r"^\s*(?P<book>.+?)\s*(?P<chapter>\d+)\s*[:.]\s*(?P<verse>\d+)\s*$")


def normalize_book_id(book: str) -> str:
    return re.sub(r"\s+", "", book).lower()


def parse_reference(document_id: str) -> VerseReference:
    """Split ``"1 Samuel 3:4"`` into book id, chapter and verse.

    A bare book name yields a reference with no chapter or verse.
    """
    match = _REFERENCE_RE.match(document_id)
    if match:
        return VerseReference(
            book_id=normalize_book_id(match.group("book")),
            chapter=int(match.group("chapter")),
            verse=int(match.group("verse")),
        )
    return VerseReference(book_id=normalize_book_id(document_id))


class TestamentClassifier:
    """Static lookup from canonical book ids to corpus metadata."""

    __test__ = False  # not a pytest test class despite the name

    def __init__(self) -> None:
        books = [Book(id=i, name=n, corpus=Corpus.OLD, chapters=c) for i, n, c in _OLD_BOOKS]
        books += [Book(id=i, name=n, corpus=Corpus.NEW, chapters=c) for i, n, c in _NEW_BOOKS]
        self._books: dict[str, Book] = {b.id: b for b in books}

    def book(self, book_id: str) -> Book | None:
        return self._books.get(normalize_book_id(book_id))

    def books(self, corpus: Corpus | None = None) -> list[Book]:
        if corpus is None:
            return list(self._books.values())
        return [b for b in self._books.values() if b.corpus == corpus]

    def classify(self, document_id: str) -> ContextMetadata:
        """Return corpus metadata for *document_id*.

        Unknown ids do not fail: they resolve to Old Testament defaults and a
        warning is logged.
        """
        ref = parse_reference(document_id)
        book = self._books.get(ref.book_id)

        if book is None:
            _log.warning("Unknown book id %r, defaulting to Old Testament", document_id)
            return ContextMetadata(
                corpus=Corpus.OLD,
                source_language=_OT_LANGUAGE,
                cultural_context=_OT_CULTURE,
                author_perspective=_OT_DEFAULT_PERSPECTIVE,
            )

        if book.corpus == Corpus.OLD:
            return ContextMetadata(
                corpus=Corpus.OLD,
                source_language=_OT_LANGUAGE,
                cultural_context=_OT_CULTURE,
                author_perspective=_OT_PERSPECTIVES.get(book.id, _OT_DEFAULT_PERSPECTIVE),
                book_id=book.id,
                book_name=book.name,
            )
        return ContextMetadata(
            corpus=Corpus.NEW,
            source_language=_NT_LANGUAGE,
            cultural_context=_NT_CULTURE,
            author_perspective=_NT_PERSPECTIVE,
            book_id=book.id,
            book_name=book.name,
        )
