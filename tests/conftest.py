import sys
from io import BytesIO
from pathlib import Path

import pytest
from docx import Document

# Add the repository root to sys.path so we can import the top-level modules
ROOT_PATH = Path(__file__).resolve().parent.parent
if ROOT_PATH.as_posix() not in sys.path:
    sys.path.insert(0, ROOT_PATH.as_posix())

from quote_marker import QuoteConfig  # noqa: E402


@pytest.fixture
def smart_config():
    return QuoteConfig()


@pytest.fixture
def straight_config():
    return QuoteConfig(preferred="straight")


@pytest.fixture
def make_docx():
    """Return a helper that builds .docx bytes from paragraph strings."""
    def _make(*paragraphs: str) -> bytes:
        doc = Document()
        for text in paragraphs:
            doc.add_paragraph(text)
        out = BytesIO()
        doc.save(out)
        return out.getvalue()
    return _make
