"""
Shared fixtures for the test suite.
"""

from pypdf import PdfWriter

from payslip_ingest.exceptions import PersistenceError
from payslip_ingest.storage import InMemorySessionStore, JsonFileSessionStore


def write_blank_pdf(path, pages: int) -> str:
    """Write a PDF with the given number of blank pages and return its path."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    with open(path, "wb") as f:
        writer.write(f)
    return str(path)


class RacingStore(InMemorySessionStore):
    """Store where another writer sneaks in before the next ``races`` conditional writes."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    def put(self, session, expected_version=None):
        if self.races and expected_version:
            self.races -= 1
            other = self.get(session.session_id)
            super().put(other)
        return super().put(session, expected_version)


class FailingStore(InMemorySessionStore):
    """Store that becomes unreachable once ``fail_after`` more writes succeeded."""

    def __init__(self):
        super().__init__()
        self.fail_after = None

    def put(self, session, expected_version=None):
        if self.fail_after is not None:
            if self.fail_after <= 0:
                raise PersistenceError("session store unreachable")
            self.fail_after -= 1
        return super().put(session, expected_version)


class PausingJsonStore(JsonFileSessionStore):
    """JSON store that runs ``before_write`` once, while holding the session lock."""

    def __init__(self, directory):
        super().__init__(directory)
        self.before_write = None

    def _write(self, path, session, expected_version):
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook()
        return super()._write(path, session, expected_version)
