# grounding/infrastructure/document_loader.py

import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from grounding.domain.models import Fragment


logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".txt", ".md"}

_HEADING_PATTERN = re.compile(r"^\s*#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


class DocumentLoader:
    """
    Loads a directory of plain-text and Markdown documents into fragments
    owned by one scope. One file → one fragment; the engine only ever
    packs a prefix of each body, so documents are not chunked.

    Ids are derived from scope + relative path, so reloading the same
    directory upserts instead of duplicating.
    """

    def __init__(self, scope_id: str):
        if not scope_id:
            raise ValueError("DocumentLoader needs the scope that owns the documents.")
        self._scope_id = scope_id

    def load_directory(self, directory_path: str) -> List[Fragment]:
        data_dir = Path(directory_path)
        if not data_dir.exists():
            raise FileNotFoundError(f"Data directory not found: {directory_path}")

        fragments: List[Fragment] = []
        for file_path in sorted(data_dir.rglob("*")):
            fragment = self.load_file(file_path, root=data_dir)
            if fragment is not None:
                fragments.append(fragment)

        logger.info("Loaded %d documents from '%s'.", len(fragments), directory_path)
        return fragments

    def load_file(self, file_path: Path, root: Optional[Path] = None) -> Optional[Fragment]:
        """
        Load a single TXT/MD file. Returns None for unsupported or empty files.
        """
        if not file_path.is_file() or file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return None

        text = self._clean_text(file_path.read_text(encoding="utf-8", errors="ignore"))
        if not text:
            return None

        relative = file_path.relative_to(root) if root else Path(file_path.name)
        return Fragment(
            fragment_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{self._scope_id}/{relative.as_posix()}")),
            scope_id    = self._scope_id,
            title       = self._extract_title(text, fallback=file_path.stem),
            body        = text,
            updated_at  = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc),
        )

    # ─── Private: Text Processing ─────────────────────────────────────────────

    @staticmethod
    def _extract_title(text: str, fallback: str) -> str:
        match = _HEADING_PATTERN.search(text)
        return match.group(1) if match else fallback.replace("_", " ").replace("-", " ")

    @staticmethod
    def _clean_text(text: str) -> str:
        """Normalize whitespace."""
        text = text.replace("\r\n", "\n")
        text = re.sub(r"[ \t]{2,}", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()
