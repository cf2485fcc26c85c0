"""
File storage for article sources and rendered versions.

Layout under the data root::

    articles/markdown/<file_path>/<file_name>.md
    articles/html/<file_path>/<file_name>/<version_name>/index.html
"""
import logging
import shutil
from pathlib import Path
from typing import Optional

from folio.config import settings
from folio.core.errors import ExternalServiceError, ValidationFailed

logger = logging.getLogger(__name__)

MARKDOWN_DIR = Path("articles") / "markdown"
HTML_DIR = Path("articles") / "html"
HTML_FILE_NAME = "index.html"


class ContentStorage:
    def __init__(self, data_root: Optional[str] = None):
        self.root = Path(data_root or settings.DATA_ROOT_PATH).resolve()

    # ============================================
    # Paths
    # ============================================

    def _resolve(self, *parts: str) -> Path:
        path = self.root.joinpath(*[part for part in parts if part]).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValidationFailed(f"Path escapes the data directory: {'/'.join(parts)}")
        return path

    def markdown_path(self, file_path: str, file_name: str) -> Path:
        return self._resolve(str(MARKDOWN_DIR), file_path, f"{file_name}.md")

    def article_html_dir(self, file_path: str, file_name: str) -> Path:
        return self._resolve(str(HTML_DIR), file_path, file_name)

    def version_html_path(self, file_path: str, file_name: str, version_name: str) -> Path:
        return self._resolve(str(HTML_DIR), file_path, file_name, version_name, HTML_FILE_NAME)

    # ============================================
    # Markdown
    # ============================================

    def save_markdown(self, file_path: str, file_name: str, markdown: str) -> Path:
        path = self.markdown_path(file_path, file_name)
        self._write(path, markdown)
        logger.debug("Saved markdown %s", path)
        return path

    def read_markdown(self, file_path: str, file_name: str) -> Optional[str]:
        return self._read(self.markdown_path(file_path, file_name))

    # ============================================
    # HTML versions
    # ============================================

    def save_html(self, file_path: str, file_name: str, version_name: str, html: str) -> str:
        """Write a version's HTML; returns its directory relative to the data root."""
        path = self.version_html_path(file_path, file_name, version_name)
        self._write(path, html)
        logger.debug("Saved html %s", path)
        return path.parent.relative_to(self.root).as_posix()

    def read_html(self, file_path: str, file_name: str, version_name: str) -> Optional[str]:
        return self._read(self.version_html_path(file_path, file_name, version_name))

    def delete_version_html(self, file_path: str, file_name: str, version_name: str) -> None:
        version_dir = self.version_html_path(file_path, file_name, version_name).parent
        self._remove_tree(version_dir)

    def delete_article_files(self, file_path: str, file_name: str) -> None:
        """Remove the Markdown source and every version's HTML."""
        markdown = self.markdown_path(file_path, file_name)
        try:
            markdown.unlink(missing_ok=True)
        except OSError as e:
            raise ExternalServiceError(f"Failed to delete {markdown}: {e}") from e
        self._remove_tree(self.article_html_dir(file_path, file_name))
        logger.info("Deleted files of %s/%s", file_path or ".", file_name)

    # ============================================
    # Helpers
    # ============================================

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ExternalServiceError(f"Failed to write {path}: {e}") from e

    def _read(self, path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ExternalServiceError(f"Failed to read {path}: {e}") from e

    def _remove_tree(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise ExternalServiceError(f"Failed to delete {path}: {e}") from e


def get_storage() -> ContentStorage:
    return ContentStorage(settings.DATA_ROOT_PATH)
