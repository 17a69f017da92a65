"""Per-document analysis artifacts on disk."""

import json
import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from .errors import ArtifactWriteError
from .models import AnalysisResult

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[\\/:*?\"<>|\x00-\x1f]")


def artifact_name(stable_name: str) -> str:
    """File name for a document's artifact: ``<stable name>.json``, path-safe."""
    safe = _UNSAFE_CHARS.sub("_", stable_name).strip() or "document"
    return f"{safe}.json"


class ArtifactStore:
    """Writes and reads one JSON artifact per analyzed document."""

    def __init__(self, output_dir: Path):
        """
        Initialize the artifact store.

        Args:
            output_dir: Directory holding ``<file_name>.json`` artifacts

        Raises:
            ArtifactWriteError: If the directory cannot be created
        """
        self.output_dir = Path(output_dir)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactWriteError(f"Cannot create output directory {self.output_dir}: {e}") from e

    def path_for(self, stable_name: str) -> Path:
        return self.output_dir / artifact_name(stable_name)

    def exists(self, stable_name: str) -> bool:
        return self.path_for(stable_name).exists()

    def save(self, stable_name: str, result: AnalysisResult) -> Path:
        """
        Write the artifact atomically (temp file then rename).

        Raises:
            ArtifactWriteError: If the file cannot be written
        """
        path = self.path_for(stable_name)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(result.to_artifact(), f, indent=2, ensure_ascii=False)
            tmp_path.replace(path)
        except OSError as e:
            raise ArtifactWriteError(f"Cannot write artifact {path}: {e}") from e

        logger.info("artifact_saved", path=str(path), tier=int(result.tier))
        return path

    def load(self, stable_name: str) -> Optional[AnalysisResult]:
        return self.load_path(self.path_for(stable_name))

    def load_path(self, path: Path) -> Optional[AnalysisResult]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AnalysisResult.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Skipping unreadable artifact {path}: {e}")
            return None

    def iter_artifacts(self) -> Iterator[Tuple[Path, AnalysisResult]]:
        """Yield every readable artifact in file name order."""
        for path in sorted(self.output_dir.glob("*.json")):
            result = self.load_path(path)
            if result is not None:
                yield path, result

    def list_names(self) -> List[str]:
        return [p.stem for p in sorted(self.output_dir.glob("*.json"))]
