"""Load analysis artifacts into the person graph."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import structlog

from .artifacts import ArtifactStore
from .models import AnalysisResult, Document, Person
from .stores import DocumentStore, PersonStore

logger = structlog.get_logger(__name__)

MAX_DESCRIPTION_CHARS = 500


@dataclass
class LoadStats:
    files: int = 0
    persons: int = 0
    connections: int = 0
    events: int = 0
    doc_links: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "files": self.files,
            "persons": self.persons,
            "connections": self.connections,
            "events": self.events,
            "doc_links": self.doc_links,
        }


def _base_name(file_name: str) -> str:
    name = file_name
    for suffix in (".json", ".pdf"):
        if name.lower().endswith(suffix):
            name = name[: -len(suffix)]
    return name


class GraphLoader:
    """
    Upserts persons, connections, timeline events and person-document links
    from artifacts. Re-loading the same artifacts adds nothing.
    """

    def __init__(self, persons: PersonStore, documents: DocumentStore):
        self.persons = persons
        self.documents = documents

    def _person(self, name: str) -> Optional[Person]:
        return self.persons.find_person_by_name(name.strip()) if name and name.strip() else None

    def load_result(self, result: AnalysisResult, stats: LoadStats) -> None:
        for mention in result.persons:
            if self._person(mention.name) is None:
                self.persons.insert_person(
                    mention.name.strip(),
                    category=mention.category or "associate",
                    role=mention.role,
                    description=(mention.context or "")[:MAX_DESCRIPTION_CHARS],
                )
                stats.persons += 1

        for connection in result.connections:
            first, second = self._person(connection.person1), self._person(connection.person2)
            if first is None or second is None or first.id == second.id:
                continue
            inserted = self.persons.insert_connection(
                first.id,
                second.id,
                connection_type=connection.relationship_type or "associated",
                description=(connection.description or "")[:MAX_DESCRIPTION_CHARS],
                strength=connection.strength,
            )
            if inserted is not None:
                stats.connections += 1

        for event in result.events:
            if self.persons.find_timeline_event(event.date, event.title) is not None:
                continue
            person_ids = []
            for name in event.persons_involved:
                person = self._person(name)
                if person is not None and person.id not in person_ids:
                    person_ids.append(person.id)
            inserted = self.persons.insert_timeline_event(
                event.date,
                event.title,
                description=event.description,
                category=event.category,
                significance=event.significance,
                person_ids=person_ids,
            )
            if inserted is not None:
                stats.events += 1

        document = self._document_for(result)
        if document is None:
            return
        for mention in result.persons:
            person = self._person(mention.name)
            if person is not None and self.persons.link_person_document(
                person.id, document.id, (mention.context or "")[:MAX_DESCRIPTION_CHARS]
            ):
                stats.doc_links += 1

    def _document_for(self, result: AnalysisResult) -> Optional[Document]:
        base = _base_name(result.file_name)
        return self.documents.find_document_by_name(base) if base else None

    def recompute_counts(self) -> None:
        for person in self.persons.list_persons():
            self.persons.update_person(
                person.id,
                document_count=self.persons.count_person_documents(person.id),
                connection_count=self.persons.count_connections(person.id),
            )

    def load_directory(self, output_dir: Path) -> LoadStats:
        """
        Load every artifact in ``output_dir``.

        Returns:
            LoadStats counting only newly created rows
        """
        stats = LoadStats()
        output_dir = Path(output_dir)
        if not output_dir.is_dir():
            logger.error(f"Analysis results directory not found: {output_dir}")
            return stats

        artifacts = ArtifactStore(output_dir)
        for path, result in artifacts.iter_artifacts():
            stats.files += 1
            try:
                with self.persons.transaction():
                    self.load_result(result, stats)
            except Exception as e:
                logger.error(f"Failed to load {path.name}: {e}")

        self.recompute_counts()
        logger.info("artifacts_loaded", **stats.as_dict())
        return stats
