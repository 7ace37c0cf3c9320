import csv
import io
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from prospector.config import settings
from prospector.db.database import async_session
from prospector.errors import BulkWriteError
from prospector.providers.base import Candidate
from prospector.services import lead_import_service

logger = logging.getLogger(__name__)

CSV_HEADERS = ["name", "email", "phone", "company", "title", "source"]
IMPORT_FILENAME = "ai-prospect.csv"
IMPORT_SOURCE = "AI Prospecting"


@dataclass
class BulkWriteResult:
    import_ref: str
    written_count: int
    inserted_lead_ids: list[str] = field(default_factory=list)


def candidates_to_csv(candidates: list[Candidate]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADERS)
    for c in candidates:
        writer.writerow([c.name, c.email, c.phone, c.company, c.title, c.source])
    return output.getvalue()


class LeadImportBridge:
    """Hands final candidates to the CSV lead importer used for manual uploads."""

    def __init__(self, session_factory=async_session, auto_enrich: bool | None = None):
        self.session_factory = session_factory
        self.auto_enrich = settings.auto_enrich_imports if auto_enrich is None else auto_enrich

    async def write_candidates(self, tenant_id: str, actor_id: str | None, candidates: list[Candidate]) -> BulkWriteResult:
        csv_text = candidates_to_csv(candidates)
        options = {"source": IMPORT_SOURCE, "autoEnrich": self.auto_enrich}
        try:
            async with self.session_factory() as db:
                summary = await lead_import_service.import_leads_csv(
                    db, tenant_id, actor_id, IMPORT_FILENAME, csv_text, options=options,
                )
        except SQLAlchemyError as e:
            raise BulkWriteError(f"Lead import failed: {e}") from e

        return BulkWriteResult(
            import_ref=summary.job.id,
            written_count=summary.job.inserted_count or 0,
            inserted_lead_ids=summary.inserted_lead_ids if self.auto_enrich else [],
        )
