"""Journal entry read endpoints."""

from typing import List

from fastapi import APIRouter, HTTPException, Path, Query, Request

from core.models.ledger import JournalEntryRecord, JournalSummary


router = APIRouter()


@router.get("", response_model=List[JournalSummary])
async def list_journals(
    request: Request,
    organization_id: str = Query(..., description="Organization to list journals for"),
    limit: int = Query(50, ge=1, le=500),
) -> List[JournalSummary]:
    """Newest-first journal summaries."""
    return await request.app.state.registry.journals.list_journals(organization_id, limit=limit)


@router.get("/{journal_id}", response_model=JournalEntryRecord)
async def get_journal(request: Request, journal_id: str = Path(...)) -> JournalEntryRecord:
    """Full journal entry with lines."""
    journal = await request.app.state.registry.journals.get_journal(journal_id)
    if journal is None:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return journal
