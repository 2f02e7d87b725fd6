"""FastAPI dependencies for API routes."""

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from leadcapture.db.deps import get_db
from leadcapture.db.models import Lead


def get_lead_or_404(lead_id: int, db: Session = Depends(get_db)) -> Lead:
    """Resolve path parameter lead_id; 404 if not found."""
    lead = db.get(Lead, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead
