from __future__ import annotations

from leadops.leads.models import Lead
from leadops.platform.security.repository import BaseRepository


class LeadRepository(BaseRepository):
    resource = "lead"
    model = Lead


lead_repository = LeadRepository()
