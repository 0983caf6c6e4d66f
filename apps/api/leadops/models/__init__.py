from leadops.activity.models import ActivityLog
from leadops.hierarchy.models import HierarchyRecord, ReportingEdge
from leadops.leads.models import Lead, LeadStatusHistory
from leadops.principals.models import Principal
from leadops.reminders.models import Reminder
from leadops.statuses.models import LeadStatus
from leadops.tasks.models import Task

__all__ = [
    "ActivityLog",
    "HierarchyRecord",
    "Lead",
    "LeadStatus",
    "LeadStatusHistory",
    "Principal",
    "Reminder",
    "ReportingEdge",
    "Task",
]
