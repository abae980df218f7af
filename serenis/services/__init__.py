# noqa
from serenis.services.flow_controller import FlowController, Notice
from serenis.services.question_service import QuestionResult, QuestionService
from serenis.services.summary_service import SummaryResult, SummaryService
from serenis.services.sync_service import SyncResult, SyncService, get_sync_service

__all__ = [
    "FlowController",
    "Notice",
    "QuestionResult",
    "QuestionService",
    "SummaryResult",
    "SummaryService",
    "SyncResult",
    "SyncService",
    "get_sync_service",
]
