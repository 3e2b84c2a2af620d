from .controller import Adjacent, StatusTransitionController
from .database import Database
from .effective_status import available_transitions, resolve
from .errors import (
    ConcurrentModification, InvalidTransition, NotFound, SendError, ValidationError, WorkflowError,
)
from .service import WorkflowService

__all__ = [
    "Adjacent", "StatusTransitionController",
    "Database",
    "available_transitions", "resolve",
    "ConcurrentModification", "InvalidTransition", "NotFound", "SendError",
    "ValidationError", "WorkflowError",
    "WorkflowService",
]
