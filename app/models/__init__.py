from app.models.activity import Activity
from app.models.borrower import Borrower
from app.models.document import Document
from app.models.loan_application import LoanApplication
from app.models.loan_program import LoanProgram
from app.models.loan_status_history import LoanStatusHistory
from app.models.notification import Notification
from app.models.role import Role
from app.models.user import User
from app.models.user_session import UserSession
from app.models.workflow_task import WorkflowTask

__all__ = [
    "Activity",
    "Borrower",
    "Document",
    "LoanApplication",
    "LoanProgram",
    "LoanStatusHistory",
    "Notification",
    "Role",
    "User",
    "UserSession",
    "WorkflowTask",
]
