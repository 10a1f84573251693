from enum import Enum
from typing import Iterable, List


class PermissionCode(str, Enum):
    # Loan origination
    LOAN_VIEW_ALL = "loan.view_all"
    LOAN_MANAGE = "loan.manage"

    # Loan documents
    DOCUMENT_MANAGE = "document.manage"
    DOCUMENT_VERIFY = "document.verify"

    # Programs
    PROGRAM_MANAGE = "program.manage"

    # Workflow tasks
    TASK_VIEW = "task.view"
    TASK_MANAGE = "task.manage"

    # Activity log
    ACTIVITY_VIEW_ALL = "activity.view_all"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized
