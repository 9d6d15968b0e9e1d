from enum import Enum

class RequirementType(str, Enum):
    FUNCTIONAL = "FUNCTIONAL"
    NON_FUNCTIONAL = "NON_FUNCTIONAL"
    BUSINESS = "BUSINESS"
    TECHNICAL = "TECHNICAL"

class RequirementStatus(str, Enum):
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    IMPLEMENTED = "IMPLEMENTED"
    VERIFIED = "VERIFIED"
    CLOSED = "CLOSED"

class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

class HistoryAction(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    BASELINED = "BASELINED"
    TASK_LINKED = "TASK_LINKED"
    TEST_CASE_LINKED = "TEST_CASE_LINKED"

class StakeholderRole(str, Enum):
    REVIEWER = "REVIEWER"
    APPROVER = "APPROVER"
    CONTRIBUTOR = "CONTRIBUTOR"
    INFORMED = "INFORMED"

class CaseStatus(str, Enum):
    NOT_RUN = "NOT_RUN"
    PASSED = "PASSED"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"

class RowLayout(str, Enum):
    FLAT = "FLAT"
    HIERARCHICAL = "HIERARCHICAL"
