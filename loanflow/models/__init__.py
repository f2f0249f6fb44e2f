from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.audit_log import AuditLog
from loanflow.models.finance_officer import FinanceOfficer
from loanflow.models.group_id_sequence import GroupIdSequence
from loanflow.models.loan_group import LoanGroup
from loanflow.models.notification_delivery import NotificationDelivery
from loanflow.models.participant_intent import ParticipantIntent

__all__ = [
    "ArchivedLoanGroup",
    "AuditLog",
    "FinanceOfficer",
    "GroupIdSequence",
    "LoanGroup",
    "NotificationDelivery",
    "ParticipantIntent",
]
