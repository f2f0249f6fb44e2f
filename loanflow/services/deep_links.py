from __future__ import annotations

import logging
from urllib.parse import quote

from loanflow.core.settings import Settings
from loanflow.services.workflow_errors import ConfigurationError


logger = logging.getLogger(__name__)


class DeepLinkGenerator:
    """Builds prefilled application-form URLs for a participant."""

    def __init__(self, form_url: str, *, loan_entry: str, role_entry: str, email_entry: str):
        self.form_url = (form_url or "").strip()
        self.loan_entry = (loan_entry or "").strip()
        self.role_entry = (role_entry or "").strip()
        self.email_entry = (email_entry or "").strip()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeepLinkGenerator":
        return cls(
            settings.application_form_url,
            loan_entry=settings.form_entry_loan_id,
            role_entry=settings.form_entry_role,
            email_entry=settings.form_entry_email,
        )

    def _base_url(self) -> str:
        if not self.form_url:
            raise ConfigurationError("Application form URL is not configured")
        if not (self.loan_entry and self.role_entry and self.email_entry):
            raise ConfigurationError("Application form entry ids are not configured")
        if "/viewform" in self.form_url:
            return self.form_url.replace("/viewform", "/viewform?", 1)
        separator = "&" if "?" in self.form_url else "?"
        return f"{self.form_url}{separator}"

    def build(self, group_id: str, role: str, email: str | None) -> str:
        try:
            base = self._base_url()
        except ConfigurationError as exc:
            logger.error(
                "Deep link unavailable: %s",
                exc.message,
                extra={"group_id": group_id, "operation": "deep_link"},
            )
            return ""
        return (
            f"{base}{self.loan_entry}={quote(group_id or '', safe='')}"
            f"&{self.role_entry}={quote(role or '', safe='')}"
            f"&{self.email_entry}={quote(email or '', safe='')}"
        )
