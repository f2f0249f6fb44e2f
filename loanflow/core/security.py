from __future__ import annotations

import hmac

from loanflow.core.settings import settings


def verify_admin_key(candidate: str | None) -> bool:
    expected = settings.admin_api_key
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))
