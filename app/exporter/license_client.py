from __future__ import annotations

import urllib.parse
from dataclasses import asdict, dataclass
from typing import Any, Optional

import requests

from . import config
from .error_codes import LicenseError
from .logging_utils import _export_event
from .utils import log_line


@dataclass
class LicenseStatus:
    valid: bool
    expires_at: Optional[str] = None
    message: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _redact_url(url: str) -> str:
    try:
        parsed = urllib.parse.urlparse(url)
        return urllib.parse.urlunparse(parsed._replace(query=""))
    except Exception:  # noqa: BLE001
        return url


def check_license(
    account_code: Optional[str] = None,
    *,
    url: Optional[str] = None,
    timeout: Optional[int] = None,
    session: Optional[requests.Session] = None,
) -> LicenseStatus:
    """Ask the license service whether ``account_code`` may run exports.

    Raises ``LicenseError`` when the service cannot be reached or answers with
    something other than a JSON verdict. A reachable service that rejects the
    code returns ``LicenseStatus(valid=False)``.
    """

    account_code = (account_code if account_code is not None else config.ACCOUNT_CODE).strip()
    url = url or config.LICENSE_URL
    timeout = timeout or config.LICENSE_TIMEOUT_SECONDS

    if not url:
        raise LicenseError("License service URL is not configured")
    if not account_code:
        return LicenseStatus(valid=False, message="No account code configured")

    http = session or requests
    safe_url = _redact_url(url)
    try:
        resp = http.post(
            url,
            json={"account_code": account_code},
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.Timeout, requests.ConnectionError) as exc:
        _export_event("error", phase="license", url=safe_url, error=str(exc))
        raise LicenseError(f"License service unreachable: {exc}") from exc
    except requests.HTTPError as exc:
        status = getattr(exc.response, "status_code", None)
        _export_event("error", phase="license", url=safe_url, http_status=status)
        raise LicenseError(f"License service returned HTTP {status}") from exc
    except ValueError as exc:
        raise LicenseError("License service returned malformed JSON") from exc

    if not isinstance(payload, dict):
        raise LicenseError("License service returned malformed JSON")

    status = LicenseStatus(
        valid=bool(payload.get("valid")),
        expires_at=payload.get("expires_at") or payload.get("expiry"),
        message=str(payload.get("message") or ""),
    )
    _export_event("license", phase="check", url=safe_url, valid=status.valid,
                  expires_at=status.expires_at)
    log_line(
        f"[LICENSE] valid={status.valid} expires_at={status.expires_at or 'n/a'}",
        "info" if status.valid else "warning",
    )
    return status


__all__ = ["LicenseStatus", "check_license"]
