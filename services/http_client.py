from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from config import Config
from mutations.resources import ResourceSpec
from utils import (
    NETWORK_ERROR_MESSAGE,
    TIMEOUT_ERROR_MESSAGE,
    ResourceError,
    code_for_status,
    parse_json_maybe,
)

log = logging.getLogger(__name__)

_STATE_CHANGING = {"POST", "PUT", "PATCH", "DELETE"}


def _singular_key(spec: ResourceSpec) -> str:
    # flow_template -> flowTemplate
    head, *rest = spec.resource_type.split("_")
    return head + "".join(p.title() for p in rest)


def extract_error_message(body: Any, fallback: str = "Request failed") -> str:
    if isinstance(body, dict):
        msg = body.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg
        err = body.get("error")
        if isinstance(err, str) and err.strip():
            return err
        if isinstance(err, dict):
            inner = err.get("message") or err.get("error")
            if isinstance(inner, str) and inner.strip():
                return inner
            return fallback
        raw = body.get("raw")
        if isinstance(raw, dict) and isinstance(raw.get("message"), str) and raw["message"].strip():
            return raw["message"]
    return fallback


class HttpResourceClient:
    """Resource collaborator over the backend's REST API.

    Session cookies carry authentication. The CSRF header is only sent on
    state-changing verbs, and only when a token was configured.
    """

    def __init__(
        self,
        spec: ResourceSpec,
        *,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        csrf_token: str = "",
    ):
        self.spec = spec
        self.base_url = str(base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = float(timeout)
        self.csrf_token = str(csrf_token or "").strip()

    @classmethod
    def from_config(
        cls, spec: ResourceSpec, cfg: Config, session: Optional[requests.Session] = None
    ) -> "HttpResourceClient":
        return cls(
            spec,
            base_url=cfg.API_BASE_URL,
            session=session,
            timeout=cfg.API_TIMEOUT_SECONDS,
            csrf_token=cfg.CSRF_TOKEN,
        )

    def _url(self, record_id: str = "") -> str:
        url = f"{self.base_url}{self.spec.path}"
        if record_id:
            url = f"{url}/{record_id}"
        return url

    def _request(self, method: str, url: str, **kwargs) -> Any:
        headers: dict[str, str] = {"Accept": "application/json"}
        if method in _STATE_CHANGING and self.csrf_token:
            headers["X-CSRF-Token"] = self.csrf_token

        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ResourceError("TIMEOUT", TIMEOUT_ERROR_MESSAGE) from e
        except requests.RequestException as e:
            log.warning("%s %s failed: %s", method, url, e)
            raise ResourceError("NETWORK", NETWORK_ERROR_MESSAGE) from e

        raw_text = str(resp.text or "")
        try:
            parsed = resp.json() if raw_text.strip() else None
        except ValueError:
            parsed = parse_json_maybe(raw_text)

        if resp.status_code >= 400:
            fallback = str(getattr(resp, "reason", "") or "") or "Request failed"
            message = extract_error_message(parsed, fallback)
            raise ResourceError(code_for_status(resp.status_code), message, resp.status_code)

        return parsed

    def _unwrap_record(self, body: Any) -> dict[str, Any]:
        if isinstance(body, dict):
            for key in (_singular_key(self.spec), "data"):
                inner = body.get(key)
                if isinstance(inner, dict):
                    return inner
            return body
        raise ResourceError("INTERNAL", f"Unexpected {self.spec.label.lower()} response")

    def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._unwrap_record(self._request("POST", self._url(), json=payload))

    def update(self, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        return self._unwrap_record(self._request("PUT", self._url(record_id), json=patch))

    def delete(self, record_id: str) -> None:
        self._request("DELETE", self._url(record_id))

    def list(self, scope_id: str, filters: dict[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {k: v for k, v in (filters or {}).items() if v is not None and v != ""}
        if scope_id:
            params[self.spec.scope_field] = scope_id
        body = self._request("GET", self._url(), params=params)

        records: Any = None
        total: Any = None
        if isinstance(body, list):
            records = body
        elif isinstance(body, dict):
            for key in (self.spec.plural, "data", "items", "records"):
                if isinstance(body.get(key), list):
                    records = body[key]
                    break
            total = body.get("total")
            if total is None and isinstance(body.get("pagination"), dict):
                total = body["pagination"].get("total")
        if records is None:
            raise ResourceError("INTERNAL", f"Unexpected {self.spec.plural} list response")

        records = [r for r in records if isinstance(r, dict)]
        try:
            total = int(total) if total is not None else len(records)
        except (TypeError, ValueError):
            total = len(records)
        return {"records": records, "total": total}
