"""Per-guild allow-lists of domains and file extensions, persisted as one JSON file."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from .errors import PolicyLoadError
from .link_scanner import CandidateLink

log = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webm", ".mp4")

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?\.)*[a-z0-9][a-z0-9\-]*$"
)
_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,16}$")


# ── Normalisation ──────────────────────────────────────────────────


def normalize_domain(value: str) -> str:
    """Reduce user input such as ``https://I.4cdn.org:443/b/`` to ``i.4cdn.org``.

    Raises:
        ValueError: If nothing resembling a host name remains.
    """
    raw = value.strip().lower()
    if "://" not in raw:
        raw = f"//{raw}"
    try:
        host = urlsplit(raw).hostname or ""
    except ValueError:
        host = ""
    host = host.strip(".")
    if not _DOMAIN_RE.match(host):
        raise ValueError(f"Not a valid domain: {value!r}")
    return host


def normalize_extension(value: str) -> str:
    """Lower-case ``value`` and ensure a single leading dot (``JPG`` → ``.jpg``)."""
    ext = "." + value.strip().lower().lstrip(".")
    if not _EXTENSION_RE.match(ext):
        raise ValueError(f"Not a valid file extension: {value!r}")
    return ext


# ── Data model ─────────────────────────────────────────────────────


@dataclass
class TenantPolicy:
    """Allow-policy for one guild."""

    tenant_id: str
    allowed_domains: set[str] = field(default_factory=set)
    allowed_extensions: set[str] = field(default_factory=set)

    @classmethod
    def default(cls, tenant_id: str, domains: Iterable[str]) -> TenantPolicy:
        return cls(
            tenant_id=tenant_id,
            allowed_domains={normalize_domain(d) for d in domains},
            allowed_extensions=set(DEFAULT_EXTENSIONS),
        )

    def allows_domain(self, host: str, root_domain: str) -> bool:
        return host in self.allowed_domains or root_domain in self.allowed_domains

    def allows_extension(self, extension: str) -> bool:
        return extension in self.allowed_extensions

    def permits(self, link: CandidateLink) -> bool:
        """Exact host or its root domain must be allowed, and so must the extension."""
        return self.allows_domain(link.host, link.root_domain) and self.allows_extension(
            link.extension
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "allowedDomains": sorted(self.allowed_domains),
            "allowedExtensions": sorted(self.allowed_extensions),
        }

    @classmethod
    def from_dict(cls, tenant_id: str, data: Any) -> TenantPolicy:
        if not isinstance(data, dict):
            raise PolicyLoadError(f"tenant {tenant_id}: expected an object")
        domains = data.get("allowedDomains", [])
        extensions = data.get("allowedExtensions", [])
        if not isinstance(domains, list) or not isinstance(extensions, list):
            raise PolicyLoadError(f"tenant {tenant_id}: allow-lists must be arrays")
        try:
            return cls(
                tenant_id=tenant_id,
                allowed_domains={normalize_domain(str(d)) for d in domains},
                allowed_extensions={normalize_extension(str(e)) for e in extensions},
            )
        except ValueError as e:
            raise PolicyLoadError(f"tenant {tenant_id}: {e}") from e


@dataclass
class PolicyDocument:
    """Every tenant's policy; the unit that is read and written."""

    tenants: dict[str, TenantPolicy] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {tid: policy.to_dict() for tid, policy in sorted(self.tenants.items())}

    @classmethod
    def from_dict(cls, data: Any) -> PolicyDocument:
        if not isinstance(data, dict):
            raise PolicyLoadError("policy document must be a JSON object")
        return cls(
            tenants={
                str(tid): TenantPolicy.from_dict(str(tid), entry)
                for tid, entry in data.items()
            }
        )


# ── Store ──────────────────────────────────────────────────────────


class PolicyStore:
    """Reads and writes the policy document.

    Nothing is cached between calls: every entry point reloads from disk.
    Mutations should run inside :meth:`transaction`, which serialises
    load-modify-save cycles so concurrent commands cannot overwrite each other.
    """

    def __init__(self, path: Path, default_domains: Iterable[str] = ("4cdn.org",)) -> None:
        self.path = path
        self.default_domains = [normalize_domain(d) for d in default_domains]
        self._lock = threading.RLock()

    # ── Persistence ────────────────────────────────────────────────

    def load(self) -> PolicyDocument:
        """Read the document; a missing file is created empty, a corrupt one is set aside."""
        with self._lock:
            if not self.path.exists():
                doc = PolicyDocument()
                self.save(doc)
                return doc
            try:
                return self._read()
            except PolicyLoadError as e:
                log.error("Policy file %s is unusable, starting empty: %s", self.path, e)
                self._quarantine()
                return PolicyDocument()

    def _read(self) -> PolicyDocument:
        try:
            text = self.path.read_text(encoding="utf-8")
            data = json.loads(text) if text.strip() else {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PolicyLoadError(str(e)) from e
        return PolicyDocument.from_dict(data)

    def _quarantine(self) -> None:
        backup = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        try:
            os.replace(self.path, backup)
            log.warning("Moved corrupt policy file to %s", backup)
        except OSError as e:
            log.warning("Could not move corrupt policy file aside: %s", e)

    def save(self, doc: PolicyDocument) -> None:
        """Write the whole document via a temp file and an atomic rename."""
        payload = json.dumps(doc.to_dict(), indent=2, ensure_ascii=False) + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    @contextmanager
    def transaction(self) -> Iterator[PolicyDocument]:
        """Hold the store lock around a freshly loaded document."""
        with self._lock:
            yield self.load()

    # ── Tenant access ──────────────────────────────────────────────

    def get_or_create(self, doc: PolicyDocument, tenant_id: int | str) -> TenantPolicy:
        key = str(tenant_id)
        policy = doc.tenants.get(key)
        if policy is None:
            policy = TenantPolicy.default(key, self.default_domains)
            doc.tenants[key] = policy
            self.save(doc)
            log.info("Created default policy for guild %s", key)
        return policy

    def policy_for(self, tenant_id: int | str) -> TenantPolicy:
        with self.transaction() as doc:
            return self.get_or_create(doc, tenant_id)

    # ── Mutations ──────────────────────────────────────────────────

    def add_domain(self, doc: PolicyDocument, tenant_id: int | str, domain: str) -> bool:
        return self._add(doc, tenant_id, "allowed_domains", normalize_domain(domain))

    def remove_domain(self, doc: PolicyDocument, tenant_id: int | str, domain: str) -> bool:
        return self._remove(doc, tenant_id, "allowed_domains", normalize_domain(domain))

    def add_extension(self, doc: PolicyDocument, tenant_id: int | str, extension: str) -> bool:
        return self._add(doc, tenant_id, "allowed_extensions", normalize_extension(extension))

    def remove_extension(
        self, doc: PolicyDocument, tenant_id: int | str, extension: str
    ) -> bool:
        return self._remove(
            doc, tenant_id, "allowed_extensions", normalize_extension(extension)
        )

    def _add(self, doc: PolicyDocument, tenant_id: int | str, attr: str, value: str) -> bool:
        values: set[str] = getattr(self.get_or_create(doc, tenant_id), attr)
        if value in values:
            return False
        values.add(value)
        self.save(doc)
        log.info("Guild %s: added %s to %s", tenant_id, value, attr)
        return True

    def _remove(
        self, doc: PolicyDocument, tenant_id: int | str, attr: str, value: str
    ) -> bool:
        values: set[str] = getattr(self.get_or_create(doc, tenant_id), attr)
        if value not in values:
            return False
        values.discard(value)
        self.save(doc)
        log.info("Guild %s: removed %s from %s", tenant_id, value, attr)
        return True
