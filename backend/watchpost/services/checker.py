"""Checker service - performs HTTP, HTTPS, TCP, ping and WHOIS checks."""
import asyncio
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx
import whois

from ..config import settings
from ..exceptions import ProbeError, ProbeTimeoutError
from .pacer import Pacer
from .subjects import Subject


class CheckOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CheckResult:
    """Result of one probe. Immutable once created."""
    subject_key: str
    outcome: CheckOutcome
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    expiry_date: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    is_expired: bool = False
    is_expiring_soon: bool = False
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def ok(self) -> bool:
        return self.outcome == CheckOutcome.SUCCESS

    @classmethod
    def from_error(cls, subject_key: str, error: ProbeError, response_time_ms: Optional[int] = None) -> "CheckResult":
        outcome = CheckOutcome.TIMEOUT if isinstance(error, ProbeTimeoutError) else CheckOutcome.FAILURE
        return cls(
            subject_key=subject_key,
            outcome=outcome,
            response_time_ms=response_time_ms,
            status_code=error.status_code,
            error=error.message,
        )


# Registry lines tried when the parsed WHOIS record has no usable expiration date
EXPIRY_PATTERNS = [
    re.compile(r"Registry Expiry Date:\s*(.+)", re.IGNORECASE),
    re.compile(r"Expiry Date:\s*(.+)", re.IGNORECASE),
    re.compile(r"Expiration Date:\s*(.+)", re.IGNORECASE),
]

DATE_FORMATS = ["%Y-%m-%d", "%d-%b-%Y", "%Y.%m.%d", "%d.%m.%Y", "%Y/%m/%d"]


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_date(text: str) -> Optional[datetime]:
    text = text.strip()
    try:
        return _to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text.split()[0], fmt)
        except (ValueError, IndexError):
            continue
    return None


def parse_expiry_date(value, raw_text: Optional[str] = None) -> Optional[datetime]:
    """Pick the expiry date from a parsed WHOIS value, falling back to the raw response.

    Registrars sometimes report several dates; the earliest one wins.
    """
    candidates = value if isinstance(value, (list, tuple)) else [value]
    dates = []
    for candidate in candidates:
        if isinstance(candidate, datetime):
            dates.append(_to_naive_utc(candidate))
        elif isinstance(candidate, str):
            parsed = _parse_date(candidate)
            if parsed:
                dates.append(parsed)
    if dates:
        return min(dates)

    if raw_text:
        for pattern in EXPIRY_PATTERNS:
            match = pattern.search(raw_text)
            if match:
                parsed = _parse_date(match.group(1))
                if parsed:
                    return parsed
    return None


def days_until(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until expiry, rounded up."""
    now = now or datetime.utcnow()
    return math.ceil((expiry - now).total_seconds() / 86400)


def _split_host_port(target: str, default_port: Optional[int] = None) -> Tuple[str, Optional[int]]:
    if "://" in target:
        parsed = urlparse(target)
        port = parsed.port
        if port is None:
            port = {"http": 80, "https": 443}.get(parsed.scheme, default_port)
        return parsed.hostname or "", port

    target = target.split("/")[0]
    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        try:
            return host, int(port_str)
        except ValueError:
            pass
    return target, default_port


class CheckerService:
    """Service for performing a single check against one subject."""

    def __init__(
        self,
        pacer: Optional[Pacer] = None,
        whois_jitter_ms: Tuple[int, int] = (2000, 5000),
        whois_timeout: float = 30,
    ):
        self.pacer = pacer or Pacer(*whois_jitter_ms)
        self.whois_jitter_ms = whois_jitter_ms
        self.whois_timeout = whois_timeout

    async def execute(self, subject: Subject) -> CheckResult:
        """Run the probe for a subject.

        Raises ProbeError (ProbeTimeoutError on timeout) when the check fails.
        """
        timeout = (subject.timeout_ms or 30000) / 1000
        probe_type = subject.probe_type

        if probe_type in ("http", "https"):
            return await self._check_http(subject, timeout, secure=probe_type == "https")
        elif probe_type == "tcp":
            return await self._check_tcp(subject, timeout)
        elif probe_type == "ping":
            return await self._check_ping(subject, timeout)
        elif probe_type == "whois":
            return await self._check_whois(subject)
        raise ProbeError(f"Unsupported monitor type: {probe_type}")

    async def _check_http(self, subject: Subject, timeout: float, secure: bool = False) -> CheckResult:
        """GET the target; 2xx and 3xx count as up."""
        target = subject.target
        if not target.startswith("http"):
            target = f"{'https' if secure else 'http'}://{target}"

        start = datetime.now()
        try:
            # Self-signed certificates are accepted, availability is what is measured
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, verify=False) as client:
                response = await client.get(target)
        except httpx.TimeoutException:
            raise ProbeTimeoutError(f"Request timeout after {timeout:g}s")
        except httpx.ConnectError as e:
            raise ProbeError(f"Connection error: {e}")
        except httpx.HTTPError as e:
            raise ProbeError(str(e) or e.__class__.__name__)

        response_time = int((datetime.now() - start).total_seconds() * 1000)

        if response.status_code >= 400:
            raise ProbeError(f"HTTP {response.status_code}", status_code=response.status_code)

        return CheckResult(
            subject_key=subject.ref.key,
            outcome=CheckOutcome.SUCCESS,
            response_time_ms=response_time,
            status_code=response.status_code,
        )

    async def _check_tcp(self, subject: Subject, timeout: float) -> CheckResult:
        host, port = _split_host_port(subject.target)
        if not host or port is None:
            raise ProbeError(f"TCP target needs host:port, got '{subject.target}'")

        start = datetime.now()
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except asyncio.TimeoutError:
            raise ProbeTimeoutError(f"TCP connect timeout after {timeout:g}s")
        except OSError as e:
            raise ProbeError(f"Connection error: {e}")

        response_time = int((datetime.now() - start).total_seconds() * 1000)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

        return CheckResult(
            subject_key=subject.ref.key,
            outcome=CheckOutcome.SUCCESS,
            response_time_ms=response_time,
        )

    async def _check_ping(self, subject: Subject, timeout: float) -> CheckResult:
        """Send one ICMP echo with the system ping command."""
        host, _ = _split_host_port(subject.target)
        wait_seconds = max(1, int(math.ceil(timeout)))

        try:
            proc = await asyncio.create_subprocess_exec(
                "ping", "-c", "1", "-W", str(wait_seconds), host,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # No ping binary, or not permitted to run it
            raise ProbeError(f"Ping unavailable: {e}") from e
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout + 1)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProbeTimeoutError(f"Ping timeout after {timeout:g}s")

        # Example line: "64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=14.2 ms"
        match = re.search(r"time[=<](\d+\.?\d*)\s*ms", stdout.decode(errors="replace"))
        if proc.returncode != 0 or not match:
            detail = stderr.decode(errors="replace").strip() or "No response"
            raise ProbeError(f"Ping failed: {detail}")

        return CheckResult(
            subject_key=subject.ref.key,
            outcome=CheckOutcome.SUCCESS,
            response_time_ms=int(float(match.group(1))),
        )

    async def _check_whois(self, subject: Subject) -> CheckResult:
        """Look up the domain's registration expiry."""
        # Registrars rate-limit single queries too, so every lookup is jittered
        await self.pacer.jitter(*self.whois_jitter_ms)

        start = datetime.now()
        loop = asyncio.get_running_loop()
        try:
            record = await asyncio.wait_for(
                loop.run_in_executor(None, self._lookup, subject.target),
                timeout=self.whois_timeout,
            )
        except asyncio.TimeoutError:
            raise ProbeTimeoutError(f"WHOIS lookup timeout after {self.whois_timeout:g}s")
        response_time = int((datetime.now() - start).total_seconds() * 1000)

        expiry = parse_expiry_date(record.get("expiration_date"), getattr(record, "text", None))
        if expiry is None:
            raise ProbeError("Could not parse expiry date")

        remaining = days_until(expiry)
        return CheckResult(
            subject_key=subject.ref.key,
            outcome=CheckOutcome.SUCCESS,
            response_time_ms=response_time,
            expiry_date=expiry,
            days_until_expiry=remaining,
            is_expired=remaining < 0,
            is_expiring_soon=remaining <= subject.alert_days_before,
        )

    def _lookup(self, domain: str):
        """Blocking WHOIS query, run in the default executor."""
        try:
            record = whois.whois(domain)
        except Exception as e:
            raise ProbeError(f"Failed to lookup domain information: {e}")
        if record is None:
            raise ProbeError("Failed to lookup domain information")
        return record


# Global instance
checker_service = CheckerService(
    whois_jitter_ms=(settings.whois_jitter_min_ms, settings.whois_jitter_max_ms),
)
