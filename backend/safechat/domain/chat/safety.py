"""Deterministic content-safety detectors for chat messages.

Five independent detectors run over the raw text: phone numbers, email
addresses, UPI payment ids, links to non-platform hosts and a configurable
keyword list. Results never depend on detector order.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

from safechat.domain.chat.models import SafetyFlags
from safechat.settings import DEFAULT_SUSPICIOUS_KEYWORDS, DEFAULT_UPI_HANDLES, Settings

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}")
# handle@bank with no domain suffix; "a@ybl.com" is an email, not a UPI id
_UPI_RE = re.compile(r"(?<![\w.\-])[\w.\-]{2,}@([A-Za-z][A-Za-z0-9]*)(?![\w\-])(?!\.[A-Za-z0-9])")
_URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"']+", re.IGNORECASE)
_DAY = r"(?:0?[1-9]|[12]\d|3[01])"
_MONTH = r"(?:0?[1-9]|1[0-2])"
# ISO and day/month dates plus clock times, masked before phone matching
_DATE_TIME_RE = re.compile(
	r"(?<![\d\-./])(?:"
	rf"\d{{4}}([\-./]){_MONTH}\1{_DAY}"
	rf"|{_DAY}([\-./]){_MONTH}\2(?:\d{{4}}|\d{{2}})"
	rf"|{_MONTH}([\-./]){_DAY}\3(?:\d{{4}}|\d{{2}})"
	r"|(?:[01]?\d|2[0-3]):[0-5]\d(?::[0-5]\d)?"
	r")(?!\d)(?![\-./]\d)"
)


class ContentSafetyScanner:
	"""Pure text -> SafetyFlags function configured once at startup."""

	def __init__(
		self,
		*,
		phone_min_digits: int = 10,
		upi_handles: Iterable[str] = DEFAULT_UPI_HANDLES,
		allowed_link_domains: Iterable[str] = (),
		suspicious_keywords: Iterable[str] = DEFAULT_SUSPICIOUS_KEYWORDS,
	) -> None:
		if phone_min_digits < 2:
			raise ValueError("phone_min_digits must be at least 2")
		self.phone_min_digits = phone_min_digits
		self.upi_handles = frozenset(handle.strip().lower() for handle in upi_handles if handle.strip())
		self.allowed_link_domains = tuple(
			domain.strip().lower().lstrip(".") for domain in allowed_link_domains if domain.strip()
		)
		# A digit, then min_digits-1 more digits each preceded by at most two separators
		self._phone_re = re.compile(
			r"(?<!\d)\+?\(?\d(?:[\s().\-]{0,2}\d){%d,}(?!\d)" % (phone_min_digits - 1)
		)
		keywords = sorted(
			{kw.strip().lower() for kw in suspicious_keywords if kw.strip()}, key=len, reverse=True
		)
		self._keyword_re: Optional[re.Pattern[str]] = None
		if keywords:
			alternation = "|".join(r"\s+".join(re.escape(part) for part in kw.split()) for kw in keywords)
			self._keyword_re = re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)

	@classmethod
	def from_settings(cls, settings: Settings) -> "ContentSafetyScanner":
		return cls(
			phone_min_digits=settings.safety_phone_min_digits,
			upi_handles=settings.safety_upi_handles,
			allowed_link_domains=settings.safety_allowed_link_domains,
			suspicious_keywords=settings.safety_suspicious_keywords,
		)

	def scan(self, text: str) -> SafetyFlags:
		text = text or ""
		return SafetyFlags(
			contains_phone=self._has_phone(text),
			contains_email=_EMAIL_RE.search(text) is not None,
			contains_upi=self._has_upi(text),
			contains_external_link=self._has_external_link(text),
			contains_suspicious_keywords=bool(self._keyword_re and self._keyword_re.search(text)),
		)

	def _has_phone(self, text: str) -> bool:
		return self._phone_re.search(_DATE_TIME_RE.sub("|", text)) is not None

	def _has_upi(self, text: str) -> bool:
		return any(match.group(1).lower() in self.upi_handles for match in _UPI_RE.finditer(text))

	def _has_external_link(self, text: str) -> bool:
		for match in _URL_RE.finditer(text):
			host = _link_host(match.group(0))
			if host and not self._is_allowed_host(host):
				return True
		return False

	def _is_allowed_host(self, host: str) -> bool:
		return any(host == domain or host.endswith("." + domain) for domain in self.allowed_link_domains)


def _link_host(raw: str) -> Optional[str]:
	candidate = raw.rstrip(".,;:!?)]}")
	if not candidate.lower().startswith(("http://", "https://")):
		candidate = "http://" + candidate
	try:
		host = urlsplit(candidate).hostname
	except ValueError:
		return None
	return host.lower() if host else None


__all__ = ["ContentSafetyScanner"]
