"""
Content Gateway - checks applied to member text around the AI features.

Implements:
- Input: prompt injection detection before chat text is sent to an LLM
- Output: PII scanning and redaction before text is logged or echoed back
- Moderation: keyword scoring of posts and chat messages
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Result of a gateway scan."""
    is_safe: bool
    threats: List[str] = field(default_factory=list)
    details: str = ""


class ContentGateway:
    """
    Filter between community members and the LLM providers.

    Scans inputs for prompt injection, outputs for personal data,
    and scores text for abusive content.
    """

    INJECTION_PATTERNS = [
        (r"(?i)ignore\s+(all\s+)?(previous|prior)\s+instructions", "prompt_injection"),
        (r"(?i)disregard\s+(all\s+)?(previous|prior|above)\s+", "prompt_injection"),
        (r"(?i)forget\s+(all\s+)?(previous|prior|your)\s+instructions", "prompt_injection"),
        (r"(?i)reveal\s+(your\s+)?(system\s+)?prompt", "prompt_injection"),
        (r"(?i)you\s+are\s+now\s+(in\s+)?(developer|unrestricted|dan)\s+mode", "role_hijack"),
        (r"(?i)pretend\s+(that\s+)?you\s+have\s+no\s+(rules|restrictions)", "role_hijack"),
        (r"</?system>", "delimiter_injection"),
        (r"<\|im_(start|end)\|>", "delimiter_injection"),
        (r"\[/?INST\]", "delimiter_injection"),
    ]

    PII_PATTERNS = [
        (r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "pii_email"),
        (r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b", "pii_credit_card"),
        (r"(?:\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b", "pii_phone"),
        (r"sk-[a-zA-Z0-9-]{20,}", "pii_api_key"),
        (r"(?i)(api[_-]?key|secret|access[_-]?token)\s*[=:]\s*\S+", "pii_api_key"),
        (r"eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]+", "pii_jwt"),
    ]

    # term -> (category, weight)
    MODERATION_TERMS = {
        "idiot": ("harassment", 0.3),
        "stupid": ("harassment", 0.2),
        "loser": ("harassment", 0.3),
        "shut up": ("harassment", 0.2),
        "ugly": ("harassment", 0.2),
        "nobody likes you": ("harassment", 0.5),
        "hate you": ("harassment", 0.5),
        "subhuman": ("hate", 0.6),
        "vermin": ("hate", 0.5),
        "go back to your country": ("hate", 0.6),
        "filthy animals": ("hate", 0.5),
        "inferior race": ("hate", 0.8),
        "kill you": ("violence", 0.8),
        "hurt you": ("violence", 0.6),
        "kill myself": ("self_harm", 0.8),
        "end my life": ("self_harm", 0.8),
        "buy now": ("spam", 0.3),
        "click here": ("spam", 0.3),
        "free money": ("spam", 0.5),
        "limited offer": ("spam", 0.3),
        "crypto giveaway": ("spam", 0.5),
    }

    UNSAFE_SCORE = 0.5

    def scan_input(self, text: str) -> ScanResult:
        """
        Scan chat text for prompt injection attempts.
        Returns ScanResult with is_safe=False if threats detected.
        """
        threats = []
        for pattern, threat_type in self.INJECTION_PATTERNS:
            if re.search(pattern, text) and threat_type not in threats:
                threats.append(threat_type)
                logger.warning(f"Prompt injection detected: {threat_type}")

        if threats:
            return ScanResult(
                is_safe=False,
                threats=threats,
                details=f"Detected {len(threats)} injection threat(s)",
            )
        return ScanResult(is_safe=True)

    def scan_output(self, text: str) -> ScanResult:
        """Scan text for personal data."""
        threats = []
        for pattern, threat_type in self.PII_PATTERNS:
            if re.search(pattern, text) and threat_type not in threats:
                threats.append(threat_type)

        if threats:
            logger.warning(f"PII detected in output: {', '.join(threats)}")
            return ScanResult(
                is_safe=False,
                threats=threats,
                details=f"Detected {len(threats)} PII type(s) in output",
            )
        return ScanResult(is_safe=True)

    def redact_output(self, text: str) -> str:
        """Replace personal data with [REDACTED_TYPE] tags."""
        result = text
        for pattern, threat_type in self.PII_PATTERNS:
            result = re.sub(pattern, f"[REDACTED_{threat_type.upper()}]", result)
        return result

    def moderate(self, text: str) -> dict:
        """
        Keyword moderation.

        Returns {is_safe, issues, score}; the score is the sum of matched
        term weights capped at 1.0.
        """
        if not text or not text.strip():
            return {"is_safe": True, "issues": [], "score": 0.0}

        lowered = text.lower()
        issues: list[str] = []
        score = 0.0
        for term, (category, weight) in self.MODERATION_TERMS.items():
            if re.search(rf"\b{re.escape(term)}\b", lowered):
                score += weight
                if category not in issues:
                    issues.append(category)

        score = round(min(score, 1.0), 2)
        is_safe = score < self.UNSAFE_SCORE
        if not is_safe:
            logger.warning(f"Moderation flagged text: issues={issues} score={score}")
        return {"is_safe": is_safe, "issues": issues, "score": score}
