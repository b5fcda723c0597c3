"""Query line protocol spoken by the listener.

Requests are ``<address>[ <hint>]``; responses are one of::

    DELIVERABLE[ <detail>]
    UNDELIVERABLE <reason>[ <detail>]
    DEFERRED <reason>
"""

from __future__ import annotations

from rcptd.models import Verdict, VerdictStatus


def parse_request(line: str) -> tuple[str, str | None]:
    """Split a request line into address and optional hint.

    The hint is the last whitespace-separated word when it contains no
    ``@``, so quoted local-parts may still carry spaces.

    Raises:
        ValueError: If the line is empty.
    """
    line = line.strip()
    if not line:
        msg = "empty request"
        raise ValueError(msg)
    head, sep, tail = line.rpartition(" ")
    if sep and "@" not in tail and head.strip():
        return head.strip(), tail
    return line, None


def format_response(verdict: Verdict) -> str:
    words = [verdict.status.upper()]
    if verdict.reason:
        words.append(str(verdict.reason))
    if verdict.status != VerdictStatus.DEFERRED and verdict.diagnostic:
        words.append(verdict.diagnostic)
    return " ".join(words)
