"""
Validated envelope recipient address.

Parses and normalizes ``local-part@domain`` strings as they arrive from an
SMTP transaction: optional angle brackets are stripped, the domain is
lowercased with any trailing dot removed, and the local-part is lowercased
unless the deployment treats local-parts as case sensitive. Quoted
local-parts and backslash escapes are honored when locating the single
``@`` delimiter and are removed from the stored local-part.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

from ._validation import validate_optional_str, validate_str_not_empty
from .constants import MAX_DOMAIN_LENGTH, MAX_LOCAL_PART_LENGTH


@dataclass(frozen=True, slots=True)
class Address:
    """Immutable, normalized recipient address.

    Attributes:
        local_part: Unquoted local-part (everything before ``@``).
        domain: Lowercased domain without a trailing dot.
        hint: Optional virtual-hosting context supplied by the caller.

    Raises:
        ValueError: If either component is empty, too long, or contains
            null bytes, whitespace, or control characters.

    Examples:
        ```python
        addr = Address.parse("<Bob-Sales@Example.COM.>")
        addr.local_part   # 'bob-sales'
        addr.domain       # 'example.com'
        str(addr)         # 'bob-sales@example.com'

        Address.parse('"odd@name"@example.com').local_part   # 'odd@name'
        ```
    """

    local_part: str
    domain: str
    hint: str | None = None
    key: tuple[str, str, str | None] = field(init=False, repr=False, compare=False)

    _FORBIDDEN_DOMAIN_CHARS: ClassVar[frozenset[str]] = frozenset(" \t\r\n@\"\\/,;<>()")

    def __post_init__(self) -> None:
        validate_str_not_empty(self.local_part, "local_part")
        validate_str_not_empty(self.domain, "domain")
        validate_optional_str(self.hint, "hint")

        if len(self.local_part) > MAX_LOCAL_PART_LENGTH:
            raise ValueError(f"local-part exceeds {MAX_LOCAL_PART_LENGTH} characters")
        if len(self.domain) > MAX_DOMAIN_LENGTH:
            raise ValueError(f"domain exceeds {MAX_DOMAIN_LENGTH} characters")
        if any(ord(c) < 0x20 or ord(c) == 0x7F for c in self.local_part):
            raise ValueError("local-part contains control characters")
        if any(c in self._FORBIDDEN_DOMAIN_CHARS or ord(c) < 0x20 for c in self.domain):
            raise ValueError(f"Invalid domain: '{self.domain}'")
        if not self.domain.startswith("[") and not all(self.domain.split(".")):
            raise ValueError(f"Invalid domain: '{self.domain}'")

        object.__setattr__(self, "key", (self.local_part, self.domain, self.hint))

    def __str__(self) -> str:
        return f"{self.local_part}@{self.domain}"

    @classmethod
    def parse(
        cls,
        raw: str,
        *,
        hint: str | None = None,
        case_sensitive: bool = False,
    ) -> Address:
        """Parse a raw recipient string into a normalized ``Address``.

        Args:
            raw: Address as received, optionally wrapped in ``<>``.
            hint: Optional virtual-hosting context name.
            case_sensitive: Keep the local-part's case when True.

        Raises:
            ValueError: If the address does not contain exactly one
                unescaped ``@`` or any component fails validation.
        """
        if "\x00" in raw:
            raise ValueError("Address contains null bytes")

        text = raw.strip()
        if text.startswith("<") and text.endswith(">"):
            text = text[1:-1].strip()
        if not text:
            raise ValueError("Empty address")

        local_part, domain = cls._split(text)
        if not case_sensitive:
            local_part = local_part.lower()
        domain = domain.lower().rstrip(".")

        return cls(local_part=local_part, domain=domain, hint=hint or None)

    @staticmethod
    def _split(text: str) -> tuple[str, str]:
        """Split at the single unescaped ``@`` and unquote the local-part.

        Quoted strings and backslash escapes may carry ``@`` and whitespace
        as data. Outside quotes whitespace is not allowed.
        """
        local_chars: list[str] = []
        at_index: int | None = None
        in_quotes = False
        escaped = False

        for index, char in enumerate(text):
            if escaped:
                escaped = False
                if at_index is None:
                    local_chars.append(char)
                continue
            if char == "\\":
                escaped = True
                continue
            if char == '"':
                in_quotes = not in_quotes
                continue
            if in_quotes:
                if at_index is None:
                    local_chars.append(char)
                continue
            if char.isspace():
                raise ValueError("Address contains unquoted whitespace")
            if char == "@":
                if at_index is not None:
                    raise ValueError("Address contains more than one unescaped '@'")
                at_index = index
                continue
            if at_index is None:
                local_chars.append(char)

        if in_quotes or escaped:
            raise ValueError("Address has an unterminated quote or escape")
        if at_index is None:
            raise ValueError("Address is missing an unescaped '@'")

        return "".join(local_chars), text[at_index + 1 :]
