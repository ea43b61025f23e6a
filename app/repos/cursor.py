"""Compact pagination cursor codec.

A cursor carries the parameters of a gallery list query as a short
``key:value`` string, e.g.::

    o:ASC|c:Chile,Argentina|p:2|e:12345|l:2

Keys are single characters, emitted in a fixed order and only when the field
holds a non-default value. The string is base64 (URL-safe alphabet) encoded
for transport in a query parameter. Parsing accepts either form and keys in
any order.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
from dataclasses import dataclass, field

from app.core.errors import InvalidCursorError
from app.domain.enums import SortOrder

logger = logging.getLogger(__name__)

ORDER_KEY = "o"
FILTER_KEY = "c"
PAGE_KEY = "p"
ANCHOR_KEY = "e"
LIMIT_KEY = "l"

# Canonical emission order
KEYS = (ORDER_KEY, FILTER_KEY, PAGE_KEY, ANCHOR_KEY, LIMIT_KEY)

DIVIDER = "|"
VALUE_SEPARATOR = ","
KEY_SEPARATOR = ":"
RESERVED_CHARACTERS = frozenset((DIVIDER, VALUE_SEPARATOR, KEY_SEPARATOR))

DEFAULT_LIMIT = 5
MAX_LIMIT = 100
# Keeps limit * page inside a 64-bit SQL offset
MAX_PAGE = 1_000_000_000


@dataclass(frozen=True)
class ByOffset:
    """Classic offset pagination: 1-based page number."""

    page: int

    def offset(self, limit: int) -> int:
        return limit * (self.page - 1)


@dataclass(frozen=True)
class BySeekKey:
    """Keyset pagination: start strictly after the record with this key.

    An empty key starts from the beginning of the order.
    """

    anchor_key: str = ""


PagingMode = ByOffset | BySeekKey


@dataclass
class ListQuery:
    """Parameters of one list query; the decoded form of a cursor."""

    order: SortOrder | None = None
    filter_values: list[str] = field(default_factory=list)
    page: int = 0
    anchor_key: str = ""
    limit: int = 0

    @property
    def paging_mode(self) -> PagingMode:
        """Resolve offset vs. seek pagination. The anchor wins when both are set."""
        if self.page > 0 and not self.anchor_key:
            return ByOffset(self.page)
        return BySeekKey(self.anchor_key)

    def copy(self, **changes) -> ListQuery:
        """Return a deep-enough copy with ``changes`` applied."""
        changes.setdefault("filter_values", list(self.filter_values))
        return dataclasses.replace(self, **changes)

    def with_defaults(self) -> ListQuery:
        """Return a copy with the documented defaults filled in."""
        return self.copy(
            order=self.order or SortOrder.ASC,
            limit=self.limit if self.limit > 0 else DEFAULT_LIMIT,
        )

    def validate(self) -> None:
        """Check that every value can be written to a cursor unambiguously.

        Raises:
            InvalidCursorError: On an empty filter value, a reserved character
                inside a value, or a page or limit out of range.
        """
        for value in self.filter_values:
            if not value:
                raise InvalidCursorError(
                    "Filter values must not be empty",
                    details={"filter_values": list(self.filter_values)},
                )
            _check_reserved("filter value", value)
        _check_reserved("anchor key", self.anchor_key)

        if self.page < 0:
            raise InvalidCursorError("Page must not be negative", details={"page": self.page})
        if self.page > MAX_PAGE:
            raise InvalidCursorError(
                "Page is too large", details={"page": self.page, "max_page": MAX_PAGE}
            )
        if self.limit < 0:
            raise InvalidCursorError("Limit must not be negative", details={"limit": self.limit})
        if self.limit > MAX_LIMIT:
            raise InvalidCursorError(
                "Limit is too large", details={"limit": self.limit, "max_limit": MAX_LIMIT}
            )


def _check_reserved(name: str, value: str) -> None:
    found = sorted(RESERVED_CHARACTERS.intersection(value))
    if found:
        raise InvalidCursorError(
            f"Cursor {name} contains reserved characters",
            details={"value": value, "reserved": found},
        )


# ============================================================================
# Encoding
# ============================================================================


def encode_query(query: ListQuery) -> str:
    """Encode a query as its canonical cursor string.

    Args:
        query: Query to encode

    Returns:
        ``key:value`` segments joined by ``|``; ``""`` when every field is default

    Raises:
        InvalidCursorError: If a value cannot be represented (see ``ListQuery.validate``)
    """
    query.validate()

    values = {
        ORDER_KEY: query.order.value if query.order else "",
        FILTER_KEY: VALUE_SEPARATOR.join(query.filter_values),
        PAGE_KEY: str(query.page) if query.page > 0 else "",
        ANCHOR_KEY: query.anchor_key,
        LIMIT_KEY: str(query.limit) if query.limit > 0 else "",
    }

    return DIVIDER.join(f"{key}{KEY_SEPARATOR}{values[key]}" for key in KEYS if values[key])


def encode_base64(text: str) -> str:
    """URL-safe base64 of a canonical cursor string."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


# ============================================================================
# Decoding
# ============================================================================


@dataclass(frozen=True)
class Encoded:
    """Cursor known to be in its base64 transport form."""

    value: str


@dataclass(frozen=True)
class Plain:
    """Cursor known to be in its canonical plain-text form."""

    value: str


CursorSource = Encoded | Plain


def decode_base64(value: str) -> str:
    """Strictly decode a URL-safe base64 cursor.

    Raises:
        InvalidCursorError: If the value is not valid base64 or not UTF-8
    """
    try:
        raw = base64.b64decode(value.encode("ascii"), altchars=b"-_", validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError(f"Cursor is not valid base64: {e}") from e


def parse_query(text: str) -> ListQuery:
    """Parse a canonical (plain) cursor string.

    Segments may appear in any order. Unknown keys are ignored so that
    cursors written by newer versions still parse.

    Args:
        text: Plain cursor string

    Returns:
        Decoded query with defaults applied

    Raises:
        InvalidCursorError: On any malformed segment or out-of-range value
    """
    query = ListQuery()

    for segment in text.split(DIVIDER):
        if not segment:
            continue

        key, sep, value = segment.partition(KEY_SEPARATOR)
        if not sep:
            if segment[0] in KEYS:
                raise InvalidCursorError(
                    f"Cursor key '{segment[0]}' is missing its value",
                    details={"segment": segment},
                )
            continue

        if key == ORDER_KEY:
            query.order = _read_order(value)
        elif key == FILTER_KEY:
            query.filter_values = _read_filter_values(value)
        elif key == PAGE_KEY:
            query.page = _read_int("page", value)
        elif key == ANCHOR_KEY:
            query.anchor_key = value
        elif key == LIMIT_KEY:
            query.limit = _read_int("limit", value)
        else:
            logger.debug("Ignoring unknown cursor key", extra={"cursor_key": key})

    query.validate()
    return query.with_defaults()


def _read_order(value: str) -> SortOrder:
    try:
        return SortOrder(value)
    except ValueError as e:
        raise InvalidCursorError(
            f"Invalid order in cursor: {value!r}",
            details={"allowed": [o.value for o in SortOrder]},
        ) from e


def _read_filter_values(value: str) -> list[str]:
    values = value.split(VALUE_SEPARATOR)
    if not all(values):
        raise InvalidCursorError("Cursor contains an empty filter value", details={"value": value})
    return values


def _read_int(name: str, value: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise InvalidCursorError(f"Invalid {name} in cursor: {value!r}")
    try:
        return int(value)
    except ValueError as e:
        # More digits than int() will convert
        raise InvalidCursorError(f"Invalid {name} in cursor: too many digits") from e


def parse_cursor(source: str | CursorSource) -> ListQuery:
    """Decode a cursor from any of its forms.

    When the form is known, pass ``Encoded(...)`` or ``Plain(...)``. A bare
    string is sniffed: base64 first, then plain text.

    Raises:
        InvalidCursorError: If the cursor cannot be decoded. For a bare string,
            the error names the failure of both paths.
    """
    if isinstance(source, Encoded):
        return parse_query(decode_base64(source.value))
    if isinstance(source, Plain):
        return parse_query(source.value)

    # Once the base64 decode succeeds the decoded text is authoritative
    try:
        text = decode_base64(source)
    except InvalidCursorError as encoded_error:
        logger.debug("Cursor is not base64, assuming plain text", extra={"cursor": source})
        try:
            return parse_query(source)
        except InvalidCursorError as plain_error:
            raise InvalidCursorError(
                "Cursor is neither a valid encoded nor a valid plain cursor",
                details={"encoded": encoded_error.message, "plain": plain_error.message},
            ) from plain_error

    return parse_query(text)


# ============================================================================
# Cursor value
# ============================================================================


class Cursor:
    """Immutable cursor: one query plus its canonical string.

    Two cursors are equal when their canonical strings are equal.
    """

    __slots__ = ("_query", "_text")

    def __init__(self, query: ListQuery):
        self._query = query.copy()
        self._text = encode_query(self._query)

    @classmethod
    def parse(cls, source: str | CursorSource) -> Cursor:
        return cls(parse_cursor(source))

    @property
    def query(self) -> ListQuery:
        """A copy of the wrapped query; mutating it does not affect the cursor."""
        return self._query.copy()

    def encoded_string(self) -> str:
        """Base64 form, safe to place in a URL query parameter."""
        return encode_base64(self._text)

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"<Cursor({self._text!r})>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._text == other._text

    def __hash__(self) -> int:
        return hash(self._text)
