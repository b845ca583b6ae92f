"""Errors raised while handling XPC data."""

from __future__ import annotations


class XPCError(Exception):
    """An XPC encoding, decoding or transport failure."""

    def __init__(self, detail: object) -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"XPCError({self.detail})"


class XPCParseError(XPCError):
    """Malformed XPC bytes: bad lengths, missing terminators or bad UTF-8."""

    def __init__(self, reason: object) -> None:
        super().__init__(f"ParseError({reason})")
        self.reason = reason