from __future__ import annotations

import re

_CAMEL_RE = re.compile(r"([a-z])([A-Z])")
_ACRONYM_RE = re.compile(r"([A-Z])([A-Z][a-z])")
_DIGIT_RE = re.compile(r"([a-zA-Z])(\d)")
_SEP_RE = re.compile(r"[_-]")
_LOCAL_SPLIT_RE = re.compile(r"[#/:]")


def local_name(uri: str) -> str:
    """Last segment of an IRI or prefixed name."""
    stripped = uri.strip().lstrip("<").rstrip(">").rstrip("/#")
    return _LOCAL_SPLIT_RE.split(stripped)[-1] or stripped


def format_local_name(uri: str) -> str:
    """Human readable form of an identifier.

    "molarMass" -> "Molar Mass", "Chemical_Substance" -> "Chemical Substance"
    """
    name = local_name(uri)
    name = _CAMEL_RE.sub(r"\1 \2", name)
    name = _ACRONYM_RE.sub(r"\1 \2", name)
    name = _DIGIT_RE.sub(r"\1 \2", name)
    name = _SEP_RE.sub(" ", name)
    return " ".join(w[:1].upper() + w[1:].lower() for w in name.split())


def readable_name(uri: str, label: str | None = None) -> str:
    """Prefer the endpoint's label over the formatted identifier."""
    if label and label.strip():
        return label.strip()
    return format_local_name(uri)
