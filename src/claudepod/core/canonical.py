"""
claudepod/core/canonical.py

Canonical byte form and digest of a profile.

The digest is what ties a built image and a created container back to the
configuration they came from, so it has to be stable across key order,
whitespace, machines and Python versions, and sensitive to every field that
changes the generated build recipe or runtime behavior.
"""

import hashlib
import json
import logging
import math
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

NON_SEMANTIC_KEYS: FrozenSet[str] = frozenset({"description", "created_at", "generated_at"})
DIGEST_LENGTH = 64

ProfileLike = Union[BaseModel, Mapping[str, Any]]


class Canonicalizer:
    """
    Converts profiles into a deterministic byte form and a SHA-256 digest.

    Canonicalization rules:
    1.  Pydantic models are dumped in JSON mode first, so a live `Profile` and
        its frozen snapshot (``profile.frozen_copy()``) canonicalize identically.
    2.  Mapping keys are sorted; `exclude_keys` are dropped at the top level of
        the document only, so a user-defined environment variable named
        ``description`` still counts.
    3.  Sequences keep their declared order (install order and mount order are
        meaningful).
    4.  Booleans, integers and floats are emitted in JSON's single textual
        form; integral floats collapse to integers so ``1.0`` and ``1`` agree.
    5.  Strings are hashed verbatim, so host-path placeholders such as ``$PWD``
        or ``$HOME`` are hashed unexpanded and the digest is portable.
    """

    def __init__(self, exclude_keys: Optional[Iterable[str]] = None) -> None:
        self.exclude_keys = (
            NON_SEMANTIC_KEYS if exclude_keys is None else frozenset(exclude_keys)
        )

    def canonical_form(self, profile: ProfileLike) -> bytes:
        cleaned = self._clean_structure(profile, top_level=True)
        text = json.dumps(
            cleaned,
            sort_keys=True,
            ensure_ascii=True,
            separators=(",", ":"),
            allow_nan=False,
        )
        return text.encode("utf-8")

    def digest(self, profile: ProfileLike) -> str:
        value = hashlib.sha256(self.canonical_form(profile)).hexdigest()
        logger.debug("[canonical.digest] %s", value)
        return value

    def _clean_structure(self, obj: Any, top_level: bool = False) -> Any:
        if isinstance(obj, BaseModel):
            return self._clean_structure(obj.model_dump(mode="json"), top_level)

        if isinstance(obj, Mapping):
            cleaned = {}
            for key, value in obj.items():
                if top_level and key in self.exclude_keys:
                    continue
                if not isinstance(key, str):
                    raise TypeError(f"profile keys must be strings, got {key!r}")
                cleaned[key] = self._clean_structure(value)
            return cleaned

        if isinstance(obj, (list, tuple)):
            return [self._clean_structure(item) for item in obj]

        if isinstance(obj, (set, frozenset)):
            # unordered input has no declared order to preserve
            return sorted(self._clean_structure(item) for item in obj)

        if isinstance(obj, bool) or obj is None or isinstance(obj, (int, str)):
            return obj

        if isinstance(obj, float):
            if not math.isfinite(obj):
                raise ValueError(f"non-finite number in profile: {obj!r}")
            if obj.is_integer():
                return int(obj)
            return obj

        raise TypeError(f"cannot canonicalize value of type {type(obj).__name__}")


_DEFAULT = Canonicalizer()


def canonical_form(profile: ProfileLike) -> bytes:
    """Deterministic byte form of a profile (or a frozen profile mapping)."""
    return _DEFAULT.canonical_form(profile)


def digest(profile: ProfileLike) -> str:
    """SHA-256 hex digest of the canonical form."""
    return _DEFAULT.digest(profile)
