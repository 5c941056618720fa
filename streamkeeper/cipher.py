"""Signature cipher and n-parameter transforms driven by versioned operation plans.

The remote player rewrites stream URLs with small string programs built
from three primitives (reverse, splice, swap). Which program applies
depends on the player version, so programs are loaded from a plan file
rather than hard-coded:

    {
      "version": "player-2f1c9a",
      "signature_timestamp": 20073,
      "signature": [["reverse"], ["splice", 2], ["swap", 41]],
      "n": [["swap", 3], ["reverse"]],
      "n_alternate": [["reverse"], ["swap", 5]]
    }
"""

import json
import urllib.parse
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from .errors import RemoteSourceError

Operation = Tuple[str, int]

OPERATION_NAMES = ("reverse", "splice", "swap")


def parse_operations(raw: Optional[Iterable]) -> Tuple[Operation, ...]:
    """Normalize JSON operation entries into (name, argument) tuples."""
    operations = []
    for entry in raw or ():
        if isinstance(entry, str):
            name, _, arg = entry.partition(":")
            parts = [name] + ([arg] if arg else [])
        else:
            parts = list(entry)
        if not parts:
            raise ValueError("empty cipher operation")
        name = str(parts[0]).strip().lower()
        if name not in OPERATION_NAMES:
            raise ValueError(f"unknown cipher operation '{name}'")
        argument = int(parts[1]) if len(parts) > 1 else 0
        operations.append((name, argument))
    return tuple(operations)


def apply_operations(value: str, operations: Sequence[Operation]) -> str:
    chars = list(value)
    for name, argument in operations:
        if name == "reverse":
            chars.reverse()
        elif name == "splice":
            chars = chars[argument:]
        elif name == "swap":
            if chars:
                index = argument % len(chars)
                chars[0], chars[index] = chars[index], chars[0]
    return "".join(chars)


@dataclass(frozen=True)
class CipherPlan:
    """Transforms for one player version."""
    version: str
    signature_timestamp: Optional[int] = None
    signature_ops: Tuple[Operation, ...] = ()
    n_ops: Tuple[Operation, ...] = ()
    alternate_n_ops: Tuple[Operation, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "CipherPlan":
        timestamp = data.get("signature_timestamp")
        return cls(
            version=str(data.get("version") or "unknown"),
            signature_timestamp=int(timestamp) if timestamp is not None else None,
            signature_ops=parse_operations(data.get("signature")),
            n_ops=parse_operations(data.get("n")),
            alternate_n_ops=parse_operations(data.get("n_alternate")),
        )


def load_cipher_plan(path: str) -> CipherPlan:
    """Load a cipher plan from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise RemoteSourceError(f"Failed to read cipher plan {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise RemoteSourceError(f"Cipher plan {path} must contain a JSON object")
    try:
        return CipherPlan.from_dict(data)
    except (TypeError, ValueError) as exc:
        raise RemoteSourceError(f"Invalid cipher plan {path}: {exc}") from exc


def parse_signature_cipher(descriptor: str) -> Optional[Tuple[str, str, str]]:
    """Split a signatureCipher descriptor into (url, signature param, scrambled signature)."""
    fields = urllib.parse.parse_qs(descriptor, keep_blank_values=False)
    url = (fields.get("url") or [None])[0]
    scrambled = (fields.get("s") or [None])[0]
    if not url or not scrambled:
        return None
    param = (fields.get("sp") or ["signature"])[0]
    return url, param, scrambled


def set_query_param(url: str, name: str, value: str) -> str:
    parsed = urllib.parse.urlparse(url)
    query = [(k, v) for k, v in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    query.append((name, value))
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(query)))


class PlanSignatureCipher:
    """Deterministic local signature deobfuscation."""

    def __init__(self, plan: Optional[CipherPlan]) -> None:
        self.plan = plan

    def deobfuscate(self, descriptor: str, track_id: str) -> Optional[str]:
        if self.plan is None or not self.plan.signature_ops:
            return None
        parts = parse_signature_cipher(descriptor)
        if parts is None:
            return None
        url, param, scrambled = parts
        signature = apply_operations(scrambled, self.plan.signature_ops)
        return set_query_param(url, param, signature)


class PlanNTransform:
    """Rewrites the `n` query parameter of a stream URL."""

    def __init__(self, operations: Sequence[Operation], name: str = "plan") -> None:
        self.operations = tuple(operations)
        self.name = name

    def transform_url(self, url: str) -> str:
        if not self.operations:
            return url
        parsed = urllib.parse.urlparse(url)
        query = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        if not any(key == "n" for key, _ in query):
            return url
        rewritten = [
            (key, apply_operations(value, self.operations) if key == "n" else value)
            for key, value in query
        ]
        return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(rewritten)))


def n_transforms_from_plan(plan: Optional[CipherPlan]) -> Tuple[PlanNTransform, PlanNTransform]:
    """Return (primary, alternate) n-transforms for *plan*."""
    if plan is None:
        return PlanNTransform((), "none"), PlanNTransform((), "none")
    return (
        PlanNTransform(plan.n_ops, f"{plan.version}/n"),
        PlanNTransform(plan.alternate_n_ops, f"{plan.version}/n_alternate"),
    )
