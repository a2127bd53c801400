"""
JSON codec for persisted transactions.

RULES:
1. Instants are tagged ISO 8601 strings (UTC): {"instant": "..."}.
2. Entity refs are tagged pairs: {"ref": ["thread", "th1"]}.
3. Enums use their .value.
4. Plain strings stay plain strings.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from ..contracts.base import Timestamp
from ..contracts.facts import EntityKind, EntityRef, Fact, FactValue
from ..contracts.temporal import TxLogEntry, TxSequence


class FactJSONEncoder(json.JSONEncoder):
    """
    JSON Encoder that keeps value types distinguishable on the way back.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, EntityRef):
            return {"ref": [obj.kind.value, obj.id]}
        if isinstance(obj, Timestamp):
            return {"instant": obj.to_iso()}
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def decode_value(raw: Any) -> FactValue:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and "ref" in raw:
        kind, ref_id = raw["ref"]
        return EntityRef(EntityKind(kind), ref_id)
    if isinstance(raw, dict) and "instant" in raw:
        return Timestamp.from_iso(raw["instant"])
    raise ValueError(f"Undecodable fact value: {raw!r}")


def decode_ref(raw: Any) -> EntityRef:
    value = decode_value(raw)
    if not isinstance(value, EntityRef):
        raise ValueError(f"Expected entity ref, got {raw!r}")
    return value


def encode_entry(entry: TxLogEntry) -> str:
    """One JSON line per committed transaction."""
    return json.dumps({
        "sequence": entry.sequence.value,
        "instant": entry.instant,
        "previous_hash": entry.previous_hash,
        "entry_hash": entry.entry_hash,
        "datoms": [
            {"e": d.entity, "a": d.attribute, "v": d.value, "added": d.added}
            for d in entry.datoms
        ],
    }, cls=FactJSONEncoder, sort_keys=True)


def decode_entry(line: str) -> TxLogEntry:
    data: Dict[str, Any] = json.loads(line)
    sequence = int(data["sequence"])
    instant = decode_value(data["instant"])
    if not isinstance(instant, Timestamp):
        raise ValueError("Entry instant is not an instant")
    datoms = tuple(
        Fact(
            entity=decode_ref(d["e"]),
            attribute=d["a"],
            value=decode_value(d["v"]),
            tx=sequence,
            added=bool(d["added"]),
        )
        for d in data["datoms"]
    )
    return TxLogEntry(
        sequence=TxSequence(sequence),
        instant=instant,
        datoms=datoms,
        previous_hash=data["previous_hash"],
        entry_hash=data["entry_hash"],
    )
