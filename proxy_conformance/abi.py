"""
Typed view over a JSON ABI description.

Only the parameter forms the fixtures use are supported: fixed-width
integers, bool, address, fixed bytes, and dynamic arrays of those.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple, Union

from eth_utils import keccak


@dataclass(frozen=True)
class AbiParam:
    name: str
    type: str
    indexed: bool = False

    @property
    def is_dynamic(self) -> bool:
        return self.type.endswith("[]") or self.type in ("bytes", "string")


@dataclass(frozen=True)
class AbiFunction:
    name: str
    inputs: Tuple[AbiParam, ...]
    outputs: Tuple[AbiParam, ...]
    constant: bool

    @property
    def signature(self) -> str:
        return canonical_signature(self.name, self.inputs)

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]


@dataclass(frozen=True)
class AbiEvent:
    name: str
    inputs: Tuple[AbiParam, ...]
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return canonical_signature(self.name, self.inputs)

    @property
    def topic(self) -> bytes:
        """keccak256 of the canonical signature, i.e. the expected topics[0]."""
        return keccak(text=self.signature)

    @property
    def indexed_inputs(self) -> Tuple[AbiParam, ...]:
        return tuple(p for p in self.inputs if p.indexed)

    @property
    def data_inputs(self) -> Tuple[AbiParam, ...]:
        return tuple(p for p in self.inputs if not p.indexed)


@dataclass(frozen=True)
class AbiConstructor:
    inputs: Tuple[AbiParam, ...]


AbiEntry = Union[AbiFunction, AbiEvent, AbiConstructor]


def canonical_signature(name: str, params: Iterable[AbiParam]) -> str:
    return f"{name}({','.join(canonical_type(p.type) for p in params)})"


def canonical_type(typ: str) -> str:
    # uint/int without width are aliases for the 256-bit forms
    base, suffix = (typ[:-2], "[]") if typ.endswith("[]") else (typ, "")
    if base in ("uint", "int"):
        base += "256"
    return base + suffix


def _params(items: List[Dict[str, Any]]) -> Tuple[AbiParam, ...]:
    return tuple(
        AbiParam(name=str(item.get("name", "")), type=canonical_type(item["type"]), indexed=bool(item.get("indexed", False)))
        for item in items or []
    )


def _is_constant(item: Dict[str, Any]) -> bool:
    if "stateMutability" in item:
        return item["stateMutability"] in ("view", "pure")
    return bool(item.get("constant", False))


def parse_abi(raw: Iterable[Dict[str, Any]]) -> Tuple[AbiEntry, ...]:
    """
    Turn a JSON ABI (list of dicts) into AbiFunction / AbiEvent / AbiConstructor
    entries, preserving declaration order. fallback/receive entries are skipped.
    """
    entries: List[AbiEntry] = []
    for item in raw:
        kind = item.get("type", "function")
        if kind == "function":
            entries.append(AbiFunction(
                name=item["name"],
                inputs=_params(item.get("inputs", [])),
                outputs=_params(item.get("outputs", [])),
                constant=_is_constant(item),
            ))
        elif kind == "event":
            entries.append(AbiEvent(
                name=item["name"],
                inputs=_params(item.get("inputs", [])),
                anonymous=bool(item.get("anonymous", False)),
            ))
        elif kind == "constructor":
            entries.append(AbiConstructor(inputs=_params(item.get("inputs", []))))
    return tuple(entries)


def events(entries: Iterable[AbiEntry]) -> List[AbiEvent]:
    return [e for e in entries if isinstance(e, AbiEvent)]


def find_function(entries: Iterable[AbiEntry], name: str) -> AbiFunction:
    for e in entries:
        if isinstance(e, AbiFunction) and e.name == name:
            return e
    raise KeyError(f"function {name!r} not in ABI")


def find_constructor(entries: Iterable[AbiEntry]) -> AbiConstructor:
    for e in entries:
        if isinstance(e, AbiConstructor):
            return e
    return AbiConstructor(inputs=())
