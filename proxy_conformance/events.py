"""
Event log decoding.

A log is matched to an ABI event by topics[0] (keccak256 of the canonical
event signature). Indexed parameters are read one per topic, in declaration
order, starting at topics[1]; the remaining parameters are decoded from the
32-byte aligned data section. Decoded arguments are returned in
declaration order, keyed by parameter name.

Word interpretation:
    bytesN      raw bytes (bytes32 keeps all 32 bytes)
    uintN/intN  big-endian integer, arbitrary precision
    address     low 20 bytes, checksummed
    bool        True/False
Indexed dynamic values (arrays, bytes, string) are only present as their
keccak hash in the topic, so the raw 32-byte topic is returned.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from .abi import AbiEntry, AbiEvent, AbiParam, events
from .errors import UndecodableLogError
from .model import LogEntry


@dataclass(frozen=True)
class DecodedEvent:
    event_name: str
    args: Dict[str, Any]


def _finish(param: AbiParam, value):
    if param.type == "address":
        return to_checksum_address(value)
    if param.type.endswith("[]"):
        return [to_checksum_address(v) for v in value] if param.type == "address[]" else list(value)
    return value


def interpret_topic(param: AbiParam, topic: bytes):
    if len(topic) != 32:
        raise UndecodableLogError(f"topic for {param.name!r} is {len(topic)} bytes, expected 32")
    if param.is_dynamic:
        return HexBytes(topic)
    try:
        (value,) = abi_decode([param.type], bytes(topic))
    except DecodingError as e:
        raise UndecodableLogError(f"cannot decode indexed {param.type} {param.name!r}: {e}") from e
    return _finish(param, value)


class EventDecoder:
    """
    Maps signature hash -> AbiEvent for one ABI. Build once, decode many.

    known_topics optionally supplies precomputed hashes keyed by canonical
    signature; events not listed there get keccak256 of their signature.
    """

    def __init__(self, entries: Iterable[AbiEntry], known_topics: Optional[Mapping[str, bytes]] = None):
        known_topics = known_topics or {}
        self._by_topic: Dict[bytes, AbiEvent] = {}
        for event in events(entries):
            # anonymous events carry no signature topic and cannot be matched
            if event.anonymous:
                continue
            topic = known_topics.get(event.signature, event.topic)
            self._by_topic[bytes(topic)] = event

    @property
    def signatures(self) -> Dict[str, HexBytes]:
        return {ev.signature: HexBytes(topic) for topic, ev in self._by_topic.items()}

    def match(self, log: LogEntry) -> AbiEvent:
        if not log.topics:
            raise UndecodableLogError(f"log from {log.address} has no topics; cannot identify the event")
        event = self._by_topic.get(bytes(log.topics[0]))
        if event is None:
            raise UndecodableLogError(
                f"log from {log.address} has topics[0]={HexBytes(log.topics[0]).to_0x_hex()} "
                f"which matches no event in the ABI"
            )
        return event

    def decode_log(self, log: LogEntry) -> DecodedEvent:
        event = self.match(log)
        names = [p.name for p in event.inputs]
        if "" in names or len(set(names)) != len(names):
            # args are keyed by name
            raise UndecodableLogError(f"{event.signature}: parameter names {names} are not unique and non-empty")
        indexed = event.indexed_inputs
        topics = log.topics[1:]
        if len(topics) != len(indexed):
            raise UndecodableLogError(
                f"{event.signature}: log has {len(topics)} argument topics, "
                f"event declares {len(indexed)} indexed parameters"
            )

        values: Dict[str, Any] = {}
        for param, topic in zip(indexed, topics):
            values[param.name] = interpret_topic(param, topic)

        data_params = event.data_inputs
        if data_params:
            try:
                decoded = abi_decode([p.type for p in data_params], bytes(log.data))
            except DecodingError as e:
                raise UndecodableLogError(f"{event.signature}: cannot decode log data: {e}") from e
            for param, value in zip(data_params, decoded):
                values[param.name] = _finish(param, value)

        # declaration order, not decode order
        args = {p.name: values[p.name] for p in event.inputs}
        return DecodedEvent(event_name=event.name, args=args)

    def decode(self, logs: Iterable[LogEntry]) -> List[DecodedEvent]:
        return [self.decode_log(log) for log in logs]


def decode_logs(logs: Iterable[LogEntry], entries: Iterable[AbiEntry]) -> List[DecodedEvent]:
    return EventDecoder(entries).decode(logs)
