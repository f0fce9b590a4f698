"""
Contract fixtures: compiled bytecode, runtime bytecode and ABI per contract.

The artifacts under ./artifacts are Forge-style JSON files
({"abi": [...], "bytecode": {"object": ...}, "deployedBytecode": {"object": ...}})
and are trusted inputs. They are loaded once at import and never mutated.

Ballot (solidity ^0.4.22): voting with delegation, constructor(bytes32[] proposalNames),
    chairperson-gated giveRightToVote(address), vote(uint), proposals(uint) -> (bytes32, uint).
Instructor: setInstructor(bytes32, uint, uint) emits Setter(bytes32 indexed name, uint age, uint salary),
    getInstructor() -> (bytes32, uint, uint).
"""

import json
import pathlib
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Dict, Optional, Tuple

from hexbytes import HexBytes

from .abi import AbiEntry, parse_abi
from .events import EventDecoder

ARTIFACT_DIR = pathlib.Path(__file__).parent / "artifacts"

SETTER_EVENT = "Setter(bytes32,uint256,uint256)"
SETTER_EVENT_SIGNATURE = HexBytes("0xe920a6ca2d94687457e136223552305dbabca6f28cf9c65d18efc2193a2369b0")


@dataclass(frozen=True, eq=False)
class ContractFixture:
    name: str
    deploy_bytecode: HexBytes
    runtime_bytecode: HexBytes
    abi: Tuple[Dict[str, Any], ...]
    known_event_signature: Optional[HexBytes] = None
    known_event: Optional[str] = None

    @cached_property
    def entries(self) -> Tuple[AbiEntry, ...]:
        return parse_abi(self.abi)

    @cached_property
    def event_decoder(self) -> EventDecoder:
        """Decoder built once per fixture ABI, seeded with the known signature hash if any."""
        known = {}
        if self.known_event and self.known_event_signature is not None:
            known[self.known_event] = self.known_event_signature
        return EventDecoder(self.entries, known_topics=known)

    @property
    def abi_json(self):
        # web3 wants a plain list
        return list(self.abi)


def load_artifact(name: str, known_event_signature: Optional[HexBytes] = None,
                  known_event: Optional[str] = None, artifact_dir: pathlib.Path = ARTIFACT_DIR) -> ContractFixture:
    full_path = (artifact_dir / f"{name}.json").resolve()
    with open(full_path, "r") as f:
        artifact = json.load(f)

    try:
        abi = artifact["abi"] if "abi" in artifact else artifact.get("output", {}).get("abi")
        deploy = artifact["bytecode"]["object"]
        runtime = artifact["deployedBytecode"]["object"]
    except KeyError as e:
        raise ValueError(f"artifact {full_path} missing required key {e}") from None
    if not isinstance(abi, list):
        raise ValueError(f"artifact {full_path}: ABI is not a list")

    return ContractFixture(
        name=name,
        deploy_bytecode=HexBytes(deploy),
        runtime_bytecode=HexBytes(runtime),
        abi=tuple(abi),
        known_event_signature=known_event_signature,
        known_event=known_event,
    )


def encode_bytes32(text: str) -> bytes:
    """Right-pad the UTF-8 bytes of text with zeros to 32 bytes."""
    raw = text.encode("utf-8")
    if len(raw) > 32:
        raise ValueError(f"{text!r} is longer than 32 bytes")
    return raw.ljust(32, b"\x00")


BALLOT = load_artifact("Ballot")
INSTRUCTOR = load_artifact("Instructor", known_event_signature=SETTER_EVENT_SIGNATURE, known_event=SETTER_EVENT)
