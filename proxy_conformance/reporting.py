"""
Console output and JSON artifacts.
"""

import dataclasses
import json
import sys
import time
from pathlib import Path
from typing import Any, Optional

from hexbytes import HexBytes
from web3.datastructures import AttributeDict


def now_ts() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())


def log(msg: str, tag: Optional[str] = None, err: bool = False):
    """Print a timestamped line, e.g. ``[2024-01-01 00:00:00] [WARN] msg``."""
    prefix = f"[{now_ts()}]"
    if tag:
        prefix += f" [{tag}]"
    print(f"{prefix} {msg}", file=sys.stderr if err else sys.stdout, flush=True)


def to_jsonable(obj: Any):
    """Recursively convert Web3 AttributeDict, HexBytes, dataclasses and friends into JSON-serializable types."""
    if isinstance(obj, AttributeDict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(x) for x in obj]
    if isinstance(obj, HexBytes):
        return obj.to_0x_hex()
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, BaseException):
        return f"{type(obj).__name__}: {obj}"
    return obj


def save_json(obj: Any, path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(to_jsonable(obj), f, indent=2, sort_keys=True, default=str)


def dump_receipt(artifact_dir: Optional[Path], tx_hash: str, receipt: Any):
    if artifact_dir is None:
        return
    save_json(receipt, Path(artifact_dir) / "receipts" / f"{tx_hash}.json")
