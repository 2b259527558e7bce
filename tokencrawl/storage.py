import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Mapping

from .errors import PersistError
from .types import TokenMetadata


class ResultSet:
    """Contract address -> TokenMetadata, guarded by a single mutation lock."""

    def __init__(self) -> None:
        self._items: Dict[str, TokenMetadata] = {}
        self._lock = threading.Lock()

    def put(self, token: TokenMetadata) -> bool:
        """Insert or overwrite; returns True when the address was already present."""
        with self._lock:
            replaced = token.contract_address in self._items
            self._items[token.contract_address] = token
            return replaced

    def get(self, contract_address: str) -> TokenMetadata | None:
        with self._lock:
            return self._items.get(contract_address.lower())

    def snapshot(self) -> Dict[str, TokenMetadata]:
        with self._lock:
            return dict(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, contract_address: object) -> bool:
        if not isinstance(contract_address, str):
            return False
        with self._lock:
            return contract_address.lower() in self._items


class MetadataStore:
    def __init__(self, output_path: str) -> None:
        self.output_path = output_path

    def write(self, tokens: Mapping[str, TokenMetadata]) -> None:
        """Replace the output file with the whole mapping, pretty printed."""
        out_path = Path(self.output_path)
        try:
            payload = json.dumps(
                {address: token.to_json() for address, token in sorted(tokens.items())},
                indent="\t",
                ensure_ascii=False,
            )
            out_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=out_path.name + ".", suffix=".tmp", dir=out_path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, out_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise PersistError(self.output_path, exc) from exc
