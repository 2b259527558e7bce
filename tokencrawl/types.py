from dataclasses import dataclass
from typing import Dict, Optional, Protocol


@dataclass(frozen=True)
class FetchResult:
    status: int
    content_type: str
    text: str
    size_bytes: int


class HttpClientProtocol(Protocol):
    def fetch(self, url: str) -> Optional[FetchResult]: ...


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    contract_address: str

    def __post_init__(self) -> None:
        # contract address is the natural key; keep it lowercase
        object.__setattr__(self, "contract_address", self.contract_address.strip().lower())

    def to_json(self) -> Dict[str, str]:
        return {
            "Name": self.name,
            "Symbol": self.symbol,
            "ContractAddress": self.contract_address,
        }
