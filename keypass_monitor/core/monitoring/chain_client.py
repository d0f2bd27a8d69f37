import re
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..recovery.errors import ErrorContext, InvalidParametersError
from .models import ChainHead, ChainInfo, FeeSnapshot, Receipt


# Extrinsic hashes (Substrate) and transaction hashes (EVM) are both 32 bytes
_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class ChainClient(ABC):
    """Connection, head, confirmation and fee access for one ledger network"""

    network: str
    endpoints: Sequence[str] = ()

    @abstractmethod
    async def connect(self, endpoint: str) -> ChainInfo:
        """Connect to one endpoint; raise ChainConnectionError on failure"""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the connection. Idempotent and never raises"""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def get_head(self) -> ChainHead:
        """Latest block; used as the cheap liveness probe"""
        pass

    @abstractmethod
    async def wait_for_confirmation(self, reference: str, timeout_seconds: float) -> Optional[Receipt]:
        """Wait until the transaction is included; raise on timeout or transport failure. None means no receipt was found"""
        pass

    @abstractmethod
    async def get_fee_level(self) -> FeeSnapshot:
        pass

    async def is_syncing(self) -> bool:
        return False

    def validate_reference(self, reference: str) -> None:
        if not isinstance(reference, str) or not _HASH_RE.match(reference):
            raise InvalidParametersError(
                f"Invalid transaction reference for {self.network}: {reference!r}",
                context=ErrorContext(network=self.network, reference=str(reference)),
            )
