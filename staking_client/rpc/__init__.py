"""RPC endpoint contract and its httpx JSON-RPC implementation."""

from staking_client.rpc.endpoint import RpcEndpoint, SolanaRpcEndpoint
from staking_client.rpc.models import BlockhashInfo, SignatureStatus

__all__ = ["BlockhashInfo", "RpcEndpoint", "SignatureStatus", "SolanaRpcEndpoint"]
