from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from domain.errors import AlphApiError, NodeNotReadyError
from domain.repositories import AddressBalance, Destination, Wallet

logger = logging.getLogger(__name__)

API_ERROR_PREFIX = "[API Error] - "


class NodeApiError(AlphApiError):
    """
    Non-2xx answer of the full node.

    The message mirrors the node's own `detail` field, prefixed with
    `[API Error] - `, so that the error classifier can recognise it.
    """

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{API_ERROR_PREFIX}{detail}", {"status_code": status_code})
        self.status_code = status_code
        self.detail = detail


def _destination_to_json(destination: Destination) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "address": destination.address,
        "attoAlphAmount": str(destination.atto_alph_amount),
    }
    if destination.tokens:
        payload["tokens"] = [{"id": token_id, "amount": str(amount)} for token_id, amount in destination.tokens]
    return payload


class HttpNodeGateway:
    """
    Thin async wrapper around the Alephium full node REST API.

    Transport errors (`httpx.TransportError`) and `NodeApiError` are
    propagated untouched; nothing here tries to make sense of them.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"X-API-KEY": api_key} if api_key else {}
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=30.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise NodeApiError(response.status_code, str(detail))
        return response.json()

    async def check_ready(self) -> None:
        """
        Make sure the node is reachable, ready and synced.

        Raises `NodeNotReadyError` otherwise. Meant to be called once at
        startup, before serving any command.
        """

        try:
            response = await self._client.get("/infos/self-clique")
        except httpx.TransportError as exc:
            raise NodeNotReadyError("full node is not reachable") from exc

        if response.status_code != 200:
            raise NodeNotReadyError(f"full node returned {response.status_code} (not 200 OK)")

        try:
            content = response.json()
        except ValueError as exc:
            raise NodeNotReadyError("full node replied non-json body") from exc

        if not content.get("selfReady"):
            logger.error("Full node self-clique: %s", content)
            raise NodeNotReadyError("full node is not ready")
        if not content.get("synced"):
            logger.error("Full node self-clique: %s", content)
            raise NodeNotReadyError("full node is not synced")

        logger.info("Full node %s is ready and synced", self._base_url)

    async def get_address_balance(self, address: str, mempool: Optional[bool] = None) -> AddressBalance:
        params = {} if mempool is None else {"mempool": "true" if mempool else "false"}
        payload = await self._request("GET", f"/addresses/{address}/balance", params=params)
        return AddressBalance(
            balance=int(payload["balance"]),
            locked_balance=int(payload.get("lockedBalance", 0)),
            token_balances=[(t["id"], int(t["amount"])) for t in payload.get("tokenBalances") or []],
            utxo_num=int(payload.get("utxoNum", 0)),
        )

    async def _sign_and_submit(self, wallet: Wallet, unsigned: Dict[str, Any]) -> str:
        submitted = await self._request(
            "POST",
            "/transactions/submit",
            json={"unsignedTx": unsigned["unsignedTx"], "signature": wallet.sign(unsigned["txId"])},
        )
        return submitted["txId"]

    async def sign_and_submit_transfer(self, wallet: Wallet, destinations: List[Destination]) -> str:
        built = await self._request(
            "POST",
            "/transactions/build",
            json={
                "fromPublicKey": wallet.public_key,
                "destinations": [_destination_to_json(d) for d in destinations],
            },
        )
        return await self._sign_and_submit(wallet, built)

    async def sign_and_submit_sweep(self, wallet: Wallet, to_address: str) -> List[str]:
        built = await self._request(
            "POST",
            "/transactions/sweep-address/build",
            json={"fromPublicKey": wallet.public_key, "toAddress": to_address},
        )
        results = await asyncio.gather(
            *(self._sign_and_submit(wallet, tx) for tx in built["unsignedTxs"]),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            if len(failures) > 1:
                logger.warning("%d of %d sweep submissions failed", len(failures), len(results))
            raise failures[0]
        return list(results)

    async def get_transaction_status(self, tx_id: str) -> Dict[str, Any]:
        return await self._request("GET", "/transactions/status", params={"txId": tx_id})

    async def wait_for_confirmation(self, tx_id: str, confirmations: int, interval: float = 1.0) -> None:
        """Poll until `tx_id` has at least `confirmations` chain confirmations. No deadline."""

        while True:
            status = await self.get_transaction_status(tx_id)
            if status.get("type") == "Confirmed" and status.get("chainConfirmations", 0) >= confirmations:
                return
            await asyncio.sleep(interval)
