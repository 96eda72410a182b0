import uuid
import logging
from typing import Any, Dict, Literal, Optional

import httpx

from miturn.core.config import settings
from miturn.core.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

class TransferDeclined(CollaboratorError):
    pass

class TransferService:
    """
    Client for the banking provider's transfer API.

    A transfer is authorized first and then created, both keyed by our
    transaction id so that a repeated call cannot move money twice.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BANKING_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.BANKING_API_KEY
        self.transport = transport

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, client: httpx.AsyncClient, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.get_headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Banking API call {path} failed: {e}")
            raise CollaboratorError(f"Banking API call failed: {e}", path=path) from e
        return response.json()

    async def create_transfer(
        self,
        *,
        transaction_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: int,
        direction: Literal["debit", "credit"],
        description: str,
    ) -> str:
        """
        Move ``amount`` cents from (debit) or to (credit) the user's linked account.

        Returns the provider's transfer id.
        """
        common = {
            "idempotency_key": str(transaction_id),
            "user_id": str(user_id),
            "type": direction,
            "network": "ach",
            "amount": f"{amount / 100:.2f}",
        }

        async with httpx.AsyncClient(transport=self.transport, timeout=settings.BANKING_API_TIMEOUT) as client:
            auth_data = await self._post(client, "/transfer/authorization/create", common)
            authorization = auth_data.get("authorization") or {}
            if authorization.get("decision") != "approved":
                rationale = authorization.get("decision_rationale") or "no rationale given"
                logger.warning(f"Transfer for transaction {transaction_id} declined: {rationale}")
                raise TransferDeclined(f"Transfer authorization declined: {rationale}", transaction_id=transaction_id)

            transfer_data = await self._post(
                client,
                "/transfer/create",
                {**common, "authorization_id": authorization.get("id"), "description": description[:15]},
            )

        transfer = transfer_data.get("transfer") or {}
        if not transfer.get("id"):
            raise CollaboratorError("Banking API returned no transfer id", transaction_id=transaction_id)

        logger.info(f"Transfer {transfer['id']} created for transaction {transaction_id}")
        return transfer["id"]
