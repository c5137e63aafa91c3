# app/payouts/executor.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from app.payouts.errors import PayoutNotFound
from app.payouts.model import Recipient, TransferHandle
from app.payouts.store import PayoutStore
from app.providers.base import RailProvider
from services.metrics import increment_provider_call

logger = logging.getLogger("payouts.executor")


class TransferExecutor:
    """
    One provider call per invocation, no retries of its own.

    Before calling out it checks the payout row: a payout that already carries a
    provider transfer id gets that handle back, so a re-invocation after an
    ambiguous failure cannot move money twice.
    """

    def __init__(self, store: PayoutStore, provider_for: Callable[[str], RailProvider]):
        self.store = store
        self.provider_for = provider_for

    def create_transfer(
        self,
        payout_id: str,
        recipient: Recipient,
        amount: Decimal,
        currency: str,
    ) -> TransferHandle:
        payout = self.store.get(payout_id, include_deleted=True)
        if payout is None:
            raise PayoutNotFound(f"Payout {payout_id} not found", payout_id=payout_id)

        if payout.provider_transfer_id:
            logger.info(
                "transfer_exists payout_id=%s provider_transfer_id=%s",
                payout_id,
                payout.provider_transfer_id,
            )
            return TransferHandle(
                provider_transfer_id=payout.provider_transfer_id,
                fee=payout.fee,
                initial_status=payout.status,
            )

        provider = self.provider_for(recipient.rail)
        try:
            handle = provider.create_transfer(
                provider_recipient_id=recipient.provider_recipient_id,
                amount=amount,
                currency=currency,
                reference=payout.reference,
            )
        except Exception:
            increment_provider_call(recipient.rail, "create_transfer", "error")
            raise
        increment_provider_call(recipient.rail, "create_transfer", "ok")

        if not self.store.attach_transfer(
            payout_id, provider_transfer_id=handle.provider_transfer_id, fee=handle.fee
        ):
            # someone attached first; theirs is authoritative
            current = self.store.get(payout_id, include_deleted=True)
            if current is not None and current.provider_transfer_id != handle.provider_transfer_id:
                logger.error(
                    "transfer_attach_conflict payout_id=%s kept=%s returned=%s",
                    payout_id,
                    current.provider_transfer_id,
                    handle.provider_transfer_id,
                )
                return TransferHandle(
                    provider_transfer_id=current.provider_transfer_id,
                    fee=current.fee,
                    initial_status=current.status,
                )

        logger.info(
            "transfer_created payout_id=%s rail=%s provider_transfer_id=%s initial_status=%s",
            payout_id,
            recipient.rail,
            handle.provider_transfer_id,
            handle.initial_status,
        )
        return handle

    def fund_transfer(self, payout_id: str, rail: str, provider_transfer_id: str) -> None:
        """
        Second provider call for rails that create transfers unfunded. Only
        called after the transfer id is on the row, so a failure here never
        leads to a second transfer.
        """
        provider = self.provider_for(rail)
        try:
            provider.fund_transfer(provider_transfer_id)
        except Exception:
            increment_provider_call(rail, "fund_transfer", "error")
            raise
        increment_provider_call(rail, "fund_transfer", "ok")
        logger.info("transfer_funded payout_id=%s rail=%s provider_transfer_id=%s", payout_id, rail, provider_transfer_id)
