"""Client and security resolution for raw trade rows."""

from __future__ import annotations

import logging
from typing import Optional

from settlement.errors import TradeRejectedError
from settlement.records import ClientRecord, RawTradeRow
from settlement.store import SettlementStore

logger = logging.getLogger(__name__)

MARGIN_ACCOUNT_TYPE = "Margin"
MARGIN_INELIGIBLE_INCOME_STATUSES = frozenset({"student", "homemaker", "retired"})


def _lookup_client(store: SettlementStore, bo_id: Optional[str], client_code: Optional[str]) -> Optional[ClientRecord]:
    if bo_id:
        client = store.find_client_by_bo_id(bo_id)
        if client is not None:
            return client
    if client_code:
        return store.find_client_by_code(client_code)
    return None


def resolve_client(store: SettlementStore, trade: RawTradeRow) -> ClientRecord:
    """Resolve by BO id then client code; create a pending-review placeholder otherwise."""
    client = _lookup_client(store, trade.bo_id, trade.client_code)
    if client is not None:
        return client

    placeholder_code = trade.client_code or f"UNKNOWN-{trade.bo_id or trade.id}"
    created = store.insert_placeholder_client(
        bo_id=trade.bo_id,
        client_code=placeholder_code,
        name=f"Placeholder - {trade.bo_id or trade.client_code or trade.id}",
    )
    if created is not None:
        logger.info(
            "Created placeholder client %s for raw trade %s (bo_id=%s client_code=%s).",
            created.client_id,
            trade.id,
            trade.bo_id,
            placeholder_code,
        )
        return created

    # A concurrent writer created the client first.
    client = _lookup_client(store, trade.bo_id, placeholder_code)
    if client is None:
        raise TradeRejectedError(
            f"Cannot resolve client for bo_id={trade.bo_id}, client_code={trade.client_code}"
        )
    return client


def check_margin_eligibility(client: ClientRecord) -> None:
    """Reject margin-financed trades for ineligible income classes or incomplete KYC."""
    if client.account_type != MARGIN_ACCOUNT_TYPE:
        return
    income_status = (client.income_status or "").lower()
    if income_status in MARGIN_INELIGIBLE_INCOME_STATUSES:
        raise TradeRejectedError(
            f'Margin trade rejected: client income_status="{client.income_status}" '
            "is not eligible for margin trading"
        )
    if client.kyc_completed is False:
        raise TradeRejectedError("Margin trade rejected: client KYC is not completed")


def resolve_security(store: SettlementStore, trade: RawTradeRow) -> str:
    """Return the ISIN to post against, creating a placeholder security when unknown."""
    if trade.security_code:
        isin = store.find_security_isin_by_code(trade.security_code)
        if isin is not None:
            return isin
    if trade.isin and store.security_exists(trade.isin):
        return trade.isin

    isin = trade.isin or f"PLACEHOLDER-{trade.security_code or trade.id}"
    code = trade.security_code or isin
    inserted = store.insert_placeholder_security(
        isin=isin,
        security_code=code,
        asset_class=trade.asset_class,
        category=trade.category,
        board=trade.board,
    )
    if inserted:
        logger.info("Created placeholder security %s (%s) for raw trade %s.", isin, code, trade.id)
        return isin

    existing = store.find_security_isin_by_code(code)
    if existing is not None:
        return existing
    if store.security_exists(isin):
        return isin
    raise TradeRejectedError(f"Cannot resolve security for isin={trade.isin}, security_code={trade.security_code}")
