"""
Trip_Sense.services.deals_service

Promotions + loyalty source for the trip engine.

- Reads the local store_deals / loyalty_terms tables
- Optionally merges a remote JSON deal feed (requests, bounded timeout)
- Caches raw feed JSON using config_store.cache_get/cache_set
- Groups deals by store for planning

A remote failure is logged and contributes no deals; the local table is
always returned.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from Trip_Sense.config_store import cache_get, cache_set, load_config
from Trip_Sense.data.repositories import deals_repo, loyalty_repo
from Trip_Sense.domain.models import Deal, DealMechanism, LoyaltyTerms
from Trip_Sense.services.multibuy_deal_service import MultiBuyDealService

logger = logging.getLogger(__name__)


# ---- Grouping helpers -------------------------------------------------------


def group_deals_by_store(deals: List[Deal]) -> Dict[Optional[int], List[Deal]]:
    """
    Group deals by store id. Store-agnostic deals land under None.
    """
    by_store: Dict[Optional[int], List[Deal]] = {}
    for d in deals:
        by_store.setdefault(d.store_id, []).append(d)
    return by_store


# ---- Remote feed parsing ----------------------------------------------------


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _as_cents(value: Any) -> Optional[int]:
    """
    Feed prices may be cents (int) or dollars (float / "3.99").
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(round(float(value) * 100))
    except (TypeError, ValueError):
        return None


def deal_from_dict(
    data: Dict[str, Any],
    fallback_id: int,
    store_id: Optional[int] = None,
    parser: Optional[MultiBuyDealService] = None,
) -> Optional[Deal]:
    """
    Convert one feed record into a Deal, or None if it is malformed.

    Records either carry explicit fields (mechanism, sale_price, ...) or a
    free-text "promotion" string ("2/$5", "BOGO", "20% off").
    """
    if not isinstance(data, dict):
        return None
    name = str(data.get("product_name") or data.get("name") or "").strip()
    mech_raw = data.get("mechanism")

    deal_id = data.get("id")
    if not isinstance(deal_id, int) or isinstance(deal_id, bool):
        deal_id = fallback_id

    rec_store = data.get("store_id", store_id)
    if rec_store is not None:
        try:
            rec_store = int(rec_store)
        except (TypeError, ValueError):
            return None

    regular = _as_cents(data.get("regular_price"))

    if mech_raw is None and data.get("promotion"):
        parsed = (parser or MultiBuyDealService()).parse_promotion(
            str(data["promotion"]),
            regular,
            product_name=name,
            deal_id=deal_id,
            store_id=rec_store,
            category=data.get("category"),
            start_date=_parse_date(data.get("start_date")),
            end_date=_parse_date(data.get("end_date")),
        )
        if parsed is None or (not name and not parsed.is_storewide):
            return None
        return parsed

    try:
        mechanism = DealMechanism(mech_raw or DealMechanism.SALE_PRICE.value)
    except ValueError:
        return None
    if not name and mechanism != DealMechanism.SPEND_THRESHOLD_PERCENT:
        return None

    percent = data.get("percent_off")
    buy_qty = data.get("buy_quantity")
    try:
        percent = float(percent) if percent is not None else None
        buy_qty = int(buy_qty) if buy_qty is not None else None
    except (TypeError, ValueError):
        return None

    return Deal(
        id=deal_id,
        product_name=name,
        mechanism=mechanism,
        store_id=rec_store,
        category=data.get("category"),
        sale_price=_as_cents(data.get("sale_price")),
        regular_price=regular,
        percent_off=percent,
        spend_threshold=_as_cents(data.get("spend_threshold")),
        buy_quantity=buy_qty,
        start_date=_parse_date(data.get("start_date")),
        end_date=_parse_date(data.get("end_date")),
        description=data.get("description"),
    )


def _http_get_json(url: str, params: Dict[str, Any], timeout: float = 10) -> Any:
    """
    Simple HTTP GET wrapper returning JSON. Raises on network/JSON errors.
    """
    resp = requests.get(url, params=params, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


# ---- Service ----------------------------------------------------------------


class DealsService:
    """
    Deal + loyalty lookups for one retailer at a time.
    """

    def __init__(
        self,
        feed_url: Optional[str] = None,
        cache_days: float = 1,
        timeout: float = 10,
        parser: Optional[MultiBuyDealService] = None,
    ) -> None:
        self.feed_url = feed_url or ""
        self.cache_days = cache_days
        self.timeout = timeout
        self.parser = parser or MultiBuyDealService()

    @classmethod
    def from_config(cls) -> "DealsService":
        cfg = load_config()
        return cls(feed_url=cfg.deals_feed_url, cache_days=cfg.deals_cache_days)

    def get_deals(self, store_id: Optional[int], on_date: Optional[date] = None) -> List[Deal]:
        """
        Local deals for the store (plus store-agnostic ones) merged with the
        remote feed. Remote records whose id clashes with a local deal are
        dropped.
        """
        d = on_date or date.today()
        local = deals_repo.list_deals_for_store(store_id, on_date=d)
        remote = [x for x in self.fetch_remote_deals(store_id) if x.is_active(d)]

        seen = {x.id for x in local}
        merged = list(local)
        for x in remote:
            if x.id in seen:
                continue
            seen.add(x.id)
            merged.append(x)
        return merged

    def get_loyalty_terms(self, store_id: Optional[int]) -> Optional[LoyaltyTerms]:
        if store_id is None:
            return None
        return loyalty_repo.get_loyalty_terms(store_id)

    def fetch_remote_deals(self, store_id: Optional[int]) -> List[Deal]:
        if not self.feed_url:
            return []

        cache_key = f"deals:{store_id if store_id is not None else 'all'}"
        records = cache_get(cache_key, max_age_days=self.cache_days)
        if records is None:
            params: Dict[str, Any] = {}
            if store_id is not None:
                params["store_id"] = store_id
            try:
                raw = _http_get_json(self.feed_url, params=params, timeout=self.timeout)
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Deal feed unavailable for store %s: %s", store_id, exc)
                return []

            records = raw.get("deals") if isinstance(raw, dict) else raw
            if not isinstance(records, list):
                logger.warning("Deal feed returned unexpected payload for store %s", store_id)
                return []
            try:
                cache_set(cache_key, records)
            except (OSError, TypeError) as exc:
                logger.debug("Could not cache deal feed: %s", exc)

        deals: List[Deal] = []
        for idx, rec in enumerate(records):
            deal = deal_from_dict(rec, fallback_id=-(idx + 1), store_id=store_id, parser=self.parser)
            if deal is None:
                logger.debug("Skipping malformed feed record %r", rec)
                continue
            deals.append(deal)
        return deals
