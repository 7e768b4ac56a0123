from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

from Trip_Sense.domain.models import Deal, DealMechanism

logger = logging.getLogger(__name__)


_WORD_NUMBERS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5}


@dataclass(frozen=True)
class ParsedPromotion:
    mechanism: DealMechanism
    sale_price: Optional[int] = None       # cents per unit
    percent_off: Optional[float] = None
    spend_threshold: Optional[int] = None  # cents
    buy_quantity: Optional[int] = None
    note: str = ""


class MultiBuyDealService:
    """
    Normalize flyer promotion text into a Deal mechanism.

    Handles (v1):
      - "spend $50 save 10%", "spend 100 get 15% off"   -> SPEND_THRESHOLD_PERCENT
      - "BOGO", "buy 1 get 1", "buy one get one free"   -> BUY_N_DISCOUNT (1, 100%)
      - "buy 2 get 1", "buy 1 get 1 50% off"            -> BUY_N_DISCOUNT
      - "2/$5", "2 / $5.00", "3 for 10"                 -> SALE_PRICE (effective unit price)
      - "2 @ 4.00"                                      -> SALE_PRICE 4.00 each
      - "20% off"                                       -> PERCENT_OFF
      - "save $1.50" (needs the regular price)          -> SALE_PRICE
      - "$3.99", "now 3.99"                             -> SALE_PRICE

    Patterns are tried in that order; the first hit wins.
    """

    _num = r"(\d+(?:\.\d+)?)"

    _re_spend = re.compile(
        r"\bspend\s*\$?\s*" + _num + r"\s*(?:,|and|&)?\s*(?:save|get)\s*" + _num + r"\s*%", re.IGNORECASE
    )
    _re_bogo = re.compile(r"\bbogo\b", re.IGNORECASE)
    _re_buy_get = re.compile(
        r"\bbuy\s*(\d+|one|two|three|four|five)\s*,?\s*get\s*(?:1|one)\b"
        r"(?:\s*(?:at\s*)?(\d+(?:\.\d+)?)\s*%\s*off|\s*(half)\s*(?:off|price))?",
        re.IGNORECASE,
    )
    _re_slash = re.compile(r"\b(\d+)\s*/\s*\$?\s*" + _num + r"\b")             # 2/$5
    _re_for = re.compile(r"\b(\d+)\s*for\s*\$?\s*" + _num + r"\b", re.IGNORECASE)  # 3 for 10
    _re_at = re.compile(r"\b(\d+)\s*@\s*\$?\s*" + _num + r"\b")                # 2 @ 4.00
    _re_percent = re.compile(_num + r"\s*%\s*off\b", re.IGNORECASE)
    _re_save = re.compile(r"\bsave\s*\$\s*" + _num + r"\b", re.IGNORECASE)
    _re_price = re.compile(r"\$\s*" + _num + r"\b|\b(\d+\.\d{2})\b")

    # -----------------------------
    # Public
    # -----------------------------

    def parse(self, text: str, regular_price: Optional[int] = None) -> Optional[ParsedPromotion]:
        """
        Parse promotion text. Returns None when nothing recognisable is found.
        regular_price is in cents and only needed for "save $X" wording.
        """
        t = " ".join((text or "").split())
        if not t:
            return None

        m = self._re_spend.search(t)
        if m:
            threshold = self._cents(m.group(1))
            pct = float(m.group(2))
            if 0 < pct <= 100:
                return ParsedPromotion(
                    DealMechanism.SPEND_THRESHOLD_PERCENT,
                    percent_off=pct,
                    spend_threshold=threshold,
                    note=f"spend(${threshold / 100:.2f}, {pct:g}%)",
                )

        if self._re_bogo.search(t):
            return ParsedPromotion(DealMechanism.BUY_N_DISCOUNT, percent_off=100.0, buy_quantity=1, note="bogo")

        m = self._re_buy_get.search(t)
        if m:
            n = self._count(m.group(1))
            if m.group(2):
                pct = float(m.group(2))
            elif m.group(3):
                pct = 50.0
            else:
                pct = 100.0
            if n > 0 and 0 < pct <= 100:
                return ParsedPromotion(
                    DealMechanism.BUY_N_DISCOUNT,
                    percent_off=pct,
                    buy_quantity=n,
                    note=f"buy({n}+1 at {pct:g}% off)",
                )

        bundle = self._parse_bundle_price(t)
        if bundle is not None:
            qty, total_cents = bundle
            return ParsedPromotion(
                DealMechanism.SALE_PRICE,
                sale_price=int(round(total_cents / qty)),
                note=f"bundle({qty}/${total_cents / 100:.2f})",
            )

        m = self._re_at.search(t)
        if m and int(m.group(1)) > 0:
            each = self._cents(m.group(2))
            if each > 0:
                return ParsedPromotion(DealMechanism.SALE_PRICE, sale_price=each, note=f"at({m.group(1)}@{each})")

        m = self._re_percent.search(t)
        if m:
            pct = float(m.group(1))
            if 0 < pct <= 100:
                return ParsedPromotion(DealMechanism.PERCENT_OFF, percent_off=pct, note=f"percent({pct:g})")

        m = self._re_save.search(t)
        if m:
            if regular_price is None:
                logger.debug("Promotion %r needs a regular price; skipping", t)
                return None
            off = self._cents(m.group(1))
            return ParsedPromotion(
                DealMechanism.SALE_PRICE,
                sale_price=max(0, int(regular_price) - off),
                note=f"save({off})",
            )

        m = self._re_price.search(t)
        if m:
            cents = self._cents(m.group(1) or m.group(2))
            if cents > 0:
                return ParsedPromotion(DealMechanism.SALE_PRICE, sale_price=cents, note="price")

        return None

    def parse_promotion(
        self,
        text: str,
        regular_price: Optional[int] = None,
        *,
        product_name: str = "",
        deal_id: int = 0,
        store_id: Optional[int] = None,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Optional[Deal]:
        """
        Parse promotion text straight into a Deal record.
        """
        parsed = self.parse(text, regular_price)
        if parsed is None:
            return None
        return Deal(
            id=deal_id,
            product_name=product_name,
            mechanism=parsed.mechanism,
            store_id=store_id,
            category=category,
            sale_price=parsed.sale_price,
            regular_price=regular_price,
            percent_off=parsed.percent_off,
            spend_threshold=parsed.spend_threshold,
            buy_quantity=parsed.buy_quantity,
            start_date=start_date,
            end_date=end_date,
            description=" ".join((text or "").split()),
        )

    # -----------------------------
    # Parsers
    # -----------------------------

    def _parse_bundle_price(self, text: str) -> Optional[Tuple[int, int]]:
        t = (text or "").lower()

        for rx in (self._re_slash, self._re_for):
            m = rx.search(t)
            if m:
                qty = int(m.group(1))
                total = self._cents(m.group(2))
                if qty > 0 and total > 0:
                    return qty, total

        return None

    # -----------------------------
    # Utils
    # -----------------------------

    @staticmethod
    def _cents(amount: str) -> int:
        return int(round(float(amount) * 100))

    @staticmethod
    def _count(token: str) -> int:
        tok = token.lower()
        if tok.isdigit():
            return int(tok)
        return _WORD_NUMBERS.get(tok, 0)
