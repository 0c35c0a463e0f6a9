"""Parsing helpers shared by the HTTP adapters."""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse


CURRENCY_SYMBOLS = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₩": "KRW",
}

TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "ref",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
}


class PriceNormalizer:
    """Price, rating and review-count parsing for scraped text."""

    @staticmethod
    def clean_price_string(raw: str) -> Optional[Decimal]:
        """Parse a price string and extract numeric value.

        Handles "$1,234.56", "USD 12" and plain numbers. Decimal commas
        ("1.234,56") are not supported.

        Returns:
            Decimal price value, or None if parsing fails
        """
        if raw is None:
            return None
        if isinstance(raw, (int, float, Decimal)):
            return Decimal(str(raw))

        cleaned = raw.strip()
        for symbol in CURRENCY_SYMBOLS:
            cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.replace(",", "")
        cleaned = re.sub(r"[^\d.]", "", cleaned)
        if not cleaned or cleaned.count(".") > 1:
            return None

        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None

    @staticmethod
    def extract_price_from_text(text: str) -> Optional[Decimal]:
        """Extract the first positive price-like number from text."""
        if not text:
            return None

        for match in re.findall(r"\d[\d,]*\.?\d*", text):
            price = PriceNormalizer.clean_price_string(match)
            if price and price > 0:
                return price
        return None

    @staticmethod
    def detect_currency(text: str, default: str = "USD") -> str:
        if not text:
            return default
        for symbol, code in CURRENCY_SYMBOLS.items():
            if symbol in text:
                return code
        match = re.search(r"\b([A-Z]{3})\b", text)
        return match.group(1) if match else default

    @staticmethod
    def parse_rating(text: str) -> Optional[float]:
        """Parse "4.5 out of 5 stars" style text; 10-point scales are halved."""
        if not text:
            return None
        match = re.search(r"(\d+(?:\.\d+)?)", text)
        if not match:
            return None
        rating = float(match.group(1))
        if rating > 5:
            rating = rating / 2
        return rating if rating > 0 else None

    @staticmethod
    def parse_review_count(text: str) -> Optional[int]:
        if not text:
            return None
        match = re.search(r"(\d[\d,]*)", text)
        if not match:
            return None
        count = int(match.group(1).replace(",", ""))
        return count if count > 0 else None


def normalize_url(url: str) -> str:
    """Normalize a locator URL by removing tracking parameters and fragments."""
    if not url:
        return url

    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)
    filtered_params = {
        k: v for k, v in query_params.items() if k not in TRACKING_PARAMS
    }
    new_query = urlencode(filtered_params, doseq=True)
    return urlunparse(
        (parsed.scheme, parsed.netloc.lower(), parsed.path, parsed.params, new_query, "")
    )
