from __future__ import annotations

from urllib.parse import urlparse


UNKNOWN_SUPPLIER = "Unknown Supplier"

SUPPLIER_DOMAINS: dict[str, str] = {
    "amazon.com": "Amazon",
    "a.co": "Amazon",
    "amzn.to": "Amazon",
    "ebay.com": "eBay",
    "walmart.com": "Walmart",
    "target.com": "Target",
    "homedepot.com": "Home Depot",
    "lowes.com": "Lowe's",
    "grainger.com": "Grainger",
    "mcmaster.com": "McMaster-Carr",
    "uline.com": "Uline",
    "alibaba.com": "Alibaba",
    "aliexpress.com": "AliExpress",
    "newegg.com": "Newegg",
    "bestbuy.com": "Best Buy",
}


def supplier_name_from_url(url: str | None) -> str:
    if not url:
        return UNKNOWN_SUPPLIER

    hostname = (urlparse(url).hostname or "").lower()
    if not hostname:
        return url
    if hostname.startswith("www."):
        hostname = hostname[4:]

    for domain, name in SUPPLIER_DOMAINS.items():
        if hostname == domain or hostname.endswith("." + domain):
            return name

    parts = hostname.split(".")
    if len(parts) >= 2:
        return parts[-2].capitalize()
    return hostname


def is_same_supplier(first_url: str | None, second_url: str | None) -> bool:
    if not first_url or not second_url:
        return False
    return (
        supplier_name_from_url(first_url).lower()
        == supplier_name_from_url(second_url).lower()
    )
