"""
SKU/variant matching between Shopify and the local catalog.

Direct match on product_variants.sku_variant always wins. The heuristic path
(size/color extracted from option values or titles) is only used when a Shopify
variant has no usable SKU, and when repairing placeholder SKUs.
"""
import logging
import re
import unicodedata
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import Product, ProductVariant

logger = logging.getLogger(__name__)

SIZE_PATTERNS = [
    re.compile(r"\b(XXXL|XXL|XL|XS|S|M|L)\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})\s*\(.*?\)"),
    re.compile(r"\b(Newborn|NB|0-3|3-6|6-9|9-12|12-18|18-24)\b", re.IGNORECASE),
    re.compile(r"\b(\d+\s*a\s*\d+\s*(?:meses?|años?))", re.IGNORECASE),
]

COLOR_PATTERNS = [
    re.compile(r"\b(rojo|azul|verde|amarillo|negro|blanco|gris|rosa|morado|naranja|café|marrón|beige|crema)\b", re.IGNORECASE),
    re.compile(r"\b(red|blue|green|yellow|black|white|gray|grey|pink|purple|orange|brown|cream)\b", re.IGNORECASE),
    re.compile(r"\b(leopardo|estrella|star|dino|rex)\b", re.IGNORECASE),
]

_ARTIFICIAL_STRUCTURED = re.compile(r"^[A-Z]+-[A-Z]-\d+-.+-V\d+-")
_VERSION_TOKEN = re.compile(r"^V\d+$")
_LONG_DIGITS = re.compile(r"\d{10,}")
_BARCODE_DIGITS = re.compile(r"\d{13}")
_NUMERIC_ID = re.compile(r"^ID-\d+$")


def is_artificial_sku(sku: Optional[str]) -> bool:
    """
    True for SKUs generated as placeholders rather than real merchant SKUs:
    SHOPIFY-<id>, ID-<id>, 13-digit runs (Shopify ids / barcodes), the old
    generator format PREFIX-X-<n>-...-V<n>-..., and long hyphenated codes
    carrying a V<n> token or a 10+ digit run.
    The prefixes match in any case; the structural patterns are case-sensitive.
    """
    if not sku:
        return False
    value = sku.strip()
    prefix = value.upper()
    if prefix.startswith("SHOPIFY-") or _NUMERIC_ID.match(prefix):
        return True
    if _BARCODE_DIGITS.search(value):
        return True
    if _ARTIFICIAL_STRUCTURED.match(value):
        return True
    if value.count("-") >= 4:
        tokens = value.split("-")
        if any(_VERSION_TOKEN.match(t) for t in tokens) or _LONG_DIGITS.search(value):
            return True
    return False


def normalize_title(text: Optional[str]) -> str:
    """Lower-case, accents stripped, whitespace collapsed."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", stripped).strip().lower()


def extract_size_from_title(title: Optional[str]) -> Optional[str]:
    if not title:
        return None
    for pattern in SIZE_PATTERNS:
        match = pattern.search(title)
        if match:
            size = match.group(1).strip()
            return size.upper() if size.isalpha() and len(size) <= 4 else size
    return None


def extract_color_from_title(title: Optional[str]) -> Optional[str]:
    if not title:
        return None
    for pattern in COLOR_PATTERNS:
        match = pattern.search(title)
        if match:
            return match.group(1).capitalize()
    return None


def shopify_variant_attributes(variant: dict) -> tuple[Optional[str], Optional[str]]:
    """(size, color) of a Shopify variant: option1/option2 first, title extraction as fallback."""
    title = variant.get("title") or ""
    size = (variant.get("option1") or "").strip() or None
    color = (variant.get("option2") or "").strip() or None
    if size and size.lower() == "default title":
        size = None
    return size or extract_size_from_title(title), color or extract_color_from_title(title)


def _key(size: Optional[str], color: Optional[str]) -> str:
    return f"{normalize_title(size)}|{normalize_title(color)}"


def build_candidate_keys(size: Optional[str], color: Optional[str]) -> list[str]:
    """Lookup keys from most to least specific."""
    keys = [_key(size, color)]
    if size and color:
        keys.extend([_key(size, None), _key(None, color)])
    return [k for k in keys if k != "|"]


def match_variant(candidates: Iterable[Any], size: Optional[str], color: Optional[str], describe=None) -> Optional[Any]:
    """
    Pick the candidate whose size/color fit best. `describe(candidate)` returns
    (size, color, text); defaults to ProductVariant attributes.
    Exact key match first, then token containment in the candidate's text.
    """
    describe = describe or (lambda v: (v.size, v.color, v.sku_variant))
    pool = list(candidates)
    if not pool or not (size or color):
        return None

    by_key: dict[str, list] = {}
    for cand in pool:
        c_size, c_color, _ = describe(cand)
        by_key.setdefault(_key(c_size, c_color), []).append(cand)

    for key in build_candidate_keys(size, color):
        found = by_key.get(key)
        if found:
            if len(found) > 1:
                logger.info("Ambiguous variant match for key %s: %s candidates, using first", key, len(found))
            return found[0]

    size_n, color_n = normalize_title(size), normalize_title(color)
    contained = []
    for cand in pool:
        c_size, c_color, text = describe(cand)
        haystack = " ".join(normalize_title(x) for x in (c_size, c_color, text) if x)
        tokens = set(re.split(r"[\s\-_/|]+", haystack))
        if (not size_n or size_n in tokens) and (not color_n or color_n in haystack):
            contained.append(cand)
    if len(contained) > 1:
        logger.info("Ambiguous containment match for size=%s color=%s: %s candidates", size, color, len(contained))
    return contained[0] if contained else None


def find_variant_by_sku(db: Session, sku: Optional[str], organization_id: Optional[str] = None) -> Optional[ProductVariant]:
    """Exact match on sku_variant. Never guesses."""
    if not sku or not sku.strip():
        return None
    query = db.query(ProductVariant).filter(ProductVariant.sku_variant == sku.strip())
    if organization_id:
        query = query.join(Product, Product.id == ProductVariant.product_id).filter(
            Product.organization_id == organization_id
        )
    return query.first()


def find_product_by_title(db: Session, title: str, organization_id: Optional[str] = None) -> Optional[Product]:
    """Case-insensitive name match, then accent-insensitive comparison."""
    if not title:
        return None
    query = db.query(Product)
    if organization_id:
        query = query.filter(Product.organization_id == organization_id)
    product = query.filter(func.lower(Product.name) == title.strip().lower()).first()
    if product:
        return product
    wanted = normalize_title(title)
    for candidate in query.all():
        if normalize_title(candidate.name) == wanted:
            return candidate
    return None


def _shopify_variant_describe(v: dict) -> tuple:
    size, color = shopify_variant_attributes(v)
    return size, color, v.get("title") or ""


def correct_artificial_skus(db: Session, shopify_products: list[dict], organization_id: Optional[str] = None) -> dict:
    """
    Replace placeholder SKUs on local products/variants with the real Shopify SKUs.
    Products are paired by normalized title; variants by position when counts agree
    and there is a single variant, otherwise by size/color. Only artificial SKUs are overwritten.
    """
    shopify_by_title = {normalize_title(p.get("title")): p for p in shopify_products if p.get("title")}
    used_skus = {
        sku for (sku,) in db.query(ProductVariant.sku_variant).all() if sku and not is_artificial_sku(sku)
    }

    query = db.query(Product)
    if organization_id:
        query = query.filter(Product.organization_id == organization_id)

    summary = {"products_checked": 0, "variants_corrected": 0, "products_corrected": 0, "unmatched": [], "details": []}
    for product in query.all():
        artificial_variants = [v for v in product.variants if is_artificial_sku(v.sku_variant)]
        product_artificial = is_artificial_sku(product.sku)
        if not artificial_variants and not product_artificial:
            continue
        summary["products_checked"] += 1
        shopify_product = shopify_by_title.get(normalize_title(product.name))
        if not shopify_product:
            summary["unmatched"].append(product.name)
            continue
        sp_variants = [v for v in shopify_product.get("variants") or [] if (v.get("sku") or "").strip()]

        if product_artificial and sp_variants:
            product.sku = sp_variants[0]["sku"].strip()
            summary["products_corrected"] += 1

        for local in artificial_variants:
            if len(sp_variants) == 1 and len(product.variants) == 1:
                target = sp_variants[0]
            else:
                target = match_variant(sp_variants, local.size, local.color, describe=_shopify_variant_describe)
            if not target:
                continue
            new_sku = target["sku"].strip()
            if is_artificial_sku(new_sku) or new_sku in used_skus:
                continue
            summary["details"].append({"product": product.name, "old_sku": local.sku_variant, "new_sku": new_sku})
            local.sku_variant = new_sku
            used_skus.add(new_sku)
            summary["variants_corrected"] += 1

    db.flush()
    logger.info(
        "SKU correction: checked=%s variants_corrected=%s unmatched=%s",
        summary["products_checked"], summary["variants_corrected"], len(summary["unmatched"]),
    )
    return summary
