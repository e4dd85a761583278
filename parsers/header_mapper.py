"""
Header detection for supplier and internal price lists.

Price lists arrive with arbitrary layouts: the header row may not be the
first row and columns are named freely ("Descripción", "PF Mayor. 1",
"Precio Final c/IVA"...). This module proposes which raw header holds
each canonical field so the user only has to confirm or correct it.

Matching runs in three tiers, strongest first:
    1. exact match on the normalized label
    2. substring containment
    3. rapidfuzz similarity strictly above a fixed threshold
Within a tier fields are tried in FIELD_ORDER and synonyms in priority
order; the first synonym that hits wins. A column claimed by one field is
never offered to another, so an exact hit always beats a weaker one.
"""

from typing import Any, Optional, Sequence

import structlog
from rapidfuzz import fuzz, process

from config import settings
from models.catalog import CatalogSide
from models.ingest import CanonicalField, HeaderMapping
from utils.text_utils import header_key

logger = structlog.get_logger(__name__)


# Shared synonyms, highest priority first. Side-specific column names
# (exports of our own tables) are spliced in by synonyms_for().
NAME_SYNONYMS = [
    "producto", "descripción", "descripcion", "detalle", "articulo",
    "artículo", "nombre", "item",
]
CODE_SYNONYMS = [
    "codigo", "código", "cod", "ref", "referencia", "sku",
]
PRICE_SYNONYMS = [
    "precio final", "precio", "importe", "total", "pvp", "unit price",
    "precio_total", "preciofinal", "preciofinalconiva", "pf mayor",
    "pf mayor. 1", "pf mayor 1", "pn mayor", "pn mayor. 1",
]

EXACT = "exact"
CONTAINS = "contains"
FUZZY = "fuzzy"
MATCH_TIERS = (EXACT, CONTAINS, FUZZY)

# Price synonyms are the most specific, the generic name words the least
FIELD_ORDER = (CanonicalField.PRICE, CanonicalField.CODE, CanonicalField.NAME)

SIDE_ALIASES = {
    CatalogSide.EXTERNAL: {
        CanonicalField.NAME: ["nom_externo"],
        CanonicalField.CODE: ["cod_externo"],
    },
    CatalogSide.INTERNAL: {
        CanonicalField.NAME: ["nom_interno"],
        CanonicalField.CODE: ["cod_interno"],
    },
}


def synonyms_for(field: CanonicalField, side: CatalogSide) -> list[str]:
    """
    Synonym list for one field on one catalog side, in priority order.

    Side aliases come right after the shared list, before the weakest
    generic fallbacks ("nom", "id").
    """
    aliases = SIDE_ALIASES[side].get(field, [])
    if field is CanonicalField.NAME:
        return NAME_SYNONYMS + aliases + ["nom"]
    if field is CanonicalField.CODE:
        return CODE_SYNONYMS + aliases + ["id"]
    return list(PRICE_SYNONYMS)


def _pick(
    labels: list[str],
    raws: list[str],
    synonyms: list[str],
    tier: str,
    threshold: float,
    taken: set[str],
) -> Optional[int]:
    """Index of the column the first hitting synonym selects at this tier, else None."""
    # Columns already claimed by another field are not offered again
    free = [i for i, label in enumerate(labels) if label and raws[i] not in taken]

    for synonym in synonyms:
        needle = synonym.lower()

        if tier == EXACT:
            for i in free:
                if labels[i] == needle:
                    return i

        elif tier == CONTAINS:
            for i in free:
                if needle in labels[i]:
                    return i

        elif free:
            best = process.extractOne(
                needle,
                {i: labels[i] for i in free},
                scorer=fuzz.ratio,
                score_cutoff=threshold,
            )
            # Strictly above the threshold; a tie with it is not a match
            if best is not None and best[1] > threshold:
                _, score, index = best
                logger.debug(
                    "header_fuzzy_match",
                    synonym=synonym,
                    header=labels[index],
                    score=round(score, 1),
                )
                return index

    return None


def _raw(cell: Any) -> str:
    """Raw header as the row normalizer sees it."""
    return "" if cell is None else str(cell)


def detect_mapping(
    headers_raw: Sequence[Any],
    side: CatalogSide,
    threshold: Optional[float] = None,
) -> HeaderMapping:
    """
    Propose a raw header for each canonical field.

    Args:
        headers_raw: Cells of the candidate header row, as read from the sheet
        side: Catalog the sheet is imported into (selects side aliases)
        threshold: Fuzzy score (0-100) a header must exceed; defaults to settings

    Returns:
        HeaderMapping with raw header values, None where unmapped.
        No raw header is proposed for two fields.
    """
    if threshold is None:
        threshold = settings.header_match_threshold

    labels = [header_key(h) for h in headers_raw]
    raws = [_raw(h) for h in headers_raw]

    if not any(labels):
        logger.info("header_row_empty", side=side.value)
        return HeaderMapping()

    picked: dict[CanonicalField, str] = {}
    for tier in MATCH_TIERS:
        for field in FIELD_ORDER:
            if field in picked:
                continue
            index = _pick(
                labels,
                raws,
                synonyms_for(field, side),
                tier,
                threshold,
                taken=set(picked.values()),
            )
            if index is not None:
                picked[field] = raws[index]

    mapping = HeaderMapping(**{field.value: raw for field, raw in picked.items()})

    logger.info(
        "header_mapping_detected",
        side=side.value,
        name=mapping.name,
        code=mapping.code,
        price=mapping.price,
    )

    return mapping


def suggest_header_row(matrix: Sequence[Sequence[Any]], max_rows: Optional[int] = None) -> int:
    """
    Guess the 1-based header row.

    Picks the first of the leading rows where more than half of the cells
    are non-empty. Falls back to row 1.
    """
    if max_rows is None:
        max_rows = settings.header_scan_rows

    width = max((len(r) for r in matrix[:max_rows]), default=0)
    if width == 0:
        return 1

    for index, row in enumerate(matrix[:max_rows]):
        filled = sum(1 for cell in row if header_key(cell))
        if filled / width > 0.5:
            return index + 1

    return 1
