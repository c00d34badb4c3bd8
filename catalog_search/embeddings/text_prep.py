"""Text preparation for embedding generation and lexical matching."""

import html
import re
import unicodedata

# Placeholder text the upstream system appends to unfinished product names
PLACEHOLDER_PATTERNS = [re.compile(r"\s*-?\s*Цаг бүртгэх\s*", re.IGNORECASE)]

# Strength tokens such as 500мг, 400 mg or 1.5г
DOSAGE_PATTERN = re.compile(
    r"\d+(?:[.,]\d+)?\s*(?:мкг|мг|мл|г|mcg|mg|ml|g)(?![a-zа-я])", re.IGNORECASE
)


def clean_html(text: str | None) -> str:
    """Clean HTML entities and normalize whitespace."""
    if not text:
        return ""

    # Decode HTML entities (&amp; -> &, &lt; -> <, etc.)
    text = html.unescape(text)

    # Remove any remaining HTML tags
    text = re.sub(r"<[^>]+>", " ", text)

    # Normalize whitespace
    text = re.sub(r"\s+", " ", text).strip()

    return text


def clean_product_name(name: str | None) -> str:
    """Strip placeholder noise, stray dashes and repeated whitespace."""
    if not name:
        return ""
    for pattern in PLACEHOLDER_PATTERNS:
        name = pattern.sub(" ", name)
    name = re.sub(r"\s+", " ", name)
    name = re.sub(r"^\s*-\s*|\s*-\s*$", "", name)
    return name.strip()


def normalize_query(query: str | None) -> str:
    """Normalize a user query for matching and cache keys.

    NFKC-normalizes, trims, collapses whitespace and case-folds. Cyrillic and
    Latin both case-fold correctly, so no script detection is needed.
    """
    if not query:
        return ""
    text = unicodedata.normalize("NFKC", query)
    text = re.sub(r"\s+", " ", text).strip()
    return text.casefold()


def extract_dosage(name: str | None) -> str | None:
    """Pull the first strength token (e.g. "500мг", "400mg", "2мл") from a name."""
    if not name:
        return None
    match = DOSAGE_PATTERN.search(name)
    return match.group(0) if match else None


def prepare_embedding_text(
    name: str | None,
    generic_name: str | None = None,
    internal_name: str | None = None,
    english_name: str | None = None,
    ingredients: str | None = None,
    manufacturer: str | None = None,
    description: str | None = None,
    category: str | None = None,
    max_length: int = 8000,
) -> str:
    """
    Combine product text fields for embedding generation.

    text-embedding-3-small accepts 8191 tokens; 8000 characters keeps well
    under that for both Latin and Cyrillic text.
    """
    parts = []

    if name:
        parts.append(clean_product_name(name))

    if generic_name:
        parts.append(clean_product_name(generic_name))

    for alias in (internal_name, english_name):
        if alias:
            parts.append(clean_product_name(alias))

    if manufacturer:
        parts.append(f"Manufacturer: {manufacturer}")

    if category:
        parts.append(f"Category: {category}")

    if ingredients:
        parts.append(f"Ingredients: {clean_html(ingredients)}")

    if description:
        desc = clean_html(description)
        # Limit long description to avoid token overflow
        if len(desc) > 2000:
            desc = desc[:2000] + "..."
        parts.append(desc)

    text = ". ".join(part for part in parts if part)

    # Final length check
    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def prepare_embedding_text_from_record(product, max_length: int = 8000) -> str:
    """Convenience wrapper for ProductRecord-like objects."""
    return prepare_embedding_text(
        name=product.name,
        generic_name=product.generic_name,
        internal_name=product.internal_name,
        english_name=product.english_name,
        ingredients=product.ingredients,
        manufacturer=product.manufacturer,
        description=product.description,
        category=product.category,
        max_length=max_length,
    )
