"""
Order number resolution.

Callers pass order identifiers in whatever shape they have: URL-encoded,
form-encoded, with or without the "Order #" prefix. This module maps them
to the stored order number.
"""

import re
from typing import List, Optional
from urllib.parse import unquote

from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.core.exceptions import OrderNotFoundError
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.repository import OrderRepository
from woo_ledger.utils.parsers import normalize_order_number

logger = setup_logger(__name__)

_DIGITS = re.compile(r"\d+")


def candidate_order_numbers(identifier: str) -> List[str]:
    """
    Exact-match candidates for an identifier, in priority order, deduplicated.

    exact, URL-decoded, manual %20/%23 substitution, "+" as space, canonical.
    """
    candidates = [identifier, unquote(identifier)]
    candidates.append(identifier.replace("%20", " ").replace("%23", "#"))
    candidates.append(identifier.replace("+", " "))

    canonical = normalize_order_number(unquote(identifier.replace("+", " ")))
    if canonical:
        candidates.append(canonical)

    seen = set()
    unique = []
    for candidate in candidates:
        candidate = candidate.strip()
        if candidate and candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique


async def find_order_number(session: AsyncSession, identifier: str) -> Optional[str]:
    """Resolve an identifier to a stored order number, or None."""
    if not identifier or not identifier.strip():
        return None

    orders = OrderRepository(session)

    for candidate in candidate_order_numbers(identifier):
        if await orders.get(candidate) is not None:
            if candidate != identifier:
                logger.debug(f"Resolved order {identifier!r} as {candidate!r}")
            return candidate

    match = _DIGITS.search(unquote(identifier))
    if not match:
        return None

    digits = match.group(0)
    matches = await orders.search_order_numbers(digits, limit=5)
    if not matches:
        return None

    # Prefer an order whose number is exactly these digits over a longer one containing them
    for order_number in matches:
        if _DIGITS.findall(order_number) == [digits]:
            logger.debug(f"Resolved order {identifier!r} by number search as {order_number!r}")
            return order_number
    for order_number in matches:
        if digits in order_number:
            return order_number
    return matches[0]


async def resolve_order_number(session: AsyncSession, identifier: str) -> str:
    """Resolve an identifier or raise OrderNotFoundError."""
    order_number = await find_order_number(session, identifier)
    if order_number is None:
        raise OrderNotFoundError(identifier)
    return order_number
