"""
Counterpart grouping.

Buckets a flat stream of messages by the external party each one is with.
The counterpart of a message sent by a monitored account is the first
external recipient; otherwise it is the sender.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from src.crm_sync.models import NormalizedMessage

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"[^\s<>,;\"']+@[^\s<>,;\"']+")
NAMED_ADDRESS_PATTERN = re.compile(r'^\s*"?([^"<]*?)"?\s*<([^>]+@[^>]+)>\s*$')


def parse_address(value: str) -> Tuple[str, str]:
    """
    Split a ``From``-style header into (display_name, lowercase_address).

    Falls back to the local part of the address when no display name is
    present, and to ("", "") when no address can be found.
    """
    if not value:
        return "", ""

    match = NAMED_ADDRESS_PATTERN.match(value)
    if match:
        address = match.group(2).strip().lower()
        name = match.group(1).strip() or address.split("@")[0]
        return name, address

    found = ADDRESS_PATTERN.search(value)
    if not found:
        return "", ""
    address = found.group(0).strip().lower()
    return address.split("@")[0], address


def extract_addresses(header: str) -> List[str]:
    """Return every address in a recipient header, lowercased, in order."""
    if not header:
        return []
    return [addr.lower() for addr in ADDRESS_PATTERN.findall(header)]


def resolve_counterpart(message: NormalizedMessage, monitored: Iterable[str]) -> Optional[str]:
    """
    Determine the external address a message is with.

    Returns None when no external address can be resolved.
    """
    monitored_set = {address.lower() for address in monitored}
    sender = (message.sender_address or "").lower()

    if sender in monitored_set:
        external = [addr for addr in extract_addresses(message.recipient_header)
                    if addr not in monitored_set]
        return external[0] if external else None

    return sender or None


def group_by_counterpart(
    messages: Iterable[NormalizedMessage],
    monitored: Iterable[str]
) -> Dict[str, List[NormalizedMessage]]:
    """
    Group messages by counterpart address.

    Internal-to-internal messages are dropped. Both the mapping and each
    message list keep insertion order; callers sort each list with
    ``sort_oldest_first`` before classification.
    """
    monitored = [address.lower() for address in monitored]
    grouped: Dict[str, List[NormalizedMessage]] = {}
    dropped = 0

    for message in messages:
        counterpart = resolve_counterpart(message, monitored)
        if not counterpart:
            dropped += 1
            continue
        grouped.setdefault(counterpart, []).append(message)

    if dropped:
        logger.debug(f"Dropped {dropped} internal or unresolvable message(s)")
    return grouped


def sort_oldest_first(messages: Iterable[NormalizedMessage]) -> List[NormalizedMessage]:
    """Stable sort by timestamp so the latest message is the last element."""
    return sorted(messages, key=lambda message: message.timestamp)


def participant_addresses(messages: Iterable[NormalizedMessage]) -> List[str]:
    """Every sender and recipient address across ``messages``, deduplicated in order."""
    seen: List[str] = []
    for message in messages:
        for address in [message.sender_address.lower()] + extract_addresses(message.recipient_header):
            if address and address not in seen:
                seen.append(address)
    return seen
