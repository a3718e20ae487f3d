"""
NIP-57 zap receipt decoding.

A zap receipt (kind 9735) is published by the recipient's LNURL server once
an invoice is paid. It embeds two artifacts:

* ``description``: the JSON-serialized zap request (kind 9734) signed by the
  payer, carrying the payer pubkey and the zap message;
* ``bolt11``: the paid Lightning invoice, carrying the amount.

[decode_zap_receipt][zapstats.nips.nip57.decode_zap_receipt] turns one
receipt into a [ZapReceipt][zapstats.models.zap.ZapReceipt] or raises
[DecodeError][zapstats.core.exceptions.DecodeError]. It is pure: no network
access, no caching, no signature verification.

Note:
    Only whole satoshis are counted. The invoice amount is floored to sats
    and converted back to millisatoshis, and invoices below one sat (or with
    no amount) are rejected, so a receipt can never contribute a zero amount.

See Also:
    [EventKind][zapstats.models.constants.EventKind]: ``ZAP_RECEIPT`` and
        ``ZAP_REQUEST`` kinds.
    [AggregationEngine][zapstats.engine.aggregation.AggregationEngine]:
        Consumer of decoded receipts.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import bolt11
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from zapstats.core.exceptions import DecodeError
from zapstats.models._validation import is_hex64
from zapstats.models.constants import ANONYMOUS_PUBKEY, MSATS_PER_SAT, EventKind
from zapstats.models.zap import ZapReceipt
from zapstats.utils.events import (
    event_created_at,
    event_id,
    event_kind,
    event_tags,
    tag_value,
)


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent


logger = logging.getLogger(__name__)


class ZapRequest(BaseModel):
    """The kind 9734 zap request embedded in a receipt's ``description`` tag.

    Only the fields the decoder needs are modelled; anything else in the JSON
    is ignored. Malformed ``pubkey`` values become ``None`` (anonymous)
    rather than failing the receipt.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: int | None = None
    pubkey: str | None = None
    content: str = ""
    created_at: int | None = None
    tags: list[list[str]] = Field(default_factory=list)

    @field_validator("pubkey", mode="before")
    @classmethod
    def _normalize_pubkey(cls, v: Any) -> str | None:
        if isinstance(v, str) and is_hex64(v.lower()):
            return v.lower()
        return None

    @field_validator("content", mode="before")
    @classmethod
    def _default_content(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("tags", mode="before")
    @classmethod
    def _keep_string_tags(cls, v: Any) -> list[list[str]]:
        if not isinstance(v, list):
            return []
        return [
            [str(item) for item in tag]
            for tag in v
            if isinstance(tag, list) and tag and all(isinstance(i, str) for i in tag)
        ]

    @property
    def is_anonymous(self) -> bool:
        """True when the request carries an ``anon`` tag (NIP-57 private zap)."""
        return any(tag[0] == "anon" for tag in self.tags)

    @property
    def payer_pubkey(self) -> str:
        if self.pubkey is None or self.is_anonymous:
            return ANONYMOUS_PUBKEY
        return self.pubkey

    @property
    def requested_amount_msat(self) -> int | None:
        """Amount the payer asked for (``amount`` tag), if stated."""
        raw = tag_value(self.tags, "amount")
        if raw is None or not raw.isdigit():
            return None
        return int(raw)


def parse_zap_request(description: str) -> ZapRequest:
    """Parse the JSON of a ``description`` tag.

    Raises:
        DecodeError: If the JSON is invalid, is not an object, or is not a
            kind 9734 request when a kind is present.
    """
    try:
        data = json.loads(description)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(f"description is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"description must be a JSON object, got {type(data).__name__}")

    try:
        request = ZapRequest.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"malformed zap request: {e.error_count()} invalid field(s)") from e

    if request.kind is not None and request.kind != EventKind.ZAP_REQUEST:
        raise DecodeError(f"embedded event is kind {request.kind}, expected {EventKind.ZAP_REQUEST}")
    return request


def decode_invoice_amount(invoice: str) -> int:
    """Return the amount of a bolt11 invoice in millisatoshis (whole sats only).

    Raises:
        DecodeError: If the invoice cannot be decoded, has no amount, or is
            worth less than one satoshi.
    """
    try:
        decoded = bolt11.decode(invoice)
    # bolt11 raises a mix of its own errors, ValueError and bech32/bitstring
    # errors depending on where the invoice is malformed.
    except Exception as e:  # noqa: BLE001
        raise DecodeError(f"unparsable bolt11 invoice: {e}") from e

    amount_msat = decoded.amount_msat
    if amount_msat is None:
        raise DecodeError("bolt11 invoice has no amount")

    sats = int(amount_msat) // MSATS_PER_SAT
    if sats <= 0:
        raise DecodeError(f"bolt11 invoice amount below one sat: {amount_msat} msat")
    return sats * MSATS_PER_SAT


def decode_zap_receipt(event: NostrEvent, *, target_id: str | None = None) -> ZapReceipt:
    """Decode a kind 9735 zap receipt.

    Args:
        event: The raw receipt.
        target_id: Target to attribute the receipt to. When omitted the first
            ``e`` tag is used, falling back to the first ``a`` tag.

    Returns:
        The decoded receipt.

    Raises:
        DecodeError: If the event is not a receipt, the description is
            missing or malformed, the invoice is missing or has no usable
            amount, or no target can be determined.
    """
    eid = event_id(event)

    kind = event_kind(event)
    if kind != EventKind.ZAP_RECEIPT:
        raise DecodeError(f"expected kind {EventKind.ZAP_RECEIPT}, got {kind}", event_id=eid)

    tags = event_tags(event)

    description = tag_value(tags, "description")
    if not description:
        raise DecodeError("receipt has no description tag", event_id=eid)
    invoice = tag_value(tags, "bolt11")
    if not invoice:
        raise DecodeError("receipt has no bolt11 tag", event_id=eid)

    try:
        request = parse_zap_request(description)
        amount_msat = decode_invoice_amount(invoice)
    except DecodeError as e:
        raise DecodeError(str(e), event_id=eid) from e

    target = target_id or tag_value(tags, "e") or tag_value(tags, "a")
    if not target:
        raise DecodeError("receipt references no target", event_id=eid)

    requested = request.requested_amount_msat
    if requested is not None and requested != amount_msat:
        logger.debug(
            "zap_amount_differs_from_request event_id=%s requested_msat=%s invoice_msat=%s",
            eid,
            requested,
            amount_msat,
        )

    return ZapReceipt(
        id=eid,
        target_id=target,
        amount_msat=amount_msat,
        payer_pubkey=request.payer_pubkey,
        message=request.content,
        timestamp=event_created_at(event),
        bolt11=invoice,
    )
