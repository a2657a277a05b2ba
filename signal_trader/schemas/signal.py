"""Signal schemas: inbound raw signals, parsed parameters, AI responses."""

import math
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from signal_trader.schemas.common import Exchange, Market, SignalAction, SignalSource, SignalStatus
from signal_trader.utils.constants import MAX_LEVERAGE
from signal_trader.utils.errors import SignalValidationError
from signal_trader.utils.hashing import hash_signal


class RawSignal(BaseModel):
    """A message as received from the inbound source. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: SignalSource
    raw_content: str = ""
    image_base64: str | None = None
    image_mime_type: str | None = None
    channel_id: str = ""
    user_id: str = ""
    message_id: str = ""
    hash: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(
        cls,
        content: str,
        message_id: str,
        channel_id: str = "",
        user_id: str = "",
        image_base64: str | None = None,
        image_mime_type: str | None = None,
        source: SignalSource | None = None,
    ) -> "RawSignal":
        """Construct a RawSignal, deriving source and hash from the payload."""
        if source is None:
            source = SignalSource.IMAGE if image_base64 else SignalSource.TEXT
        return cls(
            source=source,
            raw_content=content,
            image_base64=image_base64,
            image_mime_type=image_mime_type or ("image/png" if image_base64 else None),
            channel_id=channel_id,
            user_id=user_id,
            message_id=message_id,
            hash=hash_signal(content, image_base64, message_id),
        )


@dataclass
class ParsedSignal:
    """Structured trade parameters extracted from a signal."""

    symbol: str
    action: SignalAction
    entry: float
    confidence: float
    stop_loss: float | None = None
    take_profit: float | list[float] | None = None
    leverage: float | None = None
    exchange: Exchange | None = None
    market: Market | None = None

    @property
    def first_take_profit(self) -> float | None:
        if isinstance(self.take_profit, list):
            return self.take_profit[0] if self.take_profit else None
        return self.take_profit

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["action"] = str(self.action)
        data["exchange"] = str(self.exchange) if self.exchange else None
        data["market"] = str(self.market) if self.market else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedSignal":
        return cls(
            symbol=data["symbol"],
            action=SignalAction(data["action"]),
            entry=float(data["entry"]),
            confidence=float(data["confidence"]),
            stop_loss=data.get("stop_loss"),
            take_profit=data.get("take_profit"),
            leverage=data.get("leverage"),
            exchange=Exchange(data["exchange"]) if data.get("exchange") else None,
            market=Market(data["market"]) if data.get("market") else None,
        )


class ParsedSignalSchema(BaseModel):
    """Trust-boundary validation before anything reaches a venue."""

    symbol: str = Field(min_length=1, max_length=20, pattern=r"^[A-Za-z0-9/\-_]+$")
    action: SignalAction
    entry: float = Field(gt=0)
    confidence: float = Field(ge=0, le=1)
    stop_loss: float | None = Field(default=None, gt=0)
    take_profit: float | list[float] | None = None
    leverage: float | None = Field(default=None, ge=1, le=MAX_LEVERAGE)
    exchange: Exchange | None = None
    market: Market | None = None

    @field_validator("entry", "stop_loss")
    @classmethod
    def _finite(cls, value: float | None) -> float | None:
        if value is not None and not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    @field_validator("take_profit")
    @classmethod
    def _positive_targets(cls, value: float | list[float] | None):
        targets = value if isinstance(value, list) else [value] if value is not None else []
        for target in targets:
            if not math.isfinite(target) or target <= 0:
                raise ValueError("take profit targets must be positive")
        return value


def validate_parsed_signal(parsed: ParsedSignal) -> ParsedSignal:
    """Raise SignalValidationError if ``parsed`` is not safe to trade."""
    try:
        ParsedSignalSchema.model_validate(asdict(parsed))
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SignalValidationError(f"Invalid signal: {errors}") from e
    return parsed


class ImageSignalResponse(BaseModel):
    """JSON object returned by the vision model."""

    model_config = ConfigDict(populate_by_name=True)

    symbol: str = Field(min_length=1)
    action: SignalAction
    entry: float = Field(gt=0)
    stop_loss: float | None = Field(default=None, gt=0, alias="stopLoss")
    take_profit: float | None = Field(default=None, gt=0, alias="takeProfit")
    leverage: float | None = Field(default=None, ge=1, le=MAX_LEVERAGE)
    confidence: float = Field(ge=0, le=1)

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value):
        return value.upper() if isinstance(value, str) else value


# ── API schemas ──────────────────────────────────────────


class WebhookSignalRequest(BaseModel):
    content: str = Field(default="", max_length=8000)
    image_base64: str | None = None
    image_mime_type: str | None = None
    channel_id: str = ""
    user_id: str = ""
    message_id: str = Field(min_length=1, max_length=128)

    @model_validator(mode="after")
    def _require_payload(self):
        if not self.content.strip() and not self.image_base64:
            raise ValueError("content or image_base64 is required")
        return self


class WebhookSignalResponse(BaseModel):
    queued: bool
    duplicate: bool = False
    hash: str


class SignalRead(BaseModel):
    id: str
    source: SignalSource
    raw_content: str
    channel_id: str
    user_id: str
    message_id: str
    hash: str
    parsed: dict[str, Any] | None = None
    status: SignalStatus
    status_reason: str | None = None
    received_at: datetime
    processed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
