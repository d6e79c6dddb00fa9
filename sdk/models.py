"""Pydantic data models for the Bot API objects the update engine touches.

Every class corresponds to an object of the platform's Bot API.  The engine
treats these as opaque payloads: it only reads ``Update.update_id``, the
update's kind and, for command matching, a message's text and entities.
Unknown fields are ignored, except on :class:`Update` and :class:`Message`
where they are kept in ``model_extra`` so handlers can still reach them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr


class UpdateKind(str, Enum):
    """The variant carried by an :class:`Update` (exactly one per update)."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    PRE_CHECKOUT_QUERY = "pre_checkout_query"
    POLL = "poll"
    POLL_ANSWER = "poll_answer"
    MY_CHAT_MEMBER = "my_chat_member"
    CHAT_MEMBER = "chat_member"
    CHAT_JOIN_REQUEST = "chat_join_request"
    UNKNOWN = "unknown"


class Error(BaseModel):
    """Error envelope returned by the Bot API."""

    ok: bool = False
    error_code: int
    description: str
    parameters: Optional["ResponseParameters"] = None

    model_config = {"populate_by_name": True}


class ResponseParameters(BaseModel):
    """Contains information about why a request was unsuccessful."""

    migrate_to_chat_id: Optional[int] = None
    retry_after: Optional[int] = None

    model_config = {"populate_by_name": True}


class Update(BaseModel):
    """An incoming update. At most **one** of the optional payload fields is present."""

    update_id: int
    message: Optional["Message"] = None
    edited_message: Optional["Message"] = None
    channel_post: Optional["Message"] = None
    edited_channel_post: Optional["Message"] = None
    inline_query: Optional["InlineQuery"] = None
    chosen_inline_result: Optional["ChosenInlineResult"] = None
    callback_query: Optional["CallbackQuery"] = None
    shipping_query: Optional["ShippingQuery"] = None
    pre_checkout_query: Optional["PreCheckoutQuery"] = None
    poll: Optional["Poll"] = None
    poll_answer: Optional["PollAnswer"] = None
    my_chat_member: Optional[Dict[str, Any]] = None
    chat_member: Optional[Dict[str, Any]] = None
    chat_join_request: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True, "extra": "allow"}

    _decode_error: Optional[str] = PrivateAttr(default=None)

    @classmethod
    def undecodable(cls, update_id: int, error: str) -> "Update":
        """Build a placeholder for an update whose payload failed validation.

        The placeholder keeps the identifier so the poller can acknowledge it,
        but carries no payload and must never be dispatched.
        """
        update = cls.model_construct(update_id=update_id)
        update._decode_error = error
        return update

    @property
    def decode_error(self) -> Optional[str]:
        return self._decode_error

    @property
    def kind(self) -> UpdateKind:
        """Return the variant present in this update."""
        for kind in UpdateKind:
            if kind is UpdateKind.UNKNOWN:
                continue
            if getattr(self, kind.value, None) is not None:
                return kind
        return UpdateKind.UNKNOWN

    @property
    def payload(self) -> Any:
        """Return the variant object itself (``None`` for unknown kinds)."""
        kind = self.kind
        if kind is UpdateKind.UNKNOWN:
            return None
        return getattr(self, kind.value)

    @property
    def any_message(self) -> Optional["Message"]:
        """The message carried by any of the four message-like variants."""
        return (
            self.message
            or self.edited_message
            or self.channel_post
            or self.edited_channel_post
        )


class WebhookInfo(BaseModel):
    """Contains information about the current status of a webhook."""

    url: str
    has_custom_certificate: bool
    pending_update_count: int
    ip_address: Optional[str] = None
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = {"populate_by_name": True}


class User(BaseModel):
    """This object represents a user or bot."""

    id: int
    is_bot: bool
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    can_join_groups: Optional[bool] = None
    can_read_all_group_messages: Optional[bool] = None
    supports_inline_queries: Optional[bool] = None

    model_config = {"populate_by_name": True}


class Chat(BaseModel):
    """This object represents a chat."""

    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class Message(BaseModel):
    """This object represents a message.

    Only the fields the engine and the reference bot read are modelled; the
    rest of the platform's payload is kept in ``model_extra``.
    """

    message_id: int
    date: int
    chat: "Chat"
    from_field: Optional["User"] = Field(None, alias="from")
    sender_chat: Optional["Chat"] = None
    reply_to_message: Optional["Message"] = None
    via_bot: Optional["User"] = None
    edit_date: Optional[int] = None
    media_group_id: Optional[str] = None
    author_signature: Optional[str] = None
    text: Optional[str] = None
    entities: Optional[List["MessageEntity"]] = None
    caption: Optional[str] = None
    caption_entities: Optional[List["MessageEntity"]] = None
    photo: Optional[List["PhotoSize"]] = None
    document: Optional["Document"] = None
    location: Optional["Location"] = None
    poll: Optional["Poll"] = None
    reply_markup: Optional["InlineKeyboardMarkup"] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class MessageEntity(BaseModel):
    """One special entity in a text message (hashtag, URL, bot command, …)."""

    type: str
    offset: int
    length: int
    url: Optional[str] = None
    user: Optional["User"] = None
    language: Optional[str] = None

    model_config = {"populate_by_name": True}


class PhotoSize(BaseModel):
    """One size of a photo or a file / sticker thumbnail."""

    file_id: str
    file_unique_id: str
    width: int
    height: int
    file_size: Optional[int] = None

    model_config = {"populate_by_name": True}


class Document(BaseModel):
    """A general file (as opposed to photos, voice messages and audio files)."""

    file_id: str
    file_unique_id: str
    thumb: Optional["PhotoSize"] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None

    model_config = {"populate_by_name": True}


class Location(BaseModel):
    """A point on the map."""

    longitude: float
    latitude: float
    horizontal_accuracy: Optional[float] = None
    live_period: Optional[int] = None
    heading: Optional[int] = None
    proximity_alert_radius: Optional[int] = None

    model_config = {"populate_by_name": True}


class PollOption(BaseModel):
    """One answer option in a poll."""

    text: str
    voter_count: int

    model_config = {"populate_by_name": True}


class PollAnswer(BaseModel):
    """An answer of a user in a non-anonymous poll."""

    poll_id: str
    user: "User"
    option_ids: List[int]

    model_config = {"populate_by_name": True}


class Poll(BaseModel):
    """This object contains information about a poll."""

    id: str
    question: str
    options: List["PollOption"]
    total_voter_count: int
    is_closed: bool
    is_anonymous: bool
    type: str
    allows_multiple_answers: bool
    correct_option_id: Optional[int] = None
    explanation: Optional[str] = None
    open_period: Optional[int] = None
    close_date: Optional[int] = None

    model_config = {"populate_by_name": True}


class InlineKeyboardMarkup(BaseModel):
    """An inline keyboard that appears right next to the message it belongs to."""

    inline_keyboard: List[List["InlineKeyboardButton"]]

    model_config = {"populate_by_name": True}


class InlineKeyboardButton(BaseModel):
    """One button of an inline keyboard. You **must** use exactly one of the optional fields."""

    text: str
    url: Optional[str] = None
    callback_data: Optional[str] = None
    switch_inline_query: Optional[str] = None
    switch_inline_query_current_chat: Optional[str] = None
    pay: Optional[bool] = None

    model_config = {"populate_by_name": True}


class CallbackQuery(BaseModel):
    """An incoming callback query from a callback button in an inline keyboard."""

    id: str
    from_field: "User" = Field(..., alias="from")
    chat_instance: str
    message: Optional["Message"] = None
    inline_message_id: Optional[str] = None
    data: Optional[str] = None
    game_short_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class InlineQuery(BaseModel):
    """An incoming inline query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    offset: str
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True}


class ChosenInlineResult(BaseModel):
    """A result of an inline query that was chosen by the user and sent to their chat partner."""

    result_id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    location: Optional["Location"] = None
    inline_message_id: Optional[str] = None

    model_config = {"populate_by_name": True}


class ShippingAddress(BaseModel):
    """This object represents a shipping address."""

    country_code: str
    state: str
    city: str
    street_line1: str
    street_line2: str
    post_code: str

    model_config = {"populate_by_name": True}


class OrderInfo(BaseModel):
    """This object represents information about an order."""

    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    shipping_address: Optional["ShippingAddress"] = None

    model_config = {"populate_by_name": True}


class ShippingQuery(BaseModel):
    """This object contains information about an incoming shipping query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    invoice_payload: str
    shipping_address: "ShippingAddress"

    model_config = {"populate_by_name": True}


class PreCheckoutQuery(BaseModel):
    """This object contains information about an incoming pre-checkout query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    currency: str
    total_amount: int
    invoice_payload: str
    shipping_option_id: Optional[str] = None
    order_info: Optional["OrderInfo"] = None

    model_config = {"populate_by_name": True}


class BotCommand(BaseModel):
    """This object represents a bot command."""

    command: str
    description: str

    model_config = {"populate_by_name": True}


ReplyMarkup = Union[InlineKeyboardMarkup, Dict[str, Any]]


for _model in (Error, Update, Message, CallbackQuery, InlineQuery, ChosenInlineResult,
               ShippingQuery, PreCheckoutQuery, Poll, PollAnswer, InlineKeyboardMarkup):
    _model.model_rebuild()
