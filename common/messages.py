import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

RELAY_NAME = "Server"   # sender/recipient name used by the relay itself
BROADCAST = "All"       # reserved recipient for send-to-all requests
IMAGE_CONFIRMATION_PROMPT = " would like to send you an Image. Would you like to Download it? (Yes/No)"


class ProtocolError(Exception):
    """Raised when an envelope cannot be decoded or its payload has the wrong shape."""
    pass


class MessageKind(Enum):
    REGISTRATION_REQUEST = "registration_request"
    REGISTRATION_RESPONSE = "registration_response"
    TEXT_TRANSFER_REQUEST = "text_transfer_request"
    TEXT_TRANSFER_RECEIPT = "text_transfer_receipt"
    TEXT_SEND_TO_ALL_REQUEST = "text_send_to_all_request"
    TEXT_SEND_TO_ALL_RECEIPT = "text_send_to_all_receipt"
    IMAGE_TRANSFER_REQUEST = "image_transfer_request"
    IMAGE_TRANSFER_CONFIRMATION_REQUEST = "image_transfer_confirmation_request"
    IMAGE_TRANSFER_CONFIRMATION_RESPONSE = "image_transfer_confirmation_response"
    IMAGE_TRANSFER_RECEIPT = "image_transfer_receipt"
    IMAGE_SEND_TO_ALL_REQUEST = "image_send_to_all_request"
    ONLINE_CLIENTS_REQUEST = "online_clients_request"
    ONLINE_CLIENTS_RESPONSE = "online_clients_response"
    CLOSE_CONNECTION = "close_connection"


K = MessageKind

# Payload shape each kind must carry
TEXT, BINARY, BOOLEAN, NAMES, FREE = "text", "binary", "boolean", "names", "free"

PAYLOAD_SHAPES: Dict[MessageKind, str] = {
    K.REGISTRATION_REQUEST: TEXT,
    K.REGISTRATION_RESPONSE: BOOLEAN,
    K.TEXT_TRANSFER_REQUEST: TEXT,
    K.TEXT_TRANSFER_RECEIPT: TEXT,
    K.TEXT_SEND_TO_ALL_REQUEST: TEXT,
    K.TEXT_SEND_TO_ALL_RECEIPT: TEXT,
    K.IMAGE_TRANSFER_REQUEST: BINARY,
    K.IMAGE_TRANSFER_CONFIRMATION_REQUEST: TEXT,
    K.IMAGE_TRANSFER_CONFIRMATION_RESPONSE: BOOLEAN,
    K.IMAGE_TRANSFER_RECEIPT: BINARY,
    K.IMAGE_SEND_TO_ALL_REQUEST: BINARY,
    K.ONLINE_CLIENTS_REQUEST: FREE,
    K.ONLINE_CLIENTS_RESPONSE: NAMES,
    K.CLOSE_CONNECTION: FREE,
}

# Directions are fixed per kind; CLOSE_CONNECTION flows both ways.
CLIENT_TO_RELAY = frozenset({
    K.REGISTRATION_REQUEST,
    K.TEXT_TRANSFER_REQUEST,
    K.TEXT_SEND_TO_ALL_REQUEST,
    K.IMAGE_TRANSFER_REQUEST,
    K.IMAGE_TRANSFER_CONFIRMATION_RESPONSE,
    K.IMAGE_SEND_TO_ALL_REQUEST,
    K.ONLINE_CLIENTS_REQUEST,
    K.CLOSE_CONNECTION,
})

RELAY_TO_CLIENT = frozenset({
    K.REGISTRATION_RESPONSE,
    K.TEXT_TRANSFER_RECEIPT,
    K.TEXT_SEND_TO_ALL_RECEIPT,
    K.IMAGE_TRANSFER_CONFIRMATION_REQUEST,
    K.IMAGE_TRANSFER_RECEIPT,
    K.ONLINE_CLIENTS_RESPONSE,
    K.CLOSE_CONNECTION,
})


def shape_matches(shape: str, payload: Any) -> bool:
    ''' This function tells whether a payload value has the given shape '''
    if shape == BOOLEAN:
        return isinstance(payload, bool)
    if shape == BINARY:
        return isinstance(payload, (bytes, bytearray))
    if shape == NAMES:
        return isinstance(payload, list) and all(isinstance(n, str) for n in payload)
    # TEXT and FREE are both plain strings on the wire
    return isinstance(payload, str)


def check_payload(kind: MessageKind, payload: Any) -> None:
    '''
    This function validates the payload against the shape its kind requires.
    Raises ProtocolError on a mismatch.
    '''
    shape = PAYLOAD_SHAPES[kind]
    if not shape_matches(shape, payload):
        raise ProtocolError(f"{kind.value} expects a {shape} payload, got {type(payload).__name__}")


# Envelope fields remain in plaintext so the relay can route by recipient.
@dataclass(frozen=True)
class Envelope:
    kind: MessageKind
    sender: str
    recipient: str     # username, RELAY_NAME or BROADCAST
    payload: Any       # str | bytes | bool | list[str], depending on kind

    def __post_init__(self):
        if not isinstance(self.kind, MessageKind):
            raise ProtocolError(f"unknown message kind: {self.kind!r}")
        check_payload(self.kind, self.payload)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST

    def to_dict(self) -> Dict[str, Any]:
        ''' This function converts the envelope to a JSON-ready dict (field order kept) '''
        payload = self.payload
        if isinstance(payload, (bytes, bytearray)):
            payload = {"b64": base64.b64encode(bytes(payload)).decode()}
        return {"kind": self.kind.value, "sender": self.sender,
                "recipient": self.recipient, "payload": payload}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Envelope":
        '''
        This function builds an envelope from its wire dict.
        Input:
            - d: dict with kind, sender, recipient and payload fields
        Output: Envelope
        Raises ProtocolError when a field is missing or malformed.
        '''
        try:
            kind = MessageKind(d["kind"])
            sender, recipient, payload = d["sender"], d["recipient"], d["payload"]
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed envelope: {e}") from e
        if not isinstance(sender, str) or not isinstance(recipient, str):
            raise ProtocolError("sender and recipient must be strings")
        if PAYLOAD_SHAPES[kind] == BINARY:
            try:
                payload = base64.b64decode(payload["b64"].encode(), validate=True)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                raise ProtocolError(f"bad binary payload for {kind.value}") from e
        return cls(kind, sender, recipient, payload)


def image_confirmation_prompt(sender: str) -> str:
    ''' This function builds the prompt text shown to the recipient of an image offer '''
    return sender + IMAGE_CONFIRMATION_PROMPT
