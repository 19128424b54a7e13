"""
Typed records shared by the chat, escrow and product modules.

Chat messages live in the Realtime Database as plain JSON. Every message
written by this service carries a ``kind`` tag and a ``version``; readers
decode by tag. Messages written by the old browser client have no tag and
are upgraded once, on read, by ``upgrade_legacy_record``.
"""

from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

MESSAGE_VERSION = 1
ESCROW_MARKER = "🔒 Request to Purchase"


class Identity(BaseModel):
    """The signed-in user, passed explicitly to every operation."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email:
            return self.email.split('@')[0]
        return "User"

    @classmethod
    def from_session(cls, session) -> Optional["Identity"]:
        if not session.get('logged_in') or not session.get('uid'):
            return None
        return cls(
            id=session['uid'],
            email=session.get('user_email'),
            name=session.get('user_name'),
            photo_url=session.get('photo_url'),
            is_admin=bool(session.get('is_admin')),
        )


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionDetails(_Record):
    transaction_id: Optional[int] = None
    amount: float = 0
    payment_method: str = "Visa/MasterCard"
    product_id: str = ""
    product_name: str = ""
    needs_payment: bool = True
    terms_confirmed: bool = True
    escrow_agent: bool = True
    show_pay_button: bool = True
    transfer_to: Optional[str] = None


class _Message(_Record):
    version: int = MESSAGE_VERSION
    sender_id: str
    sender_name: str = "User"
    sender_photo_url: Optional[str] = Field(None, alias='senderPhotoURL')
    text: str = ""
    timestamp: int = 0


class TextMessage(_Message):
    kind: Literal['text'] = 'text'
    is_admin: bool = False


class SystemMessage(_Message):
    kind: Literal['system'] = 'system'


class TransactionMessage(_Message):
    kind: Literal['transaction'] = 'transaction'
    # status: opening message of a purchase chat
    # purchase_request: structured request from the old client
    # escrow_request: buyer asked for the escrow service
    stage: Literal['status', 'purchase_request', 'escrow_request'] = 'status'
    transaction: TransactionDetails

    @property
    def accepts_wallet(self) -> bool:
        return self.stage in ('purchase_request', 'escrow_request')


ChatMessage = Annotated[
    Union[TextMessage, SystemMessage, TransactionMessage],
    Field(discriminator='kind'),
]

_message_adapter = TypeAdapter(ChatMessage)


def decode_message(record):
    if 'kind' not in record:
        record = upgrade_legacy_record(record)
    return _message_adapter.validate_python(record)


def encode_message(message):
    return message.model_dump(by_alias=True, exclude_none=True)


def parse_amount(value):
    try:
        return float(str(value).replace('$', '').replace(',', '').strip())
    except ValueError:
        return 0


def _parse_transaction_id(value):
    value = str(value or '').strip()
    return int(value) if value.isdigit() else None


def parse_escrow_text(text):
    """Pull the labeled transaction fields out of an escrow request text."""
    details = {'productName': '', 'paymentMethod': '', 'amount': 0}
    for line in text.split('\n'):
        if 'Transaction ID:' in line:
            details['transactionId'] = _parse_transaction_id(line.split('Transaction ID:')[1])
        elif 'Transaction Amount:' in line:
            details['amount'] = parse_amount(line.split('Transaction Amount:')[1])
        elif 'Payment Method:' in line:
            details['paymentMethod'] = line.split('Payment Method:')[1].strip()
        elif ESCROW_MARKER in line:
            details['productName'] = line.split(ESCROW_MARKER)[1].strip()
    return details


def _transfer_to(text):
    if 'Transfer to:' not in text:
        return None
    return text.split('Transfer to:')[1].split('\n')[0].strip() or None


def upgrade_legacy_record(record):
    text = record.get('text') or ''
    base = {
        'version': 0,
        'senderId': record.get('senderId') or '',
        'senderName': record.get('senderName') or "User",
        'senderPhotoURL': record.get('senderPhotoURL'),
        'text': text,
        'timestamp': record.get('timestamp') or 0,
    }

    if record.get('isRequest') and record.get('transactionData'):
        data = record['transactionData']
        details = {
            'transactionId': _parse_transaction_id(data.get('transactionId')),
            'amount': parse_amount(data.get('price', data.get('amount', 0))),
            'paymentMethod': data.get('paymentMethod') or '',
            'productId': data.get('productId') or '',
            'productName': data.get('productName') or '',
            'escrowAgent': bool(data.get('useEscrow')),
            'transferTo': _transfer_to(text),
        }
        return {**base, 'kind': 'transaction', 'stage': 'purchase_request', 'transaction': details}

    if record.get('isEscrowRequest') or ESCROW_MARKER in text:
        return {**base, 'kind': 'transaction', 'stage': 'escrow_request',
                'transaction': parse_escrow_text(text)}

    if record.get('isPurchaseRequest') or record.get('isTransactionStatus'):
        data = record.get('purchaseDetails') or {}
        details = {
            'transactionId': _parse_transaction_id(data.get('transactionId', record.get('transactionId'))),
            'amount': parse_amount(data.get('amount', record.get('amount', 0))),
            'paymentMethod': data.get('paymentMethod', record.get('paymentMethod')) or '',
            'productId': data.get('productId') or '',
            'productName': data.get('productName') or '',
        }
        return {**base, 'kind': 'transaction', 'stage': 'status', 'transaction': details}

    if record.get('isSystem') or record.get('isSystemMessage'):
        return {**base, 'kind': 'system'}

    return {**base, 'kind': 'text', 'isAdmin': bool(record.get('isAdmin'))}
