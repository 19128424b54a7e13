"""
Purchase chats between a buyer and the seller of a channel.

A chat lives in two places: the chat document (plus one chat-list entry per
participant) in Firestore, and its message stream under
``messages/{chat_id}`` in the Realtime Database. Creating a chat writes all
Firestore documents in one batch keyed by (product, buyer), so repeated or
racing "contact seller" calls converge on a single chat.
"""

import random
import logging
from firebase_admin import firestore
from google.api_core.exceptions import AlreadyExists
from pydantic import ValidationError

from errors import NotFound, PermissionDenied, InvalidRequest
from firebase_store import CHATS, MESSAGES, USERS, CHAT_LIST, RTDB_MESSAGES, now_ms
from products import first_image
from schemas import (
    ESCROW_MARKER, TextMessage, TransactionMessage, TransactionDetails,
    decode_message, encode_message, parse_amount, parse_escrow_text,
)

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = "Visa/MasterCard"
TRANSACTION_TERMS = (
    "The terms of the transaction were confirmed. When you send your payment, "
    "the seller will be notified, and will need to transfer the account login "
    "details based on the agreed upon terms. If the seller does not respond, or "
    "breaks the rules, you can call upon the escrow agent (button below)."
)


def get_chat_id(product_id, buyer_id):
    return f'{product_id}_{buyer_id}'


def new_transaction_id():
    return random.randint(1000000, 9999999)


def initial_message_key(transaction_id):
    return f'txn-{transaction_id}'


def format_amount(value):
    number = parse_amount(value)
    return str(int(number)) if float(number).is_integer() else f'{number:.2f}'


def seller_display_name(product):
    email = product.get('userEmail')
    return email.split('@')[0] if email else "Seller"


def payment_required_text(product):
    return f"Transaction status: Payment required for {product.get('displayName')}"


def build_transaction_status(user, product, transaction_id, timestamp):
    text = (
        "Transaction status:\n"
        f"{TRANSACTION_TERMS}\n\n"
        f"Transaction ID: {transaction_id}\n"
        f"Transaction Amount: ${format_amount(product.get('price'))}\n"
        f"Payment Method: {DEFAULT_PAYMENT_METHOD}"
    )
    return TransactionMessage(
        sender_id=user.id,
        sender_name=user.display_name,
        sender_photo_url=user.photo_url,
        text=text,
        timestamp=timestamp,
        stage='status',
        transaction=TransactionDetails(
            transaction_id=transaction_id,
            amount=parse_amount(product.get('price')),
            payment_method=DEFAULT_PAYMENT_METHOD,
            product_id=product['id'],
            product_name=product.get('displayName') or '',
        ),
    )


def _chat_list_entry(chat_id, product, other_user_id, other_user_name, last_message, timestamp, unread):
    return {
        'chatId': chat_id,
        'productId': product['id'],
        'productName': product.get('displayName'),
        'productImage': first_image(product),
        'otherUserId': other_user_id,
        'otherUserName': other_user_name,
        'lastMessage': last_message,
        'lastMessageTimestamp': timestamp,
        'unreadCount': unread,
        'updatedAt': timestamp,
    }


def _chat_list_ref(db, user_id, chat_id):
    return db.collection(USERS).document(user_id).collection(CHAT_LIST).document(chat_id)


# --- CONTACT SELLER ---

def find_existing_chat(db, product_id, user_id):
    # Single-field query; participants are matched here to avoid a composite index.
    for doc in db.collection(CHATS).where('productId', '==', product_id).stream():
        if user_id in (doc.to_dict().get('participants') or []):
            return doc
    return None


def create_chat(db, user, product, chat_id, timestamp):
    """Write the chat, its first message and both chat-list entries atomically.

    Raises ``AlreadyExists`` when a chat with this id is already stored.
    """
    buyer_id, seller_id = user.id, product['userId']
    buyer_name, seller_name = user.display_name, seller_display_name(product)
    transaction_id = new_transaction_id()
    summary = payment_required_text(product)

    chat = {
        'productId': product['id'],
        'productName': product.get('displayName'),
        'productImage': product.get('channelLogo') or first_image(product),
        'productPrice': product.get('price'),
        'participants': [buyer_id, seller_id],
        'buyerId': buyer_id,
        'sellerId': seller_id,
        'participantNames': {buyer_id: buyer_name, seller_id: seller_name},
        'participantPhotos': {buyer_id: user.photo_url or "", seller_id: ""},
        'lastMessage': {'text': summary, 'senderId': buyer_id, 'timestamp': timestamp},
        'lastMessageTimestamp': timestamp,
        'createdAt': timestamp,
        'updatedAt': timestamp,
        'unreadCount': {seller_id: 1, buyer_id: 0},
        'isActive': True,
        'adminJoined': False,
        'transactionId': transaction_id,
    }
    message = build_transaction_status(user, product, transaction_id, timestamp)

    chat_ref = db.collection(CHATS).document(chat_id)
    batch = db.batch()
    batch.create(chat_ref, chat)
    batch.set(
        chat_ref.collection(MESSAGES).document(initial_message_key(transaction_id)),
        encode_message(message) | {'read': {buyer_id: True, seller_id: False}},
    )
    batch.set(_chat_list_ref(db, buyer_id, chat_id),
              _chat_list_entry(chat_id, product, seller_id, seller_name, summary, timestamp, 0))
    batch.set(_chat_list_ref(db, seller_id, chat_id),
              _chat_list_entry(chat_id, product, buyer_id, buyer_name, summary, timestamp, 1))
    batch.commit()
    logger.info("Created chat %s for product %s", chat_id, product['id'])
    return chat


def repair_chat_list_entries(db, chat_id, chat, product):
    """Recreate chat-list entries missing from a chat created by an older client."""
    participants = chat.get('participants') or []
    if len(participants) < 2:
        return
    buyer_id = chat.get('buyerId') or participants[0]
    seller_id = chat.get('sellerId') or participants[1]
    names = chat.get('participantNames') or {}
    unread = chat.get('unreadCount') or {}
    last_message = chat.get('lastMessage')
    if isinstance(last_message, dict):
        last_message = last_message.get('text')
    timestamp = chat.get('lastMessageTimestamp') or now_ms()

    for owner_id, other_id, default_name in ((buyer_id, seller_id, "Seller"), (seller_id, buyer_id, "User")):
        entry_ref = _chat_list_ref(db, owner_id, chat_id)
        try:
            if entry_ref.get().exists:
                continue
            entry_ref.set(_chat_list_entry(
                chat_id, product, other_id, names.get(other_id, default_name),
                last_message or payment_required_text(product), timestamp, unread.get(owner_id, 0),
            ))
            logger.info("Recreated missing chat list entry for %s in chat %s", owner_id, chat_id)
        except Exception:
            logger.warning("Error repairing chat list entry for %s", owner_id, exc_info=True)


def ensure_initial_message(db, rtdb, user, product, chat_id, chat, patch_summary):
    """Post the transaction status message if the chat has no messages yet.

    The message key is derived from the transaction id, so a repeated call
    overwrites instead of duplicating.
    """
    messages_ref = rtdb.reference(f'{RTDB_MESSAGES}/{chat_id}')
    try:
        if messages_ref.get(shallow=True):
            return False
        transaction_id = chat.get('transactionId') or new_transaction_id()
        timestamp = now_ms()
        message = build_transaction_status(user, product, transaction_id, timestamp)
        messages_ref.child(initial_message_key(transaction_id)).set(encode_message(message))
        if patch_summary:
            db.collection(CHATS).document(chat_id).update({
                'lastMessage': {'text': payment_required_text(product), 'senderId': user.id, 'timestamp': timestamp},
                'lastMessageTimestamp': timestamp,
                # The escrow agent only joins after payment
                'adminJoined': False,
                'transactionId': transaction_id,
            })
        return True
    except Exception:
        logger.warning("Error adding initial message to chat %s", chat_id, exc_info=True)
        return False


def contact_seller(db, rtdb, user, product):
    """Open (or reopen) the purchase chat for ``product``.

    Returns ``(chat_id, created)``, or ``None`` when the buyer is the seller.
    """
    seller_id = product.get('userId')
    if user.id == seller_id:
        logger.info("User %s tried to contact themselves about %s", user.id, product['id'])
        return None
    if not seller_id:
        raise InvalidRequest("Product has no seller")

    existing = find_existing_chat(db, product['id'], user.id)
    new_chat = False
    if existing is None:
        chat_id = get_chat_id(product['id'], user.id)
        try:
            chat = create_chat(db, user, product, chat_id, now_ms())
            new_chat = True
        except AlreadyExists:
            logger.info("Chat %s was created concurrently, reusing it", chat_id)
            chat = db.collection(CHATS).document(chat_id).get().to_dict()
    else:
        chat_id, chat = existing.id, existing.to_dict()

    if not new_chat:
        repair_chat_list_entries(db, chat_id, chat, product)
    ensure_initial_message(db, rtdb, user, product, chat_id, chat, patch_summary=not new_chat)
    return chat_id, new_chat


# --- CHAT VIEW ---

def get_chat(db, user, chat_id):
    doc = db.collection(CHATS).document(chat_id).get()
    if not doc.exists:
        raise NotFound("Chat not found")
    chat = doc.to_dict() | {'id': doc.id}
    if user.id not in (chat.get('participants') or []) and not user.is_admin:
        raise PermissionDenied("You are not a participant of this chat")
    return chat


def list_chat_entries(db, user):
    entries = []
    for doc in db.collection(USERS).document(user.id).collection(CHAT_LIST).stream():
        entries.append(doc.to_dict() | {'chatId': doc.id})
    entries.sort(key=lambda e: e.get('lastMessageTimestamp') or 0, reverse=True)
    return entries


def mark_chat_read(db, user, chat_id):
    try:
        db.collection(CHATS).document(chat_id).update({f'unreadCount.{user.id}': 0})
        _chat_list_ref(db, user.id, chat_id).update({'unreadCount': 0})
    except Exception:
        logger.warning("Error resetting unread count in chat %s", chat_id, exc_info=True)


def _timestamp(record):
    try:
        return float(record.get('timestamp') or 0)
    except (TypeError, ValueError):
        return 0


def sort_messages(snapshot):
    """Turn a ``{message_id: record}`` snapshot into a list ordered by timestamp."""
    if not snapshot:
        return []
    messages = [value | {'id': key} for key, value in snapshot.items() if isinstance(value, dict)]
    messages.sort(key=lambda m: (_timestamp(m), m['id']))
    return messages


def load_messages(rtdb, chat_id):
    return sort_messages(rtdb.reference(f'{RTDB_MESSAGES}/{chat_id}').get())


def message_view(record, user, submitted_transactions=()):
    message = decode_message({k: v for k, v in record.items() if k != 'id'})
    view = encode_message(message) | {'id': record['id'], 'isOwn': message.sender_id == user.id}
    if isinstance(message, TransactionMessage) and message.accepts_wallet:
        view['isSeller'] = message.sender_id != user.id
        view['walletSubmitted'] = message.transaction.transaction_id in submitted_transactions
    return view


def render_messages(records, user, submitted_transactions=()):
    views = []
    for record in records:
        try:
            views.append(message_view(record, user, submitted_transactions))
        except ValidationError:
            logger.warning("Skipping malformed message %s", record.get('id'), exc_info=True)
    return views


class MessageStream:
    """Live, sorted view of one chat's messages.

    Every change notification triggers a full re-read of the chat's messages,
    so ``on_update`` always receives the complete ordered list.
    """

    def __init__(self, rtdb, chat_id, on_update, on_error=None):
        self.chat_id = chat_id
        self._ref = rtdb.reference(f'{RTDB_MESSAGES}/{chat_id}')
        self._on_update = on_update
        self._on_error = on_error
        self._registration = self._ref.listen(self._handle_event)

    def _handle_event(self, event):
        try:
            messages = sort_messages(self._ref.get())
        except Exception as e:
            logger.error("Error fetching messages for chat %s: %s", self.chat_id, e)
            if self._on_error:
                self._on_error(e)
            return
        self._on_update(messages)

    def close(self):
        self._registration.close()


# --- SENDING ---

def compose_message(user, chat, text, timestamp):
    sender = dict(sender_id=user.id, sender_name=user.display_name,
                  sender_photo_url=user.photo_url, text=text, timestamp=timestamp)
    if ESCROW_MARKER in text:
        details = parse_escrow_text(text)
        details['productId'] = chat.get('productId') or ''
        details['productName'] = details['productName'] or chat.get('productName') or ''
        return TransactionMessage(**sender, stage='escrow_request', transaction=TransactionDetails(**details))
    return TextMessage(**sender, is_admin=user.is_admin)


def _update_chat_summary(db, user, chat, text, timestamp):
    others = [uid for uid in chat.get('participants') or [] if uid != user.id]
    update = {
        'lastMessage': {'text': text, 'timestamp': timestamp, 'senderId': user.id},
        'lastMessageTimestamp': timestamp,
        'updatedAt': timestamp,
    }
    for uid in others:
        update[f'unreadCount.{uid}'] = firestore.Increment(1)
    try:
        db.collection(CHATS).document(chat['id']).update(update)
    except Exception:
        logger.warning("Error updating chat lastMessage for %s", chat['id'], exc_info=True)

    for uid in chat.get('participants') or []:
        entry = {'lastMessage': text, 'lastMessageTimestamp': timestamp, 'updatedAt': timestamp}
        if uid in others:
            entry['unreadCount'] = firestore.Increment(1)
        try:
            _chat_list_ref(db, uid, chat['id']).update(entry)
        except Exception:
            logger.warning("Error updating chat list entry of %s", uid, exc_info=True)


def send_message(db, rtdb, user, chat, text):
    """Append one message and refresh the chat summaries.

    The summary writes are independent of the message write; if they fail
    the message is still delivered. Returns the new message id, or ``None``
    for blank text.
    """
    text = (text or '').strip()
    if not text:
        return None
    timestamp = now_ms()
    message = compose_message(user, chat, text, timestamp)
    message_ref = rtdb.reference(f"{RTDB_MESSAGES}/{chat['id']}").push(encode_message(message))
    _update_chat_summary(db, user, chat, text, timestamp)
    return message_ref.key
