import logging

from chats import new_transaction_id
from errors import NotFound, PermissionDenied, InvalidRequest
from firebase_store import (
    WALLET_ADDRESSES, ADMIN_NOTIFICATIONS, RTDB_MESSAGES, RTDB_ADMIN_REQUESTS, now_ms,
)
from schemas import SystemMessage, TransactionMessage, decode_message, encode_message

logger = logging.getLogger(__name__)

ESCROW_AGENT_NOTICE = "An admin (escrow agent) has been requested for this chat. They will join shortly."


def request_escrow_agent(rtdb, user, chat):
    """Queue the chat for a human escrow agent and tell the participants."""
    timestamp = now_ms()
    request = {
        'chatId': chat['id'],
        'productId': chat.get('productId') or '',
        'productName': chat.get('productName') or 'Unknown Product',
        'requestedBy': user.id,
        'requestedByName': user.display_name,
        'timestamp': timestamp,
    }
    request_ref = rtdb.reference(RTDB_ADMIN_REQUESTS).push(request)

    notice = SystemMessage(sender_id='system', sender_name='System', text=ESCROW_AGENT_NOTICE, timestamp=timestamp)
    rtdb.reference(f"{RTDB_MESSAGES}/{chat['id']}").push(encode_message(notice))
    logger.info("Escrow agent requested for chat %s by %s", chat['id'], user.id)
    return request | {'id': request_ref.key}


def submitted_transactions(db, user):
    """Transaction ids for which ``user`` already handed in payout details."""
    wallets = db.collection(WALLET_ADDRESSES).where('userId', '==', user.id).stream()
    return {doc.to_dict().get('transactionId') for doc in wallets}


def has_submitted_wallet(db, user, transaction_id):
    return transaction_id in submitted_transactions(db, user)


def submit_wallet_address(db, rtdb, user, chat, message_id, address):
    """Record the seller's payout details for a transaction message.

    Writes the wallet record and the operator notification in one batch.
    No chat message is sent. Returns the stored wallet record.
    """
    address = (address or '').strip()
    if not address:
        raise InvalidRequest("Wallet address is required")
    if not message_id:
        raise InvalidRequest("Message id is required")

    record = rtdb.reference(f"{RTDB_MESSAGES}/{chat['id']}/{message_id}").get()
    if not record:
        raise NotFound("Message not found")
    message = decode_message(record)
    if not isinstance(message, TransactionMessage) or not message.accepts_wallet:
        raise InvalidRequest("Message is not a purchase request")
    if user.id == message.sender_id or user.id not in (chat.get('participants') or []):
        raise PermissionDenied("Only the seller can submit payout details")

    details = message.transaction
    transaction_id = details.transaction_id or new_transaction_id()
    product_id = details.product_id or chat.get('productId') or ''
    product_name = details.product_name or chat.get('productName') or 'Unknown Product'
    buyer_name = (chat.get('participantNames') or {}).get(message.sender_id) or message.sender_name or "Unknown Buyer"
    timestamp = now_ms()

    wallet = {
        'userId': user.id,
        'chatId': chat['id'],
        'productId': product_id,
        'transactionId': transaction_id,
        'paymentMethod': details.payment_method,
        'address': address,
        'createdAt': timestamp,
    }
    notification = {
        'type': 'wallet_added',
        'chatId': chat['id'],
        'productId': product_id,
        'productName': product_name,
        'transactionId': transaction_id,
        'buyerName': buyer_name,
        'buyerId': message.sender_id,
        'sellerName': user.display_name,
        'sellerId': user.id,
        'paymentMethod': details.payment_method,
        'amount': details.amount,
        'walletAddress': address,
        'createdAt': timestamp,
        'read': False,
    }

    wallet_ref = db.collection(WALLET_ADDRESSES).document()
    batch = db.batch()
    batch.set(wallet_ref, wallet)
    batch.set(db.collection(ADMIN_NOTIFICATIONS).document(), notification)
    batch.commit()
    logger.info("Wallet details submitted for transaction %s in chat %s", transaction_id, chat['id'])
    return wallet | {'id': wallet_ref.id, 'notification': notification}
