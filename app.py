import json
import queue
import logging
from threading import Thread
from firebase_admin import auth
from flask import Flask, Response, request, redirect, url_for, session, jsonify, stream_with_context
from flask_mail import Mail, Message

import firebase_store
from config import Config, public_firebase_config
from errors import MarketplaceError, ServiceUnavailable
from schemas import Identity
from products import (
    get_product, is_data_loaded, parse_description, delete_listing,
    list_user_products, is_favorite, toggle_favorite,
)
from chats import (
    contact_seller, get_chat, list_chat_entries, mark_chat_read,
    load_messages, render_messages, send_message, MessageStream,
)
from escrow import request_escrow_agent, submit_wallet_address, submitted_transactions

app = Flask(__name__)
app.config.from_object(Config)

logging.basicConfig(level=app.config['LOG_LEVEL'], format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

mail = Mail(app)

STREAM_KEEPALIVE_SECONDS = 15

db, rtdb = firebase_store.connect(app.config)

# --- HELPER FUNCTIONS ---

def send_async_email(app, msg):
    with app.app_context():
        try:
            mail.send(msg)
            logger.info("Email sent to %s", msg.recipients)
        except Exception as e:
            logger.warning("Failed to send email: %s", e)


def notify(subject, recipients, body):
    recipients = [r for r in recipients if r]
    if not recipients:
        return
    msg = Message(subject, recipients=recipients)
    msg.body = body
    Thread(target=send_async_email, args=(app, msg)).start()


def login_required(f):
    def wrap(*args, **kwargs):
        if Identity.from_session(session) is None: return redirect(url_for('login'))
        return f(*args, **kwargs)
    wrap.__name__ = f.__name__
    return wrap


def current_user():
    return Identity.from_session(session)


def store():
    if db is None:
        raise ServiceUnavailable("Document store is not configured")
    return db


def realtime():
    if rtdb is None:
        raise ServiceUnavailable("Realtime chat is not configured")
    return rtdb


def error_response(e):
    if isinstance(e, MarketplaceError):
        return jsonify({'success': False, 'message': e.message}), e.status_code
    logger.exception("Unhandled error in %s", request.path)
    return jsonify({'success': False, 'message': 'Server Error'}), 500

# --- ROUTES ---

@app.route('/')
def index():
    if current_user(): return redirect(url_for('my_chats'))
    return redirect(url_for('login'))

@app.route('/login', methods=['GET'])
def login(): return jsonify({'success': True, 'firebase': public_firebase_config(app.config)})

@app.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('login'))

@app.route('/my-products')
@login_required
def my_products():
    try:
        return jsonify({'success': True, 'products': list_user_products(store(), current_user())})
    except Exception as e: return error_response(e)

@app.route('/my-chats')
@login_required
def my_chats():
    try:
        chats = list_chat_entries(store(), current_user())
        return jsonify({'success': True, 'chats': chats, 'selectedChatId': request.args.get('chatId')})
    except Exception as e: return error_response(e)

# --- API ROUTES ---

@app.route('/api/login', methods=['POST'])
def api_login():
    data = request.get_json()
    try:
        decoded_token = auth.verify_id_token(data['idToken'], clock_skew_seconds=60)
        uid = decoded_token['uid']
        email = decoded_token.get('email')
        is_admin = email in app.config['ADMIN_EMAILS'] or bool(decoded_token.get('admin'))
        session.update({
            'logged_in': True, 'uid': uid, 'user_email': email, 'user_name': decoded_token.get('name'),
            'photo_url': decoded_token.get('picture'), 'is_admin': is_admin,
        })
        store().collection(firebase_store.USERS).document(uid).set({
            'email': email, 'name': decoded_token.get('name'), 'photoURL': decoded_token.get('picture'),
            'lastLoginAt': firebase_store.now_ms(),
        }, merge=True)
        return jsonify({'success': True, 'redirect_url': url_for('my_chats')})
    except Exception as e:
        logger.warning("Login error: %s", e)
        return jsonify({'success': False, 'message': 'Login failed.'}), 401

@app.route('/api/products/<product_id>')
def api_product(product_id):
    user = current_user()
    try:
        product = get_product(store(), product_id)
        return jsonify({
            'success': True, 'product': product,
            'isFavorite': bool(user) and is_favorite(db, user, product_id),
            'isOwner': bool(user) and user.id == product.get('userId'),
            'dataLoaded': is_data_loaded(product),
            'description': parse_description(product),
        })
    except Exception as e: return error_response(e)

@app.route('/api/products/<product_id>/favorite', methods=['POST'])
@login_required
def api_toggle_favorite(product_id):
    try:
        product = get_product(store(), product_id)
        return jsonify({'success': True, 'isFavorite': toggle_favorite(db, current_user(), product)})
    except Exception as e: return error_response(e)

@app.route('/api/products/<product_id>/delete', methods=['POST'])
@login_required
def api_delete_product(product_id):
    try:
        product = get_product(store(), product_id)
        if delete_listing(db, current_user(), product):
            return jsonify({'success': True, 'redirect_url': url_for('my_products')})
        return jsonify({'success': False}), 403
    except Exception as e: return error_response(e)

@app.route('/api/products/<product_id>/contact', methods=['POST'])
@login_required
def api_contact_seller(product_id):
    user = current_user()
    try:
        product = get_product(store(), product_id)
        result = contact_seller(db, realtime(), user, product)
        if result is None: return jsonify({'success': False}), 400
        chat_id, created = result
        if created:
            notify('Someone wants to buy your channel!', [product.get('userEmail')],
                   f"{user.display_name} wants to buy {product.get('displayName')}. Open your chats to reply.")
        return jsonify({'success': True, 'chatId': chat_id, 'redirect_url': url_for('my_chats', chatId=chat_id)})
    except Exception as e: return error_response(e)

@app.route('/api/chats/<chat_id>')
@login_required
def api_chat(chat_id):
    user = current_user()
    try:
        chat = get_chat(store(), user, chat_id)
        messages = render_messages(load_messages(realtime(), chat_id), user, submitted_transactions(db, user))
        mark_chat_read(db, user, chat_id)
        return jsonify({'success': True, 'chat': chat, 'messages': messages})
    except Exception as e: return error_response(e)

@app.route('/api/chats/<chat_id>/stream')
@login_required
def api_chat_stream(chat_id):
    user = current_user()
    try:
        get_chat(store(), user, chat_id)
        source = realtime()
    except Exception as e: return error_response(e)

    updates = queue.Queue()

    def event_stream():
        stream = MessageStream(source, chat_id, updates.put, lambda e: updates.put(None))
        try:
            while True:
                try:
                    messages = updates.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ': keepalive\n\n'
                    continue
                if messages is None:
                    yield 'event: error\ndata: ' + json.dumps({'message': 'Failed to load messages'}) + '\n\n'
                    return
                yield 'data: ' + json.dumps(render_messages(messages, user, submitted_transactions(db, user))) + '\n\n'
        finally:
            stream.close()

    return Response(stream_with_context(event_stream()), mimetype='text/event-stream')

@app.route('/api/chats/<chat_id>/messages', methods=['POST'])
@login_required
def api_send_message(chat_id):
    data = request.get_json(silent=True) or {}
    user = current_user()
    try:
        chat = get_chat(store(), user, chat_id)
        message_id = send_message(db, realtime(), user, chat, data.get('text'))
        if message_id is None: return jsonify({'success': False, 'message': 'Message is empty'}), 400
        return jsonify({'success': True, 'messageId': message_id})
    except Exception as e: return error_response(e)

@app.route('/api/chats/<chat_id>/request_admin', methods=['POST'])
@login_required
def api_request_admin(chat_id):
    user = current_user()
    try:
        chat = get_chat(store(), user, chat_id)
        admin_request = request_escrow_agent(realtime(), user, chat)
        notify('Escrow agent requested', app.config['ADMIN_EMAILS'],
               f"{user.display_name} asked for an escrow agent in chat {chat_id} ({admin_request['productName']}).")
        return jsonify({'success': True, 'message': 'Escrow agent request sent successfully!'})
    except Exception as e: return error_response(e)

@app.route('/api/chats/<chat_id>/wallet', methods=['POST'])
@login_required
def api_submit_wallet(chat_id):
    data = request.get_json(silent=True) or {}
    user = current_user()
    try:
        chat = get_chat(store(), user, chat_id)
        wallet = submit_wallet_address(db, realtime(), user, chat, data.get('messageId'), data.get('address'))
        notify('Seller payout details submitted', app.config['ADMIN_EMAILS'],
               f"{user.display_name} submitted {wallet['paymentMethod']} details for transaction {wallet['transactionId']}.")
        return jsonify({'success': True, 'submitted': True, 'transactionId': wallet['transactionId']})
    except Exception as e: return error_response(e)

if __name__ == '__main__':
    app.run(debug=True)
