import logging

from channel_logos import enrich_product_logo
from errors import NotFound
from firebase_store import PRODUCTS, USERS, FAVORITES, now_ms

logger = logging.getLogger(__name__)

DESCRIPTION_LABELS = [
    "Monetization:",
    "Ways of promotion:",
    "Sources of expense:",
    "Sources of income:",
    "To support the channel, you need:",
    "Content:",
]


def first_image(product):
    images = product.get('imageUrls') or []
    return images[0] if images else ""


def get_product(db, product_id):
    doc = db.collection(PRODUCTS).document(product_id).get()
    if not doc.exists:
        raise NotFound("Product not found")
    product = doc.to_dict() | {'id': doc.id}
    return enrich_product_logo(db, product)


def is_data_loaded(product):
    """Whether enough channel data is present to offer purchase and favorite."""
    has_logo = bool(product.get('channelLogo')) or bool(product.get('imageUrls'))
    has_subscribers = product.get('subscribers') is not None
    has_name = bool(product.get('displayName'))
    return has_logo and has_subscribers and has_name


def _monthly_figure(text, marker):
    if marker not in text:
        return None
    return text.split(marker)[0].split('$')[-1].strip() or "N/A"


def parse_description(product):
    """Split a seller's free-text channel description into labeled sections.

    Descriptions without a ``Monetization:`` block are returned unstructured.
    Income and expense are only recovered from the text when the product
    lacks the numeric fields.
    """
    text = product.get('description') or ''
    if "Monetization:" not in text:
        return {'summary': text.strip(), 'sections': []}

    sections = []
    for i, label in enumerate(DESCRIPTION_LABELS):
        if label not in text:
            continue
        value = text.split(label, 1)[1]
        if label == "Content:":
            value = value.split('$')[0]
        else:
            for later in DESCRIPTION_LABELS[i + 1:]:
                value = value.split(later)[0]
        sections.append({'label': label.rstrip(':'), 'value': value.strip() or "N/A"})

    parsed = {'summary': text.split("Monetization:")[0].strip(), 'sections': sections}
    if not product.get('monthlyIncome'):
        income = _monthly_figure(text, "income (month)")
        if income:
            parsed['monthlyIncome'] = income
    if not product.get('monthlyExpenses'):
        expense = _monthly_figure(text, "expense (month)")
        if expense:
            parsed['monthlyExpenses'] = expense
    return parsed


def delete_listing(db, user, product):
    if user.id != product.get('userId'):
        logger.info("User %s tried to delete listing %s they do not own", user.id, product['id'])
        return False
    db.collection(PRODUCTS).document(product['id']).delete()
    return True


def list_user_products(db, user):
    products = []
    products_ref = db.collection(PRODUCTS).where('userId', '==', user.id).stream()
    for doc in products_ref:
        products.append(doc.to_dict() | {'id': doc.id})
    products.sort(key=lambda p: p.get('createdAt') or 0, reverse=True)
    return products


# --- FAVORITES ---

def _favorite_ref(db, user_id, product_id):
    return db.collection(USERS).document(user_id).collection(FAVORITES).document(product_id)


def is_favorite(db, user, product_id):
    return _favorite_ref(db, user.id, product_id).get().exists


def toggle_favorite(db, user, product):
    """Flip the favorite marker and return the new state.

    Check-then-write, so concurrent toggles from two sessions resolve to
    whichever write lands last.
    """
    favorite_ref = _favorite_ref(db, user.id, product['id'])
    if favorite_ref.get().exists:
        favorite_ref.delete()
        return False
    favorite_ref.set({
        'productId': product['id'],
        'addedAt': now_ms(),
        'productName': product.get('displayName'),
        'productPrice': product.get('price'),
        'productImage': first_image(product),
    })
    return True
