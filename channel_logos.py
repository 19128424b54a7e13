import re
import logging
from urllib.parse import urlparse

from firebase_store import CHANNEL_LOGOS, PRODUCTS

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = ('youtube.com', 'www.youtube.com', 'm.youtube.com')
_CHANNEL_PATH = re.compile(r'^/channel/(UC[\w-]+)')
_HANDLE_PATH = re.compile(r'^/(@[\w.-]+)')
_LEGACY_PATH = re.compile(r'^/(?:c|user)/([\w.-]+)')


def extract_channel_id_from_url(url):
    """Channel id, @handle or legacy custom name from a YouTube channel URL."""
    if not url:
        return None
    if '://' not in url:
        url = 'https://' + url
    parsed = urlparse(url)
    if parsed.netloc.lower() not in YOUTUBE_HOSTS:
        return None
    for pattern in (_CHANNEL_PATH, _HANDLE_PATH, _LEGACY_PATH):
        match = pattern.match(parsed.path)
        if match:
            return match.group(1)
    return None


def get_channel_logo(db, channel_id):
    doc = db.collection(CHANNEL_LOGOS).document(channel_id).get()
    return doc.to_dict() if doc.exists else None


def enrich_product_logo(db, product):
    """Fill in ``channelLogo`` from the cached logos and backfill the product.

    Lookup or write failures are logged only; the product is returned either way.
    """
    if product.get('platform') != 'YouTube':
        return product

    channel_id = product.get('channelId')
    derived = False
    if not channel_id and product.get('accountLink'):
        channel_id = extract_channel_id_from_url(product['accountLink'])
        derived = True
    if not channel_id:
        return product

    try:
        logo = get_channel_logo(db, channel_id)
        if not logo or not logo.get('logoUrl'):
            return product
        stored_logo = product.get('channelLogo')
        product['channelLogo'] = logo['logoUrl']
        product_ref = db.collection(PRODUCTS).document(product['id'])
        if derived:
            product['channelId'] = channel_id
            product_ref.update({'channelLogo': logo['logoUrl'], 'channelId': channel_id})
        elif stored_logo != logo['logoUrl']:
            product_ref.update({'channelLogo': logo['logoUrl']})
    except Exception:
        logger.warning("Error fetching channel logo for %s", product.get('id'), exc_info=True)
    return product
