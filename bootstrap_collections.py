"""
Create a placeholder document in every collection the marketplace uses,
so empty collections show up in the Firebase console.

Run once per project:  channelmart-create-collections
"""

import sys
import logging
import datetime

import firebase_store
from config import Config

logger = logging.getLogger(__name__)

PLACEHOLDER_DOC_ID = 'placeholder_doc_id'

COLLECTIONS = [
    'users',
    'products',
    'chats',
    'reviews',
    'admin_notifications',
    'paid',
    'channelLogos',
    'productViews',
    'featured_products',
    'product_categories',
]


def create_all_collections(db):
    created = []
    for collection_name in COLLECTIONS:
        db.collection(collection_name).document(PLACEHOLDER_DOC_ID).set({
            'createdAt': datetime.datetime.now(datetime.timezone.utc).isoformat(),
            'info': f"This is a placeholder document for {collection_name} collection",
            'isPlaceholder': True,
        })
        logger.info("Created collection: %s", collection_name)
        created.append(collection_name)
    return created


def main():
    logging.basicConfig(level=Config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    config = {k: getattr(Config, k) for k in dir(Config) if k.isupper()}
    db, _ = firebase_store.connect(config)
    if db is None:
        logger.error("Cannot create collections without Firebase credentials.")
        return 1
    try:
        logger.info("Starting to create collections...")
        create_all_collections(db)
    except Exception:
        logger.exception("Error creating collections")
        return 1
    logger.info("All collections have been created successfully!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
