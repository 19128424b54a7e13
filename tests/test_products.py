import pytest

from channel_logos import extract_channel_id_from_url, enrich_product_logo
from errors import NotFound
from products import (
    get_product, is_data_loaded, parse_description, delete_listing,
    list_user_products, is_favorite, toggle_favorite,
)


@pytest.mark.parametrize('url, expected', [
    ('https://www.youtube.com/channel/UCabcdefghijklmnopqrstuv', 'UCabcdefghijklmnopqrstuv'),
    ('https://youtube.com/@techreviews', '@techreviews'),
    ('youtube.com/c/TechReviews/videos', 'TechReviews'),
    ('https://m.youtube.com/user/oldname', 'oldname'),
    ('https://www.youtube.com/watch?v=dQw4w9WgXcQ', None),
    ('https://vimeo.com/channel/UCabc', None),
    ('', None),
])
def test_extract_channel_id_from_url(url, expected):
    assert extract_channel_id_from_url(url) == expected


def test_get_product_missing(fake_db):
    with pytest.raises(NotFound):
        get_product(fake_db, 'missing')


def test_logo_backfilled_from_channel_id(fake_db, product):
    fake_db.docs['products/prod-1']['channelId'] = 'UC123'
    fake_db.seed('channelLogos/UC123', {'logoUrl': 'https://logo.example.com/uc123.png'})

    loaded = get_product(fake_db, 'prod-1')
    assert loaded['channelLogo'] == 'https://logo.example.com/uc123.png'
    assert fake_db.docs['products/prod-1']['channelLogo'] == 'https://logo.example.com/uc123.png'


def test_logo_patch_skipped_when_unchanged(fake_db, product):
    fake_db.docs['products/prod-1'].update({'channelId': 'UC123', 'channelLogo': 'https://logo/x.png'})
    fake_db.seed('channelLogos/UC123', {'logoUrl': 'https://logo/x.png'})
    fake_db.failing_paths.add('products/')

    # Any write would blow up; none should be attempted.
    assert get_product(fake_db, 'prod-1')['channelLogo'] == 'https://logo/x.png'


def test_logo_and_channel_id_derived_from_account_link(fake_db, product):
    fake_db.seed('channelLogos/@techreviews', {'logoUrl': 'https://logo/tech.png'})

    loaded = get_product(fake_db, 'prod-1')
    assert loaded['channelId'] == '@techreviews'
    stored = fake_db.docs['products/prod-1']
    assert stored['channelLogo'] == 'https://logo/tech.png'
    assert stored['channelId'] == '@techreviews'


def test_logo_failure_is_swallowed(fake_db, product):
    fake_db.seed('channelLogos/@techreviews', {'logoUrl': 'https://logo/tech.png'})
    fake_db.failing_paths.add('products/')

    loaded = get_product(fake_db, 'prod-1')
    assert loaded['displayName'] == 'Tech Reviews'
    assert 'channelLogo' not in fake_db.docs['products/prod-1']


def test_non_youtube_products_are_not_enriched(fake_db):
    listing = {'id': 'p', 'platform': 'TikTok', 'channelId': 'UC123'}
    fake_db.seed('channelLogos/UC123', {'logoUrl': 'https://logo/x.png'})
    assert 'channelLogo' not in enrich_product_logo(fake_db, listing)


def test_is_data_loaded(product):
    assert is_data_loaded(product)
    assert not is_data_loaded(product | {'subscribers': None})
    assert not is_data_loaded(product | {'imageUrls': []})
    assert is_data_loaded(product | {'imageUrls': [], 'channelLogo': 'https://logo/x.png'})
    assert not is_data_loaded(product | {'displayName': ''})


def test_parse_plain_description():
    parsed = parse_description({'description': '  Just a gaming channel.  '})
    assert parsed == {'summary': 'Just a gaming channel.', 'sections': []}


def test_parse_structured_description():
    description = (
        "Great channel for sale.\n"
        "Monetization: AdSense\n"
        "Ways of promotion: SEO, shorts\n"
        "Sources of expense: editing\n"
        "Sources of income: ads, sponsors\n"
        "To support the channel, you need: 2 hours a week\n"
        "Content: reviews of phones $250 income (month) $40 expense (month)"
    )
    parsed = parse_description({'description': description})

    assert parsed['summary'] == 'Great channel for sale.'
    assert parsed['sections'] == [
        {'label': 'Monetization', 'value': 'AdSense'},
        {'label': 'Ways of promotion', 'value': 'SEO, shorts'},
        {'label': 'Sources of expense', 'value': 'editing'},
        {'label': 'Sources of income', 'value': 'ads, sponsors'},
        {'label': 'To support the channel, you need', 'value': '2 hours a week'},
        {'label': 'Content', 'value': 'reviews of phones'},
    ]
    assert parsed['monthlyIncome'] == '250'
    assert parsed['monthlyExpenses'] == '40'


def test_parse_description_prefers_numeric_fields():
    description = "Monetization:\n$250 income (month)"
    parsed = parse_description({'description': description, 'monthlyIncome': 300})
    assert 'monthlyIncome' not in parsed
    assert parsed['sections'][0] == {'label': 'Monetization', 'value': '$250 income (month)'}


def test_toggle_favorite_twice_restores_state(fake_db, buyer, product):
    assert not is_favorite(fake_db, buyer, 'prod-1')

    assert toggle_favorite(fake_db, buyer, product) is True
    snapshot = fake_db.docs['users/buyer-1/favorites/prod-1']
    assert snapshot['productName'] == 'Tech Reviews'
    assert snapshot['productPrice'] == 12
    assert snapshot['productImage'] == 'https://img.example.com/1.png'

    assert toggle_favorite(fake_db, buyer, product) is False
    assert not is_favorite(fake_db, buyer, 'prod-1')


def test_delete_listing_only_by_owner(fake_db, buyer, seller, product):
    assert delete_listing(fake_db, buyer, product) is False
    assert 'products/prod-1' in fake_db.docs
    assert delete_listing(fake_db, seller, product) is True
    assert 'products/prod-1' not in fake_db.docs


def test_list_user_products_newest_first(fake_db, seller, product):
    fake_db.seed('products/prod-2', {'displayName': 'Newer', 'userId': 'seller-1', 'createdAt': 1800000000000})
    fake_db.seed('products/prod-3', {'displayName': 'Not mine', 'userId': 'other'})
    assert [p['id'] for p in list_user_products(fake_db, seller)] == ['prod-2', 'prod-1']
