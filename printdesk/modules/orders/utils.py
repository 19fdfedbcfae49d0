import secrets
import string
from decimal import Decimal

BASE36_ALPHABET = string.digits + string.ascii_uppercase
TRACKING_PREFIX = 'MUV'

# Base price per product type for runs of up to 100 units
PRODUCT_BASE_PRICES = {
    'sticker': Decimal('500'),
    'labels': Decimal('500'),
    'tag': Decimal('800'),
    'box': Decimal('1500'),
    'medicine_box': Decimal('2000'),
    'custom': Decimal('3000'),
}

# (max quantity, multiplier); anything larger uses the last multiplier
QUANTITY_TIERS = (
    (100, Decimal('1')),
    (500, Decimal('1.5')),
    (1000, Decimal('2')),
)
LARGE_RUN_MULTIPLIER = Decimal('3')


def to_base36(number):
    if number < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return ''.join(reversed(digits))


def generate_tracking_id(created_at):
    """MUV + base36 creation time in ms + 3 random base36 characters"""
    millis = int(created_at.timestamp() * 1000)
    suffix = ''.join(secrets.choice(BASE36_ALPHABET) for _ in range(3))
    return f"{TRACKING_PREFIX}{to_base36(millis)}{suffix}"


def normalize_product_type(product_type):
    return (product_type or '').strip().lower().replace(' ', '_').replace('-', '_')


def estimate_price(product_type, quantity):
    """
    Estimated order total for a product type and quantity.

    Returns None for product types without a list price.
    """
    base = PRODUCT_BASE_PRICES.get(normalize_product_type(product_type))
    if base is None:
        return None
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        return None
    for max_quantity, multiplier in QUANTITY_TIERS:
        if quantity <= max_quantity:
            return base * multiplier
    return base * LARGE_RUN_MULTIPLIER
