"""Quantity parsing utilities (accepts 1.234,5 and 1234.5 styles)."""
import re
from decimal import Decimal, InvalidOperation

AR_NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+)(?:,\d+)?$")
PLAIN_NUMBER_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")
QUICK_ADJUST_PATTERN = re.compile(r"^([+-]?)\s*(\S+)$")

# Quantity columns are NUMERIC(12, 2)
QUANTITY_STEP = Decimal('0.01')
MAX_QUANTITY = Decimal('9999999999.99')


def parse_quantity(value) -> Decimal:
    """
    Parse a non-negative quantity to Decimal.

    Accepts numbers, plain strings (1234.5) and the local format with dot
    thousands and comma decimals (1.234,5). A dotted value with proper
    thousand grouping (1.234) is read in the local format. The result has
    two decimal places.

    Raises:
        ValueError: if the value is empty, malformed, negative, has more
            than two decimals or does not fit in a quantity column.
    """
    if value is None:
        raise ValueError('Cantidad requerida')

    if isinstance(value, bool):
        raise ValueError('Cantidad inválida')

    if isinstance(value, (int, float, Decimal)):
        try:
            decimal_value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError('Cantidad inválida')
    else:
        cleaned = str(value).strip()
        if not cleaned:
            raise ValueError('Cantidad requerida')

        if cleaned.startswith('-'):
            raise ValueError('La cantidad no puede ser negativa')

        if AR_NUMBER_PATTERN.match(cleaned):
            normalized = cleaned.replace('.', '').replace(',', '.')
        elif PLAIN_NUMBER_PATTERN.match(cleaned):
            normalized = cleaned
        else:
            raise ValueError(f'Cantidad inválida: {cleaned}')

        try:
            decimal_value = Decimal(normalized)
        except (InvalidOperation, ValueError):
            raise ValueError(f'Cantidad inválida: {cleaned}')

    if not decimal_value.is_finite():
        raise ValueError('Cantidad inválida')

    if decimal_value < 0:
        raise ValueError('La cantidad no puede ser negativa')

    if decimal_value > MAX_QUANTITY:
        raise ValueError('Cantidad demasiado grande')

    quantized = decimal_value.quantize(QUANTITY_STEP)
    if quantized != decimal_value:
        raise ValueError('La cantidad admite como máximo 2 decimales')

    return quantized


def parse_optional_quantity(value):
    """Like parse_quantity, but blank/None means 'not set' and returns None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return parse_quantity(value)


def split_signed_quantity(text):
    """
    Split '+5' / '-3' / '12' into (sign, magnitude).

    sign is '+', '-' or '' for a bare absolute value.
    """
    if text is None:
        raise ValueError('Ajuste requerido')
    cleaned = str(text).strip()
    match = QUICK_ADJUST_PATTERN.match(cleaned)
    if not match:
        raise ValueError(f'Ajuste inválido: "{cleaned}"')
    sign, magnitude = match.groups()
    return sign, parse_quantity(magnitude)
