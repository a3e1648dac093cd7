"""
Display helpers for amounts on screens and receipts.
"""

ONES = [
    '', 'One', 'Two', 'Three', 'Four', 'Five', 'Six', 'Seven', 'Eight', 'Nine', 'Ten',
    'Eleven', 'Twelve', 'Thirteen', 'Fourteen', 'Fifteen', 'Sixteen', 'Seventeen', 'Eighteen', 'Nineteen',
]
TENS = ['', '', 'Twenty', 'Thirty', 'Forty', 'Fifty', 'Sixty', 'Seventy', 'Eighty', 'Ninety']

# (divisor, word) from largest to smallest, Indian numbering
SCALES = [(10 ** 7, 'Crore'), (10 ** 5, 'Lakh'), (1000, 'Thousand'), (100, 'Hundred')]


def _group_indian(digits):
    """Group an integer digit string as 12,34,567."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ','.join(groups + [tail])


def format_currency(amount):
    """Format an amount as Indian rupees, e.g. 123456.5 -> '₹1,23,456.50'."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return amount
    sign = '-' if value < 0 else ''
    rupees, paise = f"{abs(value):.2f}".split('.')
    return f"{sign}₹{_group_indian(rupees)}.{paise}"


def _words(n):
    if n < 20:
        return ONES[n]
    if n < 100:
        return TENS[n // 10] + ('-' + ONES[n % 10] if n % 10 else '')
    for divisor, word in SCALES:
        if n >= divisor:
            head, rest = divmod(n, divisor)
            text = f"{_words(head)} {word}"
            if rest:
                joiner = ' and ' if divisor == 100 else ' '
                text += joiner + _words(rest)
            return text
    return ''


def number_to_words(amount):
    """Spell an amount for the 'amount in words' line of a receipt.

    >>> number_to_words(1250)
    'One Thousand Two Hundred and Fifty Only'
    """
    try:
        value = round(abs(float(amount)), 2)
    except (TypeError, ValueError):
        return ''
    rupees = int(value)
    paise = int(round((value - rupees) * 100))
    if rupees == 0 and paise == 0:
        return 'Zero'
    parts = []
    if rupees:
        parts.append(_words(rupees))
    if paise:
        parts.append(f"{_words(paise)} Paise")
    return ' and '.join(parts) + ' Only'


def comma_int(value):
    """Format number with comma separators (no decimal places)"""
    try:
        return "{:,}".format(int(float(value)))
    except (ValueError, TypeError):
        return value
