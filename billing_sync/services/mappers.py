import logging
import re
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from dateutil import parser as dateparser

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    # pt-BR abbreviations seen in Iugu dashboards
    "fev": 2, "abr": 4, "mai": 5, "ago": 8, "set": 9, "out": 10, "dez": 12,
}

_DDMM_TIME_RE = re.compile(r"^(\d{1,2})/(\d{1,2}),\s*(\d{1,2}):(\d{2})$")
_DDMMYYYY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:[ T,]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$")
_MONTH_NAME_RE = re.compile(r"^(\d{1,2})\s+([A-Za-z]{3})\s+(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EPOCH_RE = re.compile(r"^\d{9,10}$")
_YEAR_FIRST_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _sane(dt: datetime | None, raw) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=dt_timezone.utc)
    if not (MIN_YEAR <= dt.year <= MAX_YEAR):
        logger.warning("Discarding out-of-range timestamp %r (year %s)", raw, dt.year)
        return None
    return dt


def parse_upstream_datetime(value, now: datetime | None = None) -> datetime | None:
    """
    Normalize the assorted timestamp shapes Iugu emits to an aware UTC-based datetime.
    Returns None for empty, unparseable or out-of-range values; never the raw text.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _sane(value, value)
    if isinstance(value, date):
        return _sane(datetime(value.year, value.month, value.day), value)
    if isinstance(value, (int, float)):
        try:
            return _sane(datetime.fromtimestamp(value, tz=dt_timezone.utc), value)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None
    year = (now or datetime.now(dt_timezone.utc)).year

    try:
        if _EPOCH_RE.match(text):
            return _sane(datetime.fromtimestamp(int(text), tz=dt_timezone.utc), value)

        if _DATE_ONLY_RE.match(text):
            return _sane(datetime.strptime(text, "%Y-%m-%d"), value)

        # "01/07, 13:02" (day/month, no year)
        m = _DDMM_TIME_RE.match(text)
        if m:
            day, month, hour, minute = (int(x) for x in m.groups())
            return _sane(datetime(year, month, day, hour, minute), value)

        # "13/09/2025" or "13/09/2025 10:20"
        m = _DDMMYYYY_RE.match(text)
        if m:
            day, month, yr = int(m.group(1)), int(m.group(2)), int(m.group(3))
            hour, minute, second = (int(m.group(i) or 0) for i in (4, 5, 6))
            return _sane(datetime(yr, month, day, hour, minute, second), value)

        # "26 Feb 10:20 PM"
        m = _MONTH_NAME_RE.match(text)
        if m:
            day, month_name, hour, minute, ampm = m.groups()
            month = _MONTHS.get(month_name.lower())
            if not month:
                return None
            hour24 = int(hour) % 12 + (12 if ampm.upper() == "PM" else 0)
            return _sane(datetime(year, month, int(day), hour24, int(minute)), value)

        # Year-first text is ISO-like, whatever the date/time separator.
        if _YEAR_FIRST_RE.match(text):
            try:
                return _sane(dateparser.isoparse(text), value)
            except ValueError:
                return _sane(dateparser.parse(text, yearfirst=True, dayfirst=False), value)

        return _sane(dateparser.parse(text, dayfirst=True), value)
    except (ValueError, OverflowError) as e:
        logger.warning("Unparseable timestamp %r: %s", value, e)
        return None


def to_date(value) -> date | None:
    dt = parse_upstream_datetime(value)
    return dt.date() if dt else None


_MONEY_STRIP_RE = re.compile(r"[^\d,.\-]")


def _decimal_from_text(text: str) -> Decimal | None:
    cleaned = _MONEY_STRIP_RE.sub("", text)
    if not cleaned or cleaned in ("-", ".", ","):
        return None
    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal one ("1.234,56" vs "1,234.56").
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def cents(record: dict, cents_key: str, decimal_key: str | None = None) -> int | None:
    """
    Money as integer minor units. The upstream *_cents field wins; the decimal
    representation ("R$ 10,50", "10.50", 10.5) is a rounding fallback.
    """
    raw = record.get(cents_key)
    if raw not in (None, ""):
        try:
            return int(Decimal(str(raw)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            logger.warning("Ignoring non-numeric %s=%r", cents_key, raw)

    if not decimal_key:
        return None
    raw = record.get(decimal_key)
    if raw in (None, ""):
        return None
    amount = Decimal(str(raw)) if isinstance(raw, (int, float)) else _decimal_from_text(str(raw))
    if amount is None:
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _first(record: dict, *keys):
    for key in keys:
        val = record.get(key)
        if val not in (None, ""):
            return val
    return None


def _coalesce(*values):
    for val in values:
        if val is not None:
            return val
    return None


def _to_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_bool(value) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "t")


def _str(value) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


def _base(record: dict) -> dict:
    return {
        "created_at_iugu": parse_upstream_datetime(_first(record, "created_at_iso", "created_at")),
        "updated_at_iugu": parse_upstream_datetime(_first(record, "updated_at_iso", "updated_at")),
        "raw_json": record,
    }


def customer_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "email": _str(record.get("email")),
        "name": _str(record.get("name")),
        "cpf_cnpj": _str(record.get("cpf_cnpj")),
        "phone": _str(_first(record, "phone", "phone_prefix")),
        "notes": _str(record.get("notes")),
    }


def invoice_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "account_id": _str(record.get("account_id")),
        "customer_id": _str(record.get("customer_id")),
        "subscription_id": _str(record.get("subscription_id")),
        "status": _str(record.get("status")),
        "due_date": to_date(record.get("due_date")),
        "paid_at": parse_upstream_datetime(record.get("paid_at")),
        "payment_method": _str(record.get("payment_method")),
        "currency": _str(record.get("currency")),
        "total_cents": cents(record, "total_cents", "total"),
        "paid_cents": _coalesce(cents(record, "paid_cents", "paid"), cents(record, "total_paid_cents")),
        "discount_cents": cents(record, "discount_cents", "discount"),
        "taxes_cents": _coalesce(cents(record, "taxes_paid_cents", "taxes_paid"), cents(record, "tax_cents")),
        "commission_cents": cents(record, "commission_cents", "commission"),
        "payer_name": _str(_first(record, "payer_name", "customer_name")),
        "payer_email": _str(_first(record, "payer_email", "email")),
        "payer_cpf_cnpj": _str(record.get("payer_cpf_cnpj")),
        "external_reference": _str(record.get("external_reference")),
        "secure_url": _str(record.get("secure_url")),
    }


def invoice_item_to_fields(record: dict, invoice_id: str | None = None) -> dict:
    return {
        **_base(record),
        "invoice_id": _str(invoice_id or record.get("invoice_id")),
        "description": _str(record.get("description")),
        "quantity": _to_int(record.get("quantity")),
        "price_cents": cents(record, "price_cents", "price"),
    }


def subscription_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "customer_id": _str(record.get("customer_id")),
        "plan_identifier": _str(record.get("plan_identifier")),
        "suspended": _to_bool(record.get("suspended")),
        "active": _to_bool(record.get("active")),
        "price_cents": cents(record, "price_cents", "price"),
        "expires_at": to_date(record.get("expires_at")),
        "cycled_at": parse_upstream_datetime(record.get("cycled_at")),
    }


def plan_to_fields(record: dict) -> dict:
    prices = record.get("prices")
    value_cents = cents(record, "value_cents", "value")
    if value_cents is None and isinstance(prices, list) and prices and isinstance(prices[0], dict):
        value_cents = cents(prices[0], "value_cents", "value")
    return {
        **_base(record),
        "name": _str(record.get("name")),
        "identifier": _str(record.get("identifier")),
        "interval": _to_int(record.get("interval")),
        "interval_type": _str(record.get("interval_type")),
        "value_cents": value_cents,
        "currency": _str(_first(record, "currency", "value_currency")),
    }


def transfer_to_fields(record: dict) -> dict:
    sender = record.get("sender") if isinstance(record.get("sender"), dict) else {}
    receiver = record.get("receiver") if isinstance(record.get("receiver"), dict) else {}
    return {
        **_base(record),
        "amount_cents": cents(record, "amount_cents", "amount_localized"),
        "currency": _str(record.get("currency")),
        "status": _str(record.get("status")),
        "sender_id": _str(sender.get("id") or record.get("sender_id")),
        "receiver_id": _str(receiver.get("id") or record.get("receiver_id")),
    }


def charge_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "invoice_id": _str(record.get("invoice_id")),
        "customer_id": _str(record.get("customer_id")),
        "status": _str(record.get("status")),
        "method": _str(_first(record, "method", "payment_method")),
        "amount_cents": _coalesce(cents(record, "amount_cents", "amount"), cents(record, "total_cents", "total")),
    }


def chargeback_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "invoice_id": _str(record.get("invoice_id")),
        "status": _str(record.get("status")),
        "reason": _str(_first(record, "reason", "reason_code")),
        "amount_cents": cents(record, "amount_cents", "amount"),
        "expires_at": parse_upstream_datetime(record.get("expires_at")),
    }


def payment_method_to_fields(record: dict) -> dict:
    data = record.get("data") if isinstance(record.get("data"), dict) else {}
    return {
        **_base(record),
        "customer_id": _str(record.get("customer_id")),
        "description": _str(record.get("description")),
        "item_type": _str(record.get("item_type")),
        "brand": _str(_first(data, "brand") or record.get("brand")),
        "last_four": _str(_first(data, "last_digits", "display_number") or record.get("last_four")),
        "is_default": _to_bool(record.get("is_default")),
    }


def account_to_fields(record: dict) -> dict:
    return {
        **_base(record),
        "name": _str(record.get("name")),
        "verified": _to_bool(record.get("is_verified", record.get("verified"))),
        "balance_cents": cents(record, "balance_cents", "balance"),
    }
