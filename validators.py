# validators.py

from datetime import date, datetime, timezone

from exceptions import ValidationError


def safe_string(s):
    """Assure le nettoyage des chaînes de caractères."""
    if s is None or not isinstance(s, str):
        return s

    s = str(s).strip()
    return s


def require_text(value, field: str, max_length: int = 255) -> str:
    value = safe_string(value)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Le champ '{field}' est requis.", field=field)
    if len(value) > max_length:
        raise ValidationError(f"Le champ '{field}' dépasse {max_length} caractères.", field=field)
    return value


def optional_text(value, field: str, max_length: int = None):
    value = safe_string(value)
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Le champ '{field}' doit être un texte.", field=field)
    if max_length and len(value) > max_length:
        raise ValidationError(f"Le champ '{field}' dépasse {max_length} caractères.", field=field)
    return value


def require_int(value, field: str, minimum: int = None, maximum: int = None) -> int:
    # bool est un int en Python, on le refuse explicitement
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Le champ '{field}' doit être un entier.", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Le champ '{field}' doit être un entier.", field=field)
    if isinstance(value, float) and value != number:
        raise ValidationError(f"Le champ '{field}' doit être un entier.", field=field)
    if minimum is not None and number < minimum:
        raise ValidationError(f"Le champ '{field}' doit être >= {minimum}.", field=field)
    if maximum is not None and number > maximum:
        raise ValidationError(f"Le champ '{field}' doit être <= {maximum}.", field=field)
    return number


def optional_date(value, field: str):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Le champ '{field}' n'est pas une date valide (AAAA-MM-JJ).", field=field)


def optional_datetime(value, field: str):
    """Datetime naïf UTC ; les valeurs avec fuseau sont converties."""
    if value in (None, ""):
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Le champ '{field}' n'est pas une date-heure valide.", field=field)
    if not isinstance(value, datetime):
        raise ValidationError(f"Le champ '{field}' n'est pas une date-heure valide.", field=field)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
