from quorum.services.errors import ValidationError


def clean_text(value, label, required=False, max_length=None):
    """Strip a text field. Missing and blank values come back as None."""
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError(f"{label} must be text.")

    if required and not text:
        raise ValidationError(f"{label} is required.")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{label} is too long.")
    return text or None


def clean_flag(value, label, default=False):
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{label} must be true or false.")
    return value
