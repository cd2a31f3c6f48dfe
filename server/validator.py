import re
from dataclasses import dataclass, field

from config.config import InputLimits
from utils.utils import generate_secure_id

AGE_FIELD = "age"
BMI_FIELD = "BMI"

_INTEGER = re.compile(r"[+-]?[0-9]+")


class InvalidInput(ValueError):
    """Client-correctable input problem; the session re-prompts"""

    def __init__(self, field_name: str, reason: str):
        super().__init__(f"Invalid {field_name}: {reason}")
        self.field = field_name
        self.reason = reason


@dataclass(frozen=True)
class ProofRequest:
    # Private values stay out of repr so they cannot reach a log line by accident
    age: int = field(repr=False)
    bmi_scaled: int = field(repr=False)
    request_id: str = field(default_factory=generate_secure_id)


def parse_integer(token: str, field_name: str) -> int:
    token = token.strip()
    if not _INTEGER.fullmatch(token):
        raise InvalidInput(field_name, "not a whole number")
    return int(token)


def _check_range(value: int, low: int, high: int, field_name: str) -> int:
    if not low <= value <= high:
        raise InvalidInput(field_name, f"must be between {low} and {high}")
    return value


def validate_age(token: str, limits: InputLimits) -> int:
    return _check_range(parse_integer(token, AGE_FIELD),
                        limits.min_age, limits.max_age, AGE_FIELD)


def validate_bmi(token: str, limits: InputLimits) -> int:
    return _check_range(parse_integer(token, BMI_FIELD),
                        limits.min_bmi, limits.max_bmi, BMI_FIELD)


def validate_request(age_token: str, bmi_token: str, limits: InputLimits) -> ProofRequest:
    """Validate both raw tokens and mint a request with a fresh id"""
    return ProofRequest(age=validate_age(age_token, limits),
                        bmi_scaled=validate_bmi(bmi_token, limits))
