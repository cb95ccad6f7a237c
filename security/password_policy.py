import enum
import re
from typing import Iterable, NamedTuple, Optional

from security.settings import DEFAULT_COMMON_PASSWORDS

MIN_LENGTH = 8
MAX_LENGTH = 255

# ASCII classes only so the result never depends on locale
_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")
_REPEATED = re.compile(r"(.)\1{3,}", re.DOTALL)


class PasswordRule(str, enum.Enum):
    WRONG_TYPE = "wrong_type"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    MISSING_UPPERCASE = "missing_uppercase"
    MISSING_LOWERCASE = "missing_lowercase"
    MISSING_DIGIT = "missing_digit"
    MISSING_SPECIAL_CHAR = "missing_special_char"
    TOO_COMMON = "too_common"
    REPEATED_CHARS = "repeated_chars"
    SEQUENTIAL_PATTERN = "sequential_pattern"


_MESSAGES = {
    PasswordRule.WRONG_TYPE: "Password must be a string",
    PasswordRule.TOO_SHORT: f"Password must be at least {MIN_LENGTH} characters",
    PasswordRule.TOO_LONG: f"Password must be at most {MAX_LENGTH} characters",
    PasswordRule.MISSING_UPPERCASE: "Password must include at least 1 uppercase letter",
    PasswordRule.MISSING_LOWERCASE: "Password must include at least 1 lowercase letter",
    PasswordRule.MISSING_DIGIT: "Password must include at least 1 number",
    PasswordRule.MISSING_SPECIAL_CHAR: "Password must include at least 1 special character",
    PasswordRule.TOO_COMMON: "Password is too common. Please choose a more secure password",
    PasswordRule.REPEATED_CHARS: "Password must not repeat a character more than 3 times in a row",
    PasswordRule.SEQUENTIAL_PATTERN: "Password must not contain sequential patterns (like 123 or abc)",
}


class PasswordCheck(NamedTuple):
    ok: bool
    rule: Optional[PasswordRule] = None
    message: Optional[str] = None


def _fail(rule: PasswordRule) -> PasswordCheck:
    return PasswordCheck(False, rule, _MESSAGES[rule])


def _is_run(a: int, b: int, c: int) -> bool:
    return (b == a + 1 and c == b + 1) or (b == a - 1 and c == b - 1)


def has_sequential_pattern(pw: str) -> bool:
    """
    True for three consecutive ascending or descending digits ("123", "987")
    or letters ("abc", "ZyX"). Letters are compared case-insensitively.
    """
    lowered = pw.lower()
    for i in range(len(lowered) - 2):
        a, b, c = lowered[i:i + 3]
        if a in "0123456789" and b in "0123456789" and c in "0123456789":
            if _is_run(int(a), int(b), int(c)):
                return True
        elif _LOWER.fullmatch(a) and _LOWER.fullmatch(b) and _LOWER.fullmatch(c):
            if _is_run(ord(a), ord(b), ord(c)):
                return True
    return False


def validate_password(pw, common_passwords: Optional[Iterable[str]] = None) -> PasswordCheck:
    """
    Check ``pw`` against the password policy and report the first rule it
    breaks, in the fixed order below. Nothing is aggregated.
    """
    if not isinstance(pw, str):
        return _fail(PasswordRule.WRONG_TYPE)

    if len(pw) < MIN_LENGTH:
        return _fail(PasswordRule.TOO_SHORT)
    if len(pw) > MAX_LENGTH:
        return _fail(PasswordRule.TOO_LONG)

    if not _UPPER.search(pw):
        return _fail(PasswordRule.MISSING_UPPERCASE)
    if not _LOWER.search(pw):
        return _fail(PasswordRule.MISSING_LOWERCASE)
    if not _DIGIT.search(pw):
        return _fail(PasswordRule.MISSING_DIGIT)
    if not _SYMBOL.search(pw):
        return _fail(PasswordRule.MISSING_SPECIAL_CHAR)

    deny = DEFAULT_COMMON_PASSWORDS if common_passwords is None else common_passwords
    if pw.lower() in {p.lower() for p in deny}:
        return _fail(PasswordRule.TOO_COMMON)

    if _REPEATED.search(pw):
        return _fail(PasswordRule.REPEATED_CHARS)

    if has_sequential_pattern(pw):
        return _fail(PasswordRule.SEQUENTIAL_PATTERN)

    return PasswordCheck(True)
