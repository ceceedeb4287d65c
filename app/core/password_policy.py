"""
Password policy engine.

``validate_password`` is a pure function: it never raises for a weak
password, it returns every violated rule in priority order together with an
entropy estimate and suggestions. Callers decide how to surface the result.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Mapping, Optional
import hashlib
import math
import re
import unicodedata

from app.core.config import settings


SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

# SHA-256 digests of lowercased common passwords
COMMON_PASSWORD_DIGESTS = frozenset({
    "5e884898da28047151d0e56f8dc6292773603d0d6aabbdd62a11ef721d1542d8",
    "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92",
    "ef797c8118f02dfb649607dd5d3f8c7623048c9c063d532cc95c5ed7a898a64f",
    "15e2b0d3c33891ebb0f1ef609ec419420c20e320ce94c65fbc8c3312448eb225",
    "65e84be33532fb784c48129675f9eff3a682b27168c0ea744b2cf58ee02337c5",
    "6ca13d52ca70c883e0f0bb101e425a89e8624de51db2d2392593af6a84118090",
    "0b14d501a594442a01c6859541bcb3e8164d183d32937b851835442f69d5c94e",
    "ef92b778bafe771e89245b89ecbc08a44a4e166c06659911881f383d4473e94f",
    "bcb15f821479b4d5772bd0ca866c00ad5f926e3580720659cc80d39c9d09802a",
    "e4ad93ca07acb8d908a3aa41e920ea4f4ef4f26e7f86cf8291c5db289780a5ae",
    "8c6976e5b5410415bde908bd4dee15dfb167a9c873fc4bb8a81f6f2ab448a918",
    "280d44ab1e9f79b5cce2dd4f58f5fe91f0fbacdac9f7447dffc318ceb79f2d02",
    "1c8bfe8f801d79745c4631d09fff36c82aa37fc4cce4fc946683d7b336b63032",
    "000c285457fc971f862a79b786476c78812c8897063c6fa9c045f579a3b2d63f",
    "a9c43be948c5cabd56ef2bacffb77cdaa5eec49dd5eb0cc4129cf3eda5f0e74c",
    "a941a4c4fd0c01cddef61b8be963bf4c1e2b0811c037ce3f1835fddf6ef6c223",
    "6382deaf1f5dc6e792b76db4a4a7bf2ba468884e000b25e7928e621e27fb23cb",
    "04e77bf8f95cb3e1a36a59d1e93857c411930db646b46c218a0352e432023cf2",
    "daaad6e5604e8e17bd9f108d91e26afe6281dac8fda0091040a7a6d7bd9b43b5",
    "8f0e2f76e22b43e2855189877e7dc1e1e7d98c226c95db247cd1d547928334a9",
    "a68349561396ec264a350847024a4521d00beaa3358660c2709a80f31c7acdd0",
    "240be518fabd2724ddb6f04eeb1da5967448d7e831c08c8fa822809f74c720a9",
    "057ba03d6c44104863dc7361fe4578965d1887360f90a0895882e58a6248fc86",
    "203b70b5ae883932161bbd0bded9357e763e63afce98b16230be33f0b94c2cc5",
})

KEYBOARD_PATTERN = re.compile(
    r"qwerty|asdfgh|zxcvbn|dvorak|qwertz|azerty|"
    r"1qaz|2wsx|3edc|4rfv|5tgb|6yhn|7ujm|8ik|9ol|0p|"
    r"zaq1|xsw2|cde3|vfr4|bgt5|nhy6|mju7|ki8|lo9|p0|"
    r"qayz|wsxc|edcv|rfvb|tgbn|yhnm|ujm|ikol|polp"
)

SEQUENTIAL_PATTERNS = (
    "abcdefghijklmnopqrstuvwxyz",
    "0123456789",
)

REPEATED_RUN = re.compile(r"(.)\1{2,}")

LEET_SUBSTITUTIONS = (("a", "@"), ("i", "1"), ("o", "0"), ("e", "3"))

PASSPHRASE_SUGGESTIONS = (
    "Consider using a passphrase: multiple random words combined",
    "Add unique character combinations",
    "Make it longer while keeping it memorable",
)


class PasswordStrength(IntEnum):
    VERY_WEAK = 0
    WEAK = 1
    MODERATE = 2
    STRONG = 3
    VERY_STRONG = 4

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


@dataclass(frozen=True)
class PasswordViolation:
    code: str
    message: str


@dataclass(frozen=True)
class PasswordValidationResult:
    is_valid: bool
    errors: tuple[PasswordViolation, ...]
    strength: PasswordStrength
    suggestions: tuple[str, ...]
    entropy: float

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 12
    max_length: int = 64
    min_entropy: float = 40.0

    @classmethod
    def default(cls) -> "PasswordPolicy":
        """Policy for new accounts and password changes."""
        return cls(
            min_length=settings.MIN_PASSWORD_LENGTH,
            max_length=settings.MAX_PASSWORD_LENGTH,
            min_entropy=settings.MIN_PASSWORD_ENTROPY,
        )

    @classmethod
    def legacy(cls) -> "PasswordPolicy":
        """Shorter minimum kept for accounts provisioned by older flows."""
        return cls(
            min_length=settings.LEGACY_MIN_PASSWORD_LENGTH,
            max_length=settings.MAX_PASSWORD_LENGTH,
            min_entropy=settings.MIN_PASSWORD_ENTROPY,
        )


@dataclass
class _Findings:
    errors: list[PasswordViolation] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def add(self, code: str, message: str, suggestion: Optional[str] = None) -> None:
        self.errors.append(PasswordViolation(code=code, message=message))
        if suggestion:
            self.suggestions.append(suggestion)


def _check_length(password: str, policy: PasswordPolicy, findings: _Findings) -> None:
    if len(password) < policy.min_length:
        findings.add(
            "too_short",
            f"Password must be at least {policy.min_length} characters long",
            "Use a memorable passphrase instead of a single word",
        )
    if len(password) > policy.max_length:
        findings.add("too_long", f"Password must not exceed {policy.max_length} characters")


def _check_character_classes(password: str, findings: _Findings) -> None:
    if not any(c.isupper() for c in password):
        findings.add(
            "missing_uppercase",
            "Password is missing a required uppercase letter",
            "Add at least one uppercase letter",
        )
    if not any(c.islower() for c in password):
        findings.add(
            "missing_lowercase",
            "Password is missing a required lowercase letter",
            "Add at least one lowercase letter",
        )
    if not any(c.isdigit() for c in password):
        findings.add(
            "missing_digit",
            "Password is missing a required number",
            "Add at least one number",
        )
    if not any(c in SPECIAL_CHARACTERS for c in password):
        findings.add(
            "missing_special",
            "Password is missing a required special character",
            f"Add at least one special character ({SPECIAL_CHARACTERS})",
        )


def _variations(value: str) -> list[str]:
    lowered = value.lower()
    variations = [lowered]
    for plain, leet in LEET_SUBSTITUTIONS:
        variant = lowered.replace(plain, leet)
        if variant not in variations:
            variations.append(variant)
    return variations


def _check_personal_info(
    lowered: str,
    personal_info: Mapping[str, Optional[str]],
    findings: _Findings,
) -> None:
    for field_name, value in personal_info.items():
        if not value or len(value.strip()) < 3:
            continue
        if any(variant in lowered for variant in _variations(value.strip())):
            label = field_name.replace("_", " ")
            findings.add(
                "personal_info",
                f"Password should not contain your {label}",
                "Avoid using any personal information that others might know",
            )
            return


def _check_repeated_characters(password: str, findings: _Findings) -> None:
    match = REPEATED_RUN.search(password)
    if match:
        findings.add(
            "repeated_characters",
            f"Password contains too many repeated characters ('{match.group(1)}')",
            "Avoid repeating the same character multiple times",
        )


def _check_sequential_patterns(lowered: str, findings: _Findings) -> None:
    for pattern in SEQUENTIAL_PATTERNS:
        for i in range(len(pattern) - 2):
            forward = pattern[i:i + 3]
            if forward in lowered or forward[::-1] in lowered:
                findings.add(
                    "sequential_pattern",
                    f"Password contains a sequential pattern ('{forward}')",
                    "Avoid using sequential patterns",
                )
                return


def _check_keyboard_patterns(lowered: str, findings: _Findings) -> None:
    if KEYBOARD_PATTERN.search(lowered):
        findings.add(
            "keyboard_pattern",
            "Password contains a keyboard pattern (like 'qwerty' or 'asdfgh')",
            "Avoid using keyboard patterns",
        )


def _check_common_password(lowered: str, findings: _Findings) -> None:
    digest = hashlib.sha256(lowered.encode("utf-8")).hexdigest()
    if digest in COMMON_PASSWORD_DIGESTS:
        findings.add(
            "common_password",
            "This password appears in a list of commonly used passwords. Please choose a different one",
            "Use a unique password that hasn't appeared in data breaches",
        )


def calculate_entropy(password: str) -> float:
    """Estimate entropy in bits from character-set size, length and uniqueness."""
    if not password:
        return 0.0

    charset = 0
    if any(c.islower() for c in password):
        charset += 26
    if any(c.isupper() for c in password):
        charset += 26
    if any(c.isdigit() for c in password):
        charset += 10
    if any(c in SPECIAL_CHARACTERS for c in password):
        charset += 32
    if charset == 0:
        return 0.0

    entropy = math.log2(charset) * len(password)
    entropy *= len(set(password)) / len(password) + 0.5

    if REPEATED_RUN.search(password):
        entropy *= 0.8

    return entropy


def strength_for_entropy(entropy: float) -> PasswordStrength:
    if entropy < 20:
        return PasswordStrength.VERY_WEAK
    if entropy < 40:
        return PasswordStrength.WEAK
    if entropy < 60:
        return PasswordStrength.MODERATE
    if entropy < 80:
        return PasswordStrength.STRONG
    return PasswordStrength.VERY_STRONG


def validate_password(
    password: str,
    personal_info: Optional[Mapping[str, Optional[str]]] = None,
    policy: Optional[PasswordPolicy] = None,
) -> PasswordValidationResult:
    """
    Check a candidate password against every rule of ``policy``.

    Violations are returned in rule-priority order: length, character
    classes, personal info, repeated characters, sequential runs, keyboard
    walks, common passwords, entropy.
    """
    policy = policy or PasswordPolicy.default()
    normalized = unicodedata.normalize("NFKC", password)
    lowered = normalized.lower()
    findings = _Findings()

    _check_length(normalized, policy, findings)
    _check_character_classes(normalized, findings)
    _check_personal_info(lowered, personal_info or {}, findings)
    _check_repeated_characters(normalized, findings)
    _check_sequential_patterns(lowered, findings)
    _check_keyboard_patterns(lowered, findings)
    _check_common_password(lowered, findings)

    entropy = calculate_entropy(normalized)
    if entropy < policy.min_entropy:
        findings.add(
            "insufficient_entropy",
            f"Password is not complex enough (entropy: {entropy:.1f} bits, "
            f"required: {policy.min_entropy:.1f} bits)",
        )

    strength = strength_for_entropy(entropy)
    if strength < PasswordStrength.STRONG:
        findings.suggestions.extend(PASSPHRASE_SUGGESTIONS)

    return PasswordValidationResult(
        is_valid=not findings.errors,
        errors=tuple(findings.errors),
        strength=strength,
        suggestions=tuple(dict.fromkeys(findings.suggestions)),
        entropy=round(entropy, 2),
    )
