from __future__ import annotations

import re
from dataclasses import dataclass, field

MIN_LENGTH = 12
MIN_VALID_SCORE = 60

COMMON_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123", "password123",
    "admin", "letmein", "welcome", "monkey", "1234567890", "dragon",
    "princess", "football", "baseball", "sunshine", "iloveyou",
    "trustno1", "superman", "hello", "freedom", "whatever",
    "motdepasse", "azerty", "bonjour", "salut", "france", "paris",
})

_SPECIAL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_LEADING_REPEAT = re.compile(r"^(.)\1{2,}")
_SEQUENCE = re.compile(r"123|abc|qwe|azerty", re.IGNORECASE)


@dataclass
class PasswordCheck:
    is_valid: bool
    score: int
    strength: str
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"isValid": self.is_valid, "errors": self.errors, "strength": self.strength, "score": self.score}


def _strength(score: int) -> str:
    if score >= 85:
        return "très fort"
    if score >= 70:
        return "fort"
    if score >= 50:
        return "moyen"
    return "faible"


def validate_password(password: str, email: str | None = None) -> PasswordCheck:
    errors: list[str] = []
    score = 0

    if len(password) < MIN_LENGTH:
        errors.append(f"Le mot de passe doit contenir au moins {MIN_LENGTH} caractères")
    else:
        score += 25
        if len(password) >= 16:
            score += 10
        if len(password) >= 20:
            score += 5

    classes = {
        "Doit contenir au moins une minuscule": re.search(r"[a-z]", password),
        "Doit contenir au moins une majuscule": re.search(r"[A-Z]", password),
        "Doit contenir au moins un chiffre": re.search(r"\d", password),
        "Doit contenir au moins un caractère spécial (!@#$%^&*...)": _SPECIAL.search(password),
    }
    for message, found in classes.items():
        if found:
            score += 10
        else:
            errors.append(message)

    if password:
        diversity = len(set(password)) / len(password)
        if diversity > 0.6:
            score += 15
        elif diversity > 0.4:
            score += 10
        elif diversity < 0.3:
            errors.append("Trop de caractères répétés")

    if _LEADING_REPEAT.search(password):
        errors.append("Évitez les répétitions de caractères (aaa, 111...)")

    if _SEQUENCE.search(password):
        errors.append("Évitez les suites logiques (123, abc, qwerty...)")
        score -= 10

    if password.lower() in COMMON_PASSWORDS:
        errors.append("Ce mot de passe est trop courant et facilement piratable")
        score = max(0, score - 30)

    local_part = (email if isinstance(email, str) else "").split("@")[0].strip().lower()
    if local_part and local_part in password.lower():
        errors.append("Le mot de passe ne doit pas contenir votre email")
        score -= 10

    score = min(100, max(0, score))
    return PasswordCheck(
        is_valid=not errors and score >= MIN_VALID_SCORE,
        score=score,
        strength=_strength(score),
        errors=errors,
    )
