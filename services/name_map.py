# services/name_map.py

# Persona name <-> debate role mapping. Whisper targets arrive either as a
# role ("critic") or as the persona's name ("Sage"), so both resolve here.

from typing import Optional

ROLES = ("defender", "critic")

ROLE_TO_NAME = {
    "defender": "River",
    "critic": "Sage",
}

ALIAS_TO_ROLE = {
    "defender": "defender",
    "river": "defender",
    "the defender": "defender",

    "critic": "critic",
    "sage": "critic",
    "the critic": "critic",
}


def to_role(name: Optional[str]) -> Optional[str]:
    """Resolve a role or persona name to its role; None when unknown."""
    if not name:
        return None
    return ALIAS_TO_ROLE.get(name.strip().lower())


def display_name(role: str) -> str:
    return ROLE_TO_NAME.get(role, role.title())


def label_for(role: str) -> str:
    """Attribution label used when one AI's turn is shown to the other."""
    return f"{display_name(role)} ({role.title()})"

