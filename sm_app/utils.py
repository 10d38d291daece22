import re
import secrets
import string
import unicodedata
import uuid
from typing import Iterable, List, Set

_TOKEN_SPLIT = re.compile(r"[,\s]+")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def collapse_spaces(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def normalize_token(token: str) -> str:
    return unicodedata.normalize("NFKC", str(token or "")).strip().upper()


def parse_tokens(cell_value) -> Set[str]:
    """Cell text like 'js, AB  mk' -> {'AB', 'JS', 'MK'}."""
    if cell_value is None:
        return set()
    s = normalize_token(cell_value)
    return {t for t in _TOKEN_SPLIT.split(s) if t}


def join_tokens(tokens: Iterable[str]) -> str:
    return ", ".join(sorted(set(tokens)))


def is_valid_initials(initials: str, length: int = 2) -> bool:
    return bool(re.fullmatch(rf"[A-Z0-9]{{{length}}}", initials or ""))


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match((email or "").strip()))


def email_key(email: str) -> str:
    return (email or "").strip().lower()


def truthy(v) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().upper() in {"TRUE", "1", "YES", "Y"}


def bool_cell(b: bool) -> str:
    return "TRUE" if b else "FALSE"


def to_int(v, default: int = 0) -> int:
    try:
        return int(float(str(v).strip()))
    except (TypeError, ValueError):
        return default


def split_list(v) -> List[str]:
    return [p.strip() for p in str(v or "").split(",") if p.strip()]


def clean_name(name: str, limit: int = 20) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", name or "").upper()[:limit]


def short_uuid(n: int = 8) -> str:
    return uuid.uuid4().hex[:n]


def new_team_id(team_name: str) -> str:
    return f"TEAM_{clean_name(team_name) or 'TEAM'}_{short_uuid()}"


def new_player_id(display_name: str) -> str:
    return f"PLAYER_{clean_name(display_name, 5) or 'USER'}_{short_uuid()}"


def new_join_code(team_name: str, prefix_len: int = 4, suffix_len: int = 4) -> str:
    alphabet = string.ascii_uppercase + string.digits
    prefix = clean_name(team_name)[:prefix_len].ljust(prefix_len, "X")
    return prefix + "".join(secrets.choice(alphabet) for _ in range(suffix_len))


def pad_rows(block, n_rows: int, n_cols: int) -> List[List[str]]:
    """Sheets trims trailing blanks; square a batch_get block back up."""
    out = []
    rows = list(block or [])
    for i in range(n_rows):
        r = [("" if v is None else str(v)) for v in (rows[i] if i < len(rows) else [])]
        r = r[:n_cols] + [""] * max(0, n_cols - len(r))
        out.append(r)
    return out


def background(hex_color: str) -> dict:
    h = hex_color.lstrip("#")
    r, g, b = (int(h[i:i + 2], 16) / 255.0 for i in (0, 2, 4))
    return {"backgroundColor": {"red": r, "green": g, "blue": b}}
