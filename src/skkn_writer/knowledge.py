"""Load writing guides and the subject catalogue from packaged YAML files."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"

HIGHER_ED_LEVELS = ("Đại học", "Cao đẳng", "Sau đại học")


@lru_cache(maxsize=None)
def _load_yaml(name: str) -> dict[str, Any]:
    path = DATA_DIR / name
    if not path.exists():
        raise FileNotFoundError(f"Knowledge file not found: {path}")
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Knowledge file {name} has invalid format")
    return data


def get_guide(name: str) -> str:
    """Return a writing guide by key (e.g. ``"outline"``, ``"solution"``)."""
    guides = _load_yaml("guides.yaml").get("guides", {})
    if name not in guides:
        raise KeyError(f"Unknown guide: {name!r}. Choose from: {sorted(guides)}")
    return guides[name].rstrip()


def list_subjects() -> list[dict[str, Any]]:
    return list(_load_yaml("subjects.yaml").get("subjects", []))


def get_subject_info(name: str) -> dict[str, Any] | None:
    """Case-insensitive lookup by subject name."""
    wanted = name.strip().lower()
    if not wanted:
        return None
    for subject in list_subjects():
        if subject["name"].lower() == wanted:
            return subject
    return None


def search_subjects(query: str) -> list[dict[str, Any]]:
    """Match *query* against subject names and groups."""
    if not query.strip():
        return list_subjects()
    q = query.lower()
    return [
        s for s in list_subjects()
        if q in s["name"].lower() or q in s["group"].lower()
    ]


def subject_groups() -> list[str]:
    return sorted({s["group"] for s in list_subjects()})


def is_higher_ed(level: str) -> bool:
    return level in HIGHER_ED_LEVELS


def terminology(level: str) -> dict[str, str]:
    """Learner/teacher/school/textbook terms for the given school level."""
    if is_higher_ed(level):
        return {
            "learner": "sinh viên",
            "teacher": "giảng viên",
            "school": "trường/học viện",
            "textbook": "giáo trình",
        }
    return {
        "learner": "học sinh",
        "teacher": "giáo viên",
        "school": "trường",
        "textbook": "SGK",
    }
