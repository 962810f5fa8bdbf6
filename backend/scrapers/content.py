"""
Camp content heuristics used by discovery and URL resolution.

A page "has camp content" when at least two independent signals are
present (summer camp wording, registration wording, age range, grade
range, pricing, dates, daily times).
"""
import re
from typing import List

from bs4 import BeautifulSoup

CONTENT_SIGNALS = (
    ("summer camp", re.compile(r"summer\s*camp", re.I)),
    ("registration", re.compile(r"registration|register|enroll|sign\s*up", re.I)),
    ("age range", re.compile(r"ages?\s*\d+", re.I)),
    ("grade range", re.compile(r"grades?\s*[k\d]", re.I)),
    ("pricing", re.compile(r"\$\d+")),
    ("dates", re.compile(r"week\s*of|june|july|august", re.I)),
    ("times", re.compile(r"9\s*(?:am|:00)|drop.?off|pick.?up", re.I)),
)

MIN_SIGNALS = 2


def page_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" "))


def camp_content_signals(html: str) -> List[str]:
    text = page_text(html)
    return [name for name, pattern in CONTENT_SIGNALS if pattern.search(text)]


def has_camp_content(html: str) -> bool:
    return len(camp_content_signals(html)) >= MIN_SIGNALS
