"""HTML extraction helpers for scraped trend pages.

Pulls raw trend rows out of a page:
- hashtags: ``#tag`` occurrences in visible text, counted
- keywords: ``<meta name="keywords">`` plus frequent words in visible text
- viral content: schema.org JSON-LD embedded by client-rendered pages and
  elements carrying a ``data-engagement`` attribute
"""

import json
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from trendbot.core.logging import get_logger

logger = get_logger(__name__)

HASHTAG_PATTERN = re.compile(r"(?<![\w&])#(\w{2,100})", re.UNICODE)
WORD_PATTERN = re.compile(r"\b[^\W\d_]{3,}\b", re.UNICODE)

ENGLISH_STOPWORDS = {
    'the', 'and', 'for', 'are', 'but', 'not', 'you', 'all', 'any', 'can', 'had',
    'her', 'was', 'one', 'our', 'out', 'has', 'him', 'his', 'how', 'its', 'may',
    'new', 'now', 'old', 'see', 'two', 'who', 'did', 'get', 'let', 'say', 'she',
    'too', 'use', 'that', 'with', 'have', 'this', 'will', 'your', 'from', 'they',
    'been', 'more', 'when', 'what', 'were', 'than', 'them', 'then', 'into', 'just',
    'like', 'over', 'also', 'some', 'only', 'very', 'about', 'after', 'their',
    'there', 'these', 'which', 'would', 'could', 'other', 'watch', 'video', 'views',
}

VIRAL_TYPES = {"VideoObject", "SocialMediaPosting", "Clip"}

INTERACTION_FIELDS = {
    "WatchAction": "views",
    "ViewAction": "views",
    "LikeAction": "likes",
    "CommentAction": "comments",
    "ShareAction": "shares",
}


def visible_text(soup: BeautifulSoup) -> str:
    """Text content without script/style blocks, whitespace collapsed."""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ")).strip()


def find_hashtags(text: str) -> List[str]:
    """Hashtags in text, without '#', in order of appearance."""
    return [match.group(1) for match in HASHTAG_PATTERN.finditer(text or "")]


def extract_hashtags(text: str) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    first_seen: Dict[str, str] = {}
    for match in HASHTAG_PATTERN.finditer(text):
        tag = match.group(1)
        key = tag.lower()
        first_seen.setdefault(key, tag)
        counts[key] += 1
    return [{"tag": first_seen[key], "volume": count} for key, count in counts.items()]


def extract_keywords(text: str, meta_keywords: Iterable[str] = (), max_keywords: int = 25) -> List[Dict[str, Any]]:
    """
    Keywords ranked by frequency in the page text.

    Meta keywords are always included, counted from the text plus one so a
    keyword the page declares is never dropped.
    """
    words = [w.lower() for w in WORD_PATTERN.findall(text)]
    counts = Counter(w for w in words if w not in ENGLISH_STOPWORDS)

    rows: Dict[str, float] = {}
    lowered = text.lower()
    for keyword in meta_keywords:
        keyword = keyword.strip().lower()
        if keyword:
            rows[keyword] = lowered.count(keyword) + 1

    for word, count in counts.most_common(max_keywords):
        rows.setdefault(word, count)

    return [{"keyword": keyword, "volume": volume} for keyword, volume in rows.items()]


def _type_names(node: Dict[str, Any]) -> List[str]:
    value = node.get("@type", [])
    names = value if isinstance(value, list) else [value]
    return [str(name).rsplit("/", 1)[-1] for name in names]


def _walk_json_ld(node: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(node, list):
        for item in node:
            yield from _walk_json_ld(item)
    elif isinstance(node, dict):
        yield node
        for key in ("@graph", "itemListElement", "item", "hasPart"):
            if key in node:
                yield from _walk_json_ld(node[key])


def _to_int(value: Any) -> int:
    try:
        return max(0, int(float(str(value).replace(",", ""))))
    except (TypeError, ValueError):
        return 0


def _viral_row_from_json_ld(node: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    url = node.get("url") or node.get("contentUrl") or node.get("@id")
    content_id = node.get("identifier") or url or node.get("name")
    if not content_id:
        return None

    row: Dict[str, Any] = {
        "content_id": str(content_id),
        "title": str(node.get("name") or node.get("headline") or ""),
        "url": str(url) if url else None,
    }

    stats = node.get("interactionStatistic") or []
    if isinstance(stats, dict):
        stats = [stats]
    for stat in stats:
        if not isinstance(stat, dict):
            continue
        action = stat.get("interactionType")
        if isinstance(action, dict):
            action = action.get("@type")
        field = INTERACTION_FIELDS.get(str(action or "").rsplit("/", 1)[-1])
        if field:
            row[field] = row.get(field, 0) + _to_int(stat.get("userInteractionCount"))

    return row


def extract_viral_content(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping unparseable JSON-LD block: {e}")
            continue

        for node in _walk_json_ld(data):
            if VIRAL_TYPES.intersection(_type_names(node)):
                row = _viral_row_from_json_ld(node)
                if row:
                    rows.append(row)

    for element in soup.select("[data-engagement]"):
        content_id = element.get("data-id") or element.get("href")
        if not content_id:
            continue
        rows.append({
            "content_id": str(content_id),
            "title": element.get_text(" ", strip=True),
            "url": element.get("href"),
            "engagement": _to_int(element.get("data-engagement")),
        })

    return rows


def extract_trend_rows(html: str) -> Dict[str, List[Dict[str, Any]]]:
    """Extract raw rows for every data type from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")

    meta = soup.find("meta", attrs={"name": "keywords"})
    meta_keywords = (meta.get("content") or "").split(",") if meta else []

    # JSON-LD lives in <script>, read it before visible_text strips scripts
    viral_content = extract_viral_content(soup)
    text = visible_text(soup)

    return {
        "hashtags": extract_hashtags(text),
        "keywords": extract_keywords(text, meta_keywords),
        "viral_content": viral_content,
    }
