"""
Crop mention detection for farmer queries (English, Hindi and romanised Hindi).

    detector = CropDetector.default()
    detector.detect("gehu me pani kab de")
    # {"best": {"crop": "wheat", ...}, "candidates": [...], "ambiguous": False}

Matching runs in order of confidence: exact multi-word alias, exact single
word, then fuzzy token and fuzzy phrase matching for misspellings.
"""

import argparse
import json
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rapidfuzz import fuzz, process

# Keep: letters/digits/underscore/space + Devanagari
_PUNCT_RE = re.compile(r"[^\w\s\u0900-\u097F]+", flags=re.UNICODE)
_SPACE_RE = re.compile(r"\s+")

DEFAULT_CROPS = [
    {"crop": "rice", "aliases": ["rice", "paddy", "dhan", "chawal", "धान", "चावल"]},
    {"crop": "wheat", "aliases": ["wheat", "gehu", "gehun", "गेहूं", "गेहूँ"]},
    {"crop": "maize", "aliases": ["maize", "corn", "makka", "makki", "मक्का"]},
    {"crop": "chickpea", "aliases": ["chickpea", "chana", "चना"]},
    {"crop": "tomato", "aliases": ["tomato", "tamatar", "टमाटर"]},
    {"crop": "potato", "aliases": ["potato", "aloo", "alu", "आलू"]},
    {"crop": "cotton", "aliases": ["cotton", "kapas", "कपास"]},
    {"crop": "sugarcane", "aliases": ["sugarcane", "sugar cane", "ganna", "गन्ना"]},
    {"crop": "mustard", "aliases": ["mustard", "sarson", "सरसों"]},
    {"crop": "onion", "aliases": ["onion", "pyaz", "pyaaz", "प्याज"]},
    {"crop": "soybean", "aliases": ["soybean", "soyabean", "soya", "सोयाबीन"]},
    {"crop": "groundnut", "aliases": ["groundnut", "peanut", "moongphali", "मूंगफली"]},
]

_MATCH_PRIORITY = {
    "exact_phrase": 4,
    "exact_word": 3,
    "fuzzy_phrase": 2,
    "fuzzy_token": 1,
}


def normalize_text(s: str) -> str:
    if not s:
        return ""
    s = unicodedata.normalize("NFKC", s)
    s = s.lower()
    s = _PUNCT_RE.sub(" ", s)
    return _SPACE_RE.sub(" ", s).strip()


def _token_threshold(token: str) -> int:
    # stricter for short tokens
    if len(token) <= 4:
        return 92
    if len(token) <= 7:
        return 88
    return 85


@dataclass
class CropMatch:
    crop: str
    score: float              # 0..100
    match_type: str
    alias: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crop": self.crop,
            "score": round(self.score, 2),
            "match_type": self.match_type,
            "alias": self.alias,
        }


class CropDetector:
    def __init__(self, crops: List[Dict[str, Any]]):
        # alias -> crops sharing it
        self._alias_index: Dict[str, List[str]] = {}
        for item in crops:
            crop = item["crop"]
            for alias in [crop, *item.get("aliases", [])]:
                norm = normalize_text(alias)
                if norm and crop not in self._alias_index.setdefault(norm, []):
                    self._alias_index[norm].append(crop)

        self._words = [a for a in self._alias_index if " " not in a]
        # longer phrases first
        self._phrases = sorted((a for a in self._alias_index if " " in a), key=len, reverse=True)

    @classmethod
    def default(cls) -> "CropDetector":
        return cls(DEFAULT_CROPS)

    @classmethod
    def from_json_file(cls, path: str) -> "CropDetector":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(data["crops"] if isinstance(data, dict) else data)

    def detect(self, query: str, top_k: int = 5) -> Dict[str, Any]:
        text = normalize_text(query)
        if not text:
            return {"best": None, "candidates": [], "ambiguous": False}

        ranked = self._rank(self._exact_matches(text) or self._fuzzy_matches(text))
        if not ranked:
            return {"best": None, "candidates": [], "ambiguous": False}

        ambiguous = len(ranked) >= 2 and (ranked[0].score - ranked[1].score) <= 2
        return {
            "best": None if ambiguous else ranked[0].to_dict(),
            "candidates": [m.to_dict() for m in ranked[:top_k]],
            "ambiguous": ambiguous,
        }

    def best_crop(self, query: str) -> Optional[str]:
        best = self.detect(query)["best"]
        return best["crop"] if best else None

    def _exact_matches(self, text: str) -> List[CropMatch]:
        matches = []
        tokens = set(text.split())
        for alias in self._phrases:
            if alias in text:
                matches.extend(CropMatch(c, 100.0, "exact_phrase", alias) for c in self._alias_index[alias])
        for alias in self._words:
            if alias in tokens:
                matches.extend(CropMatch(c, 100.0, "exact_word", alias) for c in self._alias_index[alias])
        return matches

    def _fuzzy_matches(self, text: str) -> List[CropMatch]:
        matches = []
        for token in text.split():
            if len(token) < 3:
                continue
            hit = process.extractOne(token, self._words, scorer=fuzz.ratio)
            if hit and hit[1] >= _token_threshold(token):
                alias, score, _ = hit
                matches.extend(CropMatch(c, float(score), "fuzzy_token", alias) for c in self._alias_index[alias])

        if len(text) >= 4 and self._phrases:
            hit = process.extractOne(text, self._phrases, scorer=fuzz.partial_ratio)
            if hit and hit[1] >= 88:
                alias, score, _ = hit
                matches.extend(CropMatch(c, float(score), "fuzzy_phrase", alias) for c in self._alias_index[alias])
        return matches

    @staticmethod
    def _rank(matches: List[CropMatch]) -> List[CropMatch]:
        best: Dict[str, CropMatch] = {}
        for m in matches:
            prev = best.get(m.crop)
            if prev is None or (m.score, _MATCH_PRIORITY[m.match_type]) > (prev.score, _MATCH_PRIORITY[prev.match_type]):
                best[m.crop] = m
        return sorted(best.values(), key=lambda m: (m.score, _MATCH_PRIORITY[m.match_type]), reverse=True)


_default_detector = None


def get_default_detector() -> CropDetector:
    global _default_detector
    if _default_detector is None:
        _default_detector = CropDetector.default()
    return _default_detector


def main():
    parser = argparse.ArgumentParser(description="Detect crop mentions in a farmer query")
    parser.add_argument("--query", required=True, help="Farmer query string")
    parser.add_argument("--crops", help="Optional crops JSON ({crops:[...]} or [...])")
    parser.add_argument("--topk", type=int, default=5, help="How many candidates to return")
    args = parser.parse_args()

    detector = CropDetector.from_json_file(args.crops) if args.crops else CropDetector.default()
    print(json.dumps(detector.detect(args.query, top_k=args.topk), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
