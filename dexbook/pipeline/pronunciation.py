"""
Kana -> Hepburn romanization.

Pokémon names are almost all katakana, so the rules cover the modern
loanword spellings (``ファ`` fa, ``ティ`` ti, ``ヴ`` vu) next to the
traditional table.  Long vowels are written with macrons: ``ー`` lengthens
the vowel before it, and ``ou`` / ``uu`` collapse to ``ō`` / ``ū``.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

KANA_RE = re.compile(r"[ぁ-ゖァ-ヺー]")
VOWELS = "aiueo"
MACRONS = {"a": "ā", "i": "ī", "u": "ū", "e": "ē", "o": "ō"}

MONOGRAPHS: dict[str, str] = dict(
    zip(
        "あいうえおぁぃぅぇぉかきくけこがぎぐげごさしすせそざじずぜぞ"
        "たちつてとだぢづでどなにぬねのはひふへほばびぶべぼぱぴぷぺぽ"
        "まみむめもやゆよゃゅょらりるれろわゎゐゑをんゔ",
        [
            "a", "i", "u", "e", "o", "a", "i", "u", "e", "o",
            "ka", "ki", "ku", "ke", "ko", "ga", "gi", "gu", "ge", "go",
            "sa", "shi", "su", "se", "so", "za", "ji", "zu", "ze", "zo",
            "ta", "chi", "tsu", "te", "to", "da", "ji", "zu", "de", "do",
            "na", "ni", "nu", "ne", "no", "ha", "hi", "fu", "he", "ho",
            "ba", "bi", "bu", "be", "bo", "pa", "pi", "pu", "pe", "po",
            "ma", "mi", "mu", "me", "mo", "ya", "yu", "yo", "ya", "yu", "yo",
            "ra", "ri", "ru", "re", "ro", "wa", "wa", "i", "e", "o", "n", "vu",
        ],
    )
)

YOON_BASES = {
    "き": "ky", "ぎ": "gy", "し": "sh", "じ": "j", "ち": "ch", "ぢ": "j",
    "に": "ny", "ひ": "hy", "び": "by", "ぴ": "py", "み": "my", "り": "ry",
}
SMALL_Y = {"ゃ": "a", "ゅ": "u", "ょ": "o"}

DIGRAPHS: dict[str, str] = {
    base + small: prefix + vowel
    for base, prefix in YOON_BASES.items()
    for small, vowel in SMALL_Y.items()
}
DIGRAPHS.update(
    {
        "ふぁ": "fa", "ふぃ": "fi", "ふぇ": "fe", "ふぉ": "fo", "ふゅ": "fyu",
        "てぃ": "ti", "でぃ": "di", "とぅ": "tu", "どぅ": "du",
        "てゅ": "tyu", "でゅ": "dyu",
        "うぃ": "wi", "うぇ": "we", "うぉ": "wo",
        "しぇ": "she", "じぇ": "je", "ちぇ": "che", "いぇ": "ye", "つぁ": "tsa",
        "ゔぁ": "va", "ゔぃ": "vi", "ゔぇ": "ve", "ゔぉ": "vo",
    }
)


def has_kana(text: Optional[str]) -> bool:
    return bool(text) and KANA_RE.search(text) is not None


def to_hiragana(text: str) -> str:
    return "".join(
        chr(ord(ch) - 0x60) if "ァ" <= ch <= "ヶ" else ch for ch in text
    )


def _geminate(syllable: str) -> str:
    if syllable.startswith("ch"):
        return "t" + syllable
    if syllable[0] in VOWELS:
        return syllable
    return syllable[0] + syllable


def _lengthen(syllable: str) -> str:
    if syllable and syllable[-1] in MACRONS:
        return syllable[:-1] + MACRONS[syllable[-1]]
    return syllable


def _merge_long_vowels(syllables: list[str]) -> list[str]:
    merged: list[str] = []
    for syllable in syllables:
        if syllable == "u" and merged and merged[-1][-1:] in ("o", "u"):
            merged[-1] = _lengthen(merged[-1])
            continue
        merged.append(syllable)
    return merged


def romanize(kana: str) -> str:
    """
    Hepburn romanization of *kana*.

    >>> romanize("ピカチュウ")
    'Pikachū'
    >>> romanize("ポッチャマ")
    'Potchama'
    """
    text = to_hiragana(unicodedata.normalize("NFKC", kana))
    syllables: list[str] = []
    double_next = False
    i = 0

    while i < len(text):
        ch = text[i]
        pair = text[i:i + 2]
        if pair in DIGRAPHS:
            syllable = DIGRAPHS[pair]
            i += 2
        elif ch == "っ":
            double_next = True
            i += 1
            continue
        elif ch == "ー":
            if syllables:
                syllables[-1] = _lengthen(syllables[-1])
            i += 1
            continue
        elif ch in MONOGRAPHS:
            syllable = MONOGRAPHS[ch]
            i += 1
        else:
            syllable = " " if ch in "・･" else ch
            i += 1

        if double_next and syllable[:1].isalpha():
            syllable = _geminate(syllable)
        double_next = False

        # ん before a vowel or y is written n'
        if syllables and syllables[-1] == "n" and syllable[:1] in VOWELS + "y":
            syllables[-1] = "n'"
        syllables.append(syllable)

    result = "".join(_merge_long_vowels(syllables))
    return result[:1].upper() + result[1:]


def pronunciation_for(kana: Optional[str]) -> Optional[str]:
    """Romanized pronunciation, or ``None`` when there is no kana to read."""
    if not has_kana(kana):
        return None
    return romanize(kana)
