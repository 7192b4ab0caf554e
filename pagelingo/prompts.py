"""Prompt construction for single and numbered-list translation calls."""

from __future__ import annotations

import re
from typing import Dict, List, Optional

LANGUAGE_MAP: Dict[str, str] = {
    "zh-CN": "Simplified Chinese",
    "zh-TW": "Traditional Chinese",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "ru": "Russian",
    "pt": "Portuguese",
    "it": "Italian",
    "ar": "Arabic",
    "hi": "Hindi",
    "th": "Thai",
    "vi": "Vietnamese",
}

TECHNICAL_PATTERNS = (
    re.compile(r"\b(API|HTTP|JSON|XML|CSS|HTML|JavaScript|Python|Java|SQL)\b", re.IGNORECASE),
    re.compile(r"\b(function|class|method|variable|parameter|return)\b", re.IGNORECASE),
    re.compile(r"[{}\[\]();]"),
    re.compile(r"https?://"),
    re.compile(r"\w+\.\w+\("),
    re.compile(r"\$\w+"),
    re.compile(r"@\w+"),
)

BASE_REQUIREMENTS = (
    "1. Maintain the original meaning, tone, and context accurately",
    "2. Use natural, fluent language that sounds native to the target language",
    "3. Preserve technical terms, proper nouns, and brand names when appropriate",
    "4. Keep the same formatting structure (line breaks, spacing, punctuation style)",
    "5. For ambiguous terms, choose the most contextually appropriate translation",
    "6. Only return the translation without any additional text, explanation, or commentary",
)

NUMBERED_REQUIREMENTS = (
    "The input is a numbered list; every line is an independent text.",
    'Answer with the same numbering, one line per item ("1. ...", "2. ..."),',
    "in the same order, without merging, splitting, or skipping items.",
)


def language_name(code: Optional[str], *, source: bool = False) -> str:
    if not code or code == "auto":
        return "the source language" if source else "the target language"
    return LANGUAGE_MAP.get(code, code)


def contains_technical_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in TECHNICAL_PATTERNS)


def language_instructions(target_name: str) -> List[str]:
    """Extra guidance for target languages with well-known pitfalls."""

    lines: List[str] = []
    if "Chinese" in target_name:
        lines += [
            "",
            "Chinese-specific requirements:",
            "- Use appropriate Chinese expressions and idioms when suitable",
            "- Maintain formal/informal tone based on context",
        ]
        if target_name == "Simplified Chinese":
            lines += [
                "- Use simplified Chinese characters and mainland China conventions",
                "- Prefer commonly used modern Chinese expressions",
            ]
        else:
            lines.append("- Use traditional Chinese characters and Taiwan/Hong Kong conventions")
    elif target_name == "English":
        lines += [
            "",
            "English-specific requirements:",
            "- Use American English spelling and conventions unless context suggests otherwise",
            "- Maintain appropriate register (formal/informal) based on source text",
        ]
    elif target_name == "Japanese":
        lines += [
            "",
            "Japanese-specific requirements:",
            "- Use appropriate levels of politeness (keigo) based on context",
            "- Choose between hiragana, katakana, and kanji appropriately",
        ]
    return lines


def build_system_prompt(
    target_language: str,
    source_language: Optional[str] = None,
    *,
    numbered: bool = False,
    technical: bool = False,
) -> str:
    target_name = language_name(target_language)
    source_name = language_name(source_language, source=True)
    lines = [
        f"You are a professional translator. Translate the following text from "
        f"{source_name} to {target_name}.",
        "",
        "Requirements:",
        *BASE_REQUIREMENTS,
    ]
    if numbered:
        lines += ["", *NUMBERED_REQUIREMENTS]
    lines += language_instructions(target_name)
    if technical:
        lines += [
            "",
            "Technical content requirements:",
            "- Preserve technical terminology and maintain consistency",
            "- Keep code snippets, URLs, and technical identifiers unchanged",
        ]
    return "\n".join(lines)


def build_messages(
    text: str,
    target_language: str,
    source_language: Optional[str] = None,
    *,
    numbered: bool = False,
    supports_system_role: bool = True,
) -> List[Dict[str, str]]:
    """Chat messages for one call; the system prompt is inlined when unsupported."""

    system_prompt = build_system_prompt(
        target_language,
        source_language,
        numbered=numbered,
        technical=contains_technical_content(text),
    )
    if supports_system_role:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]
    return [
        {
            "role": "user",
            "content": f"{system_prompt}\n\nText to translate:\n{text}\n\nTranslation:",
        }
    ]
