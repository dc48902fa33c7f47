"""Language preference and the user-facing message table."""

from __future__ import annotations

from typing import Optional

from flask import request

LANGUAGE_COOKIE = "starwish-language"
SUPPORTED_LANGUAGES = ("zh", "en")
DEFAULT_LANGUAGE = "zh"

MESSAGES = {
    "en": {
        "errors.generic": "Something went wrong. Please try again.",
        "errors.validation": "Please check the highlighted fields.",
        "errors.signInRequired": "Please sign in first.",
        "errors.notFound": "We could not find that item.",
        "errors.rejected": "The server refused this change. Please try again.",
        "errors.connectivity": "We could not reach the server. Check your connection and retry.",
        "wish.titleRequired": "A wish needs a title.",
        "chain.selectionRequired": "Select at least one wish to build a star chain.",
        "blindbox.expired": "This star chain has expired or does not exist.",
        "blindbox.alreadyOpened": "Someone has already opened this star chain.",
        "blindbox.revealed": "A wish has been chosen for you!",
        "blindbox.ready": "A mysterious blind box is waiting for you.",
    },
    "zh": {
        "errors.generic": "出了点问题，请重试。",
        "errors.validation": "请检查填写的内容。",
        "errors.signInRequired": "请先登录。",
        "errors.notFound": "找不到该内容。",
        "errors.rejected": "服务器拒绝了此操作，请重试。",
        "errors.connectivity": "无法连接服务器，请检查网络后重试。",
        "wish.titleRequired": "星愿需要一个标题。",
        "chain.selectionRequired": "请至少选择一个星愿来创建星链。",
        "blindbox.expired": "这个星链已过期或不存在。",
        "blindbox.alreadyOpened": "这个星链已经被别人打开了。",
        "blindbox.revealed": "为你抽中了一个星愿！",
        "blindbox.ready": "一个神秘的盲盒正在等你。",
    },
}


def normalize_language(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip().lower()
    if cleaned in SUPPORTED_LANGUAGES:
        return cleaned
    if cleaned.startswith("zh"):
        return "zh"
    if cleaned.startswith("en"):
        return "en"
    return None


def current_language() -> str:
    """Cookie preference first, then the browser's Accept-Language, then the default."""
    saved = normalize_language(request.cookies.get(LANGUAGE_COOKIE))
    if saved:
        return saved
    best = request.accept_languages.best_match(["zh", "zh-CN", "zh-TW", "en"])
    return normalize_language(best) or DEFAULT_LANGUAGE


def translate(key: str, language: Optional[str] = None) -> str:
    lang = language or current_language()
    return MESSAGES.get(lang, {}).get(key) or MESSAGES["en"].get(key) or key
