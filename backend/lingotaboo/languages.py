from __future__ import annotations
from typing import Dict, Optional

from pydantic import BaseModel

from .errors import ValidationError


class Language(BaseModel):
	key: str
	name: str
	native_name: str
	iso_code: str


LANGUAGES: Dict[str, Language] = {
	"spanish": Language(key="spanish", name="Spanish", native_name="español", iso_code="es"),
	"french": Language(key="french", name="French", native_name="français", iso_code="fr"),
	"german": Language(key="german", name="German", native_name="Deutsch", iso_code="de"),
	"italian": Language(key="italian", name="Italian", native_name="italiano", iso_code="it"),
	"portuguese": Language(key="portuguese", name="Portuguese", native_name="português", iso_code="pt"),
	"english": Language(key="english", name="English", native_name="English", iso_code="en"),
}

_BY_ISO: Dict[str, Language] = {lang.iso_code: lang for lang in LANGUAGES.values()}


def resolve_language(value: Optional[str]) -> Language:
	"""Accept either a language key ("spanish") or its ISO code ("es")."""
	key = (value or "").strip().lower()
	if not key:
		raise ValidationError("targetLanguage is required")
	lang = LANGUAGES.get(key) or _BY_ISO.get(key)
	if lang is None:
		raise ValidationError(f"targetLanguage must be one of {sorted(LANGUAGES)}")
	return lang


def language_name(iso_code: str) -> str:
	lang = _BY_ISO.get((iso_code or "").lower())
	return lang.name if lang else iso_code
