"""Error taxonomy shared by the catalog, the session engine and the HTTP layer.

Every error carries a stable ``code`` and the HTTP status the API answers with.
Messages are safe to show to the caller; upstream details stay in the logs.
"""
from __future__ import annotations

from typing import Any, Dict


class TabooError(Exception):
	code = "TABOO_ERROR"
	status_code = 500
	retryable = False

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message

	def to_payload(self) -> Dict[str, Any]:
		return {"error": {"code": self.code, "message": self.message, "retryable": self.retryable}}


class ValidationError(TabooError):
	code = "VALIDATION_ERROR"
	status_code = 400


class NotFound(TabooError):
	# Also raised for another user's session so existence is not leaked
	code = "NOT_FOUND"
	status_code = 404


class AlreadyCompleted(TabooError):
	code = "ALREADY_COMPLETED"
	status_code = 409


class Inactive(TabooError):
	code = "CARD_INACTIVE"
	status_code = 400


class TranslationFailed(TabooError):
	code = "TRANSLATION_FAILED"
	status_code = 502
	retryable = True


class EvaluationFailed(TabooError):
	code = "EVALUATION_FAILED"
	status_code = 502
	retryable = True
