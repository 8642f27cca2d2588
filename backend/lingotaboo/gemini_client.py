from __future__ import annotations
import httpx
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from .settings import settings


class GeminiReply(BaseModel):
	text: str
	model: str
	# Normalised token counts: prompt_tokens, cached_tokens, completion_tokens, total_tokens
	usage: Dict[str, int] = Field(default_factory=dict)


def _gemini_usage(data: Dict[str, Any]) -> Dict[str, int]:
	meta = data.get("usageMetadata") or {}
	prompt = int(meta.get("promptTokenCount") or 0)
	completion = int(meta.get("candidatesTokenCount") or 0)
	return {
		"prompt_tokens": prompt,
		"cached_tokens": int(meta.get("cachedContentTokenCount") or 0),
		"completion_tokens": completion,
		"total_tokens": int(meta.get("totalTokenCount") or (prompt + completion)),
	}


def _openrouter_usage(data: Dict[str, Any]) -> Dict[str, int]:
	meta = data.get("usage") or {}
	prompt = int(meta.get("prompt_tokens") or 0)
	completion = int(meta.get("completion_tokens") or 0)
	details = meta.get("prompt_tokens_details") or {}
	return {
		"prompt_tokens": prompt,
		"cached_tokens": int(details.get("cached_tokens") or 0),
		"completion_tokens": completion,
		"total_tokens": int(meta.get("total_tokens") or (prompt + completion)),
	}


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
		timeout: float = 30,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model_taboo or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
		reply = await self.complete(prompt, system=system)
		return reply.text

	async def complete(
		self,
		prompt: str,
		*,
		system: Optional[str] = None,
		json_mode: bool = False,
		temperature: Optional[float] = None,
	) -> GeminiReply:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if system:
			payload["systemInstruction"] = {"parts": [{"text": system}]}
		generation_config: Dict[str, Any] = {}
		if json_mode:
			generation_config["responseMimeType"] = "application/json"
		if temperature is not None:
			generation_config["temperature"] = temperature
		if generation_config:
			payload["generationConfig"] = generation_config

		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			last_error = http_err
		except httpx.RequestError as net_err:
			last_error = net_err
		if last_error is None:
			try:
				data = r.json()
				text = data["candidates"][0]["content"]["parts"][0]["text"]
				return GeminiReply(text=text, model=self.model, usage=_gemini_usage(data))
			except Exception:
				last_error = RuntimeError(f"Unexpected Gemini response: {r.text[:500]}")
		if not self._fallback_enabled:
			raise last_error
		return await self._fallback_complete(prompt, system, json_mode, temperature, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_complete(
		self,
		prompt: str,
		system: Optional[str],
		json_mode: bool,
		temperature: Optional[float],
		primary_error: Exception,
	) -> GeminiReply:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		payload: Dict[str, Any] = {"model": self._openrouter_model, "messages": messages}
		if json_mode:
			payload["response_format"] = {"type": "json_object"}
		if temperature is not None:
			payload["temperature"] = temperature
		try:
			r = await self._fallback_client.post(self._openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			text = data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
		return GeminiReply(text=text, model=self._openrouter_model, usage=_openrouter_usage(data))
