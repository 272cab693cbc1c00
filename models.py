"""Model configuration, discovery and resolution for the Ollama bridge."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field

from config import AppConfig
from upstream import UpstreamClient
from utils import iso_timestamp

log = logging.getLogger("ollama_bridge")

Capability = Literal["vision", "tools", "thinking"]

# Fixed descriptive metadata the local-model-server clients expect to see
MODEL_DETAILS: Dict[str, Any] = {
    "parent_model": "",
    "format": "gguf",
    "family": "llama",
    "families": ["llama"],
    "parameter_size": "7B",
    "quantization_level": "Q4_K_M",
}
MODEL_SIZE = 500_000_000


class ModelNotFoundError(LookupError):
    def __init__(self, model_name: str) -> None:
        super().__init__(f"Model {model_name} not found")
        self.model_name = model_name


class ModelConfig(BaseModel):
    """A model exposed to clients under its display name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    id: str
    context_length: int = Field(alias="contextLength", gt=0)
    capabilities: Tuple[Capability, ...] = ()
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, alias="topP", ge=0, le=1)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    # forwarded verbatim into the upstream request
    extra: Optional[Dict[str, Any]] = None
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    api_key: Optional[str] = Field(default=None, alias="apiKey")

    @property
    def has_dedicated_endpoint(self) -> bool:
        return bool(self.base_url and self.api_key)


def load_models(path: str | Path) -> List[ModelConfig]:
    """Load the static model list (a JSON array) from disk."""
    p = Path(path)
    if not p.exists():
        log.warning("Static model file %s not found; starting with no static models", str(p))
        return []
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{p}: expected a JSON array of models")
    models = [ModelConfig.model_validate(item) for item in data]
    log.info("Loaded static models: count=%d path=%s", len(models), str(p))
    return models


class ModelDiscovery:
    """Best-effort model list from a local OpenAI-compatible model server."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        context_length: int,
        timeout_s: float,
        refresh_s: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._context_length = context_length
        self._timeout_s = timeout_s
        self._refresh_s = refresh_s
        self._transport = transport
        self._lock = asyncio.Lock()
        self._models: List[ModelConfig] = []
        self._last_fetch = 0.0

    @classmethod
    def from_config(cls, config: AppConfig) -> ModelDiscovery:
        return cls(
            config.ollama_base_url,
            config.ollama_api_key,
            context_length=config.discovery_context_length,
            timeout_s=config.discovery_timeout_s,
            refresh_s=config.refresh_models_s,
        )

    async def get_models(self) -> List[ModelConfig]:
        """Get cached models or fetch fresh ones; failures yield an empty list."""
        if self._fresh():
            return self._models

        async with self._lock:
            if self._fresh():
                return self._models
            try:
                models = await self._fetch_models()
            except Exception as e:
                log.warning("Model discovery failed url=%s err=%r", self._base_url, e)
                return []
            self._models = models
            self._last_fetch = time.time()
            return self._models

    def _fresh(self) -> bool:
        return bool(self._models) and (time.time() - self._last_fetch) < self._refresh_s

    async def _fetch_models(self) -> List[ModelConfig]:
        t0 = time.time()
        async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
            r = await client.get(
                f"{self._base_url}/models",
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        dt = (time.time() - t0) * 1000

        if r.status_code != 200:
            raise RuntimeError(f"/models returned {r.status_code}: {r.text[:500]}")

        data = r.json()
        items = data.get("data", []) if isinstance(data, dict) else []
        out: List[ModelConfig] = []
        for it in items:
            model = self._parse_model(it)
            if model:
                out.append(model)

        log.info("Discovered models: count=%d ms=%.1f", len(out), dt)
        return out

    def _parse_model(self, data: Any) -> Optional[ModelConfig]:
        if not isinstance(data, dict):
            return None
        mid = data.get("id") or ""
        if not mid:
            return None
        return ModelConfig(
            name=mid,
            id=mid,
            context_length=self._context_length,
            capabilities=("tools",),
            base_url=self._base_url,
            api_key=self._api_key,
        )


class ModelCatalog:
    """Static models merged with discovered ones; resolves names to backends."""

    def __init__(
        self,
        static_models: List[ModelConfig],
        default_client: UpstreamClient,
        config: AppConfig,
        discovery: ModelDiscovery | None = None,
    ) -> None:
        self._static = list(static_models)
        self._default_client = default_client
        self._config = config
        self._discovery = discovery

    async def list_models(self) -> List[ModelConfig]:
        """Static models first, then discovered ones, in declaration order."""
        discovered: List[ModelConfig] = []
        if self._discovery is not None:
            discovered = await self._discovery.get_models()
        return self._static + discovered

    async def find(self, model_name: str) -> ModelConfig:
        for model in await self.list_models():
            if model.name == model_name:
                return model
        raise ModelNotFoundError(model_name)

    async def resolve(self, model_name: str) -> Tuple[ModelConfig, UpstreamClient]:
        """Return the model config and the backend client that serves it."""
        model = await self.find(model_name)
        return model, self.client_for(model)

    def client_for(self, model: ModelConfig) -> UpstreamClient:
        if model.has_dedicated_endpoint:
            return UpstreamClient.from_config(
                self._config,
                base_url=model.base_url,
                api_key=model.api_key,
            )
        return self._default_client


def generate_digest(model_id: str) -> str:
    return hashlib.sha256(model_id.encode("utf-8")).hexdigest()


def generate_models_list(models: List[ModelConfig]) -> Dict[str, Any]:
    """Render the `/api/tags` listing."""
    now = iso_timestamp()
    return {
        "models": [
            {
                "name": m.name,
                "model": m.id,
                "modified_at": now,
                "size": MODEL_SIZE,
                "digest": generate_digest(m.id),
                "details": dict(MODEL_DETAILS),
            }
            for m in models
        ]
    }


def generate_model_info(model: ModelConfig) -> Dict[str, Any]:
    """Render the `/api/show` payload for one model."""
    return {
        "modelfile": f"FROM {model.name}",
        "parameters": 'stop "<|eot_id|>"',
        "template": "{{ .Prompt }}",
        "details": dict(MODEL_DETAILS),
        "model_info": {
            "general.architecture": "llama",
            "general.file_type": 2,
            "general.parameter_count": 7_000_000_000,
            "llama.context_length": model.context_length,
            "llama.embedding_length": 4096,
            "tokenizer.ggml.model": "gpt2",
        },
        "capabilities": ["completion", *model.capabilities],
    }
