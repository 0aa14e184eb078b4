"""
Cache applicatif (pages/données rendues) avec invalidation par tag et par chemin.

Ce module fournit une version en mémoire (dev/tests) et une version Redis (multi-instances).
Chaque entrée est indexée par ses tags et, optionnellement, par le chemin qui l'a produite.
Revalider un tag ou un chemin inconnu est un no-op.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import NoScriptError

# Lecture de l'index et suppression des entrées en une seule opération atomique
REVALIDATE_INDEX_SCRIPT = """
local members = redis.call('SMEMBERS', KEYS[1])
local removed = 0
for _, member in ipairs(members) do
    removed = removed + redis.call('DEL', ARGV[1] .. member)
end
redis.call('DEL', KEYS[1])
return removed
"""


class InMemoryFrameworkCache:
    """Cache en mémoire; conserve l'historique des revalidations."""

    def __init__(self):
        """Initialise un cache vide."""
        self._entries: dict[str, Any] = {}
        self._tags: dict[str, set[str]] = {}
        self._paths: dict[str, set[str]] = {}
        self.revalidated_tags: list[str] = []
        self.revalidated_paths: list[str] = []

    async def set(
        self, key: str, value: Any, tags: list[str] | None = None, path: str | None = None
    ) -> None:
        self._entries[key] = value
        for tag in tags or []:
            self._tags.setdefault(tag, set()).add(key)
        if path:
            self._paths.setdefault(path, set()).add(key)

    async def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    def _drop(self, keys: set[str]) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    async def revalidate_tag(self, tag: str) -> int:
        """Invalide toutes les entrées portant `tag`; retourne le nombre d'entrées retirées."""
        self.revalidated_tags.append(tag)
        return self._drop(self._tags.pop(tag, set()))

    async def revalidate_path(self, path: str) -> int:
        """Invalide les entrées rendues pour `path`."""
        self.revalidated_paths.append(path)
        return self._drop(self._paths.pop(path, set()))

    async def aclose(self) -> None:
        return None


class RedisFrameworkCache:
    """Cache adossé à Redis (clés: `fc:entry:{key}`, index `fc:tag:{tag}`, `fc:path:{path}`)."""

    def __init__(self, url: str, prefix: str = "fc"):
        """Crée un client Redis asynchrone à partir de l'URL fournie."""
        self.client = aioredis.Redis.from_url(url, decode_responses=True)
        self.prefix = prefix
        self._script_hash: str | None = None

    def _entry(self, key: str) -> str:
        return f"{self.prefix}:entry:{key}"

    async def set(
        self, key: str, value: Any, tags: list[str] | None = None, path: str | None = None
    ) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self._entry(key), json.dumps(value))
            for tag in tags or []:
                pipe.sadd(f"{self.prefix}:tag:{tag}", key)
            if path:
                pipe.sadd(f"{self.prefix}:path:{path}", key)
            await pipe.execute()

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(self._entry(key))
        return json.loads(raw) if raw else None

    async def _get_script_hash(self) -> str:
        if self._script_hash is None:
            self._script_hash = await self.client.script_load(REVALIDATE_INDEX_SCRIPT)
        return self._script_hash

    async def _revalidate_index(self, index_key: str) -> int:
        # une entrée ajoutée pendant la revalidation reste indexée pour la suivante
        entry_prefix = self._entry("")
        try:
            removed = await self.client.evalsha(
                await self._get_script_hash(), 1, index_key, entry_prefix
            )
        except NoScriptError:
            # cache de scripts vidé côté serveur (redémarrage, SCRIPT FLUSH)
            self._script_hash = None
            removed = await self.client.evalsha(
                await self._get_script_hash(), 1, index_key, entry_prefix
            )
        return int(removed)

    async def revalidate_tag(self, tag: str) -> int:
        return await self._revalidate_index(f"{self.prefix}:tag:{tag}")

    async def revalidate_path(self, path: str) -> int:
        return await self._revalidate_index(f"{self.prefix}:path:{path}")

    async def aclose(self) -> None:
        await self.client.aclose()
