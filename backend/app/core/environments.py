import logging
import re
import secrets
import string
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.core.storage import KeyValueStore
from app.models import Environment

logger = logging.getLogger(__name__)

ENVIRONMENTS_KEY = "app.environments.v1"
CURRENT_KEY = "app.currentEnvId.v1"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_WHITESPACE = re.compile(r"\s+")


def default_environments() -> List[Environment]:
    return [
        Environment(id="dev", name="Development", variables={"baseUrl": "dev.api.example.com", "token": "dev-token"}),
        Environment(id="staging", name="Staging", variables={"baseUrl": "staging.api.example.com", "token": "staging-token"}),
        Environment(id="prod", name="Production", variables={"baseUrl": "api.example.com", "token": ""}),
    ]


def make_env_id(name: str) -> str:
    """'QA Env' -> 'qa-env-k3x9za'"""
    slug = _WHITESPACE.sub("-", (name or "env").lower())
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"{slug}-{suffix}"


class EnvironmentStore:
    """
    Owns the environment list and the current-environment pointer.

    Both live in the key-value store as whole JSON values and are rewritten
    right after every mutation. There is no locking: two concurrent writers
    race and the last write wins.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._envs: List[Environment] = []
        self._current_id: Optional[str] = None
        self._load()

    def _load(self):
        raw = self.kv.get(ENVIRONMENTS_KEY)
        envs: List[Environment] = []
        if isinstance(raw, list) and raw:
            try:
                envs = [Environment.model_validate(item) for item in raw]
            except ValidationError:
                logger.warning("Persisted environments are malformed, seeding defaults")
                envs = []
        if not envs:
            envs = default_environments()
        self._envs = envs

        current = self.kv.get(CURRENT_KEY)
        if not isinstance(current, str) or not current:
            current = envs[0].id if envs else None
        self._current_id = current

    def _persist(self):
        self.kv.set(ENVIRONMENTS_KEY, [e.model_dump() for e in self._envs])

    def _persist_current(self):
        if self._current_id:
            self.kv.set(CURRENT_KEY, self._current_id)
        else:
            self.kv.delete(CURRENT_KEY)

    def _find(self, env_id: str) -> Optional[Environment]:
        for env in self._envs:
            if env.id == env_id:
                return env
        return None

    # --- Queries ---
    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    def list(self) -> List[Environment]:
        return [e.model_copy(deep=True) for e in self._envs]

    def current(self) -> Optional[Environment]:
        if self._current_id is None:
            return None
        env = self._find(self._current_id)
        return env.model_copy(deep=True) if env else None

    def variables(self) -> Dict[str, str]:
        """Snapshot of the current environment's variables (empty if none)."""
        env = self.current()
        return dict(env.variables) if env else {}

    # --- Mutations ---
    def create(self, name: str = "", variables: Optional[Dict[str, str]] = None) -> str:
        env_id = make_env_id(name)
        if variables is None:
            variables = {"baseUrl": "", "token": ""}
        env = Environment(id=env_id, name=name or "New Environment", variables=dict(variables))
        self._envs = [env] + self._envs
        self._persist()
        self._current_id = env_id
        self._persist_current()
        logger.info("Created environment %s", env_id)
        return env_id

    def update(self, env_id: str, name: Optional[str] = None, variables: Optional[Dict[str, str]] = None) -> bool:
        """
        Merge name and/or variables into the environment. A given variables
        map replaces the old one entirely. Returns False for unknown ids.
        """
        env = self._find(env_id)
        if env is None:
            logger.debug("Update of unknown environment %s ignored", env_id)
            return False
        patch = {}
        if name is not None:
            patch["name"] = name
        if variables is not None:
            patch["variables"] = dict(variables)
        self._envs = [e.model_copy(update=patch) if e.id == env_id else e for e in self._envs]
        self._persist()
        return True

    def delete(self, env_id: str) -> bool:
        found = self._find(env_id) is not None
        self._envs = [e for e in self._envs if e.id != env_id]
        self._persist()
        if self._current_id == env_id:
            self._current_id = self._envs[0].id if self._envs else None
            self._persist_current()
        if found:
            logger.info("Deleted environment %s", env_id)
        return found

    def set_current(self, env_id: Optional[str]):
        # Dangling ids are allowed; current() then returns None.
        self._current_id = env_id or None
        self._persist_current()

    def refresh(self):
        self._load()
