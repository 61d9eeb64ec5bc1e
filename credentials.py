import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

# Tokens count as expired this many seconds before Google says they do
EXPIRY_SKEW_SECONDS = 60
PENDING_FLOW_TTL_SECONDS = 600
MAX_PENDING_FLOWS = 100


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    expires_at: Optional[float] = None

    @property
    def expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - EXPIRY_SKEW_SECONDS <= time.time()


class CredentialStore:
    """Single in-memory credential slot shared by the callback and the Drive client.

    Every component holds the same instance, so a credential stored by the
    callback is seen by the next Drive call. Writes go through one lock.
    Nothing is persisted: a restart means authorizing again.
    """

    def __init__(self):
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Credential]:
        return self._credential

    async def set(self, credential: Credential) -> None:
        async with self._lock:
            self._credential = credential

    async def fresh(self, refresh: Callable[[Credential], Awaitable[Credential]]) -> Optional[Credential]:
        """Return the current credential, refreshing it first if it has expired.

        If ``refresh`` raises, the stored credential is left as it was.
        """
        async with self._lock:
            cred = self._credential
            if cred is None or not cred.expired or not cred.refresh_token:
                return cred
            self._credential = await refresh(cred)
            return self._credential


class PendingFlows:
    """Authorization flows started by this server and not yet completed.

    Maps the ``state`` nonce sent to Google to the PKCE verifier for that flow.
    Each state can be consumed once. At most ``max_flows`` are kept; starting
    another drops the oldest.
    """

    def __init__(self, ttl: float = PENDING_FLOW_TTL_SECONDS, max_flows: int = MAX_PENDING_FLOWS):
        self.ttl = ttl
        self.max_flows = max_flows
        self._flows: Dict[str, Tuple[str, float]] = {}

    def start(self, verifier: str) -> str:
        self._expire()
        state = secrets.token_urlsafe(16)
        self._flows[state] = (verifier, time.time() + self.ttl)
        # dicts keep insertion order, so the first key is the oldest flow
        while len(self._flows) > self.max_flows:
            del self._flows[next(iter(self._flows))]
        return state

    def consume(self, state: Optional[str]) -> Optional[str]:
        if not state:
            return None
        self._expire()
        entry = self._flows.pop(state, None)
        return entry[0] if entry else None

    def __len__(self) -> int:
        return len(self._flows)

    def _expire(self):
        now = time.time()
        for state in [s for s, (_, deadline) in self._flows.items() if deadline <= now]:
            del self._flows[state]
