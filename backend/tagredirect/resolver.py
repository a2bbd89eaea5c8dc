import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional
from urllib.parse import quote, urlencode

from .config import Pages
from .errors import InvalidRedirectTarget, UpstreamUnavailable
from .sanitize import sanitize
from .schemas import TagState, TagStatus, TargetType

logger = logging.getLogger(__name__)

HandleLookup = Callable[[str], Awaitable[Optional[str]]]


class DestinationKind(str, Enum):
    url = "url"
    profile = "profile"
    suspended = "suspended"
    lost = "lost"
    invalid_target = "invalid_target"
    registration = "registration"


@dataclass(frozen=True)
class Destination:
    kind: DestinationKind
    location: str


def _with_token(path: str, token: Optional[str]) -> str:
    if not token:
        return path
    sep = "&" if "?" in path else "?"
    return f"{path}{sep}{urlencode({'token': token})}"


class TargetResolver:
    """Turns a resolved tag into exactly one redirect destination.

    Every branch ends in a concrete location; expected outcomes (suspended,
    lost, bad target, unclaimed) are values, not exceptions.
    """

    def __init__(self, handle_lookup: HandleLookup, pages: Optional[Pages] = None):
        self._handle_lookup = handle_lookup
        self.pages = pages or Pages()

    def registration(self, token: Optional[str] = None) -> Destination:
        return Destination(DestinationKind.registration, _with_token(self.pages.registration, token))

    async def resolve(self, state: Optional[TagState], token: Optional[str] = None) -> Destination:
        if state is None:
            return self.registration(token)

        if state.status == TagStatus.suspended:
            return Destination(DestinationKind.suspended, self.pages.suspended)
        if state.status == TagStatus.lost:
            return Destination(DestinationKind.lost, _with_token(self.pages.safety, token))

        if state.target_type == TargetType.url:
            try:
                return Destination(DestinationKind.url, sanitize(state.target_url or ""))
            except InvalidRedirectTarget as e:
                logger.warning("Tag %s has an invalid redirect target: %s", state.id, e)
                return Destination(DestinationKind.invalid_target, self.pages.invalid_target)

        if state.owner_id:
            handle = await self._owner_handle(state)
            if handle:
                path = "/" + quote(handle, safe="")
                if state.target_profile_slug:
                    path += "/" + quote(state.target_profile_slug, safe="")
                return Destination(DestinationKind.profile, path)

        return self.registration(token)

    async def _owner_handle(self, state: TagState) -> Optional[str]:
        try:
            return await self._handle_lookup(state.owner_id)
        except UpstreamUnavailable as e:
            logger.warning("Handle lookup for tag %s failed: %s", state.id, e)
            return None
