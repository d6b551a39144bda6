"""View states derived from a repository's published state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Union

from .flow import combine


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Ready:
    items: List[Any] = field(default_factory=list)
    is_refreshing: bool = False
    notice: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    message: str


ViewState = Union[Loading, Ready, Failed]


def derive_view_state(
    items: List[Any], loading: bool, error: Optional[str]
) -> ViewState:
    """Map items, loading flag and error onto exactly one view state.

    Data alongside an error is still shown, with the error as a
    dismissible notice.
    """
    if error is not None and items:
        return Ready(items=list(items), is_refreshing=loading, notice=error)
    if error is not None:
        return Failed(error)
    if items or not loading:
        return Ready(items=list(items), is_refreshing=loading)
    return Loading()


def watch_view_state(repository) -> AsyncIterator[ViewState]:
    """Yield a new view state whenever the repository's state changes.

    Works for list repositories (``items``) and for the profile
    repository, whose profile is presented as a one-element list.
    """
    source = getattr(repository, "items", None)
    if source is None:
        source = repository.profile

        def transform(profile, loading, error):
            return derive_view_state(
                [profile] if profile is not None else [], loading, error
            )

    else:
        transform = derive_view_state

    return combine([source, repository.is_loading, repository.error], transform)
