from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, MutableMapping, Optional

from .blocks import WeekBlockStore
from .cache import TTLCache
from .config import Settings
from .locks import ProtectionGate
from .permissions import MembershipPermissions, PermissionCheck
from .players import PlayerRegistry
from .roster_index import RosterIndex
from .schedule import AvailabilityGrid
from .team_cache import TeamSummaryCache
from .teams import TeamRegistry
from .weeks import Clock


@dataclass
class App:
    """Every collaborator bound to one spreadsheet handle."""
    ss: object
    settings: Settings
    cache: TTLCache
    clock: Clock
    gate: ProtectionGate
    blocks: WeekBlockStore
    grid: AvailabilityGrid
    teams: TeamRegistry
    players: PlayerRegistry
    index: RosterIndex
    summaries: TeamSummaryCache
    check_permission: PermissionCheck
    resolve_identity: Callable[[], Optional[str]]


def build_app(ss, settings: Settings, *,
              cache_store: Optional[MutableMapping] = None,
              cache_clock: Optional[Callable[[], float]] = None,
              clock: Optional[Clock] = None,
              check_permission: Optional[PermissionCheck] = None,
              resolve_identity: Optional[Callable[[], Optional[str]]] = None) -> App:
    cache = TTLCache(cache_store, cache_clock) if cache_clock else TTLCache(cache_store)
    blocks = WeekBlockStore(settings)
    teams = TeamRegistry(ss, settings, cache)
    players = PlayerRegistry(ss, settings, cache)
    return App(
        ss=ss,
        settings=settings,
        cache=cache,
        clock=clock or Clock(settings),
        gate=ProtectionGate(ss, settings),
        blocks=blocks,
        grid=AvailabilityGrid(blocks, settings, cache),
        teams=teams,
        players=players,
        index=RosterIndex(ss, slow_roster=players.roster_from_players),
        summaries=TeamSummaryCache(ss),
        check_permission=check_permission or MembershipPermissions(settings, players, teams),
        resolve_identity=resolve_identity or (lambda: None),
    )
