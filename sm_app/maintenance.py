"""Scheduled jobs: run from a cron or an admin button, each safe to repeat."""
from __future__ import annotations
from typing import Dict

from loguru import logger

from .errors import ScheduleError, boundary
from .models import OpResult
from .quotas import open_sheet
from .weeks import next_week
from .wiring import App


@boundary("ensureFutureWeekBlocks")
def ensure_future_week_blocks(app: App) -> OpResult:
    """Every active team gets the current week and the following ones up to max_weeks_per_team."""
    start = app.clock.current_week()
    created: Dict[str, int] = {}
    failed: Dict[str, str] = {}
    for team in app.teams.get_all_teams():
        ws = open_sheet(app.ss, team.availability_sheet_name)
        if ws is None:
            failed[team.team_id] = f"sheet '{team.availability_sheet_name}' missing"
            continue
        try:
            n = 0
            with app.gate.exclusive_write("Ensure future weeks", ws.title):
                cur = start
                for _ in range(app.settings.max_weeks_per_team):
                    _, was_created = app.blocks.ensure_block_status(ws, *cur)
                    n += was_created
                    cur = next_week(*cur)
            if n:
                blocks = app.blocks.find_all_blocks(ws)
                app.grid.invalidate_weeks(ws.title, [b.key for b in blocks])
            created[team.team_id] = n
        except ScheduleError as e:
            logger.warning("future weeks for {} failed: {}", team.team_id, e)
            failed[team.team_id] = str(e)
    total = sum(created.values())
    logger.info("future weeks ensured: {} block(s) across {} team(s)", total, len(created))
    return OpResult.ok({"created": created, "failed": failed},
                       f"Created {total} week block(s); {len(failed)} team(s) failed.")


@boundary("rebuildPlayerIndex")
def rebuild_player_index(app: App) -> OpResult:
    stats = app.index.rebuild_from_primary(
        app.players.get_all_players(include_inactive=True),
        lambda team_id: app.teams.get_team(team_id, include_inactive=True),
        timestamp=app.clock.timestamp_now(),
    )
    return OpResult.ok(stats, f"Index rebuilt with {stats.entries_created} entries.")


@boundary("refreshTeamSummaries")
def refresh_team_summaries(app: App) -> OpResult:
    ok, failed = 0, []
    for team in app.teams.get_all_teams():
        if app.summaries.refresh_team(team, app.index.lookup(team.team_id)):
            ok += 1
        else:
            failed.append(team.team_id)
    return OpResult.ok({"refreshed": ok, "failed": failed},
                       f"Refreshed {ok} team summar{'y' if ok == 1 else 'ies'}.")
