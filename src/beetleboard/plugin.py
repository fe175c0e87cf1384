from __future__ import annotations

from datetime import UTC, datetime, timedelta
from time import monotonic

from nonebot import get_driver, logger, on_message
from nonebot.adapters.onebot.v11 import Bot, GroupMessageEvent
from nonebot.plugin import require

from beetleboard.commands import BotCommand, parse_bot_command
from beetleboard.config import settings
from beetleboard.errors import BeetleboardError, SyncInProgressError
from beetleboard.maintenance import flush_caches
from beetleboard.query import LeaderboardReader
from beetleboard.ranker import rank_percentile
from beetleboard.scheduler import SyncCoordinator
from beetleboard.service import build_sync_service
from beetleboard.store import KeyValueStore, disconnect_store, get_store
from beetleboard.upstream import UpstreamClient

require("nonebot_plugin_apscheduler")
from nonebot_plugin_apscheduler import scheduler


driver = get_driver()
client = UpstreamClient(settings)
store: KeyValueStore | None = None
coordinator: SyncCoordinator | None = None
reader: LeaderboardReader | None = None

_last_manual_trigger_at = 0.0
MANUAL_TRIGGER_COOLDOWN_SECONDS = 30.0
TOP_PAGE_SIZE = 10
SORT_LABELS = {"beetles": "beetles", "pokes": "pokes", "socialCredit": "social credit"}
SORT_VALUE_FIELDS = {"beetles": "beetles", "pokes": "pokes", "socialCredit": "socialCredit"}

HELP_TEXT = (
    "Commands:\n"
    "`/h`: this help\n"
    "`/sync`: run a full leaderboard sync now\n"
    "`/sync passes N`: run the sync as N chained passes\n"
    "`/sync status`: show whether a sync is running\n"
    "`/top [page] [beetles|pokes|credit]`: show the leaderboard\n"
    "`/who <username>`: show one user's stats and ranks\n"
    "`/flush`: drop all cached leaderboard data"
)


@driver.on_startup
async def _on_startup() -> None:
    global store, coordinator, reader
    store = await get_store(settings)
    coordinator = SyncCoordinator(build_sync_service(store, client, settings), settings)
    reader = LeaderboardReader(store, settings)
    logger.info("beetleboard store ready at {}", settings.db_path)
    logger.info("beetleboard admin groups: {}", settings.enabled_groups)

    @scheduler.scheduled_job(
        "cron",
        minute="0",
        hour=settings.sync_cron_hour,
        timezone=UTC,
        id="beetleboard_sync",
    )
    async def _scheduled_sync() -> None:
        await coordinator.run_scheduled()

    scheduler.add_job(
        coordinator.run_scheduled,
        "date",
        run_date=datetime.now(UTC) + timedelta(seconds=settings.initial_sync_delay_seconds),
        id="beetleboard_initial_sync",
    )
    coordinator.scheduler_active = True
    logger.info("Leaderboard scheduled: {} (UTC)", settings.schedule)


@driver.on_shutdown
async def _on_shutdown() -> None:
    if coordinator is not None:
        coordinator.scheduler_active = False
    await client.aclose()
    await disconnect_store()


def _is_group_allowed(group_id: int) -> bool:
    return str(group_id) in set(settings.enabled_groups)


def _format_status(coordinator: SyncCoordinator) -> str:
    status = coordinator.status()
    lines = [
        "=== Sync status ===",
        f"Scheduler: {'running' if status['isRunning'] else 'stopped'} ({status['schedule']} {status['timezone']})",
        f"Sync in progress: {'yes' if status['isSyncInProgress'] else 'no'}",
    ]
    return "\n".join(lines)


async def _format_top(reader: LeaderboardReader, command: BotCommand) -> str:
    page = await reader.get_page(page=command.page, limit=TOP_PAGE_SIZE, sort_by=command.sort_by)
    if page is None:
        return "Leaderboard data not available yet. Please wait for the initial sync."
    if not page.users:
        return f"Page {command.page} is empty ({page.pages} pages in total)."

    field = SORT_VALUE_FIELDS[command.sort_by]
    lines = [f"=== Top {SORT_LABELS[command.sort_by]} (page {page.page}/{page.pages}) ==="]
    for user in page.users:
        lines.append(f"#{user['rank']} {user['displayName']} (~{user['username']}): {user[field]}")
    if page.meta.get("lastUpdated"):
        lines.append(f"Updated: {page.meta['lastUpdated']}")
    return "\n".join(lines)


async def _format_who(reader: LeaderboardReader, username: str) -> str:
    user = await reader.get_user(username)
    if user is None:
        return f"~{username} is not on the leaderboard."
    meta = await reader.load_meta()
    total = meta.get("totalUsers")
    pct = rank_percentile(user["rank"], total)
    lines = [
        f"=== {user['displayName']} (~{user['username']}) ===",
        f"Beetles: {user['beetles']} (#{user['rank']}{f', TOP {pct}%' if pct is not None else ''})",
        f"Pokes: {user['pokes']} (#{user['pokesRank']})",
        f"Social credit: {user['socialCredit']} (#{user['socialCreditRank']})",
    ]
    return "\n".join(lines)


async def _run_manual_sync(
    bot: Bot, coordinator: SyncCoordinator, group_id: int, command: BotCommand
) -> str:
    global _last_manual_trigger_at
    now = monotonic()
    if now - _last_manual_trigger_at < MANUAL_TRIGGER_COOLDOWN_SECONDS:
        return "Triggered too often, please try again later."
    _last_manual_trigger_at = now
    if coordinator.is_syncing:
        return "A sync is already in progress."

    await bot.send_group_msg(group_id=group_id, message="Sync started...")
    try:
        if command.action == "passes":
            passes = await coordinator.run_passes(command.passes)
            return f"Sync completed in {passes} passes."
        await coordinator.run_manual()
    except SyncInProgressError:
        return "A sync is already in progress."
    except BeetleboardError as exc:
        return f"Sync failed: {exc}"
    return "Manual sync completed."


sync_msg = on_message(priority=10, block=True)


@sync_msg.handle()
async def _handle_message(bot: Bot, event: GroupMessageEvent) -> None:
    if not _is_group_allowed(event.group_id):
        return

    command = parse_bot_command(event.get_plaintext())
    if command is None:
        return
    if store is None or coordinator is None or reader is None:
        await sync_msg.finish("Leaderboard service is still starting up.")

    logger.info(
        "Received command {} {} from user {} in group {}",
        command.name,
        command.action,
        event.user_id,
        event.group_id,
    )

    if command.name == "help" or (command.name == "sync" and command.action == "help"):
        await sync_msg.finish(HELP_TEXT)

    if command.name == "sync":
        if command.action == "status":
            await sync_msg.finish(_format_status(coordinator))
        await sync_msg.finish(await _run_manual_sync(bot, coordinator, event.group_id, command))

    if command.name == "top":
        await sync_msg.finish(await _format_top(reader, command))

    if command.name == "who":
        await sync_msg.finish(await _format_who(reader, command.username))

    if command.name == "flush":
        if coordinator.is_syncing:
            await sync_msg.finish("Cannot flush while a sync is running.")
        try:
            report = await flush_caches(store)
        except Exception:
            logger.exception("Cache flush failed in group {}", event.group_id)
            await sync_msg.finish("Cache flush failed, check the bot log.")
        await sync_msg.finish(f"Flushed {report.total} keys. Run `/sync` to rebuild the leaderboard.")
