"""
Tracker Bot - Discord control surface for the task tracker.

Starts the tracking loop when the bot comes online and exposes admin
slash commands to control and inspect it:
    /tracker_start, /tracker_stop, /tracker_status,
    /tracker_evaluations, /tracker_errors

Setup:
    1. Put TRACKER_BOT_TOKEN, ANTHROPIC_API_KEY, GUILD_ID in .env
    2. python -m scripts.init_databases
    3. python -m bots.tracker.tracker_bot
"""

import asyncio
import logging
import os
import time
from datetime import datetime

import aiohttp
from dotenv import load_dotenv
from interactions import (
    Client,
    Embed,
    Intents,
    OptionType,
    Permissions,
    SlashContext,
    listen,
    slash_command,
    slash_option,
)

load_dotenv()
TRACKER_BOT_TOKEN = os.environ["TRACKER_BOT_TOKEN"]

from common.config import GUILD_ID, TRACKER_AUTOSTART
from common.logger import get_logger
from tracker import build_tracker

get_logger()  # colored console output for every module
logger = logging.getLogger("TrackerBot")

client = Client(
    token=TRACKER_BOT_TOKEN,
    intents=Intents.GUILDS | Intents.GUILD_MESSAGES | Intents.MESSAGE_CONTENT | Intents.GUILD_MESSAGE_REACTIONS,
)

SCOPES = [int(GUILD_ID)] if GUILD_ID else None
LEVEL_COLORS = {
    'Excellent': 0x2ecc71,
    'Ok': 0x9c92d1,
    'Poor': 0xe67e22,
    'Error': 0xff0000,
}

tracker = None
background_tasks = set()


def format_time(value) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S UTC') if value else "never"


@listen()
async def on_startup():
    global tracker
    logger.info("Tracker bot online")

    if tracker is None:
        tracker = build_tracker(TRACKER_BOT_TOKEN)
    if TRACKER_AUTOSTART:
        run_in_background(tracker.start())
        logger.info("Task tracking autostarted")


def _task_done(task: asyncio.Task):
    background_tasks.discard(task)
    if not task.cancelled() and task.exception():
        logger.error(f"Background task failed: {task.exception()}", exc_info=task.exception())


def run_in_background(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    background_tasks.add(task)
    task.add_done_callback(_task_done)
    return task


async def tracker_ready(ctx) -> bool:
    """Reply and return False while on_startup has not built the tracker yet."""
    if tracker is None:
        await ctx.send("Tracker is still initialising, try again in a moment.", ephemeral=True)
        return False
    return True


# ============== SLASH COMMANDS ==============

@slash_command(name="tracker_start", description="Start tracking task requirements.",
               scopes=SCOPES, default_member_permissions=Permissions.ADMINISTRATOR)
async def tracker_start_cmd(ctx: SlashContext):
    if not await tracker_ready(ctx):
        return
    if tracker.is_tracking:
        await ctx.send("Tracking is already running.", ephemeral=True)
        return
    await ctx.send("Starting task tracking...", ephemeral=True)
    await tracker.start()


@slash_command(name="tracker_stop", description="Stop tracking task requirements.",
               scopes=SCOPES, default_member_permissions=Permissions.ADMINISTRATOR)
async def tracker_stop_cmd(ctx: SlashContext):
    if not await tracker_ready(ctx):
        return
    tracker.stop()
    await ctx.send("Task tracking stopped.", ephemeral=True)


@slash_command(name="tracker_status", description="Show task tracker status.",
               scopes=SCOPES, default_member_permissions=Permissions.ADMINISTRATOR)
async def tracker_status_cmd(ctx: SlashContext):
    if not await tracker_ready(ctx):
        return
    status = tracker.get_status()
    embed = Embed(
        title="📊 Task Tracker",
        color=0x2ecc71 if status.is_tracking else 0x95a5a6,
        timestamp=datetime.now(),
    )
    embed.add_field(name="State", value="Running" if status.is_tracking else "Stopped", inline=True)
    embed.add_field(name="Active tasks", value=str(status.active_task_count), inline=True)
    embed.add_field(name="Last run", value=format_time(status.last_run), inline=False)
    await ctx.send(embed=embed, ephemeral=True)


@slash_command(name="tracker_evaluations", description="Show recent requirement evaluations.",
               scopes=SCOPES, default_member_permissions=Permissions.ADMINISTRATOR)
@slash_option(
    name="task_id",
    description="Only show evaluations for this task",
    required=False,
    opt_type=OptionType.STRING
)
@slash_option(
    name="limit",
    description="Number of evaluations to show (default 10)",
    required=False,
    opt_type=OptionType.INTEGER
)
async def tracker_evaluations_cmd(ctx: SlashContext, task_id: str = None, limit: int = 10):
    if not await tracker_ready(ctx):
        return
    entries = tracker.log_manager.recent_evaluations(task_id=task_id, limit=min(limit, 25))
    if not entries:
        await ctx.send("No evaluations logged yet.", ephemeral=True)
        return

    embed = Embed(title="📝 Recent Evaluations", color=LEVEL_COLORS.get(entries[0].level.value, 0x9c92d1))
    for entry in entries:
        sent = " · sent" if entry.message_sent else ""
        embed.add_field(
            name=f"{entry.level.value} · {entry.task_id}/{entry.requirement_id}{sent}",
            value=f"{entry.message[:200]}\n*{format_time(entry.timestamp)}*",
            inline=False,
        )
    await ctx.send(embed=embed, ephemeral=True)


@slash_command(name="tracker_errors", description="Show recent tracker errors.",
               scopes=SCOPES, default_member_permissions=Permissions.ADMINISTRATOR)
@slash_option(
    name="limit",
    description="Number of errors to show (default 10)",
    required=False,
    opt_type=OptionType.INTEGER
)
async def tracker_errors_cmd(ctx: SlashContext, limit: int = 10):
    if not await tracker_ready(ctx):
        return
    entries = tracker.log_manager.recent_errors(limit=min(limit, 25))
    if not entries:
        await ctx.send("No tracker errors. 🎉", ephemeral=True)
        return

    embed = Embed(title="🚨 Tracker Errors", color=0xff0000)
    for entry in entries:
        embed.add_field(name=f"{entry.source} · {format_time(entry.timestamp)}",
                        value=entry.message[:500] or "(no message)", inline=False)
    await ctx.send(embed=embed, ephemeral=True)


# Transient network errors that warrant an automatic restart
RESTARTABLE_EXCEPTIONS = (
    aiohttp.ClientConnectorError,
    aiohttp.ClientOSError,
    aiohttp.ServerDisconnectedError,
    ConnectionResetError,
    OSError,
)

MAX_BACKOFF_SECONDS = 300  # 5 minute cap


# ============== MAIN ENTRY POINT ==============

if __name__ == "__main__":
    # Supervisor loop: restart on transient network failures
    consecutive_failures = 0
    while True:
        try:
            logger.info("Starting tracker bot...")
            client.start()
            logger.info("Bot stopped cleanly, exiting.")
            break
        except RESTARTABLE_EXCEPTIONS as exc:
            consecutive_failures += 1
            backoff = min(2 ** consecutive_failures, MAX_BACKOFF_SECONDS)
            logger.warning(
                f"Bot crashed with transient error ({type(exc).__name__}: {exc}). "
                f"Restarting in {backoff}s (attempt #{consecutive_failures})..."
            )
            time.sleep(backoff)
            # Re-create the event loop since the old one is closed after start()
            asyncio.set_event_loop(asyncio.new_event_loop())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt, exiting.")
            break
