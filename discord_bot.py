import asyncio
import io
import random
import time
import traceback
from datetime import datetime
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

import db_helper
from active_impls import (
    MEDAL_GROUPS,
    CommandCountPagination,
    HigherLowerGame,
    MedalCountPagination,
    MedalsListPagination,
    MedalsMissingPagination,
    RankingPagination,
    TopScoresPagination,
)
from active_message import CommandOrigin
from active_messages import ActiveMessages
from bot_config import is_admin, load_settings, read_bot_token, read_osu_client_file
from discord_platform import DiscordPlatform
from osu_api import NotFound, OsuClient, OsuUser
from refresh_cache import cached_medals, cached_ranking, refresh
from renderer import render_rank_graph


SETTINGS = load_settings()

_credentials = read_osu_client_file()
osu_client: Optional[OsuClient] = None
if _credentials is not None:
    osu_client = OsuClient(*_credentials, timeout=SETTINGS["osu_request_timeout"])
else:
    print("[WARNING] OSU_CLIENT.txt is missing, osu! commands will not work")

# Create bot with command tree for slash commands
intents = discord.Intents.default()
# members is needed to know who is in a server for server leaderboards
intents.members = True
bot = commands.Bot(command_prefix="!", intents=intents)
bot.started_at = datetime.now()
bot.active_messages = ActiveMessages(
    DiscordPlatform(bot),
    default_timeout=SETTINGS["active_message_timeout"],
    sweep_interval=SETTINGS["sweep_interval"],
)


class CommandError(Exception):
    """Expected failure whose message is shown to the user as is."""


def _client() -> OsuClient:
    if osu_client is None:
        raise CommandError("osu! API credentials are not configured")
    return osu_client


def _origin(interaction: discord.Interaction) -> CommandOrigin:
    return CommandOrigin(interaction.user.id, interaction.channel_id, interaction)


async def _defer(interaction: discord.Interaction) -> bool:
    if not interaction.response.is_done():
        try:
            await interaction.response.defer()
        except (discord.errors.NotFound, discord.errors.HTTPException):
            return False
    return True


async def _report(interaction: discord.Interaction, e: Exception):
    if isinstance(e, NotFound):
        await interaction.followup.send(str(e))
    elif isinstance(e, CommandError):
        await interaction.followup.send(f"[ERROR] {e}")
    else:
        print(f"[ERROR] /{interaction.command.qualified_name if interaction.command else '?'} failed: {e}")
        traceback.print_exception(type(e), e, e.__traceback__)
        await interaction.followup.send(f"[ERROR] {str(e)}")


async def fetch_osu_user(interaction: discord.Interaction, name: Optional[str]) -> OsuUser:
    """The named user, or the account linked to the invoking Discord user."""
    client = _client()
    if not name:
        link = await asyncio.to_thread(db_helper.get_user_link, interaction.user.id)
        if link is None:
            raise CommandError("No osu! account linked, use `/link` or pass a username")
        name = str(link["osu_id"])

    user = await asyncio.to_thread(client.get_user, name)
    await asyncio.to_thread(db_helper.save_osu_user, user)
    return user


async def load_medal_icon(url: str) -> bytes:
    key = f"medal-icon:{url}"
    data = await asyncio.to_thread(db_helper.get_cached, key)
    if data is None:
        data = await asyncio.to_thread(_client().get_medal_icon, url)
        await asyncio.to_thread(db_helper.set_cached, key, data)
    return data


async def load_cover(score) -> bytes:
    return await asyncio.to_thread(_client().get_cover, score)


@bot.event
async def on_ready():
    print(f"[OK] Bot logged in as {bot.user}")
    try:
        synced = await bot.tree.sync()
        print(f"[OK] Synced {len(synced)} command(s)")
    except Exception as e:
        print(f"[ERROR] Failed to sync commands: {e}")
    # start background tasks once
    if not getattr(bot, "background_tasks_started", False):
        bot.active_messages.start()
        bot.background_tasks_started = True
        print("[OK] Active message sweeper started")


@bot.event
async def on_app_command_completion(interaction: discord.Interaction, command):
    try:
        await asyncio.to_thread(db_helper.increment_command_count, command.qualified_name)
    except Exception as e:
        print(f"[WARNING] Failed to count /{command.qualified_name}: {e}")


# ============================================================================
# Account linking
# ============================================================================

@bot.tree.command(name="link", description="Link an osu! account to your Discord account")
@app_commands.describe(name="osu! username")
async def link(interaction: discord.Interaction, name: str):
    if not await _defer(interaction):
        return
    try:
        user = await fetch_osu_user(interaction, name)
        await asyncio.to_thread(db_helper.set_user_link, interaction.user.id, user.user_id, user.username)
        await interaction.followup.send(f"Linked your Discord account to `{user.username}`.")
    except Exception as e:
        await _report(interaction, e)


@bot.tree.command(name="unlink", description="Unlink your osu! account")
async def unlink(interaction: discord.Interaction):
    if not await _defer(interaction):
        return
    try:
        removed = await asyncio.to_thread(db_helper.remove_user_link, interaction.user.id)
        if removed:
            await interaction.followup.send("Your osu! account is no longer linked.")
        else:
            await interaction.followup.send("[WARNING] You don't have a linked osu! account.")
    except Exception as e:
        await _report(interaction, e)


# ============================================================================
# Medals
# ============================================================================

medals_group = app_commands.Group(name="medals", description="Medal related commands")

SORT_CHOICES = [
    app_commands.Choice(name="Alphabetically", value="alphabet"),
    app_commands.Choice(name="Date", value="date"),
    app_commands.Choice(name="Medal ID", value="medal_id"),
    app_commands.Choice(name="Rarity", value="rarity"),
]


@medals_group.command(name="list", description="List all medals of a user")
@app_commands.describe(name="osu! username (optional if linked)", sort="How to sort the medals",
                       group="Only show medals of this group", reverse="Reverse the order")
@app_commands.choices(sort=SORT_CHOICES, group=[app_commands.Choice(name=g, value=g) for g in MEDAL_GROUPS])
async def medals_list(interaction: discord.Interaction, name: Optional[str] = None,
                      sort: Optional[app_commands.Choice[str]] = None,
                      group: Optional[app_commands.Choice[str]] = None, reverse: bool = False):
    if not await _defer(interaction):
        return
    try:
        user = await fetch_osu_user(interaction, name)
        medals = await asyncio.to_thread(cached_medals, _client(), SETTINGS["cache_ttl"])
        by_id = {medal.medal_id: medal for medal in medals}
        acquired = [(by_id[m.medal_id], m.achieved_at) for m in user.medals if m.medal_id in by_id]

        paginator = MedalsListPagination(
            interaction.user.id, user, acquired, len(medals), load_medal_icon,
            sort=sort.value if sort else "date",
            group=group.value if group else None,
            reverse=reverse,
        )
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


@medals_group.command(name="missing", description="Display medals a user is missing")
@app_commands.describe(name="osu! username (optional if linked)", sort="How to sort medals within a group")
@app_commands.choices(sort=[c for c in SORT_CHOICES if c.value != "date"])
async def medals_missing(interaction: discord.Interaction, name: Optional[str] = None,
                         sort: Optional[app_commands.Choice[str]] = None):
    if not await _defer(interaction):
        return
    try:
        user = await fetch_osu_user(interaction, name)
        medals = await asyncio.to_thread(cached_medals, _client(), SETTINGS["cache_ttl"])
        owned = {m.medal_id for m in user.medals}
        missing = [medal for medal in medals if medal.medal_id not in owned]

        paginator = MedalsMissingPagination(interaction.user.id, user, missing, len(medals),
                                            sort=sort.value if sort else "medal_id")
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


@medals_group.command(name="count", description="Leaderboard for most medals")
@app_commands.describe(country="Two letter country code to filter by")
async def medals_count(interaction: discord.Interaction, country: Optional[str] = None):
    if not await _defer(interaction):
        return
    try:
        if country and len(country.strip()) != 2:
            raise CommandError("The country must be a two letter country code")
        ranking = await asyncio.to_thread(cached_ranking, _client(), SETTINGS["cache_ttl"])
        link = await asyncio.to_thread(db_helper.get_user_link, interaction.user.id)

        paginator = MedalCountPagination(
            interaction.user.id, ranking,
            author_name=link["username"] if link else None,
            country=country.strip() if country else None,
        )
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


bot.tree.add_command(medals_group)


# ============================================================================
# Leaderboards
# ============================================================================

@bot.tree.command(name="serverleaderboard", description="Leaderboard of linked members of this server")
@app_commands.describe(column="Stat to rank members by")
@app_commands.choices(column=[
    app_commands.Choice(name="PP", value="pp"),
    app_commands.Choice(name="Global rank", value="global_rank"),
    app_commands.Choice(name="Accuracy", value="accuracy"),
    app_commands.Choice(name="Playcount", value="playcount"),
    app_commands.Choice(name="Medals", value="medal_count"),
])
async def serverleaderboard(interaction: discord.Interaction, column: app_commands.Choice[str]):
    if not await _defer(interaction):
        return
    try:
        if interaction.guild is None:
            raise CommandError("This command only works in a server")

        links = await asyncio.to_thread(db_helper.get_all_user_links)
        member_ids = {str(member.id) for member in interaction.guild.members}
        osu_ids = [link["osu_id"] for discord_id, link in links.items() if discord_id in member_ids]
        rows = await asyncio.to_thread(db_helper.get_osu_users, osu_ids)

        own = links.get(str(interaction.user.id))
        paginator = RankingPagination.server(
            interaction.user.id, interaction.guild.name, rows, column.value,
            author_id=own["osu_id"] if own else None,
        )
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


@bot.tree.command(name="ranking", description="Global pp ranking")
@app_commands.describe(country="Two letter country code for a country ranking")
async def ranking(interaction: discord.Interaction, country: Optional[str] = None):
    if not await _defer(interaction):
        return
    try:
        client = _client()
        country = country.strip().upper() if country else None

        async def fetch_chunk(page: int):
            return await asyncio.to_thread(client.get_rankings, "osu", page, country)

        entries, total = await fetch_chunk(1)
        link = await asyncio.to_thread(db_helper.get_user_link, interaction.user.id)
        title = f"Performance ranking for osu!standard ({country})" if country else "Performance ranking for osu!standard"

        paginator = RankingPagination(
            interaction.user.id, title, total, entries, fetch_chunk,
            author_id=link["osu_id"] if link else None,
        )
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


# ============================================================================
# Scores
# ============================================================================

@bot.tree.command(name="top", description="Display the top plays of a user")
@app_commands.describe(name="osu! username (optional if linked)", sort="How to sort the scores")
@app_commands.choices(sort=[
    app_commands.Choice(name="PP", value="pp"),
    app_commands.Choice(name="Date", value="date"),
    app_commands.Choice(name="Accuracy", value="accuracy"),
    app_commands.Choice(name="Combo", value="combo"),
])
async def top(interaction: discord.Interaction, name: Optional[str] = None,
              sort: Optional[app_commands.Choice[str]] = None):
    if not await _defer(interaction):
        return
    try:
        client = _client()
        user = await fetch_osu_user(interaction, name)
        scores = await asyncio.to_thread(client.get_user_scores, user.user_id)

        check_replay = None
        analyzer_url = SETTINGS["miss_analyzer_url"]
        if analyzer_url:
            async def check_replay(score):
                return await asyncio.to_thread(client.check_miss_analyzer, analyzer_url, score.score_id)

        paginator = TopScoresPagination(
            interaction.user.id, user, scores,
            sort=sort.value if sort else "pp",
            check_replay=check_replay,
            replay_timeout=SETTINGS["miss_analyzer_timeout"],
        )
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


graph_group = app_commands.Group(name="graph", description="Display graphs about osu! data")


@graph_group.command(name="rank", description="Display a user's rank progression over the last 90 days")
@app_commands.describe(name="osu! username (optional if linked)")
async def graph_rank(interaction: discord.Interaction, name: Optional[str] = None):
    if not await _defer(interaction):
        return
    try:
        user = await fetch_osu_user(interaction, name)
        if not user.rank_history:
            await interaction.followup.send(f"`{user.username}` has no rank history.")
            return
        image = await asyncio.to_thread(render_rank_graph, user.username, user.rank_history)
        await interaction.followup.send(file=discord.File(io.BytesIO(image), filename=f"rank_{user.user_id}.png"))
    except Exception as e:
        await _report(interaction, e)


bot.tree.add_command(graph_group)


@bot.tree.command(name="higherlower", description="Play a game of osu! related higher or lower")
async def higherlower(interaction: discord.Interaction):
    if not await _defer(interaction):
        return
    try:
        client = _client()
        entries, _ = await asyncio.to_thread(client.get_rankings, "osu", random.randint(1, 20))
        if not entries:
            raise CommandError("Could not find players to play with")
        player = random.choice(entries)
        scores = await asyncio.to_thread(client.get_user_scores, player.user_id)
        for score in scores:
            score.username = score.username or player.username

        game = HigherLowerGame(interaction.user.id, scores, load_cover)
        await bot.active_messages.begin_pagination(game, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


# ============================================================================
# Bot info / admin
# ============================================================================

@bot.tree.command(name="commands", description="Display a list of popular commands")
async def commands_cmd(interaction: discord.Interaction):
    if not await _defer(interaction):
        return
    try:
        counts = await asyncio.to_thread(db_helper.get_command_counts)
        paginator = CommandCountPagination(interaction.user.id, counts, bot.started_at)
        await bot.active_messages.begin_pagination(paginator, _origin(interaction))
    except Exception as e:
        await _report(interaction, e)


@bot.tree.command(name="refreshcache", description="Admin-only: refresh cached osekai data")
async def refreshcache(interaction: discord.Interaction):
    if not is_admin(interaction.user.id, SETTINGS):
        await interaction.response.send_message("[ERROR] You are not allowed to use this command.", ephemeral=True)
        return
    if not await _defer(interaction):
        return
    try:
        start = time.monotonic()
        results = await asyncio.to_thread(refresh, _client(), ["rarity", "medals", "ranking"])
        lines = [f"{'[OK]' if ok else '[ERROR]'} {name}" for name, ok in results.items()]
        lines.append(f"Took {time.monotonic() - start:.1f}s")
        await interaction.followup.send("\n".join(lines))
    except Exception as e:
        await _report(interaction, e)


async def main():
    db_helper.init_database()
    token = read_bot_token()
    try:
        async with bot:
            await bot.start(token)
    finally:
        await bot.active_messages.shutdown()


# Run bot
if __name__ == "__main__":
    asyncio.run(main())
