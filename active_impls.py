"""
Interactive message variants behind the bot's commands.

Each class only knows how to draw its pages and react to its own controls;
posting, routing, locking and expiry are handled by ActiveMessages.
"""

import asyncio
import random
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import discord

from active_message import (
    ActiveMessage,
    Attachment,
    Button,
    ButtonStyle,
    ComponentEvent,
    ComponentOutcome,
    ControlSurface,
    PageContent,
    SelectMenu,
    SelectOption,
    ValidationError,
)
from artifact_handoff import ArtifactSlot, ArtifactState, spawn_artifact, wait_bounded
from osu_api import RANKING_PAGE_SIZE, OsekaiMedal, OsekaiUserEntry, OsuScore, OsuUser, RankingEntry
from pagination import MODAL_INDEX, PaginatedMessage
from renderer import render_higher_lower, render_medal_icons


EMBED_COLOR = discord.Color.from_rgb(54, 57, 63)

MEDAL_GROUPS = [
    "Skill & Dedication",
    "Hush-Hush",
    "Hush-Hush (Expert)",
    "Beatmap Packs",
    "Beatmap Challenge Packs",
    "Seasonal Spotlights",
    "Beatmap Spotlights",
    "Mod Introduction",
]

IconLoader = Callable[[str], Awaitable[bytes]]


def _timestamp(when: datetime, style: str = "d") -> str:
    return f"<t:{int(when.timestamp())}:{style}>"


def _user_author(embed: discord.Embed, user: OsuUser) -> discord.Embed:
    pp = f"{user.pp:,.2f}pp"
    rank = f"#{user.global_rank:,}" if user.global_rank else "-"
    embed.set_author(name=f"{user.username}: {pp} ({rank} {user.country_code})", url=user.profile_url, icon_url=user.avatar_url)
    return embed


async def _load_optional(loader: IconLoader, url: str) -> Optional[bytes]:
    try:
        return await loader(url)
    except Exception as e:
        print(f"[ARTIFACT] Failed to load {url}: {e}")
        return None


# ============================================================================
# Medals
# ============================================================================

def sort_acquired(acquired: List[Tuple[OsekaiMedal, datetime]], sort: str, reverse: bool = False):
    if sort == "alphabet":
        key = lambda item: item[0].name.lower()
    elif sort == "medal_id":
        key = lambda item: item[0].medal_id
    elif sort == "rarity":
        key = lambda item: item[0].rarity if item[0].rarity is not None else 100.0
    else:
        # newest first
        key = lambda item: -item[1].timestamp()
    return sorted(acquired, key=key, reverse=reverse)


class MedalsListPagination(PaginatedMessage):
    """Acquired medals of a user with a strip of the page's icons."""

    per_page = 10

    def __init__(
        self,
        owner_id: int,
        user: OsuUser,
        acquired: List[Tuple[OsekaiMedal, datetime]],
        total_medals: int,
        load_icon: IconLoader,
        sort: str = "date",
        group: Optional[str] = None,
        reverse: bool = False,
    ):
        if group:
            acquired = [item for item in acquired if item[0].grouping == group]
        super().__init__(owner_id, len(acquired))
        self.user = user
        self.medals = sort_acquired(acquired, sort, reverse)
        self.total_medals = total_medals
        self.acquired_count = len(user.medals)
        self.load_icon = load_icon
        self.sort = sort
        self.group = group
        self.strips: Dict[int, ArtifactSlot] = {}

    def _strip_for_page(self, start: int, end: int) -> ArtifactSlot:
        slot = self.strips.get(start)
        if slot is None:
            urls = [medal.icon_url for medal, _ in self.medals[start:end]]

            async def produce():
                icons = await asyncio.gather(*(_load_optional(self.load_icon, url) for url in urls))
                return await asyncio.to_thread(render_medal_icons, icons)

            slot = spawn_artifact(produce, name=f"medal-icons:{self.user.user_id}:{start}")
            self.strips[start] = slot
        return slot

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()

        embed = discord.Embed(color=EMBED_COLOR)
        _user_author(embed, self.user)
        embed.set_thumbnail(url=self.user.avatar_url)

        if not self.medals:
            embed.description = "No medals found"

        for position, (medal, achieved_at) in enumerate(self.medals[start:end], start + 1):
            rarity = f"{medal.rarity:.2f}%" if medal.rarity is not None else "?"
            embed.add_field(
                name=f"#{position} {medal.name}",
                value=f"`{rarity}` • {medal.grouping}\n{_timestamp(achieved_at)}",
                inline=True,
            )

        embed.set_footer(text=f"{self.pages.page_label()} | Acquired {self.acquired_count}/{self.total_medals} medals")

        page = PageContent(embed=embed)
        if start == end:
            return page

        slot = self._strip_for_page(start, end)
        result = slot.result
        if result.state is ArtifactState.PENDING:
            page.pending = slot
        elif result.ok:
            filename = f"medals_{start // self.per_page + 1}.png"
            page.attachment = Attachment(filename, result.data)
            embed.set_image(url=f"attachment://{filename}")
        return page

    async def on_close(self) -> None:
        for slot in self.strips.values():
            slot.abandon("message closed")


class MedalsMissingPagination(PaginatedMessage):
    """Missing medals of a user grouped by medal group."""

    per_page = 15

    def __init__(
        self,
        owner_id: int,
        user: OsuUser,
        missing: List[OsekaiMedal],
        total_medals: int,
        sort: str = "medal_id",
    ):
        self.entries = self._build_entries(missing, sort)
        super().__init__(owner_id, len(self.entries))
        self.user = user
        self.missing_count = len(missing)
        self.total_medals = total_medals
        self.sort = sort

    @staticmethod
    def _build_entries(missing: List[OsekaiMedal], sort: str) -> list:
        """One row per group header followed by its medals, in group order."""
        by_group: Dict[str, List[OsekaiMedal]] = {}
        for medal in missing:
            by_group.setdefault(medal.grouping, []).append(medal)

        if sort == "alphabet":
            key = lambda medal: medal.name.lower()
        elif sort == "rarity":
            key = lambda medal: -(medal.rarity if medal.rarity is not None else 0.0)
        else:
            key = lambda medal: medal.medal_id

        groups = list(MEDAL_GROUPS) + sorted(g for g in by_group if g not in MEDAL_GROUPS)
        entries = []
        for group in groups:
            entries.append(("group", group))
            medals = sorted(by_group.get(group, []), key=key)
            if not medals:
                entries.append(("complete", group))
            entries.extend(("medal", medal) for medal in medals)
        return entries

    def _hover(self, medal: OsekaiMedal) -> str:
        if self.sort == "rarity" and medal.rarity is not None:
            return f"Rarity: {medal.rarity:.2f}%"
        return f"Medal ID: {medal.medal_id}"

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        lines = []
        for kind, value in self.entries[start:end]:
            if kind == "group":
                lines.append(f"__**{value}:**__")
            elif kind == "complete":
                lines.append("All medals acquired")
            else:
                lines.append(f"- [{value.name}]({value.url} \"{self._hover(value)}\")")

        embed = discord.Embed(description="\n".join(lines), color=EMBED_COLOR)
        _user_author(embed, self.user)
        embed.set_thumbnail(url=self.user.avatar_url)
        embed.set_footer(text=f"{self.pages.page_label()} | Missing {self.missing_count}/{self.total_medals} medals")
        return PageContent(embed=embed)


class MedalCountPagination(PaginatedMessage):
    """osekai medal count ranking. Anyone may page through it."""

    per_page = 10
    owner_only = False
    jump_kind = MODAL_INDEX

    def __init__(
        self,
        owner_id: int,
        ranking: List[OsekaiUserEntry],
        author_name: Optional[str] = None,
        country: Optional[str] = None,
    ):
        if country:
            ranking = [entry for entry in ranking if entry.country_code.upper() == country.upper()]
        super().__init__(owner_id, len(ranking))
        self.ranking = ranking
        self.country = country.upper() if country else None
        self.author_name = author_name.lower() if author_name else None

        author_position = self._author_position()
        if author_position is not None:
            self.pages.jump_item(author_position)

    def _author_position(self) -> Optional[int]:
        if not self.author_name:
            return None
        for position, entry in enumerate(self.ranking, 1):
            if entry.username.lower() == self.author_name:
                return position
        return None

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        lines = []
        for position, entry in enumerate(self.ranking[start:end], start + 1):
            line = f"**#{position}** :flag_{entry.country_code.lower()}: `{entry.username}`: **{entry.medal_count:,}** ({entry.completion:.2f}%) ~ {entry.rarest_medal}"
            if self.author_name and entry.username.lower() == self.author_name:
                line = f"__{line}__"
            lines.append(line)

        title = "User Ranking based on amount of owned medals"
        if self.country:
            title += f" (:flag_{self.country.lower()}:)"
        embed = discord.Embed(
            title=title,
            url="https://osekai.net/rankings/?ranking=Medals&type=Users",
            description="\n".join(lines) or "No users found",
            color=EMBED_COLOR,
        )
        embed.set_footer(text=f"{self.pages.page_label()} | Check out osekai.net for more info")
        return PageContent(embed=embed)


# ============================================================================
# Rankings
# ============================================================================

RankingFetcher = Callable[[int], Awaitable[Tuple[List[RankingEntry], int]]]


class RankingPagination(PaginatedMessage):
    """Leaderboard of osu! users.

    Either every entry is known up front (server leaderboards) or pages of the
    global ranking are pulled lazily through `fetch_chunk(chunk_page)`, which
    returns RANKING_CHUNK entries at a time.
    """

    per_page = 20
    jump_kind = MODAL_INDEX
    RANKING_CHUNK = RANKING_PAGE_SIZE

    def __init__(
        self,
        owner_id: int,
        title: str,
        total: int,
        entries: Optional[Sequence[RankingEntry]] = None,
        fetch_chunk: Optional[RankingFetcher] = None,
        value_label: str = "pp",
        author_id: Optional[int] = None,
    ):
        super().__init__(owner_id, total)
        self.title = title
        self.entries: Dict[int, RankingEntry] = dict(enumerate(entries or []))
        self.fetch_chunk = fetch_chunk
        self.value_label = value_label
        self.author_id = author_id
        # rendering may need a network round trip
        self.defer = fetch_chunk is not None

    @classmethod
    def server(cls, owner_id: int, guild_name: str, rows: List[Dict], column: str, author_id: Optional[int] = None):
        """Leaderboard over stored snapshots of linked members, best first."""
        ranked = sorted(
            (row for row in rows if row.get(column) is not None),
            key=lambda row: row[column],
            reverse=column != "global_rank",
        )
        entries = [
            RankingEntry(row["user_id"], row["username"], row.get("country_code", ""), row[column])
            for row in ranked
        ]
        label = column.replace("_", " ")
        return cls(owner_id, f"Server leaderboard for {guild_name}: {label}", len(entries), entries,
                   value_label=label, author_id=author_id)

    async def _ensure_window(self, start: int, end: int) -> None:
        if self.fetch_chunk is None:
            return
        missing = [i for i in range(start, end) if i not in self.entries]
        chunks = sorted({i // self.RANKING_CHUNK for i in missing})
        for chunk in chunks:
            # the total is fixed at creation, positions upstream lost stay empty
            fetched, _ = await self.fetch_chunk(chunk + 1)
            offset = chunk * self.RANKING_CHUNK
            for i, entry in enumerate(fetched):
                self.entries[offset + i] = entry

    def _format_value(self, value) -> str:
        if self.value_label == "pp":
            return f"{value:,.2f}pp"
        if isinstance(value, float):
            return f"{value:,.2f}"
        return f"{value:,}"

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        await self._ensure_window(start, end)

        lines = []
        for position in range(start, end):
            entry = self.entries.get(position)
            if entry is None:
                continue
            line = f"**#{position + 1}** :flag_{entry.country_code.lower()}: {entry.username}: {self._format_value(entry.value)}"
            if self.author_id is not None and entry.user_id == self.author_id:
                line = f"__{line}__"
            lines.append(line)

        embed = discord.Embed(title=self.title, description="\n".join(lines) or "No data available", color=EMBED_COLOR)
        embed.set_footer(text=f"{self.pages.page_label()} | Total: {self.pages.total_items:,}")
        return PageContent(embed=embed)


# ============================================================================
# Top scores
# ============================================================================

TOP_SORT_SELECT = "top_sort"

TOP_SORTS = {
    "pp": ("PP", lambda score: score.pp),
    "date": ("Date", lambda score: score.created_at.timestamp()),
    "accuracy": ("Accuracy", lambda score: score.accuracy),
    "combo": ("Combo", lambda score: score.max_combo),
}


class TopScoresPagination(PaginatedMessage):
    per_page = 5

    def __init__(
        self,
        owner_id: int,
        user: OsuUser,
        scores: List[OsuScore],
        sort: str = "pp",
        check_replay: Optional[Callable[[OsuScore], Awaitable[bool]]] = None,
        replay_timeout: float = 3.0,
    ):
        super().__init__(owner_id, len(scores))
        self.user = user
        self.scores = list(scores)
        self.check_replay = check_replay
        self.replay_timeout = replay_timeout
        self.apply_sort(sort)

    def apply_sort(self, sort: str) -> None:
        if sort not in TOP_SORTS:
            raise ValidationError(f"Unknown sort `{sort}`")
        self.sort = sort
        # original positions stay attached to each score
        ranked = sorted(self.scores, key=lambda score: score.pp, reverse=True)
        self.positions = {score.score_id: i for i, score in enumerate(ranked, 1)}
        self.scores = sorted(self.scores, key=TOP_SORTS[sort][1], reverse=True)

    def save_state(self):
        return super().save_state(), self.sort, self.scores, self.positions

    def restore_state(self, state) -> None:
        cursor, self.sort, self.scores, self.positions = state
        super().restore_state(cursor)

    def render_controls(self) -> ControlSurface:
        controls = super().render_controls()
        options = tuple(
            SelectOption(label=label, value=value, default=value == self.sort)
            for value, (label, _) in TOP_SORTS.items()
        )
        return controls.add_row(SelectMenu(TOP_SORT_SELECT, options, placeholder="Sort scores by"))

    async def on_component(self, event: ComponentEvent) -> ComponentOutcome:
        if event.custom_id == TOP_SORT_SELECT:
            if not event.values:
                return ComponentOutcome.ignore()
            self.apply_sort(event.values[0])
            self.pages.index = 0
            self.generation += 1
            return ComponentOutcome.update()
        return await super().on_component(event)

    async def _replay_line(self, score: OsuScore) -> Optional[str]:
        if self.check_replay is None or not score.has_replay:
            return None
        available = await wait_bounded(self.check_replay(score), self.replay_timeout, default=None, label="Miss analyzer")
        if available:
            return "Replay available for miss analysis"
        return None

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        shown = self.scores[start:end]

        replay_line = await self._replay_line(shown[0]) if shown else None

        lines = []
        for score in shown:
            mods = f" +{''.join(score.mods)}" if score.mods else ""
            combo = f"x{score.max_combo}" + (f"/{score.map_max_combo}" if score.map_max_combo else "")
            lines.append(
                f"**{self.positions.get(score.score_id, '?')}.** [{score.title} [{score.version}]]({score.map_url}){mods} [{score.stars:.2f}★]\n"
                f"{score.grade} • **{score.pp:.2f}pp** • {score.accuracy:.2f}% • {combo} • {_timestamp(score.created_at, 'R')}"
            )
        if replay_line:
            lines.insert(1, f"*{replay_line}*")

        embed = discord.Embed(description="\n".join(lines) or "No scores found", color=EMBED_COLOR)
        _user_author(embed, self.user)
        embed.set_thumbnail(url=self.user.avatar_url)
        embed.set_footer(text=f"{self.pages.page_label()} | Sorted by {TOP_SORTS[self.sort][0].lower()}")
        return PageContent(embed=embed)


# ============================================================================
# Command usage
# ============================================================================

class CommandCountPagination(PaginatedMessage):
    per_page = 15

    def __init__(self, owner_id: int, counts: List[Tuple[str, int]], started_at: datetime):
        super().__init__(owner_id, len(counts))
        self.counts = counts
        self.started_at = started_at

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        width = len(str(end))
        lines = [
            f"`#{position:<{width}}` `/{name}`: **{count:,}**"
            for position, (name, count) in enumerate(self.counts[start:end], start + 1)
        ]
        embed = discord.Embed(
            title="Most popular commands",
            description="\n".join(lines) or "No commands used yet",
            color=EMBED_COLOR,
        )
        embed.set_footer(text=f"{self.pages.page_label()} | Counting since {self.started_at:%Y-%m-%d %H:%M}")
        return PageContent(embed=embed)


# ============================================================================
# Higher or lower
# ============================================================================

HL_HIGHER = "hl_higher"
HL_LOWER = "hl_lower"
HL_NEXT = "hl_next"
HL_RETRY = "hl_retry"
HL_QUIT = "hl_quit"

ScoreImageLoader = Callable[[OsuScore], Awaitable[bytes]]


class HigherLowerGame(ActiveMessage):
    """Guess whether the next score is worth more or less pp than the current one."""

    expires_after = 120

    def __init__(self, owner_id: int, scores: List[OsuScore], load_cover: ScoreImageLoader, rng: Optional[random.Random] = None):
        if len(scores) < 2:
            raise ValidationError("Not enough scores to play with")
        super().__init__(owner_id)
        self.pool = list(scores)
        self.load_cover = load_cover
        self.rng = rng or random.Random()
        self.round = 0
        self.streak = 0
        self.best_streak = 0
        # None while guessing, then whether the guess was right
        self.correct: Optional[bool] = None
        self.image: Optional[ArtifactSlot] = None
        self.previous = self.rng.choice(self.pool)
        self.next = self._draw(self.previous)
        self._start_image()

    def _draw(self, other: OsuScore) -> OsuScore:
        choices = [score for score in self.pool if score.score_id != other.score_id]
        return self.rng.choice(choices or self.pool)

    def _start_image(self) -> None:
        if self.image is not None:
            self.image.abandon("round over")
        left, right = self.previous, self.next

        async def produce():
            left_cover = await _load_optional(self.load_cover, left)
            right_cover = await _load_optional(self.load_cover, right)
            return await asyncio.to_thread(render_higher_lower, left_cover, right_cover)

        self.image = spawn_artifact(produce, name=f"higherlower:{self.owner_id}:{self.round}")

    def _new_round(self, keep_previous: bool) -> None:
        self.round += 1
        self.correct = None
        if keep_previous:
            self.previous = self.next
        else:
            self.previous = self.rng.choice(self.pool)
        self.next = self._draw(self.previous)
        self._start_image()

    def state_token(self):
        return self.round

    def render_controls(self) -> ControlSurface:
        controls = ControlSurface()
        if self.correct is None:
            controls.add_row(
                Button(HL_HIGHER, label="Higher", emoji="⬆️", style=ButtonStyle.SUCCESS),
                Button(HL_LOWER, label="Lower", emoji="⬇️", style=ButtonStyle.DANGER),
                Button(HL_QUIT, label="Quit", style=ButtonStyle.SECONDARY),
            )
        elif self.correct:
            controls.add_row(
                Button(HL_NEXT, label="Next", style=ButtonStyle.PRIMARY),
                Button(HL_QUIT, label="Quit", style=ButtonStyle.SECONDARY),
            )
        else:
            controls.add_row(
                Button(HL_RETRY, label="Try again", style=ButtonStyle.PRIMARY),
                Button(HL_QUIT, label="Quit", style=ButtonStyle.SECONDARY),
            )
        return controls

    async def on_component(self, event: ComponentEvent) -> ComponentOutcome:
        custom_id = event.custom_id

        if custom_id == HL_QUIT:
            return ComponentOutcome.close()

        if custom_id in (HL_HIGHER, HL_LOWER) and self.correct is None:
            higher = self.next.pp >= self.previous.pp
            lower = self.next.pp <= self.previous.pp
            self.correct = higher if custom_id == HL_HIGHER else lower
            if self.correct:
                self.streak += 1
                self.best_streak = max(self.best_streak, self.streak)
            return ComponentOutcome.update()

        if custom_id == HL_NEXT and self.correct:
            self._new_round(keep_previous=True)
            return ComponentOutcome.update()

        if custom_id == HL_RETRY and self.correct is False:
            self.streak = 0
            self._new_round(keep_previous=False)
            return ComponentOutcome.update()

        # stale button from an earlier state
        return ComponentOutcome.ignore()

    @staticmethod
    def _describe(score: OsuScore, show_pp: bool) -> str:
        pp = f"**{score.pp:.2f}pp**" if show_pp else "**???pp**"
        mods = f" +{''.join(score.mods)}" if score.mods else ""
        return f"**{score.username}**: [{score.title} [{score.version}]]({score.map_url}){mods}\n{score.grade} • {score.accuracy:.2f}% • {pp}"

    async def render_page(self) -> PageContent:
        revealed = self.correct is not None
        lines = [
            self._describe(self.previous, True),
            "",
            self._describe(self.next, revealed),
        ]
        if self.correct is True:
            lines.append("\n✅ Correct!")
        elif self.correct is False:
            lines.append(f"\n❌ Wrong! Your streak ended at **{self.streak}**")

        embed = discord.Embed(title="Higher or lower: Score pp", description="\n".join(lines), color=EMBED_COLOR)
        embed.set_footer(text=f"Current streak: {self.streak} | Best streak: {self.best_streak}")

        page = PageContent(embed=embed)
        result = self.image.result if self.image is not None else None
        if result is None or result.state is ArtifactState.PENDING:
            embed.add_field(name="\u200b", value="*Loading image...*", inline=False)
            page.pending = self.image
        elif result.ok:
            filename = f"higherlower_{self.round}.png"
            page.attachment = Attachment(filename, result.data)
            embed.set_image(url=f"attachment://{filename}")
        else:
            embed.add_field(
                name="\u200b",
                value=f"*Image unavailable:* [left]({self.previous.cover_url}) vs [right]({self.next.cover_url})",
                inline=False,
            )
        return page

    async def on_close(self) -> None:
        if self.image is not None:
            self.image.abandon("game closed")
