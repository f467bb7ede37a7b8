"""
osu! API v2 and osekai client.

Blocking `requests` calls; async code runs them through asyncio.to_thread.
Every request is attempted at most twice: NotFound, RateLimited and
UpstreamError are retried once, then raised to the caller.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import requests


OSU_BASE = "https://osu.ppy.sh/"
API_BASE = "https://osu.ppy.sh/api/v2"
TOKEN_URL = "https://osu.ppy.sh/oauth/token"
OSEKAI_MEDALS_URL = "https://osekai.net/medals/api/medals.php"
OSEKAI_RANKINGS_URL = "https://osekai.net/rankings/api/api.php"
AVATAR_URL = "https://a.ppy.sh/"
MAPSET_COVER_URL = "https://assets.ppy.sh/beatmaps/{mapset_id}/covers/cover.jpg"

MAX_RATE_LIMIT_WAIT = 5.0
RANKING_PAGE_SIZE = 50


# -------- Errors --------

class OsuApiError(Exception):
    pass


class NotFound(OsuApiError):
    pass


class RateLimited(OsuApiError):
    def __init__(self, message: str, retry_after: float = 1.0):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(OsuApiError):
    pass


# -------- Models --------

@dataclass
class UserMedal:
    medal_id: int
    achieved_at: datetime


@dataclass
class OsuUser:
    user_id: int
    username: str
    country_code: str
    avatar_url: str
    mode: str = "osu"
    pp: float = 0.0
    global_rank: Optional[int] = None
    accuracy: float = 0.0
    playcount: int = 0
    medals: List[UserMedal] = field(default_factory=list)
    rank_history: List[int] = field(default_factory=list)

    @property
    def profile_url(self) -> str:
        return f"{OSU_BASE}users/{self.user_id}"


@dataclass
class OsuScore:
    score_id: int
    user_id: int
    username: str
    pp: float
    accuracy: float
    max_combo: int
    grade: str
    mods: List[str]
    created_at: datetime
    map_id: int
    mapset_id: int
    title: str
    version: str
    stars: float = 0.0
    map_max_combo: Optional[int] = None
    avatar_url: Optional[str] = None
    has_replay: bool = False

    @property
    def map_url(self) -> str:
        return f"{OSU_BASE}b/{self.map_id}"

    @property
    def cover_url(self) -> str:
        return MAPSET_COVER_URL.format(mapset_id=self.mapset_id)


@dataclass
class OsekaiMedal:
    medal_id: int
    name: str
    icon_url: str
    description: str
    grouping: str
    mode: Optional[str] = None
    rarity: Optional[float] = None

    @property
    def url(self) -> str:
        return f"https://osekai.net/medals/?medal={self.name.replace(' ', '%20')}"


@dataclass
class RankingEntry:
    user_id: int
    username: str
    country_code: str
    value: float


@dataclass
class OsekaiUserEntry:
    rank: int
    user_id: int
    username: str
    country_code: str
    medal_count: int
    rarest_medal: str
    completion: float


def _parse_datetime(value) -> datetime:
    if not value:
        return datetime.fromtimestamp(0)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# -------- JSON extraction --------

def extract_user(data: Dict, mode: str = "osu") -> OsuUser:
    stats = data.get("statistics") or {}
    history = (data.get("rank_history") or data.get("rankHistory") or {}).get("data") or []
    medals = [
        UserMedal(_to_int(m.get("achievement_id")), _parse_datetime(m.get("achieved_at")))
        for m in data.get("user_achievements") or []
    ]
    return OsuUser(
        user_id=_to_int(data.get("id")),
        username=data.get("username", ""),
        country_code=data.get("country_code", ""),
        avatar_url=data.get("avatar_url") or f"{AVATAR_URL}{data.get('id')}",
        mode=mode,
        pp=_to_float(stats.get("pp")),
        global_rank=stats.get("global_rank"),
        accuracy=_to_float(stats.get("hit_accuracy")),
        playcount=_to_int(stats.get("play_count")),
        medals=medals,
        rank_history=[_to_int(rank) for rank in history],
    )


def extract_score(data: Dict) -> OsuScore:
    beatmap = data.get("beatmap") or {}
    beatmapset = data.get("beatmapset") or {}
    user = data.get("user") or {}
    mods = [m if isinstance(m, str) else m.get("acronym", "") for m in data.get("mods") or []]
    return OsuScore(
        score_id=_to_int(data.get("id")),
        user_id=_to_int(data.get("user_id") or user.get("id")),
        username=user.get("username", ""),
        pp=_to_float(data.get("pp")),
        accuracy=_to_float(data.get("accuracy")) * 100,
        max_combo=_to_int(data.get("max_combo")),
        grade=data.get("rank", "F"),
        mods=mods,
        created_at=_parse_datetime(data.get("created_at") or data.get("ended_at")),
        map_id=_to_int(beatmap.get("id")),
        mapset_id=_to_int(beatmap.get("beatmapset_id") or beatmapset.get("id")),
        title=beatmapset.get("title", ""),
        version=beatmap.get("version", ""),
        stars=_to_float(beatmap.get("difficulty_rating")),
        map_max_combo=beatmap.get("max_combo"),
        avatar_url=user.get("avatar_url"),
        has_replay=bool(data.get("replay") or data.get("has_replay")),
    )


def extract_osekai_medal(data: Dict) -> OsekaiMedal:
    rarity = data.get("Rarity")
    return OsekaiMedal(
        medal_id=_to_int(data.get("MedalID")),
        name=data.get("Name", ""),
        icon_url=data.get("Link", ""),
        description=data.get("Description", ""),
        grouping=data.get("Grouping", ""),
        mode=data.get("Gamemode") or None,
        rarity=_to_float(rarity) if rarity is not None else None,
    )


def extract_osekai_user(data: Dict) -> OsekaiUserEntry:
    return OsekaiUserEntry(
        rank=_to_int(data.get("rank")),
        user_id=_to_int(data.get("userid")),
        username=data.get("username", ""),
        country_code=data.get("countrycode", ""),
        medal_count=_to_int(data.get("medalCount")),
        rarest_medal=data.get("rarest_medal", ""),
        completion=_to_float(data.get("completion")),
    )


# -------- Client --------

def _raise_for_status(r: requests.Response, what: str) -> None:
    if r.status_code == 404:
        raise NotFound(f"{what} was not found")
    if r.status_code == 429:
        retry_after = _to_float(r.headers.get("Retry-After"), 1.0)
        raise RateLimited(f"Rate limited while requesting {what}", retry_after)
    if r.status_code >= 500:
        raise UpstreamError(f"{what} failed with status {r.status_code}")
    try:
        r.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise UpstreamError(f"{what} failed: {e}") from e


def with_retry(call, *args, **kwargs):
    """Run `call`, retrying exactly once on any OsuApiError."""
    try:
        return call(*args, **kwargs)
    except RateLimited as e:
        print(f"[OSU] {e}, retrying in {min(e.retry_after, MAX_RATE_LIMIT_WAIT):.1f}s")
        time.sleep(min(e.retry_after, MAX_RATE_LIMIT_WAIT))
    except OsuApiError as e:
        print(f"[OSU] {e}, retrying once")
    return call(*args, **kwargs)


class OsuClient:
    def __init__(self, client_id: str, client_secret: str, timeout: float = 15, session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token

        try:
            r = self.session.post(
                TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                    "scope": "public",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Token request failed: {e}") from e
        _raise_for_status(r, "token")
        data = r.json()
        self._token = data["access_token"]
        self._token_expires_at = time.time() + _to_float(data.get("expires_in"), 3600)
        return self._token

    def _get(self, path: str, what: str, params: Optional[Dict] = None):
        def request():
            headers = {"Authorization": f"Bearer {self._access_token()}", "Accept": "application/json"}
            try:
                r = self.session.get(f"{API_BASE}{path}", headers=headers, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise UpstreamError(f"{what} request failed: {e}") from e
            _raise_for_status(r, what)
            return r.json()

        return with_retry(request)

    def _post_form(self, url: str, what: str, data: Dict):
        def request():
            try:
                r = self.session.post(url, data=data, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise UpstreamError(f"{what} request failed: {e}") from e
            _raise_for_status(r, what)
            return r.json()

        return with_retry(request)

    # osu!

    def get_user(self, user: str, mode: str = "osu") -> OsuUser:
        user = str(user).strip()
        params = None if user.isdigit() else {"key": "username"}
        data = self._get(f"/users/{user}/{mode}", f"User `{user}`", params)
        return extract_user(data, mode)

    def get_user_scores(self, user_id: int, kind: str = "best", mode: str = "osu", limit: int = 100) -> List[OsuScore]:
        data = self._get(
            f"/users/{user_id}/scores/{kind}",
            f"Scores of user {user_id}",
            {"mode": mode, "limit": limit},
        )
        return [extract_score(score) for score in data]

    def get_rankings(self, mode: str = "osu", page: int = 1, country: Optional[str] = None) -> tuple[List[RankingEntry], int]:
        """One page (50 entries) of the pp ranking and the total amount of ranked users."""
        params = {"cursor[page]": page}
        if country:
            params["country"] = country
        data = self._get(f"/rankings/{mode}/performance", "Ranking", params)

        entries = []
        for row in data.get("ranking") or []:
            user = row.get("user") or {}
            entries.append(RankingEntry(
                user_id=_to_int(user.get("id")),
                username=user.get("username", ""),
                country_code=user.get("country_code", ""),
                value=_to_float(row.get("pp")),
            ))
        return entries, min(_to_int(data.get("total")), 10_000)

    def get_bytes(self, url: str) -> bytes:
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Download of {url} failed: {e}") from e
        _raise_for_status(r, url)
        return r.content

    def get_medal_icon(self, icon_url: str) -> bytes:
        return with_retry(self.get_bytes, icon_url)

    def get_cover(self, score: OsuScore) -> bytes:
        return with_retry(self.get_bytes, score.cover_url)

    # osekai

    def get_osekai_medals(self) -> List[OsekaiMedal]:
        data = self._post_form(OSEKAI_MEDALS_URL, "Osekai medals", {"strSearch": ""})
        return [extract_osekai_medal(medal) for medal in data]

    def get_osekai_rarity(self) -> Dict[int, float]:
        data = self._post_form(OSEKAI_RANKINGS_URL, "Osekai rarity", {"App": "Rarity"})
        return {_to_int(row.get("id")): _to_float(row.get("possessionRate"), 100.0) for row in data}

    def get_osekai_ranking(self) -> List[OsekaiUserEntry]:
        data = self._post_form(OSEKAI_RANKINGS_URL, "Osekai ranking", {"App": "Users"})
        return [extract_osekai_user(row) for row in data]

    # companion service

    def check_miss_analyzer(self, base_url: str, score_id: int) -> bool:
        """Whether the miss analyzer has a replay for the score."""
        try:
            r = self.session.get(f"{base_url.rstrip('/')}/api/check/{score_id}", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Miss analyzer request failed: {e}") from e
        if r.status_code == 404:
            return False
        _raise_for_status(r, "Miss analyzer")
        return bool(r.json().get("available"))
