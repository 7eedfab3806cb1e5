"""ESPN adapter: the sync pipeline's SourceClient.

Fetches NFL athletes, weekly scoreboards, box scores and season calendars from
ESPN's public JSON APIs and converts them into the pipeline's records.

Every HTTP request:
1. waits for a slot from the shared RateLimiter
2. is retried on transient failures (5xx, 429, network errors) with
   exponential backoff via tenacity
3. runs under a pybreaker circuit breaker, so a failing ESPN stops being
   called for a while

Payloads are validated with pydantic models whose fields are optional with
defaults; a malformed athlete or stat line is skipped, not fatal.
"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from rostersync.services.core.circuit_breaker import call_with_breaker, espn_api_breaker
from rostersync.services.core.rate_limiter import RateLimiter, RateLimitConfig
from rostersync.services.sync.adapters.base import SourceClient
from rostersync.services.sync.cancellation import CancellationToken
from rostersync.services.sync.models import GameRef, SourcePlayer, SourceStatRecord
from rostersync.services.sync.utils.teams import TeamLookup, DEFAULT_TEAM_LOOKUP

logger = logging.getLogger(__name__)

_WEEK_REF_PATTERN = re.compile(r"/weeks/(\d+)")


# ============================================================================
# Payload models
# ============================================================================

class _EspnModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _as_str(value: Any) -> Any:
    # ESPN sends IDs as strings on some endpoints and numbers on others
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class EspnAbbreviated(_EspnModel):
    abbreviation: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")


class EspnAthlete(_EspnModel):
    id: str
    display_name: str = Field("", alias="displayName")
    full_name: Optional[str] = Field(None, alias="fullName")
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    jersey: Optional[str] = None
    active: bool = True
    position: Optional[EspnAbbreviated] = None
    team: Optional[EspnAbbreviated] = None

    stringify_ids = field_validator("id", "jersey", mode="before")(_as_str)

    @property
    def name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.full_name:
            return self.full_name
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class EspnEvent(_EspnModel):
    id: str
    name: Optional[str] = None
    date: Optional[str] = None

    stringify_ids = field_validator("id", mode="before")(_as_str)


class EspnScoreboard(_EspnModel):
    events: List[EspnEvent] = Field(default_factory=list)


class EspnAthleteRef(_EspnModel):
    id: Optional[str] = None
    display_name: str = Field("", alias="displayName")

    stringify_ids = field_validator("id", mode="before")(_as_str)


class EspnStatAthlete(_EspnModel):
    athlete: Optional[EspnAthleteRef] = None
    stats: List[str] = Field(default_factory=list)


class EspnStatCategory(_EspnModel):
    name: str = "misc"
    keys: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    athletes: List[EspnStatAthlete] = Field(default_factory=list)


class EspnTeamStats(_EspnModel):
    team: Optional[EspnAbbreviated] = None
    statistics: List[EspnStatCategory] = Field(default_factory=list)


class EspnBoxscore(_EspnModel):
    players: List[EspnTeamStats] = Field(default_factory=list)


class EspnSummary(_EspnModel):
    boxscore: EspnBoxscore = Field(default_factory=EspnBoxscore)


class EspnRef(_EspnModel):
    ref: str = Field("", alias="$ref")


class EspnRefPage(_EspnModel):
    items: List[EspnRef] = Field(default_factory=list)


# ============================================================================
# Client
# ============================================================================

def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == 429
    return isinstance(error, (httpx.RequestError, httpx.TimeoutException))


def _parse_event_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%MZ")
    except ValueError:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable event date: {value}")
            return None


class EspnSourceClient(SourceClient):
    """
    ESPN NFL data source.

    Usage:
        async with EspnSourceClient.from_settings() as espn:
            players = await espn.fetch_all_players()
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        breaker: CircuitBreaker = espn_api_breaker,
        team_lookup: TeamLookup = DEFAULT_TEAM_LOOKUP,
        site_api_url: str = "https://site.api.espn.com/apis/site/v2/sports/football/nfl",
        core_api_url: str = "https://sports.core.api.espn.com",
        season_type: int = 2,
        athlete_page_limit: int = 20000,
        timeout: float = 30.0,
    ):
        """
        Initialize the ESPN client.

        Args:
            client: HTTP client (one is created and owned when omitted)
            rate_limiter: Shared limiter for all ESPN calls
            breaker: Circuit breaker guarding ESPN calls
            team_lookup: Team table used to canonicalize team codes
            site_api_url: Base URL of the site API (scoreboard, summary)
            core_api_url: Base URL of the core API (athletes, calendar)
            season_type: ESPN season type (2 = regular season)
            athlete_page_limit: Page size for the bulk athlete fetch
            timeout: Request timeout in seconds for an owned client
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.breaker = breaker
        self.team_lookup = team_lookup
        self.site_api_url = site_api_url.rstrip("/")
        self.core_api_url = core_api_url.rstrip("/")
        self.season_type = season_type
        self.athlete_page_limit = athlete_page_limit

    @classmethod
    def from_settings(cls, settings=None, client: Optional[httpx.AsyncClient] = None) -> "EspnSourceClient":
        if settings is None:
            from rostersync.core.config import settings
        return cls(
            client=client,
            rate_limiter=RateLimiter(RateLimitConfig.from_settings(settings)),
            site_api_url=settings.ESPN_SITE_API_URL,
            core_api_url=settings.ESPN_CORE_API_URL,
            season_type=settings.ESPN_SEASON_TYPE,
            athlete_page_limit=settings.ESPN_ATHLETE_PAGE_LIMIT,
            timeout=settings.ESPN_REQUEST_TIMEOUT,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "EspnSourceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def _fetch_with_retry(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
        rate_limited: bool = True,
    ) -> Dict[str, Any]:
        """
        GET a JSON document, waiting for a rate-limit slot before each attempt.

        With ``rate_limited=False`` the request skips the limiter and spends no
        budget; only the connectivity check does this.

        Raises:
            httpx.HTTPStatusError: On HTTP errors (after retries for 5xx/429)
            httpx.RequestError: On network errors (after retries)
            QueueTimeoutError: If no rate-limit slot was granted in time
        """
        if rate_limited:
            await self.rate_limiter.wait_for_request(token)
        elif token is not None:
            token.raise_if_cancelled()
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
        rate_limited: bool = True,
    ) -> Dict[str, Any]:
        return await call_with_breaker(self.breaker, self._fetch_with_retry, url, params, token, rate_limited)

    # ------------------------------------------------------------------------
    # SourceClient
    # ------------------------------------------------------------------------

    async def fetch_all_players(self, token: Optional[CancellationToken] = None) -> List[SourcePlayer]:
        """
        Fetch all active NFL athletes in one request.

        Returns an empty list when the circuit is open; the orchestrator
        treats an empty athlete list as a failed sync.
        """
        url = f"{self.core_api_url}/v3/sports/football/nfl/athletes"
        params = {"limit": self.athlete_page_limit, "active": "true"}
        try:
            payload = await self._get_json(url, params, token)
        except CircuitBreakerError:
            logger.warning(f"Circuit breaker '{self.breaker.name}' is OPEN - skipping athlete fetch")
            return []

        players = []
        skipped = 0
        for item in payload.get("items") or []:
            try:
                athlete = EspnAthlete.model_validate(item)
            except ValidationError as e:
                skipped += 1
                logger.debug(f"Skipping malformed athlete entry: {e.errors()[0]['msg']}")
                continue
            if not athlete.name:
                skipped += 1
                continue
            players.append(
                SourcePlayer(
                    external_id=athlete.id,
                    name=athlete.name,
                    team=self.team_lookup.to_abbreviation(athlete.team.abbreviation if athlete.team else None),
                    position=athlete.position.abbreviation if athlete.position else None,
                    first_name=athlete.first_name,
                    last_name=athlete.last_name,
                    jersey=athlete.jersey,
                    active=athlete.active,
                )
            )

        logger.info(f"Fetched {len(players)} athletes from ESPN ({skipped} skipped)")
        return players

    async def fetch_games_for_week(
        self, season: int, week: int, token: Optional[CancellationToken] = None
    ) -> List[GameRef]:
        url = f"{self.site_api_url}/scoreboard"
        params = {"dates": season, "seasontype": self.season_type, "week": week}
        scoreboard = EspnScoreboard.model_validate(await self._get_json(url, params, token))

        games = [
            GameRef(
                game_id=event.id,
                season=season,
                week=week,
                name=event.name,
                date=_parse_event_date(event.date),
            )
            for event in scoreboard.events
        ]
        logger.info(f"Found {len(games)} games for season {season} week {week}")
        return games

    async def fetch_game_stats(self, game_id: str, token: Optional[CancellationToken] = None) -> List[SourceStatRecord]:
        url = f"{self.site_api_url}/summary"
        summary = EspnSummary.model_validate(await self._get_json(url, {"event": game_id}, token))

        records = []
        for team_stats in summary.boxscore.players:
            team = team_stats.team.abbreviation if team_stats.team else None
            for category in team_stats.statistics:
                keys = category.keys or category.labels
                for entry in category.athletes:
                    if entry.athlete is None or not entry.athlete.id:
                        continue
                    records.append(
                        SourceStatRecord(
                            external_player_id=entry.athlete.id,
                            player_name=entry.athlete.display_name,
                            game_id=game_id,
                            team=team,
                            category=category.name,
                            stats=dict(zip(keys, entry.stats)),
                        )
                    )

        logger.debug(f"Game {game_id}: {len(records)} stat records")
        return records

    async def fetch_season_weeks(self, season: int, token: Optional[CancellationToken] = None) -> List[int]:
        url = (
            f"{self.core_api_url}/v2/sports/football/leagues/nfl/seasons/{season}"
            f"/types/{self.season_type}/weeks"
        )
        page = EspnRefPage.model_validate(await self._get_json(url, {"limit": 100}, token))

        weeks = set()
        for item in page.items:
            match = _WEEK_REF_PATTERN.search(item.ref)
            if match:
                weeks.add(int(match.group(1)))
        return sorted(weeks)

    async def check_connectivity(self, token: Optional[CancellationToken] = None) -> bool:
        """
        GET the scoreboard outside the rate limiter, so a pre-run check leaves
        the run's request budget untouched.
        """
        try:
            await self._get_json(f"{self.site_api_url}/scoreboard", None, token, rate_limited=False)
            return True
        except CircuitBreakerError:
            logger.warning(f"Circuit breaker '{self.breaker.name}' is OPEN - ESPN treated as unreachable")
            return False
        except httpx.HTTPError as e:
            logger.error(f"ESPN connectivity check failed: {e}")
            return False
