"""Tests for EspnSourceClient.

Test Strategy:
1. Test payload parsing for athletes, scoreboards, box scores and calendars
2. Test malformed entries are skipped
3. Test connectivity checks and the circuit breaker
4. Test every data request goes through the rate limiter and the connectivity
   check does not
5. Test cancellation and queue timeouts never count as ESPN failures

ESPN is replaced by an httpx.MockTransport; no test touches the network.
"""
import asyncio
from datetime import datetime

import httpx
import pytest
from tenacity import wait_none

from rostersync.services.core.circuit_breaker import new_breaker
from rostersync.services.core.rate_limiter import QueueTimeoutError, RateLimiter, RateLimitConfig
from rostersync.services.sync.adapters.espn_adapter import EspnSourceClient
from rostersync.services.sync.cancellation import CancellationToken, SyncCancelledError

SITE = "https://site.test/nfl"
CORE = "https://core.test"


ATHLETES = {
    "count": 4,
    "items": [
        {
            "id": 3139477,
            "displayName": "Patrick Mahomes",
            "firstName": "Patrick",
            "lastName": "Mahomes",
            "jersey": "15",
            "position": {"abbreviation": "QB"},
            "team": {"abbreviation": "KC"},
        },
        {
            "id": "3121422",
            "fullName": "Terry McLaurin",
            "jersey": 17,
            "position": {"abbreviation": "WR"},
            "team": {"abbreviation": "WAS"},
        },
        {"displayName": "Missing Id"},
        {"id": "5", "displayName": ""},
    ],
}

SCOREBOARD = {
    "events": [
        {"id": "401547353", "name": "Detroit Lions at Kansas City Chiefs", "date": "2023-09-08T00:20Z"},
        {"id": 401547354, "name": "Carolina Panthers at Atlanta Falcons"},
    ]
}

SUMMARY = {
    "boxscore": {
        "players": [
            {
                "team": {"abbreviation": "KC"},
                "statistics": [
                    {
                        "name": "passing",
                        "keys": ["completions/passingAttempts", "passingYards"],
                        "athletes": [
                            {"athlete": {"id": "3139477", "displayName": "Patrick Mahomes"}, "stats": ["21/39", "226"]},
                            {"stats": ["0/0", "0"]},
                        ],
                    },
                    {
                        "name": "rushing",
                        "labels": ["CAR", "YDS"],
                        "athletes": [
                            {"athlete": {"id": 3139477, "displayName": "Patrick Mahomes"}, "stats": ["2", "4"]},
                        ],
                    },
                ],
            }
        ]
    }
}

WEEKS = {
    "items": [
        {"$ref": f"{CORE}/v2/sports/football/leagues/nfl/seasons/2024/types/2/weeks/2?lang=en"},
        {"$ref": f"{CORE}/v2/sports/football/leagues/nfl/seasons/2024/types/2/weeks/1?lang=en"},
        {"$ref": f"{CORE}/v2/sports/football/leagues/nfl/seasons/2024/types/2/weeks/1?lang=es"},
        {"$ref": "not-a-week"},
    ]
}


def make_client(handler, breaker=None, limiter=None) -> EspnSourceClient:
    return EspnSourceClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        rate_limiter=limiter or RateLimiter(RateLimitConfig(max_requests=1000)),
        breaker=breaker or new_breaker("espn_test"),
        site_api_url=SITE,
        core_api_url=CORE,
    )


def json_handler(payload, requests=None, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, json=payload)
    return handler


class TestPayloadParsing:
    """Test suite for converting ESPN payloads into sync records."""

    @pytest.mark.asyncio
    async def test_fetch_all_players(self):
        """Should parse valid athletes and skip malformed or nameless ones."""
        requests = []
        espn = make_client(json_handler(ATHLETES, requests))

        players = await espn.fetch_all_players()

        assert [p.external_id for p in players] == ["3139477", "3121422"]
        mahomes, mclaurin = players
        assert (mahomes.name, mahomes.team, mahomes.position, mahomes.jersey) == ("Patrick Mahomes", "KC", "QB", "15")
        assert mclaurin.name == "Terry McLaurin"
        assert mclaurin.team == "WSH"
        assert mclaurin.jersey == "17"

        assert requests[0].url.path == "/v3/sports/football/nfl/athletes"
        assert requests[0].url.params["active"] == "true"

    @pytest.mark.asyncio
    async def test_fetch_games_for_week(self):
        """Should return one GameRef per scoreboard event."""
        requests = []
        espn = make_client(json_handler(SCOREBOARD, requests))

        games = await espn.fetch_games_for_week(2024, 1)

        assert [g.game_id for g in games] == ["401547353", "401547354"]
        assert games[0].date == datetime(2023, 9, 8, 0, 20)
        assert games[1].date is None
        assert all((g.season, g.week) == (2024, 1) for g in games)
        assert requests[0].url.params["dates"] == "2024"
        assert requests[0].url.params["week"] == "1"
        assert requests[0].url.params["seasontype"] == "2"

    @pytest.mark.asyncio
    async def test_fetch_game_stats(self):
        """Should emit one record per athlete and category, keyed by stat names."""
        requests = []
        espn = make_client(json_handler(SUMMARY, requests))

        records = await espn.fetch_game_stats("401547353")

        assert len(records) == 2
        passing, rushing = records
        assert passing.external_player_id == "3139477"
        assert passing.team == "KC"
        assert passing.category == "passing"
        assert passing.stats == {"completions/passingAttempts": "21/39", "passingYards": "226"}
        assert rushing.stats == {"CAR": "2", "YDS": "4"}
        assert requests[0].url.params["event"] == "401547353"

    @pytest.mark.asyncio
    async def test_fetch_game_stats_without_boxscore(self):
        """Should return no records for a game that has not been played."""
        espn = make_client(json_handler({"header": {}}))
        assert await espn.fetch_game_stats("401547999") == []

    @pytest.mark.asyncio
    async def test_fetch_season_weeks(self):
        """Should return the distinct week numbers in order."""
        requests = []
        espn = make_client(json_handler(WEEKS, requests))

        assert await espn.fetch_season_weeks(2024) == [1, 2]
        assert requests[0].url.path == "/v2/sports/football/leagues/nfl/seasons/2024/types/2/weeks"


class TestFailureHandling:
    """Test suite for HTTP failures and the circuit breaker."""

    @pytest.mark.asyncio
    async def test_connectivity_ok(self):
        assert await make_client(json_handler(SCOREBOARD)).check_connectivity() is True

    @pytest.mark.asyncio
    async def test_connectivity_http_error(self):
        """Should report False instead of raising on an HTTP error."""
        espn = make_client(json_handler({}, status=404))
        assert await espn.check_connectivity() is False

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        """Should raise non-retryable HTTP errors to the caller."""
        espn = make_client(json_handler({}, status=404))
        with pytest.raises(httpx.HTTPStatusError):
            await espn.fetch_games_for_week(2024, 1)

    @pytest.mark.asyncio
    async def test_server_error_retried(self, monkeypatch):
        """Should retry a 5xx response and return the next good payload."""
        monkeypatch.setattr(EspnSourceClient._fetch_with_retry.retry, "wait", wait_none())
        responses = [httpx.Response(503), httpx.Response(200, json=SCOREBOARD)]
        espn = make_client(lambda request: responses.pop(0))

        games = await espn.fetch_games_for_week(2024, 1)

        assert len(games) == 2
        assert responses == []

    @pytest.mark.asyncio
    async def test_open_breaker(self):
        """Should return no athletes and report ESPN unreachable while the circuit is open."""
        requests = []
        breaker = new_breaker("espn_open")
        breaker.open()
        espn = make_client(json_handler(ATHLETES, requests), breaker=breaker)

        assert await espn.fetch_all_players() == []
        assert await espn.check_connectivity() is False
        assert requests == []


class TestRateLimiting:
    """Test suite for rate limiter integration."""

    @pytest.mark.asyncio
    async def test_requests_consume_slots(self):
        """Should record one limiter slot per HTTP attempt."""
        limiter = RateLimiter(RateLimitConfig(max_requests=10))
        espn = make_client(json_handler(SCOREBOARD), limiter=limiter)

        await espn.fetch_games_for_week(2024, 1)
        await espn.fetch_season_weeks(2024)

        status = limiter.get_status()
        assert status.total_requests == 2
        assert status.requests_remaining == 8

    @pytest.mark.asyncio
    async def test_connectivity_check_spends_no_budget(self):
        """Should reach ESPN without recording a limiter slot."""
        requests = []
        limiter = RateLimiter(RateLimitConfig(max_requests=10))
        espn = make_client(json_handler(SCOREBOARD, requests), limiter=limiter)

        assert await espn.check_connectivity() is True

        assert len(requests) == 1
        assert limiter.get_status().total_requests == 0

    @pytest.mark.asyncio
    async def test_connectivity_check_with_full_window(self):
        """Should not wait on an exhausted window."""
        limiter = RateLimiter(RateLimitConfig(max_requests=1, time_window_seconds=60))
        await limiter.wait_for_request()
        espn = make_client(json_handler(SCOREBOARD), limiter=limiter)

        assert await asyncio.wait_for(espn.check_connectivity(), timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_cancellation_does_not_trip_breaker(self):
        """Should raise SyncCancelledError every time and leave the circuit closed."""
        requests = []
        breaker = new_breaker("espn_cancel", fail_max=5)
        espn = make_client(json_handler(SCOREBOARD, requests), breaker=breaker)
        token = CancellationToken()
        token.cancel("stop")

        for _ in range(6):
            with pytest.raises(SyncCancelledError):
                await espn.fetch_games_for_week(2024, 1, token)

        assert breaker.current_state == "closed"
        assert breaker.fail_counter == 0
        assert requests == []
        assert await espn.fetch_games_for_week(2024, 1) != []

    @pytest.mark.asyncio
    async def test_queue_timeout_does_not_trip_breaker(self):
        """Should surface QueueTimeoutError without counting it as an ESPN failure."""
        limiter = RateLimiter(RateLimitConfig(burst_allowance=1, queue_timeout_ms=10))
        await limiter._gate.acquire()
        breaker = new_breaker("espn_queue", fail_max=2)
        espn = make_client(json_handler(SCOREBOARD), breaker=breaker, limiter=limiter)

        for _ in range(3):
            with pytest.raises(QueueTimeoutError):
                await espn.fetch_games_for_week(2024, 1)

        assert breaker.current_state == "closed"

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        """Should close the HTTP client it created itself."""
        espn = EspnSourceClient(site_api_url=SITE, core_api_url=CORE)
        async with espn:
            pass
        assert espn.client.is_closed is True
