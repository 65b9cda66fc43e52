"""Tests for RequestContext configuration, payload shaping and transmission."""
import io
import logging

import aiohttp
import orjson
import pytest
from rich.console import Console

from core.config import HelperOptions
from core.types import ApiVersion, HttpMethod
from gateway.errors import InvalidPath, TransportError, UnresolvedVersion
from gateway.request import RequestContext, V1Payload, V2Payload, split_path
from gateway.signing import sign_v2
from conftest import FakeHttp, NONCE
from test_signing import V1_PAYLOAD, V1_SIG, V2_WALLETS_SIG


def make_ctx(path, body=None, options=None, http=None):
    return RequestContext.configure(path, body, options, http=http or FakeHttp())


# ── Configuration ──────────────────────────────────────────────────────

class TestConfigure:
    def test_empty_path(self):
        with pytest.raises(InvalidPath):
            make_ctx("")

    def test_invalid_path_is_value_error(self):
        with pytest.raises(ValueError):
            make_ctx(None)

    def test_unknown_version(self):
        with pytest.raises(UnresolvedVersion):
            make_ctx("v3/platform/status")

    def test_missing_version_segment(self):
        with pytest.raises(UnresolvedVersion):
            make_ctx("platform/status")

    def test_v1(self):
        ctx = make_ctx("v1/balances")
        assert ctx.version == ApiVersion.V1
        assert isinstance(ctx.payload, V1Payload)

    def test_v2(self):
        ctx = make_ctx("v2/platform/status")
        assert ctx.version == ApiVersion.V2
        assert isinstance(ctx.payload, V2Payload)

    def test_leading_slash_stripped(self):
        ctx = make_ctx("/v2/platform/status")
        assert ctx.path == "v2/platform/status"

    def test_query_split(self):
        ctx = make_ctx("v2/foo?limit=10")
        assert ctx.path == "v2/foo"
        assert ctx.path_args == "limit=10"

    def test_query_split_first_question_mark(self):
        assert split_path("v2/foo?a=1?b=2") == ("v2/foo", "a=1?b=2")

    def test_no_query(self):
        assert split_path("v2/foo") == ("v2/foo", None)

    def test_forced_version(self):
        ctx = make_ctx("custom/endpoint", options={"version": 2})
        assert ctx.version == ApiVersion.V2

    def test_falsy_body(self):
        assert make_ctx("v2/foo", body=None).body == {}
        assert make_ctx("v2/foo", body={}).body == {}

    def test_caller_options_win(self):
        defaults = HelperOptions(base_rest_url="https://a/", verbose_output=True)
        ctx = RequestContext.configure("v2/foo", None, {"baseRestUrl": "https://b/"},
                                       http=FakeHttp(), defaults=defaults)
        assert ctx.options.base_rest_url == "https://b/"
        assert ctx.options.verbose_output is True

    def test_url_with_query(self):
        ctx = make_ctx("v2/foo?limit=10")
        assert ctx.url == "https://api.bitfinex.com/v2/foo?limit=10"

    def test_url_base_without_slash(self):
        ctx = make_ctx("v2/foo", options={"baseRestUrl": "https://example.test"})
        assert ctx.url == "https://example.test/v2/foo"

    def test_request_path_without_args(self):
        assert make_ctx("v2/foo").request_path == "v2/foo"

    def test_request_path_with_args(self):
        assert make_ctx("v2/foo?limit=10").request_path == "v2/foo?limit=10"

    def test_token_takes_precedence(self):
        ctx = make_ctx("v2/foo", options={"key": "k", "secret": "s", "token": "t"})
        assert ctx.credentials.uses_token
        assert ctx.credentials.key is None


# ── v1 payloads ────────────────────────────────────────────────────────

class TestV1Transmit:
    @pytest.mark.asyncio
    async def test_unauthenticated(self, http):
        http.reply('[{"pair":"btcusd"}]')
        result = await make_ctx("v1/symbols_details", http=http).send_get()
        spec = http.last
        assert spec.method == HttpMethod.GET
        assert spec.as_json is False
        assert spec.body == '{"request":"/v1/symbols_details"}'
        assert spec.headers == {}
        assert result.response == [{"pair": "btcusd"}]

    @pytest.mark.asyncio
    async def test_key_secret_signature(self, http, key_options):
        http.reply('[{"type":"exchange","currency":"btc","amount":"1.0"}]')
        result = await make_ctx("v1/balances", options=key_options, http=http).send_post(nonce=NONCE)
        spec = http.last
        assert spec.headers == {
            "X-BFX-APIKEY": "key",
            "X-BFX-PAYLOAD": V1_PAYLOAD,
            "X-BFX-SIGNATURE": V1_SIG,
        }
        assert spec.body == '{"request":"/v1/balances","nonce":"1700000000000000"}'
        assert result.request_body == {"request": "/v1/balances", "nonce": NONCE}
        assert result.response[0]["currency"] == "btc"

    @pytest.mark.asyncio
    async def test_token(self, http, token_options):
        http.reply('{"ok":true}')
        await make_ctx("v1/balances", options=token_options, http=http).send_post(nonce=NONCE)
        spec = http.last
        assert spec.headers == {"bfx-token": "tok-123"}
        assert spec.as_json is True
        assert spec.body == {"request": "/v1/balances", "nonce": NONCE}

    @pytest.mark.asyncio
    async def test_query_in_url_and_request(self, http, key_options):
        http.reply("[]")
        ctx = make_ctx("v1/mytrades?limit_trades=5", {"symbol": "btcusd"}, key_options, http)
        result = await ctx.send_post(nonce=NONCE)
        assert http.last.url.endswith("v1/mytrades?limit_trades=5")
        assert result.request_body["request"] == "/v1/mytrades?limit_trades=5"
        assert result.request_body["symbol"] == "btcusd"

    @pytest.mark.asyncio
    async def test_context_body_untouched(self, http, key_options):
        http.reply("{}")
        ctx = make_ctx("v1/order/status", {"order_id": 1}, key_options, http)
        await ctx.send_post()
        assert ctx.body == {"order_id": 1}

    @pytest.mark.asyncio
    async def test_non_json_response_is_transport_error(self, http, key_options):
        http.reply("<html>bad gateway</html>", status=502)
        with pytest.raises(TransportError) as exc_info:
            await make_ctx("v1/balances", options=key_options, http=http).send_post()
        result = exc_info.value.result
        assert isinstance(result.error, orjson.JSONDecodeError)
        assert result.response is None


# ── v2 payloads ────────────────────────────────────────────────────────

class TestV2Transmit:
    @pytest.mark.asyncio
    async def test_public_get(self, http):
        http.reply('{"status":"operative"}')
        result = await make_ctx("v2/platform/status", http=http).send_get()
        assert result.response == {"status": "operative"}
        assert http.last.headers == {}
        assert http.last.as_json is True
        assert result.ok

    @pytest.mark.asyncio
    async def test_key_secret_signature(self, http, key_options):
        http.reply("[]")
        await make_ctx("v2/auth/r/wallets", options=key_options, http=http).send_post(nonce=NONCE)
        assert http.last.headers == {
            "bfx-nonce": NONCE,
            "bfx-apikey": "key",
            "bfx-signature": V2_WALLETS_SIG,
        }
        assert http.last.body == {}

    @pytest.mark.asyncio
    async def test_token(self, http, token_options):
        http.reply("[]")
        await make_ctx("v2/auth/r/wallets", options=token_options, http=http).send_post()
        assert http.last.headers == {"bfx-token": "tok-123"}

    @pytest.mark.asyncio
    async def test_query_appended_to_url_only(self, http):
        http.reply("[]")
        result = await make_ctx("v2/tickers?symbols=ALL", http=http).send_get()
        assert http.last.url == "https://api.bitfinex.com/v2/tickers?symbols=ALL"
        assert result.request_body == {}

    @pytest.mark.asyncio
    async def test_non_json_kept_as_text(self, http):
        http.reply("maintenance")
        result = await make_ctx("v2/platform/status", http=http).send_get()
        assert result.response == "maintenance"

    @pytest.mark.asyncio
    async def test_error_status_is_not_transport_error(self, http, key_options):
        http.reply('["error",10100,"apikey: invalid"]', status=500)
        result = await make_ctx("v2/auth/r/wallets", options=key_options, http=http).send_post()
        assert result.ok
        assert result.status == 500
        assert result.response == ["error", 10100, "apikey: invalid"]


# ── Shared transmission behaviour ──────────────────────────────────────

class TestTransmit:
    @pytest.mark.asyncio
    async def test_optional_headers_do_not_override_protocol(self, http):
        options = HelperOptions(key="key", secret="secret",
                                optional_headers={"bfx-nonce": "spoofed", "User-Agent": "bot/1"})
        http.reply("[]")
        await make_ctx("v2/auth/r/wallets", options=options, http=http).send_post(nonce=NONCE)
        assert http.last.headers["bfx-nonce"] == NONCE
        assert http.last.headers["User-Agent"] == "bot/1"

    @pytest.mark.asyncio
    async def test_lone_key_override_keeps_matching_pair(self, http):
        defaults = HelperOptions(key="k1", secret="s1")
        ctx = RequestContext.configure("v2/auth/r/wallets", None, {"key": "k2"},
                                       http=http, defaults=defaults)
        await ctx.send_post(nonce=NONCE)
        assert http.last.headers["bfx-apikey"] == "k1"
        assert http.last.headers["bfx-signature"] == sign_v2("v2/auth/r/wallets", NONCE, {}, "s1")

    @pytest.mark.asyncio
    async def test_nonce_never_repeats(self, http, key_options):
        ctx = make_ctx("v2/auth/r/wallets", options=key_options, http=http)
        first = await ctx.send_post()
        second = await ctx.send_post()
        assert first.nonce != second.nonce
        assert int(second.nonce) > int(first.nonce)
        assert http.calls[0].headers["bfx-nonce"] != http.calls[1].headers["bfx-nonce"]

    @pytest.mark.asyncio
    async def test_missing_credentials_downgrades(self, http, anon_options, caplog):
        caplog.set_level(logging.WARNING, logger="gateway.request")
        result = await make_ctx("v2/auth/r/wallets", options=anon_options, http=http).send_post()
        assert result.authenticated is False
        assert "bfx-signature" not in http.last.headers
        assert "without credentials" in caplog.text

    @pytest.mark.asyncio
    async def test_method_as_string(self, http):
        await make_ctx("v2/platform/status", http=http).transmit("POST")
        assert http.last.method == HttpMethod.POST

    @pytest.mark.asyncio
    async def test_transport_failure(self, key_options):
        http = FakeHttp([aiohttp.ClientConnectionError("connection reset")])
        ctx = make_ctx("v2/auth/r/wallets", options=key_options, http=http)
        with pytest.raises(TransportError) as exc_info:
            await ctx.send_post()
        result = exc_info.value.result
        assert isinstance(result.error, aiohttp.ClientConnectionError)
        assert result.response is None
        assert result.context is ctx
        assert not result.ok

    @pytest.mark.asyncio
    async def test_performance_timing(self, http):
        result = await make_ctx("v2/platform/status", options={"performance": True},
                                http=http).send_get()
        assert result.timing is not None
        assert result.timing.elapsed_ms >= 0
        assert result.timing.finished_ms >= result.timing.started_ms

    @pytest.mark.asyncio
    async def test_no_timing_by_default(self, http):
        result = await make_ctx("v2/platform/status", http=http).send_get()
        assert result.timing is None

    @pytest.mark.asyncio
    async def test_verbose_logs_request_and_response(self, http, caplog):
        caplog.set_level(logging.INFO, logger="gateway.request")
        http.reply('{"status":"operative"}')
        await make_ctx("v2/platform/status", options={"verboseOutput": True}, http=http).send_get()
        assert "Request payload" in caplog.text
        assert "operative" in caplog.text


# ── Reacting to results ────────────────────────────────────────────────

class TestResult:
    @pytest.mark.asyncio
    async def test_act_on_response(self, http):
        http.reply('[["tBTCUSD",1]]')
        seen = {}

        def handler(response, meta):
            seen["response"] = response
            seen["meta"] = meta

        result = await make_ctx("v2/tickers?symbols=tBTCUSD", http=http).send_get()
        assert result.act_on_response(handler) is result
        assert seen["response"] == [["tBTCUSD", 1]]
        assert seen["meta"] == {"requestBody": {}, "requestPath": "v2/tickers?symbols=tBTCUSD"}

    @pytest.mark.asyncio
    async def test_print_response(self, http):
        http.reply('{"status":"operative"}')
        buf = io.StringIO()
        result = await make_ctx("v2/platform/status", http=http).send_get()
        assert result.print_response(Console(file=buf, width=100)) is result
        assert "operative" in buf.getvalue()

    @pytest.mark.asyncio
    async def test_throttle_returns_self(self, http):
        result = await make_ctx("v2/platform/status", http=http).send_get()
        assert await result.throttle(1) is result
