import httpx
import pytest

from core.result import DegradedReason
from interaction.resolver.llm import OracleClient, OracleConfig, build_catalogue
from interaction.resolver.resolver import ResolverConfig, ResolverService


def make_client(body=None, exc=None, status=200):
    class DummyResponse:
        status_code = status

        def raise_for_status(self):
            if status >= 400:
                request = httpx.Request("POST", "http://oracle/api/generate")
                response = httpx.Response(status, request=request)
                raise httpx.HTTPStatusError("bad status", request=request, response=response)

        def json(self):
            if isinstance(body, Exception):
                raise body
            return body

    class DummyClient:
        last_payload = None

        def __init__(self, timeout):
            self.timeout = timeout

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_value, tb):
            return False

        def post(self, url, json):
            DummyClient.last_payload = json
            if exc is not None:
                raise exc
            return DummyResponse()

    return DummyClient


def ask(body=None, exc=None, status=200):
    client = OracleClient(OracleConfig(enable=True, base_url="http://oracle"), http_client_cls=make_client(body, exc, status))
    return client.ask("hola")


def test_disabled_oracle_never_calls_http():
    client_cls = make_client({"response": "{}"})
    result = OracleClient(OracleConfig(enable=False), http_client_cls=client_cls).ask("hola")
    assert result.reason == DegradedReason.ORACLE_DISABLED
    assert client_cls.last_payload is None


def test_intent_reply():
    result = ask({"response": 'Claro: {"intent": "create_task", "args": {"title": "Informe"}}'})
    assert result.ok
    assert result.value.intent == "create_task"
    assert result.value.args == {"title": "Informe"}


def test_text_reply_in_json_and_prose():
    assert ask({"response": '{"text": "Hola!"}'}).value.text == "Hola!"
    assert ask({"response": "Te sugiero empezar por lo urgente."}).value.text == "Te sugiero empezar por lo urgente."


@pytest.mark.parametrize(
    "body",
    [
        {"response": ""},
        {"other": "x"},
        {"response": '{"intent": "create_task", "args": ["x"]}'},
        {"response": '{"foo": 1}'},
        ValueError("not json"),
    ],
)
def test_invalid_output(body):
    assert ask(body).reason == DegradedReason.ORACLE_INVALID_OUTPUT


@pytest.mark.parametrize(
    "kwargs, reason",
    [
        ({"exc": httpx.TimeoutException("slow")}, DegradedReason.ORACLE_TIMEOUT),
        ({"exc": httpx.ConnectError("refused")}, DegradedReason.ORACLE_UNAVAILABLE),
        ({"body": {}, "status": 429}, DegradedReason.ORACLE_RATE_LIMITED),
        ({"body": {}, "status": 500}, DegradedReason.ORACLE_UNAVAILABLE),
    ],
)
def test_transport_failures(kwargs, reason):
    assert ask(**kwargs).reason == reason


def test_prompt_lists_catalogue():
    client_cls = make_client({"response": '{"text": "ok"}'})
    OracleClient(OracleConfig(enable=True), http_client_cls=client_cls).ask("planifica")
    payload = client_cls.last_payload
    assert payload["model"] == "llama3.1"
    assert payload["stream"] is False
    assert build_catalogue() in payload["prompt"]
    assert 'Mensaje del usuario: "planifica"' in payload["prompt"]


def _resolver(mode="hybrid", body=None):
    config = ResolverConfig(mode=mode, oracle=OracleConfig(enable=True))
    return ResolverService(config=config, http_client_cls=make_client(body))


def test_resolver_prefers_quick_rules():
    intent = _resolver(body={"response": '{"text": "no deberia usarse"}'}).resolve("planifica mi semana")
    assert intent.is_command()
    assert intent.meta.source == "quick"
    assert intent.meta.trace_id


def test_resolver_quick_mode_skips_oracle():
    resolver = _resolver(mode="quick", body={"response": '{"text": "x"}'})
    assert not resolver.oracle_enabled
    intent = resolver.resolve("hola")
    assert intent.kind == "chat"
    assert intent.meta.degraded == DegradedReason.ORACLE_DISABLED.value


def test_resolver_oracle_command_confidence():
    intent = _resolver(body={"response": '{"intent": "batch_reprioritize", "args": {}}'}).resolve("ayuda con la carga")
    assert intent.is_command()
    assert intent.meta.source == "oracle"
    assert intent.meta.confidence == 0.75


def test_resolver_invalid_tool_call():
    intent = _resolver(body={"response": '{"intent": "create_task", "args": {"title": {"x": 1}}}'}).resolve("algo")
    assert intent.kind == "chat"
    assert intent.meta.degraded == DegradedReason.ORACLE_INVALID_OUTPUT.value


def test_resolver_config_from_settings():
    config = ResolverConfig.from_settings({"resolver": {"mode": "quick"}, "oracle": {"enable": True, "timeout_sec": 2}})
    assert config.mode == "quick"
    assert config.oracle.enable
    assert config.oracle.timeout == 2.0
