import datetime as dt
import threading
import time

import pytest

pytest.importorskip("fastapi", reason="fastapi not installed")

from tera.engine.answer import NO_RELEVANT_CONTENT_MESSAGE, AnswerConfig, AnswerService  # noqa: E402
from tera.engine.model_handle import SharedModelHandle  # noqa: E402
from tera.engine.types import GenerationConfig  # noqa: E402
from tests.engine._fakes import EOS_ID, FakeAdapter, char_ids  # noqa: E402


def _client(adapter: FakeAdapter, *, timeout_s=None, **app_kwargs):
    from fastapi.testclient import TestClient

    from apps.server.app import create_app

    service = AnswerService(
        SharedModelHandle.of(adapter),
        config=AnswerConfig(
            generation=GenerationConfig(temperature=None, repeat_penalty=1.0),
            timeout_s=timeout_s,
        ),
        clock=lambda: dt.date(2024, 3, 5),
    )
    app = create_app(service=service, model_id="tera-test", **app_kwargs)
    return TestClient(app)


def test_answer_basic_shape():
    client = _client(FakeAdapter(script=[*char_ids("Paris"), EOS_ID]))

    resp = client.post(
        "/v1/answer",
        json={
            "query": "What is the capital of France?",
            "context": [{"content": "Paris is the capital of France.", "metadata": {"id": 1}}],
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["object"] == "answer"
    assert data["model"] == "tera-test"
    assert data["answer"] == "Paris"
    assert data["finish_reason"] == "stop"
    assert data["usage"]["completion_tokens"] == 6
    assert data["usage"]["total_tokens"] == data["usage"]["prompt_tokens"] + 6
    assert data["timing"]["tok_per_s"] > 0


def test_empty_context_returns_fixed_message():
    adapter = FakeAdapter()
    client = _client(adapter)

    resp = client.post("/v1/answer", json={"query": "What is the capital of France?", "context": []})
    assert resp.status_code == 200
    data = resp.json()
    assert data["answer"] == NO_RELEVANT_CONTENT_MESSAGE
    assert data["finish_reason"] == "no_context"
    assert adapter.tokenizer_calls == 0


def test_generation_overrides_are_forwarded():
    client = _client(FakeAdapter(script=[], fallback_token=char_ids("a")[0]))

    resp = client.post(
        "/v1/answer",
        json={"query": "q", "context": [{"content": "c"}], "generation": {"max_new_tokens": 2}},
    )
    assert resp.status_code == 200
    assert resp.json()["answer"] == "aa"
    assert resp.json()["finish_reason"] == "length"


@pytest.mark.parametrize(
    "body",
    [
        {"context": [{"content": "c"}]},
        {"query": "   ", "context": [{"content": "c"}]},
        {"query": "q", "context": "not a list"},
        {"query": "q", "context": [{"metadata": {}}]},
        {"query": "q", "context": [{"content": "c"}], "generation": {"unknown": 1}},
        {"query": "q", "context": [{"content": "c"}], "generation": []},
    ],
)
def test_bad_requests_are_400(body):
    client = _client(FakeAdapter())
    resp = client.post("/v1/answer", json=body)
    assert resp.status_code == 400


def test_non_object_body_is_400():
    client = _client(FakeAdapter())
    resp = client.post("/v1/answer", json=["query"])
    assert resp.status_code == 400


def test_max_new_tokens_cap():
    client = _client(FakeAdapter(), http_max_new_tokens=10)
    resp = client.post(
        "/v1/answer",
        json={"query": "q", "context": [{"content": "c"}], "generation": {"max_new_tokens": 11}},
    )
    assert resp.status_code == 400
    assert "cap" in resp.json()["detail"]


def test_missing_stop_token_is_500():
    client = _client(FakeAdapter(has_eos=False))
    resp = client.post("/v1/answer", json={"query": "q", "context": [{"content": "c"}]})
    assert resp.status_code == 500


def test_model_failure_is_502():
    client = _client(FakeAdapter(fail_at_step=0))
    resp = client.post("/v1/answer", json={"query": "q", "context": [{"content": "c"}]})
    assert resp.status_code == 502


def test_health_and_models():
    client = _client(FakeAdapter())

    health = client.get("/health").json()
    assert health == {"status": "ok", "model": "tera-test", "loaded": True}

    models = client.get("/v1/models").json()
    assert models["object"] == "list"
    ids = {m["id"] for m in models["data"]}
    assert {"phi-2", "mixtral-8x7b"} <= ids
    assert not any(m["active"] for m in models["data"])


class _GatedAdapter(FakeAdapter):
    """Every decode step blocks until `release` is set (or sleeps `delay`)."""

    def __init__(self, *, delay: float = 0.0, gated: bool = False):
        super().__init__(script=[], fallback_token=char_ids("a")[0])
        self.delay = delay
        self.gated = gated
        self.entered = threading.Event()
        self.release = threading.Event()

    def open_session(self):
        session = super().open_session()
        forward = session.forward

        def _blocking(window):
            self.entered.set()
            if self.gated:
                self.release.wait(5.0)
            if self.delay:
                time.sleep(self.delay)
            return forward(window)

        session.forward = _blocking
        return session


def test_non_finite_generation_values_are_400():
    client = _client(FakeAdapter())
    body = b'{"query": "q", "context": [{"content": "c"}], "generation": {"repeat_penalty": NaN}}'
    resp = client.post("/v1/answer", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 400

    body = b'{"query": "q", "context": [{"content": "c"}], "generation": {"temperature": Infinity}}'
    resp = client.post("/v1/answer", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 400


def test_deadline_exceeded_is_504():
    adapter = _GatedAdapter(delay=0.01)
    client = _client(adapter, timeout_s=0.05)

    resp = client.post("/v1/answer", json={"query": "q", "context": [{"content": "c"}]})

    assert resp.status_code == 504
    assert "deadline" in resp.json()["detail"]
    assert adapter.sessions[0].closed


def test_busy_server_is_429():
    adapter = _GatedAdapter(gated=True)
    body = {"query": "q", "context": [{"content": "c"}], "generation": {"max_new_tokens": 1}}
    first = {}

    with _client(adapter, http_max_concurrency=1) as client:

        def held_request():
            first["resp"] = client.post("/v1/answer", json=body)

        thread = threading.Thread(target=held_request)
        thread.start()
        try:
            assert adapter.entered.wait(5.0)
            busy = client.post("/v1/answer", json=body)
        finally:
            adapter.release.set()
            thread.join(5.0)

    assert busy.status_code == 429
    assert busy.json()["detail"] == "Server is busy"
    assert first["resp"].status_code == 200
    assert first["resp"].json()["answer"] == "a"
