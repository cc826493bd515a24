import time
from unittest.mock import patch

import pytest
import requests

from sitegen.errors import ProviderTimeout, ProviderUnreachable, QuotaExceeded, UnexpectedResponse
from sitegen.providers import HostedApiClient, LocalModelClient, create_client


class FakeResp:
    def __init__(self, status_code=200, data=None, headers=None, text=""):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


def _completion(text, model="m"):
    return {"model": model, "choices": [{"message": {"content": text}}]}


def test_local_generate_sends_options_and_json_format():
    client = LocalModelClient(server_url="http://ollama:11434", model="llama2")
    with patch("requests.post", return_value=FakeResp(data={"response": '{"content": "<p>x</p>"}'})) as post:
        out = client.generate("make a header", {"format": "json", "temperature": 0.9, "max_tokens": 100, "timeout": 7})

    assert out.text == '{"content": "<p>x</p>"}'
    assert out.length == len(out.text)
    url = post.call_args.args[0]
    body = post.call_args.kwargs["json"]
    assert url == "http://ollama:11434/api/generate"
    assert body["stream"] is False
    assert body["format"] == "json"
    assert body["options"]["temperature"] == 0.2
    assert body["options"]["num_predict"] == 8192
    assert body["prompt"].startswith("make a header")
    assert "valid JSON object" in body["prompt"]
    assert post.call_args.kwargs["timeout"] == 7


def test_local_generate_text_mode_keeps_params():
    client = LocalModelClient(server_url="http://ollama", model="llama2")
    with patch("requests.post", return_value=FakeResp(data={"response": "hello"})) as post:
        client.generate("hi", {"temperature": 0.7, "max_tokens": 300, "stop": ["END"]})
    body = post.call_args.kwargs["json"]
    assert "format" not in body
    assert body["prompt"] == "hi"
    assert body["options"] == {"temperature": 0.7, "num_predict": 300, "stop": ["END"]}


def test_local_generate_maps_request_failures():
    client = LocalModelClient(server_url="http://ollama", model="llama2")
    with patch("requests.post", side_effect=requests.Timeout("slow")):
        with pytest.raises(ProviderTimeout) as exc:
            client.generate("x", {"timeout": 5})
    assert exc.value.kind == "timeout"
    assert exc.value.retryable is True

    with patch("requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(ProviderUnreachable) as exc:
            client.generate("x")
    assert exc.value.kind == "network"

    with patch("requests.post", return_value=FakeResp(status_code=500, text="boom")):
        with pytest.raises(UnexpectedResponse) as exc:
            client.generate("x")
    assert exc.value.status_code == 500

    with patch("requests.post", return_value=FakeResp(data={"done": True})):
        with pytest.raises(UnexpectedResponse):
            client.generate("x")


def test_local_reachability_and_models_never_raise():
    client = LocalModelClient(server_url="http://ollama", model="llama2")
    with patch("requests.get", side_effect=requests.ConnectionError("down")):
        assert client.check_reachable() is False
        assert client.list_models() == []

    tags = {"models": [{"name": "llama2"}, {"name": "mistral"}, {"size": 1}]}
    with patch("requests.get", return_value=FakeResp(data=tags)) as get:
        assert client.check_reachable() is True
        assert client.list_models() == ["llama2", "mistral"]
    assert get.call_args.args[0] == "http://ollama/api/tags"


def test_hosted_generate_builds_chat_request_and_tracks_usage():
    client = HostedApiClient(api_key="k", base_url="https://router.test/api/v1", model="gpt-test")
    reset = str(int(time.time()) + 60)
    resp = FakeResp(data=_completion("hello", model="gpt-test"), headers={"x-ratelimit-remaining": "41", "x-ratelimit-reset": reset})
    with patch("requests.post", return_value=resp) as post:
        out = client.generate("write", {"format": "json", "temperature": 0.2, "max_tokens": 50})

    assert out.text == "hello"
    assert out.model == "gpt-test"
    assert post.call_args.args[0] == "https://router.test/api/v1/chat/completions"
    headers = post.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer k"
    assert "HTTP-Referer" in headers and "X-Title" in headers
    body = post.call_args.kwargs["json"]
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert body["messages"][1]["content"] == "write"

    prof = client.profile()
    assert prof.remaining == 41
    assert prof.reset_at == float(reset)
    assert prof.quota_exceeded is False


def test_hosted_retries_without_json_mode_on_400():
    client = HostedApiClient(api_key="k", base_url="https://router.test", model="m")
    replies = [FakeResp(status_code=400, text="response_format unsupported"), FakeResp(data=_completion("ok"))]
    with patch("requests.post", side_effect=replies) as post:
        out = client.generate("x", {"format": "json"})
    assert out.text == "ok"
    assert post.call_count == 2
    assert "response_format" not in post.call_args_list[1].kwargs["json"]


def test_hosted_quota_short_circuits_until_reset():
    client = HostedApiClient(api_key="k", base_url="https://router.test", model="m")
    reset_ms = str(int((time.time() + 120) * 1000))
    with patch("requests.post", return_value=FakeResp(status_code=429, headers={"x-ratelimit-reset": reset_ms})) as post:
        with pytest.raises(QuotaExceeded) as first:
            client.generate("x")
        with pytest.raises(QuotaExceeded):
            client.generate("x")

    assert post.call_count == 1
    assert first.value.retryable is False
    assert first.value.reset_at == pytest.approx(int(reset_ms) / 1000.0)
    assert client.profile().quota_exceeded is True
    assert client.profile().remaining == 0


def test_hosted_quota_clears_after_reset_time():
    client = HostedApiClient(api_key="k", base_url="https://router.test", model="m")
    with patch("requests.post", return_value=FakeResp(status_code=429, headers={"Retry-After": "0"})):
        with pytest.raises(QuotaExceeded):
            client.generate("x")

    with patch("requests.post", return_value=FakeResp(data=_completion("back"))) as post:
        out = client.generate("x")
    assert out.text == "back"
    assert post.call_count == 1
    assert client.profile().quota_exceeded is False


def test_hosted_without_key_is_unreachable():
    client = HostedApiClient(api_key="", base_url="https://router.test", model="m")
    client.api_key = ""
    assert client.check_reachable() is False
    assert client.list_models() == []
    with pytest.raises(ProviderUnreachable):
        client.generate("x")


def test_hosted_empty_completion_is_unexpected():
    client = HostedApiClient(api_key="k", base_url="https://router.test", model="m")
    with patch("requests.post", return_value=FakeResp(data={"choices": []})):
        with pytest.raises(UnexpectedResponse):
            client.generate("x")


def test_hosted_list_models():
    client = HostedApiClient(api_key="k", base_url="https://router.test", model="m")
    with patch("requests.get", return_value=FakeResp(data={"data": [{"id": "a/b"}, {"id": "c/d"}]})):
        assert client.list_models() == ["a/b", "c/d"]


def test_create_client_aliases_and_unknown():
    assert isinstance(create_client("ollama"), LocalModelClient)
    assert isinstance(create_client("Local"), LocalModelClient)
    assert isinstance(create_client("openrouter", api_key="k"), HostedApiClient)
    assert isinstance(create_client("hosted", api_key="k"), HostedApiClient)
    with pytest.raises(ValueError):
        create_client("gemini")


def test_set_model_rejects_empty():
    client = LocalModelClient(server_url="http://ollama", model="llama2")
    client.set_model(" mistral ")
    assert client.model == "mistral"
    with pytest.raises(ValueError):
        client.set_model("   ")
