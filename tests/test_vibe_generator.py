import json

import httpx
import pytest

from vibe.vibe_generator import ChatCompletionGenerator, build_prompts, clean_code, describe_args
from vibe.vibe_datatypes import GeneratorRequest, GenerationError
from vibe.vibe_config import VibeSettings


def completion(content, **extra):
    body = {
        "model": "test-model",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }
    body.update(extra)
    return body


def make_generator(handler, **kw):
    kw.setdefault("backoff", 0)
    return ChatCompletionGenerator(
        "sk-test", "https://llm.example/v1/", "gpt-test",
        transport=httpx.MockTransport(handler), **kw,
    )


# ----------------------------------------------------------------------
# clean_code
# ----------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [
    ("return args[0] + args[1]", "return args[0] + args[1]"),
    ("```python\nreturn 1\n```", "return 1"),
    ("```py\nreturn 1\n```", "return 1"),
    ("```\nx = 2\nreturn x\n```", "x = 2\nreturn x"),
    ("def add(a, b):\n    return a + b", "return a + b"),
    ("async def run(args, v, shape):\n    r = await v.x()\n    return r", "r = await v.x()\nreturn r"),
    ("  \n  return 3  \n", "return 3"),
    ("", ""),
])
def test_clean_code(raw, expected):
    assert clean_code(raw) == expected


def test_clean_code_keeps_helper_definitions():
    raw = "def helper(x):\n    return x * 2\nreturn helper(args[0])"
    assert clean_code(raw) == raw


# ----------------------------------------------------------------------
# prompts
# ----------------------------------------------------------------------

def test_task_prompt_mentions_name_args_and_shape():
    system, user = build_prompts(GeneratorRequest("add", (5, 3), int))
    assert "PATH A" in system
    assert 'Implement "add"' in user
    assert "[5, 3]" in user
    assert "Expected Return Type: integer" in user
    assert "MAX RECURSION" not in user


def test_terminal_prompt_forbids_reentry():
    _, user = build_prompts(GeneratorRequest("Explain <html> & co", ("x",), None, is_terminal_hop=True))
    assert user.startswith("MAX RECURSION")
    assert "DO NOT use v again" in user
    # rendered without html escaping
    assert '"Explain <html> & co"' in user
    assert "type: any" in user


def test_describe_args_preview_is_bounded():
    assert describe_args(()) == "Arguments: None"
    long = describe_args(["x" * 5000])
    assert len(long) < 1200


# ----------------------------------------------------------------------
# chat completion client
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_success_records_exchange():
    seen = []

    def handler(request):
        seen.append(request)
        usage = {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
        return httpx.Response(200, json=completion("```python\nreturn args[0] + args[1]\n```", usage=usage))

    gen = make_generator(handler, temperature=0.2, max_tokens=99)
    result = await gen.generate(GeneratorRequest("add", (5, 3), None))

    assert result.code == "return args[0] + args[1]"
    assert result.model == "test-model"
    assert result.finish_reason == "stop"
    assert result.usage.total_tokens == 15
    assert result.request_metadata()["temperature"] == 0.2
    assert result.response_metadata()["usage"]["prompt_tokens"] == 10

    req = seen[0]
    assert str(req.url) == "https://llm.example/v1/chat/completions"
    assert req.headers["Authorization"] == "Bearer sk-test"
    payload = json.loads(req.content)
    assert payload["model"] == "gpt-test"
    assert payload["max_tokens"] == 99
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_no_auth_header_without_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=completion("return 1"))

    gen = ChatCompletionGenerator("", "http://local/v1", "m", transport=httpx.MockTransport(handler))
    await gen.generate(GeneratorRequest("one", ()))
    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json=completion("return 2"))

    result = await make_generator(handler).generate(GeneratorRequest("two", ()))
    assert result.code == "return 2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_client_errors_fail_immediately():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(401, text="bad key")

    with pytest.raises(GenerationError) as ei:
        await make_generator(handler, retries=3).generate(GeneratorRequest("x", ()))
    assert "401" in str(ei.value)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_generation_error():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GenerationError):
        await make_generator(handler, retries=2).generate(GeneratorRequest("x", ()))
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_empty_completion_is_a_generation_error():
    def handler(request):
        return httpx.Response(200, json=completion("```python\n```"))

    with pytest.raises(GenerationError):
        await make_generator(handler).generate(GeneratorRequest("x", ()))


@pytest.mark.asyncio
async def test_malformed_response_is_a_generation_error():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(GenerationError):
        await make_generator(handler).generate(GeneratorRequest("x", ()))


def test_from_settings():
    settings = VibeSettings(api_key="k", model="m1", base_url="http://h/v1", temperature=0.1)
    gen = ChatCompletionGenerator.from_settings(settings, retries=0)
    assert (gen.api_key, gen.model, gen.base_url, gen.temperature, gen.retries) == ("k", "m1", "http://h/v1", 0.1, 0)
